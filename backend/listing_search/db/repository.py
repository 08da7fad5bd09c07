import sqlite3
from contextlib import contextmanager
from typing import Iterator, Sequence

import structlog

from listing_search.core.errors import (
    DataCorruptionError,
    InvalidArgumentError,
    NotFoundError,
    StorageUnavailableError,
)
from listing_search.db.client import ConnectionPool
from listing_search.db.schema import INDEX_TABLE, count_index_entries
from listing_search.db.schemas import (
    ListingDetails,
    SearchResult,
    decode_embedding,
    encode_embedding,
    listing_select,
)

logger = structlog.get_logger()

# sqlite-vec rejects larger k values
MAX_RESULTS = 4096

# SQLite INTEGER range
MIN_ID = -(2 ** 63)
MAX_ID = 2 ** 63 - 1

# KNN over the ANN index, then join each hit back to its listing through the
# embeddings rowid. Ties on distance are broken by listing id. Zero vectors
# have no cosine distance and are left out.
SIMILAR_QUERY = f"""
    WITH search_results AS MATERIALIZED (
        SELECT listing_id, distance
        FROM {INDEX_TABLE}
        WHERE embedding MATCH ? AND k = ?
    )
    SELECT {listing_select("l")}, sr.distance
    FROM search_results sr
    JOIN embeddings e ON e.rowid = sr.listing_id
    JOIN listings l ON l.id = e.listing_id
    WHERE sr.distance IS NOT NULL
    ORDER BY sr.distance, l.id
"""


class ListingRepository:
    """Synchronous queries over the listing catalog. One connection per call."""

    def __init__(self, pool: ConnectionPool, dimension: int = 768):
        self.pool = pool
        self.dimension = dimension

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        with self.pool.checkout() as conn:
            try:
                yield conn
            except sqlite3.Error as exc:
                logger.error("Storage engine error", error=str(exc))
                raise StorageUnavailableError(f"storage engine error: {exc}") from exc

    def get_listings(self, limit: int) -> list[ListingDetails]:
        if limit <= 0:
            return []
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {listing_select()} FROM listings LIMIT ?", (min(limit, MAX_ID),)
            ).fetchall()
        return [ListingDetails.from_row(row) for row in rows]

    def get_listing_by_id(self, listing_id: int) -> ListingDetails:
        self._check_id("listing", listing_id)
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {listing_select()} FROM listings WHERE id = ?", (listing_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError("listing", listing_id)
        return ListingDetails.from_row(row)

    def get_embedding(self, listing_id: int) -> list[float]:
        self._check_id("embedding", listing_id)
        with self._connection() as conn:
            blob = self._fetch_embedding(conn, listing_id)
        return decode_embedding(blob, self.dimension)

    def get_similar_to_listing(self, listing_id: int, limit: int) -> list[SearchResult]:
        self._check_limit(limit)
        self._check_id("embedding", listing_id)
        with self._connection() as conn:
            blob = self._fetch_embedding(conn, listing_id)
            # Validates the stored blob before it reaches the index
            if not any(decode_embedding(blob, self.dimension)):
                raise DataCorruptionError(f"embedding for listing {listing_id} is a zero vector")
            return self._search(conn, blob, limit)

    def get_similar_to_embedding(self, embedding: Sequence[float], limit: int) -> list[SearchResult]:
        self._check_limit(limit)
        if len(embedding) != self.dimension:
            raise InvalidArgumentError(
                f"embedding has {len(embedding)} values, expected {self.dimension}"
            )
        if not any(embedding):
            raise InvalidArgumentError("embedding is a zero vector, cosine distance is undefined")
        with self._connection() as conn:
            return self._search(conn, encode_embedding(embedding), limit)

    def count_indexed(self) -> int:
        with self._connection() as conn:
            return count_index_entries(conn)

    def _fetch_embedding(self, conn: sqlite3.Connection, listing_id: int) -> bytes:
        row = conn.execute(
            "SELECT embedding FROM embeddings WHERE listing_id = ?", (listing_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError("embedding", listing_id)
        if not isinstance(row[0], bytes):
            raise DataCorruptionError(f"embedding for listing {listing_id} is not a blob")
        return row[0]

    def _search(self, conn: sqlite3.Connection, blob: bytes, limit: int) -> list[SearchResult]:
        rows = conn.execute(SIMILAR_QUERY, (blob, min(limit, MAX_RESULTS))).fetchall()
        return [SearchResult.from_row(row) for row in rows]

    @staticmethod
    def _check_id(kind: str, listing_id: int) -> None:
        # Ids SQLite cannot store can never match a row
        if not MIN_ID <= listing_id <= MAX_ID:
            raise NotFoundError(kind, listing_id)

    @staticmethod
    def _check_limit(limit: int) -> None:
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
