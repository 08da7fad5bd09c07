import sqlite3
import struct
from typing import Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from listing_search.core.errors import DataCorruptionError, InvalidArgumentError, SchemaMismatchError
from listing_search.db.schema import INDEX_TABLE, index_exists

# Column order of the listings table. ListingDetails.from_row depends on it.
LISTING_COLUMNS = (
    "id",
    "name",
    "description",
    "neighborhood_overview",
    "neighbourhood_cleansed",
    "property_type",
    "room_type",
    "accommodates",
    "bathrooms_text",
    "bedrooms",
    "beds",
    "amenities",
    "price",
)

FLOAT_SIZE = 4


def listing_select(alias: str | None = None) -> str:
    prefix = f"{alias}." if alias else ""
    return ", ".join(prefix + column for column in LISTING_COLUMNS)


class ListingDetails(BaseModel):
    """Listing record as stored in the catalog"""
    id: int
    name: str | None = None
    description: str | None = None
    neighborhood_overview: str | None = None
    neighbourhood_cleansed: str | None = None
    property_type: str | None = None
    room_type: str | None = None
    accommodates: int | None = None
    bathrooms_text: str | None = None
    bedrooms: float | None = None
    beds: float | None = None
    amenities: str | None = None
    price: str | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_row(cls, row: Sequence) -> "ListingDetails":
        try:
            return cls(**dict(zip(LISTING_COLUMNS, row[: len(LISTING_COLUMNS)])))
        except ValidationError as exc:
            raise DataCorruptionError(f"listing row {row[0]!r} does not match the listing schema") from exc


class SearchResult(BaseModel):
    listing_details: ListingDetails
    score: float
    distance: float

    @classmethod
    def from_row(cls, row: Sequence) -> "SearchResult":
        # Distance follows the listing columns
        distance = row[len(LISTING_COLUMNS)]
        if distance is None:
            raise DataCorruptionError(f"no distance for listing {row[0]!r}")
        distance = float(distance)
        return cls(
            listing_details=ListingDetails.from_row(row),
            score=1.0 - distance,
            distance=distance,
        )


def encode_embedding(vector: Sequence[float]) -> bytes:
    try:
        return struct.pack(f"<{len(vector)}f", *vector)
    except (struct.error, OverflowError) as exc:
        raise InvalidArgumentError(f"embedding is not a float32 vector: {exc}") from exc


def decode_embedding(blob: bytes, dimension: int) -> list[float]:
    if len(blob) % FLOAT_SIZE != 0:
        raise DataCorruptionError(
            f"embedding blob of {len(blob)} bytes is not a whole number of float32 values"
        )
    if len(blob) != FLOAT_SIZE * dimension:
        raise DataCorruptionError(
            f"embedding has {len(blob) // FLOAT_SIZE} values, expected {dimension}"
        )
    return list(struct.unpack(f"<{dimension}f", blob))


def validate_schema(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(listings)")}
    if not columns:
        raise SchemaMismatchError("table 'listings' does not exist")
    missing = [column for column in LISTING_COLUMNS if column not in columns]
    if missing:
        raise SchemaMismatchError(f"table 'listings' is missing columns: {', '.join(missing)}")

    embedding_columns = {row[1] for row in conn.execute("PRAGMA table_info(embeddings)")}
    if not {"listing_id", "embedding"} <= embedding_columns:
        raise SchemaMismatchError("table 'embeddings' must have listing_id and embedding columns")

    if not index_exists(conn):
        raise SchemaMismatchError(f"ANN index '{INDEX_TABLE}' does not exist, run scripts/build_index.py")
