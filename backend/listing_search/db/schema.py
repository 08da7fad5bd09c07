import sqlite3

import structlog

logger = structlog.get_logger()

INDEX_TABLE = "embeddings_index"


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the listings and embeddings tables used by the catalog."""
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS listings (
            id INTEGER PRIMARY KEY,
            name TEXT,
            description TEXT,
            neighborhood_overview TEXT,
            neighbourhood_cleansed TEXT,
            property_type TEXT,
            room_type TEXT,
            accommodates INTEGER,
            bathrooms_text TEXT,
            bedrooms REAL,
            beds REAL,
            amenities TEXT,
            price TEXT
        );
        CREATE TABLE IF NOT EXISTS embeddings (
            listing_id INTEGER NOT NULL REFERENCES listings(id),
            embedding BLOB NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_embeddings_listing_id ON embeddings(listing_id);
        """
    )


def create_index(conn: sqlite3.Connection, dimension: int) -> int:
    """
    Build the cosine ANN index over the embeddings table.

    Index entries are keyed by the embeddings rowid. Rows already indexed are
    skipped, so the build can be re-run after new embeddings are ingested.
    Returns the number of entries added.
    """
    conn.execute(
        f"CREATE VIRTUAL TABLE IF NOT EXISTS {INDEX_TABLE} "
        f"USING vec0(embedding float[{int(dimension)}] distance_metric=cosine, listing_id integer primary key)"
    )
    before = count_index_entries(conn)
    conn.execute(
        f"""
        INSERT INTO {INDEX_TABLE}(listing_id, embedding)
        SELECT e.rowid, e.embedding FROM embeddings e
        WHERE e.rowid NOT IN (SELECT listing_id FROM {INDEX_TABLE})
        """
    )
    conn.commit()
    added = count_index_entries(conn) - before
    logger.info("Built embeddings index", added=added, dimension=dimension)
    return added


def index_exists(conn: sqlite3.Connection) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (INDEX_TABLE,)
    ).fetchone()
    return row is not None


def count_index_entries(conn: sqlite3.Connection) -> int:
    (count,) = conn.execute(f"SELECT count(*) FROM {INDEX_TABLE}").fetchone()
    return count
