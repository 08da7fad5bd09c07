"""
Pytest fixtures for the listing search service.

Builds small SQLite catalogs on disk with the same layout as the production
database: listings, embeddings and a sqlite-vec cosine index over them.
"""

import pytest

from listing_search.core.config import Settings
from listing_search.db.client import ConnectionPool
from listing_search.db.schema import create_index, create_schema
from listing_search.db.schemas import LISTING_COLUMNS, encode_embedding
from listing_search.services.listings import ListingService

DIMENSION = 8

# Listings with an embedding, in insertion order
EMBEDDED_IDS = [2595, 3831, 5121, 5136, 5178, 5203, 5803, 6848, 6872, 6990]
# Listings without one
UNEMBEDDED_IDS = [7064, 7097]
ALL_IDS = EMBEDDED_IDS + UNEMBEDDED_IDS

CORRUPT_ODD_ID = 9001      # blob length not a multiple of 4
CORRUPT_SHORT_ID = 9002    # whole floats, wrong dimension
ZERO_ID = 9003            # indexed all-zero embedding


def make_vector(i: int, dimension: int = DIMENSION) -> list[float]:
    # Small positive integers are exact in float32 and never give a zero vector
    return [float((i * 7 + j * 3) % 11 + 1) for j in range(dimension)]


def make_listing(listing_id: int, i: int) -> tuple:
    return (
        listing_id,
        f"Listing {listing_id}",
        f"Description of listing {listing_id}",
        "Quiet street" if i % 2 else None,
        ["Midtown", "Harlem", "Williamsburg"][i % 3],
        "Entire rental unit",
        "Entire home/apt" if i % 2 == 0 else "Private room",
        2 + i % 4,
        "1 bath",
        float(1 + i % 3) if i % 4 else None,
        1.5,
        '["Wifi", "Kitchen"]',
        f"${100 + i * 25}.00",
    )


def build_catalog(path, dimension: int = DIMENSION, corrupt: bool = False, zero: bool = False) -> None:
    path.touch()
    pool = ConnectionPool.in_file(path, size=1)
    try:
        with pool.checkout() as conn:
            create_schema(conn)
            placeholders = ", ".join("?" for _ in LISTING_COLUMNS)
            conn.executemany(
                f"INSERT INTO listings ({', '.join(LISTING_COLUMNS)}) VALUES ({placeholders})",
                [make_listing(listing_id, i) for i, listing_id in enumerate(ALL_IDS)],
            )
            conn.executemany(
                "INSERT INTO embeddings (listing_id, embedding) VALUES (?, ?)",
                [(listing_id, encode_embedding(make_vector(i, dimension)))
                 for i, listing_id in enumerate(EMBEDDED_IDS)],
            )
            conn.commit()
            create_index(conn, dimension)

            if corrupt:
                # Added after the index build: vec0 refuses malformed vectors
                conn.executemany(
                    f"INSERT INTO listings ({', '.join(LISTING_COLUMNS)}) VALUES ({placeholders})",
                    [make_listing(CORRUPT_ODD_ID, 0), make_listing(CORRUPT_SHORT_ID, 1)],
                )
                conn.executemany(
                    "INSERT INTO embeddings (listing_id, embedding) VALUES (?, ?)",
                    [
                        (CORRUPT_ODD_ID, encode_embedding(make_vector(0, dimension)) + b"\x00\x01"),
                        (CORRUPT_SHORT_ID, encode_embedding(make_vector(1, dimension - 1))),
                    ],
                )
                conn.commit()

            if zero:
                conn.execute(
                    f"INSERT INTO listings ({', '.join(LISTING_COLUMNS)}) VALUES ({placeholders})",
                    make_listing(ZERO_ID, 2),
                )
                conn.execute(
                    "INSERT INTO embeddings (listing_id, embedding) VALUES (?, ?)",
                    (ZERO_ID, encode_embedding([0.0] * dimension)),
                )
                conn.commit()
                create_index(conn, dimension)
    finally:
        pool.close()


@pytest.fixture(scope="session")
def test_settings():
    return Settings(EMBEDDING_DIM=DIMENSION, POOL_SIZE=4, WORKER_COUNT=4, CHECKOUT_TIMEOUT=5.0)


@pytest.fixture(scope="session")
def catalog_path(tmp_path_factory):
    path = tmp_path_factory.mktemp("catalog") / "listings.db"
    build_catalog(path)
    return path


@pytest.fixture(scope="session")
def corrupt_catalog_path(tmp_path_factory):
    path = tmp_path_factory.mktemp("corrupt") / "listings.db"
    build_catalog(path, corrupt=True)
    return path


@pytest.fixture(scope="session")
def zero_catalog_path(tmp_path_factory):
    path = tmp_path_factory.mktemp("zero") / "listings.db"
    build_catalog(path, zero=True)
    return path


@pytest.fixture
def pool(catalog_path):
    pool = ConnectionPool.in_file(catalog_path, size=4, timeout=5.0)
    yield pool
    pool.close()


@pytest.fixture
def service(catalog_path, test_settings):
    service = ListingService.from_file(catalog_path, test_settings)
    yield service
    service.close()


@pytest.fixture
def corrupt_service(corrupt_catalog_path, test_settings):
    service = ListingService.from_file(corrupt_catalog_path, test_settings)
    yield service
    service.close()


@pytest.fixture
def zero_service(zero_catalog_path, test_settings):
    service = ListingService.from_file(zero_catalog_path, test_settings)
    yield service
    service.close()
