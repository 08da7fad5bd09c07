import argparse
import sys
from pathlib import Path

# Fix Path
backend_dir = Path(__file__).resolve().parent.parent
sys.path.append(str(backend_dir))

from listing_search.core.config import settings
from listing_search.core.errors import ListingStoreError
from listing_search.core.logging import configure_logging
from listing_search.db.client import ConnectionPool
from listing_search.db.schema import create_index
import structlog

logger = structlog.get_logger()


def build(database: str, dimension: int) -> int:
    pool = ConnectionPool.in_file(database, size=1)
    try:
        with pool.checkout() as conn:
            return create_index(conn, dimension)
    finally:
        pool.close()


def main():
    parser = argparse.ArgumentParser(description="Build the embeddings ANN index of a listings database")
    parser.add_argument("database", help="Path to the SQLite listings database")
    parser.add_argument("--dimension", type=int, default=settings.EMBEDDING_DIM)
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)
    logger.info("Building index", database=args.database, dimension=args.dimension)
    try:
        added = build(args.database, args.dimension)
    except ListingStoreError as e:
        logger.error(f"Index build failed: {e}")
        sys.exit(1)
    logger.info("Index build complete", added=added)

if __name__ == "__main__":
    main()
