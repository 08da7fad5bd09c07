import asyncio
import concurrent.futures
from functools import partial
from pathlib import Path
from typing import Callable, Sequence, TypeVar

import structlog

from listing_search.core.config import Settings, settings as default_settings
from listing_search.db.client import ConnectionPool
from listing_search.db.repository import ListingRepository
from listing_search.db.schemas import ListingDetails, SearchResult, validate_schema

logger = structlog.get_logger()

T = TypeVar("T")


class ListingService:
    """
    Async front for ListingRepository.

    Every call is dispatched once onto a bounded thread pool; each worker
    checks out its own connection, so up to min(workers, connections) queries
    run in parallel. Repository errors reach the caller unchanged.
    """

    def __init__(self, repository: ListingRepository, workers: int | None = None):
        self.repository = repository
        self.workers = workers or repository.pool.size
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="listing-db"
        )

    @classmethod
    def from_file(cls, path: str | Path, settings: Settings = default_settings) -> "ListingService":
        pool = ConnectionPool.in_file(path, size=settings.POOL_SIZE, timeout=settings.CHECKOUT_TIMEOUT)
        try:
            with pool.checkout() as conn:
                validate_schema(conn)
        except Exception:
            pool.close()
            raise
        return cls(ListingRepository(pool, settings.EMBEDDING_DIM), workers=settings.worker_count)

    @classmethod
    def in_memory(cls, settings: Settings = default_settings) -> "ListingService":
        pool = ConnectionPool.in_memory(size=settings.POOL_SIZE, timeout=settings.CHECKOUT_TIMEOUT)
        return cls(ListingRepository(pool, settings.EMBEDDING_DIM), workers=settings.worker_count)

    async def _run(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    async def get_listings(self, limit: int) -> list[ListingDetails]:
        return await self._run(self.repository.get_listings, limit)

    async def get_listing(self, listing_id: int) -> ListingDetails:
        return await self._run(self.repository.get_listing_by_id, listing_id)

    async def get_embedding(self, listing_id: int) -> list[float]:
        return await self._run(self.repository.get_embedding, listing_id)

    async def search_similar(self, listing_id: int, limit: int) -> list[SearchResult]:
        return await self._run(self.repository.get_similar_to_listing, listing_id, limit)

    async def search_similar_to_embedding(self, embedding: Sequence[float], limit: int) -> list[SearchResult]:
        return await self._run(self.repository.get_similar_to_embedding, list(embedding), limit)

    async def count_indexed(self) -> int:
        return await self._run(self.repository.count_indexed)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.repository.pool.close()
        logger.info("Listing service closed")
