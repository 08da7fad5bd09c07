import argparse
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from listing_search.api.routes import register_exception_handlers, router
from listing_search.core.config import Settings, settings
from listing_search.core.errors import StartupFatalError
from listing_search.core.logging import configure_logging
from listing_search.services.listings import ListingService

logger = structlog.get_logger()


def create_app(service: ListingService | None = None, app_settings: Settings = settings) -> FastAPI:
    """
    Build the API around a listing service.

    Without a service one is opened from DATABASE_PATH at startup and closed
    at shutdown. A service passed in stays owned by the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if service is None:
            if not app_settings.DATABASE_PATH:
                raise StartupFatalError("DATABASE_PATH is not configured")
            owned = ListingService.from_file(app_settings.DATABASE_PATH, app_settings)
            app.state.listing_service = owned
        else:
            app.state.listing_service = service
        try:
            yield
        finally:
            if owned is not None:
                owned.close()

    app = FastAPI(title="Listing Search API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    register_exception_handlers(app)
    return app


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="listing-search", description="Serve listing lookup and similarity search")
    parser.add_argument("database", help="Path to the SQLite listings database")
    parser.add_argument("--host", default=settings.HOST)
    parser.add_argument("--port", type=int, default=settings.PORT)
    parser.add_argument("--pool-size", type=positive_int, default=settings.POOL_SIZE)
    parser.add_argument("--workers", type=positive_int, default=settings.WORKER_COUNT)
    parser.add_argument("--dimension", type=positive_int, default=settings.EMBEDDING_DIM)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    app_settings = settings.model_copy(update={
        "DATABASE_PATH": args.database,
        "POOL_SIZE": args.pool_size,
        "WORKER_COUNT": args.workers,
        "EMBEDDING_DIM": args.dimension,
    })

    try:
        service = ListingService.from_file(args.database, app_settings)
    except StartupFatalError as exc:
        logger.error("Failed to open database", database=args.database, error=str(exc))
        return 1

    import uvicorn
    try:
        uvicorn.run(create_app(service, app_settings), host=args.host, port=args.port)
    finally:
        service.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
