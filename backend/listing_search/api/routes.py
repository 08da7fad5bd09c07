from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from listing_search.core.errors import InvalidArgumentError, ListingStoreError, NotFoundError
from listing_search.db.repository import MAX_RESULTS
from listing_search.db.schemas import ListingDetails, SearchResult
from listing_search.services.listings import ListingService

router = APIRouter()
logger = structlog.get_logger()


class SearchListing(BaseModel):
    """Similarity search params"""
    similar_to: int = Field(..., gt=0, description="Value to search similar to given id", examples=[39282])
    max_results: int = Field(..., gt=0, le=MAX_RESULTS, description="Maximum number of results to return", examples=[5])


class SearchEmbedding(BaseModel):
    embedding: list[float] = Field(..., description="Query vector of the catalog's embedding dimension")
    max_results: int = Field(10, gt=0, le=MAX_RESULTS)


class Listing(BaseModel):
    """Listing's outside representation"""
    id: int = Field(..., examples=[1])
    name: str | None = Field(None, description="Title of the listing", examples=["Apartment at UWS"])
    description: str | None = Field(None, examples=["Beautiful apartment with a view of the Hudson River"])
    bedrooms: int | None = Field(None, description="Number of bedrooms", examples=[2])
    price: str | None = Field(None, description="Price per night", examples=["$200.00"])
    score: float | None = Field(None, examples=[0.98])

    @classmethod
    def from_details(cls, details: ListingDetails, score: float | None = None) -> "Listing":
        return cls(
            id=details.id,
            name=details.name,
            description=details.description,
            bedrooms=int(details.bedrooms) if details.bedrooms is not None else None,
            price=details.price,
            score=score,
        )

    @classmethod
    def from_result(cls, result: SearchResult) -> "Listing":
        return cls.from_details(result.listing_details, score=result.score)


def get_listing_service(request: Request) -> ListingService:
    return request.app.state.listing_service


@router.get("/ping")
async def ping():
    return "pong"


@router.get("/health")
async def health_check(service: ListingService = Depends(get_listing_service)):
    return {"status": "ok", "indexed": await service.count_indexed()}


@router.get("/listing/{id}", response_model=Listing, response_model_exclude_none=True)
async def get_listing(id: int = Path(..., gt=0, description="Unique storage id of Listing"),
                      service: ListingService = Depends(get_listing_service)):
    """Return found listing by id from storage."""
    listing = await service.get_listing(id)
    return Listing.from_details(listing)


@router.get("/listings", response_model=list[Listing], response_model_exclude_none=True)
async def get_listings(limit: int = Query(100, gt=0, le=1000),
                       service: ListingService = Depends(get_listing_service)):
    listings = await service.get_listings(limit)
    return [Listing.from_details(l) for l in listings]


@router.post("/listing", response_model=list[Listing], response_model_exclude_none=True)
async def search_similar(query: SearchListing, service: ListingService = Depends(get_listing_service)):
    """Return listings similar to the reference listing, best match first."""
    results = await service.search_similar(query.similar_to, query.max_results)
    return [Listing.from_result(r) for r in results]


@router.post("/listing/search", response_model=list[Listing], response_model_exclude_none=True)
async def search_similar_to_embedding(query: SearchEmbedding,
                                      service: ListingService = Depends(get_listing_service)):
    results = await service.search_similar_to_embedding(query.embedding, query.max_results)
    return [Listing.from_result(r) for r in results]


async def not_found_handler(request: Request, exc: NotFoundError):
    logger.info("Not found", path=request.url.path, kind=exc.kind, key=exc.key)
    return JSONResponse(status_code=404, content={"NotFound": f"id = {exc.key}"})


async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
    return JSONResponse(status_code=422, content={"InvalidArgument": str(exc)})


async def store_error_handler(request: Request, exc: ListingStoreError):
    # Internal details stay in the logs
    logger.error("Request failed", path=request.url.path, error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(status_code=500, content="ServerError")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(InvalidArgumentError, invalid_argument_handler)
    app.add_exception_handler(ListingStoreError, store_error_handler)
