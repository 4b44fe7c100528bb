"""FastAPI route definitions for the short-link service.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (201) or 422 / 500 / 503

    GET  /api/links/:code
        └─ LinkResponse (200) or 404 / 503

    GET  /:code
        └─ 307 Redirect or 404 / 503

Key Behaviours
===============
- Handlers only translate between HTTP and the engine; all decisions live in
  the allocation and resolution services.
- Allocation failures return a generic body without store details.
- 307 redirects preserve the request method.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from shortener.allocation import AllocationService
from shortener.dependencies import (
    RequestContext,
    ServiceManager,
    get_allocation_service,
    get_request_context,
    get_resolution_service,
    get_service_manager,
)
from shortener.enums import HealthStatus
from shortener.exceptions import CollisionRetryExhausted, DestinationValidationError, TransientStoreFailure
from shortener.resolution import ResolutionService
from shortener.schemas import HealthResponse, LinkResponse, ShortenRequest, ShortenResponse

__all__ = ["router", "build_short_url"]

router = APIRouter()

UNAVAILABLE_DETAIL = "Service temporarily unavailable"
ALLOCATION_FAILED_DETAIL = "Could not allocate a short code"
NOT_FOUND_DETAIL = "Short URL not found"


def build_short_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/{code}"


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    store_status = HealthStatus.HEALTHY
    try:
        await manager.store.ping()
    except TransientStoreFailure as exc:
        ctx.logger.error(f"Store health check failed: {exc}")
        store_status = HealthStatus.UNHEALTHY

    # The cache lives in-process; if this handler runs, it is available.
    cache_status = HealthStatus.HEALTHY
    status = HealthStatus.HEALTHY if store_status is HealthStatus.HEALTHY else HealthStatus.UNHEALTHY
    return HealthResponse(status=status, store=store_status, cache=cache_status)


@router.post("/api/shorten", response_model=ShortenResponse, status_code=201, tags=["links"])
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: AllocationService = Depends(get_allocation_service),
) -> ShortenResponse:
    try:
        code = await service.allocate(payload.url, payload.expires_at)
    except DestinationValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except CollisionRetryExhausted as exc:
        ctx.logger.error(f"Allocation exhausted after {ctx.get_duration():.1f}ms")
        raise HTTPException(status_code=500, detail=ALLOCATION_FAILED_DETAIL) from exc
    except TransientStoreFailure as exc:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc

    return ShortenResponse(
        code=code,
        short_url=build_short_url(ctx.settings.BASE_URL, code),
        destination=payload.url.strip(),
        expires_at=payload.expires_at,
    )


@router.get("/api/links/{code}", response_model=LinkResponse, tags=["links"])
async def get_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> LinkResponse:
    try:
        record = await service.describe(code)
    except TransientStoreFailure as exc:
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc
    if record is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)

    return LinkResponse(
        code=record.code,
        short_url=build_short_url(ctx.settings.BASE_URL, record.code),
        destination=record.destination,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


@router.get("/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ResolutionService = Depends(get_resolution_service),
) -> RedirectResponse:
    try:
        destination = await service.resolve(code)
    except TransientStoreFailure as exc:
        ctx.logger.error(f"Resolution of {code} failed: {exc}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_DETAIL) from exc

    if destination is None:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return RedirectResponse(url=destination, status_code=307)
