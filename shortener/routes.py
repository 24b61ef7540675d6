"""FastAPI route definitions for the URL shortener REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shortener/                 (accessToken cookie)
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (200) or 400/401

    GET    /api/shortener/r/:code
        └─ 307 Redirect or 404

    GET    /api/user/url/list              (accessToken cookie)
        └─ URLListResponse (200) or 401

    DELETE /api/user/url/r/:code           (accessToken cookie)
        └─ DeleteResponse (200) or 401/404

    GET    /api/user/authCheck            (accessToken cookie)
        └─ AuthCheckResponse (200) or 401

Key Behaviours
===============
- Domain errors raised by the service are translated to HTTP status codes
  here; store outages and code-space exhaustion are handled app-wide in
  ``shortener.main``.
- Deleting a code owned by someone else answers 404, exactly like deleting
  a code that never existed.
- 307 redirects preserve the HTTP method.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from shortener.auth import get_current_user_id
from shortener.dependencies import RequestContext, get_request_context, get_shortener_service
from shortener.enums import HealthStatus
from shortener.exceptions import ForbiddenError, InvalidURLError, NotFoundError
from shortener.schemas import (
    AuthCheckResponse,
    DeleteResponse,
    HealthResponse,
    ShortenRequest,
    ShortenResponse,
    URLItem,
    URLListResponse,
)
from shortener.service import ShortenerService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    manager = ctx.service_manager
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await manager.store.ping()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await manager.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shortener/", response_model=ShortenResponse, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    user_id: str = Depends(get_current_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> ShortenResponse:
    ctx.add_tag("url_creation")
    try:
        record = await service.create(user_id, payload.url)
    except InvalidURLError as exc:
        ctx.logger.warning(
            f"URL shortening rejected: {exc}",
            extra={"operation": "create_short_url", "error": exc.error_code, "duration_ms": ctx.get_duration()},
        )
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    ctx.logger.info(
        f"URL shortened successfully: {record.code}",
        extra={"operation": "create_short_url", "short_code": record.code, "duration_ms": ctx.get_duration()},
    )
    return ShortenResponse(url=record.code)


@router.get("/api/shortener/r/{code}", tags=["redirect"])
async def redirect_to_url(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")
    origin_url = await service.resolve(code)
    if origin_url is None:
        ctx.logger.warning(
            f"Redirect failed - short code not found: {code}",
            extra={"operation": "redirect", "short_code": code, "error": "not_found"},
        )
        raise HTTPException(status_code=404, detail="Short URL not found")

    ctx.logger.debug(
        f"Redirect successful: {code} -> {origin_url}",
        extra={"operation": "redirect", "short_code": code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=origin_url, status_code=307)


@router.get("/api/user/url/list", response_model=URLListResponse, tags=["urls"])
async def list_urls(
    user_id: str = Depends(get_current_user_id),
    service: ShortenerService = Depends(get_shortener_service),
) -> URLListResponse:
    records = await service.list(user_id)
    return URLListResponse(urls=[URLItem.from_model(record) for record in records])


@router.delete("/api/user/url/r/{code}", response_model=DeleteResponse, tags=["urls"])
async def delete_url(
    code: str,
    user_id: str = Depends(get_current_user_id),
    ctx: RequestContext = Depends(get_request_context),
    service: ShortenerService = Depends(get_shortener_service),
) -> DeleteResponse:
    ctx.add_tag("url_deletion")
    try:
        await service.delete(user_id, code)
    except (NotFoundError, ForbiddenError) as exc:
        ctx.logger.warning(
            f"URL deletion refused: {exc}",
            extra={"operation": "delete_short_url", "short_code": code, "error": exc.error_code},
        )
        raise HTTPException(status_code=404, detail="Short URL not found") from exc

    return DeleteResponse(code=code)


@router.get("/api/user/authCheck", response_model=AuthCheckResponse, tags=["auth"])
async def auth_check(user_id: str = Depends(get_current_user_id)) -> AuthCheckResponse:
    return AuthCheckResponse(id=user_id)
