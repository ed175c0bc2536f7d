import re
import time
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from ..config import Settings
from ..deps import get_rate_limiter, get_session_factory, get_settings
from ..errors import NotFoundError, RateLimitExceeded, ValidationError
from ..schemas import ErrorResponse, WidgetConfig, normalize_widget_settings
from ..services.rate_limit import RateLimiter, RateLimitResult
from ..services.usage import record_widget_load
from ..stores import TenantStore, WidgetEventStore

router = APIRouter(
    tags=["widget"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def referrer_origin(request: Request) -> Optional[str]:
    referer = request.headers.get("referer")
    if not referer:
        return None
    parsed = urlparse(referer)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _rate_headers(rate: RateLimitResult) -> dict:
    return {
        "X-RateLimit-Limit": str(rate.limit),
        "X-RateLimit-Remaining": str(rate.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(rate.reset_at, tz=timezone.utc).isoformat(),
    }


@router.get("/tenant/{tenant_id}", response_model=WidgetConfig)
async def widget_config(
    tenant_id: str,
    request: Request,
    background: BackgroundTasks,
    session_factory=Depends(get_session_factory),
    limiter: RateLimiter = Depends(get_rate_limiter),
    cfg: Settings = Depends(get_settings),
):
    if not UUID_RE.match(tenant_id):
        raise ValidationError(
            "Invalid tenant ID format",
            details=f'The tenant ID "{tenant_id}" is not a valid UUID.',
        )

    rate = limiter.check(client_identifier(request))
    if not rate.allowed:
        raise RateLimitExceeded(
            "Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(rate.retry_after(time.time())), **_rate_headers(rate)},
        )

    tenant = await TenantStore(session_factory).get(tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found", details=f"No tenant found with ID: {tenant_id}")

    config = WidgetConfig(
        tenantId=tenant.id,
        name=tenant.name or "AI Assistant",
        settings=normalize_widget_settings(tenant.settings),
    )

    background.add_task(
        record_widget_load,
        WidgetEventStore(session_factory),
        tenant.id,
        referrer_origin(request),
        request.headers.get("user-agent"),
    )

    max_age = cfg.WIDGET_CACHE_SECONDS
    headers = {"Cache-Control": f"public, max-age={max_age}, s-maxage={max_age}", **_rate_headers(rate)}
    return JSONResponse(config.model_dump(), headers=headers)
