from datetime import date, datetime, timezone
from typing import Callable, Optional

from ..logging_config import get_logger
from ..stores import UsageStore, WidgetEventStore

logger = get_logger(__name__)

INGEST_UPLOAD_ENDPOINT = "/ingest/upload"
INGEST_URL_ENDPOINT = "/ingest/url"
CHAT_ENDPOINT = "/chat"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UsageTracker:
    """Best-effort per-tenant, per-endpoint, per-day request counter.

    Failures are logged and swallowed; tracking never fails the request it
    belongs to. Routes submit `track` as a FastAPI background task.
    """

    def __init__(self, store: UsageStore, today: Callable[[], date] = utc_today):
        self.store = store
        self.today = today

    async def track(self, tenant_id: str, endpoint: str, user_id: Optional[str] = None) -> None:
        try:
            count = await self.store.increment(tenant_id, endpoint, self.today(), user_id=user_id)
            logger.debug("Usage %s %s -> %d", tenant_id, endpoint, count)
        except Exception:
            logger.warning("Failed to track usage for tenant %s on %s", tenant_id, endpoint, exc_info=True)


async def record_widget_load(
    store: WidgetEventStore,
    tenant_id: str,
    referrer_origin: Optional[str],
    user_agent: Optional[str],
) -> None:
    """Telemetry for widget loads; best effort like usage tracking."""
    try:
        await store.record(tenant_id, "widget_load", referrer_origin=referrer_origin, user_agent=user_agent)
    except Exception:
        logger.warning("Telemetry error (non-critical) for tenant %s", tenant_id, exc_info=True)
