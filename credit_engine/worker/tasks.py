"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from credit_engine.core.config import get_settings
from credit_engine.core.logging import configure_logging, get_logger
from credit_engine.services.reconciliation import report_unreconciled
from credit_engine.stores.base import Stores, get_stores

log = get_logger(__name__)


async def report_unreconciled_orders(ctx: dict[str, Any]) -> int:
    """Cron: log and audit orders stuck in VERIFIED. Never credits."""
    stores: Stores = ctx.get("stores") or get_stores()
    limit = get_settings().reconciliation_report_limit
    log.info("job_start", job="report_unreconciled_orders")
    count = await report_unreconciled(stores, limit=limit)
    log.info("job_done", job="report_unreconciled_orders", count=count)
    return count


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(debug=settings.debug)
    if settings.store_backend == "mongo":
        from credit_engine.db.init import init_db
        await init_db()
    ctx["stores"] = get_stores()


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
