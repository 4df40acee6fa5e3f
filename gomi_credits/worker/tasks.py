"""ARQ job definitions."""

from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings

from gomi_credits.core.config import get_settings
from gomi_credits.core.logging import configure_logging, get_logger
from gomi_credits.db.init import init_db
from gomi_credits.services import credits as credits_service

log = get_logger(__name__)


async def sweep_expired_trials(ctx: dict[str, Any]) -> int:
    """Cron job: zero expired trial pools so stored balances match what reads report."""
    log.info("job_start", job="sweep_expired_trials")
    swept = await credits_service.sweep_expired_trials()
    log.info("job_done", job="sweep_expired_trials", swept=swept)
    return swept


async def startup(ctx: dict) -> None:
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )
