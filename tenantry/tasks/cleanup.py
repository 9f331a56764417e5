"""
ARQ background tasks: periodic cleanup of expired sessions and invitations.

Run with: arq tenantry.tasks.cleanup.WorkerSettings
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from tenantry.core.config import get_settings
from tenantry.core.database import get_session_context
from tenantry.core.logging import configure_logging
from tenantry.models.base import utcnow
from tenantry.services.organizations import expire_stale_invitations
from tenantry.services.refresh_tokens import RefreshTokenStore

log = structlog.get_logger()
settings = get_settings()


async def purge_expired_refresh_tokens(ctx: dict) -> int:
    """Delete refresh token rows past their expiry. Returns the number removed."""
    async with get_session_context() as session:
        count = await RefreshTokenStore(session).delete_expired(utcnow())

    if count:
        log.info("cleanup.refresh_tokens_purged", count=count)
    return count


async def expire_pending_invitations(ctx: dict) -> int:
    """Move pending invitations past their expiry to `expired`."""
    async with get_session_context() as session:
        count = await expire_stale_invitations(utcnow(), session)

    if count:
        log.info("cleanup.invitations_expired", count=count)
    return count


async def startup(ctx: dict) -> None:
    configure_logging(settings.log_level, settings.log_format)
    log.info("worker.starting", environment=settings.environment)


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [purge_expired_refresh_tokens, expire_pending_invitations]
    cron_jobs = [
        cron(purge_expired_refresh_tokens, minute=0, run_at_startup=True),
        cron(expire_pending_invitations, minute=5),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
