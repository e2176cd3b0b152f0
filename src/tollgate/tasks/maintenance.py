"""Periodic cleanup of expired sessions and spent tokens.

Expired sessions and tokens are already rejected at lookup time; these jobs
only keep the tables from growing.
"""

import logging
from datetime import timedelta
from typing import Any

from tollgate.config import settings
from tollgate.database import get_session_context
from tollgate.services.sessions import sweep_expired_sessions
from tollgate.services.tokens import sweep_expired_tokens

logger = logging.getLogger(__name__)

# Timeout for maintenance tasks (5 minutes)
MAINTENANCE_TIMEOUT_SECONDS = 5 * 60

# Cron schedule for the sweeps
SWEEP_CRON = "*/15 * * * *"


async def sweep_sessions(ctx: dict[str, Any]) -> dict[str, Any]:
    """Delete expired sessions.

    Args:
        ctx: SAQ context

    Returns:
        Dict with sweep results
    """
    async with get_session_context() as session:
        try:
            deleted = await sweep_expired_sessions(session)
            await session.commit()
        except Exception as e:
            await session.rollback()
            error = f"Session sweep failed: {e}"
            logger.exception(error)
            return {"success": False, "error": error}

    logger.info(f"Session sweep complete: {deleted} expired sessions deleted")
    return {"success": True, "sessions_deleted": deleted}


async def sweep_tokens(
    ctx: dict[str, Any],
    retention_days: int | None = None,
) -> dict[str, Any]:
    """Delete tokens that expired or were spent before the retention window.

    Args:
        ctx: SAQ context
        retention_days: Override for ``settings.token_retention_days``

    Returns:
        Dict with sweep results
    """
    days = settings.token_retention_days if retention_days is None else retention_days
    async with get_session_context() as session:
        try:
            deleted = await sweep_expired_tokens(session, timedelta(days=days))
            await session.commit()
        except Exception as e:
            await session.rollback()
            error = f"Token sweep failed: {e}"
            logger.exception(error)
            return {"success": False, "error": error}

    logger.info(f"Token sweep complete: {deleted} tokens deleted (retention {days}d)")
    return {"success": True, "tokens_deleted": deleted, "retention_days": days}
