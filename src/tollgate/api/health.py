"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.deps import SessionDep
from tollgate.services.email import ConsoleEmailBackend, email_service

logger = logging.getLogger(__name__)

router = APIRouter()


def database_down() -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "database": "disconnected"})


async def database_reachable(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database probe failed: {e!r}")
        return False
    return True


@router.get("")
async def health_check():
    """Liveness: the process is up and serving."""
    return {"status": "ok"}


@router.get("/db")
async def health_check_db(session: SessionDep):
    if not await database_reachable(session):
        return database_down()
    return {"status": "ok", "database": "connected"}


@router.get("/ready")
async def readiness_check(session: SessionDep):
    """Readiness for load balancers.

    503 when the database is unreachable. With the console email backend
    nothing leaves the process, so the instance reports ``degraded``: tokens
    can be issued but nobody will receive the links.
    """
    if not await database_reachable(session):
        return database_down()

    delivers = not isinstance(email_service.backend, ConsoleEmailBackend)
    return {
        "status": "ok" if delivers else "degraded",
        "database": "connected",
        "email": "configured" if delivers else "console",
    }
