"""FastAPI application entrypoint."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tollgate import __version__
from tollgate.api.middleware import REQUEST_ID_HEADER, RequestContextMiddleware
from tollgate.api.router import api_router
from tollgate.config import settings
from tollgate.database import close_db
from tollgate.errors import RateLimited, TollgateError

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    if not settings.sentry_dsn:
        return

    import sentry_sdk

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        release=f"tollgate@{__version__}",
        traces_sample_rate=0.1 if settings.is_production else 1.0,
        # Request bodies carry passwords and tokens
        send_default_pii=False,
        max_request_body_size="never",
    )
    logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Schema is managed by Alembic; nothing to create at startup
    yield
    await close_db()


async def handle_tollgate_error(_request: Request, exc: TollgateError) -> JSONResponse:
    """Render service errors as ``{"detail", "code"}`` with the error's status."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")

    headers: dict[str, str] = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.body().model_dump(),
        headers=headers or None,
    )


def create_app() -> FastAPI:
    init_sentry()

    docs = settings.debug_enabled
    application = FastAPI(
        title="Tollgate API",
        description="Sessions and token-gated email and password changes",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs" if docs else None,
        redoc_url="/api/redoc" if docs else None,
        openapi_url="/api/openapi.json" if docs else None,
    )
    application.add_exception_handler(TollgateError, handle_tollgate_error)  # type: ignore[arg-type]

    application.add_middleware(RequestContextMiddleware)  # type: ignore[arg-type]
    application.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )

    application.include_router(api_router, prefix="/api")
    return application


app = create_app()
