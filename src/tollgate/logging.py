"""Logging configuration.

Everything goes through one ``dictConfig`` so the API process, the worker and
uvicorn's own loggers share handlers and all carry the request ID.
"""

import logging.config

from tollgate.config import settings

REQUEST_FILTER = "tollgate.api.middleware.RequestContextFilter"

# Libraries that log every connection or SMTP exchange at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "aiosmtplib", "saq")


def _formats() -> tuple[str, str]:
    """Return (application, access) format strings for the environment."""
    if settings.is_development:
        return (
            "%(levelprefix)s %(name)s - %(message)s",
            '%(levelprefix)s "%(request_line)s" %(status_code)s',
        )
    return (
        "%(asctime)s %(levelprefix)s %(name)s [%(request_id)s] %(message)s",
        '%(asctime)s %(levelprefix)s %(client_addr)s - "%(request_line)s" %(status_code)s',
    )


def build_log_config(*, with_uvicorn: bool = True) -> dict:
    """Build the dictConfig mapping for the current settings."""
    app_format, access_format = _formats()

    loggers: dict[str, dict] = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    if with_uvicorn:
        loggers["uvicorn.error"] = {"handlers": ["app"], "level": "INFO", "propagate": False}
        loggers["uvicorn.access"] = {"handlers": ["access"], "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request": {"()": REQUEST_FILTER}},
        "formatters": {
            "app": {"()": "uvicorn.logging.DefaultFormatter", "fmt": app_format},
            "access": {"()": "uvicorn.logging.AccessFormatter", "fmt": access_format},
        },
        "handlers": {
            "app": {
                "class": "logging.StreamHandler",
                "formatter": "app",
                "filters": ["request"],
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": loggers,
        "root": {"handlers": ["app"], "level": settings.log_level},
    }


def get_uvicorn_log_config() -> dict:
    """Config handed to ``uvicorn.run(log_config=...)``."""
    return build_log_config(with_uvicorn=True)


def setup_logging() -> None:
    """Configure logging for processes that uvicorn doesn't start (worker, CLI)."""
    logging.config.dictConfig(build_log_config(with_uvicorn=False))
