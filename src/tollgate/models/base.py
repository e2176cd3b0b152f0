"""Shared column helpers for the table models."""

from datetime import UTC, datetime
from typing import Any

from nanoid import generate as nanoid_generate
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def generate_nanoid() -> str:
    """21-char URL-safe id used for user primary keys."""
    return nanoid_generate()


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from drivers that drop the offset."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def timestamp_field(*, now: bool = False, **kwargs: Any) -> Any:
    """A timezone-aware column; ``now=True`` makes it non-null and defaults it to utcnow."""
    if now:
        kwargs.setdefault("default_factory", utcnow)
        kwargs.setdefault("nullable", False)
    return Field(sa_type=DateTime(timezone=True), **kwargs)  # type: ignore[call-overload]


class TimestampMixin(SQLModel):
    """Adds created_at and updated_at."""

    created_at: datetime = timestamp_field(now=True)
    updated_at: datetime = timestamp_field(now=True, sa_column_kwargs={"onupdate": utcnow})
