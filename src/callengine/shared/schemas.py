"""
Base schemas shared by the HTTP surface.
"""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from callengine.shared.database import ensure_utc
from callengine.shared.exceptions import ValidationError

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys (the PBX and UI wire format)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Page(CamelModel, Generic[T]):
    """Paginated list envelope."""

    data: list[T]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)


def clamp_page(page: int | None, page_size: int | None, default_size: int, max_size: int) -> tuple[int, int]:
    """Normalize pagination parameters to ``(page, page_size)``."""
    page = max(1, page or 1)
    page_size = page_size or default_size
    return page, max(1, min(page_size, max_size))


def validate_range(from_: datetime, to: datetime) -> tuple[datetime, datetime]:
    """Normalize a ``[from_, to]`` range to UTC, rejecting inverted ranges."""
    from_, to = ensure_utc(from_), ensure_utc(to)
    if from_ > to:
        raise ValidationError(
            message="'from' must not be after 'to'",
            details={"from": from_.isoformat(), "to": to.isoformat()},
        )
    return from_, to
