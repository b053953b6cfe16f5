from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from asset_review.models import coerce_utc


def split_csv(value: Any) -> list[str]:
    """Accept ``a,b`` strings or repeated parameters; trim, lower-case, drop empties."""
    if value is None:
        return []
    parts = value if isinstance(value, (list, tuple)) else [value]
    out: list[str] = []
    for part in parts:
        for item in str(part).split(","):
            item = item.strip().lower()
            if item:
                out.append(item)
    return out


class PageParams(BaseModel):
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=15, ge=1)

    def clamp(self, *, max_per_page: int) -> "PageParams":
        return PageParams(page=self.page, per_page=min(self.per_page, max_per_page))

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class AssetPivotQuery(PageParams):
    root: str | None = None
    name: str = ""
    phase: str = "none"
    sort: str = "group_1"
    dir: str = "asc"
    approval_statuses: list[str] = Field(default_factory=list)
    work_statuses: list[str] = Field(default_factory=list)

    @field_validator("approval_statuses", "work_statuses", mode="before")
    @classmethod
    def _csv(cls, value: Any) -> list[str]:
        return split_csv(value)

    @field_validator("dir", mode="before")
    @classmethod
    def _direction(cls, value: Any) -> str:
        return "desc" if str(value or "").strip().lower() == "desc" else "asc"

    @field_validator("sort", "phase", "name", mode="before")
    @classmethod
    def _trim(cls, value: Any) -> str:
        return str(value or "").strip()


class ReviewEventsQuery(PageParams):
    root: str | None = None
    group_1: str | None = None
    relations: list[str] = Field(default_factory=list)
    phases: list[str] = Field(default_factory=list)
    take: str | None = None
    modified_since: datetime | None = None

    @field_validator("relations", mode="before")
    @classmethod
    def _relations(cls, value: Any) -> list[str]:
        if value is None:
            return []
        parts = value if isinstance(value, (list, tuple)) else [value]
        return [x.strip() for part in parts for x in str(part).split(",") if x.strip()]

    @field_validator("phases", mode="before")
    @classmethod
    def _phases(cls, value: Any) -> list[str]:
        return split_csv(value)

    @field_validator("modified_since", mode="after")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return coerce_utc(value)


def page_meta(*, page: int, per_page: int, total: int) -> dict[str, Any]:
    page_last = max((total + per_page - 1) // per_page, 1)
    return {
        "page": page,
        "per_page": per_page,
        "page_last": page_last,
        "has_next": page < page_last,
        "has_prev": page > 1,
        "total": total,
    }


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
) -> dict[str, Any]:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "class": error_class,
        },
        "meta": {
            "trace_id": trace_id,
        },
    }
