from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from asset_review.errors import InvalidArgumentError
from asset_review.schemas import PageParams, error_envelope

CACHE_CONTROL = "public, max-age=15"


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def validation_message(exc: Any) -> str:
    errors = exc.errors() if hasattr(exc, "errors") else []
    if not errors:
        return "invalid query parameters"
    first = errors[0]
    loc = ".".join(str(x) for x in first.get("loc", ()) if x != "query")
    return f"{loc}: {first.get('msg', 'invalid value')}" if loc else str(first.get("msg", "invalid value"))


def require_project(project: str) -> str:
    project = (project or "").strip()
    if not project:
        raise InvalidArgumentError("project is required")
    return project


def page_params(page: int | None, per_page: int | None, *, default_per_page: int, max_per_page: int) -> PageParams:
    """Clamp raw paging input: page below 1 becomes 1, a missing or
    non-positive per_page takes the default, and per_page is capped."""
    if not per_page or per_page <= 0:
        per_page = default_per_page
    return PageParams(page=max(page or 1, 1), per_page=per_page).clamp(max_per_page=max_per_page)


def link_header(request: Request, *, page: int, per_page: int, page_last: int, total: int) -> str | None:
    if total <= 0:
        return None

    def _url(target: int) -> str:
        return str(request.url.include_query_params(page=target, per_page=per_page))

    links = []
    if page > 1:
        links.append(f'<{_url(1)}>; rel="first"')
        links.append(f'<{_url(min(page - 1, page_last))}>; rel="prev"')
    if page < page_last:
        links.append(f'<{_url(page + 1)}>; rel="next"')
    links.append(f'<{_url(page_last)}>; rel="last"')
    return ", ".join(links)
