from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from asset_review.errors import InvalidArgumentError
from asset_review.query import EventListQuery
from asset_review.routes._deps import (
    CACHE_CONTROL,
    page_params,
    require_project,
    trace_id_from_request,
    validation_message,
)
from asset_review.schemas import ReviewEventsQuery, page_meta, success_envelope

router = APIRouter(prefix="/api/v1", tags=["reviews"])


@router.get("/projects/{project}/reviews")
def list_review_events(
    project: str,
    request: Request,
    root: str | None = Query(default=None),
    group_1: str | None = Query(default=None),
    relation: list[str] | None = Query(default=None),
    phase: list[str] | None = Query(default=None),
    take: str | None = Query(default=None),
    modified_since: str | None = Query(default=None),
    page: int = Query(default=1),
    per_page: int | None = Query(default=None),
):
    profile = request.app.state.profile
    project = require_project(project)
    paging = page_params(page, per_page, default_per_page=profile.default_per_page, max_per_page=profile.max_per_page)
    try:
        params = ReviewEventsQuery(
            root=root,
            group_1=group_1,
            relations=relation,
            phases=phase,
            take=take,
            modified_since=modified_since or None,
            page=paging.page,
            per_page=paging.per_page,
        )
    except ValidationError as exc:
        raise InvalidArgumentError(validation_message(exc)) from exc

    events, total = request.app.state.review_queries.list_review_events(
        EventListQuery(
            project=project,
            root=params.root,
            group_1=params.group_1,
            relations=tuple(params.relations),
            phases=tuple(params.phases),
            take=params.take,
            modified_since=params.modified_since,
            page=params.page,
            per_page=params.per_page,
        ),
        timeout_s=profile.query_timeout_s,
    )
    data = {
        "items": [event.to_dict() for event in events],
        **page_meta(page=params.page, per_page=params.per_page, total=total),
    }
    response = JSONResponse(content=success_envelope(data, trace_id_from_request(request)))
    if params.modified_since is None:
        response.headers["Cache-Control"] = CACHE_CONTROL
    return response
