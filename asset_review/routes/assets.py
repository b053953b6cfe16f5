from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from asset_review.errors import InvalidArgumentError
from asset_review.pivot_service import AssetPivotRequest
from asset_review.routes._deps import (
    CACHE_CONTROL,
    link_header,
    page_params,
    require_project,
    trace_id_from_request,
    validation_message,
)
from asset_review.schemas import AssetPivotQuery, page_meta, success_envelope

router = APIRouter(prefix="/api/v1", tags=["assets"])


@router.get("/projects/{project}/reviews/assets/pivot")
def get_asset_pivot(
    project: str,
    request: Request,
    page: int = Query(default=1),
    per_page: int | None = Query(default=None),
    sort: str = Query(default="group_1"),
    dir: str = Query(default="asc"),
    phase: str = Query(default="none"),
    name: str = Query(default=""),
    root: str | None = Query(default=None),
    approval_status: list[str] | None = Query(default=None),
    appr: list[str] | None = Query(default=None),
    work_status: list[str] | None = Query(default=None),
    work: list[str] | None = Query(default=None),
):
    profile = request.app.state.profile
    project = require_project(project)
    paging = page_params(page, per_page, default_per_page=profile.default_per_page, max_per_page=profile.max_per_page)
    try:
        params = AssetPivotQuery(
            page=paging.page,
            per_page=paging.per_page,
            sort=sort,
            dir=dir,
            phase=phase,
            name=name,
            root=root,
            approval_statuses=[*(approval_status or []), *(appr or [])],
            work_statuses=[*(work_status or []), *(work or [])],
        )
    except ValidationError as exc:
        raise InvalidArgumentError(validation_message(exc)) from exc

    result = request.app.state.pivot_service.get_asset_pivot_page(
        AssetPivotRequest(
            project=project,
            root=params.root,
            name_prefix=params.name,
            preferred_phase=params.phase,
            approval_statuses=params.approval_statuses,
            work_statuses=params.work_statuses,
            order_key=params.sort,
            direction=params.dir,
            limit=paging.per_page,
            offset=paging.offset,
        ),
        timeout_s=profile.query_timeout_s,
    )
    meta = page_meta(page=paging.page, per_page=paging.per_page, total=result.total)
    data = {
        **result.to_dict(),
        **meta,
        "project": project,
        "root": (params.root or "").strip() or profile.default_root,
        "phase": params.phase.lower() or "none",
    }
    response = JSONResponse(content=success_envelope(data, trace_id_from_request(request)))
    response.headers["Cache-Control"] = CACHE_CONTROL
    link = link_header(
        request,
        page=paging.page,
        per_page=paging.per_page,
        page_last=meta["page_last"],
        total=result.total,
    )
    if link:
        response.headers["Link"] = link
    return response


@router.get("/projects/{project}/reviews/assets")
def list_assets(
    project: str,
    request: Request,
    root: str | None = Query(default=None),
    page: int = Query(default=1),
    per_page: int | None = Query(default=None),
):
    profile = request.app.state.profile
    project = require_project(project)
    params = page_params(page, per_page, default_per_page=profile.default_per_page, max_per_page=profile.max_per_page)
    keys, total = request.app.state.review_queries.list_assets(
        project,
        root=root,
        page=params.page,
        per_page=params.per_page,
        timeout_s=profile.query_timeout_s,
    )
    data = {
        "items": [key.to_dict() for key in keys],
        **page_meta(page=params.page, per_page=params.per_page, total=total),
    }
    response = JSONResponse(content=success_envelope(data, trace_id_from_request(request)))
    response.headers["Cache-Control"] = CACHE_CONTROL
    return response


@router.get("/projects/{project}/assets/{asset}/relations/{relation}/reviewInfos")
def list_asset_review_infos(
    project: str,
    asset: str,
    relation: str,
    request: Request,
    root: str | None = Query(default=None),
):
    profile = request.app.state.profile
    project = require_project(project)
    rows = request.app.state.review_queries.list_asset_review_infos(
        project,
        asset,
        relation,
        root=root,
        timeout_s=profile.query_timeout_s,
    )
    return success_envelope({"items": [row.to_dict() for row in rows]}, trace_id_from_request(request))
