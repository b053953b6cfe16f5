from __future__ import annotations

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from asset_review.errors import ApiError
from asset_review.pivot_service import AssetPivotService
from asset_review.review_queries import ReviewQueries
from asset_review.routes._deps import (
    error_response,
    request_id_from_request,
    trace_id_from_request,
    validation_message,
)
from asset_review.routes.assets import router as assets_router
from asset_review.routes.reviews import router as reviews_router
from asset_review.runtime_profile import RuntimeProfile
from asset_review.schemas import success_envelope
from asset_review.store import repository as default_repository

logger = logging.getLogger(__name__)


def create_app(profile: RuntimeProfile | None = None, repository=None) -> FastAPI:
    profile = profile or RuntimeProfile.from_env()
    repository = repository if repository is not None else default_repository
    logging.getLogger("asset_review").setLevel(profile.log_level)

    app = FastAPI(title="Asset Review Pivot API", version="0.1.0")
    app.state.profile = profile
    app.state.repository = repository
    app.state.pivot_service = AssetPivotService(repository, default_root=profile.default_root)
    app.state.review_queries = ReviewQueries(repository, default_root=profile.default_root)

    if profile.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(profile.cors_allow_origins),
            allow_credentials=True,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["Link", "x-trace-id", "x-request-id"],
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        response = await call_next(request)
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.http_status >= 500:
            logger.warning(
                "api_error code=%s path=%s trace_id=%s message=%s",
                exc.code,
                request.url.path,
                trace_id_from_request(request),
                exc.message,
            )
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="INVALID_ARGUMENT",
            message=validation_message(exc),
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope(
            {"status": "ok", "store_backend": profile.store_backend},
            trace_id_from_request(request),
        )

    app.include_router(assets_router)
    app.include_router(reviews_router)
    return app


app = create_app()
