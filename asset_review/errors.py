from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


class InvalidArgumentError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="INVALID_ARGUMENT",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=400,
        )


class NotFoundError(ApiError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code="NOT_FOUND",
            message=message,
            error_class="validation",
            retryable=False,
            http_status=404,
        )


class StoreError(ApiError):
    """Read against the status log store failed; surfaced as-is, never retried here."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="STORE_ERROR",
            message=message,
            error_class="dependency",
            retryable=False,
            http_status=503,
        )


class QueryCancelledError(ApiError):
    def __init__(self, message: str = "query cancelled before completion") -> None:
        super().__init__(
            code="QUERY_CANCELLED",
            message=message,
            error_class="timeout",
            retryable=True,
            http_status=504,
        )
