"""Error taxonomy shared by the services and the HTTP layer.

Every error subclasses FastAPI's ``HTTPException`` so services can raise them
directly, and renders as ``{status, statusCode, message}`` plus a few optional
detail fields. Internal causes are kept on the instance but never rendered.
"""

from typing import Any

from fastapi import HTTPException, status

from cardshop.schemas.common import ErrorResponse


class AppError(HTTPException):
    default_status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"
    retryable: bool = False

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(status_code=self.default_status_code, detail=message or self.default_message)
        self.message: str = self.detail
        self.details = {key: value for key, value in details.items() if value is not None}

    def __str__(self) -> str:
        return self.message

    def to_response(self) -> dict[str, Any]:
        return ErrorResponse(
            status_code=self.status_code,
            message=self.message,
            retryable=self.retryable,
            **self.details,
        ).model_dump(by_alias=True, exclude_none=True)


class ValidationError(AppError):
    """Malformed input or configuration; not retryable without changing it."""

    default_status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, errors: dict[str, list[str]] | None = None) -> None:
        super().__init__(message, errors=errors)


class NotFoundError(AppError):
    default_status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"

    def __init__(
        self, message: str | None = None, resource: str | None = None, identifier: Any = None
    ) -> None:
        super().__init__(
            message, resource=resource, identifier=None if identifier is None else str(identifier)
        )


class ConflictError(AppError):
    """Request conflicts with current state (stock, a busy user lock, a reused request id)."""

    default_status_code = status.HTTP_409_CONFLICT
    default_message = "Request conflicts with current state"

    def __init__(
        self,
        message: str | None = None,
        conflict_field: str | None = None,
        conflict_value: Any = None,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            message,
            conflict_field=conflict_field,
            conflict_value=None if conflict_value is None else str(conflict_value),
        )
        self.retryable = retryable


class InsufficientPoolError(AppError):
    """A non-repeating guarantee asks for more distinct cards than its pool holds."""

    default_status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    default_message = "Card pool too small for the pack guarantees"


class InternalServerError(AppError):
    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"
    retryable = True

    def __init__(
        self, message: str | None = None, original_error: BaseException | None = None
    ) -> None:
        super().__init__(message)
        self.original_error = original_error
