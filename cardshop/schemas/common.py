from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

from cardshop.utils.misc import get_utc_iso_now

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    status: Literal["success", "error"] = "success"
    data: T | None = None
    message: str | None = None
    timestamp: str = Field(default_factory=get_utc_iso_now)


class ErrorResponse(BaseModel):
    """Stable error payload: ``{status, statusCode, message}`` plus optional details."""

    status: Literal["error"] = "error"
    status_code: int = Field(serialization_alias="statusCode")
    message: str
    retryable: bool | None = None
    errors: dict[str, list[str]] | None = None
    resource: str | None = None
    identifier: str | None = None
    conflict_field: str | None = Field(default=None, serialization_alias="conflictField")
    conflict_value: str | None = Field(default=None, serialization_alias="conflictValue")
