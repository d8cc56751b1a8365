from typing import cast

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from cardshop.core.exceptions import AppError, InternalServerError
from cardshop.schemas.common import ErrorResponse


def app_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(AppError, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


def http_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(HTTPException, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(status_code=exc.status_code, message=str(exc.detail)).model_dump(
            by_alias=True, exclude_none=True
        ),
    )


def validation_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    exc = cast(RequestValidationError, exc)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=ErrorResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            message="Validation error",
            errors={
                ".".join(str(part) for part in err["loc"]): [err["msg"]] for err in exc.errors()
            },
        ).model_dump(by_alias=True, exclude_none=True),
    )


def general_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error("Unhandled error")
    error = InternalServerError(original_error=exc)
    return JSONResponse(status_code=error.status_code, content=error.to_response())
