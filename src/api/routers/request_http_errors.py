from typing import NoReturn

from fastapi import HTTPException, status

from src.core.workflow import (
    ForbiddenActionError,
    InvalidTransitionError,
    RequestNotFoundError,
    RequestTerminalError,
    VersionConflictError,
    WorkflowValidationError,
)

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def raise_request_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, RequestNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ForbiddenActionError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, VersionConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(
        exc, (RequestTerminalError, InvalidTransitionError, WorkflowValidationError)
    ):
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=str(exc)) from exc
    raise exc
