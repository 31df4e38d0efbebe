"""Mapping of core errors onto HTTP responses."""

from typing import NoReturn

from fastapi import HTTPException, status

from certvault.domain.state_machine import InvalidTransitionError
from certvault.errors import (
    AlreadyExistsError,
    DecryptFailedError,
    InvalidEntryNameError,
    NotFoundError,
    RequestRejected,
    ToolchainError,
    TransportError,
)


def raise_for_error(error: Exception) -> NoReturn:
    """Re-raise a core error as the matching HTTPException.

    Errors without a mapping are re-raised unchanged.
    """
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from None
    if isinstance(error, AlreadyExistsError | InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from None
    if isinstance(error, InvalidEntryNameError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error)) from None
    if isinstance(error, RequestRejected):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": error.code, "message": error.message},
        ) from None
    if isinstance(error, TransportError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error)
        ) from None
    if isinstance(error, ToolchainError | DecryptFailedError):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)
        ) from None
    raise error
