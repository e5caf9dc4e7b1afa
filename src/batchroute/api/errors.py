"""Mapping of dispatch errors to HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from ..errors import ConcurrentUpdateConflict, DispatchError, InvalidTransition, NotFound


def to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidTransition, ConcurrentUpdateConflict)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (ValueError, DispatchError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
