from fastapi import HTTPException, status

from rm_portal.errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    PolicyWarning,
    PortalError,
    ValidationError,
)
from rm_portal.services.record_store import RecordStore
from rm_portal.services.store_factory import get_record_store


def get_store() -> RecordStore:
    return get_record_store()


def http_error(exc: PortalError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, PolicyWarning):
        detail = {'code': exc.code, 'message': str(exc), 'blocking': exc.blocking}
        if exc.cutoff is not None:
            detail['next_window'] = exc.cutoff.next_window.label
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
