"""Map domain errors onto HTTP status codes."""
from fastapi import HTTPException

from ..errors import (
    ConfigurationError,
    DeclarationLockedError,
    ImmutableRecordError,
    InsufficientCoverageDataError,
    InvalidClaimStateError,
    NotFoundError,
)


_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ImmutableRecordError, 409),
    (InvalidClaimStateError, 409),
    (InsufficientCoverageDataError, 422),
    (DeclarationLockedError, 423),
    (ConfigurationError, 500),
    (ValueError, 422),
)


def to_http_error(error: Exception) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
