"""Translation of engine errors into HTTP responses."""

from fastapi import HTTPException, status

from ...domain.errors import (
    Conflict,
    EntitlementError,
    EventDeferred,
    Forbidden,
    GatewayUnavailable,
    InvalidArgument,
    NotFound,
    SignatureInvalid,
    SubscriptionRequired,
    TierInsufficient,
)

_STATUS_BY_ERROR = (
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (SignatureInvalid, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Conflict, status.HTTP_409_CONFLICT),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (SubscriptionRequired, status.HTTP_403_FORBIDDEN),
    (TierInsufficient, status.HTTP_403_FORBIDDEN),
    (GatewayUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (EventDeferred, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(error: EntitlementError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
