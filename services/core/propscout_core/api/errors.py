"""Translation of domain errors into HTTP errors."""

from fastapi import HTTPException, status

from propscout_core.domain.errors import (
    ConflictError,
    ForbiddenError,
    MaxLinksReachedError,
    PipelineError,
    PreconditionFailedError,
    QuotaExceededError,
    SessionNotFoundError,
    UnauthorizedError,
    UpstreamFailureError,
    ValidationFailedError,
)

STATUS_CODES: dict[type[PipelineError], int] = {
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    MaxLinksReachedError: status.HTTP_403_FORBIDDEN,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    QuotaExceededError: status.HTTP_402_PAYMENT_REQUIRED,
    PreconditionFailedError: status.HTTP_400_BAD_REQUEST,
    ValidationFailedError: status.HTTP_400_BAD_REQUEST,
    UpstreamFailureError: status.HTTP_502_BAD_GATEWAY,
}


def to_http_exception(error: PipelineError) -> HTTPException:
    """Build the HTTPException for a domain error.

    The body is ``{"detail": {"error": <reason>, ...payload}}``.
    """
    status_code = STATUS_CODES.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    headers = None
    if isinstance(error, UnauthorizedError):
        headers = {"WWW-Authenticate": "Bearer"}
    return HTTPException(status_code=status_code, detail=error.to_dict(), headers=headers)
