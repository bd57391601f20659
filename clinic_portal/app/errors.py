# errors.py
from fastapi import HTTPException, status


class ClinicError(HTTPException):
    """HTTPException carrying the `{error, details}` body the portal clients expect.

    `extra` is merged into the top level of the JSON body (e.g. hoursUntilAppointment).
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, error: str, details=None, headers=None, **extra):
        super().__init__(status_code=self.status_code, detail=error, headers=headers)
        self.details = details
        self.extra = extra


class Unauthorized(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, error: str = "Unauthorized", details=None, **extra):
        super().__init__(error, details, headers={"WWW-Authenticate": "Bearer"}, **extra)


class Forbidden(ClinicError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND


class ValidationFailure(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST


class BusinessRuleViolation(ClinicError):
    status_code = status.HTTP_400_BAD_REQUEST


class SlotUnavailable(BusinessRuleViolation):
    status_code = status.HTTP_409_CONFLICT


class TooManyAttempts(ClinicError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


def error_body(exc: HTTPException) -> dict:
    body = {"error": exc.detail}
    details = getattr(exc, "details", None)
    if details is not None:
        body["details"] = details
    body.update(getattr(exc, "extra", None) or {})
    return body
