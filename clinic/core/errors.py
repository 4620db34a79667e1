"""Domain errors raised by the clinic services.

Each error carries the HTTP status the API layer answers with, so routes
never have to translate them one by one.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ClinicError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be completed.'

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidToken(ClinicError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid token.'


class NotFound(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'


class Forbidden(ClinicError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'


class SlotUnavailable(ClinicError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The selected time slot is not available.'


class NotCancellable(ClinicError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This appointment cannot be cancelled.'


class InvalidTransition(ClinicError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Only scheduled appointments can change status.'


async def clinic_error_handler(_request: Request, exc: ClinicError) -> JSONResponse:
    headers = {'WWW-Authenticate': 'Bearer'} if isinstance(exc, InvalidToken) else None
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.detail}, headers=headers)
