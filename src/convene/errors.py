"""
Error taxonomy for the scheduling engine.

Every error here is an expected, recoverable condition. Services raise them;
``convene.main`` registers ``scheduling_error_handler`` so routes never have to
translate them by hand.
"""
import logging
from typing import Optional

from fastapi.responses import JSONResponse
from starlette.requests import Request

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = "この枠が埋まっています。別の枠を選択してください (This slot is already taken)"


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}


class InvalidToken(SchedulingError):
    code = "invalid_token"
    status_code = 404


class Expired(SchedulingError):
    code = "expired"
    status_code = 401


class Unauthorized(SchedulingError):
    code = "unauthorized"
    status_code = 401


class Forbidden(SchedulingError):
    code = "forbidden"
    status_code = 403


class NotFound(SchedulingError):
    code = "not_found"
    status_code = 404


class ValidationError(SchedulingError):
    code = "validation_error"
    status_code = 422


class SlotRequired(ValidationError):
    code = "slot_required"


class SlotAlreadyBooked(SchedulingError):
    code = "slot_already_booked"
    status_code = 409

    def __init__(self, slot_id, message: str = SLOT_TAKEN_MESSAGE):
        super().__init__(message, details={"slot_id": str(slot_id)})
        self.slot_id = slot_id


class ThreadNotActive(SchedulingError):
    code = "thread_not_active"
    status_code = 422


# Organizer-side name for the same terminal-state violation.
InvalidState = ThreadNotActive


class MaxReproposalsExceeded(SchedulingError):
    code = "max_reproposals_exceeded"
    status_code = 422


class PersistenceError(SchedulingError):
    code = "persistence_error"
    status_code = 503


def _error_payload(exc: SchedulingError) -> dict:
    error = {"code": exc.code, "message": exc.message}
    if exc.details:
        error.update(exc.details)
    return {"error": error, "detail": exc.message}


async def scheduling_error_handler(request: Request, exc: SchedulingError):
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "Scheduling error code=%s status=%s path=%s: %s",
        exc.code,
        exc.status_code,
        request.url.path,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=_error_payload(exc))
