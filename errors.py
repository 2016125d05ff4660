"""Error taxonomy shared by the store, the engines and the HTTP layer."""

from __future__ import annotations


class WorkHoursError(Exception):
    """Base error; ``status_code`` is what the API answers with."""

    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(WorkHoursError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(WorkHoursError):
    status_code = 404
    default_message = "Not found"


class Conflict(WorkHoursError):
    """A state-machine precondition did not hold; nothing was written."""

    status_code = 409
    default_message = "Conflict"


class InvalidInput(WorkHoursError):
    status_code = 400
    default_message = "Invalid input"


class StoreError(WorkHoursError):
    status_code = 500
    default_message = "Database error"


class HolidayLookupError(WorkHoursError):
    status_code = 502
    default_message = "Holiday lookup failed"
