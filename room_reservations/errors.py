from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationFailure


class AdmissionErrorKind(str, Enum):
    CONFLICT = "conflict"
    ROOM_NOT_FOUND = "room_not_found"
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    TIMEOUT = "timeout"


class ReservationError(Exception):
    pass


class ReservationValidationError(ReservationError, ValueError):
    def __init__(self, failure: ValidationFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def field(self) -> str:
        return self.failure.field


class AdmissionError(ReservationError):
    kind: AdmissionErrorKind


class ReservationConflictError(AdmissionError):
    kind = AdmissionErrorKind.CONFLICT

    def __init__(self, conflicting_id: int) -> None:
        super().__init__(f"The selected time slot conflicts with reservation {conflicting_id}.")
        self.conflicting_id = conflicting_id


class RoomNotFoundError(AdmissionError):
    kind = AdmissionErrorKind.ROOM_NOT_FOUND

    def __init__(self, room_id: int) -> None:
        super().__init__(f"Conference room {room_id} not found.")
        self.room_id = room_id


class ReservationNotFoundError(AdmissionError):
    kind = AdmissionErrorKind.NOT_FOUND

    def __init__(self, reservation_id: int) -> None:
        super().__init__(f"Reservation {reservation_id} not found.")
        self.reservation_id = reservation_id


class StoreUnavailableError(AdmissionError):
    kind = AdmissionErrorKind.STORE_UNAVAILABLE


class AdmissionTimeoutError(StoreUnavailableError):
    kind = AdmissionErrorKind.TIMEOUT

    def __init__(self, room_id: int, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for room {room_id}.")
        self.room_id = room_id
        self.timeout = timeout
