from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Callable

from .config import NOTES_MAX_LENGTH, RESERVER_NAME_MAX_LENGTH
from .errors import ReservationValidationError
from .interval import TimeSlot, is_ordered, is_past
from .rooms import Room, RoomDirectory


class FailureKind(str, Enum):
    MISSING_FIELD = "missing_field"
    FIELD_TOO_LONG = "field_too_long"
    INVALID_INTERVAL = "invalid_interval"
    RESERVATION_IN_PAST = "reservation_in_past"
    ROOM_NOT_FOUND = "room_not_found"


@dataclass(frozen=True)
class ValidationFailure:
    kind: FailureKind
    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {self.field: self.message}


@dataclass(frozen=True)
class ReservationDraft:
    """Reservation request as parsed at the boundary; any field may be missing."""

    room_id: int | None
    reserver_name: str | None
    date: date | None
    start: time | None
    end: time | None
    notes: str | None = None


@dataclass(frozen=True)
class ValidatedCandidate:
    room: Room
    reserver_name: str
    slot: TimeSlot
    notes: str | None = None

    @property
    def room_id(self) -> int:
        return self.room.room_id


@dataclass(frozen=True)
class ValidationContext:
    rooms: RoomDirectory
    now: datetime


Rule = Callable[[ReservationDraft, ValidationContext], ValidationFailure | None]


def check_room_exists(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    if draft.room_id is None:
        return ValidationFailure(FailureKind.MISSING_FIELD, "roomId", "Conference room is required")
    if not context.rooms.room_exists(draft.room_id):
        return ValidationFailure(FailureKind.ROOM_NOT_FOUND, "roomId", "Conference room not found")
    return None


def check_reserver_name(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    name = (draft.reserver_name or "").strip()
    if not name:
        return ValidationFailure(FailureKind.MISSING_FIELD, "reserverName", "Reserver name cannot be empty")
    if len(name) > RESERVER_NAME_MAX_LENGTH:
        return ValidationFailure(
            FailureKind.FIELD_TOO_LONG,
            "reserverName",
            f"Reserver name cannot exceed {RESERVER_NAME_MAX_LENGTH} characters",
        )
    return None


def check_notes(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    if draft.notes is not None and len(draft.notes) > NOTES_MAX_LENGTH:
        return ValidationFailure(
            FailureKind.FIELD_TOO_LONG,
            "notes",
            f"Notes cannot exceed {NOTES_MAX_LENGTH} characters",
        )
    return None


def check_schedule_present(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    if draft.date is None:
        return ValidationFailure(FailureKind.MISSING_FIELD, "date", "Reservation date is required")
    if draft.start is None:
        return ValidationFailure(FailureKind.MISSING_FIELD, "startTime", "Start time is required")
    if draft.end is None:
        return ValidationFailure(FailureKind.MISSING_FIELD, "endTime", "End time is required")
    return None


def _schedule(draft: ReservationDraft) -> tuple[date, time, time] | None:
    if draft.date is None or draft.start is None or draft.end is None:
        return None
    return draft.date, draft.start, draft.end


def check_ordering(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    schedule = _schedule(draft)
    if schedule is None:
        return None
    _, start, end = schedule
    if not is_ordered(start, end):
        return ValidationFailure(FailureKind.INVALID_INTERVAL, "endTime", "End time must be after start time.")
    return None


def check_not_in_past(draft: ReservationDraft, context: ValidationContext) -> ValidationFailure | None:
    schedule = _schedule(draft)
    if schedule is None:
        return None
    day, start, _ = schedule
    if not is_past(day, start, context.now):
        return None
    # A whole day in the past is blamed on the date, an earlier hour today on the start time.
    field = "date" if day < context.now.date() else "startTime"
    return ValidationFailure(FailureKind.RESERVATION_IN_PAST, field, "Cannot create a reservation in the past.")


VALIDATION_RULES: tuple[Rule, ...] = (
    check_room_exists,
    check_reserver_name,
    check_notes,
    check_schedule_present,
    check_ordering,
    check_not_in_past,
)


def first_failure(
    draft: ReservationDraft,
    context: ValidationContext,
    rules: tuple[Rule, ...] = VALIDATION_RULES,
) -> ValidationFailure | None:
    for rule in rules:
        failure = rule(draft, context)
        if failure is not None:
            return failure
    return None


def validate_candidate(draft: ReservationDraft, rooms: RoomDirectory, now: datetime) -> ValidatedCandidate:
    """Run every rule in order and return an admissible candidate.

    Raises :class:`ReservationValidationError` carrying the first failure.
    The room is resolved once here so the notification can name it later.
    """
    context = ValidationContext(rooms=rooms, now=now)
    failure = first_failure(draft, context)
    if failure is not None:
        raise ReservationValidationError(failure)

    room = rooms.get_room(draft.room_id) if draft.room_id is not None else None
    if room is None:
        # Removed between the rule run and this lookup.
        raise ReservationValidationError(
            ValidationFailure(FailureKind.ROOM_NOT_FOUND, "roomId", "Conference room not found")
        )
    schedule = _schedule(draft)
    if schedule is None:
        raise ValueError("validation rules admitted a draft without date, start and end")
    day, start, end = schedule

    notes = draft.notes if draft.notes else None
    return ValidatedCandidate(
        room=room,
        reserver_name=(draft.reserver_name or "").strip(),
        slot=TimeSlot(room_id=room.room_id, date=day, start=start, end=end),
        notes=notes,
    )
