from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable, Protocol


@dataclass(frozen=True)
class TimeSlot:
    room_id: int
    date: date
    start: time
    end: time

    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start)

    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end)


class _SlotHolder(Protocol):
    reservation_id: int
    slot: TimeSlot


def overlaps(a: TimeSlot, b: TimeSlot) -> bool:
    """Return True when two slots of the same room and day share any instant.

    Slots are half-open ranges: [start, end)
    so touching boundaries (e.g. 09:00-10:00 and 10:00-11:00) do not overlap.
    """
    if a.room_id != b.room_id or a.date != b.date:
        return False
    return a.start < b.end and b.start < a.end


def is_past(day: date, start: time, now: datetime) -> bool:
    """Return True if the slot would begin at or before ``now``."""
    return datetime.combine(day, start) <= now


def is_ordered(start: time, end: time) -> bool:
    return end > start


def find_conflicts(
    slot: TimeSlot,
    existing: Iterable[_SlotHolder],
    exclude_id: int | None = None,
) -> list[_SlotHolder]:
    """Return existing reservations overlapping ``slot``, earliest first."""
    conflicts = [
        reservation
        for reservation in existing
        if reservation.reservation_id != exclude_id and overlaps(slot, reservation.slot)
    ]
    conflicts.sort(key=lambda reservation: (reservation.slot.date, reservation.slot.start))
    return conflicts
