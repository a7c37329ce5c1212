from __future__ import annotations

import abc
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, replace as dataclass_replace
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from .config import DEFAULT_LOCK_TIMEOUT_SECONDS
from .errors import AdmissionTimeoutError, ReservationNotFoundError
from .interval import TimeSlot

if TYPE_CHECKING:
    from .validation import ValidatedCandidate


@dataclass(frozen=True)
class ReservationRecord:
    reservation_id: int
    slot: TimeSlot
    reserver_name: str
    created_at: datetime
    updated_at: datetime
    notes: str | None = None

    @property
    def room_id(self) -> int:
        return self.slot.room_id

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reservation_id": self.reservation_id,
            "room_id": self.slot.room_id,
            "reserver_name": self.reserver_name,
            "date": self.slot.date.isoformat(),
            "start": self.slot.start.isoformat(timespec="minutes"),
            "end": self.slot.end.isoformat(timespec="minutes"),
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }
        if self.notes is not None:
            payload["notes"] = self.notes
        return payload

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ReservationRecord":
        return ReservationRecord(
            reservation_id=int(data["reservation_id"]),
            slot=TimeSlot(
                room_id=int(data["room_id"]),
                date=date.fromisoformat(str(data["date"])),
                start=time.fromisoformat(str(data["start"])),
                end=time.fromisoformat(str(data["end"])),
            ),
            reserver_name=str(data["reserver_name"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            notes=(str(data.get("notes")) if data.get("notes") is not None else None),
        )

    def to_payload(self, room_name: str | None = None) -> dict[str, Any]:
        """Serialize with the field names the reservation API has always used."""
        return {
            "id": self.reservation_id,
            "conferenceRoom": self.slot.room_id,
            "conferenceRoomName": room_name,
            "reserverName": self.reserver_name,
            "date": self.slot.date.isoformat(),
            "startTime": self.slot.start.strftime("%H:%M"),
            "endTime": self.slot.end.strftime("%H:%M"),
            "notes": self.notes,
            "createdAt": self.created_at.isoformat(timespec="seconds"),
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class RoomLockRegistry:
    """Hands out one lock per room id, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def lock_for(self, room_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[room_id] = lock
            return lock

    @contextmanager
    def hold(self, room_ids: Iterable[int], timeout: float) -> Iterator[None]:
        # Sorted acquisition keeps two multi-room holders from deadlocking.
        with ExitStack() as stack:
            for room_id in sorted(set(room_ids)):
                lock = self.lock_for(room_id)
                if not lock.acquire(timeout=timeout):
                    raise AdmissionTimeoutError(room_id, timeout)
                stack.callback(lock.release)
            yield


class RoomUnitOfWork:
    """Working copy of the locked rooms' reservations.

    Nothing is visible to other units of work until :meth:`commit`.
    """

    def __init__(self, store: ReservationStore, room_ids: tuple[int, ...]) -> None:
        self._store = store
        self.room_ids = frozenset(room_ids)
        self._working: dict[int, dict[int, ReservationRecord]] = {
            room_id: {record.reservation_id: record for record in store._load_room(room_id)}
            for room_id in self.room_ids
        }
        # Ordered: rooms gaining a record are persisted before rooms losing one.
        self._dirty: dict[int, None] = {}
        self._events: list[tuple[str, dict[str, Any]]] = []
        self.committed = False
        self.closed = False

    def _require_room(self, room_id: int) -> dict[int, ReservationRecord]:
        if self.closed:
            raise RuntimeError("unit of work is already closed")
        if room_id not in self.room_ids:
            raise RuntimeError(f"room {room_id} is not locked by this unit of work")
        return self._working[room_id]

    def load_room_reservations(self, room_id: int) -> list[ReservationRecord]:
        records = list(self._require_room(room_id).values())
        records.sort(key=lambda record: (record.slot.date, record.slot.start, record.reservation_id))
        return records

    def get(self, reservation_id: int) -> ReservationRecord | None:
        for room_id in self.room_ids:
            record = self._require_room(room_id).get(reservation_id)
            if record is not None:
                return record
        return None

    def insert(self, candidate: ValidatedCandidate, now: datetime) -> ReservationRecord:
        rows = self._require_room(candidate.room_id)
        record = ReservationRecord(
            reservation_id=self._store._allocate_id(),
            slot=candidate.slot,
            reserver_name=candidate.reserver_name,
            created_at=now,
            updated_at=now,
            notes=candidate.notes,
        )
        rows[record.reservation_id] = record
        self._dirty.setdefault(candidate.room_id)
        self._events.append(("RESERVATION_CREATED", record.to_dict()))
        return record

    def replace(self, reservation_id: int, candidate: ValidatedCandidate, now: datetime) -> ReservationRecord:
        current = self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)

        target_rows = self._require_room(candidate.room_id)
        updated = dataclass_replace(
            current,
            slot=candidate.slot,
            reserver_name=candidate.reserver_name,
            notes=candidate.notes,
            updated_at=max(now, current.updated_at),
        )
        del self._working[current.room_id][reservation_id]
        target_rows[reservation_id] = updated
        self._dirty.setdefault(candidate.room_id)
        self._dirty.setdefault(current.room_id)
        self._events.append(("RESERVATION_UPDATED", updated.to_dict()))
        return updated

    def delete(self, reservation_id: int) -> ReservationRecord:
        current = self.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)

        del self._working[current.room_id][reservation_id]
        self._dirty.setdefault(current.room_id)
        self._events.append(("RESERVATION_DELETED", current.to_dict()))
        return current

    def commit(self) -> None:
        if self.closed:
            raise RuntimeError("unit of work is already closed")
        changed = {room_id: list(self._working[room_id].values()) for room_id in self._dirty}
        if changed:
            self._store._persist(changed, self._events)
        self.committed = True
        self.closed = True

    def rollback(self) -> None:
        self._working.clear()
        self._dirty.clear()
        self._events.clear()
        self.closed = True


class ReservationStore(abc.ABC):
    """Durable reservation storage with room-scoped serializable units of work."""

    def __init__(self, locks: RoomLockRegistry | None = None) -> None:
        self.locks = locks or RoomLockRegistry()

    @contextmanager
    def unit_of_work(self, *room_ids: int, timeout: float | None = None) -> Iterator[RoomUnitOfWork]:
        if not room_ids:
            raise ValueError("unit_of_work needs at least one room id")
        effective_timeout = DEFAULT_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        with self.locks.hold(room_ids, effective_timeout):
            uow = RoomUnitOfWork(self, tuple(room_ids))
            try:
                yield uow
            finally:
                # Also reached on KeyboardInterrupt and friends.
                if not uow.committed:
                    uow.rollback()

    @abc.abstractmethod
    def locate(self, reservation_id: int) -> int | None:
        """Return the room currently holding ``reservation_id``, without locking.

        The answer is a hint; callers confirm it inside a unit of work.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, reservation_id: int) -> ReservationRecord | None:
        raise NotImplementedError

    @abc.abstractmethod
    def room_reservations(self, room_id: int) -> list[ReservationRecord]:
        """Committed reservations of a room in (date, start) order, read without locking."""
        raise NotImplementedError

    def room_has_reservations(self, room_id: int) -> bool:
        return bool(self.room_reservations(room_id))

    @abc.abstractmethod
    def _load_room(self, room_id: int) -> list[ReservationRecord]:
        raise NotImplementedError

    @abc.abstractmethod
    def _persist(
        self,
        changed: dict[int, list[ReservationRecord]],
        events: list[tuple[str, dict[str, Any]]],
    ) -> None:
        """Atomically replace the listed rooms' committed reservations."""
        raise NotImplementedError

    @abc.abstractmethod
    def _allocate_id(self) -> int:
        raise NotImplementedError


class InMemoryReservationStore(ReservationStore):
    def __init__(self, locks: RoomLockRegistry | None = None) -> None:
        super().__init__(locks)
        self._rooms: dict[int, dict[int, ReservationRecord]] = {}
        self._index: dict[int, int] = {}
        self._state_lock = threading.Lock()
        self._last_id = 0

    def locate(self, reservation_id: int) -> int | None:
        with self._state_lock:
            return self._index.get(reservation_id)

    def get(self, reservation_id: int) -> ReservationRecord | None:
        with self._state_lock:
            room_id = self._index.get(reservation_id)
            if room_id is None:
                return None
            return self._rooms[room_id].get(reservation_id)

    def room_reservations(self, room_id: int) -> list[ReservationRecord]:
        records = self._load_room(room_id)
        records.sort(key=lambda record: (record.slot.date, record.slot.start, record.reservation_id))
        return records

    def _load_room(self, room_id: int) -> list[ReservationRecord]:
        with self._state_lock:
            return list(self._rooms.get(room_id, {}).values())

    def _persist(
        self,
        changed: dict[int, list[ReservationRecord]],
        events: list[tuple[str, dict[str, Any]]],
    ) -> None:
        with self._state_lock:
            for room_id, records in changed.items():
                previous = self._rooms.get(room_id, {})
                for reservation_id in previous:
                    if self._index.get(reservation_id) == room_id:
                        del self._index[reservation_id]
            for room_id, records in changed.items():
                self._rooms[room_id] = {record.reservation_id: record for record in records}
                for record in records:
                    self._index[record.reservation_id] = room_id

    def _allocate_id(self) -> int:
        with self._state_lock:
            self._last_id += 1
            return self._last_id
