from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Protocol

from loguru import logger

from .config import DEFAULT_LOCK_TIMEOUT_SECONDS
from .errors import (
    AdmissionError,
    AdmissionTimeoutError,
    ReservationConflictError,
    ReservationNotFoundError,
    RoomNotFoundError,
    StoreUnavailableError,
)
from .interval import find_conflicts
from .notifications import ReservationAdmittedEvent
from .rooms import RoomDirectory
from .store import ReservationRecord, ReservationStore, RoomUnitOfWork
from .validation import ValidatedCandidate


class Dispatcher(Protocol):
    def dispatch(self, event: ReservationAdmittedEvent) -> None: ...


@dataclass(frozen=True)
class AdmissionResult:
    reservation: ReservationRecord | None = None
    error: AdmissionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def conflicting_id(self) -> int | None:
        if isinstance(self.error, ReservationConflictError):
            return self.error.conflicting_id
        return None

    def unwrap(self) -> ReservationRecord:
        if self.error is not None:
            raise self.error
        if self.reservation is None:
            raise ValueError("AdmissionResult carries neither a reservation nor an error")
        return self.reservation

    @staticmethod
    def success(reservation: ReservationRecord) -> "AdmissionResult":
        return AdmissionResult(reservation=reservation)

    @staticmethod
    def failure(error: AdmissionError) -> "AdmissionResult":
        return AdmissionResult(error=error)


class AdmissionEngine:
    """Admits reservations under the room lock; the first to commit wins."""

    def __init__(
        self,
        store: ReservationStore,
        rooms: RoomDirectory,
        dispatcher: Dispatcher | None = None,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        if lock_timeout <= 0:
            raise ValueError("lock_timeout must be greater than zero")
        self.store = store
        self.rooms = rooms
        self.dispatcher = dispatcher
        self._clock: Callable[[], datetime] = clock or datetime.now
        self.lock_timeout = lock_timeout

    def admit(self, candidate: ValidatedCandidate) -> AdmissionResult:
        """Commit ``candidate`` unless it overlaps a reservation of its room.

        On success the reservation is durable and visible to every later
        admission for the room. On any failure nothing was written.
        """
        try:
            self._require_room(candidate.room_id)
            with self.store.unit_of_work(candidate.room_id, timeout=self.lock_timeout) as uow:
                self._reject_overlap(uow, candidate)
                record = uow.insert(candidate, self._clock())
                uow.commit()
        except AdmissionError as error:
            return self._failed("admit", candidate.room_id, error)

        logger.info(
            "Admitted reservation {} in room {} on {} {}-{}",
            record.reservation_id,
            record.room_id,
            record.slot.date.isoformat(),
            record.slot.start.strftime("%H:%M"),
            record.slot.end.strftime("%H:%M"),
        )
        self._notify(record, candidate)
        return AdmissionResult.success(record)

    def re_admit(self, reservation_id: int, candidate: ValidatedCandidate) -> AdmissionResult:
        """Move an existing reservation to the candidate's slot, or leave it untouched.

        The reservation's own current slot never counts as a conflict.
        """
        try:
            self._require_room(candidate.room_id)
            record = None
            for current_room in self._locations(reservation_id):
                with self.store.unit_of_work(current_room, candidate.room_id, timeout=self.lock_timeout) as uow:
                    if uow.get(reservation_id) is None:
                        continue
                    self._reject_overlap(uow, candidate, exclude_id=reservation_id)
                    record = uow.replace(reservation_id, candidate, self._clock())
                    uow.commit()
                    break
            if record is None:
                raise ReservationNotFoundError(reservation_id)
        except AdmissionError as error:
            return self._failed("re-admit", candidate.room_id, error, reservation_id)

        logger.info(
            "Re-admitted reservation {} in room {} on {} {}-{}",
            record.reservation_id,
            record.room_id,
            record.slot.date.isoformat(),
            record.slot.start.strftime("%H:%M"),
            record.slot.end.strftime("%H:%M"),
        )
        return AdmissionResult.success(record)

    def withdraw(self, reservation_id: int) -> AdmissionResult:
        room_id = None
        try:
            record = None
            for room_id in self._locations(reservation_id):
                with self.store.unit_of_work(room_id, timeout=self.lock_timeout) as uow:
                    if uow.get(reservation_id) is None:
                        continue
                    record = uow.delete(reservation_id)
                    uow.commit()
                    break
            if record is None:
                raise ReservationNotFoundError(reservation_id)
        except AdmissionError as error:
            return self._failed("withdraw", room_id, error, reservation_id)

        logger.info("Withdrew reservation {} from room {}", record.reservation_id, record.room_id)
        return AdmissionResult.success(record)

    def _locations(self, reservation_id: int) -> Iterator[int]:
        """Yield the rooms a reservation may be in, re-reading after each miss.

        A miss under the lock means the reservation moved or vanished between
        the lock-free lookup and the lock; stop once no new room turns up.
        """
        seen: set[int] = set()
        while True:
            room_id = self.store.locate(reservation_id)
            if room_id is None or room_id in seen:
                return
            seen.add(room_id)
            yield room_id

    def _require_room(self, room_id: int) -> None:
        if not self.rooms.room_exists(room_id):
            raise RoomNotFoundError(room_id)

    def _reject_overlap(
        self,
        uow: RoomUnitOfWork,
        candidate: ValidatedCandidate,
        exclude_id: int | None = None,
    ) -> None:
        existing = uow.load_room_reservations(candidate.room_id)
        conflicts = find_conflicts(candidate.slot, existing, exclude_id=exclude_id)
        if conflicts:
            raise ReservationConflictError(conflicts[0].reservation_id)

    def _failed(
        self,
        operation: str,
        room_id: int | None,
        error: AdmissionError,
        reservation_id: int | None = None,
    ) -> AdmissionResult:
        if isinstance(error, AdmissionTimeoutError):
            logger.warning("{} timed out for room {}: {}", operation, room_id, error)
        elif isinstance(error, StoreUnavailableError):
            logger.opt(exception=error).warning("{} failed for room {}: store unavailable", operation, room_id)
        elif isinstance(error, ReservationConflictError):
            logger.info(
                "{} rejected for room {} (reservation {}): conflicts with {}",
                operation,
                room_id,
                reservation_id,
                error.conflicting_id,
            )
        else:
            logger.info("{} rejected for room {}: {}", operation, room_id, error)
        return AdmissionResult.failure(error)

    def _notify(self, record: ReservationRecord, candidate: ValidatedCandidate) -> None:
        if self.dispatcher is None:
            return
        event = ReservationAdmittedEvent(
            reservation_id=record.reservation_id,
            room_id=record.room_id,
            room_name=candidate.room.name,
            reserver_name=record.reserver_name,
            date=record.slot.date,
            start=record.slot.start,
            end=record.slot.end,
        )
        try:
            self.dispatcher.dispatch(event)
        except Exception:
            logger.exception("Dispatcher rejected admitted event for reservation {}", record.reservation_id)
