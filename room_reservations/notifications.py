from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable
import threading

from loguru import logger

from .config import DEFAULT_DISPATCH_WORKERS
from .errors import StoreUnavailableError
from .yaml_store import read_yaml_list, write_yaml_list


@dataclass(frozen=True)
class ReservationAdmittedEvent:
    reservation_id: int
    room_id: int
    room_name: str
    reserver_name: str
    date: date
    start: time
    end: time

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservationId": self.reservation_id,
            "roomId": self.room_id,
            "roomName": self.room_name,
            "reserverName": self.reserver_name,
            "date": self.date.isoformat(),
            "startTime": self.start.strftime("%H:%M"),
            "endTime": self.end.strftime("%H:%M"),
        }


Channel = Callable[[ReservationAdmittedEvent], None]


class InMemoryChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[ReservationAdmittedEvent] = []

    def __call__(self, event: ReservationAdmittedEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ReservationAdmittedEvent]:
        with self._lock:
            return list(self._events)


class LoggingChannel:
    def __call__(self, event: ReservationAdmittedEvent) -> None:
        logger.bind(**event.to_dict()).info(
            "Reservation notification processed: {} reserved {} on {} from {} to {}",
            event.reserver_name,
            event.room_name,
            event.date.isoformat(),
            event.start.strftime("%H:%M"),
            event.end.strftime("%H:%M"),
        )


class YamlEventLogChannel:
    """Appends events to an outbox file for a consumer to pick up."""

    def __init__(self, path: str | Path, now_provider: Callable[[], datetime] | None = None) -> None:
        self.path = Path(path)
        self._clock: Callable[[], datetime] = now_provider or datetime.now
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def __call__(self, event: ReservationAdmittedEvent) -> None:
        with self._lock:
            rows = read_yaml_list(self.path)
            rows.append(
                {
                    "event_time": self._clock().isoformat(timespec="seconds"),
                    "event_type": "RESERVATION_ADMITTED",
                    "payload": event.to_dict(),
                }
            )
            write_yaml_list(self.path, rows)

    def read(self) -> list[dict[str, Any]]:
        try:
            return read_yaml_list(self.path)
        except StoreUnavailableError:
            logger.warning("Outbox {} is unreadable", self.path)
            return []


def _deliver(channel: Channel, event: ReservationAdmittedEvent) -> None:
    try:
        channel(event)
    except Exception:
        logger.exception("Failed to dispatch admitted event for reservation {}", event.reservation_id)


class SynchronousDispatcher:
    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    def dispatch(self, event: ReservationAdmittedEvent) -> None:
        _deliver(self.channel, event)

    def flush(self, timeout: float | None = None) -> bool:
        return True

    def close(self) -> None:
        pass


class NotificationDispatcher:
    """Delivers events on a small thread pool so commits never wait on the channel."""

    def __init__(self, channel: Channel, max_workers: int = DEFAULT_DISPATCH_WORKERS) -> None:
        self.channel = channel
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reservation-dispatch")
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()

    def dispatch(self, event: ReservationAdmittedEvent) -> None:
        try:
            future = self._executor.submit(_deliver, self.channel, event)
        except RuntimeError:
            # Executor already shut down.
            logger.warning("Dispatcher closed; dropping admitted event for reservation {}", event.reservation_id)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued deliveries; return False if some are still running."""
        with self._lock:
            pending = set(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self._executor.shutdown(wait=True)
