from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable
import shutil
import threading

import yaml
from loguru import logger

from .errors import StoreUnavailableError
from .store import ReservationRecord, ReservationStore, RoomLockRegistry


def read_yaml_list(path: Path) -> list[dict[str, Any]]:
    """Read a YAML list of mappings; a missing file is an empty list."""
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
        raise StoreUnavailableError(f"Failed to read YAML file: {path}") from error

    if payload is None:
        return []
    if not isinstance(payload, list):
        raise StoreUnavailableError(f"Top-level YAML is not a list: {path}")

    for index, row in enumerate(payload):
        if not isinstance(row, dict):
            raise StoreUnavailableError(f"Row {index} of {path} is not a mapping")
    return payload


def write_yaml_list(path: Path, rows: list[dict[str, Any]]) -> None:
    temp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
        temp_path.replace(path)
    except OSError as error:
        raise StoreUnavailableError(f"Failed to write YAML file: {path}") from error
    finally:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)


def backup_corrupted_yaml(path: Path, now: datetime) -> Path | None:
    """Copy a corrupted file aside once per version of its contents."""
    timestamp = now.strftime("%Y%m%d%H%M%S")
    backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
    try:
        if not path.exists():
            return None
        modified = path.stat().st_mtime
        # copy2 keeps the mtime, so an existing backup of this version is at least as new.
        for existing in sorted(path.parent.glob(f"{path.stem}.corrupt.*{path.suffix}")):
            if existing.stat().st_mtime >= modified:
                return existing
        shutil.copy2(path, backup_path)
        return backup_path
    except OSError:
        logger.warning("Could not back up corrupted YAML file {}", path)
    return None


class YamlReservationStore(ReservationStore):
    """Reservations kept as one YAML file per room under ``base_dir``.

    Layout::

        base_dir/
          sequence.yaml                 last issued reservation id
          reservations/room-<id>.yaml   committed reservations of a room
          events/room-<id>.yaml         audit trail of a room

    Room files are only written while the room's lock is held, always by
    writing a temp file and renaming it over the old one. The sequence file
    has its own short lock, taken only to hand out an id.
    """

    def __init__(
        self,
        base_dir: str | Path = "data",
        now_provider: Callable[[], datetime] | None = None,
        locks: RoomLockRegistry | None = None,
    ) -> None:
        super().__init__(locks)
        self.base_dir = Path(base_dir)
        self.reservations_dir = self.base_dir / "reservations"
        self.events_dir = self.base_dir / "events"
        self.sequence_file = self.base_dir / "sequence.yaml"
        self._clock: Callable[[], datetime] = now_provider or datetime.now
        self._sequence_lock = threading.Lock()
        self._index_lock = threading.Lock()
        self._ensure_dirs()
        self._index: dict[int, int] = self._build_index()

    def _ensure_dirs(self) -> None:
        try:
            self.reservations_dir.mkdir(parents=True, exist_ok=True)
            self.events_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StoreUnavailableError(f"Cannot prepare data directory: {self.base_dir}") from error

    def _room_file(self, room_id: int) -> Path:
        return self.reservations_dir / f"room-{room_id}.yaml"

    def _events_file(self, room_id: int) -> Path:
        return self.events_dir / f"room-{room_id}.yaml"

    def _build_index(self) -> dict[int, int]:
        index: dict[int, int] = {}
        for path in sorted(self.reservations_dir.glob("room-*.yaml")):
            try:
                room_id = int(path.stem.removeprefix("room-"))
            except ValueError:
                continue
            try:
                records = self._load_room(room_id)
            except StoreUnavailableError:
                logger.warning("Room {} left out of the index; its reservation file is unavailable", room_id)
                continue
            for record in records:
                index[record.reservation_id] = room_id
        return index

    def locate(self, reservation_id: int) -> int | None:
        with self._index_lock:
            return self._index.get(reservation_id)

    def get(self, reservation_id: int) -> ReservationRecord | None:
        room_id = self.locate(reservation_id)
        if room_id is None:
            return None
        for record in self._load_room(room_id):
            if record.reservation_id == reservation_id:
                return record
        return None

    def room_reservations(self, room_id: int) -> list[ReservationRecord]:
        records = self._load_room(room_id)
        records.sort(key=lambda record: (record.slot.date, record.slot.start, record.reservation_id))
        return records

    def _load_room(self, room_id: int) -> list[ReservationRecord]:
        path = self._room_file(room_id)
        try:
            rows = read_yaml_list(path)
            return [ReservationRecord.from_dict(row) for row in rows]
        except (StoreUnavailableError, KeyError, TypeError, ValueError) as error:
            # Never reset a room file: back it up and refuse to serve the room.
            backup = backup_corrupted_yaml(path, self._clock())
            logger.error("Reservation file {} is unreadable (backup: {}): {}", path.name, backup, error)
            if isinstance(error, StoreUnavailableError):
                raise
            raise StoreUnavailableError(f"Corrupted reservation file: {path}") from error

    def _persist(
        self,
        changed: dict[int, list[ReservationRecord]],
        events: list[tuple[str, dict[str, Any]]],
    ) -> None:
        written: list[tuple[Path, list[dict[str, Any]] | None]] = []
        try:
            for room_id, records in changed.items():
                path = self._room_file(room_id)
                previous = read_yaml_list(path) if path.exists() else None
                records = sorted(records, key=lambda record: (record.slot.date, record.slot.start, record.reservation_id))
                write_yaml_list(path, [record.to_dict() for record in records])
                written.append((path, previous))
        except StoreUnavailableError:
            # All touched rooms end up as before or none of them do.
            self._restore(written)
            raise

        with self._index_lock:
            for room_id in changed:
                for reservation_id in [key for key, value in self._index.items() if value == room_id]:
                    del self._index[reservation_id]
            for room_id, records in changed.items():
                for record in records:
                    self._index[record.reservation_id] = room_id

        self._log_events(events)

    def _restore(self, written: list[tuple[Path, list[dict[str, Any]] | None]]) -> None:
        for path, previous in reversed(written):
            try:
                if previous is None:
                    path.unlink(missing_ok=True)
                else:
                    write_yaml_list(path, previous)
            except (OSError, StoreUnavailableError) as error:
                logger.error("Could not restore {} after a failed commit: {}", path.name, error)

    def _log_events(self, events: list[tuple[str, dict[str, Any]]]) -> None:
        # The change is already committed; a failing audit write must not undo it.
        timestamp = self._clock().isoformat(timespec="seconds")
        by_room: dict[int, list[dict[str, Any]]] = {}
        for event_type, payload in events:
            by_room.setdefault(int(payload["room_id"]), []).append(
                {"event_time": timestamp, "event_type": event_type, "payload": payload}
            )

        for room_id, entries in by_room.items():
            path = self._events_file(room_id)
            try:
                existing = read_yaml_list(path)
            except StoreUnavailableError as error:
                backup = backup_corrupted_yaml(path, self._clock())
                logger.warning("Event log {} was unreadable and has been reset (backup: {}): {}", path.name, backup, error)
                existing = []
            try:
                write_yaml_list(path, existing + entries)
            except StoreUnavailableError as error:
                logger.warning("Could not append {} audit events for room {}: {}", len(entries), room_id, error)

    def get_events(self, room_id: int) -> list[dict[str, Any]]:
        return read_yaml_list(self._events_file(room_id))

    def _allocate_id(self) -> int:
        with self._sequence_lock:
            rows = read_yaml_list(self.sequence_file)
            if rows:
                last_id = int(rows[0].get("last_id", 0))
            else:
                with self._index_lock:
                    last_id = max(self._index, default=0)
            next_id = last_id + 1
            write_yaml_list(self.sequence_file, [{"last_id": next_id}])
            return next_id
