from __future__ import annotations

from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .config import RETRY_AFTER_SECONDS, AdmissionSettings
from .engine import AdmissionEngine, Dispatcher
from .errors import (
    AdmissionError,
    AdmissionTimeoutError,
    ReservationConflictError,
    ReservationValidationError,
    StoreUnavailableError,
)
from .notifications import NotificationDispatcher, YamlEventLogChannel
from .rooms import RoomDirectory, YamlRoomDirectory
from .store import ReservationRecord, ReservationStore
from .validation import FailureKind, ReservationDraft, validate_candidate
from .yaml_store import YamlReservationStore

ENGINE_EXTENSION = "room_reservations"


class PayloadError(ValueError):
    def __init__(self, details: dict[str, str]) -> None:
        super().__init__("Invalid payload")
        self.details = details


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    rooms: RoomDirectory | None = None,
    store: ReservationStore | None = None,
    dispatcher: Dispatcher | None = None,
    settings: AdmissionSettings | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or AdmissionSettings(data_dir=Path(data_dir))
    app.config.update(settings.to_mapping())

    clock: Callable[[], datetime] = now_provider or datetime.now
    if rooms is None:
        yaml_rooms = YamlRoomDirectory(settings.data_dir)
        yaml_rooms.seed_default_rooms()
        rooms = yaml_rooms
    if store is None:
        store = YamlReservationStore(settings.data_dir, now_provider=clock)
    if dispatcher is None:
        dispatcher = NotificationDispatcher(
            YamlEventLogChannel(settings.data_dir / "outbox.yaml", now_provider=clock),
            max_workers=settings.dispatch_workers,
        )

    engine = AdmissionEngine(store, rooms, dispatcher=dispatcher, clock=clock, lock_timeout=settings.lock_timeout)
    app.extensions[ENGINE_EXTENSION] = engine

    def _serialize(record: ReservationRecord) -> dict[str, Any]:
        try:
            room = rooms.get_room(record.room_id)
        except StoreUnavailableError:
            room = None
        return record.to_payload(room.name if room is not None else None)

    def _validation_failed(error: ReservationValidationError) -> Any:
        status = 404 if error.failure.kind == FailureKind.ROOM_NOT_FOUND else 400
        return jsonify({"ok": False, "message": "Validation failed", "details": error.failure.to_dict()}), status

    def _admission_failed(error: AdmissionError) -> Any:
        if isinstance(error, ReservationConflictError):
            return (
                jsonify(
                    {
                        "ok": False,
                        "message": str(error),
                        "conflictingReservationId": error.conflicting_id,
                    }
                ),
                409,
            )
        if isinstance(error, AdmissionTimeoutError):
            response = jsonify({"ok": False, "message": str(error)})
            response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
            return response, 503
        if isinstance(error, StoreUnavailableError):
            return jsonify({"ok": False, "message": "Reservation storage is temporarily unavailable."}), 503
        return jsonify({"ok": False, "message": str(error)}), 404

    def _read_payload() -> dict[str, Any]:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise PayloadError({"body": "Invalid JSON payload"})
        return payload

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/reservations/<int:reservation_id>")
    def show_reservation(reservation_id: int) -> Any:
        try:
            record = store.get(reservation_id)
        except StoreUnavailableError as error:
            return _admission_failed(error)
        if record is None:
            return jsonify({"ok": False, "message": "Reservation not found"}), 404
        return jsonify({"ok": True, "reservation": _serialize(record)})

    @app.get("/api/rooms/<int:room_id>/reservations")
    def list_room_reservations(room_id: int) -> Any:
        try:
            if not rooms.room_exists(room_id):
                return jsonify({"ok": False, "message": "Conference room not found"}), 404
            records = store.room_reservations(room_id)
        except StoreUnavailableError as error:
            return _admission_failed(error)
        return jsonify({"ok": True, "reservations": [_serialize(record) for record in records], "total": len(records)})

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        try:
            draft = _parse_draft(_read_payload())
            candidate = validate_candidate(draft, rooms, clock())
        except PayloadError as error:
            return jsonify({"ok": False, "message": "Validation failed", "details": error.details}), 400
        except ReservationValidationError as error:
            return _validation_failed(error)
        except StoreUnavailableError as error:
            return _admission_failed(error)

        result = engine.admit(candidate)
        if result.error is not None:
            return _admission_failed(result.error)
        return jsonify({"ok": True, "message": "Reservation created successfully", "reservation": _serialize(result.unwrap())}), 201

    @app.route("/api/reservations/<int:reservation_id>", methods=["PUT", "PATCH"])
    def update_reservation(reservation_id: int) -> Any:
        try:
            existing = store.get(reservation_id)
            if existing is None:
                return jsonify({"ok": False, "message": "Reservation not found"}), 404
            payload = _read_payload()
            if request.method == "PATCH":
                payload = {**_record_fields(existing), **payload}
            draft = _parse_draft(payload)
            candidate = validate_candidate(draft, rooms, clock())
        except PayloadError as error:
            return jsonify({"ok": False, "message": "Validation failed", "details": error.details}), 400
        except ReservationValidationError as error:
            return _validation_failed(error)
        except StoreUnavailableError as error:
            return _admission_failed(error)

        result = engine.re_admit(reservation_id, candidate)
        if result.error is not None:
            return _admission_failed(result.error)
        return jsonify({"ok": True, "message": "Reservation updated successfully", "reservation": _serialize(result.unwrap())})

    @app.delete("/api/reservations/<int:reservation_id>")
    def delete_reservation(reservation_id: int) -> Any:
        result = engine.withdraw(reservation_id)
        if result.error is not None:
            return _admission_failed(result.error)
        return jsonify({"ok": True, "message": "Reservation deleted successfully"})

    return app


def _record_fields(record: ReservationRecord) -> dict[str, Any]:
    return {
        "roomId": record.room_id,
        "reserverName": record.reserver_name,
        "date": record.slot.date.isoformat(),
        "startTime": record.slot.start.strftime("%H:%M"),
        "endTime": record.slot.end.strftime("%H:%M"),
        "notes": record.notes,
    }


def _parse_draft(payload: dict[str, Any]) -> ReservationDraft:
    details: dict[str, str] = {}

    def _parse(field: str, parser: Callable[[Any], Any]) -> Any:
        value = payload.get(field)
        if value is None or value == "":
            return None
        try:
            return parser(value)
        except (TypeError, ValueError):
            details[field] = "This value is not valid."
            return None

    draft = ReservationDraft(
        room_id=_parse("roomId", _parse_room_id),
        reserver_name=_parse("reserverName", _parse_text),
        date=_parse("date", lambda value: date.fromisoformat(str(value))),
        start=_parse("startTime", _parse_clock_time),
        end=_parse("endTime", _parse_clock_time),
        notes=_parse("notes", _parse_text),
    )
    if details:
        raise PayloadError(details)
    return draft


def _parse_room_id(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("roomId must be an integer")
    return int(value)


def _parse_text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("expected a string")
    return value


def _parse_clock_time(value: Any) -> time:
    parsed = time.fromisoformat(str(value))
    return parsed.replace(second=0, microsecond=0, tzinfo=None)


if __name__ == "__main__":
    from .logging_config import configure_logging

    configure_logging()
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
