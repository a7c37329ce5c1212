from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timedelta
from pathlib import Path
import sys
import tempfile
import traceback

from room_reservations import (
    AdmissionEngine,
    LoggingChannel,
    NotificationDispatcher,
    ReservationDraft,
    YamlReservationStore,
    YamlRoomDirectory,
    validate_candidate,
)
from room_reservations.logging_config import configure_logging

CONTENDERS = 32


def main() -> int:
    print("[INFO] Room Reservations Concurrency Check")
    configure_logging(level="WARNING")

    with tempfile.TemporaryDirectory() as temp_dir:
        data_dir = Path(temp_dir) / "data"
        rooms = YamlRoomDirectory(data_dir)
        rooms.seed_default_rooms()
        store = YamlReservationStore(data_dir)
        dispatcher = NotificationDispatcher(LoggingChannel())
        engine = AdmissionEngine(store, rooms, dispatcher=dispatcher)

        now = datetime.now()
        day: date = (now + timedelta(days=1)).date()

        def contend(index: int) -> bool:
            draft = ReservationDraft(
                room_id=1,
                reserver_name=f"Contender {index}",
                date=day,
                start=time(10, 0),
                end=time(11, 0),
            )
            candidate = validate_candidate(draft, rooms, now)
            return engine.admit(candidate).ok

        with ThreadPoolExecutor(max_workers=CONTENDERS) as pool:
            outcomes = list(pool.map(contend, range(CONTENDERS)))

        dispatcher.flush(timeout=5)
        dispatcher.close()

        winners = outcomes.count(True)
        stored = store.room_reservations(1)
        print(f"[OK] Contenders: {CONTENDERS}")
        print(f"[OK] Admitted: {winners}")
        print(f"[OK] Rejected: {CONTENDERS - winners}")
        print(f"[OK] Stored reservations for room 1: {len(stored)}")
        print(f"[OK] Audit events for room 1: {len(store.get_events(1))}")

        if winners != 1 or len(stored) != 1:
            print("[ERROR] Expected exactly one admitted reservation.")
            return 1

    print("[DONE] Concurrency check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Concurrency check failed.", file=sys.stderr)
        traceback.print_exc()
        raise SystemExit(1)
