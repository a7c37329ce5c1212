import tempfile
import threading
import unittest
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

from room_reservations import (
    AdmissionEngine,
    AdmissionResult,
    AdmissionTimeoutError,
    InMemoryChannel,
    InMemoryReservationStore,
    InMemoryRoomDirectory,
    NotificationDispatcher,
    ReservationConflictError,
    ReservationDraft,
    ReservationNotFoundError,
    ReservationStore,
    Room,
    RoomNotFoundError,
    StoreUnavailableError,
    SynchronousDispatcher,
    TimeSlot,
    ValidatedCandidate,
    YamlReservationStore,
    validate_candidate,
)
from room_reservations.store import ReservationRecord

DAY = date(2024, 6, 3)
NOW = datetime(2024, 6, 1, 12, 0)
ROOMS = [Room(1, "Innovation Lab", 8), Room(2, "Executive Suite", 12)]


def candidate(
    start: str,
    end: str,
    name: str = "Alice",
    room_id: int = 1,
    day: date = DAY,
    notes: str | None = None,
) -> ValidatedCandidate:
    room = next(room for room in ROOMS if room.room_id == room_id)
    return ValidatedCandidate(
        room=room,
        reserver_name=name,
        slot=TimeSlot(room_id=room_id, date=day, start=time.fromisoformat(start), end=time.fromisoformat(end)),
        notes=notes,
    )


class RaisingDispatcher:
    def dispatch(self, event: Any) -> None:
        raise RuntimeError("message bus is down")


class EngineContract:
    """Behaviour every store must give the engine; mixed into per-store test cases."""

    def make_store(self) -> ReservationStore:
        raise NotImplementedError

    def setUp(self) -> None:
        self.store = self.make_store()
        self.rooms = InMemoryRoomDirectory(ROOMS)
        self.channel = InMemoryChannel()
        self.engine = AdmissionEngine(
            self.store,
            self.rooms,
            dispatcher=SynchronousDispatcher(self.channel),
            clock=lambda: NOW,
            lock_timeout=2.0,
        )

    def test_end_to_end_scenario(self) -> None:
        alice = validate_candidate(
            ReservationDraft(1, "Alice", DAY, time(9, 0), time(10, 0)),
            self.rooms,
            NOW,
        )
        first = self.engine.admit(alice)
        self.assertTrue(first.ok)
        self.assertEqual(first.unwrap().reservation_id, 1)

        bob = self.engine.admit(candidate("09:30", "10:30", name="Bob"))
        self.assertFalse(bob.ok)
        self.assertIsInstance(bob.error, ReservationConflictError)
        self.assertEqual(bob.conflicting_id, 1)

        carol = self.engine.admit(candidate("10:00", "10:30", name="Carol"))
        self.assertTrue(carol.ok)

        moved = self.engine.re_admit(1, candidate("09:45", "10:15"))
        self.assertFalse(moved.ok)
        self.assertEqual(moved.conflicting_id, carol.unwrap().reservation_id)

        original = self.store.get(1)
        self.assertIsNotNone(original)
        self.assertEqual(original.slot.start, time(9, 0))
        self.assertEqual(original.slot.end, time(10, 0))
        self.assertEqual(original.reserver_name, "Alice")

    def test_conflict_changes_nothing(self) -> None:
        self.engine.admit(candidate("09:00", "10:00")).unwrap()
        before = self.store.room_reservations(1)

        result = self.engine.admit(candidate("09:59", "11:00", name="Bob"))

        self.assertFalse(result.ok)
        self.assertEqual(self.store.room_reservations(1), before)
        self.assertEqual(len(self.channel.events), 1)

    def test_overlap_is_scoped_per_room_and_day(self) -> None:
        self.engine.admit(candidate("09:00", "10:00")).unwrap()

        self.assertTrue(self.engine.admit(candidate("09:00", "10:00", room_id=2)).ok)
        self.assertTrue(self.engine.admit(candidate("09:00", "10:00", day=date(2024, 6, 4))).ok)

    def test_concurrent_admits_for_one_slot_have_single_winner(self) -> None:
        workers = 16
        barrier = threading.Barrier(workers)
        results: list[Any] = []
        results_lock = threading.Lock()

        def attempt(index: int) -> None:
            proposal = candidate("09:00", "10:00", name=f"Caller {index}")
            barrier.wait()
            result = self.engine.admit(proposal)
            with results_lock:
                results.append(result)

        threads = [threading.Thread(target=attempt, args=(index,)) for index in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        winners = [result for result in results if result.ok]
        losers = [result for result in results if not result.ok]
        self.assertEqual(len(results), workers)
        self.assertEqual(len(winners), 1)
        self.assertTrue(all(isinstance(result.error, ReservationConflictError) for result in losers))
        self.assertTrue(all(result.conflicting_id == winners[0].unwrap().reservation_id for result in losers))
        self.assertEqual(len(self.store.room_reservations(1)), 1)

    def test_concurrent_staggered_slots_never_double_book(self) -> None:
        starts = ["09:00", "09:15", "09:30", "09:45", "10:00", "10:15", "10:30", "10:45"]
        barrier = threading.Barrier(len(starts))

        def attempt(start: str) -> None:
            hour, minute = start.split(":")
            end = f"{int(hour) + 1:02d}:{minute}"
            barrier.wait()
            self.engine.admit(candidate(start, end, name=start))

        threads = [threading.Thread(target=attempt, args=(start,)) for start in starts]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        admitted = self.store.room_reservations(1)
        self.assertGreaterEqual(len(admitted), 1)
        for index, first in enumerate(admitted):
            for second in admitted[index + 1 :]:
                self.assertFalse(first.slot.start < second.slot.end and second.slot.start < first.slot.end)

    def test_re_admit_excludes_itself(self) -> None:
        record = self.engine.admit(candidate("09:00", "10:00")).unwrap()

        result = self.engine.re_admit(record.reservation_id, candidate("09:30", "10:30"))

        self.assertTrue(result.ok)
        updated = self.store.get(record.reservation_id)
        self.assertEqual(updated.slot.start, time(9, 30))
        self.assertEqual(updated.created_at, record.created_at)
        self.assertEqual(len(self.store.room_reservations(1)), 1)

    def test_re_admit_can_move_between_rooms(self) -> None:
        record = self.engine.admit(candidate("09:00", "10:00")).unwrap()
        blocker = self.engine.admit(candidate("09:00", "10:00", room_id=2, name="Bob")).unwrap()

        blocked = self.engine.re_admit(record.reservation_id, candidate("09:30", "10:30", room_id=2))
        self.assertEqual(blocked.conflicting_id, blocker.reservation_id)
        self.assertEqual(self.store.locate(record.reservation_id), 1)

        moved = self.engine.re_admit(record.reservation_id, candidate("10:00", "11:00", room_id=2))
        self.assertTrue(moved.ok)
        self.assertEqual(self.store.locate(record.reservation_id), 2)
        self.assertEqual(self.store.room_reservations(1), [])
        self.assertEqual(len(self.store.room_reservations(2)), 2)

    def test_re_admit_unknown_reservation(self) -> None:
        result = self.engine.re_admit(404, candidate("09:00", "10:00"))
        self.assertIsInstance(result.error, ReservationNotFoundError)

    def test_unknown_room_is_rejected(self) -> None:
        ghost = ValidatedCandidate(
            room=Room(9, "Ghost", 2),
            reserver_name="Alice",
            slot=TimeSlot(9, DAY, time(9, 0), time(10, 0)),
        )
        result = self.engine.admit(ghost)
        self.assertIsInstance(result.error, RoomNotFoundError)
        self.assertEqual(self.store.room_reservations(9), [])

    def test_withdraw_then_readmit_same_interval(self) -> None:
        record = self.engine.admit(candidate("09:00", "10:00")).unwrap()

        withdrawn = self.engine.withdraw(record.reservation_id)
        again = self.engine.admit(candidate("09:00", "10:00", name="Bob"))

        self.assertTrue(withdrawn.ok)
        self.assertEqual(withdrawn.unwrap().reservation_id, record.reservation_id)
        self.assertTrue(again.ok)
        self.assertIsNone(self.store.get(record.reservation_id))

    def test_withdraw_unknown_reservation(self) -> None:
        result = self.engine.withdraw(404)
        self.assertIsInstance(result.error, ReservationNotFoundError)
        with self.assertRaises(ReservationNotFoundError):
            result.unwrap()

    def test_admitted_event_is_dispatched(self) -> None:
        record = self.engine.admit(candidate("09:00", "10:00", name="Alice")).unwrap()

        self.assertEqual(len(self.channel.events), 1)
        event = self.channel.events[0]
        self.assertEqual(event.reservation_id, record.reservation_id)
        self.assertEqual(event.room_name, "Innovation Lab")
        self.assertEqual(
            event.to_dict(),
            {
                "reservationId": record.reservation_id,
                "roomId": 1,
                "roomName": "Innovation Lab",
                "reserverName": "Alice",
                "date": "2024-06-03",
                "startTime": "09:00",
                "endTime": "10:00",
            },
        )

    def test_dispatcher_failure_keeps_admission(self) -> None:
        engine = AdmissionEngine(self.store, self.rooms, dispatcher=RaisingDispatcher(), clock=lambda: NOW)

        result = engine.admit(candidate("09:00", "10:00"))

        self.assertTrue(result.ok)
        self.assertIsNotNone(self.store.get(result.unwrap().reservation_id))

    def test_lock_timeout_is_reported_not_waited_out(self) -> None:
        engine = AdmissionEngine(self.store, self.rooms, clock=lambda: NOW, lock_timeout=0.05)
        lock = self.store.locks.lock_for(1)
        lock.acquire()
        try:
            blocked = engine.admit(candidate("09:00", "10:00"))
            other_room = engine.admit(candidate("09:00", "10:00", room_id=2))
        finally:
            lock.release()

        self.assertIsInstance(blocked.error, AdmissionTimeoutError)
        self.assertIsInstance(blocked.error, StoreUnavailableError)
        self.assertTrue(other_room.ok)
        self.assertEqual(self.store.room_reservations(1), [])

    def test_interrupted_admission_leaves_no_trace(self) -> None:
        original = self.store._allocate_id

        def interrupted() -> int:
            raise KeyboardInterrupt

        self.store._allocate_id = interrupted  # type: ignore[method-assign]
        with self.assertRaises(KeyboardInterrupt):
            self.engine.admit(candidate("09:00", "10:00"))
        self.store._allocate_id = original  # type: ignore[method-assign]

        self.assertEqual(self.store.room_reservations(1), [])
        self.assertFalse(self.store.locks.lock_for(1).locked())
        self.assertTrue(self.engine.admit(candidate("09:00", "10:00")).ok)

    def test_updated_at_never_moves_backwards(self) -> None:
        clock = [datetime(2024, 6, 1, 12, 0)]
        engine = AdmissionEngine(self.store, self.rooms, clock=lambda: clock[0])
        record = engine.admit(candidate("09:00", "10:00")).unwrap()

        clock[0] = datetime(2024, 6, 1, 11, 0)
        updated = engine.re_admit(record.reservation_id, candidate("11:00", "12:00")).unwrap()

        self.assertEqual(updated.updated_at, record.updated_at)
        self.assertEqual(updated.created_at, record.created_at)


class TestEngineWithMemoryStore(EngineContract, unittest.TestCase):
    def make_store(self) -> ReservationStore:
        return InMemoryReservationStore()


class TestEngineWithYamlStore(EngineContract, unittest.TestCase):
    def make_store(self) -> ReservationStore:
        temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(temp_dir.cleanup)
        return YamlReservationStore(Path(temp_dir.name) / "data", now_provider=lambda: NOW)


class FailingStore(InMemoryReservationStore):
    def _persist(self, changed: dict[int, list[ReservationRecord]], events: list[tuple[str, dict[str, Any]]]) -> None:
        raise StoreUnavailableError("disk full")


class TestStoreFailures(unittest.TestCase):
    def test_store_failure_is_surfaced_once(self) -> None:
        store = FailingStore()
        engine = AdmissionEngine(store, InMemoryRoomDirectory(ROOMS), clock=lambda: NOW)

        result = engine.admit(candidate("09:00", "10:00"))

        self.assertIsInstance(result.error, StoreUnavailableError)
        self.assertEqual(store.room_reservations(1), [])
        self.assertFalse(store.locks.lock_for(1).locked())

    def test_unwrap_of_empty_result_raises(self) -> None:
        with self.assertRaises(ValueError):
            AdmissionResult().unwrap()

    def test_unwrap_raises_the_admission_error(self) -> None:
        with self.assertRaises(ReservationConflictError):
            AdmissionResult.failure(ReservationConflictError(3)).unwrap()


class TestBackgroundDispatch(unittest.TestCase):
    def test_failing_channel_does_not_affect_admission(self) -> None:
        def broken_channel(event: Any) -> None:
            raise ConnectionError("broker unreachable")

        dispatcher = NotificationDispatcher(broken_channel)
        self.addCleanup(dispatcher.close)
        store = InMemoryReservationStore()
        engine = AdmissionEngine(store, InMemoryRoomDirectory(ROOMS), dispatcher=dispatcher, clock=lambda: NOW)

        result = engine.admit(candidate("09:00", "10:00"))

        self.assertTrue(result.ok)
        self.assertTrue(dispatcher.flush(timeout=5))
        self.assertEqual(len(store.room_reservations(1)), 1)

    def test_events_reach_channel_after_flush(self) -> None:
        channel = InMemoryChannel()
        dispatcher = NotificationDispatcher(channel, max_workers=2)
        self.addCleanup(dispatcher.close)
        engine = AdmissionEngine(InMemoryReservationStore(), InMemoryRoomDirectory(ROOMS), dispatcher=dispatcher, clock=lambda: NOW)

        engine.admit(candidate("09:00", "10:00")).unwrap()
        engine.admit(candidate("10:00", "11:00")).unwrap()

        self.assertTrue(dispatcher.flush(timeout=5))
        self.assertEqual(sorted(event.reservation_id for event in channel.events), [1, 2])


if __name__ == "__main__":
    unittest.main()
