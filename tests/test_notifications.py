import tempfile
import unittest
from datetime import date, datetime, time
from pathlib import Path

from room_reservations import (
    InMemoryChannel,
    LoggingChannel,
    NotificationDispatcher,
    ReservationAdmittedEvent,
    SynchronousDispatcher,
    YamlEventLogChannel,
)
from room_reservations.config import AdmissionSettings

EVENT = ReservationAdmittedEvent(
    reservation_id=7,
    room_id=1,
    room_name="Innovation Lab",
    reserver_name="Alice",
    date=date(2024, 6, 3),
    start=time(9, 0),
    end=time(10, 0),
)


class TestNotificationChannels(unittest.TestCase):
    def test_event_serialization(self) -> None:
        self.assertEqual(
            EVENT.to_dict(),
            {
                "reservationId": 7,
                "roomId": 1,
                "roomName": "Innovation Lab",
                "reserverName": "Alice",
                "date": "2024-06-03",
                "startTime": "09:00",
                "endTime": "10:00",
            },
        )

    def test_yaml_outbox_appends_events(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            channel = YamlEventLogChannel(Path(temp_dir) / "outbox.yaml", now_provider=lambda: datetime(2024, 6, 1, 9, 0))
            channel(EVENT)
            channel(EVENT)

            rows = channel.read()
            self.assertEqual(len(rows), 2)
            self.assertEqual(rows[0]["event_type"], "RESERVATION_ADMITTED")
            self.assertEqual(rows[0]["event_time"], "2024-06-01T09:00:00")
            self.assertEqual(rows[1]["payload"]["reservationId"], 7)

    def test_logging_channel_accepts_event(self) -> None:
        LoggingChannel()(EVENT)

    def test_synchronous_dispatcher_swallows_channel_failure(self) -> None:
        def broken(event: ReservationAdmittedEvent) -> None:
            raise ConnectionError("broker down")

        SynchronousDispatcher(broken).dispatch(EVENT)


class TestNotificationDispatcher(unittest.TestCase):
    def test_flush_waits_for_delivery(self) -> None:
        channel = InMemoryChannel()
        dispatcher = NotificationDispatcher(channel, max_workers=2)
        self.addCleanup(dispatcher.close)

        for _ in range(5):
            dispatcher.dispatch(EVENT)

        self.assertTrue(dispatcher.flush(timeout=5))
        self.assertEqual(len(channel.events), 5)

    def test_dispatch_after_close_is_dropped(self) -> None:
        channel = InMemoryChannel()
        dispatcher = NotificationDispatcher(channel)
        dispatcher.close()

        dispatcher.dispatch(EVENT)

        self.assertEqual(channel.events, [])


class TestAdmissionSettings(unittest.TestCase):
    def test_round_trips_through_mapping(self) -> None:
        settings = AdmissionSettings(data_dir=Path("var/reservations"), lock_timeout=2.5, dispatch_workers=3)
        self.assertEqual(AdmissionSettings.from_mapping(settings.to_mapping()), settings)

    def test_defaults_from_empty_mapping(self) -> None:
        settings = AdmissionSettings.from_mapping({})
        self.assertEqual(settings.data_dir, Path("data"))
        self.assertEqual(settings.lock_timeout, 5.0)
        self.assertEqual(settings.dispatch_workers, 1)

    def test_rejects_non_positive_values(self) -> None:
        with self.assertRaises(ValueError):
            AdmissionSettings(lock_timeout=0)
        with self.assertRaises(ValueError):
            AdmissionSettings(dispatch_workers=0)


if __name__ == "__main__":
    unittest.main()
