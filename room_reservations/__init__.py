from .engine import AdmissionEngine, AdmissionResult
from .errors import (
	AdmissionError,
	AdmissionErrorKind,
	AdmissionTimeoutError,
	ReservationConflictError,
	ReservationError,
	ReservationNotFoundError,
	ReservationValidationError,
	RoomNotFoundError,
	StoreUnavailableError,
)
from .interval import TimeSlot, find_conflicts, is_ordered, is_past, overlaps
from .notifications import (
	InMemoryChannel,
	LoggingChannel,
	NotificationDispatcher,
	ReservationAdmittedEvent,
	SynchronousDispatcher,
	YamlEventLogChannel,
)
from .rooms import InMemoryRoomDirectory, Room, RoomDirectory, YamlRoomDirectory
from .store import InMemoryReservationStore, ReservationRecord, ReservationStore, RoomLockRegistry, RoomUnitOfWork
from .validation import FailureKind, ReservationDraft, ValidatedCandidate, ValidationFailure, validate_candidate
from .yaml_store import YamlReservationStore

__all__ = [
	"AdmissionEngine",
	"AdmissionResult",
	"AdmissionError",
	"AdmissionErrorKind",
	"AdmissionTimeoutError",
	"ReservationConflictError",
	"ReservationError",
	"ReservationNotFoundError",
	"ReservationValidationError",
	"RoomNotFoundError",
	"StoreUnavailableError",
	"TimeSlot",
	"find_conflicts",
	"is_ordered",
	"is_past",
	"overlaps",
	"InMemoryChannel",
	"LoggingChannel",
	"NotificationDispatcher",
	"ReservationAdmittedEvent",
	"SynchronousDispatcher",
	"YamlEventLogChannel",
	"InMemoryRoomDirectory",
	"Room",
	"RoomDirectory",
	"YamlRoomDirectory",
	"InMemoryReservationStore",
	"ReservationRecord",
	"ReservationStore",
	"RoomLockRegistry",
	"RoomUnitOfWork",
	"FailureKind",
	"ReservationDraft",
	"ValidatedCandidate",
	"ValidationFailure",
	"validate_candidate",
	"YamlReservationStore",
]
