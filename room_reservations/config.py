from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

RESERVER_NAME_MAX_LENGTH = 255
NOTES_MAX_LENGTH = 500
DEFAULT_DATA_DIR = "data"
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
DEFAULT_DISPATCH_WORKERS = 1
RETRY_AFTER_SECONDS = 1


@dataclass(frozen=True)
class AdmissionSettings:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    dispatch_workers: int = DEFAULT_DISPATCH_WORKERS

    def __post_init__(self) -> None:
        if self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be greater than zero")
        if self.dispatch_workers <= 0:
            raise ValueError("dispatch_workers must be greater than zero")

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "AdmissionSettings":
        return AdmissionSettings(
            data_dir=Path(str(data.get("RESERVATIONS_DATA_DIR", DEFAULT_DATA_DIR))),
            lock_timeout=float(data.get("RESERVATIONS_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT_SECONDS)),
            dispatch_workers=int(data.get("RESERVATIONS_DISPATCH_WORKERS", DEFAULT_DISPATCH_WORKERS)),
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "RESERVATIONS_DATA_DIR": str(self.data_dir),
            "RESERVATIONS_LOCK_TIMEOUT": self.lock_timeout,
            "RESERVATIONS_DISPATCH_WORKERS": self.dispatch_workers,
        }
