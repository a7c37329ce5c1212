from __future__ import annotations

import abc
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from .yaml_store import read_yaml_list, write_yaml_list

DEFAULT_ROOMS: tuple[dict[str, Any], ...] = (
    {
        "id": 1,
        "name": "Innovation Lab",
        "description": "Creative space with whiteboards and brainstorming tools",
        "capacity": 8,
        "location": "Floor 1, Room 101",
    },
    {
        "id": 2,
        "name": "Executive Suite",
        "description": "Premium meeting room with video conferencing",
        "capacity": 12,
        "location": "Floor 3, Room 301",
    },
    {
        "id": 3,
        "name": "Training Room",
        "description": "Large room suitable for workshops and training sessions",
        "capacity": 25,
        "location": "Floor 2, Room 201",
    },
    {
        "id": 4,
        "name": "Quick Sync",
        "description": "Small huddle room for quick meetings",
        "capacity": 4,
        "location": "Floor 1, Room 102",
    },
    {
        "id": 5,
        "name": "Board Room",
        "description": "Formal meeting room for board meetings and presentations",
        "capacity": 16,
        "location": "Floor 3, Room 302",
    },
)


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    capacity: int
    description: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError("Room capacity must be a positive integer.")
        if not self.name.strip():
            raise ValueError("Room name must not be empty.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.room_id,
            "name": self.name,
            "capacity": self.capacity,
            "description": self.description,
            "location": self.location,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Room":
        return Room(
            room_id=int(data["id"]),
            name=str(data["name"]),
            capacity=int(data["capacity"]),
            description=(str(data["description"]) if data.get("description") is not None else None),
            location=(str(data["location"]) if data.get("location") is not None else None),
        )


class RoomDirectory(abc.ABC):
    """Read-only view of the rooms owned by the room management service."""

    @abc.abstractmethod
    def get_room(self, room_id: int) -> Room | None:
        raise NotImplementedError

    def room_exists(self, room_id: int) -> bool:
        return self.get_room(room_id) is not None


class InMemoryRoomDirectory(RoomDirectory):
    def __init__(self, rooms: Iterable[Room] = ()) -> None:
        self._rooms = {room.room_id: room for room in rooms}

    def get_room(self, room_id: int) -> Room | None:
        return self._rooms.get(room_id)

    @staticmethod
    def with_default_rooms() -> "InMemoryRoomDirectory":
        return InMemoryRoomDirectory(Room.from_dict(row) for row in DEFAULT_ROOMS)


class YamlRoomDirectory(RoomDirectory):
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.rooms_file = self.base_dir / "rooms.yaml"
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.rooms_file.exists():
            self.rooms_file.write_text("[]\n", encoding="utf-8")

    def get_rooms(self) -> list[Room]:
        return [Room.from_dict(row) for row in read_yaml_list(self.rooms_file)]

    def get_room(self, room_id: int) -> Room | None:
        for room in self.get_rooms():
            if room.room_id == room_id:
                return room
        return None

    def seed_default_rooms(self, overwrite: bool = False) -> list[Room]:
        rooms = [Room.from_dict(row) for row in DEFAULT_ROOMS]
        if not overwrite and self.get_rooms():
            return self.get_rooms()
        write_yaml_list(self.rooms_file, [room.to_dict() for room in rooms])
        return rooms
