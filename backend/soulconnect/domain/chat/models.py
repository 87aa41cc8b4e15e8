"""Domain models for rooms, messages and live connections."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Set, Tuple


class RoomKind(str, enum.Enum):
	PRIVATE = "private"
	GROUP = "group"


class MessageKind(str, enum.Enum):
	TEXT = "text"
	SYSTEM = "system"
	PERSONA = "persona"


@dataclass(slots=True, frozen=True)
class RoomKey:
	"""Canonical representation of an unordered private-room pair."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "RoomKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def pair_key(self) -> str:
		return f"pair:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)


def unique_participants(raw: Iterable[str]) -> Tuple[str, ...]:
	seen: dict[str, None] = {}
	for item in raw:
		value = str(item).strip()
		if value:
			seen.setdefault(value, None)
	return tuple(seen)


@dataclass(slots=True)
class Room:
	room_id: str
	participant_ids: Tuple[str, ...]
	kind: RoomKind
	created_at: datetime
	last_activity_at: datetime
	active: bool = True
	name: Optional[str] = None
	pair_key: Optional[str] = None

	def is_participant(self, identity_id: str) -> bool:
		return identity_id in self.participant_ids

	def to_dict(self) -> dict[str, Any]:
		return {
			"room_id": self.room_id,
			"participant_ids": list(self.participant_ids),
			"kind": self.kind.value,
			"name": self.name,
			"active": self.active,
			"created_at": self.created_at.isoformat(),
			"last_activity_at": self.last_activity_at.isoformat(),
		}


@dataclass(slots=True)
class Message:
	message_id: str
	room_id: str
	seq: int
	sender_id: str
	sender_display_name: str
	content: str
	kind: MessageKind
	sent_at: datetime
	read: bool = False

	def to_dict(self) -> dict[str, Any]:
		return {
			"message_id": self.message_id,
			"room_id": self.room_id,
			"seq": self.seq,
			"sender_id": self.sender_id,
			"sender_display_name": self.sender_display_name,
			"content": self.content,
			"kind": self.kind.value,
			"sent_at": self.sent_at.isoformat(),
			"read": self.read,
		}


@dataclass(slots=True)
class Connection:
	connection_id: str
	identity_id: str
	display_name: str
	joined_rooms: Set[str] = field(default_factory=set)
	# Held by a send from draft to delivery and by disconnect before the offline notice.
	lifecycle: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
