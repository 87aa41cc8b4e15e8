"""Identity domain models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Tuple


DEFAULT_AVATAR = "👤"
DEFAULT_VILLAIN_LEVEL = "Still one of the good ones 😇"


class PresenceState(str, enum.Enum):
	ONLINE = "online"
	AWAY = "away"
	OFFLINE = "offline"


def normalise_traits(raw: Iterable[str] | None) -> Tuple[str, ...]:
	"""Strip, drop empties and de-duplicate while keeping first-seen order."""
	seen: dict[str, None] = {}
	for item in raw or ():
		value = str(item).strip()
		if value and value not in seen:
			seen[value] = None
	return tuple(seen)


@dataclass(slots=True)
class Identity:
	id: str
	display_name: str
	traits: Tuple[str, ...] = ()
	is_synthetic: bool = False
	last_active_at: Optional[datetime] = None
	email: Optional[str] = None
	password_hash: Optional[str] = None
	bio: str = ""
	avatar: str = DEFAULT_AVATAR
	is_online: bool = False
	status: Optional[str] = None
	test_results: Optional[Any] = None
	last_test_at: Optional[datetime] = None
	villain_score: int = 0
	villain_level: Optional[str] = None
	villain_test: Optional[dict[str, Any]] = None
	last_villain_test_at: Optional[datetime] = None
	created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

	@property
	def trait_set(self) -> frozenset[str]:
		return frozenset(self.traits)

	def to_public(self) -> dict[str, Any]:
		return {
			"id": self.id,
			"display_name": self.display_name,
			"avatar": self.avatar,
			"traits": list(self.traits),
			"bio": self.bio,
			"is_synthetic": self.is_synthetic,
			"last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
		}


@dataclass(slots=True)
class PresenceChange:
	identity_id: str
	previous: PresenceState
	current: PresenceState
	at: datetime

	def to_payload(self) -> dict[str, Any]:
		return {
			"identity_id": self.identity_id,
			"presence": self.current.value,
			"previous": self.previous.value,
			"at": self.at.isoformat(),
		}
