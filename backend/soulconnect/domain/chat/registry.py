"""Presence registry: who is connected right now and how recently they were active."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from soulconnect.domain.chat.models import Connection
from soulconnect.domain.exceptions import DuplicateConnection
from soulconnect.domain.identity import presence
from soulconnect.domain.identity.models import PresenceChange, PresenceState
from soulconnect.domain.identity.repo import IdentityStore
from soulconnect.obs import metrics as obs_metrics


class PresenceRegistry:
	"""Owns the live connection map and mirrors activity into the identity store."""

	def __init__(self, store: IdentityStore) -> None:
		self._store = store
		self._lock = asyncio.Lock()
		self._connections: Dict[str, Connection] = {}
		self._by_identity: Dict[str, Set[str]] = {}

	async def register(self, connection_id: str, identity_id: str, display_name: str) -> Connection:
		async with self._lock:
			if connection_id in self._connections:
				raise DuplicateConnection("duplicate_connection")
			connection = Connection(
				connection_id=connection_id,
				identity_id=identity_id,
				display_name=display_name,
			)
			self._connections[connection_id] = connection
			self._by_identity.setdefault(identity_id, set()).add(connection_id)
			count = len(self._connections)
		obs_metrics.set_registered_connections(count)
		return connection

	async def unregister(self, connection_id: str, at: Optional[datetime] = None) -> Optional[Connection]:
		"""Drop a connection; returns None when it was already gone."""
		at = at or datetime.now(timezone.utc)
		async with self._lock:
			connection = self._connections.pop(connection_id, None)
			if connection is None:
				return None
			siblings = self._by_identity.get(connection.identity_id)
			last_connection = True
			if siblings is not None:
				siblings.discard(connection_id)
				last_connection = not siblings
				if last_connection:
					self._by_identity.pop(connection.identity_id, None)
			count = len(self._connections)
		obs_metrics.set_registered_connections(count)
		if last_connection:
			await self._store.mark_offline(connection.identity_id, at)
		else:
			await self._store.touch(connection.identity_id, at)
		return connection

	async def touch(self, identity_id: str, at: Optional[datetime] = None) -> Optional[PresenceChange]:
		"""Record activity; returns a change signal when the identity was offline or flagged offline before."""
		at = at or datetime.now(timezone.utc)
		before = await self._store.touch(identity_id, at)
		if before is None:
			return None
		previous = presence.classify(before.last_active_at, at)
		# A disconnect clears the flag while the timestamp still reads as recent.
		if not before.is_online:
			previous = PresenceState.OFFLINE
		if previous is not PresenceState.OFFLINE:
			return None
		obs_metrics.inc_presence_change(PresenceState.ONLINE.value)
		return PresenceChange(
			identity_id=identity_id,
			previous=previous,
			current=PresenceState.ONLINE,
			at=at,
		)

	async def current_presence(self, identity_id: str, now: Optional[datetime] = None) -> PresenceState:
		identity = await self._store.get(identity_id)
		if identity is None:
			return PresenceState.OFFLINE
		return presence.classify(identity.last_active_at, now)

	def get(self, connection_id: str) -> Optional[Connection]:
		return self._connections.get(connection_id)

	def connections_for(self, identity_id: str) -> List[Connection]:
		ids = self._by_identity.get(identity_id, set())
		return [self._connections[cid] for cid in sorted(ids) if cid in self._connections]

	def online_identity_ids(self) -> Set[str]:
		return set(self._by_identity)

	def __len__(self) -> int:
		return len(self._connections)
