"""Room router: room membership for live connections and per-connection fan-out."""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

import ulid

from soulconnect.domain.chat.models import Room, RoomKey, RoomKind, unique_participants
from soulconnect.domain.chat.registry import PresenceRegistry
from soulconnect.domain.chat.repo import ChatStore
from soulconnect.domain.exceptions import NotAMember, NotFound, ValidationError
from soulconnect.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

_CLOSE = object()


class Transport(Protocol):
	async def deliver(self, connection_id: str, event: str, payload: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class _Outbox:
	queue: asyncio.Queue
	task: asyncio.Task


def _now() -> datetime:
	return datetime.now(timezone.utc)


class RoomRouter:
	"""Tracks joined connections per room and delivers events through one sender task per connection."""

	def __init__(self, store: ChatStore, registry: PresenceRegistry, transport: Optional[Transport] = None) -> None:
		self._store = store
		self._registry = registry
		self._transport = transport
		self._members: Dict[str, Set[str]] = {}
		# Locks live only while some coroutine holds or waits on them.
		self._room_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
		self._pair_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
		self._outboxes: Dict[str, _Outbox] = {}

	def set_transport(self, transport: Optional[Transport]) -> None:
		self._transport = transport

	def _room_lock(self, room_id: str) -> asyncio.Lock:
		return self._room_locks.setdefault(room_id, asyncio.Lock())

	async def find_or_create_private_room(self, id_a: str, id_b: str) -> Room:
		if id_a == id_b:
			raise ValidationError("self_room")
		key = RoomKey.from_participants(id_a, id_b)
		lock = self._pair_locks.setdefault(key.pair_key, asyncio.Lock())
		async with lock:
			room, created = await self._store.upsert_private_room(key, _now())
		if created:
			obs_metrics.inc_room_created(RoomKind.PRIVATE.value)
			_LOG.info("private room created", extra={"room_id": room.room_id})
		return room

	async def create_group_room(self, owner_id: str, participant_ids: Iterable[str], name: Optional[str] = None) -> Room:
		participants = unique_participants([owner_id, *participant_ids])
		if len(participants) < 2:
			raise ValidationError("not_enough_participants")
		now = _now()
		room = Room(
			room_id=str(ulid.new()),
			participant_ids=participants,
			kind=RoomKind.GROUP,
			created_at=now,
			last_activity_at=now,
			name=(name or "").strip() or None,
		)
		created = await self._store.create_room(room)
		obs_metrics.inc_room_created(RoomKind.GROUP.value)
		return created

	async def archive_room(self, room_id: str, requester_id: Optional[str] = None) -> Room:
		room = await self._store.get_room(room_id)
		if room is None:
			raise NotFound("room_not_found")
		if requester_id is not None and not room.is_participant(requester_id):
			raise NotAMember("not_member")
		archived = await self._store.set_room_active(room_id, False)
		if archived is None:
			raise NotFound("room_not_found")
		return archived

	async def join(self, connection_id: str, room_id: str) -> Room:
		connection = self._registry.get(connection_id)
		if connection is None:
			raise NotFound("connection_not_found")
		room = await self._store.get_room(room_id)
		if room is None:
			raise NotFound("room_not_found")
		if not room.is_participant(connection.identity_id):
			raise NotAMember("not_member")
		async with self._room_lock(room_id):
			# The connection may have been unregistered while the room was loading.
			if self._registry.get(connection_id) is not connection:
				raise NotFound("connection_not_found")
			self._ensure_outbox(connection_id)
			self._members.setdefault(room_id, set()).add(connection_id)
			connection.joined_rooms.add(room_id)
		return room

	async def leave(self, connection_id: str, room_id: str) -> None:
		async with self._room_lock(room_id):
			members = self._members.get(room_id)
			if members is not None:
				members.discard(connection_id)
				if not members:
					self._members.pop(room_id, None)
		connection = self._registry.get(connection_id)
		if connection is not None:
			connection.joined_rooms.discard(room_id)

	def is_joined(self, connection_id: str, room_id: str) -> bool:
		return connection_id in self._members.get(room_id, ())

	def members(self, room_id: str) -> List[str]:
		return sorted(self._members.get(room_id, ()))

	async def broadcast(self, room_id: str, event: str, payload: dict[str, Any]) -> int:
		return await self._fanout(room_id, event, payload, exclude=None)

	async def broadcast_except(self, room_id: str, event: str, payload: dict[str, Any], exclude: str) -> int:
		return await self._fanout(room_id, event, payload, exclude=exclude)

	async def send_to(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
		return self._enqueue(connection_id, event, payload)

	async def _fanout(self, room_id: str, event: str, payload: dict[str, Any], *, exclude: Optional[str]) -> int:
		delivered = 0
		# Enqueue under the room lock so concurrent broadcasts reach every member in one order.
		async with self._room_lock(room_id):
			for connection_id in sorted(self._members.get(room_id, ())):
				if connection_id == exclude:
					continue
				if self._enqueue(connection_id, event, payload):
					delivered += 1
		obs_metrics.inc_broadcast(event)
		return delivered

	def _enqueue(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
		outbox = self._outboxes.get(connection_id)
		if outbox is None:
			obs_metrics.inc_broadcast_drop("connection_gone")
			return False
		outbox.queue.put_nowait((event, payload))
		return True

	def _ensure_outbox(self, connection_id: str) -> None:
		if connection_id in self._outboxes:
			return
		queue: asyncio.Queue = asyncio.Queue()
		task = asyncio.create_task(self._drain(connection_id, queue), name=f"outbox:{connection_id}")
		self._outboxes[connection_id] = _Outbox(queue=queue, task=task)

	def attach(self, connection_id: str) -> None:
		self._ensure_outbox(connection_id)

	async def detach(self, connection_id: str) -> Set[str]:
		"""Remove a connection from every room and close its outbox; returns the rooms it left."""
		connection = self._registry.get(connection_id)
		joined = set(connection.joined_rooms) if connection is not None else set()
		joined.update(room_id for room_id, members in list(self._members.items()) if connection_id in members)
		for room_id in joined:
			await self.leave(connection_id, room_id)
		outbox = self._outboxes.pop(connection_id, None)
		if outbox is not None:
			outbox.queue.put_nowait(_CLOSE)
		return joined

	async def _drain(self, connection_id: str, queue: asyncio.Queue) -> None:
		while True:
			item = await queue.get()
			try:
				if item is _CLOSE:
					return
				event, payload = item
				transport = self._transport
				if transport is None:
					obs_metrics.inc_broadcast_drop("no_transport")
					continue
				try:
					await transport.deliver(connection_id, event, payload)
				except Exception:
					obs_metrics.inc_broadcast_drop("transport_error")
					_LOG.exception(
						"event delivery failed",
						extra={"connection_id": connection_id, "event": event},
					)
			finally:
				queue.task_done()

	async def flush(self) -> None:
		"""Wait until every queued event has been handed to the transport."""
		await asyncio.gather(*(outbox.queue.join() for outbox in list(self._outboxes.values())))

	async def close(self) -> None:
		outboxes = list(self._outboxes.values())
		self._outboxes.clear()
		for outbox in outboxes:
			outbox.queue.put_nowait(_CLOSE)
		await asyncio.gather(*(outbox.task for outbox in outboxes), return_exceptions=True)
		self._members.clear()
