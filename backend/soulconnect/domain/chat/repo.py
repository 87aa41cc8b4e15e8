"""Room and message persistence for chat transport."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Tuple

import ulid

from soulconnect.domain.chat.models import Message, MessageKind, Room, RoomKey, RoomKind
from soulconnect.domain.exceptions import NotFound
from soulconnect.infra.postgres import get_pool, storage_guard


class ChatStore(Protocol):
	async def upsert_private_room(self, key: RoomKey, at: datetime) -> Tuple[Room, bool]: ...

	async def create_room(self, room: Room) -> Room: ...

	async def get_room(self, room_id: str) -> Optional[Room]: ...

	async def list_rooms_for(self, identity_id: str, *, active_only: bool = True) -> List[Room]: ...

	async def set_room_active(self, room_id: str, active: bool) -> Optional[Room]: ...

	async def append_message(
		self,
		room_id: str,
		sender_id: str,
		sender_display_name: str,
		content: str,
		kind: MessageKind,
		at: datetime,
	) -> Message: ...

	async def list_messages(self, room_id: str, *, offset: int, limit: int) -> List[Message]: ...


class MemoryChatStore:
	"""Process-local chat store used in tests and single-node development."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._rooms: dict[str, Room] = {}
		self._pairs: dict[str, str] = {}
		self._messages: dict[str, List[Message]] = {}

	async def upsert_private_room(self, key: RoomKey, at: datetime) -> Tuple[Room, bool]:
		async with self._lock:
			existing_id = self._pairs.get(key.pair_key)
			if existing_id is not None:
				return dataclasses.replace(self._rooms[existing_id]), False
			room = Room(
				room_id=str(ulid.new()),
				participant_ids=key.participants(),
				kind=RoomKind.PRIVATE,
				created_at=at,
				last_activity_at=at,
				pair_key=key.pair_key,
			)
			self._rooms[room.room_id] = room
			self._pairs[key.pair_key] = room.room_id
			self._messages[room.room_id] = []
			return dataclasses.replace(room), True

	async def create_room(self, room: Room) -> Room:
		async with self._lock:
			self._rooms[room.room_id] = dataclasses.replace(room)
			self._messages.setdefault(room.room_id, [])
			return dataclasses.replace(room)

	async def get_room(self, room_id: str) -> Optional[Room]:
		async with self._lock:
			room = self._rooms.get(room_id)
			return dataclasses.replace(room) if room else None

	async def list_rooms_for(self, identity_id: str, *, active_only: bool = True) -> List[Room]:
		async with self._lock:
			rooms = [
				dataclasses.replace(room)
				for room in self._rooms.values()
				if room.is_participant(identity_id) and (room.active or not active_only)
			]
		rooms.sort(key=lambda r: (r.last_activity_at, r.room_id), reverse=True)
		return rooms

	async def set_room_active(self, room_id: str, active: bool) -> Optional[Room]:
		async with self._lock:
			room = self._rooms.get(room_id)
			if room is None:
				return None
			room.active = active
			return dataclasses.replace(room)

	async def append_message(
		self,
		room_id: str,
		sender_id: str,
		sender_display_name: str,
		content: str,
		kind: MessageKind,
		at: datetime,
	) -> Message:
		async with self._lock:
			room = self._rooms.get(room_id)
			if room is None:
				raise NotFound("room_not_found")
			messages = self._messages.setdefault(room_id, [])
			sent_at = at
			seq = 1
			if messages:
				sent_at = max(at, messages[-1].sent_at)
				seq = messages[-1].seq + 1
			message = Message(
				message_id=str(ulid.new()),
				room_id=room_id,
				seq=seq,
				sender_id=sender_id,
				sender_display_name=sender_display_name,
				content=content,
				kind=kind,
				sent_at=sent_at,
			)
			messages.append(message)
			room.last_activity_at = max(room.last_activity_at, sent_at)
			return dataclasses.replace(message)

	async def list_messages(self, room_id: str, *, offset: int, limit: int) -> List[Message]:
		async with self._lock:
			messages = list(self._messages.get(room_id, []))
		# Newest first; seq breaks ties for identical timestamps.
		messages.sort(key=lambda m: (m.sent_at, m.seq), reverse=True)
		return [dataclasses.replace(m) for m in messages[offset : offset + limit]]


def _row_to_room(row: Mapping[str, Any]) -> Room:
	return Room(
		room_id=row["id"],
		participant_ids=tuple(row["participant_ids"]),
		kind=RoomKind(row["kind"]),
		created_at=row["created_at"],
		last_activity_at=row["last_activity_at"],
		active=bool(row["active"]),
		name=row["name"],
		pair_key=row["pair_key"],
	)


def _row_to_message(row: Mapping[str, Any]) -> Message:
	return Message(
		message_id=row["id"],
		room_id=row["room_id"],
		seq=int(row["seq"]),
		sender_id=row["sender_id"],
		sender_display_name=row["sender_display_name"],
		content=row["content"],
		kind=MessageKind(row["kind"]),
		sent_at=row["sent_at"],
		read=bool(row["read"]),
	)


class PostgresChatStore:
	"""Chat repository backed by asyncpg."""

	async def upsert_private_room(self, key: RoomKey, at: datetime) -> Tuple[Room, bool]:
		pool = await get_pool()
		async with storage_guard("chat.upsert_private_room"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					row = await conn.fetchrow(
						"""
						INSERT INTO chat_rooms (id, kind, pair_key, participant_ids, created_at, last_activity_at)
						VALUES ($1, 'private', $2, $3, $4, $4)
						ON CONFLICT (pair_key) DO NOTHING
						RETURNING *
						""",
						str(ulid.new()),
						key.pair_key,
						list(key.participants()),
						at,
					)
					if row is not None:
						return _row_to_room(row), True
					row = await conn.fetchrow("SELECT * FROM chat_rooms WHERE pair_key = $1", key.pair_key)
		return _row_to_room(row), False

	async def create_room(self, room: Room) -> Room:
		pool = await get_pool()
		async with storage_guard("chat.create_room"):
			row = await pool.fetchrow(
				"""
				INSERT INTO chat_rooms (id, kind, name, pair_key, participant_ids, active, created_at, last_activity_at)
				VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
				RETURNING *
				""",
				room.room_id,
				room.kind.value,
				room.name,
				room.pair_key,
				list(room.participant_ids),
				room.active,
				room.created_at,
				room.last_activity_at,
			)
		return _row_to_room(row)

	async def get_room(self, room_id: str) -> Optional[Room]:
		pool = await get_pool()
		async with storage_guard("chat.get_room"):
			row = await pool.fetchrow("SELECT * FROM chat_rooms WHERE id = $1", room_id)
		return _row_to_room(row) if row else None

	async def list_rooms_for(self, identity_id: str, *, active_only: bool = True) -> List[Room]:
		pool = await get_pool()
		async with storage_guard("chat.list_rooms_for"):
			rows = await pool.fetch(
				"""
				SELECT * FROM chat_rooms
				WHERE $1 = ANY(participant_ids) AND (active OR NOT $2)
				ORDER BY last_activity_at DESC, id DESC
				""",
				identity_id,
				active_only,
			)
		return [_row_to_room(row) for row in rows]

	async def set_room_active(self, room_id: str, active: bool) -> Optional[Room]:
		pool = await get_pool()
		async with storage_guard("chat.set_room_active"):
			row = await pool.fetchrow(
				"UPDATE chat_rooms SET active = $2 WHERE id = $1 RETURNING *",
				room_id,
				active,
			)
		return _row_to_room(row) if row else None

	async def append_message(
		self,
		room_id: str,
		sender_id: str,
		sender_display_name: str,
		content: str,
		kind: MessageKind,
		at: datetime,
	) -> Message:
		pool = await get_pool()
		async with storage_guard("chat.append_message"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					locked = await conn.fetchval("SELECT id FROM chat_rooms WHERE id = $1 FOR UPDATE", room_id)
					if locked is None:
						raise NotFound("room_not_found")
					last = await conn.fetchrow(
						"SELECT seq, sent_at FROM chat_messages WHERE room_id = $1 ORDER BY seq DESC LIMIT 1",
						room_id,
					)
					seq = 1
					sent_at = at
					if last is not None:
						seq = int(last["seq"]) + 1
						sent_at = max(at, last["sent_at"])
					row = await conn.fetchrow(
						"""
						INSERT INTO chat_messages (id, room_id, seq, sender_id, sender_display_name, content, kind, sent_at)
						VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
						RETURNING *
						""",
						str(ulid.new()),
						room_id,
						seq,
						sender_id,
						sender_display_name,
						content,
						kind.value,
						sent_at,
					)
					await conn.execute(
						"UPDATE chat_rooms SET last_activity_at = GREATEST(last_activity_at, $2) WHERE id = $1",
						room_id,
						sent_at,
					)
		return _row_to_message(row)

	async def list_messages(self, room_id: str, *, offset: int, limit: int) -> List[Message]:
		pool = await get_pool()
		async with storage_guard("chat.list_messages"):
			rows = await pool.fetch(
				"""
				SELECT * FROM chat_messages
				WHERE room_id = $1
				ORDER BY sent_at DESC, seq DESC
				OFFSET $2 LIMIT $3
				""",
				room_id,
				offset,
				limit,
			)
		return [_row_to_message(row) for row in rows]
