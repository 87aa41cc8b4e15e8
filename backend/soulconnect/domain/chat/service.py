"""Chat service: connection lifecycle, room membership and the message send flow."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Set, Tuple

from soulconnect.domain.chat import policy
from soulconnect.domain.chat.models import Connection, Message, MessageKind, Room
from soulconnect.domain.chat.registry import PresenceRegistry
from soulconnect.domain.chat.repo import ChatStore
from soulconnect.domain.chat.router import RoomRouter
from soulconnect.domain.exceptions import (
	AuthError,
	Conflict,
	NotAMember,
	NotFound,
	SoulConnectError,
	StorageError,
	ValidationError,
)
from soulconnect.domain.identity.models import Identity, PresenceState
from soulconnect.domain.identity.repo import IdentityStore
from soulconnect.domain.personas.selector import ConversationContext, PersonaResponseSelector
from soulconnect.obs import metrics as obs_metrics
from soulconnect.settings import settings

_LOG = logging.getLogger(__name__)

EVENT_MESSAGE = "message:new"
EVENT_TYPING = "room:typing"
EVENT_PRESENCE = "presence:update"
EVENT_STATUS = "status:update"

_STATUS_MAX_LENGTH = 140
# How far back an on-demand persona reply looks for the requester's last words.
_PROMPT_LOOKBACK = 50


def _now() -> datetime:
	return datetime.now(timezone.utc)


class ChatService:
	def __init__(
		self,
		identities: IdentityStore,
		store: ChatStore,
		registry: PresenceRegistry,
		router: RoomRouter,
		selector: PersonaResponseSelector,
		*,
		persona_delay_seconds: Optional[float] = None,
	) -> None:
		self._identities = identities
		self._store = store
		self._registry = registry
		self._router = router
		self._selector = selector
		self._persona_delay = (
			settings.persona_reply_delay_seconds if persona_delay_seconds is None else persona_delay_seconds
		)
		self._background: Set[asyncio.Task] = set()

	@property
	def registry(self) -> PresenceRegistry:
		return self._registry

	@property
	def router(self) -> RoomRouter:
		return self._router

	# Connection lifecycle

	async def on_connect(self, connection_id: str, identity_id: str) -> Connection:
		identity = await self._identities.get(identity_id)
		if identity is None:
			raise AuthError("unknown_identity")
		connection = await self._registry.register(connection_id, identity.id, identity.display_name)
		self._router.attach(connection_id)
		try:
			change = await self._registry.touch(identity.id)
		except StorageError:
			await self._router.detach(connection_id)
			await self._registry.unregister(connection_id)
			raise
		if change is not None:
			await self._broadcast_presence(identity.id, change.to_payload())
		_LOG.info("connection registered", extra={"connection_id": connection_id, "identity_id": identity.id})
		return connection

	async def on_disconnect(self, connection_id: str) -> None:
		connection = self._registry.get(connection_id)
		if connection is None:
			return
		# Waits for an in-flight send on this connection to finish delivering.
		async with connection.lifecycle:
			# Unregister before detaching so a join racing this disconnect cannot re-add the connection.
			try:
				removed = await self._registry.unregister(connection_id)
			except StorageError:
				_LOG.warning("offline flag not persisted", extra={"identity_id": connection.identity_id})
				removed = connection
			await self._router.detach(connection_id)
			if removed is None:
				return
			if self._registry.connections_for(connection.identity_id):
				return
			obs_metrics.inc_presence_change(PresenceState.OFFLINE.value)
			await self._broadcast_presence(
				connection.identity_id,
				{
					"identity_id": connection.identity_id,
					"presence": PresenceState.OFFLINE.value,
					"at": _now().isoformat(),
				},
			)

	def _require_connection(self, connection_id: str) -> Connection:
		connection = self._registry.get(connection_id)
		if connection is None:
			raise NotFound("connection_not_found")
		return connection

	# Rooms

	async def join_room(self, connection_id: str, room_id: str) -> Room:
		connection = self._require_connection(connection_id)
		room = await self._router.join(connection_id, room_id)
		await self._record_activity(connection.identity_id)
		return room

	async def leave_room(self, connection_id: str, room_id: str) -> None:
		self._require_connection(connection_id)
		await self._router.leave(connection_id, room_id)

	async def open_private_room(self, requester_id: str, peer_id: str) -> Room:
		if await self._identities.get(peer_id) is None:
			raise NotFound("identity_not_found")
		return await self._router.find_or_create_private_room(requester_id, peer_id)

	async def create_group_room(self, owner_id: str, participant_ids: Iterable[str], name: Optional[str]) -> Room:
		wanted = [pid for pid in participant_ids if pid != owner_id]
		found = {identity.id for identity in await self._identities.get_many(wanted)}
		missing = [pid for pid in wanted if pid not in found]
		if missing:
			raise NotFound("identity_not_found")
		return await self._router.create_group_room(owner_id, wanted, name)

	async def archive_room(self, requester_id: str, room_id: str) -> Room:
		return await self._router.archive_room(room_id, requester_id)

	async def list_rooms(self, identity_id: str) -> List[Room]:
		return await self._store.list_rooms_for(identity_id)

	async def history(self, requester_id: str, room_id: str, *, page: int = 1, limit: int = 50) -> Tuple[List[Message], bool]:
		"""Return one page of messages oldest-to-newest; pages count back from the newest message."""
		if page < 1:
			raise ValidationError("invalid_page")
		if limit < 1 or limit > settings.history_max_limit:
			raise ValidationError("invalid_limit")
		room = await self._store.get_room(room_id)
		if room is None:
			raise NotFound("room_not_found")
		if not room.is_participant(requester_id):
			raise NotAMember("not_member")
		rows = await self._store.list_messages(room_id, offset=(page - 1) * limit, limit=limit + 1)
		has_more = len(rows) > limit
		messages = rows[:limit]
		messages.reverse()
		return messages, has_more

	# Send flow

	async def send_from_connection(self, connection_id: str, room_id: str, content: Any) -> Message:
		connection = self._require_connection(connection_id)
		async with connection.lifecycle:
			return await self._send(connection.identity_id, connection.display_name, room_id, content)

	async def send_message(
		self,
		sender_id: str,
		room_id: str,
		content: Any,
		*,
		kind: MessageKind = MessageKind.TEXT,
	) -> Message:
		identity = await self._identities.get(sender_id)
		if identity is None:
			raise NotFound("identity_not_found")
		return await self._send(
			identity.id,
			identity.display_name,
			room_id,
			content,
			kind=kind,
			enforce_limit=not identity.is_synthetic,
		)

	async def _send(
		self,
		sender_id: str,
		display_name: str,
		room_id: str,
		content: Any,
		*,
		kind: MessageKind = MessageKind.TEXT,
		enforce_limit: bool = True,
	) -> Message:
		try:
			text = policy.clean_content(content)
			if enforce_limit:
				await policy.enforce_send_limit(sender_id)
			room = await self._store.get_room(room_id)
			if room is None:
				raise NotFound("room_not_found")
			if not room.is_participant(sender_id):
				raise NotAMember("not_member")
			if not room.active:
				raise Conflict("room_inactive")
			message = await self._store.append_message(room_id, sender_id, display_name, text, kind, _now())
		except SoulConnectError as exc:
			obs_metrics.inc_chat_send_failure(exc.code.split(":", 1)[0])
			raise
		obs_metrics.inc_chat_send(kind.value)
		await self._record_activity(sender_id)
		await self._router.broadcast(room_id, EVENT_MESSAGE, message.to_dict())
		if kind is not MessageKind.PERSONA:
			await self._dispatch_personas(room, message)
		return message

	async def request_persona_reply(
		self,
		requester_id: str,
		room_id: str,
		*,
		persona_id: Optional[str] = None,
		message: Optional[str] = None,
	) -> Message:
		"""Have a persona in the room answer right away.

		The prompt is ``message`` when given, otherwise the requester's latest message in the room.
		"""
		prompt = policy.clean_content(message) if message is not None else None
		await policy.enforce_send_limit(requester_id)
		room = await self._store.get_room(room_id)
		if room is None:
			raise NotFound("room_not_found")
		if not room.is_participant(requester_id):
			raise NotAMember("not_member")
		candidates = [
			pid
			for pid in room.participant_ids
			if pid != requester_id and (persona_id is None or pid == persona_id)
		]
		by_id = {identity.id: identity for identity in await self._identities.get_many([requester_id, *candidates])}
		requester = by_id.get(requester_id)
		if requester is None:
			raise NotFound("identity_not_found")
		persona = next((by_id[pid] for pid in candidates if pid in by_id and by_id[pid].is_synthetic), None)
		if persona is None:
			raise NotFound("persona_not_found")
		if prompt is None:
			recent = await self._store.list_messages(room_id, offset=0, limit=_PROMPT_LOOKBACK)
			prompt = next((m.content for m in recent if m.sender_id == requester_id), "")
		context = ConversationContext(
			message=prompt,
			sender_id=requester.id,
			room_id=room_id,
			sender_display_name=requester.display_name,
		)
		reply = self._selector.select_reply(persona.id, context)
		sent = await self._send(
			persona.id,
			persona.display_name,
			room_id,
			reply,
			kind=MessageKind.PERSONA,
			enforce_limit=False,
		)
		obs_metrics.inc_persona_reply("ok")
		return sent

	# Ephemeral signals

	async def typing(self, connection_id: str, room_id: str, is_typing: bool = True) -> None:
		connection = self._require_connection(connection_id)
		if not self._router.is_joined(connection_id, room_id):
			raise NotAMember("not_joined")
		await policy.enforce_typing_limit(connection.identity_id)
		await self._router.broadcast_except(
			room_id,
			EVENT_TYPING,
			{
				"room_id": room_id,
				"identity_id": connection.identity_id,
				"display_name": connection.display_name,
				"typing": bool(is_typing),
			},
			exclude=connection_id,
		)

	async def update_status(self, connection_id: str, status: Any) -> dict[str, Any]:
		connection = self._require_connection(connection_id)
		text = str(status or "").strip()
		if len(text) > _STATUS_MAX_LENGTH:
			raise ValidationError("status_too_long")
		await self._identities.update(connection.identity_id, {"status": text or None})
		await self._record_activity(connection.identity_id)
		payload = {
			"identity_id": connection.identity_id,
			"display_name": connection.display_name,
			"status": text or None,
		}
		await self._broadcast_to_identity_rooms(connection.identity_id, EVENT_STATUS, payload)
		return payload

	# Internals

	async def _record_activity(self, identity_id: str) -> None:
		try:
			change = await self._registry.touch(identity_id)
		except StorageError:
			_LOG.warning("activity not persisted", extra={"identity_id": identity_id})
			return
		if change is not None:
			await self._broadcast_presence(identity_id, change.to_payload())

	async def _broadcast_presence(self, identity_id: str, payload: dict[str, Any]) -> None:
		await self._broadcast_to_identity_rooms(identity_id, EVENT_PRESENCE, payload)

	async def _broadcast_to_identity_rooms(self, identity_id: str, event: str, payload: dict[str, Any]) -> None:
		try:
			rooms = await self._store.list_rooms_for(identity_id)
		except StorageError:
			_LOG.warning("room lookup failed for broadcast", extra={"identity_id": identity_id, "event": event})
			return
		for room in rooms:
			await self._router.broadcast(room.room_id, event, payload)

	async def _dispatch_personas(self, room: Room, trigger: Message) -> None:
		others = [pid for pid in room.participant_ids if pid != trigger.sender_id]
		if not others:
			return
		try:
			participants = await self._identities.get_many([trigger.sender_id, *others])
		except StorageError:
			_LOG.warning("persona lookup failed", extra={"room_id": room.room_id})
			return
		by_id = {identity.id: identity for identity in participants}
		sender = by_id.get(trigger.sender_id)
		if sender is not None and sender.is_synthetic:
			return
		for persona_id in others:
			persona = by_id.get(persona_id)
			if persona is None or not persona.is_synthetic:
				continue
			task = asyncio.create_task(self._persona_reply(persona, room.room_id, trigger), name=f"persona:{persona.id}")
			self._background.add(task)
			task.add_done_callback(self._background.discard)

	async def _persona_reply(self, persona: Identity, room_id: str, trigger: Message) -> None:
		try:
			if self._persona_delay > 0:
				await asyncio.sleep(self._persona_delay)
			context = ConversationContext(
				message=trigger.content,
				sender_id=trigger.sender_id,
				room_id=room_id,
				sender_display_name=trigger.sender_display_name,
			)
			reply = self._selector.select_reply(persona.id, context)
			await self._send(
				persona.id,
				persona.display_name,
				room_id,
				reply,
				kind=MessageKind.PERSONA,
				enforce_limit=False,
			)
		except asyncio.CancelledError:
			raise
		except Exception:
			obs_metrics.inc_persona_reply("error")
			_LOG.exception("persona reply failed", extra={"persona_id": persona.id, "room_id": room_id})
			return
		obs_metrics.inc_persona_reply("ok")

	async def wait_for_background(self) -> None:
		"""Wait for pending persona replies."""
		while self._background:
			await asyncio.gather(*list(self._background), return_exceptions=True)

	async def close(self) -> None:
		for task in list(self._background):
			task.cancel()
		await asyncio.gather(*list(self._background), return_exceptions=True)
		self._background.clear()
