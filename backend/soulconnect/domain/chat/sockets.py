"""Socket.IO namespace for chat transport."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import socketio
from socketio.exceptions import ConnectionRefusedError

from soulconnect.domain.chat.service import ChatService
from soulconnect.domain.exceptions import SoulConnectError, ValidationError
from soulconnect.infra.auth import AuthenticatedUser, resolve_socket_user
from soulconnect.obs import logging as obs_logging
from soulconnect.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _field(payload: Any, name: str, *, fallback_scalar: bool = False) -> str:
	if isinstance(payload, dict):
		return str(payload.get(name) or "").strip()
	if fallback_scalar and isinstance(payload, str):
		return payload.strip()
	return ""


class ChatNamespace(socketio.AsyncNamespace):
	"""Namespace bridging socket sessions to the chat service; also the router's transport."""

	def __init__(self, service: ChatService | Callable[[], ChatService]) -> None:
		super().__init__("/chat")
		self._service_ref = service
		self._sessions: Dict[str, AuthenticatedUser] = {}

	@property
	def service(self) -> ChatService:
		if isinstance(self._service_ref, ChatService):
			return self._service_ref
		return self._service_ref()

	async def deliver(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
		obs_metrics.socket_event(self.namespace, event)
		await self.emit(event, payload, room=connection_id)

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
		with obs_logging.log_context(connection_id=sid):
			try:
				user = resolve_socket_user(auth_payload, _header(scope, "authorization"))
				connection = await self.service.on_connect(sid, user.id)
			except SoulConnectError as exc:
				obs_metrics.socket_disconnected(self.namespace)
				_LOG.info("socket connection refused", extra={"code": exc.code})
				raise ConnectionRefusedError(exc.detail) from None
		self._sessions[sid] = user
		await self.emit(
			"chat:ack",
			{"ok": True, "identity_id": connection.identity_id, "display_name": connection.display_name},
			room=sid,
		)

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		user = self._sessions.pop(sid, None)
		if user is None:
			return
		with obs_logging.log_context(connection_id=sid, identity_id=user.id):
			await self.service.on_disconnect(sid)

	def _user(self, sid: str) -> AuthenticatedUser:
		user = self._sessions.get(sid)
		if not user:
			raise ConnectionRefusedError("unauthenticated")
		return user

	def _context(self, sid: str):
		"""Bind the session's ids to every log record emitted while handling one event."""
		user = self._user(sid)
		return obs_logging.log_context(connection_id=sid, identity_id=user.id)

	async def _report(self, sid: str, event: str, exc: SoulConnectError) -> dict[str, Any]:
		await self.emit(
			"sys.error",
			{"event": event, "code": exc.code, "status": exc.status_code, "detail": exc.detail},
			room=sid,
		)
		return {"ok": False, "code": exc.code}

	async def on_join_room(self, sid: str, payload: Any) -> dict[str, Any]:
		obs_metrics.socket_event(self.namespace, "join_room")
		with self._context(sid):
			try:
				room_id = _field(payload, "room_id", fallback_scalar=True)
				if not room_id:
					raise ValidationError("room_id_required")
				room = await self.service.join_room(sid, room_id)
			except SoulConnectError as exc:
				return await self._report(sid, "join_room", exc)
		return {"ok": True, "room": room.to_dict()}

	async def on_leave_room(self, sid: str, payload: Any) -> dict[str, Any]:
		obs_metrics.socket_event(self.namespace, "leave_room")
		with self._context(sid):
			room_id = _field(payload, "room_id", fallback_scalar=True)
			if room_id:
				await self.service.leave_room(sid, room_id)
		return {"ok": True}

	async def on_send_message(self, sid: str, payload: Any) -> dict[str, Any]:
		obs_metrics.socket_event(self.namespace, "send_message")
		with self._context(sid):
			try:
				room_id = _field(payload, "room_id")
				if not room_id:
					raise ValidationError("room_id_required")
				content = payload.get("content") if isinstance(payload, dict) else None
				message = await self.service.send_from_connection(sid, room_id, content)
			except SoulConnectError as exc:
				return await self._report(sid, "send_message", exc)
		return {"ok": True, "message": message.to_dict()}

	async def on_typing(self, sid: str, payload: Any) -> dict[str, Any]:
		obs_metrics.socket_event(self.namespace, "typing")
		with self._context(sid):
			try:
				room_id = _field(payload, "room_id")
				if not room_id:
					raise ValidationError("room_id_required")
				is_typing = bool(payload.get("typing", True)) if isinstance(payload, dict) else True
				await self.service.typing(sid, room_id, is_typing)
			except SoulConnectError as exc:
				return await self._report(sid, "typing", exc)
		return {"ok": True}

	async def on_update_status(self, sid: str, payload: Any) -> dict[str, Any]:
		obs_metrics.socket_event(self.namespace, "update_status")
		with self._context(sid):
			try:
				status = payload.get("status") if isinstance(payload, dict) else payload
				result = await self.service.update_status(sid, status)
			except SoulConnectError as exc:
				return await self._report(sid, "update_status", exc)
		return {"ok": True, **result}
