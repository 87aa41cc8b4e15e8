from unittest.mock import AsyncMock

import pytest
import socketio
from socketio.exceptions import ConnectionRefusedError

from soulconnect.domain.chat.sockets import ChatNamespace
from soulconnect.infra.auth import issue_access_token
from soulconnect.obs import logging as obs_logging
from soulconnect.settings import settings


def _scope(token=None):
    headers = []
    if token:
        headers.append((b"authorization", f"Bearer {token}".encode()))
    return {"asgi.scope": {"headers": headers}}


@pytest.fixture
def namespace(container):
    server = socketio.AsyncServer(async_mode="asgi")
    ns = ChatNamespace(container.chat)
    server.register_namespace(ns)
    ns.emit = AsyncMock()
    container.router.set_transport(ns)
    return ns


def _emitted(namespace, event, sid=None):
    return [
        call.args[1]
        for call in namespace.emit.await_args_list
        if call.args[0] == event and (sid is None or call.kwargs.get("room") == sid)
    ]


@pytest.mark.asyncio
async def test_connect_requires_token(namespace, monkeypatch):
    monkeypatch.setattr(settings, "environment", "production")
    with pytest.raises(ConnectionRefusedError):
        await namespace.trigger_event("connect", "sid-1", _scope())


@pytest.mark.asyncio
async def test_connect_rejects_unknown_identity(namespace):
    token = issue_access_token("ghost", display_name="Ghost")
    with pytest.raises(ConnectionRefusedError):
        await namespace.trigger_event("connect", "sid-1", _scope(token))


@pytest.mark.asyncio
async def test_connect_with_bearer_token_acks(namespace, make_identity, container):
    await make_identity("alice")
    token = issue_access_token("alice", display_name="Alice")

    await namespace.trigger_event("connect", "sid-1", _scope(token))

    assert _emitted(namespace, "chat:ack", "sid-1") == [{"ok": True, "identity_id": "alice", "display_name": "Alice"}]
    assert container.registry.get("sid-1").identity_id == "alice"


@pytest.mark.asyncio
async def test_dev_auth_payload_is_accepted(namespace, make_identity):
    await make_identity("alice")

    await namespace.trigger_event("connect", "sid-1", {"asgi.scope": {"headers": []}}, {"user_id": "alice"})

    assert _emitted(namespace, "chat:ack", "sid-1")[0]["identity_id"] == "alice"


@pytest.mark.asyncio
async def test_send_message_reaches_room_members(namespace, make_identity, container):
    await make_identity("alice")
    await make_identity("bob")
    room = await container.chat.open_private_room("alice", "bob")
    await namespace.trigger_event("connect", "sid-a", _scope(issue_access_token("alice", display_name="Alice")))
    await namespace.trigger_event("connect", "sid-b", _scope(issue_access_token("bob", display_name="Bob")))

    joined = await namespace.trigger_event("join_room", "sid-a", {"room_id": room.room_id})
    assert joined["ok"] is True
    assert (await namespace.trigger_event("join_room", "sid-b", room.room_id))["ok"] is True

    ack = await namespace.trigger_event("send_message", "sid-a", {"room_id": room.room_id, "content": "meet me at midnight"})
    await container.router.flush()

    assert ack["ok"] is True
    assert ack["message"]["content"] == "meet me at midnight"
    delivered = _emitted(namespace, "message:new", "sid-b")
    assert [payload["message_id"] for payload in delivered] == [ack["message"]["message_id"]]


@pytest.mark.asyncio
async def test_errors_are_reported_to_sender(namespace, make_identity, container):
    await make_identity("alice")
    await make_identity("bob")
    await make_identity("mallory")
    room = await container.chat.open_private_room("alice", "bob")
    await namespace.trigger_event("connect", "sid-m", _scope(issue_access_token("mallory", display_name="Mallory")))

    ack = await namespace.trigger_event("join_room", "sid-m", {"room_id": room.room_id})
    assert ack == {"ok": False, "code": "not_member"}
    errors = _emitted(namespace, "sys.error", "sid-m")
    assert errors == [{"event": "join_room", "code": "not_member", "status": 403, "detail": "not_member"}]

    missing = await namespace.trigger_event("send_message", "sid-m", {"content": "hello"})
    assert missing == {"ok": False, "code": "room_id_required"}


@pytest.mark.asyncio
async def test_typing_and_status(namespace, make_identity, container):
    await make_identity("alice")
    await make_identity("bob")
    room = await container.chat.open_private_room("alice", "bob")
    await namespace.trigger_event("connect", "sid-a", _scope(issue_access_token("alice", display_name="Alice")))
    await namespace.trigger_event("connect", "sid-b", _scope(issue_access_token("bob", display_name="Bob")))
    await namespace.trigger_event("join_room", "sid-a", {"room_id": room.room_id})
    await namespace.trigger_event("join_room", "sid-b", {"room_id": room.room_id})

    assert (await namespace.trigger_event("typing", "sid-a", {"room_id": room.room_id, "typing": True}))["ok"] is True
    status = await namespace.trigger_event("update_status", "sid-a", {"status": "lurking"})
    await container.router.flush()

    assert status["status"] == "lurking"
    assert _emitted(namespace, "room:typing", "sid-a") == []
    assert _emitted(namespace, "room:typing", "sid-b")[0]["identity_id"] == "alice"
    assert _emitted(namespace, "status:update", "sid-b")[0]["status"] == "lurking"


@pytest.mark.asyncio
async def test_disconnect_broadcasts_offline(namespace, make_identity, container):
    await make_identity("alice")
    await make_identity("bob")
    room = await container.chat.open_private_room("alice", "bob")
    await namespace.trigger_event("connect", "sid-a", _scope(issue_access_token("alice", display_name="Alice")))
    await namespace.trigger_event("connect", "sid-b", _scope(issue_access_token("bob", display_name="Bob")))
    await namespace.trigger_event("join_room", "sid-b", {"room_id": room.room_id})

    await namespace.trigger_event("disconnect", "sid-a")
    await namespace.trigger_event("disconnect", "sid-a")
    await container.router.flush()

    offline = [p for p in _emitted(namespace, "presence:update", "sid-b") if p["presence"] == "offline"]
    assert [p["identity_id"] for p in offline] == ["alice"]
    assert container.registry.get("sid-a") is None


@pytest.mark.asyncio
async def test_handlers_bind_connection_and_identity_to_logs(namespace, make_identity, container, monkeypatch):
    await make_identity("alice")
    await namespace.trigger_event("connect", "sid-a", _scope(issue_access_token("alice", display_name="Alice")))
    seen = []
    update_status = container.chat.update_status

    async def _update_status(connection_id, status):
        seen.append(obs_logging.context_fields())
        return await update_status(connection_id, status)

    monkeypatch.setattr(container.chat, "update_status", _update_status)

    await namespace.trigger_event("update_status", "sid-a", {"status": "haunting"})

    assert seen == [{"connection_id": "sid-a", "identity_id": "alice"}]
    assert obs_logging.context_fields() == {}
