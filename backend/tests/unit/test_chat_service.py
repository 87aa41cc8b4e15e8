import asyncio

import pytest

from soulconnect.domain.chat import policy
from soulconnect.domain.chat.models import MessageKind
from soulconnect.domain.exceptions import (
    AuthError,
    Conflict,
    NotAMember,
    NotFound,
    RateLimited,
    StorageError,
    ValidationError,
)
from soulconnect.settings import settings


class RecordingTransport:
    def __init__(self):
        self.sent = []

    async def deliver(self, connection_id, event, payload):
        self.sent.append((connection_id, event, payload))

    def events(self, connection_id, event=None):
        return [
            payload
            for cid, name, payload in self.sent
            if cid == connection_id and (event is None or name == event)
        ]

    def names(self, connection_id):
        return [name for cid, name, _ in self.sent if cid == connection_id]


@pytest.fixture
def transport(container):
    recorder = RecordingTransport()
    container.router.set_transport(recorder)
    return recorder


@pytest.fixture
def pair_room(container, make_identity):
    async def _build():
        await make_identity("alice")
        await make_identity("bob")
        room = await container.chat.open_private_room("alice", "bob")
        await container.chat.on_connect("sid-a", "alice")
        await container.chat.on_connect("sid-b", "bob")
        await container.chat.join_room("sid-a", room.room_id)
        await container.chat.join_room("sid-b", room.room_id)
        return room

    return _build


@pytest.mark.asyncio
async def test_send_persists_and_fans_out_to_every_member(container, transport, pair_room):
    room = await pair_room()

    message = await container.chat.send_from_connection("sid-a", room.room_id, "  evening, Bob. how was the void?  ")
    await container.router.flush()

    assert message.content == "evening, Bob. how was the void?"
    assert message.seq == 1
    assert message.kind is MessageKind.TEXT
    for sid in ("sid-a", "sid-b"):
        delivered = transport.events(sid, "message:new")
        assert [payload["message_id"] for payload in delivered] == [message.message_id]
    history, has_more = await container.chat.history("bob", room.room_id)
    assert [m.message_id for m in history] == [message.message_id]
    assert has_more is False


@pytest.mark.asyncio
async def test_invalid_content_is_rejected_before_persisting(container, transport, pair_room, monkeypatch):
    room = await pair_room()
    monkeypatch.setattr(settings, "message_max_length", 10)

    with pytest.raises(ValidationError) as empty:
        await container.chat.send_from_connection("sid-a", room.room_id, "   ")
    with pytest.raises(ValidationError) as too_long:
        await container.chat.send_from_connection("sid-a", room.room_id, "x" * 11)
    await container.router.flush()

    assert empty.value.code == "empty_content"
    assert too_long.value.code == "content_too_long"
    assert await container.chat_store.list_messages(room.room_id, offset=0, limit=10) == []
    assert transport.events("sid-b", "message:new") == []


@pytest.mark.asyncio
async def test_store_failure_means_no_broadcast(container, transport, pair_room, monkeypatch):
    room = await pair_room()

    async def _fail(*args, **kwargs):
        raise StorageError()

    monkeypatch.setattr(container.chat_store, "append_message", _fail)

    with pytest.raises(StorageError):
        await container.chat.send_from_connection("sid-a", room.room_id, "this one should vanish")
    await container.router.flush()

    assert transport.events("sid-a", "message:new") == []
    assert transport.events("sid-b", "message:new") == []


@pytest.mark.asyncio
async def test_non_member_and_inactive_room_are_rejected(container, transport, pair_room, make_identity):
    room = await pair_room()
    await make_identity("mallory")

    with pytest.raises(NotAMember):
        await container.chat.send_message("mallory", room.room_id, "let me in please, friends")

    await container.chat.archive_room("alice", room.room_id)
    with pytest.raises(Conflict) as exc:
        await container.chat.send_from_connection("sid-a", room.room_id, "anyone still here at all?")
    assert exc.value.code == "room_inactive"


@pytest.mark.asyncio
async def test_history_pages_partition_the_conversation(container, transport, pair_room):
    room = await pair_room()
    sent = []
    for index in range(5):
        message = await container.chat.send_from_connection("sid-a", room.room_id, f"message number {index}")
        sent.append(message.message_id)

    page_one, more_one = await container.chat.history("alice", room.room_id, page=1, limit=2)
    page_two, more_two = await container.chat.history("alice", room.room_id, page=2, limit=2)
    page_three, more_three = await container.chat.history("alice", room.room_id, page=3, limit=2)

    assert [m.message_id for m in page_one] == sent[3:5]
    assert [m.message_id for m in page_two] == sent[1:3]
    assert [m.message_id for m in page_three] == sent[0:1]
    assert (more_one, more_two, more_three) == (True, True, False)
    assert [m.seq for m in page_three + page_two + page_one] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_history_validates_paging_and_membership(container, pair_room):
    room = await pair_room()

    with pytest.raises(ValidationError):
        await container.chat.history("alice", room.room_id, page=0)
    with pytest.raises(ValidationError):
        await container.chat.history("alice", room.room_id, limit=settings.history_max_limit + 1)
    with pytest.raises(NotAMember):
        await container.chat.history("mallory", room.room_id)


@pytest.mark.asyncio
async def test_persona_replies_to_human_message(container, transport, make_identity):
    await make_identity("alice")
    await container.identities.seed_personas(container.personas.identities())
    room = await container.chat.open_private_room("alice", "ai-dark-therapist")
    await container.chat.on_connect("sid-a", "alice")
    await container.chat.join_room("sid-a", room.room_id)

    await container.chat.send_from_connection("sid-a", room.room_id, "hello")
    await container.chat.wait_for_background()
    await container.router.flush()

    history, _ = await container.chat.history("alice", room.room_id)
    assert [m.sender_id for m in history] == ["alice", "ai-dark-therapist"]
    reply = history[1]
    assert reply.kind is MessageKind.PERSONA
    assert reply.sender_display_name == "Dr. Umbra"
    assert reply.content in container.personas.personas["ai-dark-therapist"].banks["greetings"]
    assert len(transport.events("sid-a", "message:new")) == 2


@pytest.mark.asyncio
async def test_persona_does_not_answer_another_persona(container, transport):
    await container.identities.seed_personas(container.personas.identities())
    room = await container.chat.open_private_room("ai-chaos-master", "ai-dark-therapist")

    await container.chat.send_message("ai-chaos-master", room.room_id, "hello", kind=MessageKind.PERSONA)
    await container.chat.wait_for_background()

    history, _ = await container.chat.history("ai-chaos-master", room.room_id)
    assert len(history) == 1


@pytest.mark.asyncio
async def test_requested_persona_reply_answers_latest_message(container, transport, make_identity):
    await make_identity("alice")
    await container.identities.seed_personas(container.personas.identities())
    room = await container.chat.open_private_room("alice", "ai-dark-therapist")
    await container.chat.send_message("alice", room.room_id, "what does the dark want from me tonight?")
    await container.chat.wait_for_background()

    reply = await container.chat.request_persona_reply("alice", room.room_id)

    assert reply.kind is MessageKind.PERSONA
    assert reply.sender_id == "ai-dark-therapist"
    assert reply.content in container.personas.personas["ai-dark-therapist"].banks["deepQuestions"]
    history, _ = await container.chat.history("alice", room.room_id)
    assert [m.sender_id for m in history] == ["alice", "ai-dark-therapist", "ai-dark-therapist"]

    with pytest.raises(NotFound):
        await container.chat.request_persona_reply("alice", room.room_id, persona_id="ai-chaos-master")


@pytest.mark.asyncio
async def test_message_is_delivered_before_offline_notice(container, transport, pair_room):
    room = await pair_room()

    send = asyncio.create_task(container.chat.send_from_connection("sid-a", room.room_id, "goodbye for tonight, friend"))
    await asyncio.sleep(0)
    await container.chat.on_disconnect("sid-a")
    await send
    await container.router.flush()

    assert transport.names("sid-b") == ["message:new", "presence:update"]
    assert transport.events("sid-b", "presence:update")[0]["presence"] == "offline"


@pytest.mark.asyncio
async def test_offline_notice_waits_for_last_connection(container, transport, pair_room):
    room = await pair_room()
    await container.chat.on_connect("sid-a2", "alice")

    await container.chat.on_disconnect("sid-a")
    await container.router.flush()
    assert [p for p in transport.events("sid-b", "presence:update") if p["presence"] == "offline"] == []

    await container.chat.on_disconnect("sid-a2")
    await container.chat.on_disconnect("sid-a2")
    await container.router.flush()
    offline = [p for p in transport.events("sid-b", "presence:update") if p["presence"] == "offline"]
    assert [p["identity_id"] for p in offline] == ["alice"]
    assert container.router.members(room.room_id) == ["sid-b"]


@pytest.mark.asyncio
async def test_reconnect_after_disconnect_announces_online(container, transport, pair_room):
    await pair_room()

    await container.chat.on_disconnect("sid-a")
    await container.chat.on_connect("sid-a2", "alice")
    await container.router.flush()

    updates = transport.events("sid-b", "presence:update")
    assert [(p["identity_id"], p["presence"]) for p in updates] == [("alice", "offline"), ("alice", "online")]


@pytest.mark.asyncio
async def test_repeated_disconnect_during_send_announces_offline_once(container, transport, pair_room, monkeypatch):
    room = await pair_room()
    storing = asyncio.Event()
    release = asyncio.Event()
    append_message = container.chat_store.append_message

    async def _slow_append(*args, **kwargs):
        storing.set()
        await release.wait()
        return await append_message(*args, **kwargs)

    monkeypatch.setattr(container.chat_store, "append_message", _slow_append)

    send = asyncio.create_task(container.chat.send_from_connection("sid-a", room.room_id, "one last thing before I go"))
    await storing.wait()
    disconnects = asyncio.gather(container.chat.on_disconnect("sid-a"), container.chat.on_disconnect("sid-a"))
    await asyncio.sleep(0)
    release.set()
    await send
    await disconnects
    await container.router.flush()

    assert transport.names("sid-b") == ["message:new", "presence:update"]
    assert transport.events("sid-b", "presence:update")[0]["presence"] == "offline"

@pytest.mark.asyncio
async def test_send_rate_limit(container, transport, pair_room, monkeypatch):
    room = await pair_room()
    monkeypatch.setattr(settings, "send_limit_per_minute", 2)
    monkeypatch.setattr(policy, "_minute_bucket", lambda: "202405011200")

    await container.chat.send_from_connection("sid-a", room.room_id, "first of several messages")
    await container.chat.send_from_connection("sid-a", room.room_id, "second of several messages")
    with pytest.raises(RateLimited):
        await container.chat.send_from_connection("sid-a", room.room_id, "third of several messages")


@pytest.mark.asyncio
async def test_typing_goes_to_others_only_when_joined(container, transport, pair_room):
    room = await pair_room()
    await container.chat.on_connect("sid-a2", "alice")

    with pytest.raises(NotAMember):
        await container.chat.typing("sid-a2", room.room_id)
    await container.chat.typing("sid-a", room.room_id, True)
    await container.router.flush()

    assert transport.events("sid-a", "room:typing") == []
    assert transport.events("sid-b", "room:typing") == [
        {"room_id": room.room_id, "identity_id": "alice", "display_name": "Alice", "typing": True}
    ]


@pytest.mark.asyncio
async def test_status_update_is_stored_and_broadcast(container, transport, pair_room):
    await pair_room()

    payload = await container.chat.update_status("sid-a", "  brooding  ")
    await container.router.flush()

    assert payload["status"] == "brooding"
    assert (await container.identity_store.get("alice")).status == "brooding"
    assert transport.events("sid-b", "status:update")[-1]["status"] == "brooding"
    with pytest.raises(ValidationError):
        await container.chat.update_status("sid-a", "x" * 141)


@pytest.mark.asyncio
async def test_connect_requires_known_identity(container):
    with pytest.raises(AuthError):
        await container.chat.on_connect("sid-x", "ghost")
    assert len(container.registry) == 0
