from datetime import timedelta

import pytest

from soulconnect.domain.exceptions import DuplicateConnection
from soulconnect.domain.identity.models import PresenceState


@pytest.mark.asyncio
async def test_register_rejects_duplicate_connection(container, make_identity):
    await make_identity("alice")
    registry = container.registry
    await registry.register("sid-1", "alice", "Alice")

    with pytest.raises(DuplicateConnection):
        await registry.register("sid-1", "alice", "Alice")

    assert len(registry) == 1
    assert registry.get("sid-1").identity_id == "alice"


@pytest.mark.asyncio
async def test_unregister_is_idempotent_and_marks_offline_on_last_connection(container, make_identity):
    await make_identity("alice")
    registry = container.registry
    await registry.register("sid-1", "alice", "Alice")
    await registry.register("sid-2", "alice", "Alice")
    await registry.touch("alice")

    first = await registry.unregister("sid-1")
    assert first is not None and first.connection_id == "sid-1"
    assert (await container.identity_store.get("alice")).is_online is True

    await registry.unregister("sid-2")
    assert (await container.identity_store.get("alice")).is_online is False
    assert await registry.unregister("sid-2") is None
    assert registry.online_identity_ids() == set()


@pytest.mark.asyncio
async def test_touch_signals_only_when_previously_offline(container, make_identity, now):
    await make_identity("alice", last_active_at=now - timedelta(hours=2))
    registry = container.registry

    change = await registry.touch("alice", now)
    assert change is not None
    assert change.previous is PresenceState.OFFLINE
    assert change.current is PresenceState.ONLINE

    assert await registry.touch("alice", now + timedelta(minutes=1)) is None
    # Away is not offline, so no signal either.
    assert await registry.touch("alice", now + timedelta(minutes=20)) is None


@pytest.mark.asyncio
async def test_touch_unknown_identity_returns_none(container):
    assert await container.registry.touch("ghost") is None


@pytest.mark.asyncio
async def test_current_presence_reads_stored_activity(container, make_identity, now):
    await make_identity("alice")
    registry = container.registry
    await registry.touch("alice", now)

    assert await registry.current_presence("alice", now + timedelta(minutes=4, seconds=59)) is PresenceState.ONLINE
    assert await registry.current_presence("alice", now + timedelta(minutes=29)) is PresenceState.AWAY
    assert await registry.current_presence("alice", now + timedelta(minutes=31)) is PresenceState.OFFLINE
    assert await registry.current_presence("nobody", now) is PresenceState.OFFLINE


@pytest.mark.asyncio
async def test_connections_for_lists_every_live_connection(container, make_identity):
    await make_identity("alice")
    await make_identity("bob")
    registry = container.registry
    await registry.register("sid-2", "alice", "Alice")
    await registry.register("sid-1", "alice", "Alice")
    await registry.register("sid-3", "bob", "Bob")

    assert [c.connection_id for c in registry.connections_for("alice")] == ["sid-1", "sid-2"]
    assert registry.online_identity_ids() == {"alice", "bob"}


@pytest.mark.asyncio
async def test_unregister_records_activity_and_reconnect_signals_online(container, make_identity, now):
    await make_identity("alice")
    registry = container.registry
    await registry.register("sid-1", "alice", "Alice")
    await registry.register("sid-2", "alice", "Alice")
    await registry.touch("alice", now)

    await registry.unregister("sid-1", now + timedelta(minutes=1))
    stored = await container.identity_store.get("alice")
    assert stored.last_active_at == now + timedelta(minutes=1)
    assert stored.is_online is True

    await registry.unregister("sid-2", now + timedelta(minutes=3))
    stored = await container.identity_store.get("alice")
    assert stored.last_active_at == now + timedelta(minutes=3)
    assert stored.is_online is False

    # Still recent by timestamp, but the flag says the identity went away.
    change = await registry.touch("alice", now + timedelta(minutes=4))
    assert change is not None
    assert change.previous is PresenceState.OFFLINE
    assert change.current is PresenceState.ONLINE
