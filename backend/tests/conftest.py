import random
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from soulconnect.domain import container as container_module
from soulconnect.domain.identity.models import Identity
from soulconnect.infra.redis import redis_client, set_redis_client
from soulconnect.main import app
from soulconnect.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await client.flushall()
		set_redis_client(original)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id headers, which are only accepted in
	dev mode, and every test runs against the in-memory stores.
	"""
	original = (
		settings.environment,
		settings.store_backend,
		settings.presence_sweeper_enabled,
		settings.persona_reply_delay_seconds,
	)
	settings.environment = "dev"
	settings.store_backend = "memory"
	settings.presence_sweeper_enabled = False
	settings.persona_reply_delay_seconds = 0.0
	try:
		yield
	finally:
		(
			settings.environment,
			settings.store_backend,
			settings.presence_sweeper_enabled,
			settings.persona_reply_delay_seconds,
		) = original


@pytest_asyncio.fixture
async def container(force_test_settings):
	built = container_module.build_container(backend="memory", rng=random.Random(7))
	container_module.set_container(built)
	try:
		yield built
	finally:
		await built.chat.close()
		await built.router.close()
		container_module.set_container(None)


@pytest.fixture
def make_identity(container):
	async def _make(identity_id: str, *, traits=(), synthetic: bool = False, last_active_at=None, name=None) -> Identity:
		identity = Identity(
			id=identity_id,
			display_name=name or identity_id.title(),
			traits=tuple(traits),
			is_synthetic=synthetic,
			last_active_at=last_active_at,
			email=None if synthetic else f"{identity_id}@example.com",
		)
		if synthetic:
			return await container.identity_store.upsert_synthetic(identity)
		return await container.identity_store.insert(identity)

	return _make


@pytest.fixture
def now():
	return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def api_client(container):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
