"""AsyncPG pool management and schema bootstrap."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from soulconnect.domain.exceptions import Conflict, StorageError
from soulconnect.settings import settings

_LOG = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS identities (
	id TEXT PRIMARY KEY,
	display_name TEXT NOT NULL,
	email TEXT UNIQUE,
	password_hash TEXT,
	traits TEXT[] NOT NULL DEFAULT '{}',
	bio TEXT NOT NULL DEFAULT '',
	avatar TEXT NOT NULL DEFAULT '',
	is_synthetic BOOLEAN NOT NULL DEFAULT FALSE,
	is_online BOOLEAN NOT NULL DEFAULT FALSE,
	status TEXT,
	last_active_at TIMESTAMPTZ,
	test_results JSONB,
	last_test_at TIMESTAMPTZ,
	villain_score INTEGER NOT NULL DEFAULT 0,
	villain_level TEXT,
	villain_test JSONB,
	last_villain_test_at TIMESTAMPTZ,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE UNIQUE INDEX IF NOT EXISTS identities_display_name_idx ON identities (lower(display_name));
CREATE INDEX IF NOT EXISTS identities_online_idx ON identities (is_online, last_active_at);

CREATE TABLE IF NOT EXISTS chat_rooms (
	id TEXT PRIMARY KEY,
	kind TEXT NOT NULL,
	name TEXT,
	pair_key TEXT UNIQUE,
	participant_ids TEXT[] NOT NULL,
	active BOOLEAN NOT NULL DEFAULT TRUE,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	last_activity_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS chat_rooms_participants_idx ON chat_rooms USING GIN (participant_ids);

CREATE TABLE IF NOT EXISTS chat_messages (
	id TEXT PRIMARY KEY,
	room_id TEXT NOT NULL REFERENCES chat_rooms (id),
	seq BIGINT NOT NULL,
	sender_id TEXT NOT NULL,
	sender_display_name TEXT NOT NULL,
	content TEXT NOT NULL,
	kind TEXT NOT NULL DEFAULT 'text',
	sent_at TIMESTAMPTZ NOT NULL,
	read BOOLEAN NOT NULL DEFAULT FALSE,
	UNIQUE (room_id, seq)
);
CREATE INDEX IF NOT EXISTS chat_messages_room_order_idx ON chat_messages (room_id, sent_at DESC, seq DESC);
"""


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def ensure_schema(pool: asyncpg.pool.Pool) -> None:
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA_SQL)


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


@asynccontextmanager
async def storage_guard(operation: str, *, conflict_code: str = "already_exists"):
	"""Translate driver failures into domain errors for the calling service."""
	try:
		yield
	except asyncpg.UniqueViolationError as exc:
		raise Conflict(conflict_code) from exc
	except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
		_LOG.warning("postgres operation failed", extra={"operation": operation, "error": str(exc)})
		raise StorageError("storage_unavailable") from exc
