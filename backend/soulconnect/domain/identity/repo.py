"""Identity persistence: asyncpg repository plus an in-memory store."""

from __future__ import annotations

import asyncio
import dataclasses
import json
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Protocol

from soulconnect.domain.exceptions import Conflict
from soulconnect.domain.identity.models import Identity, normalise_traits
from soulconnect.infra.postgres import get_pool, storage_guard

_UPDATABLE_FIELDS = frozenset(
	{
		"display_name",
		"traits",
		"bio",
		"avatar",
		"status",
		"test_results",
		"last_test_at",
		"villain_score",
		"villain_level",
		"villain_test",
		"last_villain_test_at",
		"password_hash",
	}
)
_JSON_FIELDS = frozenset({"test_results", "villain_test"})


class IdentityStore(Protocol):
	async def insert(self, identity: Identity) -> Identity: ...

	async def upsert_synthetic(self, identity: Identity) -> Identity: ...

	async def get(self, identity_id: str) -> Optional[Identity]: ...

	async def get_by_email(self, email: str) -> Optional[Identity]: ...

	async def get_many(self, identity_ids: Iterable[str]) -> List[Identity]: ...

	async def list_all(self, *, exclude_id: Optional[str] = None) -> List[Identity]: ...

	async def list_active_since(self, since: datetime, *, exclude_id: Optional[str] = None) -> List[Identity]: ...

	async def update(self, identity_id: str, changes: Mapping[str, Any]) -> Optional[Identity]: ...

	async def touch(self, identity_id: str, at: datetime) -> Optional[Identity]: ...

	async def mark_offline(self, identity_id: str, at: datetime) -> None: ...

	async def demote_stale(self, cutoff: datetime) -> List[Identity]: ...


def _check_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
	unknown = set(changes) - _UPDATABLE_FIELDS
	if unknown:
		raise ValueError(f"unsupported identity fields: {sorted(unknown)}")
	cleaned = dict(changes)
	if "traits" in cleaned:
		cleaned["traits"] = normalise_traits(cleaned["traits"])
	return cleaned


class MemoryIdentityStore:
	"""Process-local identity store used in tests and single-node development."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._identities: dict[str, Identity] = {}

	def _conflicts(self, identity: Identity) -> bool:
		name = identity.display_name.lower()
		for existing in self._identities.values():
			if existing.id == identity.id:
				continue
			if existing.display_name.lower() == name:
				return True
			if identity.email and existing.email == identity.email:
				return True
		return False

	async def insert(self, identity: Identity) -> Identity:
		async with self._lock:
			if identity.id in self._identities or self._conflicts(identity):
				raise Conflict("identity_exists")
			self._identities[identity.id] = dataclasses.replace(identity)
			return dataclasses.replace(identity)

	async def upsert_synthetic(self, identity: Identity) -> Identity:
		async with self._lock:
			existing = self._identities.get(identity.id)
			if existing is not None:
				existing.display_name = identity.display_name
				existing.traits = identity.traits
				existing.bio = identity.bio
				existing.avatar = identity.avatar
				existing.is_synthetic = True
				return dataclasses.replace(existing)
			self._identities[identity.id] = dataclasses.replace(identity, is_synthetic=True)
			return dataclasses.replace(self._identities[identity.id])

	async def get(self, identity_id: str) -> Optional[Identity]:
		async with self._lock:
			identity = self._identities.get(identity_id)
			return dataclasses.replace(identity) if identity else None

	async def get_by_email(self, email: str) -> Optional[Identity]:
		async with self._lock:
			for identity in self._identities.values():
				if identity.email == email:
					return dataclasses.replace(identity)
			return None

	async def get_many(self, identity_ids: Iterable[str]) -> List[Identity]:
		wanted = list(identity_ids)
		async with self._lock:
			return [dataclasses.replace(self._identities[i]) for i in wanted if i in self._identities]

	async def list_all(self, *, exclude_id: Optional[str] = None) -> List[Identity]:
		async with self._lock:
			return [dataclasses.replace(i) for i in self._identities.values() if i.id != exclude_id]

	async def list_active_since(self, since: datetime, *, exclude_id: Optional[str] = None) -> List[Identity]:
		async with self._lock:
			return [
				dataclasses.replace(i)
				for i in self._identities.values()
				if i.id != exclude_id and i.last_active_at is not None and i.last_active_at >= since
			]

	async def update(self, identity_id: str, changes: Mapping[str, Any]) -> Optional[Identity]:
		cleaned = _check_changes(changes)
		async with self._lock:
			identity = self._identities.get(identity_id)
			if identity is None:
				return None
			for key, value in cleaned.items():
				setattr(identity, key, value)
			return dataclasses.replace(identity)

	async def touch(self, identity_id: str, at: datetime) -> Optional[Identity]:
		async with self._lock:
			identity = self._identities.get(identity_id)
			if identity is None:
				return None
			before = dataclasses.replace(identity)
			if identity.last_active_at is None or at > identity.last_active_at:
				identity.last_active_at = at
			identity.is_online = True
			return before

	async def mark_offline(self, identity_id: str, at: datetime) -> None:
		async with self._lock:
			identity = self._identities.get(identity_id)
			if identity is None:
				return
			if identity.last_active_at is None or at > identity.last_active_at:
				identity.last_active_at = at
			identity.is_online = False

	async def demote_stale(self, cutoff: datetime) -> List[Identity]:
		demoted: List[Identity] = []
		async with self._lock:
			for identity in self._identities.values():
				if not identity.is_online:
					continue
				if identity.last_active_at is None or identity.last_active_at < cutoff:
					identity.is_online = False
					demoted.append(dataclasses.replace(identity))
		return demoted


def _json_or_none(value: Any) -> Any:
	if value is None:
		return None
	if isinstance(value, str):
		return json.loads(value)
	return value


def _row_to_identity(row: Mapping[str, Any]) -> Identity:
	return Identity(
		id=row["id"],
		display_name=row["display_name"],
		traits=tuple(row["traits"] or ()),
		is_synthetic=bool(row["is_synthetic"]),
		last_active_at=row["last_active_at"],
		email=row["email"],
		password_hash=row["password_hash"],
		bio=row["bio"] or "",
		avatar=row["avatar"] or "",
		is_online=bool(row["is_online"]),
		status=row["status"],
		test_results=_json_or_none(row["test_results"]),
		last_test_at=row["last_test_at"],
		villain_score=int(row["villain_score"] or 0),
		villain_level=row["villain_level"],
		villain_test=_json_or_none(row["villain_test"]),
		last_villain_test_at=row["last_villain_test_at"],
		created_at=row["created_at"],
	)


_SELECT = "SELECT * FROM identities"


class PostgresIdentityStore:
	"""Identity repository backed by asyncpg."""

	async def insert(self, identity: Identity) -> Identity:
		pool = await get_pool()
		async with storage_guard("identity.insert", conflict_code="identity_exists"):
			row = await pool.fetchrow(
				"""
				INSERT INTO identities (
					id, display_name, email, password_hash, traits, bio, avatar,
					is_synthetic, is_online, last_active_at, created_at
				)
				VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
				RETURNING *
				""",
				identity.id,
				identity.display_name,
				identity.email,
				identity.password_hash,
				list(identity.traits),
				identity.bio,
				identity.avatar,
				identity.is_synthetic,
				identity.is_online,
				identity.last_active_at,
				identity.created_at,
			)
		return _row_to_identity(row)

	async def upsert_synthetic(self, identity: Identity) -> Identity:
		pool = await get_pool()
		async with storage_guard("identity.upsert_synthetic"):
			row = await pool.fetchrow(
				"""
				INSERT INTO identities (id, display_name, traits, bio, avatar, is_synthetic, created_at)
				VALUES ($1, $2, $3, $4, $5, TRUE, $6)
				ON CONFLICT (id) DO UPDATE SET
					display_name = EXCLUDED.display_name,
					traits = EXCLUDED.traits,
					bio = EXCLUDED.bio,
					avatar = EXCLUDED.avatar,
					is_synthetic = TRUE
				RETURNING *
				""",
				identity.id,
				identity.display_name,
				list(identity.traits),
				identity.bio,
				identity.avatar,
				identity.created_at,
			)
		return _row_to_identity(row)

	async def get(self, identity_id: str) -> Optional[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.get"):
			row = await pool.fetchrow(f"{_SELECT} WHERE id = $1", identity_id)
		return _row_to_identity(row) if row else None

	async def get_by_email(self, email: str) -> Optional[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.get_by_email"):
			row = await pool.fetchrow(f"{_SELECT} WHERE email = $1", email)
		return _row_to_identity(row) if row else None

	async def get_many(self, identity_ids: Iterable[str]) -> List[Identity]:
		ids = list(identity_ids)
		if not ids:
			return []
		pool = await get_pool()
		async with storage_guard("identity.get_many"):
			rows = await pool.fetch(f"{_SELECT} WHERE id = ANY($1::text[])", ids)
		return [_row_to_identity(row) for row in rows]

	async def list_all(self, *, exclude_id: Optional[str] = None) -> List[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.list_all"):
			rows = await pool.fetch(f"{_SELECT} WHERE id IS DISTINCT FROM $1 ORDER BY created_at", exclude_id)
		return [_row_to_identity(row) for row in rows]

	async def list_active_since(self, since: datetime, *, exclude_id: Optional[str] = None) -> List[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.list_active_since"):
			rows = await pool.fetch(
				f"{_SELECT} WHERE last_active_at >= $1 AND id IS DISTINCT FROM $2 ORDER BY last_active_at DESC",
				since,
				exclude_id,
			)
		return [_row_to_identity(row) for row in rows]

	async def update(self, identity_id: str, changes: Mapping[str, Any]) -> Optional[Identity]:
		cleaned = _check_changes(changes)
		if not cleaned:
			return await self.get(identity_id)
		assignments: list[str] = []
		values: list[Any] = [identity_id]
		for key, value in cleaned.items():
			if key == "traits":
				value = list(value)
			elif key in _JSON_FIELDS and value is not None:
				value = json.dumps(value)
			values.append(value)
			cast = "::jsonb" if key in _JSON_FIELDS else ""
			assignments.append(f"{key} = ${len(values)}{cast}")
		pool = await get_pool()
		async with storage_guard("identity.update"):
			row = await pool.fetchrow(
				f"UPDATE identities SET {', '.join(assignments)} WHERE id = $1 RETURNING *",
				*values,
			)
		return _row_to_identity(row) if row else None

	async def touch(self, identity_id: str, at: datetime) -> Optional[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.touch"):
			async with pool.acquire() as conn:
				async with conn.transaction():
					row = await conn.fetchrow(f"{_SELECT} WHERE id = $1 FOR UPDATE", identity_id)
					if row is None:
						return None
					await conn.execute(
						"""
						UPDATE identities
						SET last_active_at = GREATEST(COALESCE(last_active_at, $2), $2),
							is_online = TRUE
						WHERE id = $1
						""",
						identity_id,
						at,
					)
		return _row_to_identity(row)

	async def mark_offline(self, identity_id: str, at: datetime) -> None:
		pool = await get_pool()
		async with storage_guard("identity.mark_offline"):
			await pool.execute(
				"""
				UPDATE identities
				SET last_active_at = GREATEST(COALESCE(last_active_at, $2), $2),
					is_online = FALSE
				WHERE id = $1
				""",
				identity_id,
				at,
			)

	async def demote_stale(self, cutoff: datetime) -> List[Identity]:
		pool = await get_pool()
		async with storage_guard("identity.demote_stale"):
			rows = await pool.fetch(
				"""
				UPDATE identities
				SET is_online = FALSE
				WHERE is_online = TRUE AND (last_active_at IS NULL OR last_active_at < $1)
				RETURNING *
				""",
				cutoff,
			)
		return [_row_to_identity(row) for row in rows]
