"""Service layer for registration, login and profile updates."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

import ulid

from soulconnect.domain.exceptions import AuthError, Conflict, NotFound, ValidationError
from soulconnect.domain.identity import schemas
from soulconnect.domain.identity.models import Identity, normalise_traits
from soulconnect.domain.identity.repo import IdentityStore
from soulconnect.infra.auth import issue_access_token
from soulconnect.infra.password import check_needs_rehash, hash_password, verify_password
from soulconnect.obs import metrics as obs_metrics
from soulconnect.settings import settings

_LOG = logging.getLogger(__name__)


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _auth_response(identity: Identity) -> schemas.AuthResponse:
	token = issue_access_token(identity.id, display_name=identity.display_name, email=identity.email)
	return schemas.AuthResponse(
		access_token=token,
		expires_in=settings.access_ttl_minutes * 60,
		user=schemas.IdentityOut.from_model(identity),
	)


class IdentityService:
	def __init__(self, store: IdentityStore) -> None:
		self._store = store

	@property
	def store(self) -> IdentityStore:
		return self._store

	async def register(self, payload: schemas.RegisterRequest) -> schemas.AuthResponse:
		display_name = payload.display_name.strip()
		if not display_name:
			raise ValidationError("display_name_required")
		email = str(payload.email).lower()
		if await self._store.get_by_email(email) is not None:
			raise Conflict("identity_exists")
		now = _now()
		identity = Identity(
			id=str(ulid.new()),
			display_name=display_name,
			email=email,
			password_hash=hash_password(payload.password),
			traits=normalise_traits(payload.traits),
			bio=payload.bio.strip(),
			last_active_at=now,
			created_at=now,
		)
		created = await self._store.insert(identity)
		obs_metrics.inc_identity_event("register")
		_LOG.info("identity registered", extra={"identity_id": created.id})
		return _auth_response(created)

	async def login(self, payload: schemas.LoginRequest) -> schemas.AuthResponse:
		identity = await self._store.get_by_email(str(payload.email).lower())
		if identity is None or not identity.password_hash:
			obs_metrics.inc_identity_event("login_failed")
			raise AuthError("invalid_credentials")
		if not verify_password(identity.password_hash, payload.password):
			obs_metrics.inc_identity_event("login_failed")
			raise AuthError("invalid_credentials")
		if check_needs_rehash(identity.password_hash):
			await self._store.update(identity.id, {"password_hash": hash_password(payload.password)})
		await self._store.touch(identity.id, _now())
		obs_metrics.inc_identity_event("login")
		return _auth_response(identity)

	async def require(self, identity_id: str) -> Identity:
		identity = await self._store.get(identity_id)
		if identity is None:
			raise NotFound("identity_not_found")
		return identity

	async def profile(self, identity_id: str) -> schemas.ProfileOut:
		return schemas.ProfileOut.from_model(await self.require(identity_id))

	async def save_test_results(self, identity_id: str, payload: schemas.QuizResultsRequest) -> Identity:
		updated = await self._store.update(
			identity_id,
			{
				"traits": normalise_traits(payload.traits),
				"test_results": payload.results,
				"last_test_at": _now(),
			},
		)
		if updated is None:
			raise NotFound("identity_not_found")
		obs_metrics.inc_identity_event("test_results")
		return updated

	async def save_villain_test(self, identity_id: str, payload: schemas.VillainTestRequest) -> Identity:
		updated = await self._store.update(
			identity_id,
			{
				"villain_score": payload.score,
				"villain_level": payload.level,
				"villain_test": {
					"weapons_used": list(payload.weapons_used),
					"attack_count": payload.attack_count,
					"score": payload.score,
					"level": payload.level,
				},
				"last_villain_test_at": _now(),
			},
		)
		if updated is None:
			raise NotFound("identity_not_found")
		obs_metrics.inc_identity_event("villain_test")
		return updated

	async def seed_personas(self, personas: Iterable[Identity]) -> list[Identity]:
		seeded = [await self._store.upsert_synthetic(persona) for persona in personas]
		_LOG.info("personas seeded", extra={"count": len(seeded)})
		return seeded
