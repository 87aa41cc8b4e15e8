"""Matching and online-listing queries over the identity store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from soulconnect.domain.exceptions import NotFound
from soulconnect.domain.identity import presence
from soulconnect.domain.identity.models import Identity
from soulconnect.domain.identity.repo import IdentityStore
from soulconnect.domain.identity.traits import TraitCatalogue
from soulconnect.domain.matching import schemas
from soulconnect.domain.matching.scorer import CompatibilityScorer, shared_trait_matches
from soulconnect.obs import metrics as obs_metrics
from soulconnect.settings import settings


class MatchingService:
	def __init__(self, store: IdentityStore, scorer: CompatibilityScorer, catalogue: TraitCatalogue) -> None:
		self._store = store
		self._scorer = scorer
		self._catalogue = catalogue

	async def _subject(self, identity_id: str) -> Identity:
		subject = await self._store.get(identity_id)
		if subject is None:
			raise NotFound("identity_not_found")
		return subject

	async def find_matches(
		self,
		identity_id: str,
		*,
		limit: Optional[int] = None,
		now: Optional[datetime] = None,
	) -> schemas.MatchListResponse:
		now = now or datetime.now(timezone.utc)
		subject = await self._subject(identity_id)
		candidates = await self._store.list_all(exclude_id=subject.id)
		by_id = {candidate.id: candidate for candidate in candidates}
		ranked = self._scorer.rank(subject, candidates, now, limit=limit or settings.match_limit)
		obs_metrics.inc_match_query("compatibility")
		matches = []
		for result in ranked:
			candidate = by_id[result.counterpart_id]
			matches.append(
				schemas.MatchOut(
					id=candidate.id,
					display_name=candidate.display_name,
					avatar=candidate.avatar,
					traits=list(candidate.traits),
					bio=candidate.bio,
					is_synthetic=candidate.is_synthetic,
					compatibility=result.score,
					factors=result.factors,
					presence=presence.classify(candidate.last_active_at, now).value,
					last_active_at=candidate.last_active_at,
					personality_type=self._catalogue.personality_type(candidate.traits),
					interests=self._catalogue.interests(candidate.traits),
				)
			)
		return schemas.MatchListResponse(matches=matches)

	async def simple_matches(self, identity_id: str) -> schemas.SimpleMatchListResponse:
		subject = await self._subject(identity_id)
		candidates = await self._store.list_all(exclude_id=subject.id)
		obs_metrics.inc_match_query("shared_traits")
		return schemas.SimpleMatchListResponse(
			matches=[
				schemas.SimpleMatchOut(
					id=candidate.id,
					display_name=candidate.display_name,
					avatar=candidate.avatar,
					traits=list(candidate.traits),
					bio=candidate.bio,
					is_synthetic=candidate.is_synthetic,
					match_score=len(shared),
					common_traits=list(shared),
				)
				for candidate, shared in shared_trait_matches(subject, candidates)
			]
		)

	async def online_users(self, identity_id: str, *, now: Optional[datetime] = None) -> schemas.OnlineUserListResponse:
		now = now or datetime.now(timezone.utc)
		since = now - timedelta(seconds=settings.presence_online_seconds)
		active = await self._store.list_active_since(since, exclude_id=identity_id)
		users = [
			schemas.OnlineUserOut(
				id=identity.id,
				display_name=identity.display_name,
				avatar=identity.avatar,
				traits=list(identity.traits),
				presence=presence.classify(identity.last_active_at, now).value,
				status=identity.status,
				personality_type=self._catalogue.personality_type(identity.traits),
				is_synthetic=identity.is_synthetic,
			)
			for identity in active
		]
		return schemas.OnlineUserListResponse(users=[user for user in users if user.presence == "online"])
