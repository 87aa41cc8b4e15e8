"""Compatibility scoring between two trait profiles."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from soulconnect.domain.identity.models import Identity
from soulconnect.domain.identity.traits import TraitCatalogue

SHARED_WEIGHT = 30.0
COMPLEMENTARY_STEP = 5.0
COMPLEMENTARY_CAP = 25.0
SYNTHETIC_BONUS = 20.0
RECENCY_WEIGHT = 15.0
JITTER_RANGE = 10.0
DEFAULT_LIMIT = 20


@dataclass(slots=True)
class CompatibilityResult:
	counterpart_id: str
	score: int
	factors: List[str] = field(default_factory=list)
	shared_traits: Tuple[str, ...] = ()


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def _hours_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
	if moment is None:
		return None
	return max(0.0, (now - moment).total_seconds() / 3600.0)


class CompatibilityScorer:
	"""Weighted heuristic: shared traits, complementary pairs, persona bonus, recency and jitter.

	Randomness comes from the injected ``rng`` so callers can pin jitter in tests.
	"""

	def __init__(self, catalogue: TraitCatalogue, rng: Optional[random.Random] = None) -> None:
		self._catalogue = catalogue
		self._rng = rng or random.Random()

	def _jitter(self) -> float:
		return self._rng.uniform(0.0, JITTER_RANGE)

	def score(self, subject: Identity, candidate: Identity, now: Optional[datetime] = None) -> CompatibilityResult:
		now = now or datetime.now(timezone.utc)
		factors: List[str] = []
		subject_traits = subject.trait_set
		candidate_traits = candidate.trait_set

		shared = tuple(trait for trait in candidate.traits if trait in subject_traits)
		total = SHARED_WEIGHT * len(shared) / max(len(candidate_traits), len(subject_traits), 1)
		if shared:
			labels = ", ".join(self._catalogue.label(trait) for trait in shared)
			factors.append(f"Shared traits: {labels}")

		complementary = 0.0
		for left, right in self._catalogue.complementary_pairs:
			if (left in subject_traits and right in candidate_traits) or (
				right in subject_traits and left in candidate_traits
			):
				complementary += COMPLEMENTARY_STEP
				factors.append(
					f"Complementary traits: {self._catalogue.label(left)} ↔ {self._catalogue.label(right)}"
				)
		total += min(complementary, COMPLEMENTARY_CAP)

		if candidate.is_synthetic:
			total += SYNTHETIC_BONUS
			factors.append("AI companion")

		hours = _hours_since(candidate.last_active_at, now)
		recency = 0.0 if hours is None else max(0.0, RECENCY_WEIGHT - hours)
		if recency > 0:
			total += recency
			factors.append("Recently active")

		jitter = self._jitter()
		if jitter > 0:
			total += jitter
			factors.append("Serendipity")

		score = min(100, max(0, round_half_up(total)))
		return CompatibilityResult(
			counterpart_id=candidate.id,
			score=score,
			factors=factors,
			shared_traits=shared,
		)

	def rank(
		self,
		subject: Identity,
		candidates: Iterable[Identity],
		now: Optional[datetime] = None,
		*,
		limit: int = DEFAULT_LIMIT,
	) -> List[CompatibilityResult]:
		"""Score every candidate except the subject; best first, ties by candidate id."""
		now = now or datetime.now(timezone.utc)
		results = [self.score(subject, candidate, now) for candidate in candidates if candidate.id != subject.id]
		results.sort(key=lambda result: (-result.score, result.counterpart_id))
		return results[: max(0, limit)]


def shared_trait_matches(subject: Identity, candidates: Sequence[Identity]) -> List[Tuple[Identity, Tuple[str, ...]]]:
	"""Simple matching: order candidates by how many traits they share with the subject."""
	subject_traits = subject.trait_set
	scored = [
		(candidate, tuple(trait for trait in candidate.traits if trait in subject_traits))
		for candidate in candidates
		if candidate.id != subject.id
	]
	scored.sort(key=lambda item: (-len(item[1]), item[0].id))
	return scored
