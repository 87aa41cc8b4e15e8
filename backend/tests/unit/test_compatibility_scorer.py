import random
from datetime import timedelta

from soulconnect.domain.identity.models import Identity
from soulconnect.domain.identity.traits import TraitCatalogue, default_catalogue
from soulconnect.domain.matching.scorer import CompatibilityScorer, round_half_up, shared_trait_matches


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def uniform(self, a, b):
        return self.value


def _identity(identity_id, traits, **kwargs):
    return Identity(id=identity_id, display_name=identity_id.title(), traits=tuple(traits), **kwargs)


def test_identical_traits_without_jitter_score_thirty(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(0.0))
    result = scorer.score(_identity("a", ["anxiety", "ocd"]), _identity("b", ["anxiety", "ocd"]), now)

    assert result.score == 30
    assert result.shared_traits == ("anxiety", "ocd")
    assert result.factors == ["Shared traits: Anxiety, OCD"]


def test_synthetic_recent_candidate_sums_every_term(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(10.0))
    subject = _identity("a", ["depression", "introvert", "perfectionism"])
    candidate = _identity(
        "b",
        ["depression", "introvert", "perfectionism"],
        is_synthetic=True,
        last_active_at=now,
    )

    result = scorer.score(subject, candidate, now)

    # 30 shared + 20 persona + 15 recency + 10 jitter
    assert result.score == 75
    assert "AI companion" in result.factors
    assert "Recently active" in result.factors
    assert "Serendipity" in result.factors


def test_total_above_hundred_is_clamped(now):
    # Jitter far outside its usual range pushes the raw total to 115.
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(50.0))
    subject = _identity("a", ["depression"])
    candidate = _identity("b", ["depression"], is_synthetic=True, last_active_at=now)

    assert scorer.score(subject, candidate, now).score == 100


def test_complementary_pairs_add_five_each(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(0.0))
    subject = _identity("a", ["depression", "introvert"])
    candidate = _identity("b", ["mania", "extrovert"])

    result = scorer.score(subject, candidate, now)

    assert result.score == 10
    assert len([factor for factor in result.factors if factor.startswith("Complementary traits:")]) == 2


def test_complementary_term_is_capped_at_twenty_five(now):
    pairs = tuple((f"light-{n}", f"shadow-{n}") for n in range(6))
    scorer = CompatibilityScorer(TraitCatalogue(complementary_pairs=pairs), rng=FixedRandom(0.0))
    subject = _identity("a", [left for left, _ in pairs])
    candidate = _identity("b", [right for _, right in pairs])

    result = scorer.score(subject, candidate, now)

    assert result.score == 25
    assert len([factor for factor in result.factors if factor.startswith("Complementary traits:")]) == 6


def test_recency_decays_by_hour(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(0.0))
    candidate = _identity("b", [], last_active_at=now - timedelta(hours=5))
    stale = _identity("c", [], last_active_at=now - timedelta(hours=20))

    assert scorer.score(_identity("a", []), candidate, now).score == 10
    assert scorer.score(_identity("a", []), stale, now).score == 0


def test_score_stays_within_bounds_for_random_jitter(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=random.Random(3))
    traits = ["depression", "anxiety", "introvert", "perfectionism", "impulse_control"]
    subject = _identity("a", traits)
    candidate = _identity("b", ["mania", "impulse_control", "extrovert", "spontaneity", "anxiety"], is_synthetic=True, last_active_at=now)

    for _ in range(50):
        assert 0 <= scorer.score(subject, candidate, now).score <= 100


def test_rank_orders_by_score_then_id_and_excludes_subject(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(0.0))
    subject = _identity("a", ["anxiety"])
    candidates = [
        subject,
        _identity("d", ["anxiety"]),
        _identity("c", ["anxiety"]),
        _identity("b", []),
    ]

    ranked = scorer.rank(subject, candidates, now, limit=2)

    assert [result.counterpart_id for result in ranked] == ["c", "d"]


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_shared_trait_matches_orders_by_overlap():
    subject = _identity("a", ["anxiety", "ocd"])
    matches = shared_trait_matches(
        subject,
        [_identity("b", ["anxiety"]), _identity("c", ["ocd", "anxiety"]), _identity("d", [])],
    )

    assert [(candidate.id, shared) for candidate, shared in matches] == [
        ("c", ("ocd", "anxiety")),
        ("b", ("anxiety",)),
        ("d", ()),
    ]


def test_half_overlap_with_recent_activity(now):
    scorer = CompatibilityScorer(default_catalogue(), rng=FixedRandom(0.0))
    subject = _identity("a", ["anxiety", "ocd"], last_active_at=now)
    candidate = _identity("b", ["ocd", "ptsd"], last_active_at=now)

    assert scorer.score(subject, candidate, now).score == 30
