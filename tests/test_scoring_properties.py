"""
Property-based tests for the scoring engine.

Uses Hypothesis for property-based testing to verify correctness properties
defined in the design document.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import assume, given, settings
from hypothesis import strategies as st

from clan_manager.config import DecayConfig, ScoringWeights
from clan_manager.models import ScoreResult
from clan_manager.scoring import compute_score, normalize_scores, participation_rate
from clan_manager.war_history import parse_history

NOW = datetime(2024, 1, 18, 12, 0, tzinfo=timezone.utc)


# Strategies for generating test data

@st.composite
def history_strategy(draw) -> dict[str, int]:
    """Generate a week history over 2024 week ids."""
    weeks = draw(st.lists(st.integers(min_value=1, max_value=52), unique=True, max_size=20))
    return {f"24W{w:02d}": draw(st.integers(min_value=0, max_value=4000)) for w in weeks}


@st.composite
def score_inputs_strategy(draw) -> dict:
    """Generate inputs for compute_score."""
    inactive_days = draw(st.one_of(st.none(), st.floats(min_value=0, max_value=60)))
    return {
        "current_value": draw(st.integers(min_value=0, max_value=4000)),
        "average_value": draw(st.integers(min_value=0, max_value=4000)),
        "secondary_metric": draw(st.integers(min_value=0, max_value=500)),
        "tertiary_metric": draw(st.integers(min_value=0, max_value=10000)),
        "rate": draw(st.integers(min_value=0, max_value=100)),
        "last_active": None if inactive_days is None else NOW - timedelta(days=inactive_days),
        "now": NOW,
    }


class TestParticipationRateBoundsProperty:
    """
    Property-based tests for participation rate.

    **Feature: clan-manager, Property 9: Participation rate stays within 0..100**
    """

    @given(
        history=history_strategy(),
        tenure_days=st.floats(min_value=0, max_value=1000),
        day_index=st.integers(min_value=1, max_value=7),
        week=st.integers(min_value=1, max_value=52),
    )
    @settings(max_examples=100)
    def test_rate_in_bounds(self, history: dict, tenure_days: float, day_index: int, week: int) -> None:
        """
        Property 9: Participation rate stays within 0..100.

        *For any* history, tenure and day of week, the rate SHALL be an
        integer between 0 and 100 inclusive.

        **Feature: clan-manager, Property 9: Participation rate stays within 0..100**
        """
        rate = participation_rate(history, tenure_days, f"24W{week:02d}", day_index)
        assert isinstance(rate, int)
        assert 0 <= rate <= 100

    @given(tenure_days=st.floats(min_value=0, max_value=1000), day_index=st.integers(min_value=1, max_value=7))
    @settings(max_examples=100)
    def test_empty_history_is_zero(self, tenure_days: float, day_index: int) -> None:
        """
        Property 9b: No contributions means a zero rate.

        **Feature: clan-manager, Property 9: Participation rate stays within 0..100**
        """
        assert participation_rate({}, tenure_days, "24W03", day_index) == 0

    def test_grace_window_scenario(self) -> None:
        """
        Property 10: The current week is forgiven during the grace window.

        A member with one active week out of two, on a day outside the grace
        window, SHALL score 50; on a day inside the window the missing
        current week SHALL not count and the rate SHALL be 100.

        **Feature: clan-manager, Property 10: The current week is forgiven during the grace window**
        """
        history = parse_history("3000 24W01 | 0 24W02")

        assert participation_rate(history, 14, "24W03", 4) == 50
        assert participation_rate(history, 14, "24W03", 2) == 100

    def test_grace_window_is_configurable(self) -> None:
        history = parse_history("3000 24W01 | 0 24W02")

        assert participation_rate(history, 14, "24W03", 2, grace_day_indices=()) == 50
        assert participation_rate(history, 14, "24W03", 5, grace_day_indices=(5,)) == 100

    def test_current_week_contribution_disables_grace(self) -> None:
        history = {"24W01": 3000, "24W03": 200}
        assert participation_rate(history, 21, "24W03", 1) == 67

    def test_denominator_capped_at_max_weeks(self) -> None:
        history = {f"23W{w:02d}": 100 for w in range(1, 53)}
        assert participation_rate(history, 3650, "24W10", 5) == 100
        assert participation_rate(history, 3650, "24W10", 5, max_weeks=104) == 50


class TestScoreDecayProperty:
    """
    Property-based tests for the composite score.

    **Feature: clan-manager, Property 11: Decay only applies after the grace period**
    """

    @given(inputs=score_inputs_strategy())
    @settings(max_examples=100)
    def test_score_is_idempotent(self, inputs: dict) -> None:
        """
        Property 11a: Scoring is a pure function.

        *For any* inputs, scoring twice SHALL produce identical results.

        **Feature: clan-manager, Property 11: Decay only applies after the grace period**
        """
        assert compute_score(**inputs) == compute_score(**inputs)

    @given(inputs=score_inputs_strategy())
    @settings(max_examples=100)
    def test_performance_never_exceeds_raw(self, inputs: dict) -> None:
        """
        Property 11: Decay only applies after the grace period.

        *For any* inputs, performance SHALL not exceed raw, SHALL equal raw
        when the member was active within the grace period, and SHALL be 0
        when the member has no last-seen time.

        **Feature: clan-manager, Property 11: Decay only applies after the grace period**
        """
        result = compute_score(**inputs)
        assert result.performance <= result.raw

        last_active = inputs["last_active"]
        if last_active is None:
            assert result.performance == 0
        elif (NOW - last_active) <= timedelta(days=DecayConfig().inactivity_grace_days):
            assert result.performance == result.raw

    def test_weighted_sum(self) -> None:
        weights = ScoringWeights(fame=1, avg_fame=2, donation=3, trophy=0.5, war_rate=4)
        result = compute_score(100, 50, 10, 1000, 25, NOW, NOW, weights=weights)
        assert result == ScoreResult(raw=100 + 100 + 30 + 500 + 100, performance=830)

    def test_decay_after_grace(self) -> None:
        decay = DecayConfig(inactivity_grace_days=4, decay_rate=0.5)
        weights = ScoringWeights(fame=1, avg_fame=0, donation=0, trophy=0, war_rate=0)

        fresh = compute_score(1000, 0, 0, 0, 0, NOW - timedelta(days=4), NOW, weights, decay)
        stale = compute_score(1000, 0, 0, 0, 0, NOW - timedelta(days=6), NOW, weights, decay)

        assert fresh == ScoreResult(raw=1000, performance=1000)
        assert stale == ScoreResult(raw=1000, performance=250)

    def test_future_last_seen_is_not_decayed(self) -> None:
        result = compute_score(1000, 0, 0, 0, 0, NOW + timedelta(days=3), NOW)
        assert result.performance == result.raw

    def test_missing_last_seen_is_fully_decayed(self) -> None:
        result = compute_score(1000, 200, 30, 6000, 80, None, NOW)
        assert result.raw > 0
        assert result.performance == 0


class TestNormalizationBoundsProperty:
    """
    Property-based tests for batch normalization.

    **Feature: clan-manager, Property 12: Normalized scores lie within 0..100**
    """

    @given(performances=st.lists(st.integers(min_value=0, max_value=10**6), max_size=50))
    @settings(max_examples=100)
    def test_normalized_bounds(self, performances: list[int]) -> None:
        """
        Property 12: Normalized scores lie within 0..100.

        *For any* batch, every normalized performance SHALL be within 0..100,
        the best entry SHALL score 100 when any entry is positive, and raw
        SHALL carry the input's decayed performance.

        **Feature: clan-manager, Property 12: Normalized scores lie within 0..100**
        """
        scores = [ScoreResult(raw=p * 2, performance=p) for p in performances]
        normalized = normalize_scores(scores)

        assert len(normalized) == len(scores)
        assert all(0 <= s.performance <= 100 for s in normalized)
        assert [s.raw for s in normalized] == performances
        if performances and max(performances) > 0:
            assert max(s.performance for s in normalized) == 100

    @given(performances=st.lists(st.integers(min_value=0, max_value=10**6), min_size=2, max_size=30))
    @settings(max_examples=100)
    def test_normalization_preserves_order(self, performances: list[int]) -> None:
        """
        Property 12b: Normalization is monotonic.

        **Feature: clan-manager, Property 12: Normalized scores lie within 0..100**
        """
        assume(max(performances) > 0)
        normalized = normalize_scores([ScoreResult(raw=p, performance=p) for p in performances])
        pairs = sorted(zip(performances, (s.performance for s in normalized)))
        assert all(a[1] <= b[1] for a, b in zip(pairs, pairs[1:]))

    def test_all_zero_batch(self) -> None:
        normalized = normalize_scores([ScoreResult(raw=5, performance=0), ScoreResult(raw=0, performance=0)])
        assert normalized == [ScoreResult(raw=0, performance=0), ScoreResult(raw=0, performance=0)]
        assert normalize_scores([]) == []
