"""
Scoring engine.

Pure functions, no I/O:
- participation_rate: share of weeks with war activity since joining
- compute_score: weighted composite with exponential inactivity decay
- normalize_scores: rescale a scored batch against its best performance
"""

import math
from datetime import datetime
from typing import Container, Mapping, Optional, Sequence

from .config import DecayConfig, ScoringWeights
from .models import ScoreResult
from .time_utils import days_between, round_half_up

DEFAULT_GRACE_DAYS = (1, 2, 3)
MAX_WEEKS = 52


def participation_rate(
    history: Mapping[str, int],
    tenure_days: float,
    current_week_id: str,
    current_day_index: int,
    grace_day_indices: Container[int] = DEFAULT_GRACE_DAYS,
    max_weeks: int = MAX_WEEKS,
) -> int:
    """
    Percentage of weeks since joining with a positive contribution, 0..100.

    While the current week has no contribution yet and the day index falls in
    the grace window, the current week is left out of the denominator.
    """
    active_weeks = sum(1 for value in history.values() if value > 0)
    has_current = history.get(current_week_id, 0) > 0

    weeks = max(1, math.ceil(tenure_days / 7))
    if not has_current and weeks > 1 and current_day_index in grace_day_indices:
        weeks -= 1

    denominator = min(max_weeks, weeks)
    if denominator <= 0:
        return 0
    return min(100, round_half_up(active_weeks / denominator * 100))


def compute_score(
    current_value: float,
    average_value: float,
    secondary_metric: float,
    tertiary_metric: float,
    rate: float,
    last_active: Optional[datetime],
    now: datetime,
    weights: Optional[ScoringWeights] = None,
    decay: Optional[DecayConfig] = None,
) -> ScoreResult:
    """
    Weighted score of one member.

    ``raw`` is the undecayed weighted sum; ``performance`` applies
    ``(1 - decay_rate) ** (days_inactive - grace)`` once inactivity exceeds the grace period.
    A member with no last-seen time counts as fully inactive (performance 0).
    """
    weights = weights or ScoringWeights()
    decay = decay or DecayConfig()

    raw = (
        current_value * weights.fame
        + average_value * weights.avg_fame
        + secondary_metric * weights.donation
        + tertiary_metric * weights.trophy
        + rate * weights.war_rate
    )

    if last_active is None:
        performance = 0.0
    else:
        performance = raw
        days_inactive = max(0.0, days_between(last_active, now))
        if days_inactive > decay.inactivity_grace_days:
            performance = raw * (1 - decay.decay_rate) ** (days_inactive - decay.inactivity_grace_days)

    return ScoreResult(raw=round_half_up(raw), performance=round_half_up(performance))


def normalize_scores(scores: Sequence[ScoreResult]) -> list[ScoreResult]:
    """
    Rescale a batch to 0..100 of its best performance.

    The returned ``raw`` is the input's (decayed) performance and the
    returned ``performance`` its percentage of the batch maximum.
    """
    if not scores:
        return []
    best = max(score.performance for score in scores)
    return [
        ScoreResult(
            raw=score.performance,
            performance=round_half_up(score.performance / best * 100) if best > 0 else 0,
        )
        for score in scores
    ]
