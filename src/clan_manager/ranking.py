"""Ranking of leaderboard rows."""

from typing import Iterable

from .models import LeaderboardRow


def rank_key(row: LeaderboardRow) -> tuple:
    """
    Sort key, best row first.

    Performance, raw score, participation rate and lifetime donations
    descending; then days tracked ascending so newer members win ties
    against long-tenured ones; trophies descending last.
    """
    return (
        -row.performance_score,
        -row.raw_score,
        -row.participation_rate,
        -row.total_donations,
        row.days_tracked,
        -row.trophies,
    )


def compare(a: LeaderboardRow, b: LeaderboardRow) -> int:
    """cmp-style comparison: negative if ``a`` ranks before ``b``."""
    key_a, key_b = rank_key(a), rank_key(b)
    return (key_a > key_b) - (key_a < key_b)


def rank_rows(rows: Iterable[LeaderboardRow]) -> list[LeaderboardRow]:
    """Stable sort of rows into ranking order."""
    return sorted(rows, key=rank_key)
