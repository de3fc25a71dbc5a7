"""
Leaderboard assembly.

Turns the members, current race and race log payloads plus the previous
leaderboard rows and the member snapshot log into ranked, normalized rows:

1. Reconcile war history (archive strings, race log, running race)
2. Derive tenure and lifetime donations from the snapshot log
3. Score every member, rank with the tie-break cascade, normalize
4. Compute the trend against the previous run's persisted raw score

A run that yields no rows while the previous leaderboard had some is
refused, so a transient upstream failure cannot wipe the table.
"""

import math
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Mapping, Optional, Sequence

from .audit_logger import AuditLogger
from .config import LeaderboardConfig
from .enums import LogLevel
from .exceptions import SafetyLockError, UpstreamDataError
from .member_log import tenure_records
from .models import LeaderboardRow, MemberLogRow, MemberSnapshot, ScoreResult, TenureRecord
from .ranking import rank_rows
from .scoring import compute_score, normalize_scores, participation_rate
from .tags import encode_tag
from .time_utils import DAY, day_index, round_half_up, war_week_id
from .war_history import (
    archive_from_rows,
    extract_log_entries,
    extract_race_contributions,
    format_history,
    reconcile,
)


@dataclass
class LeaderboardResult:
    """Ranked rows of one run."""

    rows: list[LeaderboardRow]
    week_id: str
    day_index: int
    previous_count: int


def leaderboard_urls(api_base: str, clan_tag: str, race_log_limit: int = 52) -> list[str]:
    """Members, current race and race log endpoints, in that order."""
    base = f"{api_base.rstrip('/')}/clans/{encode_tag(clan_tag)}"
    return [
        f"{base}/members",
        f"{base}/currentriverrace",
        f"{base}/riverracelog?limit={race_log_limit}",
    ]


def parse_members(members_payload: Optional[Mapping[str, Any]]) -> list[MemberSnapshot]:
    """
    Member snapshots from a members payload.

    Raises:
        UpstreamDataError: If the payload is missing or has no ``items`` list
    """
    items = members_payload.get("items") if isinstance(members_payload, Mapping) else None
    if not isinstance(items, list):
        raise UpstreamDataError(
            code="missing_members",
            message="API returned no member data",
        )
    return [MemberSnapshot.from_api(item) for item in items if isinstance(item, dict) and item.get("tag")]


class LeaderboardBuilder:
    """Builds leaderboard rows from already fetched payloads."""

    COMPONENT = "Leaderboard"

    def __init__(
        self,
        config: LeaderboardConfig,
        clan_tag: str,
        zone: tzinfo,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._config = config
        self._clan_tag = clan_tag
        self._zone = zone
        self._logger = logger

    def build(
        self,
        members_payload: Optional[Mapping[str, Any]],
        race_payload: Optional[Mapping[str, Any]],
        log_payload: Optional[Mapping[str, Any]],
        previous_rows: Sequence[LeaderboardRow],
        log_rows: Sequence[MemberLogRow],
        now: datetime,
    ) -> LeaderboardResult:
        """
        Raises:
            UpstreamDataError: If the members payload is missing
            SafetyLockError: If no rows would replace a non-empty leaderboard
        """
        members = parse_members(members_payload)
        week_id = war_week_id(now, self._zone)
        today_index = day_index(now, self._zone)

        histories = reconcile(
            archive_from_rows(previous_rows),
            extract_log_entries(log_payload, self._clan_tag, self._zone),
            extract_race_contributions(race_payload),
            week_id,
        )
        tenure = tenure_records(log_rows, self._zone)

        drafts = [
            self._score_member(member, histories.get(member.tag, {}), tenure.get(member.tag), week_id, today_index, now)
            for member in members
        ]

        if not drafts and previous_rows:
            raise SafetyLockError(
                code="zero_result",
                message="Leaderboard safety lock: zero members returned",
                details={"previous_count": len(previous_rows)},
            )

        ranked = rank_rows(drafts)
        normalized = normalize_scores([ScoreResult(r.raw_score, r.performance_score) for r in ranked])
        previous_raw = {row.tag: row.raw_score for row in previous_rows}

        for row, score in zip(ranked, normalized):
            row.raw_score = score.raw
            row.performance_score = score.performance
            row.trend = score.raw - previous_raw[row.tag] if row.tag in previous_raw else 0

        if self._logger:
            self._logger.log(
                LogLevel.INFO,
                self.COMPONENT,
                "Leaderboard computed",
                {"rows": len(ranked), "week_id": week_id, "day_index": today_index},
            )

        return LeaderboardResult(
            rows=ranked,
            week_id=week_id,
            day_index=today_index,
            previous_count=len(previous_rows),
        )

    def _score_member(
        self,
        member: MemberSnapshot,
        history: Mapping[str, int],
        tenure: Optional[TenureRecord],
        week_id: str,
        today_index: int,
        now: datetime,
    ) -> LeaderboardRow:
        if tenure is not None:
            days_tracked = math.ceil(abs(now - tenure.first_seen) / DAY)
            weekly = dict(tenure.weekly_donation_max)
            weekly[week_id] = max(weekly.get(week_id, 0), member.donations)
            total_donations = sum(weekly.values())
        else:
            days_tracked = 0
            total_donations = member.donations

        avg_daily = round_half_up(total_donations / days_tracked) if days_tracked > 0 else member.donations

        max_weeks = self._config.max_weeks
        weeks_in_clan = min(max_weeks, max(1, math.ceil(days_tracked / 7), len(history)))
        avg_fame = round_half_up(sum(history.values()) / weeks_in_clan)

        rate = participation_rate(
            history,
            days_tracked,
            week_id,
            today_index,
            grace_day_indices=self._config.grace_day_indices,
            max_weeks=max_weeks,
        )
        score = compute_score(
            history.get(week_id, 0),
            avg_fame,
            avg_daily,
            member.trophies,
            rate,
            member.last_seen,
            now,
            weights=self._config.weights,
            decay=self._config.decay,
        )

        return LeaderboardRow(
            tag=member.tag,
            name=member.name,
            role=member.role,
            trophies=member.trophies,
            days_tracked=days_tracked,
            donations_received=member.donations_received,
            avg_daily_donations=avg_daily,
            total_donations=total_donations,
            last_seen=member.last_seen,
            participation_rate=rate,
            history=format_history(history),
            raw_score=score.raw,
            performance_score=score.performance,
        )
