"""
War history reconciliation.

A member's war history maps week ids (``YYWNN``) to the fame earned that
week. It is persisted as ``"<value> <week> | <value> <week>"`` strings in
the leaderboard table and parsed at that boundary; everything else works
on dicts. Merging always keeps the larger value per week, so the order in
which archive, race log and current race are folded in does not matter.
"""

from datetime import tzinfo
from typing import Any, Iterable, Mapping, Optional

from .models import LeaderboardRow, RaceLogEntry
from .time_utils import parse_api_timestamp, war_week_id

HISTORY_SEPARATOR = " | "
EMPTY_PLACEHOLDERS = ("", "-")

WeekHistory = dict[str, int]
WarHistoryMap = dict[str, WeekHistory]


def parse_history(text: Any) -> WeekHistory:
    """Parse a persisted history string; malformed entries are skipped."""
    history: WeekHistory = {}
    if not isinstance(text, str) or text.strip() in EMPTY_PLACEHOLDERS:
        return history

    for entry in text.split(HISTORY_SEPARATOR.strip()):
        parts = entry.split()
        if len(parts) != 2:
            continue
        raw_value, week = parts
        try:
            value = int(float(raw_value))
        except (ValueError, OverflowError):
            continue
        if value < 0:
            continue
        history[week] = max(history.get(week, 0), value)
    return history


def format_history(history: Mapping[str, int]) -> str:
    """Serialize a week history, newest week first."""
    return HISTORY_SEPARATOR.join(
        f"{value} {week}" for week, value in sorted(history.items(), reverse=True)
    )


def merge_week(history: WeekHistory, week: str, value: int) -> None:
    """Record ``value`` for ``week`` unless a larger value is already present."""
    if value > history.get(week, -1):
        history[week] = value


def max_merge(*histories: Mapping[str, int]) -> WeekHistory:
    merged: WeekHistory = {}
    for history in histories:
        for week, value in history.items():
            merge_week(merged, week, value)
    return merged


def max_merge_maps(*maps: Mapping[str, Mapping[str, int]]) -> WarHistoryMap:
    """Per-tag, per-week maximum of several history maps."""
    merged: WarHistoryMap = {}
    for history_map in maps:
        for tag, history in history_map.items():
            target = merged.setdefault(tag, {})
            for week, value in history.items():
                merge_week(target, week, value)
    return merged


def archive_from_rows(rows: Iterable[LeaderboardRow]) -> WarHistoryMap:
    """Rehydrate the archived history map from previously persisted leaderboard rows."""
    archive: WarHistoryMap = {}
    for row in rows:
        history = parse_history(row.history)
        if row.tag and history:
            archive[row.tag] = max_merge(archive.get(row.tag, {}), history)
    return archive


def _contribution(participant: Mapping[str, Any]) -> int:
    for field in ("fame", "medals", "repairPoints"):
        value = participant.get(field)
        if value:
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return 0


def extract_race_contributions(race_payload: Optional[Mapping[str, Any]]) -> dict[str, int]:
    """Tag to contribution of the running race (``fame``, else ``medals``, else ``repairPoints``)."""
    contributions: dict[str, int] = {}
    if not race_payload:
        return contributions
    clan = race_payload.get("clan") or {}
    for participant in clan.get("participants") or []:
        tag = participant.get("tag")
        if tag:
            contributions[tag] = max(contributions.get(tag, 0), _contribution(participant))
    return contributions


def extract_log_entries(
    log_payload: Optional[Mapping[str, Any]],
    clan_tag: str,
    zone: Optional[tzinfo] = None,
) -> list[RaceLogEntry]:
    """Our clan's per-participant fame for every finished race in the log payload."""
    entries: list[RaceLogEntry] = []
    if not log_payload:
        return entries

    for item in log_payload.get("items") or []:
        created = parse_api_timestamp(item.get("createdDate"))
        if created is None:
            continue
        standing = next(
            (
                s for s in item.get("standings") or []
                if (s.get("clan") or {}).get("tag") == clan_tag
            ),
            None,
        )
        if standing is None:
            continue

        contributions: dict[str, int] = {}
        for participant in standing["clan"].get("participants") or []:
            tag = participant.get("tag")
            if tag:
                contributions[tag] = max(
                    contributions.get(tag, 0),
                    int(participant.get("fame") or 0),
                )
        entries.append(RaceLogEntry(week_id=war_week_id(created, zone), contributions=contributions))
    return entries


def reconcile(
    archived: Mapping[str, Mapping[str, int]],
    log_entries: Iterable[RaceLogEntry],
    race_contributions: Mapping[str, int],
    current_week_id: str,
) -> WarHistoryMap:
    """
    Combine archived history, finished race logs and the running race.

    Each source is max-merged per tag and week; the running race is filed
    under ``current_week_id``.
    """
    live: WarHistoryMap = {}
    for entry in log_entries:
        for tag, value in entry.contributions.items():
            merge_week(live.setdefault(tag, {}), entry.week_id, value)
    for tag, value in race_contributions.items():
        merge_week(live.setdefault(tag, {}), current_week_id, value)

    return max_merge_maps(archived, live)
