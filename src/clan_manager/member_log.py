"""
Daily member snapshot log.

One row per member per local calendar day, carrying donations, trophies
and current war fame. Re-running on the same day updates that day's rows
instead of appending duplicates. Members who left the clan and have not
appeared for ``purge_days`` are pruned entirely. The log is the source of
tenure (first sighting) and of weekly donation maxima for the leaderboard.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Mapping, Sequence

from .models import MemberLogRow, MemberSnapshot, TenureRecord
from .time_utils import local_date, start_of_day, war_week_id


@dataclass
class MemberLogUpdate:
    """Outcome of applying one day's snapshot to the log."""

    rows: list[MemberLogRow] = field(default_factory=list)
    updated: int = 0
    appended: int = 0
    pruned_tags: list[str] = field(default_factory=list)
    limit_reached: bool = False


def _row_date(row: MemberLogRow) -> date:
    try:
        return date.fromisoformat(row.date)
    except ValueError:
        return date.min


def prune_stale(
    rows: Sequence[MemberLogRow],
    active_tags: set[str],
    today: date,
    purge_days: int,
) -> tuple[list[MemberLogRow], list[str]]:
    """Drop every row of tags that left the clan and were last logged before the cutoff."""
    latest: dict[str, date] = {}
    for row in rows:
        row_day = _row_date(row)
        if row.tag not in latest or row_day > latest[row.tag]:
            latest[row.tag] = row_day

    cutoff = today - timedelta(days=purge_days)
    stale = {tag for tag, last in latest.items() if tag not in active_tags and last < cutoff}
    kept = [row for row in rows if row.tag not in stale]
    return kept, sorted(stale)


def upsert_snapshots(
    rows: Sequence[MemberLogRow],
    members: Iterable[MemberSnapshot],
    war_fame: Mapping[str, int],
    today: date,
) -> tuple[list[MemberLogRow], int, int]:
    """Update today's row of each member in place or append a new one."""
    result = list(rows)
    today_str = today.isoformat()
    todays = {row.tag: index for index, row in enumerate(result) if row.date == today_str}

    updated = appended = 0
    for member in members:
        snapshot = MemberLogRow(
            date=today_str,
            tag=member.tag,
            name=member.name,
            role=member.role,
            trophies=member.trophies,
            donations_given=member.donations,
            donations_received=member.donations_received,
            last_seen=member.last_seen,
            war_fame=war_fame.get(member.tag, 0),
        )
        if member.tag in todays:
            result[todays[member.tag]] = snapshot
            updated += 1
        else:
            todays[member.tag] = len(result)
            result.append(snapshot)
            appended += 1

    return result, updated, appended


def apply_daily_snapshot(
    rows: Sequence[MemberLogRow],
    members: Sequence[MemberSnapshot],
    war_fame: Mapping[str, int],
    now: datetime,
    zone: tzinfo,
    purge_days: int = 7,
    row_limit: int = 20000,
) -> MemberLogUpdate:
    """Prune stale members, then merge today's snapshot unless the log is over its row limit."""
    today = local_date(now, zone)
    kept, pruned = prune_stale(rows, {m.tag for m in members}, today, purge_days)

    if len(kept) > row_limit:
        return MemberLogUpdate(rows=kept, pruned_tags=pruned, limit_reached=True)

    merged, updated, appended = upsert_snapshots(kept, members, war_fame, today)
    merged.sort(key=lambda row: row.date)
    return MemberLogUpdate(rows=merged, updated=updated, appended=appended, pruned_tags=pruned)


def tenure_records(rows: Iterable[MemberLogRow], zone: tzinfo) -> dict[str, TenureRecord]:
    """First sighting and per-week donation maximum of every logged tag."""
    records: dict[str, TenureRecord] = {}
    for row in rows:
        row_day = _row_date(row)
        if row_day == date.min:
            continue
        seen = start_of_day(row_day, zone)
        week = war_week_id(row_day)

        record = records.get(row.tag)
        if record is None:
            record = records[row.tag] = TenureRecord(first_seen=seen)
        elif seen < record.first_seen:
            record.first_seen = seen

        if row.donations_given > record.weekly_donation_max.get(week, 0):
            record.weekly_donation_max[week] = row.donations_given
    return records
