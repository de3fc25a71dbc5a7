"""
Data models for the clan manager.

This module defines the structures exchanged between the fetch engine,
the reconciler, the scoring and ranking code, the recruiter pipeline and
the persistence layer. Persisted models provide ``to_dict``/``from_dict``
so the table store only ever sees plain JSON data.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .enums import FetchStatus
from .time_utils import parse_api_timestamp, parse_iso


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one URL."""

    url: str
    status: FetchStatus
    payload: Optional[Any] = None
    http_status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK


@dataclass
class MemberSnapshot:
    """Current stats of one clan member, rebuilt from the members payload every run."""

    tag: str
    name: str
    role: str
    trophies: int
    donations: int
    donations_received: int
    last_seen: Optional[datetime] = None

    @classmethod
    def from_api(cls, item: dict) -> "MemberSnapshot":
        return cls(
            tag=item.get("tag", ""),
            name=item.get("name", ""),
            role=item.get("role", ""),
            trophies=_int(item.get("trophies")),
            donations=_int(item.get("donations")),
            donations_received=_int(item.get("donationsReceived")),
            last_seen=parse_api_timestamp(item.get("lastSeen")),
        )


@dataclass
class TenureRecord:
    """First sighting and weekly donation maxima of a member, from the snapshot log."""

    first_seen: datetime
    weekly_donation_max: dict[str, int] = field(default_factory=dict)


@dataclass
class RaceLogEntry:
    """Our clan's contributions in one finished race week."""

    week_id: str
    contributions: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoreResult:
    """Rounded raw and performance scores of one entity."""

    raw: int
    performance: int


@dataclass
class LeaderboardRow:
    """One ranked member row."""

    tag: str
    name: str
    role: str
    trophies: int
    days_tracked: int
    donations_received: int
    avg_daily_donations: int
    total_donations: int
    last_seen: Optional[datetime]
    participation_rate: int
    history: str
    raw_score: int
    performance_score: int
    trend: int = 0

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "name": self.name,
            "role": self.role,
            "trophies": self.trophies,
            "days_tracked": self.days_tracked,
            "donations_received": self.donations_received,
            "avg_daily_donations": self.avg_daily_donations,
            "total_donations": self.total_donations,
            "last_seen": _iso(self.last_seen),
            "participation_rate": self.participation_rate,
            "history": self.history,
            "raw_score": self.raw_score,
            "performance_score": self.performance_score,
            "trend": self.trend,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LeaderboardRow":
        return cls(
            tag=data["tag"],
            name=data.get("name", ""),
            role=data.get("role", ""),
            trophies=_int(data.get("trophies")),
            days_tracked=_int(data.get("days_tracked")),
            donations_received=_int(data.get("donations_received")),
            avg_daily_donations=_int(data.get("avg_daily_donations")),
            total_donations=_int(data.get("total_donations")),
            last_seen=parse_iso(data.get("last_seen")),
            participation_rate=_int(data.get("participation_rate")),
            history=data.get("history") or "",
            raw_score=_int(data.get("raw_score")),
            performance_score=_int(data.get("performance_score")),
            trend=_int(data.get("trend")),
        )


@dataclass
class BlacklistEntry:
    """A processed recruit excluded from discovery until ``expiry_ms``."""

    tag: str
    expiry_ms: int
    score: int = 0


@dataclass
class Recruit:
    """A tracked, unaffiliated recruiting candidate."""

    tag: str
    name: str
    trophies: int
    donations_lifetime: int
    cards_won: int
    war_signal: int
    found_date: datetime
    raw_score: int = 0
    performance_score: int = 0
    processed: bool = False

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "name": self.name,
            "trophies": self.trophies,
            "donations_lifetime": self.donations_lifetime,
            "cards_won": self.cards_won,
            "war_signal": self.war_signal,
            "found_date": _iso(self.found_date),
            "raw_score": self.raw_score,
            "performance_score": self.performance_score,
            "processed": self.processed,
        }

    @classmethod
    def from_dict(cls, data: dict, default_found: datetime) -> "Recruit":
        return cls(
            tag=data["tag"],
            name=data.get("name", ""),
            trophies=_int(data.get("trophies")),
            donations_lifetime=_int(data.get("donations_lifetime")),
            cards_won=_int(data.get("cards_won")),
            war_signal=_int(data.get("war_signal")),
            found_date=parse_iso(data.get("found_date")) or default_found,
            raw_score=_int(data.get("raw_score")),
            performance_score=_int(data.get("performance_score")),
            processed=bool(data.get("processed", False)),
        )


@dataclass
class MemberLogRow:
    """A daily snapshot of one member in the member log table."""

    date: str  # local calendar date, YYYY-MM-DD
    tag: str
    name: str
    role: str
    trophies: int
    donations_given: int
    donations_received: int
    last_seen: Optional[datetime]
    war_fame: int = 0

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "tag": self.tag,
            "name": self.name,
            "role": self.role,
            "trophies": self.trophies,
            "donations_given": self.donations_given,
            "donations_received": self.donations_received,
            "last_seen": _iso(self.last_seen),
            "war_fame": self.war_fame,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MemberLogRow":
        return cls(
            date=data["date"],
            tag=data["tag"],
            name=data.get("name", ""),
            role=data.get("role", ""),
            trophies=_int(data.get("trophies")),
            donations_given=_int(data.get("donations_given")),
            donations_received=_int(data.get("donations_received")),
            last_seen=parse_iso(data.get("last_seen")),
            war_fame=_int(data.get("war_fame")),
        )
