"""
Recruiter exclusion list and benchmark.

Recruits that were processed (invited or dismissed) are excluded from
discovery for a fixed number of days. Their last raw score is kept so the
mean of the best excluded scores can anchor the recruit performance scale.

Persisted under one chunked key as ``{tag: {"e": expiry_ms, "s": score}}``;
older entries may be a bare expiry number.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel
from .models import BlacklistEntry, Recruit
from .state_store import StateStore
from .time_utils import epoch_ms

BLACKLIST_KEY = "HH_BLACKLIST"


@dataclass
class BlacklistSnapshot:
    """Exclusion entries after a refresh, best score first."""

    entries: list[BlacklistEntry] = field(default_factory=list)
    benchmark: float = 0.0

    @property
    def tags(self) -> set[str]:
        return {entry.tag for entry in self.entries}


def decode_entry(tag: str, raw: Any) -> Optional[BlacklistEntry]:
    """Decode one stored entry; None if it is neither a number nor an ``{e, s}`` object."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return BlacklistEntry(tag=tag, expiry_ms=int(raw), score=0)
    if isinstance(raw, dict) and isinstance(raw.get("e"), (int, float)):
        score = raw.get("s") or 0
        return BlacklistEntry(
            tag=tag,
            expiry_ms=int(raw["e"]),
            score=int(score) if isinstance(score, (int, float)) else 0,
        )
    return None


def compute_benchmark(entries: Iterable[BlacklistEntry], top_n: int = 3) -> float:
    """Arithmetic mean of the ``top_n`` highest scores, 0 when there are none."""
    top = sorted((entry.score for entry in entries), reverse=True)[:max(0, top_n)]
    if not top:
        return 0.0
    return sum(top) / len(top)


class Blacklist:
    """Exclusion list backed by the chunked key-value store."""

    COMPONENT = "Blacklist"

    def __init__(
        self,
        store: StateStore,
        exclusion_days: int = 14,
        benchmark_top_n: int = 3,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._store = store
        self._exclusion = timedelta(days=exclusion_days)
        self._top_n = benchmark_top_n
        self._logger = logger

    def load(self) -> dict[str, BlacklistEntry]:
        raw = self._store.get_chunked(BLACKLIST_KEY, {})
        if not isinstance(raw, dict):
            self._log(LogLevel.WARN, "Stored blacklist is not a mapping, ignoring it", {})
            return {}

        entries = {}
        for tag, value in raw.items():
            entry = decode_entry(tag, value)
            if entry is not None:
                entries[tag] = entry
        return entries

    def refresh(self, processed: Iterable[Recruit], now: datetime) -> BlacklistSnapshot:
        """
        Drop expired entries, add newly processed recruits and persist.

        Processed recruits get ``now + exclusion_days`` as expiry and their
        raw score; the store is written in memory and saved by the caller.
        """
        now_ms = epoch_ms(now)
        entries = {
            tag: entry for tag, entry in self.load().items()
            if entry.expiry_ms > now_ms
        }

        added = 0
        for recruit in processed:
            entries[recruit.tag] = BlacklistEntry(
                tag=recruit.tag,
                expiry_ms=epoch_ms(now + self._exclusion),
                score=recruit.raw_score,
            )
            added += 1

        ordered = sorted(entries.values(), key=lambda e: (-e.score, e.tag))
        self._store.set_chunked(
            BLACKLIST_KEY,
            {entry.tag: {"e": entry.expiry_ms, "s": entry.score} for entry in ordered},
        )

        snapshot = BlacklistSnapshot(entries=ordered, benchmark=compute_benchmark(ordered, self._top_n))
        self._log(
            LogLevel.INFO,
            "Blacklist refreshed",
            {"active": len(ordered), "added": added, "benchmark": snapshot.benchmark},
        )
        return snapshot

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
