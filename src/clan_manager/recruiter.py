"""
Recruiter candidate pipeline.

Finds unaffiliated players worth inviting:

1. Baseline: average trophies of the clan's members
2. Exclusion refresh: processed recruits go on the blacklist, benchmark is recomputed
3. Liveness: tracked candidates that joined a clan (or vanished) are dropped
4. Discovery: tournament search over a broad keyword set, sampled by capacity
5. Enrich & filter: clanless, non-excluded tournament members above a dynamic floor
6. Profiles: a second random sample gets full profiles
7. War signal: recent river race battles earn a fixed bonus
8. Score, merge with tracked candidates, cap and normalize against the benchmark

Sampling keeps each run within the fetch budget while covering the search
space across runs.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence
from urllib.parse import quote

from .audit_logger import AuditLogger
from .blacklist import Blacklist
from .config import RecruiterConfig, RecruiterWeights
from .enums import FetchStatus, LogLevel
from .fetch_engine import FetchEngine
from .models import Recruit
from .tags import encode_tag
from .time_utils import round_half_up


@dataclass
class RecruiterResult:
    """Outcome of one recruiter run."""

    recruits: list[Recruit] = field(default_factory=list)
    processed: list[Recruit] = field(default_factory=list)
    benchmark: float = 0.0
    floor: int = 0
    average_trophies: float = 0.0
    added: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    timed_out: bool = False


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _in_clan(player: Mapping[str, Any]) -> bool:
    clan = player.get("clan")
    return isinstance(clan, Mapping) and bool(clan.get("tag"))


def trophy_floor(average_trophies: float, pool_size: int, config: RecruiterConfig) -> int:
    """Minimum trophies; relaxed by ``filling_ratio`` while the pool is below target."""
    ratio = config.filling_ratio if pool_size < config.target else 1.0
    return max(config.baseline_floor, round_half_up(average_trophies * ratio))


def recruit_raw_score(trophies: int, donations: int, war_signal: int, weights: RecruiterWeights) -> int:
    return round_half_up(
        trophies * weights.trophy
        + donations * weights.donation
        + war_signal * weights.war
    )


def has_war_activity(battles: Any, battle_types: Iterable[str]) -> bool:
    """True if any battle in the log is a river race battle."""
    if not isinstance(battles, list):
        return False
    wanted = set(battle_types)
    return any(isinstance(b, Mapping) and b.get("type") in wanted for b in battles)


def cap_and_normalize(recruits: Iterable[Recruit], benchmark: float, target: int) -> list[Recruit]:
    """
    Keep the ``target`` best candidates by raw score and set their performance.

    Performance is relative to ``max(benchmark, best raw, 1)`` so it does not
    reset to 100 whenever the best current candidate changes.
    """
    ranked = sorted(recruits, key=lambda r: r.raw_score, reverse=True)[:max(0, target)]
    top_raw = ranked[0].raw_score if ranked else 0
    scale = max(benchmark, top_raw, 1)
    for recruit in ranked:
        recruit.performance_score = round_half_up(recruit.raw_score / scale * 100)
    return ranked


def mark_processed(recruits: Iterable[Recruit], tags: Iterable[str]) -> list[str]:
    """Flag recruits with one of ``tags`` as processed; returns the tags actually flagged."""
    wanted = set(tags)
    marked = []
    for recruit in recruits:
        if recruit.tag in wanted and not recruit.processed:
            recruit.processed = True
            marked.append(recruit.tag)
    return marked


class RecruiterPipeline:
    """Runs discovery, filtering and scoring of recruiting candidates."""

    COMPONENT = "Recruiter"

    def __init__(
        self,
        engine: FetchEngine,
        config: RecruiterConfig,
        clan_tag: str,
        blacklist: Blacklist,
        logger: Optional[AuditLogger] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            engine: Fetch engine of the current run
            config: Recruiter settings
            clan_tag: Our clan, used for the trophy baseline
            blacklist: Exclusion list backed by the state store
            logger: Optional audit logger
            rng: Random source for the sampling steps
            clock: Monotonic clock in seconds, for the time budget
        """
        self._engine = engine
        self._config = config
        self._clan_tag = clan_tag
        self._blacklist = blacklist
        self._logger = logger
        self._rng = rng or random.Random()
        self._clock = clock or time.monotonic

    def _url(self, path: str) -> str:
        return f"{self._engine.api_base}{path}"

    async def run(self, tracked: Sequence[Recruit], now: datetime) -> RecruiterResult:
        """
        Run the pipeline once.

        Args:
            tracked: Candidates tracked so far (processed ones included)
            now: Current time, used for expiry and discovery dates

        Raises:
            KeyPoolExhaustedError: If every API key was banned
            RetryExhaustedError: If a batch kept failing
        """
        started = self._clock()
        average = await self._baseline()

        processed = [r for r in tracked if r.processed]
        snapshot = self._blacklist.refresh(processed, now)
        excluded = snapshot.tags

        active = {r.tag: r for r in tracked if not r.processed and r.tag not in excluded}
        floor = trophy_floor(average, len(active), self._config)
        self._log(
            LogLevel.INFO,
            "Recruiter context",
            {
                "pool": len(active),
                "target": self._config.target,
                "floor": floor,
                "average_trophies": round(average),
            },
        )

        active, dropped = await self._check_liveness(active)
        scanned, timed_out = await self._scan(floor, active, excluded, now, started)

        added = []
        merged = dict(active)
        for recruit in scanned:
            previous = merged.get(recruit.tag)
            if previous is not None:
                recruit.found_date = previous.found_date
            else:
                added.append(recruit.tag)
            merged[recruit.tag] = recruit

        final = cap_and_normalize(merged.values(), snapshot.benchmark, self._config.target)
        kept = {r.tag for r in final}
        added = [tag for tag in added if tag in kept]

        self._log(
            LogLevel.INFO,
            "Recruiter finished",
            {
                "recruits": len(final),
                "added": len(added),
                "dropped": len(dropped),
                "benchmark": snapshot.benchmark,
                "timed_out": timed_out,
            },
        )
        return RecruiterResult(
            recruits=final,
            processed=processed,
            benchmark=snapshot.benchmark,
            floor=floor,
            average_trophies=average,
            added=added,
            dropped=dropped,
            timed_out=timed_out,
        )

    async def _baseline(self) -> float:
        url = self._url(f"/clans/{encode_tag(self._clan_tag)}/members")
        (result,) = await self._engine.fetch_batch([url])
        items = result.payload.get("items") if result.ok and isinstance(result.payload, dict) else None
        if not items:
            self._log(LogLevel.WARN, "No member data for baseline, using default", {"status": result.status.value})
            return float(self._config.default_average_trophies)
        return sum(_int(item.get("trophies")) for item in items) / len(items)

    async def _check_liveness(self, active: dict[str, Recruit]) -> tuple[dict[str, Recruit], list[str]]:
        """Drop tracked candidates that joined a clan or no longer exist."""
        if not active:
            return active, []

        tags = list(active)
        results = await self._engine.fetch_batch(
            [self._url(f"/players/{encode_tag(tag)}") for tag in tags]
        )

        alive: dict[str, Recruit] = {}
        dropped: list[str] = []
        for tag, result in zip(tags, results):
            if result.status == FetchStatus.NOT_FOUND:
                dropped.append(tag)
            elif result.ok and isinstance(result.payload, dict) and _in_clan(result.payload):
                dropped.append(tag)
            else:
                alive[tag] = active[tag]

        if dropped:
            self._log(LogLevel.INFO, "Dropped candidates that joined a clan", {"count": len(dropped)})
        return alive, dropped

    def _out_of_time(self, started: float) -> bool:
        return self._clock() - started > self._config.time_budget_seconds

    async def _scan(
        self,
        floor: int,
        tracked: Mapping[str, Recruit],
        excluded: set[str],
        now: datetime,
        started: float,
    ) -> tuple[list[Recruit], bool]:
        cfg = self._config

        searches = await self._engine.fetch_batch(
            [self._url(f"/tournaments?name={quote(k, safe='')}") for k in cfg.keywords]
        )
        tournaments: dict[str, dict] = {}
        for result in searches:
            items = result.payload.get("items") if result.ok and isinstance(result.payload, dict) else None
            for item in items or []:
                if isinstance(item, dict) and item.get("tag"):
                    tournaments[item["tag"]] = item

        pool = sorted(tournaments.values(), key=lambda t: _int(t.get("capacity")), reverse=True)
        pool = pool[:cfg.discovery_pool_size]
        self._rng.shuffle(pool)
        sample = pool[:cfg.discovery_sample_size]

        if not sample:
            self._log(LogLevel.WARN, "No tournaments found", {"keywords": len(cfg.keywords)})
            return [], False

        details = await self._engine.fetch_batch(
            [self._url(f"/tournaments/{encode_tag(t['tag'])}") for t in sample]
        )
        candidates: dict[str, dict] = {}
        for result in details:
            members = result.payload.get("membersList") if result.ok and isinstance(result.payload, dict) else None
            if not isinstance(members, list) or len(members) < cfg.min_tournament_members:
                continue
            for player in members:
                if not isinstance(player, dict) or not player.get("tag"):
                    continue
                if _in_clan(player) or player["tag"] in excluded:
                    continue
                if "trophies" in player and _int(player["trophies"]) < floor:
                    continue
                candidates.setdefault(player["tag"], player)

        self._log(
            LogLevel.INFO,
            "Tournament scan complete",
            {"tournaments": len(tournaments), "sampled": len(sample), "candidates": len(candidates)},
        )

        if self._out_of_time(started):
            self._log(LogLevel.WARN, "Time budget reached before profile fetch", {})
            return [], True

        ordered = sorted(candidates.values(), key=lambda p: _int(p.get("trophies")), reverse=True)
        ordered = ordered[:cfg.profile_pool_size]
        self._rng.shuffle(ordered)
        finalists = [p["tag"] for p in ordered[:cfg.profile_sample_size]]
        if not finalists:
            return [], False

        profiles = await self._engine.fetch_batch(
            [self._url(f"/players/{encode_tag(tag)}") for tag in finalists]
        )
        accepted: list[dict] = []
        low_trophies = 0
        for result in profiles:
            profile = result.payload if result.ok and isinstance(result.payload, dict) else None
            if not profile or not profile.get("tag") or _in_clan(profile) or profile["tag"] in excluded:
                continue
            if _int(profile.get("trophies")) < floor:
                low_trophies += 1
                continue
            accepted.append(profile)

        self._log(
            LogLevel.INFO,
            "Profiles filtered",
            {"accepted": len(accepted), "rejected_low_trophies": low_trophies},
        )
        if not accepted:
            return [], False

        if self._out_of_time(started):
            self._log(LogLevel.WARN, "Time budget reached, scoring without battle logs", {"accepted": len(accepted)})
            return [self._build(p, 0, tracked, now) for p in accepted], True

        logs = await self._engine.fetch_batch(
            [self._url(f"/players/{encode_tag(p['tag'])}/battlelog") for p in accepted]
        )
        recruits = []
        for profile, log in zip(accepted, logs):
            active_in_war = log.ok and has_war_activity(log.payload, cfg.war_battle_types)
            recruits.append(self._build(profile, cfg.war_bonus if active_in_war else 0, tracked, now))
        return recruits, False

    def _build(
        self,
        profile: Mapping[str, Any],
        bonus: int,
        tracked: Mapping[str, Recruit],
        now: datetime,
    ) -> Recruit:
        war = _int(profile.get("warDayWins")) + bonus
        previous = tracked.get(profile["tag"])
        if previous is not None:
            war = max(war, previous.war_signal)

        trophies = _int(profile.get("trophies"))
        donations = _int(profile.get("totalDonations"))
        return Recruit(
            tag=profile["tag"],
            name=profile.get("name", ""),
            trophies=trophies,
            donations_lifetime=donations,
            cards_won=_int(profile.get("challengeCardsWon")),
            war_signal=war,
            found_date=now,
            raw_score=recruit_raw_score(trophies, donations, war, self._config.weights),
        )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
