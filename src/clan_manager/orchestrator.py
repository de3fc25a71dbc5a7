"""
Run orchestration for the clan manager.

Coordinates the components into pipeline runs:
- Database sync: today's member snapshot into the member log
- Leaderboard: war history reconciliation, scoring, ranking
- Recruiter: exclusion refresh, discovery and candidate scoring
- Full sequence: all three on one fetch context, the recruiter as a soft failure

Every run holds the run lock, creates a fresh FetchContext and only writes
persisted state once its stage has succeeded, so a failed stage leaves the
last good output untouched.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx

from .audit_logger import AuditLogger
from .blacklist import Blacklist
from .config import SystemConfig
from .enums import LogLevel
from .exceptions import ClanManagerError, ConfigurationError
from .fetch_engine import FetchContext, FetchEngine
from .leaderboard import LeaderboardBuilder, leaderboard_urls, parse_members
from .member_log import apply_daily_snapshot
from .models import LeaderboardRow, MemberLogRow, Recruit
from .recruiter import RecruiterPipeline, mark_processed
from .retry_manager import Sleeper
from .run_lock import RunLock
from .self_test import KeyHealthResult, SelfTest
from .state_store import StateStore
from .table_store import LEADERBOARD_TABLE, MEMBER_LOG_TABLE, RECRUITS_TABLE, TableStore
from .tags import encode_tag, normalize_tag
from .time_utils import get_timezone
from .war_history import extract_race_contributions

STAGE_SYNC = "sync_db"
STAGE_LEADERBOARD = "leaderboard"
STAGE_RECRUITER = "recruiter"


@dataclass
class StageResult:
    """Outcome of one pipeline stage."""

    stage: str
    success: bool
    soft_failure: bool = False
    errors: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)


@dataclass
class SequenceResult:
    """Outcome of the full sequence."""

    stages: list[StageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(s.success or s.soft_failure for s in self.stages)


class ClanOrchestrator:
    """
    Main orchestrator for clan manager runs.

    Owns the persisted stores and builds a fetch engine per run.
    """

    COMPONENT = "Orchestrator"

    def __init__(
        self,
        config: SystemConfig,
        state_store: Optional[StateStore] = None,
        table_store: Optional[TableStore] = None,
        logger: Optional[AuditLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Sleeper] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: System configuration
            state_store: Optional key-value store (defaults to the state file in data_dir)
            table_store: Optional table store (defaults to data_dir)
            logger: Optional audit logger
            transport: Optional httpx transport for every engine this orchestrator builds
            sleep: Awaitable sleep for backoff and batch pauses
            rng: Random source for key choice and recruiter sampling
            clock: Monotonic clock for the recruiter's time budget
            now: Wall clock returning an aware datetime

        Raises:
            ConfigurationError: If no API keys are configured
            ValidationError: If the clan tag is malformed
        """
        self._config = config
        self._logger = logger
        self._transport = transport
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))

        if not config.api_keys:
            raise ConfigurationError(
                code="no_api_keys",
                message="No API keys configured (set CRK1..CRK10)",
            )

        persistence = config.persistence
        self._zone = get_timezone(config.timezone)
        self._clan_tag = normalize_tag(config.clan_tag)

        self._state_store = state_store or StateStore(
            persistence.state_file_path,
            persistence.hmac_secret,
            logger=logger,
        )
        self._table_store = table_store or TableStore(
            persistence.data_dir,
            persistence.hmac_secret,
            backup_count=persistence.backup_count,
            logger=logger,
        )
        self._run_lock = RunLock(persistence.lock_file_path, timeout=persistence.lock_timeout_seconds)

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def state_store(self) -> StateStore:
        return self._state_store

    @property
    def table_store(self) -> TableStore:
        return self._table_store

    @property
    def run_lock(self) -> RunLock:
        return self._run_lock

    def _new_engine(self) -> FetchEngine:
        context = FetchContext.create(
            self._config.api_keys,
            self._config.fetch.max_fetches_per_run,
            rng=self._rng,
        )
        return FetchEngine(
            context,
            self._config.fetch,
            self._config.retry,
            logger=self._logger,
            transport=self._transport,
            sleep=self._sleep,
        )

    async def run_database_sync(self) -> StageResult:
        async with self._run_lock:
            async with self._new_engine() as engine:
                return await self._run_stage(STAGE_SYNC, lambda: self._sync_database(engine))

    async def run_leaderboard(self) -> StageResult:
        async with self._run_lock:
            async with self._new_engine() as engine:
                return await self._run_stage(STAGE_LEADERBOARD, lambda: self._update_leaderboard(engine))

    async def run_recruiter(self) -> StageResult:
        async with self._run_lock:
            async with self._new_engine() as engine:
                return await self._run_stage(STAGE_RECRUITER, lambda: self._scout(engine))

    async def run_full_sequence(self) -> SequenceResult:
        """
        Sync, leaderboard, then recruiter on one fetch context.

        A failed sync or leaderboard stops the sequence; a failed recruiter
        is logged and reported as a soft failure.
        """
        result = SequenceResult()
        async with self._run_lock:
            async with self._new_engine() as engine:
                for stage, operation in (
                    (STAGE_SYNC, lambda: self._sync_database(engine)),
                    (STAGE_LEADERBOARD, lambda: self._update_leaderboard(engine)),
                ):
                    stage_result = await self._run_stage(stage, operation)
                    result.stages.append(stage_result)
                    if not stage_result.success:
                        return result

                result.stages.append(
                    await self._run_stage(STAGE_RECRUITER, lambda: self._scout(engine), soft=True)
                )

        self._log(
            LogLevel.INFO,
            "Full sequence complete",
            {"stages": [s.stage for s in result.stages], "success": result.success},
        )
        return result

    async def dismiss_recruits(self, tags: Iterable[str]) -> list[str]:
        """
        Mark tracked recruits as processed.

        They are folded into the exclusion list on the next recruiter run.

        Raises:
            ValidationError: If a tag is malformed
        """
        wanted = [normalize_tag(tag) for tag in tags]
        async with self._run_lock:
            recruits = self._load_recruits(self._now())
            marked = mark_processed(recruits, wanted)
            if marked:
                self._table_store.write_rows(RECRUITS_TABLE, [r.to_dict() for r in recruits])
        self._log(LogLevel.INFO, "Recruits dismissed", {"requested": len(wanted), "marked": len(marked)})
        return marked

    async def check_keys(self) -> list[KeyHealthResult]:
        return await SelfTest(self._config, logger=self._logger, transport=self._transport).check_keys()

    def leaderboard_rows(self) -> list[LeaderboardRow]:
        return [LeaderboardRow.from_dict(row) for row in self._table_store.read_rows(LEADERBOARD_TABLE)]

    def recruits(self) -> list[Recruit]:
        return self._load_recruits(self._now())

    async def _run_stage(
        self,
        stage: str,
        operation: Callable[[], Awaitable[dict]],
        soft: bool = False,
    ) -> StageResult:
        self._log(LogLevel.INFO, f"Stage {stage} started", {"stage": stage})
        try:
            details = await operation()
        except ClanManagerError as e:
            if self._logger:
                self._logger.log_error(
                    self.COMPONENT,
                    f"Stage {stage} failed" + (" (soft failure)" if soft else ""),
                    error=e,
                    additional_data={"stage": stage, "code": e.code},
                )
            return StageResult(
                stage=stage,
                success=False,
                soft_failure=soft,
                errors=[f"{e.code}: {e.message}"],
            )

        self._log(LogLevel.INFO, f"Stage {stage} succeeded", {"stage": stage, **details})
        return StageResult(stage=stage, success=True, details=details)

    def _clan_url(self, suffix: str = "") -> str:
        return f"{self._config.fetch.api_base.rstrip('/')}/clans/{encode_tag(self._clan_tag)}{suffix}"

    async def _sync_database(self, engine: FetchEngine) -> dict[str, Any]:
        now = self._now()
        members_result, race_result = await engine.fetch_batch(
            [self._clan_url("/members"), self._clan_url("/currentriverrace")]
        )
        members = parse_members(members_result.payload if members_result.ok else None)
        war_fame = extract_race_contributions(race_result.payload if race_result.ok else None)

        rows = [MemberLogRow.from_dict(row) for row in self._table_store.read_rows(MEMBER_LOG_TABLE)]
        persistence = self._config.persistence
        update = apply_daily_snapshot(
            rows,
            members,
            war_fame,
            now,
            self._zone,
            purge_days=persistence.member_log_purge_days,
            row_limit=persistence.member_log_row_limit,
        )

        if update.limit_reached:
            self._log(
                LogLevel.WARN,
                "Member log over row limit, snapshot skipped",
                {"rows": len(update.rows), "limit": persistence.member_log_row_limit},
            )
        if update.pruned_tags or not update.limit_reached:
            self._table_store.write_rows(MEMBER_LOG_TABLE, [row.to_dict() for row in update.rows])

        return {
            "members": len(members),
            "updated": update.updated,
            "appended": update.appended,
            "pruned": len(update.pruned_tags),
            "limit_reached": update.limit_reached,
        }

    async def _update_leaderboard(self, engine: FetchEngine) -> dict[str, Any]:
        now = self._now()
        cfg = self._config.leaderboard
        members_result, race_result, log_result = await engine.fetch_batch(
            leaderboard_urls(engine.api_base, self._clan_tag, cfg.race_log_limit)
        )

        previous = self.leaderboard_rows()
        log_rows = [MemberLogRow.from_dict(row) for row in self._table_store.read_rows(MEMBER_LOG_TABLE)]

        builder = LeaderboardBuilder(cfg, self._clan_tag, self._zone, logger=self._logger)
        result = builder.build(
            members_result.payload if members_result.ok else None,
            race_result.payload if race_result.ok else None,
            log_result.payload if log_result.ok else None,
            previous,
            log_rows,
            now,
        )

        self._table_store.write_rows(LEADERBOARD_TABLE, [row.to_dict() for row in result.rows])
        return {"rows": len(result.rows), "previous": result.previous_count, "week_id": result.week_id}

    async def _scout(self, engine: FetchEngine) -> dict[str, Any]:
        now = self._now()
        cfg = self._config.recruiter

        self._state_store.load_or_reset()
        tracked = self._load_recruits(now)
        blacklist = Blacklist(
            self._state_store,
            exclusion_days=cfg.exclusion_days,
            benchmark_top_n=cfg.benchmark_top_n,
            logger=self._logger,
        )
        pipeline = RecruiterPipeline(
            engine,
            cfg,
            self._clan_tag,
            blacklist,
            logger=self._logger,
            rng=self._rng,
            clock=self._clock,
        )
        result = await pipeline.run(tracked, now)

        self._state_store.save()
        self._table_store.write_rows(RECRUITS_TABLE, [r.to_dict() for r in result.recruits])
        return {
            "recruits": len(result.recruits),
            "added": len(result.added),
            "dropped": len(result.dropped),
            "excluded": len(result.processed),
            "floor": result.floor,
            "timed_out": result.timed_out,
        }

    def _load_recruits(self, now: datetime) -> list[Recruit]:
        return [Recruit.from_dict(row, default_found=now) for row in self._table_store.read_rows(RECRUITS_TABLE)]

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
