"""
Clan Manager - Leaderboard and recruiting pipeline for a Clash Royale clan.

This package fetches clan, river race and player data from the stats API
through a deduplicating, key-rotating batch fetcher, reconciles war history,
scores and ranks members, and scouts unaffiliated players as recruits.
"""

__version__ = "0.1.0"
__author__ = "Clan Manager Team"

from clan_manager.exceptions import (
    ClanManagerError,
    ConfigurationError,
    ValidationError,
    NetworkError,
    KeyPoolExhaustedError,
    RetryExhaustedError,
    UpstreamDataError,
    PersistenceError,
    TamperingError,
    PersistedStateCorruptError,
    SafetyLockError,
    RunLockError,
)
from clan_manager.enums import (
    FetchStatus,
    KeyHealth,
    LogLevel,
)
from clan_manager.config import (
    ApiKey,
    FetchConfig,
    RetryConfig,
    ScoringWeights,
    DecayConfig,
    LeaderboardConfig,
    RecruiterWeights,
    RecruiterConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
)
from clan_manager.models import (
    FetchResult,
    MemberSnapshot,
    TenureRecord,
    RaceLogEntry,
    ScoreResult,
    LeaderboardRow,
    BlacklistEntry,
    Recruit,
    MemberLogRow,
)
from clan_manager.tags import (
    TagValidationResult,
    validate_tag,
    normalize_tag,
)
from clan_manager.key_pool import KeyPool
from clan_manager.retry_manager import (
    RetryManager,
    RetryResult,
)
from clan_manager.fetch_engine import (
    FetchContext,
    FetchEngine,
)
from clan_manager.war_history import (
    parse_history,
    format_history,
    max_merge,
    reconcile,
)
from clan_manager.scoring import (
    participation_rate,
    compute_score,
    normalize_scores,
)
from clan_manager.ranking import (
    rank_key,
    compare,
    rank_rows,
)
from clan_manager.state_store import (
    HmacJsonFile,
    StateStore,
)
from clan_manager.table_store import TableStore
from clan_manager.blacklist import (
    Blacklist,
    BlacklistSnapshot,
)
from clan_manager.member_log import (
    MemberLogUpdate,
    apply_daily_snapshot,
)
from clan_manager.leaderboard import (
    LeaderboardBuilder,
    LeaderboardResult,
)
from clan_manager.recruiter import (
    RecruiterPipeline,
    RecruiterResult,
)
from clan_manager.run_lock import RunLock
from clan_manager.audit_logger import (
    AuditLogger,
    LogEntry,
)
from clan_manager.orchestrator import (
    ClanOrchestrator,
    StageResult,
    SequenceResult,
)
from clan_manager.self_test import (
    SelfTest,
    SelfTestResult,
    KeyHealthResult,
    ConfigValidationResult,
)
from clan_manager.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "ClanManagerError",
    "ConfigurationError",
    "ValidationError",
    "NetworkError",
    "KeyPoolExhaustedError",
    "RetryExhaustedError",
    "UpstreamDataError",
    "PersistenceError",
    "TamperingError",
    "PersistedStateCorruptError",
    "SafetyLockError",
    "RunLockError",
    # Enums
    "FetchStatus",
    "KeyHealth",
    "LogLevel",
    # Configuration
    "ApiKey",
    "FetchConfig",
    "RetryConfig",
    "ScoringWeights",
    "DecayConfig",
    "LeaderboardConfig",
    "RecruiterWeights",
    "RecruiterConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    # Models
    "FetchResult",
    "MemberSnapshot",
    "TenureRecord",
    "RaceLogEntry",
    "ScoreResult",
    "LeaderboardRow",
    "BlacklistEntry",
    "Recruit",
    "MemberLogRow",
    # Tags
    "TagValidationResult",
    "validate_tag",
    "normalize_tag",
    # Fetching
    "KeyPool",
    "RetryManager",
    "RetryResult",
    "FetchContext",
    "FetchEngine",
    # War history, scoring, ranking
    "parse_history",
    "format_history",
    "max_merge",
    "reconcile",
    "participation_rate",
    "compute_score",
    "normalize_scores",
    "rank_key",
    "compare",
    "rank_rows",
    # Persistence
    "HmacJsonFile",
    "StateStore",
    "TableStore",
    "Blacklist",
    "BlacklistSnapshot",
    "MemberLogUpdate",
    "apply_daily_snapshot",
    "RunLock",
    # Pipelines
    "LeaderboardBuilder",
    "LeaderboardResult",
    "RecruiterPipeline",
    "RecruiterResult",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Orchestrator
    "ClanOrchestrator",
    "StageResult",
    "SequenceResult",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "KeyHealthResult",
    "ConfigValidationResult",
]
