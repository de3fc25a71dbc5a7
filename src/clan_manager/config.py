"""
Configuration dataclasses for the clan manager.

This module defines all configuration structures used throughout the system,
including the fetch engine, retry behavior, leaderboard scoring, the
recruiter pipeline, persistence and logging. Secrets (API keys, clan tag,
HMAC secret) are read from the environment, optionally via a ``.env`` file.
"""

import os
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_API_BASE = "https://proxy.royaleapi.dev/v1"
DEFAULT_HMAC_SECRET = "default-secret-change-me"
MAX_API_KEYS = 10


@dataclass(frozen=True)
class ApiKey:
    """A named bearer token for the stats API."""

    name: str
    value: str

    def __repr__(self) -> str:
        return f"ApiKey(name={self.name!r})"


@dataclass
class FetchConfig:
    """Fetch engine configuration."""

    api_base: str = DEFAULT_API_BASE
    batch_size: int = 10
    max_fetches_per_run: int = 400
    batch_pause_seconds: float = 0.2
    request_timeout_seconds: float = 30.0


@dataclass
class RetryConfig:
    """Retry behavior configuration (linear backoff)."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0


@dataclass
class ScoringWeights:
    """Weights of the leaderboard composite score."""

    fame: float = 3.0
    avg_fame: float = 15.0
    donation: float = 50.0
    trophy: float = 0.0002
    war_rate: float = 150.0


@dataclass
class DecayConfig:
    """Inactivity decay applied after the grace period."""

    inactivity_grace_days: float = 4.0
    decay_rate: float = 0.08


@dataclass
class LeaderboardConfig:
    """Leaderboard assembly configuration."""

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    decay: DecayConfig = field(default_factory=DecayConfig)
    # ISO weekday numbers (1=Mon) on which a missing current-week entry is not counted
    grace_day_indices: list[int] = field(default_factory=lambda: [1, 2, 3])
    max_weeks: int = 52
    race_log_limit: int = 52


@dataclass
class RecruiterWeights:
    """Weights of the recruit raw score."""

    trophy: float = 1.0
    donation: float = 0.07
    war: float = 20.0


@dataclass
class RecruiterConfig:
    """Recruiter pipeline configuration."""

    target: int = 50
    exclusion_days: int = 14
    benchmark_top_n: int = 3
    baseline_floor: int = 4000
    default_average_trophies: float = 4000.0
    filling_ratio: float = 0.75
    keywords: list[str] = field(
        default_factory=lambda: list(string.digits + string.ascii_lowercase)
    )
    discovery_pool_size: int = 300
    discovery_sample_size: int = 150
    min_tournament_members: int = 10
    profile_pool_size: int = 100
    profile_sample_size: int = 50
    war_bonus: int = 500
    war_battle_types: list[str] = field(
        default_factory=lambda: [
            "riverRacePvP",
            "boatBattle",
            "riverRaceDuel",
            "riverRaceDuelColosseum",
        ]
    )
    time_budget_seconds: float = 240.0
    weights: RecruiterWeights = field(default_factory=RecruiterWeights)


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    data_dir: Path
    hmac_secret: str = DEFAULT_HMAC_SECRET
    backup_count: int = 5
    member_log_purge_days: int = 7
    member_log_row_limit: int = 20000
    lock_timeout_seconds: float = 30.0

    @property
    def state_file_path(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def lock_file_path(self) -> Path:
        return self.data_dir / "run.lock"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    clan_tag: str
    api_keys: list[ApiKey]
    persistence: PersistenceConfig
    fetch: FetchConfig = field(default_factory=FetchConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    leaderboard: LeaderboardConfig = field(default_factory=LeaderboardConfig)
    recruiter: RecruiterConfig = field(default_factory=RecruiterConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    timezone: str = "Europe/Rome"


def load_environment(dotenv_path: Optional[Path] = None) -> None:
    """Populate ``os.environ`` from a ``.env`` file without overriding existing values."""
    if dotenv_path is not None:
        load_dotenv(dotenv_path)
    else:
        load_dotenv()


def api_keys_from_env(environ: Optional[Mapping[str, str]] = None) -> list[ApiKey]:
    """
    Collect API keys from ``CRK1`` .. ``CRK10``.

    Blank variables are skipped; the variable name becomes the key name.
    """
    env = os.environ if environ is None else environ
    keys = []
    for index in range(1, MAX_API_KEYS + 1):
        name = f"CRK{index}"
        value = (env.get(name) or "").strip()
        if value:
            keys.append(ApiKey(name=name, value=value))
    return keys


def apply_environment(
    config: SystemConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> SystemConfig:
    """Overlay secrets from the environment onto a loaded configuration."""
    env = os.environ if environ is None else environ

    keys = api_keys_from_env(env)
    if keys:
        config.api_keys = keys

    clan_tag = (env.get("CLAN_TAG") or "").strip()
    if clan_tag:
        config.clan_tag = clan_tag

    secret = (env.get("STATE_HMAC_SECRET") or "").strip()
    if secret:
        config.persistence.hmac_secret = secret

    return config
