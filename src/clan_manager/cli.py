"""
Command-line interface for the clan manager.

This module provides the main CLI entry point with commands for:
- sync-db: Append today's member snapshot to the member log
- leaderboard: Recompute the ranked leaderboard
- scout: Run the recruiter pipeline
- run-all: Full sequence (sync, leaderboard, recruiter as soft failure)
- dismiss: Mark tracked recruits as processed
- health: Validate configuration and ping the API with every key
- config: Configuration management

Secrets (API keys ``CRK1``..``CRK10``, ``CLAN_TAG``, ``STATE_HMAC_SECRET``)
come from the environment or a ``.env`` file and are never written to the
configuration file.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    DEFAULT_HMAC_SECRET,
    DecayConfig,
    FetchConfig,
    LeaderboardConfig,
    LoggingConfig,
    PersistenceConfig,
    RecruiterConfig,
    RecruiterWeights,
    RetryConfig,
    ScoringWeights,
    SystemConfig,
    apply_environment,
    load_environment,
)
from .exceptions import ClanManagerError
from .orchestrator import ClanOrchestrator, SequenceResult, StageResult
from .self_test import SelfTest

DEFAULT_HOME = Path.home() / ".clan_manager"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"


def create_default_config(
    clan_tag: str = "",
    data_dir: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> SystemConfig:
    """
    Create a default system configuration.

    Args:
        clan_tag: Tag of the managed clan
        data_dir: Directory for state, tables, backups and the run lock
        hmac_secret: Secret for HMAC protection

    Returns:
        SystemConfig with default settings and no API keys
    """
    if data_dir is None:
        data_dir = DEFAULT_HOME / "data"

    return SystemConfig(
        clan_tag=clan_tag,
        api_keys=[],
        persistence=PersistenceConfig(
            data_dir=data_dir,
            hmac_secret=hmac_secret,
        ),
        logging=LoggingConfig(
            level="info",
            output_format="text",
        ),
    )


def _section(cls, data: Optional[dict], **overrides: Any):
    """Build a config dataclass from the keys of ``data`` it knows about."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    values = {k: v for k, v in data.items() if k in known}
    values.update(overrides)
    return cls(**values)


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        persistence_data = data.get("persistence", {})
        data_dir = persistence_data.get("data_dir")
        persistence = _section(
            PersistenceConfig,
            persistence_data,
            data_dir=Path(data_dir) if data_dir else DEFAULT_HOME / "data",
        )

        leaderboard_data = data.get("leaderboard", {})
        leaderboard = _section(
            LeaderboardConfig,
            leaderboard_data,
            weights=_section(ScoringWeights, leaderboard_data.get("weights")),
            decay=_section(DecayConfig, leaderboard_data.get("decay")),
        )

        recruiter_data = data.get("recruiter", {})
        recruiter = _section(
            RecruiterConfig,
            recruiter_data,
            weights=_section(RecruiterWeights, recruiter_data.get("weights")),
        )

        return SystemConfig(
            clan_tag=data.get("clan_tag", ""),
            api_keys=[],
            persistence=persistence,
            fetch=_section(FetchConfig, data.get("fetch")),
            retry=_section(RetryConfig, data.get("retry")),
            leaderboard=leaderboard,
            recruiter=recruiter,
            logging=_section(LoggingConfig, data.get("logging")),
            timezone=data.get("timezone", "Europe/Rome"),
        )

    except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    API keys are left out; they belong in the environment.

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        persistence = asdict(config.persistence)
        persistence["data_dir"] = str(config.persistence.data_dir)

        data = {
            "clan_tag": config.clan_tag,
            "timezone": config.timezone,
            "fetch": asdict(config.fetch),
            "retry": asdict(config.retry),
            "leaderboard": asdict(config.leaderboard),
            "recruiter": asdict(config.recruiter),
            "persistence": persistence,
            "logging": asdict(config.logging),
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def resolve_config(config_arg: Optional[str], dotenv_path: Optional[str] = None) -> Optional[SystemConfig]:
    """Config file (explicit or default path) or defaults, overlaid with the environment."""
    load_environment(Path(dotenv_path) if dotenv_path else None)

    config_path = Path(config_arg) if config_arg else DEFAULT_CONFIG_PATH
    config = load_config_from_file(config_path)
    if config is None:
        if config_arg:
            print(f"Error: Could not load config from {config_arg}", file=sys.stderr)
            return None
        config = create_default_config()

    return apply_environment(config)


def create_logger(config: SystemConfig, verbose: bool = False) -> AuditLogger:
    level = "debug" if verbose else config.logging.level
    return AuditLogger.from_config(level, config.logging.output_format)


def _print_stage(result: StageResult) -> None:
    if result.success:
        summary = ", ".join(f"{k}={v}" for k, v in result.details.items())
        print(f"✓ {result.stage}: {summary}")
    elif result.soft_failure:
        print(f"⚠ {result.stage} failed (soft): {'; '.join(result.errors)}")
    else:
        print(f"✗ {result.stage} failed: {'; '.join(result.errors)}", file=sys.stderr)


def _write_json(output: Optional[str], rows: list[dict]) -> None:
    if not output:
        return
    path = Path(output)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)
        print(f"Results written to: {path}")
    except OSError as e:
        print(f"Error writing results: {e}", file=sys.stderr)


def _execute(args: argparse.Namespace, action: Callable[[ClanOrchestrator], Awaitable[int]]) -> int:
    """Resolve config, validate it and run ``action`` on a fresh orchestrator."""
    config = resolve_config(args.config, args.env_file)
    if config is None:
        return 1

    validation = SelfTest(config).validate_config()
    if not validation.valid:
        for error in validation.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    logger = create_logger(config, args.verbose)
    try:
        orchestrator = ClanOrchestrator(config, logger=logger)
        return asyncio.run(action(orchestrator))
    except ClanManagerError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def cmd_sync_db(args: argparse.Namespace) -> int:
    """Handle the 'sync-db' command."""
    async def action(orchestrator: ClanOrchestrator) -> int:
        result = await orchestrator.run_database_sync()
        _print_stage(result)
        return 0 if result.success else 1

    return _execute(args, action)


def cmd_leaderboard(args: argparse.Namespace) -> int:
    """Handle the 'leaderboard' command."""
    async def action(orchestrator: ClanOrchestrator) -> int:
        result = await orchestrator.run_leaderboard()
        _print_stage(result)
        if result.success:
            _write_json(args.output, [row.to_dict() for row in orchestrator.leaderboard_rows()])
        return 0 if result.success else 1

    return _execute(args, action)


def cmd_scout(args: argparse.Namespace) -> int:
    """Handle the 'scout' command."""
    async def action(orchestrator: ClanOrchestrator) -> int:
        result = await orchestrator.run_recruiter()
        _print_stage(result)
        if result.success:
            _write_json(args.output, [r.to_dict() for r in orchestrator.recruits()])
        return 0 if result.success else 1

    return _execute(args, action)


def cmd_run_all(args: argparse.Namespace) -> int:
    """Handle the 'run-all' command."""
    async def action(orchestrator: ClanOrchestrator) -> int:
        result: SequenceResult = await orchestrator.run_full_sequence()
        for stage in result.stages:
            _print_stage(stage)
        return 0 if result.success else 1

    return _execute(args, action)


def cmd_dismiss(args: argparse.Namespace) -> int:
    """Handle the 'dismiss' command."""
    async def action(orchestrator: ClanOrchestrator) -> int:
        marked = await orchestrator.dismiss_recruits(args.tags)
        if not marked:
            print("No tracked recruit matched the given tags.")
            return 1
        print(f"Marked {len(marked)} recruit(s) as processed: {', '.join(marked)}")
        return 0

    return _execute(args, action)


def cmd_health(args: argparse.Namespace) -> int:
    """Handle the 'health' command."""
    config = resolve_config(args.config, args.env_file)
    if config is None:
        return 1

    logger = create_logger(config, args.verbose) if args.verbose else None
    result = asyncio.run(SelfTest(config, logger=logger).run())

    for error in result.config_validation.errors:
        print(f"✗ Config: {error}")
    for warning in result.config_validation.warnings:
        print(f"⚠ Config: {warning}")

    for key_result in result.key_results:
        status = key_result.health.value
        timing = f"{key_result.response_time_ms:.0f}ms"
        print(f"  {key_result.key_name}: {status} ({timing})")

    if result.config_validation.valid:
        print(f"Active keys: {len(result.active_keys)}/{len(result.key_results)}")
    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Clan tag: {config.clan_tag or '(from CLAN_TAG)'}")
        print(f"  Timezone: {config.timezone}")
        print(f"  API base: {config.fetch.api_base}")
        print(f"  Fetch budget: {config.fetch.max_fetches_per_run}")
        print(f"  Data dir: {config.persistence.data_dir}")
        print(f"  Recruiter target: {config.recruiter.target}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(clan_tag=args.clan_tag or "")
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        load_environment()
        result = SelfTest(apply_environment(config)).validate_config()
        for error in result.errors:
            print(f"✗ {error}", file=sys.stderr)
        for warning in result.warnings:
            print(f"⚠ {warning}")
        if not result.valid:
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--env-file",
        help="Path to a .env file with CRK1..CRK10, CLAN_TAG and STATE_HMAC_SECRET",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output (debug logging)",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="clan-manager",
        description="Clan leaderboard and recruiting pipeline",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    sync_parser = subparsers.add_parser("sync-db", help="Log today's member snapshot")
    _add_common_arguments(sync_parser)
    sync_parser.set_defaults(func=cmd_sync_db)

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Recompute the leaderboard")
    _add_common_arguments(leaderboard_parser)
    leaderboard_parser.add_argument(
        "--output", "-o",
        help="Write the ranked rows as JSON to this file",
    )
    leaderboard_parser.set_defaults(func=cmd_leaderboard)

    scout_parser = subparsers.add_parser("scout", help="Run the recruiter pipeline")
    _add_common_arguments(scout_parser)
    scout_parser.add_argument(
        "--output", "-o",
        help="Write the tracked recruits as JSON to this file",
    )
    scout_parser.set_defaults(func=cmd_scout)

    run_all_parser = subparsers.add_parser("run-all", help="Sync, leaderboard and recruiter in sequence")
    _add_common_arguments(run_all_parser)
    run_all_parser.set_defaults(func=cmd_run_all)

    dismiss_parser = subparsers.add_parser("dismiss", help="Mark recruits as processed")
    dismiss_parser.add_argument("tags", nargs="+", help="Player tags (e.g. #2PP)")
    _add_common_arguments(dismiss_parser)
    dismiss_parser.set_defaults(func=cmd_dismiss)

    health_parser = subparsers.add_parser("health", help="Validate config and check API keys")
    _add_common_arguments(health_parser)
    health_parser.set_defaults(func=cmd_health)

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--clan-tag",
        help="Clan tag written by 'init'",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
