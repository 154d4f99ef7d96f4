"""Application configuration loader.

Loads centralized configuration from data/config/classquest_v1.yaml,
falling back to built-in defaults when the file does not exist.

Usage:
    from classquest.config.app_config import load_app_config

    config = load_app_config()
    pools = config.challenge.reward_pools
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/classquest_v1.yaml")

# Environment override for the database location
DB_PATH_ENV = "CLASSQUEST_DB_PATH"


@dataclass
class ChallengeConfig:
    """Weekly challenge rotation and settlement settings."""

    reward_pools: tuple[float, float, float] = (10.0, 5.0, 3.0)
    max_attempts: int = 3
    backoff_base_ms: int = 100
    transaction_timeout_seconds: float = 15.0
    week_starts_on: int = 1  # ISO weekday, 1 = Monday

    @property
    def backoff_base_seconds(self) -> float:
        return self.backoff_base_ms / 1000


@dataclass
class LedgerConfig:
    """Consistency ledger settings."""

    max_weeks: int = 8
    week_starts_on: int = 1
    metric_kinds: tuple[str, ...] = ("m", "t", "g")
    transaction_timeout_seconds: float = 10.0


@dataclass
class AppConfig:
    """Application-wide configuration."""

    challenge: ChallengeConfig = field(default_factory=ChallengeConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    paths: dict[str, str] = field(default_factory=dict)

    @property
    def db_path(self) -> Path:
        """Database path, honouring the CLASSQUEST_DB_PATH override."""
        override = os.environ.get(DB_PATH_ENV)
        if override:
            return Path(override)
        return Path(self.paths.get("db_path", "db/classquest.db"))


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "challenge": {
            "reward_pools": [10, 5, 3],
            "max_attempts": 3,
            "backoff_base_ms": 100,
            "transaction_timeout_seconds": 15,
            "week_starts_on": 1,
        },
        "ledger": {
            "max_weeks": 8,
            "week_starts_on": 1,
            "metric_kinds": ["m", "t", "g"],
            "transaction_timeout_seconds": 10,
        },
        "paths": {
            "db_path": "db/classquest.db",
        },
    }


def _validate_week_start(value: int) -> int:
    if not 1 <= value <= 7:
        raise ValueError(f"week_starts_on must be an ISO weekday (1-7), got {value}")
    return value


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    challenge_data = {**defaults["challenge"], **(data.get("challenge") or {})}
    pools = [float(p) for p in challenge_data["reward_pools"]]
    if len(pools) != 3:
        raise ValueError(f"reward_pools needs exactly three tiers, got {len(pools)}")

    challenge = ChallengeConfig(
        reward_pools=(pools[0], pools[1], pools[2]),
        max_attempts=max(1, int(challenge_data["max_attempts"])),
        backoff_base_ms=int(challenge_data["backoff_base_ms"]),
        transaction_timeout_seconds=float(challenge_data["transaction_timeout_seconds"]),
        week_starts_on=_validate_week_start(int(challenge_data["week_starts_on"])),
    )

    ledger_data = {**defaults["ledger"], **(data.get("ledger") or {})}
    ledger = LedgerConfig(
        max_weeks=max(1, int(ledger_data["max_weeks"])),
        week_starts_on=_validate_week_start(int(ledger_data["week_starts_on"])),
        metric_kinds=tuple(str(k) for k in ledger_data["metric_kinds"]),
        transaction_timeout_seconds=float(ledger_data["transaction_timeout_seconds"]),
    )

    paths = {**defaults["paths"], **(data.get("paths") or {})}

    return AppConfig(challenge=challenge, ledger=ledger, paths=paths)


def load_app_config(force_reload: bool = False, config_file: Path | None = None) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternative YAML file (bypasses the cache).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if config_file is None and _cached_config is not None and not force_reload:
        return _cached_config

    source = config_file or CONFIG_FILE
    data: dict[str, Any]

    if source.exists():
        logger.debug("loading_app_config", source=str(source))
        data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    config = _parse_config(data)
    if config_file is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
