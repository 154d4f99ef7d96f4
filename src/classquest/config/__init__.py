"""Configuration package for classquest."""

from classquest.config.app_config import (
    AppConfig,
    ChallengeConfig,
    LedgerConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "ChallengeConfig",
    "LedgerConfig",
    "clear_config_cache",
    "load_app_config",
]
