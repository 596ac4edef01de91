"""Matcher cascade and link graph thresholds."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int
from .errors import ConfigurationError

DEFAULT_LEXICAL_THRESHOLD = 75
DEFAULT_PRICE_CHANGE_THRESHOLD_PERCENT = 5.0
DEFAULT_FUZZY_SCAN_LIMIT = 5000


@dataclass(frozen=True, slots=True)
class MatchingConfig:
    lexical_threshold: int = DEFAULT_LEXICAL_THRESHOLD
    price_change_threshold_percent: float = DEFAULT_PRICE_CHANGE_THRESHOLD_PERCENT
    fuzzy_scan_limit: int = DEFAULT_FUZZY_SCAN_LIMIT

    def __post_init__(self) -> None:
        if not 0 <= self.lexical_threshold <= 100:
            raise ConfigurationError("Lexical threshold must be within 0..100")
        if self.price_change_threshold_percent < 0:
            raise ConfigurationError("Price change threshold must be non-negative")
        if self.fuzzy_scan_limit <= 0:
            raise ConfigurationError("Fuzzy scan limit must be positive")


def get_matching_config() -> MatchingConfig:
    return MatchingConfig(
        lexical_threshold=env_int("PRODRECON_MATCH_THRESHOLD", DEFAULT_LEXICAL_THRESHOLD),
        price_change_threshold_percent=env_float(
            "PRODRECON_PRICE_ALERT_PERCENT", DEFAULT_PRICE_CHANGE_THRESHOLD_PERCENT
        ),
        fuzzy_scan_limit=env_int("PRODRECON_FUZZY_SCAN_LIMIT", DEFAULT_FUZZY_SCAN_LIMIT),
    )
