"""Semantic-match collaborator configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_SEMANTIC_BASE_URL = "https://ai.gateway.lovable.dev/v1"
DEFAULT_SEMANTIC_MODEL = "google/gemini-2.5-flash"
SEMANTIC_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True, slots=True)
class SemanticMatchConfig:
    api_key: str
    model: str
    resilience: ResilienceConfig


def get_semantic_config() -> SemanticMatchConfig | None:
    """Return the semantic matcher config, or ``None`` when no API key is set."""

    api_key = optional_env_var("SEMANTIC_MATCH_API_KEY")
    if api_key is None:
        return None
    base_url = optional_env_var("SEMANTIC_MATCH_BASE_URL") or DEFAULT_SEMANTIC_BASE_URL
    return SemanticMatchConfig(
        api_key=api_key,
        model=optional_env_var("SEMANTIC_MATCH_MODEL") or DEFAULT_SEMANTIC_MODEL,
        resilience=ResilienceConfig(
            name="semantic",
            base_url=base_url,
            timeout_seconds=SEMANTIC_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=2),
            ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
            default_headers={"Authorization": f"Bearer {api_key}"},
        ),
    )
