"""Credentials and client settings for remote catalog sources."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, require_env_var
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy, ShouldCacheHook

PLATFORM_TIMEOUT_SECONDS = 30.0
PLATFORM_CACHE_TTL_SECONDS = 300.0


@dataclass(frozen=True, slots=True)
class PlatformSourceConfig:
    api_token: str
    resilience: ResilienceConfig


def get_platform_source_config(
    *, cache_predicate: ShouldCacheHook | None = None
) -> PlatformSourceConfig:
    """Settings for paged JSON catalog APIs; the token is mandatory.

    Catalog pages are cached on disk for ``PRODRECON_PLATFORM_CACHE_TTL``
    seconds so a resumed or repeated import does not pull them again;
    ``0`` disables the cache.
    """

    token = require_env_var("PRODRECON_PLATFORM_TOKEN")
    ttl = env_float("PRODRECON_PLATFORM_CACHE_TTL", PLATFORM_CACHE_TTL_SECONDS)
    cache = (
        CacheConfig(backend="sqlite", default_ttl_seconds=ttl, should_cache=cache_predicate)
        if ttl > 0
        else None
    )
    return PlatformSourceConfig(
        api_token=token,
        resilience=ResilienceConfig(
            name="platform",
            timeout_seconds=env_float("PRODRECON_PLATFORM_TIMEOUT", PLATFORM_TIMEOUT_SECONDS),
            retry=RetryPolicy(total=3),
            ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
            cache=cache,
            default_headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        ),
    )
