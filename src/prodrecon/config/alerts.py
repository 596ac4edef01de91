"""Alert sink configuration."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var
from .http_resilience import ResilienceConfig, RetryPolicy

ALERT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class AlertConfig:
    webhook_url: str
    resilience: ResilienceConfig


def get_alert_config() -> AlertConfig | None:
    """Return webhook settings, or ``None`` to fall back to log-only alerts."""

    url = optional_env_var("PRODRECON_ALERT_WEBHOOK_URL")
    if url is None:
        return None
    return AlertConfig(
        webhook_url=url,
        resilience=ResilienceConfig(
            name="alerts",
            timeout_seconds=ALERT_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=1),
        ),
    )
