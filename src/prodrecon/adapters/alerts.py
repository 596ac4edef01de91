"""Price-change alert delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from prodrecon.adapters.http_resilience import default_client_factory
from prodrecon.config import get_alert_config

if TYPE_CHECKING:
    from prodrecon.adapters.http_resilience import ClientFactory
    from prodrecon.config import AlertConfig
    from prodrecon.domain.model import PriceChangeEvent
    from prodrecon.domain.ports import AlertSink

log = logging.getLogger(__name__)


def event_payload(event: PriceChangeEvent) -> dict[str, object]:
    return {
        "type": "price_change",
        "tenant_id": event.tenant_id,
        "product_id": str(event.product_id),
        "domain": event.domain.value,
        "old_price": str(event.old_price),
        "new_price": str(event.new_price),
        "change_percent": str(event.change_percent),
        "link_id": str(event.link_id) if event.link_id else None,
        "occurred_at": event.occurred_at.isoformat(),
    }


class LoggingAlertSink:
    def emit(self, event: PriceChangeEvent) -> None:
        log.warning(
            "Price change on %s (%s): %s -> %s (%s%%)",
            event.product_id,
            event.tenant_id,
            event.old_price,
            event.new_price,
            event.change_percent,
        )


@dataclass(slots=True)
class WebhookAlertSink:
    """POST each event as JSON; non-2xx responses raise ``httpx.HTTPStatusError``."""

    config: AlertConfig
    client_factory: ClientFactory = field(default=default_client_factory)

    def emit(self, event: PriceChangeEvent) -> None:
        asyncio.run(self._emit_async(event))

    async def _emit_async(self, event: PriceChangeEvent) -> None:
        async with self.client_factory(self.config.resilience) as client:
            response = await client.post(self.config.webhook_url, json=event_payload(event))
            response.raise_for_status()
        log.info("Delivered price change alert for %s", event.product_id)


def build_alert_sink() -> AlertSink:
    config = get_alert_config()
    if config is None:
        return LoggingAlertSink()
    return WebhookAlertSink(config)
