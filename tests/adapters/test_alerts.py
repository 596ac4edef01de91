from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import uuid4

import httpx
import pytest

from prodrecon.adapters.alerts import (
    LoggingAlertSink,
    WebhookAlertSink,
    build_alert_sink,
    event_payload,
)
from prodrecon.adapters.http_resilience import ResilientClient
from prodrecon.config import AlertConfig, ResilienceConfig, RetryPolicy
from prodrecon.domain.model import PriceChangeEvent, ProductDomain

if TYPE_CHECKING:
    from collections.abc import Callable

WEBHOOK_URL = "https://hooks.example.com/prices"


def price_event() -> PriceChangeEvent:
    return PriceChangeEvent(
        tenant_id="tenant-a",
        product_id=uuid4(),
        domain=ProductDomain.SUPPLIER_PRODUCT,
        old_price=Decimal("10.00"),
        new_price=Decimal("12.00"),
        change_percent=Decimal("20.00"),
        occurred_at=datetime(2025, 3, 1, 8, 30, tzinfo=UTC),
    )


def webhook_sink(handler: Callable[[httpx.Request], httpx.Response]) -> WebhookAlertSink:
    config = AlertConfig(
        webhook_url=WEBHOOK_URL,
        resilience=ResilienceConfig(name="alerts", retry=RetryPolicy(total=0), cache=None),
    )

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        return ResilientClient(resilience, transport=httpx.MockTransport(handler))

    return WebhookAlertSink(config, client_factory=factory)


def test_event_payload_is_json_ready() -> None:
    event = price_event()

    payload = event_payload(event)

    assert payload == {
        "type": "price_change",
        "tenant_id": "tenant-a",
        "product_id": str(event.product_id),
        "domain": "supplier_product",
        "old_price": "10.00",
        "new_price": "12.00",
        "change_percent": "20.00",
        "link_id": None,
        "occurred_at": "2025-03-01T08:30:00+00:00",
    }


def test_webhook_sink_posts_event() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    event = price_event()
    webhook_sink(handler).emit(event)

    assert len(seen) == 1
    assert str(seen[0].url) == WEBHOOK_URL
    assert json.loads(seen[0].content) == event_payload(event)


def test_webhook_sink_raises_on_rejection() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        _ = request
        return httpx.Response(410)

    with pytest.raises(httpx.HTTPStatusError):
        webhook_sink(handler).emit(price_event())


def test_logging_sink_warns(caplog: pytest.LogCaptureFixture) -> None:
    event = price_event()

    with caplog.at_level(logging.WARNING, logger="prodrecon.adapters.alerts"):
        LoggingAlertSink().emit(event)

    assert str(event.product_id) in caplog.text
    assert "20.00%" in caplog.text


def test_build_alert_sink_follows_webhook_setting(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PRODRECON_ALERT_WEBHOOK_URL", raising=False)
    assert isinstance(build_alert_sink(), LoggingAlertSink)

    monkeypatch.setenv("PRODRECON_ALERT_WEBHOOK_URL", WEBHOOK_URL)
    sink = build_alert_sink()

    assert isinstance(sink, WebhookAlertSink)
    assert sink.config.webhook_url == WEBHOOK_URL
