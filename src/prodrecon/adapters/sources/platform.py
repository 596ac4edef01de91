"""Paged JSON catalog source (platform and marketplace APIs)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from prodrecon.adapters.http_resilience import default_client_factory
from prodrecon.config import FatalConfigError
from prodrecon.domain.errors import TransientSourceError
from prodrecon.domain.ports import SourcePage
from prodrecon.domain.reconciliation import CandidateField

if TYPE_CHECKING:
    from prodrecon.adapters.http_resilience import ClientFactory, ResilientClient
    from prodrecon.config import ResilienceConfig
    from prodrecon.domain.ports import SourceRow

log = logging.getLogger(__name__)


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _scalar_text(value: object) -> object:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(value)
    return _blank_to_none(value)


class CatalogBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CatalogItemPayload(CatalogBaseModel):
    reference: str | None = Field(
        default=None, validation_alias=AliasChoices("reference", "sku", "id", "code")
    )
    name: str | None = Field(
        default=None, validation_alias=AliasChoices("name", "title", "product_name")
    )
    brand: str | None = Field(default=None, validation_alias=AliasChoices("brand", "manufacturer"))
    ean: str | None = Field(default=None, validation_alias=AliasChoices("ean", "gtin", "barcode"))
    price: str | None = None
    stock: int | None = Field(default=None, validation_alias=AliasChoices("stock", "quantity"))

    _normalize_text = field_validator(
        "reference", "name", "brand", "ean", "price", mode="before"
    )(_scalar_text)

    def as_row(self) -> SourceRow:
        values = {
            CandidateField.REFERENCE: self.reference,
            CandidateField.NAME: self.name,
            CandidateField.BRAND: self.brand,
            CandidateField.EAN: self.ean,
            CandidateField.PRICE: self.price,
            CandidateField.STOCK: self.stock,
        }
        return {str(key): value for key, value in values.items() if value is not None}


class CatalogPagePayload(CatalogBaseModel):
    items: list[CatalogItemPayload] = Field(
        default_factory=list, validation_alias=AliasChoices("items", "products", "data")
    )
    total: int | None = Field(default=None, validation_alias=AliasChoices("total", "count"))


def catalog_page_is_cacheable(payload: object) -> bool:
    """Only well-formed, non-empty pages are worth caching."""

    try:
        page = CatalogPagePayload.model_validate(payload)
    except ValueError:
        return False
    return bool(page.items)


@dataclass(slots=True)
class HttpCatalogSource:
    """Fetch ``offset``/``limit`` pages from a JSON catalog endpoint.

    Network failures, timeouts and 5xx responses that survive the retry layer
    become ``TransientSourceError`` so the pipeline fails the job at the last
    committed offset.
    """

    url: str
    resilience: ResilienceConfig
    client_factory: ClientFactory = field(default=default_client_factory)

    def fetch_page(self, offset: int, limit: int) -> SourcePage:
        return asyncio.run(self._fetch_page_async(offset, limit))

    async def _fetch_page_async(self, offset: int, limit: int) -> SourcePage:
        async with self.client_factory(self.resilience) as client:
            payload = await self._request_page(client, offset, limit)

        rows = tuple(item.as_row() for item in payload.items)
        next_offset = offset + len(rows)
        if payload.total is not None:
            has_more = next_offset < payload.total
        else:
            has_more = len(rows) >= limit
        log.debug(
            "Fetched %s rows from %s at offset %s (total=%s)",
            len(rows),
            self.url,
            offset,
            payload.total,
        )
        return SourcePage(
            rows=rows,
            has_more=has_more and bool(rows),
            total_count=payload.total,
            next_offset=next_offset,
        )

    async def _request_page(
        self, client: ResilientClient, offset: int, limit: int
    ) -> CatalogPagePayload:
        try:
            response = await client.get(self.url, params={"offset": offset, "limit": limit})
            response.raise_for_status()
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientSourceError(f"{self.url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500 or status == httpx.codes.TOO_MANY_REQUESTS:
                raise TransientSourceError(f"{self.url}: HTTP {status}") from exc
            if status in {httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN}:
                raise FatalConfigError(
                    f"{self.url}: HTTP {status}, check the platform credentials"
                ) from exc
            if 400 <= status < 500:
                raise FatalConfigError(f"{self.url}: request rejected with HTTP {status}") from exc
            raise

        try:
            return CatalogPagePayload.model_validate(response.json())
        except ValueError as exc:
            raise TransientSourceError(f"{self.url}: malformed page payload") from exc
