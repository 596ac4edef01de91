"""Semantic similarity through an OpenAI-compatible chat-completions endpoint."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ConfigDict, Field

from prodrecon.adapters.http_resilience import default_client_factory
from prodrecon.config import get_semantic_config
from prodrecon.domain.errors import TransientSourceError

if TYPE_CHECKING:
    from prodrecon.adapters.http_resilience import ClientFactory
    from prodrecon.config import SemanticMatchConfig
    from prodrecon.domain.ports import SemanticMatcher

log = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You compare retail products. Answer only with a number between 0 and 100 "
    "giving the percentage of similarity between two products."
)
USER_PROMPT = (
    "Compare these two products and give a similarity score between 0 and 100:\n\n"
    'Product 1: "{text_a}"\nProduct 2: "{text_b}"\n\n'
    "Answer only with the number (e.g. 85)."
)
_SCORE_PATTERN = re.compile(r"\d+")


class CompletionModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CompletionMessage(CompletionModel):
    content: str | None = None


class CompletionChoice(CompletionModel):
    message: CompletionMessage = Field(default_factory=CompletionMessage)


class ChatCompletionResponse(CompletionModel):
    choices: list[CompletionChoice] = Field(default_factory=list)

    def text(self) -> str:
        if not self.choices:
            return ""
        return (self.choices[0].message.content or "").strip()


def parse_score(text: str) -> int:
    """First integer in ``text`` clamped to 0..100; 0 when there is none."""

    found = _SCORE_PATTERN.search(text)
    if found is None:
        return 0
    return max(0, min(100, int(found.group())))


@dataclass(slots=True)
class HttpSemanticMatcher:
    config: SemanticMatchConfig
    client_factory: ClientFactory = field(default=default_client_factory)
    temperature: float = 0.3

    def compare(self, text_a: str, text_b: str) -> int:
        return asyncio.run(self._compare_async(text_a, text_b))

    async def _compare_async(self, text_a: str, text_b: str) -> int:
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": USER_PROMPT.format(text_a=text_a, text_b=text_b)},
            ],
            "temperature": self.temperature,
        }
        async with self.client_factory(self.config.resilience) as client:
            try:
                response = await client.post("chat/completions", json=body)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise TransientSourceError(f"semantic matcher: {exc}") from exc

        try:
            payload = ChatCompletionResponse.model_validate(response.json())
        except ValueError as exc:
            raise TransientSourceError("semantic matcher: malformed response") from exc
        score = parse_score(payload.text())
        log.debug("Semantic score %s for %r vs %r", score, text_a, text_b)
        return score


def build_semantic_matcher() -> SemanticMatcher | None:
    """Configured matcher, or ``None`` when no API key is present."""

    config = get_semantic_config()
    if config is None:
        log.info("Semantic matching disabled: no API key configured")
        return None
    return HttpSemanticMatcher(config)

