# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""LLM provider contract.

The synthesizer depends only on these shapes: a request goes in, a response
with ``content`` comes out.  Concrete HTTP clients live in
:mod:`scrapeplan.llm.providers`; tests plug in anything with a ``name`` and
an async ``generate``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable


class ResponseFormat(StrEnum):
    JSON = "json"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class LLMRequest:
    prompt: str
    system_message: str | None = None
    format: ResponseFormat = ResponseFormat.TEXT
    temperature: float | None = None
    max_tokens: int | None = None
    provider_override: str | None = None
    # Tracking only
    service: str = "unknown"
    method: str = "generate"
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LLMResponse:
    content: str
    provider: str
    model: str
    tokens_used: int | None = None
    finish_reason: str | None = None


@runtime_checkable
class LLMProvider(Protocol):
    """Anything that turns an LLMRequest into an LLMResponse.

    Implementations raise ``ProviderUnavailableError`` for network, timeout,
    quota and token-limit failures.
    """

    name: str
    model: str

    async def generate(self, request: LLMRequest) -> LLMResponse: ...


__all__ = ["LLMProvider", "LLMRequest", "LLMResponse", "ResponseFormat"]
