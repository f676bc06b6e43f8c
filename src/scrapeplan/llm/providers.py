# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""httpx-backed LLM providers.

* :class:`OpenAIChatProvider`: any OpenAI-compatible ``/chat/completions``
  endpoint (OpenAI, OpenRouter, vLLM ...).
* :class:`OllamaProvider`: a local Ollama daemon via ``/api/generate``.

Every transport, HTTP, and payload failure is raised as
``ProviderUnavailableError`` so the synthesizer can move on to the next
fallback stage.  Token-limit failures carry ``token_limit=True``.
"""

from __future__ import annotations

import logging
import time

import httpx

from ..config import LLMSettings
from ..errors import ConfigError, ProviderUnavailableError
from . import LLMRequest, LLMResponse, ResponseFormat

logger = logging.getLogger(__name__)

_TOKEN_LIMIT_MARKERS = (
    "max_tokens is too large",
    "context_length_exceeded",
    "maximum context length",
    "too many tokens",
    "token limit",
)

# Chat models known to accept response_format=json_object
_JSON_MODE_MODELS = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4-turbo-preview", "gpt-3.5-turbo", "gpt-4.1")

_ERROR_BODY_PREVIEW = 300


def is_token_limit_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _TOKEN_LIMIT_MARKERS)


def supports_json_mode(model: str) -> bool:
    lowered = model.lower()
    return any(m in lowered for m in _JSON_MODE_MODELS)


class _HttpProvider:
    """Shared request plumbing: optional injected client, error mapping."""

    name = "http"

    def __init__(self, *, timeout_s: float, client: httpx.AsyncClient | None = None) -> None:
        self._timeout_s = timeout_s
        self._client = client

    async def _post(self, url: str, payload: dict, headers: dict[str, str] | None = None) -> dict:
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self._timeout_s)
                response.raise_for_status()
                return response.json()
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text[:_ERROR_BODY_PREVIEW]
            message = f"{self.name} returned HTTP {exc.response.status_code}: {body}"
            raise ProviderUnavailableError(
                message, provider=self.name, token_limit=is_token_limit_message(body)
            ) from exc
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"{self.name} request timed out after {self._timeout_s:.0f}s", provider=self.name
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(f"{self.name} request failed: {exc}", provider=self.name) from exc
        except ValueError as exc:
            raise ProviderUnavailableError(f"{self.name} returned a non-JSON body", provider=self.name) from exc


class OpenAIChatProvider(_HttpProvider):
    name = "openai"

    def __init__(self, settings: LLMSettings, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(timeout_s=settings.timeout_s, client=client)
        self.model = settings.openai_model
        self._base_url = settings.openai_base_url.rstrip("/")
        self._api_key = settings.api_key
        self._settings = settings

    async def generate(self, request: LLMRequest) -> LLMResponse:
        if not self._api_key:
            raise ProviderUnavailableError(
                "OpenAI client not configured: set OPENAI_API_KEY", provider=self.name
            )

        messages = []
        if request.system_message:
            messages.append({"role": "system", "content": request.system_message})
        messages.append({"role": "user", "content": request.prompt})
        payload: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": request.max_tokens or self._settings.max_tokens,
            "temperature": request.temperature if request.temperature is not None else self._settings.temperature,
        }
        if request.format == ResponseFormat.JSON and supports_json_mode(self.model):
            payload["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        data = await self._post(
            f"{self._base_url}/chat/completions",
            payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        choices = data.get("choices") or []
        content = ((choices[0].get("message") or {}).get("content") if choices else None) or ""
        if not content.strip():
            raise ProviderUnavailableError(f"Empty response from OpenAI model {self.model}", provider=self.name)
        usage = data.get("usage") or {}
        logger.debug(
            "OpenAI response: model=%s tokens=%s duration_ms=%d",
            self.model,
            usage.get("total_tokens"),
            int((time.monotonic() - t0) * 1000),
        )
        return LLMResponse(
            content=content,
            provider=self.name,
            model=self.model,
            tokens_used=usage.get("total_tokens"),
            finish_reason=choices[0].get("finish_reason"),
        )


class OllamaProvider(_HttpProvider):
    name = "ollama"

    def __init__(self, settings: LLMSettings, *, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(timeout_s=settings.timeout_s, client=client)
        self.model = settings.ollama_model
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._settings = settings

    async def generate(self, request: LLMRequest) -> LLMResponse:
        prompt = request.prompt
        if request.system_message:
            prompt = f"{request.system_message}\n\n{prompt}"
        if request.format == ResponseFormat.JSON:
            prompt += "\n\nPlease respond with valid JSON format only."

        options: dict = {
            "temperature": request.temperature if request.temperature is not None else self._settings.temperature,
        }
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        payload: dict = {"model": self.model, "prompt": prompt, "stream": False, "options": options}
        if request.format == ResponseFormat.JSON:
            payload["format"] = "json"

        data = await self._post(f"{self._base_url}/api/generate", payload)
        content = data.get("response") or ""
        if not content.strip():
            raise ProviderUnavailableError(f"Empty response from Ollama model {self.model}", provider=self.name)
        logger.debug("Ollama response: model=%s chars=%d", self.model, len(content))
        return LLMResponse(
            content=content,
            provider=self.name,
            model=self.model,
            tokens_used=data.get("eval_count"),
            finish_reason=data.get("done_reason"),
        )


_PROVIDERS = {"openai": OpenAIChatProvider, "ollama": OllamaProvider}


def build_provider(
    name: str, settings: LLMSettings, *, client: httpx.AsyncClient | None = None
) -> OpenAIChatProvider | OllamaProvider:
    """Provider instance for a configured provider name."""
    try:
        cls = _PROVIDERS[name.lower()]
    except KeyError:
        raise ConfigError(f"Unknown LLM provider {name!r}; expected one of: {', '.join(_PROVIDERS)}") from None
    return cls(settings, client=client)
