# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime configuration: environment variables + optional YAML overrides.

Every tunable lives in a frozen dataclass so that concurrent plan-generation
requests share configuration without sharing mutable state.  Resolution
order (last wins): dataclass defaults → ``SCRAPEPLAN_*`` environment → YAML.

YAML layout::

    llm:
      primary_provider: openai
      timeout_s: 45
    sandbox:
      timeout_ms: 40000
      allowed_domains: [example.org]
    scoring:
      specificity: 0.4
    quality:
      consistency: 0.1
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

_ENV_PREFIX = "SCRAPEPLAN_"

SANDBOX_USER_AGENT = "Mozilla/5.0 (compatible; AI-Scraper-Sandbox/1.0)"


# ---------------------------------------------------------------------------
# Scoring weights (named and overridable; tuned empirically)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScoringWeights:
    """Weights and bonuses used by ConfidenceScorer."""

    specificity: float = 0.30
    clarity: float = 0.25
    consistency: float = 0.20
    completeness: float = 0.25

    # Per-selector specificity bonuses
    selector_base: float = 0.3
    class_bonus: float = 0.2
    id_bonus: float = 0.3
    attribute_bonus: float = 0.1
    descendant_bonus: float = 0.1

    # Structure clarity buckets
    complexity_low: float = 0.9
    complexity_medium: float = 0.7
    complexity_high: float = 0.5

    # Pattern consistency
    pattern_saturation: int = 4
    clarity_saturation: int = 5
    key_pattern_bonus: float = 0.2

    # Response completeness
    required_field: float = 0.4
    optional_field: float = 0.1


@dataclass(frozen=True, slots=True)
class QualityWeights:
    """Blend for DataQualityMetrics.overall."""

    completeness: float = 0.4
    accuracy: float = 0.4
    consistency: float = 0.2


# ---------------------------------------------------------------------------
# LLM providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LLMSettings:
    """Provider selection, models, and prompt budgets."""

    primary_provider: str = "openai"
    secondary_provider: str = "ollama"
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    api_key: str = field(default="", repr=False)
    ollama_model: str = "llama3.2:1b"
    ollama_base_url: str = "http://localhost:11434"
    timeout_s: float = 60.0
    temperature: float = 0.1
    max_tokens: int = 8000
    secondary_max_tokens: int = 2000
    main_html_budget: int = 15000  # chars, main/listing page prompt
    detail_html_budget: int = 8000  # chars, per detail page
    max_prompt_tokens: int | None = None  # optional tiktoken hard cap


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SandboxConfig:
    """Resource and isolation limits for one validation run."""

    max_pages: int = 5
    timeout_ms: int = 60000
    navigation_timeout_ms: int = 30000
    settle_ms: int = 2000
    max_memory_mb: int = 512
    allowed_domains: tuple[str, ...] = ()
    blocked_resource_types: tuple[str, ...] = ("media", "font")
    enable_screenshots: bool = False
    enable_highlighting: bool = True
    locale: str = "de-DE"
    timezone_id: str = "Europe/Berlin"
    user_agent: str = SANDBOX_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080
    max_samples: int = 3
    max_example_urls: int = 3
    headless: bool = True

    def host_allowed(self, host: str) -> bool:
        """True when no allow-list is configured or *host* is (a subdomain of) an entry."""
        if not self.allowed_domains:
            return True
        host = host.lower()
        return any(host == d or host.endswith("." + d) for d in (d.lower() for d in self.allowed_domains))


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Settings:
    llm: LLMSettings = field(default_factory=LLMSettings)
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    quality: QualityWeights = field(default_factory=QualityWeights)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        llm_overrides: dict[str, Any] = {}
        sandbox_overrides: dict[str, Any] = {}

        def _get(name: str) -> str:
            return env.get(_ENV_PREFIX + name, "").strip()

        for key, attr in (
            ("PRIMARY_PROVIDER", "primary_provider"),
            ("SECONDARY_PROVIDER", "secondary_provider"),
            ("OPENAI_MODEL", "openai_model"),
            ("OPENAI_BASE_URL", "openai_base_url"),
            ("OLLAMA_MODEL", "ollama_model"),
            ("OLLAMA_BASE_URL", "ollama_base_url"),
        ):
            if value := _get(key):
                llm_overrides[attr] = value
        if value := _get("LLM_TIMEOUT"):
            llm_overrides["timeout_s"] = _parse_number(value, "SCRAPEPLAN_LLM_TIMEOUT", float)
        if api_key := env.get("OPENAI_API_KEY", "").strip():
            llm_overrides["api_key"] = api_key

        if value := _get("SANDBOX_TIMEOUT_MS"):
            sandbox_overrides["timeout_ms"] = _parse_number(value, "SCRAPEPLAN_SANDBOX_TIMEOUT_MS", int)
        if value := _get("SANDBOX_MAX_PAGES"):
            sandbox_overrides["max_pages"] = _parse_number(value, "SCRAPEPLAN_SANDBOX_MAX_PAGES", int)
        if value := _get("SANDBOX_ALLOWED_DOMAINS"):
            sandbox_overrides["allowed_domains"] = tuple(d.strip() for d in value.split(",") if d.strip())
        if value := _get("SANDBOX_SCREENSHOTS"):
            sandbox_overrides["enable_screenshots"] = value.lower() in ("1", "true", "yes")

        return cls(
            llm=dataclasses.replace(LLMSettings(), **llm_overrides),
            sandbox=dataclasses.replace(SandboxConfig(), **sandbox_overrides),
        )

    def with_overrides(self, data: dict[str, Any]) -> Settings:
        """Return a copy with nested section overrides applied (YAML shape)."""
        sections = {"llm": self.llm, "sandbox": self.sandbox, "scoring": self.scoring, "quality": self.quality}
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown configuration section(s): {', '.join(sorted(unknown))}")
        updated = {}
        for name, current in sections.items():
            overrides = data.get(name) or {}
            if not isinstance(overrides, dict):
                raise ConfigError(f"Configuration section '{name}' must be a mapping")
            updated[name] = _apply(current, overrides, name)
        return Settings(**updated)


def _parse_number(raw: str, name: str, kind: type) -> Any:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _apply(section: Any, overrides: dict[str, Any], name: str) -> Any:
    valid = {f.name for f in dataclasses.fields(section)}
    unknown = set(overrides) - valid
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}")
    clean = {k: tuple(v) if isinstance(v, list) else v for k, v in overrides.items()}
    return dataclasses.replace(section, **clean)


def load_settings(path: str | Path | None = None, *, environ: dict[str, str] | None = None) -> Settings:
    """Build Settings from the environment, then apply an optional YAML file."""
    settings = Settings.from_env(environ)
    if path is None:
        env = os.environ if environ is None else environ
        path = env.get(_ENV_PREFIX + "CONFIG", "").strip() or None
    if path is None:
        return settings

    p = Path(path)
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read configuration file {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {p} must contain a mapping")
    logger.info("Loaded configuration overrides from %s", p)
    return settings.with_overrides(data)
