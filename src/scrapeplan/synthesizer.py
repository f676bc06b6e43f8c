# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Two-phase, LLM-assisted selector synthesis.

Phase 1 (listing page) asks for list / pagination / cookie-consent selectors.
Phase 2 (only when example detail pages are supplied) asks for per-field
detail selectors over the first three pages.

Each phase runs an ordered fallback chain:

  llm-primary          strict JSON request to the primary provider
  llm-secondary        ``LABEL: value`` lines from the secondary (local) provider
  heuristic-fallback   deterministic selectors from detected pattern tags

``synthesize()`` never raises for provider or parsing trouble; it always
returns a usable plan whose confidence reflects how degraded the source was.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from .config import LLMSettings, Settings
from .cookie_consent import detect_cookie_consent
from .errors import ProviderUnavailableError
from .html_compressor import compress_html, truncate_to_token_limit
from .language import LexiconRegistry
from .llm import LLMProvider, LLMRequest, LLMResponse, ResponseFormat
from .llm.fallback import Err, FallbackStage, Ok, StageFailure, run_fallback_chain
from .llm.parsing import ParsedDetailResponse, ParsedPlanResponse, parse_content_response, parse_line_response
from .llm.parsing import parse_main_response
from .llm.prompts import LINE_SYSTEM_MESSAGE, SYSTEM_MESSAGE, content_page_prompt, line_format_prompt
from .llm.prompts import main_page_prompt
from .llm.providers import build_provider
from .llm.tracker import LLMUsageTracker, tracked_generate
from .models import (
    ComplianceFlags,
    ContentExample,
    PlanMetadata,
    PlanSource,
    RetryPolicy,
    ScrapingPlan,
    SiteAnalysisResult,
    make_plan_id,
)
from .scoring import ConfidenceBreakdown, ConfidenceScorer
from .site_analyzer import default_selectors_for, infer_language_hint, infer_site_type

logger = logging.getLogger(__name__)

HEURISTIC_CONFIDENCE = 0.5
HEURISTIC_RATE_LIMIT_MS = 2000
MAX_DETAIL_PAGES = 3
_SERVICE = "selector-synthesizer"

# Heuristic list selectors, first matching pattern tag wins
_HEURISTIC_LIST_SELECTORS: tuple[tuple[str, str], ...] = (
    ("list-structure", 'li, article, .item, .entry, [class*="item"]'),
    ("card-layout", '.card, [class*="card"], article, .item'),
    ("table-structure", "tr, tbody tr"),
)
_HEURISTIC_DEFAULT_LIST = "article"
_HEURISTIC_PAGINATION = '.pagination a, .next, [class*="next"], [class*="pagination"] a'


@dataclass(frozen=True, slots=True)
class _Draft:
    parsed: ParsedPlanResponse
    source: PlanSource
    response: LLMResponse | None = None


@dataclass(frozen=True, slots=True)
class _DetailDraft:
    parsed: ParsedDetailResponse
    source: str
    response: LLMResponse | None = None


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    plan: ScrapingPlan
    stage: PlanSource
    breakdown: ConfidenceBreakdown | None
    reasoning: str
    human_readable_doc: str
    failures: tuple[StageFailure, ...] = ()
    detail_stage: str | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


def _as_pages(content_pages: Mapping[str, str] | Sequence[ContentExample] | None) -> list[tuple[str, str]]:
    if not content_pages:
        return []
    if isinstance(content_pages, Mapping):
        pages = [(url, html) for url, html in content_pages.items()]
    else:
        pages = [(ex.url, ex.html) for ex in content_pages]
    return [(url, html) for url, html in pages if html and html.strip()][:MAX_DETAIL_PAGES]


def heuristic_plan(pattern_tags: Sequence[str], archetype: str = "generic") -> ParsedPlanResponse:
    """Deterministic plan from pattern tags alone. Never fails."""
    tags = set(pattern_tags)
    list_selector = next((sel for tag, sel in _HEURISTIC_LIST_SELECTORS if tag in tags), _HEURISTIC_DEFAULT_LIST)
    details = {
        "title": 'h1, h2, h3, .title, .headline, [class*="title"]',
        "description": 'p, .description, .content, .text, [class*="description"]',
    }
    if "date-content" in tags:
        details["dates"] = '.date, time, .published, [datetime], [class*="date"]'
    details["website"] = 'a[href^="http"], a[href^="www"], [class*="website"], [class*="link"]'
    details["images"] = 'img[src], picture img, [class*="image"] img'
    return ParsedPlanResponse(
        list_selector=list_selector,
        pagination_selector=_HEURISTIC_PAGINATION if "pagination" in tags else None,
        rate_limit_ms=HEURISTIC_RATE_LIMIT_MS,
        detail_selectors=details,
        confidence=HEURISTIC_CONFIDENCE,
        reasoning=(
            "Fallback plan generated using pattern-based approach. "
            f"Detected patterns: {', '.join(pattern_tags) or 'none'}. CMS archetype: {archetype}."
        ),
    )


def render_plan_doc(
    *,
    url: str,
    source: PlanSource,
    model: str | None,
    analysis: SiteAnalysisResult,
    list_selector: str,
    detail_selectors: Mapping[str, str],
    pagination_selector: str | None,
    rate_limit_ms: int,
    reasoning: str,
) -> str:
    """Markdown summary of a synthesized plan."""
    lines = [
        "# Scraping Plan",
        "",
        "## Overview",
        f"- **URL**: {url}",
        f"- **Source**: {source}" + (f" ({model})" if model else ""),
        f"- **Archetype**: {analysis.archetype}",
        f"- **Complexity**: {analysis.signals.complexity}",
        "",
        "## Selectors",
        f"- **List Selector**: {list_selector}",
        f"- **Detail Selectors**: {len(detail_selectors)} fields",
    ]
    lines += [f"  - {name}: {selector}" for name, selector in detail_selectors.items()]
    lines.append(f"- **Pagination**: {pagination_selector or 'Not detected'}")
    lines += [
        "",
        "## Analysis",
        f"- **Detected Patterns**: {', '.join(analysis.signals.pattern_tags) or 'none'}",
        f"- **Estimated Tokens**: {analysis.signals.estimated_tokens}",
        f"- **Rate Limit**: {rate_limit_ms}ms",
        "",
        "## Reasoning",
        reasoning,
    ]
    if source == PlanSource.HEURISTIC:
        lines += ["", "## Notes", "Generated without an LLM. Validate selectors on real content before use."]
    return "\n".join(lines) + "\n"


class SelectorSynthesizer:
    """Turns a site analysis into a ScrapingPlan via the provider fallback chain."""

    def __init__(
        self,
        primary: LLMProvider | None,
        secondary: LLMProvider | None = None,
        *,
        tracker: LLMUsageTracker | None = None,
        scorer: ConfidenceScorer | None = None,
        settings: LLMSettings | None = None,
        registry: LexiconRegistry | None = None,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.tracker = tracker if tracker is not None else LLMUsageTracker()
        self.scorer = scorer or ConfidenceScorer()
        self.settings = settings or LLMSettings()
        self._registry = registry

    @classmethod
    def from_settings(cls, settings: Settings, *, tracker: LLMUsageTracker | None = None) -> SelectorSynthesizer:
        llm = settings.llm
        return cls(
            build_provider(llm.primary_provider, llm),
            build_provider(llm.secondary_provider, llm) if llm.secondary_provider else None,
            tracker=tracker,
            scorer=ConfidenceScorer(settings.scoring),
            settings=llm,
        )

    # -- public ---------------------------------------------------------

    async def synthesize(
        self,
        url: str,
        html: str,
        analysis: SiteAnalysisResult,
        content_pages: Mapping[str, str] | Sequence[ContentExample] | None = None,
        compliance: ComplianceFlags | None = None,
    ) -> SynthesisResult:
        compressed = self._prompt_html(html, self.settings.main_html_budget)
        tags = list(analysis.signals.pattern_tags)
        archetype = str(analysis.archetype)
        complexity = analysis.signals.complexity

        stages: list[FallbackStage[_Draft]] = []
        if (primary := self.primary) is not None:
            prompt = main_page_prompt(url, archetype, tags, complexity, compressed)
            stages.append(
                FallbackStage(str(PlanSource.LLM_PRIMARY), lambda p=prompt: self._primary_stage(url, primary, p))
            )
        if (secondary := self.secondary) is not None:
            prompt = line_format_prompt(url, archetype, tags, complexity, compressed)
            stages.append(
                FallbackStage(
                    str(PlanSource.LLM_SECONDARY), lambda p=prompt: self._secondary_stage(url, secondary, p, analysis)
                )
            )
        stages.append(FallbackStage(str(PlanSource.HEURISTIC), lambda: self._heuristic_stage(analysis)))

        outcome = await run_fallback_chain(stages)
        draft = outcome.value
        parsed = draft.parsed
        warnings: list[str] = [f"{f.stage}: {f.error}" for f in outcome.failures]

        detail_selectors = dict(parsed.detail_selectors) or default_selectors_for(analysis.archetype)
        detail_stage: str | None = None
        detail_response: LLMResponse | None = None
        pages = _as_pages(content_pages)
        if pages and draft.source != PlanSource.HEURISTIC:
            detail = await self._detail_phase(url, pages, analysis)
            detail_stage = detail.source
            detail_response = detail.response
            if detail.parsed.detail_selectors:
                detail_selectors = dict(detail.parsed.detail_selectors)
            if detail.parsed.reconstructed:
                warnings.append(f"detail selectors reconstructed ({detail.source})")

        list_selector = parsed.list_selector.strip() or _HEURISTIC_DEFAULT_LIST
        rate_limit = max(parsed.rate_limit_ms or 0, analysis.rate_limit_ms)

        if draft.source == PlanSource.HEURISTIC:
            breakdown = None
            confidence = HEURISTIC_CONFIDENCE
        else:
            breakdown = self.scorer.score(
                list_selector=list_selector,
                detail_selectors=detail_selectors,
                pagination_selector=parsed.pagination_selector,
                rate_limit_ms=parsed.rate_limit_ms,
                signals=analysis.signals,
                provider_confidence=parsed.confidence,
            )
            confidence = breakdown.final

        model = draft.response.model if draft.response else None
        doc = parsed.human_readable_doc or render_plan_doc(
            url=url,
            source=draft.source,
            model=model,
            analysis=analysis,
            list_selector=list_selector,
            detail_selectors=detail_selectors,
            pagination_selector=parsed.pagination_selector,
            rate_limit_ms=rate_limit,
            reasoning=parsed.reasoning,
        )
        metadata = PlanMetadata(
            domain=urlparse(url).hostname or "",
            site_type=infer_site_type(url),
            language=infer_language_hint(url, self._registry),
            created_by=draft.source,
            archetype=analysis.archetype,
            compliance=compliance or ComplianceFlags(),
            cookie_consent=detect_cookie_consent(html, parsed.cookie_selector),
            reasoning=parsed.reasoning,
            human_readable_doc=doc,
            ai_response=self._ai_response(draft, detail_stage, detail_response, parsed.reconstructed),
        )
        plan = ScrapingPlan(
            plan_id=make_plan_id(url),
            entry_urls=(url,),
            list_selector=list_selector,
            detail_selectors=detail_selectors,
            pagination_selector=parsed.pagination_selector,
            rate_limit_ms=rate_limit,
            retry_policy=RetryPolicy(),
            confidence_score=confidence,
            metadata=metadata,
        )
        logger.info(
            "Plan synthesized: plan_id=%s stage=%s confidence=%.2f list=%r details=%d",
            plan.plan_id,
            draft.source,
            plan.confidence_score,
            plan.list_selector,
            len(plan.detail_selectors),
        )
        return SynthesisResult(
            plan=plan,
            stage=draft.source,
            breakdown=breakdown,
            reasoning=parsed.reasoning,
            human_readable_doc=doc,
            failures=outcome.failures,
            detail_stage=detail_stage,
            warnings=tuple(warnings),
        )

    # -- phase 1 stages -------------------------------------------------

    async def _call(self, provider: LLMProvider, request: LLMRequest) -> Ok[LLMResponse] | Err:
        try:
            return Ok(await tracked_generate(self.tracker, provider, request))
        except ProviderUnavailableError as exc:
            if exc.token_limit:
                logger.warning("Token limit exceeded with %s, falling back: %s", provider.name, exc)
            return Err(str(exc), exc)

    async def _primary_stage(self, url: str, provider: LLMProvider, prompt: str) -> Ok[_Draft] | Err:
        request = LLMRequest(
            prompt=prompt,
            system_message=SYSTEM_MESSAGE,
            format=ResponseFormat.JSON,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            service=_SERVICE,
            method="main-page",
            context={"url": url, "step": "phase-1"},
        )
        result = await self._call(provider, request)
        if isinstance(result, Err):
            return result
        parsed = parse_main_response(result.value.content)
        return Ok(_Draft(parsed, PlanSource.LLM_PRIMARY, result.value))

    async def _secondary_stage(
        self, url: str, provider: LLMProvider, prompt: str, analysis: SiteAnalysisResult
    ) -> Ok[_Draft] | Err:
        request = LLMRequest(
            prompt=prompt,
            system_message=LINE_SYSTEM_MESSAGE,
            format=ResponseFormat.TEXT,
            temperature=self.settings.temperature,
            max_tokens=self.settings.secondary_max_tokens,
            provider_override=provider.name,
            service=_SERVICE,
            method="main-page-lines",
            context={"url": url, "step": "phase-1"},
        )
        result = await self._call(provider, request)
        if isinstance(result, Err):
            return result
        parsed = parse_line_response(result.value.content, default_selectors_for(analysis.archetype))
        return Ok(_Draft(parsed, PlanSource.LLM_SECONDARY, result.value))

    async def _heuristic_stage(self, analysis: SiteAnalysisResult) -> Ok[_Draft]:
        logger.info("Generating fallback plan from pattern tags: %s", ", ".join(analysis.signals.pattern_tags))
        return Ok(_Draft(heuristic_plan(analysis.signals.pattern_tags, str(analysis.archetype)), PlanSource.HEURISTIC))

    # -- phase 2 --------------------------------------------------------

    async def _detail_phase(
        self, url: str, pages: list[tuple[str, str]], analysis: SiteAnalysisResult
    ) -> _DetailDraft:
        parts = [
            f"<!-- Page {i}: {page_url} -->\n{self._prompt_html(page_html, self.settings.detail_html_budget)}"
            for i, (page_url, page_html) in enumerate(pages, 1)
        ]
        prompt = content_page_prompt(pages[0][0], str(analysis.archetype), ["content-page"], "low", "\n\n".join(parts))

        stages: list[FallbackStage[_DetailDraft]] = []
        for name, provider in ((PlanSource.LLM_PRIMARY, self.primary), (PlanSource.LLM_SECONDARY, self.secondary)):
            if provider is not None:
                stages.append(
                    FallbackStage(str(name), lambda p=provider, n=str(name): self._detail_stage(url, p, n, prompt))
                )
        stages.append(FallbackStage("keep-listing-selectors", self._keep_listing_selectors))
        outcome = await run_fallback_chain(stages)
        return outcome.value

    async def _detail_stage(self, url: str, provider: LLMProvider, name: str, prompt: str) -> Ok[_DetailDraft] | Err:
        request = LLMRequest(
            prompt=prompt,
            system_message=SYSTEM_MESSAGE,
            format=ResponseFormat.JSON,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens if provider is self.primary else self.settings.secondary_max_tokens,
            provider_override=provider.name,
            service=_SERVICE,
            method="content-page",
            context={"url": url, "step": "phase-2"},
        )
        result = await self._call(provider, request)
        if isinstance(result, Err):
            return result
        return Ok(_DetailDraft(parse_content_response(result.value.content), name, result.value))

    async def _keep_listing_selectors(self) -> Ok[_DetailDraft]:
        parsed = ParsedDetailResponse(detail_selectors={}, confidence=0.0, reasoning="", reconstructed=True)
        return Ok(_DetailDraft(parsed, "keep-listing-selectors"))

    # -- helpers --------------------------------------------------------

    def _prompt_html(self, html: str, budget: int) -> str:
        compressed = compress_html(html, budget).html
        if self.settings.max_prompt_tokens:
            compressed = truncate_to_token_limit(compressed, self.settings.max_prompt_tokens)
        return compressed

    @staticmethod
    def _ai_response(
        draft: _Draft, detail_stage: str | None, detail_response: LLMResponse | None, reconstructed: bool
    ) -> dict[str, Any]:
        data: dict[str, Any] = {"stage": str(draft.source), "timestamp": datetime.now(UTC).isoformat()}
        if draft.response is not None:
            data.update(
                model=draft.response.model,
                provider=draft.response.provider,
                tokens_used=draft.response.tokens_used or 0,
            )
        if reconstructed:
            data["reconstructed"] = True
        if detail_stage is not None:
            data["detail_stage"] = detail_stage
            if detail_response is not None:
                data["detail_model"] = detail_response.model
                data["detail_tokens_used"] = detail_response.tokens_used or 0
        return data
