# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Multi-factor plan confidence.

Four factors, each in [0, 1]:

  specificity   per-selector structure (class / id / attribute / descendant)
  clarity       page complexity bucket averaged with pattern coverage
  consistency   pattern coverage plus a bonus for key pattern tags
  completeness  which plan fields the provider actually filled in

``final = round((weighted factors + provider confidence) / 2, 2)``.  All
weights come from :class:`~scrapeplan.config.ScoringWeights`; the scorer is a
pure function of its inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .config import ScoringWeights
from .models import HtmlSignals, ScrapingPlan, SiteAnalysisResult, clamp01

KEY_PATTERN_TAGS: tuple[str, ...] = ("list-structure", "pagination", "date-content")


@dataclass(frozen=True, slots=True)
class ConfidenceBreakdown:
    specificity: float
    clarity: float
    consistency: float
    completeness: float
    weighted: float
    provider: float
    final: float

    def to_dict(self) -> dict[str, float]:
        return {
            "selectorSpecificity": self.specificity,
            "structureClarity": self.clarity,
            "patternConsistency": self.consistency,
            "responseCompleteness": self.completeness,
            "weighted": self.weighted,
            "provider": self.provider,
            "final": self.final,
        }


class ConfidenceScorer:
    def __init__(self, weights: ScoringWeights | None = None) -> None:
        self.weights = weights or ScoringWeights()

    # -- factors --------------------------------------------------------

    def selector_specificity(self, selectors: Iterable[str]) -> float:
        w = self.weights
        scores: list[float] = []
        for selector in selectors:
            score = w.selector_base
            if "." in selector:
                score += w.class_bonus
            if "#" in selector:
                score += w.id_bonus
            if "[" in selector:
                score += w.attribute_bonus
            if " " in selector.strip():
                score += w.descendant_bonus
            scores.append(min(score, 1.0))
        return sum(scores) / len(scores) if scores else 0.0

    def structure_clarity(self, complexity: str, pattern_count: int) -> float:
        w = self.weights
        bucket = {"low": w.complexity_low, "medium": w.complexity_medium}.get(complexity, w.complexity_high)
        coverage = min(pattern_count / w.clarity_saturation, 1.0)
        return (bucket + coverage) / 2

    def pattern_consistency(self, pattern_tags: Iterable[str]) -> float:
        w = self.weights
        tags = list(pattern_tags)
        coverage = min(len(tags) / w.pattern_saturation, 1.0)
        key_hits = sum(1 for t in set(tags) if t in KEY_PATTERN_TAGS)
        bonus = key_hits / len(KEY_PATTERN_TAGS) * w.key_pattern_bonus
        return min(coverage + bonus, 1.0)

    def response_completeness(
        self,
        list_selector: str | None,
        detail_selectors: Mapping[str, str] | None,
        pagination_selector: str | None,
        rate_limit_ms: int | None,
    ) -> float:
        w = self.weights
        score = 0.0
        if list_selector and list_selector.strip():
            score += w.required_field
        if detail_selectors:
            score += w.required_field
        if pagination_selector:
            score += w.optional_field
        if rate_limit_ms:
            score += w.optional_field
        return min(score, 1.0)

    # -- blend ----------------------------------------------------------

    def score(
        self,
        *,
        list_selector: str | None,
        detail_selectors: Mapping[str, str] | None,
        pagination_selector: str | None,
        rate_limit_ms: int | None,
        signals: HtmlSignals,
        provider_confidence: float,
    ) -> ConfidenceBreakdown:
        w = self.weights
        detail = dict(detail_selectors or {})
        specificity = self.selector_specificity(detail.values())
        clarity = self.structure_clarity(signals.complexity, len(signals.pattern_tags))
        consistency = self.pattern_consistency(signals.pattern_tags)
        completeness = self.response_completeness(list_selector, detail, pagination_selector, rate_limit_ms)

        weighted = (
            specificity * w.specificity
            + clarity * w.clarity
            + consistency * w.consistency
            + completeness * w.completeness
        )
        provider = clamp01(provider_confidence)
        final = clamp01(round((weighted + provider) / 2, 2))
        return ConfidenceBreakdown(
            specificity=round(specificity, 4),
            clarity=round(clarity, 4),
            consistency=round(consistency, 4),
            completeness=round(completeness, 4),
            weighted=round(weighted, 4),
            provider=provider,
            final=final,
        )

    def score_plan(
        self, plan: ScrapingPlan, analysis: SiteAnalysisResult, provider_confidence: float
    ) -> ConfidenceBreakdown:
        """Convenience wrapper for an assembled plan."""
        return self.score(
            list_selector=plan.list_selector,
            detail_selectors=plan.detail_selectors,
            pagination_selector=plan.pagination_selector,
            rate_limit_ms=plan.rate_limit_ms,
            signals=analysis.signals,
            provider_confidence=provider_confidence,
        )
