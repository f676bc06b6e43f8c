# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Scrape Plan: LLM-assisted scraping-plan synthesis and sandboxed validation.

Given a listing page, produces a declarative ScrapingPlan:
- list_selector: the repeated item on the listing page
- detail_selectors: field -> CSS selector (title, description, dates, ...)
- pagination, rate limit, retry policy and a confidence score

Plans are validated in an isolated browser session and extracted items are
normalized into a canonical record with quality metrics.
"""

from __future__ import annotations

from .config import LLMSettings, SandboxConfig, Settings, load_settings
from .errors import ScrapePlanError
from .models import (
    Archetype,
    PlanSource,
    RetryPolicy,
    ScrapingPlan,
    SiteAnalysisResult,
    ValidationIssue,
    ValidationReport,
)
from .normalizer import DataNormalizer, NormalizationResult
from .pipeline import PipelineResult, PlanGenerationPipeline
from .sandbox import PlanValidator, SandboxResult
from .scoring import ConfidenceScorer
from .site_analyzer import SiteStructureAnalyzer
from .synthesizer import SelectorSynthesizer, SynthesisResult

__version__ = "0.4.0"

__all__ = [
    "Archetype",
    "ConfidenceScorer",
    "DataNormalizer",
    "LLMSettings",
    "NormalizationResult",
    "PipelineResult",
    "PlanGenerationPipeline",
    "PlanSource",
    "PlanValidator",
    "RetryPolicy",
    "SandboxConfig",
    "SandboxResult",
    "ScrapePlanError",
    "ScrapingPlan",
    "Settings",
    "SelectorSynthesizer",
    "SiteAnalysisResult",
    "SiteStructureAnalyzer",
    "SynthesisResult",
    "ValidationIssue",
    "ValidationReport",
    "load_settings",
]
