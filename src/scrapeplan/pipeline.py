# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end plan generation: analyze -> synthesize -> validate.

Stages run sequentially.  Example detail URLs are optional; when a content
analyzer is configured they feed the structure analysis (list containers),
phase-2 selector synthesis, and sandbox cross-validation.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .content_patterns import ContentPatternAnalyzer, ExampleCheck, check_plan_against_content
from .logging_config import bind_run_context, clear_run_context
from .models import ComplianceFlags, ContentPatternAnalysis, ScrapingPlan, SiteAnalysisResult
from .sandbox import PlanValidator, SandboxResult
from .site_analyzer import SiteStructureAnalyzer
from .synthesizer import SelectorSynthesizer, SynthesisResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PipelineResult:
    plan: ScrapingPlan
    validation: SandboxResult | None
    analysis: SiteAnalysisResult
    synthesis: SynthesisResult
    content: ContentPatternAnalysis | None = None
    content_check: ExampleCheck | None = None


class PlanGenerationPipeline:
    def __init__(
        self,
        analyzer: SiteStructureAnalyzer,
        synthesizer: SelectorSynthesizer,
        validator: PlanValidator | None,
        content_analyzer: ContentPatternAnalyzer | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.synthesizer = synthesizer
        self.validator = validator
        self.content_analyzer = content_analyzer

    async def run(
        self,
        url: str,
        html: str,
        example_urls: Sequence[str] = (),
        compliance: ComplianceFlags | None = None,
    ) -> PipelineResult:
        bind_run_context(url=url)
        try:
            return await self._run(url, html, list(example_urls), compliance)
        finally:
            clear_run_context("url")

    async def _run(
        self,
        url: str,
        html: str,
        example_urls: list[str],
        compliance: ComplianceFlags | None,
    ) -> PipelineResult:
        content: ContentPatternAnalysis | None = None
        if self.content_analyzer is not None and example_urls:
            content = await self.content_analyzer.analyze(example_urls)
            if content.failures:
                logger.warning("%d of %d example pages could not be fetched", len(content.failures), len(example_urls))
            content = dataclasses.replace(
                content, list_containers=tuple(self.content_analyzer.find_list_containers(html, content))
            )

        analysis = self.analyzer.analyze(url, html, content)
        synthesis = await self.synthesizer.synthesize(
            url, html, analysis, content_pages=list(content.examples) if content else None, compliance=compliance
        )
        plan = synthesis.plan

        check = None
        if content is not None:
            check = check_plan_against_content(plan, content)
            for issue in check.issues:
                logger.info("Content pattern check: %s", issue)

        if self.validator is None:
            return PipelineResult(plan, None, analysis, synthesis, content, check)

        exclude = content.exclude_selectors if content else ()
        validation = await self.validator.validate(plan, example_urls, exclude_selectors=exclude)
        plan = plan.bump_version(
            confidence_score=validation.confidence,
            metadata=dataclasses.replace(
                plan.metadata,
                success_rate=1.0 if validation.success else 0.0,
                avg_accuracy=validation.report.extraction_accuracy,
            ),
        )
        logger.info(
            "Plan %s v%d: synthesized by %s, validation %s (confidence=%.2f)",
            plan.plan_id,
            plan.version,
            synthesis.stage,
            "passed" if validation.success else "failed",
            plan.confidence_score,
        )
        return PipelineResult(plan, validation, analysis, synthesis, content, check)
