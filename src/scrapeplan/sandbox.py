# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Sandboxed plan validation.

One :meth:`PlanValidator.validate` call is one run through

    created -> preconditions-checked -> context-acquired -> executing
            -> success | failed -> cleaned-up

with its own browser session.  Extraction, diagnostics and cross-validation
race a wall-clock timer (``SandboxConfig.timeout_ms``); whatever happens,
the session is released and the run ends in ``cleaned-up``.  Diagnostics
(highlights, screenshots) are observational only and never change the plan.

The result always carries a ValidationReport; nothing escapes ``validate``
except cancellation.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

from .browser import BrowserDriver, ElementBox, ExtractionRequest, SandboxSession, preview
from .config import SandboxConfig
from .errors import (
    DomainNotAllowedError,
    NavigationError,
    PlanPreconditionError,
    SandboxTimeoutError,
    ScrapePlanError,
    SelectorMissError,
    error_kind_for,
)
from .fields import LIST_FIELDS, FieldKind, UrlValue, field_kind_for, tag_item, untag_item
from .logging_config import bind_run_context, clear_run_context
from .models import Impact, IssueKind, ScrapingPlan, ValidationIssue, ValidationReport, clamp01
from .normalizer import DataNormalizer
from .pipeline_timer import PipelineTimer
from .retry import retry_async

logger = logging.getLogger(__name__)

# -- extraction scoring
LIST_MISS_CONFIDENCE = 0.1
LIST_HIT_CONFIDENCE = 0.5
SAMPLE_BONUS = 0.2
PAGINATION_BONUS = 0.1
FIELD_BONUS = 0.1
SUCCESS_THRESHOLD = 0.6
EXECUTION_WEIGHT = 0.6
ACCURACY_WEIGHT = 0.4

# -- report
REQUIRED_QUALITY_FIELDS = ("title", "description")
OPTIONAL_QUALITY_FIELDS = ("place", "address", "email", "phone", "website", "startDate")
SCHEMA_COMPLIANCE_TARGET = 0.8
DATA_QUALITY_TARGET = 0.7
CROSS_VALIDATION_TARGET = 0.7

# -- cross-validation
CROSS_LIST_CREDIT = 0.3
CROSS_FIELD_CREDIT = 0.1
CROSS_PAGINATION_CREDIT = 0.1
CROSS_MIN_MATCH_RATIO = 0.5
CROSS_NAVIGATION_TIMEOUT_MS = 15000

FAILURE_MESSAGE = "Sandbox execution failed"
FAILURE_RECOMMENDATION = "Review plan configuration and selectors"

_SEMANTIC_TAGS = frozenset({"article", "section", "main", "header"})


class SandboxState(StrEnum):
    CREATED = "created"
    PRECONDITIONS_CHECKED = "preconditions-checked"
    CONTEXT_ACQUIRED = "context-acquired"
    EXECUTING = "executing"
    SUCCESS = "success"
    FAILED = "failed"
    CLEANED_UP = "cleaned-up"


class HighlightKind(StrEnum):
    LIST_CONTAINER = "list_container"
    LIST_ITEM = "list_item"
    DETAIL_FIELD = "detail_field"
    PAGINATION = "pagination"
    EXCLUDED = "excluded"


# (limit, annotation color) per highlight kind
_HIGHLIGHT_LIMITS = {
    HighlightKind.LIST_CONTAINER: 3,
    HighlightKind.LIST_ITEM: 5,
    HighlightKind.DETAIL_FIELD: 3,
    HighlightKind.PAGINATION: 3,
    HighlightKind.EXCLUDED: 3,
}
ANNOTATION_COLORS = {
    HighlightKind.LIST_CONTAINER: "#00ff00",
    HighlightKind.DETAIL_FIELD: "#0066ff",
    HighlightKind.PAGINATION: "#ff6600",
    HighlightKind.EXCLUDED: "#ff0000",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DomHighlight:
    selector: str
    element_type: HighlightKind
    box: tuple[int, int, int, int]  # x, y, width, height
    confidence: float
    value_preview: str | None = None
    field: str | None = None


@dataclass(frozen=True, slots=True)
class ScreenshotAnnotation:
    type: str
    box: tuple[int, int, int, int]
    label: str
    color: str


@dataclass(frozen=True, slots=True)
class PageScreenshot:
    url: str
    timestamp: str
    image_base64: str
    annotations: tuple[ScreenshotAnnotation, ...] = ()


@dataclass(frozen=True, slots=True)
class PerformanceMetrics:
    total_ms: float = 0.0
    stage_ms: dict[str, float] = field(default_factory=dict)
    network_requests: int = 0
    failed_requests: int = 0


@dataclass(frozen=True, slots=True)
class ExecutionOutcome:
    success: bool
    samples: list[dict[str, Any]]
    errors: list[str]
    confidence: float
    list_count: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class UrlProbe:
    url: str
    success: bool
    confidence: float
    matched: int = 0
    probed: int = 0


@dataclass(frozen=True, slots=True)
class CrossValidation:
    average_confidence: float
    probes: tuple[UrlProbe, ...] = ()
    issues: tuple[ValidationIssue, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SandboxResult:
    plan_id: str
    success: bool
    confidence: float
    execution_confidence: float
    extracted_samples: list[dict[str, Any]]
    errors: list[str]
    report: ValidationReport
    state_history: tuple[SandboxState, ...]
    highlights: tuple[DomHighlight, ...] = ()
    screenshots: tuple[PageScreenshot, ...] = ()
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    cross_validation: CrossValidation | None = None
    timeout_report: dict | None = None
    error_kind: str | None = None

    @property
    def final_state(self) -> SandboxState:
        return self.state_history[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "planId": self.plan_id,
            "success": self.success,
            "confidence": self.confidence,
            "executionConfidence": self.execution_confidence,
            "extractedSamples": [untag_item(s) for s in self.extracted_samples],
            "errors": list(self.errors),
            "validationReport": self.report.to_dict(),
            "stateHistory": [str(s) for s in self.state_history],
            "domHighlights": [
                {
                    "selector": h.selector,
                    "elementType": str(h.element_type),
                    "coordinates": dict(zip(("x", "y", "width", "height"), h.box, strict=True)),
                    "confidence": h.confidence,
                    "extractedValue": h.value_preview,
                }
                for h in self.highlights
            ],
            "performanceMetrics": {
                "totalDuration": self.metrics.total_ms,
                "stages": dict(self.metrics.stage_ms),
                "networkRequests": self.metrics.network_requests,
                "failedRequests": self.metrics.failed_requests,
            },
            "timeoutReport": self.timeout_report,
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def highlight_confidence(box: ElementBox, has_value: bool) -> float:
    confidence = 0.7
    if has_value:
        confidence += 0.2
    if box.tag in _SEMANTIC_TAGS:
        confidence += 0.1
    if box.width < 50 or box.height < 20:
        confidence -= 0.2
    return round(max(0.1, min(1.0, confidence)), 2)


def data_quality(samples: Sequence[Mapping[str, Any]]) -> float:
    """Weighted field presence: title/description weight 1, optional fields 0.5."""
    if not samples:
        return 0.0
    score = total = 0.0
    for sample in samples:
        plain = untag_item(sample)
        for name in REQUIRED_QUALITY_FIELDS:
            total += 1
            value = plain.get(name)
            if isinstance(value, str) and value.strip():
                score += 1
        for name in OPTIONAL_QUALITY_FIELDS:
            total += 0.5
            if plain.get(name):
                score += 0.5
    return score / total


def failure_report(message: str = FAILURE_MESSAGE) -> ValidationReport:
    return ValidationReport(
        schema_compliance=0.0,
        data_quality=0.0,
        extraction_accuracy=0.0,
        issues=(ValidationIssue(IssueKind.ERROR, message, impact=Impact.HIGH),),
        recommendations=(FAILURE_RECOMMENDATION,),
    )


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _Run:
    plan_id: str
    history: list[SandboxState] = field(default_factory=lambda: [SandboxState.CREATED])

    def transition(self, state: SandboxState) -> None:
        logger.info("Sandbox %s: %s -> %s", self.plan_id, self.history[-1], state)
        self.history.append(state)


class PlanValidator:
    """Runs a plan against its entry page in an isolated browser session."""

    def __init__(
        self,
        driver: BrowserDriver,
        config: SandboxConfig | None = None,
        normalizer: DataNormalizer | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.driver = driver
        self.config = config or SandboxConfig()
        self.normalizer = normalizer or DataNormalizer()
        self._sleep = sleep

    def check_preconditions(self, plan: ScrapingPlan) -> None:
        if not plan.entry_urls:
            raise PlanPreconditionError("Plan must have at least one entry URL")
        for url in plan.entry_urls:
            host = urlparse(url).hostname or ""
            if not self.config.host_allowed(host):
                raise DomainNotAllowedError(f"Domain {host} is not allowed in sandbox", host=host)
        if not plan.is_usable:
            raise PlanPreconditionError("Plan must have a list selector")

    async def validate(
        self,
        plan: ScrapingPlan,
        example_urls: Sequence[str] = (),
        *,
        exclude_selectors: Sequence[str] = (),
    ) -> SandboxResult:
        run = _Run(plan.plan_id)
        timer = PipelineTimer()
        session: SandboxSession | None = None
        bind_run_context(plan_id=plan.plan_id)
        logger.info("Starting sandbox test for plan %s", plan.plan_id)

        execution: ExecutionOutcome | None = None
        highlights: list[DomHighlight] = []
        screenshots: list[PageScreenshot] = []
        cross: CrossValidation | None = None
        failure: ScrapePlanError | None = None
        timeout_report: dict | None = None
        try:
            self.check_preconditions(plan)
            run.transition(SandboxState.PRECONDITIONS_CHECKED)

            async with asyncio.timeout(self.config.timeout_ms / 1000):
                timer.stage("session")
                session = await self.driver.open_session(self.config)
                run.transition(SandboxState.CONTEXT_ACQUIRED)

                run.transition(SandboxState.EXECUTING)
                execution = await self._execute(plan, session, timer)
                if execution.list_count > 0:
                    if self.config.enable_highlighting:
                        timer.stage("diagnostics")
                        highlights = await self.collect_highlights(plan, session, exclude_selectors)
                    if self.config.enable_screenshots:
                        timer.stage("screenshot")
                        shot = await self.capture_screenshot(plan, session, exclude_selectors)
                        screenshots = [shot] if shot else []
                if example_urls:
                    timer.stage("cross_validation")
                    cross = await self.cross_validate(plan, example_urls, session)
        except TimeoutError:
            failure = SandboxTimeoutError(
                f"Sandbox execution timeout after {self.config.timeout_ms}ms", timeout_ms=self.config.timeout_ms
            )
            timeout_report = timer.timeout_report()
            logger.warning("Sandbox timed out for plan %s at stage %s", plan.plan_id, timeout_report["timed_out_at"])
        except asyncio.CancelledError:
            raise
        except ScrapePlanError as exc:
            failure = exc
            logger.error("Sandbox test failed for plan %s: %s", plan.plan_id, exc)
        except Exception as exc:  # noqa: BLE001
            failure = ScrapePlanError(f"{type(exc).__name__}: {exc}")
            logger.error("Sandbox test failed for plan %s", plan.plan_id, exc_info=True)
        finally:
            timer.stage("cleanup")
            metrics = self._metrics(session, timer)
            if session is not None:
                await self._cleanup(session)

        try:
            result: SandboxResult | None = None
            if failure is None and execution is not None:
                try:
                    result = self._assemble(plan, execution, highlights, screenshots, cross, metrics)
                except Exception as exc:  # noqa: BLE001
                    failure = ScrapePlanError(f"{type(exc).__name__}: {exc}")
                    logger.error("Report assembly failed for plan %s", plan.plan_id, exc_info=True)
            if result is None:
                result = self._failure_result(plan, failure, metrics, timeout_report)
            run.transition(SandboxState.SUCCESS if result.success else SandboxState.FAILED)
            run.transition(SandboxState.CLEANED_UP)
        finally:
            clear_run_context("plan_id")

        result = replace(result, state_history=tuple(run.history))
        logger.info(
            "Sandbox test completed for plan %s: %s (confidence=%.2f)",
            plan.plan_id,
            "PASSED" if result.success else "FAILED",
            result.confidence,
        )
        return result

    # -- execution ------------------------------------------------------

    async def _execute(self, plan: ScrapingPlan, session: SandboxSession, timer: PipelineTimer) -> ExecutionOutcome:
        url = plan.entry_urls[0]
        timer.stage("navigation")
        try:
            await retry_async(
                lambda: session.navigate(url, timeout_ms=self.config.navigation_timeout_ms),
                plan.retry_policy,
                label=f"Navigation to {url}",
                sleep=self._sleep,
            )
        except NavigationError as exc:
            logger.warning("Navigation failed after %d attempt(s): %s", exc.attempts, exc)
            return ExecutionOutcome(False, [], [str(exc)], 0.0)

        timer.stage("extraction")
        errors: list[str] = []
        try:
            list_count = await session.count(plan.list_selector)
        except SelectorMissError as exc:
            logger.warning("List selector unusable: %s", exc)
            list_count = 0
        if list_count == 0:
            errors.append(f'List selector "{plan.list_selector}" found no elements')
            return ExecutionOutcome(False, [], errors, LIST_MISS_CONFIDENCE)

        logger.debug("List selector found %d elements", list_count)
        confidence = LIST_HIT_CONFIDENCE
        request = ExtractionRequest(
            scope=plan.list_selector,
            selectors={name: (sel, field_kind_for(name)) for name, sel in plan.detail_selectors.items() if sel},
            base_url=url,
            limit=self.config.max_samples,
        )
        response = await session.extract(request)
        samples: list[dict[str, Any]] = []
        for i, raw in enumerate(response.items):
            sample = self._to_sample(raw, url)
            if sample.get("title") or sample.get("description"):
                samples.append(sample)
                confidence = min(confidence + SAMPLE_BONUS, 1.0)
            else:
                logger.debug("Item %d has neither title nor description, skipped", i)

        if plan.pagination_selector:
            try:
                pages = await session.count(plan.pagination_selector)
            except SelectorMissError:
                pages = 0
            if pages == 0:
                errors.append(f'Pagination selector "{plan.pagination_selector}" found no elements')
            else:
                confidence = min(confidence + PAGINATION_BONUS, 1.0)

        if samples:
            avg_fields = sum(sum(1 for k, v in s.items() if k != "url" and v) for s in samples) / len(samples)
            confidence = min(confidence + avg_fields * FIELD_BONUS, 1.0)

        success = bool(samples) and not errors and confidence > SUCCESS_THRESHOLD
        return ExecutionOutcome(
            success, samples, errors, round(confidence, 4), list_count, warnings=list(response.field_errors)
        )

    @staticmethod
    def _to_sample(raw: Mapping[str, str], url: str) -> dict[str, Any]:
        sample = tag_item(raw)
        for name in LIST_FIELDS:
            if name in sample and not isinstance(sample[name], list):
                sample[name] = [sample[name]]
        sample["url"] = UrlValue(url)
        return sample

    # -- diagnostics ----------------------------------------------------

    async def _boxes(
        self,
        session: SandboxSession,
        selector: str,
        kind: HighlightKind,
        value_kind: FieldKind | None = None,
        name: str | None = None,
    ) -> list[DomHighlight]:
        try:
            boxes = await session.element_boxes(selector, limit=_HIGHLIGHT_LIMITS[kind], kind=value_kind)
        except SelectorMissError as exc:
            logger.debug("No highlights for %s: %s", selector, exc)
            return []
        out = []
        for box in boxes:
            if not box.visible or box.width <= 0:
                continue
            out.append(
                DomHighlight(
                    selector=selector,
                    element_type=kind,
                    box=(box.x, box.y, box.width, box.height),
                    confidence=highlight_confidence(box, bool(box.value)),
                    value_preview=preview(box.value) if box.value else None,
                    field=name,
                )
            )
        return out

    async def collect_highlights(
        self, plan: ScrapingPlan, session: SandboxSession, exclude_selectors: Sequence[str] = ()
    ) -> list[DomHighlight]:
        highlights = await self._boxes(session, plan.list_selector, HighlightKind.LIST_CONTAINER)
        highlights += await self._boxes(session, plan.list_selector, HighlightKind.LIST_ITEM, FieldKind.TEXT)
        for name, selector in plan.detail_selectors.items():
            if selector:
                highlights += await self._boxes(
                    session, selector, HighlightKind.DETAIL_FIELD, field_kind_for(name), name
                )
        if plan.pagination_selector:
            highlights += await self._boxes(session, plan.pagination_selector, HighlightKind.PAGINATION)
        for selector in exclude_selectors:
            highlights += await self._boxes(session, selector, HighlightKind.EXCLUDED)
        logger.debug("Generated %d DOM highlights", len(highlights))
        return highlights

    async def capture_screenshot(
        self, plan: ScrapingPlan, session: SandboxSession, exclude_selectors: Sequence[str] = ()
    ) -> PageScreenshot | None:
        try:
            image = await session.screenshot()
        except ScrapePlanError as exc:
            logger.warning("Screenshot unavailable: %s", exc)
            return None
        targets: list[tuple[str, HighlightKind, str]] = [
            (plan.list_selector, HighlightKind.LIST_CONTAINER, "List Container")
        ]
        targets += [(sel, HighlightKind.DETAIL_FIELD, name) for name, sel in plan.detail_selectors.items() if sel]
        if plan.pagination_selector:
            targets.append((plan.pagination_selector, HighlightKind.PAGINATION, "Pagination"))
        targets += [(sel, HighlightKind.EXCLUDED, f"Excluded ({sel})") for sel in exclude_selectors]

        annotations = []
        for selector, kind, label in targets:
            try:
                boxes = await session.element_boxes(selector, limit=1)
            except SelectorMissError:
                continue
            if boxes:
                b = boxes[0]
                annotations.append(
                    ScreenshotAnnotation("selector", (b.x, b.y, b.width, b.height), label, ANNOTATION_COLORS[kind])
                )
        return PageScreenshot(
            url=plan.entry_urls[0],
            timestamp=datetime.now(UTC).isoformat(),
            image_base64="data:image/png;base64," + base64.b64encode(image).decode("ascii"),
            annotations=tuple(annotations),
        )

    # -- cross-validation -----------------------------------------------

    async def _probe(self, session: SandboxSession, selector: str) -> bool:
        try:
            return await session.count(selector) > 0
        except SelectorMissError:
            return False

    async def probe_url(self, plan: ScrapingPlan, url: str, session: SandboxSession) -> UrlProbe:
        await session.navigate(url, timeout_ms=min(CROSS_NAVIGATION_TIMEOUT_MS, self.config.navigation_timeout_ms))
        confidence = 0.0
        matched = probed = 0
        checks = [(plan.list_selector, CROSS_LIST_CREDIT)]
        checks += [(sel, CROSS_FIELD_CREDIT) for sel in plan.detail_selectors.values() if sel]
        if plan.pagination_selector:
            checks.append((plan.pagination_selector, CROSS_PAGINATION_CREDIT))
        for selector, credit in checks:
            probed += 1
            if await self._probe(session, selector):
                matched += 1
                confidence += credit
        success = probed > 0 and matched / probed >= CROSS_MIN_MATCH_RATIO
        logger.debug("Selector probe on %s: %d/%d matched", url, matched, probed)
        return UrlProbe(url, success, round(min(confidence, 1.0), 4), matched, probed)

    async def cross_validate(
        self, plan: ScrapingPlan, example_urls: Sequence[str], session: SandboxSession
    ) -> CrossValidation:
        probes: list[UrlProbe] = []
        issues: list[ValidationIssue] = []
        for url in list(example_urls)[: self.config.max_example_urls]:
            try:
                probe = await self.probe_url(plan, url, session)
            except ScrapePlanError as exc:
                logger.debug("Probe of %s failed: %s", url, exc)
                probes.append(UrlProbe(url, False, 0.0))
                issues.append(
                    ValidationIssue(IssueKind.ERROR, f"Failed to test content URL: {url}", impact=Impact.LOW)
                )
                continue
            probes.append(probe)
            if not probe.success:
                issues.append(
                    ValidationIssue(
                        IssueKind.WARNING,
                        f"Selectors may not work on content page: {url}",
                        impact=Impact.MEDIUM,
                        suggestion="Review selectors to ensure they work across different content pages",
                    )
                )
        average = sum(p.confidence for p in probes) / len(probes) if probes else 0.0
        recommendations = []
        if average < CROSS_VALIDATION_TARGET:
            recommendations.append("Consider updating selectors to work better with content page variations")
        logger.info("Content URL validation completed with confidence: %.2f", average)
        return CrossValidation(round(average, 4), tuple(probes), tuple(issues), tuple(recommendations))

    # -- report ---------------------------------------------------------

    def build_report(self, samples: Sequence[Mapping[str, Any]], base_url: str | None = None) -> ValidationReport:
        issues: list[ValidationIssue] = []
        recommendations: list[str] = []
        schema_compliance = quality = 0.0
        if not samples:
            issues.append(
                ValidationIssue(
                    IssueKind.ERROR,
                    "No data was extracted",
                    impact=Impact.HIGH,
                    suggestion="Check list selector and ensure it matches elements on the page",
                )
            )
        else:
            results = self.normalizer.normalize_batch(samples, base_url)
            for result in results:
                if not result.is_valid:
                    issues += [
                        ValidationIssue(IssueKind.ERROR, e.message, field=e.field, impact=Impact.MEDIUM)
                        for e in result.errors
                    ]
                issues += [
                    ValidationIssue(
                        IssueKind.WARNING, w.message, field=w.field, impact=Impact.LOW, suggestion=w.suggestion
                    )
                    for w in result.warnings
                ]
            schema_compliance = sum(1 for r in results if r.is_valid) / len(results)
            quality = data_quality(samples)

        if schema_compliance < SCHEMA_COMPLIANCE_TARGET:
            recommendations.append("Improve selector accuracy to increase schema compliance")
        if quality < DATA_QUALITY_TARGET:
            recommendations.append("Review data extraction patterns to improve quality")
        return ValidationReport(
            schema_compliance=schema_compliance,
            data_quality=quality,
            extraction_accuracy=(schema_compliance + quality) / 2,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        )

    @staticmethod
    def _failure_result(
        plan: ScrapingPlan,
        failure: ScrapePlanError | None,
        metrics: PerformanceMetrics,
        timeout_report: dict | None,
    ) -> SandboxResult:
        return SandboxResult(
            plan_id=plan.plan_id,
            success=False,
            confidence=0.0,
            execution_confidence=0.0,
            extracted_samples=[],
            errors=[str(failure) if failure else FAILURE_MESSAGE],
            report=failure_report(),
            state_history=(),
            metrics=metrics,
            timeout_report=timeout_report,
            error_kind=error_kind_for(failure) if failure else None,
        )

    def _assemble(
        self,
        plan: ScrapingPlan,
        execution: ExecutionOutcome,
        highlights: list[DomHighlight],
        screenshots: list[PageScreenshot],
        cross: CrossValidation | None,
        metrics: PerformanceMetrics,
    ) -> SandboxResult:
        report = self.build_report(execution.samples, plan.entry_urls[0])
        issues = list(report.issues)
        issues += [
            ValidationIssue(IssueKind.ERROR, e, impact=Impact.HIGH if execution.list_count == 0 else Impact.MEDIUM)
            for e in execution.errors
        ]
        issues += [ValidationIssue(IssueKind.WARNING, w, impact=Impact.LOW) for w in execution.warnings]
        recommendations = list(report.recommendations)

        execution_confidence = execution.confidence
        if cross is not None:
            execution_confidence = min(execution_confidence, cross.average_confidence)
            issues += cross.issues
            recommendations += cross.recommendations

        report = ValidationReport(
            schema_compliance=report.schema_compliance,
            data_quality=report.data_quality,
            extraction_accuracy=report.extraction_accuracy,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
        )
        overall = clamp01(EXECUTION_WEIGHT * execution_confidence + ACCURACY_WEIGHT * report.extraction_accuracy)
        return SandboxResult(
            plan_id=plan.plan_id,
            success=execution.success,
            confidence=round(overall, 4),
            execution_confidence=execution_confidence,
            extracted_samples=execution.samples,
            errors=list(execution.errors),
            report=report,
            state_history=(),
            highlights=tuple(highlights),
            screenshots=tuple(screenshots),
            metrics=metrics,
            cross_validation=cross,
        )

    # -- resources ------------------------------------------------------

    @staticmethod
    def _metrics(session: SandboxSession | None, timer: PipelineTimer) -> PerformanceMetrics:
        return PerformanceMetrics(
            total_ms=timer.total_ms,
            stage_ms=timer.elapsed_per_stage(),
            network_requests=getattr(session, "network_requests", 0) if session else 0,
            failed_requests=getattr(session, "failed_requests", 0) if session else 0,
        )

    @staticmethod
    async def _cleanup(session: SandboxSession) -> None:
        try:
            await session.close()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.warning("Sandbox cleanup failed", exc_info=True)

