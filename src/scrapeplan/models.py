# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Core data model: plans, analysis results, validation reports.

Everything here is a frozen dataclass.  A ScrapingPlan belongs to the caller
once returned; the only sanctioned change is ``bump_version()``, which
returns a new plan.  Confidences are clamped to [0, 1] on construction so
no producer can leak an out-of-range score.

The persisted JSON shape uses camelCase keys (``planId``, ``listSelector``,
``retryPolicy.maxAttempts`` ...) for compatibility with downstream runners.
"""

from __future__ import annotations

import dataclasses
import json
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Archetype(StrEnum):
    """Detected CMS family, used to bias default selectors."""

    WORDPRESS = "wordpress"
    TYPO3 = "typo3"
    DRUPAL = "drupal"
    GENERIC = "generic"


class PatternType(StrEnum):
    LIST = "list"
    TABLE = "table"
    CARD = "card"
    ARTICLE = "article"
    PAGINATION = "pagination"
    NAVIGATION = "navigation"


class PaginationType(StrEnum):
    NUMBERED = "numbered"
    NEXT_PREV = "next-prev"
    LOAD_MORE = "load-more"


class BackoffStrategy(StrEnum):
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class RetryableErrorKind(StrEnum):
    """Symbolic error tags, not exception types."""

    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"


class PlanSource(StrEnum):
    """Which fallback stage produced the plan (``metadata.created_by``)."""

    LLM_PRIMARY = "llm-primary"
    LLM_SECONDARY = "llm-secondary"
    HEURISTIC = "heuristic-fallback"


class IssueKind(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Impact(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; NaN becomes 0."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


# ---------------------------------------------------------------------------
# Site analysis
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DetectedPattern:
    type: PatternType
    selector: str
    confidence: float
    examples: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp01(self.confidence))


@dataclass(frozen=True, slots=True)
class ListContainer:
    selector: str
    item_count: int
    confidence: float
    sample_items: tuple[str, ...] = ()
    exclude_selectors: tuple[str, ...] = ()
    source: str = "structural"  # structural | content

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp01(self.confidence))


@dataclass(frozen=True, slots=True)
class PaginationInfo:
    detected: bool
    selector: str | None = None
    type: PaginationType | None = None
    confidence: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp01(self.confidence))


@dataclass(frozen=True, slots=True)
class ContentArea:
    type: str  # main | header | footer | navigation
    selector: str
    confidence: float


@dataclass(frozen=True, slots=True)
class HtmlSignals:
    """Cheap string-level signals used for prompts and scoring."""

    pattern_tags: tuple[str, ...]  # list-structure, table-structure, card-layout, pagination, date-content
    complexity: str  # low | medium | high
    estimated_tokens: int


@dataclass(frozen=True, slots=True)
class SiteAnalysisResult:
    url: str
    archetype: Archetype
    patterns: tuple[DetectedPattern, ...]
    list_containers: tuple[ListContainer, ...]
    pagination: PaginationInfo
    content_areas: tuple[ContentArea, ...]
    confidence: float
    rate_limit_ms: int
    signals: HtmlSignals

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp01(self.confidence))

    @property
    def pattern_types(self) -> list[str]:
        """Distinct pattern types in detection order."""
        seen: dict[str, None] = {}
        for p in self.patterns:
            seen.setdefault(str(p.type), None)
        return list(seen)


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

_ALL_KINDS = tuple(RetryableErrorKind)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    retryable_error_kinds: tuple[RetryableErrorKind, ...] = _ALL_KINDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0 or self.max_delay_ms < self.base_delay_ms:
            raise ValueError("retry delays must satisfy 0 <= base_delay_ms <= max_delay_ms")

    def delay_ms(self, failed_attempts: int) -> int:
        """Delay before the next attempt after *failed_attempts* failures (>= 1)."""
        n = max(1, failed_attempts)
        if self.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay_ms * (2 ** (n - 1))
        elif self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay_ms * n
        else:
            delay = self.base_delay_ms
        return min(delay, self.max_delay_ms)

    def is_retryable(self, kind: str | None) -> bool:
        return kind is not None and kind in {str(k) for k in self.retryable_error_kinds}


@dataclass(frozen=True, slots=True)
class ComplianceFlags:
    """Pass-through flags from the legal-compliance collaborator."""

    robots_allowed: bool | None = None
    terms_reviewed: bool = False
    personal_data: bool = False
    notes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CookieConsentInfo:
    detected: bool = False
    library: str | None = None
    save_button_selector: str | None = None


@dataclass(frozen=True, slots=True)
class PlanMetadata:
    domain: str
    site_type: str
    language: str
    created_by: PlanSource
    archetype: Archetype = Archetype.GENERIC
    success_rate: float | None = None
    avg_accuracy: float | None = None
    compliance: ComplianceFlags = field(default_factory=ComplianceFlags)
    cookie_consent: CookieConsentInfo = field(default_factory=CookieConsentInfo)
    reasoning: str = ""
    human_readable_doc: str = ""
    ai_response: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


def make_plan_id(url: str, now_ms: int | None = None) -> str:
    """``plan-{hostname with dots as dashes}-{epoch ms}``."""
    host = (urlparse(url).hostname or "unknown").replace(".", "-")
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"plan-{host}-{now_ms}"


@dataclass(frozen=True, slots=True)
class ScrapingPlan:
    plan_id: str
    entry_urls: tuple[str, ...]
    list_selector: str
    detail_selectors: dict[str, str]
    metadata: PlanMetadata
    pagination_selector: str | None = None
    rate_limit_ms: int = 1000
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    confidence_score: float = 0.0
    version: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence_score", clamp01(self.confidence_score))
        object.__setattr__(self, "entry_urls", tuple(self.entry_urls))

    @property
    def is_usable(self) -> bool:
        return bool(self.list_selector and self.list_selector.strip())

    def bump_version(self, **changes: Any) -> ScrapingPlan:
        """Return a copy with ``version + 1`` and the given field changes."""
        return dataclasses.replace(self, version=self.version + 1, **changes)

    # -- persisted shape ------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        md = self.metadata
        return {
            "planId": self.plan_id,
            "version": self.version,
            "entryUrls": list(self.entry_urls),
            "listSelector": self.list_selector,
            "detailSelectors": dict(self.detail_selectors),
            "paginationSelector": self.pagination_selector,
            "rateLimitMs": self.rate_limit_ms,
            "retryPolicy": {
                "maxAttempts": self.retry_policy.max_attempts,
                "backoffStrategy": str(self.retry_policy.backoff_strategy),
                "baseDelayMs": self.retry_policy.base_delay_ms,
                "maxDelayMs": self.retry_policy.max_delay_ms,
                "retryableErrorKinds": [str(k) for k in self.retry_policy.retryable_error_kinds],
            },
            "confidenceScore": self.confidence_score,
            "metadata": {
                "domain": md.domain,
                "siteType": md.site_type,
                "language": md.language,
                "createdBy": str(md.created_by),
                "archetype": str(md.archetype),
                "successRate": md.success_rate,
                "avgAccuracy": md.avg_accuracy,
                "compliance": {
                    "robotsAllowed": md.compliance.robots_allowed,
                    "termsReviewed": md.compliance.terms_reviewed,
                    "personalData": md.compliance.personal_data,
                    "notes": list(md.compliance.notes),
                },
                "cookieConsent": {
                    "detected": md.cookie_consent.detected,
                    "library": md.cookie_consent.library,
                    "saveButtonSelector": md.cookie_consent.save_button_selector,
                },
                "reasoning": md.reasoning,
                "humanReadableDoc": md.human_readable_doc,
                "aiResponse": dict(md.ai_response),
                "createdAt": md.created_at,
            },
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapingPlan:
        rp = data.get("retryPolicy") or {}
        md = data.get("metadata") or {}
        comp = md.get("compliance") or {}
        cookie = md.get("cookieConsent") or {}
        metadata = PlanMetadata(
            domain=md.get("domain", ""),
            site_type=md.get("siteType", "municipal"),
            language=md.get("language", "en"),
            created_by=PlanSource(md.get("createdBy", PlanSource.HEURISTIC)),
            archetype=Archetype(md.get("archetype", Archetype.GENERIC)),
            success_rate=md.get("successRate"),
            avg_accuracy=md.get("avgAccuracy"),
            compliance=ComplianceFlags(
                robots_allowed=comp.get("robotsAllowed"),
                terms_reviewed=bool(comp.get("termsReviewed", False)),
                personal_data=bool(comp.get("personalData", False)),
                notes=tuple(comp.get("notes") or ()),
            ),
            cookie_consent=CookieConsentInfo(
                detected=bool(cookie.get("detected", False)),
                library=cookie.get("library"),
                save_button_selector=cookie.get("saveButtonSelector"),
            ),
            reasoning=md.get("reasoning", ""),
            human_readable_doc=md.get("humanReadableDoc", ""),
            ai_response=dict(md.get("aiResponse") or {}),
            created_at=md.get("createdAt") or datetime.now(UTC).isoformat(),
        )
        policy = RetryPolicy(
            max_attempts=int(rp.get("maxAttempts", 3)),
            backoff_strategy=BackoffStrategy(rp.get("backoffStrategy", BackoffStrategy.EXPONENTIAL)),
            base_delay_ms=int(rp.get("baseDelayMs", 1000)),
            max_delay_ms=int(rp.get("maxDelayMs", 30000)),
            retryable_error_kinds=tuple(RetryableErrorKind(k) for k in rp.get("retryableErrorKinds", _ALL_KINDS)),
        )
        return cls(
            plan_id=data["planId"],
            version=int(data.get("version", 1)),
            entry_urls=tuple(data.get("entryUrls") or ()),
            list_selector=data.get("listSelector", ""),
            detail_selectors=dict(data.get("detailSelectors") or {}),
            pagination_selector=data.get("paginationSelector"),
            rate_limit_ms=int(data.get("rateLimitMs", 1000)),
            retry_policy=policy,
            confidence_score=float(data.get("confidenceScore", 0.0)),
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# Validation report
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    kind: IssueKind
    message: str
    field: str | None = None
    selector: str | None = None
    impact: Impact = Impact.MEDIUM
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"kind": str(self.kind), "message": self.message, "impact": str(self.impact)}
        if self.field is not None:
            d["field"] = self.field
        if self.selector is not None:
            d["selector"] = self.selector
        if self.suggestion is not None:
            d["suggestion"] = self.suggestion
        return d


@dataclass(frozen=True, slots=True)
class ValidationReport:
    schema_compliance: float
    data_quality: float
    extraction_accuracy: float
    issues: tuple[ValidationIssue, ...] = ()
    recommendations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for name in ("schema_compliance", "data_quality", "extraction_accuracy"):
            object.__setattr__(self, name, clamp01(getattr(self, name)))

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.kind == IssueKind.ERROR]

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaCompliance": self.schema_compliance,
            "dataQuality": self.data_quality,
            "extractionAccuracy": self.extraction_accuracy,
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": list(self.recommendations),
        }


# ---------------------------------------------------------------------------
# Content-pattern collaborator output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ContentExample:
    """One fetched example detail page, trimmed to its main content."""

    url: str
    html: str
    title: str = ""
    description: str = ""


@dataclass(frozen=True, slots=True)
class ContentPatternAnalysis:
    confidence: float
    list_containers: tuple[ListContainer, ...] = ()
    content_selectors: dict[str, str] = field(default_factory=dict)
    exclude_selectors: tuple[str, ...] = ()
    examples: tuple[ContentExample, ...] = ()
    failures: dict[str, str] = field(default_factory=dict)  # url -> error message

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp01(self.confidence))
