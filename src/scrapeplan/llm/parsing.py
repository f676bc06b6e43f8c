# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tolerant parsing of LLM plan responses.

JSON responses may arrive wrapped in code fences or prose; the first
well-formed object is extracted and validated through Pydantic models whose
fields are all optional.  When required fields are missing, a best-effort
response is rebuilt from whatever is present plus fixed generic defaults.
None of the ``parse_*`` functions raise: malformed output degrades to a
lower-confidence result flagged ``reconstructed=True``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedResponseError
from ..models import clamp01
from .prompts import LINE_LABELS

logger = logging.getLogger(__name__)

DEFAULT_LIST_SELECTOR = "article, .item, .entry, .content"
LINE_DEFAULT_LIST_SELECTOR = "article, .item, .entry"
LINE_DEFAULT_CONFIDENCE = 0.6
LINE_DEFAULT_RATE_LIMIT_MS = 2000
RECONSTRUCTED_CONFIDENCE = 0.5
UNPARSEABLE_DETAIL_CONFIDENCE = 0.3

DEFAULT_DETAIL_SELECTORS: dict[str, str] = {
    "title": "h1, h2, h3, .title",
    "description": "p, .description, .content",
    "website": "a[href]",
    "dates": ".date, time, [datetime]",
}

DEFAULT_CONTENT_SELECTORS: dict[str, str] = {
    "title": "h1, h2, h3, .title",
    "description": "p, .description, .content",
    "dates": ".date, time, [datetime]",
    "address": '.address, [class*="address"]',
    "phone": '.phone, [class*="phone"]',
    "email": '.email, [class*="email"]',
    "website": "a[href]",
    "images": "img[src]",
}

_EMPTY_MARKERS = frozenset({"", "none", "n/a", "null", "-"})
_FENCE_RES = (
    re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE),
    re.compile(r"```\s*([\s\S]*?)\s*```"),
)
_RAW_PREVIEW = 200

# LINE label -> detail field
_LINE_DETAIL_FIELDS: dict[str, str] = {
    "TITLE_SELECTOR": "title",
    "DESCRIPTION_SELECTOR": "description",
    "DATE_SELECTOR": "dates",
    "IMAGE_SELECTOR": "images",
}
_LINE_RE = re.compile(r"^[\s\-*#>]*\**\s*([A-Z_]+)\s*\**\s*:\s*\**\s*(.*?)\s*$")


def is_empty_value(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().strip("`").lower() in _EMPTY_MARKERS)


def _clean_selector(value: Any) -> str | None:
    if isinstance(value, list | tuple):
        value = ", ".join(str(v) for v in value if not is_empty_value(v))
    if is_empty_value(value):
        return None
    return str(value).strip().strip("`").strip()


def _lenient_float(value: Any) -> float | None:
    try:
        return clamp01(float(value))
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Pydantic response models
# ---------------------------------------------------------------------------


class _Lenient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _clean_selector_map(value: Any) -> dict[str, str] | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        return None
    cleaned = {str(k): s for k, v in value.items() if (s := _clean_selector(v))}
    return cleaned


class PlanSection(_Lenient):
    list_selector: str | None = Field(None, alias="listSelector", description="Selector for repeated list items")
    pagination_selector: str | None = Field(None, alias="paginationSelector", description="Next-page control")
    rate_limit_ms: int | None = Field(None, alias="rateLimitMs", description="Delay between requests (ms)")
    detail_selectors: dict[str, str] | None = Field(None, alias="detailSelectors", description="field -> selector")

    @field_validator("list_selector", "pagination_selector", mode="before")
    @classmethod
    def _selector(cls, v: Any) -> str | None:
        return _clean_selector(v)

    @field_validator("rate_limit_ms", mode="before")
    @classmethod
    def _rate(cls, v: Any) -> int | None:
        if isinstance(v, str):
            v = re.sub(r"[^\d.]", "", v)
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return None

    @field_validator("detail_selectors", mode="before")
    @classmethod
    def _details(cls, v: Any) -> dict[str, str] | None:
        return _clean_selector_map(v)


class CookieSection(_Lenient):
    save_button_selector: str | None = Field(None, alias="saveButtonSelector", description="Consent accept button")

    @field_validator("save_button_selector", mode="before")
    @classmethod
    def _selector(cls, v: Any) -> str | None:
        return _clean_selector(v)


class MainPageResponse(_Lenient):
    plan: PlanSection | None = Field(None, description="List and pagination selectors")
    cookie_consent: CookieSection | None = Field(None, alias="cookieConsent")
    confidence: float | None = Field(None, description="Provider self-reported confidence 0-1")
    reasoning: str | None = Field(None, description="Why these selectors were chosen")
    human_readable_doc: str | None = Field(None, alias="humanReadableDoc")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float | None:
        return _lenient_float(v)


class ContentPageResponse(_Lenient):
    detail_selectors: dict[str, str] | None = Field(None, alias="detailSelectors")
    confidence: float | None = Field(None, description="Provider self-reported confidence 0-1")
    reasoning: str | None = None
    human_readable_doc: str | None = Field(None, alias="humanReadableDoc")

    @field_validator("detail_selectors", mode="before")
    @classmethod
    def _details(cls, v: Any) -> dict[str, str] | None:
        return _clean_selector_map(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> float | None:
        return _lenient_float(v)


# ---------------------------------------------------------------------------
# Parsed results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ParsedPlanResponse:
    list_selector: str
    confidence: float
    reasoning: str
    human_readable_doc: str = ""
    pagination_selector: str | None = None
    rate_limit_ms: int | None = None
    detail_selectors: dict[str, str] = field(default_factory=dict)
    cookie_selector: str | None = None
    reconstructed: bool = False


@dataclass(frozen=True, slots=True)
class ParsedDetailResponse:
    detail_selectors: dict[str, str]
    confidence: float
    reasoning: str
    human_readable_doc: str = ""
    reconstructed: bool = False


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------


def _first_balanced_object(text: str) -> str | None:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(content: str) -> dict[str, Any]:
    """First JSON object in *content*: fenced block, bare body, or first balanced ``{...}``."""
    if not content or not content.strip():
        raise MalformedResponseError("Empty response", raw=content or "")

    candidates: list[str] = []
    for pattern in _FENCE_RES:
        if m := pattern.search(content):
            candidates.append(m.group(1))
    candidates.append(content.strip())
    if balanced := _first_balanced_object(content):
        candidates.append(balanced)

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            if (inner := _first_balanced_object(candidate)) and inner != candidate:
                try:
                    data = json.loads(inner)
                except ValueError:
                    continue
            else:
                continue
        if isinstance(data, dict):
            return data
    raise MalformedResponseError("No JSON object found in response", raw=content[:_RAW_PREVIEW])


# ---------------------------------------------------------------------------
# Phase 1 (main page)
# ---------------------------------------------------------------------------


def _raw_preview(content: str) -> str:
    return f"Generated plan for content extraction. Raw response: {(content or '')[:_RAW_PREVIEW]}..."


def parse_main_response(content: str) -> ParsedPlanResponse:
    try:
        data = extract_json_object(content)
        parsed = MainPageResponse.model_validate(data)
    except (MalformedResponseError, ValidationError) as exc:
        logger.warning("Main-page response unparseable, reconstructing with defaults: %s", exc)
        parsed = MainPageResponse()

    plan = parsed.plan
    cookie = parsed.cookie_consent.save_button_selector if parsed.cookie_consent else None
    complete = (
        plan is not None
        and bool(plan.list_selector)
        and parsed.confidence is not None
        and bool(parsed.reasoning)
    )
    if complete:
        return ParsedPlanResponse(
            list_selector=plan.list_selector,
            pagination_selector=plan.pagination_selector,
            rate_limit_ms=plan.rate_limit_ms,
            detail_selectors=dict(plan.detail_selectors or {}),
            cookie_selector=cookie,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning,
            human_readable_doc=parsed.human_readable_doc or "",
        )

    logger.warning("Main-page response missing required fields, constructing from available data")
    plan_details = dict(plan.detail_selectors or {}) if plan is not None else {}
    if plan is not None and plan.list_selector:
        list_selector = plan.list_selector
        details = plan_details
    else:
        list_selector = DEFAULT_LIST_SELECTOR
        details = plan_details or dict(DEFAULT_DETAIL_SELECTORS)
    return ParsedPlanResponse(
        list_selector=list_selector,
        pagination_selector=plan.pagination_selector if plan else None,
        rate_limit_ms=plan.rate_limit_ms if plan else None,
        detail_selectors=details,
        cookie_selector=cookie,
        confidence=parsed.confidence if parsed.confidence is not None else RECONSTRUCTED_CONFIDENCE,
        reasoning=parsed.reasoning or "Fallback response due to parsing issues",
        human_readable_doc=parsed.human_readable_doc or _raw_preview(content),
        reconstructed=True,
    )


# ---------------------------------------------------------------------------
# Phase 2 (detail pages)
# ---------------------------------------------------------------------------


def parse_content_response(content: str) -> ParsedDetailResponse:
    try:
        parsed = ContentPageResponse.model_validate(extract_json_object(content))
    except (MalformedResponseError, ValidationError) as exc:
        logger.warning("Content-page response unparseable, using default detail selectors: %s", exc)
        return ParsedDetailResponse(
            detail_selectors=dict(DEFAULT_CONTENT_SELECTORS),
            confidence=UNPARSEABLE_DETAIL_CONFIDENCE,
            reasoning="Fallback content page selectors due to parsing error",
            human_readable_doc=f"Content page selectors generated with fallback. Raw response: "
            f"{(content or '')[:_RAW_PREVIEW]}...",
            reconstructed=True,
        )

    if parsed.detail_selectors and parsed.confidence is not None and parsed.reasoning:
        return ParsedDetailResponse(
            detail_selectors=parsed.detail_selectors,
            confidence=parsed.confidence,
            reasoning=parsed.reasoning,
            human_readable_doc=parsed.human_readable_doc or "Content page selectors generated by AI",
        )

    logger.warning("Content-page response missing required fields, using fallback values")
    return ParsedDetailResponse(
        detail_selectors=parsed.detail_selectors or dict(DEFAULT_CONTENT_SELECTORS),
        confidence=parsed.confidence if parsed.confidence is not None else RECONSTRUCTED_CONFIDENCE,
        reasoning=parsed.reasoning or "Fallback content page selectors",
        human_readable_doc=parsed.human_readable_doc or "Generated content page selectors for data extraction",
        reconstructed=True,
    )


# ---------------------------------------------------------------------------
# Line format (secondary provider)
# ---------------------------------------------------------------------------


def parse_line_response(content: str, default_details: Mapping[str, str] | None = None) -> ParsedPlanResponse:
    """Parse ``LABEL: value`` lines; missing, empty, ``None`` and ``N/A`` values take defaults.

    *default_details* supplies archetype defaults for detail fields the model
    left out (keys ``title``, ``description``, ``dates``/``date``, ``images``).
    """
    values: dict[str, str] = {}
    for line in (content or "").splitlines():
        m = _LINE_RE.match(line)
        if m and m.group(1) in LINE_LABELS and m.group(1) not in values:
            values[m.group(1)] = m.group(2).strip("*").strip()

    if not values:
        logger.warning("Line-format response had no recognizable labels, using defaults")

    list_selector = _clean_selector(values.get("LIST_SELECTOR")) or LINE_DEFAULT_LIST_SELECTOR
    confidence = LINE_DEFAULT_CONFIDENCE
    if (raw_conf := values.get("CONFIDENCE")) is not None:
        try:
            value = float(raw_conf)
        except ValueError:
            value = -1.0
        if 0.0 <= value <= 1.0:
            confidence = value

    defaults = dict(default_details or {})
    if "dates" not in defaults and "date" in defaults:
        defaults["dates"] = defaults["date"]
    details: dict[str, str] = {}
    for label, name in _LINE_DETAIL_FIELDS.items():
        selector = _clean_selector(values.get(label)) or defaults.get(name)
        if selector:
            details[name] = selector

    return ParsedPlanResponse(
        list_selector=list_selector,
        pagination_selector=_clean_selector(values.get("PAGINATION_SELECTOR")),
        rate_limit_ms=LINE_DEFAULT_RATE_LIMIT_MS,
        detail_selectors=details,
        cookie_selector=_clean_selector(values.get("COOKIE_CONSENT_SELECTOR")),
        confidence=confidence,
        reasoning=values.get("REASONING") or "Generated using local model",
        reconstructed=not values,
    )
