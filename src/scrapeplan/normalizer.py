# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Validation and normalization of extracted items.

Stateless per item: ``normalize(item, base_url)`` never raises and always
returns a :class:`NormalizationResult` with ``is_valid`` plus the
enumerated errors and warnings.  Values may be tagged (``fields.py``) or
plain; a tag decides the handling, otherwise the field name does.

Normalization is idempotent: feeding ``normalized_item`` back in yields an
equal item.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlsplit

from .config import QualityWeights
from .dates import is_canonical_iso, parse_date, parse_datetime, years_from_now
from .errors import FieldNormalizationError
from .fields import DateValue, FieldKind, ImageRef, TextValue, UrlValue, field_kind_for, raw_value
from .language import DEFAULT_REGISTRY, LexiconRegistry

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = ("title", "description", "language")
QUALITY_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "language",
    "place",
    "address",
    "email",
    "phone",
    "website",
    "price",
    "discountPrice",
    "longitude",
    "latitude",
    "startDate",
    "endDate",
    "dates",
    "createdAt",
    "zipcode",
    "images",
)
SCALAR_DATE_FIELDS: tuple[str, ...] = ("startDate", "endDate", "createdAt")

TITLE_MAX = 500
TITLE_MIN = 3
DESCRIPTION_MAX = 5000
MAX_YEARS_FROM_NOW = 100
TOP_MESSAGES = 10

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()+]")
_PHONE_RE = re.compile(r"^\d{7,15}$")
_TAGGED = (TextValue, UrlValue, DateValue, ImageRef)


@dataclass(frozen=True, slots=True)
class FieldIssue:
    field: str
    message: str
    value: Any = None
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class DataQualityMetrics:
    completeness: float
    accuracy: float
    consistency: float
    overall: float


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    is_valid: bool
    errors: tuple[FieldIssue, ...]
    warnings: tuple[FieldIssue, ...]
    normalized_item: dict[str, Any] | None
    quality: DataQualityMetrics

    @property
    def quality_score(self) -> float:
        return self.quality.overall


@dataclass(frozen=True, slots=True)
class BatchStatistics:
    total_items: int
    valid_items: int
    invalid_items: int
    average_quality_score: float
    common_errors: list[tuple[str, int]] = field(default_factory=list)
    common_warnings: list[tuple[str, int]] = field(default_factory=list)


def is_absolute_url(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme and parts.netloc) and not any(c.isspace() for c in value)


def _is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, list | tuple):
        return len(value) > 0
    if isinstance(value, float):
        return not math.isnan(value)
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and not math.isnan(value)


class _Issues:
    __slots__ = ("errors", "warnings")

    def __init__(self) -> None:
        self.errors: list[FieldIssue] = []
        self.warnings: list[FieldIssue] = []

    def error(self, exc: FieldNormalizationError) -> None:
        self.errors.append(FieldIssue(exc.field, str(exc), exc.value))

    def warn(self, name: str, message: str, value: Any = None, suggestion: str | None = None) -> None:
        self.warnings.append(FieldIssue(name, message, value, suggestion))


class DataNormalizer:
    """Normalizes extracted items and scores their quality."""

    def __init__(self, registry: LexiconRegistry | None = None, weights: QualityWeights | None = None) -> None:
        self.registry = registry or DEFAULT_REGISTRY
        self.weights = weights or QualityWeights()

    # -- public ---------------------------------------------------------

    def normalize(self, item: Mapping[str, Any], base_url: str | None = None) -> NormalizationResult:
        issues = _Issues()
        plain, kinds = self._untag(item)

        for name in ("title", "description"):
            if not _is_filled(plain.get(name)):
                issues.error(FieldNormalizationError(f"Required field '{name}' is missing or empty", field=name))

        out = dict(plain)
        for name, value in plain.items():
            kind = kinds.get(name) or field_kind_for(name)
            if kind == FieldKind.DATE:
                self._dates(out, name, value, issues)
            elif kind == FieldKind.IMAGE:
                self._images(out, name, value, base_url, issues)
            elif kind == FieldKind.URL:
                self._url(out, name, value, base_url, issues)
            elif isinstance(value, str):
                out[name] = value.strip()

        self._title_description(out, issues)
        self._date_order(out, issues)
        self._language(out, issues)
        self._email(out, issues)
        self._phone(out, issues)
        self._numbers(out, issues)

        quality = self.quality_metrics(out)
        is_valid = not issues.errors
        if not is_valid:
            logger.debug("Item invalid: %s", "; ".join(e.message for e in issues.errors))
        return NormalizationResult(
            is_valid=is_valid,
            errors=tuple(issues.errors),
            warnings=tuple(issues.warnings),
            normalized_item=out if is_valid else None,
            quality=quality,
        )

    def normalize_batch(
        self, items: Iterable[Mapping[str, Any]], base_url: str | None = None
    ) -> list[NormalizationResult]:
        return [self.normalize(item, base_url) for item in items]

    @staticmethod
    def batch_statistics(results: Sequence[NormalizationResult]) -> BatchStatistics:
        total = len(results)
        valid = sum(1 for r in results if r.is_valid)
        average = round(sum(r.quality.overall for r in results) / total, 2) if total else 0.0
        errors = Counter(e.message for r in results for e in r.errors)
        warnings = Counter(w.message for r in results for w in r.warnings)
        return BatchStatistics(
            total_items=total,
            valid_items=valid,
            invalid_items=total - valid,
            average_quality_score=average,
            common_errors=errors.most_common(TOP_MESSAGES),
            common_warnings=warnings.most_common(TOP_MESSAGES),
        )

    # -- tagged values --------------------------------------------------

    @staticmethod
    def _untag(item: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, FieldKind]]:
        plain: dict[str, Any] = {}
        kinds: dict[str, FieldKind] = {}
        for name, value in item.items():
            if isinstance(value, _TAGGED):
                kinds[name] = value.kind
            elif isinstance(value, list | tuple):
                tagged = [v for v in value if isinstance(v, _TAGGED)]
                if tagged:
                    kinds[name] = tagged[0].kind
                value = list(value)
            plain[name] = raw_value(value)
        return plain, kinds

    # -- field steps ----------------------------------------------------

    def _title_description(self, out: dict[str, Any], issues: _Issues) -> None:
        title = out.get("title")
        if isinstance(title, str) and title:
            if len(title) > TITLE_MAX:
                issues.warn(
                    "title",
                    f"Title is very long (>{TITLE_MAX} characters)",
                    None,
                    "Consider truncating or reviewing extraction logic",
                )
            if len(title) < TITLE_MIN:
                issues.warn(
                    "title",
                    f"Title is very short (<{TITLE_MIN} characters)",
                    title,
                    "Verify extraction captured complete title",
                )
        description = out.get("description")
        if isinstance(description, str) and len(description) > DESCRIPTION_MAX:
            issues.warn(
                "description",
                f"Description is very long (>{DESCRIPTION_MAX} characters)",
                None,
                "Consider truncating or reviewing extraction logic",
            )

    def _one_date(self, name: str, value: Any, issues: _Issues) -> str | None:
        text = str(value).strip() if value is not None else ""
        if not text:
            return None
        iso = parse_date(text)
        if iso is None:
            issues.error(FieldNormalizationError(f'Invalid date format: "{text}"', field=name, value=text))
            return None
        if years_from_now(iso) > MAX_YEARS_FROM_NOW:
            issues.warn(name, f"Date seems unrealistic: {iso}", iso, "Verify date extraction and parsing")
        return iso

    def _dates(self, out: dict[str, Any], name: str, value: Any, issues: _Issues) -> None:
        if isinstance(value, list | tuple):
            dates = [d for d in (self._one_date(name, v, issues) for v in value) if d]
            if dates:
                out[name] = dates
            else:
                out.pop(name, None)
            return
        iso = self._one_date(name, value, issues)
        if iso is None:
            out.pop(name, None)
        elif name == "dates":
            out[name] = [iso]
        else:
            out[name] = iso

    def _images(self, out: dict[str, Any], name: str, value: Any, base_url: str | None, issues: _Issues) -> None:
        values = value if isinstance(value, list | tuple) else [value]
        resolved: list[str] = []
        for raw in values:
            if not isinstance(raw, str) or not raw.strip():
                continue
            src = raw.strip()
            if is_absolute_url(src):
                resolved.append(src)
                continue
            if not base_url:
                issues.warn(
                    name,
                    f'Cannot convert relative URL to absolute: "{src}" (no base URL provided)',
                    src,
                    "Provide base URL for proper image URL resolution",
                )
                continue
            absolute = urljoin(base_url, src)
            if is_absolute_url(absolute):
                resolved.append(absolute)
            else:
                issues.warn(name, f'Invalid image URL: "{src}"', src, "Verify image URL extraction logic")
        if not resolved:
            out.pop(name, None)
        elif name == "images" or isinstance(value, list | tuple):
            out[name] = resolved
        else:
            out[name] = resolved[0]

    def _url(self, out: dict[str, Any], name: str, value: Any, base_url: str | None, issues: _Issues) -> None:
        if not isinstance(value, str) or not value.strip():
            out.pop(name, None)
            return
        url = value.strip()
        if name == "website":
            if not url.startswith(("http://", "https://")):
                url = "https://" + url
        elif base_url and not is_absolute_url(url):
            url = urljoin(base_url, url)
        if not is_absolute_url(url):
            issues.warn(name, f'Invalid website URL: "{value}"', value, "Verify website URL extraction logic")
            out[name] = value.strip()
            return
        out[name] = url

    def _date_order(self, out: dict[str, Any], issues: _Issues) -> None:
        start = parse_datetime(out.get("startDate"))
        end = parse_datetime(out.get("endDate"))
        if start is not None and end is not None and start > end:
            issues.warn("dates", "Start date is after end date", None, "Verify date extraction logic")

    def _language(self, out: dict[str, Any], issues: _Issues) -> None:
        language = out.get("language")
        if isinstance(language, str):
            language = language.strip().lower() or None
        if not language:
            text = f"{out.get('title') or ''} {out.get('description') or ''}"
            detected = self.registry.detect(text)
            if detected is None:
                out.pop("language", None)
                issues.error(
                    FieldNormalizationError(
                        "Language not specified and could not be auto-detected", field="language"
                    )
                )
                return
            out["language"] = detected
            issues.warn(
                "language",
                f"Language auto-detected as '{detected}'",
                detected,
                "Verify language detection accuracy",
            )
            return
        out["language"] = language
        if not self.registry.is_supported(language):
            codes = " or ".join(f"'{c}'" for c in self.registry.codes)
            issues.error(
                FieldNormalizationError(
                    f"Invalid language code: '{language}'. Must be {codes}", field="language", value=language
                )
            )

    def _email(self, out: dict[str, Any], issues: _Issues) -> None:
        email = out.get("email")
        if not isinstance(email, str) or not email:
            return
        email = email.strip().lower()
        out["email"] = email
        if not _EMAIL_RE.match(email):
            issues.warn("email", f'Invalid email format: "{email}"', email, "Verify email extraction logic")

    def _phone(self, out: dict[str, Any], issues: _Issues) -> None:
        phone = out.get("phone")
        if not isinstance(phone, str) or not phone:
            return
        cleaned = _PHONE_STRIP_RE.sub("", phone)
        if _PHONE_RE.match(cleaned):
            out["phone"] = cleaned
        else:
            issues.warn(
                "phone",
                f'Phone number format may be invalid: "{phone}"',
                phone,
                "Verify phone number extraction and formatting",
            )

    def _numbers(self, out: dict[str, Any], issues: _Issues) -> None:
        checks = (
            ("longitude", -180, 180, "Invalid longitude value", "Longitude must be between -180 and 180"),
            ("latitude", -90, 90, "Invalid latitude value", "Latitude must be between -90 and 90"),
            ("price", 0, math.inf, "Invalid price value", "Price must be a non-negative number"),
            (
                "discountPrice",
                0,
                math.inf,
                "Invalid discount price value",
                "Discount price must be a non-negative number",
            ),
            ("zipcode", 0, 99999, "Invalid zipcode value", "Zipcode must be a number between 0 and 99999"),
        )
        for name, low, high, message, suggestion in checks:
            if name not in out or out[name] is None:
                continue
            value = out[name]
            if not _is_number(value) or not low <= value <= high:
                issues.warn(name, f"{message}: {value}", value, suggestion)
        price, discount = out.get("price"), out.get("discountPrice")
        if _is_number(price) and _is_number(discount) and discount > price:
            issues.warn(
                "discountPrice",
                "Discount price is higher than regular price",
                discount,
                "Verify price extraction logic",
            )

    # -- quality --------------------------------------------------------

    def quality_metrics(self, item: Mapping[str, Any]) -> DataQualityMetrics:
        completeness = self._completeness(item)
        accuracy = self._accuracy(item)
        consistency = self._consistency(item)
        w = self.weights
        overall = completeness * w.completeness + accuracy * w.accuracy + consistency * w.consistency
        return DataQualityMetrics(completeness, accuracy, consistency, round(overall, 2))

    @staticmethod
    def _completeness(item: Mapping[str, Any]) -> float:
        filled = total = 0
        for name in QUALITY_FIELDS:
            weight = 2 if name in REQUIRED_FIELDS else 1
            total += weight
            if _is_filled(item.get(name)):
                filled += weight
        return filled / total

    @staticmethod
    def _accuracy(item: Mapping[str, Any]) -> float:
        checks: list[bool] = []
        for name in SCALAR_DATE_FIELDS:
            if item.get(name):
                checks.append(is_canonical_iso(item[name]))
        if item.get("email"):
            checks.append(bool(_EMAIL_RE.match(str(item["email"]))))
        if item.get("website"):
            checks.append(is_absolute_url(str(item["website"])))
        if item.get("longitude") is not None:
            checks.append(_is_number(item["longitude"]) and -180 <= item["longitude"] <= 180)
        if item.get("latitude") is not None:
            checks.append(_is_number(item["latitude"]) and -90 <= item["latitude"] <= 90)
        images = item.get("images")
        if isinstance(images, list | tuple):
            checks.extend(isinstance(src, str) and is_absolute_url(src) for src in images)
        return sum(checks) / len(checks) if checks else 1.0

    @staticmethod
    def _consistency(item: Mapping[str, Any]) -> float:
        checks: list[bool] = []
        start = parse_datetime(item.get("startDate"))
        end = parse_datetime(item.get("endDate"))
        if start is not None and end is not None:
            checks.append(start <= end)
        price, discount = item.get("price"), item.get("discountPrice")
        if price is not None and discount is not None:
            checks.append(_is_number(price) and _is_number(discount) and discount <= price)
        has_lon = item.get("longitude") is not None
        has_lat = item.get("latitude") is not None
        if has_lon or has_lat:
            checks.append(has_lon and has_lat)
        return sum(checks) / len(checks) if checks else 1.0
