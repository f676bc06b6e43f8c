# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tagged values for extracted fields.

The browser collaborator hands back raw strings; before they reach the
normalizer each one is wrapped in a kind-specific value so that dispatch is
on the tag, not on runtime shape checks.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class FieldKind(StrEnum):
    TEXT = "text"
    URL = "url"
    DATE = "date"
    IMAGE = "image"


@dataclass(frozen=True, slots=True)
class TextValue:
    text: str
    kind: FieldKind = FieldKind.TEXT


@dataclass(frozen=True, slots=True)
class UrlValue:
    href: str
    kind: FieldKind = FieldKind.URL


@dataclass(frozen=True, slots=True)
class DateValue:
    raw: str  # datetime / data-date attribute, else visible text
    kind: FieldKind = FieldKind.DATE


@dataclass(frozen=True, slots=True)
class ImageRef:
    src: str
    kind: FieldKind = FieldKind.IMAGE


FieldValue = TextValue | UrlValue | DateValue | ImageRef

# Fields whose values are collections in ExtractedItem
LIST_FIELDS = frozenset({"images", "dates"})

_DATE_FIELDS = frozenset({"date", "dates", "startDate", "endDate", "createdAt", "published"})
_URL_FIELDS = frozenset({"website", "url", "link"})
_IMAGE_FIELDS = frozenset({"images", "image"})


def field_kind_for(name: str) -> FieldKind:
    """Map a detail-selector field name to the kind of value it yields."""
    if name in _IMAGE_FIELDS:
        return FieldKind.IMAGE
    if name in _URL_FIELDS:
        return FieldKind.URL
    if name in _DATE_FIELDS:
        return FieldKind.DATE
    return FieldKind.TEXT


def tag_value(kind: FieldKind, raw: str) -> FieldValue:
    if kind == FieldKind.URL:
        return UrlValue(raw)
    if kind == FieldKind.DATE:
        return DateValue(raw)
    if kind == FieldKind.IMAGE:
        return ImageRef(raw)
    return TextValue(raw)


def raw_value(value: Any) -> Any:
    """Unwrap a tagged value (or list of them) to its plain string(s)."""
    if isinstance(value, TextValue):
        return value.text
    if isinstance(value, UrlValue):
        return value.href
    if isinstance(value, DateValue):
        return value.raw
    if isinstance(value, ImageRef):
        return value.src
    if isinstance(value, list | tuple):
        return [raw_value(v) for v in value]
    return value


def tag_item(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Wrap every string in a raw ``{field: value}`` map according to the field name."""
    item: dict[str, Any] = {}
    for name, value in raw.items():
        if value is None:
            continue
        kind = field_kind_for(name)
        if isinstance(value, list | tuple):
            item[name] = [tag_value(kind, str(v)) for v in value if v not in (None, "")]
        elif isinstance(value, str):
            item[name] = tag_value(kind, value)
        else:
            item[name] = value
    return item


def untag_item(item: Mapping[str, Any]) -> dict[str, Any]:
    return {name: raw_value(value) for name, value in item.items()}
