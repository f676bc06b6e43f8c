# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Browser automation contract used by the sandbox.

Extraction crosses the boundary as data, not as code: the sandbox sends an
:class:`ExtractionRequest` naming a scope selector and ``{field: (selector,
kind)}``; the session answers with an :class:`ExtractionResponse` holding
one ``{field: raw string}`` map per matched scope element.  Implementations
live in ``browser_session`` (Playwright) and ``static_session`` (offline).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from urllib.parse import urljoin

from .config import SandboxConfig
from .fields import FieldKind

# Attribute precedence per kind; TEXT reads the element text
IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src")
URL_ATTRIBUTES = ("href",)
DATE_ATTRIBUTES = ("datetime", "data-date")

PREVIEW_CHARS = 100

_EMAIL_RE = re.compile(r"[\w.\-]+@[\w.\-]+\.\w+")
_PHONE_RE = re.compile(r"[\d\s\-+()/]{8,}")


@dataclass(frozen=True, slots=True)
class ExtractionRequest:
    """Extract ``selectors`` within each element matched by ``scope``.

    Each field is looked up inside the scope element first; when absent
    there, the first page-wide match is used.
    """

    scope: str
    selectors: dict[str, tuple[str, FieldKind]]
    base_url: str
    limit: int = 3


@dataclass(frozen=True, slots=True)
class ExtractionResponse:
    items: list[dict[str, str]] = field(default_factory=list)
    scope_count: int = 0
    field_errors: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ElementBox:
    x: int
    y: int
    width: int
    height: int
    tag: str
    visible: bool = True
    value: str = ""


@runtime_checkable
class SandboxSession(Protocol):
    """One isolated page, used by exactly one validation run."""

    network_requests: int
    failed_requests: int

    async def navigate(self, url: str, *, timeout_ms: int) -> None: ...

    async def count(self, selector: str) -> int: ...

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse: ...

    async def element_boxes(self, selector: str, *, limit: int, kind: FieldKind | None = None) -> list[ElementBox]: ...

    async def screenshot(self) -> bytes: ...

    async def close(self) -> None: ...


class BrowserDriver(Protocol):
    async def open_session(self, config: SandboxConfig) -> SandboxSession: ...


def refine_value(name: str, kind: FieldKind, raw: str | None, base_url: str) -> str | None:
    """Shared post-processing of a raw extracted string.

    Trims text, pulls the address out of email/phone labels, and resolves
    relative URLs and image sources against ``base_url``.
    """
    if raw is None:
        return None
    value = " ".join(raw.split())
    if not value:
        return None
    if name == "email":
        m = _EMAIL_RE.search(value)
        value = m.group(0) if m else value
    elif name == "phone":
        m = _PHONE_RE.search(value)
        value = m.group(0).strip() if m else value
    if kind in (FieldKind.URL, FieldKind.IMAGE) and base_url:
        value = urljoin(base_url, value)
    return value


def preview(text: str) -> str:
    return " ".join(text.split())[:PREVIEW_CHARS]
