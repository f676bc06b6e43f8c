# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Offline sandbox session over pre-fetched HTML.

Implements the same contract as the Playwright session with BeautifulSoup
CSS selection (soupsieve), for tests and for validating against snapshots.
There is no layout engine, so no element boxes and no screenshots.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from .browser import DATE_ATTRIBUTES, IMAGE_ATTRIBUTES, ElementBox, ExtractionRequest, ExtractionResponse
from .browser import refine_value
from .config import SandboxConfig
from .errors import NavigationError, ScrapePlanError, SelectorMissError
from .fields import FieldKind

logger = logging.getLogger(__name__)


def _read(tag: Tag, kind: FieldKind) -> str | None:
    if kind == FieldKind.IMAGE:
        return next((v for a in IMAGE_ATTRIBUTES if (v := tag.get(a))), None)
    if kind == FieldKind.URL:
        href = tag.get("href")
        return href if isinstance(href, str) else None
    if kind == FieldKind.DATE:
        attr = next((v for a in DATE_ATTRIBUTES if (v := tag.get(a))), None)
        return attr or tag.get_text()
    return tag.get_text()


class StaticSession:
    def __init__(self, pages: Mapping[str, str], config: SandboxConfig | None = None) -> None:
        self.config = config or SandboxConfig()
        self._pages = dict(pages)
        self._soup: BeautifulSoup | None = None
        self.url: str | None = None
        self.network_requests = 0
        self.failed_requests = 0
        self.closed = False

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            raise RuntimeError("No page loaded. Call navigate() first.")
        return self._soup

    async def navigate(self, url: str, *, timeout_ms: int = 0) -> None:
        self.network_requests += 1
        html = self._pages.get(url)
        if html is None:
            self.failed_requests += 1
            raise NavigationError(f"net::ERR_NAME_NOT_RESOLVED at {url}", url=url, attempts=1)
        self._soup = BeautifulSoup(html, "html.parser")
        self.url = url
        logger.debug("Static page loaded: %s (%d chars)", url, len(html))

    def _select(self, root: BeautifulSoup | Tag, selector: str) -> list[Tag]:
        try:
            return root.select(selector)
        except SelectorSyntaxError as exc:
            raise SelectorMissError(f"Invalid selector {selector!r}: {exc}", selector=selector) from exc

    async def count(self, selector: str) -> int:
        return len(self._select(self.soup, selector))

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        matched = self._select(self.soup, request.scope)
        items: list[dict[str, str]] = []
        errors: list[str] = []
        for element in matched[: request.limit]:
            item: dict[str, str] = {}
            for name, (selector, kind) in request.selectors.items():
                try:
                    target = element.select_one(selector) or self.soup.select_one(selector)
                except SelectorSyntaxError as exc:
                    message = f"{name}: {exc}"
                    if message not in errors:
                        errors.append(message)
                    continue
                if target is None:
                    continue
                value = refine_value(name, kind, _read(target, kind), request.base_url)
                if value:
                    item[name] = value
            items.append(item)
        return ExtractionResponse(items=items, scope_count=len(matched), field_errors=errors)

    async def element_boxes(self, selector: str, *, limit: int, kind: FieldKind | None = None) -> list[ElementBox]:
        return []

    async def screenshot(self) -> bytes:
        raise ScrapePlanError("Screenshots need a rendering browser; the static session has none")

    async def fetch(self, url: str) -> str:
        html = self._pages.get(url)
        if html is None:
            raise NavigationError(f"No snapshot for {url}", url=url, attempts=1)
        return html

    async def close(self) -> None:
        self._soup = None
        self.closed = True


class StaticDriver:
    """Hands out a :class:`StaticSession` per run over the same snapshots."""

    def __init__(self, pages: Mapping[str, str]) -> None:
        self.pages = dict(pages)
        self.sessions: list[StaticSession] = []

    async def open_session(self, config: SandboxConfig) -> StaticSession:
        session = StaticSession(self.pages, config)
        self.sessions.append(session)
        return session
