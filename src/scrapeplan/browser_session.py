# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright implementation of the sandbox browser contract.

Every :class:`PlaywrightSession` owns its own Chromium process, context and
page: nothing is pooled or shared between validation runs.  Resource types
listed in ``SandboxConfig.blocked_resource_types`` are aborted at context
level and the V8 heap is capped at ``max_memory_mb``.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlparse

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Request,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from .browser import ElementBox, ExtractionRequest, ExtractionResponse, refine_value
from .config import SandboxConfig
from .errors import NavigationError, ScrapePlanError, SelectorMissError
from .fields import FieldKind
from .language import DEFAULT_REGISTRY, LexiconRegistry

logger = logging.getLogger(__name__)

_EXTRACT_JS = """
([scope, fields, limit]) => {
  const matched = Array.from(document.querySelectorAll(scope));
  const items = [];
  const errors = [];
  const read = (el, kind) => {
    if (kind === 'image') {
      return el.getAttribute('src') || el.getAttribute('data-src') || el.getAttribute('data-lazy-src');
    }
    if (kind === 'url') return el.getAttribute('href');
    if (kind === 'date') return el.getAttribute('datetime') || el.getAttribute('data-date') || el.textContent;
    return el.textContent;
  };
  for (const el of matched.slice(0, limit)) {
    const item = {};
    for (const [name, selector, kind] of fields) {
      let target = null;
      try {
        target = el.querySelector(selector) || document.querySelector(selector);
      } catch (e) {
        errors.push(`${name}: ${e.message}`);
        continue;
      }
      if (target) {
        const value = read(target, kind);
        if (value) item[name] = value;
      }
    }
    items.push(item);
  }
  return {items, count: matched.length, errors};
}
"""

_BOXES_JS = """
([selector, limit, kind]) => {
  return Array.from(document.querySelectorAll(selector)).slice(0, limit).map(el => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    let value = '';
    if (kind === 'image') value = el.getAttribute('src') || el.getAttribute('data-src') || '';
    else if (kind === 'url') value = el.getAttribute('href') || '';
    else if (kind) value = (el.textContent || '').trim().substring(0, 100);
    return {
      x: Math.round(rect.left), y: Math.round(rect.top),
      width: Math.round(rect.width), height: Math.round(rect.height),
      tag: el.tagName.toLowerCase(),
      visible: style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 0 && rect.height > 0,
      value,
    };
  });
}
"""


def chromium_launch_args(config: SandboxConfig) -> list[str]:
    """Hardened Chromium flags for a sandbox run."""
    return [
        "--disable-blink-features=AutomationControlled",
        f"--lang={config.locale}",
        f"--js-flags=--max-old-space-size={config.max_memory_mb}",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-dev-shm-usage",
        "--disable-background-networking",
        "--disable-sync",
        "--disable-gpu",
        "--no-first-run",
        "--deny-permission-prompts",
        "--disable-breakpad",
        "--no-pings",
        "--disable-component-update",
        "--noerrdialogs",
    ]


class PlaywrightSession:
    """One Chromium + context + page, closed in reverse order by :meth:`close`."""

    def __init__(self, config: SandboxConfig, registry: LexiconRegistry | None = None) -> None:
        self.config = config
        self._registry = registry or DEFAULT_REGISTRY
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._extra_pages: set[Page] = set()
        self.network_requests = 0
        self.failed_requests = 0

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Sandbox session not started. Use async with or call start().")
        return self._page

    async def start(self) -> None:
        """Launch Chromium and open the page; a partial start is torn down before re-raising."""
        self._playwright = await async_playwright().start()
        try:
            await self._launch()
        except BaseException:
            await self.close()
            raise
        logger.info("Sandbox session started (headless=%s locale=%s)", self.config.headless, self.config.locale)

    async def _launch(self) -> None:
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=chromium_launch_args(self.config),
            )
        except PlaywrightError as exc:
            if "executable doesn't exist" in str(exc).lower():
                raise ScrapePlanError("Chromium is not installed. Please run: playwright install chromium") from exc
            raise
        lang = self.config.locale.split("-")[0].lower()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            timezone_id=self.config.timezone_id,
            user_agent=self.config.user_agent,
            permissions=[],
            service_workers="block",
            accept_downloads=False,
            extra_http_headers={"Accept-Language": self._registry.accept_language(lang)},
        )
        self._context.on("request", self._on_request)
        self._context.on("requestfailed", self._on_request_failed)
        if self.config.blocked_resource_types:
            await self._context.route("**/*", self._route_handler)
        self._page = await self._context.new_page()

    async def _route_handler(self, route: Route) -> None:
        if route.request.resource_type in self.config.blocked_resource_types:
            await route.abort("blockedbyclient")
            return
        await route.continue_()

    def _on_request(self, _request: Request) -> None:
        self.network_requests += 1

    def _on_request_failed(self, _request: Request) -> None:
        self.failed_requests += 1

    # -- contract -------------------------------------------------------

    async def navigate(self, url: str, *, timeout_ms: int) -> None:
        timeout = min(timeout_ms, self.config.navigation_timeout_ms)
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc}", url=url, attempts=1) from exc
        if self.config.settle_ms > 0:
            await self.page.wait_for_timeout(self.config.settle_ms)

    async def count(self, selector: str) -> int:
        try:
            return len(await self.page.query_selector_all(selector))
        except PlaywrightError as exc:
            raise SelectorMissError(f"Selector {selector!r} could not be evaluated: {exc}", selector=selector) from exc

    async def extract(self, request: ExtractionRequest) -> ExtractionResponse:
        fields = [[name, selector, str(kind)] for name, (selector, kind) in request.selectors.items()]
        try:
            raw = await self.page.evaluate(_EXTRACT_JS, [request.scope, fields, request.limit])
        except PlaywrightError as exc:
            raise SelectorMissError(
                f"Extraction with scope {request.scope!r} failed: {exc}", selector=request.scope
            ) from exc
        items: list[dict[str, str]] = []
        for entry in raw.get("items", []):
            item: dict[str, str] = {}
            for name, value in entry.items():
                kind = request.selectors[name][1]
                refined = refine_value(name, kind, value, request.base_url)
                if refined:
                    item[name] = refined
            items.append(item)
        errors = list(dict.fromkeys(raw.get("errors", [])))
        return ExtractionResponse(items=items, scope_count=int(raw.get("count", 0)), field_errors=errors)

    async def element_boxes(self, selector: str, *, limit: int, kind: FieldKind | None = None) -> list[ElementBox]:
        try:
            raw = await self.page.evaluate(_BOXES_JS, [selector, limit, str(kind) if kind else None])
        except PlaywrightError:
            logger.debug("Bounding boxes unavailable for selector %s", selector, exc_info=True)
            return []
        return [ElementBox(**box) for box in raw]

    async def screenshot(self) -> bytes:
        try:
            return await self.page.screenshot(type="png", full_page=True)
        except PlaywrightError as exc:
            raise ScrapePlanError(f"Screenshot failed: {exc}") from exc

    async def fetch(self, url: str) -> str:
        """Rendered HTML of *url* in a throwaway page of this context."""
        if self._context is None:
            raise RuntimeError("Sandbox session not started. Use async with or call start().")
        host = urlparse(url).hostname or ""
        if not self.config.host_allowed(host):
            raise NavigationError(f"Domain {host} is not allowed in sandbox", url=url)
        page = await self._context.new_page()
        self._extra_pages.add(page)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
            return await page.content()
        except PlaywrightError as exc:
            raise NavigationError(f"Fetching {url} failed: {exc}", url=url, attempts=1) from exc
        finally:
            self._extra_pages.discard(page)
            await self._close_quietly(page, "page")

    async def close(self) -> None:
        """Release pages, then context, then browser.  Never raises."""
        for page in [*self._extra_pages, *([self._page] if self._page else [])]:
            await self._close_quietly(page, "page")
        self._extra_pages.clear()
        self._page = None
        if self._context is not None:
            await self._close_quietly(self._context, "browser context")
            self._context = None
        if self._browser is not None:
            await self._close_quietly(self._browser, "browser")
            self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to stop playwright", exc_info=True)
            self._playwright = None
        logger.info("Sandbox session closed")

    @staticmethod
    async def _close_quietly(resource: Page | BrowserContext | Browser, label: str) -> None:
        try:
            await resource.close()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.warning("Failed to close %s during sandbox cleanup", label, exc_info=True)

    async def __aenter__(self) -> PlaywrightSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()


class PlaywrightDriver:
    """Opens a fresh :class:`PlaywrightSession` per validation run."""

    def __init__(self, registry: LexiconRegistry | None = None) -> None:
        self._registry = registry

    async def open_session(self, config: SandboxConfig) -> PlaywrightSession:
        session = PlaywrightSession(config, self._registry)
        await session.start()
        return session
