# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cross-page content-pattern analysis over example detail URLs.

Optional collaborator of SiteStructureAnalyzer: given a few example detail
pages, find what they have in common (field selectors) and where their
teasers live on the listing page (list containers).

Fetching is batched (``batch_size`` URLs at a time).  Every URL in a batch is
independent: a failure is recorded in ``ContentPatternAnalysis.failures`` and
never aborts the batch or the analysis.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Protocol

from bs4 import BeautifulSoup, Tag

from .html_compressor import focus_content, strip_noise, truncate
from .models import ContentExample, ContentPatternAnalysis, ListContainer, ScrapingPlan

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_MAX_URLS = 15
_TRIM_BUDGET = 20000
_MIN_TITLE_LEN = 4
_CONTENT_CONTAINER_CONFIDENCE = 0.85

NAVIGATION_SELECTORS: tuple[str, ...] = (
    "nav",
    "header",
    "footer",
    ".nav",
    ".navigation",
    ".header",
    ".footer",
    ".menu",
    ".sidebar",
    ".breadcrumb",
    ".pagination",
    "#nav",
    "#header",
    "#footer",
)

# field -> candidate selectors tried on each example page, in order
_FIELD_PROBES: dict[str, tuple[str, ...]] = {
    "title": ("h1", "h2", ".title"),
    "description": (".description", ".summary", "p"),
    "date": ("time", ".date", ".published"),
    "address": (".address", ".location", "address"),
    "images": ("img",),
}

# Generic selectors accepted with partial credit per field
_REASONABLE_SELECTORS: dict[str, tuple[str, ...]] = {
    "title": ("h1", "h2", "h3", ".title", ".heading"),
    "description": ("p", ".description", ".summary", ".excerpt", ".content"),
    "date": (".date", "time", ".published", ".created"),
    "dates": (".date", "time", ".published", ".created"),
    "address": (".address", ".location", ".venue"),
    "phone": (".phone", ".tel", ".telephone"),
    "email": (".email", ".mail", 'a[href^="mailto:"]'),
    "website": ('a[href^="http"]', ".website", ".url"),
    "images": ("img", ".image", ".photo"),
}
_GENERIC_LIST_SELECTORS = ("article", ".item", ".entry", ".post", "li", "div")

_WS_RE = re.compile(r"\s+")


class PageFetcher(Protocol):
    """Anything that can turn a URL into rendered HTML."""

    async def fetch(self, url: str) -> str: ...


class ContentPatternAnalyzer(Protocol):
    async def analyze(self, urls: Iterable[str]) -> ContentPatternAnalysis: ...

    def find_list_containers(self, main_html: str, analysis: ContentPatternAnalysis) -> list[ListContainer]: ...


def trim_to_main_content(html: str, budget: int = _TRIM_BUDGET) -> str:
    stripped = strip_noise(html)
    focused, _ = focus_content(stripped)
    trimmed, _ = truncate(focused, budget)
    return trimmed


def _text(tag: Tag | None) -> str:
    return _WS_RE.sub(" ", tag.get_text(" ", strip=True)) if tag is not None else ""


def _simple_selector(tag: Tag) -> str:
    classes = tag.get("class") or []
    return f"{tag.name}.{classes[0]}" if classes else tag.name


def css_path(tag: Tag) -> str:
    """Breadcrumb in the same ``tag.firstClass#id`` form as dom.DomNode.path."""
    parts: list[str] = []
    node: Tag | None = tag
    while node is not None and node.name not in (None, "[document]"):
        seg = node.name
        classes = node.get("class") or []
        if classes:
            seg += f".{classes[0]}"
        if node.get("id"):
            seg += f"#{node.get('id')}"
        parts.append(seg)
        node = node.parent
    return " > ".join(reversed(parts))


@dataclass(frozen=True, slots=True)
class ExampleCheck:
    """Offline agreement between a plan and the example-derived content selectors."""

    valid: bool
    confidence: float
    issues: tuple[str, ...]


class ExampleContentAnalyzer:
    """Fetch example detail pages in batches and derive shared content patterns."""

    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_urls: int = DEFAULT_MAX_URLS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._fetcher = fetcher
        self._batch_size = batch_size
        self._max_urls = max_urls

    async def analyze(self, urls: Iterable[str]) -> ContentPatternAnalysis:
        wanted = list(dict.fromkeys(u for u in urls if u))[: self._max_urls]
        if not wanted:
            raise ValueError("Content URLs are required for pattern analysis")

        examples: list[ContentExample] = []
        failures: dict[str, str] = {}
        for start in range(0, len(wanted), self._batch_size):
            batch = wanted[start : start + self._batch_size]
            results = await asyncio.gather(*(self._fetcher.fetch(u) for u in batch), return_exceptions=True)
            for url, result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    if isinstance(result, asyncio.CancelledError):
                        raise result
                    failures[url] = str(result) or type(result).__name__
                    logger.warning("Example page fetch failed: url=%s error=%s", url, failures[url])
                    continue
                examples.append(self._to_example(url, result))

        selectors, agreement = self._common_selectors(examples)
        success_ratio = len(examples) / len(wanted)
        confidence = 0.5 * success_ratio + 0.5 * agreement if examples else 0.0
        logger.info(
            "Content patterns: %d/%d examples fetched, %d shared selectors, confidence=%.2f",
            len(examples),
            len(wanted),
            len(selectors),
            confidence,
        )
        return ContentPatternAnalysis(
            confidence=confidence,
            content_selectors=selectors,
            exclude_selectors=NAVIGATION_SELECTORS,
            examples=tuple(examples),
            failures=failures,
        )

    @staticmethod
    def _to_example(url: str, html: str) -> ContentExample:
        trimmed = trim_to_main_content(html)
        soup = BeautifulSoup(html, "html.parser")
        title = _text(soup.select_one("h1, h2, .title"))
        description = _text(soup.select_one("p, .description"))
        return ContentExample(url=url, html=trimmed, title=title, description=description)

    @staticmethod
    def _common_selectors(examples: list[ContentExample]) -> tuple[dict[str, str], float]:
        """Most frequent probe hit per field, and how strongly examples agree on ``title``."""
        if not examples:
            return {}, 0.0
        per_field: dict[str, Counter[str]] = {name: Counter() for name in _FIELD_PROBES}
        for ex in examples:
            soup = BeautifulSoup(ex.html, "html.parser")
            for name, probes in _FIELD_PROBES.items():
                for probe in probes:
                    el = soup.select_one(probe)
                    if el is not None and (name == "images" or _text(el)):
                        per_field[name][_simple_selector(el)] += 1
                        break
        selectors = {name: counts.most_common(1)[0][0] for name, counts in per_field.items() if counts}
        title_counts = per_field["title"]
        agreement = title_counts.most_common(1)[0][1] / len(examples) if title_counts else 0.0
        return selectors, agreement

    def find_list_containers(self, main_html: str, analysis: ContentPatternAnalysis) -> list[ListContainer]:
        """Listing-page elements that hold teasers for two or more example pages."""
        titles = [ex.title for ex in analysis.examples if len(ex.title) >= _MIN_TITLE_LEN]
        if len(titles) < 2 or not main_html:
            return []
        soup = BeautifulSoup(main_html, "html.parser")

        matches: list[Tag] = []
        for title in titles:
            node = soup.find(string=lambda s, t=title: bool(s) and t.lower() in s.lower())
            if node is not None and isinstance(node.parent, Tag):
                matches.append(node.parent)
        if len(matches) < 2:
            return []

        counts: Counter[int] = Counter()
        by_id: dict[int, Tag] = {}
        depth: dict[int, int] = {}
        for m in matches:
            for d, anc in enumerate(reversed(list(m.parents))):
                if not isinstance(anc, Tag) or anc.name == "[document]":
                    continue
                counts[id(anc)] += 1
                by_id[id(anc)] = anc
                depth[id(anc)] = d
        shared = [key for key, n in counts.items() if n >= 2]
        if not shared:
            return []
        container = by_id[max(shared, key=lambda k: depth[k])]
        children = [c for c in container.children if isinstance(c, Tag)]
        return [
            ListContainer(
                selector=css_path(container),
                item_count=len(children),
                confidence=_CONTENT_CONTAINER_CONFIDENCE,
                sample_items=tuple(css_path(c) for c in children[:3]),
                exclude_selectors=analysis.exclude_selectors or NAVIGATION_SELECTORS,
                source="content",
            )
        ]


def _normalize_selector(s: str) -> str:
    return _WS_RE.sub(" ", s or "").strip().lower()


def _reasonable(field: str, selector: str) -> bool:
    return any(r in selector or selector in r for r in _REASONABLE_SELECTORS.get(field, ()))


def check_plan_against_content(plan: ScrapingPlan, analysis: ContentPatternAnalysis) -> ExampleCheck:
    """Score a plan's selectors against example-derived patterns without a browser.

    List selector match is worth 0.4, detail selectors 0.6 scaled by the share
    that match (generic but sensible selectors earn half credit).  The floor
    is 0.3; valid needs >= 0.7 and no issues.
    """
    issues: list[str] = []
    score = 0.0

    listed = {_normalize_selector(c.selector) for c in analysis.list_containers}
    list_ok = _normalize_selector(plan.list_selector) in listed or any(
        g in plan.list_selector for g in _GENERIC_LIST_SELECTORS
    )
    if list_ok:
        score += 0.4
    else:
        issues.append(f'List selector "{plan.list_selector}" does not match content patterns')

    valid = 0.0
    for name, selector in plan.detail_selectors.items():
        expected = analysis.content_selectors.get(name)
        if expected and _normalize_selector(expected) == _normalize_selector(selector):
            valid += 1
        elif _reasonable(name, selector):
            valid += 0.5
        else:
            issues.append(f'Selector for "{name}" may not match content patterns: {selector}')
    total = len(plan.detail_selectors)
    score += (valid / total if total else 0.5) * 0.6

    confidence = max(min(score, 1.0), 0.3)
    return ExampleCheck(valid=confidence >= 0.7 and not issues, confidence=round(confidence, 2), issues=tuple(issues))


def examples_from_pages(pages: Mapping[str, str]) -> list[ContentExample]:
    """Build ContentExamples from already-fetched ``{url: html}`` pages."""
    return [ExampleContentAnalyzer._to_example(url, html) for url, html in pages.items() if html]
