# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Structural / heuristic site analysis.

Pipeline (all deterministic, no network):
  1. CMS archetype: ordered keyword families, first family with a hit wins.
  2. Arena DOM parse (lxml, see dom.py) + a BeautifulSoup view for selector probes.
  3. Repeated-element patterns: lists, tables, cards, articles, navigation.
  4. List containers: content-confirmed candidates first, then structural
     heuristics (list tags / list-like classes, tag-homogeneous ``div`` groups).
  5. Pagination: known markup fragments, else a DOM walk for pagination tokens.
  6. Content areas, aggregate confidence, rate-limit hint.

All thresholds are fixed constants; nothing is learned.
"""

from __future__ import annotations

import logging
import math
import re
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from .dom import DomNode, DomTree, parse_html
from .language import LexiconRegistry, language_hint_for_url
from .models import (
    Archetype,
    ContentArea,
    ContentPatternAnalysis,
    DetectedPattern,
    HtmlSignals,
    ListContainer,
    PaginationInfo,
    PaginationType,
    PatternType,
    SiteAnalysisResult,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CMS archetypes (order is part of the contract)
# ---------------------------------------------------------------------------

CMS_KEYWORDS: tuple[tuple[Archetype, tuple[str, ...]], ...] = (
    (
        Archetype.WORDPRESS,
        ("wp-content", "wp-includes", "wordpress", "wp-admin", 'class="wp-', 'id="wp-', "/wp-json/", "wp-embed"),
    ),
    (
        Archetype.TYPO3,
        ("typo3", "t3-", "typo3conf", "fileadmin", 'class="tx-', 'id="tx-', "data-namespace-typo3"),
    ),
    (
        Archetype.DRUPAL,
        ("drupal", "sites/default", "sites/all", 'class="node-', 'id="node-', "data-drupal-", "drupal.settings"),
    ),
)

# Heavier CMS families get a slower crawl
_RATE_LIMIT_MULTIPLIER: dict[Archetype, float] = {
    Archetype.WORDPRESS: 1.5,
    Archetype.DRUPAL: 1.5,
    Archetype.TYPO3: 2.0,
}
BASE_RATE_LIMIT_MS = 1000
_LOW_CONFIDENCE = 0.7
_UNCERTAINTY_MULTIPLIER = 1.5

# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

LIST_PATTERN_SELECTORS: tuple[str, ...] = (
    "ul.items",
    "ol.items",
    ".item-list",
    ".content-list",
    "ul.posts",
    "ol.posts",
    ".post-list",
    ".article-list",
    ".events",
    ".news-list",
    ".product-list",
    ".results",
    "tbody tr",
    ".grid .item",
    ".cards .card",
)

PAGINATION_SELECTORS: tuple[str, ...] = (
    ".pagination",
    ".pager",
    ".page-numbers",
    ".nav-links",
    ".next",
    ".previous",
    ".load-more",
    '[rel="next"]',
    '[rel="prev"]',
    ".page-nav",
    ".paginate",
)

_PAGINATION_CLASS_TOKENS = ("pagination", "pager", "page-numbers", "nav-links")
_PAGINATION_TEXT_TOKENS = ("next", "previous", "more", "page")
_PAGINATION_TEXT_TAGS = frozenset({"a", "button", "li", "span"})
_PAGINATION_TEXT_MAX = 30

_CARD_TOKENS = ("card", "item", "entry", "post", "article")
_CONTAINER_CLASS_TOKENS = frozenset({"items", "list", "content"})
_MAX_CONTAINERS = 25

EXCLUDE_SELECTORS: tuple[str, ...] = ("nav", "header", "footer", ".navigation", ".menu", ".sidebar", ".breadcrumb")

_CONTENT_AREAS: tuple[tuple[str, str, float], ...] = (
    ("main", "main", 0.95),
    ("header", "header", 0.9),
    ("footer", "footer", 0.9),
    ("nav", "navigation", 0.85),
)

# Fixed pattern confidences
_CONF_LIST_TAG = 0.7
_CONF_LIST_CLASS = 0.8
_CONF_TABLE = 0.9
_CONF_CARD = 0.7
_CONF_NAV = 0.95
_CONF_PAGINATION_FRAGMENT = 0.8
_CONF_PAGINATION_WALK = 0.7
_CONF_LIST_CONTAINER = 0.6
_CONF_GROUP_CONTAINER = 0.5

# ---------------------------------------------------------------------------
# HTML signals (string-level, used by prompts and scoring)
# ---------------------------------------------------------------------------

_CARD_LAYOUT_RE = re.compile(r"<(div|article)[^>]*class[^>]*card", re.IGNORECASE)
_PAGINATION_HINT_RE = re.compile(r"pagination|next|previous|page-\d+", re.IGNORECASE)
_DATE_CONTENT_RE = re.compile(r"\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{2}-\d{2}")


def summarize_html(html: str) -> HtmlSignals:
    """Pattern tags, complexity bucket, and rough token estimate for *html*."""
    lowered = html.lower()
    tags: list[str] = []
    if "<ul" in lowered or "<ol" in lowered:
        tags.append("list-structure")
    if "<table" in lowered:
        tags.append("table-structure")
    if _CARD_LAYOUT_RE.search(html):
        tags.append("card-layout")
    if _PAGINATION_HINT_RE.search(html):
        tags.append("pagination")
    if _DATE_CONTENT_RE.search(html):
        tags.append("date-content")

    score = len(tags) + len(html) / 500
    complexity = "low" if score < 8 else "medium" if score < 20 else "high"
    return HtmlSignals(pattern_tags=tuple(tags), complexity=complexity, estimated_tokens=math.ceil(len(html) / 4))


# ---------------------------------------------------------------------------
# URL heuristics
# ---------------------------------------------------------------------------


def infer_site_type(url: str) -> str:
    lowered = url.lower()
    host = urlparse(lowered).hostname or ""
    if host.endswith(".gov") or ".gov." in host or "government" in lowered:
        return "government"
    if any(kw in lowered for kw in ("news", "press", "media")):
        return "news"
    return "municipal"


def infer_language_hint(url: str, registry: LexiconRegistry | None = None) -> str:
    return language_hint_for_url(url, registry)


# ---------------------------------------------------------------------------
# Archetype default selectors
# ---------------------------------------------------------------------------

_BASE_SELECTORS: dict[str, str] = {
    "title": "h1, h2, h3, .title, .heading",
    "description": "p, .description, .summary, .excerpt, .content",
    "date": ".date, time, .published, .created",
    "address": ".address, .location, .venue",
    "phone": ".phone, .tel, .telephone",
    "email": '.email, .mail, a[href^="mailto:"]',
    "website": 'a[href^="http"], .website, .url',
    "images": "img, .image, .photo",
}

_ARCHETYPE_OVERRIDES: dict[Archetype, dict[str, str]] = {
    Archetype.WORDPRESS: {
        "title": ".entry-title, .post-title, h1, h2",
        "description": ".entry-content, .post-content, .excerpt",
        "date": ".entry-date, .post-date, .published",
    },
    Archetype.TYPO3: {
        "title": ".tx-news-title, .content-header h1, h1",
        "description": ".tx-news-text, .bodytext, .content-text",
        "date": ".tx-news-datetime, .news-date",
    },
    Archetype.DRUPAL: {
        "title": ".node-title, .field-name-title h1, h1",
        "description": ".field-name-body, .node-content, .field-item",
        "date": ".field-name-created, .submitted",
    },
}


def default_selectors_for(archetype: Archetype | str) -> dict[str, str]:
    """Field → selector defaults biased by CMS family."""
    selectors = dict(_BASE_SELECTORS)
    selectors.update(_ARCHETYPE_OVERRIDES.get(Archetype(archetype), {}))
    return selectors


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


def detect_archetype(html: str) -> Archetype:
    """First CMS family with at least one keyword hit; ``generic`` otherwise."""
    lowered = html.lower()
    for archetype, keywords in CMS_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return archetype
    return Archetype.GENERIC


def _selector_present(soup: BeautifulSoup, selector: str) -> bool:
    try:
        return soup.select_one(selector) is not None
    except SelectorSyntaxError:
        return False


def _pagination_type(hint: str) -> PaginationType:
    lowered = hint.lower()
    if "load" in lowered or "more" in lowered:
        return PaginationType.LOAD_MORE
    if "next" in lowered or "prev" in lowered:
        return PaginationType.NEXT_PREV
    return PaginationType.NUMBERED


class SiteStructureAnalyzer:
    """Heuristic analysis of one listing page. Stateless; safe to share across requests."""

    def analyze(
        self,
        url: str,
        html: str,
        content_analysis: ContentPatternAnalysis | None = None,
    ) -> SiteAnalysisResult:
        html = html or ""
        archetype = detect_archetype(html)
        tree = parse_html(html)
        soup = BeautifulSoup(html, "html.parser")

        pagination = self.detect_pagination(html, tree, soup)
        patterns = self.detect_patterns(html, tree, soup)
        if pagination.detected and pagination.selector:
            patterns.append(DetectedPattern(PatternType.PAGINATION, pagination.selector, pagination.confidence))
        containers = self.identify_list_containers(tree, content_analysis)
        areas = self.identify_content_areas(tree)

        content_conf = content_analysis.confidence if content_analysis is not None else None
        confidence = aggregate_confidence(patterns, containers, pagination, content_conf)
        rate_limit = rate_limit_hint(archetype, confidence)

        logger.info(
            "Site analyzed: url=%s archetype=%s patterns=%d containers=%d pagination=%s confidence=%.2f",
            url,
            archetype,
            len(patterns),
            len(containers),
            pagination.detected,
            confidence,
        )
        return SiteAnalysisResult(
            url=url,
            archetype=archetype,
            patterns=tuple(patterns),
            list_containers=tuple(containers),
            pagination=pagination,
            content_areas=tuple(areas),
            confidence=confidence,
            rate_limit_ms=rate_limit,
            signals=summarize_html(html),
        )

    # -- patterns -----------------------------------------------------

    def detect_patterns(self, html: str, tree: DomTree, soup: BeautifulSoup) -> list[DetectedPattern]:
        patterns: list[DetectedPattern] = []

        # (a) list tags
        for tag in ("ul", "ol"):
            nodes = tree.by_tag(tag)
            if nodes:
                patterns.append(
                    DetectedPattern(PatternType.LIST, tag, _CONF_LIST_TAG, tuple(n.path for n in nodes[:3]))
                )

        # (b) known list-like classes, raw markup or tree match
        for selector in LIST_PATTERN_SELECTORS:
            if selector in html or _selector_present(soup, selector):
                patterns.append(DetectedPattern(PatternType.LIST, selector, _CONF_LIST_CLASS))

        # (c) tables with a body or at least two rows
        for table in tree.by_tag("table"):
            rows = [d for d in tree.descendants(table) if d.tag == "tr"]
            has_body = any(c.tag == "tbody" for c in tree.children_of(table))
            if has_body or len(rows) >= 2:
                patterns.append(DetectedPattern(PatternType.TABLE, table.path, _CONF_TABLE))

        # (d) repeated card-like classes; repeated <article> elements
        for token in _CARD_TOKENS:
            matches = tree.with_class_substring(token)
            if len(matches) >= 2:
                patterns.append(
                    DetectedPattern(PatternType.CARD, f".{token}", _CONF_CARD, tuple(n.path for n in matches[:3]))
                )
        articles = tree.by_tag("article")
        if len(articles) >= 2:
            patterns.append(
                DetectedPattern(PatternType.ARTICLE, "article", _CONF_CARD, tuple(n.path for n in articles[:3]))
            )

        # (e) navigation
        for nav in tree.by_tag("nav"):
            patterns.append(DetectedPattern(PatternType.NAVIGATION, nav.path, _CONF_NAV))

        return patterns

    # -- containers ---------------------------------------------------

    def identify_list_containers(
        self,
        tree: DomTree,
        content_analysis: ContentPatternAnalysis | None = None,
    ) -> list[ListContainer]:
        candidates: list[ListContainer] = []
        if content_analysis is not None and content_analysis.list_containers:
            candidates.extend(content_analysis.list_containers)
            logger.debug("Using %d content-confirmed list containers", len(content_analysis.list_containers))

        for node in tree:
            children = tree.children_of(node)
            if len(children) < 2:
                continue
            if node.tag in ("ul", "ol") or _CONTAINER_CLASS_TOKENS.intersection(node.classes):
                candidates.append(self._container(node, children, _CONF_LIST_CONTAINER))
            elif node.tag == "div" and len({c.tag for c in children}) <= 2:
                candidates.append(self._container(node, children, _CONF_GROUP_CONTAINER))

        seen: set[str] = set()
        unique: list[ListContainer] = []
        for c in candidates:
            if c.selector in seen:
                continue
            seen.add(c.selector)
            unique.append(c)
        unique.sort(key=lambda c: c.confidence, reverse=True)  # stable: ties keep document order
        return unique[:_MAX_CONTAINERS]

    @staticmethod
    def _container(node: DomNode, children: list[DomNode], confidence: float) -> ListContainer:
        return ListContainer(
            selector=node.path,
            item_count=len(children),
            confidence=confidence,
            sample_items=tuple(c.path for c in children[:3]),
            exclude_selectors=EXCLUDE_SELECTORS,
        )

    # -- pagination ---------------------------------------------------

    def detect_pagination(self, html: str, tree: DomTree, soup: BeautifulSoup) -> PaginationInfo:
        for selector in PAGINATION_SELECTORS:
            if selector in html or _selector_present(soup, selector):
                return PaginationInfo(True, selector, _pagination_type(selector), _CONF_PAGINATION_FRAGMENT)

        for node in tree:
            cls = node.class_name.lower()
            if any(tok in cls for tok in _PAGINATION_CLASS_TOKENS):
                return PaginationInfo(True, node.path, _pagination_type(cls), _CONF_PAGINATION_WALK)
            if node.tag in _PAGINATION_TEXT_TAGS and 0 < len(node.text) <= _PAGINATION_TEXT_MAX:
                text = node.text.lower()
                if any(re.search(rf"\b{tok}\b", text) for tok in _PAGINATION_TEXT_TOKENS):
                    return PaginationInfo(True, node.path, _pagination_type(text), _CONF_PAGINATION_WALK)

        return PaginationInfo(False, None, None, 0.0)

    # -- content areas ------------------------------------------------

    def identify_content_areas(self, tree: DomTree) -> list[ContentArea]:
        areas: list[ContentArea] = []
        for tag, area_type, confidence in _CONTENT_AREAS:
            if tree.by_tag(tag):
                areas.append(ContentArea(area_type, tag, confidence))
        return areas


def aggregate_confidence(
    patterns: list[DetectedPattern],
    containers: list[ListContainer],
    pagination: PaginationInfo,
    content_confidence: float | None = None,
) -> float:
    """0.2 base + patterns·0.3 + containers·0.4 + pagination·0.1 + content·0.2, capped at 1."""
    avg_pattern = sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.3
    avg_container = sum(c.confidence for c in containers) / len(containers) if containers else 0.2
    content = content_confidence if content_confidence is not None else 0.4
    confidence = 0.2 + avg_pattern * 0.3 + avg_container * 0.4 + pagination.confidence * 0.1 + content * 0.2
    return min(confidence, 1.0)


def rate_limit_hint(archetype: Archetype, confidence: float) -> int:
    delay = BASE_RATE_LIMIT_MS * _RATE_LIMIT_MULTIPLIER.get(archetype, 1.0)
    if confidence < _LOW_CONFIDENCE:
        delay *= _UNCERTAINTY_MULTIPLIER
    return round(delay)
