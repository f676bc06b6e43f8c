# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTML compression for LLM prompts.

Three passes:
  1. Strip: remove script/style/meta/link/noscript and comments (BeautifulSoup),
     collapse whitespace and inter-tag gaps.
  2. Focus: keep main/article/section and content-like ``div`` blocks; when none
     exist, drop header/footer/nav/aside from the remainder instead.
  3. Truncate: hard cut at a character budget with an ellipsis marker.
     Detail pages get a tighter budget than listing pages.

Token counting (tiktoken, cl100k_base) is only used for the optional hard
prompt cap; the cheap ``estimate_tokens`` heuristic covers everything else.
"""

from __future__ import annotations

import functools
import logging
import math
import re
from dataclasses import dataclass

import tiktoken
from bs4 import BeautifulSoup, Comment

logger = logging.getLogger(__name__)

MAIN_PAGE_BUDGET = 15000
DETAIL_PAGE_BUDGET = 8000
TRUNCATION_MARKER = "..."

_STRIP_TAGS = ("script", "style", "link", "meta", "noscript")

_WS_RE = re.compile(r"\s+")
_TAG_GAP_RE = re.compile(r">\s+<")

# Pre-compiled content-focus patterns (order = concatenation order)
_CONTENT_BLOCK_RES = (
    re.compile(r"<main\b[\s\S]*?</main>", re.IGNORECASE),
    re.compile(r"<article\b[\s\S]*?</article>", re.IGNORECASE),
    re.compile(r"<section\b[\s\S]*?</section>", re.IGNORECASE),
    re.compile(
        r"<div[^>]*class=[\"'][^\"']*(?:content|main|list|items|news|articles|posts|teaser|container)"
        r"[^\"']*[\"'][^>]*>[\s\S]*?</div>",
        re.IGNORECASE,
    ),
)
_CHROME_RES = tuple(
    re.compile(rf"<{tag}\b[\s\S]*?</{tag}>", re.IGNORECASE) for tag in ("header", "footer", "nav", "aside")
)


@dataclass(frozen=True, slots=True)
class CompressionResult:
    html: str
    original_length: int
    focused: bool  # content blocks were found and used
    truncated: bool

    @property
    def compressed_length(self) -> int:
        return len(self.html)

    @property
    def ratio(self) -> float:
        if self.original_length == 0:
            return 1.0
        return round(self.compressed_length / self.original_length, 3)


def strip_noise(html: str) -> str:
    """Pass 1: drop non-content tags and comments, collapse whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(list(_STRIP_TAGS)):
        tag.decompose()
    for comment in soup.find_all(string=lambda t: isinstance(t, Comment)):
        comment.extract()
    text = _WS_RE.sub(" ", str(soup))
    return _TAG_GAP_RE.sub("><", text).strip()


def focus_content(html: str) -> tuple[str, bool]:
    """Pass 2: return (focused html, whether content blocks were found)."""
    blocks: list[str] = []
    for pattern in _CONTENT_BLOCK_RES:
        blocks.extend(pattern.findall(html))
    if blocks:
        return "\n".join(blocks), True
    remainder = html
    for pattern in _CHROME_RES:
        remainder = pattern.sub("", remainder)
    return remainder, False


def truncate(text: str, budget: int) -> tuple[str, bool]:
    """Pass 3: hard cut at *budget* chars, appending the ellipsis marker."""
    if budget <= 0 or len(text) <= budget:
        return text, False
    return text[:budget] + TRUNCATION_MARKER, True


def compress_html(html: str, budget: int = MAIN_PAGE_BUDGET) -> CompressionResult:
    """Run all three passes. Empty input yields an empty result."""
    original = len(html or "")
    if not html or not html.strip():
        return CompressionResult(html="", original_length=original, focused=False, truncated=False)
    stripped = strip_noise(html)
    focused_html, focused = focus_content(stripped)
    final, truncated = truncate(focused_html, budget)
    logger.debug(
        "HTML compressed: %d -> %d chars (focused=%s, truncated=%s)",
        original,
        len(final),
        focused,
        truncated,
    )
    return CompressionResult(html=final, original_length=original, focused=focused, truncated=truncated)


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: ~4 chars per token."""
    return math.ceil(len(text) / 4)


@functools.lru_cache(maxsize=1)
def _get_encoder() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Exact cl100k_base token count."""
    return len(_get_encoder().encode(text))


def truncate_to_token_limit(text: str, max_tokens: int) -> str:
    """Cut *text* to at most *max_tokens* cl100k_base tokens."""
    enc = _get_encoder()
    tokens = enc.encode(text)
    if len(tokens) <= max_tokens:
        return text
    return enc.decode(tokens[:max_tokens])
