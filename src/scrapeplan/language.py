# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-locale lexicons for language inference.

Two consumers:
  * DataNormalizer: infers ``language`` for items that lack one, by whole-word
    function-word counts plus a diacritic bonus.
  * SiteStructureAnalyzer: a URL hint (TLD / keyword) for plan metadata.

Built-in locales: de, en.  Additional locales are registered at runtime with
``DEFAULT_REGISTRY.register(LanguageLexicon(...))``; nothing else changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

DEFAULT_LANGUAGE = "en"

_WORD_RE = re.compile(r"[^\W\d_]+", re.UNICODE)


@dataclass(frozen=True, slots=True)
class LanguageLexicon:
    """Detection data for one locale."""

    code: str
    function_words: frozenset[str]
    diacritics: str = ""
    diacritic_weight: int = 3
    tlds: tuple[str, ...] = ()
    url_keywords: tuple[str, ...] = ()
    accept_language: str = ""

    def score(self, words: list[str], lowered: str) -> int:
        hits = sum(1 for w in words if w in self.function_words)
        if self.diacritics:
            hits += self.diacritic_weight * sum(lowered.count(ch) for ch in self.diacritics)
        return hits


GERMAN = LanguageLexicon(
    code="de",
    function_words=frozenset(
        "der die das und ist mit für von auf zu im am über nach bei durch".split()
    ),
    diacritics="äöüß",
    tlds=(".de",),
    url_keywords=("german",),
    accept_language="de-DE,de;q=0.9,en;q=0.8",
)

ENGLISH = LanguageLexicon(
    code="en",
    function_words=frozenset("the and is with for from on to in at over after by through".split()),
    accept_language="en-US,en;q=0.9",
)


@dataclass(slots=True)
class LexiconRegistry:
    """Ordered collection of lexicons. Registration order breaks URL-hint ties."""

    _lexicons: dict[str, LanguageLexicon] = field(default_factory=dict)
    default: str = DEFAULT_LANGUAGE

    def register(self, lexicon: LanguageLexicon) -> None:
        self._lexicons[lexicon.code] = lexicon

    def get(self, code: str) -> LanguageLexicon | None:
        return self._lexicons.get(code)

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(self._lexicons)

    def is_supported(self, code: str) -> bool:
        return code in self._lexicons

    def detect(self, text: str) -> str | None:
        """Best-scoring locale for *text*; ties and zero signal return None."""
        if not text:
            return None
        lowered = text.lower()
        words = _WORD_RE.findall(lowered)
        scores = {code: lex.score(words, lowered) for code, lex in self._lexicons.items()}
        if not scores:
            return None
        best = max(scores.values())
        if best <= 0:
            return None
        winners = [code for code, s in scores.items() if s == best]
        return winners[0] if len(winners) == 1 else None

    def hint_for_url(self, url: str) -> str:
        """TLD or URL keyword hint; falls back to the registry default."""
        lowered = url.lower()
        host = urlparse(lowered).hostname or ""
        for lex in self._lexicons.values():
            if any(host.endswith(tld) for tld in lex.tlds):
                return lex.code
            if any(kw in lowered for kw in lex.url_keywords):
                return lex.code
        return self.default

    def accept_language(self, code: str) -> str:
        lex = self._lexicons.get(code) or self._lexicons.get(self.default)
        return lex.accept_language if lex and lex.accept_language else "en-US,en;q=0.9"


def _build_default_registry() -> LexiconRegistry:
    registry = LexiconRegistry()
    registry.register(GERMAN)
    registry.register(ENGLISH)
    return registry


DEFAULT_REGISTRY = _build_default_registry()


def detect_language(text: str, registry: LexiconRegistry | None = None) -> str | None:
    return (registry or DEFAULT_REGISTRY).detect(text)


def language_hint_for_url(url: str, registry: LexiconRegistry | None = None) -> str:
    return (registry or DEFAULT_REGISTRY).hint_for_url(url)
