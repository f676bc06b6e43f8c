# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Prompt templates for plan synthesis.

Phase 1 (listing page, JSON), phase 2 (detail pages, JSON), and the looser
``LABEL: value`` line format used with small local models.
"""

from __future__ import annotations

from collections.abc import Sequence

SYSTEM_MESSAGE = (
    "You are an expert web scraping engineer. Generate precise CSS selectors and scraping plans. "
    "Always respond with valid JSON format."
)
LINE_SYSTEM_MESSAGE = "You are an expert web scraping engineer. Generate precise CSS selectors and scraping plans."

DETAIL_FIELDS: tuple[str, ...] = ("title", "description", "dates", "address", "phone", "email", "website", "images")

# Line labels understood by parse_line_response, in prompt order
LINE_LABELS: dict[str, str] = {
    "LIST_SELECTOR": "CSS selector for content items",
    "PAGINATION_SELECTOR": "CSS selector for pagination",
    "COOKIE_CONSENT_SELECTOR": "CSS selector for cookie save/accept button",
    "TITLE_SELECTOR": "CSS selector for the item title",
    "DESCRIPTION_SELECTOR": "CSS selector for the item description",
    "DATE_SELECTOR": "CSS selector for dates",
    "IMAGE_SELECTOR": "CSS selector for images",
    "CONFIDENCE": "confidence score 0.0-1.0",
    "REASONING": "explanation of selector choices",
}


def _header(url: str, archetype: str, pattern_tags: Sequence[str], complexity: str) -> str:
    return (
        f"URL: {url}\n"
        f"Archetype: {archetype}\n"
        f"Detected Patterns: {', '.join(pattern_tags) or 'none'}\n"
        f"Complexity: {complexity}\n"
    )


def main_page_prompt(url: str, archetype: str, pattern_tags: Sequence[str], complexity: str, html: str) -> str:
    return f"""Analyze this website's main page and generate a JSON scraping plan for list and pagination:

{_header(url, archetype, pattern_tags, complexity)}
HTML Structure:
{html}

Generate a JSON response with this structure:
{{
  "plan": {{
    "listSelector": "CSS selector for list items",
    "paginationSelector": "CSS selector for pagination (optional)",
    "rateLimitMs": 1000
  }},
  "cookieConsent": {{
    "saveButtonSelector": "CSS selector for cookie save/accept button (optional)"
  }},
  "confidence": 0.85,
  "reasoning": "Explanation of selector choices and confidence",
  "humanReadableDoc": "Human-readable documentation of the plan"
}}

Focus on:
1. Finding the main container that holds multiple content items
2. Identifying pagination controls (next/previous buttons, page numbers)
3. Detecting cookie consent save/accept buttons
4. Precise CSS selectors that target the right elements
5. Handling of German/English multilingual content
6. Robust selectors that work across similar pages
7. Confidence based on selector specificity and structure clarity
"""


def content_page_prompt(url: str, archetype: str, pattern_tags: Sequence[str], complexity: str, html: str) -> str:
    fields = ",\n".join(f'    "{name}": "CSS selector for {name}"' for name in DETAIL_FIELDS)
    return f"""Analyze these content pages and generate detail selectors for data extraction:

{_header(url, archetype, pattern_tags, complexity)}
HTML Structure:
{html}

Generate a JSON response with this structure:
{{
  "detailSelectors": {{
{fields}
  }},
  "confidence": 0.85,
  "reasoning": "Explanation of selector choices and confidence",
  "humanReadableDoc": "Human-readable documentation of the selectors"
}}

Focus on:
1. Finding specific data fields within the content
2. Precise CSS selectors that target individual data elements
3. Handling of German/English multilingual content
4. Robust selectors that work across similar content pages
5. Confidence based on selector specificity and structure clarity
"""


def line_format_prompt(url: str, archetype: str, pattern_tags: Sequence[str], complexity: str, html: str) -> str:
    labels = "\n".join(f"{label}: [{desc}]" for label, desc in LINE_LABELS.items())
    return f"""You are a web scraping expert. Analyze this website's main page and create CSS selectors.

Website: {url}
CMS Type: {archetype}
Patterns Found: {', '.join(pattern_tags) or 'none'}
Complexity: {complexity}

HTML Structure (compressed):
{html}

Respond in this format, one line per label; write None when a label does not apply:
{labels}

Focus on:
- Finding the main container that holds multiple content items
- Identifying pagination controls (next/previous buttons, page numbers)
- Avoiding navigation, header, and footer elements
- Selectors that work across similar pages
"""
