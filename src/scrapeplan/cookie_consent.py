# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie-consent *detection* for plan metadata.

No clicking happens here; the runner that executes a plan decides what to
do with the banner.  Detection needs both a consent keyword and a banner
pattern, so an imprint page that merely mentions "Datenschutz" is not
flagged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .models import CookieConsentInfo

# ---------------------------------------------------------------------------
# Signal tables
# ---------------------------------------------------------------------------

CONSENT_KEYWORDS: tuple[str, ...] = ("cookie", "consent", "zustimmen", "akzeptieren", "datenschutz")

_BANNER_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"cookie.*banner", re.IGNORECASE),
    re.compile(r"consent.*dialog", re.IGNORECASE),
    re.compile(r"cookie.*notice", re.IGNORECASE),
    re.compile(r"privacy.*notice", re.IGNORECASE),
    re.compile(r"gdpr.*consent", re.IGNORECASE),
)


@dataclass(frozen=True, slots=True)
class ConsentLibrary:
    name: str
    markers: tuple[str, ...]
    accept_selector: str | None = None


# Checked in order; first marker hit wins.
CONSENT_LIBRARIES: tuple[ConsentLibrary, ...] = (
    ConsentLibrary(
        "Cookiebot",
        ("cookiebot", "cookieconsent.renew", "cookieconsent"),
        "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
    ),
    ConsentLibrary("OneTrust", ("onetrust", "optanon", "optanonconsent"), "#onetrust-accept-btn-handler"),
    ConsentLibrary("CookieYes", ("cookieyes", "cky-"), ".cky-btn-accept"),
    ConsentLibrary("Borlabs", ("borlabs-cookie", "borlabscookie"), "a._brlbs-btn-accept-all"),
    ConsentLibrary("CookieLawInfo", ("cookie-law-info", "clisettings"), "#cookie_action_close_header"),
    ConsentLibrary("Cookie Notice", ("cookie-notice", "cookienotice"), "#cn-accept-cookie"),
)


def detect_consent_library(html: str) -> ConsentLibrary | None:
    lowered = html.lower()
    for library in CONSENT_LIBRARIES:
        if any(marker in lowered for marker in library.markers):
            return library
    return None


def has_consent_banner(html: str) -> bool:
    lowered = html.lower()
    if not any(kw in lowered for kw in CONSENT_KEYWORDS):
        return False
    return any(p.search(html) for p in _BANNER_RES)


def detect_cookie_consent(html: str, save_button_selector: str | None = None) -> CookieConsentInfo:
    """Consent metadata for *html*.

    *save_button_selector* (typically proposed by the LLM) wins over the
    library's well-known accept button.
    """
    if not html:
        return CookieConsentInfo(save_button_selector=save_button_selector or None)
    library = detect_consent_library(html)
    detected = has_consent_banner(html) or library is not None
    selector = save_button_selector or (library.accept_selector if library else None)
    return CookieConsentInfo(
        detected=detected,
        library=library.name if library else None,
        save_button_selector=selector or None,
    )
