"""Tests for cookie-consent detection metadata."""

import pytest

from scrapeplan.cookie_consent import detect_consent_library, detect_cookie_consent, has_consent_banner


class TestBanner:
    def test_keyword_and_pattern_required(self):
        assert has_consent_banner('<div class="cookie-banner">Wir nutzen Cookies</div>')

    def test_keyword_alone_is_not_a_banner(self):
        assert not has_consent_banner("<footer><a href='/datenschutz'>Datenschutz</a></footer>")

    def test_no_keyword(self):
        assert not has_consent_banner('<div class="legal-notice">Hinweis</div>')


class TestLibraries:
    @pytest.mark.parametrize(
        ("html", "name"),
        [
            ('<script id="Cookiebot" src="https://consent.cookiebot.com/uc.js"></script>', "Cookiebot"),
            ('<div id="onetrust-banner-sdk"></div>', "OneTrust"),
            ('<div class="cky-consent-container"></div>', "CookieYes"),
            ('<div id="BorlabsCookieBox"></div>', "Borlabs"),
            ('<div id="cookie-law-info-bar"></div>', "CookieLawInfo"),
            ('<div id="cookie-notice"></div>', "Cookie Notice"),
        ],
    )
    def test_detect_library(self, html, name):
        assert detect_consent_library(html).name == name

    def test_none(self):
        assert detect_consent_library("<p>plain</p>") is None


class TestDetectCookieConsent:
    def test_library_default_selector(self):
        info = detect_cookie_consent('<div id="onetrust-banner-sdk"></div>')
        assert info.detected
        assert info.library == "OneTrust"
        assert info.save_button_selector == "#onetrust-accept-btn-handler"

    def test_proposed_selector_wins(self):
        info = detect_cookie_consent('<div id="onetrust-banner-sdk"></div>', "button.accept-all")
        assert info.save_button_selector == "button.accept-all"

    def test_banner_and_library(self):
        info = detect_cookie_consent('<div class="cookie-notice-bar">Cookie Hinweis</div>')
        assert info.detected
        assert info.library == "Cookie Notice"

    def test_custom_banner(self):
        info = detect_cookie_consent('<div class="gdpr-consent-box">Bitte zustimmen</div>')
        assert info.detected
        assert info.library is None
        assert info.save_button_selector is None

    def test_empty_html(self):
        info = detect_cookie_consent("", "")
        assert not info.detected
        assert info.save_button_selector is None

    def test_nothing_found(self):
        assert not detect_cookie_consent("<p>Hallo</p>").detected
