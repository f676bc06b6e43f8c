# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import scrapeplan  # noqa: F401
except ImportError:
    raise ImportError("scrapeplan is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from scrapeplan.logging_config import clear_run_context
from scrapeplan.static_session import StaticDriver
from tests._plan_helpers import PAGES, make_plan


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real Chromium launches in unit tests.

    Tests that mock Playwright patch ``scrapeplan.browser_session.async_playwright``
    explicitly; that patch takes priority over this fixture.  Tests that forget
    get a clear error instead of silently launching Chromium.  Opt out with::

        @pytest.mark.allow_real_browser
    """
    if "allow_real_browser" in request.keywords:
        return

    def _no_real_playwright():
        raise RuntimeError(
            "Test tried to launch a real browser. Use StaticDriver or patch "
            "'scrapeplan.browser_session.async_playwright' in your test."
        )

    monkeypatch.setattr("scrapeplan.browser_session.async_playwright", _no_real_playwright)


@pytest.fixture(autouse=True)
def _reset_log_context():
    yield
    clear_run_context()


@pytest.fixture
def plan():
    return make_plan()


@pytest.fixture
def static_driver():
    return StaticDriver(PAGES)
