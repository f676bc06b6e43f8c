"""Tests for example-page content-pattern analysis."""

import asyncio

import pytest

from scrapeplan.content_patterns import (
    NAVIGATION_SELECTORS,
    ExampleContentAnalyzer,
    check_plan_against_content,
    css_path,
    examples_from_pages,
    trim_to_main_content,
)
from scrapeplan.errors import NavigationError
from scrapeplan.models import ContentPatternAnalysis, ListContainer
from scrapeplan.static_session import StaticSession
from tests._plan_helpers import DETAIL_HTML, DETAIL_URL, LISTING_HTML, make_plan

SECOND_URL = "https://events.example.com/e/2"
SECOND_HTML = """
<html><body><nav>Menu</nav>
  <article>
    <h1 class="event-title">Jazz am Abend</h1>
    <p class="event-desc">Live-Jazz mit regionalen Bands.</p>
  </article>
</body></html>
"""


class RecordingFetcher:
    def __init__(self, pages):
        self.pages = pages
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if url not in self.pages:
            raise NavigationError(f"net::ERR_NAME_NOT_RESOLVED at {url}", url=url)
        return self.pages[url]


# ── analyze ────────────────────────────────────────────────────────


class TestAnalyze:
    async def test_common_selectors_and_confidence(self):
        fetcher = RecordingFetcher({DETAIL_URL: DETAIL_HTML, SECOND_URL: SECOND_HTML})
        analysis = await ExampleContentAnalyzer(fetcher).analyze([DETAIL_URL, SECOND_URL, "https://gone.test/x"])
        assert analysis.content_selectors["title"] == "h1.event-title"
        assert analysis.content_selectors["description"] == "p.event-desc"
        assert "https://gone.test/x" in analysis.failures
        assert len(analysis.examples) == 2
        assert analysis.confidence == pytest.approx(0.5 * 2 / 3 + 0.5)
        assert analysis.exclude_selectors == NAVIGATION_SELECTORS

    async def test_failures_do_not_abort_batch(self):
        fetcher = RecordingFetcher({DETAIL_URL: DETAIL_HTML})
        analysis = await ExampleContentAnalyzer(fetcher, batch_size=2).analyze(
            ["https://a.test/1", DETAIL_URL, "https://a.test/2"]
        )
        assert [e.url for e in analysis.examples] == [DETAIL_URL]
        assert set(analysis.failures) == {"https://a.test/1", "https://a.test/2"}

    async def test_batches_bound_concurrency(self):
        pages = {f"https://a.test/{i}": DETAIL_HTML for i in range(7)}
        fetcher = RecordingFetcher(pages)
        await ExampleContentAnalyzer(fetcher, batch_size=3).analyze(list(pages))
        assert fetcher.max_in_flight <= 3

    async def test_all_failed(self):
        analysis = await ExampleContentAnalyzer(RecordingFetcher({})).analyze(["https://a.test/1"])
        assert analysis.confidence == 0.0
        assert analysis.content_selectors == {}

    async def test_empty_urls_rejected(self):
        with pytest.raises(ValueError, match="Content URLs are required"):
            await ExampleContentAnalyzer(RecordingFetcher({})).analyze(["", ""])

    def test_batch_size_validated(self):
        with pytest.raises(ValueError):
            ExampleContentAnalyzer(RecordingFetcher({}), batch_size=0)

    async def test_static_session_is_a_fetcher(self):
        session = StaticSession({DETAIL_URL: DETAIL_HTML})
        analysis = await ExampleContentAnalyzer(session).analyze([DETAIL_URL])
        assert analysis.examples[0].title == "Sommerfest im Park"


# ── list containers ────────────────────────────────────────────────


class TestFindListContainers:
    async def test_container_holding_example_teasers(self):
        fetcher = RecordingFetcher({DETAIL_URL: DETAIL_HTML, SECOND_URL: SECOND_HTML})
        analyzer = ExampleContentAnalyzer(fetcher)
        analysis = await analyzer.analyze([DETAIL_URL, SECOND_URL])
        containers = analyzer.find_list_containers(LISTING_HTML, analysis)
        assert len(containers) == 1
        assert containers[0].selector == "html > body > main > div.event-list"
        assert containers[0].item_count == 3
        assert containers[0].confidence == 0.85
        assert containers[0].source == "content"

    def test_needs_two_titles(self):
        examples = tuple(examples_from_pages({DETAIL_URL: DETAIL_HTML}))
        analysis = ContentPatternAnalysis(confidence=1.0, examples=examples)
        assert ExampleContentAnalyzer(RecordingFetcher({})).find_list_containers(LISTING_HTML, analysis) == []


# ── helpers ────────────────────────────────────────────────────────


class TestHelpers:
    def test_trim_drops_chrome(self):
        trimmed = trim_to_main_content(SECOND_HTML)
        assert "Menu" not in trimmed
        assert "Jazz am Abend" in trimmed

    def test_css_path(self):
        from bs4 import BeautifulSoup

        soup = BeautifulSoup('<div class="a b" id="x"><span>t</span></div>', "html.parser")
        assert css_path(soup.span) == "div.a#x > span"

    def test_examples_from_pages_skips_empty(self):
        examples = examples_from_pages({DETAIL_URL: DETAIL_HTML, "https://a.test/empty": ""})
        assert [e.url for e in examples] == [DETAIL_URL]
        assert examples[0].description.startswith("Ein Fest")


# ── offline plan check ─────────────────────────────────────────────


class TestCheckPlan:
    ANALYSIS = ContentPatternAnalysis(
        confidence=0.9,
        list_containers=(ListContainer("div.event-list > article", 3, 0.85),),
        content_selectors={"title": "h1.event-title", "description": "p.event-desc"},
    )

    def test_exact_match_valid(self):
        plan = make_plan(
            list_selector="div.event-list > article",
            detail_selectors={"title": "h1.event-title", "description": "p.event-desc"},
        )
        check = check_plan_against_content(plan, self.ANALYSIS)
        assert check.valid
        assert check.confidence == 1.0
        assert check.issues == ()

    def test_generic_selectors_half_credit(self):
        plan = make_plan(list_selector="article", detail_selectors={"title": "h2", "description": ".summary"})
        check = check_plan_against_content(plan, self.ANALYSIS)
        assert check.confidence == pytest.approx(0.4 + 0.5 * 0.6)
        assert check.valid

    def test_mismatch_floor(self):
        plan = make_plan(list_selector="span.nothing", detail_selectors={"title": "#weird"})
        check = check_plan_against_content(plan, self.ANALYSIS)
        assert check.confidence == 0.3
        assert not check.valid
        assert len(check.issues) == 2
