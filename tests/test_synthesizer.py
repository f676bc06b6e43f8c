"""Tests for two-phase selector synthesis and its provider fallback chain."""

import json

import pytest

from scrapeplan.config import Settings
from scrapeplan.errors import ProviderUnavailableError
from scrapeplan.llm import ResponseFormat
from scrapeplan.llm.providers import OllamaProvider, OpenAIChatProvider
from scrapeplan.models import ComplianceFlags, ContentExample, PlanSource
from scrapeplan.site_analyzer import SiteStructureAnalyzer, default_selectors_for
from scrapeplan.synthesizer import SelectorSynthesizer, heuristic_plan
from tests._plan_helpers import DETAIL_HTML, DETAIL_URL, LISTING_HTML, LISTING_URL, ScriptedProvider

MAIN_RESPONSE = json.dumps(
    {
        "plan": {"listSelector": "article.event-card", "paginationSelector": ".pagination a.next", "rateLimitMs": 500},
        "cookieConsent": {"saveButtonSelector": "#cookie-accept"},
        "confidence": 0.9,
        "reasoning": "Event cards repeat inside .event-list",
    }
)

DETAIL_RESPONSE = json.dumps(
    {
        "detailSelectors": {"title": "h1.event-title", "description": "p.event-desc", "dates": "time"},
        "confidence": 0.8,
        "reasoning": "Detail article layout",
    }
)

LINE_RESPONSE = """LIST_SELECTOR: article.event-card
PAGINATION_SELECTOR: .pagination a.next
TITLE_SELECTOR: h2.event-title
CONFIDENCE: 0.7
REASONING: repeated cards
"""


def token_limit_error():
    return ProviderUnavailableError("maximum context length exceeded", provider="openai", token_limit=True)


@pytest.fixture
def analysis():
    return SiteStructureAnalyzer().analyze(LISTING_URL, LISTING_HTML)


# ── Phase 1 ────────────────────────────────────────────────────────


class TestPhaseOne:
    async def test_primary_success(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE)
        secondary = ScriptedProvider("ollama")
        result = await SelectorSynthesizer(primary, secondary).synthesize(LISTING_URL, LISTING_HTML, analysis)

        plan = result.plan
        assert result.stage == PlanSource.LLM_PRIMARY
        assert plan.metadata.created_by == PlanSource.LLM_PRIMARY
        assert plan.list_selector == "article.event-card"
        assert plan.pagination_selector == ".pagination a.next"
        assert plan.detail_selectors == default_selectors_for(analysis.archetype)
        assert plan.rate_limit_ms == max(500, analysis.rate_limit_ms)
        assert plan.confidence_score == result.breakdown.final
        assert plan.plan_id.startswith("plan-events-example-com-")
        assert plan.entry_urls == (LISTING_URL,)
        assert plan.metadata.domain == "events.example.com"
        assert plan.metadata.cookie_consent.save_button_selector == "#cookie-accept"
        assert plan.metadata.ai_response["provider"] == "openai"
        assert plan.metadata.ai_response["tokens_used"] == 42
        assert result.failures == ()
        assert secondary.requests == []

    async def test_primary_request(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE)
        await SelectorSynthesizer(primary).synthesize(LISTING_URL, LISTING_HTML, analysis)
        (request,) = primary.requests
        assert request.format == ResponseFormat.JSON
        assert request.method == "main-page"
        assert request.context == {"url": LISTING_URL, "step": "phase-1"}
        assert "article" in request.prompt
        assert "<script" not in request.prompt

    async def test_token_limit_falls_back_to_secondary(self, analysis):
        primary = ScriptedProvider("openai", token_limit_error())
        secondary = ScriptedProvider("ollama", LINE_RESPONSE)
        result = await SelectorSynthesizer(primary, secondary).synthesize(LISTING_URL, LISTING_HTML, analysis)

        assert result.stage == PlanSource.LLM_SECONDARY
        assert result.plan.confidence_score > 0
        assert result.plan.detail_selectors
        assert result.plan.detail_selectors["title"] == "h2.event-title"
        assert [f.stage for f in result.failures] == ["llm-primary"]
        assert result.warnings[0].startswith("llm-primary: maximum context length")
        (request,) = secondary.requests
        assert request.format == ResponseFormat.TEXT
        assert request.provider_override == "ollama"
        assert "LIST_SELECTOR: [" in request.prompt

    async def test_all_providers_fail(self, analysis):
        primary = ScriptedProvider("openai", ProviderUnavailableError("HTTP 500"))
        secondary = ScriptedProvider("ollama", ProviderUnavailableError("connection refused"))
        result = await SelectorSynthesizer(primary, secondary).synthesize(LISTING_URL, LISTING_HTML, analysis)

        plan = result.plan
        assert result.stage == PlanSource.HEURISTIC
        assert plan.metadata.created_by == "heuristic-fallback"
        assert plan.confidence_score == 0.5
        assert result.breakdown is None
        assert plan.list_selector == heuristic_plan(analysis.signals.pattern_tags).list_selector
        assert plan.detail_selectors["title"]
        assert "## Notes" in result.human_readable_doc
        assert len(result.failures) == 2

    async def test_no_providers(self, analysis):
        result = await SelectorSynthesizer(None).synthesize(LISTING_URL, LISTING_HTML, analysis)
        assert result.stage == PlanSource.HEURISTIC
        assert result.failures == ()
        assert "model" not in result.plan.metadata.ai_response

    async def test_secondary_only(self, analysis):
        secondary = ScriptedProvider("ollama", LINE_RESPONSE)
        result = await SelectorSynthesizer(None, secondary).synthesize(LISTING_URL, LISTING_HTML, analysis)
        assert result.stage == PlanSource.LLM_SECONDARY
        assert result.failures == ()
        assert result.plan.list_selector == "article.event-card"
        (request,) = secondary.requests
        assert request.provider_override == "ollama"

    async def test_reconstructed_response_is_flagged(self, analysis):
        primary = ScriptedProvider("openai", "Sorry, I can only describe the page in prose.")
        result = await SelectorSynthesizer(primary).synthesize(LISTING_URL, LISTING_HTML, analysis)
        assert result.stage == PlanSource.LLM_PRIMARY
        assert result.plan.metadata.ai_response["reconstructed"] is True
        assert result.plan.list_selector == "article, .item, .entry, .content"

    async def test_rendered_doc(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE)
        result = await SelectorSynthesizer(primary).synthesize(LISTING_URL, LISTING_HTML, analysis)
        doc = result.human_readable_doc
        assert doc.startswith("# Scraping Plan")
        assert "- **Source**: llm-primary (fake-model)" in doc
        assert "- **List Selector**: article.event-card" in doc
        assert doc == result.plan.metadata.human_readable_doc

    async def test_compliance_passed_through(self, analysis):
        flags = ComplianceFlags(robots_allowed=False, notes=("manual review",))
        result = await SelectorSynthesizer(None).synthesize(LISTING_URL, LISTING_HTML, analysis, compliance=flags)
        assert result.plan.metadata.compliance == flags

    async def test_tracker_records_every_call(self, analysis):
        primary = ScriptedProvider("openai", token_limit_error())
        secondary = ScriptedProvider("ollama", LINE_RESPONSE)
        synthesizer = SelectorSynthesizer(primary, secondary)
        await synthesizer.synthesize(LISTING_URL, LISTING_HTML, analysis)
        summary = synthesizer.tracker.summary()
        assert summary["total_requests"] == 2
        assert summary["provider_breakdown"] == {"openai": 1, "ollama": 1}


# ── Phase 2 ────────────────────────────────────────────────────────


class TestPhaseTwo:
    async def test_detail_selectors_from_content_pages(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE, DETAIL_RESPONSE)
        result = await SelectorSynthesizer(primary).synthesize(
            LISTING_URL, LISTING_HTML, analysis, content_pages={DETAIL_URL: DETAIL_HTML}
        )
        assert result.detail_stage == "llm-primary"
        assert result.plan.detail_selectors == {
            "title": "h1.event-title",
            "description": "p.event-desc",
            "dates": "time",
        }
        assert result.plan.metadata.ai_response["detail_stage"] == "llm-primary"
        detail_request = primary.requests[1]
        assert detail_request.method == "content-page"
        assert detail_request.context["step"] == "phase-2"
        assert f"<!-- Page 1: {DETAIL_URL} -->" in detail_request.prompt

    async def test_accepts_content_examples(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE, DETAIL_RESPONSE)
        examples = [ContentExample(url=DETAIL_URL, html=DETAIL_HTML)]
        result = await SelectorSynthesizer(primary).synthesize(
            LISTING_URL, LISTING_HTML, analysis, content_pages=examples
        )
        assert result.plan.detail_selectors["title"] == "h1.event-title"

    async def test_at_most_three_pages(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE, DETAIL_RESPONSE)
        pages = {f"https://events.example.com/e/{i}": DETAIL_HTML for i in range(1, 6)}
        pages["https://events.example.com/e/empty"] = "   "
        await SelectorSynthesizer(primary).synthesize(LISTING_URL, LISTING_HTML, analysis, content_pages=pages)
        prompt = primary.requests[1].prompt
        assert "<!-- Page 3:" in prompt
        assert "<!-- Page 4:" not in prompt

    async def test_detail_falls_back_to_secondary(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE, token_limit_error())
        secondary = ScriptedProvider("ollama", DETAIL_RESPONSE)
        result = await SelectorSynthesizer(primary, secondary).synthesize(
            LISTING_URL, LISTING_HTML, analysis, content_pages={DETAIL_URL: DETAIL_HTML}
        )
        assert result.stage == PlanSource.LLM_PRIMARY
        assert result.detail_stage == "llm-secondary"
        assert result.plan.detail_selectors["title"] == "h1.event-title"
        assert secondary.requests[0].max_tokens == 2000

    async def test_detail_failure_keeps_listing_selectors(self, analysis):
        primary = ScriptedProvider("openai", MAIN_RESPONSE, ProviderUnavailableError("HTTP 503"))
        result = await SelectorSynthesizer(primary).synthesize(
            LISTING_URL, LISTING_HTML, analysis, content_pages={DETAIL_URL: DETAIL_HTML}
        )
        assert result.detail_stage == "keep-listing-selectors"
        assert result.plan.detail_selectors == default_selectors_for(analysis.archetype)
        assert "detail selectors reconstructed (keep-listing-selectors)" in result.warnings

    async def test_heuristic_plan_skips_detail_phase(self, analysis):
        primary = ScriptedProvider("openai", ProviderUnavailableError("down"))
        result = await SelectorSynthesizer(primary).synthesize(
            LISTING_URL, LISTING_HTML, analysis, content_pages={DETAIL_URL: DETAIL_HTML}
        )
        assert result.stage == PlanSource.HEURISTIC
        assert result.detail_stage is None
        assert len(primary.requests) == 1


# ── Heuristic plan ─────────────────────────────────────────────────


class TestHeuristicPlan:
    @pytest.mark.parametrize(
        ("tags", "list_selector"),
        [
            (("list-structure", "card-layout"), 'li, article, .item, .entry, [class*="item"]'),
            (("card-layout",), '.card, [class*="card"], article, .item'),
            (("table-structure",), "tr, tbody tr"),
            ((), "article"),
        ],
    )
    def test_list_selector(self, tags, list_selector):
        assert heuristic_plan(tags).list_selector == list_selector

    def test_optional_parts(self):
        bare = heuristic_plan(())
        assert bare.pagination_selector is None
        assert "dates" not in bare.detail_selectors
        full = heuristic_plan(("pagination", "date-content"))
        assert full.pagination_selector
        assert "dates" in full.detail_selectors
        assert full.confidence == 0.5
        assert full.rate_limit_ms == 2000

    def test_reasoning_names_patterns(self):
        assert "Detected patterns: none" in heuristic_plan(()).reasoning


def test_from_settings():
    synthesizer = SelectorSynthesizer.from_settings(Settings())
    assert isinstance(synthesizer.primary, OpenAIChatProvider)
    assert isinstance(synthesizer.secondary, OllamaProvider)
