"""Tests for per-session LLM usage tracking."""

import json

import pytest

from scrapeplan.errors import ProviderUnavailableError
from scrapeplan.llm import LLMRequest, ResponseFormat
from scrapeplan.llm.tracker import LLMUsageTracker, tracked_generate
from tests._plan_helpers import ScriptedProvider


def request(**kw):
    values = {
        "prompt": "Analyze this page",
        "system_message": "You are a scraping expert",
        "format": ResponseFormat.JSON,
        "service": "SelectorSynthesizer",
        "method": "synthesize",
        "context": {"url": "https://a.test", "step": "main-page"},
    }
    values.update(kw)
    return LLMRequest(**values)


class TestTracker:
    async def test_success_recorded(self):
        tracker = LLMUsageTracker("s1")
        provider = ScriptedProvider("openai", '{"ok": true}')
        response = await tracked_generate(tracker, provider, request())
        assert response.content == '{"ok": true}'
        (interaction,) = tracker.interactions
        assert interaction.request.provider == "openai"
        assert interaction.request.format == "json"
        assert interaction.response.success
        assert interaction.response.tokens_used == 42
        assert interaction.context["step"] == "main-page"

    async def test_failure_recorded_and_reraised(self):
        tracker = LLMUsageTracker()
        provider = ScriptedProvider("ollama", ProviderUnavailableError("down", provider="ollama"))
        with pytest.raises(ProviderUnavailableError):
            await tracked_generate(tracker, provider, request())
        (interaction,) = tracker.interactions
        assert not interaction.response.success
        assert interaction.response.error == "down"

    async def test_summary(self):
        tracker = LLMUsageTracker("s2")
        await tracked_generate(tracker, ScriptedProvider("openai", "a"), request())
        with pytest.raises(ProviderUnavailableError):
            await tracked_generate(tracker, ScriptedProvider("ollama", ProviderUnavailableError("x")), request())
        s = tracker.summary()
        assert s["total_requests"] == 2
        assert s["total_tokens"] == 42
        assert s["success_rate"] == 50.0
        assert s["provider_breakdown"] == {"openai": 1, "ollama": 1}
        assert s["service_breakdown"] == {"SelectorSynthesizer": 2}

    def test_sessions_are_isolated(self):
        a, b = LLMUsageTracker("a"), LLMUsageTracker("b")
        a.track_request(request(), provider="p", model="m")
        assert b.interactions == []

    def test_reset(self):
        tracker = LLMUsageTracker("a")
        tracker.track_request(request(), provider="p", model="m")
        tracker.reset("b")
        assert tracker.session_id == "b"
        assert tracker.interactions == []

    def test_unknown_request_id_ignored(self):
        tracker = LLMUsageTracker()
        tracker.track_response("req-missing", success=True, duration_ms=1)
        tracker.add_context("req-missing", url="x")
        assert tracker.interactions == []

    async def test_reports(self):
        tracker = LLMUsageTracker("s3")
        await tracked_generate(tracker, ScriptedProvider("openai", "content-body"), request())
        data = json.loads(tracker.to_json())
        assert data["summary"]["total_requests"] == 1
        assert data["interactions"][0]["response"]["content"] == "content-body"
        md = tracker.markdown_report()
        assert "# LLM Interaction Report" in md
        assert "**Url:** https://a.test" in md
        assert "content-body" in md
