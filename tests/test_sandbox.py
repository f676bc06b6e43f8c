"""Tests for sandboxed plan validation (PlanValidator over the static driver)."""

import asyncio

import pytest

from scrapeplan.browser import ElementBox
from scrapeplan.config import SandboxConfig
from scrapeplan.models import Impact, IssueKind
from scrapeplan.normalizer import DataNormalizer
from scrapeplan.sandbox import (
    ANNOTATION_COLORS,
    FAILURE_MESSAGE,
    FAILURE_RECOMMENDATION,
    HighlightKind,
    PlanValidator,
    SandboxState,
    data_quality,
    highlight_confidence,
)
from scrapeplan.static_session import StaticDriver, StaticSession
from tests._plan_helpers import DETAIL_URL, LISTING_URL, PAGES, make_plan

HAPPY_PATH = (
    SandboxState.CREATED,
    SandboxState.PRECONDITIONS_CHECKED,
    SandboxState.CONTEXT_ACQUIRED,
    SandboxState.EXECUTING,
    SandboxState.SUCCESS,
    SandboxState.CLEANED_UP,
)


class NoSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class SlowSession(StaticSession):
    async def count(self, selector):
        await asyncio.sleep(5)
        return 0


class BrokenSession(StaticSession):
    async def extract(self, request):
        raise RuntimeError("renderer crashed")

    async def close(self):
        raise RuntimeError("close failed")


class RenderingSession(StaticSession):
    """Static session with fake layout boxes and screenshots."""

    async def element_boxes(self, selector, *, limit, kind=None):
        boxes = [
            ElementBox(10, 20, 300, 80, "article", True, "Sommerfest im Park" if kind else ""),
            ElementBox(0, 0, 0, 0, "div", False),
        ]
        return boxes[:limit]

    async def screenshot(self):
        return b"\x89PNG"


class CustomDriver(StaticDriver):
    def __init__(self, pages, session_cls):
        super().__init__(pages)
        self.session_cls = session_cls

    async def open_session(self, config):
        session = self.session_cls(self.pages, config)
        self.sessions.append(session)
        return session


class SlowStartDriver(StaticDriver):
    async def open_session(self, config):
        await asyncio.sleep(5)
        return await super().open_session(config)


class BrokenNormalizer(DataNormalizer):
    def normalize_batch(self, items, base_url=None):
        raise RuntimeError("normalizer crashed")


@pytest.fixture
def validator(static_driver):
    return PlanValidator(static_driver, sleep=NoSleep())


# ── Happy path ─────────────────────────────────────────────────────


class TestValidate:
    async def test_success(self, validator, static_driver, plan):
        result = await validator.validate(plan)

        assert result.success
        assert result.plan_id == plan.plan_id
        assert result.state_history == HAPPY_PATH
        assert result.final_state == SandboxState.CLEANED_UP
        assert result.execution_confidence == 1.0
        assert len(result.extracted_samples) == 3
        assert result.errors == []
        assert result.report.schema_compliance == 1.0
        assert result.report.data_quality == pytest.approx(0.4)
        assert result.report.extraction_accuracy == pytest.approx(0.7)
        assert result.confidence == pytest.approx(0.6 * 1.0 + 0.4 * 0.7)
        assert result.error_kind is None
        assert static_driver.sessions[0].closed

    async def test_samples_are_tagged(self, validator, plan):
        result = await validator.validate(plan)
        sample = result.to_dict()["extractedSamples"][0]
        assert sample["title"] == "Sommerfest im Park"
        assert sample["dates"] == ["2025-07-12"]
        assert sample["images"] == ["https://events.example.com/img/fest.jpg"]
        assert sample["url"] == LISTING_URL

    async def test_language_warnings_reported(self, validator, plan):
        result = await validator.validate(plan)
        warnings = [i for i in result.report.issues if i.kind == IssueKind.WARNING]
        assert warnings
        assert all(w.impact == Impact.LOW for w in warnings)
        assert "Language auto-detected as 'de'" in {w.message for w in warnings}

    async def test_low_quality_recommendation(self, validator, plan):
        result = await validator.validate(plan)
        assert result.report.recommendations == ("Review data extraction patterns to improve quality",)

    async def test_metrics(self, validator, plan):
        result = await validator.validate(plan)
        assert result.metrics.network_requests == 1
        assert {"session", "navigation", "extraction", "cleanup"} <= set(result.metrics.stage_ms)
        assert result.to_dict()["performanceMetrics"]["networkRequests"] == 1

    async def test_to_dict_is_camel_case(self, validator, plan):
        data = (await validator.validate(plan)).to_dict()
        assert data["planId"] == plan.plan_id
        assert data["stateHistory"][-1] == "cleaned-up"
        assert set(data["validationReport"]) == {
            "schemaCompliance",
            "dataQuality",
            "extractionAccuracy",
            "issues",
            "recommendations",
        }
        assert data["timeoutReport"] is None

    async def test_missing_pagination_is_an_error(self, validator):
        result = await validator.validate(make_plan(pagination_selector=".pager .next"))
        assert not result.success
        assert result.errors == ['Pagination selector ".pager .next" found no elements']
        issue = next(i for i in result.report.issues if "Pagination selector" in i.message)
        assert issue.impact == Impact.MEDIUM
        assert result.state_history[-2] == SandboxState.FAILED
        assert result.final_state == SandboxState.CLEANED_UP

    async def test_items_without_title_or_description_skipped(self, validator):
        plan = make_plan(detail_selectors={"dates": ".event-date"})
        result = await validator.validate(plan)
        assert result.extracted_samples == []
        assert not result.success


# ── Failures ───────────────────────────────────────────────────────


class TestFailures:
    async def test_zero_list_matches(self, validator, static_driver):
        result = await validator.validate(make_plan(list_selector="ul.nothing"))
        assert not result.success
        assert result.execution_confidence == pytest.approx(0.1)
        assert result.errors == ['List selector "ul.nothing" found no elements']
        assert result.highlights == ()
        messages = {i.message: i for i in result.report.issues}
        assert messages["No data was extracted"].impact == Impact.HIGH
        assert messages['List selector "ul.nothing" found no elements'].impact == Impact.HIGH
        assert result.final_state == SandboxState.CLEANED_UP
        assert static_driver.sessions[0].closed

    async def test_invalid_list_selector(self, validator):
        result = await validator.validate(make_plan(list_selector="article[["))
        assert not result.success
        assert result.errors == ['List selector "article[[" found no elements']

    async def test_navigation_retried_then_reported(self, static_driver):
        sleep = NoSleep()
        validator = PlanValidator(static_driver, sleep=sleep)
        result = await validator.validate(make_plan(entry_urls=("https://events.example.com/missing",)))
        assert not result.success
        assert result.execution_confidence == 0.0
        assert "ERR_NAME_NOT_RESOLVED" in result.errors[0]
        assert sleep.calls == [1.0, 2.0]
        assert static_driver.sessions[0].network_requests == 3

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"entry_urls": ()}, "at least one entry URL"),
            ({"list_selector": "   "}, "list selector"),
        ],
    )
    async def test_preconditions(self, validator, static_driver, overrides, message):
        result = await validator.validate(make_plan(**overrides))
        assert not result.success
        assert result.confidence == 0.0
        assert message in result.errors[0]
        assert result.state_history == (SandboxState.CREATED, SandboxState.FAILED, SandboxState.CLEANED_UP)
        assert result.report.issues[0].message == FAILURE_MESSAGE
        assert result.report.recommendations == (FAILURE_RECOMMENDATION,)
        assert static_driver.sessions == []

    async def test_domain_not_allowed(self, static_driver, plan):
        validator = PlanValidator(static_driver, SandboxConfig(allowed_domains=("other.test",)))
        result = await validator.validate(plan)
        assert not result.success
        assert "events.example.com is not allowed" in result.errors[0]
        assert static_driver.sessions == []

    async def test_timeout(self, plan):
        driver = CustomDriver(PAGES, SlowSession)
        validator = PlanValidator(driver, SandboxConfig(timeout_ms=50))
        result = await validator.validate(plan)
        assert not result.success
        assert result.error_kind == "TIMEOUT"
        assert result.errors == ["Sandbox execution timeout after 50ms"]
        assert result.timeout_report["timed_out_at"] == "extraction"
        assert result.final_state == SandboxState.CLEANED_UP
        assert driver.sessions[0].closed

    async def test_unexpected_error_and_failed_cleanup(self, plan):
        driver = CustomDriver(PAGES, BrokenSession)
        result = await PlanValidator(driver).validate(plan)
        assert not result.success
        assert result.errors == ["RuntimeError: renderer crashed"]
        assert result.state_history[-2:] == (SandboxState.FAILED, SandboxState.CLEANED_UP)

    async def test_cancellation_propagates(self, plan):
        driver = CustomDriver(PAGES, SlowSession)
        task = asyncio.create_task(PlanValidator(driver).validate(plan))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert driver.sessions[0].closed

    async def test_slow_session_start_is_bounded(self, plan):
        driver = SlowStartDriver(PAGES)
        result = await PlanValidator(driver, SandboxConfig(timeout_ms=50)).validate(plan)
        assert result.error_kind == "TIMEOUT"
        assert result.timeout_report["timed_out_at"] == "session"
        assert SandboxState.CONTEXT_ACQUIRED not in result.state_history
        assert result.final_state == SandboxState.CLEANED_UP
        assert driver.sessions == []

    async def test_report_failure_is_reported(self, static_driver, plan):
        validator = PlanValidator(static_driver, normalizer=BrokenNormalizer(), sleep=NoSleep())
        result = await validator.validate(plan)
        assert not result.success
        assert result.confidence == 0.0
        assert result.errors == ["RuntimeError: normalizer crashed"]
        assert result.report.issues[0].message == FAILURE_MESSAGE
        assert result.state_history[-2:] == (SandboxState.FAILED, SandboxState.CLEANED_UP)
        assert static_driver.sessions[0].closed

    async def test_out_of_range_page_date(self, plan):
        stamp = "0001-01-01T00:00:00+01:00"
        listing = PAGES[LISTING_URL].replace("2025-07-12", stamp).replace("12.07.2025", stamp)
        validator = PlanValidator(StaticDriver({**PAGES, LISTING_URL: listing}), sleep=NoSleep())
        result = await validator.validate(plan)
        assert result.final_state == SandboxState.CLEANED_UP
        assert len(result.extracted_samples) == 3
        assert result.report.schema_compliance == pytest.approx(2 / 3)
        assert f'Invalid date format: "{stamp}"' in {i.message for i in result.report.issues}


# ── Cross-validation ───────────────────────────────────────────────


class TestCrossValidation:
    async def test_example_urls(self, validator, plan):
        missing = "https://events.example.com/missing"
        result = await validator.validate(plan, [DETAIL_URL, missing])

        cross = result.cross_validation
        detail, failed = cross.probes
        # title, description, dates match; list, images, pagination do not
        assert (detail.matched, detail.probed) == (3, 6)
        assert detail.success
        assert detail.confidence == pytest.approx(0.3)
        assert not failed.success
        assert cross.average_confidence == pytest.approx(0.15)
        assert result.execution_confidence == pytest.approx(0.15)
        messages = {i.message: i for i in result.report.issues}
        assert messages[f"Failed to test content URL: {missing}"].impact == Impact.LOW
        assert "Consider updating selectors to work better with content page variations" in (
            result.report.recommendations
        )

    async def test_probe_failure_warns(self, static_driver):
        validator = PlanValidator(static_driver)
        plan = make_plan(detail_selectors={"images": ".event-img"}, pagination_selector=None)
        session = await static_driver.open_session(validator.config)
        probe = await validator.probe_url(plan, DETAIL_URL, session)
        assert not probe.success
        assert (probe.matched, probe.probed) == (0, 2)

        cross = await validator.cross_validate(plan, [DETAIL_URL], session)
        assert cross.issues[0].message == f"Selectors may not work on content page: {DETAIL_URL}"
        assert cross.issues[0].kind == IssueKind.WARNING

    async def test_example_urls_capped(self, static_driver, plan):
        validator = PlanValidator(static_driver, SandboxConfig(max_example_urls=1))
        result = await validator.validate(plan, [DETAIL_URL, DETAIL_URL, DETAIL_URL])
        assert len(result.cross_validation.probes) == 1


# ── Diagnostics ────────────────────────────────────────────────────


class TestDiagnostics:
    async def test_highlights(self, plan):
        driver = CustomDriver(PAGES, RenderingSession)
        result = await PlanValidator(driver).validate(plan, exclude_selectors=("nav",))
        kinds = [h.element_type for h in result.highlights]
        assert kinds.count(HighlightKind.LIST_CONTAINER) == 1
        assert kinds.count(HighlightKind.LIST_ITEM) == 1
        assert kinds.count(HighlightKind.DETAIL_FIELD) == 4
        assert kinds.count(HighlightKind.PAGINATION) == 1
        assert kinds.count(HighlightKind.EXCLUDED) == 1
        item = next(h for h in result.highlights if h.element_type == HighlightKind.LIST_ITEM)
        assert item.value_preview == "Sommerfest im Park"
        assert item.confidence == 1.0
        container = result.highlights[0]
        assert container.value_preview is None
        assert container.box == (10, 20, 300, 80)
        assert result.to_dict()["domHighlights"][0]["coordinates"] == {"x": 10, "y": 20, "width": 300, "height": 80}

    async def test_highlighting_disabled(self, plan):
        driver = CustomDriver(PAGES, RenderingSession)
        result = await PlanValidator(driver, SandboxConfig(enable_highlighting=False)).validate(plan)
        assert result.highlights == ()

    async def test_screenshot(self, plan):
        driver = CustomDriver(PAGES, RenderingSession)
        config = SandboxConfig(enable_screenshots=True)
        result = await PlanValidator(driver, config).validate(plan, exclude_selectors=("nav",))
        (shot,) = result.screenshots
        assert shot.url == plan.entry_urls[0]
        assert shot.image_base64 == "data:image/png;base64,iVBORw=="
        labels = [a.label for a in shot.annotations]
        assert labels[0] == "List Container"
        assert "Pagination" in labels
        assert "Excluded (nav)" in labels
        assert shot.annotations[0].color == ANNOTATION_COLORS[HighlightKind.LIST_CONTAINER]

    async def test_screenshot_unavailable(self, validator, plan):
        session = StaticSession(PAGES)
        assert await validator.capture_screenshot(plan, session) is None

    async def test_diagnostics_never_change_plan(self, plan):
        driver = CustomDriver(PAGES, RenderingSession)
        before = plan.detail_selectors.copy()
        await PlanValidator(driver, SandboxConfig(enable_screenshots=True)).validate(plan)
        assert plan.detail_selectors == before


# ── Pure helpers ───────────────────────────────────────────────────


class TestHelpers:
    @pytest.mark.parametrize(
        ("box", "has_value", "expected"),
        [
            (ElementBox(0, 0, 300, 80, "article"), True, 1.0),
            (ElementBox(0, 0, 300, 80, "div"), False, 0.7),
            (ElementBox(0, 0, 30, 10, "span"), False, 0.5),
            (ElementBox(0, 0, 30, 10, "main"), True, 0.8),
        ],
    )
    def test_highlight_confidence(self, box, has_value, expected):
        assert highlight_confidence(box, has_value) == expected

    def test_data_quality(self):
        assert data_quality([]) == 0.0
        assert data_quality([{"title": "A", "description": "B"}]) == pytest.approx(0.4)
        full = {
            "title": "A",
            "description": "B",
            "place": "P",
            "address": "X",
            "email": "a@b.de",
            "phone": "1",
            "website": "https://a",
            "startDate": "2025-01-01",
        }
        assert data_quality([full]) == 1.0
        assert data_quality([{"title": " ", "description": "B"}]) == pytest.approx(0.2)

    def test_build_report_empty(self, validator):
        report = validator.build_report([])
        assert report.errors[0].message == "No data was extracted"
        assert report.recommendations == (
            "Improve selector accuracy to increase schema compliance",
            "Review data extraction patterns to improve quality",
        )

