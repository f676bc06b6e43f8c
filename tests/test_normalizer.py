"""Tests for item normalization, validation and quality scoring."""

import pytest

from scrapeplan.config import QualityWeights
from scrapeplan.fields import DateValue, ImageRef, TextValue, UrlValue
from scrapeplan.normalizer import DataNormalizer, is_absolute_url

BASE = "https://events.example.com/veranstaltungen"


@pytest.fixture
def normalizer():
    return DataNormalizer()


def item(**fields):
    values = {"title": "Sommerfest", "description": "Ein Fest im Park", "language": "de"}
    values.update(fields)
    return values


def messages(issues):
    return [i.message for i in issues]


# ── Required fields and language ───────────────────────────────────


class TestRequired:
    def test_valid(self, normalizer):
        result = normalizer.normalize(item())
        assert result.is_valid
        assert result.errors == ()
        assert result.normalized_item["language"] == "de"

    @pytest.mark.parametrize("name", ["title", "description"])
    @pytest.mark.parametrize("value", [None, "", "   ", []])
    def test_missing(self, normalizer, name, value):
        result = normalizer.normalize(item(**{name: value}))
        assert not result.is_valid
        assert f"Required field '{name}' is missing or empty" in messages(result.errors)
        assert result.normalized_item is None

    def test_undetectable_language_is_single_error(self, normalizer):
        result = normalizer.normalize({"title": "Event", "description": "desc"})
        assert not result.is_valid
        assert len(result.errors) == 1
        assert result.errors[0].field == "language"
        assert result.errors[0].message == "Language not specified and could not be auto-detected"

    def test_language_detected(self, normalizer):
        result = normalizer.normalize({"title": "Sommerfest", "description": "Musik für die ganze Familie"})
        assert result.is_valid
        assert result.normalized_item["language"] == "de"
        assert "Language auto-detected as 'de'" in messages(result.warnings)

    def test_language_lowercased(self, normalizer):
        assert normalizer.normalize(item(language=" EN ")).normalized_item["language"] == "en"

    def test_unsupported_language(self, normalizer):
        result = normalizer.normalize(item(language="fr"))
        assert messages(result.errors) == ["Invalid language code: 'fr'. Must be 'de' or 'en'"]

    @pytest.mark.parametrize(
        ("title", "warning"),
        [("ab", "Title is very short (<3 characters)"), ("x" * 501, "Title is very long (>500 characters)")],
    )
    def test_title_length_warnings(self, normalizer, title, warning):
        result = normalizer.normalize(item(title=title))
        assert result.is_valid
        assert warning in messages(result.warnings)

    def test_long_description_warns(self, normalizer):
        result = normalizer.normalize(item(description="y" * 5001))
        assert "Description is very long (>5000 characters)" in messages(result.warnings)


# ── Dates ──────────────────────────────────────────────────────────


class TestDates:
    def test_day_first(self, normalizer):
        result = normalizer.normalize(item(dates="25.12.2024"))
        assert result.normalized_item["dates"] == ["2024-12-25T00:00:00.000Z"]

    def test_scalar_date_fields_stay_scalar(self, normalizer):
        result = normalizer.normalize(item(startDate="2025-07-12", endDate="July 13, 2025"))
        out = result.normalized_item
        assert out["startDate"] == "2025-07-12T00:00:00.000Z"
        assert out["endDate"] == "2025-07-13T00:00:00.000Z"

    def test_list_of_dates(self, normalizer):
        result = normalizer.normalize(item(dates=["12.07.2025", "", "2025-08-01"]))
        assert result.normalized_item["dates"] == ["2025-07-12T00:00:00.000Z", "2025-08-01T00:00:00.000Z"]

    def test_invalid_date_is_error(self, normalizer):
        result = normalizer.normalize(item(startDate="someday"))
        assert not result.is_valid
        assert messages(result.errors) == ['Invalid date format: "someday"']

    @pytest.mark.parametrize("raw", ["01.01.0999", "0999-01-01"])
    def test_early_year_is_zero_padded(self, normalizer, raw):
        first = normalizer.normalize(item(startDate=raw)).normalized_item
        assert first["startDate"] == "0999-01-01T00:00:00.000Z"
        second = normalizer.normalize(first)
        assert second.is_valid
        assert second.normalized_item == first

    @pytest.mark.parametrize("raw", ["0001-01-01T00:00:00+01:00", "9999-12-31T23:00:00-05:00"])
    def test_out_of_range_offset_is_invalid_date(self, normalizer, raw):
        result = normalizer.normalize(item(startDate=raw))
        assert not result.is_valid
        assert messages(result.errors) == [f'Invalid date format: "{raw}"']

    def test_unrealistic_date_warns(self, normalizer):
        result = normalizer.normalize(item(startDate="2300-01-01"))
        assert result.is_valid
        assert "Date seems unrealistic: 2300-01-01T00:00:00.000Z" in messages(result.warnings)

    def test_start_after_end(self, normalizer):
        result = normalizer.normalize(item(startDate="2025-08-01", endDate="2025-07-01"))
        assert "Start date is after end date" in messages(result.warnings)
        assert result.quality.consistency == 0.0

    def test_empty_dates_dropped(self, normalizer):
        result = normalizer.normalize(item(dates=[]))
        assert "dates" not in result.normalized_item


# ── URLs and images ────────────────────────────────────────────────


class TestUrls:
    def test_relative_image_resolved(self, normalizer):
        result = normalizer.normalize(item(images=["/img/a.jpg", "https://cdn.test/b.png"]), BASE)
        assert result.normalized_item["images"] == ["https://events.example.com/img/a.jpg", "https://cdn.test/b.png"]

    def test_relative_image_without_base(self, normalizer):
        result = normalizer.normalize(item(images=["/img/a.jpg"]))
        assert result.is_valid
        assert "images" not in result.normalized_item
        assert messages(result.warnings) == [
            'Cannot convert relative URL to absolute: "/img/a.jpg" (no base URL provided)'
        ]

    def test_single_image_field_becomes_list(self, normalizer):
        result = normalizer.normalize(item(images="https://cdn.test/b.png"))
        assert result.normalized_item["images"] == ["https://cdn.test/b.png"]

    def test_website_gets_scheme(self, normalizer):
        result = normalizer.normalize(item(website="www.sommerfest.de"))
        assert result.normalized_item["website"] == "https://www.sommerfest.de"

    def test_invalid_website_kept_with_warning(self, normalizer):
        result = normalizer.normalize(item(website="not a url"))
        assert result.normalized_item["website"] == "not a url"
        assert 'Invalid website URL: "not a url"' in messages(result.warnings)

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("https://a.test/x", True), ("/x", False), ("https://a.test/x y", False), ("mailto:a@b.de", False)],
    )
    def test_is_absolute_url(self, value, expected):
        assert is_absolute_url(value) is expected


# ── Contact and numbers ────────────────────────────────────────────


class TestContactAndNumbers:
    def test_email_lowercased(self, normalizer):
        assert normalizer.normalize(item(email=" Info@Fest.DE ")).normalized_item["email"] == "info@fest.de"

    def test_invalid_email_warns(self, normalizer):
        result = normalizer.normalize(item(email="info(at)fest"))
        assert result.is_valid
        assert 'Invalid email format: "info(at)fest"' in messages(result.warnings)

    def test_phone_cleaned(self, normalizer):
        assert normalizer.normalize(item(phone="+49 (30) 123-4567")).normalized_item["phone"] == "49301234567"

    def test_invalid_phone_warns(self, normalizer):
        result = normalizer.normalize(item(phone="call us"))
        assert result.normalized_item["phone"] == "call us"
        assert 'Phone number format may be invalid: "call us"' in messages(result.warnings)

    @pytest.mark.parametrize(
        ("fields", "warning"),
        [
            ({"longitude": 200}, "Invalid longitude value: 200"),
            ({"latitude": -91}, "Invalid latitude value: -91"),
            ({"price": -5}, "Invalid price value: -5"),
            ({"zipcode": 123456}, "Invalid zipcode value: 123456"),
            ({"price": 10, "discountPrice": 12}, "Discount price is higher than regular price"),
        ],
    )
    def test_number_warnings(self, normalizer, fields, warning):
        result = normalizer.normalize(item(**fields))
        assert result.is_valid
        assert warning in messages(result.warnings)


# ── Tagged values ──────────────────────────────────────────────────


class TestTagged:
    def test_tag_decides_handling(self, normalizer):
        tagged = {
            "title": TextValue("  Jazz am Abend "),
            "description": TextValue("Live-Jazz mit Bands"),
            "language": "de",
            "link": UrlValue("/e/2"),
            "when": DateValue("01.08.2025"),
            "poster": [ImageRef("/img/jazz.jpg")],
        }
        out = normalizer.normalize(tagged, BASE).normalized_item
        assert out["title"] == "Jazz am Abend"
        assert out["link"] == "https://events.example.com/e/2"
        assert out["when"] == "2025-08-01T00:00:00.000Z"
        assert out["poster"] == ["https://events.example.com/img/jazz.jpg"]


# ── Idempotence ────────────────────────────────────────────────────


def test_idempotent(normalizer):
    raw = item(
        title="  Sommerfest  ",
        dates=["12.07.2025"],
        startDate="July 12, 2025",
        images=["/img/a.jpg"],
        website="sommerfest.de",
        email="INFO@FEST.DE",
        phone="+49 30 1234567",
    )
    first = normalizer.normalize(raw, BASE).normalized_item
    second = normalizer.normalize(first, BASE).normalized_item
    assert second == first


# ── Quality and batches ────────────────────────────────────────────


class TestQuality:
    def test_richer_item_scores_higher(self, normalizer):
        bare = normalizer.normalize(item())
        rich = normalizer.normalize(
            item(place="Park", address="Hauptstr. 1", startDate="2025-07-12", website="https://fest.de"), BASE
        )
        assert 0.0 < bare.quality_score < rich.quality_score <= 1.0

    def test_accuracy_without_checks(self, normalizer):
        assert normalizer.normalize(item()).quality.accuracy == 1.0

    def test_custom_weights(self):
        normalizer = DataNormalizer(weights=QualityWeights(completeness=0.0, accuracy=1.0, consistency=0.0))
        assert normalizer.normalize(item()).quality_score == 1.0

    def test_batch_statistics(self, normalizer):
        results = normalizer.normalize_batch([item(), item(title="Jazz"), {"title": "Event", "description": "desc"}])
        stats = normalizer.batch_statistics(results)
        assert (stats.total_items, stats.valid_items, stats.invalid_items) == (3, 2, 1)
        expected = round(sum(r.quality_score for r in results) / 3, 2)
        assert stats.average_quality_score == expected
        assert stats.common_errors == [("Language not specified and could not be auto-detected", 1)]

    def test_empty_batch(self, normalizer):
        stats = normalizer.batch_statistics([])
        assert stats.total_items == 0
        assert stats.average_quality_score == 0.0
