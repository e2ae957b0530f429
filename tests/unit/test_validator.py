import pytest

from classintake.models.submission import ClassFormat, ClassTopic
from classintake.schemas.submission import ClassRowIn
from classintake.services.normalizer import normalize_row
from classintake.services.validator import (
    BatchSizeError,
    looks_like_email,
    validate_batch_size,
    validate_record,
)

VALID_ROW = {
    "submitted_by_name": "Jo Maker",
    "submitted_by_email": "jo@example.com",
    "class_title": "Intro to Tooling",
    "cost": "$25",
    "format": "In-Person",
    "location_city": "Denver",
    "location_state": "CO",
    "start_date": "03/14/2026",
    "topics": "Tooling",
}


def _record(**overrides):
    return normalize_row(ClassRowIn.model_validate({**VALID_ROW, **overrides}))


def test_valid_record_has_no_errors():
    assert validate_record(_record()) == {}


@pytest.mark.parametrize(
    ("row_key", "error_key"),
    [
        ("submitted_by_name", "submitted_by_name"),
        ("submitted_by_email", "submitted_by_email"),
        ("class_title", "class_title"),
        ("cost", "cost"),
        ("format", "format"),
        ("location_city", "location_city"),
        ("location_state", "location_state"),
        ("start_date", "start_date"),
        ("topics", "topic"),
    ],
)
def test_each_missing_required_field_is_reported(row_key, error_key):
    errors = validate_record(_record(**{row_key: "  "}))
    assert errors == {error_key: "is required."}


def test_all_missing_fields_reported_together():
    errors = validate_record(_record(class_title="", cost="", location_city=""))
    assert set(errors) == {"class_title", "cost", "location_city"}


def test_missing_format_and_topic_are_reported():
    errors = validate_record(_record(format="", topics="  "))
    assert errors == {"format": "is required.", "topic": "is required."}


def test_unrecognized_format_and_topic_fall_back_without_error():
    record = _record(format="carrier pigeon", topics="basket weaving")
    assert validate_record(record) == {}
    assert record.format == ClassFormat.IN_PERSON
    assert record.topic == ClassTopic.BEGINNER


@pytest.mark.parametrize("email", ["jo", "jo@example", "jo @example.com", "@example.com", "jo@.com x"])
def test_bad_email_rejected(email):
    assert validate_record(_record(submitted_by_email=email)) == {
        "submitted_by_email": "must be a valid email address."
    }


def test_looks_like_email():
    assert looks_like_email("a.b+c@d.co")
    assert not looks_like_email("")


def test_unparseable_date_rejected():
    errors = validate_record(_record(start_date="whenever"))
    assert list(errors) == ["start_date"]
    assert "must be a date" in errors["start_date"]


def test_non_http_class_url_rejected():
    assert validate_record(_record(registration_url="javascript:alert(1)")) == {
        "class_url": "must be an http(s) URL."
    }
    assert validate_record(_record(registration_url="https://example.com/class")) == {}


def test_batch_size_bounds():
    validate_batch_size(1)
    validate_batch_size(100)
    with pytest.raises(BatchSizeError):
        validate_batch_size(0)
    with pytest.raises(BatchSizeError, match="at most 100"):
        validate_batch_size(101)
    with pytest.raises(BatchSizeError):
        validate_batch_size(11, max_rows=10)
