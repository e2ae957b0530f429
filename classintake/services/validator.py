import re
from urllib.parse import urlparse

from classintake.models.submission import IntakeRecord

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED = "is required."

MIN_BATCH_ROWS = 1
DEFAULT_MAX_BATCH_ROWS = 100


class BatchSizeError(Exception):
    pass


def looks_like_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match((value or "").strip()))


def _required_text(record: IntakeRecord) -> dict[str, str]:
    return {
        "submitted_by_name": record.submitted_by_name,
        "submitted_by_email": record.submitted_by_email,
        "class_title": record.class_title,
        "cost": record.cost,
        "location_city": record.location_city,
        "location_state": record.location_state,
        "start_date": record.start_date_raw,
    }


def validate_record(record: IntakeRecord) -> dict[str, str]:
    """
    Check one normalized record. Returns {field: message}; empty means valid.

    Every check runs, so a record with several problems reports all of them.
    """
    errors: dict[str, str] = {}

    for name, value in _required_text(record).items():
        if not value or not value.strip():
            errors[name] = REQUIRED

    if "submitted_by_email" not in errors and not looks_like_email(record.submitted_by_email):
        errors["submitted_by_email"] = "must be a valid email address."

    if "start_date" not in errors and record.start_date is None:
        errors["start_date"] = "must be a date (YYYY-MM-DD, MM/DD/YYYY or ISO date-time)."

    # An unrecognized label falls back to the default enum; an empty one is missing.
    if not record.format_raw.strip():
        errors["format"] = REQUIRED
    if not record.topic_raw.strip():
        errors["topic"] = REQUIRED

    if record.class_url:
        parsed = urlparse(record.class_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors["class_url"] = "must be an http(s) URL."

    return errors


def validate_batch_size(count: int, max_rows: int = DEFAULT_MAX_BATCH_ROWS) -> None:
    """Raises BatchSizeError unless MIN_BATCH_ROWS <= count <= max_rows."""
    if count < MIN_BATCH_ROWS:
        raise BatchSizeError("A batch must contain at least 1 row.")
    if count > max_rows:
        raise BatchSizeError(f"A batch may contain at most {max_rows} rows; got {count}.")
