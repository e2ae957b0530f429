import json
import re
import secrets
import time
from datetime import date, datetime, timezone

from classintake.models.submission import ClassFormat, ClassTopic, IntakeRecord
from classintake.schemas.submission import ClassRowIn


HANDLE_MAX_LENGTH = 60

_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NON_SLUG = re.compile(r"[^a-z0-9]+")

# Date-only inputs are pinned to noon UTC so no timezone moves them to another day.
DATE_ONLY_HOUR = 12

_FORMAT_ALIASES = {
    "inperson": ClassFormat.IN_PERSON,
    "online": ClassFormat.ONLINE,
    "virtual": ClassFormat.ONLINE,
    "hybrid": ClassFormat.HYBRID,
}


def slugify(value: str) -> str:
    return _NON_SLUG.sub("-", (value or "").strip().lower()).strip("-")


def normalize_format(value: str) -> ClassFormat:
    key = re.sub(r"[\s_-]+", "", (value or "").strip().lower())
    return _FORMAT_ALIASES.get(key, ClassFormat.IN_PERSON)


def _topic_key(value: str) -> str:
    return re.sub(r"[\s-]+", "_", value.strip().upper())


_TOPICS = {topic.value: topic for topic in ClassTopic}


def normalize_topic(value: str) -> ClassTopic:
    """Match a topic label or value; a comma-separated list takes its first known entry."""
    for part in (value or "").split(","):
        topic = _TOPICS.get(_topic_key(part))
        if topic is not None:
            return topic
    return ClassTopic.BEGINNER


def _date_only(year: int, month: int, day: int) -> datetime | None:
    try:
        return datetime(year, month, day, DATE_ONLY_HOUR, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_start_date(value: str) -> datetime | None:
    """
    Parse the shapes a start date arrives in and return a UTC instant.

    Accepted: YYYY-MM-DD, ISO date-time (contains "T"), MM/DD/YYYY and
    MM/DD/YY (20xx). Anything else returns None.
    """
    raw = (value or "").strip()
    if not raw:
        return None

    if _ISO_DATE.match(raw):
        try:
            parsed = date.fromisoformat(raw)
        except ValueError:
            return None
        return _date_only(parsed.year, parsed.month, parsed.day)

    if "T" in raw:
        candidate = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed_dt = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        if parsed_dt.tzinfo is None:
            parsed_dt = parsed_dt.replace(tzinfo=timezone.utc)
        return parsed_dt.astimezone(timezone.utc)

    match = _US_DATE.match(raw)
    if match:
        month, day, year = match.groups()
        if len(year) == 2:
            year = f"20{year}"
        return _date_only(int(year), int(month), int(day))

    return None


def random_suffix() -> str:
    return secrets.token_hex(3)


def with_suffix(handle: str) -> str:
    return f"{handle[:HANDLE_MAX_LENGTH]}-{random_suffix()}"


def build_external_id(
    title: str, instructor: str, start_date: datetime | None, start_date_raw: str = ""
) -> str:
    """Derive a metaobject handle from title, instructor and date, with a random suffix."""
    if start_date is not None:
        date_digits = start_date.strftime("%Y%m%d")
    else:
        date_digits = re.sub(r"\D", "", start_date_raw)[:8]
    base = "-".join(p for p in (slugify(title), slugify(instructor), date_digits) if p)
    if not base:
        return f"class-{int(time.time() * 1000)}-{random_suffix()}"
    return with_suffix(base[:HANDLE_MAX_LENGTH].rstrip("-"))


def to_rich_text(text: str) -> str:
    """Wrap plain text in the metaobject rich-text document shape."""
    safe = (text or "").strip()
    if not safe:
        return ""
    return json.dumps(
        {
            "type": "root",
            "children": [
                {"type": "paragraph", "children": [{"type": "text", "value": safe}]}
            ],
        }
    )


def rich_text_to_plain(value: str | None) -> str:
    if not value:
        return ""
    try:
        doc = json.loads(value)
    except ValueError:
        return " ".join(str(value).split())

    def walk(node) -> str:
        if isinstance(node, str):
            return node
        if isinstance(node, list):
            return " ".join(walk(child) for child in node)
        if isinstance(node, dict):
            if node.get("type") == "text" and node.get("value"):
                return str(node["value"])
            if "children" in node:
                return walk(node["children"])
        return ""

    return " ".join(walk(doc).split())


def normalize_row(row: ClassRowIn) -> IntakeRecord:
    """Turn a raw wire row into a typed intake record. Any status in the row is ignored."""
    start_date = parse_start_date(row.start_date)
    if row.external_id:
        external_id = slugify(row.external_id)[:HANDLE_MAX_LENGTH] or build_external_id(
            row.class_title, row.instructor_name, start_date, row.start_date
        )
    else:
        external_id = build_external_id(
            row.class_title, row.instructor_name, start_date, row.start_date
        )

    return IntakeRecord(
        external_id=external_id,
        submitted_by_name=row.submitted_by_name,
        submitted_by_email=row.submitted_by_email,
        class_title=row.class_title,
        format=normalize_format(row.format),
        topic=normalize_topic(row.topics),
        location_city=row.location_city,
        location_state=row.location_state,
        cost=row.cost,
        start_date_raw=row.start_date,
        start_date=start_date,
        class_url=row.registration_url,
        description=row.class_description,
        instructor_name=row.instructor_name,
        format_raw=row.format,
        topic_raw=row.topics,
    )
