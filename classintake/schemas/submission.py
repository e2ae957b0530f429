from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

_TOKEN_KEYS = ("turnstileToken", "turnstile", "cfTurnstileResponse", "cf-turnstile-response")


def _text_field(*aliases: str):
    return Field("", validation_alias=AliasChoices(*aliases))


class ClassRowIn(BaseModel):
    """
    One raw class listing as it arrives over the wire.

    Accepts the snake_case CSV headers and the camelCase keys used by the
    public form for the same field. Every value is kept as a stripped string;
    typing and defaults happen in the normalizer.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: str = _text_field("external_id", "externalId")
    class_title: str = _text_field("class_title", "classTitle")
    class_description: str = _text_field("class_description", "description")
    instructor_name: str = _text_field("instructor_name", "instructorName")
    format: str = _text_field("format")
    location_city: str = _text_field("location_city", "locationCity")
    location_state: str = _text_field("location_state", "locationState")
    start_date: str = _text_field("start_date", "startDate")
    cost: str = _text_field("cost")
    registration_url: str = _text_field("registration_url", "classUrl", "registrationUrl")
    topics: str = _text_field("topics", "topic")
    status: str = _text_field("status")
    submitted_by_name: str = _text_field("submitted_by_name", "submittedByName")
    submitted_by_email: str = _text_field("submitted_by_email", "submittedByEmail")

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_stripped_text(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()


class BotFields(BaseModel):
    website: str = ""
    turnstile_token: str = ""

    @model_validator(mode="before")
    @classmethod
    def collect_turnstile_token(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("turnstile_token"):
            for key in _TOKEN_KEYS:
                if data.get(key):
                    data = {**data, "turnstile_token": data[key]}
                    break
        return data

    @field_validator("website", "turnstile_token", mode="before")
    @classmethod
    def coerce_bot_field(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()


class SingleSubmissionIn(ClassRowIn, BotFields):
    pass


class BulkSubmissionIn(BotFields):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    submitted_by_name: str = _text_field("submitted_by_name", "submittedByName")
    submitted_by_email: str = _text_field("submitted_by_email", "submittedByEmail")
    rows: list[Any] = Field(default_factory=list)

    @field_validator("submitted_by_name", "submitted_by_email", mode="before")
    @classmethod
    def coerce_attribution(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()

    @field_validator("rows", mode="before")
    @classmethod
    def rows_must_be_list(cls, v: Any) -> list:
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("rows must be an array")
        return v


class SingleSubmissionOut(BaseModel):
    ok: bool = True
    id: int
    createdAt: str


class BulkSubmissionOut(BaseModel):
    ok: bool = True
    batchId: int
    createdAt: str
    count: int


class CsvImportOut(BaseModel):
    ok: bool
    imported: int
    errors: list[str] = Field(default_factory=list)
    batchId: int | None = None


class PendingEntry(BaseModel):
    id: str
    source: str
    handle: str
    title: str
    instructor: str = ""
    start_date: str = ""
    location: str = ""
    cost: str = ""
    format: str = ""
    topic: str = ""
    description: str = ""
    submitted_by_name: str = ""
    submitted_by_email: str = ""
    status: str = "pending"
    published: bool = False


class PendingListOut(BaseModel):
    ok: bool = True
    source: str
    count: int
    pending: list[PendingEntry]


class ReviewActionOut(BaseModel):
    ok: bool = True
    message: str
    entryId: str
    status: str
    published: bool
