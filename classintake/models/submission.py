from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def label(self) -> str:
        """Value written to the metaobject `status` field."""
        return self.value.capitalize()


class ClassFormat(str, Enum):
    IN_PERSON = "IN_PERSON"
    ONLINE = "ONLINE"
    HYBRID = "HYBRID"

    @property
    def label(self) -> str:
        return {"IN_PERSON": "In-Person", "ONLINE": "Online", "HYBRID": "Hybrid"}[self.value]


class ClassTopic(str, Enum):
    BEGINNER = "BEGINNER"
    TOOLING = "TOOLING"
    CARVING = "CARVING"
    DYEING = "DYEING"
    SADDLERY = "SADDLERY"
    WALLETS = "WALLETS"
    BAGS = "BAGS"
    BELTS = "BELTS"
    FIGURE_CARVING = "FIGURE_CARVING"
    BUSINESSES = "BUSINESSES"
    ASSEMBLY = "ASSEMBLY"
    COSTUMING = "COSTUMING"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


@dataclass
class IntakeRecord:
    """A normalized class listing, ready for validation and persistence."""

    external_id: str
    submitted_by_name: str
    submitted_by_email: str
    class_title: str
    format: ClassFormat
    topic: ClassTopic
    location_city: str
    location_state: str
    cost: str
    start_date_raw: str
    start_date: datetime | None = None
    class_url: str = ""
    description: str = ""
    instructor_name: str = ""
    format_raw: str = ""
    topic_raw: str = ""


@dataclass
class ClassSubmission:
    id: int
    external_id: str
    submitted_by_name: str
    submitted_by_email: str
    class_title: str
    format: ClassFormat
    topic: ClassTopic
    location_city: str
    location_state: str
    cost: str
    start_date: datetime
    class_url: str | None = None
    description: str | None = None
    instructor_name: str | None = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    batch_id: int | None = None
    metaobject_id: str | None = None
    published: bool = False
    published_at: datetime | None = None
    reviewed_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SubmissionBatch:
    id: int
    submitted_by_name: str
    submitted_by_email: str
    source: str = "json"
    status: SubmissionStatus = SubmissionStatus.PENDING
    created_at: datetime = field(default_factory=datetime.utcnow)
