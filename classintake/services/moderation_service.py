import logging
from dataclasses import dataclass
from datetime import datetime

from classintake.models.submission import ClassSubmission, SubmissionStatus
from classintake.repositories.base import AbstractSubmissionRepository
from classintake.schemas.submission import PendingEntry
from classintake.services.normalizer import parse_start_date, rich_text_to_plain, to_rich_text
from classintake.services.shopify_client import (
    ACTIVE,
    MAX_PAGE_SIZE,
    ShopifyAdminClient,
    ShopifyUserError,
    field_value,
    publish_status,
)

logger = logging.getLogger(__name__)

METAOBJECT_GID_PREFIX = "gid://shopify/Metaobject/"
STATUS_FIELD_KEY = "status"

SOURCE_STORE = "store"
SOURCE_SHOPIFY = "shopify"

INTENT_APPROVE = "approve"
INTENT_PUBLISH = "publish"
INTENT_REJECT = "reject"
INTENTS = (INTENT_APPROVE, INTENT_PUBLISH, INTENT_REJECT)


class ModerationError(Exception):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class ReviewOutcome:
    entry_id: str
    status: SubmissionStatus
    published: bool
    message: str


def _display_date(value: datetime | str | None) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        parsed = parse_start_date(value)
        if parsed is None:
            return value
        value = parsed
    return value.strftime("%b %d, %Y")


def _location(city: str | None, state: str | None) -> str:
    return ", ".join(p for p in (city, state) if p)


def metaobject_fields(submission: ClassSubmission, status: SubmissionStatus) -> list[dict]:
    """Map a stored submission to metaobject field inputs, dropping empty values."""
    fields = [
        ("external_id", submission.external_id),
        ("class_title", submission.class_title),
        ("class_description", to_rich_text(submission.description or "")),
        ("instructor_name", submission.instructor_name or ""),
        ("format", submission.format.label),
        ("location_city", submission.location_city),
        ("location_state", submission.location_state),
        ("start_date", submission.start_date.isoformat() if submission.start_date else ""),
        ("cost", submission.cost),
        ("registration_url", submission.class_url or ""),
        ("topics", submission.topic.label),
        ("submitted_by_name", submission.submitted_by_name),
        ("submitted_by_email", submission.submitted_by_email),
        (STATUS_FIELD_KEY, status.label),
    ]
    return [{"key": key, "value": value} for key, value in fields if value and value.strip()]


def _status_field(status: SubmissionStatus) -> list[dict]:
    return [{"key": STATUS_FIELD_KEY, "value": status.label}]


def metaobject_status(metaobject: dict) -> SubmissionStatus:
    """Read the workflow status field; a blank or unrecognized value counts as pending."""
    value = field_value(metaobject, STATUS_FIELD_KEY).strip().lower()
    try:
        return SubmissionStatus(value)
    except ValueError:
        return SubmissionStatus.PENDING


def _approve_message(publish: bool, was_approved: bool) -> str:
    if publish:
        return "Submission approved and published."
    if was_approved:
        return "Submission was already approved."
    return "Submission approved."


def entry_from_submission(submission: ClassSubmission) -> PendingEntry:
    return PendingEntry(
        id=str(submission.id),
        source=SOURCE_STORE,
        handle=submission.external_id,
        title=submission.class_title,
        instructor=submission.instructor_name or "",
        start_date=_display_date(submission.start_date),
        location=_location(submission.location_city, submission.location_state),
        cost=submission.cost,
        format=submission.format.label,
        topic=submission.topic.label,
        description=" ".join((submission.description or "").split()),
        submitted_by_name=submission.submitted_by_name,
        submitted_by_email=submission.submitted_by_email,
        status=submission.status.value,
        published=submission.published,
    )


def entry_from_metaobject(metaobject: dict) -> PendingEntry:
    return PendingEntry(
        id=metaobject.get("id", ""),
        source=SOURCE_SHOPIFY,
        handle=metaobject.get("handle", ""),
        title=field_value(metaobject, "class_title") or metaobject.get("handle", ""),
        instructor=field_value(metaobject, "instructor_name"),
        start_date=_display_date(field_value(metaobject, "start_date")),
        location=_location(field_value(metaobject, "location_city"), field_value(metaobject, "location_state")),
        cost=field_value(metaobject, "cost"),
        format=field_value(metaobject, "format"),
        topic=field_value(metaobject, "topics"),
        description=rich_text_to_plain(field_value(metaobject, "class_description")),
        submitted_by_name=field_value(metaobject, "submitted_by_name"),
        submitted_by_email=field_value(metaobject, "submitted_by_email"),
        status=field_value(metaobject, STATUS_FIELD_KEY).lower() or "pending",
        published=publish_status(metaobject) == ACTIVE,
    )


class ModerationService:
    """
    Moves submissions through pending -> approved -> published, or pending -> rejected.

    The workflow status lives in two places that Shopify does not keep in
    step: the metaobject's `status` field and its publishable flag. Entries
    that came through this service are tracked in the store, which records
    both; entries that only exist in Shopify (addressed by GID) have their
    status field read first and are then held to the same transitions.
    """

    def __init__(
        self,
        repository: AbstractSubmissionRepository,
        shopify: ShopifyAdminClient,
        metaobject_type: str = "class_submission",
        page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._repository = repository
        self._shopify = shopify
        self._type = metaobject_type
        self._page_size = max(1, min(page_size, MAX_PAGE_SIZE))

    async def list_pending(self, source: str = SOURCE_STORE) -> list[PendingEntry]:
        if source == SOURCE_STORE:
            submissions = self._repository.list_by_status(SubmissionStatus.PENDING, self._page_size)
            return [entry_from_submission(s) for s in submissions]
        if source == SOURCE_SHOPIFY:
            nodes = await self._shopify.list_metaobjects(self._type, self._page_size)
            # The metaobjects query cannot filter on field values.
            pending = [
                node for node in nodes
                if field_value(node, STATUS_FIELD_KEY).strip().lower() == SubmissionStatus.PENDING.value
            ]
            logger.info("[review] shopify listing | fetched=%d | pending=%d", len(nodes), len(pending))
            return [entry_from_metaobject(node) for node in pending]
        raise ModerationError(f"Unknown source: {source!r}")

    async def review(self, entry_id: str, intent: str, publish: bool = False) -> ReviewOutcome:
        entry_id = (entry_id or "").strip()
        if not entry_id:
            raise ModerationError("Missing id.")
        if intent == INTENT_APPROVE:
            return await self.approve(entry_id, publish=publish)
        if intent == INTENT_PUBLISH:
            return await self.publish(entry_id)
        if intent == INTENT_REJECT:
            return await self.reject(entry_id)
        raise ModerationError(f"Unknown intent: {intent!r}. Expected one of {', '.join(INTENTS)}.")

    def _load(self, entry_id: str) -> ClassSubmission | None:
        """Resolve a store id; None means the id addresses a Shopify metaobject."""
        if entry_id.startswith(METAOBJECT_GID_PREFIX):
            return None
        if not entry_id.isdigit():
            raise ModerationError(f"Invalid id: {entry_id!r}")
        submission = self._repository.get_submission(int(entry_id))
        if submission is None:
            raise ModerationError(f"Submission {entry_id} not found.", status_code=404)
        return submission

    async def _load_metaobject(self, entry_id: str) -> dict:
        metaobject = await self._shopify.get_metaobject(entry_id)
        if not metaobject:
            raise ModerationError(f"Metaobject {entry_id} not found.", status_code=404)
        return metaobject

    def _after_transition(self, submission: ClassSubmission) -> None:
        if submission.batch_id is not None:
            self._repository.refresh_batch_status(submission.batch_id)

    async def _upsert(self, submission: ClassSubmission, status: SubmissionStatus, publish: bool) -> tuple[dict, bool]:
        """Upsert by handle. Returns (metaobject, published)."""
        fields = metaobject_fields(submission, status)
        try:
            metaobject = await self._shopify.upsert_metaobject(
                self._type, submission.external_id, fields, publish=True if publish else None
            )
        except ShopifyUserError as exc:
            if not (publish and exc.already_published):
                raise
            metaobject = await self._shopify.upsert_metaobject(self._type, submission.external_id, fields)
        return metaobject, publish or publish_status(metaobject) == ACTIVE

    async def _publish_metaobject(self, metaobject_id: str) -> None:
        try:
            await self._shopify.update_metaobject(metaobject_id, publish=True)
        except ShopifyUserError as exc:
            if not exc.already_published:
                raise

    async def approve(self, entry_id: str, publish: bool = False) -> ReviewOutcome:
        """Approve an entry, optionally publishing it in the same step. Safe to repeat."""
        submission = self._load(entry_id)
        if submission is None:
            return await self._approve_metaobject(entry_id, publish)

        if submission.status == SubmissionStatus.REJECTED:
            raise ModerationError("Rejected submissions cannot be approved.")
        was_approved = submission.status == SubmissionStatus.APPROVED

        metaobject, published = await self._upsert(submission, SubmissionStatus.APPROVED, publish)
        if not was_approved:
            self._repository.set_status(submission.id, SubmissionStatus.APPROVED)
        if metaobject.get("id") and metaobject["id"] != submission.metaobject_id:
            self._repository.mark_synced(submission.id, metaobject["id"])
        if published:
            self._repository.mark_published(submission.id)
        self._after_transition(submission)

        published = published or submission.published
        logger.info("[review] approved | id=%s | published=%s", entry_id, published)
        return ReviewOutcome(entry_id, SubmissionStatus.APPROVED, published, _approve_message(publish, was_approved))

    async def _approve_metaobject(self, entry_id: str, publish: bool) -> ReviewOutcome:
        current = await self._load_metaobject(entry_id)
        status = metaobject_status(current)
        if status == SubmissionStatus.REJECTED:
            raise ModerationError("Rejected submissions cannot be approved.")
        was_approved = status == SubmissionStatus.APPROVED

        fields = _status_field(SubmissionStatus.APPROVED)
        try:
            metaobject = await self._shopify.update_metaobject(
                entry_id, fields=fields, publish=True if publish else None
            )
        except ShopifyUserError as exc:
            if not (publish and exc.already_published):
                raise
            metaobject = await self._shopify.update_metaobject(entry_id, fields=fields)
        published = publish or publish_status(metaobject) == ACTIVE
        logger.info("[review] approved | id=%s | published=%s", entry_id, published)
        return ReviewOutcome(entry_id, SubmissionStatus.APPROVED, published, _approve_message(publish, was_approved))

    async def publish(self, entry_id: str) -> ReviewOutcome:
        """Publish an approved entry. Publishing twice is a no-op, not an error."""
        submission = self._load(entry_id)
        if submission is None:
            current = await self._load_metaobject(entry_id)
            if metaobject_status(current) != SubmissionStatus.APPROVED:
                raise ModerationError("Only approved submissions can be published.")
            if publish_status(current) == ACTIVE:
                return ReviewOutcome(entry_id, SubmissionStatus.APPROVED, True, "Submission is already published.")
            await self._publish_metaobject(entry_id)
            logger.info("[review] published | id=%s", entry_id)
            return ReviewOutcome(entry_id, SubmissionStatus.APPROVED, True, "Submission published.")

        if submission.status != SubmissionStatus.APPROVED:
            raise ModerationError("Only approved submissions can be published.")
        if submission.published:
            return ReviewOutcome(entry_id, submission.status, True, "Submission is already published.")

        if submission.metaobject_id:
            await self._publish_metaobject(submission.metaobject_id)
        else:
            metaobject, _ = await self._upsert(submission, SubmissionStatus.APPROVED, True)
            if metaobject.get("id"):
                self._repository.mark_synced(submission.id, metaobject["id"])
        self._repository.mark_published(submission.id)
        logger.info("[review] published | id=%s", entry_id)
        return ReviewOutcome(entry_id, submission.status, True, "Submission published.")

    async def reject(self, entry_id: str) -> ReviewOutcome:
        submission = self._load(entry_id)
        if submission is None:
            current = await self._load_metaobject(entry_id)
            status = metaobject_status(current)
            published = publish_status(current) == ACTIVE
            if status == SubmissionStatus.REJECTED:
                return ReviewOutcome(entry_id, status, published, "Submission was already rejected.")
            if status == SubmissionStatus.APPROVED:
                raise ModerationError("Approved submissions cannot be rejected.")
            await self._shopify.update_metaobject(entry_id, fields=_status_field(SubmissionStatus.REJECTED))
            logger.info("[review] rejected | id=%s", entry_id)
            return ReviewOutcome(entry_id, SubmissionStatus.REJECTED, published, "Submission rejected.")

        if submission.status == SubmissionStatus.REJECTED:
            return ReviewOutcome(entry_id, submission.status, submission.published, "Submission was already rejected.")
        if submission.status == SubmissionStatus.APPROVED:
            raise ModerationError("Approved submissions cannot be rejected.")

        if submission.metaobject_id:
            await self._shopify.update_metaobject(
                submission.metaobject_id, fields=_status_field(SubmissionStatus.REJECTED)
            )
        self._repository.set_status(submission.id, SubmissionStatus.REJECTED)
        self._after_transition(submission)
        logger.info("[review] rejected | id=%s", entry_id)
        return ReviewOutcome(entry_id, SubmissionStatus.REJECTED, submission.published, "Submission rejected.")
