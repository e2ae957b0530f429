from abc import ABC, abstractmethod
from datetime import datetime

from classintake.models.submission import (
    ClassSubmission,
    IntakeRecord,
    SubmissionBatch,
    SubmissionStatus,
)


class IntakeStoreError(Exception):
    """Raised when a write to the intake store fails; nothing from that write is kept."""


class AbstractSubmissionRepository(ABC):
    @abstractmethod
    def create_submission(self, record: IntakeRecord) -> tuple[int, datetime]:
        """Insert one pending submission with no batch. Returns (id, created_at)."""

    @abstractmethod
    def create_batch(
        self, submitted_by_name: str, submitted_by_email: str, source: str, records: list[IntakeRecord]
    ) -> tuple[int, datetime, int]:
        """Insert a batch and all of its rows atomically. Returns (batch_id, created_at, count)."""

    @abstractmethod
    def external_id_exists(self, external_id: str) -> bool:
        """Return True if a submission already uses this handle."""

    @abstractmethod
    def get_submission(self, submission_id: int) -> ClassSubmission | None:
        """Fetch one submission by id."""

    @abstractmethod
    def list_by_status(self, status: SubmissionStatus, limit: int = 250) -> list[ClassSubmission]:
        """List submissions in the given status, oldest first."""

    @abstractmethod
    def set_status(self, submission_id: int, status: SubmissionStatus) -> None:
        """Record a moderation decision."""

    @abstractmethod
    def mark_synced(self, submission_id: int, metaobject_id: str) -> None:
        """Remember the Shopify metaobject id for a submission."""

    @abstractmethod
    def mark_published(self, submission_id: int) -> None:
        """Flag a submission as published in Shopify."""

    @abstractmethod
    def get_batch(self, batch_id: int) -> SubmissionBatch | None:
        """Fetch one batch by id."""

    @abstractmethod
    def refresh_batch_status(self, batch_id: int) -> SubmissionStatus:
        """Recompute a batch's aggregate status from its rows."""
