import logging
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import SQLAlchemyError

from classintake.db.connection import Database
from classintake.models.submission import (
    ClassFormat,
    ClassSubmission,
    ClassTopic,
    IntakeRecord,
    SubmissionBatch,
    SubmissionStatus,
)
from classintake.repositories.base import AbstractSubmissionRepository, IntakeStoreError

logger = logging.getLogger(__name__)

_INSERT_SUBMISSION = text(
    """
    INSERT INTO class_submissions
        (batch_id, external_id, submitted_by_name, submitted_by_email, class_title,
         class_url, description, instructor_name, format, topic,
         location_city, location_state, cost, start_date, status)
    VALUES
        (:batch_id, :external_id, :submitted_by_name, :submitted_by_email, :class_title,
         :class_url, :description, :instructor_name, :format, :topic,
         :location_city, :location_state, :cost, :start_date, 'pending')
    """
)


def _params(record: IntakeRecord, batch_id: int | None) -> dict:
    if record.start_date is None:
        raise IntakeStoreError(f"start_date missing for {record.external_id}")
    return {
        "batch_id": batch_id,
        "external_id": record.external_id,
        "submitted_by_name": record.submitted_by_name,
        "submitted_by_email": record.submitted_by_email,
        "class_title": record.class_title,
        "class_url": record.class_url or None,
        "description": record.description or None,
        "instructor_name": record.instructor_name or None,
        "format": record.format.value,
        "topic": record.topic.value,
        "location_city": record.location_city,
        "location_state": record.location_state,
        "cost": record.cost,
        "start_date": record.start_date.astimezone(timezone.utc).isoformat(),
    }


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _row_to_submission(row: RowMapping) -> ClassSubmission:
    try:
        topic = ClassTopic(row["topic"])
    except ValueError:
        topic = ClassTopic.BEGINNER
    return ClassSubmission(
        id=row["id"],
        external_id=row["external_id"],
        submitted_by_name=row["submitted_by_name"],
        submitted_by_email=row["submitted_by_email"],
        class_title=row["class_title"],
        format=ClassFormat(row["format"]),
        topic=topic,
        location_city=row["location_city"],
        location_state=row["location_state"],
        cost=row["cost"],
        start_date=_parse_timestamp(row["start_date"]),
        class_url=row["class_url"],
        description=row["description"],
        instructor_name=row["instructor_name"],
        status=SubmissionStatus(row["status"]),
        batch_id=row["batch_id"],
        metaobject_id=row["metaobject_id"],
        published=bool(row["published"]),
        published_at=_parse_timestamp(row["published_at"]),
        reviewed_at=_parse_timestamp(row["reviewed_at"]),
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


class SubmissionRepository(AbstractSubmissionRepository):
    def __init__(self, db: Database) -> None:
        self._engine = db.engine

    def create_submission(self, record: IntakeRecord) -> tuple[int, datetime]:
        params = _params(record, None)
        try:
            with self._engine.begin() as conn:
                submission_id = conn.execute(_INSERT_SUBMISSION, params).lastrowid
                created_at = conn.execute(
                    text("SELECT created_at FROM class_submissions WHERE id = :id"), {"id": submission_id}
                ).scalar_one()
        except SQLAlchemyError as exc:
            logger.error("[store] insert failed | handle=%s | error=%s", record.external_id, exc)
            raise IntakeStoreError(str(exc)) from exc
        return submission_id, _parse_timestamp(created_at)

    def create_batch(
        self, submitted_by_name: str, submitted_by_email: str, source: str, records: list[IntakeRecord]
    ) -> tuple[int, datetime, int]:
        """
        Write the batch row and every submission row in one transaction.
        Any failure rolls the whole unit back, so a batch never references a
        partial set of rows.
        """
        try:
            with self._engine.begin() as conn:
                batch_id = conn.execute(
                    text(
                        """
                        INSERT INTO submission_batches
                            (submitted_by_name, submitted_by_email, source, status)
                        VALUES (:name, :email, :source, 'pending')
                        """
                    ),
                    {"name": submitted_by_name, "email": submitted_by_email, "source": source},
                ).lastrowid
                for record in records:
                    conn.execute(_INSERT_SUBMISSION, _params(record, batch_id))
                created_at = conn.execute(
                    text("SELECT created_at FROM submission_batches WHERE id = :id"), {"id": batch_id}
                ).scalar_one()
        except (SQLAlchemyError, IntakeStoreError) as exc:
            logger.error("[store] batch write rolled back | rows=%d | error=%s", len(records), exc)
            raise IntakeStoreError(str(exc)) from exc
        return batch_id, _parse_timestamp(created_at), len(records)

    def external_id_exists(self, external_id: str) -> bool:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT 1 FROM class_submissions WHERE external_id = :handle"), {"handle": external_id}
                ).first()
        except SQLAlchemyError as exc:
            logger.error("[store] handle lookup failed | handle=%s | error=%s", external_id, exc)
            raise IntakeStoreError(str(exc)) from exc
        return row is not None

    def get_submission(self, submission_id: int) -> ClassSubmission | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM class_submissions WHERE id = :id"), {"id": submission_id}
            ).mappings().first()
        return _row_to_submission(row) if row else None

    def list_by_status(self, status: SubmissionStatus, limit: int = 250) -> list[ClassSubmission]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                text(
                    "SELECT * FROM class_submissions WHERE status = :status "
                    "ORDER BY created_at, id LIMIT :limit"
                ),
                {"status": status.value, "limit": limit},
            ).mappings().all()
        return [_row_to_submission(row) for row in rows]

    def set_status(self, submission_id: int, status: SubmissionStatus) -> None:
        now = _now()
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    UPDATE class_submissions
                    SET status = :status, reviewed_at = :now, updated_at = :now
                    WHERE id = :id
                    """
                ),
                {"status": status.value, "now": now, "id": submission_id},
            )

    def mark_synced(self, submission_id: int, metaobject_id: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    "UPDATE class_submissions SET metaobject_id = :gid, updated_at = :now WHERE id = :id"
                ),
                {"gid": metaobject_id, "now": _now(), "id": submission_id},
            )

    def mark_published(self, submission_id: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    """
                    UPDATE class_submissions
                    SET published = 1, published_at = COALESCE(published_at, :now), updated_at = :now
                    WHERE id = :id
                    """
                ),
                {"now": _now(), "id": submission_id},
            )

    def get_batch(self, batch_id: int) -> SubmissionBatch | None:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM submission_batches WHERE id = :id"), {"id": batch_id}
            ).mappings().first()
        if row is None:
            return None
        return SubmissionBatch(
            id=row["id"],
            submitted_by_name=row["submitted_by_name"],
            submitted_by_email=row["submitted_by_email"],
            source=row["source"],
            status=SubmissionStatus(row["status"]),
            created_at=_parse_timestamp(row["created_at"]),
        )

    def refresh_batch_status(self, batch_id: int) -> SubmissionStatus:
        """Pending while any row is pending; then approved if any row was approved."""
        with self._engine.begin() as conn:
            counts = dict(
                conn.execute(
                    text(
                        "SELECT status, COUNT(*) FROM class_submissions "
                        "WHERE batch_id = :id GROUP BY status"
                    ),
                    {"id": batch_id},
                ).all()
            )
            if counts.get("pending", 0) or not counts:
                status = SubmissionStatus.PENDING
            elif counts.get("approved", 0):
                status = SubmissionStatus.APPROVED
            else:
                status = SubmissionStatus.REJECTED
            conn.execute(
                text("UPDATE submission_batches SET status = :status WHERE id = :id"),
                {"status": status.value, "id": batch_id},
            )
        return status
