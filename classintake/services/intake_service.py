import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from classintake.models.submission import IntakeRecord
from classintake.repositories.base import AbstractSubmissionRepository, IntakeStoreError
from classintake.schemas.submission import BulkSubmissionIn, ClassRowIn
from classintake.services.normalizer import normalize_row, with_suffix
from classintake.services.validator import (
    DEFAULT_MAX_BATCH_ROWS,
    REQUIRED,
    BatchSizeError,
    looks_like_email,
    validate_batch_size,
    validate_record,
)

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "external_id", "class_title", "class_description", "instructor_name", "format",
    "location_city", "location_state", "start_date", "cost", "registration_url",
    "topics", "status", "submitted_by_name", "submitted_by_email",
)
_HANDLE_ATTEMPTS = 5


class SubmissionInvalid(Exception):
    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("Validation failed")
        self.errors = errors


class BatchValidationError(Exception):
    """One or more rows failed validation; the batch was not written."""

    def __init__(self, row_errors: list[tuple[int, dict[str, str]]]) -> None:
        super().__init__(f"{len(row_errors)} row(s) failed validation")
        self.row_errors = row_errors


@dataclass
class BatchResult:
    batch_id: int
    created_at: datetime
    count: int


@dataclass
class CsvImportResult:
    ok: bool
    imported: int
    errors: list[str] = field(default_factory=list)
    batch_id: int | None = None


class IntakeService:
    def __init__(
        self, repository: AbstractSubmissionRepository, max_batch_rows: int = DEFAULT_MAX_BATCH_ROWS
    ) -> None:
        self._repository = repository
        self._max_batch_rows = max_batch_rows

    def _unique_handle(self, record: IntakeRecord, taken: set[str]) -> None:
        base = record.external_id
        for _ in range(_HANDLE_ATTEMPTS):
            if record.external_id not in taken and not self._repository.external_id_exists(record.external_id):
                taken.add(record.external_id)
                return
            record.external_id = with_suffix(base)
        raise IntakeStoreError(f"Could not allocate a unique handle for {base}")

    def submit_single(self, row: ClassRowIn) -> tuple[int, datetime]:
        """Normalize, validate and store one submission as pending."""
        record = normalize_row(row)
        errors = validate_record(record)
        if errors:
            logger.info("[intake] rejected | fields=%s", sorted(errors))
            raise SubmissionInvalid(errors)
        self._unique_handle(record, set())
        submission_id, created_at = self._repository.create_submission(record)
        logger.info("[intake] saved | id=%d | handle=%s", submission_id, record.external_id)
        return submission_id, created_at

    def _prepare_rows(
        self, rows: list[ClassRowIn], fallback_name: str, fallback_email: str
    ) -> tuple[list[IntakeRecord], list[tuple[int, dict[str, str]]]]:
        records: list[IntakeRecord] = []
        row_errors: list[tuple[int, dict[str, str]]] = []
        for index, row in enumerate(rows, start=1):
            updates = {}
            if not row.submitted_by_name and fallback_name:
                updates["submitted_by_name"] = fallback_name
            if not row.submitted_by_email and fallback_email:
                updates["submitted_by_email"] = fallback_email
            if updates:
                row = row.model_copy(update=updates)
            record = normalize_row(row)
            errors = validate_record(record)
            if errors:
                row_errors.append((index, errors))
            else:
                records.append(record)
        return records, row_errors

    def _write_batch(self, name: str, email: str, source: str, records: list[IntakeRecord]) -> BatchResult:
        taken: set[str] = set()
        for record in records:
            self._unique_handle(record, taken)
        batch_id, created_at, count = self._repository.create_batch(name, email, source, records)
        logger.info("[%s] batch saved | batch_id=%d | rows=%d", source, batch_id, count)
        return BatchResult(batch_id=batch_id, created_at=created_at, count=count)

    def submit_batch(self, payload: BulkSubmissionIn) -> BatchResult:
        """
        Store a JSON batch. The whole batch is rejected when the row count is
        out of bounds or any row fails validation.
        """
        validate_batch_size(len(payload.rows), self._max_batch_rows)

        batch_errors: dict[str, str] = {}
        if not payload.submitted_by_name:
            batch_errors["submitted_by_name"] = REQUIRED
        if not payload.submitted_by_email:
            batch_errors["submitted_by_email"] = REQUIRED
        elif not looks_like_email(payload.submitted_by_email):
            batch_errors["submitted_by_email"] = "must be a valid email address."
        if batch_errors:
            raise SubmissionInvalid(batch_errors)

        rows: list[ClassRowIn] = []
        shape_errors: list[tuple[int, dict[str, str]]] = []
        for index, raw in enumerate(payload.rows, start=1):
            if not isinstance(raw, dict):
                shape_errors.append((index, {"row": "must be an object."}))
                continue
            try:
                rows.append(ClassRowIn.model_validate(raw))
            except ValidationError as exc:
                shape_errors.append((index, {"row": str(exc.errors()[0].get("msg", "is invalid."))}))
        if shape_errors:
            raise BatchValidationError(shape_errors)

        records, row_errors = self._prepare_rows(
            rows, payload.submitted_by_name, payload.submitted_by_email
        )
        if row_errors:
            logger.info("[bulk] rejected | rows=%d | invalid=%d", len(rows), len(row_errors))
            raise BatchValidationError(row_errors)
        return self._write_batch(payload.submitted_by_name, payload.submitted_by_email, "json", records)

    def import_csv(
        self, text: str, submitted_by_name: str = "", submitted_by_email: str = ""
    ) -> CsvImportResult:
        """
        Import a CSV of class rows as one pending batch.

        Returns a result rather than raising for anything the operator can fix,
        so every problem in the file is reported in one pass.
        """
        try:
            rows = _read_csv(text)
        except (csv.Error, ValueError) as exc:
            return CsvImportResult(ok=False, imported=0, errors=[f"CSV parse error: {exc}"])

        if not rows:
            return CsvImportResult(ok=False, imported=0, errors=["No rows found in CSV."])
        try:
            validate_batch_size(len(rows), self._max_batch_rows)
        except BatchSizeError as exc:
            return CsvImportResult(ok=False, imported=0, errors=[str(exc)])

        parsed = [ClassRowIn.model_validate(row) for row in rows]
        records, row_errors = self._prepare_rows(parsed, submitted_by_name, submitted_by_email)
        if row_errors:
            logger.info("[csv] rejected | rows=%d | invalid=%d", len(parsed), len(row_errors))
            return CsvImportResult(
                ok=False,
                imported=0,
                errors=[
                    f"Row {index}: {name} {message}"
                    for index, errors in row_errors
                    for name, message in errors.items()
                ],
            )

        batch_name = submitted_by_name or records[0].submitted_by_name
        batch_email = submitted_by_email or records[0].submitted_by_email
        result = self._write_batch(batch_name, batch_email, "csv", records)
        return CsvImportResult(ok=True, imported=result.count, batch_id=result.batch_id)


def _read_csv(text: str) -> list[dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        return []
    reader.fieldnames = [(name or "").strip().lower() for name in reader.fieldnames]
    if "class_title" not in reader.fieldnames:
        raise ValueError(
            "missing class_title column; expected headers: " + ", ".join(CSV_COLUMNS)
        )

    rows = []
    for raw in reader:
        row = {k: v for k, v in raw.items() if k is not None}
        if any((v or "").strip() for v in row.values()):
            rows.append(row)
    return rows
