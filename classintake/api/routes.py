import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from classintake.api.payloads import client_ip, error_response, is_multipart, read_body, read_csv_upload
from classintake.models.submission import ClassFormat, ClassTopic
from classintake.repositories.base import IntakeStoreError
from classintake.schemas.submission import (
    BotFields,
    BulkSubmissionIn,
    BulkSubmissionOut,
    CsvImportOut,
    SingleSubmissionIn,
    SingleSubmissionOut,
)
from classintake.services.bot_filter import CaptchaRejected, HoneypotTriggered
from classintake.services.intake_service import BatchValidationError, SubmissionInvalid
from classintake.services.validator import BatchSizeError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _check_bots(request: Request, honeypot: str, token: str) -> JSONResponse | None:
    """Returns the response to send when the bot filter stops the request."""
    try:
        await request.app.state.bot_filter.check(honeypot, token, client_ip(request))
    except HoneypotTriggered:
        return JSONResponse(content={"ok": True})
    except CaptchaRejected as exc:
        return error_response(400, exc.message, details=exc.details)
    return None


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/api/class-submissions/single")
async def single_ping() -> dict:
    return {"ok": True, "route": "api.class-submissions.single"}


@router.post("/api/class-submissions/single", response_model=SingleSubmissionOut)
async def submit_single(request: Request):
    payload = SingleSubmissionIn.model_validate(await read_body(request))

    blocked = await _check_bots(request, payload.website, payload.turnstile_token)
    if blocked is not None:
        return blocked

    try:
        submission_id, created_at = await asyncio.to_thread(
            request.app.state.intake_service.submit_single, payload
        )
    except SubmissionInvalid as exc:
        return error_response(400, "Validation failed.", errors=exc.errors)
    except IntakeStoreError:
        logger.exception("[intake] write failed")
        return error_response(500, "Failed to create submission.")

    return SingleSubmissionOut(id=submission_id, createdAt=created_at.isoformat())


@router.get("/api/class-submissions/bulk")
async def bulk_ping() -> dict:
    return {"ok": True, "route": "api.class-submissions.bulk"}


@router.post("/api/class-submissions/bulk")
async def submit_bulk(request: Request):
    if is_multipart(request):
        return await _submit_bulk_csv(request)

    payload = BulkSubmissionIn.model_validate(await read_body(request))
    blocked = await _check_bots(request, payload.website, payload.turnstile_token)
    if blocked is not None:
        return blocked

    try:
        result = await asyncio.to_thread(request.app.state.intake_service.submit_batch, payload)
    except BatchSizeError as exc:
        return error_response(400, str(exc))
    except SubmissionInvalid as exc:
        return error_response(400, "Validation failed.", errors=exc.errors)
    except BatchValidationError as exc:
        return error_response(
            400,
            str(exc),
            rowErrors=[{"row": row, "errors": errors} for row, errors in exc.row_errors],
        )
    except IntakeStoreError:
        logger.exception("[bulk] write failed")
        return error_response(500, "Failed to create bulk submissions.")

    return BulkSubmissionOut(
        batchId=result.batch_id, createdAt=result.created_at.isoformat(), count=result.count
    )


async def _submit_bulk_csv(request: Request) -> JSONResponse:
    text, fields, upload_error = await read_csv_upload(request)

    bot_fields = BotFields.model_validate(fields)
    blocked = await _check_bots(request, bot_fields.website, bot_fields.turnstile_token)
    if blocked is not None:
        return blocked

    if upload_error:
        body = CsvImportOut(ok=False, imported=0, errors=[upload_error])
        return JSONResponse(status_code=400, content=body.model_dump())

    try:
        result = await asyncio.to_thread(
            request.app.state.intake_service.import_csv,
            text,
            fields.get("submitted_by_name", "").strip(),
            fields.get("submitted_by_email", "").strip(),
        )
    except IntakeStoreError:
        logger.exception("[csv] write failed")
        return error_response(500, "Failed to create bulk submissions.")

    body = CsvImportOut(ok=result.ok, imported=result.imported, errors=result.errors, batchId=result.batch_id)
    return JSONResponse(status_code=200 if result.ok else 400, content=body.model_dump())


@router.get("/pages/leathercraft-classes/submit/config")
async def public_form_config(request: Request) -> dict:
    settings = request.app.state.settings
    return {
        "turnstileSiteKey": settings.TURNSTILE_SITE_KEY,
        "apiBaseUrl": settings.PUBLIC_BASE_URL,
        "formats": [{"value": f.value, "label": f.label} for f in ClassFormat],
        "topics": [{"value": t.value, "label": t.label} for t in ClassTopic],
    }
