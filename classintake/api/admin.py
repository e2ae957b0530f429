import asyncio
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from classintake.api.payloads import error_response, read_body, read_csv_upload
from classintake.repositories.base import IntakeStoreError
from classintake.schemas.submission import CsvImportOut, PendingListOut, ReviewActionOut
from classintake.services.intake_service import CSV_COLUMNS
from classintake.services.moderation_service import INTENT_APPROVE, INTENT_REJECT, SOURCE_STORE, ModerationError
from classintake.services.shopify_client import ShopifyError, ShopifyUserError

logger = logging.getLogger(__name__)

admin_router = APIRouter()

_TRUTHY = {"1", "true", "yes", "on"}


def _shopify_error(exc: ShopifyError) -> JSONResponse:
    if isinstance(exc, ShopifyUserError):
        return error_response(400, str(exc), details=exc.user_errors)
    return error_response(500, str(exc))


@admin_router.get("/app/import-classes")
async def import_classes_info() -> dict:
    return {
        "ok": True,
        "columns": list(CSV_COLUMNS),
        "requiredAttribution": ["submitted_by_name", "submitted_by_email"],
    }


@admin_router.post("/app/import-classes", response_model=CsvImportOut)
async def import_classes(request: Request):
    text, fields, upload_error = await read_csv_upload(request)
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
    except IntakeStoreError as exc:
        logger.exception("[csv] write failed")
        return error_response(500, "Failed to import CSV.", details=str(exc))

    body = CsvImportOut(ok=result.ok, imported=result.imported, errors=result.errors, batchId=result.batch_id)
    return JSONResponse(status_code=200 if result.ok else 400, content=body.model_dump())


@admin_router.get("/app/review-classes", response_model=PendingListOut)
async def list_pending(request: Request, source: str = Query(SOURCE_STORE)):
    try:
        pending = await request.app.state.moderation_service.list_pending(source)
    except ModerationError as exc:
        return error_response(exc.status_code, exc.message)
    except ShopifyError as exc:
        logger.error("[review] listing failed | error=%s", exc)
        return _shopify_error(exc)
    return PendingListOut(source=source, count=len(pending), pending=pending)


async def _run_review(request: Request, entry_id: str, intent: str, publish: bool):
    try:
        outcome = await request.app.state.moderation_service.review(entry_id, intent, publish=publish)
    except ModerationError as exc:
        return error_response(exc.status_code, exc.message)
    except ShopifyError as exc:
        logger.warning("[review] shopify rejected change | id=%s | intent=%s | error=%s", entry_id, intent, exc)
        return _shopify_error(exc)

    return ReviewActionOut(
        message=outcome.message,
        entryId=outcome.entry_id,
        status=outcome.status.value,
        published=outcome.published,
    )


@admin_router.post("/app/review-classes", response_model=ReviewActionOut)
async def review(request: Request):
    body = await read_body(request)
    entry_id = str(body.get("id") or body.get("entryId") or "")
    intent = str(body.get("intent") or INTENT_APPROVE).strip().lower()
    publish = str(body.get("publish") or "").strip().lower() in _TRUTHY
    return await _run_review(request, entry_id, intent, publish)


@admin_router.post("/api/class-submissions/approve", response_model=ReviewActionOut)
async def approve_entry(request: Request):
    """JSON shortcut: APPROVED approves and publishes in one step, REJECTED rejects."""
    body = await read_body(request)
    entry_id = str(body.get("entryId") or body.get("id") or "")
    workflow_status = str(body.get("workflowStatus") or "APPROVED").strip().upper()
    if workflow_status == "APPROVED":
        return await _run_review(request, entry_id, INTENT_APPROVE, True)
    if workflow_status == "REJECTED":
        return await _run_review(request, entry_id, INTENT_REJECT, False)
    return error_response(400, f"Unsupported workflowStatus: {workflow_status!r}")
