from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

JSON_TYPES = ("application/json",)
FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def content_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";")[0].strip().lower()


def is_multipart(request: Request) -> bool:
    return content_type(request) == "multipart/form-data"


async def read_body(request: Request) -> dict[str, Any]:
    """Read a JSON object or form body into a plain dict; anything else is a 400."""
    ctype = content_type(request)
    if ctype in JSON_TYPES or ctype.endswith("+json"):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="JSON body must be an object")
        return body
    if ctype in FORM_TYPES:
        form = await request.form()
        return {key: value for key, value in form.items() if not isinstance(value, UploadFile)}
    raise HTTPException(status_code=400, detail="Expected a JSON or form-encoded body")


async def read_csv_upload(request: Request, field: str = "csv_file") -> tuple[str | None, dict[str, str], str | None]:
    """
    Pull the uploaded CSV text and the plain form fields out of a multipart body.
    Returns (text, fields, error); text is None when error is set.
    """
    form = await request.form()
    fields = {key: value for key, value in form.items() if isinstance(value, str)}
    upload = form.get(field)
    if not isinstance(upload, UploadFile):
        return None, fields, "Please upload a CSV file."
    raw = await upload.read()
    try:
        return raw.decode("utf-8-sig"), fields, None
    except UnicodeDecodeError:
        return None, fields, "CSV file must be UTF-8 encoded."


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error, **extra})
