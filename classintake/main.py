import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from classintake.api.admin import admin_router
from classintake.api.routes import router
from classintake.config import Settings, settings as default_settings
from classintake.db.connection import Database, run_migrations
from classintake.repositories.submission_repository import SubmissionRepository
from classintake.services.bot_filter import BotFilter, TurnstileVerifier
from classintake.services.intake_service import IntakeService
from classintake.services.moderation_service import ModerationService
from classintake.services.shopify_client import ShopifyAdminClient


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    _configure_logging(settings)
    logger = logging.getLogger(__name__)
    logger.info(
        "Class intake starting | db=%s | pool=%d | port=%s",
        settings.DB_PATH, settings.DB_POOL_SIZE, settings.PORT,
    )

    db = Database(
        settings.DB_PATH, pool_size=settings.DB_POOL_SIZE, pool_timeout=settings.DB_POOL_TIMEOUT
    )
    run_migrations(db)
    app.state.db = db
    app.state.repository = SubmissionRepository(db)
    app.state.bot_filter = BotFilter(
        TurnstileVerifier(settings.TURNSTILE_SECRET_KEY, timeout=settings.HTTP_TIMEOUT)
    )
    app.state.intake_service = IntakeService(app.state.repository, max_batch_rows=settings.MAX_BATCH_ROWS)

    shopify = ShopifyAdminClient(
        settings.SHOPIFY_SHOP,
        settings.SHOPIFY_ACCESS_TOKEN,
        api_version=settings.SHOPIFY_API_VERSION,
        timeout=settings.HTTP_TIMEOUT,
    )
    if not shopify.is_configured:
        logger.warning("SHOPIFY_SHOP / SHOPIFY_ACCESS_TOKEN not set; moderation cannot sync to Shopify")
    app.state.moderation_service = ModerationService(
        app.state.repository,
        shopify,
        metaobject_type=settings.METAOBJECT_TYPE,
        page_size=settings.REVIEW_PAGE_SIZE,
    )
    yield
    db.close()
    logger.info("Class intake shutting down")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    app = FastAPI(title="Class Intake", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings

    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(router)
    app.include_router(admin_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        errors = {
            ".".join(str(p) for p in err.get("loc", ())) or "body": err.get("msg", "is invalid.")
            for err in exc.errors()
        }
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "Invalid request body", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("classintake.main:app", host="0.0.0.0", port=default_settings.PORT, log_level=default_settings.LOG_LEVEL)
