import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core import crud
from ..core.config import Settings, setup_logging
from ..core.db import Database
from ..core.gemini_api import GeminiService
from . import ai_routes, db_routes
from .schemas import error_response

logger = logging.getLogger(__name__)


def _build_gemini(settings: Settings) -> Optional[GeminiService]:
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; AI endpoints are disabled")
        return None
    return GeminiService(settings.gemini_api_key, settings.gemini_model)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    gemini: Optional[GeminiService] = None,
) -> FastAPI:
    """Build the API application; collaborators can be injected for tests"""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db: Database = app.state.database
        db.open()
        await db.init_schema()
        try:
            yield
        finally:
            await db.close()
            if app.state.gemini is not None:
                await app.state.gemini.aclose()

    app = FastAPI(title="gemchat", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database or Database(settings.database_url)
    app.state.gemini = gemini if gemini is not None else _build_gemini(settings)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
        return error_response(400, "Invalid request")

    @app.get("/api/health")
    async def health(request: Request):
        try:
            stats = await crud.get_database_stats(request.app.state.database)
            return JSONResponse({"status": "ok", "database": stats})
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return error_response(500, "Database unavailable")

    app.include_router(db_routes.router)
    app.include_router(ai_routes.router)
    return app


def run():
    """Console entry point: serve the API with uvicorn"""
    import uvicorn

    settings = Settings.from_env()
    setup_logging(settings.environment)
    uvicorn.run("gemchat.api.main:create_app", factory=True, host="0.0.0.0", port=8000)
