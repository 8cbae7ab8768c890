import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from timeline_export.api import export, storage
from timeline_export.config import get_settings
from timeline_export.exceptions import ExportError
from timeline_export.models.database import create_engine_and_session, init_db
from timeline_export.render.executor import TranscodeExecutor
from timeline_export.render.text_renderer import FontSet
from timeline_export.services.asset_catalog import InMemoryAssetCatalog, SqlAssetCatalog
from timeline_export.services.asset_downloader import AssetDownloader
from timeline_export.services.asset_resolver import AssetResolver
from timeline_export.services.delivery import DeliveryService, JobJanitor
from timeline_export.services.export_orchestrator import ExportOrchestrator
from timeline_export.services.job_store import InMemoryJobStore, SqlJobStore
from timeline_export.services.storage_service import create_storage_service

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    engine = None
    if settings.job_store_backend == "database":
        engine, session_maker = create_engine_and_session()
        await init_db(engine)
        store = SqlJobStore(session_maker)
        catalog = SqlAssetCatalog(session_maker)
    else:
        store = InMemoryJobStore()
        catalog = InMemoryAssetCatalog()

    storage_service = create_storage_service()
    delivery = DeliveryService(storage_service)
    orchestrator = ExportOrchestrator(
        store=store,
        downloader=AssetDownloader(AssetResolver(catalog, storage_service)),
        executor=TranscodeExecutor(),
        delivery=delivery,
        fonts=FontSet.from_settings(),
    )
    janitor = JobJanitor(store, delivery)

    app.state.storage = storage_service
    app.state.delivery = delivery
    app.state.orchestrator = orchestrator
    janitor_task = asyncio.create_task(janitor.run_forever(), name="export-janitor")
    logger.info(f"[STARTUP] {settings.app_name} ready (job store: {settings.job_store_backend})")

    yield

    # Shutdown
    janitor_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await janitor_task
    await orchestrator.shutdown()
    await store.close()
    if engine is not None:
        await engine.dispose()


async def export_error_handler(request: Request, exc: ExportError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies get the same 400 shape as timeline validation failures."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": message, "code": "VALIDATION_ERROR", "warnings": []},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
    )


# Global exception handler to ensure errors return proper JSON
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan if use_lifespan else None,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    app.add_exception_handler(ExportError, export_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Routers
    app.include_router(export.router, prefix="/export", tags=["export"])
    app.include_router(storage.router, prefix="/storage", tags=["storage"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "app": settings.app_name, "version": settings.app_version}

    return app


configure_logging()
app = create_app()
