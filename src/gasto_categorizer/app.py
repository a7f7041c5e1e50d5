from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gasto_categorizer.api.routes import categories, confirmations, deliveries, health, jobs, messages
from gasto_categorizer.core import settings
from gasto_categorizer.core.errors import (
    ConcurrentUpdateError,
    ConfirmationNotFoundError,
    InvalidTransitionError,
    PendingConfirmationExistsError,
)
from gasto_categorizer.logger import get_logger, setup_logging
from gasto_categorizer.manager import TransactionAssistant

logger = get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfirmationNotFoundError)
    async def not_found(request: Request, exc: ConfirmationNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PendingConfirmationExistsError)
    async def pending_exists(request: Request, exc: PendingConfirmationExistsError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConcurrentUpdateError)
    async def concurrent_update(request: Request, exc: ConcurrentUpdateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        engine_settings = settings.EngineSettings.from_env()
        assistant = TransactionAssistant(engine_settings, data_dir=settings.DATA_DIR)
        scheduler = assistant.build_scheduler()

        app.state.assistant = assistant
        app.state.scheduler = scheduler

        if engine_settings.enable_jobs:
            scheduler.start()
        else:
            logger.info("ENABLE_JOBS is off. Periodic jobs only run on demand.")

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await scheduler.stop()
        await assistant.aclose()

    app = FastAPI(title="Gasto Categorizer", lifespan=lifespan)
    _register_error_handlers(app)

    app.include_router(messages.router)
    app.include_router(confirmations.router)
    app.include_router(deliveries.router)
    app.include_router(jobs.router)
    app.include_router(categories.router)
    app.include_router(health.router)

    return app


app = create_app()
