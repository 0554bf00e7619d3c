"""
FastAPI application for the email intake pipeline.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from email_intake import __version__
from email_intake.config import settings
from email_intake.core.errors import (
    ConfigurationError,
    DuplicateEmailError,
    EmailNotFoundError,
    InvalidTransitionError,
    RecordBusyError,
)
from email_intake.core.logging import configure_logging, get_logger
from email_intake.core.store import RedisStore
from email_intake.llm import get_llm_client
from email_intake.processors.orchestrator import EmailProcessor
from email_intake.scheduler import start_scheduler, stop_scheduler
from email_intake.services.delivery import DeliveryGateway
from email_intake.services.poller import EmailPoller
from email_intake.routers.diagnostics import router as diagnostics_router
from email_intake.routers.emails import router as emails_router
from email_intake.routers.process import router as process_router

log = get_logger(__name__)


def build_components(app: FastAPI) -> None:
    """Construct the long-lived components and attach them to app.state."""
    store = RedisStore(prefix=settings.store_key_prefix)

    try:
        llm = get_llm_client(settings)
        llm_error = None
    except ConfigurationError as e:
        # Keep serving the dashboard; processing routes answer 503
        log.error("llm_client_unavailable", error=str(e))
        llm, llm_error = None, str(e)

    delivery = DeliveryGateway(settings)
    processor = EmailProcessor(
        store,
        llm,
        delivery,
        record_delay_seconds=settings.record_delay_seconds,
    )

    app.state.store = store
    app.state.llm = llm
    app.state.llm_error = llm_error
    app.state.delivery = delivery
    app.state.processor = processor
    app.state.poller = EmailPoller(store)


async def close_components(app: FastAPI) -> None:
    llm = getattr(app.state, "llm", None)
    if llm is not None:
        await llm.aclose()
    await app.state.delivery.aclose()
    await app.state.store.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.json_logs)
    log.info("application_starting", version=__version__)

    build_components(app)

    if settings.scheduler_enabled:
        start_scheduler(app.state.poller, app.state.processor)
    else:
        log.info("scheduler_disabled", reason="poll and process through the API")

    yield

    # Shutdown
    if settings.scheduler_enabled:
        stop_scheduler()
    await close_components(app)
    log.info("application_stopped")


app = FastAPI(
    title="Email Intake",
    description="Inbound email triage and automated replies",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(emails_router)
app.include_router(process_router)
app.include_router(diagnostics_router)


# Error mapping

@app.exception_handler(EmailNotFoundError)
async def not_found_handler(request: Request, exc: EmailNotFoundError):
    return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})


@app.exception_handler(InvalidTransitionError)
@app.exception_handler(DuplicateEmailError)
@app.exception_handler(RecordBusyError)
async def conflict_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"success": False, "error": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Run with: uvicorn email_intake.main:app --host 0.0.0.0 --port 8001
