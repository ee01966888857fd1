"""FastAPI application for the Clinician Assistant.

This module is a thin presentation layer.  Query logic lives in
``services`` and ``application.use_cases`` so it can be tested and reused
independently of any HTTP framework.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from clinician_assistant import __version__
from clinician_assistant.application.use_cases import AssistantUseCase
from clinician_assistant.config import Settings, get_settings
from clinician_assistant.domain.exceptions import StoreLookupError
from clinician_assistant.logging_config import setup_logging
from clinician_assistant.presentation.exception_handlers import register_exception_handlers
from clinician_assistant.presentation.routes.assistant import router as assistant_router
from clinician_assistant.services.conversation_store import ConversationStore
from clinician_assistant.services.entity_extractor import EntityExtractor
from clinician_assistant.services.query_classifier import QueryClassifier
from clinician_assistant.services.query_dispatcher import DispatchContext, QueryDispatcher
from clinician_assistant.services.record_store import SQLiteRecordStore
from clinician_assistant.services.response_generator import ResponseGenerator
from clinician_assistant.telemetry import setup_telemetry

# ---------------------------------------------------------------------------
# Lifespan: initialise shared resources once at startup
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Set up and tear down services around the application lifetime."""
    settings: Settings = app.state.settings

    # A missing or unreadable records DB is reported by GET /status rather
    # than aborting startup; questions then resolve with a 503.
    records = SQLiteRecordStore(
        db_path=settings.records_db_path, timeout=settings.store_timeout_seconds
    )
    try:
        settings.validate_runtime()
        records.connect()
    except (FileNotFoundError, StoreLookupError) as exc:
        logger.warning("Record store not available at startup | {}", exc)

    conversations = ConversationStore(db_path=settings.conversations_db_path)
    conversations.connect()

    app.state.records = records
    app.state.conversations = conversations
    app.state.assistant_uc = AssistantUseCase(
        extractor=EntityExtractor(),
        classifier=QueryClassifier(),
        dispatcher=QueryDispatcher(
            records,
            DispatchContext(
                expiring_budget_days=settings.expiring_budget_days,
                search_limit=settings.patient_search_limit,
            ),
        ),
        generator=ResponseGenerator(expiring_budget_days=settings.expiring_budget_days),
        conversations=conversations,
    )

    logger.info("Application startup complete")
    yield

    conversations.close()
    records.close()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app; tests pass their own ``Settings``."""
    settings = settings or get_settings()
    setup_logging(
        level=settings.log_level,
        json=settings.log_json,
        redact=settings.log_redact_identifiers,
    )

    app = FastAPI(
        title="Clinician Assistant",
        description="Natural-language questions over clinical practice records.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(assistant_router)

    # No-op when OBSERVABILITY=off
    setup_telemetry(app, settings)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clinician_assistant.main:app", host="0.0.0.0", port=8000, reload=True)
