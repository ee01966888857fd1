"""Assistant routes: status, conversations and the message pipeline."""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from loguru import logger
from starlette.concurrency import run_in_threadpool

from clinician_assistant.application.use_cases import AssistantUseCase
from clinician_assistant.domain.models import FailureKind
from clinician_assistant.domain.protocols import IConversationStore, IRecordStore
from clinician_assistant.presentation.exception_handlers import error_response
from clinician_assistant.presentation.schemas import (
    ConversationListResponse,
    ConversationSchema,
    CreateConversationRequest,
    ErrorResponse,
    MessageSchema,
    PostMessageRequest,
    StatusResponse,
)

router = APIRouter(tags=["assistant"])

# Failures that still resolve the turn but are reported as server errors.
_FAILURE_STATUS = {
    FailureKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_ERRORS = {
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Health / status
# ---------------------------------------------------------------------------


@router.get("/health")
async def health():
    """Simple liveness check."""
    return {"status": "ok"}


@router.get("/status", response_model=StatusResponse)
async def get_status(request: Request):
    """Whether a records database is configured and currently reachable."""
    settings = request.app.state.settings
    records: IRecordStore = request.app.state.records
    is_configured = settings.records_db_path.exists()
    connection_valid = is_configured and await run_in_threadpool(records.ping)
    return StatusResponse(is_configured=is_configured, connection_valid=connection_valid)


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(request: Request):
    """All conversations, most recently active first."""
    store: IConversationStore = request.app.state.conversations
    conversations = await run_in_threadpool(store.list_conversations)
    return ConversationListResponse(
        conversations=[ConversationSchema.from_domain(c) for c in conversations]
    )


@router.post(
    "/conversations",
    response_model=ConversationSchema,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_conversation(body: CreateConversationRequest, request: Request):
    store: IConversationStore = request.app.state.conversations
    conversation = await run_in_threadpool(store.create_conversation, body.name)
    logger.info("POST /conversations | id={} name={}", conversation.id, conversation.name)
    return ConversationSchema.from_domain(conversation)


@router.get(
    "/conversations/{conversation_id}",
    response_model=ConversationSchema,
    responses={404: {"model": ErrorResponse}},
)
async def get_conversation(conversation_id: str, request: Request):
    """Current state of one conversation; clients poll this while a turn is pending."""
    store: IConversationStore = request.app.state.conversations
    conversation = await run_in_threadpool(store.get_conversation, conversation_id)
    return ConversationSchema.from_domain(conversation)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageSchema,
    responses=_ERRORS,
)
async def post_message(conversation_id: str, body: PostMessageRequest, request: Request):
    """Ask a question and receive the assistant's reply.

    The reply is always appended to the conversation.  When the records
    could not be read, or the pipeline failed, the reply text is also
    returned in an error envelope with a 503 or 500 status.
    """
    uc: AssistantUseCase = request.app.state.assistant_uc
    logger.info("POST /conversations/{}/messages | msg={}", conversation_id, body.message[:60])

    turn = await run_in_threadpool(uc.process_message, conversation_id, body.message)

    if turn.failure is not None and turn.failure.kind in _FAILURE_STATUS:
        status_code = _FAILURE_STATUS[turn.failure.kind]
        return error_response(
            status_code,
            turn.message.content,
            assistantMessage=MessageSchema.from_domain(turn.message).model_dump(by_alias=True),
        )
    return MessageSchema.from_domain(turn.message)
