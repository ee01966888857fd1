"""Assistant use case: runs the query pipeline for one conversation turn.

extract -> classify -> dispatch -> render -> append.  The module has no
dependency on FastAPI; the HTTP layer only maps ``TurnResult.failure`` to a
status code.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from loguru import logger

from clinician_assistant.domain.exceptions import EmptyMessageError, NotFoundError, StoreLookupError
from clinician_assistant.domain.models import (
    ExtractedEntities,
    FailureKind,
    Message,
    QueryFailure,
    QueryResult,
    QueryType,
    RenderedResponse,
)
from clinician_assistant.domain.protocols import IConversationStore
from clinician_assistant.services.conversation_store import new_message
from clinician_assistant.services.entity_extractor import EntityExtractor
from clinician_assistant.services.query_classifier import QueryClassifier
from clinician_assistant.services.query_dispatcher import QueryDispatcher
from clinician_assistant.services.response_generator import ResponseGenerator
from clinician_assistant.telemetry import pipeline_span

# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineOutcome:
    """Everything one pass through the pipeline produced."""

    query_type: QueryType
    entities: ExtractedEntities
    response: RenderedResponse
    result: QueryResult | None = None
    failure: QueryFailure | None = None
    latency_ms: int = 0


@dataclass(frozen=True)
class TurnResult:
    """The resolved assistant message for a turn and the failure behind it, if any."""

    message: Message
    failure: QueryFailure | None = None


# ---------------------------------------------------------------------------
# Use case
# ---------------------------------------------------------------------------


class AssistantUseCase:
    """Answers clinician questions and records each turn in its conversation.

    Parameters
    ----------
    extractor, classifier, dispatcher, generator:
        The four pipeline stages.
    conversations:
        Conversation history; owns the per-conversation turn locks.
    """

    def __init__(
        self,
        extractor: EntityExtractor,
        classifier: QueryClassifier,
        dispatcher: QueryDispatcher,
        generator: ResponseGenerator,
        conversations: IConversationStore,
    ) -> None:
        self.extractor = extractor
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.generator = generator
        self.conversations = conversations

    def answer(self, query: str) -> PipelineOutcome:
        """Run the pipeline for *query* without touching any conversation.

        Lookup failures are converted into a rendered error response here;
        only unexpected exceptions propagate.
        """
        t0 = time.perf_counter()
        extraction = self.extractor.extract(query)
        query_type = self.classifier.classify(extraction)
        entities = extraction.entities

        if query_type is QueryType.UNKNOWN:
            logger.info("Unrecognised question | tentative={}", extraction.query_type.value)
            return PipelineOutcome(
                query_type=query_type,
                entities=entities,
                response=self.generator.render(query_type, None, entities),
                latency_ms=self._elapsed(t0),
            )

        try:
            with pipeline_span("assistant.dispatch", query_type=query_type.value):
                result = self.dispatcher.dispatch(query_type, entities)
        except NotFoundError as exc:
            failure = QueryFailure(FailureKind.NOT_FOUND, detail=str(exc), reference=exc.reference)
        except StoreLookupError as exc:
            logger.error("Record store lookup failed | type={} | {}", query_type.value, exc)
            failure = QueryFailure(FailureKind.STORE_UNAVAILABLE, detail=str(exc))
        else:
            return PipelineOutcome(
                query_type=query_type,
                entities=entities,
                response=self.generator.render(query_type, result, entities),
                result=result,
                latency_ms=self._elapsed(t0),
            )

        return PipelineOutcome(
            query_type=query_type,
            entities=entities,
            response=self.generator.render(query_type, failure, entities),
            failure=failure,
            latency_ms=self._elapsed(t0),
        )

    def process_message(self, conversation_id: str, content: str) -> TurnResult:
        """Append *content* as a user message and resolve the assistant reply.

        Exactly one assistant message is appended per call, even when the
        pipeline fails, and the pending flag is always cleared.

        Raises:
            EmptyMessageError: If *content* is blank.
            ConversationNotFoundError: If the conversation does not exist.
        """
        text = (content or "").strip()
        if not text:
            raise EmptyMessageError("message must not be empty")

        lock = self.conversations.conversation_lock(conversation_id)
        with (
            lock,
            logger.contextualize(conversation=conversation_id),
            pipeline_span("assistant.turn", conversation_id=conversation_id),
        ):
            self.conversations.append_message(conversation_id, new_message("user", text))
            self.conversations.mark_pending(conversation_id)
            try:
                try:
                    outcome = self.answer(text)
                except Exception as exc:
                    logger.exception("Pipeline failed")
                    failure = QueryFailure(FailureKind.INTERNAL, detail=str(exc))
                    reply = new_message("assistant", self.generator.failure_text(failure))
                else:
                    failure = outcome.failure
                    reply = new_message(
                        "assistant", outcome.response.text, outcome.response.query_result
                    )
                    logger.info(
                        "Turn answered | type={} latency={}ms",
                        outcome.query_type.value,
                        outcome.latency_ms,
                    )
                saved = self.conversations.append_message(conversation_id, reply)
            finally:
                self.conversations.clear_pending(conversation_id)

        return TurnResult(message=saved, failure=failure)

    @staticmethod
    def _elapsed(t0: float) -> int:
        return int((time.perf_counter() - t0) * 1000)
