"""Tests for AssistantUseCase: full pipeline turns and failure resolution."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from clinician_assistant.application.use_cases import AssistantUseCase
from clinician_assistant.domain.exceptions import (
    ConversationNotFoundError,
    EmptyMessageError,
    StoreLookupError,
)
from clinician_assistant.domain.models import FailureKind, QueryType
from clinician_assistant.services.conversation_store import ConversationStore
from clinician_assistant.services.entity_extractor import EntityExtractor
from clinician_assistant.services.query_classifier import QueryClassifier
from clinician_assistant.services.query_dispatcher import QueryDispatcher
from clinician_assistant.services.response_generator import FALLBACK_TEXT, ResponseGenerator


def _use_case(dispatcher: QueryDispatcher, conversations: ConversationStore, **overrides) -> AssistantUseCase:
    parts = {
        "extractor": EntityExtractor(),
        "classifier": QueryClassifier(),
        "dispatcher": dispatcher,
        "generator": ResponseGenerator(),
        "conversations": conversations,
    }
    parts.update(overrides)
    return AssistantUseCase(**parts)


@pytest.fixture()
def use_case(dispatcher, conversation_store) -> AssistantUseCase:
    return _use_case(dispatcher, conversation_store)


class TestAnswer:
    def test_patient_count(self, use_case: AssistantUseCase, patient_count: int):
        outcome = use_case.answer("How many patients do we have?")

        assert outcome.query_type is QueryType.PATIENT_COUNT
        assert str(patient_count) in outcome.response.text
        assert outcome.failure is None

    def test_combined_reference_end_to_end(self, use_case: AssistantUseCase):
        outcome = use_case.answer("Look up Radwan Smith-404924")

        assert outcome.query_type is QueryType.PATIENT_SEARCH
        assert outcome.result.rows[0]["unique_identifier"] == "404924"
        assert "Radwan Smith" in outcome.response.text

    def test_ambiguous_name_attaches_table(self, use_case: AssistantUseCase):
        outcome = use_case.answer("Find Smith")

        assert outcome.response.query_result is not None
        assert outcome.response.query_result.row_count == 2

    def test_unknown(self, use_case: AssistantUseCase):
        outcome = use_case.answer("What's the weather like?")

        assert outcome.query_type is QueryType.UNKNOWN
        assert outcome.response.text == FALLBACK_TEXT
        assert outcome.response.query_result is None

    def test_not_found_is_rendered(self, use_case: AssistantUseCase):
        outcome = use_case.answer("Look up Zed Nobody")

        assert outcome.failure.kind is FailureKind.NOT_FOUND
        assert "Zed Nobody" in outcome.response.text

    def test_store_failure_is_rendered(self, conversation_store):
        dispatcher = MagicMock(spec=QueryDispatcher)
        dispatcher.dispatch.side_effect = StoreLookupError("database is locked")
        use_case = _use_case(dispatcher, conversation_store)

        outcome = use_case.answer("How many patients do we have?")

        assert outcome.failure.kind is FailureKind.STORE_UNAVAILABLE
        assert outcome.response.query_result is None


class TestProcessMessage:
    def test_turn_appends_user_and_assistant(self, use_case, conversation_store, patient_count):
        conversation = conversation_store.create_conversation("c")

        turn = use_case.process_message(conversation.id, "How many patients do we have?")

        stored = conversation_store.get_conversation(conversation.id)
        assert [m.role for m in stored.messages] == ["user", "assistant"]
        assert stored.messages[1].id == turn.message.id
        assert str(patient_count) in turn.message.content
        assert turn.failure is None
        assert not stored.pending

    def test_blank_message_is_rejected(self, use_case, conversation_store):
        conversation = conversation_store.create_conversation("c")

        with pytest.raises(EmptyMessageError):
            use_case.process_message(conversation.id, "   ")

        assert conversation_store.get_conversation(conversation.id).messages == []

    def test_unknown_conversation(self, use_case):
        with pytest.raises(ConversationNotFoundError):
            use_case.process_message("missing", "How many patients?")

    def test_unknown_conversations_leave_no_turn_state(self, use_case, conversation_store):
        for i in range(100):
            with pytest.raises(ConversationNotFoundError):
                use_case.process_message(f"missing-{i}", "How many patients?")

        assert conversation_store._turn_locks == {}
        assert not conversation_store.is_pending("missing-0")

    def test_store_failure_resolves_the_turn(self, conversation_store):
        dispatcher = MagicMock(spec=QueryDispatcher)
        dispatcher.dispatch.side_effect = StoreLookupError("disk I/O error")
        use_case = _use_case(dispatcher, conversation_store)
        conversation = conversation_store.create_conversation("c")

        turn = use_case.process_message(conversation.id, "How many patients do we have?")

        stored = conversation_store.get_conversation(conversation.id)
        assert [m.role for m in stored.messages] == ["user", "assistant"]
        assert turn.failure.kind is FailureKind.STORE_UNAVAILABLE
        assert "unavailable" in stored.messages[1].content
        assert not stored.pending

    def test_unexpected_error_resolves_the_turn(self, dispatcher, conversation_store):
        extractor = MagicMock(spec=EntityExtractor)
        extractor.extract.side_effect = RuntimeError("boom")
        use_case = _use_case(dispatcher, conversation_store, extractor=extractor)
        conversation = conversation_store.create_conversation("c")

        turn = use_case.process_message(conversation.id, "How many patients do we have?")

        stored = conversation_store.get_conversation(conversation.id)
        assert [m.role for m in stored.messages] == ["user", "assistant"]
        assert turn.failure.kind is FailureKind.INTERNAL
        assert "boom" not in turn.message.content
        assert not stored.pending

    def test_concurrent_turns_stay_paired(self, use_case, conversation_store):
        conversation = conversation_store.create_conversation("busy")
        questions = [f"How many patients do we have? ({i})" for i in range(8)]
        errors: list[BaseException] = []

        def ask(question: str) -> None:
            try:
                use_case.process_message(conversation.id, question)
            except BaseException as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=ask, args=(q,)) for q in questions]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        messages = conversation_store.get_conversation(conversation.id).messages
        assert len(messages) == 2 * len(questions)
        assert [m.role for m in messages] == ["user", "assistant"] * len(questions)
        assert sorted(m.content for m in messages[::2]) == sorted(questions)

    def test_turns_are_recorded_in_acceptance_order(self, dispatcher, conversation_store):
        first_dispatch = threading.Event()
        release = threading.Event()
        gated = MagicMock(spec=QueryDispatcher)

        def dispatch(query_type, entities):
            if not first_dispatch.is_set():
                first_dispatch.set()
                assert release.wait(timeout=5)
            return dispatcher.dispatch(query_type, entities)

        gated.dispatch.side_effect = dispatch
        use_case = _use_case(gated, conversation_store)
        conversation = conversation_store.create_conversation("ordered")
        first, second = "How many patients do we have? (A)", "How many patients do we have? (B)"

        thread_a = threading.Thread(target=use_case.process_message, args=(conversation.id, first))
        thread_a.start()
        assert first_dispatch.wait(timeout=5)

        # A is mid-turn and holds the conversation lock, so B must queue behind it.
        thread_b = threading.Thread(target=use_case.process_message, args=(conversation.id, second))
        thread_b.start()
        thread_b.join(timeout=0.2)
        assert thread_b.is_alive()
        assert [m.content for m in conversation_store.get_conversation(conversation.id).messages] == [
            first
        ]

        release.set()
        thread_a.join(timeout=5)
        thread_b.join(timeout=5)

        messages = conversation_store.get_conversation(conversation.id).messages
        assert [m.role for m in messages] == ["user", "assistant", "user", "assistant"]
        assert messages[0].content == first
        assert messages[2].content == second
        assert [m.created_at for m in messages] == sorted(m.created_at for m in messages)
