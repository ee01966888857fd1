"""Tests for log redaction, per-conversation log context and pipeline spans."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest
from fastapi import FastAPI
from loguru import logger

from clinician_assistant import telemetry
from clinician_assistant.application.use_cases import AssistantUseCase
from clinician_assistant.config import Settings
from clinician_assistant.domain.models import QueryType
from clinician_assistant.logging_config import mask_identifiers, setup_logging
from clinician_assistant.services.entity_extractor import EntityExtractor
from clinician_assistant.services.query_classifier import QueryClassifier
from clinician_assistant.services.response_generator import ResponseGenerator


def _capture(**options) -> tuple[list[str], int]:
    setup_logging(level="DEBUG", **options)
    lines: list[str] = []
    sink_id = logger.add(
        lambda message: lines.append(str(message).rstrip("\n")),
        format="{extra[conversation]}|{message}",
        level="DEBUG",
    )
    return lines, sink_id


@pytest.fixture()
def use_case(dispatcher, conversation_store) -> AssistantUseCase:
    return AssistantUseCase(
        extractor=EntityExtractor(),
        classifier=QueryClassifier(),
        dispatcher=dispatcher,
        generator=ResponseGenerator(),
        conversations=conversation_store,
    )


class TestLogging:
    def test_identifiers_are_masked(self):
        lines, sink_id = _capture()
        try:
            logger.info("Looking up Radwan Smith-404924 and #512377")
        finally:
            logger.remove(sink_id)

        assert lines == ["-|Looking up Radwan Smith-****** and #******"]

    def test_redaction_can_be_disabled(self):
        lines, sink_id = _capture(redact=False)
        try:
            logger.info("patient 404924")
        finally:
            logger.remove(sink_id)
            setup_logging()

        assert lines == ["-|patient 404924"]

    @pytest.mark.parametrize("text", ["id ab123456-9c", "took 1234567 ms", "42 rows"])
    def test_other_numbers_are_left_alone(self, text: str):
        assert mask_identifiers(text) == text

    def test_turn_logs_carry_the_conversation(self, use_case, conversation_store):
        conversation = conversation_store.create_conversation("c")
        lines, sink_id = _capture()
        try:
            use_case.process_message(conversation.id, "How many patients do we have?")
            logger.info("after the turn")
        finally:
            logger.remove(sink_id)

        turn_lines = [line for line in lines if "Turn answered" in line]
        assert len(turn_lines) == 1
        assert turn_lines[0].startswith(f"{conversation.id}|")
        assert lines[-1] == "-|after the turn"


class TestPipelineSpans:
    def test_off_mode_disables_spans(self):
        app = FastAPI()
        telemetry.setup_telemetry(app, Settings(observability="off"))

        assert telemetry._tracer is None
        with telemetry.pipeline_span("assistant.turn", conversation_id="c"):
            pass

    def test_turn_and_dispatch_spans(self, use_case, conversation_store, monkeypatch):
        tracer = MagicMock()
        monkeypatch.setattr(telemetry, "_tracer", tracer)
        conversation = conversation_store.create_conversation("c")

        use_case.process_message(conversation.id, "How many patients do we have?")

        assert tracer.start_as_current_span.call_args_list == [
            call("assistant.turn", attributes={"conversation_id": conversation.id}),
            call("assistant.dispatch", attributes={"query_type": QueryType.PATIENT_COUNT.value}),
        ]

    def test_unknown_questions_skip_dispatch_span(self, use_case, monkeypatch):
        tracer = MagicMock()
        monkeypatch.setattr(telemetry, "_tracer", tracer)

        use_case.answer("What's the weather like?")

        tracer.start_as_current_span.assert_not_called()
