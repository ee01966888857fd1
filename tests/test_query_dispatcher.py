"""Tests for QueryDispatcher and its handlers against a seeded SQLite store."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest

from clinician_assistant.domain.exceptions import NotFoundError, StoreLookupError
from clinician_assistant.domain.models import DateRange, ExtractedEntities, QueryType
from clinician_assistant.services.query_dispatcher import (
    HANDLERS,
    PATIENT_COLUMNS,
    DispatchContext,
    QueryDispatcher,
)
from clinician_assistant.services.record_store import SQLiteRecordStore


def _entities(
    name: str | None = None,
    identifier: str | None = None,
    date_range: DateRange | None = None,
    goal_keyword: str | None = None,
) -> ExtractedEntities:
    text = " ".join(part for part in (name, identifier) if part) or "query"
    return ExtractedEntities(
        patient_name=name,
        patient_identifier=identifier,
        date_range=date_range,
        matched_span=(0, len(text)) if (name or identifier) else None,
        source_text=text,
        goal_keyword=goal_keyword,
    )


class TestHandlerTable:
    def test_every_answerable_type_has_a_handler(self):
        assert set(HANDLERS) == set(QueryType) - {QueryType.UNKNOWN}

    def test_unknown_is_not_dispatchable(self, dispatcher: QueryDispatcher):
        with pytest.raises(ValueError):
            dispatcher.dispatch(QueryType.UNKNOWN, _entities())


class TestPatientCount:
    def test_count_matches_store(self, dispatcher: QueryDispatcher, patient_count: int):
        result = dispatcher.dispatch(QueryType.PATIENT_COUNT, _entities())

        assert result.columns == ("patient_count",)
        assert result.row_count == 1
        assert result.rows[0]["patient_count"] == patient_count

    def test_metadata_is_recorded(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_COUNT, _entities())

        assert result.metadata.row_count == 1
        assert result.metadata.query_text == "query"
        assert result.metadata.execution_time_ms >= 0


class TestPatientSearch:
    def test_identifier_is_authoritative(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(
            QueryType.PATIENT_SEARCH, _entities(name="Oliver Smith", identifier="404924")
        )

        assert result.row_count == 1
        assert result.rows[0]["patient_name"] == "Radwan Smith"
        assert result.columns == PATIENT_COLUMNS

    def test_name_is_case_insensitive_substring(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_SEARCH, _entities(name="amelia"))

        assert [row["patient_name"] for row in result.rows] == ["Amelia Chen"]

    def test_multiple_matches_return_all_rows(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_SEARCH, _entities(name="Smith"))

        assert [row["patient_name"] for row in result.rows] == ["Oliver Smith", "Radwan Smith"]

    def test_missing_values_are_explicit_none(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_SEARCH, _entities(identifier="618240"))

        row = result.rows[0]
        assert set(row) == set(PATIENT_COLUMNS)
        assert row["contact_email"] is None

    def test_not_found(self, dispatcher: QueryDispatcher):
        with pytest.raises(NotFoundError) as exc_info:
            dispatcher.dispatch(QueryType.PATIENT_SEARCH, _entities(name="Zed Nobody"))

        assert exc_info.value.reference == "Zed Nobody"

    def test_like_wildcards_are_literal(self, dispatcher: QueryDispatcher):
        with pytest.raises(NotFoundError):
            dispatcher.dispatch(QueryType.PATIENT_SEARCH, _entities(name="%"))


class TestPatientScoped:
    def test_goals(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_GOALS, _entities(identifier="404924"))

        assert result.row_count == 2
        assert {row["goal_title"] for row in result.rows} == {
            "Improve expressive language",
            "Fine motor control",
        }

    def test_goals_filtered_by_keyword(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(
            QueryType.PATIENT_GOALS, _entities(identifier="404924", goal_keyword="scissors")
        )

        assert [row["goal_title"] for row in result.rows] == ["Fine motor control"]

    def test_goal_progress(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(
            QueryType.PATIENT_GOAL_PROGRESS, _entities(name="Radwan Smith")
        )

        by_title = {row["goal_title"]: row for row in result.rows}
        language = by_title["Improve expressive language"]
        assert language["assessment_count"] == 2
        assert language["average_score"] == 6.0
        assert language["latest_achievement_level"] == 4
        assert language["last_assessed_on"] == "2025-05-25"
        assert by_title["Fine motor control"]["assessment_count"] == 0
        assert by_title["Fine motor control"]["average_score"] is None

    def test_sessions_in_window(self, dispatcher: QueryDispatcher):
        window = DateRange(date(2025, 5, 1), date(2025, 6, 1))

        result = dispatcher.dispatch(
            QueryType.PATIENT_SESSIONS, _entities(identifier="404924", date_range=window)
        )

        assert [row["session_date"] for row in result.rows] == ["2025-05-25", "2025-05-01"]

    def test_sessions_without_window(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_SESSIONS, _entities(identifier="404924"))

        assert result.row_count == 3

    def test_budget(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.PATIENT_BUDGET, _entities(identifier="404924"))

        row = result.rows[0]
        assert row["plan_status"] == "active"
        assert row["total_funds"] == 10000.0
        assert row["used_funds"] == 2500.0
        assert row["remaining_funds"] == 7500.0
        assert row["utilization_percent"] == 25.0

    def test_caregivers_exclude_archived(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.CAREGIVER_LOOKUP, _entities(identifier="512377"))

        assert [row["caregiver_name"] for row in result.rows] == ["Mei Chen", "Wei Chen"]

    def test_clinicians(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.CLINICIAN_LOOKUP, _entities(identifier="404924"))

        assert result.rows == (
            {
                "patient_name": "Radwan Smith",
                "clinician_name": "Dr. Hannah Lee",
                "title": "Speech Pathologist",
                "role": "primary",
                "email": "h.lee@example.com",
            },
        )

    def test_empty_result_is_not_an_error(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.CLINICIAN_LOOKUP, _entities(identifier="700415"))

        assert result.is_empty


class TestExpiringBudgets:
    def test_default_window(self, dispatcher: QueryDispatcher):
        result = dispatcher.dispatch(QueryType.EXPIRING_BUDGETS, _entities())

        assert [row["plan_code"] for row in result.rows] == ["RS-1", "AC-1"]
        assert result.rows[0]["days_remaining"] == 14

    def test_explicit_window(self, dispatcher: QueryDispatcher):
        window = DateRange(date(2025, 6, 1), date(2025, 12, 31))

        result = dispatcher.dispatch(QueryType.EXPIRING_BUDGETS, _entities(date_range=window))

        assert [row["plan_code"] for row in result.rows] == ["RS-1", "AC-1", "NP-1"]

    def test_configurable_default_days(self, record_store: SQLiteRecordStore, today: date):
        dispatcher = QueryDispatcher(
            record_store, DispatchContext(today=lambda: today, expiring_budget_days=20)
        )

        result = dispatcher.dispatch(QueryType.EXPIRING_BUDGETS, _entities())

        assert [row["plan_code"] for row in result.rows] == ["RS-1"]


class TestStoreFailures:
    def test_disconnected_store(self, records_db):
        dispatcher = QueryDispatcher(SQLiteRecordStore(db_path=records_db))

        with pytest.raises(StoreLookupError):
            dispatcher.dispatch(QueryType.PATIENT_COUNT, _entities())

    def test_connection_errors_are_wrapped(self):
        store = MagicMock()
        store.count_patients.side_effect = ConnectionError("connection reset")

        with pytest.raises(StoreLookupError):
            QueryDispatcher(store).dispatch(QueryType.PATIENT_COUNT, _entities())

    def test_missing_database_file(self, tmp_path):
        store = SQLiteRecordStore(db_path=tmp_path / "missing.sqlite")

        with pytest.raises(StoreLookupError):
            store.connect()


def test_sqlite_store_implements_record_port(record_store: SQLiteRecordStore):
    from clinician_assistant.domain.protocols import IRecordStore

    assert isinstance(record_store, IRecordStore)
