"""Tests for ResponseGenerator: templates, failures and number formatting."""

from __future__ import annotations

import pytest

from clinician_assistant.domain.models import (
    ExtractedEntities,
    FailureKind,
    QueryFailure,
    QueryResult,
    QueryType,
)
from clinician_assistant.services.response_generator import (
    FALLBACK_TEXT,
    TEMPLATES,
    ResponseGenerator,
    format_count,
    format_currency,
    format_percent,
)


@pytest.fixture()
def generator() -> ResponseGenerator:
    return ResponseGenerator()


def _named(name: str) -> ExtractedEntities:
    text = f"Find {name}"
    return ExtractedEntities(patient_name=name, matched_span=(0, len(text)), source_text=text)


def _caregivers(*names: str) -> QueryResult:
    return QueryResult.from_records(
        ("patient_name", "caregiver_name", "relationship", "email", "phone"),
        [{"patient_name": "Amelia Chen", "caregiver_name": n, "relationship": "parent"} for n in names],
    )


class TestFormatting:
    def test_count_pluralizes(self):
        assert format_count(1, "patient") == "1 patient"
        assert format_count(3, "patient") == "3 patients"
        assert format_count(0, "budget plan") == "0 budget plans"

    def test_count_numeral_is_not_grouped(self):
        assert format_count(12345) == "12345"

    def test_currency(self):
        assert format_currency(1234.5) == "$1,234.50"
        assert format_currency(None) == "an unknown amount"

    def test_percent(self):
        assert format_percent(25) == "25.0%"


class TestRender:
    def test_every_answerable_type_has_a_template(self):
        assert set(TEMPLATES) == set(QueryType) - {QueryType.UNKNOWN}

    def test_unknown_returns_fallback(self, generator: ResponseGenerator):
        rendered = generator.render(QueryType.UNKNOWN, None)

        assert rendered.text == FALLBACK_TEXT
        assert rendered.query_result is None

    def test_unknown_ignores_any_result(self, generator: ResponseGenerator):
        rendered = generator.render(QueryType.UNKNOWN, _caregivers("A", "B"))

        assert rendered.text == FALLBACK_TEXT
        assert rendered.query_result is None

    def test_patient_count_contains_numeral(self, generator: ResponseGenerator):
        result = QueryResult(columns=("patient_count",), rows=({"patient_count": 42},))

        rendered = generator.render(QueryType.PATIENT_COUNT, result)

        assert "42" in rendered.text
        assert rendered.text == "Currently, we have a total of 42 patients in our system."
        assert rendered.query_result is None

    def test_single_patient_count(self, generator: ResponseGenerator):
        result = QueryResult(columns=("patient_count",), rows=({"patient_count": 1},))

        assert "1 patient " in generator.render(QueryType.PATIENT_COUNT, result).text

    def test_empty_names_the_subject(self, generator: ResponseGenerator):
        rendered = generator.render(
            QueryType.CAREGIVER_LOOKUP, _caregivers(), _named("Amelia Chen")
        )

        assert rendered.text == "No caregivers are recorded for Amelia Chen."
        assert rendered.query_result is None

    def test_single_row_is_singular_without_table(self, generator: ResponseGenerator):
        rendered = generator.render(QueryType.CAREGIVER_LOOKUP, _caregivers("Wei Chen"))

        assert "Wei Chen" in rendered.text
        assert "Amelia Chen" in rendered.text
        assert rendered.query_result is None

    def test_plural_attaches_result(self, generator: ResponseGenerator):
        result = _caregivers("Wei Chen", "Mei Chen")

        rendered = generator.render(QueryType.CAREGIVER_LOOKUP, result)

        assert "2 caregivers" in rendered.text
        assert rendered.query_result is result

    def test_ambiguous_search_lists_matches(self, generator: ResponseGenerator):
        result = QueryResult.from_records(
            ("patient_id", "patient_name"),
            [{"patient_id": 3, "patient_name": "Oliver Smith"}, {"patient_id": 1, "patient_name": "Radwan Smith"}],
        )

        rendered = generator.render(QueryType.PATIENT_SEARCH, result, _named("Smith"))

        assert rendered.text == "I found 2 patients matching Smith: Oliver Smith and Radwan Smith."

    def test_budget_uses_currency_and_percent(self, generator: ResponseGenerator):
        result = QueryResult.from_records(
            (
                "patient_name", "plan_code", "end_of_plan", "plan_status",
                "total_funds", "used_funds", "remaining_funds", "utilization_percent",
            ),
            [
                {
                    "patient_name": "Radwan Smith",
                    "plan_code": "RS-1",
                    "plan_status": "active",
                    "total_funds": 10000.0,
                    "used_funds": 2500.0,
                    "remaining_funds": 7500.0,
                    "utilization_percent": 25.0,
                }
            ],
        )

        text = generator.render(QueryType.PATIENT_BUDGET, result).text

        assert "$10,000.00" in text
        assert "25.0%" in text
        assert "$7,500.00" in text

    def test_expiring_budgets_empty_mentions_default_window(self):
        generator = ResponseGenerator(expiring_budget_days=45)
        result = QueryResult(columns=("patient_name",), rows=())

        text = generator.render(QueryType.EXPIRING_BUDGETS, result).text

        assert text == "No active budget plans expire in the next 45 days."


class TestFailures:
    def test_not_found_names_reference(self, generator: ResponseGenerator):
        failure = QueryFailure(FailureKind.NOT_FOUND, reference="Zed Nobody")

        rendered = generator.render(QueryType.PATIENT_SEARCH, failure)

        assert "'Zed Nobody'" in rendered.text
        assert rendered.query_result is None

    def test_store_unavailable(self, generator: ResponseGenerator):
        failure = QueryFailure(FailureKind.STORE_UNAVAILABLE, detail="disk I/O error")

        rendered = generator.render(QueryType.PATIENT_COUNT, failure)

        assert "unavailable" in rendered.text
        assert "disk I/O" not in rendered.text

    def test_internal(self, generator: ResponseGenerator):
        failure = QueryFailure(FailureKind.INTERNAL, detail="boom")

        assert generator.failure_text(failure).startswith("I'm sorry, I encountered an error")
