"""Query classification: validates entity shape for a tentative query type."""

from __future__ import annotations

from collections.abc import Callable, Mapping

from loguru import logger

from clinician_assistant.domain.models import ExtractedEntities, ExtractionResult, QueryType

EntityRequirement = Callable[[ExtractedEntities], bool]


def _needs_patient(entities: ExtractedEntities) -> bool:
    return entities.has_patient_reference


def _needs_nothing(entities: ExtractedEntities) -> bool:
    return True


# Mandatory entities per query type.  A type missing from the table is rejected.
REQUIREMENTS: Mapping[QueryType, EntityRequirement] = {
    QueryType.PATIENT_COUNT: _needs_nothing,
    QueryType.EXPIRING_BUDGETS: _needs_nothing,
    QueryType.PATIENT_SEARCH: _needs_patient,
    QueryType.PATIENT_GOALS: _needs_patient,
    QueryType.PATIENT_GOAL_PROGRESS: _needs_patient,
    QueryType.PATIENT_SESSIONS: _needs_patient,
    QueryType.PATIENT_BUDGET: _needs_patient,
    QueryType.CAREGIVER_LOOKUP: _needs_patient,
    QueryType.CLINICIAN_LOOKUP: _needs_patient,
}


class QueryClassifier:
    """Assigns the terminal ``QueryType`` for an extraction result.

    Pure: downgrades the tentative type to ``UNKNOWN`` when its mandatory
    entity is absent or the entities are malformed.  Lexical matching stays
    in the extractor.
    """

    def __init__(self, requirements: Mapping[QueryType, EntityRequirement] = REQUIREMENTS) -> None:
        self._requirements = requirements

    def classify(self, result: ExtractionResult) -> QueryType:
        query_type = result.query_type
        if query_type is QueryType.UNKNOWN:
            return QueryType.UNKNOWN

        try:
            result.entities.check_invariants()
        except ValueError as exc:
            logger.warning("Classification rejected malformed entities | type={} | {}", query_type.value, exc)
            return QueryType.UNKNOWN

        requirement = self._requirements.get(query_type)
        if requirement is None or not requirement(result.entities):
            logger.info("Classification rejected | type={} lacks its mandatory entity", query_type.value)
            return QueryType.UNKNOWN

        return query_type
