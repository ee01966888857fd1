"""Query dispatch: one data-access handler per query type.

``HANDLERS`` is a static table keyed by :class:`QueryType`.  Each handler is
a total function ``(entities, store, context) -> QueryResult``; adding an
intent means adding a handler and a table entry, never editing another
handler.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta

from loguru import logger

from clinician_assistant.domain.exceptions import NotFoundError, StoreLookupError
from clinician_assistant.domain.models import (
    ExtractedEntities,
    PatientRecord,
    QueryMetadata,
    QueryResult,
    QueryType,
)
from clinician_assistant.domain.protocols import IRecordStore


@dataclass(frozen=True)
class DispatchContext:
    """Settings shared by every handler."""

    today: Callable[[], date] = date.today
    expiring_budget_days: int = 30
    search_limit: int = 25


Handler = Callable[[ExtractedEntities, IRecordStore, DispatchContext], QueryResult]

# ---------------------------------------------------------------------------
# Column layouts (presentation order)
# ---------------------------------------------------------------------------

PATIENT_COUNT_COLUMNS = ("patient_count",)
PATIENT_COLUMNS = (
    "patient_id",
    "patient_name",
    "unique_identifier",
    "date_of_birth",
    "gender",
    "contact_email",
    "contact_phone",
)
GOAL_COLUMNS = ("patient_name", "goal_title", "description", "importance_level", "status")
GOAL_PROGRESS_COLUMNS = (
    "patient_name",
    "goal_title",
    "status",
    "assessment_count",
    "latest_achievement_level",
    "average_score",
    "last_assessed_on",
)
SESSION_COLUMNS = (
    "patient_name",
    "session_title",
    "session_date",
    "duration_minutes",
    "status",
    "location",
)
BUDGET_COLUMNS = (
    "patient_name",
    "plan_code",
    "end_of_plan",
    "plan_status",
    "total_funds",
    "used_funds",
    "remaining_funds",
    "utilization_percent",
)
EXPIRING_BUDGET_COLUMNS = (
    "patient_name",
    "plan_code",
    "end_of_plan",
    "days_remaining",
    "total_funds",
    "remaining_funds",
)
CAREGIVER_COLUMNS = ("patient_name", "caregiver_name", "relationship", "email", "phone")
CLINICIAN_COLUMNS = ("patient_name", "clinician_name", "title", "role", "email")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_patients(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> list[PatientRecord]:
    """Resolve the named patient to every matching record.

    The identifier is authoritative when present.  More than one match is
    returned as-is; the caller surfaces the ambiguity.

    Raises:
        NotFoundError: If nothing matches.
    """
    patients = store.find_patients(
        name=None if entities.patient_identifier else entities.patient_name,
        identifier=entities.patient_identifier,
        limit=context.search_limit,
    )
    if not patients:
        raise NotFoundError(entities.patient_reference or "")
    if len(patients) > 1:
        logger.info(
            "Patient reference is ambiguous | ref={} matches={}",
            entities.patient_reference,
            len(patients),
        )
    return patients


def _ids(patients: list[PatientRecord]) -> list[int]:
    return [p.id for p in patients]


def _round(value: float | None, digits: int = 2) -> float | None:
    return None if value is None else round(value, digits)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_patient_count(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    return QueryResult(
        columns=PATIENT_COUNT_COLUMNS,
        rows=({"patient_count": store.count_patients()},),
    )


def handle_patient_search(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    return QueryResult.from_records(
        PATIENT_COLUMNS,
        (
            {
                "patient_id": p.id,
                "patient_name": p.name,
                "unique_identifier": p.unique_identifier,
                "date_of_birth": p.date_of_birth,
                "gender": p.gender,
                "contact_email": p.contact_email,
                "contact_phone": p.contact_phone,
            }
            for p in patients
        ),
    )


def handle_patient_goals(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    goals = store.goals_for(_ids(patients), keyword=entities.goal_keyword)
    return QueryResult.from_records(
        GOAL_COLUMNS,
        (
            {
                "patient_name": g.patient_name,
                "goal_title": g.title,
                "description": g.description,
                "importance_level": g.importance_level,
                "status": g.status,
            }
            for g in goals
        ),
    )


def handle_goal_progress(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    progress = store.goal_progress_for(_ids(patients))
    return QueryResult.from_records(
        GOAL_PROGRESS_COLUMNS,
        (
            {
                "patient_name": g.patient_name,
                "goal_title": g.goal_title,
                "status": g.status,
                "assessment_count": g.assessment_count,
                "latest_achievement_level": g.latest_achievement_level,
                "average_score": _round(g.average_score, 1),
                "last_assessed_on": g.last_assessed_on,
            }
            for g in progress
        ),
    )


def handle_patient_sessions(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    window = entities.date_range
    sessions = store.sessions_for(
        _ids(patients),
        start=window.start if window else None,
        end=window.end if window else None,
    )
    return QueryResult.from_records(
        SESSION_COLUMNS,
        (
            {
                "patient_name": s.patient_name,
                "session_title": s.title,
                "session_date": s.session_date,
                "duration_minutes": s.duration_minutes,
                "status": s.status,
                "location": s.location,
            }
            for s in sessions
        ),
    )


def handle_patient_budget(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    rows = []
    for b in store.budgets_for(_ids(patients)):
        utilization = (b.used_funds / b.total_funds * 100) if b.total_funds else None
        rows.append(
            {
                "patient_name": b.patient_name,
                "plan_code": b.plan_code,
                "end_of_plan": b.end_of_plan,
                "plan_status": "active" if b.is_active else "inactive",
                "total_funds": _round(b.total_funds),
                "used_funds": _round(b.used_funds),
                "remaining_funds": _round(b.total_funds - b.used_funds),
                "utilization_percent": _round(utilization, 1),
            }
        )
    return QueryResult.from_records(BUDGET_COLUMNS, rows)


def handle_expiring_budgets(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    today = context.today()
    if entities.date_range is not None:
        start, end = entities.date_range.start, entities.date_range.end
    else:
        start, end = today, today + timedelta(days=context.expiring_budget_days)

    rows = []
    for b in store.expiring_budgets(start, end):
        days_remaining = None
        if b.end_of_plan:
            days_remaining = (date.fromisoformat(b.end_of_plan[:10]) - today).days
        rows.append(
            {
                "patient_name": b.patient_name,
                "plan_code": b.plan_code,
                "end_of_plan": b.end_of_plan,
                "days_remaining": days_remaining,
                "total_funds": _round(b.total_funds),
                "remaining_funds": _round(b.total_funds - b.used_funds),
            }
        )
    return QueryResult.from_records(EXPIRING_BUDGET_COLUMNS, rows)


def handle_caregiver_lookup(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    return QueryResult.from_records(
        CAREGIVER_COLUMNS,
        (
            {
                "patient_name": c.patient_name,
                "caregiver_name": c.name,
                "relationship": c.relationship,
                "email": c.email,
                "phone": c.phone,
            }
            for c in store.caregivers_for(_ids(patients))
        ),
    )


def handle_clinician_lookup(
    entities: ExtractedEntities, store: IRecordStore, context: DispatchContext
) -> QueryResult:
    patients = resolve_patients(entities, store, context)
    return QueryResult.from_records(
        CLINICIAN_COLUMNS,
        (
            {
                "patient_name": c.patient_name,
                "clinician_name": c.name,
                "title": c.title,
                "role": c.role,
                "email": c.email,
            }
            for c in store.clinicians_for(_ids(patients))
        ),
    )


HANDLERS: Mapping[QueryType, Handler] = {
    QueryType.PATIENT_COUNT: handle_patient_count,
    QueryType.PATIENT_SEARCH: handle_patient_search,
    QueryType.PATIENT_GOALS: handle_patient_goals,
    QueryType.PATIENT_GOAL_PROGRESS: handle_goal_progress,
    QueryType.PATIENT_SESSIONS: handle_patient_sessions,
    QueryType.PATIENT_BUDGET: handle_patient_budget,
    QueryType.EXPIRING_BUDGETS: handle_expiring_budgets,
    QueryType.CAREGIVER_LOOKUP: handle_caregiver_lookup,
    QueryType.CLINICIAN_LOOKUP: handle_clinician_lookup,
}

# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class QueryDispatcher:
    """Routes a classified query to its handler and times the lookup.

    Parameters
    ----------
    store:
        The record store every handler reads from.
    context:
        Clock and limits shared by the handlers.
    handlers:
        The ``QueryType`` to handler table.  Defaults to :data:`HANDLERS`.
    """

    def __init__(
        self,
        store: IRecordStore,
        context: DispatchContext | None = None,
        handlers: Mapping[QueryType, Handler] = HANDLERS,
    ) -> None:
        self.store = store
        self.context = context or DispatchContext()
        self._handlers = handlers

    def dispatch(self, query_type: QueryType, entities: ExtractedEntities) -> QueryResult:
        """Execute the handler for *query_type*.

        Raises:
            StoreLookupError: If the record store fails.
            NotFoundError: If a named patient has no matching record.
            ValueError: If *query_type* has no handler (e.g. ``UNKNOWN``).
        """
        handler = self._handlers.get(query_type)
        if handler is None:
            raise ValueError(f"No dispatch handler for {query_type.value}")

        t0 = time.perf_counter()
        try:
            result = handler(entities, self.store, self.context)
        except (StoreLookupError, NotFoundError):
            raise
        except OSError as exc:
            raise StoreLookupError(f"Record store unavailable: {exc}") from exc

        elapsed_ms = round((time.perf_counter() - t0) * 1000, 2)
        logger.info(
            "Dispatched | type={} rows={} elapsed={}ms",
            query_type.value,
            result.row_count,
            elapsed_ms,
        )
        return result.with_metadata(
            QueryMetadata(
                query_text=entities.source_text or query_type.value,
                row_count=result.row_count,
                execution_time_ms=elapsed_ms,
            )
        )
