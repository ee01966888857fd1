"""Response rendering: turns a query outcome into assistant text.

Each ``QueryType`` owns a :class:`ResponseTemplate` with three phrasings
chosen by row count.  Only plural answers carry the ``QueryResult`` so the
client can show it as a table or chart.  Numbers are formatted by the
``format_*`` helpers below and nowhere else.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from loguru import logger

from clinician_assistant.domain.models import (
    ExtractedEntities,
    FailureKind,
    QueryFailure,
    QueryResult,
    QueryType,
    RenderedResponse,
    Scalar,
)

FALLBACK_TEXT = (
    "I'm sorry, I didn't understand that question. You can ask how many patients "
    "we have, or ask about a named patient's goals, sessions, budget, caregivers or clinicians."
)

FAILURE_TEXT: Mapping[FailureKind, str] = {
    FailureKind.NOT_FOUND: (
        "I couldn't find a patient matching {reference}. "
        "Please check the name or identifier and try again."
    ),
    FailureKind.STORE_UNAVAILABLE: (
        "I'm sorry, the patient records are unavailable right now. Please try again shortly."
    ),
    FailureKind.INTERNAL: "I'm sorry, I encountered an error while processing your request.",
}

# ---------------------------------------------------------------------------
# Number formatting
# ---------------------------------------------------------------------------


def format_count(value: int, noun: str | None = None, plural: str | None = None) -> str:
    """``format_count(3, "patient") -> "3 patients"``; the numeral is never grouped."""
    text = str(int(value))
    if noun is None:
        return text
    word = noun if value == 1 else (plural or f"{noun}s")
    return f"{text} {word}"


def format_currency(value: Scalar) -> str:
    if value is None:
        return "an unknown amount"
    return f"${float(value):,.2f}"


def format_percent(value: Scalar) -> str:
    if value is None:
        return "an unknown share"
    return f"{float(value):.1f}%"


def _text(value: Scalar, default: str = "not recorded") -> str:
    return default if value is None or value == "" else str(value)


def _join(items: list[str], limit: int = 5) -> str:
    if len(items) > limit:
        return ", ".join(items[:limit]) + f" and {len(items) - limit} more"
    if len(items) > 1:
        return ", ".join(items[:-1]) + f" and {items[-1]}"
    return items[0] if items else ""


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenderContext:
    subject: str
    period: str
    entities: ExtractedEntities


Phrase = Callable[[QueryResult, RenderContext], str]


@dataclass(frozen=True)
class ResponseTemplate:
    """Empty / single-row / multi-row phrasings for one query type."""

    empty: Phrase
    single: Phrase
    plural: Phrase


def _patients_in(result: QueryResult) -> list[str]:
    seen: dict[str, None] = {}
    for row in result.rows:
        name = row.get("patient_name")
        if name is not None:
            seen[str(name)] = None
    return list(seen)


def _owner(result: QueryResult, ctx: RenderContext) -> str:
    """Who the rows belong to; flags an ambiguous patient reference."""
    patients = _patients_in(result)
    if len(patients) == 1:
        return patients[0]
    if patients:
        return f"the {format_count(len(patients), 'patient')} matching {ctx.subject}"
    return ctx.subject


def _count_single(result: QueryResult, ctx: RenderContext) -> str:
    count = result.rows[0]["patient_count"]
    return f"Currently, we have a total of {format_count(count, 'patient')} in our system."


PATIENT_COUNT_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: "I couldn't count the patient records right now.",
    single=_count_single,
    plural=lambda r, c: f"I counted patients in {format_count(r.row_count, 'group')}; see the table.",
)


def _search_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    return (
        f"I found {row['patient_name']} (identifier {_text(row['unique_identifier'])}), "
        f"born {_text(row['date_of_birth'], 'on an unrecorded date')}. "
        f"Contact: {_text(row['contact_email'], 'no email on file')}, "
        f"{_text(row['contact_phone'], 'no phone on file')}."
    )


PATIENT_SEARCH_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"I couldn't find any patient matching {c.subject}.",
    single=_search_single,
    plural=lambda r, c: (
        f"I found {format_count(r.row_count, 'patient')} matching {c.subject}: "
        f"{_join([str(row['patient_name']) for row in r.rows])}."
    ),
)


def _goals_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    return (
        f"{row['patient_name']} has one goal: {row['goal_title']} "
        f"(status: {_text(row['status'], 'unknown')}, "
        f"importance: {_text(row['importance_level'], 'not specified')})."
    )


PATIENT_GOALS_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No goals are recorded for {c.subject}.",
    single=_goals_single,
    plural=lambda r, c: (
        f"{_owner(r, c)} has {format_count(r.row_count, 'goal')}: "
        f"{_join([str(row['goal_title']) for row in r.rows])}."
    ),
)


def _progress_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    assessments = row["assessment_count"] or 0
    if not assessments:
        return f"{row['patient_name']}'s goal \"{row['goal_title']}\" has not been assessed yet."
    return (
        f"{row['patient_name']}'s goal \"{row['goal_title']}\" has "
        f"{format_count(assessments, 'assessment')} with an average score of "
        f"{_text(row['average_score'], 'n/a')}; the latest achievement level is "
        f"{_text(row['latest_achievement_level'], 'n/a')} "
        f"(last assessed {_text(row['last_assessed_on'], 'on an unknown date')})."
    )


def _progress_plural(result: QueryResult, ctx: RenderContext) -> str:
    assessed = [row for row in result.rows if row["assessment_count"]]
    scores = [float(row["average_score"]) for row in assessed if row["average_score"] is not None]
    text = (
        f"Goal progress for {_owner(result, ctx)}: {format_count(result.row_count, 'goal')}, "
        f"{format_count(len(assessed), 'goal')} with assessments."
    )
    if scores:
        text += f" The mean score across assessed goals is {sum(scores) / len(scores):.1f}."
    return text


PATIENT_GOAL_PROGRESS_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"There is no goal progress recorded for {c.subject}.",
    single=_progress_single,
    plural=_progress_plural,
)


def _session_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    duration = row["duration_minutes"]
    length = format_count(duration, "minute") if duration is not None else "unrecorded length"
    return (
        f"{row['patient_name']} had one session{ctx.period}: "
        f"{_text(row['session_title'], 'untitled')} on {row['session_date']} "
        f"({length}, {_text(row['status'], 'status unknown')})."
    )


PATIENT_SESSIONS_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No sessions were found for {c.subject}{c.period}.",
    single=_session_single,
    plural=lambda r, c: (
        f"{_owner(r, c)} had {format_count(r.row_count, 'session')}{c.period}, "
        f"most recently on {r.rows[0]['session_date']}."
    ),
)


def _budget_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    return (
        f"{row['patient_name']}'s {row['plan_status']} budget plan "
        f"{_text(row['plan_code'], '(no code)')} has a total of {format_currency(row['total_funds'])}, "
        f"with {format_currency(row['used_funds'])} ({format_percent(row['utilization_percent'])}) "
        f"used so far. The remaining balance is {format_currency(row['remaining_funds'])}."
    )


def _budget_plural(result: QueryResult, ctx: RenderContext) -> str:
    total = sum(float(row["total_funds"] or 0) for row in result.rows)
    remaining = sum(float(row["remaining_funds"] or 0) for row in result.rows)
    return (
        f"{_owner(result, ctx)} has {format_count(result.row_count, 'budget plan')} "
        f"totalling {format_currency(total)}, with {format_currency(remaining)} remaining."
    )


PATIENT_BUDGET_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No budget plans are on file for {c.subject}.",
    single=_budget_single,
    plural=_budget_plural,
)


def _expiring_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    days = row["days_remaining"]
    left = f" ({format_count(days, 'day')} left)" if days is not None else ""
    return (
        f"One budget plan expires{ctx.period}: {row['patient_name']}'s plan "
        f"{_text(row['plan_code'], '(no code)')} ends on {row['end_of_plan']}{left} "
        f"with {format_currency(row['remaining_funds'])} remaining."
    )


EXPIRING_BUDGETS_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No active budget plans expire{c.period}.",
    single=_expiring_single,
    plural=lambda r, c: (
        f"{format_count(r.row_count, 'budget plan')} expire{c.period}. The first is "
        f"{r.rows[0]['patient_name']}'s, ending on {r.rows[0]['end_of_plan']}."
    ),
)


def _caregiver_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    return (
        f"{row['caregiver_name']} ({_text(row['relationship'], 'relationship not recorded')}) "
        f"is the caregiver for {row['patient_name']}. Contact: "
        f"{_text(row['email'], 'no email on file')}, {_text(row['phone'], 'no phone on file')}."
    )


CAREGIVER_LOOKUP_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No caregivers are recorded for {c.subject}.",
    single=_caregiver_single,
    plural=lambda r, c: (
        f"{_owner(r, c)} has {format_count(r.row_count, 'caregiver')}: "
        f"{_join([str(row['caregiver_name']) for row in r.rows])}."
    ),
)


def _clinician_single(result: QueryResult, ctx: RenderContext) -> str:
    row = result.rows[0]
    title = f", {row['title']}" if row["title"] else ""
    return (
        f"{row['clinician_name']}{title} is assigned to {row['patient_name']} "
        f"as {_text(row['role'], 'clinician')}."
    )


CLINICIAN_LOOKUP_TEMPLATE = ResponseTemplate(
    empty=lambda r, c: f"No clinicians are assigned to {c.subject}.",
    single=_clinician_single,
    plural=lambda r, c: (
        f"{_owner(r, c)} is supported by {format_count(r.row_count, 'clinician')}: "
        f"{_join([str(row['clinician_name']) for row in r.rows])}."
    ),
)

TEMPLATES: Mapping[QueryType, ResponseTemplate] = {
    QueryType.PATIENT_COUNT: PATIENT_COUNT_TEMPLATE,
    QueryType.PATIENT_SEARCH: PATIENT_SEARCH_TEMPLATE,
    QueryType.PATIENT_GOALS: PATIENT_GOALS_TEMPLATE,
    QueryType.PATIENT_GOAL_PROGRESS: PATIENT_GOAL_PROGRESS_TEMPLATE,
    QueryType.PATIENT_SESSIONS: PATIENT_SESSIONS_TEMPLATE,
    QueryType.PATIENT_BUDGET: PATIENT_BUDGET_TEMPLATE,
    QueryType.EXPIRING_BUDGETS: EXPIRING_BUDGETS_TEMPLATE,
    QueryType.CAREGIVER_LOOKUP: CAREGIVER_LOOKUP_TEMPLATE,
    QueryType.CLINICIAN_LOOKUP: CLINICIAN_LOOKUP_TEMPLATE,
}

# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class ResponseGenerator:
    """Renders dispatch outcomes into a :class:`RenderedResponse`."""

    def __init__(
        self,
        templates: Mapping[QueryType, ResponseTemplate] = TEMPLATES,
        expiring_budget_days: int = 30,
    ) -> None:
        self._templates = templates
        self.expiring_budget_days = expiring_budget_days

    def render(
        self,
        query_type: QueryType,
        outcome: QueryResult | QueryFailure | None,
        entities: ExtractedEntities | None = None,
    ) -> RenderedResponse:
        """Render *outcome* for *query_type*.

        ``UNKNOWN`` always yields the fallback text.  A :class:`QueryFailure`
        yields its fixed error text.  Neither carries a query result.
        """
        if query_type is QueryType.UNKNOWN:
            return RenderedResponse(text=FALLBACK_TEXT)
        if isinstance(outcome, QueryFailure):
            return RenderedResponse(text=self.failure_text(outcome))

        template = self._templates.get(query_type)
        if template is None or outcome is None:
            logger.warning("No renderable outcome | type={}", query_type.value)
            return RenderedResponse(text=FALLBACK_TEXT)

        ctx = self._context(query_type, entities or ExtractedEntities())
        if outcome.is_empty:
            return RenderedResponse(text=template.empty(outcome, ctx))
        if outcome.row_count == 1:
            return RenderedResponse(text=template.single(outcome, ctx))
        return RenderedResponse(text=template.plural(outcome, ctx), query_result=outcome)

    @staticmethod
    def failure_text(failure: QueryFailure) -> str:
        template = FAILURE_TEXT[failure.kind]
        reference = f"'{failure.reference}'" if failure.reference else "that description"
        return template.format(reference=reference)

    def _context(self, query_type: QueryType, entities: ExtractedEntities) -> RenderContext:
        window = entities.date_range
        if window is not None:
            period = f" between {window.start.isoformat()} and {window.end.isoformat()}"
        elif query_type is QueryType.EXPIRING_BUDGETS:
            period = f" in the next {format_count(self.expiring_budget_days, 'day')}"
        else:
            period = ""
        return RenderContext(
            subject=entities.patient_reference or "that patient",
            period=period,
            entities=entities,
        )
