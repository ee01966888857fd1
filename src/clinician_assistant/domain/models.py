"""Domain entities and value objects.

These are the core data structures of the Clinician Assistant query pipeline,
independent of any infrastructure or framework concerns.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Literal, Union

Scalar = Union[str, int, float, None]
Role = Literal["user", "assistant"]

# ---------------------------------------------------------------------------
# Query intents
# ---------------------------------------------------------------------------


class QueryType(str, Enum):
    """The closed catalogue of supported question intents."""

    PATIENT_COUNT = "PATIENT_COUNT"
    PATIENT_SEARCH = "PATIENT_SEARCH"
    PATIENT_GOALS = "PATIENT_GOALS"
    PATIENT_GOAL_PROGRESS = "PATIENT_GOAL_PROGRESS"
    PATIENT_SESSIONS = "PATIENT_SESSIONS"
    PATIENT_BUDGET = "PATIENT_BUDGET"
    EXPIRING_BUDGETS = "EXPIRING_BUDGETS"
    CAREGIVER_LOOKUP = "CAREGIVER_LOOKUP"
    CLINICIAN_LOOKUP = "CLINICIAN_LOOKUP"
    UNKNOWN = "UNKNOWN"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"DateRange start {self.start} is after end {self.end}")

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class ExtractedEntities:
    """Sparse record of the entities recognised in one query.

    ``matched_span`` holds the (start, end) offsets of the entity rule that
    produced the patient reference.  When both ``patient_name`` and
    ``patient_identifier`` are set they must come from that single span.
    """

    patient_identifier: str | None = None
    patient_name: str | None = None
    date_range: DateRange | None = None
    free_keywords: frozenset[str] = field(default_factory=frozenset)
    matched_span: tuple[int, int] | None = None
    source_text: str = ""
    goal_keyword: str | None = None

    @property
    def has_patient_reference(self) -> bool:
        return bool(self.patient_identifier or self.patient_name)

    @property
    def patient_reference(self) -> str | None:
        """Human-readable reference to the named patient, if any."""
        if self.patient_name and self.patient_identifier:
            return f"{self.patient_name} ({self.patient_identifier})"
        return self.patient_name or self.patient_identifier

    @property
    def is_empty(self) -> bool:
        return not (self.has_patient_reference or self.date_range or self.free_keywords)

    def check_invariants(self) -> None:
        """Raise ``ValueError`` if the record violates its shape rules."""
        if self.patient_identifier is not None:
            if not (self.patient_identifier.isdigit() and len(self.patient_identifier) == 6):
                raise ValueError(
                    f"patient_identifier must be a 6-digit numeral, got {self.patient_identifier!r}"
                )
        if self.patient_name is not None and not self.patient_name.strip():
            raise ValueError("patient_name must not be blank")
        if self.has_patient_reference and self.matched_span is None:
            raise ValueError("a patient reference requires the span it was extracted from")
        if self.matched_span is not None:
            start, end = self.matched_span
            if not 0 <= start < end <= len(self.source_text):
                raise ValueError(f"matched_span {self.matched_span} is outside the query text")
            if self.patient_name and self.patient_identifier:
                # Names are stored with single spaces; the query may use tabs or runs of blanks.
                span_text = " ".join(self.source_text[start:end].split())
                if self.patient_name not in span_text or self.patient_identifier not in span_text:
                    raise ValueError("patient name and identifier were not extracted together")


@dataclass(frozen=True)
class ExtractionResult:
    query_type: QueryType
    entities: ExtractedEntities = field(default_factory=ExtractedEntities)


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QueryMetadata:
    query_text: str | None = None
    row_count: int | None = None
    execution_time_ms: float | None = None


def _check_scalar(column: str, value: object) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(
            f"Column '{column}' holds {type(value).__name__}; only str, int, float or None allowed"
        )


@dataclass(frozen=True)
class QueryResult:
    """Tabular result of one dispatch handler.

    Every row carries exactly the keys listed in ``columns``; missing data is
    an explicit ``None``.  Construction fails fast when that does not hold.
    Use :meth:`from_records` to build a result from sparse mappings.
    """

    columns: tuple[str, ...]
    rows: tuple[dict[str, Scalar], ...] = ()
    metadata: QueryMetadata | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(dict(row) for row in self.rows))

        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"Duplicate column names in {self.columns}")

        expected = set(self.columns)
        for index, row in enumerate(self.rows):
            keys = set(row)
            if keys != expected:
                missing = sorted(expected - keys)
                extra = sorted(keys - expected)
                raise ValueError(f"Row {index} does not match columns (missing={missing}, extra={extra})")
            for column, value in row.items():
                _check_scalar(column, value)

    @classmethod
    def from_records(
        cls,
        columns: Iterable[str],
        records: Iterable[Mapping[str, Scalar]],
        metadata: QueryMetadata | None = None,
    ) -> QueryResult:
        """Project *records* onto *columns*, filling absent keys with ``None``."""
        cols = tuple(columns)
        rows = tuple({c: record.get(c) for c in cols} for record in records)
        return cls(columns=cols, rows=rows, metadata=metadata)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def with_metadata(self, metadata: QueryMetadata) -> QueryResult:
        return QueryResult(columns=self.columns, rows=self.rows, metadata=metadata)

    def to_wire(self) -> dict:
        """Serialize to the JSON shape consumed by the visualization client."""
        payload: dict = {
            "columns": list(self.columns),
            "rows": [{c: row[c] for c in self.columns} for row in self.rows],
        }
        if self.metadata is not None:
            meta: dict = {}
            if self.metadata.query_text is not None:
                meta["queryText"] = self.metadata.query_text
            if self.metadata.row_count is not None:
                meta["rowCount"] = self.metadata.row_count
            if self.metadata.execution_time_ms is not None:
                meta["executionTime"] = self.metadata.execution_time_ms
            payload["metadata"] = meta
        return payload

    @classmethod
    def from_wire(cls, payload: Mapping) -> QueryResult:
        """Parse the wire shape produced by :meth:`to_wire`.

        Rows missing a column are rejected rather than repaired.
        """
        meta = payload.get("metadata")
        metadata = None
        if meta is not None:
            metadata = QueryMetadata(
                query_text=meta.get("queryText"),
                row_count=meta.get("rowCount"),
                execution_time_ms=meta.get("executionTime"),
            )
        return cls(
            columns=tuple(payload["columns"]),
            rows=tuple(payload.get("rows", ())),
            metadata=metadata,
        )


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"
    STORE_UNAVAILABLE = "store_unavailable"
    INTERNAL = "internal"


@dataclass(frozen=True)
class QueryFailure:
    """Explicit error outcome handed to the ResponseGenerator instead of a result."""

    kind: FailureKind
    detail: str = ""
    reference: str | None = None


@dataclass(frozen=True)
class RenderedResponse:
    text: str
    query_result: QueryResult | None = None


# ---------------------------------------------------------------------------
# Conversation entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    id: str
    role: Role
    content: str
    created_at: str
    query_result: QueryResult | None = None


@dataclass
class Conversation:
    id: str
    name: str
    created_at: str
    updated_at: str
    last_message_at: str
    messages: list[Message] = field(default_factory=list)
    pending: bool = False

    @property
    def state(self) -> Literal["empty", "active"]:
        return "active" if self.messages else "empty"


# ---------------------------------------------------------------------------
# Record-store rows (typed result sets returned by IRecordStore)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatientRecord:
    id: int
    name: str
    unique_identifier: str | None
    date_of_birth: str | None
    gender: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None


@dataclass(frozen=True)
class GoalRecord:
    id: int
    patient_id: int
    patient_name: str
    title: str
    description: str | None
    importance_level: str | None
    status: str | None


@dataclass(frozen=True)
class GoalProgressRecord:
    goal_id: int
    patient_id: int
    patient_name: str
    goal_title: str
    status: str | None
    assessment_count: int
    latest_achievement_level: int | None
    average_score: float | None
    last_assessed_on: str | None


@dataclass(frozen=True)
class SessionRecord:
    id: int
    patient_id: int
    patient_name: str
    title: str
    session_date: str
    duration_minutes: int | None
    status: str | None
    location: str | None


@dataclass(frozen=True)
class BudgetRecord:
    patient_id: int
    patient_name: str
    plan_code: str | None
    end_of_plan: str | None
    total_funds: float
    used_funds: float
    is_active: bool = True


@dataclass(frozen=True)
class CaregiverRecord:
    id: int
    patient_id: int
    patient_name: str
    name: str
    relationship: str | None
    email: str | None
    phone: str | None


@dataclass(frozen=True)
class ClinicianRecord:
    id: int
    patient_id: int
    patient_name: str
    name: str
    title: str | None
    role: str | None
    email: str | None
