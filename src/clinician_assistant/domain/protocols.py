"""Domain service interfaces (ports).

These protocols define the contracts that infrastructure implementations
must satisfy.  The application layer depends on these abstractions,
not on concrete classes.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager
from datetime import date
from typing import Protocol, runtime_checkable

from clinician_assistant.domain.models import (
    BudgetRecord,
    CaregiverRecord,
    ClinicianRecord,
    Conversation,
    GoalProgressRecord,
    GoalRecord,
    Message,
    PatientRecord,
    SessionRecord,
)

# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------


@runtime_checkable
class IRecordStore(Protocol):
    """Read-only access to clinical records.

    Implementations raise ``StoreLookupError`` when the backing store is
    unreachable or a query fails.

    Implementations: SQLiteRecordStore.
    """

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def ping(self) -> bool: ...

    def count_patients(self) -> int: ...

    def find_patients(
        self,
        name: str | None = None,
        identifier: str | None = None,
        limit: int = 25,
    ) -> list[PatientRecord]: ...

    def goals_for(
        self, patient_ids: Sequence[int], keyword: str | None = None
    ) -> list[GoalRecord]: ...

    def goal_progress_for(self, patient_ids: Sequence[int]) -> list[GoalProgressRecord]: ...

    def sessions_for(
        self,
        patient_ids: Sequence[int],
        start: date | None = None,
        end: date | None = None,
    ) -> list[SessionRecord]: ...

    def budgets_for(self, patient_ids: Sequence[int]) -> list[BudgetRecord]: ...

    def expiring_budgets(self, start: date, end: date) -> list[BudgetRecord]: ...

    def caregivers_for(self, patient_ids: Sequence[int]) -> list[CaregiverRecord]: ...

    def clinicians_for(self, patient_ids: Sequence[int]) -> list[ClinicianRecord]: ...


# ---------------------------------------------------------------------------
# Conversation store
# ---------------------------------------------------------------------------


@runtime_checkable
class IConversationStore(Protocol):
    """Append-only conversation history.

    Implementations: ConversationStore (SQLite-backed).
    """

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def create_conversation(self, name: str) -> Conversation: ...

    def append_message(self, conversation_id: str, message: Message) -> Message: ...

    def get_conversation(self, conversation_id: str) -> Conversation: ...

    def list_conversations(self) -> list[Conversation]: ...

    def conversation_lock(self, conversation_id: str) -> AbstractContextManager[None]: ...

    def mark_pending(self, conversation_id: str) -> None: ...

    def clear_pending(self, conversation_id: str) -> None: ...
