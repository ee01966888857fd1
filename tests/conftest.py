"""Shared fixtures: a seeded clinical records DB and a conversation store."""

from __future__ import annotations

import sqlite3
from datetime import date
from pathlib import Path

import pytest

from clinician_assistant.services.conversation_store import ConversationStore
from clinician_assistant.services.query_dispatcher import DispatchContext, QueryDispatcher
from clinician_assistant.services.record_store import SQLiteRecordStore, create_schema

TODAY = date(2025, 6, 1)

PATIENTS = [
    (1, "Radwan Smith", "404924", "2012-03-14", "male", "r.smith@example.com", "0400 111 222"),
    (2, "Amelia Chen", "512377", "2015-07-02", "female", "chen.family@example.com", None),
    (3, "Oliver Smith", "618240", "2010-11-23", "male", None, "0400 555 666"),
    (4, "Noah Patel", "700415", "2016-01-09", "male", "patel.home@example.com", None),
]
PATIENT_COUNT = len(PATIENTS)


def seed_records(conn: sqlite3.Connection) -> None:
    create_schema(conn)
    conn.executemany(
        "INSERT INTO patients "
        "(id, name, unique_identifier, date_of_birth, gender, contact_email, contact_phone) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        PATIENTS,
    )
    conn.executemany(
        "INSERT INTO goals (id, patient_id, title, description, importance_level, status) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            (1, 1, "Improve expressive language", "Use 3-word sentences at home", "5", "in_progress"),
            (2, 1, "Fine motor control", "Independent use of scissors", "3", "in_progress"),
            (3, 2, "Social communication", "Initiate play with peers", "4", "in_progress"),
        ],
    )
    conn.executemany(
        "INSERT INTO sessions (id, patient_id, title, session_date, duration, status, location) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        [
            (1, 1, "Session A", "2025-05-25", 60, "completed", "Clinic"),
            (2, 1, "Session B", "2025-05-01", 45, "completed", "Home"),
            (3, 1, "Session C", "2025-03-01", 60, "completed", "Clinic"),
            (4, 2, "Session D", "2025-05-20", 60, "completed", "Clinic"),
        ],
    )
    conn.executemany(
        "INSERT INTO goal_assessments (id, goal_id, session_id, achievement_level, score, notes) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            (1, 1, 3, 2, 4, None),
            (2, 1, 1, 4, 8, "Spontaneous phrases"),
        ],
    )
    conn.executemany(
        "INSERT INTO budget_settings (id, patient_id, plan_code, is_active, ndis_funds, end_of_plan) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            (1, 1, "RS-1", 1, 10000.0, "2025-06-15"),
            (2, 2, "AC-1", 1, 5000.0, "2025-06-25"),
            (3, 3, "OS-1", 0, 4000.0, "2025-06-10"),
            (4, 4, "NP-1", 1, 8000.0, "2025-12-31"),
        ],
    )
    conn.executemany(
        "INSERT INTO budget_items "
        "(id, budget_settings_id, item_code, description, unit_price, quantity, used_quantity) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        [(1, 1, "15_056", "Speech therapy", 100.0, 50, 25)],
    )
    conn.executemany(
        "INSERT INTO caregivers (id, patient_id, name, relationship, email, phone, archived) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        [
            (1, 1, "Layla Smith", "mother", "layla@example.com", "0411 000 111", 0),
            (2, 2, "Wei Chen", "father", None, None, 0),
            (3, 2, "Mei Chen", "grandmother", None, None, 0),
            (4, 1, "Old Contact", "former carer", None, None, 1),
        ],
    )
    conn.execute(
        "INSERT INTO clinicians (id, name, title, email, specialization) VALUES (?, ?, ?, ?, ?)",
        (1, "Dr. Hannah Lee", "Speech Pathologist", "h.lee@example.com", "speech"),
    )
    conn.execute(
        "INSERT INTO patient_clinicians (id, patient_id, clinician_id, role) VALUES (?, ?, ?, ?)",
        (1, 1, 1, "primary"),
    )
    conn.commit()


@pytest.fixture()
def records_db(tmp_path: Path) -> Path:
    """A temporary records database with four patients and related rows."""
    db_path = tmp_path / "records.sqlite"
    conn = sqlite3.connect(str(db_path))
    seed_records(conn)
    conn.close()
    return db_path


@pytest.fixture()
def record_store(records_db: Path) -> SQLiteRecordStore:
    store = SQLiteRecordStore(db_path=records_db)
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def dispatcher(record_store: SQLiteRecordStore) -> QueryDispatcher:
    return QueryDispatcher(record_store, DispatchContext(today=lambda: TODAY))


@pytest.fixture()
def conversation_store(tmp_path: Path) -> ConversationStore:
    store = ConversationStore(db_path=tmp_path / "conversations.sqlite")
    store.connect()
    yield store
    store.close()


@pytest.fixture()
def today() -> date:
    """The fixed reference date the seeded budgets and sessions are relative to."""
    return TODAY


@pytest.fixture()
def patient_count() -> int:
    return PATIENT_COUNT
