"""Read-only SQLite access to clinical records (patients, goals, budgets, caregivers).

The record store is owned by the surrounding CRUD application.  This module
issues typed queries against it and returns typed result sets; it never writes.
``SCHEMA_SQL`` documents the tables it expects and is used by the demo seeder
and the tests to build a database.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from loguru import logger

from clinician_assistant.domain.exceptions import StoreLookupError
from clinician_assistant.domain.models import (
    BudgetRecord,
    CaregiverRecord,
    ClinicianRecord,
    GoalProgressRecord,
    GoalRecord,
    PatientRecord,
    SessionRecord,
)

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS patients (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    original_name TEXT,
    unique_identifier TEXT,
    date_of_birth TEXT,
    gender TEXT,
    contact_email TEXT,
    contact_phone TEXT
);

CREATE TABLE IF NOT EXISTS goals (
    id INTEGER PRIMARY KEY,
    patient_id INTEGER NOT NULL REFERENCES patients(id),
    title TEXT NOT NULL,
    description TEXT,
    importance_level TEXT,
    status TEXT DEFAULT 'in_progress'
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY,
    patient_id INTEGER NOT NULL REFERENCES patients(id),
    title TEXT NOT NULL,
    session_date TEXT NOT NULL,
    duration INTEGER,
    status TEXT DEFAULT 'draft',
    location TEXT
);

CREATE TABLE IF NOT EXISTS goal_assessments (
    id INTEGER PRIMARY KEY,
    goal_id INTEGER NOT NULL REFERENCES goals(id),
    session_id INTEGER NOT NULL REFERENCES sessions(id),
    achievement_level INTEGER,
    score INTEGER,
    notes TEXT
);

CREATE TABLE IF NOT EXISTS budget_settings (
    id INTEGER PRIMARY KEY,
    patient_id INTEGER NOT NULL REFERENCES patients(id),
    plan_code TEXT,
    is_active INTEGER DEFAULT 1,
    ndis_funds REAL NOT NULL DEFAULT 0,
    end_of_plan TEXT
);

CREATE TABLE IF NOT EXISTS budget_items (
    id INTEGER PRIMARY KEY,
    budget_settings_id INTEGER NOT NULL REFERENCES budget_settings(id),
    item_code TEXT NOT NULL,
    description TEXT,
    unit_price REAL NOT NULL,
    quantity INTEGER NOT NULL,
    used_quantity INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS caregivers (
    id INTEGER PRIMARY KEY,
    patient_id INTEGER NOT NULL REFERENCES patients(id),
    name TEXT NOT NULL,
    relationship TEXT,
    email TEXT,
    phone TEXT,
    archived INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS clinicians (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    title TEXT,
    email TEXT,
    specialization TEXT
);

CREATE TABLE IF NOT EXISTS patient_clinicians (
    id INTEGER PRIMARY KEY,
    patient_id INTEGER NOT NULL REFERENCES patients(id),
    clinician_id INTEGER NOT NULL REFERENCES clinicians(id),
    role TEXT
);

CREATE INDEX IF NOT EXISTS idx_patients_identifier ON patients(unique_identifier);
CREATE INDEX IF NOT EXISTS idx_goals_patient_id ON goals(patient_id);
CREATE INDEX IF NOT EXISTS idx_sessions_patient_id ON sessions(patient_id);
CREATE INDEX IF NOT EXISTS idx_budget_settings_end ON budget_settings(end_of_plan);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the record tables on a writable connection (seeding and tests)."""
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _placeholders(values: Sequence[object]) -> str:
    return ", ".join("?" for _ in values)


class SQLiteRecordStore:
    """Executes typed, read-only lookups against the clinical records database."""

    def __init__(self, db_path: Path, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open a read-only connection to the database."""
        try:
            self.conn = sqlite3.connect(
                f"{Path(self.db_path).resolve().as_uri()}?mode=ro",
                uri=True,
                timeout=self.timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreLookupError(f"Cannot open record store at {self.db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        logger.info("Record store connected at {}", self.db_path)

    def close(self) -> None:
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def ping(self) -> bool:
        """Return True when the store answers a trivial query."""
        try:
            self._fetch("SELECT 1")
        except StoreLookupError:
            return False
        return True

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def count_patients(self) -> int:
        rows = self._fetch("SELECT COUNT(*) AS total FROM patients")
        return int(rows[0]["total"])

    def find_patients(
        self,
        name: str | None = None,
        identifier: str | None = None,
        limit: int = 25,
    ) -> list[PatientRecord]:
        """Find patients by exact identifier, or by case-insensitive name substring.

        The identifier wins when both are given.
        """
        select = (
            "SELECT id, name, unique_identifier, date_of_birth, gender, contact_email, contact_phone "
            "FROM patients "
        )
        if identifier:
            rows = self._fetch(
                select + "WHERE unique_identifier = ? ORDER BY name LIMIT ?",
                (identifier.strip(), limit),
            )
        elif name:
            pattern = f"%{_escape_like(name.strip().lower())}%"
            rows = self._fetch(
                select
                + "WHERE LOWER(name) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(original_name, '')) LIKE ? ESCAPE '\\' "
                "ORDER BY name LIMIT ?",
                (pattern, pattern, limit),
            )
        else:
            return []

        return [
            PatientRecord(
                id=row["id"],
                name=row["name"],
                unique_identifier=row["unique_identifier"],
                date_of_birth=row["date_of_birth"],
                gender=row["gender"],
                contact_email=row["contact_email"],
                contact_phone=row["contact_phone"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def goals_for(self, patient_ids: Sequence[int], keyword: str | None = None) -> list[GoalRecord]:
        if not patient_ids:
            return []
        sql = (
            "SELECT g.id, g.patient_id, p.name AS patient_name, g.title, g.description, "
            "g.importance_level, g.status "
            "FROM goals g JOIN patients p ON p.id = g.patient_id "
            f"WHERE g.patient_id IN ({_placeholders(patient_ids)}) "
        )
        params: list[object] = list(patient_ids)
        if keyword:
            pattern = f"%{_escape_like(keyword.lower())}%"
            sql += (
                "AND (LOWER(g.title) LIKE ? ESCAPE '\\' "
                "OR LOWER(COALESCE(g.description, '')) LIKE ? ESCAPE '\\') "
            )
            params += [pattern, pattern]
        sql += "ORDER BY p.name, g.importance_level DESC, g.id"

        return [
            GoalRecord(
                id=row["id"],
                patient_id=row["patient_id"],
                patient_name=row["patient_name"],
                title=row["title"],
                description=row["description"],
                importance_level=row["importance_level"],
                status=row["status"],
            )
            for row in self._fetch(sql, params)
        ]

    def goal_progress_for(self, patient_ids: Sequence[int]) -> list[GoalProgressRecord]:
        """Summarize assessments per goal: count, latest level, average score, last date."""
        if not patient_ids:
            return []
        sql = f"""
            SELECT g.id AS goal_id, g.patient_id, p.name AS patient_name,
                   g.title AS goal_title, g.status,
                   COUNT(a.id) AS assessment_count,
                   AVG(a.score) AS average_score,
                   MAX(s.session_date) AS last_assessed_on,
                   (
                       SELECT a2.achievement_level
                       FROM goal_assessments a2
                       JOIN sessions s2 ON s2.id = a2.session_id
                       WHERE a2.goal_id = g.id
                       ORDER BY s2.session_date DESC, a2.id DESC
                       LIMIT 1
                   ) AS latest_achievement_level
            FROM goals g
            JOIN patients p ON p.id = g.patient_id
            LEFT JOIN goal_assessments a ON a.goal_id = g.id
            LEFT JOIN sessions s ON s.id = a.session_id
            WHERE g.patient_id IN ({_placeholders(patient_ids)})
            GROUP BY g.id
            ORDER BY p.name, g.id
        """
        return [
            GoalProgressRecord(
                goal_id=row["goal_id"],
                patient_id=row["patient_id"],
                patient_name=row["patient_name"],
                goal_title=row["goal_title"],
                status=row["status"],
                assessment_count=row["assessment_count"],
                latest_achievement_level=row["latest_achievement_level"],
                average_score=row["average_score"],
                last_assessed_on=row["last_assessed_on"],
            )
            for row in self._fetch(sql, list(patient_ids))
        ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def sessions_for(
        self,
        patient_ids: Sequence[int],
        start: date | None = None,
        end: date | None = None,
    ) -> list[SessionRecord]:
        if not patient_ids:
            return []
        sql = (
            "SELECT s.id, s.patient_id, p.name AS patient_name, s.title, s.session_date, "
            "s.duration, s.status, s.location "
            "FROM sessions s JOIN patients p ON p.id = s.patient_id "
            f"WHERE s.patient_id IN ({_placeholders(patient_ids)}) "
        )
        params: list[object] = list(patient_ids)
        if start is not None:
            sql += "AND date(s.session_date) >= ? "
            params.append(start.isoformat())
        if end is not None:
            sql += "AND date(s.session_date) <= ? "
            params.append(end.isoformat())
        sql += "ORDER BY s.session_date DESC"

        return [
            SessionRecord(
                id=row["id"],
                patient_id=row["patient_id"],
                patient_name=row["patient_name"],
                title=row["title"],
                session_date=row["session_date"],
                duration_minutes=row["duration"],
                status=row["status"],
                location=row["location"],
            )
            for row in self._fetch(sql, params)
        ]

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    _BUDGET_SELECT = """
        SELECT b.patient_id, p.name AS patient_name, b.plan_code, b.end_of_plan,
               b.ndis_funds AS total_funds, b.is_active,
               COALESCE(
                   (SELECT SUM(i.unit_price * i.used_quantity)
                    FROM budget_items i WHERE i.budget_settings_id = b.id),
                   0
               ) AS used_funds
        FROM budget_settings b
        JOIN patients p ON p.id = b.patient_id
    """

    def budgets_for(self, patient_ids: Sequence[int]) -> list[BudgetRecord]:
        if not patient_ids:
            return []
        sql = (
            self._BUDGET_SELECT
            + f"WHERE b.patient_id IN ({_placeholders(patient_ids)}) "
            "ORDER BY p.name, b.is_active DESC, b.end_of_plan DESC"
        )
        return [self._row_to_budget(row) for row in self._fetch(sql, list(patient_ids))]

    def expiring_budgets(self, start: date, end: date) -> list[BudgetRecord]:
        """Active plans whose end date falls inside [start, end], soonest first."""
        sql = (
            self._BUDGET_SELECT
            + "WHERE b.is_active = 1 AND b.end_of_plan IS NOT NULL "
            "AND date(b.end_of_plan) BETWEEN ? AND ? "
            "ORDER BY b.end_of_plan ASC, p.name"
        )
        return [
            self._row_to_budget(row)
            for row in self._fetch(sql, (start.isoformat(), end.isoformat()))
        ]

    # ------------------------------------------------------------------
    # People around the patient
    # ------------------------------------------------------------------

    def caregivers_for(self, patient_ids: Sequence[int]) -> list[CaregiverRecord]:
        if not patient_ids:
            return []
        sql = (
            "SELECT c.id, c.patient_id, p.name AS patient_name, c.name, c.relationship, c.email, c.phone "
            "FROM caregivers c JOIN patients p ON p.id = c.patient_id "
            f"WHERE c.archived = 0 AND c.patient_id IN ({_placeholders(patient_ids)}) "
            "ORDER BY p.name, c.name"
        )
        return [
            CaregiverRecord(
                id=row["id"],
                patient_id=row["patient_id"],
                patient_name=row["patient_name"],
                name=row["name"],
                relationship=row["relationship"],
                email=row["email"],
                phone=row["phone"],
            )
            for row in self._fetch(sql, list(patient_ids))
        ]

    def clinicians_for(self, patient_ids: Sequence[int]) -> list[ClinicianRecord]:
        if not patient_ids:
            return []
        sql = (
            "SELECT c.id, pc.patient_id, p.name AS patient_name, c.name, c.title, pc.role, c.email "
            "FROM patient_clinicians pc "
            "JOIN clinicians c ON c.id = pc.clinician_id "
            "JOIN patients p ON p.id = pc.patient_id "
            f"WHERE pc.patient_id IN ({_placeholders(patient_ids)}) "
            "ORDER BY p.name, c.name"
        )
        return [
            ClinicianRecord(
                id=row["id"],
                patient_id=row["patient_id"],
                patient_name=row["patient_name"],
                name=row["name"],
                title=row["title"],
                role=row["role"],
                email=row["email"],
            )
            for row in self._fetch(sql, list(patient_ids))
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch(self, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
        if not self.conn:
            raise StoreLookupError("Record store is not connected. Call connect() first.")
        try:
            with self._lock:
                return self.conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            logger.error("Record store query failed | {}", exc)
            raise StoreLookupError(f"Record store query failed: {exc}") from exc

    @staticmethod
    def _row_to_budget(row: sqlite3.Row) -> BudgetRecord:
        return BudgetRecord(
            patient_id=row["patient_id"],
            patient_name=row["patient_name"],
            plan_code=row["plan_code"],
            end_of_plan=row["end_of_plan"],
            total_funds=float(row["total_funds"] or 0),
            used_funds=float(row["used_funds"] or 0),
            is_active=bool(row["is_active"]),
        )
