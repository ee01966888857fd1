#!/usr/bin/env python3
"""
Seed a demo records database and, optionally, a demo conversation.

Builds a small clinical records database (patients, goals, sessions,
assessments, budgets, caregivers, clinicians) at the configured
``RECORDS_DB_PATH``.  Budget end dates are relative to today so the
"expiring budgets" question always has an answer.

With ``--ask`` the script also creates a conversation on a running backend
and sends the demo questions through POST /conversations/{id}/messages.

Usage:
    # Build the records database:
    python scripts/seed_demo.py

    # Rebuild it from scratch, then ask the demo questions:
    python scripts/seed_demo.py --reset --ask --url http://localhost:8000

Dependencies: the clinician_assistant package (for settings and schema).
"""

from __future__ import annotations

import argparse
import json
import sqlite3
import sys
import urllib.error
import urllib.request
from datetime import date, timedelta
from pathlib import Path

from clinician_assistant.config import get_settings
from clinician_assistant.services.record_store import create_schema

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_URL = "http://localhost:8000"

QUESTIONS = [
    "How many patients do we have?",
    "Look up Radwan Smith-404924",
    "What is the goal progress for Radwan Smith?",
    "Show budgets expiring in the next 30 days",
    "Who are the caregivers for patient 512377?",
    "What's the weather like?",
]

BOLD = "\033[1m"
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"

# ---------------------------------------------------------------------------
# Demo records
# ---------------------------------------------------------------------------

PATIENTS = [
    (1, "Radwan Smith", "404924", "2012-03-14", "male", "r.smith@example.com", "0400 111 222"),
    (2, "Amelia Chen", "512377", "2015-07-02", "female", "chen.family@example.com", "0400 333 444"),
    (3, "Oliver Smith", "618240", "2010-11-23", "male", None, "0400 555 666"),
    (4, "Noah Patel", "700415", "2016-01-09", "male", "patel.home@example.com", None),
    (5, "Isla Brown", "823901", "2013-05-30", "female", "isla.b@example.com", "0400 777 888"),
]

GOALS = [
    (1, 1, "Improve expressive language", "Use 3-word sentences in daily routines", "5", "in_progress"),
    (2, 1, "Fine motor control", "Independent use of scissors", "3", "in_progress"),
    (3, 2, "Social communication", "Initiate play with peers", "4", "in_progress"),
    (4, 3, "Reading fluency", "Read a short passage aloud", "4", "achieved"),
    (5, 5, "Emotional regulation", "Use calming strategies when upset", "5", "in_progress"),
]

CLINICIANS = [
    (1, "Dr. Hannah Lee", "Speech Pathologist", "h.lee@clinic.example.com", "speech"),
    (2, "Marcus Green", "Occupational Therapist", "m.green@clinic.example.com", "occupational"),
]

PATIENT_CLINICIANS = [
    (1, 1, 1, "primary"),
    (2, 1, 2, "supporting"),
    (3, 2, 1, "primary"),
    (4, 5, 2, "primary"),
]

CAREGIVERS = [
    (1, 1, "Layla Smith", "mother", "layla.smith@example.com", "0411 000 111", 0),
    (2, 2, "Wei Chen", "father", "wei.chen@example.com", "0411 000 222", 0),
    (3, 2, "Mei Chen", "grandmother", None, "0411 000 333", 0),
    (4, 3, "Old Contact", "former carer", None, None, 1),
]


def build_records_db(db_path: Path, today: date, reset: bool = False) -> int:
    """Create and populate the demo records database; returns the patient count."""
    if reset and db_path.exists():
        db_path.unlink()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        create_schema(conn)
        conn.executemany(
            "INSERT OR REPLACE INTO patients "
            "(id, name, unique_identifier, date_of_birth, gender, contact_email, contact_phone) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            PATIENTS,
        )
        conn.executemany(
            "INSERT OR REPLACE INTO goals "
            "(id, patient_id, title, description, importance_level, status) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            GOALS,
        )

        sessions = []
        for sid in range(1, 9):
            patient_id = 1 if sid <= 5 else 2
            day = today - timedelta(days=7 * sid)
            sessions.append(
                (sid, patient_id, f"Therapy session {sid}", day.isoformat(), 60, "completed", "Clinic")
            )
        conn.executemany(
            "INSERT OR REPLACE INTO sessions "
            "(id, patient_id, title, session_date, duration, status, location) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            sessions,
        )
        conn.executemany(
            "INSERT OR REPLACE INTO goal_assessments "
            "(id, goal_id, session_id, achievement_level, score, notes) VALUES (?, ?, ?, ?, ?, ?)",
            [
                (1, 1, 5, 2, 4, "Needs prompting"),
                (2, 1, 3, 3, 6, None),
                (3, 1, 1, 4, 8, "Spontaneous 3-word phrases"),
                (4, 2, 2, 3, 5, None),
                (5, 3, 6, 2, 3, None),
            ],
        )

        conn.executemany(
            "INSERT OR REPLACE INTO budget_settings "
            "(id, patient_id, plan_code, is_active, ndis_funds, end_of_plan) VALUES (?, ?, ?, ?, ?, ?)",
            [
                (1, 1, "NDIS-2025-RS", 1, 12000.0, (today + timedelta(days=12)).isoformat()),
                (2, 2, "NDIS-2025-AC", 1, 8500.0, (today + timedelta(days=25)).isoformat()),
                (3, 3, "NDIS-2024-OS", 0, 6000.0, (today - timedelta(days=40)).isoformat()),
                (4, 5, "NDIS-2026-IB", 1, 15000.0, (today + timedelta(days=200)).isoformat()),
            ],
        )
        conn.executemany(
            "INSERT OR REPLACE INTO budget_items "
            "(id, budget_settings_id, item_code, description, unit_price, quantity, used_quantity) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (1, 1, "15_056_0128_1_3", "Speech therapy", 193.99, 40, 22),
                (2, 1, "15_056_0128_1_3", "Report writing", 193.99, 6, 2),
                (3, 2, "15_056_0128_1_3", "Speech therapy", 193.99, 30, 9),
                (4, 4, "15_054_0128_1_3", "Occupational therapy", 193.99, 50, 10),
            ],
        )
        conn.executemany(
            "INSERT OR REPLACE INTO caregivers "
            "(id, patient_id, name, relationship, email, phone, archived) VALUES (?, ?, ?, ?, ?, ?, ?)",
            CAREGIVERS,
        )
        conn.executemany(
            "INSERT OR REPLACE INTO clinicians (id, name, title, email, specialization) "
            "VALUES (?, ?, ?, ?, ?)",
            CLINICIANS,
        )
        conn.executemany(
            "INSERT OR REPLACE INTO patient_clinicians (id, patient_id, clinician_id, role) "
            "VALUES (?, ?, ?, ?)",
            PATIENT_CLINICIANS,
        )
        conn.commit()
        return conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Demo conversation
# ---------------------------------------------------------------------------


def _request(method: str, url: str, payload: dict | None = None, timeout: int = 30) -> tuple[int, dict]:
    """Send a JSON request and return (status, body); error envelopes are returned, not raised."""
    data = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(
        url, data=data, method=method, headers={"Content-Type": "application/json"}
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return resp.status, json.loads(resp.read().decode())
    except urllib.error.HTTPError as exc:
        return exc.code, json.loads(exc.read().decode() or "{}")


def ask_demo_questions(base_url: str) -> None:
    try:
        _, status = _request("GET", f"{base_url}/status", timeout=5)
    except urllib.error.URLError as exc:
        print(f"{RED}Backend not reachable at {base_url}{RESET}: {exc.reason}")
        sys.exit(1)
    if not status.get("connectionValid"):
        print(f"{YELLOW}Backend is up but the records database is not connected.{RESET}")

    _, conversation = _request("POST", f"{base_url}/conversations", {"name": "Demo questions"})
    conversation_id = conversation["id"]
    print(f"Conversation {conversation_id}\n")

    for i, question in enumerate(QUESTIONS, 1):
        print(f"{BOLD}[{i}/{len(QUESTIONS)}]{RESET} {question}")
        code, body = _request(
            "POST", f"{base_url}/conversations/{conversation_id}/messages", {"message": question}
        )
        colour = GREEN if code == 200 else RED
        text = body.get("content") or body.get("message", "")
        print(f"  {colour}{code}{RESET} {text}")
        if body.get("queryResult"):
            result = body["queryResult"]
            print(f"  table: {len(result['rows'])} rows x {len(result['columns'])} columns")
        print()


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo data for the Clinician Assistant.")
    parser.add_argument("--db", type=Path, default=None, help="Records DB path (default: settings)")
    parser.add_argument("--reset", action="store_true", help="Delete the records DB first")
    parser.add_argument("--ask", action="store_true", help="Send the demo questions to a backend")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Backend base URL (default: {DEFAULT_URL})")
    args = parser.parse_args()

    db_path = args.db or get_settings().records_db_path
    count = build_records_db(db_path, date.today(), reset=args.reset)
    print(f"{GREEN}OK{RESET} {count} patients in {db_path}")

    if args.ask:
        print()
        ask_demo_questions(args.url)


if __name__ == "__main__":
    main()
