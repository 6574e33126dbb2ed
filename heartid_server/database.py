"""
database.py - SQLite Database Layer

Tables:
  attempt_state - failure counter and lockout schedule per profile slot
  auth_logs     - enrollment / authentication audit trail (no biometric data)
"""

import os
import sqlite3
import logging

from heartid_common.models import AttemptState
from heartid_common.utils import ensure_dir
from heartid_server.config import DB_PATH as _DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

DB_PATH = _DEFAULT_DB_PATH
DEFAULT_SLOT = "default"


def get_connection() -> sqlite3.Connection:
    ensure_dir(os.path.dirname(DB_PATH) or ".")
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL;")
    return conn


def init_db():
    """Create tables if they don't already exist."""
    with get_connection() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS attempt_state (
                slot                  TEXT PRIMARY KEY,
                consecutive_failures  INTEGER NOT NULL DEFAULT 0,
                lockout_until         REAL,
                lockout_period_index  INTEGER NOT NULL DEFAULT 0,
                updated_at            INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS auth_logs (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type  TEXT,         -- 'enroll' | 'auth_approved' | 'auth_denied' | ...
                outcome     TEXT,
                confidence  REAL,
                detail      TEXT,
                timestamp   INTEGER,
                client_ip   TEXT
            );
        """)
    logger.info("Database initialised.")


# ─────────────────────────────────────────────
# ATTEMPT STATE
# ─────────────────────────────────────────────
def load_attempt_state(slot: str = DEFAULT_SLOT) -> AttemptState:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT consecutive_failures, lockout_until, lockout_period_index "
            "FROM attempt_state WHERE slot=?", (slot,)
        ).fetchone()
    if row is None:
        return AttemptState()
    return AttemptState(
        consecutive_failures=row["consecutive_failures"],
        lockout_until=row["lockout_until"],
        lockout_period_index=row["lockout_period_index"],
    )


def save_attempt_state(state: AttemptState, timestamp: int, slot: str = DEFAULT_SLOT):
    with get_connection() as conn:
        conn.execute(
            """INSERT INTO attempt_state(slot, consecutive_failures, lockout_until,
                                         lockout_period_index, updated_at)
               VALUES(?,?,?,?,?)
               ON CONFLICT(slot) DO UPDATE SET
                   consecutive_failures=excluded.consecutive_failures,
                   lockout_until=excluded.lockout_until,
                   lockout_period_index=excluded.lockout_period_index,
                   updated_at=excluded.updated_at""",
            (slot, state.consecutive_failures, state.lockout_until,
             state.lockout_period_index, timestamp),
        )


def delete_attempt_state(slot: str = DEFAULT_SLOT):
    with get_connection() as conn:
        conn.execute("DELETE FROM attempt_state WHERE slot=?", (slot,))
    logger.info(f"Attempt state cleared for slot '{slot}'")


# ─────────────────────────────────────────────
# AUDIT LOG
# ─────────────────────────────────────────────
def log_event(event_type: str, timestamp: int, outcome: str = None,
              confidence: float = None, detail: str = None, client_ip: str = ""):
    with get_connection() as conn:
        conn.execute(
            """INSERT INTO auth_logs(event_type, outcome, confidence, detail, timestamp, client_ip)
               VALUES(?,?,?,?,?,?)""",
            (event_type, outcome, confidence, detail, timestamp, client_ip),
        )


def get_auth_logs(event_type: str = None, limit: int = 50) -> list:
    query = "SELECT * FROM auth_logs"
    params: tuple = ()
    if event_type:
        query += " WHERE event_type=?"
        params = (event_type,)
    query += " ORDER BY id DESC LIMIT ?"
    params += (limit,)
    with get_connection() as conn:
        rows = conn.execute(query, params).fetchall()
    return [dict(r) for r in rows]
