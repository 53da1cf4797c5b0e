from __future__ import annotations
import json
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

_DB_PATH = Path(os.getenv("REPCOACH_DB", "./repcoach.db"))

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS sessions (
  id TEXT PRIMARY KEY,
  exercise_id TEXT NOT NULL,
  exercise_name TEXT,
  source TEXT NOT NULL,
  started_at REAL NOT NULL,
  stopped_at REAL,
  attempted_reps INTEGER,
  completed_reps INTEGER,
  half_rep_count REAL
);

CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  t REAL NOT NULL,
  kind TEXT NOT NULL,
  detail TEXT,
  FOREIGN KEY(session_id) REFERENCES sessions(id)
);

CREATE TABLE IF NOT EXISTS reps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  session_id TEXT NOT NULL,
  set_index INTEGER NOT NULL,
  rep_number INTEGER NOT NULL,
  start_ms INTEGER NOT NULL,
  end_ms INTEGER NOT NULL,
  duration_ms INTEGER NOT NULL,
  phases_json TEXT,
  feedback_json TEXT,
  FOREIGN KEY(session_id) REFERENCES sessions(id)
);
"""

_conn: Optional[sqlite3.Connection] = None

def set_db_path(path) -> None:
    """Point the module at another database file (tests, alternate deployments)."""
    global _DB_PATH, _conn
    if _conn is not None:
        _conn.close()
        _conn = None
    _DB_PATH = Path(path)

def get_conn() -> sqlite3.Connection:
    global _conn
    if _conn is None:
        _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _conn = sqlite3.connect(_DB_PATH.as_posix(), check_same_thread=False)
        _conn.execute("PRAGMA foreign_keys=ON;")
        _conn.executescript(SCHEMA)
        _conn.commit()
    return _conn

# Session-level writes

def insert_session(session_id: str, exercise_id: str, exercise_name: Optional[str], source: str, started_at: float):
    conn = get_conn()
    conn.execute(
        "INSERT OR REPLACE INTO sessions (id, exercise_id, exercise_name, source, started_at) VALUES (?,?,?,?,?)",
        (session_id, exercise_id, exercise_name, source, started_at),
    )
    conn.commit()


def stop_session(session_id: str, stopped_at: float, attempted: int = 0, completed: int = 0, half_reps: float = 0.0):
    conn = get_conn()
    conn.execute(
        "UPDATE sessions SET stopped_at=?, attempted_reps=?, completed_reps=?, half_rep_count=? WHERE id=?",
        (stopped_at, attempted, completed, half_reps, session_id),
    )
    conn.commit()

# Event & rep writes

def insert_event(session_id: str, t: float, kind: str, detail: str = ""):
    conn = get_conn()
    conn.execute(
        "INSERT INTO events (session_id, t, kind, detail) VALUES (?,?,?,?)",
        (session_id, t, kind, detail),
    )
    conn.commit()


def insert_rep(
    session_id: str,
    set_index: int,
    rep_number: int,
    start_ms: int,
    end_ms: int,
    phases: dict,
    feedback: Optional[List[str]],
):
    conn = get_conn()
    conn.execute(
        """
        INSERT INTO reps (
          session_id, set_index, rep_number, start_ms, end_ms, duration_ms, phases_json, feedback_json
        ) VALUES (?,?,?,?,?,?,?,?)
        """,
        (
            session_id,
            set_index,
            rep_number,
            start_ms,
            end_ms,
            end_ms - start_ms,
            json.dumps(phases),
            json.dumps(feedback or []),
        ),
    )
    conn.commit()

# Reads

def list_reps(session_id: str) -> List[dict]:
    conn = get_conn()
    rows = conn.execute(
        "SELECT set_index, rep_number, start_ms, end_ms, duration_ms, feedback_json FROM reps WHERE session_id=? ORDER BY id",
        (session_id,),
    ).fetchall()
    return [
        {
            "set_index": r[0],
            "rep_number": r[1],
            "start_ms": r[2],
            "end_ms": r[3],
            "duration_ms": r[4],
            "feedback": json.loads(r[5] or "[]"),
        }
        for r in rows
    ]
