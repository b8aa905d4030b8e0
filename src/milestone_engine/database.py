"""
milestone_engine/database.py — Reference SQLite persistence layer
=================================================================
The engine is storage-agnostic; this module is the persistence layer a
caller puts in front of it.  It serialises read-modify-write cycles per
milestone with an optimistic ``version`` column and owns the resubmission
counter the lifecycle controller only guards.

Design decisions
----------------
- **Milestone as one JSON blob**: requirements, rubric, settings,
  sign-offs and checkpoints are owned by the milestone and have no identity
  outside it, so they are stored inside its camelCase wire document.
- **Version check in the UPDATE**: ``WHERE id = ? AND version = ?`` makes
  a stale write affect zero rows, which is reported as ConflictError.
- **WAL journal mode**: concurrent readers (dashboards) do not block the
  writer.

Schema
------
  milestones      id TEXT PK, project_id, version, milestone_json,
                  due_date, closed_at, created_at, updated_at
  resubmissions   milestone_id TEXT PK, count INTEGER

Public API
----------
  init_db(db_path)
  save_milestone(milestone, expected_version, db_path)   → Milestone (version bumped)
  get_milestone(milestone_id, db_path)                   → Milestone | None
  get_project_milestones(project_id, db_path)            → list[Milestone]
  delete_milestone(milestone_id, db_path)                → bool
  get_resubmission_count(milestone_id, db_path)          → int
  increment_resubmission_count(milestone_id, db_path, limit) → int
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

from milestone_engine.config import get_settings
from milestone_engine.errors import ConflictError, LimitExceededError
from milestone_engine.models import Milestone

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _resolve(db_path: Optional[PathLike]) -> Path:
    return Path(db_path) if db_path else get_settings().storage.resolved_path


def _get_conn(db_path: Optional[PathLike] = None) -> sqlite3.Connection:
    """Return a connection with row_factory set."""
    conn = sqlite3.connect(str(_resolve(db_path)), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db(db_path: Optional[PathLike] = None) -> None:
    """Create tables if they don't exist."""
    conn = _get_conn(db_path)
    try:
        conn.executescript("""
        CREATE TABLE IF NOT EXISTS milestones (
            id              TEXT    PRIMARY KEY,
            project_id      TEXT    NOT NULL,
            version         INTEGER NOT NULL DEFAULT 1,
            milestone_json  TEXT    NOT NULL,
            due_date        TEXT    NOT NULL,
            closed_at       TEXT,
            created_at      TEXT    DEFAULT (datetime('now')),
            updated_at      TEXT    DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_milestones_project ON milestones (project_id);
        CREATE INDEX IF NOT EXISTS idx_milestones_due     ON milestones (due_date);
        CREATE TABLE IF NOT EXISTS resubmissions (
            milestone_id    TEXT    PRIMARY KEY,
            count           INTEGER NOT NULL DEFAULT 0
        );
        """)
        conn.commit()
    finally:
        conn.close()


def _row_to_milestone(row: sqlite3.Row) -> Milestone:
    milestone = Milestone.model_validate_json(row["milestone_json"])
    return milestone.model_copy(update={"version": row["version"]})


# ─── Milestone CRUD ──────────────────────────────────────────────────────────

def save_milestone(
    milestone: Milestone,
    expected_version: Optional[int] = None,
    db_path: Optional[PathLike] = None,
) -> Milestone:
    """
    Insert or update *milestone* and return it with the stored version.

    ``expected_version`` defaults to the snapshot's own version: 0 means
    "not stored yet", anything else must match the current row.
    """
    expected = milestone.version if expected_version is None else expected_version
    new_version = expected + 1
    stored = milestone.model_copy(update={"version": new_version})
    payload = stored.model_dump_json(by_alias=True)
    closed_at = stored.closed_at.isoformat() if stored.closed_at else None

    conn = _get_conn(db_path)
    try:
        if expected == 0:
            try:
                conn.execute(
                    """
                    INSERT INTO milestones
                        (id, project_id, version, milestone_json, due_date, closed_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (stored.id, stored.project_id, new_version, payload,
                     stored.due_date.isoformat(), closed_at),
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError(
                    f"Milestone '{stored.id}' already exists", expected=0,
                ) from exc
        else:
            cur = conn.execute(
                """
                UPDATE milestones
                   SET version = ?, milestone_json = ?, due_date = ?, closed_at = ?,
                       updated_at = datetime('now')
                 WHERE id = ? AND version = ?
                """,
                (new_version, payload, stored.due_date.isoformat(), closed_at,
                 stored.id, expected),
            )
            if cur.rowcount == 0:
                row = conn.execute(
                    "SELECT version FROM milestones WHERE id = ?", (stored.id,)
                ).fetchone()
                actual = row["version"] if row else None
                raise ConflictError(
                    f"Milestone '{stored.id}' was modified concurrently "
                    f"(expected version {expected}, found {actual})",
                    expected=expected, actual=actual,
                )
        conn.commit()
    finally:
        conn.close()

    logger.info("Milestone %s saved at version %d", stored.id, new_version)
    return stored


def get_milestone(milestone_id: str, db_path: Optional[PathLike] = None) -> Optional[Milestone]:
    """Fetch a milestone by id. Returns None when absent."""
    conn = _get_conn(db_path)
    try:
        row = conn.execute(
            "SELECT milestone_json, version FROM milestones WHERE id = ?", (milestone_id,)
        ).fetchone()
    finally:
        conn.close()
    return _row_to_milestone(row) if row is not None else None


def get_project_milestones(project_id: str, db_path: Optional[PathLike] = None) -> list[Milestone]:
    """All milestones of a project, earliest due date first."""
    conn = _get_conn(db_path)
    try:
        rows = conn.execute(
            """
            SELECT milestone_json, version FROM milestones
             WHERE project_id = ?
             ORDER BY due_date ASC, created_at ASC
            """,
            (project_id,),
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_milestone(r) for r in rows]


def delete_milestone(milestone_id: str, db_path: Optional[PathLike] = None) -> bool:
    conn = _get_conn(db_path)
    try:
        cur = conn.execute("DELETE FROM milestones WHERE id = ?", (milestone_id,))
        conn.execute("DELETE FROM resubmissions WHERE milestone_id = ?", (milestone_id,))
        conn.commit()
        deleted = cur.rowcount > 0
    finally:
        conn.close()
    if deleted:
        logger.info("Milestone %s deleted", milestone_id)
    return deleted


# ─── Resubmission counter ────────────────────────────────────────────────────

def get_resubmission_count(milestone_id: str, db_path: Optional[PathLike] = None) -> int:
    conn = _get_conn(db_path)
    try:
        row = conn.execute(
            "SELECT count FROM resubmissions WHERE milestone_id = ?", (milestone_id,)
        ).fetchone()
    finally:
        conn.close()
    return row["count"] if row else 0


def increment_resubmission_count(
    milestone_id: str,
    db_path: Optional[PathLike] = None,
    limit: Optional[int] = None,
) -> int:
    """
    Atomically add one to the counter and return the new value.

    With ``limit`` the cap is checked inside the same statement, so two
    concurrent requests cannot both take the last slot; a full counter
    raises LimitExceededError and is left unchanged.
    """
    if limit is not None and limit < 1:
        raise LimitExceededError(f"Resubmission limit of {limit} reached", limit=limit, count=0)

    conn = _get_conn(db_path)
    try:
        cur = conn.execute(
            """
            INSERT INTO resubmissions (milestone_id, count) VALUES (?, 1)
            ON CONFLICT(milestone_id) DO UPDATE SET count = count + 1
             WHERE ? IS NULL OR count < ?
            """,
            (milestone_id, limit, limit),
        )
        if cur.rowcount == 0:
            conn.rollback()
            raise LimitExceededError(
                f"Resubmission limit of {limit} reached", limit=limit, count=limit,
            )
        row = conn.execute(
            "SELECT count FROM resubmissions WHERE milestone_id = ?", (milestone_id,)
        ).fetchone()
        conn.commit()
    finally:
        conn.close()
    return row["count"]
