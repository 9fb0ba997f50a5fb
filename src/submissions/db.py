"""SQLite database for strategy submissions and their per-step components."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

_UPDATABLE_COLUMNS = frozenset({
    "title",
    "inputs_json",
    "components_json",
    "component_status_json",
    "status",
    "error",
    "updated_at",
    "completed_at",
})


class SubmissionDB:
    """SQLite-backed storage for form submissions."""

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS submissions (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                title TEXT,
                inputs_json TEXT NOT NULL DEFAULT '{}',
                components_json TEXT NOT NULL DEFAULT '{}',
                component_status_json TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'pending',
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_submissions_status ON submissions(status)"
        )
        self.conn.commit()

    def insert(
        self,
        id: str,
        kind: str,
        title: str | None,
        inputs_json: str,
        components_json: str,
        component_status_json: str,
        status: str,
        created_at: str,
        completed_at: str | None = None,
    ) -> None:
        self.conn.execute(
            """INSERT INTO submissions
               (id, kind, title, inputs_json, components_json, component_status_json,
                status, created_at, updated_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                id, kind, title, inputs_json, components_json, component_status_json,
                status, created_at, created_at, completed_at,
            ),
        )
        self.conn.commit()

    def get(self, id: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            "SELECT * FROM submissions WHERE id = ?", (id,)
        ).fetchone()
        return dict(row) if row else None

    def update(self, id: str, **fields: Any) -> bool:
        """Update the given columns. Returns False if no row matched."""
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown submission columns: {sorted(unknown)}")
        if not fields:
            return self.get(id) is not None
        assignments = ", ".join(f"{name}=?" for name in fields)
        cursor = self.conn.execute(
            f"UPDATE submissions SET {assignments} WHERE id=?",  # noqa: S608
            (*fields.values(), id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_submissions(
        self,
        kind: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if kind:
            clauses.append("kind = ?")
            params.append(kind)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.conn.execute(
            f"SELECT * FROM submissions {where} "  # noqa: S608
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_pending_before(self, cutoff: str) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM submissions WHERE status = 'pending' AND created_at < ?",
            (cutoff,),
        ).fetchall()
        return [dict(r) for r in rows]

    def delete(self, id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM submissions WHERE id = ?", (id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        self.conn.close()
