"""Local project metadata for the sync client.

This module provides:
- ProjectStateStore: SQLite-backed sidecar records, one per project id
- ProjectRecord: what the client last saw of a project
- Reconciliation: outcome of comparing a record with the remote project

The record is used to notice when the project behind a local id no longer
looks like the one we last downloaded (renamed on the server, or modified
remotely since our copy was fetched).
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from speleosync.client.api import Project

logger = logging.getLogger(__name__)


class Reconciliation(Enum):
    """Result of comparing the local record with the remote project."""

    NEW = "new"  # Never seen locally
    UNCHANGED = "unchanged"
    REMOTE_CHANGED = "remote_changed"  # Modified on server since last download
    IDENTITY_MISMATCH = "identity_mismatch"  # Same id, different name


@dataclass
class ProjectRecord:
    """Sidecar metadata for one project.

    Attributes:
        project_id: Server-assigned project id.
        name: Project name when last seen.
        remote_created_at: Server creation timestamp (ISO string).
        remote_modified_at: Server modification timestamp (ISO string).
        downloaded_at: Epoch time of the last successful download.
        uploaded_at: Epoch time of the last successful upload.
    """

    project_id: str
    name: str
    remote_created_at: str | None
    remote_modified_at: str | None
    downloaded_at: float | None
    uploaded_at: float | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ProjectRecord:
        """Create ProjectRecord from database row."""
        return cls(
            project_id=row["project_id"],
            name=row["name"],
            remote_created_at=row["remote_created_at"],
            remote_modified_at=row["remote_modified_at"],
            downloaded_at=row["downloaded_at"],
            uploaded_at=row["uploaded_at"],
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ProjectStateStore:
    """SQLite-based sidecar metadata, keyed by project id."""

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the metadata database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Accessed from worker threads
        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                remote_created_at TEXT,
                remote_modified_at TEXT,
                downloaded_at REAL,
                uploaded_at REAL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def get(self, project_id: str) -> ProjectRecord | None:
        """Get the record for a project id, or None if never seen."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM projects WHERE project_id = ?",
                (project_id,),
            ).fetchone()
        if row is None:
            return None
        return ProjectRecord.from_row(row)

    def list_records(self) -> list[ProjectRecord]:
        """List all records."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM projects ORDER BY name"
            ).fetchall()
        return [ProjectRecord.from_row(row) for row in rows]

    def reconcile(self, project: Project) -> Reconciliation:
        """Compare the stored record with the remote project.

        Does not modify the store; call record_download() afterwards.
        """
        record = self.get(project.id)
        if record is None:
            return Reconciliation.NEW

        if record.name != project.name:
            logger.info("Incoherent project identity detected.")
            logger.info(f"\t- Previous Value: {record.name}")
            logger.info(f"\t- New Value: {project.name}")
            return Reconciliation.IDENTITY_MISMATCH

        remote_modified = _iso(project.modified_date)
        if remote_modified and remote_modified != record.remote_modified_at:
            return Reconciliation.REMOTE_CHANGED
        return Reconciliation.UNCHANGED

    def record_download(self, project: Project, downloaded_at: float | None = None) -> None:
        """Store what was downloaded, replacing identity and remote timestamps."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO projects
                    (project_id, name, remote_created_at, remote_modified_at, downloaded_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    name = excluded.name,
                    remote_created_at = excluded.remote_created_at,
                    remote_modified_at = excluded.remote_modified_at,
                    downloaded_at = excluded.downloaded_at
                """,
                (
                    project.id,
                    project.name,
                    _iso(project.creation_date),
                    _iso(project.modified_date),
                    downloaded_at if downloaded_at is not None else time.time(),
                ),
            )

    def record_upload(self, project: Project, uploaded_at: float | None = None) -> None:
        """Store the time of a successful upload."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO projects (project_id, name, uploaded_at)
                VALUES (?, ?, ?)
                ON CONFLICT(project_id) DO UPDATE SET
                    name = excluded.name,
                    uploaded_at = excluded.uploaded_at
                """,
                (
                    project.id,
                    project.name,
                    uploaded_at if uploaded_at is not None else time.time(),
                ),
            )

    def remove(self, project_id: str) -> bool:
        """Delete a record.

        Returns:
            True if a record was deleted.
        """
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM projects WHERE project_id = ?",
                (project_id,),
            )
        return cursor.rowcount > 0
