import re
import sqlite3
import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Optional

from .constants import PLACEHOLDER_PROJECT_STATUS, PLACEHOLDER_SOURCE, WORKER_ROLE
from .db import _utcnow_iso
from .models import Project, Worker

_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: str) -> str:
    """Trim, collapse internal whitespace and case-fold a typed name."""
    return _WHITESPACE.sub(" ", value or "").strip().casefold()


class Directory(ABC):
    """Lookup and placeholder creation for projects and worker profiles."""

    @abstractmethod
    def find_project_by_name(self, name: str) -> Optional[Project]:
        """Return the project whose location or name normalizes to ``name``."""

    @abstractmethod
    def find_worker_by_name(self, name: str) -> Optional[Worker]:
        """Return the worker profile whose name normalizes to ``name``."""

    @abstractmethod
    def create_placeholder_project(self, address: str, work_date: date) -> Project:
        """Create a flagged project standing in for an unknown address."""

    @abstractmethod
    def create_placeholder_worker(self, name: str) -> Worker:
        """Create a flagged worker profile standing in for an unknown name."""


def _project_row_to_model(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        location=row["location"],
        source=row["source"],
        isPlaceholder=bool(row["is_placeholder"]),
    )


def _worker_row_to_model(row: sqlite3.Row) -> Worker:
    return Worker(
        userId=row["user_id"],
        name=row["name"],
        role=row["role"],
        isPlaceholder=bool(row["is_placeholder"]),
    )


class SqliteDirectory(Directory):
    """Directory over the ``projects`` and ``profiles`` tables.

    Writes go through the given connection without committing, so placeholder
    creation joins whatever transaction the caller has open.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._projects: Optional[Dict[str, Project]] = None
        self._workers: Optional[Dict[str, Worker]] = None

    def _project_index(self) -> Dict[str, Project]:
        if self._projects is None:
            rows = self.conn.execute(
                """
                SELECT id, name, location, source, is_placeholder
                FROM projects ORDER BY created_at, id
                """
            ).fetchall()
            index: Dict[str, Project] = {}
            for row in rows:
                project = _project_row_to_model(row)
                for candidate in (project.location, project.name):
                    key = normalize_name(candidate)
                    if key and key not in index:
                        index[key] = project
            self._projects = index
        return self._projects

    def _worker_index(self) -> Dict[str, Worker]:
        if self._workers is None:
            rows = self.conn.execute(
                """
                SELECT user_id, name, role, is_placeholder
                FROM profiles ORDER BY created_at, user_id
                """
            ).fetchall()
            index: Dict[str, Worker] = {}
            for row in rows:
                worker = _worker_row_to_model(row)
                key = normalize_name(worker.name)
                if key and key not in index:
                    index[key] = worker
            self._workers = index
        return self._workers

    def find_project_by_name(self, name: str) -> Optional[Project]:
        return self._project_index().get(normalize_name(name))

    def find_worker_by_name(self, name: str) -> Optional[Worker]:
        return self._worker_index().get(normalize_name(name))

    def create_placeholder_project(self, address: str, work_date: date) -> Project:
        project_id = str(uuid.uuid4())
        label = " ".join(address.split())
        self.conn.execute(
            """
            INSERT INTO projects (
                id, name, location, status, start_date, end_date, budget,
                source, is_placeholder, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, 1, ?)
            """,
            (
                project_id,
                label,
                label,
                PLACEHOLDER_PROJECT_STATUS,
                work_date.isoformat(),
                work_date.isoformat(),
                PLACEHOLDER_SOURCE,
                _utcnow_iso(),
            ),
        )
        project = Project(
            id=project_id,
            name=label,
            location=label,
            source=PLACEHOLDER_SOURCE,
            isPlaceholder=True,
        )
        self._project_index()[normalize_name(label)] = project
        return project

    def create_placeholder_worker(self, name: str) -> Worker:
        user_id = str(uuid.uuid4())
        label = " ".join(name.split())
        self.conn.execute(
            """
            INSERT INTO profiles (user_id, name, role, is_placeholder, created_at)
            VALUES (?, ?, ?, 1, ?)
            """,
            (user_id, label, WORKER_ROLE, _utcnow_iso()),
        )
        worker = Worker(userId=user_id, name=label, role=WORKER_ROLE, isPlaceholder=True)
        self._worker_index()[normalize_name(label)] = worker
        return worker
