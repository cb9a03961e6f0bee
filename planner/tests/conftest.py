import asyncio
import sqlite3
import uuid
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from jose import jwt

from planner.constants import JWT_ALGORITHM, JWT_SECRET
from planner.db import _get_connection, _utcnow_iso
from planner.directory import Directory, normalize_name
from planner.models import (
    AbsenceDraft,
    DaySchedule,
    ParsedSchedule,
    Project,
    ScheduleItem,
    ScheduleItemDraft,
    ScheduleItemWorker,
    Worker,
    WorkerRef,
)

WORK_DATE = date(2024, 1, 15)


@pytest.fixture
def db_path(tmp_path, monkeypatch) -> str:
    path = str(tmp_path / "planner.db")
    monkeypatch.setenv("PLANNER_DB_PATH", path)
    return path


@pytest.fixture
def conn(db_path):
    connection = _get_connection()
    yield connection
    connection.close()


def make_token(user_id: str = "planner-1", role: str = "manager") -> str:
    return jwt.encode({"sub": user_id, "role": role}, JWT_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


def make_project(conn: sqlite3.Connection, name: str, location: Optional[str] = None) -> str:
    project_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO projects (id, name, location, status, budget, is_placeholder, created_at)
        VALUES (?, ?, ?, 'active', 0, 0, ?)
        """,
        (project_id, name, location or name, _utcnow_iso()),
    )
    conn.commit()
    return project_id


def make_worker(conn: sqlite3.Connection, name: str, role: str = "worker") -> str:
    user_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO profiles (user_id, name, role, is_placeholder, created_at)
        VALUES (?, ?, ?, 0, ?)
        """,
        (user_id, name, role, _utcnow_iso()),
    )
    conn.commit()
    return user_id


def make_item(
    address: str,
    workers: List[Tuple[str, bool]] = (),
    category: str = "normal",
    start: str = "08:00",
    end: str = "16:00",
) -> ScheduleItemDraft:
    return ScheduleItemDraft(
        address=address,
        category=category,
        startTime=start,
        endTime=end,
        workers=tuple(WorkerRef(name=name, isAssistant=flag) for name, flag in workers),
    )


def make_parsed(
    items: List[ScheduleItemDraft],
    absences: List[Tuple[str, Optional[str]]] = (),
    work_date: date = WORK_DATE,
) -> ParsedSchedule:
    return ParsedSchedule(
        workDate=work_date,
        items=tuple(items),
        absences=tuple(AbsenceDraft(workerName=name, reason=reason) for name, reason in absences),
    )


def make_day_schedule(items: Dict[str, Tuple[Optional[str], List[Tuple[str, bool]]]]) -> DaySchedule:
    """``items`` maps item id -> (project id, [(user id, is_assistant)])."""
    return DaySchedule(
        workDate=WORK_DATE,
        items=[
            ScheduleItem(
                id=item_id,
                workDate=WORK_DATE,
                address=f"Address {item_id}",
                category="normal",
                startTime="08:00",
                endTime="16:00",
                projectId=project_id,
                workers=[
                    ScheduleItemWorker(userId=user_id, name=f"Worker {user_id}", isAssistant=flag)
                    for user_id, flag in workers
                ],
            )
            for item_id, (project_id, workers) in items.items()
        ],
    )


class FakeDirectory(Directory):
    def __init__(self, projects: List[Project] = (), workers: List[Worker] = ()):
        self.projects = list(projects)
        self.workers = list(workers)
        self.lookups = 0

    def find_project_by_name(self, name: str) -> Optional[Project]:
        self.lookups += 1
        key = normalize_name(name)
        for project in self.projects:
            if key in (normalize_name(project.location), normalize_name(project.name)):
                return project
        return None

    def find_worker_by_name(self, name: str) -> Optional[Worker]:
        self.lookups += 1
        key = normalize_name(name)
        return next((w for w in self.workers if normalize_name(w.name) == key), None)

    def create_placeholder_project(self, address: str, work_date: date) -> Project:
        raise AssertionError("reconciliation must not create projects")

    def create_placeholder_worker(self, name: str) -> Worker:
        raise AssertionError("reconciliation must not create workers")


class _ManualHandle:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Virtual-time clock: timers only fire when ``advance`` passes them."""

    def __init__(self) -> None:
        self.now = 0.0
        self._handles: List[_ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.now + delay, callback)
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.due)
            self._handles.remove(handle)
            self.now = handle.due
            handle.callback()
        self.now = target

    def active(self) -> int:
        return len([h for h in self._handles if not h.cancelled])


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)
