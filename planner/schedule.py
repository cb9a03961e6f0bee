import sqlite3
from datetime import date
from typing import List, Optional

from .constants import WORKER_ROLE
from .db import _get_connection, _utcnow_iso
from .errors import AssignmentError
from .logger import get_logger
from .models import (
    Absence,
    DaySchedule,
    ScheduleItem,
    ScheduleItemWorker,
    UnassignedWorker,
    WorkerAssignmentRequest,
    WorkerAssignmentResult,
)

logger = get_logger(__name__)


def _item_workers(conn: sqlite3.Connection, item_id: str) -> List[ScheduleItemWorker]:
    rows = conn.execute(
        """
        SELECT w.user_id, p.name, w.is_assistant
        FROM schedule_item_workers w
        JOIN profiles p ON p.user_id = w.user_id
        WHERE w.schedule_item_id = ?
        ORDER BY w.created_at, p.name
        """,
        (item_id,),
    ).fetchall()
    return [
        ScheduleItemWorker(
            userId=row["user_id"],
            name=row["name"],
            isAssistant=bool(row["is_assistant"]),
        )
        for row in rows
    ]


def _load_schedule(work_date: date) -> Optional[DaySchedule]:
    date_iso = work_date.isoformat()
    conn = _get_connection()
    try:
        schedule = conn.execute(
            "SELECT work_date, created_by FROM schedules WHERE work_date = ?", (date_iso,)
        ).fetchone()
        if not schedule:
            return None
        rows = conn.execute(
            """
            SELECT id, address, category, start_time, end_time, project_id, version
            FROM schedule_items
            WHERE work_date = ?
            ORDER BY start_time, address
            """,
            (date_iso,),
        ).fetchall()
        items = [
            ScheduleItem(
                id=row["id"],
                workDate=work_date,
                address=row["address"],
                category=row["category"],
                startTime=row["start_time"],
                endTime=row["end_time"],
                projectId=row["project_id"],
                version=row["version"],
                workers=_item_workers(conn, row["id"]),
            )
            for row in rows
        ]
        absences = [
            Absence(userId=row["user_id"], name=row["name"], reason=row["reason"])
            for row in conn.execute(
                """
                SELECT a.user_id, p.name, a.reason
                FROM absences a
                JOIN profiles p ON p.user_id = a.user_id
                WHERE a.work_date = ?
                ORDER BY p.name
                """,
                (date_iso,),
            ).fetchall()
        ]
    finally:
        conn.close()
    return DaySchedule(
        workDate=work_date,
        createdBy=schedule["created_by"],
        items=items,
        absences=absences,
    )


def _list_unassigned_workers(work_date: date) -> List[UnassignedWorker]:
    conn = _get_connection()
    try:
        rows = conn.execute(
            """
            SELECT p.user_id, p.name
            FROM profiles p
            WHERE p.role = ?
              AND p.user_id NOT IN (
                SELECT w.user_id
                FROM schedule_item_workers w
                JOIN schedule_items i ON i.id = w.schedule_item_id
                WHERE i.work_date = ?
              )
              AND p.user_id NOT IN (
                SELECT user_id FROM absences WHERE work_date = ?
              )
            ORDER BY p.name
            """,
            (WORKER_ROLE, work_date.isoformat(), work_date.isoformat()),
        ).fetchall()
    finally:
        conn.close()
    return [UnassignedWorker(userId=row["user_id"], name=row["name"]) for row in rows]


def _update_worker_assignment(payload: WorkerAssignmentRequest) -> WorkerAssignmentResult:
    conn = _get_connection()
    try:
        item = conn.execute(
            "SELECT id, project_id FROM schedule_items WHERE id = ?",
            (payload.scheduleItemId,),
        ).fetchone()
        if not item:
            raise AssignmentError(
                "Schedule item not found.", payload.scheduleItemId, payload.userId
            )
        if payload.action == "assign":
            if not conn.execute(
                "SELECT 1 FROM profiles WHERE user_id = ?", (payload.userId,)
            ).fetchone():
                raise AssignmentError("Worker not found.", payload.scheduleItemId, payload.userId)
            conn.execute(
                """
                INSERT INTO schedule_item_workers (schedule_item_id, user_id, is_assistant, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (schedule_item_id, user_id)
                DO UPDATE SET is_assistant = excluded.is_assistant
                """,
                (
                    payload.scheduleItemId,
                    payload.userId,
                    1 if payload.isAssistant else 0,
                    _utcnow_iso(),
                ),
            )
        else:
            conn.execute(
                "DELETE FROM schedule_item_workers WHERE schedule_item_id = ? AND user_id = ?",
                (payload.scheduleItemId, payload.userId),
            )
        conn.commit()
        workers = _item_workers(conn, payload.scheduleItemId)
    except sqlite3.Error as exc:
        conn.rollback()
        raise AssignmentError(
            f"Could not {payload.action} worker: {exc}", payload.scheduleItemId, payload.userId
        ) from exc
    finally:
        conn.close()
    logger.info(
        "Worker %s %sed on schedule item %s",
        payload.userId,
        payload.action,
        payload.scheduleItemId,
    )
    return WorkerAssignmentResult(
        scheduleItemId=payload.scheduleItemId,
        userId=payload.userId,
        action=payload.action,
        projectId=item["project_id"],
        workers=workers,
    )
