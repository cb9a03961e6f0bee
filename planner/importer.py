import sqlite3
import uuid
from typing import Callable, Dict, Optional

from .db import _get_connection, _utcnow_iso
from .directory import Directory, SqliteDirectory, normalize_name
from .errors import ScheduleImportError
from .logger import get_logger
from .models import ImportSummary, ParsedSchedule, ScheduleItemDraft
from .reconciler import preview

logger = get_logger(__name__)


class ScheduleImporter:
    """Commits a ``ParsedSchedule`` in one sqlite transaction.

    Unknown addresses and worker names get flagged placeholder rows first;
    schedule items are then upserted on ``(work_date, address_key, category)``
    and their worker links replaced wholesale. Rows are only touched when a
    value actually changes, so re-importing an unchanged roster writes nothing.
    """

    def __init__(
        self,
        connection_factory: Callable[[], sqlite3.Connection] = _get_connection,
        directory_factory: Callable[[sqlite3.Connection], Directory] = SqliteDirectory,
    ):
        self.connection_factory = connection_factory
        self.directory_factory = directory_factory

    def upsert(self, parsed: ParsedSchedule, created_by: Optional[str] = None) -> ImportSummary:
        work_date = parsed.workDate.isoformat()
        conn = self.connection_factory()
        try:
            summary = self._write(conn, parsed, created_by)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.warning("Import for %s rolled back: %s", work_date, exc)
            raise ScheduleImportError(f"Could not import schedule for {work_date}: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(
            "Imported schedule for %s: %d items written, %d projects and %d workers created",
            work_date,
            summary.itemsWritten,
            summary.createdProjects,
            summary.createdWorkers,
        )
        return summary

    def _write(
        self, conn: sqlite3.Connection, parsed: ParsedSchedule, created_by: Optional[str]
    ) -> ImportSummary:
        directory = self.directory_factory(conn)
        # Never trust an earlier preview; the directory may have moved on.
        missing = preview(parsed, directory)
        for address in missing.newProjects:
            directory.create_placeholder_project(address, parsed.workDate)
        for name in missing.newWorkers:
            directory.create_placeholder_worker(name)

        project_ids: Dict[str, str] = {}
        for item in parsed.items:
            project = directory.find_project_by_name(item.address)
            if project is None:
                raise ScheduleImportError(f"No project for address {item.address!r}")
            project_ids[normalize_name(item.address)] = project.id

        worker_ids: Dict[str, str] = {}
        names = [w.name for item in parsed.items for w in item.workers]
        names += [absence.workerName for absence in parsed.absences]
        for name in names:
            key = normalize_name(name)
            if key in worker_ids:
                continue
            worker = directory.find_worker_by_name(name)
            if worker is None:
                raise ScheduleImportError(f"No worker profile for {name!r}")
            worker_ids[key] = worker.userId

        work_date = parsed.workDate.isoformat()
        now = _utcnow_iso()
        schedule_row = conn.execute(
            "SELECT work_date FROM schedules WHERE work_date = ?", (work_date,)
        ).fetchone()
        if not schedule_row:
            conn.execute(
                """
                INSERT INTO schedules (work_date, created_by, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (work_date, created_by, now, now),
            )

        items_written = 0
        for item in parsed.items:
            if _upsert_item(conn, work_date, item, project_ids, worker_ids, now):
                items_written += 1
        absences_written = _upsert_absences(conn, work_date, parsed, worker_ids, now)

        if schedule_row and (items_written or absences_written):
            conn.execute(
                "UPDATE schedules SET updated_at = ? WHERE work_date = ?", (now, work_date)
            )

        return ImportSummary(
            createdProjects=len(missing.newProjects),
            createdWorkers=len(missing.newWorkers),
            itemsWritten=items_written,
        )


def _upsert_item(
    conn: sqlite3.Connection,
    work_date: str,
    item: ScheduleItemDraft,
    project_ids: Dict[str, str],
    worker_ids: Dict[str, str],
    now: str,
) -> bool:
    address_key = normalize_name(item.address)
    project_id = project_ids.get(address_key)
    row = conn.execute(
        """
        SELECT id, start_time, end_time, project_id
        FROM schedule_items
        WHERE work_date = ? AND address_key = ? AND category = ?
        """,
        (work_date, address_key, item.category),
    ).fetchone()

    inserted = False
    row_changed = False
    if not row:
        item_id = str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO schedule_items (
                id, work_date, address, address_key, category,
                start_time, end_time, project_id, version, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
            """,
            (
                item_id,
                work_date,
                item.address,
                address_key,
                item.category,
                item.startTime,
                item.endTime,
                project_id,
                now,
            ),
        )
        inserted = True
    else:
        item_id = row["id"]
        row_changed = (
            row["start_time"] != item.startTime
            or row["end_time"] != item.endTime
            or row["project_id"] != project_id
        )
        if row_changed:
            conn.execute(
                """
                UPDATE schedule_items
                SET start_time = ?, end_time = ?, project_id = ?, updated_at = ?
                WHERE id = ?
                """,
                (item.startTime, item.endTime, project_id, now, item_id),
            )

    links_changed = _replace_links(conn, item_id, item, worker_ids, now)
    if not inserted and (row_changed or links_changed):
        conn.execute(
            "UPDATE schedule_items SET version = version + 1, updated_at = ? WHERE id = ?",
            (now, item_id),
        )
    return inserted or row_changed or links_changed


def _replace_links(
    conn: sqlite3.Connection,
    item_id: str,
    item: ScheduleItemDraft,
    worker_ids: Dict[str, str],
    now: str,
) -> bool:
    desired: Dict[str, bool] = {}
    for worker in item.workers:
        desired.setdefault(worker_ids[normalize_name(worker.name)], worker.isAssistant)

    existing = {
        row["user_id"]: bool(row["is_assistant"])
        for row in conn.execute(
            "SELECT user_id, is_assistant FROM schedule_item_workers WHERE schedule_item_id = ?",
            (item_id,),
        ).fetchall()
    }

    changed = False
    for user_id in existing.keys() - desired.keys():
        conn.execute(
            "DELETE FROM schedule_item_workers WHERE schedule_item_id = ? AND user_id = ?",
            (item_id, user_id),
        )
        changed = True
    for user_id, is_assistant in desired.items():
        if user_id not in existing:
            conn.execute(
                """
                INSERT INTO schedule_item_workers (schedule_item_id, user_id, is_assistant, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (item_id, user_id, 1 if is_assistant else 0, now),
            )
            changed = True
        elif existing[user_id] != is_assistant:
            conn.execute(
                """
                UPDATE schedule_item_workers SET is_assistant = ?
                WHERE schedule_item_id = ? AND user_id = ?
                """,
                (1 if is_assistant else 0, item_id, user_id),
            )
            changed = True
    return changed


def _upsert_absences(
    conn: sqlite3.Connection,
    work_date: str,
    parsed: ParsedSchedule,
    worker_ids: Dict[str, str],
    now: str,
) -> int:
    written = 0
    for absence in parsed.absences:
        user_id = worker_ids[normalize_name(absence.workerName)]
        row = conn.execute(
            "SELECT reason FROM absences WHERE work_date = ? AND user_id = ?",
            (work_date, user_id),
        ).fetchone()
        if not row:
            conn.execute(
                """
                INSERT INTO absences (work_date, user_id, reason, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (work_date, user_id, absence.reason, now),
            )
            written += 1
        elif row["reason"] != absence.reason:
            conn.execute(
                "UPDATE absences SET reason = ? WHERE work_date = ? AND user_id = ?",
                (absence.reason, work_date, user_id),
            )
            written += 1
    return written
