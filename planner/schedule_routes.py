from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from .auth import _get_current_user
from .db import _get_connection
from .directory import SqliteDirectory
from .importer import ScheduleImporter
from .models import (
    AutoImportResult,
    DaySchedule,
    ImportResponse,
    NewItemsPreview,
    ParsedSchedule,
    ParseRequest,
    UnassignedWorker,
    UserPublic,
    WorkerAssignmentRequest,
    WorkerAssignmentResult,
)
from .parser import parse_roster
from .reconciler import preview
from .schedule import _list_unassigned_workers, _load_schedule, _update_worker_assignment

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/v1/schedule/parse", response_model=ParsedSchedule)
def parse_schedule(payload: ParseRequest, _: UserPublic = Depends(_get_current_user)):
    return parse_roster(payload.text, work_date=payload.workDate)


@router.post("/v1/schedule/preview", response_model=NewItemsPreview)
def new_items_preview(payload: ParsedSchedule, _: UserPublic = Depends(_get_current_user)):
    conn = _get_connection()
    try:
        return preview(payload, SqliteDirectory(conn))
    finally:
        conn.close()


@router.post("/v1/schedule/import", response_model=ImportResponse)
def upsert_schedule(
    payload: ParsedSchedule, current_user: UserPublic = Depends(_get_current_user)
):
    summary = ScheduleImporter().upsert(payload, created_by=current_user.userId)
    return ImportResponse(
        workDate=payload.workDate,
        autoImportResult=AutoImportResult(
            createdProjects=summary.createdProjects,
            createdWorkers=summary.createdWorkers,
        ),
        itemsWritten=summary.itemsWritten,
    )


@router.get("/v1/schedule/{work_date}", response_model=DaySchedule)
def get_schedule(work_date: date, _: UserPublic = Depends(_get_current_user)):
    schedule = _load_schedule(work_date)
    if schedule is None:
        raise HTTPException(status_code=404, detail="No schedule for this date.")
    return schedule


@router.get("/v1/schedule/{work_date}/unassigned", response_model=List[UnassignedWorker])
def get_unassigned_workers(work_date: date, _: UserPublic = Depends(_get_current_user)):
    return _list_unassigned_workers(work_date)


@router.post("/v1/schedule/assignments", response_model=WorkerAssignmentResult)
def update_worker_assignment(
    payload: WorkerAssignmentRequest, _: UserPublic = Depends(_get_current_user)
):
    return _update_worker_assignment(payload)
