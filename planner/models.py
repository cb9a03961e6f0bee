from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

Category = Literal["normal", "materials", "storingen", "specials"]
Role = Literal["admin", "manager", "worker"]
AssignmentAction = Literal["assign", "unassign"]
OutcomeTag = Literal["committed", "failed"]

CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class UserPublic(BaseModel):
    userId: str
    role: Role = "manager"
    active: bool = True


class WorkerRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, pattern=r"\S")
    isAssistant: bool = False


class ScheduleItemDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str = Field(min_length=1, pattern=r"\S")
    category: Category = "normal"
    startTime: str = Field(pattern=CLOCK_PATTERN)
    endTime: str = Field(pattern=CLOCK_PATTERN)
    workers: Tuple[WorkerRef, ...] = ()

    @model_validator(mode="after")
    def check_time_range(self) -> ScheduleItemDraft:
        # Zero-padded HH:MM strings order the same way as the times they name.
        if self.startTime >= self.endTime:
            raise ValueError(f"startTime {self.startTime} must be before endTime {self.endTime}")
        return self


class AbsenceDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    workerName: str = Field(min_length=1, pattern=r"\S")
    reason: Optional[str] = None


class ParsedSchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    workDate: date
    items: Tuple[ScheduleItemDraft, ...] = ()
    absences: Tuple[AbsenceDraft, ...] = ()

    @model_validator(mode="after")
    def check_unique_items(self) -> ParsedSchedule:
        seen = set()
        for item in self.items:
            key = (" ".join(item.address.split()).casefold(), item.category)
            if key in seen:
                raise ValueError(
                    f"Duplicate schedule item {item.address!r} in category {item.category}"
                )
            seen.add(key)
        return self


class ParseRequest(BaseModel):
    text: str
    workDate: Optional[date] = None


class Project(BaseModel):
    id: str
    name: str
    location: str
    source: Optional[str] = None
    isPlaceholder: bool = False


class Worker(BaseModel):
    userId: str
    name: str
    role: str = "worker"
    isPlaceholder: bool = False


class NewItemsPreview(BaseModel):
    newProjects: List[str] = Field(default_factory=list)
    newWorkers: List[str] = Field(default_factory=list)


class ImportSummary(BaseModel):
    createdProjects: int = 0
    createdWorkers: int = 0
    itemsWritten: int = 0


class AutoImportResult(BaseModel):
    createdProjects: int
    createdWorkers: int


class ImportResponse(BaseModel):
    workDate: date
    autoImportResult: AutoImportResult
    itemsWritten: int


class ScheduleItemWorker(BaseModel):
    userId: str
    name: str = ""
    isAssistant: bool = False


class ScheduleItem(BaseModel):
    id: str
    workDate: date
    address: str
    category: Category
    startTime: str
    endTime: str
    projectId: Optional[str] = None
    version: int = 1
    workers: List[ScheduleItemWorker] = Field(default_factory=list)


class Absence(BaseModel):
    userId: str
    name: str
    reason: Optional[str] = None


class DaySchedule(BaseModel):
    workDate: date
    createdBy: Optional[str] = None
    items: List[ScheduleItem] = Field(default_factory=list)
    absences: List[Absence] = Field(default_factory=list)


class UnassignedWorker(BaseModel):
    userId: str
    name: str


class WorkerAssignmentRequest(BaseModel):
    scheduleItemId: str
    userId: str
    isAssistant: bool = False
    action: AssignmentAction


class WorkerAssignmentResult(BaseModel):
    scheduleItemId: str
    userId: str
    action: AssignmentAction
    projectId: Optional[str] = None
    workers: List[ScheduleItemWorker] = Field(default_factory=list)


class AssignTasksRequest(BaseModel):
    projectId: str
    scheduleItemId: str
    workers: List[ScheduleItemWorker] = Field(default_factory=list)
