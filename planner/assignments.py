"""
Live worker reassignment for the planner board.

Every (schedule item, worker) pair is an independent key with its own small
state machine::

    Idle -> PendingCommit -> Committing -> Idle
                                 \\-> Failed

Drag-and-drop moves update the optimistic board right away and record the
desired link per key. The commit for a key waits for a quiet period
(``ASSIGNMENT_DEBOUNCE_SECONDS``); any newer move for the same key restarts
the wait, so a burst of drags ends in a single commit of the final state.
Only one commit per key is ever in flight. A quiet period that ends while a
commit is still running queues exactly one follow-up commit.

A failed commit rolls that key, and only that key, back to its last committed
state. Successes and failures reach subscribers through the same channel as
``AssignmentOutcome`` values distinguished by ``tag``.

When an assign lands on an item linked to a project, an assign-tasks request
with the item's committed roster is emitted after ``ASSIGN_TASKS_DELAY_SECONDS``.
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from .board import (
    AssignmentKey,
    Board,
    Intent,
    apply_intent,
    apply_move,
    board_from_schedule,
    intent_matches,
    rollback_move,
)
from .constants import ASSIGN_TASKS_DELAY_SECONDS, ASSIGNMENT_DEBOUNCE_SECONDS
from .errors import AssignmentError
from .logger import get_logger
from .models import (
    AssignTasksRequest,
    DaySchedule,
    OutcomeTag,
    ScheduleItemWorker,
    UnassignedWorker,
    WorkerAssignmentRequest,
    WorkerAssignmentResult,
)
from .scheduling import Clock, KeyedScheduler

logger = get_logger(__name__)

CommitFn = Callable[[WorkerAssignmentRequest], Awaitable[WorkerAssignmentResult]]
AssignTasksFn = Callable[[AssignTasksRequest], Union[None, Awaitable[None]]]


class KeyState(str, Enum):
    IDLE = "idle"
    PENDING_COMMIT = "pending_commit"
    COMMITTING = "committing"
    FAILED = "failed"


@dataclass(frozen=True)
class AssignmentOutcome:
    tag: OutcomeTag
    scheduleItemId: str
    userId: str
    action: str
    result: Optional[WorkerAssignmentResult] = None
    error: Optional[AssignmentError] = None


Listener = Callable[[AssignmentOutcome], None]


class AssignmentCoordinator:
    def __init__(
        self,
        commit: CommitFn,
        on_assign_tasks: Optional[AssignTasksFn] = None,
        clock: Optional[Clock] = None,
        debounce_seconds: float = ASSIGNMENT_DEBOUNCE_SECONDS,
        assign_tasks_delay: float = ASSIGN_TASKS_DELAY_SECONDS,
    ):
        self._commit_fn = commit
        self._on_assign_tasks = on_assign_tasks
        self.debounce_seconds = debounce_seconds
        self.assign_tasks_delay = assign_tasks_delay
        self._commits: KeyedScheduler[AssignmentKey] = KeyedScheduler(clock)
        self._task_triggers: KeyedScheduler[str] = KeyedScheduler(clock)

        self.board: Board = {}
        self.committed: Board = {}
        self.project_ids: Dict[str, Optional[str]] = {}
        self.names: Dict[str, str] = {}

        self._desired: Dict[AssignmentKey, Intent] = {}
        self._states: Dict[AssignmentKey, KeyState] = {}
        self._in_flight: Dict[AssignmentKey, "asyncio.Future[None]"] = {}
        self._rerun: Set[AssignmentKey] = set()
        self._listeners: List[Listener] = []
        self._background: Set["asyncio.Future[None]"] = set()
        self._generation = 0

    def load(self, schedule: DaySchedule, unassigned: Iterable[UnassignedWorker] = ()) -> None:
        """Reset the board to a freshly loaded day."""
        self.close()
        self.board = board_from_schedule(schedule)
        self.committed = board_from_schedule(schedule)
        self.project_ids = {item.id: item.projectId for item in schedule.items}
        self.names = {
            worker.userId: worker.name for item in schedule.items for worker in item.workers
        }
        for worker in unassigned:
            self.names.setdefault(worker.userId, worker.name)
        self._desired.clear()
        self._states.clear()
        self._rerun.clear()
        # Commits still running for the previous day finish without touching this board.
        for future in self._in_flight.values():
            self._background.add(future)
            future.add_done_callback(self._background.discard)
        self._in_flight.clear()
        self._generation += 1

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def state(self, schedule_item_id: str, user_id: str) -> KeyState:
        return self._states.get((schedule_item_id, user_id), KeyState.IDLE)

    def pending(self, schedule_item_id: str, user_id: str) -> bool:
        return self._commits.pending((schedule_item_id, user_id))

    def move(
        self,
        user_id: str,
        from_item_id: Optional[str],
        to_item_id: str,
        is_assistant: bool = False,
    ) -> None:
        self.board = apply_move(self.board, user_id, from_item_id, to_item_id, is_assistant)
        if from_item_id and from_item_id != to_item_id:
            self._request((from_item_id, user_id), Intent("unassign"))
        self._request((to_item_id, user_id), Intent("assign", is_assistant))

    def unassign(self, user_id: str, schedule_item_id: str) -> None:
        key = (schedule_item_id, user_id)
        self.board = apply_intent(self.board, key, Intent("unassign"))
        self._request(key, Intent("unassign"))

    def _request(self, key: AssignmentKey, intent: Intent) -> None:
        self._desired[key] = intent
        if key not in self._in_flight:
            self._states[key] = KeyState.PENDING_COMMIT
        self._commits.schedule(key, lambda: self._on_quiet(key), self.debounce_seconds)

    def _on_quiet(self, key: AssignmentKey) -> None:
        if key in self._in_flight:
            self._rerun.add(key)
            return
        self._start_commit(key)

    def _start_commit(self, key: AssignmentKey) -> None:
        intent = self._desired.pop(key, None)
        if intent is None:
            return
        if intent_matches(self.committed, key, intent):
            self._states[key] = KeyState.IDLE
            return
        self._states[key] = KeyState.COMMITTING
        self._in_flight[key] = asyncio.ensure_future(
            self._commit(key, intent, self._generation)
        )

    async def _commit(self, key: AssignmentKey, intent: Intent, generation: int) -> None:
        item_id, user_id = key
        request = WorkerAssignmentRequest(
            scheduleItemId=item_id,
            userId=user_id,
            isAssistant=intent.is_assistant,
            action=intent.action,
        )
        result: Optional[WorkerAssignmentResult] = None
        error: Optional[AssignmentError] = None
        try:
            result = await self._commit_fn(request)
        except AssignmentError as exc:
            error = exc
        except Exception as exc:
            logger.exception("Commit for schedule item %s, worker %s raised", item_id, user_id)
            error = AssignmentError(str(exc) or type(exc).__name__, item_id, user_id)
            error.__cause__ = exc

        if generation != self._generation:
            logger.info("Dropping commit result for %s from a previous load", key)
            return
        self._in_flight.pop(key, None)
        if error is not None:
            self._on_failure(key, intent, error)
        else:
            self._on_success(key, intent, result)
        if key in self._rerun:
            self._rerun.discard(key)
            self._start_commit(key)

    def _on_success(
        self, key: AssignmentKey, intent: Intent, result: WorkerAssignmentResult
    ) -> None:
        item_id, user_id = key
        self.committed = apply_intent(self.committed, key, intent)
        for worker in result.workers:
            if worker.name:
                self.names[worker.userId] = worker.name
        if result.projectId and not self.project_ids.get(item_id):
            self.project_ids[item_id] = result.projectId
        self._states[key] = (
            KeyState.PENDING_COMMIT if key in self._desired else KeyState.IDLE
        )
        self._emit(
            AssignmentOutcome(
                tag="committed",
                scheduleItemId=item_id,
                userId=user_id,
                action=intent.action,
                result=result,
            )
        )
        if intent.action == "assign" and self.project_ids.get(item_id):
            self._task_triggers.schedule(
                item_id, lambda: self._trigger_assign_tasks(item_id), self.assign_tasks_delay
            )

    def _on_failure(self, key: AssignmentKey, intent: Intent, error: AssignmentError) -> None:
        item_id, user_id = key
        logger.warning(
            "Could not %s worker %s on schedule item %s: %s",
            intent.action,
            user_id,
            item_id,
            error,
        )
        if key in self._desired:
            # A newer move for this key is already queued and owns the board.
            self._states[key] = KeyState.PENDING_COMMIT
        else:
            self.board = rollback_move(self.board, self.committed, key)
            self._states[key] = KeyState.FAILED
        self._emit(
            AssignmentOutcome(
                tag="failed",
                scheduleItemId=item_id,
                userId=user_id,
                action=intent.action,
                error=error,
            )
        )

    def _emit(self, outcome: AssignmentOutcome) -> None:
        for listener in list(self._listeners):
            listener(outcome)

    def roster(self, schedule_item_id: str) -> List[ScheduleItemWorker]:
        return [
            ScheduleItemWorker(userId=user_id, name=self.names.get(user_id, ""), isAssistant=flag)
            for user_id, flag in self.committed.get(schedule_item_id, {}).items()
        ]

    def _trigger_assign_tasks(self, schedule_item_id: str) -> None:
        project_id = self.project_ids.get(schedule_item_id)
        if not project_id or self._on_assign_tasks is None:
            return
        request = AssignTasksRequest(
            projectId=project_id,
            scheduleItemId=schedule_item_id,
            workers=self.roster(schedule_item_id),
        )
        logger.info(
            "Requesting task assignment for project %s (%d workers)",
            project_id,
            len(request.workers),
        )
        outcome = self._on_assign_tasks(request)
        if inspect.isawaitable(outcome):
            future = asyncio.ensure_future(outcome)
            self._background.add(future)
            future.add_done_callback(self._background.discard)

    async def flush(self) -> None:
        """Commit every pending key now and wait for all in-flight commits."""
        for key in self._commits.keys():
            self._commits.fire_now(key)
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()))

    def close(self) -> None:
        """Drop pending timers; commits already in flight still complete."""
        self._commits.cancel_all()
        self._task_triggers.cancel_all()
