"""Tests for the debounced reassignment coordinator.

Time is virtual: a ManualClock drives the debounce and assign-tasks timers,
and ``settle`` lets the commit coroutines run.
"""

import asyncio
from typing import List, Optional, Set

from planner.assignments import AssignmentCoordinator, KeyState
from planner.errors import AssignmentError
from planner.models import (
    AssignTasksRequest,
    ScheduleItemWorker,
    WorkerAssignmentRequest,
    WorkerAssignmentResult,
)

from .conftest import ManualClock, make_day_schedule, settle


class FakeBackend:
    def __init__(self, fail_users: Set[str] = frozenset()):
        self.fail_users = set(fail_users)
        self.requests: List[WorkerAssignmentRequest] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    async def __call__(self, request: WorkerAssignmentRequest) -> WorkerAssignmentResult:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if request.userId in self.fail_users:
                raise AssignmentError("Worker not found.", request.scheduleItemId, request.userId)
            return WorkerAssignmentResult(
                scheduleItemId=request.scheduleItemId,
                userId=request.userId,
                action=request.action,
                projectId="p1" if request.scheduleItemId == "i1" else None,
                workers=[ScheduleItemWorker(userId=request.userId, name=f"Worker {request.userId}")],
            )
        finally:
            self.active -= 1


def _coordinator(backend: FakeBackend, clock: ManualClock, triggers=None) -> AssignmentCoordinator:
    coordinator = AssignmentCoordinator(
        backend,
        on_assign_tasks=triggers.append if triggers is not None else None,
        clock=clock,
        debounce_seconds=1.0,
        assign_tasks_delay=0.5,
    )
    coordinator.load(
        make_day_schedule({"i1": ("p1", [("u1", False), ("u2", True)]), "i2": (None, [])})
    )
    return coordinator


def test_burst_of_moves_commits_final_state_once() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u3", None, "i2")
        clock.advance(0.5)
        coordinator.unassign("u3", "i2")
        clock.advance(0.5)
        coordinator.move("u3", None, "i2", is_assistant=True)
        assert coordinator.board["i2"] == {"u3": True}
        assert coordinator.state("i2", "u3") == KeyState.PENDING_COMMIT
        assert backend.requests == []

        clock.advance(1.0)
        await settle()

        assert [(r.scheduleItemId, r.userId, r.action, r.isAssistant) for r in backend.requests] == [
            ("i2", "u3", "assign", True)
        ]
        assert coordinator.committed["i2"] == {"u3": True}
        assert coordinator.state("i2", "u3") == KeyState.IDLE

    asyncio.run(scenario())


def test_move_back_to_committed_state_skips_commit() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u3", None, "i2")
        coordinator.unassign("u3", "i2")
        clock.advance(1.0)
        await settle()

        assert backend.requests == []
        assert coordinator.state("i2", "u3") == KeyState.IDLE
        assert coordinator.board == coordinator.committed

    asyncio.run(scenario())


def test_move_between_items_commits_both_keys() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u1", "i1", "i2")
        clock.advance(1.0)
        await settle()

        assert sorted((r.scheduleItemId, r.action) for r in backend.requests) == [
            ("i1", "unassign"),
            ("i2", "assign"),
        ]
        assert coordinator.committed == {"i1": {"u2": True}, "i2": {"u1": False}}

    asyncio.run(scenario())


def test_failure_rolls_back_only_the_failed_key() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend(fail_users={"u3"})
        coordinator = _coordinator(backend, clock)
        outcomes = []
        coordinator.subscribe(outcomes.append)

        coordinator.move("u3", None, "i2")
        coordinator.move("u4", None, "i2")
        clock.advance(1.0)
        await settle()

        assert coordinator.board["i2"] == {"u4": False}
        assert coordinator.committed["i2"] == {"u4": False}
        assert coordinator.state("i2", "u3") == KeyState.FAILED
        assert coordinator.state("i2", "u4") == KeyState.IDLE
        tags = {(o.userId, o.tag) for o in outcomes}
        assert tags == {("u3", "failed"), ("u4", "committed")}
        failed = next(o for o in outcomes if o.tag == "failed")
        assert isinstance(failed.error, AssignmentError)

    asyncio.run(scenario())


def test_only_one_commit_in_flight_per_key() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        backend.gate = asyncio.Event()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u3", None, "i2")
        clock.advance(1.0)
        await settle()
        assert coordinator.state("i2", "u3") == KeyState.COMMITTING

        coordinator.unassign("u3", "i2")
        clock.advance(1.0)
        await settle()
        assert len(backend.requests) == 1

        backend.gate.set()
        await settle()

        assert [r.action for r in backend.requests] == ["assign", "unassign"]
        assert backend.max_active == 1
        assert coordinator.committed["i2"] == {}
        assert coordinator.board["i2"] == {}
        assert coordinator.state("i2", "u3") == KeyState.IDLE

    asyncio.run(scenario())


def test_failure_does_not_roll_back_over_a_newer_move() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend(fail_users={"u3"})
        backend.gate = asyncio.Event()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u3", None, "i2")
        clock.advance(1.0)
        await settle()
        coordinator.move("u3", None, "i2", is_assistant=True)

        backend.gate.set()
        await settle()

        assert coordinator.board["i2"] == {"u3": True}
        assert coordinator.state("i2", "u3") == KeyState.PENDING_COMMIT
        assert coordinator.pending("i2", "u3")

        backend.fail_users.clear()
        clock.advance(1.0)
        await settle()
        assert coordinator.committed["i2"] == {"u3": True}

    asyncio.run(scenario())


def test_assign_tasks_trigger_after_delay() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        triggers: List[AssignTasksRequest] = []
        coordinator = _coordinator(backend, clock, triggers)

        coordinator.move("u3", None, "i1")
        coordinator.move("u4", None, "i2")
        clock.advance(1.0)
        await settle()
        assert triggers == []

        clock.advance(0.5)

        assert len(triggers) == 1
        request = triggers[0]
        assert request.projectId == "p1"
        assert request.scheduleItemId == "i1"
        assert sorted(w.userId for w in request.workers) == ["u1", "u2", "u3"]
        assert {w.userId: w.name for w in request.workers}["u3"] == "Worker u3"

    asyncio.run(scenario())


def test_unassign_does_not_trigger_assign_tasks() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        triggers: List[AssignTasksRequest] = []
        coordinator = _coordinator(backend, clock, triggers)

        coordinator.unassign("u1", "i1")
        clock.advance(2.0)
        await settle()
        clock.advance(2.0)

        assert [r.action for r in backend.requests] == ["unassign"]
        assert triggers == []

    asyncio.run(scenario())


def test_flush_commits_without_waiting_for_quiet_period() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        coordinator = _coordinator(backend, clock)

        coordinator.move("u3", None, "i2")
        await coordinator.flush()

        assert [r.userId for r in backend.requests] == ["u3"]
        assert not coordinator.pending("i2", "u3")
        assert clock.active() == 0

    asyncio.run(scenario())


def test_unsubscribed_listener_is_not_called() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        coordinator = _coordinator(backend, clock)
        outcomes = []
        unsubscribe = coordinator.subscribe(outcomes.append)
        unsubscribe()

        coordinator.move("u3", None, "i2")
        await coordinator.flush()

        assert outcomes == []
        assert coordinator.committed["i2"] == {"u3": False}

    asyncio.run(scenario())


def test_unexpected_commit_error_rolls_back_and_reports() -> None:
    async def scenario() -> None:
        clock = ManualClock()

        async def broken_commit(request: WorkerAssignmentRequest) -> WorkerAssignmentResult:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

        coordinator = AssignmentCoordinator(broken_commit, clock=clock, debounce_seconds=1.0)
        coordinator.load(make_day_schedule({"i1": ("p1", []), "i2": (None, [])}))
        outcomes = []
        coordinator.subscribe(outcomes.append)

        coordinator.move("u3", None, "i2")
        clock.advance(1.0)
        await settle()

        assert coordinator.board["i2"] == {}
        assert coordinator.state("i2", "u3") == KeyState.FAILED
        assert [o.tag for o in outcomes] == ["failed"]
        assert isinstance(outcomes[0].error, AssignmentError)
        assert outcomes[0].error.schedule_item_id == "i2"
        assert "Expecting value" in str(outcomes[0].error)

        await coordinator.flush()

    asyncio.run(scenario())


def test_reload_ignores_commits_from_previous_day() -> None:
    async def scenario() -> None:
        clock, backend = ManualClock(), FakeBackend()
        backend.gate = asyncio.Event()
        coordinator = _coordinator(backend, clock)
        outcomes = []
        coordinator.subscribe(outcomes.append)

        coordinator.move("u3", None, "i2")
        clock.advance(1.0)
        await settle()
        assert coordinator.state("i2", "u3") == KeyState.COMMITTING

        next_day = make_day_schedule({"i2": (None, [("u7", False)])})
        coordinator.load(next_day)
        backend.gate.set()
        await settle()

        assert coordinator.committed == {"i2": {"u7": False}}
        assert coordinator.board == {"i2": {"u7": False}}
        assert coordinator.state("i2", "u3") == KeyState.IDLE
        assert outcomes == []

        coordinator.move("u3", None, "i2")
        await coordinator.flush()
        assert coordinator.committed["i2"] == {"u7": False, "u3": False}

    asyncio.run(scenario())
