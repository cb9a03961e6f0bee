"""Optimistic planner-board state as pure functions.

A board maps schedule item id -> {user id: is_assistant}. Every function
returns a new board and leaves its input untouched.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .models import DaySchedule

Board = Dict[str, Dict[str, bool]]
AssignmentKey = Tuple[str, str]  # (schedule_item_id, user_id)


@dataclass(frozen=True)
class Intent:
    action: str
    is_assistant: bool = False


def board_from_schedule(schedule: DaySchedule) -> Board:
    return {
        item.id: {worker.userId: worker.isAssistant for worker in item.workers}
        for item in schedule.items
    }


def _copy(board: Board) -> Board:
    return {item_id: dict(links) for item_id, links in board.items()}


def link_state(board: Board, key: AssignmentKey) -> Optional[bool]:
    """``None`` when the worker is not linked, else its assistant flag."""
    item_id, user_id = key
    return board.get(item_id, {}).get(user_id)


def intent_matches(board: Board, key: AssignmentKey, intent: Intent) -> bool:
    state = link_state(board, key)
    if intent.action == "unassign":
        return state is None
    return state is not None and state == intent.is_assistant


def apply_intent(board: Board, key: AssignmentKey, intent: Intent) -> Board:
    item_id, user_id = key
    next_board = _copy(board)
    links = next_board.setdefault(item_id, {})
    if intent.action == "assign":
        links[user_id] = intent.is_assistant
    else:
        links.pop(user_id, None)
    return next_board


def apply_move(
    board: Board,
    user_id: str,
    from_item_id: Optional[str],
    to_item_id: str,
    is_assistant: bool = False,
) -> Board:
    next_board = board
    if from_item_id and from_item_id != to_item_id:
        next_board = apply_intent(next_board, (from_item_id, user_id), Intent("unassign"))
    return apply_intent(next_board, (to_item_id, user_id), Intent("assign", is_assistant))


def rollback_move(board: Board, committed: Board, key: AssignmentKey) -> Board:
    """Restore ``key`` on ``board`` to its state in ``committed``."""
    state = link_state(committed, key)
    if state is None:
        return apply_intent(board, key, Intent("unassign"))
    return apply_intent(board, key, Intent("assign", state))
