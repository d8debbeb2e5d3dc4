from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from . import positions
from .db import Board, Card, TaskList
from .errors import CrossWorkspaceNotAllowed, InvalidOperation


def move_card_to_list(
    session: Session,
    card: Card,
    target: TaskList,
    target_position: Optional[int] = None,
) -> int:
    """Relocate ``card`` into ``target`` and return its new position.

    Source and destination orderings change inside the caller's atomic unit;
    if anything raises, both stay exactly as they were.
    """
    source_id = card.list_id
    if source_id == target.id:
        raise InvalidOperation("Card is already in this list; move it within the list instead")
    source = session.get(TaskList, source_id)
    if source.board.workspace_id != target.board.workspace_id:
        raise CrossWorkspaceNotAllowed("Cannot move a card across different workspaces")

    positions.cards.detach(session, source_id, card)
    slot = positions.cards.slot_for(session, target.id, target_position)
    positions.cards.open_gap(session, target.id, slot)

    card.task_list = target
    card.list_id = target.id
    card.position = slot
    session.flush()

    positions.bump_version(session, source)
    positions.bump_version(session, target)
    return slot


def move_list_to_board(
    session: Session,
    task_list: TaskList,
    target: Board,
    target_position: Optional[int] = None,
) -> int:
    source_id = task_list.board_id
    if source_id == target.id:
        raise InvalidOperation("List is already in this board; reorder it within the board instead")
    source = session.get(Board, source_id)
    if source.workspace_id != target.workspace_id:
        raise CrossWorkspaceNotAllowed("Cannot move a list across different workspaces")

    positions.lists.detach(session, source_id, task_list)
    slot = positions.lists.slot_for(session, target.id, target_position)
    positions.lists.open_gap(session, target.id, slot)

    # Cards follow their list; their board is derived, nothing to rewrite.
    task_list.board = target
    task_list.board_id = target.id
    task_list.position = slot
    session.flush()

    positions.bump_version(session, source)
    positions.bump_version(session, target)
    return slot
