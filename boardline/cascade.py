from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from . import positions
from .db import Board, Card, ChecklistItem, TaskList


def _delete_cards_of(session: Session, list_id: str) -> int:
    card_ids = select(Card.id).where(Card.list_id == list_id)
    session.execute(
        delete(ChecklistItem).where(ChecklistItem.card_id.in_(card_ids)).execution_options(synchronize_session="fetch")
    )
    result = session.execute(
        delete(Card).where(Card.list_id == list_id).execution_options(synchronize_session="fetch")
    )
    return result.rowcount


def delete_list(session: Session, task_list: TaskList) -> int:
    """Delete ``task_list`` with every card in it and close the gap among its siblings.

    Returns the number of cards removed. No per-card permission check: the
    caller authorized the list once.
    """
    session.flush()
    board = session.get(Board, task_list.board_id)
    removed_cards = _delete_cards_of(session, task_list.id)
    positions.lists.remove_and_renumber(session, board.id, task_list)
    positions.bump_version(session, board)
    return removed_cards


def clear_list(session: Session, task_list: TaskList) -> int:
    """Delete every card of ``task_list`` but keep the list itself."""
    session.flush()
    removed = _delete_cards_of(session, task_list.id)
    if removed:
        positions.bump_version(session, task_list)
    return removed
