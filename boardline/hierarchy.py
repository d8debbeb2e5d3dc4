from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .db import Board, Card, TaskList, Workspace
from .errors import InconsistentHierarchy, NotFound


@dataclass
class BoardChain:
    workspace: Workspace
    board: Board


@dataclass
class ListChain(BoardChain):
    task_list: TaskList


@dataclass
class CardChain(ListChain):
    card: Card


def _workspace_for(session: Session, board: Board) -> Workspace:
    workspace = session.get(Workspace, board.workspace_id)
    # A soft-deleted workspace hides everything below it.
    if workspace is None or workspace.is_deleted:
        raise NotFound("Workspace not found or deleted", {"workspaceId": board.workspace_id})
    return workspace


def load_board(session: Session, board_id: str) -> BoardChain:
    board = session.get(Board, board_id)
    if board is None:
        raise NotFound("Board not found", {"boardId": board_id})
    return BoardChain(workspace=_workspace_for(session, board), board=board)


def load_list(session: Session, list_id: str, board_id: Optional[str] = None) -> ListChain:
    """Resolve list -> board -> workspace.

    ``board_id`` is the parent the caller claims; it must match the list's
    actual board. The chain resolves first, so an item under a deleted
    workspace is NotFound whatever parent is claimed.
    """
    task_list = session.get(TaskList, list_id)
    if task_list is None:
        raise NotFound("List not found", {"listId": list_id})
    chain = load_board(session, task_list.board_id)
    if board_id is not None and task_list.board_id != board_id:
        raise InconsistentHierarchy(
            "List does not belong to the specified board",
            {"listId": list_id, "boardId": board_id, "actualBoardId": task_list.board_id},
        )
    return ListChain(workspace=chain.workspace, board=chain.board, task_list=task_list)


def load_card(session: Session, card_id: str, list_id: Optional[str] = None) -> CardChain:
    card = session.get(Card, card_id)
    if card is None:
        raise NotFound("Card not found", {"cardId": card_id})
    chain = load_list(session, card.list_id)
    if list_id is not None and card.list_id != list_id:
        raise InconsistentHierarchy(
            "Card does not belong to the specified list",
            {"cardId": card_id, "listId": list_id, "actualListId": card.list_id},
        )
    return CardChain(
        workspace=chain.workspace,
        board=chain.board,
        task_list=chain.task_list,
        card=card,
    )
