"""Entry points for every list and card operation.

Each call validates ids, loads and checks the hierarchy, authorizes the
actor, applies the change inside one atomic unit and, only after commit,
hands activity / notification / presence calls to the side channel.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from . import cascade, moves, positions
from .config import Settings, get_settings
from .db import Card, ChecklistItem, TaskList, atomic, init_db, make_engine, make_session_factory
from .errors import BoardlineError, Conflict, Forbidden, InternalError, InvalidOperation, NotFound
from .hierarchy import BoardChain, load_board, load_card, load_list
from .roles import Access, resolve_access
from .schemas import (
    BoardListsOut,
    CardAssignee,
    CardAttachment,
    CardComment,
    CardIn,
    CardLabels,
    CardMove,
    CardOut,
    CardPatch,
    CardPosition,
    CardReorder,
    CardStatusIn,
    ChecklistItemIn,
    ChecklistItemOut,
    ListCardsOut,
    ListIn,
    ListMove,
    ListOut,
    ListPatch,
    ListReorder,
    ListStatusChange,
)
from .sinks import (
    ActivitySink,
    LoggingActivitySink,
    LoggingNotificationSink,
    NotificationSink,
    NullPresenceSink,
    PresenceSink,
    SideEffects,
)
from .utils import require_ids

logger = logging.getLogger(__name__)


# === Views ===


def list_out(task_list: TaskList) -> ListOut:
    return ListOut(
        id=task_list.id,
        boardId=task_list.board_id,
        title=task_list.title,
        position=task_list.position,
        createdBy=task_list.created_by,
        isArchived=task_list.is_archived,
        isActive=task_list.is_active,
        version=task_list.version,
        createdAt=task_list.created_at,
        updatedAt=task_list.updated_at,
    )


def checklist_out(item: ChecklistItem) -> ChecklistItemOut:
    return ChecklistItemOut(
        id=item.id,
        text=item.text,
        completed=item.completed,
        position=item.position,
        createdAt=item.created_at,
        updatedAt=item.updated_at,
    )


def card_out(card: Card, checklist: list[ChecklistItem]) -> CardOut:
    return CardOut(
        id=card.id,
        listId=card.list_id,
        boardId=card.board_id,
        title=card.title,
        description=card.description,
        status=card.status,
        position=card.position,
        createdBy=card.created_by,
        assignedTo=list(card.assigned_to or []),
        labels=list(card.labels or []),
        attachments=list(card.attachments or []),
        comments=list(card.comments or []),
        dueDate=card.due_date,
        isArchived=card.is_archived,
        checklist=[checklist_out(i) for i in checklist],
        createdAt=card.created_at,
        updatedAt=card.updated_at,
    )


def _checklists(session: Session, card_ids: list[str]) -> dict[str, list[ChecklistItem]]:
    grouped: dict[str, list[ChecklistItem]] = {cid: [] for cid in card_ids}
    if not card_ids:
        return grouped
    stmt = (
        select(ChecklistItem)
        .where(ChecklistItem.card_id.in_(card_ids))
        .order_by(ChecklistItem.card_id, ChecklistItem.position)
    )
    for item in session.execute(stmt).scalars():
        grouped[item.card_id].append(item)
    return grouped


def _cards_out(session: Session, rows: list[Card]) -> list[CardOut]:
    checklists = _checklists(session, [c.id for c in rows])
    return [card_out(c, checklists[c.id]) for c in rows]


def _clean_labels(labels: list[str]) -> list[str]:
    seen: list[str] = []
    for label in labels:
        label = label.strip()
        if label and label not in seen:
            seen.append(label)
    return seen


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _is_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in ("40001", "40P01"):
        return True
    return "database is locked" in str(orig).lower()


# === Unit of work ===


class _Unit:
    """State collected while one operation runs inside its transaction."""

    def __init__(self, session: Session, actor_id: str) -> None:
        self.session = session
        self.actor_id = actor_id
        self.touched: set[tuple[positions.PositionManager, str]] = set()
        self.activities: list[tuple] = []
        self.notifications: list[tuple] = []
        self.boards: set[str] = set()

    def touch(self, manager: positions.PositionManager, parent_id: str) -> None:
        self.touched.add((manager, parent_id))

    def activity(
        self,
        chain: BoardChain,
        action: str,
        target_type: str,
        target_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.boards.add(chain.board.id)
        self.activities.append(
            (self.actor_id, chain.workspace.id, chain.board.id, action, target_type, target_id, details or {})
        )

    def notify(self, board_id: str, message: str, metadata: Optional[dict[str, Any]] = None) -> None:
        self.notifications.append((board_id, self.actor_id, message, metadata or {}))

    def verify(self) -> None:
        for manager, parent_id in self.touched:
            manager.verify(self.session, parent_id)


class MutationGate:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        activity: Optional[ActivitySink] = None,
        notifications: Optional[NotificationSink] = None,
        presence: Optional[PresenceSink] = None,
        side_effects: Optional[SideEffects] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._sessions = session_factory
        self._settings = settings or get_settings()
        self.activity = activity or LoggingActivitySink()
        self.notifications = notifications or LoggingNotificationSink()
        self.presence = presence or NullPresenceSink()
        self.side_effects = side_effects or SideEffects(max_workers=self._settings.side_effect_workers)

    @contextmanager
    def _unit(self, operation: str, actor_id: str) -> Iterator[_Unit]:
        try:
            with atomic(self._sessions) as session:
                unit = _Unit(session, actor_id)
                yield unit
                if self._settings.verify_invariants:
                    unit.verify()
        except Conflict:
            logger.warning("operation conflicted", extra={"operation": operation, "actorId": actor_id})
            raise
        except BoardlineError as exc:
            logger.info(
                "operation rejected: %s",
                exc.code,
                extra={"operation": operation, "actorId": actor_id},
            )
            raise
        except StaleDataError as exc:
            logger.warning("operation conflicted", extra={"operation": operation, "actorId": actor_id})
            raise Conflict("Concurrent modification, retry with a fresh read") from exc
        except DBAPIError as exc:
            if _is_conflict(exc):
                logger.warning("operation conflicted", extra={"operation": operation, "actorId": actor_id})
                raise Conflict("Concurrent modification, retry with a fresh read") from exc
            logger.exception("store failure", extra={"operation": operation, "actorId": actor_id})
            raise InternalError("Internal error") from exc
        except SQLAlchemyError as exc:
            logger.exception("store failure", extra={"operation": operation, "actorId": actor_id})
            raise InternalError("Internal error") from exc
        if unit.activities or unit.touched:
            logger.info("operation committed", extra={"operation": operation, "actorId": actor_id})
        self._dispatch(unit)

    def _dispatch(self, unit: _Unit) -> None:
        for args in unit.activities:
            self.side_effects.submit(self.activity.record, *args)
        for args in unit.notifications:
            self.side_effects.submit(self.notifications.notify, *args)
        for board_id in unit.boards:
            self.side_effects.submit(self.presence.touch, unit.actor_id, board_id)

    @staticmethod
    def _require(allowed: bool, message: str) -> None:
        if not allowed:
            raise Forbidden(message)

    @staticmethod
    def _access(chain: BoardChain, actor_id: str) -> Access:
        return resolve_access(chain.workspace, chain.board, actor_id)

    # === Lists: reads ===

    def list_lists(self, actor_id: str, board_id: str) -> BoardListsOut:
        require_ids(actorId=actor_id, boardId=board_id)
        with self._unit("list_lists", actor_id) as unit:
            chain = load_board(unit.session, board_id)
            self._require(self._access(chain, actor_id).can_read_board, "You are not allowed to view lists of this board")
            rows = positions.lists.siblings(unit.session, board_id)
            return BoardListsOut(boardId=board_id, version=chain.board.version, lists=[list_out(r) for r in rows])

    def get_list(self, actor_id: str, board_id: str, list_id: str) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id)
        with self._unit("get_list", actor_id) as unit:
            chain = load_list(unit.session, list_id, board_id)
            self._require(self._access(chain, actor_id).can_read_board, "You are not allowed to access this list")
            return list_out(chain.task_list)

    # === Lists: mutations ===

    def create_list(self, actor_id: str, board_id: str, payload: ListIn) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id)
        with self._unit("create_list", actor_id) as unit:
            session = unit.session
            chain = load_board(session, board_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You are not a member of this board")
            task_list = TaskList(title=payload.title.strip(), created_by=actor_id)
            positions.lists.insert(session, board_id, task_list, payload.position)
            positions.bump_version(session, chain.board)
            unit.touch(positions.lists, board_id)
            unit.activity(chain, "list_created", "list", task_list.id, {"title": task_list.title})
            return list_out(task_list)

    def update_list(self, actor_id: str, board_id: str, list_id: str, payload: ListPatch) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id)
        with self._unit("update_list", actor_id) as unit:
            session = unit.session
            chain = load_list(session, list_id, board_id)
            task_list = chain.task_list
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(task_list.created_by),
                "You are not allowed to update this list",
            )
            if payload.title is None and payload.position is None:
                raise InvalidOperation("Nothing to update")
            details: dict[str, Any] = {}
            if payload.position is not None:
                positions.expect_version(chain.board, payload.expectedVersion)
                old = task_list.position
                if positions.lists.move_within(session, board_id, task_list, payload.position):
                    positions.bump_version(session, chain.board)
                    details.update({"from": old, "to": task_list.position})
                unit.touch(positions.lists, board_id)
            if payload.title is not None:
                details["title"] = task_list.title = payload.title.strip()
            session.flush()
            unit.activity(chain, "list_updated", "list", list_id, details)
            return list_out(task_list)

    def delete_list(self, actor_id: str, board_id: str, list_id: str) -> None:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id)
        with self._unit("delete_list", actor_id) as unit:
            chain = load_list(unit.session, list_id, board_id)
            self._require(
                self._access(chain, actor_id).is_admin_or_owner,
                "Only workspace owner or admin can delete lists",
            )
            title = chain.task_list.title
            removed = cascade.delete_list(unit.session, chain.task_list)
            unit.touch(positions.lists, board_id)
            unit.activity(chain, "list_deleted", "list", list_id, {"title": title, "cardsRemoved": removed})
            unit.notify(board_id, f'List "{title}" was deleted', {"listId": list_id, "cardsRemoved": removed})

    def change_list_status(
        self, actor_id: str, board_id: str, list_id: str, payload: ListStatusChange
    ) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id)
        with self._unit("change_list_status", actor_id) as unit:
            chain = load_list(unit.session, list_id, board_id)
            task_list = chain.task_list
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(task_list.created_by),
                "You are not allowed to modify this list",
            )
            action = payload.action
            if action == "archive":
                if task_list.is_archived:
                    raise InvalidOperation("List is already archived")
                task_list.is_archived, task_list.is_active = True, False
            elif action == "unarchive":
                if not task_list.is_archived:
                    raise InvalidOperation("List is not archived")
                task_list.is_archived, task_list.is_active = False, True
            elif action == "deactivate":
                if not task_list.is_active:
                    raise InvalidOperation("List is already inactive")
                task_list.is_active = False
            else:
                if task_list.is_active:
                    raise InvalidOperation("List is already active")
                task_list.is_active = True
            unit.session.flush()
            unit.activity(chain, f"list_{action}", "list", list_id, {"title": task_list.title})
            return list_out(task_list)

    def reorder_lists(self, actor_id: str, board_id: str, payload: ListReorder) -> BoardListsOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=payload.listId)
        with self._unit("reorder_lists", actor_id) as unit:
            session = unit.session
            chain = load_list(session, payload.listId, board_id)
            self._require(self._access(chain, actor_id).can_edit_board, "Only board members can reorder lists")
            positions.expect_version(chain.board, payload.expectedVersion)
            current = [row.id for row in positions.lists.siblings(session, board_id)]
            order = positions.drag_order(current, payload.listId, payload.startIndex, payload.endIndex)
            rows = positions.lists.reorder_bulk(session, board_id, order)
            if order != current:
                positions.bump_version(session, chain.board)
                unit.activity(
                    chain,
                    "lists_reordered",
                    "board",
                    board_id,
                    {"listId": payload.listId, "from": payload.startIndex, "to": rows.index(chain.task_list)},
                )
            unit.touch(positions.lists, board_id)
            return BoardListsOut(boardId=board_id, version=chain.board.version, lists=[list_out(r) for r in rows])

    def move_list(self, actor_id: str, board_id: str, list_id: str, payload: ListMove) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id, targetBoardId=payload.targetBoardId)
        with self._unit("move_list", actor_id) as unit:
            session = unit.session
            chain = load_list(session, list_id, board_id)
            self._require(
                self._access(chain, actor_id).is_admin_or_owner,
                "Only workspace owner/admin can move lists",
            )
            if payload.targetBoardId == board_id:
                raise InvalidOperation("List is already in this board")
            target = load_board(session, payload.targetBoardId)
            positions.expect_version(chain.board, payload.expectedVersion)
            moves.move_list_to_board(session, chain.task_list, target.board, payload.targetPosition)
            unit.touch(positions.lists, board_id)
            unit.touch(positions.lists, target.board.id)
            unit.activity(
                chain,
                "list_moved",
                "list",
                list_id,
                {"fromBoardId": board_id, "toBoardId": target.board.id, "position": chain.task_list.position},
            )
            unit.notify(target.board.id, f'List "{chain.task_list.title}" was moved here', {"listId": list_id})
            return list_out(chain.task_list)

    def clear_list(self, actor_id: str, board_id: str, list_id: str) -> ListOut:
        require_ids(actorId=actor_id, boardId=board_id, listId=list_id)
        with self._unit("clear_list", actor_id) as unit:
            chain = load_list(unit.session, list_id, board_id)
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(chain.task_list.created_by),
                "Only list creator or workspace admin/owner can clear this list",
            )
            removed = cascade.clear_list(unit.session, chain.task_list)
            unit.touch(positions.cards, list_id)
            if removed:
                unit.activity(chain, "list_cleared", "list", list_id, {"cardsRemoved": removed})
            return list_out(chain.task_list)

    # === Cards: reads ===

    def list_cards(self, actor_id: str, list_id: str, include_archived: bool = False) -> ListCardsOut:
        require_ids(actorId=actor_id, listId=list_id)
        with self._unit("list_cards", actor_id) as unit:
            chain = load_list(unit.session, list_id)
            self._require(self._access(chain, actor_id).can_read_board, "You don't have permission to access this board")
            rows = positions.cards.siblings(unit.session, list_id)
            if not include_archived:
                rows = [c for c in rows if not c.is_archived]
            return ListCardsOut(listId=list_id, version=chain.task_list.version, cards=_cards_out(unit.session, rows))

    def get_card(self, actor_id: str, list_id: str, card_id: str) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("get_card", actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_read_board, "You don't have permission to access this board")
            return _cards_out(unit.session, [chain.card])[0]

    def search_cards(
        self,
        actor_id: str,
        board_id: str,
        q: Optional[str] = None,
        label: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> list[CardOut]:
        require_ids(actorId=actor_id, boardId=board_id)
        if assigned_to is not None:
            require_ids(assignedTo=assigned_to)
        with self._unit("search_cards", actor_id) as unit:
            chain = load_board(unit.session, board_id)
            self._require(self._access(chain, actor_id).can_read_board, "You don't have permission to access this board")
            stmt = (
                select(Card)
                .join(TaskList, Card.list_id == TaskList.id)
                .where(TaskList.board_id == board_id, Card.is_archived.is_(False))
                .order_by(TaskList.position, Card.position)
            )
            if q:
                stmt = stmt.where(Card.title.ilike(f"%{_like_escape(q)}%", escape="\\"))
            rows = list(unit.session.execute(stmt).scalars())
            if label:
                rows = [c for c in rows if label in (c.labels or [])]
            if assigned_to:
                rows = [c for c in rows if assigned_to in (c.assigned_to or [])]
            return _cards_out(unit.session, rows)

    # === Cards: mutations ===

    def create_card(self, actor_id: str, list_id: str, payload: CardIn) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id)
        with self._unit("create_card", actor_id) as unit:
            session = unit.session
            chain = load_list(session, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            card = Card(
                title=payload.title.strip(),
                description=payload.description,
                created_by=actor_id,
                assigned_to=[],
                labels=_clean_labels(payload.labels),
                attachments=[],
                comments=[],
                due_date=payload.dueDate,
            )
            card.task_list = chain.task_list
            positions.cards.insert(session, list_id, card, payload.position)
            positions.bump_version(session, chain.task_list)
            unit.touch(positions.cards, list_id)
            unit.activity(chain, "card_created", "card", card.id, {"title": card.title, "listId": list_id})
            return card_out(card, [])

    def update_card(self, actor_id: str, list_id: str, card_id: str, payload: CardPatch) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("update_card", actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            card = chain.card
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(card.created_by),
                "Only card creator or workspace admin/owner can update this card",
            )
            changes = payload.model_dump(exclude_none=True)
            if not changes:
                raise InvalidOperation("Nothing to update")
            if payload.title is not None:
                card.title = payload.title.strip()
            if payload.description is not None:
                card.description = payload.description
            if payload.dueDate is not None:
                card.due_date = payload.dueDate
            if payload.labels is not None:
                card.labels = _clean_labels(payload.labels)
            if payload.status is not None:
                card.status = payload.status
            unit.session.flush()
            unit.activity(chain, "card_updated", "card", card_id, {"fields": sorted(changes)})
            return _cards_out(unit.session, [card])[0]

    def delete_card(self, actor_id: str, list_id: str, card_id: str) -> None:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("delete_card", actor_id) as unit:
            session = unit.session
            chain = load_card(session, card_id, list_id)
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(chain.card.created_by),
                "Only card creator or workspace admin/owner can delete this card",
            )
            title = chain.card.title
            positions.cards.remove_and_renumber(session, list_id, chain.card)
            positions.bump_version(session, chain.task_list)
            unit.touch(positions.cards, list_id)
            unit.activity(chain, "card_deleted", "card", card_id, {"title": title, "listId": list_id})

    def _set_archived(self, actor_id: str, list_id: str, card_id: str, archived: bool) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        action = "card_archived" if archived else "card_restored"
        with self._unit(action, actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(
                self._access(chain, actor_id).is_creator_or_admin(chain.card.created_by),
                "Only card creator or workspace admin/owner can archive or restore this card",
            )
            chain.card.is_archived = archived
            unit.session.flush()
            unit.activity(chain, action, "card", card_id)
            return _cards_out(unit.session, [chain.card])[0]

    def archive_card(self, actor_id: str, list_id: str, card_id: str) -> CardOut:
        return self._set_archived(actor_id, list_id, card_id, True)

    def restore_card(self, actor_id: str, list_id: str, card_id: str) -> CardOut:
        return self._set_archived(actor_id, list_id, card_id, False)

    def move_card_within_list(self, actor_id: str, list_id: str, card_id: str, payload: CardPosition) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("move_card_within_list", actor_id) as unit:
            session = unit.session
            chain = load_card(session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            positions.expect_version(chain.task_list, payload.expectedVersion)
            old = chain.card.position
            if positions.cards.move_within(session, list_id, chain.card, payload.newPosition):
                positions.bump_version(session, chain.task_list)
                unit.activity(chain, "card_moved", "card", card_id, {"from": old, "to": chain.card.position})
            unit.touch(positions.cards, list_id)
            return _cards_out(session, [chain.card])[0]

    def reorder_cards(self, actor_id: str, list_id: str, payload: CardReorder) -> ListCardsOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=payload.cardId)
        with self._unit("reorder_cards", actor_id) as unit:
            session = unit.session
            chain = load_card(session, payload.cardId, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "Only board members can reorder cards")
            positions.expect_version(chain.task_list, payload.expectedVersion)
            if chain.card.is_archived:
                raise InvalidOperation("Archived cards cannot be reordered; restore the card first")
            siblings = positions.cards.siblings(session, list_id)
            current = [row.id for row in siblings]
            # Indices refer to the default read, which hides archived cards.
            visible = [row.id for row in siblings if not row.is_archived]
            dragged = positions.drag_order(visible, payload.cardId, payload.startIndex, payload.endIndex)
            order = positions.fill_slots(current, dragged)
            rows = positions.cards.reorder_bulk(session, list_id, order)
            if order != current:
                positions.bump_version(session, chain.task_list)
                unit.activity(
                    chain,
                    "cards_reordered",
                    "list",
                    list_id,
                    {"cardId": payload.cardId, "from": payload.startIndex, "to": chain.card.position},
                )
            unit.touch(positions.cards, list_id)
            shown = [r for r in rows if not r.is_archived]
            return ListCardsOut(listId=list_id, version=chain.task_list.version, cards=_cards_out(session, shown))

    def move_card_to_list(self, actor_id: str, list_id: str, card_id: str, payload: CardMove) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id, targetListId=payload.targetListId)
        with self._unit("move_card_to_list", actor_id) as unit:
            session = unit.session
            chain = load_card(session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            if payload.targetListId == list_id:
                raise InvalidOperation("Card is already in this list; move it within the list instead")
            target = load_list(session, payload.targetListId)
            if target.board.id != chain.board.id:
                self._require(
                    self._access(target, actor_id).can_edit_board,
                    "You don't have permission to access the target board",
                )
            positions.expect_version(chain.task_list, payload.expectedVersion)
            moves.move_card_to_list(session, chain.card, target.task_list, payload.targetPosition)
            unit.touch(positions.cards, list_id)
            unit.touch(positions.cards, target.task_list.id)
            unit.activity(
                chain,
                "card_moved",
                "card",
                card_id,
                {"fromListId": list_id, "toListId": target.task_list.id, "position": chain.card.position},
            )
            unit.notify(
                target.board.id,
                f'Card "{chain.card.title}" moved to "{target.task_list.title}"',
                {"cardId": card_id, "fromListId": list_id, "toListId": target.task_list.id},
            )
            return _cards_out(session, [chain.card])[0]

    def _assignment(self, actor_id: str, list_id: str, card_id: str, payload: CardAssignee, assign: bool) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id, assigneeId=payload.assigneeId)
        action = "card_assigned" if assign else "card_unassigned"
        with self._unit(action, actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            card = chain.card
            current = list(card.assigned_to or [])
            if assign:
                if not self._access(chain, payload.assigneeId).can_read_board:
                    raise InvalidOperation("Assignee must be a member of the board/workspace")
                if payload.assigneeId not in current:
                    card.assigned_to = current + [payload.assigneeId]
                    unit.notify(
                        chain.board.id,
                        f'You were assigned to "{card.title}"',
                        {"cardId": card_id, "assigneeId": payload.assigneeId},
                    )
            else:
                card.assigned_to = [u for u in current if u != payload.assigneeId]
            unit.session.flush()
            unit.activity(chain, action, "card", card_id, {"assigneeId": payload.assigneeId})
            return _cards_out(unit.session, [card])[0]

    def assign_card(self, actor_id: str, list_id: str, card_id: str, payload: CardAssignee) -> CardOut:
        return self._assignment(actor_id, list_id, card_id, payload, True)

    def unassign_card(self, actor_id: str, list_id: str, card_id: str, payload: CardAssignee) -> CardOut:
        return self._assignment(actor_id, list_id, card_id, payload, False)

    def set_card_status(self, actor_id: str, list_id: str, card_id: str, payload: CardStatusIn) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("set_card_status", actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            previous = chain.card.status
            chain.card.status = payload.status
            unit.session.flush()
            unit.activity(chain, "card_status_changed", "card", card_id, {"from": previous, "to": payload.status})
            return _cards_out(unit.session, [chain.card])[0]

    def set_card_labels(self, actor_id: str, list_id: str, card_id: str, payload: CardLabels) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("set_card_labels", actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            chain.card.labels = _clean_labels(payload.labels)
            unit.session.flush()
            unit.activity(chain, "card_labels_updated", "card", card_id, {"labels": chain.card.labels})
            return _cards_out(unit.session, [chain.card])[0]

    def _reference(
        self,
        actor_id: str,
        list_id: str,
        card_id: str,
        column: str,
        key: str,
        ref_id: str,
        action: str,
        add: bool,
    ) -> CardOut:
        """Add or drop one opaque id in a card's ``column`` list (attachments, comments)."""
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id, **{key: ref_id})
        with self._unit(action, actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            current = list(getattr(chain.card, column) or [])
            if add and ref_id not in current:
                setattr(chain.card, column, current + [ref_id])
            elif not add:
                setattr(chain.card, column, [i for i in current if i != ref_id])
            unit.session.flush()
            unit.activity(chain, action, "card", card_id, {key: ref_id})
            return _cards_out(unit.session, [chain.card])[0]

    def add_attachment(self, actor_id: str, list_id: str, card_id: str, payload: CardAttachment) -> CardOut:
        return self._reference(
            actor_id, list_id, card_id, "attachments", "mediaId", payload.mediaId, "attachment_added", True
        )

    def remove_attachment(self, actor_id: str, list_id: str, card_id: str, payload: CardAttachment) -> CardOut:
        return self._reference(
            actor_id, list_id, card_id, "attachments", "mediaId", payload.mediaId, "attachment_removed", False
        )

    # === Comments ===

    def add_comment(self, actor_id: str, list_id: str, card_id: str, payload: CardComment) -> CardOut:
        return self._reference(
            actor_id, list_id, card_id, "comments", "messageId", payload.messageId, "comment_added", True
        )

    def remove_comment(self, actor_id: str, list_id: str, card_id: str, payload: CardComment) -> CardOut:
        # Message authorship is enforced where messages live; this only drops the reference.
        return self._reference(
            actor_id, list_id, card_id, "comments", "messageId", payload.messageId, "comment_removed", False
        )

    # === Checklist ===

    def add_checklist_item(self, actor_id: str, list_id: str, card_id: str, payload: ChecklistItemIn) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id)
        with self._unit("add_checklist_item", actor_id) as unit:
            session = unit.session
            chain = load_card(session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            item = ChecklistItem(text=payload.text.strip(), completed=False)
            positions.checklist.insert(session, card_id, item)
            positions.bump_version(session, chain.card)
            unit.touch(positions.checklist, card_id)
            unit.activity(chain, "checklist_item_added", "card", card_id, {"itemId": item.id})
            return _cards_out(session, [chain.card])[0]

    def _checklist_item(self, session: Session, card_id: str, item_id: str) -> ChecklistItem:
        item = session.get(ChecklistItem, item_id)
        if item is None or item.card_id != card_id:
            raise NotFound("Checklist item not found", {"checklistItemId": item_id})
        return item

    def toggle_checklist_item(self, actor_id: str, list_id: str, card_id: str, item_id: str) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id, checklistItemId=item_id)
        with self._unit("toggle_checklist_item", actor_id) as unit:
            chain = load_card(unit.session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            item = self._checklist_item(unit.session, card_id, item_id)
            item.completed = not item.completed
            unit.session.flush()
            unit.activity(chain, "checklist_item_toggled", "card", card_id, {"itemId": item_id, "completed": item.completed})
            return _cards_out(unit.session, [chain.card])[0]

    def delete_checklist_item(self, actor_id: str, list_id: str, card_id: str, item_id: str) -> CardOut:
        require_ids(actorId=actor_id, listId=list_id, cardId=card_id, checklistItemId=item_id)
        with self._unit("delete_checklist_item", actor_id) as unit:
            session = unit.session
            chain = load_card(session, card_id, list_id)
            self._require(self._access(chain, actor_id).can_edit_board, "You don't have permission to access this board")
            item = self._checklist_item(session, card_id, item_id)
            positions.checklist.remove_and_renumber(session, card_id, item)
            positions.bump_version(session, chain.card)
            unit.touch(positions.checklist, card_id)
            unit.activity(chain, "checklist_item_deleted", "card", card_id, {"itemId": item_id})
            return _cards_out(session, [chain.card])[0]


def build_gate(settings: Optional[Settings] = None) -> MutationGate:
    settings = settings or get_settings()
    engine = make_engine(settings.database_url, None if settings.is_sqlite else settings.isolation_level)
    init_db(engine)
    return MutationGate(make_session_factory(engine), settings=settings)
