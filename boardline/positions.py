"""Dense ordering of one parent's children.

For every parent the positions of its children are exactly ``0..n-1``.
Every method here runs inside a caller-provided session that is already
within an atomic unit (see ``db.atomic``); nothing commits on its own.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .db import Card, ChecklistItem, TaskList
from .errors import Conflict, InconsistentHierarchy, InvalidOperation

logger = logging.getLogger(__name__)


# === Ordering versions ===


def expect_version(parent: Any, expected: Optional[int]) -> None:
    if expected is not None and expected != parent.version:
        raise Conflict(
            "Ordering changed since it was read",
            {"parentId": parent.id, "expectedVersion": expected, "currentVersion": parent.version},
        )


def bump_version(session: Session, parent: Any) -> int:
    """Compare-and-set the parent's ordering version against the value read in this unit."""
    model = type(parent)
    read_version = parent.version
    result = session.execute(
        update(model)
        .where(model.id == parent.id, model.version == read_version)
        .values(version=model.version + 1)
    )
    if result.rowcount != 1:
        raise Conflict("Ordering was modified concurrently", {"parentId": parent.id})
    return read_version + 1


# === Position manager ===


class PositionManager:
    """Insert, move, remove and bulk-reorder the children of one kind of parent."""

    def __init__(self, model: type, parent_attr: str, kind: str) -> None:
        self.model = model
        self.parent_attr = parent_attr
        self.parent_column = getattr(model, parent_attr)
        self.kind = kind

    # --- reads ---

    def count(self, session: Session, parent_id: str) -> int:
        stmt = select(func.count()).select_from(self.model).where(self.parent_column == parent_id)
        return session.execute(stmt).scalar_one()

    def siblings(self, session: Session, parent_id: str) -> list:
        stmt = (
            select(self.model)
            .where(self.parent_column == parent_id)
            .order_by(self.model.position, self.model.created_at, self.model.id)
        )
        return list(session.execute(stmt).scalars())

    def positions(self, session: Session, parent_id: str) -> list[int]:
        stmt = select(self.model.position).where(self.parent_column == parent_id).order_by(self.model.position)
        return list(session.execute(stmt).scalars())

    def verify(self, session: Session, parent_id: str) -> None:
        session.flush()
        found = self.positions(session, parent_id)
        if found != list(range(len(found))):
            logger.error(
                "dense ordering violated",
                extra={"kind": self.kind, "parentId": parent_id, "positions": found},
            )
            raise InconsistentHierarchy(
                f"{self.kind} positions are not dense",
                {"parentId": parent_id, "positions": found},
            )

    # --- shifting primitives ---

    def _shift(
        self,
        session: Session,
        parent_id: str,
        delta: int,
        lower: int,
        upper: Optional[int] = None,
    ) -> None:
        criteria = [self.parent_column == parent_id, self.model.position >= lower]
        if upper is not None:
            criteria.append(self.model.position <= upper)
        session.execute(
            update(self.model).where(*criteria).values(position=self.model.position + delta)
        )

    def open_gap(self, session: Session, parent_id: str, position: int) -> None:
        self._shift(session, parent_id, +1, lower=position)

    def close_gap(self, session: Session, parent_id: str, removed_position: int) -> None:
        self._shift(session, parent_id, -1, lower=removed_position + 1)

    def slot_for(self, session: Session, parent_id: str, requested: Optional[int]) -> int:
        """Append when ``requested`` is None, otherwise clamp into ``[0, count]``."""
        count = self.count(session, parent_id)
        if requested is None:
            return count
        if requested < 0:
            raise InvalidOperation("position must be a non-negative integer", {"position": requested})
        return min(requested, count)

    # --- operations ---

    def insert(self, session: Session, parent_id: str, item: Any, requested: Optional[int] = None) -> int:
        session.flush()
        final = self.slot_for(session, parent_id, requested)
        self.open_gap(session, parent_id, final)
        setattr(item, self.parent_attr, parent_id)
        item.position = final
        session.add(item)
        session.flush()
        return final

    def move_within(self, session: Session, parent_id: str, item: Any, new_position: int) -> bool:
        """Relocate ``item`` among its siblings; returns False for a no-op."""
        if new_position < 0:
            raise InvalidOperation("position must be a non-negative integer", {"position": new_position})
        session.flush()
        count = self.count(session, parent_id)
        target = min(new_position, count - 1)
        old = item.position
        if target == old:
            return False
        # Siblings first, then the item itself.
        if target > old:
            self._shift(session, parent_id, -1, lower=old + 1, upper=target)
        else:
            self._shift(session, parent_id, +1, lower=target, upper=old - 1)
        item.position = target
        session.flush()
        return True

    def detach(self, session: Session, parent_id: str, item: Any) -> int:
        """Take ``item`` out of the ordering without deleting it; returns its old slot."""
        session.flush()
        removed = item.position
        self._shift(session, parent_id, -1, lower=removed + 1)
        return removed

    def remove_and_renumber(self, session: Session, parent_id: str, item: Any) -> int:
        session.flush()
        removed = item.position
        session.delete(item)
        session.flush()
        self.close_gap(session, parent_id, removed)
        return removed

    def reorder_bulk(self, session: Session, parent_id: str, ordered_ids: Sequence[str]) -> list:
        session.flush()
        current = self.siblings(session, parent_id)
        by_id = {row.id: row for row in current}
        if len(set(ordered_ids)) != len(ordered_ids):
            raise InvalidOperation("ordering contains duplicate ids")
        foreign = [i for i in ordered_ids if i not in by_id]
        if foreign:
            raise InvalidOperation(
                f"ordering references ids that are not {self.kind}s of this parent",
                {"ids": foreign},
            )
        if len(ordered_ids) != len(current):
            missing = sorted(set(by_id) - set(ordered_ids))
            raise InvalidOperation("ordering must name every sibling", {"missing": missing})
        rows = [by_id[i] for i in ordered_ids]
        for index, row in enumerate(rows):
            if row.position != index:
                row.position = index
        session.flush()
        return rows


def drag_order(current_ids: Sequence[str], item_id: str, start_index: int, end_index: int) -> list[str]:
    """Apply a drag-and-drop (start, end) pair to the current id sequence."""
    if start_index < 0 or end_index < 0:
        raise InvalidOperation(
            "startIndex and endIndex must be non-negative",
            {"startIndex": start_index, "endIndex": end_index},
        )
    order = list(current_ids)
    if item_id not in order:
        raise InvalidOperation("Item is not a child of this parent", {"id": item_id})
    if start_index >= len(order) or order[start_index] != item_id:
        raise Conflict(
            "startIndex does not point at the dragged item",
            {"startIndex": start_index, "id": item_id},
        )
    order.pop(start_index)
    order.insert(min(end_index, len(order)), item_id)
    return order


def fill_slots(full_ids: Sequence[str], reordered: Sequence[str]) -> list[str]:
    """Lay ``reordered`` (a subset of ``full_ids``) back into the slots that subset occupies.

    Ids outside the subset keep their positions.
    """
    members = set(reordered)
    replacements = iter(reordered)
    return [next(replacements) if i in members else i for i in full_ids]


lists = PositionManager(TaskList, "board_id", "list")
cards = PositionManager(Card, "list_id", "card")
checklist = PositionManager(ChecklistItem, "card_id", "checklist item")
