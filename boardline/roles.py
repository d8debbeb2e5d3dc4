"""Workspace role resolution and the capability predicates built on it.

Pure functions over already-loaded rows: no session access, so a snapshot
loaded earlier in the same operation is always safe to pass in.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .db import Board, Workspace


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"
    NONE = "none"


ADMIN_ROLES = frozenset({Role.OWNER, Role.ADMIN})
WRITER_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.MEMBER})


def resolve_role(workspace: Workspace, user_id: Optional[str]) -> Role:
    if not user_id:
        return Role.NONE
    if workspace.owner == user_id:
        return Role.OWNER
    for member in workspace.members:
        if member.user_id == user_id:
            try:
                return Role(member.role)
            except ValueError:
                return Role.NONE
    return Role.NONE


@dataclass(frozen=True)
class Access:
    """What one user may do on one board."""

    user_id: str
    role: Role
    board_member: bool

    @property
    def is_member(self) -> bool:
        return self.role is not Role.NONE

    @property
    def is_admin_or_owner(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def can_write(self) -> bool:
        return self.role in WRITER_ROLES

    @property
    def can_read_board(self) -> bool:
        return self.board_member or self.is_admin_or_owner

    @property
    def can_edit_board(self) -> bool:
        return self.can_write and self.can_read_board

    def is_creator_or_admin(self, created_by: Optional[str]) -> bool:
        if not self.can_write:
            return False
        return created_by == self.user_id or self.is_admin_or_owner


def resolve_access(workspace: Workspace, board: Board, user_id: str) -> Access:
    return Access(
        user_id=user_id,
        role=resolve_role(workspace, user_id),
        board_member=user_id in board.member_ids,
    )
