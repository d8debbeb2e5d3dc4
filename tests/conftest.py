from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.pool import StaticPool

from boardline.config import Settings
from boardline.db import (
    Board,
    BoardMember,
    Card,
    ChecklistItem,
    TaskList,
    Workspace,
    WorkspaceMember,
    init_db,
    make_engine,
    make_session_factory,
)
from boardline.gate import MutationGate
from boardline.schemas import CardIn, ListIn
from boardline.sinks import SideEffects
from boardline.utils import new_uuid


class RecordingActivity:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def record(self, actor_id, workspace_id, board_id, action, target_type, target_id, details) -> None:
        self.events.append(
            {
                "actor": actor_id,
                "workspace": workspace_id,
                "board": board_id,
                "action": action,
                "targetType": target_type,
                "targetId": target_id,
                "details": details,
            }
        )

    @property
    def actions(self) -> list[str]:
        return [e["action"] for e in self.events]


class RecordingNotifications:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def notify(self, board_id, triggered_by, message, metadata) -> None:
        self.sent.append((board_id, triggered_by, message, metadata))


class RecordingPresence:
    def __init__(self) -> None:
        self.touches: list[tuple[str, str]] = []

    def touch(self, user_id, board_id) -> None:
        self.touches.append((user_id, board_id))


@dataclass
class World:
    owner: str = field(default_factory=new_uuid)
    admin: str = field(default_factory=new_uuid)
    member: str = field(default_factory=new_uuid)
    viewer: str = field(default_factory=new_uuid)
    outsider: str = field(default_factory=new_uuid)
    workspace_id: str = field(default_factory=new_uuid)
    board_id: str = field(default_factory=new_uuid)
    other_board_id: str = field(default_factory=new_uuid)
    foreign_workspace_id: str = field(default_factory=new_uuid)
    foreign_board_id: str = field(default_factory=new_uuid)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(engine):
    return make_session_factory(engine)


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", log_json=False, side_effect_workers=1)


@pytest.fixture
def activity():
    return RecordingActivity()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def presence():
    return RecordingPresence()


@pytest.fixture
def gate(sessions, settings, activity, notifications, presence):
    side_effects = SideEffects(max_workers=1)
    gate = MutationGate(
        sessions,
        activity=activity,
        notifications=notifications,
        presence=presence,
        side_effects=side_effects,
        settings=settings,
    )
    yield gate
    side_effects.shutdown()


@pytest.fixture
def world(sessions) -> World:
    """Two boards in one workspace plus a board in a second workspace.

    The member and the viewer both sit on the main board; only the member
    sits on the other board.
    """
    w = World()
    with sessions.begin() as session:
        session.add(
            Workspace(
                id=w.workspace_id,
                name="Acme",
                owner=w.owner,
                members=[
                    WorkspaceMember(user_id=w.admin, role="admin"),
                    WorkspaceMember(user_id=w.member, role="member"),
                    WorkspaceMember(user_id=w.viewer, role="viewer"),
                ],
            )
        )
        session.add(
            Board(
                id=w.board_id,
                workspace_id=w.workspace_id,
                title="Roadmap",
                members=[BoardMember(user_id=w.member), BoardMember(user_id=w.viewer)],
            )
        )
        session.add(
            Board(
                id=w.other_board_id,
                workspace_id=w.workspace_id,
                title="Ops",
                members=[BoardMember(user_id=w.member)],
            )
        )
        session.add(Workspace(id=w.foreign_workspace_id, name="Elsewhere", owner=w.owner))
        session.add(Board(id=w.foreign_board_id, workspace_id=w.foreign_workspace_id, title="Foreign"))
    return w


@pytest.fixture
def make_lists(gate, world):
    def _make(board_id: str, *titles: str, actor: str | None = None) -> list[str]:
        return [gate.create_list(actor or world.owner, board_id, ListIn(title=t)).id for t in titles]

    return _make


@pytest.fixture
def make_cards(gate, world):
    def _make(list_id: str, *titles: str, actor: str | None = None) -> list[str]:
        return [gate.create_card(actor or world.owner, list_id, CardIn(title=t)).id for t in titles]

    return _make


class Reader:
    def __init__(self, sessions) -> None:
        self._sessions = sessions

    def _ordered(self, model, parent_column, parent_id) -> list:
        with self._sessions() as session:
            stmt = select(model.id, model.position).where(parent_column == parent_id).order_by(model.position)
            return list(session.execute(stmt).all())

    def list_positions(self, board_id: str) -> dict[str, int]:
        return dict(self._ordered(TaskList, TaskList.board_id, board_id))

    def card_positions(self, list_id: str) -> dict[str, int]:
        return dict(self._ordered(Card, Card.list_id, list_id))

    def list_ids(self, board_id: str) -> list[str]:
        return [row.id for row in self._ordered(TaskList, TaskList.board_id, board_id)]

    def card_ids(self, list_id: str) -> list[str]:
        return [row.id for row in self._ordered(Card, Card.list_id, list_id)]

    @staticmethod
    def is_dense(positions: dict[str, int]) -> bool:
        return sorted(positions.values()) == list(range(len(positions)))

    def dump(self) -> dict[str, list[tuple]]:
        """Every mutable row of the ordered hierarchy, for before/after comparisons."""
        with self._sessions() as session:
            return {
                "boards": sorted(session.execute(select(Board.id, Board.version)).all()),
                "lists": sorted(
                    session.execute(
                        select(TaskList.id, TaskList.board_id, TaskList.position, TaskList.version, TaskList.title)
                    ).all()
                ),
                "cards": sorted(session.execute(select(Card.id, Card.list_id, Card.position, Card.title)).all()),
                "checklist": sorted(
                    session.execute(select(ChecklistItem.id, ChecklistItem.card_id, ChecklistItem.position)).all()
                ),
            }


@pytest.fixture
def read(sessions) -> Reader:
    return Reader(sessions)
