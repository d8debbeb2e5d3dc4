from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

CardStatus = Literal["todo", "in-progress", "done"]
ListAction = Literal["archive", "unarchive", "deactivate", "activate"]


class ErrorEnvelope(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None
    requestId: Optional[str] = None


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str = "1.0.0"


# === Lists ===


class ListIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    position: Optional[int] = Field(default=None, ge=0)


class ListPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    position: Optional[int] = Field(default=None, ge=0)
    expectedVersion: Optional[int] = None


class ListStatusChange(BaseModel):
    action: ListAction


class ListReorder(BaseModel):
    listId: str
    startIndex: int
    endIndex: int
    expectedVersion: Optional[int] = None


class ListMove(BaseModel):
    targetBoardId: str
    targetPosition: Optional[int] = Field(default=None, ge=0)
    expectedVersion: Optional[int] = None


class ListOut(BaseModel):
    id: str
    boardId: str
    title: str
    position: int
    createdBy: str
    isArchived: bool
    isActive: bool
    version: int
    createdAt: datetime
    updatedAt: datetime


class BoardListsOut(BaseModel):
    boardId: str
    version: int
    lists: list[ListOut]


# === Cards ===


class CardIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=8000)
    position: Optional[int] = Field(default=None, ge=0)
    labels: list[str] = Field(default_factory=list)
    dueDate: Optional[datetime] = None


class CardPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    dueDate: Optional[datetime] = None
    labels: Optional[list[str]] = None
    status: Optional[CardStatus] = None


class CardPosition(BaseModel):
    newPosition: int
    expectedVersion: Optional[int] = None


class CardMove(BaseModel):
    targetListId: str
    targetPosition: Optional[int] = Field(default=None, ge=0)
    expectedVersion: Optional[int] = None


class CardReorder(BaseModel):
    cardId: str
    startIndex: int
    endIndex: int
    expectedVersion: Optional[int] = None


class CardAssignee(BaseModel):
    assigneeId: str


class CardStatusIn(BaseModel):
    status: CardStatus


class CardLabels(BaseModel):
    labels: list[str]


class CardAttachment(BaseModel):
    mediaId: str


class CardComment(BaseModel):
    messageId: str


class ChecklistItemIn(BaseModel):
    text: str = Field(min_length=1, max_length=500)


class ChecklistItemOut(BaseModel):
    id: str
    text: str
    completed: bool
    position: int
    createdAt: datetime
    updatedAt: datetime


class CardOut(BaseModel):
    id: str
    listId: str
    boardId: str
    title: str
    description: str
    status: str
    position: int
    createdBy: str
    assignedTo: list[str]
    labels: list[str]
    attachments: list[str]
    comments: list[str]
    dueDate: Optional[datetime]
    isArchived: bool
    checklist: list[ChecklistItemOut]
    createdAt: datetime
    updatedAt: datetime


class ListCardsOut(BaseModel):
    listId: str
    version: int
    cards: list[CardOut]
