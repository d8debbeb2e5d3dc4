from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .auth import get_current_user
from .config import get_settings
from .errors import BoardlineError
from .gate import MutationGate, build_gate
from .logger import setup_logging
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
    ErrorEnvelope,
    Health,
    ListCardsOut,
    ListIn,
    ListMove,
    ListOut,
    ListPatch,
    ListReorder,
    ListStatusChange,
    Version,
)
from .utils import new_uuid

setup_logging()

app = FastAPI(title="Boardline API", version=get_settings().api_version)


@lru_cache
def get_gate() -> MutationGate:
    return build_gate()


@app.exception_handler(BoardlineError)
def boardline_error(request: Request, exc: BoardlineError) -> JSONResponse:
    body = ErrorEnvelope(code=exc.code, message=exc.message, details=exc.details, requestId=new_uuid())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# === Health & metadata ===


@app.get("/v1/health", response_model=Health)
def health() -> Health:
    return Health()


@app.get("/v1/version", response_model=Version)
def version() -> Version:
    return Version(version=get_settings().api_version)


# === List endpoints ===


@app.get("/v1/boards/{board_id}/lists", response_model=BoardListsOut)
def list_lists(board_id: str, user: str = Depends(get_current_user), gate: MutationGate = Depends(get_gate)):
    return gate.list_lists(user, board_id)


@app.post("/v1/boards/{board_id}/lists", response_model=ListOut, status_code=201)
def create_list(
    board_id: str,
    payload: ListIn,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.create_list(user, board_id, payload)


@app.post("/v1/boards/{board_id}/lists:reorder", response_model=BoardListsOut)
def reorder_lists(
    board_id: str,
    payload: ListReorder,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.reorder_lists(user, board_id, payload)


@app.get("/v1/boards/{board_id}/lists/{list_id}", response_model=ListOut)
def get_list(
    board_id: str,
    list_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.get_list(user, board_id, list_id)


@app.patch("/v1/boards/{board_id}/lists/{list_id}", response_model=ListOut)
def update_list(
    board_id: str,
    list_id: str,
    payload: ListPatch,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.update_list(user, board_id, list_id, payload)


@app.delete("/v1/boards/{board_id}/lists/{list_id}", status_code=204)
def delete_list(
    board_id: str,
    list_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    gate.delete_list(user, board_id, list_id)
    return Response(status_code=204)


@app.post("/v1/boards/{board_id}/lists/{list_id}:status", response_model=ListOut)
def change_list_status(
    board_id: str,
    list_id: str,
    payload: ListStatusChange,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.change_list_status(user, board_id, list_id, payload)


@app.post("/v1/boards/{board_id}/lists/{list_id}:move", response_model=ListOut)
def move_list(
    board_id: str,
    list_id: str,
    payload: ListMove,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.move_list(user, board_id, list_id, payload)


@app.post("/v1/boards/{board_id}/lists/{list_id}:clear", response_model=ListOut)
def clear_list(
    board_id: str,
    list_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.clear_list(user, board_id, list_id)


@app.get("/v1/boards/{board_id}/cards:search", response_model=list[CardOut])
def search_cards(
    board_id: str,
    q: Optional[str] = None,
    label: Optional[str] = None,
    assignedTo: Optional[str] = None,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.search_cards(user, board_id, q=q, label=label, assigned_to=assignedTo)


# === Card endpoints ===


@app.get("/v1/lists/{list_id}/cards", response_model=ListCardsOut)
def list_cards(
    list_id: str,
    includeArchived: bool = False,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.list_cards(user, list_id, include_archived=includeArchived)


@app.post("/v1/lists/{list_id}/cards", response_model=CardOut, status_code=201)
def create_card(
    list_id: str,
    payload: CardIn,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.create_card(user, list_id, payload)


@app.post("/v1/lists/{list_id}/cards:reorder", response_model=ListCardsOut)
def reorder_cards(
    list_id: str,
    payload: CardReorder,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.reorder_cards(user, list_id, payload)


@app.get("/v1/lists/{list_id}/cards/{card_id}", response_model=CardOut)
def get_card(
    list_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.get_card(user, list_id, card_id)


@app.patch("/v1/lists/{list_id}/cards/{card_id}", response_model=CardOut)
def update_card(
    list_id: str,
    card_id: str,
    payload: CardPatch,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.update_card(user, list_id, card_id, payload)


@app.delete("/v1/lists/{list_id}/cards/{card_id}", status_code=204)
def delete_card(
    list_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    gate.delete_card(user, list_id, card_id)
    return Response(status_code=204)


@app.post("/v1/lists/{list_id}/cards/{card_id}:archive", response_model=CardOut)
def archive_card(
    list_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.archive_card(user, list_id, card_id)


@app.post("/v1/lists/{list_id}/cards/{card_id}:restore", response_model=CardOut)
def restore_card(
    list_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.restore_card(user, list_id, card_id)


@app.post("/v1/lists/{list_id}/cards/{card_id}:position", response_model=CardOut)
def move_card_within_list(
    list_id: str,
    card_id: str,
    payload: CardPosition,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.move_card_within_list(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}:move", response_model=CardOut)
def move_card_to_list(
    list_id: str,
    card_id: str,
    payload: CardMove,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.move_card_to_list(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}:assign", response_model=CardOut)
def assign_card(
    list_id: str,
    card_id: str,
    payload: CardAssignee,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.assign_card(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}:unassign", response_model=CardOut)
def unassign_card(
    list_id: str,
    card_id: str,
    payload: CardAssignee,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.unassign_card(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}:status", response_model=CardOut)
def set_card_status(
    list_id: str,
    card_id: str,
    payload: CardStatusIn,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.set_card_status(user, list_id, card_id, payload)


@app.put("/v1/lists/{list_id}/cards/{card_id}/labels", response_model=CardOut)
def set_card_labels(
    list_id: str,
    card_id: str,
    payload: CardLabels,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.set_card_labels(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}/attachments", response_model=CardOut)
def add_attachment(
    list_id: str,
    card_id: str,
    payload: CardAttachment,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.add_attachment(user, list_id, card_id, payload)


@app.delete("/v1/lists/{list_id}/cards/{card_id}/attachments/{media_id}", response_model=CardOut)
def remove_attachment(
    list_id: str,
    card_id: str,
    media_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.remove_attachment(user, list_id, card_id, CardAttachment(mediaId=media_id))


@app.post("/v1/lists/{list_id}/cards/{card_id}/comments", response_model=CardOut, status_code=201)
def add_comment(
    list_id: str,
    card_id: str,
    payload: CardComment,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.add_comment(user, list_id, card_id, payload)


@app.delete("/v1/lists/{list_id}/cards/{card_id}/comments/{message_id}", response_model=CardOut)
def remove_comment(
    list_id: str,
    card_id: str,
    message_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.remove_comment(user, list_id, card_id, CardComment(messageId=message_id))


@app.post("/v1/lists/{list_id}/cards/{card_id}/checklist", response_model=CardOut, status_code=201)
def add_checklist_item(
    list_id: str,
    card_id: str,
    payload: ChecklistItemIn,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.add_checklist_item(user, list_id, card_id, payload)


@app.post("/v1/lists/{list_id}/cards/{card_id}/checklist/{item_id}:toggle", response_model=CardOut)
def toggle_checklist_item(
    list_id: str,
    card_id: str,
    item_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.toggle_checklist_item(user, list_id, card_id, item_id)


@app.delete("/v1/lists/{list_id}/cards/{card_id}/checklist/{item_id}", response_model=CardOut)
def delete_checklist_item(
    list_id: str,
    card_id: str,
    item_id: str,
    user: str = Depends(get_current_user),
    gate: MutationGate = Depends(get_gate),
):
    return gate.delete_checklist_item(user, list_id, card_id, item_id)
