import pytest
from fastapi.testclient import TestClient

from boardline.main import app, get_gate


@pytest.fixture
def client(gate):
    app.dependency_overrides[get_gate] = lambda: gate
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(user_id):
    return {"Authorization": f"Bearer {user_id}"}


def test_create_and_list(client, world):
    created = client.post(f"/v1/boards/{world.board_id}/lists", json={"title": "Backlog"}, headers=bearer(world.owner))
    assert created.status_code == 201
    assert created.json()["position"] == 0

    listed = client.get(f"/v1/boards/{world.board_id}/lists", headers=bearer(world.member))
    assert listed.status_code == 200
    assert [row["title"] for row in listed.json()["lists"]] == ["Backlog"]


def test_forbidden_is_an_error_envelope(client, world, make_lists):
    (list_id,) = make_lists(world.board_id, "todo")
    resp = client.delete(f"/v1/boards/{world.board_id}/lists/{list_id}", headers=bearer(world.member))
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "forbidden"
    assert body["message"]
    assert body["requestId"]


def test_not_found_and_invalid_identifier(client, world):
    missing = client.get(f"/v1/lists/{world.workspace_id}/cards", headers=bearer(world.owner))
    assert missing.status_code == 404
    assert missing.json()["code"] == "not_found"

    malformed = client.get("/v1/lists/nope/cards", headers=bearer(world.owner))
    assert malformed.status_code == 400
    assert malformed.json() == {
        "code": "invalid_identifier",
        "message": "listId is invalid",
        "details": {"field": "listId"},
        "requestId": malformed.json()["requestId"],
    }


def test_cross_workspace_move_is_rejected(client, world, make_lists):
    (list_id,) = make_lists(world.board_id, "todo")
    resp = client.post(
        f"/v1/boards/{world.board_id}/lists/{list_id}:move",
        json={"targetBoardId": world.foreign_board_id},
        headers=bearer(world.owner),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "cross_workspace_not_allowed"


def test_move_card_between_lists(client, world, make_lists, make_cards):
    l1, l2 = make_lists(world.board_id, "l1", "l2")
    _, b, _ = make_cards(l1, "a", "b", "c")

    resp = client.post(
        f"/v1/lists/{l1}/cards/{b}:move",
        json={"targetListId": l2, "targetPosition": 0},
        headers=bearer(world.member),
    )
    assert resp.status_code == 200
    assert resp.json()["listId"] == l2

    source = client.get(f"/v1/lists/{l1}/cards", headers=bearer(world.member)).json()
    assert [c["position"] for c in source["cards"]] == [0, 1]


def test_stale_version_is_a_conflict(client, world, make_lists, make_cards):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1 = make_cards(list_id, "c0", "c1")
    resp = client.post(
        f"/v1/lists/{list_id}/cards/{c1}:position",
        json={"newPosition": 0, "expectedVersion": 1},
        headers=bearer(world.member),
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "conflict"


def test_delete_card_returns_no_content(client, world, make_lists, make_cards):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1 = make_cards(list_id, "c0", "c1")

    resp = client.delete(f"/v1/lists/{list_id}/cards/{c0}", headers=bearer(world.owner))
    assert resp.status_code == 204

    cards = client.get(f"/v1/lists/{list_id}/cards", headers=bearer(world.owner)).json()["cards"]
    assert [(c["id"], c["position"]) for c in cards] == [(c1, 0)]


def test_comment_routes(client, world, make_lists, make_cards):
    (list_id,) = make_lists(world.board_id, "todo")
    (card_id,) = make_cards(list_id, "c0")
    message_id = world.foreign_board_id

    added = client.post(
        f"/v1/lists/{list_id}/cards/{card_id}/comments", json={"messageId": message_id}, headers=bearer(world.member)
    )
    assert added.status_code == 201
    assert added.json()["comments"] == [message_id]

    removed = client.delete(f"/v1/lists/{list_id}/cards/{card_id}/comments/{message_id}", headers=bearer(world.member))
    assert removed.status_code == 200
    assert removed.json()["comments"] == []


def test_negative_position_is_rejected_by_validation(client, world):
    resp = client.post(
        f"/v1/boards/{world.board_id}/lists", json={"title": "x", "position": -1}, headers=bearer(world.owner)
    )
    assert resp.status_code == 422


@pytest.mark.parametrize("header", [{}, {"Authorization": "Token abc"}, {"Authorization": "Bearer not-a-user"}])
def test_requests_need_a_bearer_user(client, world, header):
    resp = client.get(f"/v1/boards/{world.board_id}/lists", headers=header)
    assert resp.status_code in (401, 422)
    if header:
        assert resp.json() == {"detail": "invalid_token"}
