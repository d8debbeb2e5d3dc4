import random

import pytest

from boardline import positions
from boardline.db import TaskList, atomic
from boardline.errors import Conflict, InvalidOperation
from boardline.schemas import CardIn, CardMove, CardPosition, CardReorder, ListIn, ListPatch, ListReorder


# === Insert ===


def test_create_appends_by_default(gate, world, make_lists, read):
    a, b, c = make_lists(world.board_id, "a", "b", "c")
    assert read.list_positions(world.board_id) == {a: 0, b: 1, c: 2}


def test_create_at_explicit_position_shifts_siblings(gate, world, make_lists, read):
    a, b = make_lists(world.board_id, "a", "b")
    created = gate.create_list(world.owner, world.board_id, ListIn(title="first", position=0))
    assert created.position == 0
    assert read.list_positions(world.board_id) == {created.id: 0, a: 1, b: 2}


def test_create_position_is_clamped_to_count(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    a, b = make_cards(list_id, "a", "b")
    card = gate.create_card(world.owner, list_id, CardIn(title="far", position=50))
    assert card.position == 2
    assert read.card_positions(list_id) == {a: 0, b: 1, card.id: 2}


def test_empty_parent_accepts_insert_at_zero(gate, world, make_lists):
    (list_id,) = make_lists(world.board_id, "empty")
    card = gate.create_card(world.owner, list_id, CardIn(title="only", position=7))
    assert card.position == 0


def test_engine_insert_rejects_negative_position(sessions, world, make_lists):
    make_lists(world.board_id, "a")
    with pytest.raises(InvalidOperation):
        with atomic(sessions) as session:
            positions.lists.insert(session, world.board_id, TaskList(title="x", created_by=world.owner), -1)


# === Move within ===


def test_scenario_a_move_backward(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1, c2, c3 = make_cards(list_id, "c0", "c1", "c2", "c3")

    gate.move_card_within_list(world.member, list_id, c2, CardPosition(newPosition=0))

    assert read.card_positions(list_id) == {c0: 1, c1: 2, c2: 0, c3: 3}


def test_move_forward_decrements_the_span(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1, c2, c3 = make_cards(list_id, "c0", "c1", "c2", "c3")

    moved = gate.move_card_within_list(world.member, list_id, c0, CardPosition(newPosition=2))

    assert moved.position == 2
    assert read.card_positions(list_id) == {c1: 0, c2: 1, c0: 2, c3: 3}


def test_move_past_the_end_is_clamped_to_last(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1, c2 = make_cards(list_id, "c0", "c1", "c2")

    moved = gate.move_card_within_list(world.member, list_id, c0, CardPosition(newPosition=99))

    assert moved.position == 2
    assert read.card_positions(list_id) == {c1: 0, c2: 1, c0: 2}


def test_move_to_current_position_is_a_noop(gate, world, make_lists, make_cards, read, activity):
    (list_id,) = make_lists(world.board_id, "todo")
    ids = make_cards(list_id, "c0", "c1", "c2")
    before = read.dump()
    gate.side_effects.flush()
    recorded = len(activity.events)

    gate.move_card_within_list(world.member, list_id, ids[1], CardPosition(newPosition=1))
    gate.side_effects.flush()

    assert read.dump() == before
    assert len(activity.events) == recorded


def test_move_to_negative_position_is_rejected(gate, world, make_lists, make_cards):
    (list_id,) = make_lists(world.board_id, "todo")
    (card_id,) = make_cards(list_id, "c0")
    with pytest.raises(InvalidOperation):
        gate.move_card_within_list(world.member, list_id, card_id, CardPosition(newPosition=-1))


def test_update_list_position_moves_within_board(gate, world, make_lists, read):
    a, b, c = make_lists(world.board_id, "a", "b", "c")
    updated = gate.update_list(world.owner, world.board_id, c, ListPatch(position=0, title="now first"))
    assert updated.position == 0
    assert updated.title == "now first"
    assert read.list_positions(world.board_id) == {c: 0, a: 1, b: 2}


# === Remove ===


def test_delete_card_renumbers_followers(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1, c2, c3 = make_cards(list_id, "c0", "c1", "c2", "c3")

    gate.delete_card(world.owner, list_id, c1)

    assert read.card_positions(list_id) == {c0: 0, c2: 1, c3: 2}


# === Bulk reorder ===


def test_drag_reorder_lists(gate, world, make_lists, read):
    a, b, c, d = make_lists(world.board_id, "a", "b", "c", "d")

    out = gate.reorder_lists(world.member, world.board_id, ListReorder(listId=a, startIndex=0, endIndex=2))

    assert [row.id for row in out.lists] == [b, c, a, d]
    assert read.list_ids(world.board_id) == [b, c, a, d]
    assert read.is_dense(read.list_positions(world.board_id))


def test_drag_reorder_cards_clamps_end_index(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    c0, c1, c2 = make_cards(list_id, "c0", "c1", "c2")

    gate.reorder_cards(world.member, list_id, CardReorder(cardId=c0, startIndex=0, endIndex=10))

    assert read.card_ids(list_id) == [c1, c2, c0]


def test_drag_indices_follow_the_visible_cards(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    a, b, c, d = make_cards(list_id, "a", "b", "c", "d")
    gate.archive_card(world.owner, list_id, a)
    assert [card.id for card in gate.list_cards(world.member, list_id).cards] == [b, c, d]

    out = gate.reorder_cards(world.member, list_id, CardReorder(cardId=b, startIndex=0, endIndex=1))

    assert [card.id for card in out.cards] == [c, b, d]
    # The archived card keeps its slot.
    assert read.card_ids(list_id) == [a, c, b, d]
    assert read.is_dense(read.card_positions(list_id))


def test_archived_card_cannot_be_dragged(gate, world, make_lists, make_cards, read):
    (list_id,) = make_lists(world.board_id, "todo")
    a, b = make_cards(list_id, "a", "b")
    gate.archive_card(world.owner, list_id, a)
    before = read.dump()
    with pytest.raises(InvalidOperation):
        gate.reorder_cards(world.member, list_id, CardReorder(cardId=a, startIndex=0, endIndex=1))
    assert read.dump() == before


def test_fill_slots_keeps_hidden_ids_in_place():
    assert positions.fill_slots(["x", "a", "y", "b", "c"], ["c", "a", "b"]) == ["x", "c", "y", "a", "b"]


def test_drag_with_stale_start_index_conflicts(gate, world, make_lists, read):
    a, b, c = make_lists(world.board_id, "a", "b", "c")
    before = read.dump()
    with pytest.raises(Conflict):
        gate.reorder_lists(world.member, world.board_id, ListReorder(listId=a, startIndex=1, endIndex=2))
    assert read.dump() == before


@pytest.mark.parametrize(
    "ordered, message",
    [
        (lambda ids, stranger: [ids[1], ids[0], stranger], "not lists of this parent"),
        (lambda ids, stranger: [ids[0], ids[0], ids[1]], "duplicate"),
        (lambda ids, stranger: [ids[1], ids[0]], "every sibling"),
    ],
)
def test_reorder_bulk_rejects_bad_orderings(sessions, world, make_lists, read, ordered, message):
    ids = make_lists(world.board_id, "a", "b", "c")
    (stranger,) = make_lists(world.other_board_id, "elsewhere")
    before = read.dump()
    with pytest.raises(InvalidOperation, match=message):
        with atomic(sessions) as session:
            positions.lists.reorder_bulk(session, world.board_id, ordered(ids, stranger))
    assert read.dump() == before


def test_drag_order_rejects_negative_indices():
    with pytest.raises(InvalidOperation):
        positions.drag_order(["a", "b"], "a", -1, 0)


def test_drag_order_moves_to_front():
    assert positions.drag_order(["a", "b", "c"], "c", 2, 0) == ["c", "a", "b"]


# === Invariant under random operation sequences ===


def test_dense_invariant_holds_for_random_sequences(gate, world, make_lists, make_cards, read):
    rng = random.Random(20240607)
    left, right = make_lists(world.board_id, "left", "right")
    make_cards(left, *[f"l{i}" for i in range(4)])
    make_cards(right, *[f"r{i}" for i in range(2)])

    for step in range(80):
        list_id = rng.choice([left, right])
        other = right if list_id == left else left
        cards = read.card_ids(list_id)
        op = rng.choice(["create", "move", "transfer", "delete"])
        if op == "create" or not cards:
            requested = rng.choice([None, 0, rng.randint(0, 8)])
            gate.create_card(world.member, list_id, CardIn(title=f"s{step}", position=requested))
        elif op == "move":
            gate.move_card_within_list(
                world.member, list_id, rng.choice(cards), CardPosition(newPosition=rng.randint(0, 8))
            )
        elif op == "transfer":
            target = rng.choice([None, rng.randint(0, 8)])
            gate.move_card_to_list(
                world.member, list_id, rng.choice(cards), CardMove(targetListId=other, targetPosition=target)
            )
        else:
            gate.delete_card(world.owner, list_id, rng.choice(cards))

        assert read.is_dense(read.card_positions(left)), step
        assert read.is_dense(read.card_positions(right)), step
