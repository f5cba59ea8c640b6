"""Tests for the tracker reducers and the Redis-backed session (fakeredis)."""

import pytest
import pytest_asyncio
import fakeredis.aioredis as fakeredis

from tracker.cards import PLAYER_COLORS, WEAPONS
from tracker.game import (
    EXPIRY,
    ClueTracker,
    add_player,
    apply_event,
    card_holder,
    clear_card_row,
    record_accusation,
    record_opened_cards,
    record_suggestion,
    remove_player,
    reorder_players,
    reset_game,
    set_card_state,
    set_first_player,
    set_my_cards,
    set_my_player,
    start_game,
    undealt_card_count,
    update_notes,
)
from tracker.models import ENVELOPE, CardState, DeductionType, TrackerState


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def tracker(redis):
    t = ClueTracker("TESTGAME", redis)
    await t.create()
    return t


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _with_players(n: int = 3) -> TrackerState:
    state = TrackerState(game_id="TEST")
    for pid, name in list(zip("ABCDEF", ["Alice", "Bob", "Carol", "Dave", "Eve", "Frank"]))[:n]:
        state = add_player(state, name, player_id=pid)
    return set_my_player(state, "A")


def _cell(state: TrackerState, card: str, holder: str) -> CardState:
    return state.knowledge_matrix[card][holder].state


SETUP_EVENTS = [
    {"type": "add_player", "name": "Alice", "player_id": "A"},
    {"type": "add_player", "name": "Bob", "player_id": "B"},
    {"type": "add_player", "name": "Carol", "player_id": "C"},
    {"type": "set_my_player", "player_id": "A"},
    {"type": "set_first_player", "player_id": "B"},
    {
        "type": "set_my_cards",
        "cards": ["Miss Scarlett", "Knife", "Kitchen", "Ballroom", "Study", "Lounge"],
    },
    {"type": "start_game"},
]


# ---------------------------------------------------------------------------
# Setup reducers
# ---------------------------------------------------------------------------


def test_add_player_assigns_colors_in_order():
    state = _with_players(3)
    assert [p.color for p in state.players] == PLAYER_COLORS[:3]
    assert [p.name for p in state.players] == ["Alice", "Bob", "Carol"]
    assert state.player("A").is_me
    assert not state.player("B").is_me


def test_add_player_validation():
    state = _with_players(6)
    with pytest.raises(ValueError, match="Game is full"):
        add_player(state, "Grace")
    with pytest.raises(ValueError, match="cannot be empty"):
        add_player(_with_players(1), "   ")
    with pytest.raises(ValueError, match="Duplicate player id"):
        add_player(_with_players(1), "Alicia", player_id="A")
    with pytest.raises(ValueError, match="already started"):
        add_player(start_game(_with_players(3)), "Dave")


def test_add_player_generates_id():
    state = add_player(TrackerState(), "Alice")
    assert len(state.players[0].id) == 8


def test_remove_player_clears_roles():
    state = set_first_player(_with_players(3), "A")
    state = remove_player(state, "A")
    assert [p.id for p in state.players] == ["B", "C"]
    assert state.my_player_id is None
    assert state.first_player_id is None


def test_reorder_players():
    state = reorder_players(_with_players(3), ["C", "A", "B"])
    assert [p.id for p in state.players] == ["C", "A", "B"]
    with pytest.raises(ValueError, match="every player exactly once"):
        reorder_players(state, ["A", "B"])
    with pytest.raises(ValueError, match="every player exactly once"):
        reorder_players(state, ["A", "A", "B"])


def test_set_my_player_rejects_unknown():
    with pytest.raises(ValueError, match="Unknown player"):
        set_my_player(_with_players(3), "Z")


def test_set_my_cards_validation():
    state = add_player(TrackerState(), "Alice", player_id="A")
    with pytest.raises(ValueError, match="Select which player"):
        set_my_cards(state, ["Knife"])
    state = set_my_player(state, "A")
    with pytest.raises(ValueError, match="Unknown card"):
        set_my_cards(state, ["Spoon"])
    with pytest.raises(ValueError, match="Duplicate"):
        set_my_cards(state, ["Knife", "Knife"])


def test_start_requires_three_players():
    with pytest.raises(ValueError, match="Need 3-6 players"):
        start_game(_with_players(2))


def test_start_game_assigns_hand_sizes():
    state = start_game(_with_players(4))
    assert state.game_started
    assert state.current_turn == 1
    assert [p.card_count for p in state.players] == [4, 4, 4, 4]
    assert undealt_card_count(state) == 2
    assert set(state.knowledge_matrix["Knife"]) == {ENVELOPE, "A", "B", "C", "D"}


def test_confirmed_hand_size_takes_precedence():
    state = set_my_cards(_with_players(4), ["Knife", "Rope", "Hall", "Study", "Lounge"])
    state = start_game(state)
    assert state.player("A").card_count == 5
    assert state.player("B").card_count == 4
    assert _cell(state, "Knife", "A") == CardState.OWNED
    assert _cell(state, "Knife", ENVELOPE) == CardState.NOT_OWNED
    # a full hand rules out everything else for me
    assert _cell(state, "Wrench", "A") == CardState.NOT_OWNED


def test_reducers_do_not_mutate_input():
    state = start_game(_with_players(3))
    before = state.model_copy(deep=True)
    record_suggestion(state, "A", "Mrs. White", "Rope", "Hall", passed_player_ids=["B", "C"])
    set_card_state(state, "Knife", "B", CardState.OWNED)
    assert state == before


def test_reset_game_keeps_id():
    state = reset_game(start_game(_with_players(3)))
    assert state == TrackerState(game_id="TEST")


# ---------------------------------------------------------------------------
# Manual edits
# ---------------------------------------------------------------------------


def test_manual_owned_overrides_previous_owner():
    state = start_game(_with_players(3))
    state = set_card_state(state, "Rope", "B", CardState.OWNED)
    state = set_card_state(state, "Rope", "C", CardState.OWNED)
    assert _cell(state, "Rope", "C") == CardState.OWNED
    assert _cell(state, "Rope", "B") == CardState.NOT_OWNED
    assert card_holder(state, "Rope") == "C"


def test_manual_edit_replaces_earlier_edit_deduction():
    state = start_game(_with_players(3))
    state = set_card_state(state, "Rope", "B", CardState.OWNED)
    state = set_card_state(state, "Rope", "B", CardState.NOT_OWNED)

    rope_b = [d for d in state.deductions if d.card_name == "Rope" and d.player_id == "B"]
    assert len(rope_b) == 1
    assert rope_b[0].type == DeductionType.CARD_NOT_OWNED
    assert rope_b[0].previous_state == CardState.OWNED
    assert rope_b[0].description == "Bob manually marked as not owning Rope"


def test_undo_owned_releases_ruled_out_cells():
    state = start_game(_with_players(3))
    state = set_card_state(state, "Rope", "B", CardState.OWNED)
    state = set_card_state(state, "Rope", "B", CardState.UNKNOWN)
    for holder in ("A", "B", "C", ENVELOPE):
        assert _cell(state, "Rope", holder) == CardState.UNKNOWN
    assert card_holder(state, "Rope") is None


def test_manual_envelope_replaces_previous_solution():
    state = start_game(_with_players(3))
    state = set_card_state(state, "Rope", ENVELOPE, CardState.ENVELOPE)
    assert state.solved_envelope.weapon == "Rope"
    for pid in ("A", "B", "C"):
        assert _cell(state, "Rope", pid) == CardState.NOT_OWNED
    for weapon in WEAPONS:
        if weapon != "Rope":
            assert _cell(state, weapon, ENVELOPE) == CardState.NOT_OWNED

    state = set_card_state(state, "Knife", ENVELOPE, CardState.ENVELOPE)
    assert state.solved_envelope.weapon == "Knife"
    assert _cell(state, "Rope", ENVELOPE) == CardState.NOT_OWNED
    assert card_holder(state, "Knife") == ENVELOPE


def test_edit_without_deduction_skips_inference():
    state = start_game(_with_players(3))
    for pid in ("A", "B"):
        state = set_card_state(state, "Rope", pid, CardState.NOT_OWNED, create_deduction=False)
    state = set_card_state(state, "Rope", "C", CardState.NOT_OWNED, create_deduction=False)
    assert state.deductions == []
    assert _cell(state, "Rope", ENVELOPE) == CardState.UNKNOWN


def test_manual_edit_requires_started_game():
    with pytest.raises(ValueError, match="Game has not started"):
        set_card_state(_with_players(3), "Rope", "B", CardState.OWNED)


# ---------------------------------------------------------------------------
# Opened cards, row clearing, notes, accusations
# ---------------------------------------------------------------------------


def test_opened_card_with_player():
    state = start_game(_with_players(3))
    state = record_opened_cards(state, ["Rope"], player_id="B")
    assert card_holder(state, "Rope") == "B"
    assert state.deductions[-1].description == "Rope revealed - owned by Bob"


def test_opened_card_held_by_nobody():
    state = start_game(_with_players(4))
    for card, pid in (("Candlestick", "B"), ("Lead Pipe", "B"), ("Revolver", "C"), ("Wrench", "D")):
        state = set_card_state(state, card, pid, CardState.OWNED)

    state = record_opened_cards(state, ["Knife"])

    assert state.open_cards == ["Knife"]
    for holder in ("A", "B", "C", "D", ENVELOPE):
        assert _cell(state, "Knife", holder) == CardState.NOT_OWNED
    # Knife is accounted for, so Rope is the only weapon left
    assert state.solved_envelope.weapon == "Rope"


def test_clear_card_row():
    state = start_game(_with_players(3))
    state = record_opened_cards(state, ["Knife"])
    state = clear_card_row(state, "Knife")
    for holder in ("A", "B", "C", ENVELOPE):
        assert _cell(state, "Knife", holder) == CardState.UNKNOWN
    assert state.open_cards == []
    assert state.deductions[-1].description == "Knife row cleared (reset to unknown)"


def test_update_notes():
    state = update_notes(TrackerState(), "Bob hesitated on Rope")
    assert state.notes == "Bob hesitated on Rope"


def test_wrong_accusation_is_only_logged():
    state = start_game(_with_players(3))
    state = record_accusation(state, "B", "Mrs. White", "Rope", "Hall")
    assert len(state.accusations) == 1
    assert not state.accusations[0].is_correct
    assert _cell(state, "Rope", ENVELOPE) == CardState.UNKNOWN


def test_correct_accusation_reveals_envelope():
    state = start_game(_with_players(3))
    state = record_accusation(state, "B", "Mrs. White", "Rope", "Hall", is_correct=True)
    env = state.solved_envelope
    assert (env.suspect, env.weapon, env.room) == ("Mrs. White", "Rope", "Hall")
    assert _cell(state, "Knife", ENVELOPE) == CardState.NOT_OWNED


def test_accusation_validates_cards():
    with pytest.raises(ValueError, match="Invalid room"):
        record_accusation(start_game(_with_players(3)), "B", "Mrs. White", "Rope", "Knife")


# ---------------------------------------------------------------------------
# Event dispatch
# ---------------------------------------------------------------------------


def test_apply_event_runs_setup_and_play():
    state = TrackerState(game_id="TEST")
    for event in SETUP_EVENTS:
        state = apply_event(state, event)

    assert state.game_started
    assert state.first_player_id == "B"
    assert state.player("A").confirmed_cards[0] == "Miss Scarlett"

    state = apply_event(
        state,
        {
            "type": "record_suggestion",
            "suggester_id": "B",
            "suspect": "Miss Scarlett",
            "weapon": "Rope",
            "room": "Hall",
            "passed_player_ids": ["C"],
            "shower_id": "A",
            "shown_card": "Miss Scarlett",
        },
    )
    assert len(state.suggestions) == 1
    state = apply_event(
        state, {"type": "set_card_state", "card": "Wrench", "holder": "C", "state": "owned"}
    )
    assert _cell(state, "Wrench", "C") == CardState.OWNED
    state = apply_event(state, {"type": "update_notes", "notes": "hi"})
    assert state.notes == "hi"
    state = apply_event(state, {"type": "reset_game"})
    assert not state.game_started


def test_apply_event_rejects_unknown_type():
    with pytest.raises(ValueError, match="Unknown event type: teleport"):
        apply_event(TrackerState(), {"type": "teleport"})


def test_apply_event_rejects_bad_state_value():
    state = start_game(_with_players(3))
    with pytest.raises(ValueError):
        apply_event(
            state, {"type": "set_card_state", "card": "Rope", "holder": "B", "state": "maybe"}
        )


def test_apply_event_treats_null_lists_as_empty():
    state = start_game(_with_players(3))
    after = apply_event(state, {"type": "record_opened_cards", "cards": None})
    assert after.open_cards == []

    after = apply_event(
        state,
        {
            "type": "record_suggestion",
            "suggester_id": "A",
            "suspect": "Mrs. White",
            "weapon": "Rope",
            "room": "Hall",
            "passed_player_ids": None,
            "shower_id": "B",
            "shown_card": "Rope",
        },
    )
    assert after.suggestions[0].passed_player_ids == []


@pytest.mark.parametrize(
    "event",
    [
        {"type": "record_opened_cards", "cards": 5},
        {"type": "set_my_cards", "cards": {"Rope": True}},
        {"type": "reorder_players", "player_ids": "ABC"},
    ],
)
def test_apply_event_rejects_non_list_fields(event):
    with pytest.raises(ValueError, match="must be a list"):
        apply_event(start_game(_with_players(3)), event)


# ---------------------------------------------------------------------------
# Redis session
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_session(redis):
    t = ClueTracker("NEWGAME", redis)
    state = await t.create()

    assert state.game_id == "NEWGAME"
    assert not state.game_started
    loaded = await t.get_state()
    assert loaded == state
    assert 0 < await redis.ttl("tracker:NEWGAME") <= EXPIRY


@pytest.mark.asyncio
async def test_apply_persists_and_logs(tracker: ClueTracker):
    for event in SETUP_EVENTS:
        await tracker.apply(event)
    state = await tracker.apply(
        {
            "type": "record_suggestion",
            "suggester_id": "A",
            "suspect": "Colonel Mustard",
            "weapon": "Wrench",
            "room": "Hall",
            "passed_player_ids": ["B", "C"],
        }
    )

    assert state.solved_envelope.complete
    loaded = await tracker.get_state()
    assert loaded.solved_envelope == state.solved_envelope

    log = await tracker.get_log()
    assert [entry["type"] for entry in log] == [
        "created", *[e["type"] for e in SETUP_EVENTS], "record_suggestion",
    ]
    assert log[-1]["new_deductions"] > 0


@pytest.mark.asyncio
async def test_failed_event_leaves_state_untouched(tracker: ClueTracker):
    before = await tracker.get_state()
    with pytest.raises(ValueError):
        await tracker.apply({"type": "start_game"})
    assert await tracker.get_state() == before
    assert len(await tracker.get_log()) == 1


@pytest.mark.asyncio
async def test_apply_on_missing_session(redis):
    with pytest.raises(ValueError, match="Game not found"):
        await ClueTracker("NOPE", redis).apply({"type": "start_game"})
    assert await ClueTracker("NOPE", redis).get_state() is None
