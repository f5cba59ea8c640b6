import json
import logging
import random
import string
from typing import Optional

from .cards import (
    DISTRIBUTED_CARDS,
    FALLBACK_COLOR,
    PLAYER_COLORS,
    CardType,
    card_type,
    cards_by_type,
    validate_card,
)
from .inference import saturate, solved_envelope
from .matrix import (
    POSITIVE_STATES,
    cell_state,
    create_empty_matrix,
    mark_envelope,
    mark_nobody,
    mark_owned,
    new_deduction,
    new_id,
    reset_row,
    set_cell,
    utc_now,
)
from .models import (
    ENVELOPE,
    Accusation,
    CardState,
    DeductionType,
    Player,
    TrackerState,
)
from .suggestions import apply_suggestion

logger = logging.getLogger(__name__)

MIN_PLAYERS = 3
MAX_PLAYERS = 6
EXPIRY = 24 * 60 * 60  # 24 hours in seconds

# Deduction types a manual edit replaces for the same (card, holder).
_MANUAL_REPLACEABLE = {
    DeductionType.MANUAL_ADJUSTMENT,
    DeductionType.CARD_OWNED,
    DeductionType.CARD_NOT_OWNED,
    DeductionType.ENVELOPE,
}


def _new_player_id(length: int = 8) -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def _copy(state: TrackerState) -> TrackerState:
    return state.model_copy(deep=True)


def _require_player(state: TrackerState, player_id: str) -> Player:
    player = state.player(player_id)
    if player is None:
        raise ValueError(f"Unknown player: {player_id}")
    return player


def _require_matrix(state: TrackerState):
    if not state.game_started or not state.knowledge_matrix:
        raise ValueError("Game has not started")


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def add_player(
    state: TrackerState, name: str, player_id: Optional[str] = None
) -> TrackerState:
    if state.game_started:
        raise ValueError("Game already started")
    if len(state.players) >= MAX_PLAYERS:
        raise ValueError("Game is full")
    name = name.strip()
    if not name:
        raise ValueError("Player name cannot be empty")

    state = _copy(state)
    taken = {p.color for p in state.players}
    available = [c for c in PLAYER_COLORS if c not in taken]
    player = Player(
        id=player_id or _new_player_id(),
        name=name,
        color=available[0] if available else FALLBACK_COLOR,
    )
    if state.player(player.id) is not None:
        raise ValueError(f"Duplicate player id: {player.id}")
    state.players.append(player)
    logger.info("[%s] Player added: %s (%s)", state.game_id, name, player.id)
    return state


def remove_player(state: TrackerState, player_id: str) -> TrackerState:
    if state.game_started:
        raise ValueError("Game already started")
    _require_player(state, player_id)
    state = _copy(state)
    state.players = [p for p in state.players if p.id != player_id]
    if state.my_player_id == player_id:
        state.my_player_id = None
    if state.first_player_id == player_id:
        state.first_player_id = None
    return state


def reorder_players(state: TrackerState, player_ids: list[str]) -> TrackerState:
    if state.game_started:
        raise ValueError("Game already started")
    if sorted(player_ids) != sorted(p.id for p in state.players):
        raise ValueError("New order must list every player exactly once")
    state = _copy(state)
    by_id = {p.id: p for p in state.players}
    state.players = [by_id[pid] for pid in player_ids]
    return state


def set_my_player(state: TrackerState, player_id: Optional[str]) -> TrackerState:
    if player_id is not None:
        _require_player(state, player_id)
    state = _copy(state)
    state.my_player_id = player_id
    for p in state.players:
        p.is_me = player_id is not None and p.id == player_id
    return state


def set_first_player(state: TrackerState, player_id: Optional[str]) -> TrackerState:
    if player_id is not None:
        _require_player(state, player_id)
    state = _copy(state)
    state.first_player_id = player_id
    return state


def _seed_hand(state: TrackerState, player_id: str, cards: list[str]):
    player_ids = [p.id for p in state.players]
    for card in cards:
        mark_owned(state.knowledge_matrix, card, player_id, player_ids, force=True)


def set_my_cards(state: TrackerState, cards: list[str]) -> TrackerState:
    """Seed the human player's own hand and propagate it."""
    if not state.my_player_id:
        raise ValueError("Select which player you are first")
    for card in cards:
        validate_card(card)
    if len(set(cards)) != len(cards):
        raise ValueError("Duplicate cards in hand")

    state = _copy(state)
    me = state.player(state.my_player_id)
    if not state.knowledge_matrix:
        state.knowledge_matrix = create_empty_matrix(p.id for p in state.players)

    _seed_hand(state, me.id, cards)
    for card in cards:
        state.deductions.append(
            new_deduction(
                DeductionType.CARD_OWNED, f"You have {card}", card, player_id=me.id
            )
        )
    me.confirmed_cards = list(cards)
    me.card_count = len(cards)
    logger.info("[%s] Hand recorded for %s: %s", state.game_id, me.name, cards)
    return saturate(state)


def start_game(state: TrackerState) -> TrackerState:
    if state.game_started:
        raise ValueError("Game already started")
    if not MIN_PLAYERS <= len(state.players) <= MAX_PLAYERS:
        raise ValueError(f"Need {MIN_PLAYERS}-{MAX_PLAYERS} players to start")

    state = _copy(state)
    per_player = DISTRIBUTED_CARDS // len(state.players)
    for p in state.players:
        if p.id == state.my_player_id and p.confirmed_cards:
            p.card_count = len(p.confirmed_cards)
        else:
            p.card_count = per_player

    state.knowledge_matrix = create_empty_matrix(p.id for p in state.players)
    me = state.player(state.my_player_id) if state.my_player_id else None
    if me and me.confirmed_cards:
        _seed_hand(state, me.id, me.confirmed_cards)

    state.game_started = True
    state.current_turn = 1
    logger.info(
        "[%s] Game started with %d players, %d cards each, %d undealt",
        state.game_id, len(state.players), per_player, undealt_card_count(state),
    )
    return saturate(state)


def reset_game(state: TrackerState) -> TrackerState:
    return TrackerState(game_id=state.game_id)


# ---------------------------------------------------------------------------
# Play
# ---------------------------------------------------------------------------


def record_suggestion(
    state: TrackerState,
    suggester_id: str,
    suspect: str,
    weapon: str,
    room: str,
    passed_player_ids: Optional[list[str]] = None,
    shower_id: Optional[str] = None,
    shown_card: Optional[str] = None,
) -> TrackerState:
    _require_matrix(state)
    state = _copy(state)
    apply_suggestion(
        state, suggester_id, suspect, weapon, room,
        passed_player_ids or [], shower_id, shown_card,
    )
    return saturate(state)


def _describe_manual(
    state: TrackerState, card: str, holder: str, new_state: CardState
) -> tuple[DeductionType, str]:
    who = state.player_name(holder)
    if new_state == CardState.ENVELOPE:
        return DeductionType.ENVELOPE, f"{card} manually marked as solution"
    if new_state == CardState.OWNED:
        return DeductionType.CARD_OWNED, f"{who} manually marked as owning {card}"
    if new_state == CardState.NOT_OWNED:
        return DeductionType.CARD_NOT_OWNED, f"{who} manually marked as not owning {card}"
    if new_state == CardState.POTENTIALLY_OWNED:
        return DeductionType.MANUAL_ADJUSTMENT, f"{card} manually marked as potentially owned"
    return DeductionType.MANUAL_ADJUSTMENT, f"{card} state manually reset to unknown"


def set_card_state(
    state: TrackerState,
    card: str,
    holder: str,
    new_state: CardState,
    create_deduction: bool = True,
) -> TrackerState:
    """Manual override of one cell, with the same propagation as the rules."""
    _require_matrix(state)
    validate_card(card)
    if holder != ENVELOPE:
        _require_player(state, holder)
    new_state = CardState(new_state)

    state = _copy(state)
    matrix = state.knowledge_matrix
    player_ids = [p.id for p in state.players]
    previous = cell_state(matrix, card, holder)

    if new_state == CardState.ENVELOPE or (
        holder == ENVELOPE and new_state == CardState.OWNED
    ):
        # one solution card per category
        for other in cards_by_type(card_type(card)):
            if other != card and cell_state(matrix, other, ENVELOPE) == CardState.ENVELOPE:
                set_cell(matrix, other, ENVELOPE, CardState.NOT_OWNED)
        mark_envelope(matrix, card, player_ids)
    elif new_state == CardState.OWNED:
        mark_owned(matrix, card, holder, player_ids, force=True)
    else:
        set_cell(matrix, card, holder, new_state)

    # Undo of an accidental "owned"/"envelope" click releases the cells it ruled out.
    if new_state == CardState.UNKNOWN and holder != ENVELOPE and previous == CardState.OWNED:
        set_cell(matrix, card, ENVELOPE, CardState.UNKNOWN)
        for pid in player_ids:
            if pid != holder and cell_state(matrix, card, pid) == CardState.NOT_OWNED:
                set_cell(matrix, card, pid, CardState.UNKNOWN)
    if new_state == CardState.UNKNOWN and previous == CardState.ENVELOPE:
        for pid in player_ids:
            if cell_state(matrix, card, pid) == CardState.NOT_OWNED:
                set_cell(matrix, card, pid, CardState.UNKNOWN)

    if card in state.open_cards:
        state.open_cards.remove(card)

    if create_deduction and previous != new_state:
        target = None if holder == ENVELOPE else holder
        state.deductions = [
            d for d in state.deductions
            if not (
                d.type in _MANUAL_REPLACEABLE
                and d.card_name == card
                and d.player_id == target
            )
        ]
        type_, description = _describe_manual(state, card, holder, new_state)
        state.deductions.append(
            new_deduction(
                type_, description, card, player_id=target, previous_state=previous
            )
        )

    logger.info(
        "[%s] Manual edit: %s / %s %s -> %s",
        state.game_id, card, holder, previous.value, new_state.value,
    )
    if create_deduction:
        return saturate(state)
    state.solved_envelope = solved_envelope(state)
    return state


def record_opened_cards(
    state: TrackerState, cards: list[str], player_id: Optional[str] = None
) -> TrackerState:
    """Mark revealed cards as held by ``player_id``, or by nobody."""
    _require_matrix(state)
    for card in cards:
        validate_card(card)
    if player_id is not None:
        _require_player(state, player_id)

    state = _copy(state)
    player_ids = [p.id for p in state.players]
    for card in cards:
        if player_id:
            mark_owned(state.knowledge_matrix, card, player_id, player_ids, force=True)
            state.deductions.append(
                new_deduction(
                    DeductionType.CARD_OWNED,
                    f"{card} revealed - owned by {state.player_name(player_id)}",
                    card,
                    player_id=player_id,
                )
            )
        else:
            mark_nobody(state.knowledge_matrix, card, player_ids)
            if card not in state.open_cards:
                state.open_cards.append(card)
            state.deductions.append(
                new_deduction(
                    DeductionType.MANUAL_ADJUSTMENT, f"{card} revealed (open card)", card
                )
            )
    return saturate(state)


def clear_card_row(state: TrackerState, card: str) -> TrackerState:
    _require_matrix(state)
    validate_card(card)
    state = _copy(state)
    reset_row(state.knowledge_matrix, card, (p.id for p in state.players))
    if card in state.open_cards:
        state.open_cards.remove(card)
    state.deductions.append(
        new_deduction(
            DeductionType.MANUAL_ADJUSTMENT,
            f"{card} row cleared (reset to unknown)",
            card,
        )
    )
    return saturate(state)


def update_notes(state: TrackerState, notes: str) -> TrackerState:
    state = _copy(state)
    state.notes = notes
    return state


def record_accusation(
    state: TrackerState,
    player_id: str,
    suspect: str,
    weapon: str,
    room: str,
    is_correct: bool = False,
) -> TrackerState:
    """Log an accusation; a correct one reveals the envelope."""
    _require_player(state, player_id)
    validate_card(suspect, CardType.SUSPECT)
    validate_card(weapon, CardType.WEAPON)
    validate_card(room, CardType.ROOM)

    state = _copy(state)
    state.accusations.append(
        Accusation(
            id=new_id("accusation"),
            player_id=player_id,
            suspect=suspect,
            weapon=weapon,
            room=room,
            is_correct=is_correct,
            timestamp=utc_now(),
        )
    )
    if is_correct and state.knowledge_matrix:
        for card in (suspect, weapon, room):
            if cell_state(state.knowledge_matrix, card, ENVELOPE) != CardState.ENVELOPE:
                state = set_card_state(state, card, ENVELOPE, CardState.ENVELOPE)
    return state


# ---------------------------------------------------------------------------
# Derived reads
# ---------------------------------------------------------------------------


def undealt_card_count(state: TrackerState) -> int:
    """Cards left over when 18 doesn't divide evenly among the players."""
    if not state.players:
        return 0
    return DISTRIBUTED_CARDS % len(state.players)


def card_holder(state: TrackerState, card: str) -> str | None:
    """The player id or ``ENVELOPE`` known to hold ``card``, if any."""
    for holder, cell in state.knowledge_matrix.get(card, {}).items():
        if cell.state in POSITIVE_STATES:
            return holder
    return None


# ---------------------------------------------------------------------------
# Event dispatch
# ---------------------------------------------------------------------------


def _list_field(event: dict, key: str) -> list:
    value = event.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return list(value)


def apply_event(state: TrackerState, event: dict) -> TrackerState:
    """Apply one UI event dict (``{"type": ..., ...}``) and return the new state."""
    event_type = event.get("type")

    if event_type == "add_player":
        return add_player(state, event.get("name", ""), event.get("player_id"))
    if event_type == "remove_player":
        return remove_player(state, event["player_id"])
    if event_type == "reorder_players":
        return reorder_players(state, _list_field(event, "player_ids"))
    if event_type == "set_my_player":
        return set_my_player(state, event.get("player_id"))
    if event_type == "set_first_player":
        return set_first_player(state, event.get("player_id"))
    if event_type == "set_my_cards":
        return set_my_cards(state, _list_field(event, "cards"))
    if event_type == "start_game":
        return start_game(state)
    if event_type == "record_suggestion":
        return record_suggestion(
            state,
            event["suggester_id"],
            event["suspect"],
            event["weapon"],
            event["room"],
            passed_player_ids=_list_field(event, "passed_player_ids"),
            shower_id=event.get("shower_id"),
            shown_card=event.get("shown_card"),
        )
    if event_type == "set_card_state":
        return set_card_state(
            state,
            event["card"],
            event["holder"],
            CardState(event["state"]),
            create_deduction=event.get("create_deduction", True),
        )
    if event_type == "record_opened_cards":
        return record_opened_cards(
            state, _list_field(event, "cards"), event.get("player_id")
        )
    if event_type == "clear_card_row":
        return clear_card_row(state, event["card"])
    if event_type == "update_notes":
        return update_notes(state, str(event.get("notes", "")))
    if event_type == "record_accusation":
        return record_accusation(
            state,
            event["player_id"],
            event["suspect"],
            event["weapon"],
            event["room"],
            is_correct=bool(event.get("is_correct", False)),
        )
    if event_type == "reset_game":
        return reset_game(state)
    raise ValueError(f"Unknown event type: {event_type}")


# ---------------------------------------------------------------------------
# Redis-backed session
# ---------------------------------------------------------------------------


class ClueTracker:
    """One tracking session persisted in Redis.

    Every mutation funnels through ``apply``: load, reduce, save, log.  The
    reducers above do the real work and never touch Redis.
    """

    def __init__(self, game_id: str, redis_client):
        self.game_id = game_id
        self.redis = redis_client
        self._state_key = f"tracker:{game_id}"
        self._log_key = f"tracker:{game_id}:log"

    async def _save_state(self, state: TrackerState):
        await self.redis.set(self._state_key, state.model_dump_json(), ex=EXPIRY)

    async def _load_state(self) -> TrackerState | None:
        raw = await self.redis.get(self._state_key)
        if raw is None:
            return None
        return TrackerState.model_validate_json(raw)

    async def _append_log(self, entry: dict):
        await self.redis.rpush(self._log_key, json.dumps(entry))
        await self.redis.expire(self._log_key, EXPIRY)

    async def create(self) -> TrackerState:
        state = TrackerState(game_id=self.game_id)
        await self._save_state(state)
        await self._append_log({"type": "created", "timestamp": utc_now()})
        return state

    async def get_state(self) -> TrackerState | None:
        return await self._load_state()

    async def apply(self, event: dict) -> TrackerState:
        state = await self._load_state()
        if state is None:
            raise ValueError("Game not found")

        new_state = apply_event(state, event)
        await self._save_state(new_state)
        await self._append_log(
            {
                "type": event.get("type"),
                "event": event,
                "new_deductions": max(0, len(new_state.deductions) - len(state.deductions)),
                "timestamp": utc_now(),
            }
        )
        return new_state

    async def get_log(self) -> list[dict]:
        entries = await self.redis.lrange(self._log_key, 0, -1)
        return [json.loads(e) for e in entries]
