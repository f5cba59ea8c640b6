"""Constraint-propagation inference engine.

The knowledge matrix and card links form a small constraint store.  Each
rule below is a plain function that inspects an ``InferenceContext``,
applies whatever facts it can derive, and returns ``True`` if anything
changed.  ``saturate`` sweeps the ordered ``RULES`` tuple until a complete
sweep changes nothing.

Rules never raise.  Contradictory operator input (for example a link whose
candidates have all been eliminated) is absorbed rather than rejected, so a
mis-recorded turn never locks up the session.
"""

import logging
from typing import Callable, Optional

from .cards import ALL_CARDS, TOTAL_CARDS, CardType, card_type, cards_by_type
from .matrix import (
    OPEN_STATES,
    cards_in_state,
    cell_state,
    mark_envelope,
    mark_owned,
    new_deduction,
    owner_of,
    set_cell,
)
from .models import (
    ENVELOPE,
    CardState,
    DeductionType,
    SolvedEnvelope,
    TrackerState,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 100


class InferenceContext:
    """Mutable working copy threaded through one ``saturate`` call."""

    def __init__(self, state: TrackerState):
        self.state = state
        self.matrix = state.knowledge_matrix
        self.player_ids = [p.id for p in state.players]
        self.new_deductions = 0

    def state_of(self, card: str, holder: str) -> CardState:
        return cell_state(self.matrix, card, holder)

    def owner(self, card: str) -> str | None:
        return owner_of(self.matrix, card, self.player_ids)

    def name(self, player_id: str) -> str:
        return self.state.player_name(player_id)

    def give(self, card: str, player_id: str):
        mark_owned(self.matrix, card, player_id, self.player_ids)

    def emit(
        self,
        type_: DeductionType,
        description: str,
        card: str,
        player_id: Optional[str] = None,
        source_suggestion_id: Optional[str] = None,
    ):
        self.state.deductions.append(
            new_deduction(
                type_, description, card,
                player_id=player_id,
                source_suggestion_id=source_suggestion_id,
            )
        )
        self.new_deductions += 1
        logger.debug("[inference] %s: %s", type_.value, description)

    def turn_of(self, suggestion_id: str) -> int | None:
        for s in self.state.suggestions:
            if s.id == suggestion_id:
                return s.turn_number
        return None


# ---------------------------------------------------------------------------
# Link rules
# ---------------------------------------------------------------------------


def link_narrowing(ctx: InferenceContext) -> bool:
    """Drop link candidates the linked player is now known not to hold."""
    changed = False
    for link in ctx.state.card_links:
        if link.resolved:
            continue
        remaining = [
            c for c in link.possible_cards
            if ctx.state_of(c, link.player_id) != CardState.NOT_OWNED
        ]
        if len(remaining) < len(link.possible_cards):
            link.possible_cards = remaining
            changed = True
    return changed


def link_resolution(ctx: InferenceContext) -> bool:
    """A link with a single surviving candidate pins that card."""
    changed = False
    for link in ctx.state.card_links:
        if link.resolved:
            continue
        remaining = [
            c for c in link.possible_cards
            if ctx.state_of(c, link.player_id) != CardState.NOT_OWNED
        ]
        if len(remaining) == 1:
            card = remaining[0]
            link.resolved = True
            link.resolved_card = card
            changed = True
            if ctx.state_of(card, link.player_id) != CardState.OWNED:
                ctx.give(card, link.player_id)
                ctx.emit(
                    DeductionType.LINK_RESOLVED,
                    f"{ctx.name(link.player_id)} must have {card} "
                    f"(cross-referenced from Turn {ctx.turn_of(link.suggestion_id)})",
                    card,
                    player_id=link.player_id,
                    source_suggestion_id=link.suggestion_id,
                )
        elif not remaining:
            logger.warning(
                "[inference] Link %s for %s has no viable candidates; marking resolved",
                link.id, ctx.name(link.player_id),
            )
            link.resolved = True
            changed = True
    return changed


def cross_suggestion(ctx: InferenceContext) -> bool:
    """Compare a show against the same player's passes elsewhere.

    If P showed one of {A, B, C} and passed on {A, B, D}, P showed C.
    """
    changed = False
    suggestions = ctx.state.suggestions
    for shown in suggestions:
        shower = shown.shower_id
        if not shower:
            continue
        for passed in suggestions:
            if passed.id == shown.id or shower not in passed.passed_player_ids:
                continue
            pass_cards = passed.cards
            candidates = [c for c in shown.cards if c not in pass_cards]
            if len(candidates) != 1:
                continue
            card = candidates[0]
            if ctx.state_of(card, shower) == CardState.OWNED:
                continue
            if ctx.owner(card) is not None:
                # someone else already holds it; nothing consistent to add
                continue
            ctx.give(card, shower)
            ctx.emit(
                DeductionType.CROSS_REFERENCE,
                f"{ctx.name(shower)} must have {card} (showed in Turn "
                f"{shown.turn_number}, passed in Turn {passed.turn_number})",
                card,
                player_id=shower,
                source_suggestion_id=shown.id,
            )
            for link in ctx.state.card_links:
                if link.suggestion_id == shown.id and not link.resolved:
                    link.resolved = True
                    link.resolved_card = card
            changed = True
    return changed


# ---------------------------------------------------------------------------
# Elimination rules
# ---------------------------------------------------------------------------


def single_candidate(ctx: InferenceContext) -> bool:
    """Not in the envelope and only one player left who might hold it."""
    changed = False
    for card in ALL_CARDS:
        envelope_state = ctx.state_of(card, ENVELOPE)
        if envelope_state != CardState.NOT_OWNED:
            continue
        if ctx.owner(card) is not None:
            continue
        open_players = [
            pid for pid in ctx.player_ids if ctx.state_of(card, pid) in OPEN_STATES
        ]
        if len(open_players) == 1:
            pid = open_players[0]
            set_cell(ctx.matrix, card, pid, CardState.OWNED)
            ctx.emit(
                DeductionType.CARD_OWNED,
                f"{ctx.name(pid)} must have {card} (all others eliminated)",
                card,
                player_id=pid,
            )
            changed = True
    return changed


def pass_invalidates_potential(ctx: InferenceContext) -> bool:
    changed = False
    for suggestion in ctx.state.suggestions:
        for pid in suggestion.passed_player_ids:
            for card in suggestion.cards:
                if ctx.state_of(card, pid) == CardState.POTENTIALLY_OWNED:
                    set_cell(ctx.matrix, card, pid, CardState.NOT_OWNED)
                    changed = True
    return changed


# ---------------------------------------------------------------------------
# Envelope rules
# ---------------------------------------------------------------------------


def _category_solved(ctx: InferenceContext, ctype: CardType) -> bool:
    return any(
        ctx.state_of(c, ENVELOPE) == CardState.ENVELOPE for c in cards_by_type(ctype)
    )


def envelope_by_elimination(ctx: InferenceContext) -> bool:
    """Nobody holds it, so it is in the envelope."""
    if not ctx.player_ids:
        return False
    changed = False
    for card in ALL_CARDS:
        if ctx.state_of(card, ENVELOPE) != CardState.UNKNOWN:
            continue
        if _category_solved(ctx, card_type(card)):
            # category_exclusivity rules it out instead
            continue
        if all(ctx.state_of(card, pid) == CardState.NOT_OWNED for pid in ctx.player_ids):
            set_cell(ctx.matrix, card, ENVELOPE, CardState.ENVELOPE)
            ctx.emit(
                DeductionType.ENVELOPE,
                f"{card} must be in the envelope (no player has it)",
                card,
            )
            changed = True
    return changed


def category_exclusivity(ctx: InferenceContext) -> bool:
    changed = False
    for ctype in CardType:
        cards = cards_by_type(ctype)
        solved = next(
            (c for c in cards if ctx.state_of(c, ENVELOPE) == CardState.ENVELOPE), None
        )
        if solved is None:
            continue
        for card in cards:
            if card != solved and ctx.state_of(card, ENVELOPE) == CardState.UNKNOWN:
                set_cell(ctx.matrix, card, ENVELOPE, CardState.NOT_OWNED)
                changed = True
    return changed


def last_candidate_envelope(ctx: InferenceContext) -> bool:
    """The only card of a category nobody holds must be the envelope card."""
    changed = False
    open_cards = set(ctx.state.open_cards)
    for ctype in CardType:
        cards = cards_by_type(ctype)
        if any(ctx.state_of(c, ENVELOPE) == CardState.ENVELOPE for c in cards):
            continue
        unaccounted = [
            c for c in cards
            if c not in open_cards
            and ctx.state_of(c, ENVELOPE) in (CardState.UNKNOWN, CardState.NOT_OWNED)
            and ctx.owner(c) is None
        ]
        if len(unaccounted) != 1:
            continue
        card = unaccounted[0]
        mark_envelope(ctx.matrix, card, ctx.player_ids)
        ctx.emit(
            DeductionType.ENVELOPE,
            f"{card} must be in envelope (only {ctype.value} unaccounted for)",
            card,
        )
        changed = True
    return changed


# ---------------------------------------------------------------------------
# Hand-size rules
# ---------------------------------------------------------------------------


def hand_size(ctx: InferenceContext) -> bool:
    changed = False
    for player in ctx.state.players:
        card_count = player.card_count
        if not card_count:
            continue
        pid = player.id

        # 6a: exactly as many open candidates as free slots
        owned = cards_in_state(ctx.matrix, pid, CardState.OWNED)
        possible = cards_in_state(ctx.matrix, pid, *OPEN_STATES)
        remaining_slots = card_count - len(owned)
        if remaining_slots > 0 and remaining_slots == len(possible):
            for card in possible:
                ctx.give(card, pid)
                ctx.emit(
                    DeductionType.CARD_COUNT,
                    f"{player.name} must have {card} (only {len(possible)} possible "
                    f"cards for {remaining_slots} remaining slots)",
                    card,
                    player_id=pid,
                )
            changed = True

        # 6b: hand is full
        owned = cards_in_state(ctx.matrix, pid, CardState.OWNED)
        if len(owned) == card_count:
            for card in cards_in_state(ctx.matrix, pid, *OPEN_STATES):
                set_cell(ctx.matrix, card, pid, CardState.NOT_OWNED)
                ctx.emit(
                    DeductionType.CARD_COUNT,
                    f"{player.name} doesn't have {card} "
                    f"(already has all {card_count} cards)",
                    card,
                    player_id=pid,
                )
                changed = True

        # 6c: every card they can't hold is already ruled out
        not_owned = cards_in_state(ctx.matrix, pid, CardState.NOT_OWNED)
        max_not_owned = TOTAL_CARDS - card_count
        if len(not_owned) >= max_not_owned:
            for card in cards_in_state(ctx.matrix, pid, CardState.POTENTIALLY_OWNED):
                ctx.give(card, pid)
                ctx.emit(
                    DeductionType.CARD_COUNT,
                    f"{player.name} must have {card} (eliminated {len(not_owned)} "
                    f"cards, max possible to not have is {max_not_owned})",
                    card,
                    player_id=pid,
                )
                changed = True
    return changed


def link_intersection(ctx: InferenceContext) -> bool:
    """With one free slot left, every open link must be satisfied by it.

    The last card in the hand then lies in the intersection of the player's
    unsatisfied links; anything outside it is ruled out.
    """
    changed = False
    for player in ctx.state.players:
        if not player.card_count:
            continue
        pid = player.id
        owned = set(cards_in_state(ctx.matrix, pid, CardState.OWNED))
        if player.card_count - len(owned) != 1:
            continue

        pending = [
            link for link in ctx.state.card_links
            if link.player_id == pid
            and not link.resolved
            and not owned.intersection(link.possible_cards)
        ]
        if not pending:
            continue
        shared = [
            c for c in pending[0].possible_cards
            if all(c in link.possible_cards for link in pending[1:])
            and ctx.state_of(c, pid) != CardState.NOT_OWNED
        ]
        if not shared:
            continue

        for card in cards_in_state(ctx.matrix, pid, *OPEN_STATES):
            if card in shared:
                continue
            set_cell(ctx.matrix, card, pid, CardState.NOT_OWNED)
            ctx.emit(
                DeductionType.CARD_COUNT,
                f"{player.name} doesn't have {card} (last free slot must hold "
                f"one of {', '.join(shared)})",
                card,
                player_id=pid,
            )
            changed = True

        if len(shared) == 1 and ctx.state_of(shared[0], pid) != CardState.OWNED:
            card = shared[0]
            ctx.give(card, pid)
            ctx.emit(
                DeductionType.CARD_COUNT,
                f"{player.name} must have {card} (only card that fits every "
                f"open link in the last free slot)",
                card,
                player_id=pid,
            )
            changed = True
    return changed


def sole_player_with_room(ctx: InferenceContext) -> bool:
    changed = False
    for card in ALL_CARDS:
        if ctx.state_of(card, ENVELOPE) != CardState.NOT_OWNED:
            continue
        if ctx.owner(card) is not None:
            continue
        candidates = []
        for player in ctx.state.players:
            if ctx.state_of(card, player.id) == CardState.NOT_OWNED:
                continue
            if player.card_count:
                held = len(cards_in_state(ctx.matrix, player.id, CardState.OWNED))
                if held >= player.card_count:
                    continue
            candidates.append(player)
        if len(candidates) == 1:
            sole = candidates[0]
            ctx.give(card, sole.id)
            ctx.emit(
                DeductionType.CARD_COUNT,
                f"{sole.name} must have {card} (only player with room for this card)",
                card,
                player_id=sole.id,
            )
            changed = True
    return changed


def owner_closure(ctx: InferenceContext) -> bool:
    changed = False
    for card in ALL_CARDS:
        owner = ctx.owner(card)
        if owner is None:
            continue
        for pid in ctx.player_ids:
            if pid != owner and ctx.state_of(card, pid) != CardState.NOT_OWNED:
                set_cell(ctx.matrix, card, pid, CardState.NOT_OWNED)
                changed = True
        if ctx.state_of(card, ENVELOPE) != CardState.NOT_OWNED:
            set_cell(ctx.matrix, card, ENVELOPE, CardState.NOT_OWNED)
            changed = True
    return changed


Rule = Callable[[InferenceContext], bool]

RULES: tuple[tuple[str, Rule], ...] = (
    ("link_narrowing", link_narrowing),
    ("link_resolution", link_resolution),
    ("cross_suggestion", cross_suggestion),
    ("single_candidate", single_candidate),
    ("pass_invalidates_potential", pass_invalidates_potential),
    ("envelope_by_elimination", envelope_by_elimination),
    ("category_exclusivity", category_exclusivity),
    ("last_candidate_envelope", last_candidate_envelope),
    ("hand_size", hand_size),
    ("link_intersection", link_intersection),
    ("sole_player_with_room", sole_player_with_room),
    ("owner_closure", owner_closure),
)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def solved_envelope(state: TrackerState) -> SolvedEnvelope:
    def _find(ctype: CardType) -> str | None:
        return next(
            (
                c for c in cards_by_type(ctype)
                if cell_state(state.knowledge_matrix, c, ENVELOPE) == CardState.ENVELOPE
            ),
            None,
        )

    return SolvedEnvelope(
        suspect=_find(CardType.SUSPECT),
        weapon=_find(CardType.WEAPON),
        room=_find(CardType.ROOM),
    )


def saturate(state: TrackerState, max_iterations: int = MAX_ITERATIONS) -> TrackerState:
    """Return a copy of ``state`` with every derivable fact applied."""
    if not state.game_started or not state.knowledge_matrix:
        return state

    ctx = InferenceContext(state.model_copy(deep=True))
    iterations = 0
    changed = True
    while changed and iterations < max_iterations:
        changed = False
        iterations += 1
        for tag, rule in RULES:
            if rule(ctx):
                logger.debug("[inference] sweep %d: %s fired", iterations, tag)
                changed = True

    if changed:
        logger.warning(
            "[inference] Stopped after %d sweeps without reaching a fixed point",
            iterations,
        )

    ctx.state.solved_envelope = solved_envelope(ctx.state)
    logger.info(
        "[inference] %s: %d sweep(s), %d new deduction(s), envelope=%s",
        state.game_id or "-", iterations, ctx.new_deductions,
        ctx.state.solved_envelope.model_dump(),
    )
    return ctx.state
