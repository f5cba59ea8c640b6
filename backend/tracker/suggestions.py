"""Suggestion processing: turn one observed suggestion into matrix facts.

A pass proves the responder holds none of the three named cards.  A show
with a known card pins that card; a show we could not see becomes a
``CardLink`` ("holds at least one of these") for the inference engine.
"""

import logging
from typing import Optional

from .cards import CardType, validate_card
from .matrix import (
    cell_state,
    link_potential,
    new_deduction,
    new_id,
    set_cell,
    utc_now,
)
from .models import (
    ENVELOPE,
    CardLink,
    CardState,
    DeductionType,
    Suggestion,
    TrackerState,
)

logger = logging.getLogger(__name__)


def _validate(
    state: TrackerState,
    suggester_id: str,
    suspect: str,
    weapon: str,
    room: str,
    passed_player_ids: list[str],
    shower_id: Optional[str],
    shown_card: Optional[str],
):
    validate_card(suspect, CardType.SUSPECT)
    validate_card(weapon, CardType.WEAPON)
    validate_card(room, CardType.ROOM)

    for pid in [suggester_id, *passed_player_ids] + ([shower_id] if shower_id else []):
        if state.player(pid) is None:
            raise ValueError(f"Unknown player: {pid}")
    if suggester_id in passed_player_ids or suggester_id == shower_id:
        raise ValueError("The suggesting player cannot respond to their own suggestion")
    if shower_id and shower_id in passed_player_ids:
        raise ValueError("A player cannot both pass and show")
    if shown_card and not shower_id:
        raise ValueError("A shown card requires the player who showed it")
    if shown_card and shown_card not in (suspect, weapon, room):
        raise ValueError(f"Card '{shown_card}' was not part of the suggestion")


def apply_suggestion(
    state: TrackerState,
    suggester_id: str,
    suspect: str,
    weapon: str,
    room: str,
    passed_player_ids: list[str],
    shower_id: Optional[str] = None,
    shown_card: Optional[str] = None,
) -> Suggestion:
    """Record a suggestion into ``state`` in place and return it.

    ``state`` must be a private copy; the caller is responsible for running
    inference afterwards.
    """
    _validate(
        state, suggester_id, suspect, weapon, room,
        passed_player_ids, shower_id, shown_card,
    )

    suggestion = Suggestion(
        id=new_id("suggestion"),
        turn_number=state.current_turn,
        suggester_id=suggester_id,
        suspect=suspect,
        weapon=weapon,
        room=room,
        passed_player_ids=list(passed_player_ids),
        shower_id=shower_id,
        shown_card=shown_card,
        timestamp=utc_now(),
    )
    state.current_turn += 1

    matrix = state.knowledge_matrix
    suggested = suggestion.cards

    # A pass also clears potentially_owned, which lets open links narrow.
    for pid in suggestion.passed_player_ids:
        for card in suggested:
            if cell_state(matrix, card, pid) in (
                CardState.UNKNOWN, CardState.POTENTIALLY_OWNED
            ):
                set_cell(matrix, card, pid, CardState.NOT_OWNED)
                state.deductions.append(
                    new_deduction(
                        DeductionType.CARD_NOT_OWNED,
                        f"{state.player_name(pid)} passed on {card}",
                        card,
                        player_id=pid,
                        source_suggestion_id=suggestion.id,
                    )
                )

    if shower_id and shown_card:
        set_cell(matrix, shown_card, shower_id, CardState.OWNED)
        set_cell(matrix, shown_card, ENVELOPE, CardState.NOT_OWNED)
        for p in state.players:
            if p.id != shower_id and cell_state(matrix, shown_card, p.id) == CardState.UNKNOWN:
                set_cell(matrix, shown_card, p.id, CardState.NOT_OWNED)
        state.deductions.append(
            new_deduction(
                DeductionType.CARD_OWNED,
                f"{state.player_name(shower_id)} showed {shown_card}",
                shown_card,
                player_id=shower_id,
                source_suggestion_id=suggestion.id,
            )
        )
    elif shower_id:
        possible = [
            c for c in suggested if cell_state(matrix, c, shower_id) != CardState.NOT_OWNED
        ]
        if possible:
            link = CardLink(
                id=new_id("link"),
                suggestion_id=suggestion.id,
                player_id=shower_id,
                possible_cards=possible,
            )
            state.card_links.append(link)
            suggestion.link_id = link.id
            for card in possible:
                link_potential(matrix, card, shower_id, suggestion.id)
            logger.debug(
                "[suggestions] %s holds one of %s (turn %d)",
                state.player_name(shower_id), possible, suggestion.turn_number,
            )

    state.suggestions.append(suggestion)
    logger.info(
        "[suggestions] Turn %d: %s suggested %s / %s / %s | passed=%s shower=%s shown=%s",
        suggestion.turn_number, state.player_name(suggester_id),
        suspect, weapon, room, passed_player_ids, shower_id, shown_card,
    )
    return suggestion
