"""Knowledge matrix construction, lookup and propagation helpers.

The matrix maps every card to a ``CellKnowledge`` per holder, where a holder
is either a player id or ``ENVELOPE``.  Helpers here mutate the matrix they
are given; reducers and the inference engine always hand them a private copy.
"""

import datetime as dt
import random
import string
from typing import Iterable, Optional

from .cards import ALL_CARDS
from .models import (
    ENVELOPE,
    CardState,
    CellKnowledge,
    Deduction,
    DeductionType,
    KnowledgeMatrix,
)

POSITIVE_STATES = (CardState.OWNED, CardState.ENVELOPE)
OPEN_STATES = (CardState.UNKNOWN, CardState.POTENTIALLY_OWNED)


def new_id(prefix: str, length: int = 8) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=length))
    return f"{prefix}-{suffix}"


def utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def new_deduction(
    type_: DeductionType,
    description: str,
    card_name: str,
    player_id: Optional[str] = None,
    source_suggestion_id: Optional[str] = None,
    previous_state: Optional[CardState] = None,
) -> Deduction:
    return Deduction(
        id=new_id("deduction"),
        type=type_,
        description=description,
        card_name=card_name,
        player_id=player_id,
        source_suggestion_id=source_suggestion_id,
        previous_state=previous_state,
        timestamp=utc_now(),
    )


def create_empty_matrix(player_ids: Iterable[str]) -> KnowledgeMatrix:
    player_ids = list(player_ids)
    matrix: KnowledgeMatrix = {}
    for card in ALL_CARDS:
        row = {ENVELOPE: CellKnowledge()}
        for pid in player_ids:
            row[pid] = CellKnowledge()
        matrix[card] = row
    return matrix


def cell_state(matrix: KnowledgeMatrix, card: str, holder: str) -> CardState:
    cell = matrix.get(card, {}).get(holder)
    return cell.state if cell else CardState.UNKNOWN


def set_cell(matrix: KnowledgeMatrix, card: str, holder: str, state: CardState):
    """Overwrite a cell; any link bookkeeping on it is dropped."""
    matrix[card][holder] = CellKnowledge(state=state)


def owner_of(
    matrix: KnowledgeMatrix, card: str, player_ids: Iterable[str]
) -> str | None:
    for pid in player_ids:
        if cell_state(matrix, card, pid) == CardState.OWNED:
            return pid
    return None


def cards_in_state(
    matrix: KnowledgeMatrix, holder: str, *states: CardState
) -> list[str]:
    return [c for c in ALL_CARDS if cell_state(matrix, c, holder) in states]


def mark_owned(
    matrix: KnowledgeMatrix,
    card: str,
    player_id: str,
    player_ids: Iterable[str],
    force: bool = False,
):
    """Give ``card`` to ``player_id`` and rule out every other holder.

    Other players already marked ``owned`` are left alone unless ``force``
    is set (manual edits and opened cards overwrite; inference does not).
    """
    set_cell(matrix, card, player_id, CardState.OWNED)
    set_cell(matrix, card, ENVELOPE, CardState.NOT_OWNED)
    for pid in player_ids:
        if pid == player_id:
            continue
        if force or cell_state(matrix, card, pid) != CardState.OWNED:
            set_cell(matrix, card, pid, CardState.NOT_OWNED)


def mark_envelope(matrix: KnowledgeMatrix, card: str, player_ids: Iterable[str]):
    for pid in player_ids:
        set_cell(matrix, card, pid, CardState.NOT_OWNED)
    set_cell(matrix, card, ENVELOPE, CardState.ENVELOPE)


def mark_nobody(matrix: KnowledgeMatrix, card: str, player_ids: Iterable[str]):
    """Rule ``card`` out for every holder (an undealt, revealed card)."""
    for pid in player_ids:
        set_cell(matrix, card, pid, CardState.NOT_OWNED)
    set_cell(matrix, card, ENVELOPE, CardState.NOT_OWNED)


def reset_row(matrix: KnowledgeMatrix, card: str, player_ids: Iterable[str]):
    for pid in player_ids:
        set_cell(matrix, card, pid, CardState.UNKNOWN)
    set_cell(matrix, card, ENVELOPE, CardState.UNKNOWN)


def link_potential(
    matrix: KnowledgeMatrix, card: str, player_id: str, suggestion_id: str
):
    """Mark a card as a candidate of an open link for ``player_id``."""
    cell = matrix[card][player_id]
    if cell.state == CardState.UNKNOWN:
        matrix[card][player_id] = CellKnowledge(
            state=CardState.POTENTIALLY_OWNED,
            linked_suggestion_ids=[suggestion_id],
        )
    elif cell.state == CardState.POTENTIALLY_OWNED:
        cell.linked_suggestion_ids.append(suggestion_id)
