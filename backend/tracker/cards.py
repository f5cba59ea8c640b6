"""Fixed card taxonomy for a standard Clue deck."""

from enum import Enum


class CardType(str, Enum):
    SUSPECT = "suspect"
    WEAPON = "weapon"
    ROOM = "room"


SUSPECTS = [
    "Miss Scarlett",
    "Colonel Mustard",
    "Mrs. White",
    "Reverend Green",
    "Mrs. Peacock",
    "Professor Plum",
]

WEAPONS = [
    "Candlestick",
    "Knife",
    "Lead Pipe",
    "Revolver",
    "Rope",
    "Wrench",
]

ROOMS = [
    "Kitchen",
    "Ballroom",
    "Conservatory",
    "Billiard Room",
    "Library",
    "Study",
    "Hall",
    "Lounge",
    "Dining Room",
]

ALL_CARDS = SUSPECTS + WEAPONS + ROOMS

TOTAL_CARDS = 21
ENVELOPE_CARDS = 3
DISTRIBUTED_CARDS = TOTAL_CARDS - ENVELOPE_CARDS

PLAYER_COLORS = [
    "#dc2626",  # red
    "#ea580c",  # orange
    "#16a34a",  # green
    "#2563eb",  # blue
    "#9333ea",  # purple
    "#ec4899",  # pink
]
FALLBACK_COLOR = "#6b7280"

_BY_TYPE = {
    CardType.SUSPECT: SUSPECTS,
    CardType.WEAPON: WEAPONS,
    CardType.ROOM: ROOMS,
}
_TYPE_OF = {name: t for t, names in _BY_TYPE.items() for name in names}


def card_type(card_name: str) -> CardType | None:
    return _TYPE_OF.get(card_name)


def cards_by_type(ctype: CardType) -> list[str]:
    return list(_BY_TYPE[ctype])


def validate_card(card_name: str, expected: CardType | None = None) -> str:
    """Return ``card_name`` if it names a real card (of ``expected`` type)."""
    ctype = card_type(card_name)
    if ctype is None:
        raise ValueError(f"Unknown card: {card_name}")
    if expected is not None and ctype != expected:
        raise ValueError(f"Invalid {expected.value}: {card_name}")
    return card_name
