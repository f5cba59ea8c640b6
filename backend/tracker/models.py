"""Pydantic models for tracker state, analysis results and API requests."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

ENVELOPE = "envelope"


class CardState(str, Enum):
    UNKNOWN = "unknown"
    OWNED = "owned"
    NOT_OWNED = "not_owned"
    POTENTIALLY_OWNED = "potentially_owned"  # tied to one or more open card links
    ENVELOPE = "envelope"


class DeductionType(str, Enum):
    CARD_OWNED = "card_owned"
    CARD_NOT_OWNED = "card_not_owned"
    ENVELOPE = "envelope"
    LINK_RESOLVED = "link_resolved"
    CROSS_REFERENCE = "cross_reference"
    CARD_COUNT = "card_count"
    MANUAL_ADJUSTMENT = "manual_adjustment"


class CellKnowledge(BaseModel):
    state: CardState = CardState.UNKNOWN
    linked_suggestion_ids: list[str] = Field(default_factory=list)


# card name -> holder id (player id or ENVELOPE) -> knowledge
KnowledgeMatrix = dict[str, dict[str, CellKnowledge]]


class Player(BaseModel):
    id: str
    name: str
    color: str
    is_me: bool = False
    card_count: Optional[int] = None
    confirmed_cards: list[str] = Field(default_factory=list)


class Suggestion(BaseModel):
    id: str
    turn_number: int
    suggester_id: str
    suspect: str
    weapon: str
    room: str
    passed_player_ids: list[str] = Field(default_factory=list)
    shower_id: Optional[str] = None
    shown_card: Optional[str] = None
    link_id: Optional[str] = None
    timestamp: str

    @property
    def cards(self) -> list[str]:
        return [self.suspect, self.weapon, self.room]


class CardLink(BaseModel):
    """A player showed exactly one of ``possible_cards``; we don't know which."""

    id: str
    suggestion_id: str
    player_id: str
    possible_cards: list[str]
    resolved: bool = False
    resolved_card: Optional[str] = None


class Deduction(BaseModel):
    id: str
    type: DeductionType
    description: str
    card_name: str
    player_id: Optional[str] = None
    source_suggestion_id: Optional[str] = None
    previous_state: Optional[CardState] = None
    timestamp: str


class Accusation(BaseModel):
    id: str
    player_id: str
    suspect: str
    weapon: str
    room: str
    is_correct: bool
    timestamp: str


class SolvedEnvelope(BaseModel):
    suspect: Optional[str] = None
    weapon: Optional[str] = None
    room: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.suspect and self.weapon and self.room)


class TrackerState(BaseModel):
    game_id: str = ""
    players: list[Player] = Field(default_factory=list)
    my_player_id: Optional[str] = None
    first_player_id: Optional[str] = None
    current_turn: int = 0
    game_started: bool = False
    knowledge_matrix: KnowledgeMatrix = Field(default_factory=dict)
    card_links: list[CardLink] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    accusations: list[Accusation] = Field(default_factory=list)
    deductions: list[Deduction] = Field(default_factory=list)
    # revealed cards held by nobody (undealt remainder)
    open_cards: list[str] = Field(default_factory=list)
    notes: str = ""
    solved_envelope: SolvedEnvelope = Field(default_factory=SolvedEnvelope)

    def player(self, player_id: str) -> Player | None:
        return next((p for p in self.players if p.id == player_id), None)

    def player_name(self, player_id: str | None) -> str:
        if player_id == ENVELOPE:
            return "Envelope"
        p = self.player(player_id) if player_id else None
        return p.name if p else "Unknown"


# ---------------------------------------------------------------------------
# Probability engine results
# ---------------------------------------------------------------------------


class CardProbability(BaseModel):
    card_name: str
    card_type: str
    envelope_probability: float = 0.0
    player_probabilities: dict[str, float] = Field(default_factory=dict)


ProbabilityMatrix = dict[str, CardProbability]


class CategoryEntropy(BaseModel):
    suspects: float = 0.0
    weapons: float = 0.0
    rooms: float = 0.0
    total: float = 0.0


class CategoryGuess(BaseModel):
    card: Optional[str] = None
    confidence: float = 0.0


class SolutionConfidence(BaseModel):
    suspect: CategoryGuess
    weapon: CategoryGuess
    room: CategoryGuess


class SuggestionOutcome(BaseModel):
    passed_player_ids: list[str] = Field(default_factory=list)
    shower_id: Optional[str] = None
    shown_card: Optional[str] = None
    probability: float = 0.0
    information_gain: float = 0.0


class CategoryImpact(BaseModel):
    suspect: float = 0.0
    weapon: float = 0.0
    room: float = 0.0


class SuggestionAnalysis(BaseModel):
    suspect: str
    weapon: str
    room: str
    expected_info_gain: float
    outcomes: list[SuggestionOutcome] = Field(default_factory=list)
    reasoning: str = ""
    category_impact: CategoryImpact = Field(default_factory=CategoryImpact)


class OptimalSuggestions(BaseModel):
    recommendations: list[SuggestionAnalysis] = Field(default_factory=list)
    current_entropy: CategoryEntropy
    best_entropy_reduction: float = 0.0


class AdvisorReply(BaseModel):
    response: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# API request models
# ---------------------------------------------------------------------------


class EventRequest(BaseModel):
    event: dict


class AnalyzeRequest(BaseModel):
    suspect: str
    weapon: str
    room: str


class AdvisorRequest(BaseModel):
    question: Optional[str] = None
