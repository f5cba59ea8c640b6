"""Probabilistic layer over the knowledge matrix.

Produces a best-effort, Bayesian-flavoured estimate of where every card is,
the remaining uncertainty per category, and an expected-information-gain
ranking of candidate suggestions.  Everything here is advisory: nothing in
this module mutates the knowledge matrix, and it never raises on partially
filled state.
"""

import itertools
import math
from typing import Optional

from .cards import (
    ALL_CARDS,
    DISTRIBUTED_CARDS,
    ROOMS,
    SUSPECTS,
    WEAPONS,
    CardType,
    card_type,
    cards_by_type,
)
from .matrix import cell_state
from .models import (
    ENVELOPE,
    CardLink,
    CardProbability,
    CardState,
    CategoryEntropy,
    CategoryGuess,
    CategoryImpact,
    KnowledgeMatrix,
    OptimalSuggestions,
    Player,
    ProbabilityMatrix,
    SolutionConfidence,
    SuggestionAnalysis,
    SuggestionOutcome,
)

LINK_BOOST = 1.5
ELIMINATION_BONUS = 0.3
# Heuristic weight for "showed a card but we couldn't see which".
UNKNOWN_SHOW_DISCOUNT = 0.5
OUTCOME_FLOOR = 0.001
HAND_SIZE_TOLERANCE = 0.1
CANDIDATES_PER_CATEGORY = 4


# ---------------------------------------------------------------------------
# Probability matrix
# ---------------------------------------------------------------------------


def _state(matrix: KnowledgeMatrix, card: str, holder: str) -> CardState:
    return cell_state(matrix, card, holder)


def _owned_count(matrix: KnowledgeMatrix, player_id: str) -> int:
    return sum(1 for c in ALL_CARDS if _state(matrix, c, player_id) == CardState.OWNED)


def _candidate_weights(
    candidates: list[Player], players: list[Player], matrix: KnowledgeMatrix
) -> dict[str, float]:
    """Weight each candidate holder by their free hand slots."""
    default_count = DISTRIBUTED_CARDS // len(players) if players else 0
    weights = {}
    for player in candidates:
        card_count = player.card_count or default_count
        weights[player.id] = max(0, card_count - _owned_count(matrix, player.id))
    return weights


def _envelope_probability(
    card: str, ctype: CardType, matrix: KnowledgeMatrix, players: list[Player]
) -> float:
    cards = cards_by_type(ctype)
    confirmed = next(
        (c for c in cards if _state(matrix, c, ENVELOPE) == CardState.ENVELOPE), None
    )
    if confirmed:
        return 1.0 if confirmed == card else 0.0

    possible = [
        c for c in cards
        if _state(matrix, c, ENVELOPE) != CardState.NOT_OWNED
        and not any(_state(matrix, c, p.id) == CardState.OWNED for p in players)
    ]
    if card not in possible:
        return 0.0

    base = 1 / len(possible)
    eliminated = sum(
        1 for p in players if _state(matrix, card, p.id) == CardState.NOT_OWNED
    )
    bonus = eliminated / len(players) * ELIMINATION_BONUS if players else 0.0
    return min(1.0, base + bonus)


def _distribute(
    prob: CardProbability,
    card: str,
    mass: float,
    players: list[Player],
    matrix: KnowledgeMatrix,
):
    candidates = [p for p in players if _state(matrix, card, p.id) != CardState.NOT_OWNED]
    weights = _candidate_weights(candidates, players, matrix)
    total_weight = sum(weights.values())
    for p in players:
        if _state(matrix, card, p.id) == CardState.NOT_OWNED or mass <= 0:
            prob.player_probabilities[p.id] = 0.0
        elif total_weight > 0:
            prob.player_probabilities[p.id] = mass * weights.get(p.id, 0) / total_weight
        else:
            prob.player_probabilities[p.id] = mass / len(candidates)


def _initial_probability(
    card: str, matrix: KnowledgeMatrix, players: list[Player]
) -> CardProbability:
    ctype = card_type(card)
    prob = CardProbability(card_name=card, card_type=ctype.value)
    envelope_state = _state(matrix, card, ENVELOPE)
    owner = next(
        (p.id for p in players if _state(matrix, card, p.id) == CardState.OWNED), None
    )

    if envelope_state == CardState.ENVELOPE:
        prob.envelope_probability = 1.0
        prob.player_probabilities = {p.id: 0.0 for p in players}
    elif owner is not None:
        prob.player_probabilities = {p.id: 1.0 if p.id == owner else 0.0 for p in players}
    elif envelope_state == CardState.NOT_OWNED:
        _distribute(prob, card, 1.0, players, matrix)
    else:
        prob.envelope_probability = _envelope_probability(card, ctype, matrix, players)
        _distribute(prob, card, 1.0 - prob.envelope_probability, players, matrix)
    return prob


def _apply_links(
    prob_matrix: ProbabilityMatrix, card_links: list[CardLink], matrix: KnowledgeMatrix
):
    """A player holds at least one of a link's candidates: boost them."""
    for link in card_links:
        if link.resolved:
            continue
        viable = [
            c for c in link.possible_cards
            if _state(matrix, c, link.player_id) != CardState.NOT_OWNED
        ]
        for card in viable:
            if card not in prob_matrix:
                continue
            probs = prob_matrix[card].player_probabilities
            probs[link.player_id] = min(1.0, probs.get(link.player_id, 0.0) * LINK_BOOST)


def _apply_hand_sizes(prob_matrix: ProbabilityMatrix, players: list[Player]):
    """Pull each player's expected hand size toward their known card count."""
    for player in players:
        if not player.card_count:
            continue
        expected = sum(
            prob_matrix[c].player_probabilities.get(player.id, 0.0) for c in ALL_CARDS
        )
        if expected <= 0 or abs(expected - player.card_count) <= HAND_SIZE_TOLERANCE:
            continue
        scale = player.card_count / expected
        for card in ALL_CARDS:
            probs = prob_matrix[card].player_probabilities
            current = probs.get(player.id, 0.0)
            if 0 < current < 1:
                probs[player.id] = min(1.0, max(0.0, current * scale))


def _normalize(prob_matrix: ProbabilityMatrix, players: list[Player]):
    for prob in prob_matrix.values():
        total = prob.envelope_probability + sum(
            prob.player_probabilities.get(p.id, 0.0) for p in players
        )
        if total <= 0:
            continue
        prob.envelope_probability /= total
        for p in players:
            prob.player_probabilities[p.id] = prob.player_probabilities.get(p.id, 0.0) / total


def calculate_probabilities(
    matrix: KnowledgeMatrix, players: list[Player], card_links: list[CardLink]
) -> ProbabilityMatrix:
    """Estimate, for every card, P(envelope) and P(player holds it).

    Cards ruled out for every holder (revealed, undealt cards) keep an
    all-zero distribution; every other card sums to 1.
    """
    prob_matrix = {card: _initial_probability(card, matrix, players) for card in ALL_CARDS}
    _apply_links(prob_matrix, card_links, matrix)
    _apply_hand_sizes(prob_matrix, players)
    _normalize(prob_matrix, players)
    return prob_matrix


# ---------------------------------------------------------------------------
# Entropy and confidence
# ---------------------------------------------------------------------------


def _category_entropy(prob_matrix: ProbabilityMatrix, cards: list[str]) -> float:
    """Shannon entropy of the category's envelope distribution, renormalised to 1."""
    weights = [
        prob_matrix[card].envelope_probability if card in prob_matrix else 0.0
        for card in cards
    ]
    total = sum(weights)
    if total <= 0:
        return 0.0
    entropy = 0.0
    for weight in weights:
        p = weight / total
        if 0 < p < 1:
            entropy -= p * math.log2(p)
    return entropy


def calculate_entropy(prob_matrix: ProbabilityMatrix) -> CategoryEntropy:
    suspects = _category_entropy(prob_matrix, SUSPECTS)
    weapons = _category_entropy(prob_matrix, WEAPONS)
    rooms = _category_entropy(prob_matrix, ROOMS)
    return CategoryEntropy(
        suspects=suspects, weapons=weapons, rooms=rooms,
        total=suspects + weapons + rooms,
    )


def _best_guess(prob_matrix: ProbabilityMatrix, cards: list[str]) -> CategoryGuess:
    guess = CategoryGuess()
    for card in cards:
        p = prob_matrix[card].envelope_probability if card in prob_matrix else 0.0
        if p > guess.confidence:
            guess = CategoryGuess(card=card, confidence=p)
    return guess


def get_solution_confidence(prob_matrix: ProbabilityMatrix) -> SolutionConfidence:
    return SolutionConfidence(
        suspect=_best_guess(prob_matrix, SUSPECTS),
        weapon=_best_guess(prob_matrix, WEAPONS),
        room=_best_guess(prob_matrix, ROOMS),
    )


def probability_level(probability: float) -> str:
    if probability >= 0.9:
        return "Extremely Likely"
    if probability >= 0.7:
        return "Very Likely"
    if probability >= 0.5:
        return "Likely"
    if probability >= 0.3:
        return "Possible"
    if probability >= 0.1:
        return "Unlikely"
    return "Very Unlikely"


# ---------------------------------------------------------------------------
# Suggestion analysis (expected information gain)
# ---------------------------------------------------------------------------


def _holds(prob_matrix: ProbabilityMatrix, card: str, player_id: str) -> float:
    if card not in prob_matrix:
        return 0.0
    return prob_matrix[card].player_probabilities.get(player_id, 0.0)


def _prob_none(prob_matrix: ProbabilityMatrix, cards: list[str], player_id: str) -> float:
    p = 1.0
    for card in cards:
        p *= 1 - _holds(prob_matrix, card, player_id)
    return p


def _responders(asker_id: Optional[str], players: list[Player]) -> list[Player]:
    """Players who would answer, in turn order after the asker."""
    idx = next((i for i, p in enumerate(players) if p.id == asker_id), None)
    if idx is None:
        return list(players)
    return players[idx + 1:] + players[:idx]


def _generate_outcomes(
    responders: list[Player], cards: list[str], prob_matrix: ProbabilityMatrix
) -> list[SuggestionOutcome]:
    outcomes: list[SuggestionOutcome] = []

    everyone_passes = 1.0
    for player in responders:
        everyone_passes *= _prob_none(prob_matrix, cards, player.id)
    if everyone_passes > OUTCOME_FLOOR:
        outcomes.append(
            SuggestionOutcome(
                passed_player_ids=[p.id for p in responders],
                probability=everyone_passes,
            )
        )

    reach = 1.0  # probability that everyone before this responder passed
    for i, player in enumerate(responders):
        passed = [p.id for p in responders[:i]]
        prob_none = _prob_none(prob_matrix, cards, player.id)
        prob_any = 1 - prob_none
        if prob_any > OUTCOME_FLOOR:
            for card in cards:
                card_prob = _holds(prob_matrix, card, player.id)
                if card_prob > OUTCOME_FLOOR:
                    outcomes.append(
                        SuggestionOutcome(
                            passed_player_ids=passed,
                            shower_id=player.id,
                            shown_card=card,
                            probability=reach * card_prob,
                        )
                    )
            outcomes.append(
                SuggestionOutcome(
                    passed_player_ids=passed,
                    shower_id=player.id,
                    probability=reach * prob_any * UNKNOWN_SHOW_DISCOUNT,
                )
            )
        reach *= prob_none

    total = sum(o.probability for o in outcomes)
    if total > 0:
        for o in outcomes:
            o.probability /= total
    return outcomes


def _outcome_gain(
    outcome: SuggestionOutcome,
    cards: list[str],
    prob_matrix: ProbabilityMatrix,
    responder_count: int,
) -> float:
    gain = 0.0

    for pid in outcome.passed_player_ids:
        for card in cards:
            p = _holds(prob_matrix, card, pid)
            if 0 < p < 1:
                gain += p * math.log2(1 / p)

    if outcome.shower_id and outcome.shown_card:
        p = _holds(prob_matrix, outcome.shown_card, outcome.shower_id)
        if 0 < p < 1:
            gain += math.log2(1 / p)
    elif outcome.shower_id:
        prob_none = _prob_none(prob_matrix, cards, outcome.shower_id)
        if 0 < prob_none < 1:
            gain += math.log2(1 / (1 - prob_none)) * UNKNOWN_SHOW_DISCOUNT

    if not outcome.shower_id and len(outcome.passed_player_ids) == responder_count:
        for card in cards:
            p = prob_matrix[card].envelope_probability if card in prob_matrix else 0.0
            if 0 < p < 1:
                gain += 0.5
    return gain


def _category_impact(cards: list[str], prob_matrix: ProbabilityMatrix) -> CategoryImpact:
    impact = CategoryImpact()
    for card in cards:
        ctype = card_type(card)
        if ctype is None:
            continue
        p = prob_matrix[card].envelope_probability if card in prob_matrix else 0.0
        setattr(impact, ctype.value, max(getattr(impact, ctype.value), p))
    return impact


def _reasoning(
    suspect: str,
    weapon: str,
    room: str,
    outcomes: list[SuggestionOutcome],
    expected_gain: float,
    prob_matrix: ProbabilityMatrix,
) -> str:
    reasons = []
    for card, label in ((suspect, "murderer"), (weapon, "weapon"), (room, "room")):
        pct = (prob_matrix[card].envelope_probability if card in prob_matrix else 0.0) * 100
        if pct > 30:
            reasons.append(f"{card} has {pct:.0f}% chance of being the {label}")

    if outcomes:
        likely = max(outcomes, key=lambda o: o.probability)
        if likely.shower_id and likely.shown_card:
            reasons.append(f"Most likely: Someone shows {likely.shown_card}")
        elif not likely.shower_id:
            reasons.append("Good chance of eliminations if everyone passes")

    if expected_gain > 1.5:
        reasons.append("HIGH information potential")
    elif expected_gain > 0.8:
        reasons.append("Moderate information gain expected")
    else:
        reasons.append("Limited new information expected")
    return ". ".join(reasons) + "."


def analyze_suggestion(
    suspect: str,
    weapon: str,
    room: str,
    asker_id: Optional[str],
    players: list[Player],
    matrix: KnowledgeMatrix,
    prob_matrix: ProbabilityMatrix,
) -> SuggestionAnalysis:
    """Expected information gain of asking ``suspect``/``weapon``/``room`` next."""
    cards = [suspect, weapon, room]
    responders = _responders(asker_id, players)
    outcomes = _generate_outcomes(responders, cards, prob_matrix)

    expected = 0.0
    for outcome in outcomes:
        outcome.information_gain = _outcome_gain(outcome, cards, prob_matrix, len(responders))
        expected += outcome.probability * outcome.information_gain

    return SuggestionAnalysis(
        suspect=suspect,
        weapon=weapon,
        room=room,
        expected_info_gain=expected,
        outcomes=outcomes,
        reasoning=_reasoning(suspect, weapon, room, outcomes, expected, prob_matrix),
        category_impact=_category_impact(cards, prob_matrix),
    )


def _high_value_cards(
    cards: list[str], prob_matrix: ProbabilityMatrix, count: int
) -> list[str]:
    """Cards whose envelope status is most uncertain, leaning toward likely ones."""

    def score(card: str) -> float:
        p = prob_matrix[card].envelope_probability if card in prob_matrix else 0.0
        uncertainty = 1 - abs(2 * p - 1)
        return uncertainty * 0.7 + p * 0.3

    return sorted(cards, key=score, reverse=True)[:count]


def _select_diverse(
    analyses: list[SuggestionAnalysis], count: int
) -> list[SuggestionAnalysis]:
    selected: list[SuggestionAnalysis] = []
    used: set[str] = set()
    for analysis in analyses:
        if len(selected) >= count:
            break
        cards = [analysis.suspect, analysis.weapon, analysis.room]
        overlap = sum(1 for c in cards if c in used)
        if overlap <= 1 or len(selected) < 2:
            selected.append(analysis)
            used.update(cards)

    for analysis in analyses:
        if len(selected) >= count:
            break
        if not any(a is analysis for a in selected):
            selected.append(analysis)
    return selected


def find_optimal_suggestions(
    asker_id: Optional[str],
    players: list[Player],
    matrix: KnowledgeMatrix,
    prob_matrix: ProbabilityMatrix,
    top_n: int = 5,
) -> OptimalSuggestions:
    suspects = _high_value_cards(SUSPECTS, prob_matrix, CANDIDATES_PER_CATEGORY)
    weapons = _high_value_cards(WEAPONS, prob_matrix, CANDIDATES_PER_CATEGORY)
    rooms = _high_value_cards(ROOMS, prob_matrix, CANDIDATES_PER_CATEGORY)

    analyses = [
        analyze_suggestion(s, w, r, asker_id, players, matrix, prob_matrix)
        for s, w, r in itertools.product(suspects, weapons, rooms)
    ]
    analyses.sort(key=lambda a: a.expected_info_gain, reverse=True)
    recommendations = _select_diverse(analyses, top_n)

    return OptimalSuggestions(
        recommendations=recommendations,
        current_entropy=calculate_entropy(prob_matrix),
        best_entropy_reduction=(
            recommendations[0].expected_info_gain if recommendations else 0.0
        ),
    )
