"""Strategy advisor backed by an external text-generation endpoint.

The advisor turns a snapshot of tracker state into a plain-text briefing,
sends it to an OpenAI-compatible chat completions API and hands the answer
back verbatim.  It never parses the reply into structured state, and every
failure is reported as a user-facing message instead of an exception.

Configuration via environment variables:
- ``LLM_API_URL``: Chat completions endpoint (default: OpenAI)
- ``LLM_API_KEY``: Bearer token for the API
- ``LLM_MODEL``: Model identifier (default: ``gpt-4o-mini``)
"""

import logging
import os
from typing import Optional

import httpx

from .cards import ROOMS, SUSPECTS, WEAPONS
from .models import ENVELOPE, AdvisorReply, CardState, TrackerState

logger = logging.getLogger(__name__)

RECENT_DEDUCTIONS = 15

_SYSTEM_PROMPT = """\
You are an expert Clue (Cluedo) game strategist. You have deep knowledge of:
- Deduction logic and constraint satisfaction
- Optimal suggestion strategies
- Reading opponent behavior and detecting bluffs
- Probability calculations for unknown cards

Your goal is to help the player WIN by providing sharp, actionable advice. \
Be concise but thorough. Focus on what matters most right now.

Rules reminder:
- 21 cards total: 6 suspects, 6 weapons, 9 rooms
- 3 cards in envelope (the solution): 1 suspect, 1 weapon, 1 room
- Remaining 18 cards dealt to players
- When suggesting, players must show ONE card if they have any of the 3 suggested
- If a player passes, they have NONE of the 3 suggested cards
- First to correctly accuse wins; wrong accusation = elimination\
"""

_DEFAULT_REQUEST = """\
Based on this game state, provide strategic advice:

1. RECOMMENDED SUGGESTION: What should I suggest on my next turn? Give the exact \
suspect, weapon, and room, with a brief explanation of WHY this combination \
maximizes information gain.

2. KEY INSIGHT: What's the single most important thing I should know right now?

3. THREAT ASSESSMENT: Is any opponent close to winning? What should I watch out for?

Be specific and actionable. No fluff.\
"""


# ---------------------------------------------------------------------------
# Prompt builder
# ---------------------------------------------------------------------------


def _cards_with(state: TrackerState, holder: str, card_state: CardState) -> list[str]:
    return [
        card for card, row in state.knowledge_matrix.items()
        if holder in row and row[holder].state == card_state
    ]


def _matrix_summary(state: TrackerState) -> list[str]:
    lines = []
    solved = _cards_with(state, ENVELOPE, CardState.ENVELOPE)
    if solved:
        lines.append(f"SOLVED ENVELOPE CARDS: {', '.join(solved)}")

    unknown = _cards_with(state, ENVELOPE, CardState.UNKNOWN)
    lines.append("")
    lines.append("POSSIBLE SOLUTION CANDIDATES:")
    for label, names in (("Suspects", SUSPECTS), ("Weapons", WEAPONS), ("Rooms", ROOMS)):
        still = [c for c in unknown if c in names]
        lines.append(
            f"  {label} still possible: "
            f"{', '.join(still) if still else 'NONE - already solved!'}"
        )

    lines.append("")
    lines.append("PLAYER CARD KNOWLEDGE:")
    for player in state.players:
        owned = _cards_with(state, player.id, CardState.OWNED)
        maybe = _cards_with(state, player.id, CardState.POTENTIALLY_OWNED)
        not_owned = _cards_with(state, player.id, CardState.NOT_OWNED)
        you = " (YOU)" if player.id == state.my_player_id else ""
        lines.append(f"  {player.name}{you}:")
        lines.append(f"    Confirmed owns: {', '.join(owned) if owned else 'None confirmed'}")
        if maybe:
            lines.append(f"    Possibly owns: {', '.join(maybe)}")
        lines.append(f"    Confirmed NOT owning: {len(not_owned)} cards")
    return lines


def _suggestion_history(state: TrackerState) -> str:
    if not state.suggestions:
        return "No suggestions recorded yet."
    entries = []
    for s in state.suggestions:
        text = (
            f"Turn {s.turn_number}: {state.player_name(s.suggester_id)} suggested "
            f'"{s.suspect} with {s.weapon} in {s.room}"'
        )
        if s.passed_player_ids:
            passed = ", ".join(state.player_name(pid) for pid in s.passed_player_ids)
            text += f"\n    Passed (don't have any): {passed}"
        if s.shower_id:
            text += f"\n    {state.player_name(s.shower_id)} showed a card"
            text += f": {s.shown_card}" if s.shown_card else " (unknown which one)"
        elif len(s.passed_player_ids) == len(state.players) - 1:
            text += "\n    NO ONE could show a card!"
        entries.append(text)
    return "\n\n".join(entries)


def _unresolved_links(state: TrackerState) -> str:
    links = [link for link in state.card_links if not link.resolved]
    if not links:
        return "No unresolved card links."
    return "\n".join(
        f"{state.player_name(link.player_id)} has ONE OF: "
        f"{' OR '.join(link.possible_cards)} (from suggestion)"
        for link in links
    )


def _recent_deductions(state: TrackerState) -> str:
    if not state.deductions:
        return "No deductions made yet."
    return "\n".join(f"- {d.description}" for d in state.deductions[-RECENT_DEDUCTIONS:])


def build_game_context(state: TrackerState, question: Optional[str] = None) -> str:
    """Render the tracker state as a briefing for the text-generation model."""
    me = state.player(state.my_player_id) if state.my_player_id else None
    order = " -> ".join(
        p.name + (" (YOU)" if p.id == state.my_player_id else "") for p in state.players
    )
    env = state.solved_envelope
    if env.complete:
        solution = f"SOLUTION FULLY DEDUCED: {env.suspect} with {env.weapon} in {env.room}!"
    else:
        solution = (
            f"PARTIAL SOLUTION: Suspect={env.suspect or '?'}, "
            f"Weapon={env.weapon or '?'}, Room={env.room or '?'}"
        )

    lines = [
        "=== CLUE GAME STATE ===",
        "",
        "GAME INFO:",
        f"- Current Turn: {state.current_turn}",
        f"- Number of Players: {len(state.players)}",
        f"- Your Player: {me.name if me else 'Not set'}",
        f"- Players in turn order: {order}",
        "",
        solution,
        "",
        *_matrix_summary(state),
        "",
        "UNRESOLVED CARD LINKS (one-of constraints):",
        _unresolved_links(state),
        "",
        "SUGGESTION HISTORY:",
        _suggestion_history(state),
        "",
        "RECENT DEDUCTIONS:",
        _recent_deductions(state),
    ]
    if state.notes:
        lines += ["", "PLAYER NOTES:", state.notes]

    lines += ["", "---", ""]
    if question:
        lines.append(f'The player asks: "{question}"')
        lines.append("")
        lines.append(
            "Provide a direct, helpful answer to their question based on the game state above."
        )
    else:
        lines.append(_DEFAULT_REQUEST)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class Advisor:
    """One-shot, stateless client for the advice endpoint."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.api_url = api_url or os.getenv(
            "LLM_API_URL", "https://api.openai.com/v1/chat/completions"
        )
        self.api_key = api_key if api_key is not None else os.getenv("LLM_API_KEY", "")
        self.model = model or os.getenv("LLM_MODEL", "gpt-4o-mini")
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def ask(
        self, state: TrackerState, question: Optional[str] = None
    ) -> AdvisorReply:
        if not self.api_key:
            logger.warning("[advisor] No LLM_API_KEY set; advice unavailable")
            return AdvisorReply(
                error="Advisor API key not configured. Please set LLM_API_KEY."
            )

        prompt = build_game_context(state, question)
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.7,
            "max_tokens": 1000,
        }

        logger.info(
            "[advisor] Sending request | game=%s | model=%s | prompt_length=%d",
            state.game_id, self.model, len(prompt),
        )
        logger.debug("[advisor] Prompt:\n%s", prompt)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
                content = data["choices"][0]["message"]["content"]
        except httpx.TimeoutException:
            logger.error("[advisor] Request timed out")
            return AdvisorReply(error="The advisor took too long to respond. Please try again.")
        except httpx.HTTPStatusError as exc:
            logger.error(
                "[advisor] HTTP error: %s %s",
                exc.response.status_code, exc.response.text[:200],
            )
            return AdvisorReply(
                error=f"Advisor request failed ({exc.response.status_code}). Please try again."
            )
        except httpx.HTTPError as exc:
            logger.error("[advisor] Request failed: %s", exc)
            return AdvisorReply(error="Could not reach the advisor. Please try again.")
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("[advisor] Malformed response: %s", exc)
            return AdvisorReply(error="The advisor returned an unreadable response.")

        logger.info("[advisor] Response received | length=%d", len(content or ""))
        return AdvisorReply(response=content or "No response generated.")
