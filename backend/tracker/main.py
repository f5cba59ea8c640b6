import logging
import os
import random
import string
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .advisor import Advisor
from .cards import CardType, validate_card
from .game import ClueTracker, undealt_card_count
from .models import AdvisorRequest, AnalyzeRequest, EventRequest, TrackerState
from .probability import (
    analyze_suggestion,
    calculate_entropy,
    calculate_probabilities,
    find_optimal_suggestions,
    get_solution_confidence,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

redis_client: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_client
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")
    redis_client = aioredis.from_url(redis_url, decode_responses=True)
    yield
    await redis_client.aclose()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Clue Deduction Tracker", lifespan=lifespan)

_cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _new_id(length: int = 6) -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


def get_advisor() -> Advisor:
    return Advisor()


async def _require_state(game_id: str) -> TrackerState:
    tracker = ClueTracker(game_id, redis_client)
    state = await tracker.get_state()
    if state is None:
        raise HTTPException(status_code=404, detail="Game not found")
    return state


def _state_payload(state: TrackerState) -> dict:
    payload = state.model_dump(mode="json")
    payload["undealt_card_count"] = undealt_card_count(state)
    return payload


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.post("/games", status_code=201)
async def create_game():
    game_id = _new_id(6)
    tracker = ClueTracker(game_id, redis_client)
    await tracker.create()
    logger.info("Tracker session %s created", game_id)
    return {"game_id": game_id}


@app.get("/games/{game_id}")
async def get_game(game_id: str):
    state = await _require_state(game_id)
    return _state_payload(state)


@app.post("/games/{game_id}/events")
async def submit_event(game_id: str, req: EventRequest):
    await _require_state(game_id)
    tracker = ClueTracker(game_id, redis_client)
    try:
        state = await tracker.apply(req.event)
    except (ValueError, KeyError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _state_payload(state)


@app.get("/games/{game_id}/log")
async def get_log(game_id: str):
    await _require_state(game_id)
    tracker = ClueTracker(game_id, redis_client)
    return {"log": await tracker.get_log()}


@app.get("/games/{game_id}/probabilities")
async def get_probabilities(game_id: str):
    state = await _require_state(game_id)
    probs = calculate_probabilities(state.knowledge_matrix, state.players, state.card_links)
    return {
        "probabilities": {card: p.model_dump() for card, p in probs.items()},
        "entropy": calculate_entropy(probs).model_dump(),
        "confidence": get_solution_confidence(probs).model_dump(),
    }


@app.post("/games/{game_id}/analyze")
async def analyze(game_id: str, req: AnalyzeRequest):
    state = await _require_state(game_id)
    try:
        validate_card(req.suspect, CardType.SUSPECT)
        validate_card(req.weapon, CardType.WEAPON)
        validate_card(req.room, CardType.ROOM)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    probs = calculate_probabilities(state.knowledge_matrix, state.players, state.card_links)
    analysis = analyze_suggestion(
        req.suspect, req.weapon, req.room,
        state.my_player_id, state.players, state.knowledge_matrix, probs,
    )
    return analysis.model_dump()


@app.get("/games/{game_id}/optimal-suggestions")
async def optimal_suggestions(game_id: str, top_n: int = 5):
    state = await _require_state(game_id)
    if top_n < 1:
        raise HTTPException(status_code=400, detail="top_n must be at least 1")
    probs = calculate_probabilities(state.knowledge_matrix, state.players, state.card_links)
    result = find_optimal_suggestions(
        state.my_player_id, state.players, state.knowledge_matrix, probs, top_n=top_n
    )
    return result.model_dump()


@app.post("/games/{game_id}/advisor")
async def ask_advisor(game_id: str, req: AdvisorRequest):
    state = await _require_state(game_id)
    advisor = get_advisor()
    reply = await advisor.ask(state, req.question)
    if reply.error:
        status = 503 if not advisor.configured else 502
        raise HTTPException(status_code=status, detail=reply.error)
    return reply.model_dump()
