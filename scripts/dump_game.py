#!/usr/bin/env python3
"""Dump Clue tracker sessions and event logs from Redis.

Usage:
    python scripts/dump_game.py --list-games
    python scripts/dump_game.py <GAME_ID>

Examples:
    python scripts/dump_game.py --list-games
    python scripts/dump_game.py ABC123
    python scripts/dump_game.py ABC123 --summary --probabilities
    REDIS_URL=redis://localhost:6379 python scripts/dump_game.py ABC123 --no-log
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

from tracker.models import CardState, TrackerState
from tracker.probability import (
    calculate_entropy,
    calculate_probabilities,
    get_solution_confidence,
)

DEFAULT_REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Dump state and event log for a Clue tracker session stored in Redis.",
    )
    parser.add_argument("game_id", nargs="?", help="Session ID (e.g. ABC123)")
    parser.add_argument(
        "--list-games",
        action="store_true",
        help="List all session IDs currently present in Redis",
    )
    parser.add_argument(
        "--redis-url",
        default=DEFAULT_REDIS_URL,
        help=f"Redis connection URL (default: {DEFAULT_REDIS_URL})",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        help="Omit the event log from tracker:{id}:log",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Include a per-player owned / not-owned summary of the knowledge matrix",
    )
    parser.add_argument(
        "--probabilities",
        action="store_true",
        help="Include entropy and best-guess confidence for the solution",
    )
    return parser.parse_args()


async def _get_json(redis_client: Any, key: str) -> Any | None:
    raw = await redis_client.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


async def _get_json_list(redis_client: Any, key: str) -> list[Any]:
    rows = await redis_client.lrange(key, 0, -1)
    out: list[Any] = []
    for row in rows:
        try:
            out.append(json.loads(row))
        except json.JSONDecodeError:
            out.append(row)
    return out


def _matrix_summary(state: TrackerState) -> dict[str, Any]:
    summary: dict[str, Any] = {}
    for player in state.players:
        owned, not_owned, maybe = [], [], []
        for card, row in state.knowledge_matrix.items():
            cell = row.get(player.id)
            if cell is None:
                continue
            if cell.state == CardState.OWNED:
                owned.append(card)
            elif cell.state == CardState.NOT_OWNED:
                not_owned.append(card)
            elif cell.state == CardState.POTENTIALLY_OWNED:
                maybe.append(card)
        summary[player.name] = {
            "card_count": player.card_count,
            "owned": owned,
            "potentially_owned": maybe,
            "not_owned_count": len(not_owned),
        }
    summary["open_links"] = [
        {"player": state.player_name(link.player_id), "one_of": link.possible_cards}
        for link in state.card_links
        if not link.resolved
    ]
    return summary


def _probability_summary(state: TrackerState) -> dict[str, Any]:
    probs = calculate_probabilities(state.knowledge_matrix, state.players, state.card_links)
    return {
        "entropy": calculate_entropy(probs).model_dump(),
        "confidence": get_solution_confidence(probs).model_dump(),
    }


async def dump_game(
    game_id: str,
    redis_url: str,
    show_log: bool,
    show_summary: bool,
    show_probabilities: bool,
) -> int:
    try:
        import redis.asyncio as aioredis
    except ImportError:
        print(
            "ERROR: 'redis' package is required. Install with: pip install redis",
            file=sys.stderr,
        )
        return 1

    redis_client = aioredis.from_url(redis_url, decode_responses=True)

    state_key = f"tracker:{game_id}"
    log_key = f"tracker:{game_id}:log"

    try:
        state = await _get_json(redis_client, state_key)
        log_entries = await _get_json_list(redis_client, log_key)

        if state is None and not log_entries:
            print(
                f"No tracker data found for game_id='{game_id}' at {redis_url}",
                file=sys.stderr,
            )
            return 1

        output: dict[str, Any] = {
            "game_id": game_id,
            "redis_url": redis_url,
            "keys": {"state": state_key, "log": log_key},
            "ttl_seconds": {
                "state": await redis_client.ttl(state_key),
                "log": await redis_client.ttl(log_key),
            },
            "state": state,
        }
        if show_log:
            output["log"] = log_entries

        if isinstance(state, dict) and (show_summary or show_probabilities):
            parsed = TrackerState.model_validate(state)
            if show_summary:
                output["summary"] = _matrix_summary(parsed)
            if show_probabilities:
                output["probabilities"] = _probability_summary(parsed)

        print(json.dumps(output, indent=2, sort_keys=True))
        return 0
    finally:
        await redis_client.aclose()


async def list_games(redis_url: str) -> int:
    try:
        import redis.asyncio as aioredis
    except ImportError:
        print(
            "ERROR: 'redis' package is required. Install with: pip install redis",
            file=sys.stderr,
        )
        return 1

    redis_client = aioredis.from_url(redis_url, decode_responses=True)
    try:
        game_ids: set[str] = set()
        async for key in redis_client.scan_iter(match="tracker:*"):
            parts = key.split(":")
            if len(parts) == 2 and parts[0] == "tracker":
                game_ids.add(parts[1])

        games: list[dict[str, Any]] = []
        for game_id in sorted(game_ids):
            state_key = f"tracker:{game_id}"
            state = await _get_json(redis_client, state_key)
            is_dict = isinstance(state, dict)
            games.append(
                {
                    "game_id": game_id,
                    "state_key": state_key,
                    "ttl": await redis_client.ttl(state_key),
                    "game_started": state.get("game_started") if is_dict else None,
                    "current_turn": state.get("current_turn") if is_dict else None,
                    "player_count": len(state.get("players", [])) if is_dict else None,
                    "solved_envelope": state.get("solved_envelope") if is_dict else None,
                }
            )

        print(
            json.dumps(
                {"redis_url": redis_url, "games": games}, indent=2, sort_keys=True
            )
        )
        return 0
    finally:
        await redis_client.aclose()


async def _main() -> int:
    args = _parse_args()
    if args.list_games:
        return await list_games(redis_url=args.redis_url)

    if not args.game_id:
        print(
            "ERROR: GAME_ID is required unless --list-games is used.", file=sys.stderr
        )
        return 2

    return await dump_game(
        game_id=args.game_id,
        redis_url=args.redis_url,
        show_log=not args.no_log,
        show_summary=args.summary,
        show_probabilities=args.probabilities,
    )


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
