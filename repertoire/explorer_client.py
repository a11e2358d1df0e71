"""
Lichess Opening Explorer client.

Position statistics from the masters or lichess databases, and master game
PGN downloads for attaching illustrative games to a position, and bulk
downloads of a player's own games.

  LICHESS_TOKEN=xxx  # optional, raises the rate limit
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Literal
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

MASTERS_API = "https://explorer.lichess.ovh/masters"
LICHESS_API = "https://explorer.lichess.ovh/lichess"
MASTER_GAME_API = "https://explorer.lichess.ovh/master/pgn"
USER_GAMES_API = "https://lichess.org/api/games/user"


@dataclass
class ExplorerSettings:
    source: Literal["masters", "lichess"] = "masters"
    speeds: list[str] = field(default_factory=lambda: ["blitz", "rapid", "classical"])
    ratings: list[int] = field(default_factory=lambda: [2000, 2200, 2500])


def _headers(token: str | None) -> dict | None:
    token = token or os.environ.get("LICHESS_TOKEN")
    return {"Authorization": f"Bearer {token}"} if token else None


def explorer_url(fen: str, settings: ExplorerSettings) -> str:
    if settings.source == "masters":
        return f"{MASTERS_API}?fen={quote(fen, safe='')}&moves=10"
    speeds = ",".join(settings.speeds)
    ratings = ",".join(str(r) for r in settings.ratings)
    return f"{LICHESS_API}?fen={quote(fen, safe='')}&moves=10&speeds={speeds}&ratings={ratings}"


async def fetch_opening_stats(
    fen: str,
    session: httpx.AsyncClient,
    settings: ExplorerSettings | None = None,
    token: str | None = None,
) -> dict | None:
    """Explorer data for `fen`; None when rate limited."""
    settings = settings or ExplorerSettings()
    resp = await session.get(explorer_url(fen, settings), headers=_headers(token))
    if resp.status_code == 429:
        logger.warning("Lichess explorer rate limit reached")
        return None
    resp.raise_for_status()
    return resp.json()


async def fetch_master_game(game_id: str, session: httpx.AsyncClient, token: str | None = None) -> str | None:
    """PGN text of a masters-database game, or None if it cannot be fetched."""
    if not game_id or game_id == "undefined":
        logger.warning("fetch_master_game called without a game id")
        return None
    resp = await session.get(f"{MASTER_GAME_API}/{game_id}", headers=_headers(token))
    if resp.status_code != 200:
        logger.warning("Master game %s unavailable (HTTP %d)", game_id, resp.status_code)
        return None
    return resp.text


async def fetch_user_games(
    username: str,
    session: httpx.AsyncClient,
    max_games: int = 50,
    token: str | None = None,
) -> str | None:
    """Recent games of a lichess user as one multi-game PGN; None when rate limited."""
    params = {"max": max_games, "tags": "true", "clocks": "false", "evals": "false", "opening": "true"}
    resp = await session.get(f"{USER_GAMES_API}/{username}", params=params, headers=_headers(token))
    if resp.status_code == 429:
        logger.warning("Lichess rate limit reached fetching games for %s", username)
        return None
    resp.raise_for_status()
    return resp.text


def move_totals(data: dict) -> list[tuple[str, int]]:
    """(san, game count) per explorer move, most played first."""
    totals = [
        (m.get("san", ""), m.get("white", 0) + m.get("draws", 0) + m.get("black", 0))
        for m in data.get("moves", [])
        if m.get("san")
    ]
    return sorted(totals, key=lambda t: -t[1])
