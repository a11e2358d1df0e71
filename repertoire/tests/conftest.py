"""Pytest configuration."""

import asyncio
import dataclasses
import os
import sys
import uuid
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from analysis_feed import AnalysisFeed
from models import ImportedGame, MoveRecord, OutcomeRecord, TrainingTotals


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: mark test as requiring a live database (skipped in CI by default)"
    )


os.environ.setdefault("DATABASE_URL", "postgresql://localhost:5432/repertoire?user=postgres&password=postgres")


class FakeStore:
    """In-memory MoveStore. Operations named in `fail_on` raise ConnectionError."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.fail_on: set[str] = set()
        self.moves: list[MoveRecord] = []
        self.deleted: list[list[str]] = []
        self.comments: list[tuple[str, str]] = []
        self.outcomes: list[OutcomeRecord] = []
        self.games: list[ImportedGame] = []
        self.calls: dict[str, int] = {}

    async def _enter(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if op in self.fail_on:
            raise ConnectionError(f"{op} unavailable")

    async def list_moves(self, repertoire_id):
        await self._enter("list_moves")
        return [m for m in self.moves if m.repertoire_id == repertoire_id]

    async def create_move(self, record):
        await self._enter("create_move")
        new_id = str(uuid.uuid4())
        self.moves.append(dataclasses.replace(record, id=new_id))
        return new_id

    async def delete_moves(self, ids):
        await self._enter("delete_moves")
        self.deleted.append(list(ids))
        self.moves = [m for m in self.moves if m.id not in ids]

    async def update_move_comment(self, move_id, text):
        await self._enter("update_move_comment")
        self.comments.append((move_id, text))
        for m in self.moves:
            if m.id == move_id:
                m.comment = text

    async def create_outcome_log(self, record):
        await self._enter("create_outcome_log")
        self.outcomes.append(record)

    async def get_training_totals(self, repertoire_id):
        await self._enter("get_training_totals")
        logs = [o for o in self.outcomes if o.repertoire_id == repertoire_id]
        return TrainingTotals(
            attempts=len(logs),
            correct=sum(1 for o in logs if o.is_correct),
            points=sum(o.points_delta for o in logs),
        )

    async def list_imported_games(self, repertoire_id):
        await self._enter("list_imported_games")
        return [g for g in self.games if g.repertoire_id == repertoire_id]

    async def create_imported_game(self, game):
        await self._enter("create_imported_game")
        game_id = str(uuid.uuid4())
        self.games.append(dataclasses.replace(game, id=game_id))
        return game_id

    async def delete_imported_games(self, ids):
        await self._enter("delete_imported_games")
        self.games = [g for g in self.games if g.id not in ids]


class FakeEngine:
    """EngineProcess stand-in that records the positions it was asked about."""

    def __init__(self):
        self.feed = AnalysisFeed()
        self.analysed: list[str] = []
        self.running = False
        self.multipv = 3

    async def start(self):
        self.running = True

    async def analyse(self, fen):
        self.analysed.append(fen)
        self.feed.set_position(fen)
        self.feed.restart()

    async def close(self):
        self.running = False


@pytest.fixture
def store():
    return FakeStore()
