"""
Record store contract and its PostgreSQL implementation.

The in-memory tree never waits on these calls; the persistence bridge runs
them as background tasks on the event loop. Blocking psycopg work is pushed
to a worker thread so the loop stays responsive.
"""

import asyncio
import os
from dataclasses import asdict
from typing import Protocol

import db
from models import ImportedGame, MoveRecord, OutcomeRecord, TrainingTotals


class MoveStore(Protocol):
    async def list_moves(self, repertoire_id: str) -> list[MoveRecord]: ...

    async def create_move(self, record: MoveRecord) -> str: ...

    async def delete_moves(self, ids: list[str]) -> None: ...

    async def update_move_comment(self, move_id: str, text: str) -> None: ...

    async def create_outcome_log(self, record: OutcomeRecord) -> None: ...

    async def get_training_totals(self, repertoire_id: str) -> TrainingTotals: ...

    async def list_imported_games(self, repertoire_id: str) -> list[ImportedGame]: ...

    async def create_imported_game(self, game: ImportedGame) -> str: ...

    async def delete_imported_games(self, ids: list[str]) -> None: ...


def outcome_queue_enabled() -> bool:
    return os.environ.get("OUTCOME_QUEUE", "0") == "1"


class PostgresMoveStore:
    """MoveStore over `db.py`; one short-lived connection per call."""

    def __init__(self, queue_outcomes: bool | None = None):
        self.queue_outcomes = outcome_queue_enabled() if queue_outcomes is None else queue_outcomes

    @staticmethod
    def _run(fn, *args):
        def call():
            with db.get_connection() as conn:
                return fn(conn, *args)

        return asyncio.to_thread(call)

    async def list_moves(self, repertoire_id: str) -> list[MoveRecord]:
        return await self._run(db.list_moves, repertoire_id)

    async def create_move(self, record: MoveRecord) -> str:
        return await self._run(db.insert_move, record)

    async def delete_moves(self, ids: list[str]) -> None:
        await self._run(db.delete_moves, ids)

    async def update_move_comment(self, move_id: str, text: str) -> None:
        await self._run(db.update_move_comment, move_id, text)

    async def create_outcome_log(self, record: OutcomeRecord) -> None:
        if self.queue_outcomes:
            from celery_app import record_outcome_task

            payload = asdict(record)
            payload.pop("created_at", None)
            await asyncio.to_thread(record_outcome_task.delay, payload)
            return
        await self._run(db.insert_training_log, record)

    async def get_training_totals(self, repertoire_id: str) -> TrainingTotals:
        return await self._run(db.get_training_totals, repertoire_id)

    async def list_imported_games(self, repertoire_id: str) -> list[ImportedGame]:
        return await self._run(db.list_imported_games, repertoire_id)

    async def create_imported_game(self, game: ImportedGame) -> str:
        return await self._run(db.insert_imported_game, game)

    async def delete_imported_games(self, ids: list[str]) -> None:
        await self._run(db.delete_imported_games, ids)
