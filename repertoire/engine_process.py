"""
Live engine analysis with python-chess.

Runs a UCI engine through `chess.engine` and feeds every info it reports
into an AnalysisFeed. When the analysed position changes the running
analysis is stopped and drained before the feed is switched, so nothing
from the old position leaks into the new one.

Usage:
  STOCKFISH_PATH=/usr/bin/stockfish ENGINE_MULTIPV=3
"""

import asyncio
import logging
import os
from typing import Callable

import chess
import chess.engine

from analysis_feed import AnalysisFeed, EngineLine

logger = logging.getLogger(__name__)


class EngineProcess:
    def __init__(
        self,
        path: str | None = None,
        multipv: int | None = None,
        on_line: Callable[[EngineLine], None] | None = None,
    ):
        self.path = path or os.environ.get("STOCKFISH_PATH", "stockfish")
        self.multipv = multipv or int(os.environ.get("ENGINE_MULTIPV", "3"))
        self.on_line = on_line
        self.feed = AnalysisFeed()
        self._transport: asyncio.SubprocessTransport | None = None
        self._engine: chess.engine.UciProtocol | None = None
        self._analysis: chess.engine.AnalysisResult | None = None
        self._reader: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._engine is not None

    @property
    def searching(self) -> bool:
        return self._analysis is not None

    async def start(self) -> None:
        try:
            self._transport, self._engine = await chess.engine.popen_uci(self.path)
        except FileNotFoundError as e:
            raise RuntimeError(f"Engine not found at {self.path!r}. Install it or set STOCKFISH_PATH.") from e
        logger.info("Engine %s started", self._engine.id.get("name", self.path))

    async def analyse(self, fen: str) -> None:
        """(Re)start an infinite search on `fen`, discarding previous lines."""
        if self._engine is None:
            raise RuntimeError("Engine process is not running")
        await self._stop_search()
        self.feed.set_position(fen)
        self.feed.restart()
        self._analysis = await self._engine.analysis(chess.Board(fen), multipv=self.multipv)
        self._reader = asyncio.create_task(self._read_infos(self._analysis))

    async def stop(self) -> None:
        await self._stop_search()

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._stop_search()
        try:
            await self._engine.quit()
        except chess.engine.EngineTerminatedError:
            logger.info("Engine already exited")
        self._engine = None
        self._transport = None

    async def _stop_search(self) -> None:
        if self._analysis is None:
            return
        self._analysis.stop()
        reader = self._reader
        self._analysis = None
        self._reader = None
        if reader is not None:
            await reader

    async def _read_infos(self, analysis: chess.engine.AnalysisResult) -> None:
        try:
            async for info in analysis:
                if analysis is not self._analysis:
                    # stopped; the rest belongs to the previous position
                    continue
                self.handle_info(info)
        except chess.engine.EngineError:
            logger.exception("Engine analysis failed")

    def handle_info(self, info: dict) -> EngineLine | None:
        record = self.feed.feed_info(info)
        if record is not None and self.on_line is not None:
            try:
                self.on_line(record)
            except Exception:
                logger.exception("Analysis listener failed for rank %d", record.rank)
        return record
