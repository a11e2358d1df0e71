"""Per-repertoire working state: tree, bridge, navigation, drill, engine and games."""

import asyncio
import logging
from collections import deque

import chess.engine
import httpx

from analysis_feed import EngineLine
from drill import DrillSession
from engine_process import EngineProcess
from errors import PersistenceFailure
from explorer_client import fetch_user_games
from imported_games import game_from_pgn, games_for_position, import_line, split_pgn
from models import Color, ImportedGame, MoveDescriptor, MoveNode, TrainingTotals
from move_tree import MoveTree
from navigation import NavigationState, Navigator
from persistence_bridge import PersistenceBridge
from store import MoveStore

logger = logging.getLogger(__name__)


def to_color(value: str) -> Color:
    """Accept 'w'/'b' or 'white'/'black'."""
    value = value.lower()
    if value in ("w", "white"):
        return "w"
    if value in ("b", "black"):
        return "b"
    raise ValueError(f"Unknown colour {value!r}")


class RepertoireContext:
    """
    Everything one open repertoire needs, driven by the API.

    Editor navigation and editor moves leave an active drill. When an engine
    is attached it follows the navigated position: every navigate, play,
    delete and load restarts its analysis on the new position.
    """

    def __init__(
        self,
        repertoire_id: str,
        store: MoveStore,
        color: str = "w",
        tree: MoveTree | None = None,
        drill_options: dict | None = None,
    ):
        self.repertoire_id = repertoire_id
        self.store = store
        self.color = to_color(color)
        self.drill_options = drill_options or {}
        self.notifications: deque[str] = deque(maxlen=20)
        self.bridge = PersistenceBridge(store, repertoire_id, tree=tree, on_error=self._on_error)
        self.navigator = Navigator(self.bridge.tree, self.bridge)
        self.drill: DrillSession | None = None
        self.games: list[ImportedGame] = []
        self.engine: EngineProcess | None = None
        self._analysis_fen: str | None = None
        self._analysis_task: asyncio.Task | None = None

    @property
    def tree(self) -> MoveTree:
        return self.bridge.tree

    async def load(self) -> MoveTree:
        self.exit_drill()
        tree = await self.bridge.load()
        self.navigator = Navigator(tree, self.bridge)
        self._follow_position()
        return tree

    # -----------------------------------------------
    # Games
    # -----------------------------------------------
    async def load_games(self) -> list[ImportedGame]:
        try:
            games = await self.store.list_imported_games(self.repertoire_id)
        except Exception as e:
            raise PersistenceFailure("load games", detail=str(e)) from e
        for game in games:
            refreshed = game_from_pgn(game.pgn, self.repertoire_id, game_id=game.id)
            game.moves = refreshed.moves
            game.associated_fen = game.associated_fen or refreshed.associated_fen
        self.games = games
        return games

    async def attach_game(self, pgn: str) -> ImportedGame:
        """Anchor a game to the current position and store it."""
        game = game_from_pgn(pgn, self.repertoire_id, anchor_fen=self.navigator.position)
        self.games.insert(0, game)
        await self._store_game(game, "attach game")
        return game

    async def import_user_games(
        self,
        session: httpx.AsyncClient,
        username: str,
        max_games: int = 50,
        token: str | None = None,
    ) -> list[ImportedGame] | None:
        """
        Download a lichess user's recent games and anchor all of them to the
        current position. Returns None when lichess is rate limiting.
        """
        text = await fetch_user_games(username, session, max_games=max_games, token=token)
        if text is None:
            return None
        anchor = self.navigator.position
        games = [game_from_pgn(pgn, self.repertoire_id, anchor_fen=anchor) for pgn in split_pgn(text)]
        self.games[:0] = games
        for game in games:
            await self._store_game(game, "import games")
        logger.info("Imported %d games of %s into %s", len(games), username, self.repertoire_id)
        return games

    async def delete_games(self, ids: list[str]) -> int:
        """Remove stored games; the local list changes only once the store agrees."""
        if not ids:
            return 0
        try:
            await self.store.delete_imported_games(ids)
        except Exception as e:
            failure = PersistenceFailure("delete games", ids[0], str(e))
            self._on_error(failure)
            raise failure from e
        before = len(self.games)
        self.games = [g for g in self.games if g.id not in ids]
        return before - len(self.games)

    def add_game_line(self, game_id: str) -> list[MoveNode]:
        """Replay a stored game's moves into the tree from the start position."""
        game = next((g for g in self.games if g.id == game_id), None)
        if game is None:
            raise LookupError(f"Unknown game {game_id}")
        return import_line(self.bridge.insert_move, self.tree.root, game)

    def visible_games(self) -> list[ImportedGame]:
        state = self.navigator.state
        return games_for_position(self.games, state.position, state.path)

    async def _store_game(self, game: ImportedGame, operation: str) -> None:
        try:
            game.id = await self.store.create_imported_game(game)
        except Exception as e:
            failure = PersistenceFailure(operation, detail=str(e))
            self._on_error(failure)
            raise failure from e

    # -----------------------------------------------
    # Editing and navigation
    # -----------------------------------------------
    def node(self, node_id: str | None) -> MoveNode:
        node = self.tree.get(node_id)
        if node is None:
            raise LookupError(f"Unknown move {node_id}")
        return node

    def navigate(self, node_id: str | None) -> NavigationState:
        node = self.node(node_id)
        self.exit_drill()
        state = self.navigator.navigate(node)
        self._follow_position()
        return state

    def step(self, direction: str) -> NavigationState:
        """Move along the main line: start, back, forward or end."""
        moves = {
            "start": self.navigator.to_start,
            "back": self.navigator.back,
            "forward": self.navigator.forward,
            "end": self.navigator.to_end,
        }
        if direction not in moves:
            raise ValueError(f"Unknown direction {direction!r}")
        self.exit_drill()
        state = moves[direction]()
        self._follow_position()
        return state

    def play(self, descriptor: MoveDescriptor, from_node_id: str | None = None) -> tuple[NavigationState, bool]:
        """Play from `from_node_id` ("root" for the start), or from the current node."""
        start = self.node(from_node_id) if from_node_id is not None else None
        self.exit_drill()
        if start is not None:
            self.navigator.navigate(start)
        result = self.navigator.play(descriptor)
        self._follow_position()
        return result

    def delete(self, node_id: str) -> list[str]:
        node = self.node(node_id)
        parent = node.parent
        ids = self.bridge.delete_move(node)
        self.navigator.on_delete(parent)
        if self.drill is not None and not self.drill.on_tree:
            logger.info("Drill line %s was deleted; leaving the drill", node_id)
            self.exit_drill()
        self._follow_position()
        return ids

    def comment(self, node_id: str, text: str) -> MoveNode:
        node = self.node(node_id)
        self.bridge.update_comment(node, text)
        return node

    # -----------------------------------------------
    # Drill
    # -----------------------------------------------
    def start_drill(self, start_node_id: str | None = None, color: str | None = None) -> DrillSession:
        self.exit_drill()
        self.drill = DrillSession(
            self.node(start_node_id),
            to_color(color) if color else self.color,
            on_outcome=self.bridge.log_outcome,
            repertoire_id=self.repertoire_id,
            **self.drill_options,
        )
        return self.drill.start()

    def exit_drill(self) -> None:
        if self.drill is not None:
            self.drill.exit_session()
            self.drill = None

    async def training_stats(self) -> TrainingTotals:
        try:
            return await self.store.get_training_totals(self.repertoire_id)
        except Exception as e:
            raise PersistenceFailure("training stats", detail=str(e)) from e

    # -----------------------------------------------
    # Engine
    # -----------------------------------------------
    async def start_analysis(self, engine: EngineProcess | None = None) -> EngineProcess:
        """Attach and start an engine (once), then analyse the current position."""
        if self.engine is None:
            engine = engine or EngineProcess()
            await engine.start()
            self.engine = engine
        self._follow_position()
        return self.engine

    async def stop_analysis(self) -> None:
        engine, self.engine = self.engine, None
        task, self._analysis_task = self._analysis_task, None
        if task is not None:
            await task
        if engine is not None:
            await engine.close()

    def analysis(self) -> list[EngineLine]:
        """Ranked engine lines for the navigated position, best first."""
        if self.engine is None or self.engine.feed.fen != self.navigator.position:
            return []
        return self.engine.feed.ranked()

    def _follow_position(self) -> None:
        if self.engine is None:
            return
        self._analysis_fen = self.navigator.position
        if self._analysis_task is None or self._analysis_task.done():
            self._analysis_task = asyncio.get_running_loop().create_task(self._track_position(self.engine))

    async def _track_position(self, engine: EngineProcess) -> None:
        # positions that change while a restart is in flight are picked up by the next pass
        while engine is self.engine and engine.feed.fen != self._analysis_fen:
            fen = self._analysis_fen
            try:
                await engine.analyse(fen)
            except (RuntimeError, chess.engine.EngineError) as e:
                logger.warning("Analysis of %s failed: %s", fen, e)
                self.notifications.append(f"analysis failed: {e}")
                return

    async def close(self) -> None:
        self.exit_drill()
        await self.stop_analysis()
        await self.bridge.close()

    def _on_error(self, failure: PersistenceFailure) -> None:
        self.notifications.append(str(failure))
