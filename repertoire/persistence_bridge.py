"""
Tree mutation & persistence bridge.

Every edit is applied to the in-memory tree first and then mirrored to the
record store by a background task. Confirmations only ever upgrade a
temporary id to the durable one; failures are reported and never roll the
tree back. A later reload from the store is the point of reconciliation.
"""

import asyncio
import dataclasses
import logging
from typing import Callable

import position_codec
from errors import DuplicateSibling, IllegalMove, PersistenceFailure
from models import (
    GameMetadata,
    MoveDescriptor,
    MoveNode,
    MoveRecord,
    OutcomeRecord,
    make_root,
)
from move_tree import MoveTree
from store import MoveStore

logger = logging.getLogger(__name__)

COMMENT_DEBOUNCE_SECONDS = 0.8
OUTCOME_ATTEMPTS = 3
OUTCOME_RETRY_SECONDS = 0.5

_METADATA_FIELDS = {f.name for f in dataclasses.fields(GameMetadata)}


def record_to_node(record: MoveRecord) -> MoveNode:
    metadata = None
    if record.metadata:
        metadata = GameMetadata(**{k: v for k, v in record.metadata.items() if k in _METADATA_FIELDS})
    if record.uci:
        move = MoveDescriptor.from_uci(record.uci, color=record.color, san=record.san)
    else:
        move = MoveDescriptor(from_square="", to_square="", color=record.color, san=record.san)
    return MoveNode(
        id=record.id,
        position=record.fen,
        move=move,
        move_index=record.move_number,
        annotation=record.comment or "",
        source=record.source,
        attached_game=metadata,
    )


def build_tree(records: list[MoveRecord]) -> MoveTree:
    """
    Rebuild a tree from move records listed in creation order.

    Pass one creates every node keyed by its persisted id, pass two links
    each node under its parent (or under the root when it has none). Append
    order therefore equals creation order, which is what ranks main lines.
    """
    tree = MoveTree(make_root())
    nodes: dict[str, MoveNode] = {}
    for record in records:
        nodes[record.id] = record_to_node(record)

    for record in records:
        node = nodes[record.id]
        parent = tree.root if record.parent_id is None else nodes.get(record.parent_id)
        if parent is None:
            logger.warning("Dropping move %s (%s): parent %s not found", record.id, record.san, record.parent_id)
            continue
        if not node.move.from_square:
            # legacy rows without engine notation
            try:
                move = position_codec.parse_label(parent.position, record.san)
            except IllegalMove:
                logger.warning("Dropping move %s: %r is not legal after its parent", record.id, record.san)
                continue
            node.move = dataclasses.replace(move, color=record.color)
        try:
            tree.attach(node, parent)
        except DuplicateSibling:
            logger.warning("Dropping duplicate move %s (%s) under %s", record.id, record.san, parent.id)

    # re-index from the root so subtrees under dropped parents are left out
    return MoveTree(tree.root)


class PersistenceBridge:
    """Applies edits locally, then reconciles them with a MoveStore."""

    def __init__(
        self,
        store: MoveStore,
        repertoire_id: str,
        tree: MoveTree | None = None,
        on_error: Callable[[PersistenceFailure], None] | None = None,
        comment_debounce: float = COMMENT_DEBOUNCE_SECONDS,
    ):
        self.store = store
        self.repertoire_id = repertoire_id
        self.tree = tree if tree is not None else MoveTree()
        self.on_error = on_error
        self.comment_debounce = comment_debounce
        self._creates: dict[MoveNode, asyncio.Task] = {}
        self._last_create: asyncio.Task | None = None
        self._comment_timers: dict[MoveNode, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    # -----------------------------------------------
    # Load
    # -----------------------------------------------
    async def load(self) -> MoveTree:
        """Replace the in-memory tree with the store's copy."""
        try:
            records = await self.store.list_moves(self.repertoire_id)
        except Exception as e:
            raise PersistenceFailure("load", detail=str(e)) from e
        self.tree = build_tree(records)
        logger.info("Loaded %d moves for repertoire %s", len(self.tree), self.repertoire_id)
        return self.tree

    # -----------------------------------------------
    # Mutations
    # -----------------------------------------------
    def insert_move(self, parent: MoveNode, descriptor: MoveDescriptor) -> tuple[MoveNode, bool]:
        """Insert locally and schedule the create. Existing moves are returned as-is."""
        node, created = self.tree.insert_child(parent, descriptor)
        if created:
            task = self._spawn(self._persist_create(node, self._last_create))
            self._creates[node] = task
            self._last_create = task
        return node, created

    def delete_move(self, node: MoveNode) -> list[str]:
        """Delete a subtree locally and schedule the batch delete. Returns removed ids."""
        subtree = list(self.tree.iter_subtree(node))
        ids = self.tree.delete_subtree(node)
        for n in subtree:
            handle = self._comment_timers.pop(n, None)
            if handle is not None:
                handle.cancel()
        self._spawn(self._persist_delete(subtree))
        return ids

    def update_comment(self, node: MoveNode, text: str) -> None:
        """Set the annotation now; write it once edits pause for `comment_debounce`."""
        node.annotation = text
        handle = self._comment_timers.pop(node, None)
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._comment_timers[node] = loop.call_later(self.comment_debounce, self._fire_comment, node)

    def log_outcome(self, record: OutcomeRecord) -> None:
        if record.repertoire_id is None:
            record = dataclasses.replace(record, repertoire_id=self.repertoire_id)
        self._spawn(self._persist_outcome(record))

    def flush(self) -> None:
        """Write every debounced comment immediately."""
        for node in list(self._comment_timers):
            self._comment_timers.pop(node).cancel()
            self._spawn(self._persist_comment(node, node.annotation))

    async def drain(self) -> None:
        """Wait until no store call is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        self.flush()
        await self.drain()

    @property
    def pending(self) -> int:
        return len(self._tasks) + len(self._comment_timers)

    # -----------------------------------------------
    # Store calls
    # -----------------------------------------------
    def to_record(self, node: MoveNode) -> MoveRecord:
        parent = node.parent
        metadata = dataclasses.asdict(node.attached_game) if node.attached_game else None
        return MoveRecord(
            repertoire_id=self.repertoire_id,
            fen=node.position,
            san=node.label,
            uci=node.move.uci,
            parent_id=None if parent is None or parent is self.tree.root else parent.id,
            move_number=node.move_index,
            color=node.color,
            comment=node.annotation,
            source=node.source,
            metadata=metadata,
        )

    async def _persist_create(self, node: MoveNode, previous: asyncio.Task | None) -> bool:
        try:
            # creates reach the store one at a time, in insertion order, so
            # creation order matches sibling order on reload
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            parent = node.parent
            if parent is not None and parent.pending_persist:
                self._report(PersistenceFailure("create", node.id, "parent move was not saved"))
                return False

            try:
                new_id = await self.store.create_move(self.to_record(node))
            except Exception as e:
                self._report(PersistenceFailure("create", node.id, str(e)), e)
                return False

            self.tree.reassign_id(node, new_id)
            node.pending_persist = False
            return True
        finally:
            self._creates.pop(node, None)

    async def _persist_delete(self, nodes: list[MoveNode]) -> None:
        in_flight = [self._creates[n] for n in nodes if n in self._creates]
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        ids = [n.id for n in nodes if not n.pending_persist]
        if not ids:
            return
        try:
            await self.store.delete_moves(ids)
        except Exception as e:
            self._report(PersistenceFailure("delete", ids[0], str(e)), e)

    def _fire_comment(self, node: MoveNode) -> None:
        self._comment_timers.pop(node, None)
        self._spawn(self._persist_comment(node, node.annotation))

    async def _persist_comment(self, node: MoveNode, text: str) -> None:
        create = self._creates.get(node)
        if create is not None:
            await create
        if node not in self.tree:
            return
        if node.pending_persist:
            self._report(PersistenceFailure("comment", node.id, "move was not saved"))
            return
        try:
            await self.store.update_move_comment(node.id, text)
        except Exception as e:
            self._report(PersistenceFailure("comment", node.id, str(e)), e)

    async def _persist_outcome(self, record: OutcomeRecord) -> None:
        for attempt in range(1, OUTCOME_ATTEMPTS + 1):
            try:
                await self.store.create_outcome_log(record)
                return
            except Exception as e:
                if attempt == OUTCOME_ATTEMPTS:
                    self._report(PersistenceFailure("outcome log", detail=str(e)), e)
                    return
                await asyncio.sleep(OUTCOME_RETRY_SECONDS * attempt)

    # -----------------------------------------------
    # Helpers
    # -----------------------------------------------
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _report(self, failure: PersistenceFailure, cause: Exception | None = None) -> None:
        if cause is not None:
            failure.__cause__ = cause
        logger.warning("%s", failure)
        if self.on_error is not None:
            self.on_error(failure)
