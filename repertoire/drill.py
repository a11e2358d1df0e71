"""
Drill state machine.

A drill walks the main line (children[0]) from a start node. The trainee's
move is graded against the main-line child only; variations are never
accepted. After a correct move the opponent's main-line reply is played
automatically after a short delay. Timers are cancellable; a callback that
fires after its session was exited or restarted is discarded.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable

import position_codec
from errors import InvalidOperation, StaleCursor
from models import Color, MoveNode, OutcomeRecord, SessionStats
from move_tree import MoveTree

logger = logging.getLogger(__name__)

CORRECT_POINTS = 10
INCORRECT_POINTS = -5
REPLY_DELAY = 0.5
RETRY_DELAY = 1.5


class Feedback(str, Enum):
    WAITING = "waiting"
    CORRECT = "correct"
    INCORRECT = "incorrect"
    COMPLETED = "completed"


TRANSITIONS: dict[Feedback, frozenset[Feedback]] = {
    Feedback.WAITING: frozenset({Feedback.CORRECT, Feedback.INCORRECT, Feedback.COMPLETED}),
    Feedback.CORRECT: frozenset({Feedback.WAITING, Feedback.COMPLETED}),
    Feedback.INCORRECT: frozenset({Feedback.WAITING}),
    # leaving COMPLETED only happens through next_line()/start()
    Feedback.COMPLETED: frozenset(),
}


def count_moves_left(node: MoveNode, color: Color) -> int:
    """Trainee moves on the main line below `node`."""
    count = 0
    current = node
    while current.children:
        current = current.children[0]
        if current.color == color:
            count += 1
    return count


def find_root(node: MoveNode) -> MoveNode:
    while node.parent is not None:
        node = node.parent
    return node


class DrillSession:
    """One training run over a repertoire line."""

    def __init__(
        self,
        start_node: MoveNode,
        color: Color,
        on_outcome: Callable[[OutcomeRecord], None] | None = None,
        repertoire_id: str | None = None,
        reply_delay: float = REPLY_DELAY,
        retry_delay: float = RETRY_DELAY,
    ):
        self.start_node = start_node
        self.root = find_root(start_node)
        self.color = color
        self.on_outcome = on_outcome
        self.repertoire_id = repertoire_id
        self.reply_delay = reply_delay
        self.retry_delay = retry_delay

        self.active = False
        self.cursor: MoveNode = start_node
        self.position = start_node.position
        self.last_move: tuple[str, str] | None = None
        self.feedback = Feedback.WAITING
        self.stats = SessionStats()
        self._handle: asyncio.TimerHandle | None = None
        self._generation = 0

    # -----------------------------------------------
    # Lifecycle
    # -----------------------------------------------
    def start(self) -> "DrillSession":
        self._cancel_timer()
        self._generation += 1
        self.active = True
        self.cursor = self.start_node
        self.position = self.start_node.position
        self.last_move = None
        self.feedback = Feedback.WAITING
        self.stats = SessionStats(moves_left=count_moves_left(self.start_node, self.color))

        if not self.cursor.children:
            self._set(Feedback.COMPLETED)
        elif position_codec.side_to_move(self.position) != self.color:
            # opponent opens the line
            self._schedule(self.reply_delay, self._play_reply)
        return self

    def exit_session(self) -> None:
        self._cancel_timer()
        self._generation += 1
        self.active = False

    def next_line(self) -> "DrillSession":
        """From `completed`, start over at the root with fresh stats."""
        if self.feedback is not Feedback.COMPLETED:
            raise InvalidOperation(f"next_line is only available when completed, not {self.feedback.value}")
        self.start_node = self.root
        return self.start()

    @property
    def awaiting_reply(self) -> bool:
        return self._handle is not None

    @property
    def on_tree(self) -> bool:
        """False once the cursor's line was deleted from under the session."""
        node = self.cursor
        while node.parent is not None:
            node = node.parent
        return node is self.root

    @property
    def expected_label(self) -> str | None:
        nxt = MoveTree.main_line(self.cursor)
        return nxt.label if nxt is not None else None

    # -----------------------------------------------
    # Grading
    # -----------------------------------------------
    def submit_move(self, label: str) -> Feedback | None:
        """
        Grade `label` from the current position.

        Returns the new feedback, or None when the session is not accepting
        input (not waiting, reply pending, or exited). Raises IllegalMove for a
        move the rules engine rejects; state is untouched in that case.
        """
        if not self.active or self.feedback is not Feedback.WAITING or self._handle is not None:
            logger.debug("Ignoring move %s while %s", label, self.feedback.value)
            return None
        if not self.on_tree:
            logger.debug("Ignoring move %s: %s", label, StaleCursor(f"{self.cursor.id} was deleted"))
            self.exit_session()
            return None

        expected = MoveTree.main_line(self.cursor)
        if expected is None:
            # line vanished under us (e.g. deleted mid-session)
            self._set(Feedback.COMPLETED)
            return self.feedback

        played = position_codec.parse_label(self.position, label).san
        if played == expected.label:
            self._emit(expected.label, played, True, CORRECT_POINTS)
            self.stats.correct += 1
            self.stats.moves_left = max(0, self.stats.moves_left - 1)
            self._advance(expected)
            self._set(Feedback.CORRECT)
            if not expected.children:
                self._set(Feedback.COMPLETED)
            else:
                self._schedule(self.reply_delay, self._play_reply)
        else:
            self._emit(expected.label, played, False, INCORRECT_POINTS)
            self.stats.errors += 1
            self._set(Feedback.INCORRECT)
            self._schedule(self.retry_delay, self._clear_incorrect)
        return self.feedback

    # -----------------------------------------------
    # Timers
    # -----------------------------------------------
    def _play_reply(self, generation: int) -> None:
        if not self._fresh(generation):
            return
        self._handle = None
        reply = MoveTree.main_line(self.cursor)
        if reply is None:
            self._set(Feedback.COMPLETED)
            return
        self._advance(reply)
        if not reply.children:
            self._set(Feedback.COMPLETED)
        elif self.feedback is not Feedback.WAITING:
            self._set(Feedback.WAITING)

    def _clear_incorrect(self, generation: int) -> None:
        if not self._fresh(generation):
            return
        self._handle = None
        self._set(Feedback.WAITING)

    def _fresh(self, generation: int) -> bool:
        if generation != self._generation or not self.active:
            logger.debug("Discarding drill callback: %s", StaleCursor(f"generation {generation}"))
            return False
        if not self.on_tree:
            logger.debug("Discarding drill callback: %s", StaleCursor(f"{self.cursor.id} was deleted"))
            self.exit_session()
            return False
        return True

    def _schedule(self, delay: float, callback) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, callback, self._generation)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    # -----------------------------------------------
    # Helpers
    # -----------------------------------------------
    def _advance(self, node: MoveNode) -> None:
        self.cursor = node
        self.position = node.position
        self.last_move = (node.move.from_square, node.move.to_square)

    def _set(self, feedback: Feedback) -> None:
        if feedback not in TRANSITIONS[self.feedback]:
            raise InvalidOperation(f"{self.feedback.value} -> {feedback.value} is not a drill transition")
        self.feedback = feedback

    def _emit(self, expected: str, played: str | None, is_correct: bool, points: int) -> None:
        if self.on_outcome is None:
            return
        record = OutcomeRecord(
            repertoire_id=self.repertoire_id,
            fen=self.position,
            expected_move=expected,
            played_move=played,
            is_correct=is_correct,
            points_delta=points,
        )
        try:
            self.on_outcome(record)
        except Exception:
            logger.exception("Outcome sink failed for %s", expected)
