"""Data models for the opening repertoire trainer."""

import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

import chess

Color = Literal["w", "b"]

ROOT_ID = "root"
TEMP_ID_PREFIX = "tmp-"


def generate_temp_id() -> str:
    """Local id for a node the store has not confirmed yet."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class MoveDescriptor:
    """A move as the rules engine sees it. `san` and `color` are filled in once applied."""

    from_square: str
    to_square: str
    promotion: str | None = None
    color: Color | None = None
    san: str = ""

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    @classmethod
    def from_uci(cls, uci: str, color: Color | None = None, san: str = "") -> "MoveDescriptor":
        return cls(
            from_square=uci[0:2],
            to_square=uci[2:4],
            promotion=uci[4:5] or None,
            color=color,
            san=san,
        )


@dataclass
class GameMetadata:
    """Illustrative game attached to a position."""

    white: str = "Unknown"
    black: str = "Unknown"
    result: str = "*"
    date: str = "Unknown"
    pgn: str = ""
    id: str | None = None


class MoveNode:
    """A position in the repertoire tree.

    `children[0]` is the main line; the parent link is a weak reference so the
    owning direction is always parent -> children.
    """

    def __init__(
        self,
        id: str,
        position: str,
        move: MoveDescriptor | None = None,
        parent: "MoveNode | None" = None,
        move_index: int = 0,
        annotation: str = "",
        source: str | None = None,
        attached_game: GameMetadata | None = None,
        pending_persist: bool = False,
    ):
        self.id = id
        self.position = position
        self.move = move
        self.children: list[MoveNode] = []
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self.move_index = move_index
        self.annotation = annotation
        self.source = source
        self.attached_game = attached_game
        self.pending_persist = pending_persist

    @property
    def parent(self) -> "MoveNode | None":
        return self._parent_ref() if self._parent_ref is not None else None

    @parent.setter
    def parent(self, node: "MoveNode | None") -> None:
        self._parent_ref = weakref.ref(node) if node is not None else None

    @property
    def label(self) -> str:
        return self.move.san if self.move else ""

    @property
    def color(self) -> Color | None:
        return self.move.color if self.move else None

    @property
    def is_root(self) -> bool:
        return self.move is None and self.parent is None

    def __repr__(self) -> str:
        return f"MoveNode(id={self.id!r}, label={self.label!r}, children={len(self.children)})"


def make_root() -> MoveNode:
    return MoveNode(id=ROOT_ID, position=chess.STARTING_FEN)


@dataclass
class MoveRecord:
    """Persisted form of a node, one row of the `moves` table."""

    repertoire_id: str
    fen: str
    san: str
    uci: str
    parent_id: str | None
    move_number: int
    color: Color
    comment: str = ""
    source: str | None = None
    metadata: dict | None = None
    id: str | None = None
    created_at: datetime | None = None


@dataclass
class OutcomeRecord:
    """Immutable log entry for one graded drill attempt."""

    repertoire_id: str | None
    fen: str
    expected_move: str
    played_move: str | None
    is_correct: bool
    points_delta: int
    created_at: datetime | None = None


@dataclass
class SessionStats:
    correct: int = 0
    errors: int = 0
    moves_left: int = 0


# (points below which the level applies, level name)
LEVELS = [
    (100, "Novice"),
    (500, "Basic Domain"),
    (2000, "Intermediate"),
    (5000, "Expert"),
]
TOP_LEVEL = "Master"


@dataclass
class TrainingTotals:
    """Lifetime drill results for one repertoire."""

    attempts: int = 0
    correct: int = 0
    points: int = 0
    last_played: datetime | None = None

    @property
    def accuracy(self) -> int:
        """Percentage of correct attempts, rounded."""
        if not self.attempts:
            return 0
        return int(100 * self.correct / self.attempts + 0.5)

    @property
    def level(self) -> str:
        for limit, name in LEVELS:
            if self.points < limit:
                return name
        return TOP_LEVEL


@dataclass
class ImportedGame:
    """Game stored alongside a repertoire, optionally anchored to a FEN."""

    id: str
    repertoire_id: str
    white_name: str = "Unknown"
    black_name: str = "Unknown"
    result: str = "*"
    date: str = "Unknown"
    pgn: str = ""
    white_rating: int | None = None
    black_rating: int | None = None
    associated_fen: str | None = None
    moves: list[str] = field(default_factory=list)
