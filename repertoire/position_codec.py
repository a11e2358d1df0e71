"""Position codec: move descriptors <-> FEN strings, backed by python-chess."""

from dataclasses import dataclass

import chess

from errors import IllegalMove
from models import Color, MoveDescriptor, MoveNode


@dataclass(frozen=True)
class MoveResult:
    fen: str
    san: str
    color: Color
    uci: str

    def descriptor(self) -> MoveDescriptor:
        return MoveDescriptor.from_uci(self.uci, color=self.color, san=self.san)


@dataclass(frozen=True)
class GameStatus:
    fen: str
    turn: Color
    in_check: bool
    in_checkmate: bool
    in_draw: bool
    is_game_over: bool


def _color(turn: chess.Color) -> Color:
    return "w" if turn == chess.WHITE else "b"


def _board(fen: str) -> chess.Board:
    try:
        return chess.Board(fen)
    except ValueError as e:
        raise IllegalMove(fen, "") from e


def _to_move(board: chess.Board, descriptor: MoveDescriptor) -> chess.Move:
    try:
        move = chess.Move.from_uci(descriptor.uci)
    except chess.InvalidMoveError as e:
        raise IllegalMove(board.fen(), descriptor.uci) from e
    if move not in board.legal_moves:
        raise IllegalMove(board.fen(), descriptor.uci)
    return move


def apply_move(fen: str, descriptor: MoveDescriptor) -> MoveResult:
    """Play `descriptor` on `fen`. Raises IllegalMove if the rules engine rejects it."""
    board = _board(fen)
    move = _to_move(board, descriptor)
    color = _color(board.turn)
    san = board.san(move)
    board.push(move)
    return MoveResult(fen=board.fen(), san=san, color=color, uci=move.uci())


def parse_label(fen: str, san: str) -> MoveDescriptor:
    """Resolve a SAN label in `fen` to a full descriptor."""
    board = _board(fen)
    try:
        move = board.parse_san(san)
    except ValueError as e:
        # InvalidMoveError, IllegalMoveError and AmbiguousMoveError are all ValueErrors
        raise IllegalMove(fen, san) from e
    return MoveDescriptor.from_uci(move.uci(), color=_color(board.turn), san=board.san(move))


def descriptor_from_uci(fen: str, uci: str) -> MoveDescriptor:
    """Engine notation (e2e4) to a descriptor carrying SAN and colour."""
    return apply_move(fen, MoveDescriptor.from_uci(uci)).descriptor()


def legal_moves(fen: str, square: str | None = None) -> list[MoveDescriptor]:
    board = _board(fen)
    moves = board.legal_moves
    if square is not None:
        sq = chess.parse_square(square)
        moves = (m for m in board.legal_moves if m.from_square == sq)
    color = _color(board.turn)
    return [MoveDescriptor.from_uci(m.uci(), color=color, san=board.san(m)) for m in moves]


def is_check(fen: str) -> bool:
    return _board(fen).is_check()


def is_checkmate(fen: str) -> bool:
    return _board(fen).is_checkmate()


def is_draw(fen: str) -> bool:
    board = _board(fen)
    return (
        board.is_stalemate()
        or board.is_insufficient_material()
        or board.is_seventyfive_moves()
        or board.is_fivefold_repetition()
        or board.can_claim_draw()
    )


def game_status(fen: str) -> GameStatus:
    board = _board(fen)
    return GameStatus(
        fen=board.fen(),
        turn=_color(board.turn),
        in_check=board.is_check(),
        in_checkmate=board.is_checkmate(),
        in_draw=is_draw(fen),
        is_game_over=board.is_game_over(),
    )


def side_to_move(fen: str) -> Color:
    return _color(_board(fen).turn)


def path_to(node: MoveNode) -> list[MoveNode]:
    """Nodes from the first move down to `node`, root excluded."""
    path = []
    current = node
    while current is not None and current.parent is not None:
        path.append(current)
        current = current.parent
    path.reverse()
    return path


def replay_path(root: MoveNode, node: MoveNode) -> str:
    """Replay every move from `root` to `node` and return the resulting FEN."""
    fen = root.position
    for step in path_to(node):
        fen = apply_move(fen, step.move).fen
    return fen
