"""
Illustrative games attached to repertoire positions.

A game is anchored to the position it was imported from through a
`[RepertoireFen "..."]` PGN header. Games without an anchor are matched by
move order against the navigation path instead.
"""

import io
import logging
from typing import Callable

import chess
import chess.pgn

import position_codec
from models import GameMetadata, ImportedGame, MoveDescriptor, MoveNode

logger = logging.getLogger(__name__)

ANCHOR_HEADER = "RepertoireFen"


def _read(pgn: str) -> chess.pgn.Game | None:
    return chess.pgn.read_game(io.StringIO(pgn))


def parse_pgn_moves(pgn: str) -> list[str]:
    """Mainline SAN moves of the first game in `pgn`."""
    game = _read(pgn)
    if game is None:
        return []
    if game.errors:
        logger.warning("PGN parsed with %d error(s): %s", len(game.errors), game.errors[0])
    board = game.board()
    moves = []
    for move in game.mainline_moves():
        moves.append(board.san(move))
        board.push(move)
    return moves


def extract_repertoire_fen(pgn: str) -> str | None:
    headers = chess.pgn.read_headers(io.StringIO(pgn))
    if headers is None:
        return None
    return headers.get(ANCHOR_HEADER)


def inject_repertoire_fen(pgn: str, fen: str) -> str:
    """Prefix an anchor header unless one is already present."""
    if f"[{ANCHOR_HEADER} " in pgn:
        return pgn
    return f'[{ANCHOR_HEADER} "{fen}"]\n{pgn}'


def split_pgn(text: str) -> list[str]:
    """Split a multi-game PGN download into one PGN string per game."""
    handle = io.StringIO(text)
    games = []
    while True:
        game = chess.pgn.read_game(handle)
        if game is None:
            break
        games.append(str(game))
    return games


def _rating(value: str | None) -> int | None:
    try:
        return int(value) if value else None
    except ValueError:
        return None


def game_from_pgn(pgn: str, repertoire_id: str, anchor_fen: str | None = None, game_id: str = "") -> ImportedGame:
    if anchor_fen:
        pgn = inject_repertoire_fen(pgn, anchor_fen)
    headers = chess.pgn.read_headers(io.StringIO(pgn)) or chess.pgn.Headers()
    return ImportedGame(
        id=game_id,
        repertoire_id=repertoire_id,
        white_name=headers.get("White", "Unknown"),
        black_name=headers.get("Black", "Unknown"),
        result=headers.get("Result", "*"),
        date=headers.get("Date", "Unknown"),
        pgn=pgn,
        white_rating=_rating(headers.get("WhiteElo")),
        black_rating=_rating(headers.get("BlackElo")),
        associated_fen=headers.get(ANCHOR_HEADER),
        moves=parse_pgn_moves(pgn),
    )


def metadata_for(game: ImportedGame) -> GameMetadata:
    return GameMetadata(
        white=game.white_name,
        black=game.black_name,
        result=game.result,
        date=game.date,
        pgn=game.pgn,
        id=game.id or None,
    )


def games_for_position(games: list[ImportedGame], fen: str, path: list[str]) -> list[ImportedGame]:
    """
    Games relevant to the displayed position.

    Anchored games match on exact FEN only. Unanchored games match when their
    moves start with `path`; at the start position every unanchored game
    matches.
    """
    matches = []
    for game in games:
        if game.associated_fen:
            if game.associated_fen == fen:
                matches.append(game)
            continue
        if not path or game.moves[: len(path)] == path:
            matches.append(game)
    return matches


def import_line(
    insert: Callable[[MoveNode, MoveDescriptor], tuple[MoveNode, bool]],
    start: MoveNode,
    game: ImportedGame,
) -> list[MoveNode]:
    """
    Replay a game into the tree from `start` (normally the root) using
    `insert`, which is MoveTree.insert_child or PersistenceBridge.insert_move.

    Moves already in the tree are followed, not duplicated. New nodes are
    tagged with the game before control returns to the event loop, so the
    create request carries the tag.
    """
    meta = metadata_for(game)
    nodes = []
    node = start
    for san in game.moves:
        descriptor = position_codec.parse_label(node.position, san)
        node, created = insert(node, descriptor)
        if created:
            node.source = "game"
            node.attached_game = meta
        nodes.append(node)
    return nodes
