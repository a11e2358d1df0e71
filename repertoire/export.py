#!/usr/bin/env python3
"""
Export CLI: output a repertoire in various formats

Formats: pgn (main line + variations, comments kept), polyglot, json

Usage:
  python export.py --repertoire <uuid> --format pgn --output italian.pgn
  python export.py --repertoire <uuid> --format polyglot --output italian.bin
"""

import argparse
import json
import struct
import sys
from pathlib import Path

import chess
import chess.pgn
import chess.polyglot

sys.path.insert(0, str(Path(__file__).resolve().parent))
from db import get_connection, list_moves
from models import MoveNode
from move_tree import MoveTree
from persistence_bridge import build_tree

MAIN_LINE_WEIGHT = 2
VARIATION_WEIGHT = 1


def node_to_dict(node: MoveNode) -> dict:
    """Nested JSON form of a subtree; children keep main-line-first order."""
    out = {
        "id": node.id,
        "san": node.label,
        "fen": node.position,
        "uci": node.move.uci if node.move else None,
        "color": node.color,
        "move_number": node.move_index,
        "children": [node_to_dict(c) for c in node.children],
    }
    if node.annotation:
        out["comment"] = node.annotation
    if node.source:
        out["source"] = node.source
    if node.attached_game:
        out["game"] = {
            "white": node.attached_game.white,
            "black": node.attached_game.black,
            "result": node.attached_game.result,
            "date": node.attached_game.date,
        }
    if node.pending_persist:
        out["pending"] = True
    return out


def _add_pgn_node(pgn_node: chess.pgn.GameNode, board: chess.Board, node: MoveNode) -> None:
    """Recursively add moves and variations to a chess.pgn game node."""
    for i, child in enumerate(node.children):
        move = chess.Move.from_uci(child.move.uci)
        if i == 0:
            next_node = pgn_node.add_main_variation(move)
        else:
            next_node = pgn_node.add_variation(move)
        if child.annotation:
            next_node.comment = child.annotation

        board.push(move)
        _add_pgn_node(next_node, board, child)
        board.pop()


def tree_to_pgn(tree: MoveTree, event: str = "Repertoire") -> chess.pgn.Game:
    game = chess.pgn.Game.from_board(chess.Board(tree.root.position))
    game.headers["Event"] = event
    game.headers["Site"] = "Opening Repertoire"
    game.headers["Result"] = "*"
    _add_pgn_node(game, chess.Board(tree.root.position), tree.root)
    return game


def export_pgn(tree: MoveTree, output_path: Path, event: str = "Repertoire") -> int:
    """Write the whole repertoire as one PGN game. Returns moves written."""
    game = tree_to_pgn(tree, event)
    with open(output_path, "w", encoding="utf-8") as f:
        print(game, file=f, end="\n\n")
    return len(tree)


def collect_polyglot_entries(tree: MoveTree) -> list[tuple[int, chess.Move, int]]:
    """(zobrist key, move, weight) per tree edge; main lines outweigh variations."""
    entries = []
    for node in tree.iter_subtree(tree.root):
        if not node.children:
            continue
        board = chess.Board(node.position)
        key = chess.polyglot.zobrist_hash(board)
        for i, child in enumerate(node.children):
            weight = MAIN_LINE_WEIGHT if i == 0 else VARIATION_WEIGHT
            entries.append((key, chess.Move.from_uci(child.move.uci), weight))
    entries.sort(key=lambda e: e[0])
    return entries


def export_polyglot(tree: MoveTree, output_path: Path) -> int:
    """Write a Polyglot .bin opening book. Returns entries written."""
    entries = collect_polyglot_entries(tree)
    with open(output_path, "wb") as f:
        for key, move, weight in entries:
            move_int = (
                move.to_square
                | (move.from_square << 6)
                | ((move.promotion - 1 if move.promotion else 0) << 12)
            )
            f.write(struct.pack(">QHHI", key, move_int, weight, 0))
    return len(entries)


def export_json(tree: MoveTree, output_path: Path) -> int:
    data = {
        "rootFen": tree.root.position,
        "moves": [node_to_dict(c) for c in tree.root.children],
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return len(tree)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--repertoire", required=True, help="Repertoire id")
    parser.add_argument("--format", choices=["pgn", "polyglot", "json"], default="pgn")
    parser.add_argument("--output", "-o", required=True)
    args = parser.parse_args()

    with get_connection() as conn:
        records = list_moves(conn, args.repertoire)
    if not records:
        print(f"No moves found for repertoire {args.repertoire}.", file=sys.stderr)
        sys.exit(1)
    tree = build_tree(records)

    out = Path(args.output)
    if args.format == "pgn":
        n = export_pgn(tree, out)
        print(f"Exported {n} moves to {out}")
    elif args.format == "polyglot":
        n = export_polyglot(tree, out)
        print(f"Exported {n} book entries to {out}")
    elif args.format == "json":
        n = export_json(tree, out)
        print(f"Exported {n} moves to {out}")


if __name__ == "__main__":
    main()
