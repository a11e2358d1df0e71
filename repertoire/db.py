"""Database layer for the opening repertoire trainer."""

import os
from contextlib import contextmanager

import psycopg
from psycopg.types.json import Jsonb

from models import ImportedGame, MoveRecord, OutcomeRecord, TrainingTotals

MOVE_COLUMNS = """
    id, repertoire_id, fen, san, uci, parent_id, move_number, color, comment,
    source, metadata, created_at
"""


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.environ.get(
        "DATABASE_URL",
        "postgresql://localhost:5432/repertoire?user=postgres&password=postgres",
    )


@contextmanager
def get_connection():
    """Context manager for database connections."""
    conn = psycopg.connect(get_connection_string())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_move(r) -> MoveRecord:
    return MoveRecord(
        id=str(r[0]),
        repertoire_id=str(r[1]),
        fen=r[2],
        san=r[3],
        uci=r[4] or "",
        parent_id=str(r[5]) if r[5] else None,
        move_number=r[6],
        color=r[7],
        comment=r[8] or "",
        source=r[9],
        metadata=r[10],
        created_at=r[11],
    )


def list_moves(conn: psycopg.Connection, repertoire_id: str) -> list[MoveRecord]:
    """All moves of a repertoire in creation order. The order decides main lines."""
    with conn.cursor() as cur:
        cur.execute(
            f"""
            SELECT {MOVE_COLUMNS}
            FROM moves WHERE repertoire_id = %s
            ORDER BY created_at ASC, seq ASC
            """,
            (repertoire_id,),
        )
        return [_row_to_move(r) for r in cur.fetchall()]


def insert_move(conn: psycopg.Connection, record: MoveRecord) -> str:
    """Insert a move row and return the store-assigned id."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO moves (
                repertoire_id, fen, san, uci, parent_id, move_number, color, comment,
                source, metadata
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                record.repertoire_id,
                record.fen,
                record.san,
                record.uci,
                record.parent_id,
                record.move_number,
                record.color,
                record.comment or "",
                record.source,
                Jsonb(record.metadata) if record.metadata is not None else None,
            ),
        )
        row = cur.fetchone()
    if not row:
        raise RuntimeError("insert_move failed to return row")
    return str(row[0])


def delete_moves(conn: psycopg.Connection, ids: list[str]) -> int:
    """Batch delete by id. Returns rows removed."""
    if not ids:
        return 0
    with conn.cursor() as cur:
        cur.execute("DELETE FROM moves WHERE id = ANY(%s::uuid[])", (list(ids),))
        return cur.rowcount


def update_move_comment(conn: psycopg.Connection, move_id: str, text: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE moves SET comment = %s, updated_at = NOW() WHERE id = %s",
            (text, move_id),
        )


def insert_training_log(conn: psycopg.Connection, record: OutcomeRecord) -> None:
    """Record one graded drill attempt."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO training_logs (
                repertoire_id, fen, expected_move, played_move, is_correct, points_delta
            ) VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (
                record.repertoire_id,
                record.fen,
                record.expected_move,
                record.played_move,
                record.is_correct,
                record.points_delta,
            ),
        )


def get_training_totals(conn: psycopg.Connection, repertoire_id: str) -> TrainingTotals:
    """Aggregate points and accuracy over every logged attempt."""
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT COUNT(*), COUNT(*) FILTER (WHERE is_correct), COALESCE(SUM(points_delta), 0),
                MAX(created_at)
            FROM training_logs WHERE repertoire_id = %s
            """,
            (repertoire_id,),
        )
        total, correct, points, last_played = cur.fetchone()
    return TrainingTotals(
        attempts=total or 0, correct=correct or 0, points=points or 0, last_played=last_played,
    )


def list_imported_games(conn: psycopg.Connection, repertoire_id: str) -> list[ImportedGame]:
    """Games attached to a repertoire, newest first."""
    with conn.cursor() as cur:
        cur.execute(
            """
            SELECT id, repertoire_id, white_name, black_name, result, date, pgn,
                white_rating, black_rating, associated_fen
            FROM imported_games WHERE repertoire_id = %s
            ORDER BY date DESC
            """,
            (repertoire_id,),
        )
        rows = cur.fetchall()
    return [
        ImportedGame(
            id=str(r[0]), repertoire_id=str(r[1]), white_name=r[2] or "Unknown",
            black_name=r[3] or "Unknown", result=r[4] or "*", date=r[5] or "Unknown",
            pgn=r[6] or "", white_rating=r[7], black_rating=r[8], associated_fen=r[9],
        )
        for r in rows
    ]


def insert_imported_game(conn: psycopg.Connection, game: ImportedGame) -> str:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO imported_games (
                repertoire_id, white_name, black_name, result, date, pgn,
                white_rating, black_rating, associated_fen
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                game.repertoire_id,
                game.white_name,
                game.black_name,
                game.result,
                game.date,
                game.pgn,
                game.white_rating,
                game.black_rating,
                game.associated_fen,
            ),
        )
        return str(cur.fetchone()[0])


def delete_imported_games(conn: psycopg.Connection, ids: list[str]) -> int:
    """Batch delete by id. Returns rows removed."""
    if not ids:
        return 0
    with conn.cursor() as cur:
        cur.execute("DELETE FROM imported_games WHERE id = ANY(%s::uuid[])", (list(ids),))
        return cur.rowcount
