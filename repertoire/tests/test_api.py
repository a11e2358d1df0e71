"""Tests for api/main.py"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import chess
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import FakeEngine, FakeStore
from models import MoveRecord, OutcomeRecord

AFTER_E4 = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
RID = "rep-api"


@pytest.fixture
def fake_store():
    store = FakeStore()
    store.moves.append(MoveRecord(RID, AFTER_E4, "e4", "e2e4", None, 1, "w", id="m1"))
    return store


@pytest.fixture
def client(fake_store):
    from api.main import CONTEXTS, app

    CONTEXTS.clear()
    with patch("api.main.get_store", return_value=fake_store):
        with TestClient(app) as c:
            yield c
    CONTEXTS.clear()


@pytest.fixture
def loaded(client):
    resp = client.post(f"/repertoires/{RID}/load", json={"color": "white"})
    assert resp.status_code == 200
    return client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_load_reports_counts(client):
    resp = client.post(f"/repertoires/{RID}/load", json={"color": "black"})
    assert resp.json() == {"repertoire_id": RID, "color": "b", "moves": 1, "games": 0}


def test_unloaded_repertoire_is_404(client):
    assert client.get("/repertoires/other/tree").status_code == 404


def test_tree_is_nested(loaded):
    data = loaded.get(f"/repertoires/{RID}/tree").json()
    assert data["rootFen"] == chess.STARTING_FEN
    assert [m["san"] for m in data["moves"]] == ["e4"]
    assert data["navigation"]["node_id"] is None


def test_play_known_move_navigates(loaded):
    resp = loaded.post(f"/repertoires/{RID}/moves", json={"san": "e4"})
    data = resp.json()
    assert resp.status_code == 200
    assert data["created"] is False
    assert data["node"]["id"] == "m1"
    assert data["navigation"]["path"] == ["e4"]
    assert data["navigation"]["last_move"] == ["e2", "e4"]


def test_play_new_move_from_node(loaded):
    resp = loaded.post(f"/repertoires/{RID}/moves", json={"from_node_id": "m1", "uci": "c7c5"})
    data = resp.json()
    assert data["created"] is True
    assert data["node"]["san"] == "c5"
    assert data["node"]["color"] == "b"
    assert data["node"]["is_main_line"] is True
    assert data["navigation"]["turn"] == "w"


def test_illegal_move_is_400(loaded):
    resp = loaded.post(f"/repertoires/{RID}/moves", json={"san": "Ke2"})
    assert resp.status_code == 400
    resp = loaded.post(f"/repertoires/{RID}/moves", json={"uci": "e2e5"})
    assert resp.status_code == 400


def test_move_without_notation_is_400(loaded):
    assert loaded.post(f"/repertoires/{RID}/moves", json={}).status_code == 400


def test_unknown_from_node_is_404(loaded):
    resp = loaded.post(f"/repertoires/{RID}/moves", json={"from_node_id": "zzz", "san": "e5"})
    assert resp.status_code == 404


def test_delete_root_is_409(loaded):
    assert loaded.delete(f"/repertoires/{RID}/moves/root").status_code == 409


def test_delete_move(loaded):
    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    resp = loaded.delete(f"/repertoires/{RID}/moves/m1")
    data = resp.json()
    assert data["deleted"] == ["m1"]
    assert data["navigation"]["node_id"] is None
    assert loaded.get(f"/repertoires/{RID}/tree").json()["moves"] == []


def test_comment(loaded):
    resp = loaded.put(f"/repertoires/{RID}/moves/m1/comment", json={"text": "Best by test"})
    assert resp.json()["comment"] == "Best by test"


def test_navigate_to_start(loaded):
    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    data = loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": None}).json()
    assert data["fen"] == chess.STARTING_FEN
    assert data["path"] == []
    assert data["last_move"] is None


def test_drill_round(loaded):
    data = loaded.post(f"/repertoires/{RID}/drill", json={}).json()
    assert data["feedback"] == "waiting"
    assert data["stats"]["moves_left"] == 1

    resp = loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "d4"})
    assert resp.json()["accepted"] is True
    assert resp.json()["feedback"] == "incorrect"

    resp = loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e4"})
    assert resp.json()["accepted"] is False

    assert loaded.post(f"/repertoires/{RID}/drill/next").status_code == 409
    assert loaded.delete(f"/repertoires/{RID}/drill").json() == {"active": False}


def test_drill_completes_and_restarts(loaded):
    loaded.post(f"/repertoires/{RID}/drill", json={"color": "white"})
    data = loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e4"}).json()
    assert data["feedback"] == "completed"
    assert data["stats"]["correct"] == 1

    data = loaded.post(f"/repertoires/{RID}/drill/next").json()
    assert data["feedback"] == "waiting"
    assert data["stats"]["correct"] == 0


def test_drill_bad_color_is_400(loaded):
    assert loaded.post(f"/repertoires/{RID}/drill", json={"color": "green"}).status_code == 400


def test_drill_move_without_session_is_409(loaded):
    assert loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e4"}).status_code == 409


def test_attach_and_list_games(loaded):
    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    pgn = '[White "Morphy"]\n[Black "Anderssen"]\n[Result "1-0"]\n\n1. e4 e5 1-0\n'
    resp = loaded.post(f"/repertoires/{RID}/games", json={"pgn": pgn})
    assert resp.json()["anchor"] == AFTER_E4

    games = loaded.get(f"/repertoires/{RID}/games").json()
    assert [g["white"] for g in games] == ["Morphy"]
    assert games[0]["anchored"] is True


def test_attach_game_requires_pgn(loaded):
    assert loaded.post(f"/repertoires/{RID}/games", json={}).status_code == 400


def test_attach_master_game_download_failure(loaded):
    with patch("api.main.fetch_master_game", AsyncMock(return_value=None)):
        resp = loaded.post(f"/repertoires/{RID}/games", json={"master_game_id": "abc"})
    assert resp.status_code == 502


def test_explorer_rate_limited(loaded):
    with patch("api.main.fetch_opening_stats", AsyncMock(return_value=None)):
        assert loaded.get(f"/repertoires/{RID}/explorer").status_code == 503


def test_explorer_returns_stats(loaded):
    stats = {"moves": [{"san": "e4", "white": 1, "draws": 1, "black": 1}]}
    with patch("api.main.fetch_opening_stats", AsyncMock(return_value=stats)) as fetch:
        resp = loaded.get(f"/repertoires/{RID}/explorer", params={"source": "lichess"})
    data = resp.json()
    assert data["moves"] == stats["moves"]
    assert data["totals"] == [{"san": "e4", "games": 3}]
    assert fetch.call_args.args[2].source == "lichess"


def test_explorer_rejects_unknown_source(loaded):
    assert loaded.get(f"/repertoires/{RID}/explorer", params={"source": "chesscom"}).status_code == 422


def test_navigate_steps_along_main_line(loaded):
    data = loaded.post(f"/repertoires/{RID}/navigate", json={"step": "end"}).json()
    assert data["path"] == ["e4"]
    data = loaded.post(f"/repertoires/{RID}/navigate", json={"step": "back"}).json()
    assert data["path"] == []
    assert loaded.post(f"/repertoires/{RID}/navigate", json={"step": "up"}).status_code == 422


def test_navigate_unknown_node_is_404(loaded):
    assert loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "zzz"}).status_code == 404


def test_navigate_during_drill_exits_it(loaded):
    loaded.post(f"/repertoires/{RID}/drill", json={})
    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    assert loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e4"}).status_code == 409


def test_deleting_drill_line_exits_drill(loaded):
    loaded.post(f"/repertoires/{RID}/moves", json={"from_node_id": "m1", "san": "e5"})
    loaded.post(f"/repertoires/{RID}/drill", json={"color": "white"})
    assert loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e4"}).json()["awaiting_reply"] is True

    data = loaded.delete(f"/repertoires/{RID}/moves/m1").json()

    assert data["drill_active"] is False
    assert loaded.post(f"/repertoires/{RID}/drill/move", json={"san": "e5"}).status_code == 409


def test_analysis_follows_navigation(loaded):
    engine = FakeEngine()
    with patch("api.main.get_engine", return_value=engine):
        resp = loaded.post(f"/repertoires/{RID}/analysis")
    assert resp.json()["running"] is True
    assert engine.analysed == [chess.STARTING_FEN]

    engine.feed.feed("info depth 20 multipv 1 score cp 32 pv e2e4 e7e5")
    engine.feed.feed("info depth 20 multipv 2 score cp 25 pv d2d4 d7d5")
    data = loaded.get(f"/repertoires/{RID}/analysis").json()
    assert data["fen"] == chess.STARTING_FEN
    assert [line["san"] for line in data["lines"]] == ["e4", "d4"]
    assert data["lines"][0]["eval"] == 0.32
    assert data["lines"][0]["win_pct"] == 52.94

    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    assert engine.analysed[-1] == AFTER_E4
    assert loaded.get(f"/repertoires/{RID}/analysis").json()["lines"] == []

    assert loaded.delete(f"/repertoires/{RID}/analysis").json() == {"running": False}
    assert engine.running is False
    assert loaded.get(f"/repertoires/{RID}/analysis").json()["running"] is False


def test_analysis_without_engine_binary_is_503(loaded):
    engine = FakeEngine()
    engine.start = AsyncMock(side_effect=RuntimeError("Engine not found at 'stockfish'"))
    with patch("api.main.get_engine", return_value=engine):
        assert loaded.post(f"/repertoires/{RID}/analysis").status_code == 503


USER_PGN = """[Event "Rated blitz game"]
[White "DrNykterstein"]
[Black "someone"]
[Result "1-0"]

1. e4 e5 2. Nf3 1-0

[Event "Rated blitz game"]
[White "someone"]
[Black "DrNykterstein"]
[Result "0-1"]

1. e4 c5 0-1
"""


def test_lichess_import_and_delete_games(loaded, fake_store):
    loaded.post(f"/repertoires/{RID}/navigate", json={"node_id": "m1"})
    with patch("context.fetch_user_games", AsyncMock(return_value=USER_PGN)):
        resp = loaded.post(f"/repertoires/{RID}/games/lichess", json={"username": "DrNykterstein", "max_games": 2})
    assert resp.json() == {"imported": 2, "anchor": AFTER_E4}

    games = loaded.get(f"/repertoires/{RID}/games").json()
    assert len(games) == 2
    resp = loaded.delete(f"/repertoires/{RID}/games", params={"ids": [games[0]["id"]]})
    assert resp.json() == {"deleted": 1}
    assert len(fake_store.games) == 1


def test_lichess_import_rate_limited(loaded):
    with patch("context.fetch_user_games", AsyncMock(return_value=None)):
        resp = loaded.post(f"/repertoires/{RID}/games/lichess", json={"username": "someone"})
    assert resp.status_code == 503


def test_lichess_import_rejects_bad_count(loaded):
    resp = loaded.post(f"/repertoires/{RID}/games/lichess", json={"username": "someone", "max_games": 0})
    assert resp.status_code == 422


def test_add_game_line(loaded):
    pgn = '[White "Morphy"]\n[Black "Anderssen"]\n[Result "1-0"]\n\n1. e4 e5 2. Nf3 1-0\n'
    game_id = loaded.post(f"/repertoires/{RID}/games", json={"pgn": pgn}).json()["id"]
    data = loaded.post(f"/repertoires/{RID}/games/{game_id}/line").json()
    assert [m["san"] for m in data["moves"]] == ["e4", "e5", "Nf3"]
    assert data["size"] == 3
    assert loaded.post(f"/repertoires/{RID}/games/missing/line").status_code == 404


def test_training_stats(loaded, fake_store):
    fake_store.outcomes.extend(
        [OutcomeRecord(RID, chess.STARTING_FEN, "e4", "e4", True, 10) for _ in range(12)]
    )
    data = loaded.get(f"/repertoires/{RID}/training").json()
    assert data["attempts"] == 12
    assert data["points"] == 120
    assert data["accuracy"] == 100
    assert data["level"] == "Basic Domain"
    assert data["last_played"] is None
