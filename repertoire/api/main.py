"""
FastAPI Repertoire API

Endpoints:
  POST   /repertoires/{rid}/load                  - Load a repertoire tree from the store
  GET    /repertoires/{rid}/tree                  - Nested tree + current navigation
  POST   /repertoires/{rid}/moves                 - Play a move (editor mode)
  DELETE /repertoires/{rid}/moves/{node_id}       - Delete a move and its subtree
  PUT    /repertoires/{rid}/moves/{node_id}/comment
  POST   /repertoires/{rid}/navigate              - Jump to a node (null = start) or step along the main line
  POST   /repertoires/{rid}/drill                 - Start a drill session
  POST   /repertoires/{rid}/drill/move            - Submit a drill move
  POST   /repertoires/{rid}/drill/next            - Next line after completion
  DELETE /repertoires/{rid}/drill                 - Exit the drill
  GET    /repertoires/{rid}/games                 - Games for the current position
  POST   /repertoires/{rid}/games                 - Attach a game to the current position
  POST   /repertoires/{rid}/games/lichess         - Import a lichess user's games at the current position
  DELETE /repertoires/{rid}/games                 - Delete stored games (?ids=...)
  POST   /repertoires/{rid}/games/{game_id}/line  - Add a game's moves to the tree
  GET    /repertoires/{rid}/explorer              - Lichess explorer stats for the current position
  POST   /repertoires/{rid}/analysis              - Start engine analysis that follows navigation
  GET    /repertoires/{rid}/analysis              - Ranked engine lines for the current position
  DELETE /repertoires/{rid}/analysis              - Stop the engine
  GET    /repertoires/{rid}/training              - Training totals, accuracy and level
"""

import sys
from pathlib import Path
from typing import Literal

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import position_codec
from analysis_feed import EngineLine
from context import RepertoireContext
from drill import DrillSession
from engine_process import EngineProcess
from errors import IllegalMove, InvalidOperation, PersistenceFailure
from explorer_client import ExplorerSettings, fetch_master_game, fetch_opening_stats, move_totals
from export import node_to_dict
from models import MoveDescriptor, MoveNode
from navigation import NavigationState
from store import PostgresMoveStore

app = FastAPI(title="Opening Repertoire Trainer API", version="1.0.0")

CONTEXTS: dict[str, RepertoireContext] = {}


def get_store():
    return PostgresMoveStore()


def get_engine():
    return EngineProcess()


class LoadRequest(BaseModel):
    color: str = "white"


class MoveRequest(BaseModel):
    from_node_id: str | None = None
    san: str | None = None
    uci: str | None = None


class CommentRequest(BaseModel):
    text: str


class NavigateRequest(BaseModel):
    node_id: str | None = None
    step: Literal["start", "back", "forward", "end"] | None = None


class DrillRequest(BaseModel):
    start_node_id: str | None = None
    color: str | None = None


class DrillMoveRequest(BaseModel):
    san: str


class GameRequest(BaseModel):
    pgn: str | None = None
    master_game_id: str | None = None


class LichessImportRequest(BaseModel):
    username: str
    max_games: int = Field(50, ge=1, le=300)
    token: str | None = None


@app.exception_handler(IllegalMove)
async def illegal_move_handler(request, exc: IllegalMove):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InvalidOperation)
async def invalid_operation_handler(request, exc: InvalidOperation):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PersistenceFailure)
async def persistence_failure_handler(request, exc: PersistenceFailure):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _context(rid: str) -> RepertoireContext:
    ctx = CONTEXTS.get(rid)
    if ctx is None:
        raise HTTPException(status_code=404, detail=f"Repertoire {rid} is not loaded")
    return ctx


def _node(ctx: RepertoireContext, node_id: str | None) -> MoveNode:
    try:
        return ctx.node(node_id)
    except LookupError:
        raise HTTPException(status_code=404, detail=f"Move {node_id} not found")


def node_to_response(node: MoveNode) -> dict:
    parent = node.parent
    return {
        "id": node.id,
        "san": node.label,
        "fen": node.position,
        "uci": node.move.uci if node.move else None,
        "color": node.color,
        "move_number": node.move_index,
        "comment": node.annotation,
        "pending": node.pending_persist,
        "is_main_line": parent is None or (bool(parent.children) and parent.children[0] is node),
        "children": [{"id": c.id, "san": c.label} for c in node.children],
    }


def navigation_to_response(state: NavigationState) -> dict:
    status = position_codec.game_status(state.position)
    return {
        "node_id": state.node_id,
        "fen": state.position,
        "last_move": list(state.last_move) if state.last_move else None,
        "path": state.path,
        "turn": status.turn,
        "in_check": status.in_check,
        "in_checkmate": status.in_checkmate,
        "in_draw": status.in_draw,
    }


def engine_line_to_response(line: EngineLine) -> dict:
    return {
        "rank": line.rank,
        "depth": line.depth,
        "san": line.san,
        "from": line.from_square,
        "to": line.to_square,
        "eval": line.eval,
        "mate": line.mate,
        "win_pct": round(line.win_pct, 2),
        "pv": line.pv,
    }


def drill_to_response(session: DrillSession) -> dict:
    return {
        "active": session.active,
        "feedback": session.feedback.value,
        "cursor": session.cursor.id,
        "fen": session.position,
        "last_move": list(session.last_move) if session.last_move else None,
        "awaiting_reply": session.awaiting_reply,
        "stats": {
            "correct": session.stats.correct,
            "errors": session.stats.errors,
            "moves_left": session.stats.moves_left,
        },
    }


@app.post("/repertoires/{rid}/load")
async def load_repertoire(rid: str, body: LoadRequest):
    ctx = RepertoireContext(rid, get_store(), color=body.color)
    await ctx.load()
    try:
        await ctx.load_games()
    except PersistenceFailure as e:
        ctx.notifications.append(str(e))
    previous = CONTEXTS.pop(rid, None)
    if previous is not None:
        await previous.close()
    CONTEXTS[rid] = ctx
    return {"repertoire_id": rid, "color": ctx.color, "moves": len(ctx.tree), "games": len(ctx.games)}


@app.get("/repertoires/{rid}/tree")
async def get_tree(rid: str):
    ctx = _context(rid)
    return {
        "rootFen": ctx.tree.root.position,
        "moves": [node_to_dict(c) for c in ctx.tree.root.children],
        "navigation": navigation_to_response(ctx.navigator.state),
        "notifications": list(ctx.notifications),
    }


@app.post("/repertoires/{rid}/moves")
async def play_move(rid: str, body: MoveRequest):
    ctx = _context(rid)
    start = _node(ctx, body.from_node_id) if body.from_node_id else ctx.navigator.current
    if body.uci:
        descriptor = MoveDescriptor.from_uci(body.uci)
    elif body.san:
        descriptor = position_codec.parse_label(start.position, body.san)
    else:
        raise HTTPException(status_code=400, detail="Provide san or uci")
    state, created = ctx.play(descriptor, start.id)
    return {
        "created": created,
        "node": node_to_response(state.node),
        "navigation": navigation_to_response(state),
    }


@app.delete("/repertoires/{rid}/moves/{node_id}")
async def delete_move(rid: str, node_id: str):
    ctx = _context(rid)
    _node(ctx, node_id)
    ids = ctx.delete(node_id)
    return {
        "deleted": ids,
        "navigation": navigation_to_response(ctx.navigator.state),
        "drill_active": ctx.drill is not None,
    }


@app.put("/repertoires/{rid}/moves/{node_id}/comment")
async def update_comment(rid: str, node_id: str, body: CommentRequest):
    ctx = _context(rid)
    _node(ctx, node_id)
    node = ctx.comment(node_id, body.text)
    return node_to_response(node)


@app.post("/repertoires/{rid}/navigate")
async def navigate(rid: str, body: NavigateRequest):
    ctx = _context(rid)
    if body.step:
        state = ctx.step(body.step)
    else:
        _node(ctx, body.node_id)
        state = ctx.navigate(body.node_id)
    return navigation_to_response(state)


@app.post("/repertoires/{rid}/drill")
async def start_drill(rid: str, body: DrillRequest):
    ctx = _context(rid)
    _node(ctx, body.start_node_id)
    try:
        session = ctx.start_drill(body.start_node_id, body.color)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return drill_to_response(session)


def _drill(ctx: RepertoireContext) -> DrillSession:
    if ctx.drill is None:
        raise HTTPException(status_code=409, detail="No drill in progress")
    return ctx.drill


@app.post("/repertoires/{rid}/drill/move")
async def submit_drill_move(rid: str, body: DrillMoveRequest):
    session = _drill(_context(rid))
    feedback = session.submit_move(body.san)
    return {"accepted": feedback is not None, **drill_to_response(session)}


@app.post("/repertoires/{rid}/drill/next")
async def next_drill_line(rid: str):
    session = _drill(_context(rid))
    session.next_line()
    return drill_to_response(session)


@app.delete("/repertoires/{rid}/drill")
async def exit_drill(rid: str):
    ctx = _context(rid)
    ctx.exit_drill()
    return {"active": False}


@app.get("/repertoires/{rid}/games")
async def list_games(rid: str):
    ctx = _context(rid)
    return [
        {
            "id": g.id,
            "white": g.white_name,
            "black": g.black_name,
            "result": g.result,
            "date": g.date,
            "anchored": bool(g.associated_fen),
        }
        for g in ctx.visible_games()
    ]


@app.post("/repertoires/{rid}/games")
async def attach_game(rid: str, body: GameRequest):
    ctx = _context(rid)
    pgn = body.pgn
    if body.master_game_id:
        async with httpx.AsyncClient(timeout=30.0) as session:
            pgn = await fetch_master_game(body.master_game_id, session)
        if pgn is None:
            raise HTTPException(status_code=502, detail="Failed to download game PGN")
    if not pgn:
        raise HTTPException(status_code=400, detail="Provide pgn or master_game_id")
    game = await ctx.attach_game(pgn)
    return {"id": game.id, "white": game.white_name, "black": game.black_name, "anchor": game.associated_fen}


@app.get("/repertoires/{rid}/explorer")
async def explorer(rid: str, source: str = Query("masters", pattern="^(masters|lichess)$")):
    ctx = _context(rid)
    async with httpx.AsyncClient(timeout=30.0) as session:
        data = await fetch_opening_stats(ctx.navigator.position, session, ExplorerSettings(source=source))
    if data is None:
        raise HTTPException(status_code=503, detail="Explorer rate limited")
    return {**data, "totals": [{"san": san, "games": games} for san, games in move_totals(data)]}


@app.post("/repertoires/{rid}/games/lichess")
async def import_lichess_games(rid: str, body: LichessImportRequest):
    ctx = _context(rid)
    async with httpx.AsyncClient(timeout=60.0) as session:
        try:
            games = await ctx.import_user_games(session, body.username, body.max_games, body.token)
        except httpx.HTTPStatusError as e:
            raise HTTPException(status_code=502, detail=f"Lichess returned HTTP {e.response.status_code}")
    if games is None:
        raise HTTPException(status_code=503, detail="Lichess rate limited")
    return {"imported": len(games), "anchor": ctx.navigator.position}


@app.delete("/repertoires/{rid}/games")
async def delete_games(rid: str, ids: list[str] = Query(default=[])):
    ctx = _context(rid)
    removed = await ctx.delete_games(ids)
    return {"deleted": removed}


@app.post("/repertoires/{rid}/games/{game_id}/line")
async def add_game_line(rid: str, game_id: str):
    ctx = _context(rid)
    try:
        nodes = ctx.add_game_line(game_id)
    except LookupError:
        raise HTTPException(status_code=404, detail=f"Game {game_id} not found")
    return {"moves": [node_to_response(n) for n in nodes], "size": len(ctx.tree)}


@app.post("/repertoires/{rid}/analysis")
async def start_analysis(rid: str):
    ctx = _context(rid)
    try:
        engine = await ctx.start_analysis(get_engine())
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"running": True, "multipv": engine.multipv}


@app.get("/repertoires/{rid}/analysis")
async def get_analysis(rid: str):
    ctx = _context(rid)
    return {
        "running": ctx.engine is not None,
        "fen": ctx.navigator.position,
        "lines": [engine_line_to_response(line) for line in ctx.analysis()],
    }


@app.delete("/repertoires/{rid}/analysis")
async def stop_analysis(rid: str):
    ctx = _context(rid)
    await ctx.stop_analysis()
    return {"running": False}


@app.get("/repertoires/{rid}/training")
async def training_stats(rid: str):
    ctx = _context(rid)
    totals = await ctx.training_stats()
    return {
        "attempts": totals.attempts,
        "correct": totals.correct,
        "points": totals.points,
        "accuracy": totals.accuracy,
        "level": totals.level,
        "last_played": totals.last_played.isoformat() if totals.last_played else None,
    }


@app.get("/health")
def health():
    return {"status": "ok"}
