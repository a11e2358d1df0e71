"""
Analysis feed adapter.

Turns engine analysis output (raw UCI `info` lines or python-chess info
dicts) into per-line evaluation records keyed by MultiPV rank. Later lines
for a rank replace earlier ones; everything is cleared when the analysed
position changes.
"""

import math
import re
from dataclasses import dataclass, field

import position_codec
from errors import IllegalMove

WIN_PCT_K = 0.00368208

DEPTH_RE = re.compile(r"\bdepth (\d+)")
SCORE_RE = re.compile(r"\bscore (cp|mate) (-?\d+)")
MULTIPV_RE = re.compile(r"\bmultipv (\d+)")
PV_RE = re.compile(r" pv (.+)$")


def win_percentage(cp: int) -> float:
    """Logistic mapping from centipawns (side to move) to a win percentage."""
    return 50 + 50 * (2 / (1 + math.exp(-WIN_PCT_K * cp)) - 1)


def mate_percentage(mate: int) -> float:
    """Crude stand-in for forced mates: 100 if the side to move mates, else 0."""
    return 100.0 if mate > 0 else 0.0


@dataclass
class EngineLine:
    rank: int
    depth: int
    pv: list[str]
    score_cp: int | None = None
    mate: int | None = None
    san: str | None = None
    from_square: str = ""
    to_square: str = ""
    win_pct: float = 50.0

    @property
    def eval(self) -> float | None:
        """Pawn units, or None for mate scores."""
        return self.score_cp / 100 if self.score_cp is not None else None


@dataclass
class ParsedInfo:
    depth: int
    kind: str
    value: int
    rank: int
    pv: list[str] = field(default_factory=list)


def parse_info_line(line: str) -> ParsedInfo | None:
    """Pull depth/score/multipv/pv out of an engine line; None if any is missing."""
    line = line.strip()
    depth = DEPTH_RE.search(line)
    score = SCORE_RE.search(line)
    multipv = MULTIPV_RE.search(line)
    pv = PV_RE.search(line)
    if not (depth and score and multipv and pv):
        return None
    moves = pv.group(1).split()
    if not moves:
        return None
    return ParsedInfo(
        depth=int(depth.group(1)),
        kind=score.group(1),
        value=int(score.group(2)),
        rank=int(multipv.group(1)),
        pv=moves,
    )


def info_from_engine(info: dict) -> ParsedInfo | None:
    """Same fields as parse_info_line, from a `chess.engine` InfoDict."""
    score = info.get("score")
    pv = info.get("pv")
    if score is None or not pv or "depth" not in info:
        return None
    relative = score.relative
    mate = relative.mate()
    if mate is not None:
        kind, value = "mate", mate
    else:
        kind, value = "cp", relative.score()
    return ParsedInfo(
        depth=info["depth"],
        kind=kind,
        value=value,
        rank=info.get("multipv", 1),
        pv=[move.uci() for move in pv],
    )


class AnalysisFeed:
    """Evaluation records for the position currently being analysed."""

    def __init__(self, fen: str | None = None):
        self.fen = fen
        self.lines: dict[int, EngineLine] = {}

    def set_position(self, fen: str) -> None:
        if fen != self.fen:
            self.fen = fen
            self.lines.clear()

    def restart(self) -> None:
        self.lines.clear()

    @property
    def best(self) -> EngineLine | None:
        return self.lines.get(1)

    def feed(self, line: str) -> EngineLine | None:
        """Consume one raw engine output line. Returns the record it produced, if any."""
        return self._record(parse_info_line(line))

    def feed_info(self, info: dict) -> EngineLine | None:
        """Consume one python-chess analysis info dict."""
        return self._record(info_from_engine(info))

    def _record(self, info: ParsedInfo | None) -> EngineLine | None:
        if self.fen is None or info is None:
            return None

        first = info.pv[0]
        try:
            descriptor = position_codec.descriptor_from_uci(self.fen, first)
        except IllegalMove:
            # left over from a search on a previous position
            return None

        record = EngineLine(
            rank=info.rank,
            depth=info.depth,
            pv=info.pv,
            san=descriptor.san,
            from_square=descriptor.from_square,
            to_square=descriptor.to_square,
        )
        if info.kind == "cp":
            record.score_cp = info.value
            record.win_pct = win_percentage(info.value)
        else:
            record.mate = info.value
            record.win_pct = mate_percentage(info.value)

        self.lines[info.rank] = record
        return record

    def ranked(self) -> list[EngineLine]:
        return [self.lines[k] for k in sorted(self.lines)]
