"""Exception taxonomy for the repertoire trainer."""


class RepertoireError(Exception):
    """Base class for all repertoire errors."""


class IllegalMove(RepertoireError):
    """The rules engine rejected a move; callers must not advance state."""

    def __init__(self, fen: str, move: str):
        super().__init__(f"Illegal move {move!r} in position {fen!r}")
        self.fen = fen
        self.move = move


class DuplicateSibling(RepertoireError):
    """A move with the same label already exists under the parent.

    Only raised when linking stored moves; interactive insertion resolves to
    the existing node instead.
    """


class InvalidOperation(RepertoireError):
    """Structural operation refused before any mutation (e.g. root deletion)."""


class PersistenceFailure(RepertoireError):
    """Record store error. The in-memory change is kept, not rolled back."""

    def __init__(self, operation: str, node_id: str | None = None, detail: str = ""):
        msg = f"{operation} failed"
        if node_id:
            msg += f" for {node_id}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.operation = operation
        self.node_id = node_id


class StaleCursor(RepertoireError):
    """A scheduled drill callback fired after its session moved on."""
