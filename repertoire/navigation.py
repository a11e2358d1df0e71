"""Navigation engine: the active node, its position, and the label path to it."""

from dataclasses import dataclass, field

from models import MoveDescriptor, MoveNode
from move_tree import MoveTree


@dataclass
class NavigationState:
    node: MoveNode | None
    position: str
    last_move: tuple[str, str] | None = None
    path: list[str] = field(default_factory=list)

    @property
    def node_id(self) -> str | None:
        return self.node.id if self.node is not None else None


def label_path(node: MoveNode | None) -> list[str]:
    """SAN labels from the first move down to `node`."""
    labels = []
    current = node
    while current is not None and current.parent is not None:
        labels.append(current.label)
        current = current.parent
    labels.reverse()
    return labels


class Navigator:
    """
    Tracks where the user is in a tree.

    `None` stands for the root. Positions are read straight off the nodes,
    which already hold the replayed FEN, so moving around never replays moves.
    With a persistence bridge attached, `play` and `delete_current` go
    through it; without one they edit the tree directly.
    """

    def __init__(self, tree: MoveTree, bridge=None):
        self.tree = tree
        self.bridge = bridge
        self.state = NavigationState(node=None, position=tree.root.position)

    @property
    def current(self) -> MoveNode:
        return self.state.node if self.state.node is not None else self.tree.root

    @property
    def position(self) -> str:
        return self.state.position

    def navigate(self, node: MoveNode | None) -> NavigationState:
        if node is None or node is self.tree.root:
            self.state = NavigationState(node=None, position=self.tree.root.position)
            return self.state
        last_move = (node.move.from_square, node.move.to_square) if node.move else None
        self.state = NavigationState(
            node=node,
            position=node.position,
            last_move=last_move,
            path=label_path(node),
        )
        return self.state

    def navigate_to_id(self, node_id: str | None) -> NavigationState | None:
        node = self.tree.get(node_id)
        if node is None:
            return None
        return self.navigate(node)

    def forward(self) -> NavigationState:
        nxt = MoveTree.main_line(self.current)
        return self.navigate(nxt) if nxt is not None else self.state

    def back(self) -> NavigationState:
        if self.state.node is None:
            return self.state
        return self.navigate(self.state.node.parent)

    def to_start(self) -> NavigationState:
        return self.navigate(None)

    def to_end(self) -> NavigationState:
        node = self.current
        while node.children:
            node = node.children[0]
        return self.navigate(node)

    def play(self, descriptor: MoveDescriptor) -> tuple[NavigationState, bool]:
        """Editor-mode move from the current node. Known moves just navigate."""
        if self.bridge is not None:
            node, created = self.bridge.insert_move(self.current, descriptor)
        else:
            node, created = self.tree.insert_child(self.current, descriptor)
        return self.navigate(node), created

    def delete_current(self) -> list[str]:
        """Delete the current node's subtree and step back to its parent."""
        node = self.current
        parent = node.parent
        if self.bridge is not None:
            ids = self.bridge.delete_move(node)
        else:
            ids = self.tree.delete_subtree(node)
        self.navigate(parent)
        return ids

    def on_delete(self, parent: MoveNode) -> None:
        """Fall back to `parent` if a delete elsewhere removed the current node."""
        node = self.state.node
        if node is None or node in self.tree:
            return
        self.navigate(parent)
