"""
Repertoire move tree.

Children are ordered: index 0 is the main line, everything after it is a
variation. New moves are always appended so an existing main line is never
displaced. Sibling labels are unique; inserting a known move returns the
existing node instead of creating a duplicate.
"""

from typing import Iterator

import position_codec
from errors import DuplicateSibling, InvalidOperation
from models import MoveDescriptor, MoveNode, generate_temp_id, make_root


class MoveTree:
    """Owns the root sentinel and an id index over every attached node."""

    def __init__(self, root: MoveNode | None = None):
        self.root = root or make_root()
        self._index: dict[str, MoveNode] = {}
        for node in self.iter_subtree(self.root):
            if node is not self.root:
                self._index[node.id] = node

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, node: MoveNode) -> bool:
        return node is self.root or self._index.get(node.id) is node

    def get(self, node_id: str | None) -> MoveNode | None:
        """Look up a node by id. `None` and the root id resolve to the root."""
        if node_id is None or node_id == self.root.id:
            return self.root
        return self._index.get(node_id)

    @staticmethod
    def find_child_by_label(parent: MoveNode, label: str) -> MoveNode | None:
        for child in parent.children:
            if child.label == label:
                return child
        return None

    @staticmethod
    def main_line(node: MoveNode) -> MoveNode | None:
        return node.children[0] if node.children else None

    @staticmethod
    def alternatives(node: MoveNode) -> list[MoveNode]:
        return node.children[1:]

    @staticmethod
    def iter_subtree(node: MoveNode) -> Iterator[MoveNode]:
        """Pre-order walk, main line first."""
        stack = [node]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(current.children))

    def insert_child(self, parent: MoveNode, descriptor: MoveDescriptor) -> tuple[MoveNode, bool]:
        """
        Play `descriptor` from `parent`. Returns (node, created).

        Raises IllegalMove without touching the tree when the move is rejected.
        """
        result = position_codec.apply_move(parent.position, descriptor)
        existing = self.find_child_by_label(parent, result.san)
        if existing is not None:
            return existing, False

        move_index = parent.move_index + 1 if result.color == "w" else parent.move_index
        node = MoveNode(
            id=generate_temp_id(),
            position=result.fen,
            move=result.descriptor(),
            parent=parent,
            move_index=move_index,
            pending_persist=True,
        )
        parent.children.append(node)
        self._index[node.id] = node
        return node, True

    def attach(self, node: MoveNode, parent: MoveNode) -> None:
        """Link an already-built node (from the store) as the last child of `parent`."""
        if self.find_child_by_label(parent, node.label) is not None:
            raise DuplicateSibling(f"{parent.id} already has a child {node.label!r}")
        node.parent = parent
        parent.children.append(node)
        for n in self.iter_subtree(node):
            self._index[n.id] = n

    def delete_subtree(self, node: MoveNode) -> list[str]:
        """Detach `node` and everything below it. Returns the removed ids, `node` first."""
        parent = node.parent
        if node is self.root or parent is None:
            raise InvalidOperation("Cannot delete the start position")
        if node not in parent.children:
            raise InvalidOperation(f"{node.id} is not attached to its parent")

        ids = [n.id for n in self.iter_subtree(node)]
        parent.children.remove(node)
        for node_id in ids:
            self._index.pop(node_id, None)
        node.parent = None
        return ids

    def reassign_id(self, node: MoveNode, new_id: str) -> None:
        """Swap a temporary id for the durable one issued by the store."""
        if self._index.get(node.id) is node:
            del self._index[node.id]
            self._index[new_id] = node
        node.id = new_id
