"""Tests for navigation.py"""

import sys
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import position_codec
from move_tree import MoveTree
from navigation import Navigator, label_path


def build(tree, sans, parent=None):
    node = parent or tree.root
    for san in sans:
        node, _ = tree.insert_child(node, position_codec.parse_label(node.position, san))
    return node


def make_tree():
    tree = MoveTree()
    build(tree, ["e4", "e5", "Nf3", "Nc6"])
    build(tree, ["d4", "d5"])
    return tree


def test_initial_state_is_root():
    nav = Navigator(make_tree())
    assert nav.state.node is None
    assert nav.position == chess.STARTING_FEN
    assert nav.state.path == []
    assert nav.state.last_move is None


def test_navigate_to_node_sets_position_path_and_highlight():
    tree = make_tree()
    nav = Navigator(tree)
    nf3 = tree.root.children[0].children[0].children[0]

    state = nav.navigate(nf3)

    assert state.node is nf3
    assert state.position == nf3.position
    assert state.path == ["e4", "e5", "Nf3"]
    assert state.last_move == ("g1", "f3")
    assert state.node_id == nf3.id


def test_navigate_to_none_resets_everything():
    tree = make_tree()
    nav = Navigator(tree)
    nav.navigate(tree.root.children[0])

    state = nav.navigate(None)

    assert state.node is None
    assert state.position == chess.STARTING_FEN
    assert state.path == []
    assert state.last_move is None


def test_navigate_to_root_is_same_as_none():
    tree = make_tree()
    nav = Navigator(tree)
    nav.navigate(tree.root.children[1])
    assert nav.navigate(tree.root).node is None


def test_navigate_to_id():
    tree = make_tree()
    nav = Navigator(tree)
    d4 = tree.root.children[1]
    assert nav.navigate_to_id(d4.id).node is d4
    assert nav.navigate_to_id("missing") is None
    assert nav.state.node is d4


def test_forward_follows_main_line_and_stops_at_leaf():
    nav = Navigator(make_tree())
    labels = []
    for _ in range(6):
        state = nav.forward()
        labels.append(state.node.label)
    assert labels == ["e4", "e5", "Nf3", "Nc6", "Nc6", "Nc6"]


def test_back_and_to_start():
    tree = make_tree()
    nav = Navigator(tree)
    nav.to_end()
    assert nav.state.path == ["e4", "e5", "Nf3", "Nc6"]
    assert nav.back().path == ["e4", "e5", "Nf3"]
    nav.to_start()
    assert nav.state.node is None
    assert nav.back().node is None


def test_back_from_first_move_reaches_root():
    tree = make_tree()
    nav = Navigator(tree)
    nav.navigate(tree.root.children[0])
    assert nav.back().node is None


def test_play_new_move_creates_and_navigates():
    tree = make_tree()
    nav = Navigator(tree)
    state, created = nav.play(position_codec.parse_label(chess.STARTING_FEN, "c4"))
    assert created
    assert state.path == ["c4"]
    assert tree.root.children[2] is state.node


def test_play_existing_move_only_navigates():
    tree = make_tree()
    nav = Navigator(tree)
    size = len(tree)
    state, created = nav.play(position_codec.parse_label(chess.STARTING_FEN, "d4"))
    assert not created
    assert state.node is tree.root.children[1]
    assert len(tree) == size


def test_delete_current_steps_back_to_parent():
    tree = make_tree()
    nav = Navigator(tree)
    e4 = tree.root.children[0]
    nav.navigate(e4.children[0])

    ids = nav.delete_current()

    assert len(ids) == 3
    assert nav.state.node is e4
    assert e4.children == []


def test_on_delete_moves_off_removed_node():
    tree = make_tree()
    nav = Navigator(tree)
    e4 = tree.root.children[0]
    nav.navigate(e4.children[0].children[0])
    tree.delete_subtree(e4)

    nav.on_delete(tree.root)

    assert nav.state.node is None
    assert nav.position == chess.STARTING_FEN


def test_on_delete_keeps_unrelated_position():
    tree = make_tree()
    nav = Navigator(tree)
    d5 = tree.root.children[1].children[0]
    nav.navigate(d5)
    tree.delete_subtree(tree.root.children[0])

    nav.on_delete(tree.root)

    assert nav.state.node is d5


def test_label_path_of_root_is_empty():
    tree = make_tree()
    assert label_path(tree.root) == []
    assert label_path(None) == []
