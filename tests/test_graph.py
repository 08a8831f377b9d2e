from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest

from core.graph import BACKWARD, BOTH, FORWARD, collect_node_ids, traverse

BASE_TIME = datetime(2024, 1, 1)


@dataclass
class Edge:
    source_memo_id: str
    target_memo_id: str
    tag: str = "rel"
    updated_at: datetime = BASE_TIME


class ListEdgeSource:
    def __init__(self, edges):
        self.edges = list(edges)
        self.calls = []

    def outgoing(self, memo_ids, tag):
        self.calls.append(("out", tuple(memo_ids)))
        return [e for e in self.edges if e.source_memo_id in memo_ids and (tag is None or e.tag == tag)]

    def incoming(self, memo_ids, tag):
        self.calls.append(("in", tuple(memo_ids)))
        return [e for e in self.edges if e.target_memo_id in memo_ids and (tag is None or e.tag == tag)]


def _chain():
    return [
        Edge("A", "B", updated_at=BASE_TIME + timedelta(minutes=1)),
        Edge("B", "C", updated_at=BASE_TIME + timedelta(minutes=2)),
    ]


def test_forward_chain_depths_and_paths():
    edges = traverse(ListEdgeSource(_chain()), "A", max_depth=3, limit=10)
    assert [(e.depth, e.path) for e in edges] == [(1, ("A", "B")), (2, ("A", "B", "C"))]
    assert all(e.direction == FORWARD for e in edges)


def test_backward_walks_incoming_edges():
    edges = traverse(ListEdgeSource(_chain()), "C", max_depth=3, direction=BACKWARD, limit=10)
    assert [(e.depth, e.path) for e in edges] == [(1, ("C", "B")), (2, ("C", "B", "A"))]
    assert all(e.direction == BACKWARD for e in edges)


def test_both_runs_each_direction_independently():
    edges = traverse(ListEdgeSource(_chain()), "B", max_depth=1, direction=BOTH, limit=10)
    assert sorted((e.direction, e.path) for e in edges) == [
        (BACKWARD, ("B", "A")),
        (FORWARD, ("B", "C")),
    ]


def test_max_depth_bounds_paths():
    edges = traverse(ListEdgeSource(_chain()), "A", max_depth=1, limit=10)
    assert [e.path for e in edges] == [("A", "B")]


def test_cycles_do_not_repeat_nodes():
    source = ListEdgeSource([Edge("A", "B"), Edge("B", "C"), Edge("C", "A")])
    edges = traverse(source, "A", max_depth=10, limit=100)
    assert [e.path for e in edges] == [("A", "B"), ("A", "B", "C")]
    for edge in edges:
        assert len(set(edge.path)) == len(edge.path)


def test_self_loop_is_never_followed():
    edges = traverse(ListEdgeSource([Edge("A", "A")]), "A", max_depth=3, limit=10)
    assert edges == []


def test_diamond_yields_one_edge_per_path():
    source = ListEdgeSource([Edge("A", "B"), Edge("A", "C"), Edge("B", "D"), Edge("C", "D")])
    edges = traverse(source, "A", max_depth=2, limit=10)
    assert sorted(e.path for e in edges if e.depth == 2) == [("A", "B", "D"), ("A", "C", "D")]


def test_tag_filter():
    source = ListEdgeSource([Edge("A", "B", tag="x"), Edge("A", "C", tag="y")])
    edges = traverse(source, "A", max_depth=1, tag="y", limit=10)
    assert [e.path for e in edges] == [("A", "C")]


def test_limit_truncates_and_orders_by_recency_within_depth():
    source = ListEdgeSource([
        Edge("A", "B", updated_at=BASE_TIME),
        Edge("A", "C", updated_at=BASE_TIME + timedelta(hours=1)),
        Edge("A", "D", updated_at=BASE_TIME + timedelta(hours=2)),
    ])
    edges = traverse(source, "A", max_depth=3, limit=2)
    assert [e.path[-1] for e in edges] == ["D", "C"]


def test_one_query_per_frontier():
    source = ListEdgeSource(_chain())
    traverse(source, "A", max_depth=5, limit=10)
    assert source.calls == [("out", ("A",)), ("out", ("B",)), ("out", ("C",))]


def test_invalid_direction():
    with pytest.raises(ValueError):
        traverse(ListEdgeSource([]), "A", max_depth=1, direction="sideways", limit=10)


def test_collect_node_ids_first_seen_order():
    edges = traverse(ListEdgeSource(_chain()), "A", max_depth=3, limit=10)
    assert collect_node_ids("A", edges) == ["A", "B", "C"]
    assert collect_node_ids("Z", []) == ["Z"]
