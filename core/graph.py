"""
Bounded-depth relation graph traversal.

The traversal works over any :class:`EdgeSource`, so the path and cycle rules
can run against the database or an in-memory edge list alike.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence

FORWARD = "forward"
BACKWARD = "backward"
BOTH = "both"
DIRECTIONS = (FORWARD, BACKWARD, BOTH)


class EdgeSource(Protocol):
    """Yields relations touching a set of memo ids.

    Relations must expose ``source_memo_id``, ``target_memo_id`` and
    ``updated_at``.
    """

    def outgoing(self, memo_ids: Sequence[str], tag: Optional[str]) -> Iterable[Any]:
        ...

    def incoming(self, memo_ids: Sequence[str], tag: Optional[str]) -> Iterable[Any]:
        ...


@dataclass(frozen=True)
class GraphEdge:
    relation: Any
    depth: int
    direction: str
    path: tuple[str, ...]


def _near_far(relation, direction: str) -> tuple[str, str]:
    if direction == FORWARD:
        return relation.source_memo_id, relation.target_memo_id
    return relation.target_memo_id, relation.source_memo_id


def _expand(
    source: EdgeSource,
    start_memo_id: str,
    direction: str,
    max_depth: int,
    tag: Optional[str],
    limit: int,
) -> list[GraphEdge]:
    edges: list[GraphEdge] = []
    frontier: list[tuple[str, ...]] = [(start_memo_id,)]

    for depth in range(1, max_depth + 1):
        ends = sorted({path[-1] for path in frontier})
        if direction == FORWARD:
            candidates = source.outgoing(ends, tag)
        else:
            candidates = source.incoming(ends, tag)

        by_near: dict[str, list[Any]] = defaultdict(list)
        for relation in candidates:
            near, _ = _near_far(relation, direction)
            by_near[near].append(relation)

        next_frontier: list[tuple[str, ...]] = []
        for path in frontier:
            for relation in by_near.get(path[-1], ()):
                _, far = _near_far(relation, direction)
                if far in path:
                    continue
                extended = path + (far,)
                edges.append(GraphEdge(relation, depth, direction, extended))
                next_frontier.append(extended)

        # Deeper tiers always sort after the edges already collected.
        if not next_frontier or len(edges) >= limit:
            break
        frontier = next_frontier

    return edges


def _updated_at(edge: GraphEdge) -> datetime:
    return edge.relation.updated_at or datetime.min


def traverse(
    source: EdgeSource,
    start_memo_id: str,
    *,
    max_depth: int,
    direction: str = FORWARD,
    tag: Optional[str] = None,
    limit: int,
) -> list[GraphEdge]:
    """Collect edges reachable from ``start_memo_id``.

    ``both`` runs the forward and backward walks independently, so depth is
    counted per direction. Every returned path is free of repeated memo ids.
    Results are ordered by depth, then most recently updated first.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of: {', '.join(DIRECTIONS)}")

    walks = (FORWARD, BACKWARD) if direction == BOTH else (direction,)
    edges: list[GraphEdge] = []
    for walk in walks:
        edges.extend(_expand(source, start_memo_id, walk, max_depth, tag, limit))

    edges.sort(key=_updated_at, reverse=True)
    edges.sort(key=lambda edge: edge.depth)
    return edges[:limit]


def collect_node_ids(start_memo_id: str, edges: Sequence[GraphEdge]) -> list[str]:
    """Start memo, every edge endpoint and every path element, first-seen order."""
    seen: dict[str, None] = {start_memo_id: None}
    for edge in edges:
        seen.setdefault(edge.relation.source_memo_id, None)
        seen.setdefault(edge.relation.target_memo_id, None)
        for memo_id in edge.path:
            seen.setdefault(memo_id, None)
    return list(seen)
