"""Pure graph algorithms over an adjacency mapping of CALLS edges."""

from __future__ import annotations

from collections import deque
from typing import List, Mapping, Sequence, Set

Adjacency = Mapping[str, Sequence[str]]


def all_simple_paths(adjacency: Adjacency, src: str, dst: str, max_depth: int = 10) -> List[List[str]]:
    """Every path from *src* to *dst* with at most *max_depth* edges.

    A node appears at most once per path; different paths may share
    nodes.  Results are ordered by length, then lexicographically.
    """
    if max_depth < 1:
        return []

    paths: List[List[str]] = []
    stack: List[str] = [src]
    on_path: Set[str] = {src}

    def walk(node: str) -> None:
        for nxt in adjacency.get(node, ()):
            if nxt == dst:
                paths.append(stack + [dst])
                continue
            if nxt in on_path or len(stack) >= max_depth:
                continue
            stack.append(nxt)
            on_path.add(nxt)
            walk(nxt)
            on_path.discard(nxt)
            stack.pop()

    if src == dst:
        return []
    walk(src)
    paths.sort(key=lambda p: (len(p), p))
    return paths


def reachable(adjacency: Adjacency, start: str, hops: int) -> Set[str]:
    """Nodes within *hops* edges of *start*, excluding *start* itself."""
    seen = {start}
    queue = deque([(start, 0)])

    while queue:
        current, depth = queue.popleft()
        if depth >= hops:
            continue
        for nxt in adjacency.get(current, ()):
            if nxt not in seen:
                seen.add(nxt)
                queue.append((nxt, depth + 1))
    seen.discard(start)
    return seen
