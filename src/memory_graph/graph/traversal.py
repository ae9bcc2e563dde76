"""Level-synchronous breadth-first expansion.

Backends that cannot express the expansion as one recursive query (Neo4j)
drive it level by level through this helper. Each level unions the
neighbours of the previous frontier that were not reached at an earlier
level; the first level a node is reached at wins.
"""

from typing import Callable, Iterable

# Given a frontier of node ids, yield (neighbour_id, edge_type) pairs
# across edges in either direction.
ExpandFn = Callable[[list[str]], Iterable[tuple[str, str]]]


def expand_levels(
    seeds: Iterable[str], hops: int, expand: ExpandFn
) -> dict[str, tuple[int, str | None]]:
    """Map every reached node id to ``(level, edge_type)``.

    Seeds are level 0 with no edge type. When a node is reached at the same
    level through several edge types, the lexicographically smallest type is
    kept so results are deterministic.
    """
    reached: dict[str, tuple[int, str | None]] = {}
    frontier: list[str] = []
    for seed in seeds:
        if seed not in reached:
            reached[seed] = (0, None)
            frontier.append(seed)

    level = 0
    while frontier and level < hops:
        level += 1
        found: dict[str, str] = {}
        for neighbour, edge_type in expand(frontier):
            if neighbour in reached:
                continue
            current = found.get(neighbour)
            if current is None or edge_type < current:
                found[neighbour] = edge_type
        for neighbour, edge_type in found.items():
            reached[neighbour] = (level, edge_type)
        frontier = sorted(found)

    return reached
