"""
DAG utilities (pure).

Dependency resolution for plan units: unknown-reference checks and a
stable topological sort. No I/O.
"""

from __future__ import annotations

import heapq

from homelab.core.errors import CycleError


def check_references(nodes: list[str], deps: dict[str, list[str]]) -> None:
    """Fail if any node depends on a node that is not declared.

    A dangling reference makes the graph unsatisfiable, the same as a
    cycle: there is no order in which the dependent can run.

    Raises:
        CycleError: Naming every dangling reference.
    """
    known = set(nodes)
    missing: list[str] = []
    for node in nodes:
        for dep in deps.get(node, []):
            if dep not in known:
                missing.append(f"{node} requires unknown {dep}")
    if missing:
        raise CycleError(
            "unsatisfiable dependencies: " + "; ".join(missing),
            nodes=[m.split(" ", 1)[0] for m in missing],
        )


def topological_order(nodes: list[str], deps: dict[str, list[str]]) -> list[str]:
    """Order nodes so every node comes after its dependencies.

    Kahn's algorithm with the node's position in ``nodes`` as priority:
    among ready nodes the earliest declared runs first, so nodes with no
    dependencies keep declaration order and the result is deterministic.

    Args:
        nodes: Node ids in declaration order (must be unique).
        deps: node → ids it depends on.

    Returns:
        Nodes in execution order.

    Raises:
        CycleError: On unknown references or a cycle.
    """
    check_references(nodes, deps)

    index = {node: i for i, node in enumerate(nodes)}
    in_degree = {node: 0 for node in nodes}
    successors: dict[str, list[str]] = {node: [] for node in nodes}

    for node in nodes:
        for dep in set(deps.get(node, [])):
            in_degree[node] += 1
            successors[dep].append(node)

    ready = [index[n] for n, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        node = nodes[heapq.heappop(ready)]
        order.append(node)
        for successor in successors[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, index[successor])

    if len(order) < len(nodes):
        stuck = [n for n in nodes if in_degree[n] > 0]
        raise CycleError(
            "dependency cycle between: " + ", ".join(stuck),
            nodes=stuck,
        )

    return order
