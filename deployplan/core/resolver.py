"""Deterministic topological ordering of a deployment graph.

Kahn's algorithm over the dependency relation.  Among units that are ready
at the same time, the one registered first runs first, so the order
follows the sequence the plan was authored in rather than id spelling.
"""

from __future__ import annotations

import heapq

from deployplan.core.graph import DeploymentGraph
from deployplan.models.units import UnitHandle


class Resolver:
    """Pure, side-effect-free order computation over a ``DeploymentGraph``."""

    def __init__(self, graph: DeploymentGraph) -> None:
        self._graph = graph

    def resolve(self, tags: list[str] | None = None) -> list[UnitHandle]:
        """Return the execution order for the selected units.

        Parameters
        ----------
        tags:
            Optional tag filter.  Selected units and their transitive
            dependencies are ordered; everything else is left out.
        """
        graph = self._graph
        graph.validate()
        selected = graph.select(tags)

        in_degree: dict[str, int] = {}
        dependents: dict[str, list[UnitHandle]] = {uid: [] for uid in selected}
        for uid in selected:
            prereqs = {dep.id for dep in graph.get_prerequisites(uid)}
            in_degree[uid] = len(prereqs)
            for dep in prereqs:
                dependents[dep].append(graph.handle(uid))

        ready = [
            (handle.ordinal, handle.id)
            for handle in graph.handles
            if handle.id in selected and in_degree[handle.id] == 0
        ]
        heapq.heapify(ready)

        order: list[UnitHandle] = []
        while ready:
            _, uid = heapq.heappop(ready)
            order.append(graph.handle(uid))
            for dependent in dependents[uid]:
                in_degree[dependent.id] -= 1
                if in_degree[dependent.id] == 0:
                    heapq.heappush(ready, (dependent.ordinal, dependent.id))
        return order
