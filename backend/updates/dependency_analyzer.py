"""
Container Dependency Ordering

Builds a dependency graph from container links and dependency labels and
orders containers so that every container comes after the containers it
depends on. Updater instances are always placed last.

Ordering uses Kahn's algorithm with a deterministic queue. When a cycle
prevents a complete ordering, a depth-first search extracts a concrete
cycle path for the error message.
"""

import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from updates.container import Container
from updates.errors import CircularReferenceError, IdentifierCollisionError

logger = logging.getLogger(__name__)

# DFS colors
_WHITE, _GRAY, _BLACK = 0, 1, 2


class DependencyGraph:
    """
    Dependency graph for one update cycle.

    Nodes are container identifiers. An edge t -> c means c links to t,
    so t must be handled before c when starting containers.

    Attributes:
        container_by_ident: identifier -> Container
        indegree: identifier -> number of unresolved dependencies
        adjacency: identifier -> identifiers that depend on it (insertion order)
    """

    def __init__(self, containers: Sequence[Container]):
        self.container_by_ident: Dict[str, Container] = {}
        self.indegree: Dict[str, int] = {}
        self.adjacency: Dict[str, List[str]] = {}
        self._links: Dict[str, List[str]] = {}

        self._add_nodes(containers)
        self._add_edges()

    def _add_nodes(self, containers: Sequence[Container]):
        by_ident: Dict[str, List[Container]] = {}
        for container in containers:
            ident = container.identifier
            group = by_ident.setdefault(ident, [])
            if any(existing is container for existing in group):
                continue
            group.append(container)

        for ident, group in by_ident.items():
            if len(group) > 1:
                raise IdentifierCollisionError(ident, [(c.name, c.id) for c in group])
            self.container_by_ident[ident] = group[0]
            self.indegree[ident] = 0
            self.adjacency[ident] = []

    def _resolve_link(self, target: str, name_aliases: Dict[str, Optional[str]]) -> Optional[str]:
        """Map a link target to a node; plain container names resolve when unambiguous."""
        if target in self.container_by_ident:
            return target
        return name_aliases.get(target)

    def _add_edges(self):
        # Compose containers are keyed by project-service, but HostConfig links use names
        name_aliases: Dict[str, Optional[str]] = {}
        for ident, container in self.container_by_ident.items():
            if container.name and container.name != ident:
                name_aliases[container.name] = None if container.name in name_aliases else ident

        for ident, container in self.container_by_ident.items():
            resolved: List[str] = []
            for target in container.links:
                dependency = self._resolve_link(target, name_aliases)
                if dependency is None:
                    logger.debug(f"Ignoring link {container.name} -> {target}: not in this cycle")
                    continue
                if dependency in resolved:
                    continue
                resolved.append(dependency)
                self.adjacency[dependency].append(ident)
                self.indegree[ident] += 1
            self._links[ident] = resolved

    def topological_order(self) -> List[Container]:
        """
        Order containers so dependencies come first.

        Raises:
            CircularReferenceError: If the graph contains a cycle (self-loops included)
        """
        indegree = dict(self.indegree)
        queue = deque(sorted((ident for ident, degree in indegree.items() if degree == 0), reverse=True))
        order: List[str] = []

        while queue:
            ident = queue.popleft()
            order.append(ident)
            for dependent in self.adjacency[ident]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    queue.append(dependent)

        if len(order) < len(self.container_by_ident):
            processed = set(order)
            unprocessed = sorted(ident for ident in self.container_by_ident if ident not in processed)
            cycle_path = self._find_cycle(unprocessed[0])
            raise CircularReferenceError(cycle_path[0], cycle_path)

        return [self.container_by_ident[ident] for ident in order]

    def _find_cycle(self, start: str) -> List[str]:
        """Three-color DFS along link direction; returns the cycle closed on its first node."""
        colors = {ident: _WHITE for ident in self.container_by_ident}
        path: List[str] = [start]
        frames: List[Tuple[str, Iterator[str]]] = [(start, iter(self._links.get(start, [])))]
        colors[start] = _GRAY

        while frames:
            ident, dependencies = frames[-1]
            dependency = next(dependencies, None)
            if dependency is None:
                frames.pop()
                path.pop()
                colors[ident] = _BLACK
                continue
            if colors[dependency] == _GRAY:
                index = path.index(dependency)
                return path[index:] + [dependency]
            if colors[dependency] == _WHITE:
                colors[dependency] = _GRAY
                path.append(dependency)
                frames.append((dependency, iter(self._links.get(dependency, []))))

        # Every node Kahn leaves behind reaches a cycle, so this is not expected
        return [start, start]


def sort_by_dependencies(containers: List[Container]):
    """
    Sort containers in place so dependencies precede their dependents.

    Updater instances are taken out before sorting and appended in their
    original relative order.

    Raises:
        CircularReferenceError: If the dependencies contain a cycle
        IdentifierCollisionError: If two containers resolve to the same identifier
    """
    regular = [c for c in containers if not c.is_watchtower]
    updaters = [c for c in containers if c.is_watchtower]

    ordered = DependencyGraph(regular).topological_order()

    logger.debug(
        f"Sorted {len(ordered)} containers by dependencies: "
        f"{[c.name for c in ordered]}, updater instances last: {[c.name for c in updaters]}"
    )
    containers[:] = ordered + updaters
