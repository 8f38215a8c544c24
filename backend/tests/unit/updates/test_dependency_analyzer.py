"""
Unit tests for dependency ordering.
"""

import itertools

import pytest

from tests.test_helpers import create_container
from updates.dependency_analyzer import DependencyGraph, sort_by_dependencies
from updates.errors import CircularReferenceError, IdentifierCollisionError
from utils.names import COMPOSE_PROJECT_LABEL, COMPOSE_SERVICE_LABEL


def _names(containers):
    return [c.name for c in containers]


@pytest.mark.unit
class TestSortByDependencies:

    def test_simple_chain(self):
        containers = [
            create_container("a", links=["b"]),
            create_container("b", links=["c"]),
            create_container("c"),
        ]
        sort_by_dependencies(containers)
        assert _names(containers) == ["c", "b", "a"]

    def test_diamond(self):
        containers = [
            create_container("a", links=["b", "c"]),
            create_container("b", links=["d"]),
            create_container("c", links=["d"]),
            create_container("d"),
        ]
        sort_by_dependencies(containers)
        names = _names(containers)
        assert names[0] == "d"
        assert names[-1] == "a"
        assert set(names[1:3]) == {"b", "c"}

    def test_cycle(self):
        containers = [
            create_container("a", links=["b"]),
            create_container("b", links=["a"]),
        ]
        with pytest.raises(CircularReferenceError) as exc_info:
            sort_by_dependencies(containers)

        assert exc_info.value.cycle_path == ["a", "b", "a"]
        assert "a -> b -> a" in str(exc_info.value)
        # Input is left untouched
        assert _names(containers) == ["a", "b"]

    def test_self_loop_is_a_cycle(self):
        with pytest.raises(CircularReferenceError) as exc_info:
            sort_by_dependencies([create_container("a", links=["a"])])
        assert exc_info.value.cycle_path == ["a", "a"]

    def test_cycle_behind_long_chain(self):
        names = [f"c{i:05d}" for i in range(1500)]
        containers = [
            create_container(name, links=[names[i + 1] if i + 1 < len(names) else "x"])
            for i, name in enumerate(names)
        ]
        containers += [create_container("x", links=["y"]), create_container("y", links=["x"])]

        with pytest.raises(CircularReferenceError) as exc_info:
            sort_by_dependencies(containers)

        assert exc_info.value.cycle_path == ["x", "y", "x"]

    def test_long_acyclic_chain(self):
        names = [f"c{i:05d}" for i in range(1500)]
        containers = [
            create_container(name, links=[names[i + 1]] if i + 1 < len(names) else None)
            for i, name in enumerate(names)
        ]
        sort_by_dependencies(containers)
        assert _names(containers) == list(reversed(names))

    def test_updater_goes_last(self):
        containers = [
            create_container("watchtower", watchtower=True),
            create_container("a", links=["b"]),
            create_container("b"),
        ]
        sort_by_dependencies(containers)
        assert _names(containers) == ["b", "a", "watchtower"]

    def test_identifier_collision(self):
        labels = {COMPOSE_PROJECT_LABEL: "shop", COMPOSE_SERVICE_LABEL: "web"}
        containers = [
            create_container("shop_web_1", labels=labels),
            create_container("shop_web_2", labels=labels),
        ]
        with pytest.raises(IdentifierCollisionError) as exc_info:
            sort_by_dependencies(containers)

        assert exc_info.value.identifier == "shop-web"
        assert len(exc_info.value.containers) == 2

    def test_same_container_twice_is_not_a_collision(self):
        container = create_container("a")
        containers = [container, container]
        sort_by_dependencies(containers)
        assert _names(containers) == ["a"]

    def test_missing_link_is_ignored(self):
        containers = [create_container("a", links=["ghost"]), create_container("b")]
        sort_by_dependencies(containers)
        assert set(_names(containers)) == {"a", "b"}

    def test_empty_list(self):
        containers = []
        sort_by_dependencies(containers)
        assert containers == []

    def test_order_does_not_depend_on_input_order(self):
        containers = [
            create_container("a", links=["b"]),
            create_container("b", links=["c"]),
            create_container("c"),
            create_container("x"),
        ]
        results = set()
        for permutation in itertools.permutations(containers):
            ordered = list(permutation)
            sort_by_dependencies(ordered)
            results.add(tuple(_names(ordered)))
        assert len(results) == 1

    def test_sorting_twice_is_stable(self):
        containers = [
            create_container("a", links=["b"]),
            create_container("b"),
            create_container("c"),
        ]
        sort_by_dependencies(containers)
        first = _names(containers)
        sort_by_dependencies(containers)
        assert _names(containers) == first

    def test_host_link_resolves_compose_container_by_name(self):
        db = create_container("shop_db_1", labels={
            COMPOSE_PROJECT_LABEL: "shop",
            COMPOSE_SERVICE_LABEL: "db",
        })
        web = create_container("web", host_config={"Links": ["/shop_db_1:/web/db"]})

        containers = [web, db]
        sort_by_dependencies(containers)
        assert _names(containers) == ["shop_db_1", "web"]


@pytest.mark.unit
class TestDependencyGraph:

    def test_indegree_and_adjacency(self):
        graph = DependencyGraph([
            create_container("a", links=["b", "b"]),
            create_container("b"),
        ])
        assert graph.indegree == {"a": 1, "b": 0}
        assert graph.adjacency["b"] == ["a"]
