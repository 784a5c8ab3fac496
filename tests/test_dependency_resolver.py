import pytest

from dependency_resolver import DependencyResolver
from mod_errors import DependencyCycle
from tests.conftest import pid


def make_resolver(graph, enabled=()):
    discovered = []
    enabled_ids = {pid(e) for e in enabled}

    def discover(package_id):
        discovered.append(str(package_id))
        return [pid(d) for d in graph.get(str(package_id), [])]

    resolver = DependencyResolver(discover, lambda p: p in enabled_ids)
    return resolver, discovered


def test_single_package_without_dependencies():
    resolver, _ = make_resolver({})
    assert resolver.resolve([pid("a/one")]) == [pid("a/one")]


def test_dependencies_come_before_dependents():
    graph = {"a/app": ["b/lib", "c/util"], "b/lib": ["d/core"]}
    resolver, _ = make_resolver(graph)

    plan = resolver.resolve([pid("a/app")])

    assert plan == [pid("d/core"), pid("b/lib"), pid("c/util"), pid("a/app")]


def test_diamond_collapses_duplicates():
    graph = {"a/app": ["b/left", "c/right"], "b/left": ["d/base"], "c/right": ["d/base"]}
    resolver, discovered = make_resolver(graph)

    plan = resolver.resolve([pid("a/app")])

    assert plan.count(pid("d/base")) == 1
    assert plan.index(pid("d/base")) < plan.index(pid("b/left"))
    assert plan.index(pid("d/base")) < plan.index(pid("c/right"))
    assert discovered.count("d/base") == 1


def test_requested_ids_planned_in_order():
    resolver, _ = make_resolver({})
    plan = resolver.resolve([pid("a/one"), pid("b/two"), pid("a/one")])
    assert plan == [pid("a/one"), pid("b/two")]


def test_enabled_dependency_skipped_but_enabled_root_kept():
    graph = {"a/app": ["b/lib"]}
    resolver, discovered = make_resolver(graph, enabled=("a/app", "b/lib"))

    plan = resolver.resolve([pid("a/app")])

    assert plan == [pid("a/app")]
    assert "b/lib" not in discovered


def test_cycle_is_rejected_with_chain():
    graph = {"a/x": ["b/y"], "b/y": ["c/z"], "c/z": ["a/x"]}
    resolver, _ = make_resolver(graph)

    with pytest.raises(DependencyCycle) as excinfo:
        resolver.resolve([pid("a/x")])

    assert excinfo.value.chain == [pid("a/x"), pid("b/y"), pid("c/z"), pid("a/x")]


def test_self_dependency_is_a_cycle():
    resolver, _ = make_resolver({"a/x": ["a/x"]})
    with pytest.raises(DependencyCycle):
        resolver.resolve([pid("a/x")])


def test_revisiting_finished_package_is_not_a_cycle():
    graph = {"a/app": ["b/lib", "c/other"], "c/other": ["b/lib"]}
    resolver, _ = make_resolver(graph)

    plan = resolver.resolve([pid("a/app")])

    assert plan == [pid("b/lib"), pid("c/other"), pid("a/app")]
