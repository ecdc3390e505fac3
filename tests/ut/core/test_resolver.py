"""Resolver 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from largo.core.dep.resolver import Resolver, resolve
from largo.core.dep.store import compute_fingerprint
from largo.core.dep.versions import sort_versions_desc
from largo.core.exceptions import ResolutionError, UnsatisfiableConstraints
from largo.core.lockfile import LockfileManager
from largo.core.models import (
    ROOT,
    Candidate,
    DependencyDecl,
    DependencyEdge,
    DependencyGraph,
    Local,
    Lockfile,
    PackageNode,
    Registry,
    ResolvedPackage,
)


def registry_graph(
    packages: dict[str, dict[str, dict[str, str]]],
    root: dict[str, str],
) -> DependencyGraph:
    """packages: 包名 -> 版本 -> {依赖: 约束}；root: 根依赖 -> 约束"""
    graph = DependencyGraph("sha256:test", Path("."))
    for name in sorted(packages):
        versions = packages[name]
        node = PackageNode(identity=name, kind="registry")
        for version in sort_versions_desc(list(versions)):
            deps = versions[version]
            node.candidates.append(Candidate(
                revision=version,
                source=Registry(name),
                dependencies={d: DependencyDecl(d, Registry(d, c)) for d, c in deps.items()},
                fingerprint=compute_fingerprint(Registry(name), version),
            ))
            for dep, constraint in sorted(deps.items()):
                graph.edges.append(DependencyEdge(
                    name, dep, Registry(dep, constraint), from_revision=version,
                ))
        graph.nodes[name] = node
    for name, constraint in sorted(root.items()):
        graph.edges.append(DependencyEdge(ROOT, name, Registry(name, constraint)))
    return graph


def _versions(lockfile: Lockfile) -> dict[str, str]:
    return {i: p.revision for i, p in lockfile.packages.items()}


class TestRegistryResolution:
    def test_picks_highest_satisfying(self) -> None:
        graph = registry_graph({"p": {"1.0": {}, "2.0": {}, "2.5": {}, "3.0": {}}}, {"p": ">=2.0,<3.0"})
        assert _versions(resolve(graph)) == {"p": "2.5"}

    def test_transitive(self) -> None:
        graph = registry_graph(
            {"a": {"1.0": {"b": ">=1.1"}}, "b": {"1.0": {}, "1.1": {}, "1.2": {}}},
            {"a": "*"},
        )
        lockfile = resolve(graph)
        assert _versions(lockfile) == {"a": "1.0", "b": "1.2"}
        assert lockfile.packages["a"].dependencies == {"b": ""}
        assert lockfile.root == {"a": ""}

    def test_backtracks_to_older_version(self) -> None:
        graph = registry_graph(
            {
                "a": {"2.0": {"c": ">=2.0"}, "1.0": {"c": "<2.0"}},
                "b": {"1.0": {"c": "<2.0"}},
                "c": {"1.0": {}, "2.0": {}},
            },
            {"a": "*", "b": "*"},
        )
        assert _versions(resolve(graph)) == {"a": "1.0", "b": "1.0", "c": "1.0"}

    def test_unreachable_candidates_not_locked(self) -> None:
        graph = registry_graph(
            {"a": {"2.0": {}, "1.0": {"old": "*"}}, "old": {"1.0": {}}},
            {"a": "*"},
        )
        assert _versions(resolve(graph)) == {"a": "2.0"}

    def test_conflict_names_package_and_constraints(self) -> None:
        graph = registry_graph(
            {
                "P": {"1.0": {}, "2.0": {}, "2.5": {}, "3.0": {}},
                "Q": {"1.0": {"P": ">=3.0"}},
            },
            {"P": ">=2.0,<3.0", "Q": "*"},
        )
        with pytest.raises(UnsatisfiableConstraints) as exc:
            resolve(graph)
        assert exc.value.identity == "P"
        assert exc.value.constraints == [">=2.0,<3.0", ">=3.0"]
        assert exc.value.requirers == [ROOT, "Q"]

    def test_no_matching_version(self) -> None:
        graph = registry_graph({"p": {"1.0": {}}}, {"p": ">=5"})
        with pytest.raises(UnsatisfiableConstraints) as exc:
            resolve(graph)
        assert exc.value.constraints == [">=5"]

    def test_step_budget(self) -> None:
        graph = registry_graph({"p": {"1.0": {}}}, {"p": "*"})
        with pytest.raises(ResolutionError, match="步"):
            Resolver(graph, max_steps=1).resolve()


class TestLockedPreference:
    def _prior(self, version: str) -> Lockfile:
        return Lockfile("sha256:test", {"p": ""}, {"p": ResolvedPackage(
            identity="p", kind="registry", source=Registry("p"),
            revision=version, fingerprint=compute_fingerprint(Registry("p"), version),
        )})

    def test_prefers_locked_version(self) -> None:
        graph = registry_graph({"p": {"1.0": {}, "2.0": {}}}, {"p": ">=1.0"})
        assert _versions(Resolver(graph, self._prior("1.0")).resolve()) == {"p": "1.0"}

    def test_locked_version_no_longer_valid(self) -> None:
        graph = registry_graph({"p": {"1.0": {}, "2.0": {}}}, {"p": ">=2.0"})
        assert _versions(Resolver(graph, self._prior("1.0")).resolve()) == {"p": "2.0"}


class TestFixedSources:
    def _local_graph(self, located: list[str]) -> DependencyGraph:
        graph = DependencyGraph("sha256:test", Path("."))
        node = PackageNode("shared", "local")
        for i, rev in enumerate(located):
            requirer = ROOT if i == 0 else f"user{i}"
            src = Local(f"/libs/shared{i}")
            if not any(c.revision == rev for c in node.candidates):
                node.candidates.append(Candidate(rev, src, fingerprint=compute_fingerprint(src, rev)))
            graph.edges.append(DependencyEdge(requirer, "shared", src, located=rev, from_revision=None if i == 0 else "1.0"))
            if requirer != ROOT:
                graph.nodes[requirer] = PackageNode(requirer, "registry", [
                    Candidate("1.0", Registry(requirer), fingerprint="f"),
                ])
                graph.edges.append(DependencyEdge(ROOT, requirer, Registry(requirer)))
        graph.nodes["shared"] = node
        return graph

    def test_single_local(self) -> None:
        lockfile = resolve(self._local_graph(["sha256:aa"]))
        assert lockfile.packages["shared"].revision == "sha256:aa"

    def test_distinct_locations_conflict(self) -> None:
        with pytest.raises(UnsatisfiableConstraints) as exc:
            resolve(self._local_graph(["sha256:aa", "sha256:bb"]))
        assert exc.value.identity == "shared"
        assert len(exc.value.constraints) == 2


class TestDeterminism:
    def test_same_graph_same_bytes(self, tmp_path: Path) -> None:
        packages = {
            "a": {"1.0": {"c": "<2.0"}, "2.0": {"c": ">=2.0"}},
            "b": {"1.0": {"c": "*"}},
            "c": {"1.0": {}, "2.0": {}, "2.1": {}},
        }
        first = resolve(registry_graph(packages, {"a": "*", "b": "*"}))
        second = resolve(registry_graph(dict(reversed(list(packages.items()))), {"b": "*", "a": "*"}))

        manager = LockfileManager(tmp_path / "largo.lock", tmp_path)
        assert manager.dumps(first) == manager.dumps(second)
