"""版本求解

在已完全展开的依赖图上为每个可达的包标识选出唯一候选。

- 显式选择点栈做回溯搜索，不使用递归
- 每一步选择剩余候选最少的待定包（同数按名称），结果只依赖图本身
- 注册表候选: 仍满足约束的锁定版本优先，其余按版本从高到低
- git / 本地候选: 所有生效边定位到的 (位置, 修订) 必须一致
- 失败时报告第一个冲突的包及各方约束（按要求方排序、去重）
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from largo.core.dep.versions import satisfies
from largo.core.exceptions import ResolutionError, UnsatisfiableConstraints
from largo.core.models import (
    ROOT,
    Candidate,
    DependencyEdge,
    DependencyGraph,
    Lockfile,
    Registry,
    ResolvedPackage,
    source_location,
)

logger = logging.getLogger(__name__)


@dataclass
class _Choice:
    """一个选择点: 包标识、按优先级排列的可选候选、当前下标"""

    identity: str
    options: list[Candidate]
    index: int = 0

    @property
    def current(self) -> Candidate:
        return self.options[self.index]


class Resolver:
    """依赖求解器"""

    def __init__(
        self,
        graph: DependencyGraph,
        prior: Lockfile | None = None,
        max_steps: int = 100_000,
    ) -> None:
        self.graph = graph
        self.prior = prior
        self.max_steps = max_steps
        self._incoming: dict[str, list[DependencyEdge]] = {}
        for edge in graph.edges:
            self._incoming.setdefault(edge.to, []).append(edge)

    def resolve(self) -> Lockfile:
        assignment: dict[str, Candidate] = {}
        stack: list[_Choice] = []
        conflicts: list[tuple[str, list[DependencyEdge]]] = []

        steps = 0
        while True:
            steps += 1
            if steps > self.max_steps:
                raise ResolutionError(f"求解超过 {self.max_steps} 步仍未结束，依赖图过于复杂")

            violated = self._first_violation(assignment)
            if violated is None:
                pending = self._pending(assignment)
                if not pending:
                    break
                best = min(pending, key=lambda i: (len(self._options(i, assignment)), i))
                options = self._options(best, assignment)
                if options:
                    choice = _Choice(best, options)
                    stack.append(choice)
                    assignment[best] = choice.current
                    logger.debug("选择 %s = %s", best, choice.current.revision[:19])
                    continue
                violated = best

            conflicts.append((violated, self._active_incoming(violated, assignment)))
            if not self._backtrack(stack, assignment):
                identity, edges = conflicts[0]
                raise self._unsatisfiable(identity, edges)

        logger.info("求解完成: %d 个包 (%d 步)", len(assignment), steps)
        return self._to_lockfile(assignment)

    # ------------------------------------------------------------------
    # 搜索
    # ------------------------------------------------------------------

    @staticmethod
    def _backtrack(stack: list[_Choice], assignment: dict[str, Candidate]) -> bool:
        """推进栈顶选择点；耗尽的选择点出栈。栈空返回 False"""
        while stack:
            top = stack[-1]
            del assignment[top.identity]
            top.index += 1
            if top.index < len(top.options):
                assignment[top.identity] = top.current
                logger.debug("回溯 %s -> %s", top.identity, top.current.revision[:19])
                return True
            stack.pop()
        return False

    def _edge_active(self, edge: DependencyEdge, assignment: dict[str, Candidate]) -> bool:
        if edge.from_ == ROOT:
            return True
        chosen = assignment.get(edge.from_)
        return chosen is not None and chosen.revision == edge.from_revision

    def _active_incoming(self, identity: str, assignment: dict[str, Candidate]) -> list[DependencyEdge]:
        return [e for e in self._incoming.get(identity, []) if self._edge_active(e, assignment)]

    def _pending(self, assignment: dict[str, Candidate]) -> list[str]:
        """有生效入边但尚未选定的包"""
        return sorted(
            identity for identity in self._incoming
            if identity not in assignment and self._active_incoming(identity, assignment)
        )

    def _first_violation(self, assignment: dict[str, Candidate]) -> str | None:
        for identity in sorted(assignment):
            cand = assignment[identity]
            edges = self._active_incoming(identity, assignment)
            if not all(_matches(cand, e) for e in edges):
                return identity
        return None

    def _options(self, identity: str, assignment: dict[str, Candidate]) -> list[Candidate]:
        edges = self._active_incoming(identity, assignment)
        survivors = [
            c for c in self.graph.nodes[identity].candidates
            if all(_matches(c, e) for e in edges)
        ]
        locked = self.prior.get(identity) if self.prior is not None else None
        if locked is not None:
            preferred = [c for c in survivors if c.revision == locked.revision]
            survivors = preferred + [c for c in survivors if c.revision != locked.revision]
        return survivors

    # ------------------------------------------------------------------
    # 结果
    # ------------------------------------------------------------------

    def _unsatisfiable(self, identity: str, edges: list[DependencyEdge]) -> UnsatisfiableConstraints:
        ordered = sorted(edges, key=lambda e: (e.from_ != ROOT, e.from_))
        constraints: list[str] = []
        requirers: list[str] = []
        for edge in ordered:
            text = _describe_constraint(edge)
            if text not in constraints:
                constraints.append(text)
            if edge.from_ not in requirers:
                requirers.append(edge.from_)
        return UnsatisfiableConstraints(identity, constraints, requirers)

    def _to_lockfile(self, assignment: dict[str, Candidate]) -> Lockfile:
        packages: dict[str, ResolvedPackage] = {}
        for identity, cand in assignment.items():
            outgoing = {
                e.to: e.feature for e in self.graph.edges
                if e.from_ == identity and e.from_revision == cand.revision
            }
            packages[identity] = ResolvedPackage(
                identity=identity,
                kind=self.graph.nodes[identity].kind,
                source=cand.source,
                revision=cand.revision,
                fingerprint=cand.fingerprint,
                content_hash=cand.content_hash,
                checksum=cand.checksum,
                dependencies=dict(sorted(outgoing.items())),
            )
        root = {e.to: e.feature for e in self.graph.edges if e.from_ == ROOT}
        return Lockfile(
            manifest_fingerprint=self.graph.manifest_fingerprint,
            root=root,
            packages=packages,
        )


def _matches(cand: Candidate, edge: DependencyEdge) -> bool:
    if isinstance(edge.constraint, Registry):
        return satisfies(cand.revision, edge.constraint.constraint)
    return (
        source_location(cand.source) == source_location(edge.constraint)
        and cand.revision == edge.located
    )


def _describe_constraint(edge: DependencyEdge) -> str:
    if isinstance(edge.constraint, Registry):
        return edge.constraint.describe()
    return f"{edge.constraint.describe()} ({edge.located[:19]})"


def resolve(graph: DependencyGraph, prior: Lockfile | None = None) -> Lockfile:
    """便捷函数"""
    return Resolver(graph, prior).resolve()
