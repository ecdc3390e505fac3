"""依赖图构建

从项目清单的直接依赖出发，逐层展开每个依赖自带的清单，直到不再出现新的
(包, 修订)。每一层先把需要的 git / 本地内容并发拉进内容仓库，再顺序读取清单，
因此求解开始前所有清单都已就绪，且结果与拉取完成顺序无关。

- 本地 / git 包的清单从内容仓库读取（包根目录的 largo.yml，没有则视为无依赖）
- 注册表包的依赖来自注册表索引，不需要下载内容
- 同一包标识以不同来源类型出现 → ConflictingSourceKind
- 展开结束后检查环 → CyclicDependency
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from largo.core.dep.locator import SourceLocator
from largo.core.dep.registry import RegistryRelease
from largo.core.dep.store import ContentStore, compute_fingerprint
from largo.core.dep.versions import satisfies
from largo.core.exceptions import (
    ConflictingSourceKind,
    CyclicDependency,
    InvalidLocalPath,
    OperationCancelled,
    UnreachableSource,
)
from largo.core.manifest import Manifest, read_package_dependencies
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
    SourceSpec,
    VcsRef,
    source_location,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class _Pending:
    """待处理的一条依赖声明"""

    requirer: str
    from_revision: str | None
    base_dir: Path | None   # 相对路径的基准目录；None 表示不允许本地依赖
    decl: DependencyDecl


class GraphBuilder:
    """依赖图构建器"""

    def __init__(
        self,
        locator: SourceLocator,
        store: ContentStore,
        *,
        prior: Lockfile | None = None,
        manifest_name: str = "largo.yml",
        retries: int = 3,
        retry_delay: float = 0.5,
        max_workers: int = 4,
        cancel: threading.Event | None = None,
    ) -> None:
        self.locator = locator
        self.store = store
        self.prior = prior
        self.manifest_name = manifest_name
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.max_workers = max_workers
        self.cancel = cancel

        self._requirements: dict[str, list[tuple[str, str]]] = {}
        self._releases: dict[str, list[RegistryRelease]] = {}
        self._expanded: set[tuple[str, str]] = set()

    def build(self, manifest: Manifest) -> DependencyGraph:
        graph = DependencyGraph(
            manifest_fingerprint=manifest.fingerprint(),
            root_dir=manifest.root,
        )
        self._requirements.clear()
        self._expanded.clear()

        layer = [
            _Pending(ROOT, None, manifest.root, manifest.dependencies[name])
            for name in sorted(manifest.dependencies)
        ]
        depth = 0
        while layer:
            if self.cancel is not None and self.cancel.is_set():
                raise OperationCancelled("依赖图构建已取消")
            depth += 1
            logger.info("展开依赖第 %d 层: %d 条声明", depth, len(layer))
            layer = self._process_layer(graph, layer)

        check_acyclic(graph)
        logger.info("依赖图: %d 个包, %d 条边", len(graph.nodes), len(graph.edges))
        return graph

    # ------------------------------------------------------------------
    # 逐层展开
    # ------------------------------------------------------------------

    def _process_layer(self, graph: DependencyGraph, layer: list[_Pending]) -> list[_Pending]:
        edges = [self._make_edge(item) for item in layer]

        # 本层所有 git / 本地内容先并发拉取
        requests: list[tuple[SourceSpec, str]] = []
        seen: set[str] = set()
        for edge in edges:
            if isinstance(edge.constraint, Registry):
                continue
            fp = compute_fingerprint(edge.constraint, edge.located)
            if fp not in seen:
                seen.add(fp)
                requests.append((edge.constraint, edge.located))
        self.store.fetch_many(requests, max_workers=self.max_workers, cancel=self.cancel)

        next_layer: list[_Pending] = []
        for edge in edges:
            graph.edges.append(edge)
            node = self._node_for(graph, edge)
            if isinstance(edge.constraint, Registry):
                next_layer.extend(self._expand_registry(node, edge))
            else:
                next_layer.extend(self._expand_fixed(node, edge))
        return next_layer

    def _make_edge(self, item: _Pending) -> DependencyEdge:
        decl = item.decl
        source = decl.source
        located = ""
        if isinstance(source, Local):
            if item.base_dir is None:
                raise InvalidLocalPath(item.requirer, decl.identity, source.path)
            path = Path(source.path)
            if not path.is_absolute():
                path = item.base_dir / path
            source = Local(path=str(path.resolve()))
            located = self.locator.locate(source)
        elif isinstance(source, VcsRef):
            located = self._locked_vcs_revision(decl.identity, source) or \
                self._retrying(self.locator.locate, source)
        elif not isinstance(source, Registry):
            raise TypeError(f"未知的来源类型: {type(source).__name__}")

        return DependencyEdge(
            from_=item.requirer,
            to=decl.identity,
            constraint=source,
            feature=decl.feature,
            from_revision=item.from_revision,
            located=located,
        )

    def _locked_vcs_revision(self, identity: str, source: VcsRef) -> str:
        """同一仓库同一 ref 已被锁定时直接复用锁定的提交，不查询远端"""
        if self.prior is None:
            return ""
        locked = self.prior.get(identity)
        if locked is None or not isinstance(locked.source, VcsRef):
            return ""
        if locked.source.repository == source.repository and locked.source.ref == source.ref:
            logger.debug("复用锁定提交: %s -> %s", identity, locked.revision[:12])
            return locked.revision
        return ""

    def _node_for(self, graph: DependencyGraph, edge: DependencyEdge) -> PackageNode:
        kind = edge.constraint.kind
        label = kind
        if isinstance(edge.constraint, Registry):
            label = f"{kind}:{edge.constraint.name}"
        reqs = self._requirements.setdefault(edge.to, [])
        if (edge.from_, label) not in reqs:
            reqs.append((edge.from_, label))

        node = graph.nodes.get(edge.to)
        if node is None:
            node = PackageNode(identity=edge.to, kind=kind)
            graph.nodes[edge.to] = node
            return node
        labels = {lbl for _, lbl in reqs}
        if node.kind != kind or len(labels) > 1:
            raise ConflictingSourceKind(edge.to, list(reqs))
        return node

    def _expand_fixed(self, node: PackageNode, edge: DependencyEdge) -> list[_Pending]:
        """git / 本地: 每个 (位置, 修订) 是一个候选，首次出现时读取其清单"""
        location = source_location(edge.constraint)
        for cand in node.candidates:
            if source_location(cand.source) == location and cand.revision == edge.located:
                return []

        fingerprint = compute_fingerprint(edge.constraint, edge.located)
        with self.store.open(fingerprint) as view:
            if view.exists(self.manifest_name):
                deps = read_package_dependencies(
                    view.read_text(self.manifest_name), context=f"{node.identity}@{edge.located[:19]}",
                )
            else:
                deps = {}

        cand = Candidate(
            revision=edge.located,
            source=edge.constraint,
            dependencies=deps,
            fingerprint=fingerprint,
            content_hash=edge.located if isinstance(edge.constraint, Local) else "",
        )
        node.candidates.append(cand)

        base_dir = Path(location) if isinstance(edge.constraint, Local) else None
        return [
            _Pending(node.identity, cand.revision, base_dir, deps[name])
            for name in sorted(deps)
        ]

    def _expand_registry(self, node: PackageNode, edge: DependencyEdge) -> list[_Pending]:
        """注册表: 全部版本都是候选，只展开满足这条边约束的版本"""
        assert isinstance(edge.constraint, Registry)
        name = edge.constraint.name
        if not node.candidates:
            releases = self._registry_releases(name)
            node.candidates = [
                Candidate(
                    revision=r.version,
                    source=Registry(name=name),
                    dependencies=r.dependencies,
                    fingerprint=compute_fingerprint(Registry(name=name), r.version),
                    checksum=r.sha256,
                )
                for r in releases
            ]

        pending: list[_Pending] = []
        for cand in node.candidates:
            key = (node.identity, cand.revision)
            if key in self._expanded or not satisfies(cand.revision, edge.constraint.constraint):
                continue
            self._expanded.add(key)
            pending.extend(
                _Pending(node.identity, cand.revision, None, cand.dependencies[dep])
                for dep in sorted(cand.dependencies)
            )
        return pending

    def _registry_releases(self, name: str) -> list[RegistryRelease]:
        if name not in self._releases:
            self._releases[name] = self._retrying(self.locator.all_releases, name)
        return self._releases[name]

    def _retrying(self, fn: Callable[..., T], *args: object) -> T:
        """拉取边界的有限次重试，只重试网络不可达"""
        for attempt in range(1, self.retries + 1):
            try:
                return fn(*args)
            except UnreachableSource as e:
                if attempt == self.retries:
                    raise
                logger.warning("定位失败 (%d/%d): %s", attempt, self.retries, e)
                time.sleep(self.retry_delay * attempt)
        raise AssertionError("unreachable")


def check_acyclic(graph: DependencyGraph) -> None:
    """深度优先检查环，按标识排序遍历以保证报告稳定"""
    adjacency: dict[str, list[str]] = {}
    for edge in graph.edges:
        adjacency.setdefault(edge.from_, [])
        if edge.to not in adjacency[edge.from_]:
            adjacency[edge.from_].append(edge.to)
    for succ in adjacency.values():
        succ.sort()

    done: set[str] = set()
    starts = [ROOT] + sorted(graph.nodes)
    for start in starts:
        if start in done:
            continue
        path: list[str] = [start]
        on_path = {start}
        iters = [iter(adjacency.get(start, []))]
        while iters:
            nxt = next(iters[-1], None)
            if nxt is None:
                iters.pop()
                finished = path.pop()
                on_path.discard(finished)
                done.add(finished)
                continue
            if nxt in on_path:
                cycle = path[path.index(nxt):] + [nxt]
                raise CyclicDependency(cycle)
            if nxt in done:
                continue
            path.append(nxt)
            on_path.add(nxt)
            iters.append(iter(adjacency.get(nxt, [])))
