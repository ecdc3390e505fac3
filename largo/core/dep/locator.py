"""来源定位器

把一条来源声明定位到具体修订，尽量不下载完整内容:
- 本地: 重新计算目录内容哈希（每次都算，漂移不会被缓存掩盖）
- git:  固定提交直接返回；浮动 ref 通过 ls-remote 查询
- 注册表: 返回满足约束的候选版本列表

本模块不做重试，重试策略统一在拉取边界（ContentStore / GraphBuilder）。
"""

from __future__ import annotations

import logging
from pathlib import Path

from packaging.version import Version

from largo.core.dep.registry import RegistryIndex, RegistryRelease
from largo.core.dep.vcs import GitClient
from largo.core.dep.versions import matches, parse_constraint, sort_versions_desc
from largo.core.exceptions import AmbiguousRef, UnreachableSource
from largo.core.models import Local, Registry, SourceSpec, VcsRef
from largo.utils.hashing import hash_tree

logger = logging.getLogger(__name__)


class SourceLocator:
    """来源定位器"""

    def __init__(self, git: GitClient, registry: RegistryIndex) -> None:
        self.git = git
        self.registry = registry

    def locate(self, source: SourceSpec) -> str:
        """返回具体修订: 本地内容哈希 / git 提交 / 注册表最高可用版本"""
        if isinstance(source, Local):
            return self._locate_local(source)
        if isinstance(source, VcsRef):
            return self._locate_vcs(source)
        if isinstance(source, Registry):
            found = self.candidates(source)
            if not found:
                raise UnreachableSource(
                    f"registry:{source.name}", f"没有满足 {source.describe()} 的版本",
                )
            return found[0].version
        raise TypeError(f"未知的来源类型: {type(source).__name__}")

    def candidates(self, source: Registry) -> list[RegistryRelease]:
        """满足约束的发布版本，从新到旧"""
        spec = parse_constraint(source.constraint)
        return [
            r for r in self.all_releases(source.name)
            if matches(Version(r.version), spec)
        ]

    def all_releases(self, name: str) -> list[RegistryRelease]:
        """注册表中该包的全部版本，从新到旧"""
        by_version = {r.version: r for r in self.registry.releases(name)}
        return [by_version[v] for v in sort_versions_desc(list(by_version))]

    @staticmethod
    def _locate_local(source: Local) -> str:
        path = Path(source.path)
        if not path.exists():
            raise UnreachableSource(source.path, "本地路径不存在")
        digest = hash_tree(path)
        logger.debug("本地内容哈希: %s -> %s", path, digest)
        return digest

    def _locate_vcs(self, source: VcsRef) -> str:
        if source.pinned:
            return source.ref
        pairs = self.git.ls_remote(source.repository, source.ref)
        if not pairs:
            raise AmbiguousRef(source.repository, source.ref)

        # 附注标签: 优先取 ^{} 解引用后的提交
        peeled = {name[:-3]: sha for sha, name in pairs if name.endswith("^{}")}
        commits = sorted({peeled.get(name, sha) for sha, name in pairs if not name.endswith("^{}")})
        if len(commits) != 1:
            raise AmbiguousRef(source.repository, source.ref, commits)
        logger.info("定位 %s@%s -> %s", source.repository, source.ref, commits[0][:12])
        return commits[0]
