"""构建配置物化

把锁文件和一个构建配置（profile）合成为实际生效的包集合与构建参数。
纯函数：不访问网络和文件系统，只依赖输入。

- 从根节点出发遍历锁文件中的依赖边，特性门控未启用的边跳过
- 构建参数 = 项目默认参数 ⊕ 配置覆盖项
- 配置只能启用已声明的特性，否则 UnknownFlag
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from largo.core.exceptions import UnknownFlag, UnknownProfile
from largo.core.manifest import DEFAULT_PROFILE, Manifest
from largo.core.models import BuildProfile, Lockfile, MaterializedBuild

logger = logging.getLogger(__name__)


class ProfileMaterializer:

    def __init__(
        self,
        defaults: dict[str, Any] | None = None,
        declared_features: set[str] | frozenset[str] = frozenset(),
    ) -> None:
        self.defaults = dict(defaults or {})
        self.declared_features = set(declared_features)

    @classmethod
    def for_manifest(cls, manifest: Manifest) -> ProfileMaterializer:
        return cls(manifest.settings, manifest.declared_features())

    def materialize(self, lockfile: Lockfile, profile: BuildProfile) -> MaterializedBuild:
        known = self.declared_features | _lockfile_gates(lockfile)
        unknown = sorted(profile.features - known)
        if unknown:
            raise UnknownFlag(profile.name, unknown, sorted(known))

        enabled = profile.features
        active: list[str] = []
        seen: set[str] = set()
        queue = deque(
            name for name in sorted(lockfile.root)
            if _gate_open(lockfile.root[name], enabled)
        )
        while queue:
            identity = queue.popleft()
            if identity in seen:
                continue
            seen.add(identity)
            pkg = lockfile.get(identity)
            if pkg is None:
                # 锁文件不完整交给 LockfileManager.validate 报告
                logger.warning("锁文件中缺少包 %s，已跳过", identity)
                continue
            active.append(identity)
            queue.extend(
                dep for dep in sorted(pkg.dependencies)
                if _gate_open(pkg.dependencies[dep], enabled)
            )

        parameters = {**self.defaults, **profile.overrides}
        packages = [lockfile.packages[i] for i in sorted(active)]
        logger.info(
            "构建配置 %s: %d/%d 个包生效, 特性 %s",
            profile.name, len(packages), len(lockfile.packages), sorted(enabled),
        )
        return MaterializedBuild(profile=profile.name, packages=packages, parameters=parameters)


def select_profile(manifest: Manifest, name: str = "") -> BuildProfile:
    """按名称取构建配置；不传名称时取默认配置"""
    name = name or DEFAULT_PROFILE
    profile = manifest.profiles.get(name)
    if profile is None:
        if name == DEFAULT_PROFILE:
            return BuildProfile(name=DEFAULT_PROFILE)
        raise UnknownProfile(name, sorted(manifest.profiles))
    return profile


def _gate_open(feature: str, enabled: frozenset[str]) -> bool:
    return not feature or feature in enabled


def _lockfile_gates(lockfile: Lockfile) -> set[str]:
    gates = {f for f in lockfile.root.values() if f}
    for pkg in lockfile.packages.values():
        gates.update(f for f in pkg.dependencies.values() if f)
    return gates
