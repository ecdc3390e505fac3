"""核心数据模型

依赖来源、依赖图、求解结果、锁文件、构建配置等数据类集中定义，
各子系统统一从此处导入，避免 graph ↔ resolver ↔ lockfile 的循环依赖。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Union

# 项目根节点的合成标识，没有入边
ROOT = "<root>"

_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")

# 包标识会成为 eject 输出里的目录名，只允许单段安全名称
_IDENTITY_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")


def is_valid_identity(name: str) -> bool:
    return bool(_IDENTITY_RE.fullmatch(name)) and ".." not in name


# =========================================================================
# 依赖来源（封闭的三种变体）
# =========================================================================


@dataclass(frozen=True)
class Local:
    """本地路径来源：永远视为最新，锁定时只记录路径 + 内容哈希"""

    path: str
    kind: ClassVar[str] = "local"

    def describe(self) -> str:
        return f"path:{self.path}"


@dataclass(frozen=True)
class VcsRef:
    """Git 来源：ref 可以是分支/标签（浮动）或 40 位提交号（固定）"""

    repository: str
    ref: str = "HEAD"
    kind: ClassVar[str] = "git"

    @property
    def pinned(self) -> bool:
        return bool(_COMMIT_RE.match(self.ref))

    def describe(self) -> str:
        return f"git+{self.repository}@{self.ref}"


@dataclass(frozen=True)
class Registry:
    """注册表来源：包名 + 版本范围（空串表示任意版本）"""

    name: str
    constraint: str = ""
    kind: ClassVar[str] = "registry"

    def describe(self) -> str:
        return self.constraint or "*"


SourceSpec = Union[Local, VcsRef, Registry]


def source_location(source: SourceSpec) -> str:
    """来源的位置部分（不含版本/ref），用于指纹和冲突判断"""
    if isinstance(source, Local):
        return source.path
    if isinstance(source, VcsRef):
        return source.repository
    if isinstance(source, Registry):
        return source.name
    raise TypeError(f"未知的来源类型: {type(source).__name__}")


@dataclass(frozen=True)
class DependencyDecl:
    """清单中的一条依赖声明"""

    identity: str
    source: SourceSpec
    feature: str = ""  # 非空时仅在该特性启用时生效


# =========================================================================
# 依赖图
# =========================================================================


@dataclass
class Candidate:
    """某个包的一个具体候选版本"""

    revision: str
    source: SourceSpec
    dependencies: dict[str, DependencyDecl] = field(default_factory=dict)
    fingerprint: str = ""
    content_hash: str = ""   # 仅本地包
    checksum: str = ""       # 注册表归档的 sha256


@dataclass
class PackageNode:
    """图中的一个包标识及其全部候选"""

    identity: str
    kind: str
    candidates: list[Candidate] = field(default_factory=list)


@dataclass(frozen=True)
class DependencyEdge:
    """约束边

    from_revision 为 None 表示根节点的边；否则只在 from_ 选中该修订时生效
    （注册表包各版本的依赖可能不同）。
    located 是 git/本地来源在构图时定位到的具体修订。
    """

    from_: str
    to: str
    constraint: SourceSpec
    feature: str = ""
    from_revision: str | None = None
    located: str = ""


@dataclass
class DependencyGraph:
    manifest_fingerprint: str
    root_dir: Path
    nodes: dict[str, PackageNode] = field(default_factory=dict)
    edges: list[DependencyEdge] = field(default_factory=list)

    def incoming(self, identity: str) -> list[DependencyEdge]:
        return [e for e in self.edges if e.to == identity]


# =========================================================================
# 求解结果 / 锁文件
# =========================================================================


@dataclass
class ResolvedPackage:
    """求解后每个包标识对应的唯一结果"""

    identity: str
    kind: str
    source: SourceSpec
    revision: str
    fingerprint: str
    content_hash: str = ""
    checksum: str = ""
    # 出边: 依赖名 -> 特性门控（空串表示总是启用）
    dependencies: dict[str, str] = field(default_factory=dict)


@dataclass
class Lockfile:
    """锁文件内存表示，packages 按标识排序"""

    manifest_fingerprint: str
    root: dict[str, str] = field(default_factory=dict)
    packages: dict[str, ResolvedPackage] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.root = dict(sorted(self.root.items()))
        self.packages = dict(sorted(self.packages.items()))

    def fingerprints(self) -> set[str]:
        return {p.fingerprint for p in self.packages.values()}

    def get(self, identity: str) -> ResolvedPackage | None:
        return self.packages.get(identity)


@dataclass(frozen=True)
class Fresh:
    """锁文件与当前清单一致"""

    fresh: ClassVar[bool] = True


@dataclass(frozen=True)
class Stale:
    """锁文件过期: reasons 说明原因，drifted 列出变化的包"""

    reasons: tuple[str, ...]
    drifted: tuple[str, ...] = ()
    fresh: ClassVar[bool] = False


LockStatus = Union[Fresh, Stale]


# =========================================================================
# 构建配置
# =========================================================================


@dataclass(frozen=True)
class BuildProfile:
    name: str
    features: frozenset[str] = frozenset()
    overrides: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass
class MaterializedBuild:
    """某个构建配置下实际生效的包与参数"""

    profile: str
    packages: list[ResolvedPackage] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def identities(self) -> list[str]:
        return [p.identity for p in self.packages]

    def fingerprints(self) -> set[str]:
        return {p.fingerprint for p in self.packages}


# =========================================================================
# 内容仓库
# =========================================================================


@dataclass
class ContentStoreEntry:
    fingerprint: str
    location: str
    ref_count: int = 0
