"""统一异常体系

所有业务异常继承 LargoError，按子系统分为六个族：
SourceError / GraphError / ResolutionError / LockError / StoreError / EjectError。
每个异常都把结构化上下文（包名、约束、路径）保存为属性，
CLI 据此输出可操作的提示并映射退出码，而不是只打印一句话。
"""

from __future__ import annotations


class LargoError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(LargoError):
    """配置或清单内容无效"""

    code = "CONFIG_ERROR"


class OperationCancelled(LargoError):
    """操作在两次拉取之间被取消"""

    code = "CANCELLED"


class ValidationError(LargoError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# =========================================================================
# 来源
# =========================================================================


class SourceError(LargoError):
    """来源定位失败（只有这一族和 StoreError 会在拉取边界重试）"""

    code = "SOURCE_ERROR"


class UnreachableSource(SourceError):
    """来源无法访问：路径不存在、远端不可达、注册表无此包"""

    code = "UNREACHABLE_SOURCE"

    def __init__(self, location: str, reason: str = "") -> None:
        msg = f"来源不可达: {location}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.location = location
        self.reason = reason


class AmbiguousRef(SourceError):
    """浮动 ref 没有匹配或匹配到多个提交"""

    code = "AMBIGUOUS_REF"

    def __init__(self, repository: str, ref: str, matches: list[str] | None = None) -> None:
        self.repository = repository
        self.ref = ref
        self.matches = matches or []
        if self.matches:
            detail = f"匹配到多个提交: {', '.join(self.matches)}"
        else:
            detail = "没有任何匹配"
        super().__init__(f"无法确定 {repository}@{ref}: {detail}")


# =========================================================================
# 依赖图
# =========================================================================


class GraphError(LargoError):
    """依赖图结构错误"""

    code = "GRAPH_ERROR"


class CyclicDependency(GraphError):
    """依赖图中存在环"""

    code = "CYCLIC_DEPENDENCY"

    def __init__(self, path: list[str]) -> None:
        super().__init__(f"循环依赖: {' -> '.join(path)}")
        self.path = path


class ConflictingSourceKind(GraphError):
    """同一个包被以不同的来源类型引用"""

    code = "CONFLICTING_SOURCE_KIND"

    def __init__(self, identity: str, requirements: list[tuple[str, str]]) -> None:
        self.identity = identity
        # [(requirer, kind), ...]
        self.requirements = requirements
        detail = ", ".join(f"{who} 要求 {kind}" for who, kind in requirements)
        super().__init__(
            f"包 '{identity}' 的来源类型冲突: {detail}。"
            "请在清单中统一来源后重新解析"
        )


class InvalidLocalPath(GraphError):
    """非本地包声明了相对路径依赖"""

    code = "INVALID_LOCAL_PATH"

    def __init__(self, requirer: str, identity: str, path: str) -> None:
        super().__init__(
            f"'{requirer}' 不是本地包，不能以路径 '{path}' 依赖 '{identity}'"
        )
        self.requirer = requirer
        self.identity = identity
        self.path = path


# =========================================================================
# 版本求解
# =========================================================================


class ResolutionError(LargoError):
    """版本求解失败"""

    code = "RESOLUTION_ERROR"


class UnsatisfiableConstraints(ResolutionError):
    """某个包的约束无法同时满足"""

    code = "UNSATISFIABLE_CONSTRAINTS"

    def __init__(self, identity: str, constraints: list[str], requirers: list[str] | None = None) -> None:
        self.identity = identity
        self.constraints = constraints
        self.requirers = requirers or []
        super().__init__(
            f"无法满足 '{identity}' 的约束: {constraints}"
            + (f" (来自 {', '.join(self.requirers)})" if self.requirers else "")
        )


# =========================================================================
# 锁文件
# =========================================================================


class LockError(LargoError):
    """锁文件错误"""

    code = "LOCK_ERROR"


class LockfileNotFound(LockError):
    code = "LOCKFILE_NOT_FOUND"

    def __init__(self, path: str) -> None:
        super().__init__(f"锁文件不存在: {path}，请先执行 largo lock")
        self.path = path


class CorruptLockfile(LockError):
    code = "CORRUPT_LOCKFILE"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"锁文件损坏: {path} ({reason})")
        self.path = path
        self.reason = reason


class SchemaMismatch(LockError):
    """锁文件格式版本不受支持（不做自动迁移）"""

    code = "SCHEMA_MISMATCH"

    def __init__(self, path: str, found: object, supported: int) -> None:
        super().__init__(
            f"锁文件格式版本不支持: {path} (版本 {found!r}，支持 {supported})"
        )
        self.path = path
        self.found = found
        self.supported = supported


class StaleLockfile(LockError):
    """锁文件已过期，需要显式重新解析"""

    code = "STALE_LOCKFILE"

    def __init__(self, reasons: list[str], drifted: list[str]) -> None:
        self.reasons = reasons
        self.drifted = drifted
        msg = "锁文件已过期: " + "; ".join(reasons)
        if drifted:
            msg += f" (变化的包: {', '.join(drifted)})"
        super().__init__(msg + "。请执行 largo lock 重新解析")


# =========================================================================
# 内容仓库
# =========================================================================


class StoreError(LargoError):
    """内容仓库错误"""

    code = "STORE_ERROR"


class MissingEntry(StoreError):
    code = "MISSING_ENTRY"

    def __init__(self, fingerprint: str) -> None:
        super().__init__(f"内容仓库中没有条目: {fingerprint}，请先 fetch")
        self.fingerprint = fingerprint


class IntegrityError(StoreError):
    """拉取到的内容与预期哈希不一致"""

    code = "INTEGRITY_ERROR"

    def __init__(self, location: str, expected: str, actual: str) -> None:
        super().__init__(f"内容校验失败 {location}: 期望 {expected}, 实际 {actual}")
        self.location = location
        self.expected = expected
        self.actual = actual


# =========================================================================
# 构建配置
# =========================================================================


class ProfileError(LargoError):
    code = "PROFILE_ERROR"


class UnknownFlag(ProfileError):
    code = "UNKNOWN_FLAG"

    def __init__(self, profile: str, flags: list[str], declared: list[str]) -> None:
        super().__init__(
            f"配置 '{profile}' 引用了未声明的特性: {', '.join(flags)}。"
            f"已声明: {declared}"
        )
        self.profile = profile
        self.flags = flags
        self.declared = declared


class UnknownProfile(ProfileError):
    code = "UNKNOWN_PROFILE"

    def __init__(self, name: str, available: list[str]) -> None:
        super().__init__(f"构建配置不存在: {name}。可用: {available}")
        self.name = name
        self.available = available


# =========================================================================
# Eject
# =========================================================================


class EjectError(LargoError):
    code = "EJECT_ERROR"


class PartialEject(EjectError):
    """eject 中途失败，已完成的部分保留，重新执行会从断点继续"""

    code = "PARTIAL_EJECT"

    def __init__(self, copied: list[str], remaining: list[str], reason: str = "") -> None:
        self.copied = copied
        self.remaining = remaining
        self.reason = reason
        super().__init__(
            f"eject 未完成: 已复制 {len(copied)} 个包，剩余 {remaining}"
            + (f" ({reason})" if reason else "")
            + "。重新执行 eject 即可继续"
        )


class NonReproducibleBibliography(EjectError):
    """网络参考文献在 refuse 策略下被拒绝"""

    code = "NON_REPRODUCIBLE_BIBLIOGRAPHY"

    def __init__(self, location: str) -> None:
        super().__init__(
            f"参考文献 {location} 来自网络，无法保证可复现；"
            "当前策略禁止抓取快照"
        )
        self.location = location
