"""锁文件管理 (largo.lock)

锁文件是求解结果的持久化形式，也是构建和 eject 的唯一依据。

格式（YAML，键顺序固定，包按标识排序，同样的内容永远写出同样的字节）:

    version: 1
    manifest: sha256:...
    root:
      shared: ''
      watermark: camera-ready
    packages:
      shared:
        kind: local
        source: {path: ../shared}
        revision: sha256:...
        fingerprint: 3f1c...
        content_hash: sha256:...
        dependencies: {}

本地包的路径相对项目根目录保存（posix 形式），不同机器上检出同一项目
得到逐字节相同的锁文件。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from largo.core.exceptions import (
    CorruptLockfile,
    LockfileNotFound,
    SchemaMismatch,
    StaleLockfile,
)
from largo.core.manifest import Manifest
from largo.core.models import (
    Fresh,
    Local,
    Lockfile,
    LockStatus,
    Registry,
    ResolvedPackage,
    SourceSpec,
    Stale,
    VcsRef,
    is_valid_identity,
)
from largo.utils.hashing import hash_tree
from largo.utils.yaml_io import atomic_write, dump_yaml

logger = logging.getLogger(__name__)

LOCKFILE_VERSION = 1


class LockfileManager:
    """锁文件读写与新鲜度检查"""

    def __init__(self, path: str | Path, project_root: str | Path | None = None) -> None:
        self.path = Path(path)
        self.project_root = Path(project_root or self.path.parent).resolve()

    # ------------------------------------------------------------------
    # 写
    # ------------------------------------------------------------------

    def write(self, lockfile: Lockfile) -> Path:
        """原子写入锁文件；内容未变化时不改动文件"""
        text = self.dumps(lockfile)
        if self.path.exists() and self.path.read_text(encoding="utf-8") == text:
            logger.info("锁文件未变化: %s", self.path)
            return self.path
        atomic_write(self.path, text)
        logger.info("锁文件已写入: %s (%d 个包)", self.path, len(lockfile.packages))
        return self.path

    def dumps(self, lockfile: Lockfile) -> str:
        doc = {
            "version": LOCKFILE_VERSION,
            "manifest": lockfile.manifest_fingerprint,
            "root": {name: lockfile.root[name] for name in sorted(lockfile.root)},
            "packages": {
                identity: self._package_to_dict(lockfile.packages[identity])
                for identity in sorted(lockfile.packages)
            },
        }
        return dump_yaml(doc)

    def _package_to_dict(self, pkg: ResolvedPackage) -> dict[str, Any]:
        out: dict[str, Any] = {
            "kind": pkg.kind,
            "source": self._source_to_dict(pkg.source),
            "revision": pkg.revision,
            "fingerprint": pkg.fingerprint,
        }
        if pkg.content_hash:
            out["content_hash"] = pkg.content_hash
        if pkg.checksum:
            out["checksum"] = pkg.checksum
        out["dependencies"] = {name: pkg.dependencies[name] for name in sorted(pkg.dependencies)}
        return out

    def _source_to_dict(self, source: SourceSpec) -> dict[str, str]:
        if isinstance(source, Local):
            return {"path": self._relative(source.path)}
        if isinstance(source, VcsRef):
            return {"git": source.repository, "ref": source.ref}
        if isinstance(source, Registry):
            return {"registry": source.name}
        raise TypeError(f"未知的来源类型: {type(source).__name__}")

    def _relative(self, path: str) -> str:
        p = Path(path)
        if not p.is_absolute():
            return p.as_posix()
        return Path(os.path.relpath(p, self.project_root)).as_posix()

    # ------------------------------------------------------------------
    # 读
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Lockfile:
        if not self.path.exists():
            raise LockfileNotFound(str(self.path))
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise CorruptLockfile(str(self.path), f"YAML 解析失败: {e}") from e
        if not isinstance(data, dict):
            raise CorruptLockfile(str(self.path), "顶层必须是映射")

        version = data.get("version")
        if version != LOCKFILE_VERSION:
            raise SchemaMismatch(str(self.path), version, LOCKFILE_VERSION)

        try:
            root = {str(k): str(v or "") for k, v in (data.get("root") or {}).items()}
            packages = {
                str(identity): self._package_from_dict(str(identity), info)
                for identity, info in (data.get("packages") or {}).items()
            }
            named = [*root, *packages]
            named += [dep for pkg in packages.values() for dep in pkg.dependencies]
            for identity in named:
                if not is_valid_identity(identity):
                    raise ValueError(f"包标识无效: {identity!r}")
            return Lockfile(
                manifest_fingerprint=str(data["manifest"]),
                root=root,
                packages=packages,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptLockfile(str(self.path), f"结构无效: {e!r}") from e

    def _package_from_dict(self, identity: str, info: dict[str, Any]) -> ResolvedPackage:
        kind = str(info["kind"])
        source = self._source_from_dict(kind, info["source"])
        return ResolvedPackage(
            identity=identity,
            kind=kind,
            source=source,
            revision=str(info["revision"]),
            fingerprint=str(info["fingerprint"]),
            content_hash=str(info.get("content_hash") or ""),
            checksum=str(info.get("checksum") or ""),
            dependencies={str(k): str(v or "") for k, v in (info.get("dependencies") or {}).items()},
        )

    def _source_from_dict(self, kind: str, raw: dict[str, Any]) -> SourceSpec:
        if kind == Local.kind:
            return Local(path=str((self.project_root / str(raw["path"])).resolve()))
        if kind == VcsRef.kind:
            return VcsRef(repository=str(raw["git"]), ref=str(raw["ref"]))
        if kind == Registry.kind:
            name = str(raw["registry"])
            if not is_valid_identity(name):
                raise ValueError(f"注册表包名无效: {name!r}")
            return Registry(name=name)
        raise ValueError(f"未知的来源类型: {kind}")

    # ------------------------------------------------------------------
    # 新鲜度
    # ------------------------------------------------------------------

    def validate(self, lockfile: Lockfile, manifest: Manifest) -> LockStatus:
        """检查锁文件是否仍与清单、本地内容一致

        本地包每次都重新计算内容哈希，修改本地依赖的内容即视为过期。
        """
        reasons: list[str] = []
        drifted: list[str] = []

        if lockfile.manifest_fingerprint != manifest.fingerprint():
            reasons.append("清单中的依赖声明已变化")

        for identity, pkg in lockfile.packages.items():
            if not isinstance(pkg.source, Local):
                continue
            path = Path(pkg.source.path)
            if not path.exists():
                drifted.append(identity)
                reasons.append(f"本地包 {identity} 的路径不存在: {path}")
                continue
            current = hash_tree(path)
            if current != pkg.revision:
                drifted.append(identity)
                reasons.append(f"本地包 {identity} 的内容已变化")
                logger.debug("内容漂移 %s: %s -> %s", identity, pkg.revision, current)

        if reasons:
            return Stale(reasons=tuple(reasons), drifted=tuple(drifted))
        return Fresh()

    def ensure_fresh(self, lockfile: Lockfile, manifest: Manifest) -> None:
        """过期则抛 StaleLockfile（普通构建不会静默重新解析）"""
        status = self.validate(lockfile, manifest)
        if isinstance(status, Stale):
            raise StaleLockfile(list(status.reasons), list(status.drifted))
