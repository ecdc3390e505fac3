"""项目清单 (largo.yml)

职责:
- 从 YAML 加载清单为 Manifest
- 解析依赖声明为三种来源之一
- 计算清单指纹（只覆盖依赖声明，改构建参数不会让锁文件过期）

清单示例:

    project:
      name: thesis
      tex-engine: pdftex
      synctex: true
    features: [camera-ready]
    dependencies:
      shared: {path: ../shared}
      fancylib: {git: https://example.org/fancylib.git, tag: v1.2.0}
      tikz-ext: ">=0.4,<1.0"
      watermark: {version: "1.*", feature: camera-ready}
    profile:
      release:
        features: [camera-ready]
        synctex: false
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from largo.core.dep.versions import parse_constraint
from largo.core.exceptions import ConfigError
from largo.core.models import (
    BuildProfile,
    DependencyDecl,
    Local,
    Registry,
    SourceSpec,
    VcsRef,
    is_valid_identity,
)
from largo.utils.yaml_io import load_yaml, parse_yaml

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "debug"

# git 依赖中表示 ref 的键，按优先级
_REF_KEYS = ("rev", "tag", "branch", "ref")


@dataclass
class Manifest:
    """项目清单的内存表示"""

    name: str
    root: Path
    dependencies: dict[str, DependencyDecl] = field(default_factory=dict)
    features: list[str] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    profiles: dict[str, BuildProfile] = field(default_factory=dict)
    bibliography: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path) -> Manifest:
        project = data.get("project") or {}
        if not isinstance(project, dict):
            raise ConfigError("清单 project 段必须是映射")
        name = str(project.get("name") or root.name)
        settings = {k: v for k, v in project.items() if k != "name"}

        features = [str(f) for f in (data.get("features") or [])]
        profiles = parse_profiles(data.get("profile") or data.get("profiles") or {})
        if not profiles:
            profiles = {DEFAULT_PROFILE: BuildProfile(name=DEFAULT_PROFILE)}

        return cls(
            name=name,
            root=root,
            dependencies=parse_dependencies(data.get("dependencies") or {}, context=name),
            features=features,
            settings=settings,
            profiles=profiles,
            bibliography=str(data.get("bibliography") or ""),
        )

    def declared_features(self) -> set[str]:
        """清单显式声明的特性 + 依赖门控用到的特性"""
        gates = {d.feature for d in self.dependencies.values() if d.feature}
        return set(self.features) | gates

    def fingerprint(self) -> str:
        return dependencies_fingerprint(self.dependencies)


def load_manifest(path: str | Path) -> Manifest:
    """读取项目清单，文件不存在抛 ConfigError"""
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"清单文件不存在: {p}")
    try:
        data = load_yaml(p)
    except yaml.YAMLError as e:
        raise ConfigError(f"清单 YAML 语法错误: {p} ({e})") from e
    manifest = Manifest.from_dict(data, p.parent.resolve())
    logger.info("已加载清单 %s: %d 个依赖", manifest.name, len(manifest.dependencies))
    return manifest


def read_package_dependencies(text: str, *, context: str) -> dict[str, DependencyDecl]:
    """解析依赖包自带清单中的 dependencies 段"""
    try:
        data = parse_yaml(text, source=context) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{context} 的清单 YAML 语法错误: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{context} 的清单顶层必须是映射")
    return parse_dependencies(data.get("dependencies") or {}, context=context)


def parse_dependencies(raw: dict[str, Any], *, context: str) -> dict[str, DependencyDecl]:
    if not isinstance(raw, dict):
        raise ConfigError(f"{context}: dependencies 段必须是映射")
    return {
        str(name): parse_dependency(str(name), info, context=context)
        for name, info in raw.items()
    }


def parse_dependency(name: str, info: Any, *, context: str) -> DependencyDecl:
    """解析单条依赖声明

    - 字符串: 注册表版本约束
    - {path: ...}: 本地
    - {git: ..., rev/tag/branch/ref: ...}: git
    - {version: ..., package: ...}: 注册表
    """
    if not is_valid_identity(name):
        raise ConfigError(
            f"{context}: 依赖名 {name!r} 无效，只能包含字母、数字和 . _ -，且不能含 .."
        )
    if info is None or isinstance(info, (str, int, float)):
        constraint = "" if info is None else str(info)
        parse_constraint(constraint)
        return DependencyDecl(identity=name, source=Registry(name=name, constraint=constraint))
    if not isinstance(info, dict):
        raise ConfigError(f"{context}: 依赖 '{name}' 的格式无效: {info!r}")

    kinds = [k for k in ("path", "git", "version") if k in info]
    if len(kinds) > 1:
        raise ConfigError(
            f"{context}: 依赖 '{name}' 同时声明了多种来源 {kinds}，只能选一种"
        )

    source: SourceSpec
    if "path" in info:
        source = Local(path=str(info["path"]))
    elif "git" in info:
        ref = next((str(info[k]) for k in _REF_KEYS if info.get(k)), "HEAD")
        source = VcsRef(repository=str(info["git"]), ref=ref)
    else:
        constraint = str(info.get("version") or "")
        parse_constraint(constraint)
        package = str(info.get("package") or name)
        if not is_valid_identity(package):
            raise ConfigError(f"{context}: 依赖 '{name}' 的注册表包名无效: {package!r}")
        source = Registry(name=package, constraint=constraint)

    return DependencyDecl(identity=name, source=source, feature=str(info.get("feature") or ""))


def parse_profiles(raw: dict[str, Any]) -> dict[str, BuildProfile]:
    if not isinstance(raw, dict):
        raise ConfigError("profile 段必须是映射")
    profiles: dict[str, BuildProfile] = {}
    for name, info in raw.items():
        info = info or {}
        if not isinstance(info, dict):
            raise ConfigError(f"构建配置 '{name}' 的格式无效")
        features = frozenset(str(f) for f in (info.get("features") or []))
        overrides = {k: v for k, v in info.items() if k != "features"}
        profiles[str(name)] = BuildProfile(name=str(name), features=features, overrides=overrides)
    return profiles


def dependencies_fingerprint(deps: dict[str, DependencyDecl]) -> str:
    """依赖声明的稳定指纹"""
    canonical = {
        name: _decl_to_canonical(deps[name]) for name in sorted(deps)
    }
    blob = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(blob.encode("utf-8")).hexdigest()


def _decl_to_canonical(decl: DependencyDecl) -> dict[str, str]:
    src = decl.source
    out = {"kind": src.kind, "feature": decl.feature}
    if isinstance(src, Local):
        out["path"] = src.path
    elif isinstance(src, VcsRef):
        out["git"] = src.repository
        out["ref"] = src.ref
    elif isinstance(src, Registry):
        out["package"] = src.name
        out["version"] = src.constraint
    else:
        raise TypeError(f"未知的来源类型: {type(src).__name__}")
    return out
