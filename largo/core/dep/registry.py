"""注册表索引

职责:
- 列出某个包在注册表中的全部发布版本及其依赖（不下载内容）
- 下载某个发布版本的归档

两种实现:
  - HttpRegistryIndex:      <url>/<name>.json
  - DirectoryRegistryIndex: <root>/<name>.yml，归档路径相对 root（离线镜像）

索引条目格式:

    name: tikz-ext
    releases:
      - version: "0.4.2"
        archive: tikz-ext-0.4.2.tar.gz
        sha256: 9f2c...
        dependencies:
          pgf-util: ">=1.0"
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urljoin

from largo.core.dep.versions import parse_version
from largo.core.exceptions import ConfigError, UnreachableSource
from largo.core.manifest import parse_dependencies
from largo.core.models import DependencyDecl
from largo.utils.net import download_to, fetch_bytes, is_url
from largo.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


@dataclass
class RegistryRelease:
    """注册表中某个包的一个发布版本"""

    name: str
    version: str
    archive: str = ""
    sha256: str = ""
    dependencies: dict[str, DependencyDecl] = field(default_factory=dict)


class RegistryIndex(Protocol):
    def releases(self, name: str) -> list[RegistryRelease]:
        ...

    def download(self, release: RegistryRelease, dest: Path) -> Path:
        ...


def parse_releases(name: str, data: dict[str, Any]) -> list[RegistryRelease]:
    """解析索引文档，版本号无法解析的条目跳过"""
    releases: list[RegistryRelease] = []
    for item in data.get("releases") or []:
        if not isinstance(item, dict):
            continue
        version = str(item.get("version", ""))
        if parse_version(version) is None:
            logger.warning("跳过无法解析的版本: %s@%s", name, version)
            continue
        try:
            deps = parse_dependencies(
                item.get("dependencies") or {}, context=f"{name}@{version}",
            )
        except ConfigError as e:
            logger.warning("跳过依赖声明无效的版本: %s@%s (%s)", name, version, e)
            continue
        releases.append(RegistryRelease(
            name=name,
            version=version,
            archive=str(item.get("archive", "")),
            sha256=str(item.get("sha256", "")),
            dependencies=deps,
        ))
    return releases


class HttpRegistryIndex:
    """HTTP 注册表索引"""

    def __init__(self, url: str, timeout: int = 60) -> None:
        self.url = url.rstrip("/") + "/"
        self.timeout = timeout

    def releases(self, name: str) -> list[RegistryRelease]:
        index_url = urljoin(self.url, f"{name}.json")
        raw = fetch_bytes(index_url, timeout=self.timeout, context=f"registry index {name}")
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UnreachableSource(index_url, f"索引格式无效: {e}") from e
        if not isinstance(data, dict):
            raise UnreachableSource(index_url, "索引顶层不是对象")
        return parse_releases(name, data)

    def download(self, release: RegistryRelease, dest: Path) -> Path:
        if not release.archive:
            raise UnreachableSource(f"{release.name}@{release.version}", "索引未给出归档地址")
        url = urljoin(self.url, release.archive)
        return download_to(url, dest, context=f"registry archive {release.name}")


class DirectoryRegistryIndex:
    """本地目录注册表（离线镜像）"""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def releases(self, name: str) -> list[RegistryRelease]:
        path = self.root / f"{name}.yml"
        if not path.exists():
            raise UnreachableSource(str(path), f"注册表中没有包 '{name}'")
        return parse_releases(name, load_yaml(path))

    def download(self, release: RegistryRelease, dest: Path) -> Path:
        src = self.root / release.archive
        if not release.archive or not src.is_file():
            raise UnreachableSource(str(src), "归档不存在")
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest)
        return dest


class NullRegistryIndex:
    """未配置注册表时使用，任何查询都失败"""

    def releases(self, name: str) -> list[RegistryRelease]:
        raise UnreachableSource(f"registry:{name}", "未配置 registry_url")

    def download(self, release: RegistryRelease, dest: Path) -> Path:
        raise UnreachableSource(f"registry:{release.name}", "未配置 registry_url")


def create_registry(url: str) -> RegistryIndex:
    """按配置创建注册表索引"""
    if not url:
        return NullRegistryIndex()
    if is_url(url):
        return HttpRegistryIndex(url)
    return DirectoryRegistryIndex(Path(url).expanduser())
