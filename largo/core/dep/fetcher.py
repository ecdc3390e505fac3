"""来源拉取器

把一个 (来源, 修订) 的完整内容放进指定目录。只负责"搬运"，
放到哪里、何时发布、是否去重由 ContentStore 决定。

- 本地: 复制目录（忽略 .git 等版本库目录）
- git:  导出指定提交
- 注册表: 下载归档 → 校验 sha256 → 解压（tar / zip / 单文件）
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
import zipfile
from pathlib import Path

from largo.core.dep.registry import RegistryIndex, RegistryRelease
from largo.core.dep.vcs import GitClient
from largo.core.exceptions import IntegrityError, UnreachableSource
from largo.core.models import Local, Registry, SourceSpec, VcsRef
from largo.utils.hashing import IGNORED_NAMES, sha256_file

logger = logging.getLogger(__name__)


class SourceFetcher:
    """按来源类型分派拉取"""

    def __init__(self, git: GitClient, registry: RegistryIndex) -> None:
        self.git = git
        self.registry = registry

    def fetch_into(self, source: SourceSpec, revision: str, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)
        if isinstance(source, Local):
            self._copy_local(source, dest)
        elif isinstance(source, VcsRef):
            self.git.export(source.repository, revision, dest)
        elif isinstance(source, Registry):
            self._fetch_registry(source, revision, dest)
        else:
            raise TypeError(f"未知的来源类型: {type(source).__name__}")

    @staticmethod
    def _copy_local(source: Local, dest: Path) -> None:
        src = Path(source.path)
        if not src.exists():
            raise UnreachableSource(source.path, "本地路径不存在")
        if src.is_file():
            shutil.copy2(src, dest / src.name)
            return
        shutil.copytree(
            src, dest, dirs_exist_ok=True,
            ignore=shutil.ignore_patterns(*IGNORED_NAMES),
        )

    def _fetch_registry(self, source: Registry, version: str, dest: Path) -> None:
        release = self._find_release(source.name, version)
        with tempfile.TemporaryDirectory(prefix="largo-dl-") as tmp:
            filename = Path(release.archive).name or f"{release.name}-{version}"
            archive = self.registry.download(release, Path(tmp) / filename)
            if release.sha256:
                actual = sha256_file(archive)
                if actual != release.sha256:
                    raise IntegrityError(f"{release.name}@{version}", release.sha256, actual)
                logger.info("  校验和通过: %s", archive.name)
            _unpack(archive, dest)

    def _find_release(self, name: str, version: str) -> RegistryRelease:
        for release in self.registry.releases(name):
            if release.version == version:
                return release
        raise UnreachableSource(f"registry:{name}", f"注册表中没有版本 {version}")


def _unpack(archive: Path, dest: Path) -> None:
    """解压归档；不是归档的文件原样复制"""
    if tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            tf.extractall(path=str(dest), filter="data")  # noqa: S202
    elif zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                target = (dest / member).resolve()
                if not target.is_relative_to(dest.resolve()):
                    raise IntegrityError(str(archive), "归档内路径", member)
            zf.extractall(path=str(dest))
    else:
        shutil.copy2(archive, dest / archive.name)
