"""测试公共夹具: 内存 git 远端、目录注册表、内容仓库"""

from __future__ import annotations

import hashlib
import io
import tarfile
import threading
from pathlib import Path

import pytest
import yaml

from largo.core.dep.fetcher import SourceFetcher
from largo.core.dep.registry import DirectoryRegistryIndex
from largo.core.dep.store import ContentStore
from largo.core.exceptions import UnreachableSource


class FakeGit:
    """内存中的 git 远端

    refs:  {仓库: {ref: 提交}}
    trees: {提交: {相对路径: 文本}}
    """

    def __init__(self) -> None:
        self.refs: dict[str, dict[str, str]] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.ls_remote_calls = 0
        self.exports = 0
        self._lock = threading.Lock()

    def add(self, repository: str, ref: str, files: dict[str, str]) -> str:
        blob = f"{repository}\0{ref}\0{sorted(files.items())}".encode()
        sha = hashlib.sha1(blob).hexdigest()  # noqa: S324
        self.refs.setdefault(repository, {})[ref] = sha
        self.trees[sha] = dict(files)
        return sha

    def ls_remote(self, repository: str, ref: str) -> list[tuple[str, str]]:
        with self._lock:
            self.ls_remote_calls += 1
        if repository not in self.refs:
            raise UnreachableSource(repository, "仓库不存在")
        sha = self.refs[repository].get(ref)
        return [] if sha is None else [(sha, f"refs/tags/{ref}")]

    def export(self, repository: str, revision: str, dest: Path) -> Path:
        with self._lock:
            self.exports += 1
        if revision not in self.trees:
            raise UnreachableSource(repository, f"提交不存在: {revision}")
        for rel, text in self.trees[revision].items():
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        return dest


class RegistryBuilder:
    """在目录中构造注册表镜像: <root>/<name>.yml + tar.gz 归档"""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def publish(
        self,
        name: str,
        version: str,
        files: dict[str, str] | None = None,
        dependencies: dict[str, object] | None = None,
    ) -> None:
        files = files or {f"{name}.sty": f"% {name} {version}\n"}
        archive = f"archives/{name}-{version}.tar.gz"
        path = self.root / archive
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:gz") as tf:
            for rel, text in sorted(files.items()):
                data = text.encode("utf-8")
                info = tarfile.TarInfo(rel)
                info.size = len(data)
                tf.addfile(info, io.BytesIO(data))

        index_path = self.root / f"{name}.yml"
        index = yaml.safe_load(index_path.read_text(encoding="utf-8")) if index_path.exists() else None
        index = index or {"name": name, "releases": []}
        index["releases"].append({
            "version": version,
            "archive": archive,
            "sha256": hashlib.sha256(path.read_bytes()).hexdigest(),
            "dependencies": dependencies or {},
        })
        index_path.write_text(yaml.safe_dump(index), encoding="utf-8")

    @property
    def index(self) -> DirectoryRegistryIndex:
        return DirectoryRegistryIndex(self.root)


@pytest.fixture()
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture()
def registry(tmp_path: Path) -> RegistryBuilder:
    return RegistryBuilder(tmp_path / "registry")


@pytest.fixture()
def store(tmp_path: Path, fake_git: FakeGit, registry: RegistryBuilder) -> ContentStore:
    fetcher = SourceFetcher(fake_git, registry.index)  # type: ignore[arg-type]
    return ContentStore(tmp_path / "cache", fetcher, retries=2, retry_delay=0)


def write_package(root: Path, files: dict[str, str], dependencies: dict[str, object] | None = None) -> Path:
    """在 root 下写一个本地包，可选带 largo.yml"""
    root.mkdir(parents=True, exist_ok=True)
    for rel, text in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    if dependencies is not None:
        (root / "largo.yml").write_text(
            yaml.safe_dump({"dependencies": dependencies}), encoding="utf-8",
        )
    return root


@pytest.fixture()
def make_package():
    return write_package
