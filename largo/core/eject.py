"""Eject: 导出自包含的项目树

把某个构建配置下生效的全部包、项目源文件和参考文献复制到一个独立目录，
之后不需要 largo、内容仓库或清单就能排版。

输出布局:
    <out>/src/...                 项目源文件（构建注入宏已替换为字面值）
    <out>/vendor/<identity>/...   依赖包内容（与内容仓库逐字节一致）
    <out>/<参考文献文件名>
    <out>/.eject-state.yml        进度记录，用于断点续做

可中断、可重复执行:
- 每复制完一个包就记录 identity → fingerprint，重新执行时跳过相同的包
- 单个包先复制到临时目录再改名，不会留下半个包
- 源文件内容未变化时不重写
- 网络参考文献只抓取一次，之后复用已保存的快照
"""

from __future__ import annotations

import logging
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

import yaml

from largo.core.dep.store import ContentStore
from largo.core.exceptions import (
    EjectError,
    NonReproducibleBibliography,
    OperationCancelled,
    PartialEject,
    StoreError,
    UnreachableSource,
)
from largo.core.macros import LargoVars, references_macros
from largo.core.models import Lockfile, MaterializedBuild, is_valid_identity
from largo.utils.hashing import iter_tree
from largo.utils.net import fetch_bytes, is_url
from largo.utils.yaml_io import atomic_write, load_yaml, save_yaml

logger = logging.getLogger(__name__)

STATE_FILE = ".eject-state.yml"

# 按文本处理并替换宏的源文件后缀
TEXT_SUFFIXES = frozenset((".tex", ".ltx", ".sty", ".cls", ".dtx", ".ins", ".bib", ".bbx", ".cbx"))

CAPTURE_HEADER = "% largo: non-reproducible capture of {url} fetched at {at}\n"


@dataclass(frozen=True)
class BibliographyRef:
    """参考文献引用: 本地文件或网络地址"""

    location: str
    is_network: bool = False

    @classmethod
    def parse(cls, raw: str, base_dir: Path | None = None) -> BibliographyRef | None:
        raw = (raw or "").strip()
        if not raw:
            return None
        if is_url(raw):
            return cls(location=raw, is_network=True)
        path = Path(raw).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        return cls(location=str(path))

    @property
    def filename(self) -> str:
        if self.is_network:
            name = Path(urlparse(self.location).path).name
            return name or "references.bib"
        return Path(self.location).name


@dataclass
class EjectReport:
    output: Path
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    bibliography: str = ""
    non_reproducible: bool = False
    files_written: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.copied or self.removed or self.files_written)


class Ejector:
    """把物化后的构建导出为独立目录"""

    def __init__(
        self,
        store: ContentStore,
        *,
        vendor_dir: str = "vendor",
        src_dir: str = "src",
        network_policy: str = "snapshot",
        fetch_url: Callable[[str], bytes] = fetch_bytes,
        cancel: threading.Event | None = None,
    ) -> None:
        self.store = store
        self.vendor_dir = vendor_dir
        self.src_dir = src_dir
        self.network_policy = network_policy
        self.fetch_url = fetch_url
        self.cancel = cancel

    def eject(
        self,
        lockfile: Lockfile,
        build: MaterializedBuild,
        output_dir: str | Path,
        *,
        bibliography: BibliographyRef | None = None,
        sources: Path | None = None,
        variables: LargoVars | None = None,
    ) -> EjectReport:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        state_path = out / STATE_FILE
        state = self._load_state(state_path)
        done: dict[str, str] = dict(state.get("packages") or {})
        report = EjectReport(output=out)

        for pkg in build.packages:
            if lockfile.get(pkg.identity) is None:
                raise StoreError(f"包 {pkg.identity} 不在锁文件中")
            self._vendor_path(out, pkg.identity)

        self._prune(out, done, {p.identity for p in build.packages}, report)
        self._save_state(state_path, state, done)

        pending = list(build.packages)
        while pending:
            pkg = pending[0]
            try:
                if self.cancel is not None and self.cancel.is_set():
                    raise OperationCancelled("eject 已取消")
                dest = self._vendor_path(out, pkg.identity)
                if done.get(pkg.identity) == pkg.fingerprint and dest.is_dir():
                    report.skipped.append(pkg.identity)
                else:
                    self._copy_package(pkg.fingerprint, dest)
                    done[pkg.identity] = pkg.fingerprint
                    self._save_state(state_path, state, done)
                    report.copied.append(pkg.identity)
                    logger.info("  已导出 %s (%s)", pkg.identity, pkg.revision[:19])
            except (OSError, StoreError, OperationCancelled) as e:
                raise PartialEject(
                    copied=sorted(done),
                    remaining=[p.identity for p in pending],
                    reason=str(e),
                ) from e
            pending.pop(0)

        remaining = ["<src>"] + (["<bibliography>"] if bibliography is not None else [])
        try:
            if sources is not None and sources.is_dir():
                report.files_written += self._copy_sources(sources, out / self.src_dir, variables)
            remaining.pop(0)
            if bibliography is not None:
                self._eject_bibliography(bibliography, out, state, report)
                self._save_state(state_path, state, done)
        except (OSError, UnreachableSource) as e:
            raise PartialEject(copied=sorted(done), remaining=remaining, reason=str(e)) from e

        logger.info(
            "eject 完成: %s (复制 %d, 跳过 %d, 写入文件 %d)",
            out, len(report.copied), len(report.skipped), report.files_written,
        )
        return report

    # ------------------------------------------------------------------
    # 依赖包
    # ------------------------------------------------------------------

    def _copy_package(self, fingerprint: str, dest: Path) -> None:
        staging = dest.parent / f".{dest.name}.partial"
        shutil.rmtree(staging, ignore_errors=True)
        staging.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.store.open(fingerprint) as view:
                view.copy_to(staging)
            if dest.exists():
                shutil.rmtree(dest)
            staging.replace(dest)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    def _vendor_path(self, out: Path, identity: str) -> Path:
        """包在输出目录中的位置，必须是 vendor 目录的直接子目录"""
        base = (out / self.vendor_dir).resolve()
        dest = (base / identity).resolve()
        if not is_valid_identity(identity) or dest.parent != base:
            raise EjectError(f"包标识会越出输出目录: {identity!r}")
        return dest

    def _prune(self, out: Path, done: dict[str, str], wanted: set[str], report: EjectReport) -> None:
        """删除上次导出但本次配置不再生效的包"""
        for identity in sorted(set(done) - wanted):
            del done[identity]
            try:
                dest = self._vendor_path(out, identity)
            except EjectError:
                logger.warning("进度记录中的包标识无效，忽略: %r", identity)
                continue
            shutil.rmtree(dest, ignore_errors=True)
            report.removed.append(identity)
            logger.info("  移除不再生效的包: %s", identity)

    @staticmethod
    def _load_state(path: Path) -> dict:
        """读取进度记录，损坏时按全新导出处理"""
        try:
            state = load_yaml(path)
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            logger.warning("进度记录损坏，重新导出全部包: %s (%s)", path, e)
            return {}
        if not isinstance(state.get("packages") or {}, dict) or not isinstance(
            state.get("bibliography") or {}, dict,
        ):
            logger.warning("进度记录格式无效，重新导出全部包: %s", path)
            return {}
        return state

    @staticmethod
    def _save_state(path: Path, state: dict, done: dict[str, str]) -> None:
        state["packages"] = {k: done[k] for k in sorted(done)}
        save_yaml(path, state)

    # ------------------------------------------------------------------
    # 源文件
    # ------------------------------------------------------------------

    @staticmethod
    def _copy_sources(src: Path, dest: Path, variables: LargoVars | None) -> int:
        written = 0
        for rel in iter_tree(src):
            source_file = src / rel
            target = dest / rel
            data = source_file.read_bytes()
            if variables is not None and source_file.suffix.lower() in TEXT_SUFFIXES:
                try:
                    text = data.decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("非 utf-8 源文件，按原样复制: %s", rel)
                else:
                    if references_macros(text):
                        data = variables.rewrite_static(text).encode("utf-8")
            if target.is_file() and target.read_bytes() == data:
                continue
            atomic_write(target, data)
            written += 1
        return written

    # ------------------------------------------------------------------
    # 参考文献
    # ------------------------------------------------------------------

    def _eject_bibliography(
        self, ref: BibliographyRef, out: Path, state: dict, report: EjectReport,
    ) -> None:
        target = out / ref.filename
        report.bibliography = ref.filename

        if not ref.is_network:
            src = Path(ref.location)
            if not src.is_file():
                raise UnreachableSource(ref.location, "参考文献文件不存在")
            data = src.read_bytes()
            if not (target.is_file() and target.read_bytes() == data):
                atomic_write(target, data)
                report.files_written += 1
            return

        report.non_reproducible = True
        previous = state.get("bibliography") or {}
        if previous.get("source") == ref.location and target.is_file():
            logger.info("  复用参考文献快照: %s", target.name)
            return
        if self.network_policy == "refuse":
            raise NonReproducibleBibliography(ref.location)

        logger.warning("参考文献来自网络，快照不可复现: %s", ref.location)
        body = self.fetch_url(ref.location)
        header = CAPTURE_HEADER.format(
            url=ref.location, at=datetime.now(tz=timezone.utc).isoformat(timespec="seconds"),
        )
        atomic_write(target, header.encode("utf-8") + body)
        state["bibliography"] = {"source": ref.location, "file": ref.filename}
        report.files_written += 1
