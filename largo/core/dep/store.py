"""内容寻址仓库

所有包内容只通过本模块读写，其他组件只持有指纹，不持有仓库内路径。

目录布局（cache_dir 下）:
    objects/<fp[:2]>/<fp>/content/   包内容
    objects/<fp[:2]>/<fp>/meta.yml   来源信息（仅供排查）
    tmp/                             拉取中的临时目录
    locks/<fp>.lock                  跨进程拉取锁
    roots.yml                        已知锁文件列表（垃圾回收用）

不变量:
  - 指纹是 (来源类型, 位置, 修订) 的纯函数；本地来源的修订就是内容哈希，
    且不含路径，同样的内容在任何机器上得到同样的指纹
  - 条目先写到 tmp/ 再 os.replace 发布，取消或失败只会留下"没有条目"，
    不会留下半个条目
  - 同一指纹同一时刻只有一个拉取在进行，后到的请求等待同一个结果
  - 只在"拉取-发布"阶段加文件锁，读取已发布条目不加锁
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import tempfile
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Sequence

from largo.core.dep.fetcher import SourceFetcher
from largo.core.exceptions import (
    IntegrityError,
    MissingEntry,
    OperationCancelled,
    UnreachableSource,
)
from largo.core.models import ContentStoreEntry, Local, SourceSpec, source_location
from largo.utils.filelock import FileLock
from largo.utils.hashing import hash_tree, iter_tree
from largo.utils.yaml_io import load_yaml, save_yaml

logger = logging.getLogger(__name__)

FINGERPRINT_SCHEME = "largo-store-v1"

FetchRequest = tuple[SourceSpec, str]


def compute_fingerprint(source: SourceSpec, revision: str) -> str:
    """内容指纹（纯函数）"""
    location = "" if isinstance(source, Local) else source_location(source)
    blob = "\0".join((FINGERPRINT_SCHEME, source.kind, location, revision))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class EntryView:
    """已发布条目的只读视图

    作为上下文管理器使用；打开期间条目不会被垃圾回收。
    """

    def __init__(self, store: ContentStore, fingerprint: str, root: Path) -> None:
        self._store = store
        self.fingerprint = fingerprint
        self.root = root
        self._closed = False

    def files(self) -> list[str]:
        return iter_tree(self.root)

    def exists(self, rel: str) -> bool:
        return (self.root / rel).is_file()

    def read_bytes(self, rel: str) -> bytes:
        return (self.root / rel).read_bytes()

    def read_text(self, rel: str) -> str:
        return (self.root / rel).read_text(encoding="utf-8")

    def copy_to(self, dest: Path) -> Path:
        """把条目内容逐字节复制到 dest"""
        shutil.copytree(self.root, dest, dirs_exist_ok=True)
        return dest

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._store._release(self.fingerprint)

    def __enter__(self) -> EntryView:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ContentStore:
    """内容寻址缓存"""

    def __init__(
        self,
        root: str | Path,
        fetcher: SourceFetcher,
        *,
        retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.root = Path(root).expanduser()
        self.fetcher = fetcher
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._objects = self.root / "objects"
        self._tmp = self.root / "tmp"
        self._locks = self.root / "locks"
        for d in (self._objects, self._tmp, self._locks):
            d.mkdir(parents=True, exist_ok=True)

        self._mutex = threading.Lock()
        self._inflight: dict[str, Future[str]] = {}
        self._open: dict[str, int] = {}
        # 实际发生的拉取次数（去重效果可观测）
        self.transfers = 0

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def _entry_dir(self, fingerprint: str) -> Path:
        return self._objects / fingerprint[:2] / fingerprint

    def contains(self, fingerprint: str) -> bool:
        return (self._entry_dir(fingerprint) / "content").is_dir()

    def entries(self) -> list[ContentStoreEntry]:
        result = []
        for entry in sorted(self._objects.glob("*/*")):
            if not (entry / "content").is_dir():
                continue
            with self._mutex:
                count = self._open.get(entry.name, 0)
            result.append(ContentStoreEntry(
                fingerprint=entry.name, location=str(entry), ref_count=count,
            ))
        return result

    def open(self, fingerprint: str) -> EntryView:
        """打开已发布条目，不存在抛 MissingEntry"""
        content = self._entry_dir(fingerprint) / "content"
        with self._mutex:
            if not content.is_dir():
                raise MissingEntry(fingerprint)
            self._open[fingerprint] = self._open.get(fingerprint, 0) + 1
        return EntryView(self, fingerprint, content)

    def _release(self, fingerprint: str) -> None:
        with self._mutex:
            left = self._open.get(fingerprint, 0) - 1
            if left <= 0:
                self._open.pop(fingerprint, None)
            else:
                self._open[fingerprint] = left

    # ------------------------------------------------------------------
    # 拉取
    # ------------------------------------------------------------------

    def fetch(self, source: SourceSpec, revision: str) -> str:
        """确保 (来源, 修订) 已在仓库中，返回指纹；已存在时为空操作"""
        fingerprint = compute_fingerprint(source, revision)
        if self.contains(fingerprint):
            return fingerprint

        with self._mutex:
            future = self._inflight.get(fingerprint)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[fingerprint] = future
        assert future is not None

        if not owner:
            logger.debug("等待进行中的拉取: %s", fingerprint[:12])
            return future.result()

        try:
            self._fetch_and_publish(fingerprint, source, revision)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(fingerprint)
        finally:
            with self._mutex:
                self._inflight.pop(fingerprint, None)
        return fingerprint

    def fetch_many(
        self,
        requests: Sequence[FetchRequest],
        *,
        max_workers: int = 4,
        cancel: threading.Event | None = None,
    ) -> list[str]:
        """并发拉取多个来源，返回指纹（与输入顺序一致）

        cancel 被设置后，尚未开始的拉取抛 OperationCancelled；
        已开始的拉取会完整结束（或不留下任何条目）。
        """
        def _one(req: FetchRequest) -> str:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"拉取已取消: {req[0].describe()}")
            return self.fetch(*req)

        if max_workers <= 1 or len(requests) <= 1:
            return [_one(r) for r in requests]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(_one, r) for r in requests]
            return [f.result() for f in futures]

    def _fetch_and_publish(self, fingerprint: str, source: SourceSpec, revision: str) -> None:
        with FileLock(self._locks / f"{fingerprint}.lock"):
            if self.contains(fingerprint):
                logger.debug("其他进程已发布: %s", fingerprint[:12])
                return

            last_error: Exception | None = None
            for attempt in range(1, self.retries + 1):
                try:
                    self._transfer(fingerprint, source, revision)
                    return
                except (UnreachableSource, OSError) as e:
                    last_error = e
                    logger.warning(
                        "拉取失败 (%d/%d) %s: %s",
                        attempt, self.retries, source.describe(), e,
                    )
                    if attempt < self.retries:
                        time.sleep(self.retry_delay * attempt)
            assert last_error is not None
            raise last_error

    def _transfer(self, fingerprint: str, source: SourceSpec, revision: str) -> None:
        with self._mutex:
            self.transfers += 1
        staging = Path(tempfile.mkdtemp(dir=str(self._tmp), prefix=f"{fingerprint[:12]}-"))
        try:
            content = staging / "content"
            logger.info("拉取 %s (%s)", source.describe(), revision[:19])
            self.fetcher.fetch_into(source, revision, content)

            if isinstance(source, Local):
                actual = hash_tree(content)
                if actual != revision:
                    raise IntegrityError(source.path, revision, actual)

            save_yaml(staging / "meta.yml", {
                "kind": source.kind,
                "location": source_location(source),
                "revision": revision,
                "fetched_at": datetime.now(tz=timezone.utc).isoformat(),
            })
            target = self._entry_dir(fingerprint)
            target.parent.mkdir(parents=True, exist_ok=True)
            staging.replace(target)
            logger.info("已发布: %s", fingerprint[:12])
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # 垃圾回收
    # ------------------------------------------------------------------

    def garbage_collect(self, live: set[str]) -> list[str]:
        """删除不在 live 中且当前未被打开的条目，返回被删除的指纹"""
        evicted: list[str] = []
        for entry in self.entries():
            fp = entry.fingerprint
            if fp in live:
                continue
            with FileLock(self._locks / f"{fp}.lock"):
                with self._mutex:
                    if self._open.get(fp, 0) > 0:
                        logger.info("条目正在使用，跳过回收: %s", fp[:12])
                        continue
                    # 先移出 objects/，之后 open() 立即看不到该条目
                    doomed = self._tmp / f"gc-{fp}"
                    shutil.rmtree(doomed, ignore_errors=True)
                    self._entry_dir(fp).replace(doomed)
                shutil.rmtree(doomed, ignore_errors=True)
            evicted.append(fp)
        logger.info("垃圾回收: 删除 %d 个条目，保留 %d 个", len(evicted), len(live))
        return evicted

    # ------------------------------------------------------------------
    # 已知锁文件
    # ------------------------------------------------------------------

    def register_root(self, lockfile_path: str | Path) -> None:
        """登记一个锁文件，垃圾回收时它引用的条目都视为存活"""
        path = str(Path(lockfile_path).resolve())
        roots_file = self.root / "roots.yml"
        with FileLock(self._locks / "roots.lock"):
            roots = list(load_yaml(roots_file).get("roots") or [])
            if path not in roots:
                roots.append(path)
                save_yaml(roots_file, {"roots": sorted(roots)})

    def known_roots(self) -> list[Path]:
        """仍然存在的已登记锁文件"""
        roots = load_yaml(self.root / "roots.yml").get("roots") or []
        return [Path(r) for r in roots if Path(r).exists()]
