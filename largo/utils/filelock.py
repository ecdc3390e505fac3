"""跨进程文件锁

POSIX 下用 fcntl 咨询锁，Windows 下用 msvcrt。
只在"拉取-发布"阶段加锁，读取已发布的内容永远不加锁。
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import IO

try:
    import fcntl

    HAVE_FCNTL = True
except ImportError:
    HAVE_FCNTL = False

try:
    import msvcrt

    HAVE_MSVCRT = True
except ImportError:
    HAVE_MSVCRT = False

logger = logging.getLogger(__name__)


class FileLock:
    """独占文件锁上下文管理器

    用法:
        with FileLock(cache / "locks" / f"{fp}.lock"):
            ...
    """

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = lock_path
        self._fh: IO[str] | None = None

    def __enter__(self) -> FileLock:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.lock_path, "a+", encoding="utf-8")  # noqa: SIM115
        if HAVE_FCNTL:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_EX)
        elif HAVE_MSVCRT:
            msvcrt.locking(self._fh.fileno(), msvcrt.LK_LOCK, 1)
        else:
            logger.warning("当前平台不支持文件锁，仅保证单进程安全: %s", self.lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._fh is None:
            return
        if HAVE_FCNTL:
            fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
        elif HAVE_MSVCRT:
            msvcrt.locking(self._fh.fileno(), msvcrt.LK_UNLCK, 1)
        self._fh.close()
        self._fh = None
