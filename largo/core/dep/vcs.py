"""Git 访问

只提供依赖管理需要的两个操作:
- ls_remote: 轻量查询浮动 ref 对应的提交（不下载内容）
- export: 把指定提交的文件树导出到目录（不保留 .git）
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from largo.core.exceptions import UnreachableSource, ValidationError
from largo.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

_SAFE_REF_RE = re.compile(r"^[a-zA-Z0-9_./@^{}\-]+$")


class GitClient:
    """基于 git 命令行的客户端，子进程通过 CommandExecutor 注入"""

    def __init__(self, executor: CommandExecutor | None = None, timeout: int = 300) -> None:
        self.executor = executor or get_executor()
        self.timeout = timeout

    def ls_remote(self, repository: str, ref: str) -> list[tuple[str, str]]:
        """查询远端 ref，返回 [(commit, refname), ...]"""
        if not _SAFE_REF_RE.match(ref):
            raise ValidationError(f"ref 包含非法字符: {ref}")
        r = self.executor.execute(
            ["git", "ls-remote", "--", repository, ref], timeout=self.timeout,
        )
        if not r.success:
            raise UnreachableSource(repository, f"git ls-remote 失败 (rc={r.returncode}): {r.stderr[:300]}")
        pairs = []
        for line in r.stdout.splitlines():
            parts = line.split()
            if len(parts) == 2:
                pairs.append((parts[0], parts[1]))
        return pairs

    def export(self, repository: str, revision: str, dest: Path) -> Path:
        """检出指定提交到 dest，并删除 .git 目录"""
        dest.mkdir(parents=True, exist_ok=True)
        steps = [
            (["git", "clone", "--quiet", "--no-checkout", repository, str(dest)], "."),
            (["git", "checkout", "--quiet", revision], str(dest)),
        ]
        for cmd, cwd in steps:
            r = self.executor.execute(cmd, cwd=cwd, timeout=self.timeout)
            if not r.success:
                raise UnreachableSource(
                    repository, f"{cmd[1]} 失败 (rc={r.returncode}): {r.stderr[:300]}",
                )
        shutil.rmtree(dest / ".git", ignore_errors=True)
        logger.info("  Git 导出: %s@%s -> %s", repository, revision[:12], dest)
        return dest
