"""GitClient 单元测试（注入假 CommandExecutor）"""

from __future__ import annotations

from pathlib import Path

import pytest

from largo.core.dep.vcs import GitClient
from largo.core.exceptions import UnreachableSource, ValidationError
from largo.utils.shell import CommandResult


class RecordingExecutor:
    def __init__(self, results: list[CommandResult]) -> None:
        self.results = list(results)
        self.commands: list[tuple[list[str], str]] = []

    def execute(self, cmd, *, cwd=".", timeout=None) -> CommandResult:
        self.commands.append((cmd, cwd))
        if cmd[1] == "checkout":
            (Path(cwd) / ".git").mkdir(exist_ok=True)
            (Path(cwd) / "pkg.sty").write_text("% pkg\n", encoding="utf-8")
        return self.results.pop(0)


class TestLsRemote:
    def test_parses_output(self) -> None:
        out = "a" * 40 + "\trefs/tags/v1\n" + "b" * 40 + "\trefs/tags/v1^{}\n"
        ex = RecordingExecutor([CommandResult(0, out, "")])
        pairs = GitClient(ex).ls_remote("https://example.org/x.git", "v1")
        assert pairs == [("a" * 40, "refs/tags/v1"), ("b" * 40, "refs/tags/v1^{}")]
        assert ex.commands[0][0] == ["git", "ls-remote", "--", "https://example.org/x.git", "v1"]

    def test_failure_is_unreachable(self) -> None:
        ex = RecordingExecutor([CommandResult(128, "", "fatal: repository not found")])
        with pytest.raises(UnreachableSource, match="repository not found"):
            GitClient(ex).ls_remote("https://example.org/x.git", "main")

    def test_unsafe_ref_rejected(self) -> None:
        with pytest.raises(ValidationError):
            GitClient(RecordingExecutor([])).ls_remote("repo", "main; rm -rf /")


class TestExport:
    def test_strips_git_dir(self, tmp_path: Path) -> None:
        ex = RecordingExecutor([CommandResult(0, "", ""), CommandResult(0, "", "")])
        dest = tmp_path / "out"
        GitClient(ex).export("https://example.org/x.git", "c" * 40, dest)
        assert (dest / "pkg.sty").exists()
        assert not (dest / ".git").exists()
        assert ex.commands[1] == (["git", "checkout", "--quiet", "c" * 40], str(dest))

    def test_clone_failure(self, tmp_path: Path) -> None:
        ex = RecordingExecutor([CommandResult(128, "", "could not resolve host")])
        with pytest.raises(UnreachableSource, match="clone"):
            GitClient(ex).export("https://example.org/x.git", "c" * 40, tmp_path / "out")
