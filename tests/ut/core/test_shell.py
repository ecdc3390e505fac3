"""shell.py LocalExecutor 单元测试"""

from __future__ import annotations

import sys

from largo.utils.shell import CommandResult, LocalExecutor, get_executor, set_executor


class TestLocalExecutor:
    def test_success(self, tmp_path) -> None:
        r = LocalExecutor().execute([sys.executable, "-c", "print('hello')"], cwd=str(tmp_path))
        assert r.success
        assert "hello" in r.stdout

    def test_failure_returncode(self, tmp_path) -> None:
        r = LocalExecutor().execute([sys.executable, "-c", "import sys; sys.exit(3)"], cwd=str(tmp_path))
        assert not r.success
        assert r.returncode == 3

    def test_missing_binary(self, tmp_path) -> None:
        r = LocalExecutor().execute(["largo-no-such-binary"], cwd=str(tmp_path))
        assert r.returncode == 127

    def test_timeout(self, tmp_path) -> None:
        r = LocalExecutor().execute(
            [sys.executable, "-c", "import time; time.sleep(5)"], cwd=str(tmp_path), timeout=1,
        )
        assert r.returncode == -1
        assert "超时" in r.stderr


class TestExecutorRegistry:
    def test_set_and_restore(self) -> None:
        class Fake:
            def execute(self, cmd, *, cwd=".", timeout=None) -> CommandResult:
                return CommandResult(0, "fake", "")

        original = get_executor()
        try:
            set_executor(Fake())
            assert get_executor().execute(["x"]).stdout == "fake"
        finally:
            set_executor(original)
