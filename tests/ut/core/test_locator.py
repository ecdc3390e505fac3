"""SourceLocator 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from largo.core.dep.locator import SourceLocator
from largo.core.exceptions import AmbiguousRef, UnreachableSource
from largo.core.models import Local, Registry, VcsRef
from largo.utils.hashing import hash_tree

REPO = "https://example.org/fancy.git"


class ScriptedGit:
    """ls-remote 返回预设结果"""

    def __init__(self, pairs: list[tuple[str, str]]) -> None:
        self.pairs = pairs
        self.calls = 0

    def ls_remote(self, repository: str, ref: str) -> list[tuple[str, str]]:
        self.calls += 1
        return self.pairs


class TestLocal:
    def test_content_hash(self, tmp_path: Path, make_package, registry) -> None:
        pkg = make_package(tmp_path / "shared", {"a.sty": "a"})
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        assert locator.locate(Local(str(pkg))) == hash_tree(pkg)

    def test_hash_ignores_vcs_metadata(self, tmp_path: Path, make_package) -> None:
        pkg = make_package(tmp_path / "shared", {"a.sty": "a"})
        before = hash_tree(pkg)
        make_package(pkg / ".git", {"HEAD": "ref: refs/heads/main"})
        assert hash_tree(pkg) == before

    def test_missing_path(self, tmp_path: Path, registry) -> None:
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        with pytest.raises(UnreachableSource):
            locator.locate(Local(str(tmp_path / "nope")))


class TestVcs:
    def test_pinned_commit_needs_no_query(self, registry) -> None:
        git = ScriptedGit([])
        sha = "c" * 40
        assert SourceLocator(git, registry.index).locate(VcsRef(REPO, sha)) == sha  # type: ignore[arg-type]
        assert git.calls == 0

    def test_floating_ref(self, registry) -> None:
        git = ScriptedGit([("a" * 40, "refs/heads/main")])
        assert SourceLocator(git, registry.index).locate(VcsRef(REPO, "main")) == "a" * 40  # type: ignore[arg-type]

    def test_annotated_tag_peeled(self, registry) -> None:
        git = ScriptedGit([("t" * 40, "refs/tags/v1"), ("b" * 40, "refs/tags/v1^{}")])
        assert SourceLocator(git, registry.index).locate(VcsRef(REPO, "v1")) == "b" * 40  # type: ignore[arg-type]

    def test_no_match_is_ambiguous(self, registry) -> None:
        with pytest.raises(AmbiguousRef) as exc:
            SourceLocator(ScriptedGit([]), registry.index).locate(VcsRef(REPO, "nope"))  # type: ignore[arg-type]
        assert exc.value.matches == []

    def test_multiple_commits_are_ambiguous(self, registry) -> None:
        git = ScriptedGit([("a" * 40, "refs/heads/v1"), ("b" * 40, "refs/tags/v1")])
        with pytest.raises(AmbiguousRef) as exc:
            SourceLocator(git, registry.index).locate(VcsRef(REPO, "v1"))  # type: ignore[arg-type]
        assert exc.value.matches == ["a" * 40, "b" * 40]


class TestRegistry:
    def test_candidates_newest_first(self, registry) -> None:
        for v in ("1.0", "1.10", "1.2", "2.0"):
            registry.publish("tikz", v)
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        assert [r.version for r in locator.candidates(Registry("tikz", "<2"))] == ["1.10", "1.2", "1.0"]
        assert locator.locate(Registry("tikz")) == "2.0"

    def test_prerelease_skipped_by_default(self, registry) -> None:
        registry.publish("tikz", "1.0")
        registry.publish("tikz", "2.0rc1")
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        assert locator.locate(Registry("tikz", ">=1.0")) == "1.0"

    def test_prerelease_selected_when_named(self, registry) -> None:
        registry.publish("tikz", "1.0")
        registry.publish("tikz", "2.0rc1")
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        assert locator.locate(Registry("tikz", ">=2.0rc1")) == "2.0rc1"
        assert [r.version for r in locator.all_releases("tikz")] == ["2.0rc1", "1.0"]

    def test_nothing_satisfies(self, registry) -> None:
        registry.publish("tikz", "1.0")
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        with pytest.raises(UnreachableSource):
            locator.locate(Registry("tikz", ">=3"))

    def test_unknown_package(self, registry) -> None:
        locator = SourceLocator(ScriptedGit([]), registry.index)  # type: ignore[arg-type]
        with pytest.raises(UnreachableSource):
            locator.locate(Registry("ghost"))
