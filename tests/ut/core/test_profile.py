"""ProfileMaterializer 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from largo.core.exceptions import UnknownFlag, UnknownProfile
from largo.core.manifest import Manifest
from largo.core.models import BuildProfile, Lockfile, Registry, ResolvedPackage
from largo.core.profile import ProfileMaterializer, select_profile


def _pkg(name: str, deps: dict[str, str] | None = None) -> ResolvedPackage:
    return ResolvedPackage(name, "registry", Registry(name), "1.0", f"fp-{name}", dependencies=deps or {})


@pytest.fixture()
def lockfile() -> Lockfile:
    # thesis -> shared, fancy -> (watermark 仅 camera-ready)
    return Lockfile(
        manifest_fingerprint="sha256:x",
        root={"shared": "", "fancy": "", "draftwm": "draft"},
        packages={
            "shared": _pkg("shared"),
            "fancy": _pkg("fancy", {"watermark": "camera-ready", "util": ""}),
            "watermark": _pkg("watermark"),
            "util": _pkg("util"),
            "draftwm": _pkg("draftwm"),
        },
    )


class TestMaterialize:
    def test_gated_edges_skipped(self, lockfile: Lockfile) -> None:
        mat = ProfileMaterializer({"synctex": True}, {"camera-ready", "draft"})
        build = mat.materialize(lockfile, BuildProfile("debug"))
        assert build.identities == ["fancy", "shared", "util"]

    def test_enabled_flag_activates_packages(self, lockfile: Lockfile) -> None:
        mat = ProfileMaterializer({}, {"camera-ready"})
        build = mat.materialize(lockfile, BuildProfile("release", frozenset({"camera-ready"})))
        assert build.identities == ["fancy", "shared", "util", "watermark"]
        assert build.profile == "release"

    def test_parameters_merge_overrides(self, lockfile: Lockfile) -> None:
        mat = ProfileMaterializer({"synctex": True, "tex-engine": "pdftex"})
        profile = BuildProfile("release", overrides={"synctex": False})
        build = mat.materialize(lockfile, profile)
        assert build.parameters == {"synctex": False, "tex-engine": "pdftex"}

    def test_profile_does_not_change_identities(self, lockfile: Lockfile) -> None:
        mat = ProfileMaterializer()
        debug = mat.materialize(lockfile, BuildProfile("debug"))
        release = mat.materialize(lockfile, BuildProfile("release", frozenset({"camera-ready"})))
        shared = {p.identity: p.fingerprint for p in debug.packages}
        for pkg in release.packages:
            if pkg.identity in shared:
                assert shared[pkg.identity] == pkg.fingerprint

    def test_flag_known_from_lockfile_gate(self, lockfile: Lockfile) -> None:
        build = ProfileMaterializer().materialize(lockfile, BuildProfile("d", frozenset({"draft"})))
        assert "draftwm" in build.identities

    def test_unknown_flag(self, lockfile: Lockfile) -> None:
        with pytest.raises(UnknownFlag) as exc:
            ProfileMaterializer({}, {"camera-ready"}).materialize(
                lockfile, BuildProfile("release", frozenset({"camra-ready"})),
            )
        assert exc.value.flags == ["camra-ready"]

    def test_materialize_is_pure(self, lockfile: Lockfile) -> None:
        mat = ProfileMaterializer({"a": 1})
        profile = BuildProfile("release", frozenset({"camera-ready"}), {"b": 2})
        assert mat.materialize(lockfile, profile) == mat.materialize(lockfile, profile)
        assert mat.defaults == {"a": 1}


class TestSelectProfile:
    def test_default_debug(self, tmp_path: Path) -> None:
        manifest = Manifest.from_dict({}, tmp_path)
        assert select_profile(manifest).name == "debug"

    def test_named(self, tmp_path: Path) -> None:
        manifest = Manifest.from_dict({
            "features": ["camera-ready"],
            "profile": {"release": {"features": ["camera-ready"], "synctex": False}},
        }, tmp_path)
        profile = select_profile(manifest, "release")
        assert profile.features == frozenset({"camera-ready"})
        assert profile.overrides == {"synctex": False}
        # 声明了其他配置时 debug 仍然可用
        assert select_profile(manifest, "debug").name == "debug"

    def test_unknown(self, tmp_path: Path) -> None:
        with pytest.raises(UnknownProfile):
            select_profile(Manifest.from_dict({}, tmp_path), "nightly")
