"""项目服务：清单 → 依赖图 → 求解 → 锁文件 → 构建计划 / eject

把 core 层各组件串成面向项目的操作，CLI 只调用这里。

  - lock:  解析依赖并写锁文件（显式操作，是唯一会重新求解的入口）
  - check: 检查锁文件是否过期
  - plan:  按构建配置得到实际生效的包（锁文件过期直接报错，不会悄悄重新求解）
  - eject: 导出自包含的项目树
  - gc:    清理所有已登记项目都不再引用的缓存条目
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Callable

from largo.core.config import Config, get_config
from largo.core.dep.fetcher import SourceFetcher
from largo.core.dep.graph import GraphBuilder
from largo.core.dep.locator import SourceLocator
from largo.core.dep.registry import RegistryIndex, create_registry
from largo.core.dep.resolver import Resolver
from largo.core.dep.store import ContentStore, EntryView
from largo.core.dep.vcs import GitClient
from largo.core.eject import BibliographyRef, EjectReport, Ejector
from largo.core.exceptions import ConfigError, LockError
from largo.core.lockfile import LockfileManager
from largo.core.macros import LargoVars
from largo.core.manifest import Manifest, load_manifest
from largo.core.models import Lockfile, LockStatus, MaterializedBuild, ResolvedPackage
from largo.core.profile import ProfileMaterializer, select_profile
from largo.utils.net import fetch_bytes

logger = logging.getLogger(__name__)

BUILD_DIR = "build"


def find_project_root(start: str | Path = ".", manifest_name: str = "largo.yml") -> Path:
    """从 start 向上查找包含清单的目录"""
    current = Path(start).resolve()
    for candidate in (current, *current.parents):
        if (candidate / manifest_name).is_file():
            return candidate
    raise ConfigError(f"在 {current} 及其上级目录中找不到 {manifest_name}")


@dataclass
class BuildPlan:
    """一次构建所需的全部输入

    持有各包内容的只读视图，使用期间这些条目不会被回收；
    用完需要 close()（或作为上下文管理器使用）。
    """

    build: MaterializedBuild
    variables: LargoVars
    views: dict[str, EntryView] = field(default_factory=dict)

    @property
    def roots(self) -> dict[str, Path]:
        return {identity: view.root for identity, view in self.views.items()}

    def close(self) -> None:
        for view in self.views.values():
            view.close()
        self.views.clear()

    def __enter__(self) -> BuildPlan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ProjectService:
    """单个项目的依赖生命周期"""

    def __init__(
        self,
        root: str | Path = ".",
        config: Config | None = None,
        *,
        git: GitClient | None = None,
        registry: RegistryIndex | None = None,
        store: ContentStore | None = None,
        fetch_url: Callable[[str], bytes] = fetch_bytes,
        cancel: threading.Event | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config or get_config()
        self.git = git or GitClient()
        self.registry = registry or create_registry(self.config.registry_url)
        self.locator = SourceLocator(self.git, self.registry)
        self.store = store or ContentStore(
            self.config.cache_path,
            SourceFetcher(self.git, self.registry),
            retries=self.config.fetch_retries,
            retry_delay=self.config.retry_delay,
        )
        self.fetch_url = fetch_url
        self.cancel = cancel
        self.locks = LockfileManager(self.root / self.config.lockfile_name, self.root)

    @property
    def manifest_path(self) -> Path:
        return self.root / self.config.manifest_name

    def manifest(self) -> Manifest:
        return load_manifest(self.manifest_path)

    # ------------------------------------------------------------------
    # lock / check
    # ------------------------------------------------------------------

    def lock(self, update: bool = False) -> Lockfile:
        """解析依赖并写锁文件

        update=False 时尽量保留已锁定的版本；update=True 忽略旧锁文件，
        浮动 ref 重新查询远端，注册表包取最高可用版本。
        """
        manifest = self.manifest()
        prior = None if update else self._read_prior()

        builder = GraphBuilder(
            self.locator,
            self.store,
            prior=prior,
            manifest_name=self.config.manifest_name,
            retries=self.config.fetch_retries,
            retry_delay=self.config.retry_delay,
            max_workers=self.config.max_workers,
            cancel=self.cancel,
        )
        graph = builder.build(manifest)
        lockfile = Resolver(graph, prior).resolve()
        self.locks.write(lockfile)
        self.store.register_root(self.locks.path)
        return lockfile

    def _read_prior(self) -> Lockfile | None:
        if not self.locks.exists():
            return None
        try:
            return self.locks.read()
        except LockError as e:
            logger.warning("旧锁文件不可用，按首次解析处理: %s", e)
            return None

    def check(self) -> LockStatus:
        return self.locks.validate(self.locks.read(), self.manifest())

    # ------------------------------------------------------------------
    # plan / eject
    # ------------------------------------------------------------------

    def _materialize(self, profile_name: str) -> tuple[Manifest, Lockfile, MaterializedBuild]:
        manifest = self.manifest()
        lockfile = self.locks.read()
        self.locks.ensure_fresh(lockfile, manifest)
        profile = select_profile(manifest, profile_name or self.config.default_profile)
        build = ProfileMaterializer.for_manifest(manifest).materialize(lockfile, profile)
        self._ensure_fetched(build.packages)
        return manifest, lockfile, build

    def _ensure_fetched(self, packages: list[ResolvedPackage]) -> None:
        """缓存可能被清理过，按锁文件补齐"""
        missing = [p for p in packages if not self.store.contains(p.fingerprint)]
        if not missing:
            return
        logger.info("缓存中缺少 %d 个包，按锁文件重新拉取", len(missing))
        self.store.fetch_many(
            [(p.source, p.revision) for p in missing],
            max_workers=self.config.max_workers,
            cancel=self.cancel,
        )

    def _bibliography(self, manifest: Manifest) -> BibliographyRef | None:
        return BibliographyRef.parse(manifest.bibliography or self.config.bibliography, self.root)

    def plan(self, profile: str = "") -> BuildPlan:
        manifest, _, build = self._materialize(profile)
        bib = self._bibliography(manifest)
        variables = LargoVars(
            profile=build.profile,
            output_directory=f"{BUILD_DIR}/{build.profile}",
            bibliography=bib.location if bib is not None else "",
        )
        plan = BuildPlan(build=build, variables=variables)
        try:
            for pkg in build.packages:
                plan.views[pkg.identity] = self.store.open(pkg.fingerprint)
        except BaseException:
            plan.close()
            raise
        return plan

    def eject(self, output: str | Path, profile: str = "") -> EjectReport:
        manifest, lockfile, build = self._materialize(profile)
        bib = self._bibliography(manifest)
        variables = LargoVars(
            profile=build.profile,
            output_directory=".",
            bibliography=bib.filename if bib is not None else "",
        )
        ejector = Ejector(
            self.store,
            vendor_dir=self.config.vendor_dir,
            src_dir=self.config.src_dir,
            network_policy=self.config.network_bibliography,
            fetch_url=self.fetch_url,
            cancel=self.cancel,
        )
        return ejector.eject(
            lockfile,
            build,
            Path(output),
            bibliography=bib,
            sources=self.root / self.config.src_dir,
            variables=variables,
        )

    # ------------------------------------------------------------------
    # gc
    # ------------------------------------------------------------------

    def gc(self) -> list[str]:
        """回收所有已登记锁文件都不再引用的条目"""
        live: set[str] = set()
        roots = set(self.store.known_roots())
        if self.locks.exists():
            roots.add(self.locks.path.resolve())
        for path in sorted(roots):
            try:
                live |= LockfileManager(path).read().fingerprints()
            except LockError as e:
                logger.warning("跳过无法读取的锁文件 %s: %s", path, e)
        return self.store.garbage_collect(live)
