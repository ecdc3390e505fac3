"""集中配置管理

用户级配置（~/.largo/config.yml）加载为 Config，支持编程式覆盖。
项目级清单由 largo.core.manifest 负责。
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from largo.core.exceptions import ConfigError
from largo.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("~", ".largo", "config.yml")

NETWORK_BIB_POLICIES = ("snapshot", "refuse")


@dataclass
class Config:
    """largo 全局配置"""

    # 目录 / 文件名
    cache_dir: str = os.path.join("~", ".cache", "largo")
    manifest_name: str = "largo.yml"
    lockfile_name: str = "largo.lock"
    src_dir: str = "src"
    vendor_dir: str = "vendor"

    # 注册表: http(s) URL 或本地目录
    registry_url: str = ""

    # 拉取
    max_workers: int = 4
    fetch_retries: int = 3
    retry_delay: float = 0.5

    # 构建
    default_profile: str = "debug"

    # 全局参考文献: 文件路径或 http(s) 地址
    bibliography: str = ""
    # 网络参考文献策略: snapshot（抓取一次并标注不可复现）| refuse
    network_bibliography: str = "snapshot"

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.network_bibliography not in NETWORK_BIB_POLICIES:
            raise ConfigError(
                f"network_bibliography 只能是 {NETWORK_BIB_POLICIES}: "
                f"{self.network_bibliography!r}"
            )
        if self.fetch_retries < 1:
            raise ConfigError(f"fetch_retries 至少为 1: {self.fetch_retries}")

    @property
    def cache_path(self) -> str:
        return os.path.expanduser(self.cache_dir)

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_PATH) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(os.path.expanduser(path))
        if not data:
            return cls()
        data = {k.replace("-", "_"): v for k, v in data.items()}
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg


# 全局单例，由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
