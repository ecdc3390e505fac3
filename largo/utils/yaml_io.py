"""YAML 读写工具

清单、锁文件、配置、eject 进度文件统一走这里：
utf-8 编码、空值保护、原子写入、输出稳定（同样的数据永远得到同样的字节）。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 清单 / 锁文件不会很大，超过此值视为异常输入
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """原子写入：同目录临时文件 + os.replace，中途失败不留下半个文件"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        if isinstance(content, bytes):
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        else:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def dump_yaml(data: Any) -> str:
    """序列化为 YAML 文本

    保持调用方给出的键顺序（sort_keys=False），因此输出是否稳定
    由调用方决定键的排列。锁文件依赖这一点做到逐字节可复现。
    """
    return yaml.safe_dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False, width=4096,
    )


def parse_yaml(text: str, *, source: str = "<string>") -> Any:
    """解析 YAML 文本，语法错误原样抛出 yaml.YAMLError"""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 失败: %s, 错误: %s", source, e)
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 文件，返回字典

    文件不存在、为空、或顶层不是映射时返回空字典。
    语法错误抛 yaml.YAMLError，文件过大抛 ValueError。
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )

    result = parse_yaml(p.read_text(encoding="utf-8"), source=str(p))
    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，返回空字典",
            p, type(result).__name__,
        )
        return {}
    return result


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件，自动创建父目录"""
    p = Path(path)
    try:
        atomic_write(p, dump_yaml(data))
    except yaml.YAMLError as e:
        logger.error("序列化 YAML 数据失败: %s, 错误: %s", p, e)
        raise
    except OSError as e:
        logger.error("写入文件失败: %s, 错误: %s", p, e)
        raise
