"""网络工具：URL 安全校验与一次性下载"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from pathlib import Path
from urllib.parse import urlparse

from largo.core.exceptions import UnreachableSource, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def is_url(ref: str) -> bool:
    """是否是本模块可处理的网络地址"""
    return urlparse(ref).scheme in _ALLOWED_SCHEMES


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def fetch_bytes(url: str, *, timeout: int = 60, context: str = "") -> bytes:
    """同步下载 URL 内容，网络失败统一转为 UnreachableSource"""
    validate_url_scheme(url, context=context)
    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:  # nosec B310
            return resp.read()
    except (urllib.error.URLError, OSError) as e:
        raise UnreachableSource(url, str(e)) from e


def download_to(url: str, dest: Path, *, timeout: int = 300, context: str = "") -> Path:
    """下载到指定文件，失败时删除残留"""
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        dest.write_bytes(fetch_bytes(url, timeout=timeout, context=context))
    except UnreachableSource:
        dest.unlink(missing_ok=True)
        raise
    logger.info("  已下载: %s -> %s", url, dest)
    return dest
