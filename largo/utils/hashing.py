"""内容哈希

目录哈希只取决于相对路径和文件字节，与 mtime、权限、遍历顺序无关，
因此同一份内容在任何机器上都得到同一个值。
"""

from __future__ import annotations

import hashlib
from pathlib import Path

# 不参与内容哈希的目录名
IGNORED_NAMES = frozenset((".git", ".hg", ".svn", "__pycache__"))

_CHUNK = 64 * 1024


def sha256_file(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def iter_tree(root: Path) -> list[str]:
    """列出目录下所有文件的相对路径（posix 形式，已排序）"""
    files: list[str] = []
    for p in root.rglob("*"):
        rel = p.relative_to(root)
        if any(part in IGNORED_NAMES for part in rel.parts):
            continue
        if p.is_file():
            files.append(rel.as_posix())
    return sorted(files)


def hash_tree(root: Path) -> str:
    """计算目录内容哈希，返回 'sha256:<hex>'

    root 为单个文件时按文件名 + 内容计算。
    """
    sha256 = hashlib.sha256()
    if root.is_file():
        entries = [(root.name, root)]
    else:
        entries = [(rel, root / rel) for rel in iter_tree(root)]
    for rel, path in entries:
        sha256.update(rel.encode("utf-8"))
        sha256.update(b"\0")
        sha256.update(sha256_file(path).encode("ascii"))
        sha256.update(b"\n")
    return f"sha256:{sha256.hexdigest()}"
