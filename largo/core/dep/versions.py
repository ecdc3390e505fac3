"""版本与版本范围

注册表版本号按 PEP 440 解析（TeX 包常见的 1.2 / 1.2.3 / 2024.1 都兼容），
约束写法同 pip: ">=2.0,<3.0"、"==1.4.*"、"~=1.2"；裸版本号 "1.4.*" 等同 "==1.4.*"。
预发布版本只有在约束本身提到预发布时才会被选中。
这一规则在这里显式判定，不依赖 packaging 各版本的默认行为。
"""

from __future__ import annotations

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from largo.core.exceptions import ConfigError


def parse_constraint(raw: str) -> SpecifierSet:
    """解析版本约束，空串和 "*" 表示任意版本，裸版本号（"1.2"、"1.*"）视为 =="""
    text = (raw or "").strip()
    if text in ("", "*"):
        return SpecifierSet("")
    if text[0].isdigit():
        text = "==" + text
    try:
        return SpecifierSet(text)
    except InvalidSpecifier as e:
        raise ConfigError(f"无效的版本约束: {raw!r}") from e


def parse_version(raw: str) -> Version | None:
    """解析版本号，无法解析返回 None"""
    try:
        return Version(str(raw))
    except InvalidVersion:
        return None


def mentions_prerelease(spec: SpecifierSet) -> bool:
    """约束中是否有某一项写明了预发布版本，如 ">=2.0rc1" """
    for item in spec:
        v = parse_version(item.version.rstrip(".*"))
        if v is not None and v.is_prerelease:
            return True
    return False


def matches(version: Version, spec: SpecifierSet) -> bool:
    return spec.contains(version, prereleases=mentions_prerelease(spec))


def satisfies(version: str, constraint: str) -> bool:
    v = parse_version(version)
    if v is None:
        return False
    return matches(v, parse_constraint(constraint))


def sort_versions_desc(versions: list[str]) -> list[str]:
    """按版本从新到旧排序，无法解析的丢弃"""
    parsed = [(pv, v) for v in versions if (pv := parse_version(v)) is not None]
    parsed.sort(key=lambda item: item[0], reverse=True)
    return [v for _, v in parsed]
