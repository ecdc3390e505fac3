"""构建注入变量

构建时排版引擎的输入前会注入几条宏定义:

    \\def\\LargoProfile{release}
    \\def\\LargoOutputDirectory{target/release}
    \\def\\LargoBibliography{refs.bib}      (仅在配置了参考文献时)

eject 之后不再有构建工具注入，源文件里对这些宏的引用需要替换为字面值。
这里只认识这三条宏，不理解其他 TeX 语法。
"""

from __future__ import annotations

import re
from dataclasses import dataclass

MACRO_PREFIX = "Largo"

_MACRO_RE = re.compile(r"\\Largo(Profile|Bibliography|OutputDirectory)(?![A-Za-z@])")


@dataclass(frozen=True)
class LargoVars:
    profile: str
    output_directory: str
    bibliography: str = ""

    def values(self) -> dict[str, str]:
        out = {"Profile": self.profile, "OutputDirectory": self.output_directory}
        if self.bibliography:
            out["Bibliography"] = self.bibliography
        return out

    def to_defs(self) -> str:
        """渲染为注入引擎输入的宏定义"""
        return "".join(
            f"\\def\\{MACRO_PREFIX}{name}{{{value}}}"
            for name, value in self.values().items()
        )

    def rewrite_static(self, text: str) -> str:
        """把宏引用替换为字面值；未定义的宏（如没有参考文献）保持原样"""
        values = self.values()

        def _sub(m: re.Match[str]) -> str:
            return values.get(m.group(1), m.group(0))

        return _MACRO_RE.sub(_sub, text)


def references_macros(text: str) -> bool:
    return _MACRO_RE.search(text) is not None
