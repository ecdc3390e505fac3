"""构建注入变量测试"""

from __future__ import annotations

from largo.core.macros import LargoVars, references_macros


class TestLargoVars:
    def test_defs(self) -> None:
        v = LargoVars(profile="release", output_directory="build/release", bibliography="refs.bib")
        assert v.to_defs() == (
            r"\def\LargoProfile{release}"
            r"\def\LargoOutputDirectory{build/release}"
            r"\def\LargoBibliography{refs.bib}"
        )

    def test_defs_without_bibliography(self) -> None:
        assert "Bibliography" not in LargoVars("debug", "build/debug").to_defs()

    def test_rewrite_static(self) -> None:
        v = LargoVars("release", ".", "refs.bib")
        text = r"\ifthenelse{\equal{\LargoProfile}{release}}{}{}\bibliography{\LargoBibliography}"
        assert v.rewrite_static(text) == r"\ifthenelse{\equal{release}{release}}{}{}\bibliography{refs.bib}"

    def test_longer_names_untouched(self) -> None:
        v = LargoVars("release", ".")
        assert v.rewrite_static(r"\LargoProfileName") == r"\LargoProfileName"

    def test_undefined_bibliography_kept(self) -> None:
        v = LargoVars("release", ".")
        assert v.rewrite_static(r"\LargoBibliography") == r"\LargoBibliography"

    def test_references_macros(self) -> None:
        assert references_macros(r"x \LargoOutputDirectory/y")
        assert not references_macros(r"\Largo")
