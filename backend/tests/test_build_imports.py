"""
Tests for the stylesheet import graph.
"""

from pathlib import Path

from kiln.build.imports import dependents_of, find_imports
from kiln.catalog.classifier import FileKind
from kiln.projects.models import FileRecord


def _record(path: Path, kind: FileKind = FileKind.STYLESHEET) -> FileRecord:
    return FileRecord(id=path.name, source_path=str(path), kind=kind)


class TestFindImports:

    def test_scss_partial_and_implicit_extension(self, tmp_path: Path):
        (tmp_path / "_vars.scss").write_text("$a: 1;")
        (tmp_path / "mixins.scss").write_text("")
        main = tmp_path / "main.scss"
        main.write_text('@import "vars", "mixins";\n@import "missing";\n')

        assert find_imports(str(main)) == [str(tmp_path / "_vars.scss"), str(tmp_path / "mixins.scss")]

    def test_less_relative_paths(self, tmp_path: Path):
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "colors.less").write_text("@c: red;")
        (tmp_path / "site.less").write_text("@import (reference) 'lib/colors';\nbody { color: @c; }")

        assert find_imports(str(tmp_path / "site.less")) == [str(tmp_path / "lib" / "colors.less")]

    def test_indented_sass_bare_names(self, tmp_path: Path):
        (tmp_path / "_base.sass").write_text("")
        (tmp_path / "app.sass").write_text("@import base\nbody\n  margin: 0\n")

        assert find_imports(str(tmp_path / "app.sass")) == [str(tmp_path / "_base.sass")]

    def test_ignores_css_urls_and_comments(self, tmp_path: Path):
        (tmp_path / "_vars.scss").write_text("")
        main = tmp_path / "main.scss"
        main.write_text(
            '@import "theme.css";\n'
            '@import url("https://fonts.example/x");\n'
            '// @import "vars";\n'
            '/* @import "vars"; */\n'
        )

        assert find_imports(str(main)) == []

    def test_non_stylesheet_and_missing_file(self, tmp_path: Path):
        script = tmp_path / "app.coffee"
        script.write_text("# @import 'x'")
        assert find_imports(str(script)) == []
        assert find_imports(str(tmp_path / "gone.scss")) == []


class TestDependentsOf:

    def test_transitive_dependents(self, tmp_path: Path):
        """
        GIVEN main.scss -> _layout.scss -> _vars.scss, and an unrelated file
        WHEN _vars.scss changes
        THEN main.scss and _layout.scss depend on it; the unrelated one does not
        """
        vars_ = tmp_path / "_vars.scss"
        layout = tmp_path / "_layout.scss"
        main = tmp_path / "main.scss"
        other = tmp_path / "other.scss"
        vars_.write_text("$a: 1;")
        layout.write_text("@import 'vars';")
        main.write_text("@import 'layout';")
        other.write_text("p { a: b; }")
        records = [_record(p) for p in (vars_, layout, main, other)]

        found = dependents_of(str(vars_), records)

        assert sorted(r.source_path for r in found) == sorted([str(layout), str(main)])

    def test_import_cycle_terminates(self, tmp_path: Path):
        a = tmp_path / "a.less"
        b = tmp_path / "b.less"
        c = tmp_path / "c.less"
        a.write_text("@import 'b';")
        b.write_text("@import 'a';")
        c.write_text("")

        found = dependents_of(str(c), [_record(a), _record(b)])

        assert found == []

    def test_scripts_are_never_dependents(self, tmp_path: Path):
        vars_ = tmp_path / "_vars.scss"
        vars_.write_text("")
        script = tmp_path / "app.coffee"
        script.write_text("")

        assert dependents_of(str(vars_), [_record(script, FileKind.SCRIPT)]) == []
