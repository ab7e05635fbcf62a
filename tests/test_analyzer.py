"""Tests for Tree-sitter based import discovery."""

from pathlib import Path

import pytest

from autobundle.analyzer import Analyzer, ImportParser, is_external, scan
from autobundle.errors import ParseError
from autobundle.models import EAGER, LAZY
from autobundle.tree import FileTree


def _specs(records):
    return [(r.specifier, r.style) for r in records]


@pytest.fixture
def parser() -> ImportParser:
    return ImportParser()


class TestImportParser:
    def test_static_imports_are_eager(self, parser: ImportParser):
        source = (
            b"import _ from 'lodash';\n"
            b"import { a, b } from \"@scope/pkg\";\n"
            b"import * as ns from 'ns-lib';\n"
            b"import 'side-effect';\n"
        )
        found = parser.parse_imports("app/x.js", source)

        assert [(s, st) for s, st, _ in found] == [
            ("lodash", EAGER),
            ("@scope/pkg", EAGER),
            ("ns-lib", EAGER),
            ("side-effect", EAGER),
        ]

    def test_reexports_are_eager(self, parser: ImportParser):
        source = b"export { default } from 'a';\nexport * from 'b';\nexport const x = 1;\n"
        found = parser.parse_imports("app/x.js", source)

        assert [s for s, _, _ in found] == ["a", "b"]

    def test_dynamic_import_is_lazy(self, parser: ImportParser):
        source = b"export async function f() {\n  return await import('chart.js');\n}\n"
        found = parser.parse_imports("app/x.js", source)

        assert found == [("chart.js", LAZY, 2)]

    def test_template_literal_without_substitution(self, parser: ImportParser):
        found = parser.parse_imports("app/x.js", b"import(`plain`);\nimport(`dyn-${name}`);\n")

        assert [s for s, _, _ in found] == ["plain"]

    def test_non_literal_dynamic_import_ignored(self, parser: ImportParser):
        assert parser.parse_imports("app/x.js", b"const m = 'x';\nimport(m);\n") == []

    def test_line_numbers(self, parser: ImportParser):
        found = parser.parse_imports("app/x.js", b"\n\nimport a from 'a';\n")

        assert found[0][2] == 3

    def test_typescript_type_imports_skipped(self, parser: ImportParser):
        source = (
            b"import type { Foo } from 'types-only';\n"
            b"import { bar } from 'real-dep';\n"
            b"export type { Baz } from 'more-types';\n"
            b"const x: number = 1;\n"
        )
        found = parser.parse_imports("app/x.ts", source)

        assert [s for s, _, _ in found] == ["real-dep"]

    def test_tsx(self, parser: ImportParser):
        source = b"import React from 'react';\nexport const C = () => <div>hi</div>;\n"

        assert [s for s, _, _ in parser.parse_imports("app/c.tsx", source)] == ["react"]

    def test_syntax_error(self, parser: ImportParser):
        from autobundle.analyzer import SourceSyntaxError

        with pytest.raises(SourceSyntaxError):
            parser.parse_imports("app/x.js", b"import { from 'lodash';\nfunction (\n")

    def test_supports(self, parser: ImportParser):
        assert parser.supports("app/a.js")
        assert parser.supports("app/a.mjs")
        assert parser.supports("app/a.ts")
        assert not parser.supports("app/a.hbs")
        assert not parser.supports("app/README")


class TestIsExternal:
    def test_relative_and_absolute(self, app_package):
        assert not is_external("./local", app_package)
        assert not is_external("../up", app_package)
        assert not is_external("/abs/path", app_package)
        assert not is_external("https://cdn.example.com/x.js", app_package)

    def test_own_namespace(self, app_package):
        assert not is_external("my-app/router", app_package)
        assert is_external("lodash", app_package)


class TestAnalyzer:
    def test_scan_sample_app(self, sample_app: Path, app_package):
        tree = FileTree.from_directory(sample_app, extensions={".js"})
        records = Analyzer(tree, app_package).scan()

        assert _specs(records) == [
            ("lodash", EAGER),
            ("moment", LAZY),
            ("qunit-helpers", EAGER),
            ("moment", EAGER),
        ]
        assert records[0].consuming_path == "app/app.js"
        assert records[1].consuming_path == "app/routes/chart.js"
        assert records[3].consuming_path == "tests/unit/chart-test.js"
        assert all(r.package is app_package for r in records)

    def test_node_modules_not_scanned(self, sample_app: Path, app_package):
        tree = FileTree.from_directory(sample_app, extensions={".js"})
        records = Analyzer(tree, app_package).scan()

        assert not any("node_modules" in r.consuming_path for r in records)

    def test_rescan_is_identical(self, sample_app: Path, app_package):
        tree = FileTree.from_directory(sample_app, extensions={".js"})
        analyzer = Analyzer(tree, app_package)

        assert analyzer.scan() == analyzer.scan()
        assert Analyzer(tree, app_package).scan() == analyzer.scan()

    def test_unchanged_files_are_not_reparsed(self, app_package):
        calls = []

        class CountingParser(ImportParser):
            def parse_imports(self, path, source):
                calls.append(path)
                return super().parse_imports(path, source)

        analyzer = Analyzer(
            FileTree({"app/a.js": "import 'a';", "app/b.js": "import 'b';"}),
            app_package,
            parser=CountingParser(),
        )
        analyzer.scan()
        analyzer.update(FileTree({"app/a.js": "import 'a';", "app/b.js": "import 'c';"}))
        records = analyzer.scan()

        assert calls == ["app/a.js", "app/b.js", "app/b.js"]
        assert [r.specifier for r in records] == ["a", "c"]

    def test_parse_error_names_file_and_package(self, app_package):
        tree = FileTree({"app/ok.js": "import 'lodash';", "app/bad.js": "import {{ from"})

        with pytest.raises(ParseError) as exc_info:
            Analyzer(tree, app_package).scan()

        err = exc_info.value
        assert err.file_path == "app/bad.js"
        assert err.package == "my-app"
        assert "app/bad.js" in str(err)

    def test_non_source_files_ignored(self, app_package):
        tree = FileTree({"app/template.hbs": "{{#if}}", "app/a.js": "import 'x';"})

        assert [r.specifier for r in scan(tree, app_package)] == ["x"]
