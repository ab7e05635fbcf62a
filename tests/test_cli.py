"""Integration tests for CLI commands."""

from pathlib import Path

from typer.testing import CliRunner

from autobundle import __version__, config
from autobundle.cli import app

from conftest import write_file


runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


class TestBuildCommand:
    """Tests for 'autobundle build'."""

    def test_build_writes_output(self, sample_app: Path):
        write_file(sample_app / "public" / "assets" / "vendor.js", "/* host */\n")
        write_file(sample_app / "public" / "index.html", "<html></html>")

        result = runner.invoke(app, ["build", str(sample_app)])

        assert result.exit_code == 0, result.stdout
        assert "Wrote" in result.stdout
        dist = sample_app / "dist"
        vendor = (dist / "assets" / "vendor.js").read_text()
        assert vendor.startswith("/* host */")
        assert 'define("lodash"' in vendor
        assert (dist / "assets" / "test-support.js").exists()
        assert (dist / "index.html").exists()
        assert len(list((dist / "assets").glob("chunk.*.js"))) == 1

    def test_stale_chunks_are_removed(self, sample_app: Path):
        stale = sample_app / "dist" / "assets" / "chunk.0000.js"
        write_file(stale, "// old")

        result = runner.invoke(app, ["build", str(sample_app)])

        assert result.exit_code == 0, result.stdout
        assert not stale.exists()

    def test_custom_output(self, sample_app: Path, temp_dir: Path):
        result = runner.invoke(app, ["build", str(sample_app), "--output", str(temp_dir / "out")])

        assert result.exit_code == 0, result.stdout
        assert (temp_dir / "out" / "entrypoints" / "loader.js").exists()

    def test_unresolved_import_fails(self, sample_app: Path):
        write_file(sample_app / "app" / "pad.js", "import pad from 'left-pad';\n")

        result = runner.invoke(app, ["build", str(sample_app)])

        assert result.exit_code == 1
        assert "left-pad" in result.stdout

    def test_invalid_settings(self, sample_app: Path):
        write_file(sample_app / "autobundle.toml", "environment = \n")

        result = runner.invoke(app, ["build", str(sample_app)])

        assert result.exit_code == 1

    def test_no_cache_rebuilds(self, sample_app: Path, monkeypatch):
        monkeypatch.setattr(config, "DEFAULT_CACHE_DIR", None)
        write_file(sample_app / "autobundle.toml", "cache_dir = \".autobundle-cache\"\n")

        first = runner.invoke(app, ["build", str(sample_app)])
        second = runner.invoke(app, ["build", str(sample_app)])
        third = runner.invoke(app, ["build", str(sample_app), "--no-cache"])

        assert first.exit_code == 0, first.stdout
        assert "built" in first.stdout
        assert "cached" in second.stdout
        assert third.exit_code == 0, third.stdout
        assert "built" in third.stdout
        assert "cached" not in third.stdout

    def test_nonexistent_root(self):
        result = runner.invoke(app, ["build", "/nonexistent/path"])

        assert result.exit_code != 0


class TestImportsCommand:
    def test_lists_imports(self, sample_app: Path):
        result = runner.invoke(app, ["imports", str(sample_app)])

        assert result.exit_code == 0, result.stdout
        assert "lodash" in result.stdout
        assert "moment" in result.stdout

    def test_no_imports(self, temp_dir: Path):
        write_file(temp_dir / "package.json", '{"name": "empty", "version": "0.0.1"}')
        write_file(temp_dir / "app" / "app.js", "export default 1;\n")

        result = runner.invoke(app, ["imports", str(temp_dir)])

        assert result.exit_code == 0
        assert "No external imports found." in result.stdout

    def test_parse_error(self, sample_app: Path):
        write_file(sample_app / "app" / "broken.js", "import {{ from\n")

        result = runner.invoke(app, ["imports", str(sample_app)])

        assert result.exit_code == 1
        assert "broken.js" in result.stdout


class TestSplitCommand:
    def test_shows_assignments(self, sample_app: Path):
        result = runner.invoke(app, ["split", str(sample_app)])

        assert result.exit_code == 0, result.stdout
        assert "lodash" in result.stdout
        assert "4.17.21" in result.stdout

    def test_unresolved_import_fails(self, sample_app: Path):
        write_file(sample_app / "tests" / "pad-test.js", "import 'left-pad';\n")

        result = runner.invoke(app, ["split", str(sample_app)])

        assert result.exit_code == 1
        assert "left-pad" in result.stdout
