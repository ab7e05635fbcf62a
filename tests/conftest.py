"""Pytest configuration and fixtures for autobundle tests."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest

from autobundle.bundle_config import BundleConfig
from autobundle.package import Package, PackageRegistry


def write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def write_file(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def install(
    root: Path,
    name: str,
    version: str = "1.0.0",
    source: Optional[str] = None,
    main: Optional[str] = "index.js",
    extra_files: Optional[Dict[str, str]] = None,
) -> Path:
    """Create ``node_modules/<name>`` below *root* with a manifest and entry file."""
    dep_dir = root / "node_modules" / name
    manifest = {"name": name, "version": version}
    if main:
        manifest["main"] = main
    write_json(dep_dir / "package.json", manifest)
    entry = main or "index.js"
    write_file(dep_dir / entry, source if source is not None else f"module.exports = {json.dumps(name)};\n")
    for rel, text in (extra_files or {}).items():
        write_file(dep_dir / rel, text)
    return dep_dir


def make_package(
    root: Path,
    name: str,
    dependencies: Optional[Dict[str, str]] = None,
    options: Optional[dict] = None,
) -> Path:
    manifest = {"name": name, "version": "0.1.0", "dependencies": dependencies or {}}
    if options is not None:
        manifest["autobundle"] = options
    write_json(root / "package.json", manifest)
    return root


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp()).resolve()
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_app(temp_dir: Path) -> Path:
    """A small application with app and test sources and installed deps.

    - ``lodash``: eager from the app
    - ``moment``: lazy from the app, eager from tests
    - ``qunit-helpers``: eager from tests only
    """
    root = temp_dir / "my-app"
    make_package(root, "my-app", {
        "lodash": "^4.17.0",
        "moment": "^2.29.0",
        "qunit-helpers": "^1.0.0",
    })
    install(root, "lodash", "4.17.21", "module.exports = { chunk: function () {} };\n")
    install(root, "moment", "2.29.4", "module.exports = function moment() {};\n")
    install(root, "qunit-helpers", "1.2.0")

    write_file(root / "app" / "app.js", (
        "import lodash from 'lodash';\n"
        "import Router from 'my-app/router';\n"
        "import './styles';\n"
        "export default lodash;\n"
    ))
    write_file(root / "app" / "router.js", "export default class Router {}\n")
    write_file(root / "app" / "routes" / "chart.js", (
        "export default async function load() {\n"
        "  const { default: moment } = await import('moment');\n"
        "  return moment;\n"
        "}\n"
    ))
    write_file(root / "tests" / "unit" / "chart-test.js", (
        "import { module, test } from 'qunit-helpers';\n"
        "import moment from 'moment';\n"
        "module('chart', () => test('works', () => moment()));\n"
    ))
    return root


@pytest.fixture
def registry() -> PackageRegistry:
    return PackageRegistry()


@pytest.fixture
def app_package(sample_app: Path, registry: PackageRegistry) -> Package:
    return registry.lookup(sample_app)


@pytest.fixture
def bundles() -> BundleConfig:
    return BundleConfig.defaults()


@pytest.fixture
def shared_bundles() -> BundleConfig:
    """``tests`` shares dependencies carried by ``app``."""
    return BundleConfig.from_mapping({
        "app": {"patterns": ["**"], "entrypoint": "assets/vendor.js"},
        "tests": {"patterns": ["tests/**"], "entrypoint": "assets/test-support.js", "base": "app"},
    })
