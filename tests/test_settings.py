"""Tests for autobundle.toml loading."""

from pathlib import Path

import pytest

from autobundle import config
from autobundle.errors import ConfigurationError
from autobundle.settings import Settings, load_settings
from autobundle.transform import CommandTransformer, WrappingTransformer

from conftest import write_file


SETTINGS = """\
environment = "production"
output = "build-out"
cache_dir = ".cache/autobundle"
public_asset_url = "https://cdn.example.com/"
addons = ["lib/my-addon"]

[bundles.app]
patterns = ["**"]
entrypoint = "assets/vendor.js"

[bundles.tests]
patterns = ["tests/**"]
entrypoint = "assets/test-support.js"
base = "app"

[transformer]
kind = "command"
command = ["esbuild", "{entries}", "--bundle", "--outdir={outdir}"]
"""


@pytest.fixture(autouse=True)
def no_env_override(monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_ENVIRONMENT", "")
    monkeypatch.setattr(config, "DEFAULT_CACHE_DIR", None)


def test_defaults_without_file(temp_dir: Path):
    settings = load_settings(temp_dir)

    assert settings == Settings()
    assert settings.bundle_config().names == ("app", "tests")
    assert isinstance(settings.transformer.build(), WrappingTransformer)
    assert settings.resolved_cache_dir(temp_dir) is None


def test_full_file(temp_dir: Path):
    write_file(temp_dir / "autobundle.toml", SETTINGS)
    settings = load_settings(temp_dir)

    assert settings.environment == "production"
    assert settings.addons == ["lib/my-addon"]
    assert settings.bundle_config().bases_of("tests") == ["app"]
    assert settings.resolved_cache_dir(temp_dir) == temp_dir / ".cache" / "autobundle"

    transformer = settings.transformer.build()
    assert isinstance(transformer, CommandTransformer)
    assert transformer.command[0] == "esbuild"


def test_environment_variable_overrides(temp_dir: Path, monkeypatch):
    write_file(temp_dir / "autobundle.toml", SETTINGS)
    monkeypatch.setattr(config, "DEFAULT_ENVIRONMENT", "test")

    assert load_settings(temp_dir).environment == "test"


def test_cache_can_be_turned_off(temp_dir: Path):
    settings = Settings(cache=False, cache_dir=".cache/autobundle")

    assert settings.resolved_cache_dir(temp_dir) is None


def test_cache_dir_variable_overrides(temp_dir: Path, monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_CACHE_DIR", temp_dir / "shared-cache")

    assert Settings(cache_dir="local").resolved_cache_dir(temp_dir) == temp_dir / "shared-cache"


def test_explicit_missing_file(temp_dir: Path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_settings(temp_dir, temp_dir / "other.toml")


def test_malformed_toml(temp_dir: Path):
    write_file(temp_dir / "autobundle.toml", "environment = \n")

    with pytest.raises(ConfigurationError, match="cannot read"):
        load_settings(temp_dir)


def test_invalid_values(temp_dir: Path):
    write_file(temp_dir / "autobundle.toml", '[transformer]\nkind = "webpack"\n')

    with pytest.raises(ConfigurationError, match="invalid autobundle.toml"):
        load_settings(temp_dir)


def test_bundle_without_entrypoint(temp_dir: Path):
    write_file(temp_dir / "autobundle.toml", '[bundles.app]\npatterns = ["**"]\n')

    with pytest.raises(ConfigurationError):
        load_settings(temp_dir)
