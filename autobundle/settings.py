"""Project settings loaded from ``autobundle.toml``.

Example::

    environment = "development"
    output = "dist"
    public_asset_url = "/"
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
    command = ["esbuild", "{entries}", "--bundle", "--format=cjs", "--outdir={outdir}"]
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

import toml
from pydantic import BaseModel, Field, ValidationError

from . import config
from .bundle_config import BundleConfig
from .errors import ConfigurationError
from .transform import Transformer, make_transformer


class BundleSettings(BaseModel):
    patterns: List[str] = Field(default_factory=list, description="Path globs owned by the bundle.")
    entrypoint: str = Field(..., description="Output file receiving the eager payload.")
    base: Optional[str] = Field(None, description="Bundle that carries shared dependencies.")
    default: bool = Field(False, description="Catches paths no pattern matches.")


class TransformerSettings(BaseModel):
    kind: Literal["wrap", "command"] = "wrap"
    command: Optional[List[str]] = None

    def build(self) -> Transformer:
        return make_transformer(self.kind, self.command)


class Settings(BaseModel):
    environment: str = ""
    output: str = "dist"
    cache_dir: Optional[str] = None
    cache: bool = Field(True, description="Keep artifacts in the on-disk cache between runs.")
    public_asset_url: str = "/"
    addons: List[str] = Field(default_factory=list)
    bundles: Dict[str, BundleSettings] = Field(default_factory=dict)
    transformer: TransformerSettings = Field(default_factory=TransformerSettings)

    def bundle_config(self) -> BundleConfig:
        if not self.bundles:
            return BundleConfig.defaults()
        return BundleConfig.from_mapping({
            name: bundle.model_dump() for name, bundle in self.bundles.items()
        })

    def resolved_cache_dir(self, root: Path) -> Optional[Path]:
        if not self.cache:
            return None
        if config.DEFAULT_CACHE_DIR is not None:
            return config.DEFAULT_CACHE_DIR
        if self.cache_dir:
            return (root / self.cache_dir).resolve()
        return None


def load_settings(root: Path, path: Optional[Path] = None) -> Settings:
    """Read settings for the project at *root*.

    Falls back to defaults when no settings file exists; ``AUTOBUNDLE_ENV``
    overrides the configured environment.
    """
    settings_path = path or root / config.SETTINGS_FILE
    raw: Dict[str, object] = {}
    if settings_path.exists():
        try:
            raw = toml.load(settings_path)
        except (toml.TomlDecodeError, OSError) as exc:
            raise ConfigurationError(f"cannot read {settings_path}: {exc}") from exc
    elif path is not None:
        raise ConfigurationError(f"settings file not found: {settings_path}")

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid {settings_path.name}: {exc}") from exc
    if config.DEFAULT_ENVIRONMENT:
        settings.environment = config.DEFAULT_ENVIRONMENT
    return settings
