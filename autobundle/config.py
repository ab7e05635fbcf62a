"""Static configuration: paths, file types and reserved names."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional, Set

SETTINGS_FILE = "autobundle.toml"
MANIFEST_FILE = "package.json"

DEFAULT_ENVIRONMENT = os.environ.get("AUTOBUNDLE_ENV", "")
DEFAULT_CACHE_DIR: Optional[Path] = (
    Path(os.environ["AUTOBUNDLE_CACHE_DIR"]).expanduser()
    if os.environ.get("AUTOBUNDLE_CACHE_DIR")
    else None
)

# Global identifier the runtime loader registers itself under.  Versioned so
# two incompatible loaders never share a slot.
LOADER_PROTOCOL = "__autobundle_loader_v1__"

# Reserved output naming.  The host's fingerprinting must skip these files.
CHUNK_DIR = "assets"
CHUNK_PATTERN = "assets/chunk.*.js"
ENTRYPOINT_DIR = "entrypoints"
LOADER_FILE = "entrypoints/loader.js"

SOURCE_EXTENSIONS: Dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
}

SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "tmp", "build", "bower_components",
    ".autobundle-cache", "__pycache__", ".venv", "venv", "coverage",
}

DEFAULT_BUNDLES = {
    "app": {"patterns": ["**"], "entrypoint": "assets/vendor.js"},
    "tests": {"patterns": ["tests/**"], "entrypoint": "assets/test-support.js"},
}
