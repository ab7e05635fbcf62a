"""Packages that may import external dependencies, and how they resolve them.

A :class:`Package` is either the application or a contributing addon.  Each
owns a dependency-resolution context answering "which installed files does
this specifier mean *for me*".  The :class:`PackageRegistry` deduplicates
packages by root directory for the lifetime of a build.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .config import MANIFEST_FILE
from .errors import ConfigurationError
from .models import ResolvedDependency

logger = logging.getLogger(__name__)


def package_name_of(specifier: str) -> str:
    """Return the installable package name for *specifier*.

    ``lodash/fp`` -> ``lodash``; ``@scope/pkg/deep`` -> ``@scope/pkg``.
    """
    parts = specifier.split("/")
    if specifier.startswith("@") and len(parts) > 1:
        return "/".join(parts[:2])
    return parts[0]


def read_manifest(root: Path) -> Dict[str, Any]:
    manifest = root / MANIFEST_FILE
    if not manifest.is_file():
        raise ConfigurationError(f"no {MANIFEST_FILE} found in {root}", package=str(root))
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"invalid {manifest}: {exc}", package=str(root)) from exc
    if not isinstance(data, dict) or not data.get("name"):
        raise ConfigurationError(f"{manifest} does not declare a name", package=str(root))
    return data


# ===================================================================
# Resolution contexts
# ===================================================================

class ResolutionContext(ABC):
    """Given a specifier, find the installed files backing it."""

    @abstractmethod
    def resolve(self, specifier: str) -> Optional[ResolvedDependency]:
        """Return the resolved dependency, or ``None`` when not found."""
        ...


class NodeModulesResolver(ResolutionContext):
    """Node-style lookup through ``node_modules`` directories.

    Walks from *root* towards the filesystem root and takes the first
    ``node_modules/<name>`` that carries a manifest.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def _candidate_dirs(self, name: str) -> Iterator[Path]:
        current = self.root
        while True:
            yield current / "node_modules" / name
            if current.parent == current:
                return
            current = current.parent

    def resolve(self, specifier: str) -> Optional[ResolvedDependency]:
        name = package_name_of(specifier)
        for dep_dir in self._candidate_dirs(name):
            manifest = dep_dir / MANIFEST_FILE
            if not manifest.is_file():
                continue
            try:
                meta = json.loads(manifest.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable manifest %s", manifest)
                continue
            subpath = specifier[len(name):].lstrip("/")
            entry = self._entry_file(dep_dir, meta, subpath)
            if entry is None:
                logger.debug("%s has no entry for %r", dep_dir, specifier)
                return None
            return ResolvedDependency(
                specifier=specifier,
                package_name=name,
                version=str(meta.get("version", "0.0.0")),
                entry=entry,
                root=dep_dir,
            )
        return None

    @staticmethod
    def _entry_file(dep_dir: Path, meta: Dict[str, Any], subpath: str) -> Optional[Path]:
        if subpath:
            candidates = [subpath, f"{subpath}.js", f"{subpath}/index.js"]
        else:
            candidates = [
                value for value in (meta.get("module"), meta.get("main"))
                if isinstance(value, str) and value
            ]
            candidates += [f"{c}.js" for c in candidates if not c.endswith(".js")]
            candidates.append("index.js")
        for candidate in candidates:
            path = (dep_dir / candidate).resolve()
            if path.is_file():
                return path
        return None


# ===================================================================
# Package
# ===================================================================

@dataclass
class PackageOptions:
    exclude: Tuple[str, ...] = ()
    alias: Dict[str, str] = field(default_factory=dict)
    namespace: Optional[str] = None

    @classmethod
    def from_manifest(cls, manifest: Dict[str, Any], name: str) -> "PackageOptions":
        raw = manifest.get("autobundle") or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("'autobundle' options must be an object", package=name)
        exclude = raw.get("exclude") or []
        alias = raw.get("alias") or {}
        if not isinstance(exclude, list) or not all(isinstance(e, str) for e in exclude):
            raise ConfigurationError("'autobundle.exclude' must be a list of names", package=name)
        if not isinstance(alias, dict):
            raise ConfigurationError("'autobundle.alias' must be an object", package=name)
        return cls(
            exclude=tuple(exclude),
            alias={str(k): str(v) for k, v in alias.items()},
            namespace=raw.get("namespace"),
        )


class Package:
    """One source package (application or addon).

    Instances compare by identity; the registry guarantees one instance per
    root directory.
    """

    def __init__(
        self,
        name: str,
        root: Path,
        version: str = "0.0.0",
        dependencies: Optional[Dict[str, str]] = None,
        options: Optional[PackageOptions] = None,
        context: Optional[ResolutionContext] = None,
    ) -> None:
        self.name = name
        self.root = root
        self.version = version
        self.dependencies = dict(dependencies or {})
        self.options = options or PackageOptions()
        self.context = context or NodeModulesResolver(root)
        self.analyzers: List[Any] = []
        self._resolved: Dict[str, Optional[ResolvedDependency]] = {}

    @classmethod
    def from_root(cls, root: Path) -> "Package":
        manifest = read_manifest(root)
        name = str(manifest["name"])
        deps: Dict[str, str] = {}
        for key in ("dependencies", "devDependencies"):
            section = manifest.get(key) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"'{key}' must be an object", package=name)
            deps.update({str(k): str(v) for k, v in section.items()})
        return cls(
            name=name,
            root=root,
            version=str(manifest.get("version", "0.0.0")),
            dependencies=deps,
            options=PackageOptions.from_manifest(manifest, name),
        )

    def __repr__(self) -> str:
        return f"Package({self.name!r}, root={str(self.root)!r})"

    @property
    def namespace(self) -> str:
        return self.options.namespace or self.name

    def owns(self, specifier: str) -> bool:
        """True when *specifier* points into this package's own modules."""
        ns = self.namespace
        return specifier == ns or specifier.startswith(ns + "/")

    def excludes(self, specifier: str) -> bool:
        return package_name_of(specifier) in self.options.exclude

    def has_dependency(self, name: str) -> bool:
        return name in self.dependencies

    def aliased(self, specifier: str) -> str:
        """Apply the longest matching alias prefix."""
        best = ""
        for prefix in self.options.alias:
            if (specifier == prefix or specifier.startswith(prefix + "/")) and len(prefix) > len(best):
                best = prefix
        if not best:
            return specifier
        return self.options.alias[best] + specifier[len(best):]

    def resolve(self, specifier: str) -> Optional[ResolvedDependency]:
        """Resolve through this package's context, memoised per specifier."""
        if specifier not in self._resolved:
            target = self.aliased(specifier)
            resolved = self.context.resolve(target)
            if resolved is not None and target != specifier:
                resolved = ResolvedDependency(
                    specifier=specifier,
                    package_name=resolved.package_name,
                    version=resolved.version,
                    entry=resolved.entry,
                    root=resolved.root,
                )
            self._resolved[specifier] = resolved
            if resolved is not None:
                logger.debug(
                    "%s resolved %r to %s@%s", self.name, specifier,
                    resolved.package_name, resolved.version,
                )
        return self._resolved[specifier]

    def forget_resolutions(self) -> None:
        """Drop memoised resolutions (installed dependencies changed)."""
        self._resolved.clear()


# ===================================================================
# Registry
# ===================================================================

PackageHandle = Union[Path, str, Any]


class PackageRegistry:
    """Deduplicating lookup of packages by root directory.

    Iteration yields packages in registration order.
    """

    def __init__(self) -> None:
        self._packages: Dict[Path, Package] = {}

    @staticmethod
    def _root_of(handle: PackageHandle) -> Path:
        if isinstance(handle, Package):
            return handle.root
        if isinstance(handle, (str, Path)):
            return Path(handle).resolve()
        root = getattr(handle, "root", None)
        if root is None:
            raise ConfigurationError(f"cannot determine the root of {handle!r}")
        return Path(root).resolve()

    def lookup(self, handle: PackageHandle) -> Package:
        root = self._root_of(handle)
        existing = self._packages.get(root)
        if existing is not None:
            return existing
        package = Package.from_root(root)
        self._packages[root] = package
        logger.debug("Registered package %s at %s", package.name, root)
        return package

    def __iter__(self) -> Iterator[Package]:
        return iter(list(self._packages.values()))

    def __len__(self) -> int:
        return len(self._packages)

    def __contains__(self, handle: object) -> bool:
        try:
            return self._root_of(handle) in self._packages
        except ConfigurationError:
            return False
