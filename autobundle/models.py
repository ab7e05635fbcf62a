"""Core data models shared by the analyzer, splitter and bundler."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Literal, Optional, Tuple

from .config import CHUNK_DIR
from .errors import UnresolvedImportError

if TYPE_CHECKING:
    from .package import Package

ImportStyle = Literal["eager", "lazy"]
EAGER: ImportStyle = "eager"
LAZY: ImportStyle = "lazy"


@dataclass(frozen=True)
class ImportRecord:
    specifier: str
    consuming_path: str
    package: "Package"
    style: ImportStyle
    line: int = 0


@dataclass(frozen=True)
class ResolvedDependency:
    """A specifier resolved through one package's dependency context."""

    specifier: str
    package_name: str
    version: str
    entry: Path
    root: Path

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.package_name, self.version)


@dataclass(frozen=True)
class Assignment:
    """Which bundles carry a specifier for one owning package, and how.

    ``bundles`` are the carriers in bundle-declaration order; ``modes``
    pairs each carrier with its load mode.  ``shared`` lists bundles that
    reference the specifier but rely on a base bundle to carry it.
    ``unresolved_from`` is the first consuming file when the owning package
    cannot resolve the specifier.
    """

    specifier: str
    package: "Package"
    bundles: Tuple[str, ...]
    modes: Tuple[Tuple[str, ImportStyle], ...]
    referenced_by: Tuple[str, ...]
    consumers: Tuple[str, ...]
    shared: Tuple[Tuple[str, str], ...] = ()
    resolved: Optional[ResolvedDependency] = None
    unresolved_from: Optional[str] = None

    @property
    def error(self) -> Optional[UnresolvedImportError]:
        if self.unresolved_from is None:
            return None
        return UnresolvedImportError(self.specifier, self.unresolved_from, self.package.name)

    def mode_for(self, bundle: str) -> Optional[ImportStyle]:
        for name, mode in self.modes:
            if name == bundle:
                return mode
        return None

    @property
    def ok(self) -> bool:
        return self.unresolved_from is None


@dataclass
class BuildArtifact:
    bundle_name: str
    key: str
    eager_payload: str
    lazy_chunks: Dict[str, str] = field(default_factory=dict)
    chunk_map: Dict[str, str] = field(default_factory=dict)
    eager_specifiers: Tuple[str, ...] = ()

    @staticmethod
    def chunk_path(chunk_id: str) -> str:
        return f"{CHUNK_DIR}/chunk.{chunk_id}.js"

    def to_dict(self) -> Dict[str, object]:
        return {
            "bundle_name": self.bundle_name,
            "key": self.key,
            "eager_payload": self.eager_payload,
            "lazy_chunks": dict(self.lazy_chunks),
            "chunk_map": dict(self.chunk_map),
            "eager_specifiers": list(self.eager_specifiers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "BuildArtifact":
        return cls(
            bundle_name=str(data["bundle_name"]),
            key=str(data["key"]),
            eager_payload=str(data["eager_payload"]),
            lazy_chunks=dict(data.get("lazy_chunks") or {}),  # type: ignore[arg-type]
            chunk_map=dict(data.get("chunk_map") or {}),  # type: ignore[arg-type]
            eager_specifiers=tuple(data.get("eager_specifiers") or ()),  # type: ignore[arg-type]
        )
