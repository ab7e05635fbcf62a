"""Declared output bundles and the bundle-for-path mapping."""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Tuple

from .config import DEFAULT_BUNDLES
from .errors import ConfigurationError

CATCH_ALL = "**"


@lru_cache(maxsize=512)
def _compile_glob(pattern: str) -> Pattern[str]:
    """``**`` spans directories, ``*`` and ``?`` stay inside one segment."""
    out: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(pattern: str, path: str) -> bool:
    return _compile_glob(pattern).match(path) is not None


def specificity(pattern: str) -> Tuple[int, int]:
    """(wildcard-free segments, literal characters); larger is more specific."""
    segments = [s for s in pattern.split("/") if s]
    literal_segments = sum(1 for s in segments if not any(c in s for c in "*?"))
    literal_chars = sum(1 for c in pattern if c not in "*?/")
    return literal_segments, literal_chars


@dataclass(frozen=True)
class Bundle:
    name: str
    patterns: Tuple[str, ...]
    entrypoint: str
    base: Optional[str] = None
    default: bool = False

    def best_match(self, path: str) -> Optional[Tuple[int, int]]:
        """Specificity of the most specific pattern matching *path*."""
        scores = [specificity(p) for p in self.patterns if glob_match(p, path)]
        return max(scores) if scores else None


class BundleConfig:
    """The fixed set of bundles for one build, in declaration order."""

    def __init__(self, bundles: Iterable[Bundle]) -> None:
        self._bundles: Dict[str, Bundle] = {}
        for bundle in bundles:
            if bundle.name in self._bundles:
                raise ConfigurationError(f"bundle '{bundle.name}' is declared twice")
            if not bundle.entrypoint:
                raise ConfigurationError(f"bundle '{bundle.name}' has no entrypoint")
            self._bundles[bundle.name] = bundle
        if not self._bundles:
            raise ConfigurationError("no bundles configured")
        self.default = self._pick_default()
        self._check_bases()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, object]]) -> "BundleConfig":
        bundles = []
        for name, declared in raw.items():
            patterns = declared.get("patterns") or []
            if isinstance(patterns, str):
                patterns = [patterns]
            bundles.append(Bundle(
                name=name,
                patterns=tuple(str(p) for p in patterns),  # type: ignore[union-attr]
                entrypoint=str(declared.get("entrypoint") or ""),
                base=declared.get("base") or None,  # type: ignore[arg-type]
                default=bool(declared.get("default", False)),
            ))
        return cls(bundles)

    @classmethod
    def defaults(cls) -> "BundleConfig":
        return cls.from_mapping(DEFAULT_BUNDLES)

    def _pick_default(self) -> Bundle:
        flagged = [b for b in self._bundles.values() if b.default]
        if len(flagged) > 1:
            names = ", ".join(b.name for b in flagged)
            raise ConfigurationError(f"more than one default bundle: {names}")
        if flagged:
            return flagged[0]
        for bundle in self._bundles.values():
            if CATCH_ALL in bundle.patterns:
                return bundle
        raise ConfigurationError(
            "no default bundle: flag one bundle with default = true or give it a '**' pattern"
        )

    def _check_bases(self) -> None:
        for bundle in self._bundles.values():
            seen = [bundle.name]
            current = bundle
            while current.base is not None:
                if current.base not in self._bundles:
                    raise ConfigurationError(
                        f"bundle '{current.name}' uses unknown base bundle '{current.base}'"
                    )
                if current.base in seen:
                    raise ConfigurationError(
                        "base bundle cycle: " + " -> ".join(seen + [current.base])
                    )
                seen.append(current.base)
                current = self._bundles[current.base]

    def __iter__(self) -> Iterator[Bundle]:
        return iter(self._bundles.values())

    def __len__(self) -> int:
        return len(self._bundles)

    def __getitem__(self, name: str) -> Bundle:
        return self._bundles[name]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._bundles)

    def order(self, name: str) -> int:
        return self.names.index(name)

    def bundle_for_path(self, path: str) -> Bundle:
        """Owning bundle for a consuming file path.

        Most specific matching pattern wins; declaration order breaks ties;
        unmatched paths land in the default bundle.
        """
        best: Optional[Bundle] = None
        best_score: Optional[Tuple[int, int]] = None
        for bundle in self._bundles.values():
            score = bundle.best_match(path)
            if score is not None and (best_score is None or score > best_score):
                best, best_score = bundle, score
        return best or self.default

    def entrypoint(self, name: str) -> str:
        return self._bundles[name].entrypoint

    def bases_of(self, name: str) -> List[str]:
        """Chain of base bundles, nearest first."""
        chain = []
        current = self._bundles[name]
        while current.base is not None:
            chain.append(current.base)
            current = self._bundles[current.base]
        return chain
