"""Immutable file trees exchanged with the host build.

A :class:`FileTree` is the build-graph node passed between stages: its
inputs are its files, its cache key is :meth:`FileTree.digest`.
"""

from __future__ import annotations

import fnmatch
from hashlib import blake2b
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, Union

from .config import SKIP_DIRS

Content = Union[str, bytes]


def _as_bytes(content: Content) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


class FileTree(Mapping[str, bytes]):
    """Mapping of POSIX relative path to file content."""

    def __init__(self, files: Optional[Mapping[str, Content]] = None) -> None:
        self._files: Dict[str, bytes] = {
            path.replace("\\", "/").lstrip("/"): _as_bytes(content)
            for path, content in (files or {}).items()
        }

    @classmethod
    def from_directory(
        cls,
        directory: Path,
        *,
        base: Optional[Path] = None,
        extensions: Optional[Iterable[str]] = None,
        skip_dirs: Set[str] = SKIP_DIRS,
    ) -> "FileTree":
        """Read *directory* recursively; paths are relative to *base*."""
        base = base or directory
        wanted = set(extensions) if extensions is not None else None
        files: Dict[str, bytes] = {}
        if not directory.is_dir():
            return cls(files)
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            rel_parts = path.relative_to(directory).parts
            if any(part in skip_dirs for part in rel_parts[:-1]):
                continue
            if wanted is not None and path.suffix not in wanted:
                continue
            files[path.relative_to(base).as_posix()] = path.read_bytes()
        return cls(files)

    def __getitem__(self, path: str) -> bytes:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._files))

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"FileTree({len(self._files)} files)"

    def text(self, path: str) -> str:
        return self._files[path].decode("utf-8")

    def filter(self, include: Iterable[str]) -> "FileTree":
        """Keep only paths matching any of the *include* globs."""
        patterns = list(include)
        return FileTree({
            path: content for path, content in self._files.items()
            if any(fnmatch.fnmatchcase(path, pattern) for pattern in patterns)
        })

    def merge(self, *others: "FileTree", overwrite: bool = False) -> "FileTree":
        files = dict(self._files)
        for other in others:
            for path, content in other.items():
                if path in files and not overwrite and files[path] != content:
                    raise ValueError(f"merge conflict on {path}")
                files[path] = content
        return FileTree(files)

    def digest(self) -> str:
        h = blake2b(digest_size=16)
        for path in sorted(self._files):
            h.update(path.encode("utf-8"))
            h.update(b"\0")
            h.update(blake2b(self._files[path], digest_size=16).digest())
        return h.hexdigest()

    def write_to(self, directory: Path) -> int:
        """Write every file below *directory*; returns the number written."""
        for path, content in self._files.items():
            target = directory / path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        return len(self._files)
