"""Content-addressed artifact cache backed by SQLite.

Keys are artifact hashes, so a write for a given key always carries the same
payload; ``INSERT OR REPLACE`` keeps concurrent or repeated writes harmless.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional

from .models import BuildArtifact

logger = logging.getLogger(__name__)


class ArtifactCache:
    """Persistent store of :class:`BuildArtifact` objects by key.

    Pass ``None`` for a throw-away in-memory cache.
    """

    def __init__(self, cache_dir: Optional[Path] = None) -> None:
        self.cache_dir = cache_dir
        if cache_dir is not None:
            cache_dir.mkdir(parents=True, exist_ok=True)
            self.db_path = str(cache_dir / "artifacts.db")
        else:
            self.db_path = ":memory:"
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def _init_schema(self) -> None:
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS artifacts (
                key     TEXT PRIMARY KEY,
                bundle  TEXT NOT NULL,
                payload TEXT NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_bundle ON artifacts(bundle)")
        self.conn.commit()

    def get(self, key: str) -> Optional[BuildArtifact]:
        row = self.conn.execute(
            "SELECT payload FROM artifacts WHERE key = ?", (key,),
        ).fetchone()
        if row is None:
            return None
        try:
            return BuildArtifact.from_dict(json.loads(row["payload"]))
        except (json.JSONDecodeError, KeyError) as exc:
            logger.warning("Discarding corrupt cache entry %s: %s", key, exc)
            self.conn.execute("DELETE FROM artifacts WHERE key = ?", (key,))
            self.conn.commit()
            return None

    def put(self, artifact: BuildArtifact) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO artifacts (key, bundle, payload) VALUES (?, ?, ?)",
            (artifact.key, artifact.bundle_name, json.dumps(artifact.to_dict(), sort_keys=True)),
        )
        self.conn.commit()

    def __contains__(self, key: object) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM artifacts WHERE key = ?", (key,),
        ).fetchone()
        return row is not None

    def prune(self, bundle: str, keep: str) -> int:
        """Drop every artifact of *bundle* except *keep*; returns rows removed."""
        cur = self.conn.execute(
            "DELETE FROM artifacts WHERE bundle = ? AND key != ?", (bundle, keep),
        )
        self.conn.commit()
        return cur.rowcount
