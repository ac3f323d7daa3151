from __future__ import annotations

import json
import os
import uuid
from pathlib import Path

from plexdigest.types import MalformedRecordError, Snapshot

DEFAULT_CACHE_PATH = Path("~/.cache/plexdigest/cache.json").expanduser()


class PersistenceError(RuntimeError):
    pass


class CacheNotFoundError(PersistenceError):
    pass


class CacheParseError(PersistenceError):
    pass


class SnapshotStore:
    """Loads and saves the whole snapshot as a single JSON file."""

    def __init__(self, path: str | Path = DEFAULT_CACHE_PATH) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Snapshot:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError as e:
            raise CacheNotFoundError(f"Cache file not found: {self.path}") from e
        except OSError as e:
            raise CacheParseError(f"Cache file unreadable: {self.path}: {e}") from e

        # ValueError covers bad UTF-8 and bad JSON; RecursionError covers absurd nesting
        try:
            return Snapshot.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, RecursionError, MalformedRecordError) as e:
            raise CacheParseError(f"Error parsing cache file {self.path}: {e}") from e

    def save(self, snapshot: Snapshot) -> None:
        # Full overwrite; the temp file keeps a crash from leaving half a blob
        tmp = self.path.with_suffix(self.path.suffix + f".tmp.{uuid.uuid4().hex[:8]}")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise PersistenceError(f"Could not write cache file {self.path}: {e}") from e
