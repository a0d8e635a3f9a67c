"""
Change detection — content hashing with a persistent hash store.

A secret counts as changed when the SHA-256 of its file differs from the
recorded hash, or when no hash was recorded yet. Modification times are
never consulted.

Store format (JSON):
    {"hashes": {"/abs/path": {"path": ..., "hash": ..., "lastModified": ...}}}
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from secretsmith.errors import file_error
from secretsmith.materializer import atomic_write

logger = logging.getLogger(__name__)

STORE_FILE_MODE = 0o600
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class HashRecord:
    path: str
    hash: str
    last_modified: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "hash": self.hash, "lastModified": self.last_modified}

    @classmethod
    def from_dict(cls, key: str, data: dict) -> HashRecord:
        return cls(
            path=str(data.get("path") or key),
            hash=str(data["hash"]),
            last_modified=str(data.get("lastModified", "")),
        )


def file_hash(path: Path) -> str:
    """SHA-256 hex digest of a file's content."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise file_error("Hashing secret file", path, "Cannot read file for change detection", e) from e
    return digest.hexdigest()


class HashStore:
    """Hash records keyed by absolute path.

    With ``path=None`` the store lives in memory only.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        self._records: dict[str, HashRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> HashStore:
        """Read the store file. A missing or unreadable store starts empty."""
        self._records = {}
        if self.path is None or not self.path.exists():
            return self
        try:
            data = json.loads(self.path.read_text())
            hashes = data.get("hashes") or {}
            self._records = {key: HashRecord.from_dict(key, rec) for key, rec in hashes.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Ignoring unreadable hash store %s: %s", self.path, e)
            self._records = {}
        logger.debug("Loaded %d hash record(s) from %s", len(self._records), self.path)
        return self

    def save(self) -> None:
        if self.path is None:
            return
        payload = {"hashes": {key: rec.to_dict() for key, rec in self._records.items()}}
        data = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(self.path, data, STORE_FILE_MODE)
        except OSError as e:
            raise file_error("Saving hash store", self.path, "Failed to write hash store", e) from e

    def get(self, path: Path | str) -> HashRecord | None:
        return self._records.get(str(path))

    def put(self, path: Path | str, digest: str) -> HashRecord:
        record = HashRecord(
            path=str(path),
            hash=digest,
            last_modified=datetime.now(timezone.utc).isoformat(),
        )
        self._records[str(path)] = record
        return record


class ChangeDetector:
    """Compare on-disk content against the hash store."""

    def __init__(self, store: HashStore, save_incrementally: bool = False):
        self.store = store
        self.save_incrementally = save_incrementally

    def has_changed(self, path: Path | str) -> bool:
        digest = file_hash(Path(path))
        record = self.store.get(path)
        if record is not None and record.hash == digest:
            return False

        if record is None:
            logger.info("No recorded hash for %s, treating as changed", path)
        else:
            logger.info("Content of %s changed", path)
        self.store.put(path, digest)
        if self.save_incrementally:
            self.store.save()
        return True
