"""
Content-addressed artifact cache.

Maps a source fingerprint to the artifact fetched for it. The filesystem is
the source of truth: an entry whose file is gone is dropped on lookup.
Retention is by creation time only; hits do not refresh an entry.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class CacheEntry:
    """A fetched artifact, keyed by source fingerprint"""

    fingerprint: str
    artifact_path: Path
    size_bytes: int
    created_at: float = field(default_factory=time.time)
    # set once a download link to the artifact has been handed out
    linked: bool = False

    def __post_init__(self):
        self.artifact_path = Path(self.artifact_path)


class ArtifactCache:
    """
    Bounded fingerprint -> CacheEntry table.

    Eviction only drops the entry; the artifact file stays on disk until the
    cleanup sweeper reclaims it.
    """

    def __init__(self, capacity, logger=None):
        if capacity < 1:
            raise ValueError('Cache capacity must be at least 1')
        self.capacity = capacity
        self._entries: Dict[str, CacheEntry] = {}
        self._logger = logger

    def _log(self, message):
        if self._logger:
            self._logger(message)

    def __len__(self):
        return len(self._entries)

    def __contains__(self, fingerprint):
        return fingerprint in self._entries

    def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    def lookup(self, fingerprint) -> Optional[CacheEntry]:
        """
        Return the entry for fingerprint if its artifact still exists.

        A stale entry is removed, so later lookups miss as well.
        """
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if not entry.artifact_path.is_file():
            del self._entries[fingerprint]
            self._log(f'Cache entry dropped, artifact missing: {entry.artifact_path.name}')
            return None
        return entry

    def insert(self, fingerprint, entry) -> Optional[CacheEntry]:
        """
        Add or replace the entry for fingerprint.

        Returns:
            The evicted entry when the insertion pushed the table over
            capacity, otherwise None
        """
        self._entries[fingerprint] = entry
        if len(self._entries) <= self.capacity:
            return None

        older = [fp for fp in self._entries if fp != fingerprint]
        oldest = min(older, key=lambda fp: self._entries[fp].created_at)
        evicted = self._entries.pop(oldest)
        self._log(f'Cache full ({self.capacity}), evicted {evicted.artifact_path.name}')
        return evicted

    def remove_by_artifact_path(self, path) -> int:
        """
        Remove every entry pointing at path.

        Artifacts share one directory and carry unique names, so entries are
        matched on the file name of their stored path.

        Returns:
            Number of entries removed
        """
        path = Path(path)
        matches = [
            fp for fp, entry in self._entries.items() if entry.artifact_path.name == path.name
        ]
        for fp in matches:
            del self._entries[fp]
        return len(matches)
