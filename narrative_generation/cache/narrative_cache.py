"""
Narrative Cache - Content-Addressed Store of Accepted Narratives

This module stores accepted narratives under a key derived from
everything that determines the output: the input text, the model, the
prompt template and the sampling temperature.

Architecture:
    NarrativeCacheProtocol
    ├── FileNarrativeCache     → One JSON file per key, shared across processes
    └── InMemoryNarrativeCache → Lock-guarded dict, for tests and one-off runs

Write Semantics:
    Insert-if-absent. The first accepted result for a key wins; later
    writers are told the key is taken and must use the stored entry.
    Entries never expire; invalidation means clearing the store.

Pipeline Position:
    Orchestrator → [Cache lookup] → BackendAdapter → Validator → [Cache write]
"""

import hashlib
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, Union, runtime_checkable

from loguru import logger

from narrative_generation.core.exceptions import CacheCorruptionError
from narrative_generation.core.models import CacheEntry
from narrative_generation.core.text_utils import normalize_whitespace


# =============================================================================
# STAGE 1: CACHE KEY
# =============================================================================


def make_cache_key(
    input_text: str, model_id: str, prompt_template_id: str, temperature: float
) -> str:
    """
    SHA-256 key over (normalized input, model, template, temperature).

    Whitespace in the input is normalized so that re-wrapped but otherwise
    identical domain text maps to the same entry.
    """
    payload = "\x1f".join(
        [
            normalize_whitespace(input_text),
            model_id,
            prompt_template_id,
            f"{temperature:.4f}",
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# STAGE 2: CACHE PROTOCOL
# =============================================================================


@runtime_checkable
class NarrativeCacheProtocol(Protocol):
    """
    Interface of a narrative cache.

    Required Methods:
        get(key)                  → CacheEntry or None (corrupt entries are misses)
        put_if_absent(key, entry) → True if this call stored the entry
    """

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def put_if_absent(self, key: str, entry: CacheEntry) -> bool:
        ...


# =============================================================================
# STAGE 3: FILE-BASED CACHE
# =============================================================================


class FileNarrativeCache:
    """
    One JSON document per key under a cache directory.

    What it does:
        Writes each entry to a temporary file, then hard-links it to its
        final name. Linking fails when the name already exists, so exactly
        one writer wins even across threads and processes, and readers
        never see a partially written file.

    Corruption Handling:
        Entries that cannot be decoded are renamed with a ``.corrupt``
        suffix, logged and reported as a miss; the narrative is simply
        regenerated. The rename only happens while the file on disk is
        still the one that failed to decode.

    Write Failures:
        Filesystem errors while writing are logged and reported as "not
        stored". The caller keeps its own narrative.

    Example:
        >>> cache = FileNarrativeCache(".narrative_cache")
        >>> cache.put_if_absent(key, entry)
        True
        >>> cache.put_if_absent(key, other_entry)
        False
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path]):
        self._directory = Path(directory)
        self._directory.mkdir(parents=True, exist_ok=True)

        logger.debug(f"FileNarrativeCache initialized | Directory: {self._directory}")

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> Optional[CacheEntry]:
        """Stored entry for a key, or None on a miss or unreadable entry."""
        path = self._path_for(key)
        try:
            with open(path, "r", encoding="utf-8") as f:
                identity = self._identity(os.fstat(f.fileno()))
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cache entry unreadable | Key: {key[:12]} | Error: {e}")
            return None

        try:
            return self._decode(key, raw)
        except CacheCorruptionError as e:
            logger.warning(f"Cache entry quarantined | {e}")
            self._quarantine(path, identity)
            return None

    def _decode(self, key: str, raw: str) -> CacheEntry:
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise CacheCorruptionError(key, str(e)) from e

        if entry.key != key:
            raise CacheCorruptionError(key, f"stored key {entry.key[:12]} does not match")
        return entry

    @staticmethod
    def _identity(stat: os.stat_result) -> Tuple[int, int]:
        return stat.st_dev, stat.st_ino

    def _quarantine(self, path: Path, identity: Tuple[int, int]) -> None:
        """Move the undecodable file aside, unless a fresh entry has replaced it."""
        try:
            if self._identity(os.stat(path)) != identity:
                logger.debug(f"Cache entry replaced since read, kept | Path: {path.name}")
                return
            os.replace(path, path.with_name(path.name + ".corrupt"))
        except FileNotFoundError:
            # Another reader already moved it
            return

    def put_if_absent(self, key: str, entry: CacheEntry) -> bool:
        """
        Store an entry unless the key is already present.

        A failed write (disk full, no hard-link support) is logged and
        reported as False; the caller keeps its own narrative and the next
        run regenerates it.

        Returns:
            True if this call created the entry, False otherwise
        """
        final_path = self._path_for(key)
        tmp_name: Optional[str] = None

        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=self._directory, prefix=".tmp-", suffix=self.SUFFIX
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.to_dict(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())

            try:
                os.link(tmp_name, final_path)
            except FileExistsError:
                logger.debug(f"Cache key already present | Key: {key[:12]}")
                return False

        except OSError as e:
            logger.warning(f"Cache write failed | Key: {key[:12]} | Error: {e}")
            return False

        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Cache entry written | Key: {key[:12]} | Model: {entry.model_id}")
        return True

    def clear(self) -> int:
        """Delete every entry (including quarantined ones). Returns the count removed."""
        removed = 0
        for path in self._directory.iterdir():
            if path.is_file() and (path.suffix == self.SUFFIX or path.name.endswith(".corrupt")):
                path.unlink()
                removed += 1
        logger.info(f"Cache cleared | Directory: {self._directory} | Removed: {removed}")
        return removed

    def __len__(self) -> int:
        return sum(
            1
            for p in self._directory.glob(f"*{self.SUFFIX}")
            if not p.name.startswith(".tmp-")
        )

    @property
    def directory(self) -> Path:
        return self._directory


# =============================================================================
# STAGE 4: IN-MEMORY CACHE
# =============================================================================


class InMemoryNarrativeCache:
    """Lock-guarded dict with the same insert-if-absent semantics."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put_if_absent(self, key: str, entry: CacheEntry) -> bool:
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = entry
            return True

    def clear(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
