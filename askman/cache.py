"""On-disk response cache.

Each completed answer is stored as one JSON file named after the
fingerprint of the (tool, question, model) triple that produced it::

    <cache_dir>/<sha256-hex>.json

The record holds ``key``, ``command`` (the tool name), ``question``,
``model``, the full ``response``, ``created_at``, ``accessed_at`` and
``access_count``.  There is no index; statistics and expiry sweeps walk
the directory.  That is fine for a single-user local cache holding at
most a few thousand entries.

Reads are self-healing: an entry that cannot be decoded, lacks a
response, or is older than the configured maximum age is deleted and
reported as a miss, never as an error.  Writes go through a temporary
file that is renamed into place, so a half-written entry is never
visible.  The directory is created ``0700`` and entries are written
``0600`` since they record which backend was called with what.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
import threading
import weakref
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from .errors import CacheError
from .models import CacheStats, QueryResponse

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".json"

_FRACTION = re.compile(r"\.(\d+)")


def fingerprint(tool: str, question: str, model: str) -> str:
    """Return the cache key for a query as 64 lowercase hex characters."""
    data = f"{tool}:{question}:{model}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("timestamp must be a string")
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    # fromisoformat only takes 3 or 6 fractional digits before 3.11;
    # other writers emit up to 9.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class _KeyLock:
    """A lock that can be held in a weak-valued map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "_KeyLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


class CacheStore:
    """Fingerprint-addressed store of completed responses.

    :param cache_dir: Directory holding the entry files.  Created on the
      first write.
    :param max_age_days: Entries older than this are treated as absent.
      Zero or a negative value disables expiry.
    """

    def __init__(self, cache_dir: Path, max_age_days: int = 30) -> None:
        self.cache_dir = Path(cache_dir)
        self.max_age_days = max_age_days
        self._locks: weakref.WeakValueDictionary[str, _KeyLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{key}{ENTRY_SUFFIX}"

    def _lock(self, key: str) -> _KeyLock:
        # One lock per fingerprint, dropped once no caller holds it.
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = _KeyLock()
                self._locks[key] = lock
            return lock

    def is_expired(self, created_at: datetime) -> bool:
        if self.max_age_days <= 0:
            return False
        return _now() > created_at + timedelta(days=self.max_age_days)

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not remove cache entry %s: %s", path.name, exc)
            return False

    def _write(self, entry: Dict[str, Any]) -> None:
        try:
            self.cache_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.cache_dir, prefix=".tmp-", suffix=ENTRY_SUFFIX
            )
        except OSError as exc:
            raise CacheError(f"failed to create cache directory {self.cache_dir}") from exc
        # mkstemp already creates the file 0600
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(entry, handle, indent=2)
            os.replace(tmp_name, self._path(entry["key"]))
        except (OSError, TypeError, ValueError) as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise CacheError(f"failed to write cache entry {entry['key']}") from exc

    def _load(self, path: Path) -> Tuple[Dict[str, Any], QueryResponse, datetime]:
        """Decode an entry file.

        :raises OSError: if the file cannot be read.
        :raises ValueError: (or ``TypeError``/``KeyError``) if the
          record is structurally invalid.
        """
        with path.open("r", encoding="utf-8") as handle:
            entry = json.load(handle)
        if not isinstance(entry, dict):
            raise ValueError("cache entry must be an object")
        if entry.get("response") is None:
            raise ValueError("cache entry has no response")
        response = QueryResponse.from_dict(entry["response"])
        created_at = _parse_time(entry["created_at"])
        entry["access_count"] = int(entry.get("access_count") or 0)
        return entry, response, created_at

    def _entries(self) -> Iterator[Path]:
        try:
            children = list(self.cache_dir.iterdir())
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CacheError(f"failed to read cache directory {self.cache_dir}") from exc
        for path in children:
            if path.suffix == ENTRY_SUFFIX and path.is_file() and not path.name.startswith("."):
                yield path

    def get(self, tool: str, question: str, model: str) -> Optional[QueryResponse]:
        """Return the cached response for a query or ``None`` on a miss.

        A hit updates ``accessed_at`` and ``access_count`` and returns
        the response with ``cached`` set.
        """
        key = fingerprint(tool, question, model)
        path = self._path(key)
        if not path.exists():
            return None
        # Held from load to write-back so a concurrent set is never
        # overwritten with the stale record.
        with self._lock(key):
            try:
                entry, response, created_at = self._load(path)
            except FileNotFoundError:
                return None
            except (OSError, ValueError, TypeError, KeyError) as exc:
                logger.info("Discarding unreadable cache entry %s: %s", key, exc)
                self._remove(path)
                return None

            if self.is_expired(created_at):
                logger.info("Discarding expired cache entry %s", key)
                self._remove(path)
                return None

            entry["key"] = key
            entry["accessed_at"] = _now().isoformat()
            entry["access_count"] += 1
            try:
                self._write(entry)
            except CacheError as exc:
                # Access bookkeeping is advisory; the hit itself stands.
                logger.debug("Could not update access metadata for %s: %s", key, exc)

        response.cached = True
        return response

    def set(self, tool: str, question: str, model: str, response: QueryResponse) -> None:
        """Store ``response`` for the query, replacing any previous entry.

        :raises CacheError: if the entry cannot be written.
        """
        key = fingerprint(tool, question, model)
        now = _now().isoformat()
        stored = response.to_dict()
        stored["cached"] = False
        entry = {
            "key": key,
            "command": tool,
            "question": question,
            "model": model,
            "response": stored,
            "created_at": now,
            "accessed_at": now,
            "access_count": 1,
        }
        with self._lock(key):
            self._write(entry)

    def clean_expired(self) -> int:
        """Delete every expired entry and return how many were removed.

        Entries that cannot be decoded are left for :meth:`get` to heal.
        """
        removed = 0
        for path in self._entries():
            try:
                _, _, created_at = self._load(path)
            except (OSError, ValueError, TypeError, KeyError):
                continue
            if self.is_expired(created_at) and self._remove(path):
                removed += 1
        return removed

    def clear(self) -> int:
        """Delete every entry and return how many were removed."""
        removed = 0
        for path in self._entries():
            if self._remove(path):
                removed += 1
        return removed

    def get_stats(self) -> CacheStats:
        stats = CacheStats()
        for path in self._entries():
            try:
                size = path.stat().st_size
            except OSError:
                continue
            stats.total_entries += 1
            stats.total_size_bytes += size
            try:
                entry, _, created_at = self._load(path)
            except (OSError, ValueError, TypeError, KeyError):
                continue
            stats.total_hits += entry["access_count"]
            if stats.oldest_entry is None or created_at < stats.oldest_entry:
                stats.oldest_entry = created_at
            if stats.newest_entry is None or created_at > stats.newest_entry:
                stats.newest_entry = created_at
        return stats
