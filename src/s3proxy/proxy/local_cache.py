"""On-disk copies of remote objects, keyed by object key."""

from __future__ import annotations

import enum
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import structlog

from ..common.settings import ConfigurationError
from .errors import InvalidObjectKey, PersistError
from .objects import ObjectDescriptor


LOGGER = structlog.get_logger("s3proxy.local_cache")

DIRECTORY_MODE = 0o755
FILE_MODE = 0o644
PROBE_NAME = ".s3proxy-write-probe"


class Freshness(enum.Enum):
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class CachedEntry:
    key: str
    path: Path
    modified_at: float
    size: int


def sanitize_key(cache_root: Path, key: str) -> Path:
    """Map ``key`` to a path under ``cache_root``.

    Only one leading slash is stripped. Empty, ``.`` and ``..`` segments are
    rejected rather than normalised, since the remote store treats ``a//b`` or
    ``a/../b`` as distinct names and two keys must never share a cache file.
    """
    relative = key[1:] if key.startswith("/") else key
    if not relative:
        raise InvalidObjectKey("Object key refers to the store root")
    parts = relative.split("/")
    if "\x00" in relative or any(part in ("", ".", "..") for part in parts):
        raise InvalidObjectKey("Invalid object key")
    root = cache_root.resolve()
    resolved = root.joinpath(*parts).resolve(strict=False)
    if resolved == root or not resolved.is_relative_to(root):
        raise InvalidObjectKey("Invalid object key")
    return resolved


class LocalCacheStore:
    def __init__(self, cache_root: Path):
        self._root = Path(cache_root).expanduser().resolve()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return sanitize_key(self._root, key)

    def lookup(self, key: str) -> Optional[CachedEntry]:
        path = self.path_for(key)
        try:
            stat = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        if not path.is_file():
            return None
        return CachedEntry(key=key, path=path, modified_at=stat.st_mtime, size=stat.st_size)

    @staticmethod
    def validate(entry: CachedEntry, descriptor: ObjectDescriptor) -> Freshness:
        if descriptor.last_modified is None:
            return Freshness.FRESH
        if entry.modified_at < descriptor.last_modified.timestamp():
            return Freshness.STALE
        return Freshness.FRESH

    def open(self, entry: CachedEntry) -> BinaryIO:
        return entry.path.open("rb")

    def persist(self, key: str, data: bytes) -> Path:
        path = self.path_for(key)
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
            try:
                fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
            except FileNotFoundError:
                # remove() of a sibling key pruned the directory after mkdir
                path.parent.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
            os.fchmod(fd, FILE_MODE)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise PersistError(f"failed to cache {key}: {exc.strerror or exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        LOGGER.debug("cache_persisted", key=key, bytes=len(data))
        return path

    def remove(self, key: str) -> bool:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.warning("cache_remove_failed", key=key, error=exc.strerror or str(exc))
            return False
        parent = path.parent
        while parent != self._root and parent.is_relative_to(self._root):
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def ensure_writable(self) -> None:
        """Fail startup unless files can be created inside the cache root."""
        probe = self._root / PROBE_NAME
        try:
            self._root.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
            probe.write_bytes(b"")
            probe.unlink()
        except OSError as exc:
            raise ConfigurationError(f"Cache directory {self._root} is not writable") from exc

    def status(self) -> dict[str, object]:
        return {
            "backend": "local",
            "cache_root": str(self._root),
            "writable": self._root.is_dir() and os.access(self._root, os.W_OK),
        }
