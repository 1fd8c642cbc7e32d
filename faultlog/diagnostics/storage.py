"""Key-value storage backends for persisted log collections.

FileStorage keeps one "<key>.json" file per key under a directory. Writes go
to a temporary file in the same directory followed by os.replace(), so a
crash mid-write leaves either the old value or the new one, never a torn file.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from faultlog.utils.errors import StorageError, StorageQuotaExceededError

logger = logging.getLogger(__name__)

# Default storage location
DEFAULT_STORAGE_DIR = Path.home() / ".faultlog"


class LogStorage(Protocol):
    """Persistent string key-value store."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is not an error."""


class MemoryStorage:
    """Dict-backed storage for tests and short-lived processes."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self.quota_bytes)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage:
    """Directory-backed storage with atomic writes."""

    def __init__(self, directory: Optional[Path] = None, quota_bytes: Optional[int] = None):
        """Initialize file storage.

        Args:
            directory: Directory holding the key files (created lazily)
            quota_bytes: Maximum encoded size of a single value
        """
        self.directory = Path(directory) if directory else DEFAULT_STORAGE_DIR
        self.quota_bytes = quota_bytes

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid storage key: {key!r}", key=key)
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}", key=key) from e

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        _check_quota(key, value, self.quota_bytes)

        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{key}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}", key=key) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug(f"Could not remove temp file {tmp_name}")

    def remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to remove {path}: {e}", key=key) from e


def _check_quota(key: str, value: str, quota: Optional[int]) -> None:
    if quota is None:
        return
    size = len(value.encode("utf-8"))
    if size > quota:
        raise StorageQuotaExceededError(key, size, quota)
