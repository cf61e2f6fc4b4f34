"""Expiring file-backed cache provider.

Every entry lives in its own ``.dat`` file below a root directory. Device
property keys are hex digests and are sharded two levels deep by their first
four characters (``root/ab/cd/ef0123....dat``); the reserved end-point list
keys sit directly in the root. All entries found on disk are loaded into an
in-memory index when the provider is created, so reads only need a ``stat``
to check expiry against the file's modification time.
"""

from __future__ import annotations

import logging
import os
import pickle
import tempfile
import time
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from dacloud.core.errors import CacheUnavailable, CacheWriteFailed
from dacloud.core.model import RESERVED_CACHE_KEYS

SETTINGS_FILE_NAME = "filecache.ini"
CACHE_FILE_EXT = ".dat"
LOCK_FILE_EXT = ".lock"
DEFAULT_EXPIRY = 3600
LOGGER = logging.getLogger(__name__)


def default_settings_file() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "dacloud" / SETTINGS_FILE_NAME


def read_directory_setting(path: Path) -> str | None:
    """Return the ``directory=<path>`` value of a settings file, if any."""
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        LOGGER.warning("Could not read file cache settings %s: %s", path, exc)
        return None

    directory = None
    for line in content.splitlines():
        name, sep, value = line.partition("=")
        if sep and name.strip().lower() == "directory" and value.strip():
            directory = value.strip()
    return directory


class FileCacheProvider:
    ROOT_NAME = "dacloud_FileCacheProvider"

    def __init__(
        self,
        directory: str | os.PathLike[str] | None = None,
        *,
        settings_file: Path | None = None,
        expiry: int = DEFAULT_EXPIRY,
    ) -> None:
        if directory is None:
            directory = read_directory_setting(settings_file or default_settings_file())
        self.directory = Path(directory or tempfile.gettempdir())
        self.root = self.directory / self.ROOT_NAME
        self.expiry = expiry
        self._index: dict[str, Any] = {}
        self._ready = False

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.error("Could not create file cache root %s: %s", self.root, exc)
            return

        self._load_entries()
        self._ready = True

    def path_for(self, key: str) -> Path:
        if key in RESERVED_CACHE_KEYS or len(key) <= 4:
            return self.root / f"{key}{CACHE_FILE_EXT}"
        return self.root / key[0:2] / key[2:4] / f"{key[4:]}{CACHE_FILE_EXT}"

    def _key_for(self, path: Path) -> str | None:
        parts = path.relative_to(self.root).parts
        stem = parts[-1][: -len(CACHE_FILE_EXT)]
        if len(parts) == 1:
            return stem
        if len(parts) == 3:
            return parts[0] + parts[1] + stem
        return None

    def _load_entries(self) -> None:
        for path in self.root.rglob(f"*{CACHE_FILE_EXT}"):
            if not path.is_file():
                continue
            key = self._key_for(path)
            if key is None:
                continue
            value = self._read(path)
            if value is not None:
                self._index[key] = value

    def _read(self, path: Path) -> Any | None:
        try:
            with path.open("rb") as fh:
                return pickle.load(fh)
        except FileNotFoundError:
            return None
        except Exception as exc:  # corrupt pickles raise arbitrary errors
            LOGGER.warning("Skipping unreadable cache file %s: %s", path, exc)
            return None

    def _ensure_ready(self, action: str, key: str = "") -> None:
        if not self._ready:
            raise CacheUnavailable(f"Failed to {action} cache entry {key!r}: cache not set up")

    def get(self, key: str) -> Any | None:
        self._ensure_ready("get", key)
        path = self.path_for(key)
        try:
            modified = path.stat().st_mtime
        except FileNotFoundError:
            self._index.pop(key, None)
            return None
        except OSError as exc:
            LOGGER.warning("Could not stat cache file %s: %s", path, exc)
            return None

        if time.time() - modified >= self.expiry:
            try:
                self.remove(key)
            except CacheWriteFailed as exc:
                LOGGER.warning("Could not evict expired entry %s: %s", key, exc)
            return None

        try:
            return self._index[key]
        except KeyError:
            pass
        # written by another process after this provider loaded its index
        value = self._read(path)
        if value is not None:
            self._index[key] = value
        return value

    def set(self, key: str, value: Any) -> None:
        self._ensure_ready("put", key)
        self._index[key] = value
        self._lock_and_write(key, value)

    def _lock_and_write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(f"{path}{LOCK_FILE_EXT}", timeout=0):
                with path.open("wb") as fh:
                    pickle.dump(value, fh, protocol=pickle.HIGHEST_PROTOCOL)
        except Timeout as exc:
            raise CacheWriteFailed(f"Failed to put cache entry in {key}: entry is locked") from exc
        except (OSError, pickle.PicklingError) as exc:
            raise CacheWriteFailed(f"Failed to put cache entry in {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        self._ensure_ready("remove", key)
        self._index.pop(key, None)
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheWriteFailed(f"Failed to remove entry {key}: {exc}") from exc

    def clear(self) -> None:
        self._ensure_ready("clear")
        keys = set(self._index)
        for path in self.root.rglob(f"*{CACHE_FILE_EXT}"):
            key = self._key_for(path)
            if key is not None:
                keys.add(key)

        for key in keys:
            try:
                self.remove(key)
            except CacheWriteFailed as exc:
                LOGGER.warning("clear: %s", exc)

    def shutdown(self) -> None:
        return None

    def list_keys(self) -> list[str]:
        return list(self._index.keys())

    def set_expiry(self, seconds: int) -> None:
        self.expiry = seconds
