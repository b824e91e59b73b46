"""
Persisted session storage.

Small key/value stores that keep the signed-in identity and session
token across restarts.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from loguru import logger

from .errors import StorageError


class KeyValueStorage(Protocol):
    """Durable string key/value store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStorage:
    """
    Process-local storage.

    Survives a SessionStore being rebuilt, not a process restart.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._data)


class FileStorage:
    """
    JSON file storage.

    The whole mapping is rewritten on every change through a temporary
    file and an atomic rename. The file is readable by its owner only.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize storage.

        Args:
            path: Storage file (default: ~/.ekarbot_session)
        """
        if path is None:
            path = Path.home() / ".ekarbot_session"

        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read session storage {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Session storage {self.path} is not a JSON object, ignoring it")
            return {}

        return {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.chmod(0o600)  # rw-------
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write session storage {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        """
        Store a value.

        Raises:
            StorageError: If the file cannot be written
        """
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        """
        Remove a value; missing keys are ignored.

        Raises:
            StorageError: If the file cannot be written
        """
        with self._lock:
            data = self._load()
            if key not in data:
                return
            del data[key]
            if data:
                self._save(data)
                return
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Failed to clear session storage {self.path}: {e}") from e
