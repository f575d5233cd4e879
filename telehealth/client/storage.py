"""
Persistent client-side session storage.

The session controller keeps three values between runs: the access token, the
refresh token and the user id. They live under fixed keys and are always
written and cleared together.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Optional, Union
import json
import logging
import os
import tempfile
import threading

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_ID_KEY = "userId"
SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_ID_KEY)


class SessionStorage(ABC):
    """Key/value store for persisted session values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def update(self, values: Dict[str, Optional[str]]) -> None:
        """Set several keys in one write; ``None`` removes a key."""

    def set(self, key: str, value: Optional[str]) -> None:
        self.update({key: value})

    def clear(self, keys: Iterable[str] = SESSION_KEYS) -> None:
        """Remove ``keys`` in one write."""
        self.update({key: None for key in keys})


class MemoryStorage(SessionStorage):
    """Process-local storage; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def update(self, values: Dict[str, Optional[str]]) -> None:
        for key, value in values.items():
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value


class FileStorage(SessionStorage):
    """JSON file storage. Writes replace the file atomically."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def update(self, values: Dict[str, Optional[str]]) -> None:
        with self._lock:
            data = self._read()
            for key, value in values.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
            self._write(data)

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise
