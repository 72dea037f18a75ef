"""
client/storage.py -- Where a client session keeps its state between calls.

Two backends share one tiny interface (get / set / delete / clear):

  MemoryStorage  process-local dict; the default, and what tests use.
  FileStorage    one JSON document on disk, created with mode 0600 so only
                 the owning OS user can read the token.

Tokens are stored exactly as received. Obfuscating them with a key that
ships alongside would protect nothing.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger("amlak.client")


class SessionStorage(ABC):
    """Key/value interface used by SessionManager."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the stored value, or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove one key; a missing key is not an error."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every key. Logout and idle timeout end here."""


class MemoryStorage(SessionStorage):
    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class FileStorage(SessionStorage):
    """JSON-file backend.

    The whole document is rewritten on every change. A file that cannot be
    parsed is treated as empty -- the next write replaces it.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        # O_CREAT's mode only applies to new files.
        os.chmod(self.path, 0o600)

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
