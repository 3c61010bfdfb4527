"""Durable local key-value storage for the cart snapshot."""
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """String-to-string store. Last write wins; no locking across processes."""

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used by tests and the default server setup."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class FileKeyValueStore(KeyValueStore):
    """All keys in one JSON file. The whole file is rewritten on every change."""

    def __init__(self, path: Path):
        self._path = path

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CollaboratorError("storage.read", f"Could not read {self._path}: {e}") from e
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed store file %s", self._path)
            return {}
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise CollaboratorError("storage.write", f"Could not write {self._path}: {e}") from e

    async def get_item(self, key: str) -> str | None:
        return self._read_all().get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    async def remove_item(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)
