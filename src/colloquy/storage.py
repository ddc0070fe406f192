import copy
import logging
from pathlib import Path
from typing import Any, Protocol

from common.jsonio import atomic_write_json, load_json

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class JsonFileStore:
    """One JSON document per key under ``data_dir``."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get(self, key: str) -> Any | None:
        return load_json(self.path_for(key))

    def set(self, key: str, value: Any) -> None:
        atomic_write_json(self.path_for(key), value)
        logger.debug(f"Wrote {self.path_for(key)}")


class MemoryStore:
    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
