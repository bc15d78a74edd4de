"""Recent-search history kept in an injected key-value store."""

import json
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from loguru import logger


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal persistent string store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStore:
    """Process-local store, used in tests and for throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Key-value store backed by a single JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(data, f)
        tmp_path.replace(self.path)

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)


class SearchHistory:
    """Most-recent-first list of distinct submitted queries."""

    KEY = "search_history"

    def __init__(self, store: KeyValueStore, max_items: int = 8, key: str = KEY):
        self.store = store
        self.max_items = max_items
        self.key = key

    def items(self) -> List[str]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            history = json.loads(raw)
        except ValueError as e:
            logger.error(f"Failed to parse search history: {e}")
            return []
        if not isinstance(history, list):
            return []
        return [h for h in history if isinstance(h, str)][:self.max_items]

    def record(self, query: str) -> List[str]:
        query = query.strip()
        if not query:
            return self.items()
        history = [query] + [h for h in self.items() if h != query]
        history = history[:self.max_items]
        self.store.set(self.key, json.dumps(history))
        return history

    def clear(self) -> None:
        self.store.delete(self.key)
