"""Thread-safe staging collections shared by the import workers."""

from __future__ import annotations

import dataclasses
import json
import threading
from pathlib import Path
from typing import Any, Callable, Generic, Hashable, Iterator, TypeVar
from uuid import UUID

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: _jsonable(getattr(value, field.name)) for field in dataclasses.fields(value)}
    table = getattr(value, "__table__", None)
    if table is not None:
        return {column.key: _jsonable(getattr(value, column.key, None)) for column in table.columns}
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class SyncMap(Generic[K, V]):
    def __init__(self) -> None:
        self._items: dict[K, V] = {}
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value

    def get(self, key: K, default: V | None = None) -> V | None:
        with self._lock:
            return self._items.get(key, default)

    def update(self, key: K, func: Callable[[V | None], V]) -> V:
        """Replace the value under ``key`` with ``func(current)`` atomically."""
        with self._lock:
            value = func(self._items.get(key))
            self._items[key] = value
            return value

    def delete(self, key: K) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items = {}

    def contains(self, key: K) -> bool:
        with self._lock:
            return key in self._items

    __contains__ = contains

    def items(self) -> list[tuple[K, V]]:
        with self._lock:
            return list(self._items.items())

    def keys(self) -> list[K]:
        with self._lock:
            return list(self._items.keys())

    def values(self) -> list[V]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def dump(self, path: str | Path) -> None:
        with self._lock:
            payload = {str(key): _jsonable(value) for key, value in self._items.items()}
        Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def load(self, path: str | Path) -> None:
        """Replace the content with raw JSON values; used to inspect a dumped session."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        with self._lock:
            self._items = dict(payload)


class ImportMap(SyncMap[str, V]):
    """Resolve-map keyed by source id.

    ``get`` checks the cache and, on a miss, calls the resolver and memoizes its
    result, all under one re-entrant lock: a key is resolved at most once even
    when several workers ask for it, and a resolver may call back into the map.
    A resolver error propagates and nothing is cached.
    """

    def __init__(self, resolver: Callable[[str], V | None] | None = None) -> None:
        super().__init__()
        self._resolver = resolver

    def get(self, key: str, default: V | None = None) -> V | None:
        with self._lock:
            if key in self._items:
                return self._items[key]
            if self._resolver is None:
                return default
            value = self._resolver(key)
            if value is None:
                return default
            # The resolver may have stored the value itself.
            return self._items.setdefault(key, value)

    def get_light(self, key: str) -> V | None:
        with self._lock:
            return self._items.get(key)


class ConvertMap(SyncMap[str, V]):
    """Map whose key is derived from the stored value."""

    def __init__(self, key_func: Callable[[V], str]) -> None:
        super().__init__()
        self._key_func = key_func

    def put(self, value: V) -> None:  # type: ignore[override]
        super().put(self._key_func(value), value)


class AtomicList(Generic[V]):
    def __init__(self) -> None:
        self._items: list[V] = []
        self._lock = threading.Lock()

    def append(self, *values: V) -> None:
        with self._lock:
            self._items.extend(values)

    def __getitem__(self, index: int) -> V:
        with self._lock:
            return self._items[index]

    def snapshot(self) -> list[V]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __iter__(self) -> Iterator[V]:
        return iter(self.snapshot())


class SortOrderCounter:
    """Sibling order of child issues, per parent. Issues without a parent get 0."""

    def __init__(self) -> None:
        self._counters: dict[UUID, int] = {}
        self._lock = threading.Lock()

    def next(self, parent_id: UUID | None) -> int:
        if parent_id is None:
            return 0
        with self._lock:
            value = self._counters.get(parent_id, 0) + 1
            self._counters[parent_id] = value
            return value


class AtomicCounter:
    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    def add(self, delta: int = 1) -> int:
        with self._lock:
            self._value += delta
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value
