"""Shared fixtures: in-memory item store and Redis doubles."""

from __future__ import annotations

import fnmatch
from typing import Any, Callable

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from inventory_import.core.exceptions import StoreError
from inventory_import.services.import_controller import ImportController
from inventory_import.services.import_models import ItemRef


class FakeItemStore:
    """ItemStore double that keeps items in a dict and records every call.

    `on_write(n, fields)` runs before the n-th create/update (1-based); anything
    it raises is raised from the store call.
    """

    def __init__(self) -> None:
        self.items: dict[int, dict[str, Any]] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_skus: set[str] = set()
        self.on_write: Callable[[int, dict[str, Any]], None] | None = None
        self._next_id = 1
        self._writes = 0

    def seed(self, **fields: Any) -> int:
        item_id = self._next_id
        self._next_id += 1
        self.items[item_id] = dict(fields)
        return item_id

    @property
    def writes(self) -> list[tuple[str, Any]]:
        return [call for call in self.calls if call[0] in ("create", "update")]

    def lookup(self, sku: str | None = None, name: str | None = None) -> ItemRef | None:
        self.calls.append(("lookup", (sku, name)))
        for key, value in (("sku", sku), ("name", name)):
            if not value:
                continue
            for item_id in sorted(self.items):
                if self.items[item_id].get(key) == value:
                    item = self.items[item_id]
                    return ItemRef(id=item_id, sku=item.get("sku"), name=item.get("name"))
        return None

    def create(self, fields: dict[str, Any]) -> int:
        self.calls.append(("create", fields))
        self._before_write(fields)
        return self.seed(**fields)

    def update(self, item_id: int, fields: dict[str, Any]) -> None:
        self.calls.append(("update", (item_id, fields)))
        self._before_write(fields)
        if item_id not in self.items:
            raise StoreError(f"Item {item_id} no longer exists")
        self.items[item_id].update(fields)

    def _before_write(self, fields: dict[str, Any]) -> None:
        self._writes += 1
        if self.on_write is not None:
            self.on_write(self._writes, fields)
        if fields.get("sku") in self.fail_skus:
            raise StoreError(f"Could not save {fields['sku']}")


class FakeRedis:
    """The slice of the redis-py client API this service uses."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.hashes: dict[str, dict[str, Any]] = {}
        self.expiries: dict[str, int] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._check()
        self.data[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    def get(self, key: str) -> Any:
        self._check()
        return self.data.get(key)

    def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.data.pop(key, None) is not None)
            removed += int(self.hashes.pop(key, None) is not None)
        return removed

    def hset(self, key: str, field: str, value: Any) -> int:
        self._check()
        self.hashes.setdefault(key, {})[field] = value
        return 1

    def hget(self, key: str, field: str) -> Any:
        self._check()
        value = self.hashes.get(key, {}).get(field)
        return value.encode() if isinstance(value, str) else value

    def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.expiries[key] = seconds
        return True

    def scan_iter(self, match: str | None = None):
        self._check()
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key.encode()

    def ping(self) -> bool:
        self._check()
        return True

    def close(self) -> None:
        pass


@pytest.fixture
def store() -> FakeItemStore:
    return FakeItemStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def make_controller(store: FakeItemStore):
    """Controller factory with a fast pause poll."""

    def factory(**kwargs: Any) -> ImportController:
        kwargs.setdefault("poll_interval", 0.005)
        return ImportController(store, **kwargs)

    return factory
