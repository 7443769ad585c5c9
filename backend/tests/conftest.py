"""
Shared fixtures: in-memory key-value store, catalog services wired on it,
and a store that fails on selected keys.
"""
import json
from typing import Callable, Optional

import pytest

from app.config import Settings
from app.core.exceptions import StorageError
from app.core.kv_store import InMemoryKeyValueStore
from app.services.catalog_context import build_catalog_context


class FailingKeyValueStore(InMemoryKeyValueStore):
    """In-memory store whose reads, writes or deletes fail for keys matching a predicate."""

    def __init__(
        self,
        fail_put: Optional[Callable[[str], bool]] = None,
        fail_get: Optional[Callable[[str], bool]] = None,
        fail_delete: Optional[Callable[[str], bool]] = None,
    ):
        super().__init__()
        self.fail_put = fail_put or (lambda key: False)
        self.fail_get = fail_get or (lambda key: False)
        self.fail_delete = fail_delete or (lambda key: False)
        self.put_calls = []

    async def get(self, key):
        if self.fail_get(key):
            raise StorageError(f"injected GET failure for '{key}'", key=key, operation="get")
        return await super().get(key)

    async def put(self, key, value):
        self.put_calls.append(key)
        if self.fail_put(key):
            raise StorageError(f"injected SET failure for '{key}'", key=key, operation="put")
        await super().put(key, value)

    async def delete(self, key):
        if self.fail_delete(key):
            raise StorageError(f"injected DEL failure for '{key}'", key=key, operation="delete")
        await super().delete(key)


def stored(store: InMemoryKeyValueStore, key: str):
    """Decoded value of ``key`` (None when absent)."""
    raw = store.data.get(key)
    return None if raw is None else json.loads(raw)


@pytest.fixture
def settings():
    return Settings(_env_file=None, kv_backend="memory", recompute_policy="always")


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def catalog(store, settings):
    """Catalog services with inline recompute."""
    return build_catalog_context(store, settings=settings)


@pytest.fixture
def manual_catalog(store, settings):
    """Catalog services that only ingest."""
    return build_catalog_context(store, settings=settings, policy="manual")
