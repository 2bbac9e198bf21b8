from __future__ import annotations

import os

import pytest

from ocl_sync import config
from ocl_sync.service import UpdateService
from ocl_sync.storage.db import SqliteStore


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep a developer's .env subscription out of unit test runs.
    os.environ.setdefault("OCL_SUBSCRIPTION_PATH", "")


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteStore(str(tmp_path / "ocl.db"))
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def service(store):
    return UpdateService(store)
