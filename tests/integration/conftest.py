# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

Integration tests run against a real SQLite ledger file under tmp_path;
stage calls are still served by the scripted transport from the root
conftest.
"""

from __future__ import annotations

import asyncio

import pytest

from factgraph.storage.sqlite_ledger import SqliteRunLedger


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "ledger" / "factgraph.db"


@pytest.fixture
def sqlite_ledger(ledger_path):
    ledger = SqliteRunLedger(ledger_path)
    yield ledger
    asyncio.run(ledger.close())


@pytest.fixture
def sqlite_settings(settings, ledger_path):
    return settings.model_copy(update={"ledger_backend": "sqlite", "ledger_path": ledger_path})
