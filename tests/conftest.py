"""Shared test fixtures for the devkb test suite.

Design:
- tmp_data_dir: isolated data directory per test
- clock: deterministic clock, one second per call
- kb: KnowledgeBase over tmp_data_dir
- client: FastAPI TestClient bound to kb
- cli_invoke: CliRunner helper pointed at tmp_data_dir
"""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner
from fastapi.testclient import TestClient

from devkb.cli import cli
from devkb.config import ServiceConfig
from devkb.core import KnowledgeBase
from devkb.webapp.api import create_app


class TickingClock:
    """Returns a timestamp one second later on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep DEVKB_* variables from the developer's shell out of tests."""
    for var in (
        "DEVKB_DATA_DIR",
        "DEVKB_HOST",
        "DEVKB_PORT",
        "DEVKB_HISTORY_LIMIT",
        "DEVKB_SEARCH_LIMIT",
        "DEVKB_ASK_SOURCES",
        "DEVKB_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def tmp_data_dir(tmp_path: Path) -> Path:
    return tmp_path / ".devkb"


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def config(tmp_data_dir: Path) -> ServiceConfig:
    return ServiceConfig(data_dir=tmp_data_dir)


@pytest.fixture
def kb(config: ServiceConfig, clock: TickingClock) -> KnowledgeBase:
    return KnowledgeBase(config, clock=clock)


@pytest.fixture
def client(kb: KnowledgeBase) -> TestClient:
    return TestClient(create_app(kb.config, kb=kb), raise_server_exceptions=False)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_invoke(runner: CliRunner, tmp_data_dir: Path):
    """Helper for invoking the CLI against the test data directory.

    Usage:
        def test_stats(cli_invoke):
            result = cli_invoke(["stats"])
            assert result.exit_code == 0
    """
    def _invoke(args: list[str], input: str | None = None):
        return runner.invoke(cli, ["--data-dir", str(tmp_data_dir), *args], input=input)
    return _invoke


# ─────────────────────────────────────────────────────────────────────────────
# Helper Functions (for test code, not fixtures)
# ─────────────────────────────────────────────────────────────────────────────


def create_entry(
    kb: KnowledgeBase,
    title: str,
    content: str = "Some content.",
    tags: list[str] | None = None,
    type: str = "documentation",
    source: str = "test",
):
    """Create an entry with sensible defaults.

    Usage in tests:
        from conftest import create_entry
        entry = create_entry(kb, "Auth Flow", "JWT tokens", ["auth"])
    """
    return kb.create_entry(type, title, content, tags or [], source)


def assert_index_consistent(kb: KnowledgeBase) -> None:
    """Tag index and live entries agree in both directions."""
    snapshot = kb.store.snapshot()
    for entry in snapshot.entries.values():
        for tag in entry.tags:
            assert entry.id in snapshot.tag_index.entries_for_tag(tag)
    for tag in snapshot.tag_index.tags():
        ids = snapshot.tag_index.entries_for_tag(tag)
        assert ids
        for entry_id in ids:
            assert entry_id in snapshot.entries
            assert tag in snapshot.entries[entry_id].tags
