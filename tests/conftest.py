"""Shared test fixtures for the learning engine."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class FakeClock:
    """Settable clock; call it like ``utcnow``."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRemote:
    """In-memory remote: records pushes, serves a fixed changes page."""

    def __init__(self, fail_with: Exception | None = None, schema_version: int = 1):
        self.fail_with = fail_with
        self.schema_version = schema_version
        self.pushed = []
        self.pull_calls = []
        self.records = []
        self.cursor = "cursor-1"
        self.closed = False

    async def push(self, item):
        if self.fail_with is not None:
            raise self.fail_with
        self.pushed.append(item)

    async def pull(self, since):
        from sync.remote import RemoteChanges

        self.pull_calls.append(since)
        if self.fail_with is not None:
            raise self.fail_with
        return RemoteChanges(self.schema_version, list(self.records), self.cursor)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def make_remote():
    return FakeRemote


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "learning.db"


@pytest.fixture
def engine_config(tmp_path):
    from cli.config_models import EngineConfig

    return EngineConfig.from_dict(
        {
            "paths": {
                "db_path": str(tmp_path / "learning.db"),
                "log_file": str(tmp_path / "learning.log"),
            }
        }
    )


@pytest.fixture
def engine(engine_config, clock):
    """Offline engine on a temp database with a fake clock."""
    from learning.engine import LearningEngine

    return LearningEngine(engine_config, clock=clock)


@pytest.fixture(autouse=True)
def reset_metrics():
    from observability import metrics

    metrics.reset()
    yield
    metrics.reset()
