"""Root test configuration."""

import logging
import os

import pytest
import structlog

from stackweaver.config import get_settings
from stackweaver.descriptors import parse
from stackweaver.orchestration import Executor, StateRecorder
from stackweaver.providers.memory import MemoryProvider


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep tests away from the developer's environment and .env file."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.startswith("STACKWEAVER_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("STACKWEAVER_LOG_JSON", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def three_tier_data():
    """Network N, database D depends on N, service S depends on D."""
    return {
        "deployment": "webapp-test",
        "provider": "memory",
        "resources": [
            {"id": "network", "kind": "network", "config": {"name": "webapp-vpc"}},
            {
                "id": "database",
                "kind": "database-instance",
                "depends_on": ["network"],
                "config": {"name": "webapp-db", "network": "${network}"},
            },
            {
                "id": "service",
                "kind": "service",
                "depends_on": ["database"],
                "config": {"name": "webapp-backend", "env": {"DB_CONNECTION": "${database}"}},
            },
        ],
    }


@pytest.fixture
def three_tier(three_tier_data):
    return parse(three_tier_data)


@pytest.fixture
def provider():
    return MemoryProvider(project="test-project", region="test-region")


@pytest.fixture
def recorder(tmp_path, three_tier):
    return StateRecorder(three_tier.deployment, tmp_path / "state")


@pytest.fixture
def make_executor(provider, tmp_path):
    """Build an Executor over the memory provider with sleeps disabled."""

    def _make(descriptors, **kwargs):
        kwargs.setdefault("sleep", lambda _: None)
        adapter = kwargs.pop("adapter", provider)
        recorder = kwargs.pop("recorder", StateRecorder(descriptors.deployment, tmp_path / "state"))
        return Executor(descriptors, adapter, recorder, **kwargs)

    return _make
