"""Pytest configuration for rw_soar tests."""

import pytest

from rw_soar.config import EngineConfig
from rw_soar.playbook.store import InMemoryExecutionStore


def pytest_configure(config):
    """Configure custom markers for pytest."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow-running (deselect with '-m \"not slow\"')",
    )


@pytest.fixture
def fast_config() -> EngineConfig:
    """Config without retry backoff so retry tests run instantly."""
    return EngineConfig(retry_base_delay_seconds=0.0, retry_max_delay_seconds=0.0)


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()
