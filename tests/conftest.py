"""
Pytest configuration and fixtures for identro-client.

Keeps loguru quiet during tests and isolates tests from a developer's IDENTRO_* env.
"""

import sys

import pytest
from loguru import logger


@pytest.fixture(autouse=True, scope="session")
def quiet_logs():
    """Only surface warnings and above from the client during tests."""
    logger.remove()
    handler_id = logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No stray IDENTRO_* variables or .env file leak into settings."""
    import os

    for name in list(os.environ):
        if name.startswith("IDENTRO_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
