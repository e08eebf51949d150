"""
Shared test fixtures and configuration for pytest
"""
import os
import tempfile

# Logging and config resolve their paths on first import; keep both out of ~
os.environ["MAILFETCH_HOME"] = tempfile.mkdtemp(prefix="mailfetch-tests-")

import pytest

from mailfetch.core.models.email import ConnectionConfig
from mailfetch.utils.config_manager import ConfigManager, IMAPSettings


@pytest.fixture(autouse=True)
def clear_env_vars():
    """Clear mailfetch environment overrides before each test"""
    env_vars = [
        'MAILFETCH_CONFIG', 'MAILFETCH_STRICT_MODE',
        'MAILFETCH_LOG_LEVEL', 'MAILFETCH_DEADLINE', 'MAILFETCH_PASSWORD'
    ]
    original = {}
    for var in env_vars:
        original[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    ConfigManager.reset()
    yield
    ConfigManager.reset()

    # Restore original environment
    for var, value in original.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]


@pytest.fixture
def imap_settings():
    """Settings with short timeouts for local fake servers"""
    return IMAPSettings(connect_timeout=2, command_timeout=2, deadline=10)


@pytest.fixture
def connection_config():
    """Credentials for an unreachable test host"""
    return ConnectionConfig(
        host="imap.test.com", port=993, user="test@example.com", password="testpass"
    )
