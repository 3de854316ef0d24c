"""
Root conftest.py for shared test fixtures and configuration.
This file provides common fixtures used across the test suite.
"""

import shutil
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to Python path for consistent imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from taskvault.config import SyncSettings
from taskvault.Sync.sync_service import SyncService
from taskvault.Vault.filesystem_store import FilesystemTreeStore
from Tests.fixtures.remote_fakes import FakeTodoistRemote


# ========== Path and File System Fixtures ==========

@pytest.fixture
def isolated_temp_dir():
    """Create an isolated temporary directory that's always cleaned up."""
    temp_dir = tempfile.mkdtemp(prefix="taskvault_test_")
    temp_path = Path(temp_dir)
    yield temp_path
    if temp_path.exists():
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def settings(isolated_temp_dir):
    """Settings pointing at a throwaway vault and state directory."""
    return SyncSettings(
        vault_root=isolated_temp_dir / "vault",
        api_token="test-token",
        state_dir=isolated_temp_dir / "state",
        debounce_seconds=0.01,
    )


@pytest.fixture
def store(settings):
    return FilesystemTreeStore(settings.vault_root)


# ========== Remote Fixtures ==========

@pytest.fixture
def fake_remote():
    return FakeTodoistRemote()


@pytest.fixture
def service(settings, fake_remote, store):
    """Fully wired sync service talking to the in-memory remote."""
    return SyncService(settings, remote=fake_remote, store=store)


# ========== Pytest Configuration ==========

def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line("markers", "unit: Unit tests that don't require external resources")
    config.addinivalue_line("markers", "integration: Integration tests that use the file system")
    config.addinivalue_line("markers", "property: Property-based tests")
