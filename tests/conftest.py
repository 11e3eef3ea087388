"""
Global pytest configuration and fixtures for SlackBridge testing.
"""
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock, AsyncMock

import pytest

# Repository root (for plugins.*), src (for core.*) and tests (for mocks.*)
ROOT_DIR = Path(__file__).parent.parent
for path in (ROOT_DIR, ROOT_DIR / "src", Path(__file__).parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from core.config import ConfigurationManager
from core.plugin_storage import PluginLocalStorage
from mocks.slack_mocks import FakeSessionFactory, sample_channels


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_manager(temp_dir):
    """Configuration manager with built-in defaults and storage in a temp dir."""
    manager = ConfigurationManager(str(temp_dir / "config"))
    manager.load_config()
    manager.set('storage.path', str(temp_dir / "slackbridge.db"))
    manager.set('storage.key_file', str(temp_dir / ".storage_key"))
    return manager


@pytest.fixture
def mock_plugin_manager():
    """Plugin manager double providing in-memory storage and a publish mock."""
    manager = Mock()
    storages = {}

    def get_local_storage(name):
        if name not in storages:
            storages[name] = PluginLocalStorage(name)
        return storages[name]

    manager.get_local_storage.side_effect = get_local_storage
    manager.publish = AsyncMock(return_value=[])
    return manager


@pytest.fixture
def session_factory():
    """Fake Slack session factory with the general/old channel pair."""
    return FakeSessionFactory(channels=sample_channels())
