"""
Switchboard Test Configuration

Shared fixtures and configuration for pytest.
"""

import sys
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


# =============================================================================
# Environment Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch):
    """Defaults plus a temporary database; no config.yml and no real credentials."""
    import switchboard.core.config as config_module
    import switchboard.core.database as database_module
    import switchboard.core.memory as memory_module

    for key in list(config_module.os.environ):
        if key.startswith("SWITCHBOARD_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SWITCHBOARD_MEMORY__DATABASE_PATH", str(tmp_path / "switchboard.db"))
    monkeypatch.setattr(config_module, "find_config_file", lambda: None)

    config = config_module.reload_config()
    database_module.reset_db()
    monkeypatch.setattr(memory_module, "_memory", None)

    yield config

    database_module.reset_db()
    config_module._config = None


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set up common environment variables for testing."""
    monkeypatch.setenv("SWITCHBOARD_API__API_KEY", "test-api-key")
    monkeypatch.setenv("SWITCHBOARD_FEISHU__APP_ID", "cli_test")
    monkeypatch.setenv("SWITCHBOARD_FEISHU__APP_SECRET", "secret")
    monkeypatch.setenv("SWITCHBOARD_GITLAB__DEFAULT_PROJECT", "dpa/test")
    from switchboard.core.config import reload_config
    return reload_config()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def memory_db():
    """In-memory database with the full schema."""
    from switchboard.core.database import Database

    db = Database(in_memory=True)
    yield db
    db.close()


@pytest.fixture
def memory(memory_db):
    from switchboard.core.memory import ConversationMemory

    return ConversationMemory(memory_db)


# =============================================================================
# Mock Fixtures
# =============================================================================

def make_stream_client(chunks: List, error: Exception = None):
    """LLM client whose generate_stream yields ``chunks`` (StreamChunk) or raises ``error``."""
    client = MagicMock()

    async def generate_stream(messages, **kwargs):
        if error is not None:
            raise error
        for chunk in chunks:
            yield chunk

    client.generate_stream = generate_stream
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_llm_client():
    """Create a mock LLM client."""
    mock = AsyncMock()
    mock.generate = AsyncMock(return_value=MagicMock(
        text="Test response",
        reasoning="",
        finish_reason="stop",
        usage={"total_tokens": 100},
    ))
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def tier_state():
    """Fresh tier state with a controllable clock."""
    from switchboard.core.model_selector import ModelTierState

    class Clock:
        now = 1000.0

        def __call__(self):
            return self.now

        def advance(self, seconds: float):
            self.now += seconds

    clock = Clock()
    state = ModelTierState(clock=clock)
    state.clock = clock
    return state


@pytest.fixture
def model_configs():
    from switchboard.core.config import ModelConfig
    from switchboard.core.model_selector import ModelTier

    return {
        ModelTier.PRIMARY: ModelConfig(name="primary", model="primary-model"),
        ModelTier.FALLBACK: ModelConfig(name="fallback", model="fallback-model"),
    }


@pytest.fixture
def no_sleep():
    """Recording replacement for asyncio.sleep."""
    sleeps = []

    async def sleep(seconds: float):
        sleeps.append(seconds)

    sleep.calls = sleeps
    return sleep


@pytest.fixture
def stream_client_factory():
    """Factory for streaming LLM client mocks."""
    return make_stream_client
