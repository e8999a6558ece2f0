"""
Component Test Layer Configuration

Structure:
    tests/component/
    ├── tdd/         Service component tests
    └── mocks/       Mock implementations

Usage:
    pytest tests/component -v
    pytest tests/component/tdd/contract_service -v
"""
import pytest

from core.config import ContractsConfig
from tests.component.mocks import MockEventBus, MockPostgresClient


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def mock_db() -> MockPostgresClient:
    """Mock PostgreSQL client"""
    return MockPostgresClient()


@pytest.fixture
def mock_event_bus() -> MockEventBus:
    """Fresh mock event bus"""
    return MockEventBus()


@pytest.fixture
def contracts_config() -> ContractsConfig:
    """Contracts config without backoff delays"""
    return ContractsConfig(
        publish_max_attempts=1,
        publish_backoff_min=0,
        publish_backoff_max=0,
        change_capture_batch_size=10,
        change_capture_max_retry_attempts=3,
        change_capture_bisect_on_failure=True,
        change_capture_poll_interval=0.01,
        invocation_timeout=5.0,
    )
