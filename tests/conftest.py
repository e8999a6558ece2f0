"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (mocked dependencies)
    - unit/       : Unit tests (pure functions, no I/O)
"""
import os
import sys
from datetime import datetime

import pytest

# Set testing environment BEFORE any project imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"
os.environ.setdefault("STAGE", "local")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Test Data Generators
# =============================================================================

class TestDataGenerator:
    """Generate unique test data"""

    __test__ = False
    _counter = 0

    @classmethod
    def _next_id(cls) -> str:
        cls._counter += 1
        return f"{datetime.now().strftime('%Y%m%d%H%M%S')}_{cls._counter:04d}"

    @classmethod
    def property_id(cls) -> str:
        return f"usa/anytown/main-street/{cls._next_id()}"

    @classmethod
    def contract_id(cls) -> str:
        return f"con_test_{cls._next_id()}"


@pytest.fixture
def generate() -> TestDataGenerator:
    """Provide test data generator"""
    return TestDataGenerator()
