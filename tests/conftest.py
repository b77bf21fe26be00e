"""
Pytest configuration and shared fixtures for the streaming core tests.

WHAT: Centralized test configuration with markers and shared helpers
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers and shared fixtures
"""

import pytest

from ophelia.core.config import ProviderConfig
from ophelia.llm.provider_factory import reset_provider
from ophelia.llm.retry import RetryPolicy


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components, mocked HTTP)"
    )
    config.addinivalue_line(
        "markers", "streaming: Tests that exercise a wire-format stream end to end"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


@pytest.fixture(autouse=True)
def reset_provider_cache():
    """
    Reset provider cache before each test.

    WHAT: Clear cached provider between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def fast_retry():
    """Retry policy with no real backoff delay."""
    return RetryPolicy(max_attempts=3, initial_backoff=0.0)


@pytest.fixture
def openai_config():
    return ProviderConfig(provider="openai", api_key="sk-test-key-1234", model="gpt-4o-mini")


@pytest.fixture
def anthropic_config():
    return ProviderConfig(provider="anthropic", api_key="sk-ant-test-5678", model="claude-3-5-haiku-20241022")
