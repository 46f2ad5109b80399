"""Pytest configuration and shared fixtures.

Usage Guide:
- Test doubles and builders live in tests.fixtures.fakes
- Quota header sets live in tests.fixtures.rate_limit_responses
"""

import pytest

from tests.fixtures.fakes import FakeClock, FakeTransport


@pytest.fixture
def clock() -> FakeClock:
    """Simulated clock starting at T0."""
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    """Transport returning 200 with no body unless scripted."""
    return FakeTransport()
