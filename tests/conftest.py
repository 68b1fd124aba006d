"""
Pytest configuration and shared fixtures.

Builders and fake collaborators live in recon_helpers.py.
"""
import pytest

from recon_helpers import FakeClock


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


@pytest.fixture
def clock():
    """Float clock for AttemptTracker and the scheduler, advanced by hand."""
    return FakeClock()
