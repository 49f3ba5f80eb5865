"""
Top-level pytest configuration for the DRACOON client tests.

No test talks to a real DRACOON instance: HTTP goes through httpx.MockTransport
with a FakeDracoon (tests/helpers/fake_dracoon.py) as handler.
"""

import pytest
import stamina

from tests.helpers.fake_dracoon import FakeDracoon, build_session


@pytest.fixture(autouse=True)
def stamina_testing_mode():
    """No backoff sleeps in tests, every retry context gets 3 attempts."""
    stamina.set_testing(True, attempts=3)
    yield
    stamina.set_testing(False)


@pytest.fixture
def fake_dracoon() -> FakeDracoon:
    return FakeDracoon()


@pytest.fixture
def dracoon(fake_dracoon):
    """Disconnected session talking to fake_dracoon."""
    return build_session(fake_dracoon)
