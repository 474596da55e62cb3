import pytest

from factories import ReconcilerHarness


@pytest.fixture
def harness() -> ReconcilerHarness:
    return ReconcilerHarness()
