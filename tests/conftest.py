import entitystore
import pytest


@pytest.fixture(autouse=True)
def reset_context():
    """Drop the default context and engines before and after each test to ensure test isolation."""
    entitystore.shutdown()
    yield
    entitystore.shutdown()


@pytest.fixture
def context():
    """Unconfigured context with its own mapping cache."""
    return entitystore.get_context()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.values',
    'tests.fixtures.sqlite',
]
