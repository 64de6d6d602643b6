"""Shared pytest fixtures for JARVIS tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_services():
    """Drop lazily built services so env changes in one test don't leak."""
    from jarvis.api import services

    services.reset()
    yield
    services.reset()
