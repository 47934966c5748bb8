"""Root conftest — shared test configuration."""

import pytest

from formkeeper.config import get_settings


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
