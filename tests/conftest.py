import os

os.environ.setdefault("APP_ENV", "testing")

import pytest

from repositories import reset_repositories


@pytest.fixture(autouse=True)
def reset_state():
    """Reset the store before each test."""
    reset_repositories()
