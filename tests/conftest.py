"""Shared fixtures."""

import pytest
from structlog.testing import capture_logs


@pytest.fixture(autouse=True)
def captured_logs():
    """Capture structlog events instead of printing them."""
    with capture_logs() as logs:
        yield logs
