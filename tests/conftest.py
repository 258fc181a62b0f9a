"""
pytest configuration for cascade tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from cascade.types import CascadeMessage  # noqa: E402
from core.logging import clear_log_context, clear_message_context  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_log_context():
    """Context vars leak between tests run in the same thread."""
    yield
    clear_log_context()
    clear_message_context()


@pytest.fixture
def make_message():
    """Factory for CascadeMessage with an optional retries header."""

    def _make(topic="orders", value=b"payload", key=b"key-1", retries=None, offset=0, headers=()):
        headers = tuple(headers)
        if retries is not None:
            headers = headers + (("retries", str(retries).encode("utf-8")),)
        return CascadeMessage(topic=topic, partition=0, offset=offset, key=key, value=value, headers=headers)

    return _make
