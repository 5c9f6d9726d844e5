"""Shared fixtures and markers for shardkey tests."""

import pytest

from shardkey.core.composite_key import CompositeKey


@pytest.fixture
def max_key():
    """The largest legal key: distribution 32767, record 2**48 - 1."""
    return CompositeKey(32767, 0x0000FFFFFFFFFFFF)
