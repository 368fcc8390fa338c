"""
Shared fixtures for the satellite cache tests.
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(project_root)

from cache.store import CacheStore
from tests.fakes import RecordingChannel


@pytest.fixture
def store(tmp_path) -> CacheStore:
    return CacheStore(str(tmp_path / "satellite_cache"))


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()
