"""Shared fixtures for drivemirror tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeDrive, FakeTokens

from drivemirror.client.sync.checkpoint import CheckpointStore
from drivemirror.core.config import CHUNK_ALIGNMENT, UploaderConfig

# Files above two chunks go through the resumable protocol in tests
TEST_CHUNK_SIZE = CHUNK_ALIGNMENT
TEST_THRESHOLD = 2 * CHUNK_ALIGNMENT


@pytest.fixture
def drive() -> FakeDrive:
    """Create an empty in-memory remote store."""
    return FakeDrive()


@pytest.fixture
def tokens() -> FakeTokens:
    """Create a token provider that always refreshes."""
    return FakeTokens()


@pytest.fixture
def config(tmp_path: Path) -> UploaderConfig:
    """Create a configuration with small chunks and no real sleeping."""
    return UploaderConfig(
        tmp_dir=tmp_path / "tmp",
        chunk_size=TEST_CHUNK_SIZE,
        large_file_threshold=TEST_THRESHOLD,
    )


@pytest.fixture
def checkpoints(config: UploaderConfig) -> CheckpointStore:
    """Create a checkpoint store in the test temp directory."""
    return CheckpointStore(config.tmp_dir)
