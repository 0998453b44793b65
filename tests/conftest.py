"""Pytest configuration for frontdev tests.

This file ensures src/ is in the Python path for imports during testing,
and keeps every test away from the user's real data directory and port
files.
"""
import sys
import uuid
from pathlib import Path

import pytest


def pytest_configure(config):
    """Hook called after command line options have been parsed.

    This runs BEFORE test collection, allowing us to manipulate
    sys.path before any test modules are imported.
    """
    repo_root = Path(__file__).parent.parent.absolute()
    src_path = str(repo_root / "src")

    # Ensure src/ is at the very front
    if src_path in sys.path:
        sys.path.remove(src_path)
    sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point the data dir at a temp folder and give each test its own token."""
    data_dir = tmp_path / "frontdev-data"
    data_dir.mkdir()
    monkeypatch.setenv("FRONTDEV_DATA_DIR", str(data_dir))
    monkeypatch.setenv("FRONTDEV_PORTFILE_UUID", f"test-{uuid.uuid4()}")
    for key in ("FRONTDEV_PORT", "FRONTDEV_TIMEOUT_MS", "FRONTDEV_REUSE_DEV_SERVER"):
        monkeypatch.delenv(key, raising=False)
    return data_dir
