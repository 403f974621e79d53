"""Shared fixtures: an isolated ~/.claude tree and settings pointing at it."""

from __future__ import annotations

from pathlib import Path

import pytest

from session_monitor.config import MonitorSettings
from tests.records import WORKSPACE_DIR


@pytest.fixture
def claude_dir(tmp_path: Path) -> Path:
    root = tmp_path / '.claude'
    (root / 'projects').mkdir(parents=True)
    return root


@pytest.fixture
def settings(claude_dir: Path, tmp_path: Path) -> MonitorSettings:
    return MonitorSettings(
        CLAUDE_DIR=claude_dir,
        DISCONNECT_GRACE_SECONDS=0.5,
        STATE_SNAPSHOT_PATH=tmp_path / 'state.json',
    )


@pytest.fixture
def workspace_dir(claude_dir: Path) -> Path:
    path = claude_dir / 'projects' / WORKSPACE_DIR
    path.mkdir()
    return path
