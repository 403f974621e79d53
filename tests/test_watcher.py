"""Tests for the file change watcher."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import watchfiles

from session_monitor.services.watcher import FileChangeWatcher, SessionFileFilter


@pytest.mark.parametrize(
    ('path', 'expected'),
    [
        ('/home/u/.claude/projects/-a/1.jsonl', True),
        ('/home/u/.claude/ide/1234.lock', True),
        ('/home/u/.claude/settings.json', True),
        ('/home/u/.claude/projects/-a/notes.txt', False),
        ('/home/u/.claude/projects/.git/index.json', False),
    ],
)
def test_filter(path: str, expected: bool):
    assert SessionFileFilter()(watchfiles.Change.modified, path) is expected


@pytest.mark.asyncio
async def test_stop_is_idempotent(tmp_path: Path):
    watcher = FileChangeWatcher([tmp_path])
    assert not watcher.is_stopped
    watcher.stop()
    watcher.stop()
    assert watcher.is_stopped


@pytest.mark.asyncio
async def test_reports_changed_paths_and_creates_roots(tmp_path: Path):
    root = tmp_path / 'projects'
    watcher = FileChangeWatcher([root], debounce_ms=10)
    changes = watcher.changes()
    pending = asyncio.ensure_future(anext(changes))

    async with asyncio.timeout(5):
        while not root.is_dir():
            await asyncio.sleep(0.01)
    await asyncio.sleep(0.2)

    target = root / 'session.jsonl'
    (root / 'ignored.txt').write_text('x')
    target.write_text('{}\n')

    batch = await asyncio.wait_for(pending, 5)
    assert target in batch
    assert root / 'ignored.txt' not in batch

    watcher.stop()
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(anext(changes), 5)
