"""
File change watcher for session logs and IDE lock files.

Wraps watchfiles.awatch: changes under every root are coalesced over the
debounce window and yielded as one set of paths per batch. Only .jsonl, .lock
and .json files are reported.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import watchfiles

__all__ = ['FileChangeWatcher', 'SessionFileFilter']

logger = logging.getLogger(__name__)

WATCHED_SUFFIXES = ('.jsonl', '.lock', '.json')


class SessionFileFilter(watchfiles.DefaultFilter):
    """DefaultFilter (ignores .git, __pycache__, editor swap files) narrowed to session-related suffixes."""

    def __call__(self, change: watchfiles.Change, path: str) -> bool:
        return path.endswith(WATCHED_SUFFIXES) and super().__call__(change, path)


class FileChangeWatcher:
    """
    Watches a set of root directories recursively.

    Usage:
        watcher = FileChangeWatcher([projects_dir, ide_dir])
        async for changed in watcher.changes():
            ...
        watcher.stop()  # from anywhere; safe to call more than once
    """

    def __init__(self, roots: Sequence[Path], debounce_ms: int = 500) -> None:
        self.roots = list(roots)
        self.debounce_ms = debounce_ms
        self._stop_event = asyncio.Event()

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def changes(self) -> AsyncIterator[set[Path]]:
        """
        Yield batches of changed paths until stop() is called.

        Missing roots are created first so the watch can attach to them.
        """
        for root in self.roots:
            try:
                root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f'Cannot create watch root {root}: {e}')

        roots = [r for r in self.roots if r.is_dir()]
        if not roots:
            logger.warning('No watchable roots; file watching disabled')
            return

        logger.debug(f'Watching {", ".join(str(r) for r in roots)}')
        async for batch in watchfiles.awatch(
            *roots,
            watch_filter=SessionFileFilter(),
            debounce=self.debounce_ms,
            recursive=True,
            stop_event=self._stop_event,
        ):
            yield {Path(path) for _, path in batch}

    def stop(self) -> None:
        """Stop watching. Idempotent."""
        if not self._stop_event.is_set():
            logger.debug('Stopping file watcher')
            self._stop_event.set()
