"""
Session tail service - streams records appended to one session log.

After an initial full read has fixed a byte offset, only bytes written past
that offset are read. Each round consumes complete lines only; a trailing
partial line stays unconsumed until its newline arrives. The offset always
equals the number of bytes consumed.

If the file shrinks below the offset (truncated or replaced), tailing
restarts from byte 0 in the same round.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path

import watchfiles

from session_monitor.schemas.diagnostics import TailInfo
from session_monitor.schemas.session import ParsedMessage
from session_monitor.services.parser import parse_line

__all__ = ['SessionTailService']

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class SessionTailService:
    """
    Tails exactly one file at a time.

    Usage:
        tail = SessionTailService()
        async for message in tail.start_tailing(path, from_offset=offset):
            ...
        tail.stop_tailing()  # ends the iterator; safe when idle
    """

    def __init__(self, debounce_ms: int = 50, chunk_size: int = READ_CHUNK_SIZE) -> None:
        self.debounce_ms = debounce_ms
        self.chunk_size = chunk_size
        self.path: Path | None = None
        self.offset = 0
        self.parse_failures = 0
        self.messages_emitted = 0
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._queue: asyncio.Queue[ParsedMessage | None] | None = None
        self._generation = 0

    @property
    def is_tailing(self) -> bool:
        return self._task is not None

    def start_tailing(self, path: Path, from_offset: int | None = None) -> AsyncIterator[ParsedMessage]:
        """
        Begin tailing `path`, stopping any previous tail first.

        Must be called from a running event loop.

        Args:
            path: Session log to follow
            from_offset: Byte offset already consumed by the caller; defaults to
                the current file size (only new records are emitted)

        Returns:
            Async iterator over newly appended records, in file order. It ends
            when stop_tailing() is called or a new tail is started.
        """
        self.stop_tailing()

        if from_offset is None:
            try:
                from_offset = path.stat().st_size
            except OSError:
                from_offset = 0

        self._generation += 1
        self.path = path
        self.offset = from_offset
        self.parse_failures = 0
        self.messages_emitted = 0

        queue: asyncio.Queue[ParsedMessage | None] = asyncio.Queue()
        stop_event = asyncio.Event()
        self._queue = queue
        self._stop_event = stop_event
        self._task = asyncio.create_task(self._follow(path, queue, stop_event))

        logger.debug(f'Tailing {path.name} from offset {from_offset}')
        return _drain(queue)

    def stop_tailing(self) -> None:
        """Stop the current tail and end its iterator. Idempotent."""
        if self._task is None:
            return

        logger.debug(f'Stopping tail of {self.path}')
        assert self._stop_event is not None and self._queue is not None
        self._stop_event.set()
        self._task.cancel()
        self._queue.put_nowait(None)
        self._generation += 1
        self._task = None
        self._stop_event = None
        self._queue = None

    def read_new_lines(self) -> list[ParsedMessage]:
        """
        Read from the offset to end of file and parse the complete lines.

        Blocking. Advances the offset by the bytes consumed and counts lines
        that fail to parse. Results are discarded if a different tail started
        while the read was running.
        """
        generation, path, offset = self._generation, self.path, self.offset
        if path is None:
            return []

        try:
            size = path.stat().st_size
        except OSError as e:
            logger.debug(f'Tail stat failed for {path}: {e}')
            return []

        if size < offset:
            logger.info(f'{path.name} shrank from {offset} to {size} bytes; restarting tail at 0')
            offset = 0
        if size == offset:
            return []

        messages: list[ParsedMessage] = []
        failures = 0
        pending = b''
        try:
            with path.open('rb') as f:
                f.seek(offset)
                while chunk := f.read(self.chunk_size):
                    lines = (pending + chunk).split(b'\n')
                    pending = lines.pop()
                    for line in lines:
                        offset += len(line) + 1
                        if not line.strip():
                            continue
                        message = parse_line(line)
                        if message is None:
                            failures += 1
                        else:
                            messages.append(message)
        except OSError as e:
            logger.debug(f'Tail read failed for {path}: {e}')

        if generation != self._generation:
            return []

        self.offset = offset
        self.parse_failures += failures
        self.messages_emitted += len(messages)
        if failures:
            logger.debug(f'{path.name}: skipped {failures} unparseable lines')
        return messages

    def diagnostic_info(self) -> TailInfo:
        return TailInfo(
            is_tailing=self.is_tailing,
            path=str(self.path) if self.path is not None else None,
            offset=self.offset,
            messages_emitted=self.messages_emitted,
            parse_failures=self.parse_failures,
        )

    async def _follow(
        self,
        path: Path,
        queue: asyncio.Queue[ParsedMessage | None],
        stop_event: asyncio.Event,
    ) -> None:
        """Read once, then again after every change notification for `path`."""
        def is_target(change: watchfiles.Change, changed: str) -> bool:
            return Path(changed).name == path.name

        try:
            await self._read_into(queue, stop_event)
            async for _ in watchfiles.awatch(
                path.parent,
                watch_filter=is_target,
                debounce=self.debounce_ms,
                recursive=False,
                stop_event=stop_event,
            ):
                await self._read_into(queue, stop_event)
        except OSError as e:
            logger.warning(f'Tail of {path} ended: {e}')
            queue.put_nowait(None)

    async def _read_into(self, queue: asyncio.Queue[ParsedMessage | None], stop_event: asyncio.Event) -> None:
        messages = await asyncio.to_thread(self.read_new_lines)
        # A newer tail may have started while the read was in flight
        if stop_event.is_set():
            return
        for message in messages:
            queue.put_nowait(message)


async def _drain(queue: asyncio.Queue[ParsedMessage | None]) -> AsyncIterator[ParsedMessage]:
    while (message := await queue.get()) is not None:
        yield message
