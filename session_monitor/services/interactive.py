"""
Interactive session service - drives a Claude CLI subprocess over stdio.

The CLI is resumed in stream-json mode with the stdio permission prompt tool,
so every tool approval arrives as a control_request on stdout and is answered
with a control_response on stdin:

    claude --resume <id> -p "" --output-format stream-json
           --input-format stream-json --permission-prompt-tool stdio
           --verbose --include-partial-messages [--permission-mode <mode>]

A dedicated reader task decodes stdout into events and queues them; connect()
returns an async iterator over that queue. stderr lines are logged as
warnings. The stream ends with Disconnected, preceded by ErrorEvent when the
process exits non-zero on its own.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Any

import packaging.version

from session_monitor.config import MonitorSettings, settings as default_settings
from session_monitor.exceptions import ClaudeBinaryNotFoundError, NotConnectedError, ProcessSpawnError
from session_monitor.schemas.control import ControlRequest, Disconnected, ErrorEvent, InteractiveEvent
from session_monitor.services.control_protocol import (
    DEFAULT_DENY_MESSAGE,
    ProtocolDecoder,
    encode_approval,
    encode_rejection,
    encode_user_message,
)
from session_monitor.services.pending import QUESTION_TOOL_NAME

__all__ = ['InteractiveSessionService', 'build_command_args', 'candidate_binaries']

logger = logging.getLogger(__name__)

BINARY_NAME = 'claude'
STREAM_LIMIT = 64 * 1024 * 1024  # single stream-json lines can carry whole file contents
READER_DRAIN_SECONDS = 1.0

FIXED_LOCATIONS = (
    Path.home() / '.local' / 'bin' / BINARY_NAME,
    Path.home() / '.claude' / 'local' / BINARY_NAME,
    Path('/usr/local/bin') / BINARY_NAME,
    Path('/opt/homebrew/bin') / BINARY_NAME,
)
NVM_VERSIONS_DIR = Path.home() / '.nvm' / 'versions' / 'node'
NATIVE_VERSIONS_DIR = Path.home() / '.local' / 'share' / 'claude' / 'versions'


# ==============================================================================
# Binary Lookup and Command Line
# ==============================================================================


def candidate_binaries(override: Path | None = None) -> list[Path]:
    """
    Locations to try, in order.

    override, fixed install locations, nvm node versions (newest first), then
    native installer versions (newest first). PATH is consulted separately.
    """
    candidates: list[Path] = [override] if override is not None else []
    candidates.extend(FIXED_LOCATIONS)
    candidates.extend(d / 'bin' / BINARY_NAME for d in _newest_first(NVM_VERSIONS_DIR))
    candidates.extend(_newest_first(NATIVE_VERSIONS_DIR))
    return candidates


def _newest_first(directory: Path) -> list[Path]:
    try:
        entries = list(directory.iterdir())
    except OSError:
        return []
    return sorted(entries, key=lambda p: _version_key(p.name), reverse=True)


def _version_key(name: str) -> packaging.version.Version:
    try:
        return packaging.version.Version(name)
    except packaging.version.InvalidVersion:
        return packaging.version.Version('0')


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def build_command_args(session_id: str, permission_mode: str | None = None) -> list[str]:
    args = [
        '--resume',
        session_id,
        '-p',
        '',
        '--output-format',
        'stream-json',
        '--input-format',
        'stream-json',
        '--permission-prompt-tool',
        'stdio',
        '--verbose',
        '--include-partial-messages',
    ]
    if permission_mode:
        args.extend(['--permission-mode', permission_mode])
    return args


# ==============================================================================
# Interactive Session Service
# ==============================================================================


class InteractiveSessionService:
    """
    Owns one CLI subprocess at a time: its pipes, reader tasks and decoder.

    Command methods raise NotConnectedError when no process is attached.
    """

    def __init__(self, config: MonitorSettings | None = None) -> None:
        self.config = config if config is not None else default_settings
        self.session_id: str | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._decoder: ProtocolDecoder | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._disconnecting = False

    @property
    def is_connected(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def pending_request(self) -> ControlRequest | None:
        return self._decoder.pending_request if self._decoder is not None else None

    def find_claude_binary(self) -> Path:
        """
        Locate the CLI binary.

        Raises:
            ClaudeBinaryNotFoundError: If no candidate is executable and PATH has none
        """
        candidates = candidate_binaries(self.config.CLAUDE_BINARY)
        for candidate in candidates:
            if _is_executable(candidate):
                return candidate
        found = shutil.which(BINARY_NAME)
        if found:
            return Path(found)
        raise ClaudeBinaryNotFoundError(candidates)

    async def connect(
        self,
        session_id: str,
        work_dir: Path,
        permission_mode: str | None = None,
    ) -> AsyncIterator[InteractiveEvent]:
        """
        Resume `session_id` under a new CLI process.

        Any existing connection is closed first. Lookup and spawn failures do
        not raise: the returned stream yields one ErrorEvent and ends.

        Args:
            session_id: Session to resume
            work_dir: Working directory for the CLI (the session's workspace)
            permission_mode: Optional --permission-mode value

        Returns:
            Async iterator over events, in the order the CLI wrote them
        """
        await self.disconnect()

        queue: asyncio.Queue[InteractiveEvent | None] = asyncio.Queue()
        self.session_id = session_id
        self._disconnecting = False

        try:
            binary = self.find_claude_binary()
            self._process = await self._spawn(binary, build_command_args(session_id, permission_mode), work_dir)
        except (ClaudeBinaryNotFoundError, ProcessSpawnError) as e:
            logger.error(f'Cannot connect to {session_id}: {e}')
            queue.put_nowait(ErrorEvent(message=str(e)))
            queue.put_nowait(None)
            return _drain(queue)

        logger.info(f'Connected to session {session_id} (pid {self._process.pid})')
        self._decoder = ProtocolDecoder(session_id)
        self._stdout_task = asyncio.create_task(self._read_stdout(self._process, self._decoder, queue))
        self._stderr_task = asyncio.create_task(self._read_stderr(self._process))
        return _drain(queue)

    async def _spawn(self, binary: Path, args: list[str], work_dir: Path) -> asyncio.subprocess.Process:
        env = dict(os.environ)
        # Node-based installs need their own bin dir on PATH to find `node`
        env['PATH'] = os.pathsep.join(filter(None, [str(binary.parent), env.get('PATH')]))
        logger.debug(f'Spawning {binary} {" ".join(args)} in {work_dir}')
        try:
            return await asyncio.create_subprocess_exec(
                str(binary),
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=work_dir,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise ProcessSpawnError(binary, str(e)) from e

    # --------------------------------------------------------------------------
    # Commands
    # --------------------------------------------------------------------------

    async def send_user_message(self, text: str, session_id: str | None = None) -> None:
        target = session_id or self.session_id
        if target is None:
            raise NotConnectedError('send a message')
        await self._write(encode_user_message(text, target), 'send a message')

    async def send_approval(self, request_id: str, tool_name: str, tool_input: Mapping[str, Any]) -> None:
        logger.debug(f'Approving {tool_name} ({request_id})')
        await self._write(encode_approval(request_id, tool_input), 'approve a tool call')
        self._clear_pending(request_id)

    async def send_rejection(self, request_id: str, message: str = DEFAULT_DENY_MESSAGE) -> None:
        logger.debug(f'Rejecting {request_id}: {message}')
        await self._write(encode_rejection(request_id, message), 'reject a tool call')
        self._clear_pending(request_id)

    async def answer_question(
        self,
        request_id: str,
        tool_input: Mapping[str, Any],
        answers: Mapping[str, str],
    ) -> None:
        """Approve an AskUserQuestion call with the chosen answers (question text -> answer)."""
        updated = {**tool_input, 'answers': dict(answers)}
        await self.send_approval(request_id, QUESTION_TOOL_NAME, updated)

    async def _write(self, data: bytes, action: str) -> None:
        process = self._process
        if process is None or process.returncode is not None or process.stdin is None:
            raise NotConnectedError(action)
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise NotConnectedError(action) from e

    def _clear_pending(self, request_id: str) -> None:
        if self._decoder is not None:
            self._decoder.clear_pending(request_id)

    # --------------------------------------------------------------------------
    # Disconnect
    # --------------------------------------------------------------------------

    async def disconnect(self) -> None:
        """
        Stop the CLI process: close stdin, terminate, kill after the grace period.

        Idempotent; returns immediately when nothing is connected.
        """
        process = self._process
        if process is None:
            return

        self._disconnecting = True
        logger.info(f'Disconnecting from session {self.session_id} (pid {process.pid})')

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=self.config.DISCONNECT_GRACE_SECONDS)
            except ProcessLookupError:
                pass
            except TimeoutError:
                logger.warning(f'pid {process.pid} ignored SIGTERM; killing')
                process.kill()
                await process.wait()

        await self._finish_task(self._stdout_task)
        await self._finish_task(self._stderr_task)

        self._process = None
        self._decoder = None
        self._stdout_task = None
        self._stderr_task = None

    async def _finish_task(self, task: asyncio.Task[None] | None) -> None:
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=READER_DRAIN_SECONDS)
        except TimeoutError:
            task.cancel()

    # --------------------------------------------------------------------------
    # Reader tasks
    # --------------------------------------------------------------------------

    async def _read_stdout(
        self,
        process: asyncio.subprocess.Process,
        decoder: ProtocolDecoder,
        queue: asyncio.Queue[InteractiveEvent | None],
    ) -> None:
        assert process.stdout is not None
        try:
            async for line in _lines(process.stdout):
                for event in decoder.feed(line):
                    queue.put_nowait(event)

            exit_code = await process.wait()
            if self._process is process and not self._disconnecting:
                self._release(process)
            if exit_code != 0 and not self._disconnecting:
                queue.put_nowait(ErrorEvent(message=f'Claude process exited with code {exit_code}'))
            logger.info(f'Session {decoder.session_id} process exited with code {exit_code}')
            queue.put_nowait(Disconnected(exit_code=exit_code))
        finally:
            queue.put_nowait(None)

    def _release(self, process: asyncio.subprocess.Process) -> None:
        """Drop local state for a process that exited on its own; in-flight streaming and requests are discarded."""
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        self._process = None
        self._decoder = None
        self._stdout_task = None
        self._stderr_task = None

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for line in _lines(process.stderr):
            text = line.decode(errors='replace').rstrip()
            if text:
                logger.warning(f'claude stderr: {text}')


async def _lines(stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Lines from a stream until EOF. Oversized lines are logged and skipped."""
    while True:
        try:
            line = await stream.readline()
        except ValueError as e:
            logger.warning(f'Skipping oversized line: {e}')
            continue
        if not line:
            return
        yield line


async def _drain(queue: asyncio.Queue[InteractiveEvent | None]) -> AsyncIterator[InteractiveEvent]:
    while (event := await queue.get()) is not None:
        yield event