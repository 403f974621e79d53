"""
Session store - the single coordination point for published state.

Lives on the event loop. Every mutation of the session list, project list,
selected-session detail and connection state happens here, in one task at a
time; blocking reads run in worker threads and only their results reach the
store.

Presentation layers read the public attributes and subscribe() for change
notifications. Commands mirror what a UI needs:

    await store.start_monitoring()
    await store.select_session(session_id)   # detail + live tail
    await store.connect()                    # tail stops, CLI takes over
    await store.send_message('continue')
    await store.approve()                    # answers the pending control request
    await store.disconnect()                 # tail resumes from current size
    await store.stop_monitoring()

Tailing and the interactive connection are mutually exclusive for the
selected session.
"""

from __future__ import annotations

import asyncio
import collections
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, TypeAlias

import attrs

from session_monitor.config import MonitorSettings, settings as default_settings
from session_monitor.exceptions import NoPendingRequestError, NotConnectedError, SessionNotFoundError
from session_monitor.schemas.control import (
    Connected,
    ConnectionState,
    ConnectionStatus,
    ControlRequest,
    Disconnected,
    ErrorEvent,
    InteractiveEvent,
    MessageComplete,
)
from session_monitor.schemas.diagnostics import ConnectionInfo, SelectedSessionInfo, StateSnapshot
from session_monitor.schemas.session import ParsedMessage, Project, SessionSummary, SubagentSummary
from session_monitor.services import reader
from session_monitor.services.control_protocol import DEFAULT_DENY_MESSAGE
from session_monitor.services.discovery import SessionDiscoveryService, build_projects
from session_monitor.services.interactive import InteractiveSessionService
from session_monitor.services.subagents import SubagentLoader
from session_monitor.services.tail import SessionTailService
from session_monitor.services.watcher import FileChangeWatcher

__all__ = ['SessionDetail', 'SessionStore', 'StoreChange']

logger = logging.getLogger(__name__)

ChangeKind: TypeAlias = Literal['sessions', 'detail', 'connection', 'event']


@attrs.define
class SessionDetail:
    """The selected session: summary plus its full message history."""

    summary: SessionSummary
    messages: list[ParsedMessage] = attrs.field(factory=list)
    subagents: list[SubagentSummary] = attrs.field(factory=list)

    @property
    def working_directory(self) -> Path:
        """Exact cwd from the records when present; the demangled path is lossy."""
        for message in reversed(self.messages):
            if message.cwd:
                return Path(message.cwd)
        return Path(self.summary.workspace_path)


@attrs.define(frozen=True)
class StoreChange:
    kind: ChangeKind
    event: InteractiveEvent | None = None


Listener: TypeAlias = Callable[[StoreChange], None]


class SessionStore:
    """Owns published state and wires discovery, tail and interactive services together."""

    def __init__(
        self,
        config: MonitorSettings | None = None,
        discovery: SessionDiscoveryService | None = None,
        tail: SessionTailService | None = None,
        interactive: InteractiveSessionService | None = None,
        subagent_loader: SubagentLoader | None = None,
    ) -> None:
        self.config = config if config is not None else default_settings
        self.discovery = discovery or SessionDiscoveryService(self.config)
        self.tail = tail or SessionTailService()
        self.interactive = interactive or InteractiveSessionService(self.config)
        self.subagent_loader = subagent_loader or SubagentLoader(head_lines=self.config.HEAD_LINES)

        self.sessions: list[SessionSummary] = []
        self.projects: list[Project] = []
        self.detail: SessionDetail | None = None
        self.connection = ConnectionState()

        self._listeners: list[Listener] = []
        self._watcher: FileChangeWatcher | None = None
        self._background: list[asyncio.Task[None]] = []
        self._tail_task: asyncio.Task[None] | None = None
        self._event_task: asyncio.Task[None] | None = None
        self._disconnect_requested = False
        self._refresh_lock = asyncio.Lock()

    # ==========================================================================
    # Subscriptions
    # ==========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, kind: ChangeKind, event: InteractiveEvent | None = None) -> None:
        change = StoreChange(kind=kind, event=event)
        for listener in list(self._listeners):
            listener(change)

    # ==========================================================================
    # Monitoring
    # ==========================================================================

    @property
    def is_monitoring(self) -> bool:
        return bool(self._background)

    async def start_monitoring(self) -> None:
        """Initial scan, then rescan on file changes and every poll interval."""
        if self.is_monitoring:
            return
        await self.refresh()
        self._watcher = FileChangeWatcher(
            [self.config.projects_dir, self.config.ide_dir],
            debounce_ms=self.config.WATCH_DEBOUNCE_MS,
        )
        self._background = [
            asyncio.create_task(self._watch_loop(self._watcher)),
            asyncio.create_task(self._poll_loop()),
        ]
        logger.info(f'Monitoring {self.config.projects_dir}')

    async def stop_monitoring(self) -> None:
        """Stop watching, polling, tailing and any interactive connection. Idempotent."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []
        await self.disconnect()
        await self._stop_tail()

    async def refresh(self) -> None:
        """Rescan sessions and republish sessions, projects and the selected summary."""
        async with self._refresh_lock:
            sessions = await self.discovery.scan()
            self.sessions = sessions
            self.projects = build_projects(sessions)
            if self.detail is not None:
                current = self.find(self.detail.summary.session_id)
                if current is not None:
                    self.detail.summary = current
        self._notify('sessions')

    def find(self, session_id: str) -> SessionSummary | None:
        return next((s for s in self.sessions if s.session_id == session_id), None)

    async def _watch_loop(self, watcher: FileChangeWatcher) -> None:
        async for changed in watcher.changes():
            logger.debug(f'{len(changed)} paths changed; refreshing')
            await self.refresh()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.POLL_INTERVAL_SECONDS)
            await self.refresh()

    # ==========================================================================
    # Selection and Live Tail
    # ==========================================================================

    async def select_session(self, session_id: str) -> SessionDetail:
        """
        Load a session's full history and start tailing it.

        Any interactive connection to a different session is closed first.

        Raises:
            SessionNotFoundError: If the id is not in the current session list
        """
        summary = self.find(session_id)
        if summary is None:
            raise SessionNotFoundError(session_id)

        if self.interactive.session_id not in (None, session_id):
            await self.disconnect()
        await self._stop_tail()

        path = Path(summary.jsonl_path)
        messages, offset = await asyncio.to_thread(reader.read_snapshot, path)
        subagents = await asyncio.to_thread(self.subagent_loader.load_subagents, session_id, path)
        self.detail = SessionDetail(summary=summary, messages=messages, subagents=subagents)
        self._notify('detail')

        if not self.interactive.is_connected:
            self._start_tail(path, offset)
        return self.detail

    async def clear_detail(self) -> None:
        await self._stop_tail()
        self.detail = None
        self._notify('detail')

    def _start_tail(self, path: Path, offset: int | None) -> None:
        messages = self.tail.start_tailing(path, from_offset=offset)
        self._tail_task = asyncio.create_task(self._consume_tail(messages))

    async def _stop_tail(self) -> None:
        self.tail.stop_tailing()
        if self._tail_task is not None:
            await self._tail_task
            self._tail_task = None

    async def _consume_tail(self, messages: AsyncIterator[ParsedMessage]) -> None:
        async for message in messages:
            if self.detail is None:
                continue
            self.detail.messages.append(message)
            self._notify('detail')

    # ==========================================================================
    # Interactive Connection
    # ==========================================================================

    async def connect(self, permission_mode: str | None = None) -> None:
        """
        Take control of the selected session through a CLI subprocess.

        Raises:
            SessionNotFoundError: If no session is selected
        """
        if self.detail is None:
            raise SessionNotFoundError('<none selected>')

        if self._event_task is not None:
            await self.disconnect()
        await self._stop_tail()
        self._disconnect_requested = False
        self._set_connection('connecting')

        summary = self.detail.summary
        events = await self.interactive.connect(
            summary.session_id,
            self.detail.working_directory,
            permission_mode or summary.permission_mode,
        )
        self._event_task = asyncio.create_task(self._consume_events(events))

    async def disconnect(self) -> None:
        """Close the interactive connection and resume tailing. Idempotent."""
        self._disconnect_requested = True
        await self.interactive.disconnect()
        if self._event_task is not None:
            await self._event_task
            self._event_task = None

    async def _consume_events(self, events: AsyncIterator[InteractiveEvent]) -> None:
        async for event in events:
            match event:
                case Connected():
                    self._set_connection('connected')
                case MessageComplete(message=message, source='assistant'):
                    if self.detail is not None:
                        self.detail.messages.append(message)
                        self._notify('detail')
                case ErrorEvent(message=message):
                    self._set_connection('error', message)
                case Disconnected():
                    if self.connection.status != 'error':
                        if self._disconnect_requested:
                            self._set_connection('disconnected')
                        else:
                            self._set_connection('terminated', 'Claude process exited')
            self._notify('event', event)

        if self.connection.status in ('connecting', 'connected'):
            self._set_connection('terminated', 'Connection closed')
        self._resume_tail()

    def _resume_tail(self) -> None:
        """Tail again from the file's current size once the CLI is gone."""
        if self.detail is None or self.tail.is_tailing or self.interactive.is_connected:
            return
        path = Path(self.detail.summary.jsonl_path)
        self._start_tail(path, reader.file_size(path))

    def _set_connection(self, status: ConnectionStatus, detail: str | None = None) -> None:
        self.connection = ConnectionState(status=status, detail=detail)
        self._notify('connection')

    # ==========================================================================
    # Commands
    # ==========================================================================

    async def send_message(self, text: str) -> None:
        await self.interactive.send_user_message(text)

    async def approve(self, updated_input: Mapping[str, Any] | None = None) -> None:
        """Allow the pending tool call, optionally with an edited input."""
        request = self._pending('approve a tool call')
        await self.interactive.send_approval(
            request.request_id,
            request.tool_name,
            updated_input if updated_input is not None else request.input,
        )

    async def reject(self, message: str = DEFAULT_DENY_MESSAGE) -> None:
        request = self._pending('reject a tool call')
        await self.interactive.send_rejection(request.request_id, message)

    async def answer_question(self, answers: Mapping[str, str]) -> None:
        request = self._pending('answer a question')
        await self.interactive.answer_question(request.request_id, request.input, answers)

    def _pending(self, action: str) -> ControlRequest:
        if not self.interactive.is_connected:
            raise NotConnectedError(action)
        request = self.interactive.pending_request
        if request is None:
            raise NoPendingRequestError(action)
        return request

    # ==========================================================================
    # Diagnostics
    # ==========================================================================

    def snapshot(self) -> StateSnapshot:
        selected = None
        if self.detail is not None:
            summary = self.detail.summary
            selected = SelectedSessionInfo(
                session_id=summary.session_id,
                status=summary.status,
                jsonl_path=summary.jsonl_path,
                message_count=len(self.detail.messages),
                subagent_count=len(self.detail.subagents),
            )
        return StateSnapshot(
            timestamp=datetime.now(UTC),
            is_monitoring=self.is_monitoring,
            session_count=len(self.sessions),
            sessions_by_status=dict(collections.Counter(s.status for s in self.sessions)),
            project_count=len(self.projects),
            selected=selected,
            tail=self.tail.diagnostic_info(),
            connection=ConnectionInfo(
                status=self.connection.status,
                detail=self.connection.detail,
                session_id=self.interactive.session_id if self.interactive.is_connected else None,
                pid=self.interactive.pid,
                has_pending_request=self.interactive.pending_request is not None,
            ),
        )

    def write_state(self, path: Path | None = None) -> Path:
        """Write snapshot() as JSON. Defaults to STATE_SNAPSHOT_PATH."""
        target = path or self.config.STATE_SNAPSHOT_PATH
        target.write_text(self.snapshot().model_dump_json(indent=2))
        logger.debug(f'Wrote state snapshot to {target}')
        return target
