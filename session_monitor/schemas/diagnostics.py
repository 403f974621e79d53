"""Diagnostic state snapshots, written as JSON for inspection while the monitor runs."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

from session_monitor.schemas.control import ConnectionStatus
from session_monitor.schemas.session import SessionStatus
from session_monitor.schemas.types import StrictModel

__all__ = [
    'ConnectionInfo',
    'SelectedSessionInfo',
    'StateSnapshot',
    'TailInfo',
]


class TailInfo(StrictModel):
    """Tail engine state for the open session."""

    is_tailing: bool
    path: str | None = None
    offset: int = 0
    messages_emitted: int = 0
    parse_failures: int = 0


class ConnectionInfo(StrictModel):
    status: ConnectionStatus
    detail: str | None = None
    session_id: str | None = None
    pid: int | None = None
    has_pending_request: bool = False


class SelectedSessionInfo(StrictModel):
    session_id: str
    status: SessionStatus
    jsonl_path: str
    message_count: int
    subagent_count: int


class StateSnapshot(StrictModel):
    """Everything the store publishes, reduced to counts and identifiers."""

    timestamp: datetime
    is_monitoring: bool
    session_count: int
    sessions_by_status: Mapping[SessionStatus, int]
    project_count: int
    selected: SelectedSessionInfo | None = None
    tail: TailInfo
    connection: ConnectionInfo
