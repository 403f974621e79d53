"""
Schema definitions for claude-session-monitor.

This package contains Pydantic models for:
- session: parsed log records and discovery results
- streaming: stream_event payloads emitted by the CLI control protocol
- control: control-protocol frames, interactive events and live accumulators
- diagnostics: state snapshots written by the store
"""

from __future__ import annotations

from session_monitor.schemas.control import ConnectionState, ControlRequest, InteractiveEvent
from session_monitor.schemas.diagnostics import StateSnapshot
from session_monitor.schemas.session import (
    MessagePreview,
    ParsedMessage,
    PendingInteraction,
    Project,
    SessionStatus,
    SessionSummary,
    SubagentSummary,
)
from session_monitor.schemas.types import PermissiveModel, StrictModel

__all__ = [
    'ConnectionState',
    'ControlRequest',
    'InteractiveEvent',
    'MessagePreview',
    'ParsedMessage',
    'PendingInteraction',
    'PermissiveModel',
    'Project',
    'SessionStatus',
    'SessionSummary',
    'StateSnapshot',
    'StrictModel',
    'SubagentSummary',
]
