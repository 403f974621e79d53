"""
Monitor configuration.

Extends base configuration with discovery, tailing and interactive settings.
"""

from __future__ import annotations

import pathlib

import pydantic

from session_monitor.config.base import BaseMonitorSettings, lazy_settings


class MonitorSettings(BaseMonitorSettings):
    """Discovery, watcher and interactive-connection configuration."""

    # Discovery
    STALE_DAYS: float = 14  # Sessions older than this are dropped, not shown as stale
    ACTIVE_WINDOW_SECONDS: float = 30  # Recency window separating active from idle
    TAIL_LINES: int = 40  # Lines read from the end of each log per rebuild
    HEAD_LINES: int = 5  # Lines read from the start of subagent logs
    PREVIEW_COUNT: int = 4  # Recent message previews kept per session

    # Refresh triggers
    WATCH_DEBOUNCE_MS: int = 500
    POLL_INTERVAL_SECONDS: float = 5

    # Interactive connection
    DISCONNECT_GRACE_SECONDS: float = 2
    CLAUDE_BINARY: pathlib.Path | None = None  # Skip binary lookup when set

    # Diagnostics
    STATE_SNAPSHOT_PATH: pathlib.Path = pathlib.Path('/tmp/claude_session_monitor_state.json')

    @pydantic.field_validator(
        'STALE_DAYS',
        'ACTIVE_WINDOW_SECONDS',
        'TAIL_LINES',
        'HEAD_LINES',
        'PREVIEW_COUNT',
        'WATCH_DEBOUNCE_MS',
        'POLL_INTERVAL_SECONDS',
        'DISCONNECT_GRACE_SECONDS',
    )
    @classmethod
    def validate_positive(cls, v: float, info: pydantic.ValidationInfo) -> float:
        """Intervals and counts of zero would disable discovery silently."""
        if v <= 0:
            raise ValueError(f'{info.field_name} must be positive')
        return v

    @property
    def stale_seconds(self) -> float:
        return self.STALE_DAYS * 86400


# Module-level singleton (lazy-loaded)
settings = lazy_settings(MonitorSettings)
