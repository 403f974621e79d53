"""Configuration for claude-session-monitor."""

from __future__ import annotations

from session_monitor.config.base import BaseMonitorSettings, get_settings, lazy_settings
from session_monitor.config.monitor import MonitorSettings, settings

__all__ = [
    'BaseMonitorSettings',
    'MonitorSettings',
    'get_settings',
    'lazy_settings',
    'settings',
]
