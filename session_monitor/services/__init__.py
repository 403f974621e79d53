"""Service layer for discovery, tailing and interactive control."""

from session_monitor.services.discovery import SessionDiscoveryService, build_projects, compute_status
from session_monitor.services.interactive import InteractiveSessionService
from session_monitor.services.subagents import SubagentLoader
from session_monitor.services.tail import SessionTailService
from session_monitor.services.watcher import FileChangeWatcher

__all__ = [
    'FileChangeWatcher',
    'InteractiveSessionService',
    'SessionDiscoveryService',
    'SessionTailService',
    'SubagentLoader',
    'build_projects',
    'compute_status',
]
