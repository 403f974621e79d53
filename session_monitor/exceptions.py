"""
Shared exceptions for claude-session-monitor.

Discovery and tailing never raise for filesystem or parse problems; they omit
the affected session or line instead. These exceptions cover the interactive
connection and the store's command API.

Exception Hierarchy:
    SessionMonitorError (base)
    ├── SessionNotFoundError (unknown session id)
    └── InteractiveSessionError (control connection failures)
        ├── ClaudeBinaryNotFoundError (no CLI binary in any known location)
        ├── ProcessSpawnError (binary found but could not be started)
        ├── NotConnectedError (command issued without a live process)
        └── NoPendingRequestError (approve/reject with nothing to answer)
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class SessionMonitorError(Exception):
    """Base exception for all claude-session-monitor errors."""


class SessionNotFoundError(SessionMonitorError):
    """Raised when a session id is not in the current discovery result."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'Session not found: {session_id}')


class InteractiveSessionError(SessionMonitorError):
    """Base exception for interactive control connection failures."""


class ClaudeBinaryNotFoundError(InteractiveSessionError):
    """Raised when the Claude CLI binary cannot be located."""

    def __init__(self, searched: Sequence[Path]) -> None:
        self.searched = list(searched)
        locations = '\n  '.join(str(p) for p in self.searched[:10])
        super().__init__(f'Claude binary not found. Searched:\n  {locations}\nand PATH.')


class ProcessSpawnError(InteractiveSessionError):
    """Raised when the CLI process fails to start."""

    def __init__(self, binary: Path, reason: str) -> None:
        self.binary = binary
        self.reason = reason
        super().__init__(f'Failed to start {binary}: {reason}')


class NotConnectedError(InteractiveSessionError):
    """Raised when a command is sent while no CLI process is attached."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f'Cannot {action}: no interactive session is connected')


class NoPendingRequestError(InteractiveSessionError):
    """Raised when approving or rejecting while no control request is outstanding."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f'Cannot {action}: no permission request is pending')
