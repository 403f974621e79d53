"""Detect running Claude Code processes and map them to sessions."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import packaging.version
import psutil

from session_monitor.schemas.types import StrictModel

__all__ = [
    'ClaudeProcess',
    'find_claude_processes',
    'get_version_from_process',
    'is_process_alive',
    'match_process',
    'parse_cmdline',
]

logger = logging.getLogger(__name__)

# Only processes driven through the structured output format are tracked.
# A bare interactive `claude` in a terminal carries no session flag to match on.
BINARY_MARKER = 'claude'
REQUIRED_FLAG = '--output-format'
SESSION_FLAGS = ('--resume', '--session-id')


class ClaudeProcess(StrictModel):
    """A running Claude CLI process."""

    pid: int
    session_id: str | None = None
    is_resumed: bool = False


def find_claude_processes() -> list[ClaudeProcess]:
    """
    List running Claude CLI processes.

    Matches command lines containing the binary name and --output-format,
    and reads the session id from --resume / --session-id.

    Returns:
        One ClaudeProcess per matching process; empty if listing fails
    """
    results: list[ClaudeProcess] = []

    for proc in psutil.process_iter(['pid', 'cmdline']):
        cmdline = proc.info.get('cmdline') or []
        parsed = parse_cmdline(proc.info['pid'], cmdline)
        if parsed is not None:
            results.append(parsed)

    logger.debug(f'Found {len(results)} Claude processes')
    return results


def parse_cmdline(pid: int, cmdline: Sequence[str]) -> ClaudeProcess | None:
    """Build a ClaudeProcess from an argv list, or None if it isn't one."""
    joined = ' '.join(cmdline)
    if BINARY_MARKER not in joined or REQUIRED_FLAG not in joined:
        return None

    session_id = None
    for flag in SESSION_FLAGS:
        session_id = _extract_arg(cmdline, flag)
        if session_id is not None:
            break

    return ClaudeProcess(pid=pid, session_id=session_id, is_resumed='--resume' in cmdline)


def match_process(processes: Sequence[ClaudeProcess], session_id: str) -> ClaudeProcess | None:
    return next((p for p in processes if p.session_id == session_id), None)


def is_process_alive(pid: int) -> bool:
    """True if the PID exists and is not a zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return psutil.pid_exists(pid)


def get_version_from_process(pid: int) -> str | None:
    """
    Version of a running CLI, read from its executable file name.

    Native installs run ~/.local/share/claude/versions/<x.y.z> directly; npm
    installs run node, whose file name is not a version, so they yield None.
    """
    try:
        exe_path = Path(psutil.Process(pid).exe())
        version = packaging.version.Version(exe_path.name)
        return str(version)
    except (psutil.NoSuchProcess, psutil.AccessDenied, packaging.version.InvalidVersion):
        return None


def _extract_arg(cmdline: Sequence[str], flag: str) -> str | None:
    """Value following `flag`, given as a separate argument or as --flag=value."""
    for i, arg in enumerate(cmdline):
        if arg == flag and i + 1 < len(cmdline):
            value = cmdline[i + 1]
        elif arg.startswith(f'{flag}='):
            value = arg.split('=', 1)[1]
        else:
            continue
        if value and not value.startswith('-'):
            return value
        return None
    return None

