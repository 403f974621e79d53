"""
Session discovery service - finds sessions across all Claude Code projects.

Scans ~/.claude/projects/ for per-session JSONL logs, builds a SessionSummary
for each from a bounded tail read, and groups the result into projects.

Layout:
    projects/<mangled-workspace>/<uuid>.jsonl
    projects/<mangled-workspace>/<uuid>/<uuid>.jsonl
    projects/<mangled-workspace>/<uuid>/subagents/agent-<id>.jsonl

Summaries are cached per log path and reused while the file's mtime is
unchanged. Process state is never cached: every scan re-probes running CLI
processes and recomputes status for cached entries too.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeAlias

import attrs
import psutil

from session_monitor.config import MonitorSettings, settings as default_settings
from session_monitor.paths import demangle_workspace_path, is_uuid, project_name
from session_monitor.schemas.session import (
    ACTIVE_STATUSES,
    Project,
    SessionStatus,
    SessionSummary,
)
from session_monitor.services import reader
from session_monitor.services.claude_process import (
    ClaudeProcess,
    find_claude_processes,
    get_version_from_process,
    match_process,
)
from session_monitor.services.parser import extract_metadata, extract_permission_mode, extract_previews
from session_monitor.services.pending import detect_pending_interaction
from session_monitor.services.subagents import count_subagents

__all__ = [
    'SessionDiscoveryService',
    'build_projects',
    'compute_status',
    'sort_sessions',
]

logger = logging.getLogger(__name__)

ProcessLister: TypeAlias = Callable[[], Sequence[ClaudeProcess]]
VersionLookup: TypeAlias = Callable[[int], str | None]


# ==============================================================================
# Pure Rules
# ==============================================================================


def compute_status(
    pid_alive: bool,
    has_pending: bool,
    seconds_since_activity: float,
    active_window: float = 30,
) -> SessionStatus:
    """
    Status from liveness, pending interaction and recency.

    Rules, first match wins:
        no live process        -> stale
        pending interaction    -> waiting
        activity within window -> active
        otherwise              -> idle
    """
    if not pid_alive:
        return 'stale'
    if has_pending:
        return 'waiting'
    if seconds_since_activity < active_window:
        return 'active'
    return 'idle'


def sort_sessions(sessions: Sequence[SessionSummary]) -> list[SessionSummary]:
    """Most recent activity first; ties broken by session id ascending."""
    by_id = sorted(sessions, key=lambda s: s.session_id)
    return sorted(by_id, key=lambda s: s.last_activity, reverse=True)


def build_projects(sessions: Sequence[SessionSummary]) -> list[Project]:
    """
    Group sessions by workspace path.

    Sorted by active session count descending, then name case-insensitively.
    """
    grouped: dict[str, list[SessionSummary]] = {}
    for session in sessions:
        grouped.setdefault(session.workspace_path, []).append(session)

    projects = [
        Project(
            name=members[0].project_name,
            workspace_path=workspace_path,
            mangled_path=_mangled_dir(members[0]),
            session_count=len(members),
            active_session_count=sum(1 for s in members if s.status in ACTIVE_STATUSES),
        )
        for workspace_path, members in grouped.items()
    ]
    projects.sort(key=lambda p: (-p.active_session_count, p.name.casefold()))
    return projects


def _mangled_dir(summary: SessionSummary) -> str:
    """Name of the project directory holding a session log, for either layout."""
    parent = Path(summary.jsonl_path).parent
    return parent.parent.name if parent.name == summary.session_id else parent.name


# ==============================================================================
# Discovery Service
# ==============================================================================


@attrs.define(frozen=True)
class CachedSession:
    mtime_ns: int
    summary: SessionSummary


@attrs.define(frozen=True)
class SessionFile:
    """A session log found on disk, before any content is read."""

    session_id: str
    jsonl_path: Path
    mangled_path: str
    workspace_path: str


class SessionDiscoveryService:
    """
    Service for discovering Claude Code sessions across all projects.

    Owns the summary cache. discover_all() blocks and is serialized by an
    internal lock; async callers use scan(), which runs it in a worker thread.
    """

    def __init__(
        self,
        config: MonitorSettings | None = None,
        list_processes: ProcessLister = find_claude_processes,
        version_lookup: VersionLookup = get_version_from_process,
    ) -> None:
        self.config = config if config is not None else default_settings
        self.list_processes = list_processes
        self.version_lookup = version_lookup
        self._cache: dict[Path, CachedSession] = {}
        self._lock = threading.Lock()

    @property
    def projects_dir(self) -> Path:
        return self.config.projects_dir

    async def scan(self) -> list[SessionSummary]:
        return await asyncio.to_thread(self.discover_all)

    def discover_all(self) -> list[SessionSummary]:
        """
        Scan every project directory and return sorted session summaries.

        Sessions whose log is unreadable, or older than the staleness horizon,
        are omitted. A scan never raises for filesystem problems.
        """
        with self._lock:
            try:
                processes = list(self.list_processes())
            except psutil.Error as e:
                logger.warning(f'Process listing failed: {e}')
                processes = []

            now = time.time()
            horizon = now - self.config.stale_seconds
            sessions: list[SessionSummary] = []
            seen: set[Path] = set()

            for entry in self.iter_session_files():
                try:
                    stat = entry.jsonl_path.stat()
                except OSError as e:
                    logger.debug(f'Skipping {entry.jsonl_path}: {e}')
                    continue
                if stat.st_mtime < horizon:
                    continue

                seen.add(entry.jsonl_path)
                summary = self._summarize(entry, stat.st_mtime_ns, stat.st_mtime, now, processes)
                if summary is not None:
                    sessions.append(summary)

            # Forget logs that disappeared or aged out
            for path in self._cache.keys() - seen:
                del self._cache[path]

            logger.debug(f'Discovered {len(sessions)} sessions from {len(processes)} processes')
            return sort_sessions(sessions)

    def find_session(self, session_id: str) -> SessionFile | None:
        """Locate one session log by id without building its summary."""
        return next((f for f in self.iter_session_files() if f.session_id == session_id), None)

    def iter_session_files(self) -> Iterator[SessionFile]:
        """Yield every session log under the projects root, in directory order."""
        try:
            project_dirs = [d for d in self.projects_dir.iterdir() if d.is_dir() and not d.name.startswith('.')]
        except OSError as e:
            logger.debug(f'Cannot list {self.projects_dir}: {e}')
            return

        for project_dir in sorted(project_dirs):
            workspace_path = demangle_workspace_path(project_dir.name)
            try:
                children = sorted(project_dir.iterdir())
            except OSError as e:
                logger.debug(f'Cannot list {project_dir}: {e}')
                continue

            for child in children:
                if child.suffix == '.jsonl' and is_uuid(child.stem):
                    yield SessionFile(child.stem, child, project_dir.name, workspace_path)
                elif is_uuid(child.name):
                    nested = child / f'{child.name}.jsonl'
                    if nested.is_file():
                        yield SessionFile(child.name, nested, project_dir.name, workspace_path)

    def _summarize(
        self,
        entry: SessionFile,
        mtime_ns: int,
        mtime: float,
        now: float,
        processes: Sequence[ClaudeProcess],
    ) -> SessionSummary | None:
        process = match_process(processes, entry.session_id)
        pid = process.pid if process is not None else None

        cached = self._cache.get(entry.jsonl_path)
        if cached is not None and cached.mtime_ns == mtime_ns:
            summary = cached.summary
            status = compute_status(
                pid is not None,
                summary.pending_interaction is not None,
                now - mtime,
                self.config.ACTIVE_WINDOW_SECONDS,
            )
            return summary.model_copy(
                update={'pid': pid, 'status': status, 'cli_version': summary.cli_version or self._version(pid)}
            )

        summary = self._build_summary(entry, mtime, now, pid)
        if summary is not None:
            self._cache[entry.jsonl_path] = CachedSession(mtime_ns=mtime_ns, summary=summary)
        return summary

    def _build_summary(self, entry: SessionFile, mtime: float, now: float, pid: int | None) -> SessionSummary | None:
        messages = reader.tail(entry.jsonl_path, self.config.TAIL_LINES)
        message_count = reader.line_count(entry.jsonl_path)
        # Vanished between stat and read
        if not messages and not entry.jsonl_path.exists():
            return None

        metadata = extract_metadata(messages)
        pending = detect_pending_interaction(messages)

        return SessionSummary(
            session_id=entry.session_id,
            workspace_path=entry.workspace_path,
            project_name=project_name(entry.workspace_path),
            jsonl_path=str(entry.jsonl_path),
            status=compute_status(pid is not None, pending is not None, now - mtime, self.config.ACTIVE_WINDOW_SECONDS),
            last_activity=datetime.fromtimestamp(mtime, UTC),
            pid=pid,
            model=metadata.model,
            slug=metadata.slug,
            git_branch=metadata.git_branch,
            cli_version=metadata.version or self._version(pid),
            permission_mode=extract_permission_mode(messages),
            message_count=message_count,
            subagent_count=count_subagents(entry.session_id, entry.jsonl_path),
            last_messages=extract_previews(messages, self.config.PREVIEW_COUNT),
            pending_interaction=pending,
        )

    def _version(self, pid: int | None) -> str | None:
        return self.version_lookup(pid) if pid is not None else None
