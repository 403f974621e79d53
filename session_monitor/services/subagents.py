"""
Subagent discovery for a single session.

Subagents are nested conversations a session spawns to delegate work. Each is
logged to <workspace>/<sessionId>/subagents/agent-<agentId>.jsonl. Summaries
are built from cheap reads (head, tail, newline count) and cached per file by
mtime, like session summaries.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import attrs

from session_monitor.schemas.session import SubagentSummary, TextContent, ToolUseContent
from session_monitor.services import reader
from session_monitor.services.parser import truncate

__all__ = ['SubagentLoader', 'count_subagents', 'subagents_dir']

logger = logging.getLogger(__name__)

AGENT_PREFIX = 'agent-'
HEAD_LINES = 5
TAIL_LINES = 5


def subagents_dir(session_id: str, jsonl_path: Path) -> Path:
    """
    Directory holding a session's subagent logs.

    Handles both layouts: <ws>/<id>.jsonl (subagents in <ws>/<id>/subagents)
    and <ws>/<id>/<id>.jsonl (subagents in <ws>/<id>/subagents).
    """
    parent = jsonl_path.parent
    if parent.name == session_id:
        return parent / 'subagents'
    return parent / session_id / 'subagents'


def count_subagents(session_id: str, jsonl_path: Path) -> int:
    try:
        return sum(1 for p in subagents_dir(session_id, jsonl_path).iterdir() if p.suffix == '.jsonl')
    except OSError:
        return 0


@attrs.define(frozen=True)
class _CachedSubagent:
    mtime_ns: int
    summary: SubagentSummary


class SubagentLoader:
    """Builds SubagentSummary lists with an mtime-keyed cache."""

    def __init__(self, head_lines: int = HEAD_LINES, tail_lines: int = TAIL_LINES) -> None:
        self.head_lines = head_lines
        self.tail_lines = tail_lines
        self._cache: dict[Path, _CachedSubagent] = {}
        self._lock = threading.Lock()

    def load_subagents(self, session_id: str, jsonl_path: Path) -> list[SubagentSummary]:
        """
        Summaries for every subagent of a session, most recently active first.

        Subagent logs that are empty or unreadable are omitted.
        """
        directory = subagents_dir(session_id, jsonl_path)
        try:
            files = [p for p in directory.iterdir() if p.suffix == '.jsonl']
        except OSError:
            return []

        summaries = [s for s in map(self._summarize, files) if s is not None]
        summaries.sort(key=lambda s: s.last_activity, reverse=True)
        return summaries

    def _summarize(self, path: Path) -> SubagentSummary | None:
        try:
            mtime_ns = path.stat().st_mtime_ns
        except OSError:
            return None

        with self._lock:
            cached = self._cache.get(path)
        if cached is not None and cached.mtime_ns == mtime_ns:
            return cached.summary

        head_messages = reader.head(path, self.head_lines)
        if not head_messages:
            return None

        first_user = next((m for m in head_messages if m.role == 'user'), None)
        task_description = truncate(first_user.text, 200) if first_user else 'Unknown task'

        tail_messages = reader.tail(path, self.tail_lines)
        last_assistant = next((m for m in reversed(tail_messages) if m.role == 'assistant'), None)
        is_completed = last_assistant is not None and (
            any(isinstance(b, TextContent) for b in last_assistant.content)
            and not any(isinstance(b, ToolUseContent) for b in last_assistant.content)
        )

        last_activity = reader.last_modified(path)
        if last_activity is None:
            return None

        agent_id = path.stem.removeprefix(AGENT_PREFIX)
        summary = SubagentSummary(
            agent_id=agent_id,
            jsonl_path=str(path),
            task_description=task_description,
            message_count=reader.line_count(path),
            last_activity=last_activity,
            is_completed=is_completed,
        )

        with self._lock:
            self._cache[path] = _CachedSubagent(mtime_ns=mtime_ns, summary=summary)
        return summary
