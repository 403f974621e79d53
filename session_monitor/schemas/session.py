"""
Pydantic models for parsed session log records and discovered sessions.

Two layers live here:

Parsed records:
  ParsedMessage and its content blocks are the normalized form of one line of a
  Claude Code session JSONL file. The on-disk format carries far more fields than
  we model; the parser keeps only what discovery, tailing and the interactive
  orchestrator consume.

Discovery results:
  SessionSummary, Project, PendingInteraction and SubagentSummary are rebuilt on
  every discovery pass. None of them are persisted.

Content block ordering is preserved from the log. A ToolResultContent answers
the ToolUseContent with the same id, but that link is established by scanning
positions, never stored as a reference.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Annotated, Any, Literal

import pydantic

from session_monitor.schemas.types import StrictModel

__all__ = [
    'ACTIVE_STATUSES',
    'MessageContent',
    'MessagePreview',
    'MessageRole',
    'MessageType',
    'ParsedMessage',
    'PendingInteraction',
    'PendingInteractionType',
    'Project',
    'QuestionOption',
    'QuestionPrompt',
    'STATUS_SORT_ORDER',
    'SessionStatus',
    'SessionSummary',
    'SubagentSummary',
    'TextContent',
    'ThinkingContent',
    'ToolResultContent',
    'ToolUseContent',
]

# ==============================================================================
# Enumerations
# ==============================================================================

MessageType = Literal[
    'user',
    'assistant',
    'system',
    'progress',
    'file-history-snapshot',
    'queue-operation',
]

MessageRole = Literal['user', 'assistant']

# 'error' is only ever assigned by the interactive layer, never by discovery.
SessionStatus = Literal['active', 'waiting', 'idle', 'stale', 'error']

ACTIVE_STATUSES: frozenset[SessionStatus] = frozenset({'active', 'waiting'})

STATUS_SORT_ORDER: Mapping[SessionStatus, int] = {
    'waiting': 0,
    'active': 1,
    'idle': 2,
    'stale': 3,
    'error': 4,
}

PendingInteractionType = Literal['permission', 'question', 'plan_review']


# ==============================================================================
# Content Blocks
# ==============================================================================


class TextContent(StrictModel):
    """Plain text."""

    type: Literal['text'] = 'text'
    text: str


class ThinkingContent(StrictModel):
    """Extended thinking text (assistant only)."""

    type: Literal['thinking'] = 'thinking'
    thinking: str


class ToolUseContent(StrictModel):
    """Tool use block.

    input_json is the tool input re-serialized with sorted keys, so two records
    carrying the same input always produce the same string.
    """

    type: Literal['tool_use'] = 'tool_use'
    id: str
    name: str
    input_json: str


class ToolResultContent(StrictModel):
    """Tool result block. Content arrays are flattened to one string."""

    type: Literal['tool_result'] = 'tool_result'
    tool_use_id: str
    content: str
    is_error: bool = False


MessageContent = Annotated[
    TextContent | ThinkingContent | ToolUseContent | ToolResultContent,
    pydantic.Discriminator('type'),
]


# ==============================================================================
# Parsed Message
# ==============================================================================


class ParsedMessage(StrictModel):
    """One conversational turn or event from a session log."""

    id: str
    type: MessageType
    timestamp: datetime | None = None
    role: MessageRole | None = None
    content: Sequence[MessageContent] = ()

    # Session metadata carried on user/assistant records
    model: str | None = None
    slug: str | None = None
    git_branch: str | None = None
    version: str | None = None
    session_id: str | None = None
    cwd: str | None = None
    permission_mode: str | None = None

    @property
    def text(self) -> str:
        """All text blocks joined by a single space."""
        return ' '.join(block.text for block in self.content if isinstance(block, TextContent))

    @property
    def tool_uses(self) -> list[ToolUseContent]:
        return [block for block in self.content if isinstance(block, ToolUseContent)]

    @property
    def tool_results(self) -> list[ToolResultContent]:
        return [block for block in self.content if isinstance(block, ToolResultContent)]

    @property
    def is_conversational(self) -> bool:
        return self.type in ('user', 'assistant')


class MessagePreview(StrictModel):
    """Short preview of a recent message, shown in session lists."""

    role: str
    text: str
    tool_name: str | None = None
    timestamp: datetime | None = None


# ==============================================================================
# Pending Interaction
# ==============================================================================


class QuestionOption(StrictModel):
    """A single option offered by a question-asking tool."""

    label: str
    description: str | None = None


class QuestionPrompt(StrictModel):
    """One question from a question-asking tool call."""

    question: str
    header: str | None = None
    options: Sequence[QuestionOption] = ()
    multi_select: bool = False


class PendingInteraction(StrictModel):
    """
    The earliest unanswered tool use in a session's last assistant turn.

    Derived from the tail of the log on every discovery pass; it disappears as
    soon as a tool_result for tool_use_id is written.

    Fields by type:
        permission: tool_input holds the parsed tool input fields
        question: questions (and question_text for the single-question legacy form)
        plan_review: plan holds the proposed plan markdown
    """

    type: PendingInteractionType
    tool_use_id: str
    tool_name: str
    tool_input_json: str
    tool_input: Mapping[str, Any] = pydantic.Field(default_factory=dict)
    questions: Sequence[QuestionPrompt] = ()
    question_text: str | None = None
    plan: str | None = None


# ==============================================================================
# Discovery Results
# ==============================================================================


class SessionSummary(StrictModel):
    """
    One discovered session.

    status is recomputed from (pid liveness, pending_interaction, last_activity)
    on every scan, including scans that reuse a cached summary.
    """

    session_id: str
    workspace_path: str
    project_name: str
    jsonl_path: str
    status: SessionStatus
    last_activity: datetime
    pid: int | None = None
    model: str | None = None
    slug: str | None = None
    git_branch: str | None = None
    cli_version: str | None = None
    permission_mode: str | None = None
    message_count: int = 0
    subagent_count: int = 0
    last_messages: Sequence[MessagePreview] = ()
    pending_interaction: PendingInteraction | None = None


class Project(StrictModel):
    """Sessions grouped by workspace path."""

    name: str
    workspace_path: str
    mangled_path: str
    session_count: int
    active_session_count: int


class SubagentSummary(StrictModel):
    """A nested sub-conversation logged under <session>/subagents/agent-<id>.jsonl."""

    agent_id: str
    jsonl_path: str
    task_description: str
    message_count: int
    last_activity: datetime
    is_completed: bool
