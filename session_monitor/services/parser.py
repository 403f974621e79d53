"""
Session log parser - converts JSONL lines into ParsedMessage records.

Pure functions, no I/O. Every entry point tolerates malformed input:
parse_line() returns None for anything it cannot use and never raises, so
callers decide whether to count or ignore the failure.

Record shape (one JSON object per line):
    {"type": "user" | "assistant" | "system" | "progress" | "file-history-snapshot"
             | "queue-operation",
     "uuid": ..., "timestamp": "2025-01-01T00:00:00.000Z",
     "message": {"role": ..., "content": str | [blocks], "model": ...},
     "slug": ..., "gitBranch": ..., "version": ..., "sessionId": ..., "cwd": ...,
     "permissionMode": ...}
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any, NamedTuple, get_args

from session_monitor.schemas.session import (
    MessageContent,
    MessagePreview,
    MessageType,
    ParsedMessage,
    TextContent,
    ThinkingContent,
    ToolResultContent,
    ToolUseContent,
)

__all__ = [
    'SessionMetadata',
    'canonical_json',
    'extract_metadata',
    'extract_permission_mode',
    'extract_previews',
    'parse_content',
    'parse_line',
    'parse_lines',
    'parse_record',
    'parse_timestamp',
    'truncate',
]

MESSAGE_TYPES: frozenset[str] = frozenset(get_args(MessageType))

PREVIEW_TEXT_LIMIT = 200


class SessionMetadata(NamedTuple):
    """Metadata taken from the most recent record that carries any of it."""

    slug: str | None = None
    git_branch: str | None = None
    version: str | None = None
    model: str | None = None


# ==============================================================================
# Line Parsing
# ==============================================================================


def parse_line(line: str | bytes) -> ParsedMessage | None:
    """
    Parse one JSONL line.

    Returns:
        ParsedMessage, or None if the line is not valid JSON, is not an object,
        or declares a type we don't recognize
    """
    try:
        obj = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(obj, dict):
        return None
    return parse_record(obj)


def parse_lines(lines: Iterable[str | bytes]) -> tuple[list[ParsedMessage], int]:
    """
    Parse many lines, skipping blanks.

    Returns:
        (parsed messages in input order, count of non-blank lines that failed)
    """
    messages: list[ParsedMessage] = []
    failures = 0
    for line in lines:
        if not line.strip():
            continue
        msg = parse_line(line)
        if msg is None:
            failures += 1
        else:
            messages.append(msg)
    return messages, failures


def parse_record(obj: Mapping[str, Any]) -> ParsedMessage | None:
    """Parse an already-decoded record. Used for both log lines and control-protocol frames."""
    msg_type = obj.get('type')
    if not isinstance(msg_type, str) or msg_type not in MESSAGE_TYPES:
        return None

    record_id = _str(obj.get('uuid')) or str(uuid.uuid4())
    timestamp = parse_timestamp(obj.get('timestamp'))
    metadata = {
        'slug': _str(obj.get('slug')),
        'git_branch': _str(obj.get('gitBranch')),
        'version': _str(obj.get('version')),
        'session_id': _str(obj.get('sessionId')) or _str(obj.get('session_id')),
        'cwd': _str(obj.get('cwd')),
        'permission_mode': _str(obj.get('permissionMode')),
    }

    if msg_type not in ('user', 'assistant'):
        return ParsedMessage(id=record_id, type=msg_type, timestamp=timestamp, **metadata)

    message = obj.get('message')
    if not isinstance(message, Mapping):
        message = {}
    role = message.get('role')

    # Streamed assistant frames carry the API message id instead of a uuid
    if 'uuid' not in obj and _str(message.get('id')):
        record_id = message['id']

    return ParsedMessage(
        id=record_id,
        type=msg_type,
        timestamp=timestamp,
        role=role if role in ('user', 'assistant') else None,
        content=parse_content(message.get('content')),
        model=_str(message.get('model')),
        **metadata,
    )


# ==============================================================================
# Content Parsing
# ==============================================================================


def parse_content(raw: Any) -> list[MessageContent]:
    """
    Normalize message content into typed blocks.

    A bare string becomes one text block. Unknown block kinds, and known kinds
    missing required fields, are skipped.
    """
    if isinstance(raw, str):
        return [TextContent(text=raw)]
    if not isinstance(raw, list):
        return []

    blocks: list[MessageContent] = []
    for block in raw:
        if not isinstance(block, Mapping):
            continue
        parsed = _parse_block(block)
        if parsed is not None:
            blocks.append(parsed)
    return blocks


def _parse_block(block: Mapping[str, Any]) -> MessageContent | None:
    match block.get('type'):
        case 'text':
            text = block.get('text')
            return TextContent(text=text) if isinstance(text, str) else None

        case 'thinking':
            return ThinkingContent(thinking=_str(block.get('thinking')) or '')

        case 'tool_use':
            tool_id = _str(block.get('id'))
            name = _str(block.get('name'))
            if tool_id is None or name is None:
                return None
            raw_input = block.get('input')
            return ToolUseContent(id=tool_id, name=name, input_json=canonical_json({} if raw_input is None else raw_input))

        case 'tool_result':
            tool_use_id = _str(block.get('tool_use_id'))
            if tool_use_id is None:
                return None
            return ToolResultContent(
                tool_use_id=tool_use_id,
                content=_flatten_result_content(block.get('content')),
                is_error=block.get('is_error') is True,
            )

        case _:
            return None


def _flatten_result_content(raw: Any) -> str:
    if isinstance(raw, str):
        return raw
    if isinstance(raw, list):
        return '\n'.join(
            item['text'] for item in raw if isinstance(item, Mapping) and isinstance(item.get('text'), str)
        )
    return ''


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys so equal inputs always render identically."""
    try:
        return json.dumps(value, sort_keys=True, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return '{}'


# ==============================================================================
# Derived Views
# ==============================================================================


def extract_previews(messages: Sequence[ParsedMessage], count: int = 4) -> list[MessagePreview]:
    """Previews of the last `count` user/assistant messages, oldest first."""
    conversational = [m for m in messages if m.is_conversational]
    recent = conversational[-count:] if count > 0 else []
    previews = []
    for msg in recent:
        tool_uses = msg.tool_uses
        previews.append(
            MessagePreview(
                role=msg.role or msg.type,
                text=truncate(msg.text, PREVIEW_TEXT_LIMIT),
                tool_name=tool_uses[0].name if tool_uses else None,
                timestamp=msg.timestamp,
            )
        )
    return previews


def extract_metadata(messages: Sequence[ParsedMessage]) -> SessionMetadata:
    """Scan backward for the most recent message carrying slug/branch/version/model."""
    for msg in reversed(messages):
        if msg.slug or msg.git_branch or msg.version or msg.model:
            return SessionMetadata(msg.slug, msg.git_branch, msg.version, msg.model)
    return SessionMetadata()


def extract_permission_mode(messages: Sequence[ParsedMessage]) -> str | None:
    for msg in reversed(messages):
        if msg.permission_mode:
            return msg.permission_mode
    return None


# ==============================================================================
# Helpers
# ==============================================================================


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO 8601 timestamp; 'Z' suffixes are accepted."""
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


def truncate(text: str, limit: int) -> str:
    """Collapse whitespace and cut to `limit` characters with an ellipsis."""
    collapsed = ' '.join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[: max(limit - 1, 0)] + '…'


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None
