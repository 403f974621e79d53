"""
Schemas for the interactive control connection.

Outbound frames (written to the CLI's stdin, one JSON object per line):
    UserMessageFrame        {"type": "user", "message": {"role": "user", "content": ...}}
    ControlResponseFrame    {"type": "control_response", "response": {"subtype": "success",
                             "request_id": ..., "response": {"behavior": "allow" | "deny", ...}}}

The CLI matches control responses on response.request_id. A request_id at the
top level of the frame is not recognized, so the frame models do not have one.

Inbound events (yielded to the caller of InteractiveSessionService.connect):
    Connected, StreamText, StreamThinking, ToolUseStart, PermissionRequest,
    MessageComplete, TurnResult, ErrorEvent, Disconnected

LiveMessage / LiveToolCall are mutable accumulators owned by the protocol
decoder while an assistant message is streaming.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

import attrs
import pydantic

from session_monitor.schemas.session import ParsedMessage, TextContent, ThinkingContent, ToolUseContent
from session_monitor.schemas.types import PermissiveModel, StrictModel

# ==============================================================================
# Outbound Frames
# ==============================================================================


class UserMessageBody(StrictModel):
    role: Literal['user'] = 'user'
    content: str


class UserMessageFrame(StrictModel):
    """A user turn sent to the CLI."""

    type: Literal['user'] = 'user'
    message: UserMessageBody
    session_id: str
    parent_tool_use_id: None = None


class AllowBehavior(StrictModel):
    behavior: Literal['allow'] = 'allow'
    updatedInput: Mapping[str, Any]


class DenyBehavior(StrictModel):
    behavior: Literal['deny'] = 'deny'
    message: str


class ControlResponseBody(StrictModel):
    subtype: Literal['success'] = 'success'
    request_id: str
    response: AllowBehavior | DenyBehavior


class ControlResponseFrame(StrictModel):
    """Answer to a control_request. request_id lives under response."""

    type: Literal['control_response'] = 'control_response'
    response: ControlResponseBody


# ==============================================================================
# Inbound Frames (only the parts we read)
# ==============================================================================


class ControlRequestPayload(PermissiveModel):
    subtype: str | None = None
    tool_name: str
    input: Mapping[str, Any] = pydantic.Field(default_factory=dict)


class ControlRequestFrame(PermissiveModel):
    type: Literal['control_request']
    request_id: str
    request: ControlRequestPayload


class SystemInitFrame(PermissiveModel):
    type: Literal['system']
    subtype: str | None = None
    session_id: str | None = None
    model: str | None = None
    permissionMode: str | None = None


class ResultFrame(PermissiveModel):
    type: Literal['result']
    subtype: str | None = None
    is_error: bool = False
    duration_ms: int = 0
    total_cost_usd: float | None = None
    result: str | None = None


class ControlRequest(StrictModel):
    """A tool approval request issued by the CLI. At most one is outstanding."""

    request_id: str
    tool_name: str
    input: Mapping[str, Any]
    input_json: str


# ==============================================================================
# Connection State
# ==============================================================================

ConnectionStatus = Literal['disconnected', 'connecting', 'connected', 'error', 'terminated']


class ConnectionState(StrictModel):
    """State of the interactive connection, independent from discovery status."""

    status: ConnectionStatus = 'disconnected'
    detail: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == 'connected'

    @property
    def label(self) -> str:
        if self.status in ('error', 'terminated') and self.detail:
            return self.detail
        return {
            'disconnected': 'Disconnected',
            'connecting': 'Connecting...',
            'connected': 'Connected',
            'error': 'Error',
            'terminated': 'Terminated',
        }[self.status]


# ==============================================================================
# Live Message (streaming token-by-token)
# ==============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


@attrs.define
class LiveToolCall:
    id: str
    name: str
    input_json: str = ''
    is_complete: bool = False
    result: str | None = None
    is_error: bool = False


@attrs.define
class LiveMessage:
    """Accumulates one assistant message while it streams."""

    id: str
    role: Literal['user', 'assistant'] = 'assistant'
    text: str = ''
    thinking: str = ''
    tool_calls: list[LiveToolCall] = attrs.field(factory=list)
    is_complete: bool = False
    model: str | None = None
    timestamp: datetime = attrs.field(factory=_utcnow)

    def to_parsed_message(self, session_id: str | None = None) -> ParsedMessage:
        """Freeze the accumulated state into a terminal ParsedMessage."""
        content: list[ThinkingContent | TextContent | ToolUseContent] = []
        if self.thinking:
            content.append(ThinkingContent(thinking=self.thinking))
        if self.text:
            content.append(TextContent(text=self.text))
        for call in self.tool_calls:
            content.append(ToolUseContent(id=call.id, name=call.name, input_json=call.input_json or '{}'))
        return ParsedMessage(
            id=self.id,
            type='assistant',
            role=self.role,
            timestamp=self.timestamp,
            content=content,
            model=self.model,
            session_id=session_id,
        )


# ==============================================================================
# Interactive Events
# ==============================================================================


class Connected(StrictModel):
    type: Literal['connected'] = 'connected'
    session_id: str
    model: str | None = None
    permission_mode: str | None = None


class StreamText(StrictModel):
    type: Literal['stream_text'] = 'stream_text'
    text: str


class StreamThinking(StrictModel):
    type: Literal['stream_thinking'] = 'stream_thinking'
    thinking: str


class ToolUseStart(StrictModel):
    type: Literal['tool_use_start'] = 'tool_use_start'
    id: str
    name: str


class PermissionRequest(StrictModel):
    type: Literal['permission_request'] = 'permission_request'
    request_id: str
    tool_name: str
    input_json: str
    input: Mapping[str, Any] = pydantic.Field(default_factory=dict)


class MessageComplete(StrictModel):
    """
    A finished assistant message.

    source='stream' is built from accumulated deltas at message_stop;
    source='assistant' is the CLI's own complete message frame.
    """

    type: Literal['message_complete'] = 'message_complete'
    message: ParsedMessage
    source: Literal['stream', 'assistant']


class TurnResult(StrictModel):
    """End of a turn."""

    type: Literal['result'] = 'result'
    duration_ms: int
    cost_usd: float | None = None
    is_error: bool = False
    result: str | None = None


class ErrorEvent(StrictModel):
    type: Literal['error'] = 'error'
    message: str


class Disconnected(StrictModel):
    type: Literal['disconnected'] = 'disconnected'
    exit_code: int | None = None


InteractiveEvent = Annotated[
    Connected
    | StreamText
    | StreamThinking
    | ToolUseStart
    | PermissionRequest
    | MessageComplete
    | TurnResult
    | ErrorEvent
    | Disconnected,
    pydantic.Discriminator('type'),
]
