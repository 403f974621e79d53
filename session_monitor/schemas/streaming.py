"""
Streaming event schemas for the Claude CLI control protocol.

With --include-partial-messages the CLI wraps every Messages API streaming
event in a `stream_event` frame on stdout:

    {"type": "stream_event", "event": {"type": "content_block_delta", ...}, ...}

One assistant message arrives as message_start, then per content block a
content_block_start, its deltas and a content_block_stop, then message_delta
and message_stop. ping events may appear anywhere.

All models are permissive: we declare only the fields the decoder consumes,
and the CLI is free to add more.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

import pydantic

from session_monitor.schemas.types import PermissiveModel

# ==============================================================================
# Deltas
# ==============================================================================


class TextDelta(PermissiveModel):
    """Text delta in streaming response."""

    type: Literal['text_delta']
    text: str


class ThinkingDelta(PermissiveModel):
    """Thinking delta in streaming response."""

    type: Literal['thinking_delta']
    thinking: str


class SignatureDelta(PermissiveModel):
    """Signature delta for thinking blocks. Carries no user-visible content."""

    type: Literal['signature_delta']
    signature: str


class InputJsonDelta(PermissiveModel):
    """Partial tool input JSON. Fragments concatenate to the full input."""

    type: Literal['input_json_delta']
    partial_json: str


DeltaContent = Annotated[
    TextDelta | ThinkingDelta | SignatureDelta | InputJsonDelta,
    pydantic.Discriminator('type'),
]


# ==============================================================================
# Block Starts
# ==============================================================================


class TextBlockStart(PermissiveModel):
    type: Literal['text']
    text: str = ''


class ThinkingBlockStart(PermissiveModel):
    type: Literal['thinking']
    thinking: str = ''


class ToolUseBlockStart(PermissiveModel):
    """
    Tool use block start.

    input is empty {} at block start and populated incrementally via
    input_json_delta events.
    """

    type: Literal['tool_use']
    id: str
    name: str
    input: Mapping[str, Any] = pydantic.Field(default_factory=dict)


class OtherBlockStart(PermissiveModel):
    """Any other block kind (server_tool_use, redacted_thinking, ...)."""

    type: str


def _block_start_tag(value: Any) -> str:
    block_type = value.get('type') if isinstance(value, dict) else getattr(value, 'type', None)
    if block_type in ('text', 'thinking', 'tool_use'):
        return block_type
    return 'other'


ContentBlockStart = Annotated[
    Annotated[TextBlockStart, pydantic.Tag('text')]
    | Annotated[ThinkingBlockStart, pydantic.Tag('thinking')]
    | Annotated[ToolUseBlockStart, pydantic.Tag('tool_use')]
    | Annotated[OtherBlockStart, pydantic.Tag('other')],
    pydantic.Discriminator(_block_start_tag),
]


# ==============================================================================
# Message Start
# ==============================================================================


class InitialMessage(PermissiveModel):
    """The (empty) message announced by message_start."""

    id: str
    role: Literal['assistant'] = 'assistant'
    model: str | None = None


# ==============================================================================
# Stream Events
# ==============================================================================


class MessageStartEvent(PermissiveModel):
    type: Literal['message_start']
    message: InitialMessage


class ContentBlockStartEvent(PermissiveModel):
    type: Literal['content_block_start']
    index: int
    content_block: ContentBlockStart


class ContentBlockDeltaEvent(PermissiveModel):
    type: Literal['content_block_delta']
    index: int
    delta: DeltaContent


class ContentBlockStopEvent(PermissiveModel):
    type: Literal['content_block_stop']
    index: int


class MessageDeltaEvent(PermissiveModel):
    """Final update with stop_reason and usage. Not used by the decoder."""

    type: Literal['message_delta']


class MessageStopEvent(PermissiveModel):
    type: Literal['message_stop']


class PingEvent(PermissiveModel):
    type: Literal['ping']


class StreamError(PermissiveModel):
    type: str  # overloaded_error, api_error, ...
    message: str


class ErrorEvent(PermissiveModel):
    type: Literal['error']
    error: StreamError


StreamEvent = Annotated[
    MessageStartEvent
    | ContentBlockStartEvent
    | ContentBlockDeltaEvent
    | ContentBlockStopEvent
    | MessageDeltaEvent
    | MessageStopEvent
    | PingEvent
    | ErrorEvent,
    pydantic.Discriminator('type'),
]

StreamEventAdapter: pydantic.TypeAdapter[StreamEvent] = pydantic.TypeAdapter(StreamEvent)
