"""
Control protocol codec for the Claude CLI's stream-json mode.

ProtocolDecoder is a pure state machine: feed() takes one stdout line and
returns the interactive events it produces. It owns the LiveMessage being
streamed and the single outstanding control request. No I/O happens here;
InteractiveSessionService does the reading and writing.

Inbound frame types:
    system (subtype=init)  -> Connected
    stream_event           -> StreamText / StreamThinking / ToolUseStart /
                              MessageComplete(source='stream') at message_stop
    assistant              -> MessageComplete(source='assistant')
    control_request        -> PermissionRequest
    result                 -> TurnResult

Anything else (user echoes, keep-alives, control_response acks) is ignored.
Malformed frames are logged and dropped; they never end the connection.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

import pydantic

from session_monitor.schemas.control import (
    AllowBehavior,
    Connected,
    ControlRequest,
    ControlRequestFrame,
    ControlResponseBody,
    ControlResponseFrame,
    DenyBehavior,
    InteractiveEvent,
    LiveMessage,
    LiveToolCall,
    MessageComplete,
    PermissionRequest,
    ResultFrame,
    StreamText,
    StreamThinking,
    SystemInitFrame,
    ToolUseStart,
    TurnResult,
    UserMessageBody,
    UserMessageFrame,
)
from session_monitor.schemas.streaming import (
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    ErrorEvent as StreamErrorEvent,
    InputJsonDelta,
    MessageStartEvent,
    MessageStopEvent,
    StreamEvent,
    StreamEventAdapter,
    TextBlockStart,
    TextDelta,
    ThinkingBlockStart,
    ThinkingDelta,
    ToolUseBlockStart,
)
from session_monitor.services.parser import canonical_json, parse_record

__all__ = [
    'DEFAULT_DENY_MESSAGE',
    'ProtocolDecoder',
    'encode_approval',
    'encode_rejection',
    'encode_user_message',
]

logger = logging.getLogger(__name__)

DEFAULT_DENY_MESSAGE = 'User denied permission'


# ==============================================================================
# Encoding
# ==============================================================================


def encode_user_message(text: str, session_id: str) -> bytes:
    """One NDJSON line carrying a user turn."""
    frame = UserMessageFrame(message=UserMessageBody(content=text), session_id=session_id)
    return _line(frame)


def encode_approval(request_id: str, updated_input: Mapping[str, Any]) -> bytes:
    """Allow a pending tool call, passing the (possibly edited) tool input back."""
    body = ControlResponseBody(request_id=request_id, response=AllowBehavior(updatedInput=dict(updated_input)))
    return _line(ControlResponseFrame(response=body))


def encode_rejection(request_id: str, message: str = DEFAULT_DENY_MESSAGE) -> bytes:
    body = ControlResponseBody(request_id=request_id, response=DenyBehavior(message=message))
    return _line(ControlResponseFrame(response=body))


def _line(frame: pydantic.BaseModel) -> bytes:
    return frame.model_dump_json().encode() + b'\n'


# ==============================================================================
# Decoding
# ==============================================================================


class ProtocolDecoder:
    """
    Turns CLI stdout lines into interactive events.

    One decoder per connection. Streaming deltas for a message are always
    returned before that message's MessageComplete.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self.live_message: LiveMessage | None = None
        self.pending_request: ControlRequest | None = None
        self.malformed_frames = 0
        self._tool_blocks: dict[int, LiveToolCall] = {}

    def feed(self, line: str | bytes) -> list[InteractiveEvent]:
        if not line.strip():
            return []
        try:
            frame = json.loads(line)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._malformed(f'invalid JSON: {e}')
            return []
        if not isinstance(frame, dict):
            self._malformed(f'expected object, got {type(frame).__name__}')
            return []

        try:
            match frame.get('type'):
                case 'system':
                    return self._on_system(frame)
                case 'stream_event':
                    return self._on_stream_event(frame)
                case 'assistant':
                    return self._on_assistant(frame)
                case 'control_request':
                    return self._on_control_request(frame)
                case 'result':
                    return self._on_result(frame)
                case other:
                    logger.debug(f'Ignoring {other!r} frame')
                    return []
        except pydantic.ValidationError as e:
            self._malformed(f'{frame.get("type")} frame failed validation: {e.error_count()} errors')
            return []

    def clear_pending(self, request_id: str) -> None:
        if self.pending_request is not None and self.pending_request.request_id == request_id:
            self.pending_request = None

    # --------------------------------------------------------------------------
    # Frame handlers
    # --------------------------------------------------------------------------

    def _on_system(self, frame: dict[str, Any]) -> list[InteractiveEvent]:
        init = SystemInitFrame.model_validate(frame)
        if init.subtype != 'init':
            return []
        if init.session_id:
            self.session_id = init.session_id
        return [
            Connected(
                session_id=self.session_id or '',
                model=init.model,
                permission_mode=init.permissionMode,
            )
        ]

    def _on_stream_event(self, frame: dict[str, Any]) -> list[InteractiveEvent]:
        raw_event = frame.get('event')
        if not isinstance(raw_event, dict):
            self._malformed('stream_event without event object')
            return []
        event: StreamEvent = StreamEventAdapter.validate_python(raw_event)

        match event:
            case MessageStartEvent(message=message):
                self.live_message = LiveMessage(id=message.id, model=message.model)
                self._tool_blocks.clear()
                return []

            case ContentBlockStartEvent(index=index, content_block=ToolUseBlockStart(id=tool_id, name=name)):
                call = LiveToolCall(id=tool_id, name=name)
                self._live().tool_calls.append(call)
                self._tool_blocks[index] = call
                return [ToolUseStart(id=tool_id, name=name)]

            case ContentBlockStartEvent(content_block=TextBlockStart(text=text)) if text:
                self._live().text += text
                return [StreamText(text=text)]

            case ContentBlockStartEvent(content_block=ThinkingBlockStart(thinking=thinking)) if thinking:
                self._live().thinking += thinking
                return [StreamThinking(thinking=thinking)]

            case ContentBlockDeltaEvent(delta=TextDelta(text=text)):
                self._live().text += text
                return [StreamText(text=text)]

            case ContentBlockDeltaEvent(delta=ThinkingDelta(thinking=thinking)):
                self._live().thinking += thinking
                return [StreamThinking(thinking=thinking)]

            case ContentBlockDeltaEvent(index=index, delta=InputJsonDelta(partial_json=fragment)):
                call = self._tool_blocks.get(index)
                if call is None:
                    self._malformed(f'input_json_delta for unknown block {index}')
                    return []
                call.input_json += fragment
                return []

            case ContentBlockStopEvent(index=index):
                if (call := self._tool_blocks.get(index)) is not None:
                    call.is_complete = True
                return []

            case MessageStopEvent():
                live = self._live()
                live.is_complete = True
                self.live_message = None
                self._tool_blocks.clear()
                return [MessageComplete(message=live.to_parsed_message(self.session_id), source='stream')]

            case StreamErrorEvent(error=error):
                logger.warning(f'Stream error from API: {error.type}: {error.message}')
                return []

            case _:
                return []

    def _on_assistant(self, frame: dict[str, Any]) -> list[InteractiveEvent]:
        message = parse_record(frame)
        if message is None:
            self._malformed('assistant frame could not be parsed')
            return []
        return [MessageComplete(message=message, source='assistant')]

    def _on_control_request(self, frame: dict[str, Any]) -> list[InteractiveEvent]:
        parsed = ControlRequestFrame.model_validate(frame)
        request = ControlRequest(
            request_id=parsed.request_id,
            tool_name=parsed.request.tool_name,
            input=dict(parsed.request.input),
            input_json=canonical_json(dict(parsed.request.input)),
        )
        if self.pending_request is not None:
            logger.warning(
                f'control_request {request.request_id} replaces unanswered {self.pending_request.request_id}'
            )
        self.pending_request = request
        return [
            PermissionRequest(
                request_id=request.request_id,
                tool_name=request.tool_name,
                input_json=request.input_json,
                input=request.input,
            )
        ]

    def _on_result(self, frame: dict[str, Any]) -> list[InteractiveEvent]:
        result = ResultFrame.model_validate(frame)
        return [
            TurnResult(
                duration_ms=result.duration_ms,
                cost_usd=result.total_cost_usd,
                is_error=result.is_error,
                result=result.result,
            )
        ]

    # --------------------------------------------------------------------------
    # Helpers
    # --------------------------------------------------------------------------

    def _live(self) -> LiveMessage:
        """The message being streamed; deltas without a message_start get a fresh one."""
        if self.live_message is None:
            self.live_message = LiveMessage(id=f'live-{uuid.uuid4()}')
        return self.live_message

    def _malformed(self, reason: str) -> None:
        self.malformed_frames += 1
        logger.warning(f'Ignoring malformed frame: {reason}')
