"""Tests for the interactive session service against a fake CLI process."""

from __future__ import annotations

import asyncio
import json
import stat
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from session_monitor.config import MonitorSettings
from session_monitor.exceptions import ClaudeBinaryNotFoundError, NotConnectedError
from session_monitor.schemas.control import (
    Connected,
    Disconnected,
    ErrorEvent,
    InteractiveEvent,
    MessageComplete,
    PermissionRequest,
    StreamText,
    TurnResult,
)
from session_monitor.services import interactive
from session_monitor.services.interactive import InteractiveSessionService, build_command_args, candidate_binaries

SESSION_ID = '11111111-1111-4111-8111-111111111111'

FAKE_CLI = r'''
import json
import os
import sys

here = os.path.dirname(os.path.abspath(__file__))
with open(os.path.join(here, 'args.json'), 'w') as f:
    json.dump({'args': sys.argv[1:], 'cwd': os.getcwd()}, f)
stdin_log = open(os.path.join(here, 'stdin.jsonl'), 'a')


def emit(frame):
    sys.stdout.write(json.dumps(frame) + '\n')
    sys.stdout.flush()


def stream(event):
    emit({'type': 'stream_event', 'event': event})


args = sys.argv[1:]
session_id = args[args.index('--resume') + 1]
emit({'type': 'system', 'subtype': 'init', 'session_id': session_id, 'model': 'fake-model'})

while True:
    line = sys.stdin.readline()
    if not line:
        break
    stdin_log.write(line)
    stdin_log.flush()
    frame = json.loads(line)
    if frame['type'] == 'user':
        text = frame['message']['content']
        if text == 'crash':
            sys.stderr.write('fatal: boom\n')
            sys.stderr.flush()
            sys.exit(3)
        if text == 'crash mid turn':
            stream({'type': 'message_start', 'message': {'id': 'msg_2', 'model': 'fake-model'}})
            stream({'type': 'content_block_start', 'index': 0, 'content_block': {'type': 'text', 'text': ''}})
            stream({'type': 'content_block_delta', 'index': 0, 'delta': {'type': 'text_delta', 'text': 'partial'}})
            emit({
                'type': 'control_request',
                'request_id': 'req-2',
                'request': {'subtype': 'can_use_tool', 'tool_name': 'Bash', 'input': {'command': 'ls'}},
            })
            sys.exit(3)
        emit({
            'type': 'control_request',
            'request_id': 'req-1',
            'request': {'subtype': 'can_use_tool', 'tool_name': 'Bash', 'input': {'command': 'echo ' + text}},
        })
    elif frame['type'] == 'control_response':
        behavior = frame['response']['response']['behavior']
        stream({'type': 'message_start', 'message': {'id': 'msg_1', 'model': 'fake-model'}})
        stream({'type': 'content_block_start', 'index': 0, 'content_block': {'type': 'text', 'text': ''}})
        stream({'type': 'content_block_delta', 'index': 0, 'delta': {'type': 'text_delta', 'text': behavior}})
        stream({'type': 'content_block_stop', 'index': 0})
        stream({'type': 'message_stop'})
        emit({
            'type': 'assistant',
            'message': {'id': 'msg_1', 'role': 'assistant', 'content': [{'type': 'text', 'text': behavior}]},
            'session_id': session_id,
        })
        emit({'type': 'result', 'subtype': 'success', 'duration_ms': 42, 'total_cost_usd': 0.001, 'is_error': False})
'''


@pytest.fixture
def fake_cli(tmp_path: Path) -> Path:
    """An executable named claude that runs the fake CLI script."""
    bin_dir = tmp_path / 'bin'
    bin_dir.mkdir()
    script = bin_dir / 'fake_cli.py'
    script.write_text(FAKE_CLI)
    wrapper = bin_dir / 'claude'
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture
def service(settings: MonitorSettings, fake_cli: Path) -> InteractiveSessionService:
    return InteractiveSessionService(settings.model_copy(update={'CLAUDE_BINARY': fake_cli}))


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / 'workspace'
    path.mkdir()
    return path


async def _until(events: AsyncIterator[InteractiveEvent], kind: type) -> tuple[Any, list[InteractiveEvent]]:
    """Consume events up to and including the first of `kind`."""
    seen: list[InteractiveEvent] = []
    while True:
        event = await asyncio.wait_for(anext(events), 10)
        seen.append(event)
        if isinstance(event, kind):
            return event, seen


async def _rest(events: AsyncIterator[InteractiveEvent]) -> list[InteractiveEvent]:
    remaining = []
    while True:
        try:
            remaining.append(await asyncio.wait_for(anext(events), 10))
        except StopAsyncIteration:
            return remaining


def _stdin_frames(fake_cli: Path) -> list[dict[str, Any]]:
    path = fake_cli.parent / 'stdin.jsonl'
    return [json.loads(line) for line in path.read_text().splitlines()]


# ==============================================================================
# Command line and binary lookup
# ==============================================================================


def test_command_args():
    assert build_command_args('abc') == [
        '--resume',
        'abc',
        '-p',
        '',
        '--output-format',
        'stream-json',
        '--input-format',
        'stream-json',
        '--permission-prompt-tool',
        'stdio',
        '--verbose',
        '--include-partial-messages',
    ]
    assert build_command_args('abc', 'plan')[-2:] == ['--permission-mode', 'plan']


def test_candidates_sorted_newest_first(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    nvm = tmp_path / 'nvm'
    native = tmp_path / 'native'
    for name in ('v18.2.0', 'v20.1.0', 'v9.0.0'):
        (nvm / name).mkdir(parents=True)
    for name in ('1.0.3', 'junk', '2.0.14'):
        (native / name).mkdir(parents=True)
    monkeypatch.setattr(interactive, 'NVM_VERSIONS_DIR', nvm)
    monkeypatch.setattr(interactive, 'NATIVE_VERSIONS_DIR', native)
    monkeypatch.setattr(interactive, 'FIXED_LOCATIONS', ())

    override = tmp_path / 'custom' / 'claude'
    assert candidate_binaries(override) == [
        override,
        nvm / 'v20.1.0' / 'bin' / 'claude',
        nvm / 'v18.2.0' / 'bin' / 'claude',
        nvm / 'v9.0.0' / 'bin' / 'claude',
        native / '2.0.14',
        native / '1.0.3',
        native / 'junk',
    ]


def test_override_binary_wins(service: InteractiveSessionService, fake_cli: Path):
    assert service.find_claude_binary() == fake_cli


@pytest.fixture
def no_binary(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(interactive, 'candidate_binaries', lambda override: [tmp_path / 'missing' / 'claude'])
    monkeypatch.setenv('PATH', str(tmp_path / 'empty-path'))


@pytest.mark.usefixtures('no_binary')
def test_missing_binary_raises(settings: MonitorSettings):
    with pytest.raises(ClaudeBinaryNotFoundError):
        InteractiveSessionService(settings).find_claude_binary()


@pytest.mark.usefixtures('no_binary')
@pytest.mark.asyncio
async def test_missing_binary_yields_error_event(settings: MonitorSettings, work_dir: Path):
    service = InteractiveSessionService(settings)
    events = await service.connect(SESSION_ID, work_dir)
    remaining = await _rest(events)
    assert len(remaining) == 1
    assert isinstance(remaining[0], ErrorEvent)
    assert not service.is_connected


# ==============================================================================
# Connection lifecycle
# ==============================================================================


@pytest.mark.asyncio
async def test_commands_require_connection(service: InteractiveSessionService):
    with pytest.raises(NotConnectedError):
        await service.send_user_message('hi')
    with pytest.raises(NotConnectedError):
        await service.send_approval('req', 'Bash', {})
    with pytest.raises(NotConnectedError):
        await service.send_rejection('req')


@pytest.mark.asyncio
async def test_disconnect_when_idle_is_noop(service: InteractiveSessionService):
    await service.disconnect()
    await service.disconnect()
    assert service.pid is None


@pytest.mark.asyncio
async def test_approval_round_trip(service: InteractiveSessionService, fake_cli: Path, work_dir: Path):
    events = await service.connect(SESSION_ID, work_dir, permission_mode='plan')
    try:
        connected, _ = await _until(events, Connected)
        assert connected.session_id == SESSION_ID
        assert connected.model == 'fake-model'
        assert service.is_connected
        assert service.pid is not None

        await service.send_user_message('hi')
        request, _ = await _until(events, PermissionRequest)
        assert request.tool_name == 'Bash'
        assert request.input == {'command': 'echo hi'}
        assert service.pending_request is not None

        await service.send_approval(request.request_id, request.tool_name, request.input)
        assert service.pending_request is None

        result, seen = await _until(events, TurnResult)
        assert StreamText(text='allow') in seen
        completes = [e for e in seen if isinstance(e, MessageComplete)]
        assert [c.source for c in completes] == ['stream', 'assistant']
        assert result.duration_ms == 42
    finally:
        await service.disconnect()

    remaining = await _rest(events)
    assert isinstance(remaining[-1], Disconnected)
    assert not any(isinstance(e, ErrorEvent) for e in remaining)
    assert not service.is_connected

    recorded = json.loads((fake_cli.parent / 'args.json').read_text())
    assert recorded['args'] == build_command_args(SESSION_ID, 'plan')
    assert Path(recorded['cwd']).resolve() == work_dir.resolve()

    user, response = _stdin_frames(fake_cli)
    assert user['message'] == {'role': 'user', 'content': 'hi'}
    assert user['session_id'] == SESSION_ID
    assert response['response']['request_id'] == 'req-1'
    assert response['response']['response'] == {'behavior': 'allow', 'updatedInput': {'command': 'echo hi'}}


@pytest.mark.asyncio
async def test_rejection_round_trip(service: InteractiveSessionService, fake_cli: Path, work_dir: Path):
    events = await service.connect(SESSION_ID, work_dir)
    try:
        await _until(events, Connected)
        await service.send_user_message('rm')
        request, _ = await _until(events, PermissionRequest)
        await service.send_rejection(request.request_id, 'not today')
        _, seen = await _until(events, TurnResult)
        assert StreamText(text='deny') in seen
    finally:
        await service.disconnect()
        await service.disconnect()

    response = _stdin_frames(fake_cli)[-1]
    assert response['response']['response'] == {'behavior': 'deny', 'message': 'not today'}


@pytest.mark.asyncio
async def test_answer_question_merges_answers(service: InteractiveSessionService, fake_cli: Path, work_dir: Path):
    events = await service.connect(SESSION_ID, work_dir)
    try:
        await _until(events, Connected)
        await service.send_user_message('ask')
        request, _ = await _until(events, PermissionRequest)
        questions = {'questions': [{'question': 'Which cache?', 'options': [{'label': 'Redis'}]}]}
        await service.answer_question(request.request_id, questions, {'Which cache?': 'Redis'})
        await _until(events, TurnResult)
    finally:
        await service.disconnect()

    updated = _stdin_frames(fake_cli)[-1]['response']['response']['updatedInput']
    assert updated == {**questions, 'answers': {'Which cache?': 'Redis'}}


@pytest.mark.asyncio
async def test_unexpected_exit_reports_error(service: InteractiveSessionService, work_dir: Path):
    events = await service.connect(SESSION_ID, work_dir)
    await _until(events, Connected)
    await service.send_user_message('crash')

    remaining = await _rest(events)
    assert isinstance(remaining[0], ErrorEvent)
    assert 'code 3' in remaining[0].message
    assert remaining[-1] == Disconnected(exit_code=3)
    assert not service.is_connected
    assert service.pid is None

    with pytest.raises(NotConnectedError):
        await service.send_user_message('again')
    await service.disconnect()


@pytest.mark.asyncio
async def test_exit_mid_turn_discards_pending_request(service: InteractiveSessionService, work_dir: Path):
    events = await service.connect(SESSION_ID, work_dir)
    await _until(events, Connected)
    await service.send_user_message('crash mid turn')

    request, seen = await _until(events, PermissionRequest)
    assert request.request_id == 'req-2'
    assert StreamText(text='partial') in seen

    remaining = await _rest(events)
    assert remaining[-1] == Disconnected(exit_code=3)
    assert service.pending_request is None
    assert service.pid is None
    assert not service.is_connected

    with pytest.raises(NotConnectedError):
        await service.send_approval('req-2', 'Bash', {'command': 'ls'})


@pytest.mark.asyncio
async def test_reconnect_replaces_process(service: InteractiveSessionService, work_dir: Path):
    first = await service.connect(SESSION_ID, work_dir)
    await _until(first, Connected)
    first_pid = service.pid

    second = await service.connect(SESSION_ID, work_dir)
    try:
        assert isinstance((await _rest(first))[-1], Disconnected)
        await _until(second, Connected)
        assert service.pid != first_pid
    finally:
        await service.disconnect()
