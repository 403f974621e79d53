"""Tests for the session tail service."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from session_monitor.services import reader
from session_monitor.services.tail import SessionTailService
from tests.records import user_record, write_jsonl


@pytest.fixture
def log(tmp_path: Path) -> Path:
    return write_jsonl(tmp_path / 'session.jsonl', [user_record(f'old {i}') for i in range(3)])


def _start_sync(service: SessionTailService, path: Path, offset: int) -> None:
    """Point the service at a file without starting the follow task."""
    service.path = path
    service.offset = offset


@pytest.mark.parametrize('chunk_size', [1, 10, 100, 64 * 1024])
def test_appended_lines_read_exactly_once(log: Path, chunk_size: int):
    _, offset = reader.read_snapshot(log)
    service = SessionTailService(chunk_size=chunk_size)
    _start_sync(service, log, offset)

    write_jsonl(log, [user_record(f'new {i}') for i in range(5)], mode='a')

    assert [m.text for m in service.read_new_lines()] == [f'new {i}' for i in range(5)]
    assert service.offset == log.stat().st_size
    assert service.read_new_lines() == []
    assert service.messages_emitted == 5


def test_partial_line_waits_for_newline(log: Path):
    service = SessionTailService()
    _start_sync(service, log, log.stat().st_size)

    line = json.dumps(user_record('split'))
    with log.open('a') as f:
        f.write(line[:20])
    assert service.read_new_lines() == []
    consumed = service.offset

    with log.open('a') as f:
        f.write(line[20:] + '\n')
    assert [m.text for m in service.read_new_lines()] == ['split']
    assert consumed < service.offset == log.stat().st_size


def test_truncation_restarts_at_zero(log: Path):
    service = SessionTailService()
    _start_sync(service, log, log.stat().st_size)

    write_jsonl(log, [user_record('fresh')])

    assert [m.text for m in service.read_new_lines()] == ['fresh']
    assert service.offset == log.stat().st_size


def test_malformed_lines_counted(log: Path):
    service = SessionTailService()
    _start_sync(service, log, log.stat().st_size)
    with log.open('a') as f:
        f.write('{broken\n\n' + json.dumps(user_record('ok')) + '\n')

    assert [m.text for m in service.read_new_lines()] == ['ok']
    assert service.parse_failures == 1
    info = service.diagnostic_info()
    assert info.parse_failures == 1
    assert info.offset == log.stat().st_size
    assert not info.is_tailing


def test_stop_when_idle_is_safe():
    service = SessionTailService()
    service.stop_tailing()
    service.stop_tailing()
    assert not service.is_tailing


@pytest.mark.asyncio
async def test_start_tailing_emits_appends_and_ends_on_stop(log: Path):
    service = SessionTailService(debounce_ms=10)
    messages = service.start_tailing(log)
    assert service.is_tailing

    write_jsonl(log, [user_record('live 1'), user_record('live 2')], mode='a')

    received = [await asyncio.wait_for(anext(messages), 5), await asyncio.wait_for(anext(messages), 5)]
    assert [m.text for m in received] == ['live 1', 'live 2']

    service.stop_tailing()
    service.stop_tailing()
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(anext(messages), 5)


@pytest.mark.asyncio
async def test_from_offset_replays_unread_bytes(log: Path):
    service = SessionTailService(debounce_ms=10)
    messages = service.start_tailing(log, from_offset=0)
    first = await asyncio.wait_for(anext(messages), 5)
    assert first.text == 'old 0'
    service.stop_tailing()


@pytest.mark.asyncio
async def test_new_tail_ends_previous_iterator(log: Path, tmp_path: Path):
    other = write_jsonl(tmp_path / 'other.jsonl', [])
    service = SessionTailService(debounce_ms=10)
    first = service.start_tailing(log)
    second = service.start_tailing(other)

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(anext(first), 5)

    write_jsonl(other, [user_record('other')], mode='a')
    assert (await asyncio.wait_for(anext(second), 5)).text == 'other'
    assert service.path == other
    service.stop_tailing()
