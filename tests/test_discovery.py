"""Tests for session discovery: status rules, caching, sorting and projects."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from session_monitor.config import MonitorSettings
from session_monitor.schemas.session import SessionSummary
from session_monitor.services import reader
from session_monitor.services.claude_process import ClaudeProcess
from session_monitor.services.discovery import SessionDiscoveryService, build_projects, compute_status, sort_sessions
from tests.records import WORKSPACE_PATH, assistant_record, set_age, tool_use, user_record, write_jsonl

SESSION_A = '11111111-1111-4111-8111-111111111111'
SESSION_B = '22222222-2222-4222-8222-222222222222'
SESSION_C = '33333333-3333-4333-8333-333333333333'


class FakeProcesses:
    """Stands in for the psutil process listing."""

    def __init__(self, *session_ids: str) -> None:
        self.processes = [ClaudeProcess(pid=1000 + i, session_id=sid) for i, sid in enumerate(session_ids)]

    def __call__(self) -> list[ClaudeProcess]:
        return list(self.processes)


def _service(settings: MonitorSettings, processes: FakeProcesses) -> SessionDiscoveryService:
    return SessionDiscoveryService(settings, list_processes=processes, version_lookup=lambda pid: None)


def _write_session(workspace_dir: Path, session_id: str, *records: dict) -> Path:
    records = records or (
        user_record('hi', slug='brave-otter', gitBranch='main', version='2.0.1'),
        assistant_record([{'type': 'text', 'text': 'hello'}]),
        user_record('thanks'),
    )
    return write_jsonl(workspace_dir / f'{session_id}.jsonl', records)


# ==============================================================================
# Pure rules
# ==============================================================================


@pytest.mark.parametrize(
    ('pid_alive', 'has_pending', 'age', 'expected'),
    [
        (False, True, 1, 'stale'),
        (False, False, 1, 'stale'),
        (True, True, 1000, 'waiting'),
        (True, False, 5, 'active'),
        (True, False, 29.9, 'active'),
        (True, False, 30, 'idle'),
        (True, False, 3600, 'idle'),
    ],
)
def test_compute_status(pid_alive: bool, has_pending: bool, age: float, expected: str):
    assert compute_status(pid_alive, has_pending, age) == expected


def _summary(session_id: str, workspace: str, minutes_ago: int, status: str = 'idle') -> SessionSummary:
    return SessionSummary(
        session_id=session_id,
        workspace_path=workspace,
        project_name=Path(workspace).name,
        jsonl_path=f'/x/{workspace.replace("/", "-")}/{session_id}.jsonl',
        status=status,
        last_activity=datetime(2025, 1, 1, tzinfo=UTC) - timedelta(minutes=minutes_ago),
    )


def test_sort_by_activity_then_id():
    sessions = [_summary(SESSION_B, '/a', 5), _summary(SESSION_C, '/a', 1), _summary(SESSION_A, '/a', 5)]
    assert [s.session_id for s in sort_sessions(sessions)] == [SESSION_C, SESSION_A, SESSION_B]


def test_build_projects_sorting():
    sessions = [
        _summary(SESSION_A, '/w/zeta', 1, 'active'),
        _summary(SESSION_B, '/w/alpha', 1, 'idle'),
        _summary(SESSION_C, '/w/Beta', 1, 'idle'),
    ]
    projects = build_projects(sessions)
    assert [p.name for p in projects] == ['zeta', 'alpha', 'Beta']
    assert projects[0].active_session_count == 1
    assert projects[0].mangled_path == '-w-zeta'


def test_build_projects_counts_waiting_as_active():
    sessions = [_summary(SESSION_A, '/w/p', 1, 'waiting'), _summary(SESSION_B, '/w/p', 2, 'stale')]
    (project,) = build_projects(sessions)
    assert project.session_count == 2
    assert project.active_session_count == 1


# ==============================================================================
# Scans
# ==============================================================================


def test_discovers_session_with_live_process(settings: MonitorSettings, workspace_dir: Path):
    _write_session(workspace_dir, SESSION_A)

    (session,) = _service(settings, FakeProcesses(SESSION_A)).discover_all()

    assert session.session_id == SESSION_A
    assert session.workspace_path == WORKSPACE_PATH
    assert session.project_name == 'Foo'
    assert session.status == 'active'
    assert session.pid == 1000
    assert session.message_count == 3
    assert session.slug == 'brave-otter'
    assert session.git_branch == 'main'
    assert session.cli_version == '2.0.1'
    assert session.model == 'claude-sonnet-4'
    assert [p.text for p in session.last_messages] == ['hi', 'hello', 'thanks']
    assert session.pending_interaction is None


def test_without_process_session_is_stale(settings: MonitorSettings, workspace_dir: Path):
    _write_session(workspace_dir, SESSION_A)
    (session,) = _service(settings, FakeProcesses()).discover_all()
    assert session.status == 'stale'
    assert session.pid is None


def test_old_activity_is_idle(settings: MonitorSettings, workspace_dir: Path):
    set_age(_write_session(workspace_dir, SESSION_A), 120)
    (session,) = _service(settings, FakeProcesses(SESSION_A)).discover_all()
    assert session.status == 'idle'


def test_pending_interaction_means_waiting(settings: MonitorSettings, workspace_dir: Path):
    path = _write_session(workspace_dir, SESSION_A, assistant_record([tool_use('t1', 'Bash', {'command': 'rm -rf'})]))
    set_age(path, 600)
    (session,) = _service(settings, FakeProcesses(SESSION_A)).discover_all()
    assert session.status == 'waiting'
    assert session.pending_interaction is not None
    assert session.pending_interaction.tool_use_id == 't1'


def test_sessions_past_staleness_horizon_are_omitted(settings: MonitorSettings, workspace_dir: Path):
    set_age(_write_session(workspace_dir, SESSION_A), 15 * 86400)
    _write_session(workspace_dir, SESSION_B)
    sessions = _service(settings, FakeProcesses()).discover_all()
    assert [s.session_id for s in sessions] == [SESSION_B]


def test_nested_layout_and_subagent_count(settings: MonitorSettings, workspace_dir: Path):
    nested = workspace_dir / SESSION_A
    _write_session(nested, SESSION_A)
    write_jsonl(nested / 'subagents' / 'agent-a1.jsonl', [user_record('task one')])
    write_jsonl(nested / 'subagents' / 'agent-a2.jsonl', [user_record('task two')])

    (session,) = _service(settings, FakeProcesses()).discover_all()
    assert session.session_id == SESSION_A
    assert session.subagent_count == 2


def test_ignores_non_uuid_files_and_hidden_dirs(settings: MonitorSettings, workspace_dir: Path, claude_dir: Path):
    write_jsonl(workspace_dir / 'notes.jsonl', [user_record('x')])
    _write_session(claude_dir / 'projects' / '.hidden', SESSION_B)
    _write_session(workspace_dir, SESSION_A)
    sessions = _service(settings, FakeProcesses()).discover_all()
    assert [s.session_id for s in sessions] == [SESSION_A]


def test_scan_of_missing_projects_dir(tmp_path: Path):
    settings = MonitorSettings(CLAUDE_DIR=tmp_path / 'nowhere')
    assert _service(settings, FakeProcesses()).discover_all() == []


def test_sorted_most_recent_first(settings: MonitorSettings, workspace_dir: Path):
    set_age(_write_session(workspace_dir, SESSION_A), 300)
    set_age(_write_session(workspace_dir, SESSION_B), 10)
    set_age(_write_session(workspace_dir, SESSION_C), 100)
    sessions = _service(settings, FakeProcesses()).discover_all()
    assert [s.session_id for s in sessions] == [SESSION_B, SESSION_C, SESSION_A]


# ==============================================================================
# Cache
# ==============================================================================


def test_cache_hit_skips_reads_but_refreshes_status(
    settings: MonitorSettings, workspace_dir: Path, monkeypatch: pytest.MonkeyPatch
):
    _write_session(workspace_dir, SESSION_A)
    processes = FakeProcesses(SESSION_A)
    service = _service(settings, processes)
    assert service.discover_all()[0].status == 'active'

    tail_calls = []
    original_tail = reader.tail
    monkeypatch.setattr(reader, 'tail', lambda *args: tail_calls.append(args) or original_tail(*args))

    processes.processes = []
    (session,) = service.discover_all()
    assert session.status == 'stale'
    assert session.pid is None
    assert tail_calls == []


def test_cache_miss_after_write(settings: MonitorSettings, workspace_dir: Path):
    path = _write_session(workspace_dir, SESSION_A)
    set_age(path, 60)
    service = _service(settings, FakeProcesses(SESSION_A))
    assert service.discover_all()[0].message_count == 3

    write_jsonl(path, [user_record('more')], mode='a')
    (session,) = service.discover_all()
    assert session.message_count == 4
    assert session.last_messages[-1].text == 'more'


def test_find_session(settings: MonitorSettings, workspace_dir: Path):
    _write_session(workspace_dir, SESSION_A)
    service = _service(settings, FakeProcesses())
    found = service.find_session(SESSION_A)
    assert found is not None
    assert found.workspace_path == WORKSPACE_PATH
    assert service.find_session(SESSION_B) is None
