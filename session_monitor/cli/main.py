#!/usr/bin/env python3
"""
Command-line interface for claude-session-monitor.

Lists, inspects, tails and drives Claude Code sessions from a terminal.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import traceback
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

import typer

from session_monitor.config import MonitorSettings, get_settings
from session_monitor.exceptions import SessionMonitorError
from session_monitor.schemas.control import (
    Connected,
    Disconnected,
    ErrorEvent,
    InteractiveEvent,
    PermissionRequest,
    StreamText,
    ToolUseStart,
    TurnResult,
)
from session_monitor.schemas.session import ParsedMessage, SessionSummary
from session_monitor.services import reader
from session_monitor.services.discovery import SessionDiscoveryService, build_projects
from session_monitor.services.interactive import InteractiveSessionService
from session_monitor.services.parser import truncate
from session_monitor.services.pending import QUESTION_TOOL_NAME
from session_monitor.services.subagents import SubagentLoader
from session_monitor.services.tail import SessionTailService
from session_monitor.store import SessionStore

app = typer.Typer(
    name='claude-monitor',
    help='Monitor and drive running Claude Code sessions',
    add_completion=False,
)

STATUS_COLORS = {
    'waiting': typer.colors.YELLOW,
    'active': typer.colors.GREEN,
    'idle': typer.colors.WHITE,
    'stale': typer.colors.BRIGHT_BLACK,
    'error': typer.colors.RED,
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Debug logging'),
) -> None:
    """Configure logging for every command."""
    config = _settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


# ==============================================================================
# Commands
# ==============================================================================


@app.command('list')
def list_sessions(
    project: str | None = typer.Option(None, '--project', '-p', help='Only sessions whose project name matches'),
    active: bool = typer.Option(False, '--active', '-a', help='Only active and waiting sessions'),
    json_output: bool = typer.Option(False, '--json', help='Print summaries as JSON lines'),
) -> None:
    """List discovered sessions, most recent first."""
    sessions = SessionDiscoveryService(_settings()).discover_all()
    if project:
        sessions = [s for s in sessions if s.project_name.casefold() == project.casefold()]
    if active:
        sessions = [s for s in sessions if s.status in ('active', 'waiting')]

    if json_output:
        for session in sessions:
            typer.echo(session.model_dump_json())
        return

    if not sessions:
        typer.echo('No sessions found.')
        return

    for session in sessions:
        _print_session_line(session)


@app.command()
def projects() -> None:
    """List projects with session counts."""
    sessions = SessionDiscoveryService(_settings()).discover_all()
    for project in build_projects(sessions):
        active = f' ({project.active_session_count} active)' if project.active_session_count else ''
        typer.echo(f'{project.name:<30} {project.session_count:>3} sessions{active}  {project.workspace_path}')


@app.command()
def show(
    session_id: str = typer.Argument(..., help='Session ID (full or prefix)'),
    limit: int = typer.Option(20, '--limit', '-n', help='Number of recent messages to print'),
) -> None:
    """Show a session's summary, pending interaction, subagents and recent messages."""
    config = _settings()
    session = _resolve_session(SessionDiscoveryService(config).discover_all(), session_id)

    _print_session_line(session)
    typer.echo(f'  Log: {session.jsonl_path}')
    typer.echo(f'  Workspace: {session.workspace_path}')
    if session.cli_version:
        typer.echo(f'  CLI version: {session.cli_version}')
    if session.permission_mode:
        typer.echo(f'  Permission mode: {session.permission_mode}')
    typer.echo(f'  Lines: {session.message_count:,}')

    if pending := session.pending_interaction:
        typer.echo()
        typer.secho(f'Waiting on {pending.type}: {pending.tool_name}', fg=typer.colors.YELLOW)
        for question in pending.questions:
            typer.echo(f'  ? {question.question}')
            for option in question.options:
                typer.echo(f'    - {option.label}')
        if pending.plan:
            typer.echo(truncate(pending.plan, 400))

    subagents = SubagentLoader(head_lines=config.HEAD_LINES).load_subagents(
        session.session_id, Path(session.jsonl_path)
    )
    if subagents:
        typer.echo()
        typer.echo(f'Subagents ({len(subagents)}):')
        for agent in subagents:
            mark = '✓' if agent.is_completed else '…'
            typer.echo(f'  {mark} {agent.agent_id[:8]}  {agent.message_count:>4} lines  {agent.task_description}')

    messages = [m for m in reader.read_all(Path(session.jsonl_path)) if m.is_conversational]
    if messages:
        typer.echo()
        for message in messages[-limit:]:
            _print_message(message)


@app.command()
def tail(
    session_id: str = typer.Argument(..., help='Session ID (full or prefix)'),
) -> None:
    """Follow a session log and print new messages until interrupted."""
    session = _resolve_session(SessionDiscoveryService(_settings()).discover_all(), session_id)
    typer.echo(f'Tailing {session.session_id} ({session.project_name}). Ctrl-C to stop.')
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_tail_async(Path(session.jsonl_path)))


async def _tail_async(path: Path) -> None:
    service = SessionTailService()
    try:
        async for message in service.start_tailing(path):
            if message.is_conversational:
                _print_message(message)
    finally:
        service.stop_tailing()


@app.command()
def send(
    session_id: str = typer.Argument(..., help='Session ID (full or prefix)'),
    message: str = typer.Argument(..., help='Message to send'),
    permission_mode: str | None = typer.Option(None, '--permission-mode', help='Passed through to the CLI'),
    approve_all: bool = typer.Option(False, '--approve-all', help='Approve every tool call without asking'),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Print tracebacks on failure'),
) -> None:
    """Resume a session, send one message, and stream the reply until the turn ends."""
    config = _settings()
    session = _resolve_session(SessionDiscoveryService(config).discover_all(), session_id)
    try:
        asyncio.run(_send_async(config, session, message, permission_mode, approve_all))
    except SessionMonitorError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except Exception as e:
        typer.secho(f'Failed to send message: {e}', fg=typer.colors.RED, err=True)
        if verbose:
            traceback.print_exc()
        raise typer.Exit(1)


async def _send_async(
    config: MonitorSettings,
    session: SessionSummary,
    message: str,
    permission_mode: str | None,
    approve_all: bool,
) -> None:
    service = InteractiveSessionService(config)
    work_dir = _working_directory(config, session)

    events = await service.connect(session.session_id, work_dir, permission_mode)
    try:
        if service.is_connected:
            await service.send_user_message(message)
        async for event in events:
            if await _handle_event(service, event, approve_all):
                break
    finally:
        await service.disconnect()
    typer.echo()


def _working_directory(config: MonitorSettings, session: SessionSummary) -> Path:
    """Last recorded cwd of the session, else its demangled workspace, else home."""
    for message in reversed(reader.tail(Path(session.jsonl_path), config.TAIL_LINES)):
        if message.cwd and Path(message.cwd).is_dir():
            return Path(message.cwd)
    workspace = Path(session.workspace_path)
    return workspace if workspace.is_dir() else Path.home()


async def _handle_event(service: InteractiveSessionService, event: InteractiveEvent, approve_all: bool) -> bool:
    """Print one event and answer permission requests. True when the turn is over."""
    match event:
        case Connected(model=model):
            typer.secho(f'Connected ({model or "unknown model"})', fg=typer.colors.GREEN, err=True)
        case StreamText(text=text):
            typer.echo(text, nl=False)
        case ToolUseStart(name=name):
            typer.secho(f'\n[tool] {name}', fg=typer.colors.CYAN)
        case PermissionRequest(request_id=request_id, tool_name=tool_name, input=tool_input, input_json=input_json):
            typer.echo()
            typer.secho(f'Permission requested: {tool_name}', fg=typer.colors.YELLOW)
            typer.echo(input_json)
            if tool_name == QUESTION_TOOL_NAME:
                await service.send_rejection(request_id, 'Questions cannot be answered from this command')
            elif approve_all or typer.confirm('Allow?', default=False):
                await service.send_approval(request_id, tool_name, tool_input)
            else:
                await service.send_rejection(request_id)
        case TurnResult(duration_ms=duration_ms, cost_usd=cost_usd, is_error=is_error):
            cost = f', ${cost_usd:.4f}' if cost_usd is not None else ''
            color = typer.colors.RED if is_error else typer.colors.GREEN
            typer.secho(f'\n[done in {duration_ms / 1000:.1f}s{cost}]', fg=color, err=True)
            return True
        case ErrorEvent(message=error):
            typer.secho(f'\nError: {error}', fg=typer.colors.RED, err=True)
        case Disconnected(exit_code=exit_code):
            typer.secho(f'\nDisconnected (exit code {exit_code})', err=True)
            return True
    return False


@app.command()
def state(
    output: Path | None = typer.Option(None, '--output', '-o', help='Snapshot path (default: STATE_SNAPSHOT_PATH)'),
) -> None:
    """Scan once and write a diagnostic state snapshot as JSON."""
    path = asyncio.run(_state_async(_settings(), output))
    typer.secho(f'✓ State written to {path}', fg=typer.colors.GREEN)


async def _state_async(config: MonitorSettings, output: Path | None) -> Path:
    store = SessionStore(config)
    await store.refresh()
    return store.write_state(output)


# ==============================================================================
# Helpers
# ==============================================================================


def _settings() -> MonitorSettings:
    return get_settings(MonitorSettings)


def _resolve_session(sessions: Sequence[SessionSummary], session_id: str) -> SessionSummary:
    """Match a full id or a unique prefix."""
    matches = [s for s in sessions if s.session_id.startswith(session_id)]
    exact = [s for s in matches if s.session_id == session_id]
    if exact:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        typer.secho(f'Error: Session not found: {session_id}', fg=typer.colors.RED, err=True)
    else:
        typer.secho(f'Error: Ambiguous session prefix {session_id!r} ({len(matches)} matches)', fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def _print_session_line(session: SessionSummary) -> None:
    age = _format_age(session.last_activity)
    status = typer.style(f'{session.status:<8}', fg=STATUS_COLORS[session.status])
    pending = f'  [{session.pending_interaction.tool_name}]' if session.pending_interaction else ''
    title = session.slug or (session.last_messages[-1].text if session.last_messages else '')
    typer.echo(f'{status} {session.session_id[:8]}  {session.project_name:<24} {age:>6}  {truncate(title, 60)}{pending}')


def _print_message(message: ParsedMessage) -> None:
    role = (message.role or message.type).upper()
    color = typer.colors.BLUE if message.role == 'user' else typer.colors.MAGENTA
    typer.secho(f'{role}:', fg=color, bold=True)
    if message.text:
        typer.echo(f'  {truncate(message.text, 500)}')
    for tool_use in message.tool_uses:
        typer.echo(f'  [tool] {tool_use.name}')
    for result in message.tool_results:
        marker = 'error' if result.is_error else 'result'
        typer.echo(f'  [{marker}] {truncate(result.content, 120)}')


def _format_age(when: datetime) -> str:
    seconds = int((datetime.now(UTC) - when).total_seconds())
    if seconds < 60:
        return f'{seconds}s'
    if seconds < 3600:
        return f'{seconds // 60}m'
    if seconds < 86400:
        return f'{seconds // 3600}h'
    return f'{seconds // 86400}d'


if __name__ == '__main__':
    app()
