"""
Bounded-cost reads over a single session JSONL file.

    tail(path, n)      backward 8 KiB chunks until n lines or start of file
    head(path, n)      forward 4 KiB chunks until n lines or end of file
    line_count(path)   newline byte scan, no parsing
    read_all(path)     full read + parse (open session only, never list-wide)
    read_snapshot(path) read_all plus the byte offset of the last complete line
    last_modified(path), file_size(path)

Every function returns an empty result or None on OSError (missing file,
permission denied). Whether absence matters is the caller's decision.

All functions block; async callers run them via asyncio.to_thread().
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from session_monitor.schemas.session import ParsedMessage
from session_monitor.services.parser import parse_line, parse_lines

__all__ = [
    'HEAD_CHUNK_SIZE',
    'TAIL_CHUNK_SIZE',
    'file_size',
    'head',
    'last_modified',
    'line_count',
    'read_all',
    'read_head_lines',
    'read_snapshot',
    'read_tail_lines',
    'tail',
]

logger = logging.getLogger(__name__)

TAIL_CHUNK_SIZE = 8192
HEAD_CHUNK_SIZE = 4096
SCAN_CHUNK_SIZE = 1 << 20


# ==============================================================================
# Raw Line Reads
# ==============================================================================


def read_tail_lines(path: Path, count: int, chunk_size: int = TAIL_CHUNK_SIZE) -> list[bytes]:
    """
    Last `count` non-blank lines, oldest first, reading backward in chunks.

    Raises:
        OSError: If the file cannot be opened or read
    """
    if count <= 0:
        return []

    lines: list[bytes] = []
    remainder = b''

    with path.open('rb') as f:
        position = f.seek(0, 2)
        while len(lines) < count and position > 0:
            read_size = min(chunk_size, position)
            position -= read_size
            f.seek(position)
            combined = f.read(read_size) + remainder
            parts = combined.split(b'\n')
            # The first part may be the end of a line that continues in the previous chunk
            remainder = parts.pop(0)
            for part in reversed(parts):
                stripped = part.strip()
                if not stripped:
                    continue
                lines.append(stripped)
                if len(lines) >= count:
                    break

    if len(lines) < count and remainder.strip():
        lines.append(remainder.strip())

    lines.reverse()
    return lines[-count:]


def read_head_lines(path: Path, count: int, chunk_size: int = HEAD_CHUNK_SIZE) -> list[bytes]:
    """
    First `count` non-blank lines, reading forward in chunks.

    Raises:
        OSError: If the file cannot be opened or read
    """
    if count <= 0:
        return []

    lines: list[bytes] = []
    remainder = b''

    with path.open('rb') as f:
        while len(lines) < count:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            parts = (remainder + chunk).split(b'\n')
            remainder = parts.pop()
            for part in parts:
                stripped = part.strip()
                if not stripped:
                    continue
                lines.append(stripped)
                if len(lines) >= count:
                    break

    if len(lines) < count and remainder.strip():
        lines.append(remainder.strip())

    return lines[:count]


# ==============================================================================
# Parsed Reads
# ==============================================================================


def tail(path: Path, count: int = 40) -> list[ParsedMessage]:
    """Parse the last `count` lines. Unparseable lines are dropped after selection."""
    try:
        raw = read_tail_lines(path, count)
    except OSError as e:
        logger.debug(f'tail({path}) failed: {e}')
        return []
    return [msg for msg in map(parse_line, raw) if msg is not None]


def head(path: Path, count: int = 5) -> list[ParsedMessage]:
    """Parse the first `count` lines."""
    try:
        raw = read_head_lines(path, count)
    except OSError as e:
        logger.debug(f'head({path}) failed: {e}')
        return []
    return [msg for msg in map(parse_line, raw) if msg is not None]


def read_all(path: Path) -> list[ParsedMessage]:
    """Parse every line of the file."""
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.debug(f'read_all({path}) failed: {e}')
        return []
    messages, failures = parse_lines(data.split(b'\n'))
    if failures:
        logger.debug(f'read_all({path.name}): skipped {failures} unparseable lines')
    return messages


def read_snapshot(path: Path) -> tuple[list[ParsedMessage], int]:
    """
    Parse every complete line and report the byte offset just past the last one.

    A trailing line without a newline is left out of both, so a tail started
    at the returned offset picks it up once it is finished.
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        logger.debug(f'read_snapshot({path}) failed: {e}')
        return [], 0
    consumed = data.rfind(b'\n') + 1
    messages, failures = parse_lines(data[:consumed].split(b'\n'))
    if failures:
        logger.debug(f'read_snapshot({path.name}): skipped {failures} unparseable lines')
    return messages, consumed


def line_count(path: Path) -> int:
    """
    Count newline bytes, plus one for a final unterminated line.

    Reads in 1 MiB chunks so large logs never load fully into memory.
    """
    count = 0
    last_byte = b''
    try:
        with path.open('rb') as f:
            while chunk := f.read(SCAN_CHUNK_SIZE):
                count += chunk.count(b'\n')
                last_byte = chunk[-1:]
    except OSError:
        return 0
    if last_byte and last_byte != b'\n':
        count += 1
    return count


# ==============================================================================
# File Attributes
# ==============================================================================


def last_modified(path: Path) -> datetime | None:
    """File mtime as an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, UTC)
    except OSError:
        return None


def file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
