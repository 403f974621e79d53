"""
Path encoding utilities for Claude Code session logs.

Claude Code names each workspace directory under ~/.claude/projects/ by
replacing path separators (and '.', ' ', '~') with '-':

    /Users/dev/Foo  ->  -Users-dev-Foo

WARNING: The encoding is LOSSY. demangle_workspace_path() turns every '-' back into
a separator, so '/Users/dev/my-app' comes back as '/Users/dev/my/app'.
When an exact path matters, read the `cwd` field from the session records.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath

__all__ = [
    'SENTINEL',
    'demangle_workspace_path',
    'is_uuid',
    'project_name',
]

SENTINEL = '-'

_UUID_RE = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')


def demangle_workspace_path(mangled: str) -> str:
    """
    Demangle an encoded workspace directory name back to an absolute path.

    A single trailing sentinel (left by paths ending in a special character)
    is dropped before decoding.

    Examples:
        >>> demangle_workspace_path('-Users-dev-Foo')
        '/Users/dev/Foo'

        >>> demangle_workspace_path('-Users-dev-Foo-')
        '/Users/dev/Foo'
    """
    cleaned = mangled[:-1] if mangled.endswith(SENTINEL) else mangled
    if not cleaned.startswith(SENTINEL):
        return cleaned
    return '/' + cleaned[1:].replace(SENTINEL, '/')


def project_name(workspace_path: str) -> str:
    """Last path component of a workspace path."""
    return PurePosixPath(workspace_path).name or workspace_path


def is_uuid(value: str) -> bool:
    """True for the canonical 8-4-4-4-12 hex shape (any version, any case)."""
    return _UUID_RE.match(value) is not None
