"""
Settings foundation for claude-session-monitor.

Every entry point (the CLI, an embedding UI, tests) builds its settings
through get_settings(), or reads the lazy module-level proxy.
"""

from __future__ import annotations

import os
import pathlib
from typing import Literal, TypeVar

import lazy_object_proxy
import pydantic_settings

T = TypeVar('T', bound='BaseMonitorSettings')

ENV_FILE_VARIABLE = 'LOAD_ENV_FILE'


class BaseMonitorSettings(pydantic_settings.BaseSettings):
    """Where Claude Code keeps its data, and how loudly to log."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix='SESSION_MONITOR_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='forbid',  # Unknown SESSION_MONITOR_* keys are errors, not no-ops
    )

    APP_NAME: str = 'claude-session-monitor'
    VERSION: str = '0.1.0'
    LOG_LEVEL: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR'] = 'WARNING'

    # ~/.claude; session logs live under projects/, IDE lock files under ide/
    CLAUDE_DIR: pathlib.Path = pathlib.Path.home() / '.claude'

    @property
    def projects_dir(self) -> pathlib.Path:
        return self.CLAUDE_DIR / 'projects'

    @property
    def ide_dir(self) -> pathlib.Path:
        return self.CLAUDE_DIR / 'ide'


def get_settings(settings_class: type[T], env_file: str | None = None) -> T:
    """
    Instantiate a settings class, optionally layering a .env file on top of the environment.

    The file comes from `env_file`, else from the LOAD_ENV_FILE variable. With
    neither, only process environment variables are read.

    Raises:
        FileNotFoundError: If a .env file was named but does not exist
    """
    named = env_file or os.getenv(ENV_FILE_VARIABLE)
    if not named:
        return settings_class()

    path = pathlib.Path(named).resolve()
    if not path.exists():
        raise FileNotFoundError(f'Environment file not found: {path}')
    return settings_class(_env_file=path)


def lazy_settings(settings_class: type[T]) -> T:
    """Proxy that builds the settings on first attribute access, so importing never reads the environment."""
    return lazy_object_proxy.Proxy(lambda: get_settings(settings_class))
