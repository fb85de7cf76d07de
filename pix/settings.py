"""User settings — ~/.config/pix/settings.yaml.

Example::

    env:
      PIX_DEBUG: "true"
    command:
      run:
        cli_opts:
          ssh: true
          progress: plain
      shell:
        cli_opts:
          ssh: true
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

import yaml

from pix.config import ConfigError


COMMANDS = ("run", "shell", "graph", "ls")


@dataclass
class UserSettings:
    env: dict[str, str] = field(default_factory=dict)
    cli_opts: dict[str, dict] = field(default_factory=dict)   # command -> option defaults

    def defaults_for(self, command: str) -> dict:
        return self.cli_opts.get(command, {})


def settings_path() -> str:
    return os.environ.get("PIX_SETTINGS") or os.path.join(
        os.path.expanduser("~"), ".config", "pix", "settings.yaml"
    )


def load_settings(path: str | None = None) -> UserSettings:
    path = path or settings_path()
    if not os.path.isfile(path):
        return UserSettings()

    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: settings must be a mapping")

    env = raw.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(f"{path}: 'env' must be a mapping")

    commands = raw.get("command") or {}
    if not isinstance(commands, dict):
        raise ConfigError(f"{path}: 'command' must be a mapping")
    cli_opts: dict[str, dict] = {}
    for name in COMMANDS:
        command = commands.get(name) or {}
        if not isinstance(command, dict):
            raise ConfigError(f"{path}: 'command.{name}' must be a mapping")
        opts = command.get("cli_opts") or {}
        if not isinstance(opts, dict):
            raise ConfigError(f"{path}: 'command.{name}.cli_opts' must be a mapping")
        cli_opts[name] = {k.replace("-", "_"): v for k, v in opts.items()}

    return UserSettings(
        env={str(k): str(v).lower() if isinstance(v, bool) else str(v) for k, v in env.items()},
        cli_opts=cli_opts,
    )


def apply_env(settings: UserSettings) -> None:
    """Export settings env vars, without overriding the real environment."""
    for key, value in settings.env.items():
        os.environ.setdefault(key, value)
