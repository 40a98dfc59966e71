"""
Locate the history file and load the optional JSON configuration.

Discovery
- History file: explicit override (``--file`` or the config's ``histfile``), else
  ``$HISTFILE``, else ``$XDG_CONFIG_HOME/zsh/histfile``, else
  ``$HOME/.config/zsh/histfile``.
- Config file: ``$XDG_CONFIG_HOME/clean-history/config.json``, falling back to
  ``$HOME/.config`` the same way.

Every lookup takes the environment as a mapping, so nothing here reads
``os.environ`` on its own.

Config format::

    {
      "histfile": "~/.config/zsh/histfile",
      "blacklist": ["ls", "clear"],
      "min_char_limit": 3,
      "max_char_limit": 400
    }

Members that are missing or of the wrong type are ignored.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from rich.markup import escape

from histfilter import FilterConfig, _console_print

HISTFILE_RELATIVE_PATH = Path("zsh/histfile")
CONFIG_RELATIVE_PATH = Path("clean-history/config.json")


class HistoryPathError(Exception):
    """Raised when no history file location can be derived from the environment."""


@dataclass
class Config:
    histfile: Path | None = None
    filters: FilterConfig = field(default_factory=FilterConfig)


def config_home(env: Mapping[str, str]) -> Path | None:
    """$XDG_CONFIG_HOME, or $HOME/.config, or None if neither is set."""
    if xdg := env.get("XDG_CONFIG_HOME"):
        return Path(xdg)
    _console_print("[context]No XDG_CONFIG_HOME environment variable set, falling back to $HOME/.config[/context]")
    if home := env.get("HOME"):
        return Path(home) / ".config"
    _console_print("[error]No HOME environment variable set[/error]")
    return None


def get_histfile_path(env: Mapping[str, str], override: Path | str | None = None) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    if histfile := env.get("HISTFILE"):
        return Path(histfile).expanduser().resolve()
    base = config_home(env)
    if base is None:
        raise HistoryPathError("Set HISTFILE, XDG_CONFIG_HOME or HOME to locate the history file")
    return (base / HISTFILE_RELATIVE_PATH).expanduser().resolve()


def get_config_path(env: Mapping[str, str]) -> Path | None:
    base = config_home(env)
    if base is None:
        return None
    return base / CONFIG_RELATIVE_PATH


def _parse_char_limit(value: Any) -> int | None:
    # bool is an int subclass; JSON true/false is not a limit
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def parse_config(obj: Any) -> Config:
    """Builds a `Config` from decoded JSON, silently dropping malformed members."""
    if not isinstance(obj, dict):
        return Config()

    histfile = obj.get("histfile")
    blacklist = obj.get("blacklist")
    if isinstance(blacklist, list):
        blacklist_entries = frozenset(v for v in blacklist if isinstance(v, str))
    else:
        blacklist_entries = frozenset()

    return Config(
        histfile=Path(histfile).expanduser() if isinstance(histfile, str) and histfile else None,
        filters=FilterConfig(
            blacklist=blacklist_entries,
            min_char_limit=_parse_char_limit(obj.get("min_char_limit")),
            max_char_limit=_parse_char_limit(obj.get("max_char_limit")),
        ),
    )


def load_config(path: Path | None) -> Config:
    """Reads the config file; a missing or broken file means no extra filtering."""
    if path is None or not path.exists():
        return Config()
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        _console_print(f"[warning]Ignoring config '{escape(str(path))}': {escape(str(e))}[/warning]")
        return Config()
    if not isinstance(obj, dict):
        _console_print(f"[warning]Ignoring config '{escape(str(path))}': top level is not an object[/warning]")
        return Config()
    return parse_config(obj)
