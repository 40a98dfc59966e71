#!/usr/bin/env python3
"""
histclean.py - Deduplicate a shell history file in place

Removes repeated lines from the history file, keeping the first occurrence of
every command in its original position, and optionally drops blacklisted,
too-short or too-long commands. The rewrite is crash-safe: the original file is
moved to a sibling ``<name>.tmp`` before the new content is written, and moved
back if the write fails.

Discovery
---------
  1. ``--file PATH``
  2. ``histfile`` from the config file
  3. ``$HISTFILE``
  4. ``$XDG_CONFIG_HOME/zsh/histfile`` (or ``$HOME/.config/zsh/histfile``)

Config is read from ``$XDG_CONFIG_HOME/clean-history/config.json`` unless
``--config`` is given.

Modes
-----
  --dry-run   show what would be removed, touch nothing
  --review    approve removals interactively before writing
  --daemon    repeat every ``--interval`` seconds

Exit status
-----------
  0  history rewritten (or left unchanged on purpose)
  1  read, backup or write failed; the original file is intact
  2  unrecoverable: the original content only exists in the printed backup file
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path
from typing import Callable, Mapping

from rich.console import Console
from rich.markup import escape

from histconfig import HistoryPathError, get_config_path, get_histfile_path, load_config
from histfilter import (
    CUSTOM_THEME,
    FilterResult,
    Status,
    UnrecoverableError,
    _console_print,
    filter_history,
)
from histreview import render_removals, review_removals

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNRECOVERABLE = 2

DEFAULT_INTERVAL = 300.0

stdout_console = Console(theme=CUSTOM_THEME, soft_wrap=True)

FAILURE_MESSAGES = {
    Status.READ_FAILED: "Could not read the history file; nothing to filter.",
    Status.NO_WRITABLE_BACKUP: "Could not create a backup; history file left untouched.",
    Status.WRITE_FAILED: "Could not write the filtered history; original restored.",
}


def report(result: FilterResult, dry_run: bool = False) -> int:
    """→ Turns a FilterResult into console output and an exit status"""
    path_str = escape(str(result.history_path))

    if not result.ok:
        _console_print(f"[error]{FAILURE_MESSAGES[result.status]} ({path_str})[/error]")
        return EXIT_FAILED

    if dry_run:
        if result.removals:
            _console_print(render_removals(result.removals, result.lines_before))
        else:
            _console_print("[success]No entries needed cleaning.[/success]")
        return EXIT_OK

    if result.status is Status.UNCHANGED:
        return EXIT_OK

    if result.status is Status.CLEANUP_FAILED:
        _console_print(
            f"[warning]Stale backup left at '{escape(str(result.backup_path))}'; remove it by hand.[/warning]"
        )

    stdout_console.print(
        f"[success]Cleaned history: removed {result.removed_count} of {result.lines_before} lines "
        f"in {path_str}[/success]"
    )
    return EXIT_OK


def run_daemon(
    tick: Callable[[], int],
    interval: float,
    iterations: int | None = None,
    sleep: Callable[[float], None] | None = None,
) -> int:
    """Runs `tick` back to back with `interval` seconds in between.

    Failed ticks are reported by `tick` itself and do not stop the loop.
    `UnrecoverableError` is not caught here.
    """
    sleep = sleep or time.sleep
    status = EXIT_OK
    count = 0
    while iterations is None or count < iterations:
        if count:
            sleep(interval)
        status = tick()
        count += 1
    return status


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Deduplicate a shell history file in place, safely",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    ap.add_argument("-f", "--file", metavar="PATH", help="History file (overrides config and environment)")
    ap.add_argument("-c", "--config", metavar="PATH", type=Path, help="JSON config file")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Show what would be removed without writing")
    mode.add_argument("--review", action="store_true", help="Approve removals interactively before writing")
    ap.add_argument("--daemon", action="store_true", help="Keep running, filtering every --interval seconds")
    ap.add_argument(
        "--interval",
        metavar="SECONDS",
        type=float,
        default=DEFAULT_INTERVAL,
        help=f"Seconds between daemon runs (default: {DEFAULT_INTERVAL:g})",
    )
    ap.add_argument("--iterations", metavar="N", type=int, help="Stop the daemon after N runs")
    return ap


def main(argv: list[str] | None = None, env: Mapping[str, str] | None = None) -> int:
    """→ Main: resolves paths and config, then filters once or in a loop"""
    args = build_parser().parse_args(argv)
    env = os.environ if env is None else env

    if args.daemon and args.review:
        _console_print("[error]--review needs a terminal and cannot be combined with --daemon[/error]")
        return EXIT_FAILED

    if args.iterations is not None and not args.daemon:
        _console_print("[error]--iterations only applies together with --daemon[/error]")
        return EXIT_FAILED

    config_path = args.config.expanduser() if args.config else get_config_path(env)
    config = load_config(config_path)

    try:
        history_path = get_histfile_path(env, args.file or config.histfile)
    except HistoryPathError as e:
        _console_print(f"[error]{escape(str(e))}[/error]")
        return EXIT_FAILED

    def tick() -> int:
        result = filter_history(
            history_path,
            config.filters,
            dry_run=args.dry_run,
            review=review_removals if args.review else None,
        )
        return report(result, dry_run=args.dry_run)

    try:
        if args.daemon:
            _console_print(f"[info]Filtering '{escape(str(history_path))}' every {args.interval:g}s[/info]")
            return run_daemon(tick, args.interval, args.iterations)
        return tick()
    except UnrecoverableError as e:
        _console_print(f"[error]Aborting. Recover the history manually from '{escape(str(e.backup_path))}'[/error]")
        sys.exit(EXIT_UNRECOVERABLE)


if __name__ == "__main__":
    sys.exit(main())
