"""
histfilter.py - Crash-safe deduplication of a shell history file

**How a run works**

A run is a straight pipeline over a single history file:

1.  **Read:** the raw bytes are loaded. A missing or unreadable file is reported and the run stops there; nothing on disk is touched.
2.  **Deduplicate:** the bytes are decoded (malformed sequences become U+FFFD) and split on line feeds only. The first occurrence of every line wins and keeps its position.
3.  **Filter:** optional predicates (blacklisted literals, minimum and maximum length) drop further lines. Every dropped line gets a `Removal` so it can be previewed or reviewed.
4.  **Serialize:** each surviving line is written followed by exactly one line feed.
5.  **Safe write:** the original is renamed to a sibling `<name>.tmp`, the new content is written in its place, and the backup is removed. If the write fails the backup is renamed back.

The only way the backup can outlive a run is a failed cleanup (reported as `Status.CLEANUP_FAILED`) or an `UnrecoverableError`, in which case the backup path is printed so it can be restored by hand.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

# ============================================================================
# CONFIGURATION & CONSTANTS
# ============================================================================

CUSTOM_THEME = Theme({
    "title": "bold #C678DD",
    "reason": "bold #98C379",
    "context": "#5C6370",
    "border": "#4B5263",
    "info": "#61AFEF",
    "success": "#98C379",
    "warning": "#E5C07B",
    "error": "#E06C75",
    "linenumber": "#3A3F4C",
})

console = Console(stderr=True, theme=CUSTOM_THEME, soft_wrap=True)

BACKUP_SUFFIX = ".tmp"
DEFAULT_BACKUP_NAME = "histfile.tmp"

# Type aliases for better readability
FlaggingStrategy = Callable[[list[str], "FilterConfig"], Iterator[tuple[int, str]]]
ReviewCallback = Callable[[list[str], list["Removal"]], "list[Removal] | None"]


@dataclass(frozen=True)
class FilterConfig:
    """Extra predicates applied on top of deduplication"""

    blacklist: frozenset[str] = frozenset()
    min_char_limit: int | None = None
    max_char_limit: int | None = None

    @property
    def is_active(self) -> bool:
        return bool(self.blacklist) or self.min_char_limit is not None or self.max_char_limit is not None


# ============================================================================
# DATA STRUCTURES
# ============================================================================


class Status(Enum):
    """Outcome of one filter run."""

    CLEANED = "cleaned"
    CLEANUP_FAILED = "cleanup-failed"
    UNCHANGED = "unchanged"
    READ_FAILED = "read-failed"
    NO_WRITABLE_BACKUP = "no-writable-backup"
    WRITE_FAILED = "write-failed"

    @property
    def ok(self) -> bool:
        return self in (Status.CLEANED, Status.CLEANUP_FAILED, Status.UNCHANGED)


class UnrecoverableError(Exception):
    """Both the write and the restore of the backup failed.

    The history file is now missing or truncated, and the only copy of the
    original content sits at `backup_path`.
    """

    def __init__(self, history_path: Path, backup_path: Path):
        super().__init__(f"Could not restore '{history_path}'; original content is at '{backup_path}'")
        self.history_path = history_path
        self.backup_path = backup_path


@dataclass
class Removal:
    """A line that will not make it into the rewritten file."""

    index: int
    line: str
    reason: str
    duplicate: bool = False


@dataclass
class FilterResult:
    status: Status
    history_path: Path
    backup_path: Path
    lines_before: int = 0
    lines_after: int = 0
    removals: list[Removal] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status.ok

    @property
    def removed_count(self) -> int:
        return self.lines_before - self.lines_after


# ============================================================================
# PARSING & UTILITIES
# ============================================================================


def _console_print(string="", *args, **kwargs) -> None:
    """→ Safe console printing with fallback"""
    try:
        console.print(string, *args, **kwargs)
    except Exception:
        kwargs_clean = {k: v for k, v in kwargs.items() if k in ["sep", "end", "flush"]}
        print(string, *args, file=sys.stderr, **kwargs_clean)


def read_history_file(file_path: Path) -> bytes | None:
    """→ File I/O: Reads the raw history bytes, returning None on any failure"""
    try:
        return file_path.read_bytes()
    except FileNotFoundError:
        _console_print(f"[error]Error: History file not found at '{escape(str(file_path))}'[/error]")
        return None
    except OSError as e:
        _console_print(f"[error]Error reading file '{escape(str(file_path))}': {escape(repr(e))}[/error]")
        return None


def split_lines(raw: bytes) -> list[str]:
    """→ Decodes lossily and splits on line feeds only; carriage returns stay in the line"""
    text = raw.decode("utf-8", errors="replace")
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def serialize_lines(lines: Iterable[str]) -> bytes:
    """→ Every line is terminated by exactly one line feed, the last one included"""
    return "".join(f"{line}\n" for line in lines).encode("utf-8")


# ============================================================================
# DEDUPLICATION & FLAGGING STRATEGIES
# ============================================================================


def deduplicate_lines(lines: Iterable[str]) -> list[str]:
    """→ Keeps the first occurrence of every line, in first-occurrence order"""
    # dict preserves insertion order
    return list(dict.fromkeys(lines))


def is_blacklisted(line: str, config: FilterConfig) -> bool:
    return line in config.blacklist


def is_too_short(line: str, config: FilterConfig) -> bool:
    return config.min_char_limit is not None and len(line) < config.min_char_limit


def is_too_long(line: str, config: FilterConfig) -> bool:
    return config.max_char_limit is not None and len(line) > config.max_char_limit


def passes_filters(line: str, config: FilterConfig) -> bool:
    """→ A line survives only if no active predicate rejects it"""
    return not (is_blacklisted(line, config) or is_too_short(line, config) or is_too_long(line, config))


def filter_lines(lines: Iterable[str], config: FilterConfig | None = None) -> list[str]:
    """→ Deduplicates, then applies the configured predicates"""
    config = config or FilterConfig()
    return [line for line in deduplicate_lines(lines) if passes_filters(line, config)]


def flag_duplicates(lines: list[str], config: FilterConfig) -> Iterator[tuple[int, str]]:
    """→ Duplicate strategy: Flags every repeat of an earlier line"""
    first_seen: dict[str, int] = {}
    for i, line in enumerate(lines):
        if line in first_seen:
            yield i, f"Duplicate of line {first_seen[line] + 1}"
        else:
            first_seen[line] = i


def flag_blacklisted(lines: list[str], config: FilterConfig) -> Iterator[tuple[int, str]]:
    """→ Individual strategy: Flags lines equal to a blacklist entry"""
    for i, line in enumerate(lines):
        if is_blacklisted(line, config):
            yield i, "Matches a blacklist entry"


def flag_too_short(lines: list[str], config: FilterConfig) -> Iterator[tuple[int, str]]:
    """→ Individual strategy: Flags lines shorter than min_char_limit"""
    for i, line in enumerate(lines):
        if is_too_short(line, config):
            yield i, f"Shorter than {config.min_char_limit} characters"


def flag_too_long(lines: list[str], config: FilterConfig) -> Iterator[tuple[int, str]]:
    """→ Individual strategy: Flags lines longer than max_char_limit"""
    for i, line in enumerate(lines):
        if is_too_long(line, config):
            yield i, f"Longer than {config.max_char_limit} characters"


FLAGGING_STRATEGIES: list[FlaggingStrategy] = [
    flag_duplicates,
    flag_blacklisted,
    flag_too_short,
    flag_too_long,
]


def find_removals(lines: list[str], config: FilterConfig | None = None) -> list[Removal]:
    """→ Explains every line `filter_lines` drops, first matching strategy wins the reason"""
    config = config or FilterConfig()
    reasons: dict[int, str] = {}
    for strategy in FLAGGING_STRATEGIES:
        for index, reason in strategy(lines, config):
            reasons.setdefault(index, reason)
    duplicates = {index for index, _ in flag_duplicates(lines, config)}
    return [
        Removal(index=i, line=lines[i], reason=reasons[i], duplicate=i in duplicates)
        for i in sorted(reasons)
    ]


def apply_removals(lines: list[str], removals: Iterable[Removal]) -> list[str]:
    indices = {r.index for r in removals}
    return [line for i, line in enumerate(lines) if i not in indices]


# ============================================================================
# SAFE WRITER
# ============================================================================


def backup_path_for(history_path: Path) -> Path:
    """→ Sibling `<name>.tmp`, or `histfile.tmp` when the path has no name"""
    if not history_path.name:
        return history_path.parent / DEFAULT_BACKUP_NAME
    return history_path.with_name(history_path.name + BACKUP_SUFFIX)


def _write_bytes(path: Path, data: bytes) -> None:
    with path.open("wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def safe_write_history(history_path: Path, data: bytes) -> Status:
    """Replaces the file at `history_path` with `data` without ever losing the original.

    Returns `Status.CLEANED` on success, `Status.CLEANUP_FAILED` when the new file is
    in place but the backup could not be removed, `Status.NO_WRITABLE_BACKUP` when
    the original could not be moved aside, and `Status.WRITE_FAILED` when the write
    failed and the original was restored. Raises `UnrecoverableError` when the restore
    failed as well.
    """
    backup_path = backup_path_for(history_path)
    history_str = escape(str(history_path))
    backup_str = escape(str(backup_path))

    try:
        os.rename(history_path, backup_path)
    except OSError as e:
        _console_print(
            f"[error]Could not move '{history_str}' to '{backup_str}': {escape(repr(e))}[/error]\n"
            f"[context]History file left untouched.[/context]"
        )
        return Status.NO_WRITABLE_BACKUP

    try:
        _write_bytes(history_path, data)
    except BaseException as write_error:
        # The original now only exists at backup_path, so roll back whatever interrupted the write
        _console_print(f"[error]Error writing to history file '{history_str}': {escape(repr(write_error))}[/error]")
        try:
            os.rename(backup_path, history_path)
        except OSError as restore_error:
            _console_print(f"[error]Could not recover file! {escape(repr(restore_error))}[/error]")
            _console_print(f"[error]Recovery file is located at '{backup_str}'[/error]")
            raise UnrecoverableError(history_path, backup_path) from restore_error
        _console_print(f"[warning]Restored original history from '{backup_str}' to '{history_str}'[/warning]")
        if not isinstance(write_error, OSError):
            raise
        return Status.WRITE_FAILED

    try:
        os.remove(backup_path)
    except OSError as e:
        _console_print(
            f"[warning]Warning: History written to '{history_str}', "
            f"but could not remove backup '{backup_str}': {escape(repr(e))}[/warning]"
        )
        return Status.CLEANUP_FAILED

    return Status.CLEANED


# ============================================================================
# PIPELINE
# ============================================================================


def filter_history(
    history_path: Path,
    config: FilterConfig | None = None,
    *,
    dry_run: bool = False,
    review: ReviewCallback | None = None,
) -> FilterResult:
    """→ Main: Read, deduplicate, filter and safely rewrite one history file"""
    config = config or FilterConfig()
    result = FilterResult(
        status=Status.UNCHANGED,
        history_path=history_path,
        backup_path=backup_path_for(history_path),
    )

    raw = read_history_file(history_path)
    if raw is None:
        result.status = Status.READ_FAILED
        return result

    lines = split_lines(raw)
    removals = find_removals(lines, config)
    result.lines_before = len(lines)
    result.lines_after = len(lines) - len(removals)
    result.removals = removals

    if dry_run:
        return result

    optional = [r for r in removals if not r.duplicate]
    if review is not None and optional:
        # Duplicates are always dropped; only predicate removals are up for review
        approved = review(lines, optional)
        if approved is None:
            _console_print("[warning]No changes applied. History file unchanged.[/warning]")
            result.lines_after = result.lines_before
            result.removals = []
            return result
        removals = sorted([r for r in removals if r.duplicate] + approved, key=lambda r: r.index)
        result.lines_after = len(lines) - len(removals)
        result.removals = removals

    cleaned_lines = apply_removals(lines, removals)
    result.status = safe_write_history(history_path, serialize_lines(cleaned_lines))
    return result
