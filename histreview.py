"""
histreview.py - Previewing and reviewing lines before they are dropped

`render_removals` prints a static panel for ``--dry-run``. `ReviewApp` is the
interactive variant used by ``--review``: each blacklist or length removal is a
panel (duplicates are always dropped), space keeps the focused line after all, ``y`` applies the still-enabled removals and ``n`` leaves
the file alone.
"""

from __future__ import annotations

import re

from pygments.lexer import RegexLexer, include
from pygments.token import (
    Comment,
    Error,
    Keyword,
    Name,
    Number,
    Operator,
    Punctuation,
    String,
    Text,
    Token,
)
from rich import box
from rich.console import Group
from rich.panel import Panel
from rich.rule import Rule
from rich.style import Style
from rich.syntax import Syntax, SyntaxTheme
from rich.table import Table
from rich.text import Text as RichText
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widget import Widget
from textual.widgets import Footer, Header, Static

from histfilter import Removal

# ============================================================================
# HIGHLIGHTING
# ============================================================================

Name.Argument = Token.Name.Argument


class HistoryLineLexer(RegexLexer):
    """
    Lexer for a single history line: command word, flags, arguments,
    quoting and substitutions. Extended-history prefixes (``: 1700000000:0;``)
    are shown as comments.
    """

    name = "History line"
    aliases = ["histline"]
    filenames = []

    flags = re.MULTILINE

    tokens = {
        "_quoting": [
            (r"\\.", String.Escape),
            (r"\$\(", String.Interpol, "substitution"),
            (r"`[^`]*`", String.Backtick),
            (r"\$\{[^}]*\}", Name.Variable),
            (r"\$[a-zA-Z0-9_@*#?$!~-]+", Name.Variable),
            (r"'[^']*'", String.Single),
            (r'"', String.Double, "string_double"),
        ],
        "root": [
            (r"^: \d+:\d+;", Comment.Special),
            (r"\s+", Text),
            (r"#.*$", Comment.Single),
            (r"\|\|?|&&|&|[<>]+", Operator),
            (r"[;(){}]", Punctuation),
            (r"\b(if|then|else|fi|for|while|do|done|case|esac|sudo|time|exec)\b", Keyword),
            include("_quoting"),
            (r"[^\s;&|(){}<>'\"$`\\]+", Name.Function, "arguments"),
        ],
        "arguments": [
            (r"\n", Text, "#pop"),
            (r"(?=[)}])", Text, "#pop"),
            (r"\|\|?|&&|;|&", Operator, "#pop"),
            (r"\s+", Text),
            (r"[<>]+", Operator),
            (r"(?:--?)[a-zA-Z0-9][\w-]*", Name.Attribute),
            (r"=", Operator),
            (r"\b[0-9]+\b", Number.Integer),
            include("_quoting"),
            (r"[^=\s;&|(){}<>'\"$`\\]+", Name.Argument),
        ],
        "string_double": [
            (r'"', String.Double, "#pop"),
            include("_quoting"),
            (r'[^"\\$`]+', String.Double),
        ],
        "substitution": [
            (r"\)", String.Interpol, "#pop"),
            include("root"),
        ],
    }


class HistoryTheme(SyntaxTheme):
    """Monokai Pro palette for history lines."""

    _BLACK = "#2d2a2e"
    _RED = "#ff6188"
    _GREEN = "#a9dc76"
    _YELLOW = "#ffd866"
    _ORANGE = "#fc9867"
    _PURPLE = "#ab9df2"
    _CYAN = "#78dce8"
    _WHITE = "#fcfcfa"
    _COMMENT_GRAY = "#727072"

    background_color = _BLACK
    default_style = Style(color=_WHITE)

    styles = {
        Name.Function: Style(color=_GREEN, bold=True),
        Name.Attribute: Style(color=_ORANGE),
        Name.Argument: Style(color=_PURPLE),
        Name.Variable: Style(color=_WHITE),
        Number: Style(color=_CYAN),
        Text: Style(color=_WHITE),
        Comment: Style(color=_COMMENT_GRAY, italic=True),
        Keyword: Style(color=_RED, bold=True),
        Operator: Style(color=_RED),
        Punctuation: Style(color=_WHITE),
        String: Style(color=_YELLOW),
        String.Escape: Style(color=_PURPLE),
        String.Interpol: Style(color=_PURPLE, bold=True),
        Error: Style(color=_RED, bold=True),
    }

    @classmethod
    def get_style_for_token(cls, t):
        # Walk up the token hierarchy so String.Double falls back to String
        while t not in cls.styles and t.parent is not None:
            t = t.parent
        return cls.styles.get(t, cls.default_style)

    @classmethod
    def get_background_style(cls):
        return Style(bgcolor=cls._BLACK)


def highlight_line(line: str) -> Syntax:
    return Syntax(line, HistoryLineLexer(), theme=HistoryTheme(), line_numbers=False, word_wrap=True)


# ============================================================================
# STATIC PREVIEW
# ============================================================================


def render_removals(removals: list[Removal], total_lines: int | None = None) -> Panel:
    """→ UI: A single panel listing every line that would be dropped"""
    width = len(str(max((r.index + 1 for r in removals), default=total_lines or 1)))

    table = Table.grid(padding=(0, 1))
    table.add_column(width=width, justify="right", style="#3A3F4C")
    table.add_column(width=1)
    table.add_column()
    table.add_column(style="italic #5C6370")
    for removal in removals:
        table.add_row(
            f"{removal.index + 1}",
            RichText("-", style="bold #E06C75"),
            highlight_line(removal.line),
            removal.reason,
        )

    summary = f"{len(removals)} line(s) would be removed"
    if total_lines is not None:
        summary += f", {total_lines - len(removals)} of {total_lines} kept"

    return Panel(
        Group(RichText(summary, style="bold #98C379"), Rule(style="#4B5263"), table),
        box=box.ROUNDED,
        title="[title]Dry run[/title]",
        border_style="#4B5263",
        padding=(0, 1),
    )


# ============================================================================
# INTERACTIVE REVIEW
# ============================================================================


class RemovalWidget(Widget):
    """One flagged line with its reason."""

    DEFAULT_CSS = """
    RemovalWidget {
        height: auto;
        padding: 0 1;
        margin: 0 2;
        border: round $primary;
    }
    RemovalWidget:focus {
        border: round #FF4500;
    }
    RemovalWidget.disabled {
        border: round #5C6370;
        color: #5C6370;
    }
    """

    can_focus = True

    def __init__(self, removal: Removal, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.removal = removal

    def compose(self) -> ComposeResult:
        meta_table = Table.grid(padding=(0, 1))
        meta_table.add_column(style=Style.parse("bold #98C379"))
        meta_table.add_column()
        meta_table.add_row("Line:", str(self.removal.index + 1))
        meta_table.add_row("Reason:", self.removal.reason)
        yield Static(meta_table)
        yield Static(highlight_line(self.removal.line))


class ReviewApp(App[list[Removal]]):
    TITLE = "histclean review"

    BINDINGS = [
        Binding("up", "focus_previous", "Previous", priority=True),
        Binding("down", "focus_next", "Next", priority=True),
        Binding("space", "toggle_removal", "Keep / drop"),
        ("y", "approve", "Apply"),
        ("n", "reject", "Cancel"),
    ]

    def __init__(self, removals: list[Removal], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.removals = removals
        self.panels: list[RemovalWidget] = []
        self.enabled: dict[int, bool] = {r.index: True for r in removals}
        self.scroll_container: VerticalScroll | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        self.scroll_container = VerticalScroll()
        with self.scroll_container:
            for removal in self.removals:
                panel = RemovalWidget(removal)
                self.panels.append(panel)
                yield panel
        yield Footer()

    def on_mount(self):
        if self.panels:
            self.panels[0].focus()

    def _focus_panel(self, index: int):
        panel = self.panels[index % len(self.panels)]
        panel.focus()
        if self.scroll_container:
            self.scroll_container.scroll_to_center(panel, animate=False)

    def get_current_panel_index(self) -> int:
        focused = self.focused
        if isinstance(focused, RemovalWidget):
            return self.panels.index(focused)
        return 0

    def action_focus_previous(self):
        if self.panels:
            self._focus_panel(self.get_current_panel_index() - 1)

    def action_focus_next(self):
        if self.panels:
            self._focus_panel(self.get_current_panel_index() + 1)

    def action_toggle_removal(self):
        focused = self.focused
        if not isinstance(focused, RemovalWidget):
            return
        index = focused.removal.index
        self.enabled[index] = not self.enabled[index]
        focused.set_class(not self.enabled[index], "disabled")

    def action_approve(self):
        self.exit([r for r in self.removals if self.enabled[r.index]])

    def action_reject(self):
        self.exit(None)


def review_removals(lines: list[str], removals: list[Removal]) -> list[Removal] | None:
    """→ Runs the review UI; returns the approved removals, or None if rejected"""
    return ReviewApp(removals).run()
