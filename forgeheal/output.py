"""
Rich Output Utilities
=====================

Terminal output for the ForgeHeal CLI using the Rich library.
Provides the themed console, message helpers, tables, panels, spinners,
prompts and renderers for OODA events, tasks and verification reports.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm
from rich.rule import Rule
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from forgeheal.events import EventStatus, OODAEvent
from forgeheal.models import Task, TaskStatus, VerificationResult


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class ForgeHealColors:
    """ForgeHeal color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    forge: str = "#F59E0B"     # warm accent
    heal: str = "#34D399"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def forgeheal_theme(colors: ForgeHealColors = ForgeHealColors()) -> Theme:
    """
    Rich Theme for the ForgeHeal CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="fh.ok")
    """
    return Theme(
        {
            "fh.banner": f"bold {colors.heal}",
            "fh.subtitle": f"{colors.dim}",
            "fh.border": f"{colors.heal}",
            "fh.accent": f"bold {colors.forge}",
            "fh.muted": f"{colors.dim}",
            "fh.text": f"{colors.ink}",

            "fh.ok": f"bold {colors.ok}",
            "fh.warn": f"bold {colors.warn}",
            "fh.err": f"bold {colors.err}",
            "fh.info": f"{colors.heal}",

            "fh.key": f"{colors.steel}",
            "fh.value": f"{colors.ink}",
            "fh.number": f"bold {colors.forge}",
            "fh.path": f"{colors.heal}",

            # OODA phases
            "fh.phase.observe": f"bold {colors.heal}",
            "fh.phase.orient": f"bold {colors.steel}",
            "fh.phase.decide": f"bold {colors.forge}",
            "fh.phase.act": f"bold {colors.warn}",
            "fh.phase.verify": f"bold {colors.ok}",

            "fh.table.header": f"bold {colors.heal}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle Unicode characters."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=forgeheal_theme())


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[fh.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[fh.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[fh.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[fh.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[fh.muted]{message}[/]")


def print_header(title: str, style: str = "fh.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


# =============================================================================
# Data Display Functions
# =============================================================================

def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "fh.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="fh.key")
    table.add_column("Value", style="fh.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def print_list(
    items: Sequence[str],
    *,
    numbered: bool = False,
    style: str = "fh.text",
    bullet_style: str = "fh.accent",
) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        if numbered:
            console.print(f"  [{bullet_style}]{i}.[/] [{style}]{item}[/]")
        else:
            console.print(f"  [{bullet_style}]{icon('bullet')}[/] [{style}]{item}[/]")


def print_json_data(data: Any, *, title: Optional[str] = None, indent: int = 2) -> None:
    """Print JSON data with syntax highlighting."""
    json_str = json.dumps(data, indent=indent, default=str, ensure_ascii=False)
    syntax = Syntax(json_str, "json", theme="monokai", line_numbers=False)

    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/]", border_style="fh.border"))
    else:
        console.print(syntax)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
    border_style: str = "fh.border",
    header_style: str = "fh.table.header",
) -> Table:
    """Create a styled Rich Table with the ForgeHeal theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style=header_style,
        border_style=border_style,
        title_style="fh.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_table(table: Table) -> None:
    console.print(table)


# =============================================================================
# Panels
# =============================================================================

def print_panel(
    content: Union[str, Text],
    *,
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    border_style: str = "fh.border",
    padding: tuple = (1, 2),
) -> None:
    """Print content in a styled panel."""
    console.print(Panel(
        content,
        title=f"[bold]{title}[/]" if title else None,
        subtitle=f"[fh.muted]{subtitle}[/]" if subtitle else None,
        border_style=border_style,
        padding=padding,
    ))


def print_warning_panel(message: str, title: str = "Warning") -> None:
    console.print(Panel(
        f"[fh.warn]{icon('warning')} {message}[/]",
        title=f"[fh.warn]{title}[/]",
        border_style="fh.warn",
        padding=(1, 2),
    ))


# =============================================================================
# Progress & Prompts
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "fh.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Scanning project..."):
            files = await bridge.snapshot()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


def confirm(message: str, *, default: bool = False) -> bool:
    """
    Ask for yes/no confirmation.

    Returns True for yes, False for no.
    """
    return Confirm.ask(f"[fh.accent]{message}[/]", default=default, console=console)


# =============================================================================
# Banner & OODA Displays
# =============================================================================

FORGEHEAL_BANNER = r"""
   _____                    _   _            _
  |  ___|__  _ __ __ _  ___| | | | ___  __ _| |
  | |_ / _ \| '__/ _` |/ _ \ |_| |/ _ \/ _` | |
  |  _| (_) | | | (_| |  __/  _  |  __/ (_| | |
  |_|  \___/|_|  \__, |\___|_| |_|\___|\__,_|_|
                 |___/
""".rstrip("\n")


def print_banner(*, subtitle: str = "Self-Improvement Engine", quiet: bool = False) -> None:
    if quiet:
        return
    console.print(Panel(
        Text.assemble(Text(FORGEHEAL_BANNER, style="fh.banner"), "\n", Text(subtitle, style="fh.subtitle")),
        border_style="fh.border",
        padding=(1, 2),
    ))


def print_phase(label: str, message: str, *, style: str = "fh.phase.act") -> None:
    """
    Print a phase label with message.

    Usage:
        print_phase("OBSERVE", "Gathering evidence...", style="fh.phase.observe")
    """
    console.print(f"[{style}]{label:>8}[/] [fh.text]{message}[/]")


def print_event(event: OODAEvent) -> None:
    """Render one OODA event as a phase line."""
    marker = ""
    if event.status == EventStatus.COMPLETED:
        marker = f"[fh.ok]{icon('check')}[/] "
    elif event.status == EventStatus.FAILED:
        marker = f"[fh.err]{icon('cross')}[/] "
    print_phase(
        event.phase.value.upper(),
        f"{marker}{event.message}",
        style=f"fh.phase.{event.phase.value}",
    )


def print_verification(result: VerificationResult) -> None:
    """Print a verification report as a table."""
    table = create_table(title="Verification", columns=["Check", "Result", "Details"])
    for check in result.checks:
        status = f"[fh.ok]{icon('check')} pass[/]" if check.passed else f"[fh.err]{icon('cross')} fail[/]"
        table.add_row(check.name, status, check.details)
    print_table(table)


def print_task_summary(task: Task) -> None:
    """Print the final state of a task in a panel matching its outcome."""
    files = sorted({c.file_path for c in task.execution.changes if not c.is_noop})
    lines = [
        f"[fh.key]Task:[/] {task.id}",
        f"[fh.key]Category:[/] {task.category.value}",
        f"[fh.key]Root cause:[/] {task.orientation.root_cause or '-'}",
        f"[fh.key]Risk:[/] {task.decision.risk_level.label}",
        f"[fh.key]Iterations:[/] {task.execution.iterations}/{task.execution.max_iterations}",
        f"[fh.key]Files changed:[/] {', '.join(files) if files else 'none'}",
    ]
    if task.execution.errors:
        lines.append(f"[fh.key]Errors:[/] {task.execution.errors[-1]}")

    border = {
        TaskStatus.COMPLETED: "fh.ok",
        TaskStatus.FAILED: "fh.err",
        TaskStatus.CANCELLED: "fh.warn",
    }.get(task.status, "fh.border")
    print_panel("\n".join(lines), title=f"Task {task.status.value}", border_style=border)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Route library logging (``forgeheal.*`` loggers) through a RichHandler.

    The CLI calls this once per run with WARNING, or DEBUG under --verbose.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
