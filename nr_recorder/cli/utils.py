"""CLI utilities for NR Recorder.

This module provides common CLI utilities like Rich console output and
progress indicators.
"""

import os
from contextlib import contextmanager
from typing import List

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

from nr_recorder.core.processing import level_to_db

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def make_device_table(devices: List[dict]) -> Table:
    """Build a Rich Table from the device list returned by RecordingEngine.list_devices().

    Args:
        devices: List of dicts with keys: id, name, driver, channels, rate, is_default

    Returns:
        Configured Rich Table ready to print.
    """
    table = Table(show_header=True, header_style="bold", show_lines=False, expand=False)
    table.add_column("ID", style="cyan", width=4, justify="right")
    table.add_column("Name", min_width=30)
    table.add_column("Driver", style="dim", width=8)
    table.add_column("Ch", justify="right", style="dim", width=4)
    table.add_column("Rate", justify="right", style="dim", width=12)
    table.add_column("", width=9)

    for d in devices:
        default_mark = "[bold green]DEFAULT[/bold green]" if d.get("is_default") else ""
        table.add_row(
            str(d["id"]),
            d["name"],
            d.get("driver", "").upper(),
            str(d.get("channels", "")),
            f"{d.get('rate', '')} Hz",
            default_mark,
        )
    return table


def format_level(level: float) -> str:
    """Render a 0.0-1.0 level reading as percent and dBFS text."""
    return f"{level * 100:3.0f}% ({level_to_db(level):5.1f} dBFS)"


def make_level_progress() -> Progress:
    """Create a Rich Progress instance repurposed as a real-time level meter.

    Usage::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=1.0, level_text="--")
            progress.update(task, completed=level, level_text=format_level(level))

    Returns:
        Configured Rich Progress instance (0.0–1.0 scale).
    """
    return Progress(
        TextColumn("📈 Audio Level"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="red",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.fields[level_text]}[/bold]"),
        console=console,
        transient=False,
        expand=False,
    )


def make_upload_progress() -> Progress:
    """Create a Rich Progress instance showing upload job status.

    Returns:
        Configured Rich Progress instance (0.0–1.0 scale).
    """
    return Progress(
        TextColumn("☁ Upload"),
        BarColumn(bar_width=50, complete_style="cyan", finished_style="green"),
        TextColumn("{task.fields[message]}"),
        console=console,
        transient=False,
        expand=False,
    )


@contextmanager
def suppress_stderr():
    """Context manager to suppress stderr output from libraries like ALSA, JACK.

    Used to hide debug/warning messages from audio subsystems that pollute
    terminal output.
    """
    # Save original stderr file descriptor
    original_stderr_fd = os.dup(2)
    null_fd = os.open(os.devnull, os.O_WRONLY)
    try:
        # Redirect stderr to /dev/null
        os.dup2(null_fd, 2)
        yield
    finally:
        # Restore original stderr
        os.dup2(original_stderr_fd, 2)
        os.close(original_stderr_fd)
        os.close(null_fd)


__all__ = [
    "console",
    "suppress_stderr",
    "format_level",
    "make_device_table",
    "make_level_progress",
    "make_upload_progress",
]
