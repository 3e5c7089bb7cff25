# This file is part of Ratbuild, a tool for assembling a bootable RatOS root filesystem.
#
# Copyright 2025 The Ratbuild Authors.
#
# SPDX-License-Identifier: GPL-3.0-only
#
# Ratbuild is free software: you can redistribute it and/or modify it under
# the terms of the GNU General Public License version 3, as published by the
# Free Software Foundation.
#
# Ratbuild is distributed in the hope that it will be useful, but WITHOUT
# ANY WARRANTY; without even the implied warranties of MERCHANTABILITY,
# SATISFACTORY QUALITY, or FITNESS FOR A PARTICULAR PURPOSE. See the GNU
# General Public License for more details.
#
# You should have received a copy of the GNU General Public License along with
# Ratbuild. If not, see <http://www.gnu.org/licenses/>.

"""TTY-aware spinner for long-running stage steps.

Uses Rich spinners when stdout is a TTY, falls back to plain text otherwise.
The spinner output is written directly to the real terminal (sys.__stdout__)
and never goes into captured log files. The wrapped block receives an
``update`` callable so a stage can relabel the spinner as it moves from
configure to compile to install.
"""

from __future__ import annotations

import contextlib
import sys
import time
from collections.abc import Callable, Iterator

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner


def is_tty() -> bool:
    """Return True if stdout is a TTY."""
    try:
        if sys.__stdout__ is None:
            return False  # pragma: no cover
        return sys.__stdout__.isatty()
    except Exception:  # pragma: no cover
        return False


def format_elapsed(seconds: float) -> str:
    """Format a duration as ``1h02m03s`` / ``2m03s`` / ``3s``."""
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def _emit(line: str) -> None:
    with contextlib.suppress(Exception):  # pragma: no cover
        print(line, file=sys.__stdout__, flush=True)


@contextlib.contextmanager
def activity_spinner(
    phase: str, description: str, disable: bool = False
) -> Iterator[Callable[[str], None]]:
    """Show a spinner while the wrapped block runs.

    Args:
        phase: Short phase label (e.g., "fetch", "build").
        description: Human-readable description of current activity.
        disable: Force disable spinner even on TTY.

    Yields:
        A function taking a new description. On a TTY it relabels the
        spinner; otherwise each update is printed as its own line.
    """
    started = time.monotonic()
    label = {"text": description}

    if disable or not is_tty():
        _emit(f"[{phase}] {description}")

        def plain_update(text: str) -> None:
            label["text"] = text
            _emit(f"[{phase}] {text}")

        yield plain_update
        return

    console = Console(file=sys.__stdout__, force_terminal=True)
    spinner = Spinner("dots", text=f"[{phase}] {description}")

    def live_update(text: str) -> None:
        label["text"] = text
        spinner.update(text=f"[{phase}] {text}")

    with Live(spinner, console=console, refresh_per_second=12, transient=True):
        yield live_update

    _emit(f"[{phase}] {label['text']} ({format_elapsed(time.monotonic() - started)})")
