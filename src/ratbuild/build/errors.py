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

"""Logging helpers for pipeline phases.

Every phase reports to two audiences: a short activity line on the terminal
and a structured JSONL event in the run directory. These helpers keep the
two in step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ratbuild.core.run import activity

if TYPE_CHECKING:
    from ratbuild.core.exceptions import RatbuildError
    from ratbuild.core.run import RunContext


def log_phase_event(
    run: RunContext,
    phase: str,
    message: str,
    event_key: str,
    **event_data: Any,
) -> None:
    """Log a phase activity message and structured event together.

    Args:
        run: RunContext for structured logging.
        phase: Phase name for activity logging (e.g., "fetch", "verify").
        message: Human-readable message for activity output.
        event_key: Event key for structured logging (e.g., "stage.verified").
        **event_data: Additional data to include in the log event.
    """
    activity(phase, message)
    run.log_event({"event": event_key, **event_data})


def phase_error(
    run: RunContext,
    phase: str,
    message: str,
    exit_code: int,
    *,
    event_key: str | None = None,
    **event_data: Any,
) -> int:
    """Log a phase error and write the failed summary, returning the exit code.

    Usage:
        return phase_error(run, "build", str(err), err.exit_code, stage="glibc")
    """
    activity(phase, f"ERROR: {message}")
    run.log_event({
        "event": event_key or f"{phase}.error",
        "message": message,
        "exit_code": exit_code,
        **event_data,
    })
    run.write_summary(status="failed", error=message, exit_code=exit_code)
    return exit_code


def error_hint(error: RatbuildError) -> str | None:
    """Return a follow-up line telling the operator where to look."""
    log_path = getattr(error, "log_path", "")
    if log_path:
        return f"Build log: {log_path}"
    path = getattr(error, "path", "")
    if path:
        return f"Expected at: {path}"
    return None


EXIT_SUCCESS = 0
