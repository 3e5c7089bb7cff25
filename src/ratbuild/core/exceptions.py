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

"""Ratbuild exception types with associated exit codes.

Every error is fatal to a pipeline run. The only recoverable condition in
the system (the static-to-dynamic init compile fallback) is handled inside
the finisher and never surfaces as one of these unless both attempts fail.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RatbuildError(Exception):
    """Base class for Ratbuild errors with an exit code."""

    message: str = "An error occurred"
    exit_code: int = field(default=1)

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.message} (exit {self.exit_code})"


@dataclass
class ConfigError(RatbuildError):
    exit_code: int = field(default=1)


@dataclass
class ManifestError(RatbuildError):
    """A manifest directory could not be created."""

    exit_code: int = field(default=2)
    path: str = ""


@dataclass
class FetchError(RatbuildError):
    """A source archive could not be downloaded."""

    exit_code: int = field(default=3)
    stage: str = ""
    url: str = ""


@dataclass
class MissingSourceError(RatbuildError):
    """A source archive is absent and no download location is declared."""

    exit_code: int = field(default=4)
    stage: str = ""
    path: str = ""


@dataclass
class StageFailure(RatbuildError):
    """A build-system step of a stage exited non-zero."""

    exit_code: int = field(default=5)
    stage: str = ""
    step: str = ""
    exit_status: int = 0
    log_path: str = ""


@dataclass
class VerificationError(RatbuildError):
    """An expected installed artifact is missing from the rootfs."""

    exit_code: int = field(default=6)
    stage: str = ""
    missing_path: str = ""


@dataclass
class FinisherError(RatbuildError):
    """A rootfs post-processing step failed."""

    exit_code: int = field(default=7)
    step: str = ""
    details: list[str] = field(default_factory=list)


@dataclass
class ToolMissingError(RatbuildError):
    """Required host build tools are not installed."""

    exit_code: int = field(default=8)
    missing: list[str] = field(default_factory=list)
