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

"""Post-install verification of a stage's expected rootfs artifacts.

A build system can exit 0 and still install nothing where later stages look
(a wrong prefix is enough). The gate catches that right after the stage
instead of several stages later.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ratbuild.build.stages import Stage, VerifyEntry
from ratbuild.core.exceptions import VerificationError


@dataclass
class VerificationReport:
    """Per-path result of a verification pass."""

    stage: str
    present: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing


def _exists(rootfs: Path, rel: str) -> bool:
    # Absolute link targets are re-rooted under the rootfs, never the host.
    path = rootfs / rel
    if path.is_symlink():
        target = os.readlink(path)
        if os.path.isabs(target):
            return (rootfs / target.lstrip("/")).exists()
    return path.exists()


def _label(entry: VerifyEntry) -> str:
    return " or ".join(entry) if isinstance(entry, tuple) else entry


def verify_stage(stage: Stage, rootfs: Path) -> VerificationReport:
    """Check every verify path of ``stage`` under ``rootfs``."""
    report = VerificationReport(stage=stage.name)
    for entry in stage.verify_paths:
        alternatives = entry if isinstance(entry, tuple) else (entry,)
        if any(_exists(rootfs, rel) for rel in alternatives):
            report.present.append(_label(entry))
        else:
            report.missing.append(_label(entry))
    return report


def check_stage(stage: Stage, rootfs: Path) -> VerificationReport:
    """Verify a stage and raise on the first missing path.

    Raises:
        VerificationError: Naming the stage and the missing path.
    """
    report = verify_stage(stage, rootfs)
    if not report.ok:
        missing = report.missing[0]
        raise VerificationError(
            message=f"Stage {stage.name} did not install {missing} under {rootfs}",
            stage=stage.name,
            missing_path=missing,
        )
    return report
