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

"""Host toolchain preflight.

The packages bring their own build systems, but those systems need a host
toolchain. Checking for it up front turns "configure: no acceptable C
compiler" an hour into a run into an immediate, actionable error.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ratbuild.core.exceptions import ToolMissingError

REQUIRED_TOOLS = [
    "make",
    "gcc",
    "tar",
    "mknod",
]

# Needed by the kernel build (scripts/kconfig and the bzImage link).
KERNEL_TOOLS = [
    "flex",
    "bison",
    "bc",
]

TOOL_PACKAGES: dict[str, str] = {
    "make": "make",
    "gcc": "gcc",
    "tar": "tar",
    "mknod": "coreutils",
    "flex": "flex",
    "bison": "bison",
    "bc": "bc",
}


@dataclass
class ToolCheck:
    """Result of checking for required external tools."""

    tools: dict[str, Path | None] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)

    def is_complete(self) -> bool:
        return not self.missing


def find_tool(name: str) -> Path | None:
    path = shutil.which(name)
    return Path(path) if path else None


def check_required_tools(need_kernel: bool = True) -> ToolCheck:
    """Check that the host toolchain is installed.

    Args:
        need_kernel: Also require the kernel build's extra tools.
    """
    result = ToolCheck()
    tools = REQUIRED_TOOLS + (KERNEL_TOOLS if need_kernel else [])
    for tool in tools:
        path = find_tool(tool)
        result.tools[tool] = path
        if path is None:
            result.missing.append(tool)
    return result


def get_missing_tools_message(missing: list[str]) -> str:
    if not missing:
        return ""
    packages = sorted({TOOL_PACKAGES.get(t, t) for t in missing})
    return (
        f"Missing host tools: {', '.join(missing)}\n"
        f"Install with: sudo apt install {' '.join(packages)}"
    )


def require_tools(need_kernel: bool = True) -> ToolCheck:
    """Raise ToolMissingError unless every required tool is present."""
    check = check_required_tools(need_kernel=need_kernel)
    if not check.is_complete():
        raise ToolMissingError(
            message=get_missing_tools_message(check.missing),
            missing=list(check.missing),
        )
    return check
