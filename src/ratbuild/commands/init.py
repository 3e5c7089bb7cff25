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

"""Implementation of `ratbuild init` command.

Writes the default configuration file and creates the build directories so
the operator can stage source archives before the first build.
"""

from __future__ import annotations

import sys

from ratbuild.core.config import ensure_config_exists, get_config_path, load_config
from ratbuild.core.exceptions import RatbuildError
from ratbuild.core.manifest import resolve_manifest
from ratbuild.core.run import activity
from ratbuild.core.spinner import activity_spinner


def init() -> None:
    """Create the Ratbuild config file and build directories."""
    with activity_spinner("init", "Creating configuration"):
        ensure_config_exists()
    activity("init", f"Config: {get_config_path()}")

    manifest = resolve_manifest(load_config())
    try:
        with activity_spinner("init", "Creating build directories"):
            manifest.ensure()
    except RatbuildError as e:
        activity("init", f"ERROR: {e.message}")
        sys.exit(e.exit_code)

    for key, value in manifest.to_dict().items():
        activity("init", f"{key}: {value}")
    if not manifest.kernel_src.is_dir():
        activity("init", f"Warning: kernel source tree not found at {manifest.kernel_src}")
    sys.exit(0)
