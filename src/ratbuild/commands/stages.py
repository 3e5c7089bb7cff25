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

"""Implementation of `ratbuild stages` command."""

from __future__ import annotations

import json

import typer
from rich.console import Console
from rich.table import Table

from ratbuild.build.stages import STAGES


def stages(
    as_json: bool = typer.Option(False, "--json", help="Print the stage list as JSON"),
) -> None:
    """List the build stages in execution order."""
    if as_json:
        typer.echo(json.dumps([s.describe() for s in STAGES], indent=2))
        return

    table = Table(title="RatOS build stages")
    table.add_column("#", justify="right")
    table.add_column("Stage")
    table.add_column("Source")
    table.add_column("Verifies")
    for index, stage in enumerate(STAGES, start=1):
        info = stage.describe()
        source = info["source"] or "kernel tree"
        if info["url"]:
            source = f"{source} (fetch)"
        table.add_row(str(index), stage.name, source, ", ".join(info["verify_paths"]))
    Console().print(table)
