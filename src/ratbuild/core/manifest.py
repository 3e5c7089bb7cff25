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

"""Environment manifest: the fixed set of directories every stage uses.

Paths are resolved with the following precedence, highest first:

1. explicit overrides (CLI options)
2. ``RATOS_*`` environment variables
3. the ``paths`` section of the config file
4. built-in defaults under ``~/RatOS``
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ratbuild.core.config import DEFAULT_CONFIG
from ratbuild.core.exceptions import ManifestError

# Config key -> environment variable
ENV_OVERRIDES: dict[str, str] = {
    "sources_dir": "RATOS_SOURCES_DIR",
    "build_root": "RATOS_BUILD_ROOT",
    "rootfs": "RATOS_ROOTFS",
    "kernel_src": "RATOS_KERNEL_SRC",
    "kernel_config": "RATOS_KERNEL_CONFIG",
    "init_src": "RATOS_INIT_SRC",
    "runs_root": "RATOS_RUNS_ROOT",
}


@dataclass(frozen=True)
class EnvironmentManifest:
    """Resolved directory layout for one pipeline run.

    Attributes:
        sources_dir: Cache of downloaded or operator-staged source archives.
        build_root: Parent of the per-stage build directories.
        rootfs: Target root filesystem tree.
        kernel_src: Pre-existing kernel source tree, built in place.
        kernel_out: Archive of timestamped boot images.
        kernel_config: Saved kernel ``.config`` restored before configuring.
        init_src: Directory containing ``init.c``.
        runs_root: Run log directories.
    """

    sources_dir: Path
    build_root: Path
    rootfs: Path
    kernel_src: Path
    kernel_out: Path
    kernel_config: Path
    init_src: Path
    runs_root: Path

    def stage_dir(self, name: str) -> Path:
        """Return the build directory owned by stage ``name``."""
        return self.build_root / name

    def ensure(self) -> None:
        """Create every directory the pipeline writes to.

        Raises:
            ManifestError: If any directory cannot be created.
        """
        for path in (self.sources_dir, self.build_root, self.rootfs, self.kernel_out, self.runs_root):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ManifestError(
                    message=f"Cannot create directory {path}: {e}",
                    path=str(path),
                ) from e

    def to_dict(self) -> dict[str, str]:
        return {
            "sources_dir": str(self.sources_dir),
            "build_root": str(self.build_root),
            "rootfs": str(self.rootfs),
            "kernel_src": str(self.kernel_src),
            "kernel_out": str(self.kernel_out),
            "kernel_config": str(self.kernel_config),
            "init_src": str(self.init_src),
            "runs_root": str(self.runs_root),
        }


def _resolve(value: Any) -> Path:
    return Path(str(value)).expanduser().resolve()


def resolve_manifest(
    cfg: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> EnvironmentManifest:
    """Build an EnvironmentManifest from config, environment and overrides.

    Args:
        cfg: Loaded configuration (defaults are used when omitted).
        overrides: Explicit path values; ``None`` entries are ignored.
        environ: Environment mapping, ``os.environ`` by default.

    Returns:
        The resolved, immutable manifest. Nothing is created on disk.
    """
    env = os.environ if environ is None else environ
    paths: dict[str, Any] = dict(DEFAULT_CONFIG["paths"])
    if cfg is not None:
        paths.update({k: v for k, v in cfg.get("paths", {}).items() if v is not None})

    for key, var in ENV_OVERRIDES.items():
        if env.get(var):
            paths[key] = env[var]

    if overrides:
        paths.update({k: v for k, v in overrides.items() if v is not None})

    build_root = _resolve(paths["build_root"])
    kernel_out = paths.get("kernel_out")

    return EnvironmentManifest(
        sources_dir=_resolve(paths["sources_dir"]),
        build_root=build_root,
        rootfs=_resolve(paths["rootfs"]),
        kernel_src=_resolve(paths["kernel_src"]),
        kernel_out=_resolve(kernel_out) if kernel_out else build_root / "kernel",
        kernel_config=_resolve(paths["kernel_config"]),
        init_src=_resolve(paths["init_src"]),
        runs_root=_resolve(paths["runs_root"]),
    )


if __name__ == "__main__":
    for key, value in resolve_manifest().to_dict().items():
        print(f"{key}: {value}")
