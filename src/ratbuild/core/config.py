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

"""Configuration utilities for Ratbuild."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "sources_dir": "~/RatOS/build/sources",
        "build_root": "~/RatOS/build/build",
        "rootfs": "~/RatOS/build/rootfs",
        "kernel_src": "~/RatOS/kernel",
        "kernel_config": "~/RatOS/kernel.config",
        "init_src": "~/RatOS/userland/init",
        "runs_root": "~/RatOS/build/runs",
    },
    "defaults": {
        # None means one job per available CPU.
        "jobs": None,
    },
    "behavior": {
        "use_sudo": True,
        "fetch_timeout": 300,
        "check_tools": True,
    },
}


def get_config_path() -> Path:
    """Return the path to the config file."""
    return Path.home() / ".config" / "ratbuild" / "config.yaml"


def ensure_config_exists() -> None:
    """Create the config file with defaults if it does not exist."""
    cfg_path = get_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    if not cfg_path.exists():
        cfg_path.write_text(yaml.safe_dump(DEFAULT_CONFIG))


def load_config() -> dict[str, Any]:
    """Load configuration from disk and merge with defaults.

    Each top-level section of the on-disk file is merged over the matching
    section of DEFAULT_CONFIG, so a file that only sets ``paths.rootfs``
    still gets every other default.
    """
    ensure_config_exists()
    cfg_path = get_config_path()
    try:
        raw = yaml.safe_load(cfg_path.read_text()) or {}
    except yaml.YAMLError:
        raw = {}
    if not isinstance(raw, dict):
        raw = {}

    merged: dict[str, Any] = {}
    for key, val in DEFAULT_CONFIG.items():
        if key in raw and isinstance(raw[key], dict):
            merged[key] = {**val, **raw[key]}
        elif isinstance(val, dict):
            # Copy so callers never mutate DEFAULT_CONFIG
            merged[key] = dict(val)
        else:
            merged[key] = raw.get(key, val)

    for pkey, pval in merged.get("paths", {}).items():
        if pval is not None:
            merged["paths"][pkey] = str(Path(str(pval)).expanduser())

    return merged


def write_config(data: dict[str, Any]) -> None:
    """Write the provided data as YAML to the config path.

    The caller should pass a complete configuration mapping.
    """
    cfg_path = get_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(yaml.safe_dump(data))


if __name__ == "__main__":
    print(json.dumps(load_config(), indent=2))
