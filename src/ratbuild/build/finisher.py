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

"""Rootfs finishing: the post-processing that makes the tree bootable.

Runs once after every stage has been verified. Every step is idempotent so
the finisher can run again over an already-finished rootfs. The static ->
dynamic init compile fallback is the only recoverable failure; anything else
raises FinisherError.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ratbuild.build.command import CommandResult, CommandRunner
from ratbuild.core.exceptions import FinisherError
from ratbuild.core.manifest import EnvironmentManifest

logger = logging.getLogger(__name__)

# (link name, wide-character target) inside usr/lib
COMPAT_LINKS: tuple[tuple[str, str], ...] = (
    ("libtinfo.so.6", "libtinfow.so.6"),
    ("libncurses.so.6", "libncursesw.so.6"),
)

MOUNTPOINTS: tuple[str, ...] = ("bin", "dev", "proc", "sys", "tmp")


@dataclass(frozen=True)
class DeviceNode:
    """A character device created under <rootfs>/dev."""

    name: str
    mode: str
    major: int
    minor: int


DEVICE_NODES: tuple[DeviceNode, ...] = (
    DeviceNode("console", "600", 5, 1),
    DeviceNode("null", "666", 1, 3),
)


@dataclass
class FinisherReport:
    """What the finisher changed on this run."""

    links_created: list[str] = field(default_factory=list)
    devices_created: list[str] = field(default_factory=list)
    init_mode: str = ""
    init_path: str = ""
    init_fallback_reason: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "links_created": self.links_created,
            "devices_created": self.devices_created,
            "init_mode": self.init_mode,
            "init_path": self.init_path,
            "init_fallback_reason": self.init_fallback_reason,
        }


class RootfsFinisher:
    """Post-processes an assembled rootfs.

    Args:
        manifest: Resolved directory layout.
        runner: Runs gcc and mknod.
        use_sudo: Prefix mknod with sudo when not running as root.
        log_file: Transcript file for the finisher's commands.
    """

    def __init__(
        self,
        manifest: EnvironmentManifest,
        runner: CommandRunner,
        use_sudo: bool = True,
        log_file: Path | None = None,
    ) -> None:
        self.manifest = manifest
        self.runner = runner
        self.use_sudo = use_sudo
        self.log_file = log_file

    @property
    def rootfs(self) -> Path:
        return self.manifest.rootfs

    def finish(self) -> FinisherReport:
        """Run every finishing step.

        Raises:
            FinisherError: Naming the failed step.
        """
        report = FinisherReport()
        report.links_created = self.create_compat_links()
        self.create_mountpoints()
        report.devices_created = self.create_device_nodes()
        mode, path, reason = self.install_init()
        report.init_mode = mode
        report.init_path = str(path)
        report.init_fallback_reason = reason
        return report

    def create_compat_links(self) -> list[str]:
        """Link unsuffixed ncurses names to the wide-character libraries."""
        lib_dir = self.rootfs / "usr" / "lib"
        created: list[str] = []
        for link, target in COMPAT_LINKS:
            link_path = lib_dir / link
            if not (lib_dir / target).exists():
                continue
            if link_path.exists() or link_path.is_symlink():
                continue
            try:
                link_path.symlink_to(target)
            except OSError as e:
                raise FinisherError(
                    message=f"Cannot link {link_path} -> {target}: {e}",
                    step="links",
                ) from e
            logger.info("Linked %s -> %s", link_path, target)
            created.append(link)
        return created

    def create_mountpoints(self) -> None:
        for name in MOUNTPOINTS:
            try:
                (self.rootfs / name).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FinisherError(
                    message=f"Cannot create mountpoint /{name}: {e}",
                    step="mountpoints",
                ) from e

    def _privileged(self, args: list[str]) -> list[str]:
        if self.use_sudo and os.geteuid() != 0:
            return ["sudo", *args]
        return args

    def create_device_nodes(self) -> list[str]:
        """Create console and null devices that are not present yet."""
        dev = self.rootfs / "dev"
        created: list[str] = []
        for node in DEVICE_NODES:
            path = dev / node.name
            if path.exists() or path.is_symlink():
                continue
            args = self._privileged(
                ["mknod", "-m", node.mode, str(path), "c", str(node.major), str(node.minor)]
            )
            result = self.runner.run(args, dev, log_file=self.log_file)
            if not result.ok:
                raise FinisherError(
                    message=f"mknod {path} failed (exit {result.exit_code})",
                    step="devices",
                    details=[result.tail()],
                )
            created.append(node.name)
        return created

    def compile_init(self) -> tuple[str, Path, str]:
        """Compile init, preferring a static binary.

        Returns:
            (mode, binary path, reason the static build was abandoned).

        Raises:
            FinisherError: Neither the static nor the dynamic build worked.
        """
        source = self.manifest.init_src / "init.c"
        if not source.is_file():
            raise FinisherError(message=f"init source not found: {source}", step="init")

        out_dir = self.manifest.stage_dir("init")
        out_dir.mkdir(parents=True, exist_ok=True)
        binary = out_dir / "init"

        attempts: list[tuple[str, list[str]]] = [
            ("static", ["gcc", "-static", "-o", str(binary), str(source)]),
            ("dynamic", ["gcc", "-o", str(binary), str(source)]),
        ]
        failures: list[tuple[str, CommandResult]] = []
        for mode, args in attempts:
            binary.unlink(missing_ok=True)
            result = self.runner.run(args, self.manifest.init_src, log_file=self.log_file)
            if result.ok and binary.is_file():
                reason = ""
                if failures:
                    first_mode, first = failures[0]
                    reason = f"{first_mode} build failed (exit {first.exit_code})"
                    logger.warning("init: %s; using %s build", reason, mode)
                return mode, binary, reason
            failures.append((mode, result))

        raise FinisherError(
            message="init failed to compile statically and dynamically",
            step="init",
            details=[f"{mode} (exit {res.exit_code}): {res.tail()}" for mode, res in failures],
        )

    def install_init(self) -> tuple[str, Path, str]:
        """Compile init and install it as <rootfs>/init, mode 755."""
        mode, binary, reason = self.compile_init()
        dest = self.rootfs / "init"
        try:
            shutil.copy2(binary, dest)
            dest.chmod(0o755)
        except OSError as e:
            raise FinisherError(message=f"Cannot install {dest}: {e}", step="init") from e
        return mode, dest, reason
