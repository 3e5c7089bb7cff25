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

"""Stage records and the fixed, ordered RatOS stage list.

The order of STAGES is the build order. It is written by hand, never
computed: each stage may read headers and libraries installed into the
rootfs by the stages before it.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ratbuild.core.exceptions import ConfigError

GLIBC_VERSION = "2.39"
NCURSES_VERSION = "6.3"
BASH_VERSION = "5.2.21"
DASH_VERSION = "0.5.12"
COREUTILS_VERSION = "9.2"


class StageKind(str, Enum):
    """Which build lifecycle a stage follows."""

    KERNEL = "kernel"
    AUTOTOOLS = "autotools"


@dataclass(frozen=True)
class SourceLocator:
    """Where a stage's source archive lives.

    Attributes:
        filename: Archive name inside the sources cache.
        url: Remote location; None means the operator pre-stages the file.
    """

    filename: str
    url: str | None = None


# A verify entry is either a single path or a tuple of alternatives of which
# at least one must exist.
VerifyEntry = str | tuple[str, ...]


@dataclass(frozen=True)
class Stage:
    """One package build within the pipeline.

    Attributes:
        name: Unique identifier; also the build subdirectory name.
        kind: Build lifecycle (kernel or autotools).
        source: Archive locator, or None for the pre-existing kernel tree.
        source_subdir: Directory the archive extracts to.
        configure_options: Ordered options passed to the package's configure
            script. ``{rootfs}`` and the other manifest field names are
            substituted.
        prefix: Install prefix inside the rootfs.
        config_guess: Path of the package's config.guess, relative to the
            source directory.
        out_of_tree: Configure and build from ``<stage dir>/build``.
        make_targets: Targets for the compile step (empty means default).
        boot_image: Kernel image path inside the kernel tree.
        links: (link, target) pairs created inside the rootfs after install.
        verify_paths: Rootfs-relative paths that must exist after install.
    """

    name: str
    kind: StageKind = StageKind.AUTOTOOLS
    source: SourceLocator | None = None
    source_subdir: str = ""
    configure_options: tuple[str, ...] = ()
    prefix: str = "/usr"
    config_guess: str = "config.guess"
    out_of_tree: bool = False
    make_targets: tuple[str, ...] = ()
    boot_image: str = ""
    links: tuple[tuple[str, str], ...] = ()
    verify_paths: tuple[VerifyEntry, ...] = ()

    def render_options(self, values: Mapping[str, Any]) -> list[str]:
        """Return configure options with ``{placeholders}`` filled in."""
        return [opt.format(**values) for opt in self.configure_options]

    def describe(self) -> dict[str, Any]:
        """Return a JSON-friendly description for listings and events."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "source": self.source.filename if self.source else None,
            "url": self.source.url if self.source else None,
            "source_subdir": self.source_subdir,
            "prefix": self.prefix,
            "configure_options": list(self.configure_options),
            "verify_paths": [
                " | ".join(p) if isinstance(p, tuple) else p for p in self.verify_paths
            ],
        }


STAGES: tuple[Stage, ...] = (
    Stage(
        name="kernel",
        kind=StageKind.KERNEL,
        make_targets=("bzImage",),
        boot_image="arch/x86_64/boot/bzImage",
        verify_paths=("usr/include/linux",),
    ),
    Stage(
        name="glibc",
        source=SourceLocator(f"glibc-{GLIBC_VERSION}.tar.xz"),
        source_subdir=f"glibc-{GLIBC_VERSION}",
        configure_options=(
            "--disable-werror",
            "--enable-kernel=4.19",
            "--with-headers={rootfs}/usr/include",
        ),
        config_guess="scripts/config.guess",
        out_of_tree=True,
        verify_paths=(("lib64", "lib"), "usr/include/stdio.h"),
    ),
    Stage(
        name="ncurses",
        source=SourceLocator("ncurses.tar.gz"),
        source_subdir=f"ncurses-{NCURSES_VERSION}",
        configure_options=(
            "--libdir=/usr/lib",
            "--with-shared",
            "--without-debug",
            "--without-ada",
            "--with-termlib",
            "--enable-widec",
        ),
        verify_paths=(("usr/lib/libncursesw.so.6", "usr/lib/libncurses.so.6"),),
    ),
    Stage(
        name="bash",
        source=SourceLocator(f"bash-{BASH_VERSION}.tar.gz"),
        source_subdir=f"bash-{BASH_VERSION}",
        config_guess="support/config.guess",
        verify_paths=("usr/bin/bash",),
    ),
    Stage(
        name="dash",
        source=SourceLocator(
            f"dash-{DASH_VERSION}.tar.gz",
            url=f"http://gondor.apana.org.au/~herbert/dash/files/dash-{DASH_VERSION}.tar.gz",
        ),
        source_subdir=f"dash-{DASH_VERSION}",
        links=(("bin/sh", "../usr/bin/dash"),),
        verify_paths=("usr/bin/dash", "bin/sh"),
    ),
    Stage(
        name="coreutils",
        source=SourceLocator(
            f"coreutils-{COREUTILS_VERSION}.tar.xz",
            url=f"https://ftp.gnu.org/gnu/coreutils/coreutils-{COREUTILS_VERSION}.tar.xz",
        ),
        source_subdir=f"coreutils-{COREUTILS_VERSION}",
        config_guess="build-aux/config.guess",
        verify_paths=("usr/bin/ls", "usr/bin/cp"),
    ),
)


def validate_stages(stages: Iterable[Stage]) -> list[Stage]:
    """Return the stages as a list, rejecting duplicate names.

    Raises:
        ConfigError: If two stages share a name.
    """
    ordered = list(stages)
    seen: set[str] = set()
    for stage in ordered:
        if stage.name in seen:
            raise ConfigError(message=f"Duplicate stage name: {stage.name}")
        seen.add(stage.name)
    return ordered


def get_stage(name: str, stages: Iterable[Stage] = STAGES) -> Stage:
    """Return the stage called ``name``, raising KeyError if there is none."""
    for stage in stages:
        if stage.name == name:
            return stage
    raise KeyError(name)
