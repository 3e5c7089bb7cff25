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

"""Pytest fixtures and configuration for Ratbuild tests."""

from __future__ import annotations

import io
import tarfile
import tempfile
from collections.abc import Generator, Mapping, Sequence
from pathlib import Path
from unittest import mock

import pytest
import responses

from ratbuild.build.command import CommandResult
from ratbuild.build.stages import STAGES, StageKind
from ratbuild.core.manifest import EnvironmentManifest

# Files each fake `make install` drops into DESTDIR, keyed by stage name.
DEFAULT_INSTALLS: dict[str, list[str]] = {
    "glibc": ["lib64/libc.so.6", "lib64/ld-linux-x86-64.so.2", "usr/include/stdio.h"],
    "ncurses": ["usr/lib/libncursesw.so.6", "usr/lib/libtinfow.so.6"],
    "bash": ["usr/bin/bash"],
    "dash": ["usr/bin/dash"],
    "coreutils": ["usr/bin/ls", "usr/bin/cp"],
}


class FakeRunner:
    """CommandRunner that simulates package build systems.

    Every call is recorded. ``make install`` creates the stage's files from
    ``installs`` under DESTDIR, ``make headers_install`` exports a small
    header tree (with the metadata files real kernels leave behind), ``make
    bzImage`` produces a boot image and ``gcc -o`` writes a binary. Any
    command line containing a pattern registered with ``fail()`` exits
    non-zero instead.
    """

    def __init__(self, build_root: Path, installs: Mapping[str, list[str]] | None = None) -> None:
        self.build_root = build_root
        self.installs = dict(DEFAULT_INSTALLS if installs is None else installs)
        self.calls: list[tuple[list[str], Path]] = []
        self.failures: list[tuple[str, int, str | None]] = []
        self.header_metadata = True

    def fail(self, pattern: str, exit_code: int = 2, stage: str | None = None) -> None:
        """Make commands containing ``pattern`` exit non-zero.

        With ``stage`` the failure only applies to commands whose working
        directory belongs to that stage.
        """
        self.failures.append((pattern, exit_code, stage))

    def commands(self, program: str) -> list[list[str]]:
        return [argv for argv, _ in self.calls if Path(argv[0]).name == program]

    def stages_touched(self) -> list[str]:
        """Stage build directories that saw at least one command, in order."""
        seen: list[str] = []
        for _, cwd in self.calls:
            try:
                name = cwd.relative_to(self.build_root).parts[0]
            except (ValueError, IndexError):
                continue
            if name not in seen:
                seen.append(name)
        return seen

    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        *,
        env: Mapping[str, str] | None = None,
        log_file: Path | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        cwd = Path(cwd)
        self.calls.append((argv, cwd))
        line = " ".join(argv)
        for pattern, code, stage in self.failures:
            if pattern in line and (stage is None or stage in cwd.parts):
                return CommandResult(argv, cwd, code, f"simulated failure: {pattern}\n")

        output = ""
        program = Path(argv[0]).name
        if program == "config.guess":
            output = "x86_64-pc-linux-gnu\n"
        elif argv[:2] == ["make", "headers_install"]:
            self._export_headers(argv)
        elif program == "make" and "install" in argv:
            self._install(argv, cwd)
        elif program == "make" and "bzImage" in argv:
            image = cwd / "arch" / "x86_64" / "boot" / "bzImage"
            image.parent.mkdir(parents=True, exist_ok=True)
            image.write_bytes(b"bzImage")
        elif program == "gcc":
            Path(argv[argv.index("-o") + 1]).write_bytes(b"\x7fELF init")
        elif "mknod" in argv:
            Path(argv[argv.index("-m") + 2]).touch()
        return CommandResult(argv, cwd, 0, output)

    def _destdir(self, argv: list[str], key: str) -> Path:
        for arg in argv:
            if arg.startswith(f"{key}="):
                return Path(arg.split("=", 1)[1])
        raise AssertionError(f"{key} missing from {argv}")

    def _install(self, argv: list[str], cwd: Path) -> None:
        destdir = self._destdir(argv, "DESTDIR")
        stage = cwd.relative_to(self.build_root).parts[0]
        for rel in self.installs.get(stage, []):
            path = destdir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{stage}\n")

    def _export_headers(self, argv: list[str]) -> None:
        include = self._destdir(argv, "INSTALL_HDR_PATH") / "include"
        (include / "linux").mkdir(parents=True, exist_ok=True)
        (include / "linux" / "version.h").write_text("#define LINUX_VERSION_CODE 0\n")
        if self.header_metadata:
            (include / "Makefile").write_text("all:\n")
            (include / "linux" / ".install").write_text("")
            (include / "linux" / "..install.cmd").write_text("cmd_x := true\n")


def make_source_archive(path: Path, subdir: str, config_guess: str) -> Path:
    """Write a tar archive shaped like an autotools release."""
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "w:xz" if path.name.endswith(".xz") else "w:gz"
    with tarfile.open(path, mode) as tar:
        for rel, body in (
            ("configure", b"#!/bin/sh\nexit 0\n"),
            (config_guess, b"#!/bin/sh\necho x86_64-pc-linux-gnu\n"),
            ("README", b"readme\n"),
        ):
            info = tarfile.TarInfo(f"{subdir}/{rel}")
            info.size = len(body)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(body))
    return path


@pytest.fixture
def temp_home(monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Create a temporary home directory and set HOME/XDG paths."""
    with tempfile.TemporaryDirectory() as tmpdir:
        home = Path(tmpdir)
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
        for var in (
            "RATOS_SOURCES_DIR",
            "RATOS_BUILD_ROOT",
            "RATOS_ROOTFS",
            "RATOS_KERNEL_SRC",
            "RATOS_KERNEL_CONFIG",
            "RATOS_INIT_SRC",
            "RATOS_RUNS_ROOT",
        ):
            monkeypatch.delenv(var, raising=False)
        monkeypatch.setattr(Path, "home", lambda: home)
        yield home


@pytest.fixture
def manifest(tmp_path: Path) -> EnvironmentManifest:
    """Manifest rooted in tmp_path with every directory created."""
    workspace = tmp_path / "RatOS"
    m = EnvironmentManifest(
        sources_dir=workspace / "build" / "sources",
        build_root=workspace / "build" / "build",
        rootfs=workspace / "build" / "rootfs",
        kernel_src=workspace / "kernel",
        kernel_out=workspace / "build" / "build" / "kernel",
        kernel_config=workspace / "kernel.config",
        init_src=workspace / "userland" / "init",
        runs_root=workspace / "build" / "runs",
    )
    m.ensure()
    return m


@pytest.fixture
def populated(manifest: EnvironmentManifest) -> EnvironmentManifest:
    """Manifest whose sources cache, kernel tree and init source all exist."""
    for stage in STAGES:
        if stage.kind is StageKind.KERNEL or stage.source is None:
            continue
        make_source_archive(
            manifest.sources_dir / stage.source.filename, stage.source_subdir, stage.config_guess
        )
    manifest.kernel_src.mkdir(parents=True, exist_ok=True)
    (manifest.kernel_src / "Makefile").write_text("# kernel\n")
    manifest.init_src.mkdir(parents=True, exist_ok=True)
    (manifest.init_src / "init.c").write_text("int main(void) { for (;;); }\n")
    return manifest


@pytest.fixture
def fake_runner(manifest: EnvironmentManifest) -> FakeRunner:
    return FakeRunner(manifest.build_root)


@pytest.fixture
def mock_responses() -> Generator[responses.RequestsMock, None, None]:
    """Activate responses mock for HTTP requests."""
    with responses.RequestsMock() as rsps:
        yield rsps


@pytest.fixture
def non_tty_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock sys.__stdout__.isatty() to return False."""
    mock_stdout = mock.MagicMock()
    mock_stdout.isatty.return_value = False
    monkeypatch.setattr("sys.__stdout__", mock_stdout)


@pytest.fixture
def tty_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock sys.__stdout__.isatty() to return True."""
    mock_stdout = mock.MagicMock()
    mock_stdout.isatty.return_value = True
    mock_stdout.write = lambda x: None
    mock_stdout.flush = lambda: None
    monkeypatch.setattr("sys.__stdout__", mock_stdout)
