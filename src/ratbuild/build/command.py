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

"""Uniform interface for running external build steps.

Every package tool invocation (configure scripts, make, gcc, mknod) goes
through a CommandRunner: an argument list plus an explicit working directory
in, exit status plus captured output out. Nothing in Ratbuild changes the
process-wide working directory.
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Protocol

logger = logging.getLogger(__name__)

# How much of a command's output is kept in CommandResult.output.
OUTPUT_TAIL_BYTES = 65536


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    cwd: Path
    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, lines: int = 20) -> str:
        """Return the last ``lines`` lines of output for diagnostics."""
        return "\n".join(self.output.splitlines()[-lines:])


class CommandRunner(Protocol):
    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        *,
        env: Mapping[str, str] | None = None,
        log_file: Path | None = None,
    ) -> CommandResult: ...



def _open_transcript(log_file: Path | None) -> IO[bytes]:
    if log_file is None:
        return tempfile.TemporaryFile()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return log_file.open("a+b")


def _read_tail(f: IO[bytes], start: int) -> str:
    end = f.seek(0, os.SEEK_END)
    f.seek(max(start, end - OUTPUT_TAIL_BYTES))
    return f.read().decode("utf-8", errors="replace")


class SubprocessRunner:
    """CommandRunner backed by subprocess.run.

    stdout and stderr are merged and written straight into the transcript
    file while the command runs, so a stage log is readable during a long
    compile and survives an interrupted run. When ``log_file`` is None a
    temporary file is used instead. stdin is /dev/null: a command that
    prompts sees end of input rather than waiting on an invisible question.
    The last OUTPUT_TAIL_BYTES of output are returned in the result.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self.env = dict(env) if env else {}

    def run(
        self,
        args: Sequence[str],
        cwd: Path,
        *,
        env: Mapping[str, str] | None = None,
        log_file: Path | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        run_env = os.environ.copy()
        run_env.update(self.env)
        if env:
            run_env.update(env)

        logger.debug("Running %s in %s", argv, cwd)
        with _open_transcript(log_file) as f:
            f.write(f"$ cd {cwd} && {' '.join(argv)}\n".encode())
            f.flush()
            start = f.seek(0, os.SEEK_END)
            try:
                proc = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=run_env,
                    stdin=subprocess.DEVNULL,
                    stdout=f,
                    stderr=subprocess.STDOUT,
                )
                exit_code = proc.returncode
                output = _read_tail(f, start)
            except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
                # Report a missing executable or cwd like a shell would.
                exit_code = 127
                output = f"{e}\n"
                f.write(output.encode())

            if output and not output.endswith("\n"):
                f.write(b"\n")
            f.write(f"[exit {exit_code}]\n".encode())

        return CommandResult(argv, Path(cwd), exit_code, output)
