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

"""Stage execution: one package's full build lifecycle.

Autotools stages run clean -> extract -> configure -> compile -> install
(-> link). The kernel stage builds in place inside the operator's kernel tree
and runs configure -> compile -> archive -> headers -> sanitize.

Each step runs only after the previous one succeeded. A failing step raises
StageFailure and leaves the build directory untouched for inspection.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ratbuild.build.command import CommandResult, CommandRunner
from ratbuild.build.stages import Stage, StageKind
from ratbuild.core.exceptions import StageFailure
from ratbuild.core.manifest import EnvironmentManifest

logger = logging.getLogger(__name__)

# Files the kernel's headers_install leaves behind that a downstream
# package's own build system would pick up.
HEADER_METADATA_NAMES = frozenset({"Makefile", ".install", "..install.cmd"})
HEADER_METADATA_SUFFIXES = (".cmd",)


@dataclass
class StageOutcome:
    """What a successful stage execution did."""

    stage: str
    steps: list[str] = field(default_factory=list)
    build_dir: Path | None = None
    artifacts: dict[str, str] = field(default_factory=dict)


def default_jobs() -> int:
    """Return the compile concurrency hint: one job per CPU."""
    return os.cpu_count() or 1


def extract_archive(archive: Path, dest: Path) -> None:
    """Unpack a source archive into ``dest``."""
    with tarfile.open(archive, "r:*") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(path=dest, filter="data")
        else:  # pragma: no cover - Python < 3.12
            members = [
                m for m in tar.getmembers()
                if not m.name.startswith("/") and ".." not in Path(m.name).parts
            ]
            tar.extractall(path=dest, members=members)


def archive_boot_image(image: Path, out_dir: Path, when: datetime) -> Path:
    """Copy a boot image to a timestamped name, never overwriting.

    The name is ``<image>-YYYYmmdd-HHMMSS``; a numeric suffix is added if two
    builds land in the same second.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    base = f"{image.name}-{when:%Y%m%d-%H%M%S}"
    dest = out_dir / base
    counter = 1
    while dest.exists():
        dest = out_dir / f"{base}-{counter}"
        counter += 1
    shutil.copy2(image, dest)
    return dest


def sanitize_headers(include_dir: Path) -> list[Path]:
    """Delete build-system metadata from an exported header tree."""
    removed: list[Path] = []
    if not include_dir.is_dir():
        return removed
    for path in sorted(include_dir.rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        if path.name in HEADER_METADATA_NAMES or path.name.endswith(HEADER_METADATA_SUFFIXES):
            path.unlink()
            removed.append(path)
    return removed


class StageExecutor:
    """Runs stage lifecycles through a CommandRunner.

    Args:
        manifest: Resolved directory layout.
        runner: Executes external build steps.
        jobs: Compile concurrency; defaults to the host CPU count.
        log_dir: Directory for per-stage command transcripts.
        on_step: Called with (stage name, step name) as each step starts.
        clock: Source of the timestamp used for archived boot images.
    """

    def __init__(
        self,
        manifest: EnvironmentManifest,
        runner: CommandRunner,
        jobs: int | None = None,
        log_dir: Path | None = None,
        on_step: Callable[[str, str], None] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.manifest = manifest
        self.runner = runner
        self.jobs = jobs or default_jobs()
        self.log_dir = log_dir
        self.on_step = on_step
        self.clock = clock

    def execute(self, stage: Stage, source: Path | None = None) -> StageOutcome:
        """Run the stage's full lifecycle.

        Args:
            stage: Stage to build.
            source: Provisioned archive; defaults to the cache location.

        Raises:
            StageFailure: A step failed.
        """
        outcome = StageOutcome(stage=stage.name)
        if stage.kind is StageKind.KERNEL:
            self._execute_kernel(stage, outcome)
        else:
            if source is None and stage.source is not None:
                source = self.manifest.sources_dir / stage.source.filename
            self._execute_autotools(stage, source, outcome)
        return outcome

    def log_path(self, stage: Stage) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{stage.name}.log"

    def _begin(self, stage: Stage, step: str, outcome: StageOutcome) -> None:
        outcome.steps.append(step)
        logger.debug("%s: %s", stage.name, step)
        if self.on_step is not None:
            self.on_step(stage.name, step)

    def _fail(self, stage: Stage, step: str, exit_status: int, detail: str = "") -> StageFailure:
        log_path = self.log_path(stage)
        message = f"Stage {stage.name} failed at step {step} (exit {exit_status})"
        if detail:
            message = f"{message}: {detail}"
        return StageFailure(
            message=message,
            stage=stage.name,
            step=step,
            exit_status=exit_status,
            log_path=str(log_path) if log_path else "",
        )

    def _run(self, stage: Stage, step: str, args: list[str], cwd: Path) -> CommandResult:
        try:
            result = self.runner.run(args, cwd, log_file=self.log_path(stage))
        except OSError as e:
            raise self._fail(stage, step, 1, str(e)) from e
        if not result.ok:
            raise self._fail(stage, step, result.exit_code)
        return result

    # Autotools packages

    def detect_build_triple(self, stage: Stage, src_dir: Path) -> str:
        """Ask the package's own config.guess for the host triple."""
        result = self._run(stage, "configure", [f"./{stage.config_guess}"], src_dir)
        lines = [line.strip() for line in result.output.splitlines() if line.strip()]
        if not lines:
            raise self._fail(stage, "configure", 1, "config.guess printed no triple")
        return lines[-1]

    def _execute_autotools(self, stage: Stage, source: Path | None, outcome: StageOutcome) -> None:
        stage_dir = self.manifest.stage_dir(stage.name)
        outcome.build_dir = stage_dir

        self._begin(stage, "clean", outcome)
        try:
            if stage_dir.exists():
                shutil.rmtree(stage_dir)
            stage_dir.mkdir(parents=True)
        except OSError as e:
            raise self._fail(stage, "clean", 1, str(e)) from e

        self._begin(stage, "extract", outcome)
        if source is None or not source.is_file():
            raise self._fail(stage, "extract", 1, f"archive not found: {source}")
        try:
            extract_archive(source, stage_dir)
        except (tarfile.TarError, OSError) as e:
            raise self._fail(stage, "extract", 1, str(e)) from e
        src_dir = stage_dir / stage.source_subdir
        if not src_dir.is_dir():
            raise self._fail(stage, "extract", 1, f"{stage.source_subdir} not found in {source.name}")

        self._begin(stage, "configure", outcome)
        triple = self.detect_build_triple(stage, src_dir)
        work_dir = stage_dir / "build" if stage.out_of_tree else src_dir
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise self._fail(stage, "configure", 1, str(e)) from e
        configure = os.path.relpath(src_dir / "configure", work_dir)
        if not configure.startswith("."):
            configure = f"./{configure}"
        values = {**self.manifest.to_dict(), "prefix": stage.prefix}
        self._run(
            stage,
            "configure",
            [configure, f"--prefix={stage.prefix}", *stage.render_options(values), f"--build={triple}"],
            work_dir,
        )
        outcome.artifacts["build_triple"] = triple

        self._begin(stage, "compile", outcome)
        self._run(stage, "compile", ["make", f"-j{self.jobs}", *stage.make_targets], work_dir)

        self._begin(stage, "install", outcome)
        self._run(stage, "install", ["make", f"DESTDIR={self.manifest.rootfs}", "install"], work_dir)

        if stage.links:
            self._begin(stage, "link", outcome)
            for link, target in stage.links:
                try:
                    self._link(link, target)
                except OSError as e:
                    raise self._fail(stage, "link", 1, str(e)) from e

    def _link(self, link: str, target: str) -> None:
        # Same semantics as ``ln -sf``.
        link_path = self.manifest.rootfs / link
        link_path.parent.mkdir(parents=True, exist_ok=True)
        if link_path.is_symlink() or link_path.is_file():
            link_path.unlink()
        link_path.symlink_to(target)

    # Kernel

    def _execute_kernel(self, stage: Stage, outcome: StageOutcome) -> None:
        src = self.manifest.kernel_src
        outcome.build_dir = src

        self._begin(stage, "configure", outcome)
        dot_config = src / ".config"
        if self.manifest.kernel_config.is_file():
            logger.info("Restoring saved kernel config %s", self.manifest.kernel_config)
            try:
                shutil.copyfile(self.manifest.kernel_config, dot_config)
            except OSError as e:
                raise self._fail(stage, "configure", 1, str(e)) from e
            outcome.artifacts["config"] = str(self.manifest.kernel_config)
        elif not dot_config.exists():
            self._run(stage, "configure", ["make", "defconfig"], src)
            outcome.artifacts["config"] = "defconfig"

        self._begin(stage, "compile", outcome)
        self._run(stage, "compile", ["make", f"-j{self.jobs}", *stage.make_targets], src)

        self._begin(stage, "archive", outcome)
        image = src / stage.boot_image
        if not image.is_file():
            raise self._fail(stage, "archive", 1, f"boot image not found: {image}")
        try:
            archived = archive_boot_image(image, self.manifest.kernel_out, self.clock())
        except OSError as e:
            raise self._fail(stage, "archive", 1, str(e)) from e
        outcome.artifacts["boot_image"] = str(archived)

        self._begin(stage, "headers", outcome)
        self._run(
            stage,
            "headers",
            ["make", "headers_install", f"INSTALL_HDR_PATH={self.manifest.rootfs / 'usr'}"],
            src,
        )

        self._begin(stage, "sanitize", outcome)
        try:
            removed = sanitize_headers(self.manifest.rootfs / "usr" / "include")
        except OSError as e:
            raise self._fail(stage, "sanitize", 1, str(e)) from e
        if removed:
            logger.info("Removed %d header metadata files", len(removed))
        outcome.artifacts["sanitized"] = str(len(removed))
