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

"""Implementation of `ratbuild build` command.

Resolves the environment manifest, runs every stage in order, then finishes
the rootfs. The process exits 0 only when every stage was verified and the
finisher completed.
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from pathlib import Path

import requests
import typer

from ratbuild.build.command import CommandRunner, SubprocessRunner
from ratbuild.build.errors import EXIT_SUCCESS, error_hint, log_phase_event, phase_error
from ratbuild.build.executor import StageExecutor
from ratbuild.build.finisher import RootfsFinisher
from ratbuild.build.provision import SourceProvisioner
from ratbuild.build.sequencer import RunStatus, Sequencer
from ratbuild.build.stages import STAGES, Stage
from ratbuild.build.tools import require_tools
from ratbuild.core.config import load_config
from ratbuild.core.exceptions import FinisherError, ManifestError, RatbuildError
from ratbuild.core.manifest import EnvironmentManifest, resolve_manifest
from ratbuild.core.run import RunContext, activity
from ratbuild.core.spinner import activity_spinner


def run_build(
    manifest: EnvironmentManifest,
    *,
    stages: Iterable[Stage] = STAGES,
    runner: CommandRunner | None = None,
    session: requests.Session | None = None,
    jobs: int | None = None,
    check_tools: bool = True,
    use_sudo: bool = True,
    fetch_timeout: int = 300,
    no_spinner: bool = False,
) -> int:
    """Run the whole pipeline and return the process exit code."""
    # runs_root must exist before RunContext creates the run directory.
    try:
        manifest.ensure()
    except ManifestError as e:
        activity("preflight", f"ERROR: {e.message}")
        return e.exit_code

    with RunContext("build", runs_root=manifest.runs_root) as run:
        run.log_event({"event": "manifest.resolved", "paths": manifest.to_dict()})

        try:
            if check_tools:
                require_tools()
        except RatbuildError as e:
            return phase_error(run, "preflight", e.message, e.exit_code)

        runner = runner or SubprocessRunner()
        provisioner = SourceProvisioner(
            manifest.sources_dir, manifest.kernel_src, session=session, timeout=fetch_timeout
        )

        with activity_spinner("build", "Starting pipeline", disable=no_spinner) as update:
            executor = StageExecutor(
                manifest,
                runner,
                jobs=jobs,
                log_dir=run.stages_log_path,
                on_step=lambda stage, step: update(f"{stage}: {step}"),
            )
            try:
                sequencer = Sequencer(stages, provisioner, executor, manifest.rootfs, run=run)
            except RatbuildError as e:
                return phase_error(run, "build", e.message, e.exit_code)
            pipeline = sequencer.run()

        run.write_summary(pipeline=pipeline.to_dict())

        if pipeline.status is not RunStatus.COMPLETED:
            error = pipeline.error or RatbuildError(message="pipeline did not complete")
            hint = error_hint(error)
            if hint:
                activity("build", hint)
            return phase_error(
                run,
                "build",
                f"Stage {pipeline.failed_stage} failed at step {pipeline.failed_step}: {error.message}",
                error.exit_code,
                event_key="build.aborted",
                stage=pipeline.failed_stage,
                step=pipeline.failed_step,
            )

        finisher = RootfsFinisher(
            manifest, runner, use_sudo=use_sudo, log_file=run.stage_log("finish")
        )
        try:
            with activity_spinner("finish", "Finishing rootfs", disable=no_spinner):
                report = finisher.finish()
        except FinisherError as e:
            for detail in e.details:
                activity("finish", detail)
            return phase_error(run, "finish", e.message, e.exit_code, step=e.step, details=e.details)

        if report.init_fallback_reason:
            activity("finish", f"Warning: {report.init_fallback_reason}; installed dynamic init")
        log_phase_event(
            run, "finish", f"Rootfs ready: {manifest.rootfs}", "finish.complete", **report.to_dict()
        )

        kernel = pipeline.results.get("kernel")
        boot_image = kernel.artifacts.get("boot_image") if kernel else None
        if boot_image:
            activity("build", f"Kernel saved to: {boot_image}")

        run.write_summary(
            status="success",
            exit_code=EXIT_SUCCESS,
            boot_image=boot_image,
            finisher=report.to_dict(),
        )
        return EXIT_SUCCESS


def build(
    sources_dir: Path = typer.Option(None, "--sources-dir", help="Source archive cache"),
    build_root: Path = typer.Option(None, "--build-root", help="Parent of per-stage build directories"),
    rootfs: Path = typer.Option(None, "--rootfs", help="Target root filesystem"),
    kernel_src: Path = typer.Option(None, "--kernel-src", help="Kernel source tree"),
    kernel_config: Path = typer.Option(None, "--kernel-config", help="Saved kernel .config to restore"),
    init_src: Path = typer.Option(None, "--init-src", help="Directory containing init.c"),
    jobs: int = typer.Option(None, "-j", "--jobs", min=1, help="Compile jobs (default: CPU count)"),
    skip_tool_check: bool = typer.Option(False, "--skip-tool-check", help="Skip host toolchain preflight"),
    no_spinner: bool = typer.Option(False, "-q", "--no-spinner", help="Disable spinner output (quiet)"),
) -> None:
    """Build the kernel and userland, then assemble the RatOS rootfs.

    Stages run strictly in order: kernel, glibc, ncurses, bash, dash,
    coreutils. The first failure aborts the run.

    Exit codes:
      0 - Success
      1 - Configuration error
      2 - Directory could not be created
      3 - Source download failed
      4 - Source archive missing
      5 - Build step failed
      6 - Installed artifact missing
      7 - Rootfs finishing failed
      8 - Required host tools missing
    """
    cfg = load_config()
    manifest = resolve_manifest(
        cfg,
        overrides={
            "sources_dir": sources_dir,
            "build_root": build_root,
            "rootfs": rootfs,
            "kernel_src": kernel_src,
            "kernel_config": kernel_config,
            "init_src": init_src,
        },
    )
    behavior = cfg.get("behavior", {})
    exit_code = run_build(
        manifest,
        jobs=jobs or cfg.get("defaults", {}).get("jobs"),
        check_tools=behavior.get("check_tools", True) and not skip_tool_check,
        use_sudo=bool(behavior.get("use_sudo", True)),
        fetch_timeout=int(behavior.get("fetch_timeout", 300)),
        no_spinner=no_spinner,
    )
    sys.exit(exit_code)
