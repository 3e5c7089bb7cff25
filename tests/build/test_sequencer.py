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

"""Tests for ratbuild.build.sequencer module."""

from __future__ import annotations

from pathlib import Path
from unittest import mock

import pytest
import responses

from conftest import FakeRunner
from ratbuild.build.executor import StageExecutor
from ratbuild.build.provision import SourceProvisioner
from ratbuild.build.sequencer import (
    PipelineRun,
    RunStatus,
    Sequencer,
    StageStatus,
    failed_step_for,
)
from ratbuild.build.stages import STAGES, SourceLocator, Stage
from ratbuild.core.exceptions import (
    ConfigError,
    FetchError,
    MissingSourceError,
    RatbuildError,
    StageFailure,
    VerificationError,
)
from ratbuild.core.manifest import EnvironmentManifest

ORDER = [s.name for s in STAGES]


def _sequencer(manifest: EnvironmentManifest, runner: FakeRunner, **kwargs) -> Sequencer:
    provisioner = SourceProvisioner(manifest.sources_dir, manifest.kernel_src)
    executor = StageExecutor(manifest, runner, jobs=2)
    return Sequencer(kwargs.pop("stages", STAGES), provisioner, executor, manifest.rootfs, **kwargs)


class TestSequencerRun:
    """Tests for Sequencer.run."""

    def test_completes_every_stage_in_order(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        pipeline = _sequencer(populated, fake_runner).run()

        assert pipeline.status is RunStatus.COMPLETED
        assert pipeline.invoked_stages() == ORDER
        assert all(r.status is StageStatus.VERIFIED for r in pipeline.results.values())
        assert fake_runner.stages_touched() == ORDER[1:]

    def test_each_stage_verified_before_next_starts(
        self, populated: EnvironmentManifest, fake_runner: FakeRunner
    ) -> None:
        pipeline = _sequencer(populated, fake_runner).run()

        seqs = {(e.stage, e.event): e.seq for e in pipeline.log}
        for before, after in zip(ORDER, ORDER[1:]):
            assert seqs[(before, "verified")] < seqs[(after, "start")]
        assert pipeline.events_for("glibc") == ["start", "provisioned", "executed", "verified"]

    @pytest.mark.parametrize("failing", ORDER[1:])
    def test_fail_fast(self, populated: EnvironmentManifest, fake_runner: FakeRunner, failing: str) -> None:
        fake_runner.fail("install", exit_code=2, stage=failing)

        pipeline = _sequencer(populated, fake_runner).run()

        index = ORDER.index(failing)
        assert pipeline.status is RunStatus.ABORTED
        assert pipeline.failed_stage == failing
        assert pipeline.failed_step == "install"
        assert pipeline.invoked_stages() == ORDER[: index + 1]
        assert pipeline.results[failing].status is StageStatus.FAILED
        for later in ORDER[index + 1:]:
            assert pipeline.results[later].status is StageStatus.PENDING
        assert isinstance(pipeline.error, StageFailure)

    def test_verification_failure_aborts(self, populated: EnvironmentManifest) -> None:
        installs = {"glibc": ["lib64/libc.so.6", "usr/include/stdio.h"], "ncurses": []}
        runner = FakeRunner(populated.build_root, installs=installs)

        pipeline = _sequencer(populated, runner).run()

        assert pipeline.status is RunStatus.ABORTED
        assert pipeline.failed_stage == "ncurses"
        assert pipeline.failed_step == "verify"
        assert isinstance(pipeline.error, VerificationError)
        assert "bash" not in runner.stages_touched()

    def test_missing_source_aborts_before_build(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        (populated.sources_dir / "bash-5.2.21.tar.gz").unlink()

        pipeline = _sequencer(populated, fake_runner).run()

        assert pipeline.failed_stage == "bash"
        assert pipeline.failed_step == "provision"
        assert "bash" not in fake_runner.stages_touched()
        assert pipeline.error.exit_code == 4

    def test_custom_verifier_is_used(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        checked: list[str] = []

        def verifier(stage: Stage, rootfs: Path) -> None:
            checked.append(stage.name)

        _sequencer(populated, fake_runner, verifier=verifier).run()

        assert checked == ORDER

    def test_duplicate_stage_names_rejected(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        with pytest.raises(ConfigError):
            _sequencer(populated, fake_runner, stages=[Stage(name="a"), Stage(name="a")])

    def test_rerun_is_idempotent(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        first = _sequencer(populated, fake_runner).run()
        listing = sorted(str(p) for p in populated.rootfs.rglob("*"))

        second = _sequencer(populated, fake_runner).run()

        assert first.status is second.status is RunStatus.COMPLETED
        assert sorted(str(p) for p in populated.rootfs.rglob("*")) == listing


class TestPipelineRun:
    """Tests for PipelineRun state."""

    def test_initial_state(self) -> None:
        pipeline = PipelineRun(order=["a", "b"])

        assert pipeline.status is RunStatus.NOT_STARTED
        assert pipeline.current_stage is None
        assert set(pipeline.results) == {"a", "b"}

    def test_log_sequence_is_monotonic(self) -> None:
        pipeline = PipelineRun(order=["a"])
        entries = [pipeline.record("a", e) for e in ("start", "provisioned", "executed")]

        assert [e.seq for e in entries] == [0, 1, 2]

    def test_to_dict(self) -> None:
        pipeline = PipelineRun(order=["a"], stage_index=0)

        data = pipeline.to_dict()

        assert pipeline.current_stage == "a"
        assert data["status"] == "not_started"
        assert data["stages"]["a"]["status"] == "pending"
        assert data["error"] is None


@pytest.mark.parametrize(
    ("error", "step"),
    [
        (StageFailure(step="compile"), "compile"),
        (FetchError(), "provision"),
        (MissingSourceError(), "provision"),
        (VerificationError(), "verify"),
        (RatbuildError(), "unknown"),
    ],
)
def test_failed_step_for(error: RatbuildError, step: str) -> None:
    assert failed_step_for(error) == step


class TestUnexpectedErrors:
    """Filesystem errors inside a stage still abort the run cleanly."""

    def test_os_error_during_install_aborts(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        real_run = fake_runner.run

        def run(args, cwd, **kwargs):
            if "install" in args and "bash" in Path(cwd).parts:
                raise OSError("Input/output error")
            return real_run(args, cwd, **kwargs)

        fake_runner.run = run  # type: ignore[method-assign]

        pipeline = _sequencer(populated, fake_runner).run()

        assert pipeline.status is RunStatus.ABORTED
        assert pipeline.failed_stage == "bash"
        assert pipeline.failed_step == "install"
        assert isinstance(pipeline.error, StageFailure)
        assert pipeline.results["dash"].status is StageStatus.PENDING

    def test_fetch_rename_error_aborts(self, populated: EnvironmentManifest, fake_runner: FakeRunner) -> None:
        provisioner = SourceProvisioner(populated.sources_dir, populated.kernel_src)
        executor = StageExecutor(populated, fake_runner, jobs=1)
        failing = Stage(name="extra", source=SourceLocator("extra.tar.gz", url="https://example.test/extra.tar.gz"))
        sequencer = Sequencer([failing], provisioner, executor, populated.rootfs)

        with responses.RequestsMock() as rsps:
            rsps.add(responses.GET, "https://example.test/extra.tar.gz", body=b"archive")
            with mock.patch.object(Path, "replace", side_effect=OSError("disk full")):
                pipeline = sequencer.run()

        assert pipeline.status is RunStatus.ABORTED
        assert pipeline.failed_stage == "extra"
        assert pipeline.failed_step == "provision"
        assert isinstance(pipeline.error, FetchError)
