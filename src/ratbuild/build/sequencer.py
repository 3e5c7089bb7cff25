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

"""Sequencer: drives the fixed stage list to completion or first failure.

State machine::

    NOT_STARTED -> RUNNING(i) -> COMPLETED
                             \\-> ABORTED(stage, cause)

RUNNING(i) advances to RUNNING(i + 1) only after provisioning, execution and
verification of stage i all succeed. Stages never run concurrently and a run
always starts from stage 0.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ratbuild.build.errors import log_phase_event
from ratbuild.build.stages import Stage, validate_stages
from ratbuild.build.verify import VerificationReport, check_stage
from ratbuild.core.exceptions import (
    FetchError,
    MissingSourceError,
    RatbuildError,
    StageFailure,
    VerificationError,
)

if TYPE_CHECKING:
    from ratbuild.build.executor import StageExecutor
    from ratbuild.build.provision import SourceProvisioner
    from ratbuild.core.run import RunContext

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Status of a pipeline run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StageStatus(str, Enum):
    """Status of one stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    VERIFIED = "verified"
    FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StageResult:
    """Result of one stage within a run."""

    stage: str
    status: StageStatus = StageStatus.PENDING
    failed_step: str = ""
    message: str = ""
    started_at: str = ""
    completed_at: str = ""
    steps: list[str] = field(default_factory=list)
    artifacts: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "failed_step": self.failed_step,
            "message": self.message,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "steps": self.steps,
            "artifacts": self.artifacts,
        }


@dataclass
class LogEntry:
    """One ordered transition in a run's log."""

    seq: int
    stage: str
    event: str
    timestamp: str


@dataclass
class PipelineRun:
    """Ephemeral state of one pipeline invocation."""

    order: list[str]
    status: RunStatus = RunStatus.NOT_STARTED
    stage_index: int = -1
    log: list[LogEntry] = field(default_factory=list)
    results: dict[str, StageResult] = field(default_factory=dict)
    failed_stage: str = ""
    failed_step: str = ""
    error: RatbuildError | None = None
    _seq: Any = field(default_factory=itertools.count, repr=False, compare=False)

    def __post_init__(self) -> None:
        for name in self.order:
            self.results.setdefault(name, StageResult(name))

    @property
    def current_stage(self) -> str | None:
        if 0 <= self.stage_index < len(self.order):
            return self.order[self.stage_index]
        return None

    def record(self, stage: str, event: str) -> LogEntry:
        entry = LogEntry(seq=next(self._seq), stage=stage, event=event, timestamp=_now())
        self.log.append(entry)
        return entry

    def events_for(self, stage: str) -> list[str]:
        return [e.event for e in self.log if e.stage == stage]

    def invoked_stages(self) -> list[str]:
        """Stages that got as far as starting, in order."""
        return [e.stage for e in self.log if e.event == "start"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "stage_index": self.stage_index,
            "order": self.order,
            "failed_stage": self.failed_stage,
            "failed_step": self.failed_step,
            "error": self.error.message if self.error else None,
            "stages": {name: result.to_dict() for name, result in self.results.items()},
        }


def failed_step_for(error: RatbuildError) -> str:
    """Map an error to the pipeline step it came from."""
    if isinstance(error, StageFailure):
        return error.step
    if isinstance(error, (FetchError, MissingSourceError)):
        return "provision"
    if isinstance(error, VerificationError):
        return "verify"
    return "unknown"


class Sequencer:
    """Runs stages in their declared order, stopping at the first failure.

    Args:
        stages: Ordered stage list; names must be unique.
        provisioner: Ensures sources are cached.
        executor: Runs stage lifecycles.
        rootfs: Target rootfs checked by the verifier.
        verifier: Raises VerificationError when a stage's artifacts are absent.
        run: Optional RunContext for structured events.
    """

    def __init__(
        self,
        stages: Iterable[Stage],
        provisioner: SourceProvisioner,
        executor: StageExecutor,
        rootfs: Path,
        verifier: Callable[[Stage, Path], VerificationReport] = check_stage,
        run: RunContext | None = None,
    ) -> None:
        self.stages = validate_stages(stages)
        self.provisioner = provisioner
        self.executor = executor
        self.rootfs = rootfs
        self.verifier = verifier
        self.run_ctx = run

    def _event(self, phase: str, message: str, event_key: str, **data: Any) -> None:
        if self.run_ctx is not None:
            log_phase_event(self.run_ctx, phase, message, event_key, **data)
        else:
            logger.info("[%s] %s", phase, message)

    def run(self) -> PipelineRun:
        """Execute every stage, returning the terminal PipelineRun."""
        pipeline = PipelineRun(order=[s.name for s in self.stages])
        pipeline.status = RunStatus.RUNNING
        total = len(self.stages)

        for index, stage in enumerate(self.stages):
            pipeline.stage_index = index
            result = pipeline.results[stage.name]
            result.status = StageStatus.RUNNING
            result.started_at = _now()
            pipeline.record(stage.name, "start")
            self._event("stage", f"({index + 1}/{total}) {stage.name}", "stage.start", stage=stage.name)

            try:
                provisioned = self.provisioner.ensure(stage)
                pipeline.record(stage.name, "provisioned")
                if provisioned.fetched:
                    self._event(
                        "fetch", f"Downloaded {provisioned.path.name}", "stage.fetched",
                        stage=stage.name, path=str(provisioned.path), size=provisioned.size,
                    )

                outcome = self.executor.execute(
                    stage, provisioned.path if stage.source is not None else None
                )
                result.steps = outcome.steps
                result.artifacts = outcome.artifacts
                pipeline.record(stage.name, "executed")

                self.verifier(stage, self.rootfs)
                pipeline.record(stage.name, "verified")
            except RatbuildError as e:
                return self._abort(pipeline, stage, result, e)

            result.status = StageStatus.VERIFIED
            result.completed_at = _now()
            self._event(
                "verify", f"{stage.name} verified", "stage.verified",
                stage=stage.name, artifacts=result.artifacts,
            )

        pipeline.status = RunStatus.COMPLETED
        self._event("build", f"All {total} stages completed", "pipeline.completed")
        return pipeline

    def _abort(
        self,
        pipeline: PipelineRun,
        stage: Stage,
        result: StageResult,
        error: RatbuildError,
    ) -> PipelineRun:
        step = failed_step_for(error)
        result.status = StageStatus.FAILED
        result.failed_step = step
        result.message = error.message
        result.completed_at = _now()
        pipeline.record(stage.name, "failed")

        pipeline.status = RunStatus.ABORTED
        pipeline.failed_stage = stage.name
        pipeline.failed_step = step
        pipeline.error = error
        self._event(
            "build", f"Aborted at {stage.name} ({step}): {error.message}", "pipeline.aborted",
            stage=stage.name, step=step, error=error.message, exit_code=error.exit_code,
        )
        return pipeline
