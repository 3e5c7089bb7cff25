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

"""Source provisioning: make sure each stage's archive is in the cache.

A cached archive is never re-fetched. Downloads land in a ``.part`` file
that is renamed into place only once the transfer completes, so an
interrupted download cannot masquerade as a cached archive on the next run.
There are no retries: a network failure aborts the pipeline.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path

import requests

from ratbuild.build.stages import Stage
from ratbuild.core.exceptions import FetchError, MissingSourceError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536


@dataclass
class ProvisionResult:
    """Where a stage's source lives and whether it was just downloaded."""

    stage: str
    path: Path
    fetched: bool = False
    size: int = 0


class SourceProvisioner:
    """Ensures stage sources are present locally."""

    def __init__(
        self,
        sources_dir: Path,
        kernel_src: Path,
        session: requests.Session | None = None,
        timeout: int = 300,
    ) -> None:
        self.sources_dir = sources_dir
        self.kernel_src = kernel_src
        self.session = session or requests.Session()
        self.timeout = timeout

    def cache_path(self, stage: Stage) -> Path | None:
        """Return the expected cache path of a stage's archive."""
        if stage.source is None:
            return None
        return self.sources_dir / stage.source.filename

    def ensure(self, stage: Stage) -> ProvisionResult:
        """Guarantee the stage's source exists locally.

        Raises:
            MissingSourceError: No archive is cached and no URL is declared,
                or the kernel tree is absent.
            FetchError: The download did not complete.
        """
        if stage.source is None:
            if not self.kernel_src.is_dir():
                raise MissingSourceError(
                    message=f"Kernel source tree not found: {self.kernel_src}",
                    stage=stage.name,
                    path=str(self.kernel_src),
                )
            return ProvisionResult(stage=stage.name, path=self.kernel_src)

        dest = self.sources_dir / stage.source.filename
        if dest.is_file():
            logger.debug("Using cached source %s", dest)
            return ProvisionResult(stage=stage.name, path=dest, size=dest.stat().st_size)

        url = stage.source.url
        if not url:
            raise MissingSourceError(
                message=f"Source archive {dest} is missing and {stage.name} has no download URL",
                stage=stage.name,
                path=str(dest),
            )

        size = self._download(stage.name, url, dest)
        return ProvisionResult(stage=stage.name, path=dest, fetched=True, size=size)

    def _download(self, stage: str, url: str, dest: Path) -> int:
        partial = dest.with_name(dest.name + ".part")
        logger.info("Fetching %s -> %s", url, dest)

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with self.session.get(url, timeout=self.timeout, stream=True) as resp:
                if resp.status_code != 200:
                    raise FetchError(
                        message=f"Failed to fetch {url}: HTTP {resp.status_code}",
                        stage=stage,
                        url=url,
                    )
                size = 0
                with partial.open("wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
                        size += len(chunk)
            partial.replace(dest)
        except (requests.RequestException, OSError) as e:
            with contextlib.suppress(OSError):
                partial.unlink()
            raise FetchError(
                message=f"Failed to fetch {url}: {e}",
                stage=stage,
                url=url,
            ) from e
        except FetchError:
            with contextlib.suppress(OSError):
                partial.unlink()
            raise

        return size
