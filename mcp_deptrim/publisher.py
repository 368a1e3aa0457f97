"""Publishing trimmed archives under specialized coordinates.

The installer is an external program (``mvn deploy:deploy-file`` by default).
This module only builds the request and runs the program with a bounded
timeout; success is judged from the exit status alone. Tests substitute any
object implementing :class:`Publisher`.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .models import DependencyCoordinate, SpecializedDependency

_logger = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """The installer could not register a trimmed archive."""


def synthesize_specialized(
    dependency: DependencyCoordinate,
    *,
    artifact_suffix: str = "-debloated",
    group_id: Optional[str] = None,
    epoch: Optional[str] = None,
) -> SpecializedDependency:
    """Derive the coordinates a trimmed archive is published under.

    The artifact id always gets ``artifact_suffix`` and ``epoch`` (when set) is
    appended to the version. The group id is kept unless a fixed ``group_id``
    is given; the original group then moves into the artifact id
    (``com.a:util`` -> ``<group_id>:com.a.util-debloated``) so artifacts with
    the same name from different groups stay apart.
    """
    if not artifact_suffix:
        raise ValueError("artifact_suffix must be non-empty")
    version = dependency.version
    if epoch:
        version = f"{version}-{epoch}"
    artifact_id = f"{dependency.artifact_id}{artifact_suffix}"
    if group_id and group_id != dependency.group_id:
        artifact_id = f"{dependency.group_id}.{artifact_id}"
    return SpecializedDependency(
        original_group_id=dependency.group_id,
        original_artifact_id=dependency.artifact_id,
        original_version=dependency.version,
        specialized_group_id=group_id or dependency.group_id,
        specialized_artifact_id=artifact_id,
        specialized_version=version,
    )


class InstallRequest(BaseModel):
    """Parameters handed to the repository installer."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    repository_url: str = Field(..., min_length=1)
    packaging: str = "jar"
    archive_file: Path
    group_id: str
    artifact_id: str
    version: str

    @classmethod
    def for_specialized(
        cls,
        specialized: SpecializedDependency,
        archive_file: Path,
        repository: Path,
        packaging: str = "jar",
    ) -> "InstallRequest":
        return cls(
            repository_url=repository.resolve().as_uri(),
            packaging=packaging,
            archive_file=archive_file.resolve(),
            group_id=specialized.specialized_group_id,
            artifact_id=specialized.specialized_artifact_id,
            version=specialized.specialized_version,
        )

    def to_command(self, executable: str = "mvn") -> list[str]:
        return [
            executable,
            "deploy:deploy-file",
            f"-Durl={self.repository_url}",
            f"-Dpackaging={self.packaging}",
            f"-Dfile={self.archive_file}",
            f"-DgroupId={self.group_id}",
            f"-DartifactId={self.artifact_id}",
            f"-Dversion={self.version}",
        ]


class Publisher(Protocol):
    async def publish(self, request: InstallRequest) -> None:
        """Register the archive described by ``request``; raise PublishError on failure."""


class MavenDeployPublisher:
    """Runs the installer as a subprocess under a timeout.

    Parameters are sourced from Settings by default, but can be overridden
    for testability.
    """

    def __init__(
        self,
        *,
        executable: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        s = Settings()
        self._executable = executable or s.INSTALLER_EXECUTABLE
        self._timeout = float(timeout_seconds or s.INSTALLER_TIMEOUT_SECONDS)
        if self._timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")

    async def publish(self, request: InstallRequest) -> None:
        command = request.to_command(self._executable)
        _logger.info(
            "installing %s:%s:%s",
            request.group_id,
            request.artifact_id,
            request.version,
            extra={"op": "publish", "repository": request.repository_url},
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise PublishError(f"cannot start installer {self._executable!r}: {e}") from e

        try:
            output, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise PublishError(f"installer timed out after {self._timeout:g}s")
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            tail = (output or b"").decode("utf-8", errors="replace").strip().splitlines()[-5:]
            _logger.debug("installer output: %s", "\n".join(tail), extra={"op": "publish"})
            raise PublishError(f"installer exited with status {proc.returncode}")


__all__ = [
    "InstallRequest",
    "MavenDeployPublisher",
    "PublishError",
    "Publisher",
    "synthesize_specialized",
]
