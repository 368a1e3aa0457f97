"""Trim orchestration across the resolved dependency set.

Design notes:
- The usage analyzer and the installer are injected (``UsageAnalyzer``,
  ``Publisher``); this module never computes usage nor spawns processes itself.
- Filesystem work is synchronous and runs in worker threads, bounded by a
  semaphore; every dependency gets its own staging directories.
- Dependency-scoped failures end up in the summary, never as exceptions.
  A specialized-coordinate collision is a contract violation and raises.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Iterable, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from .archive import ARCHIVE_SUFFIX, UnsafeArchiveEntryError, extract_archives, repackage_directory
from .config import Settings
from .models import (
    DependencyCoordinate,
    DependencyTrimResult,
    SpecializedDependency,
    TrimRunSummary,
    TrimSelection,
    TypeUsageRecord,
)
from .pruner import prune_types
from .publisher import InstallRequest, Publisher, synthesize_specialized

_logger = logging.getLogger(__name__)


class SpecializedCoordinateCollisionError(RuntimeError):
    """Two dependencies would be published under the same coordinate."""


class UsageAnalyzer(Protocol):
    def classify(self, dependency: DependencyCoordinate) -> TypeUsageRecord:
        """Return declared and used type identifiers for ``dependency``."""


class StaticUsageAnalyzer:
    """Analyzer backed by a precomputed ``group:artifact:version`` -> usage mapping.

    Dependencies missing from the mapping are reported with no declared types.
    """

    def __init__(self, usage: Mapping[str, TypeUsageRecord]) -> None:
        self._usage = dict(usage)

    def classify(self, dependency: DependencyCoordinate) -> TypeUsageRecord:
        return self._usage.get(dependency.coordinate, TypeUsageRecord())


class TrimLayout(BaseModel):
    """Where staged, pruned and repackaged archives live on disk."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    extract_directory: Path
    debloated_directory: Path
    libs_directory: Path

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrimLayout":
        build = settings.resolve(settings.BUILD_DIRECTORY)
        return cls(
            extract_directory=build / settings.EXTRACT_DIRECTORY_NAME,
            debloated_directory=build / settings.DEBLOATED_DIRECTORY_NAME,
            libs_directory=settings.resolve(settings.LIBS_DEBLOATED_DIRECTORY),
        )


def _fmt_types(types: Iterable[str]) -> str:
    return "[" + ", ".join(sorted(types)) + "]"


def _staging_names(dependencies: list[DependencyCoordinate]) -> dict[str, str]:
    """Unique staging directory name per dependency coordinate."""
    names: dict[str, str] = {}
    taken: set[str] = set()
    for dep in dependencies:
        name = dep.archive_name
        if name in taken:
            name = f"{dep.group_id}.{dep.archive_name}"
        suffix = 2
        base = name
        while name in taken:
            name = f"{base}-{suffix}"
            suffix += 1
        taken.add(name)
        names[dep.coordinate] = name
    return names


class TrimOrchestrator:
    """Runs extract -> prune -> repackage -> publish for every selected dependency."""

    def __init__(
        self,
        *,
        analyzer: UsageAnalyzer,
        publisher: Publisher,
        layout: Optional[TrimLayout] = None,
        settings: Optional[Settings] = None,
        concurrency: Optional[int] = None,
    ) -> None:
        s = settings or Settings()
        self._settings = s
        self._analyzer = analyzer
        self._publisher = publisher
        self._layout = layout or TrimLayout.from_settings(s)
        conc = int(concurrency or s.TRIM_CONCURRENCY)
        if conc < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = conc

    @property
    def layout(self) -> TrimLayout:
        return self._layout

    async def run(
        self,
        dependencies: Iterable[DependencyCoordinate],
        selection: TrimSelection,
    ) -> TrimRunSummary:
        deps = self._unique(dependencies)
        # Raises before anything is staged or handed to the installer.
        planned = self._plan_specialized(deps, selection)
        names = _staging_names(deps)

        extracted = await asyncio.to_thread(self._stage_archives, deps, names)
        usage = self._classify_all(deps)

        sem = asyncio.Semaphore(self._concurrency)

        async def _bounded(dep: DependencyCoordinate) -> DependencyTrimResult:
            specialized = planned.get(dep.coordinate)
            if specialized is None:
                return DependencyTrimResult(dependency=dep.coordinate, status="skipped")
            record = usage.get(dep.coordinate)
            if record is None:
                return DependencyTrimResult(
                    dependency=dep.coordinate,
                    status="failed",
                    failed_stage="classifying",
                    error="usage analysis failed",
                )
            async with sem:
                return await self._trim_one(dep, record, specialized, names[dep.coordinate], extracted)

        # Barrier: every dependency finishes before the specialized set is built.
        results = list(await asyncio.gather(*(_bounded(d) for d in deps)))

        specialized = sorted(
            (r.specialized for r in results if r.specialized is not None),
            key=lambda s: s.original_coordinate,
        )
        summary = TrimRunSummary(results=results, specialized=specialized)
        _logger.info(
            "trim finished: %d trimmed, %d publish failed, %d failed, %d skipped",
            summary.trimmed_count,
            summary.publish_failed_count,
            summary.failed_count,
            summary.skipped_count,
            extra={"op": "trim"},
        )
        return summary

    @staticmethod
    def _unique(dependencies: Iterable[DependencyCoordinate]) -> list[DependencyCoordinate]:
        seen: set[str] = set()
        deps: list[DependencyCoordinate] = []
        for dep in dependencies:
            if dep.coordinate in seen:
                _logger.warning("duplicate dependency %s ignored", dep.coordinate)
                continue
            seen.add(dep.coordinate)
            deps.append(dep)
        return deps

    def _plan_specialized(
        self, deps: list[DependencyCoordinate], selection: TrimSelection
    ) -> dict[str, SpecializedDependency]:
        """Specialized coordinates for every selected dependency, checked for collisions."""
        s = self._settings
        originals = {d.coordinate for d in deps}
        planned: dict[str, SpecializedDependency] = {}
        owner: dict[str, str] = {}
        for dep in deps:
            if not selection.selects(dep):
                continue
            spec = synthesize_specialized(
                dep,
                artifact_suffix=s.SPECIALIZED_ARTIFACT_SUFFIX,
                group_id=s.SPECIALIZED_GROUP_ID,
                epoch=s.TRIM_EPOCH,
            )
            target = spec.specialized_coordinate
            if target in owner or target in originals:
                raise SpecializedCoordinateCollisionError(
                    f"{dep.coordinate} would be published as {target}, "
                    f"which is already taken by {owner.get(target, target)}"
                )
            owner[target] = dep.coordinate
            planned[dep.coordinate] = spec
        return planned

    def _stage_archives(
        self, deps: list[DependencyCoordinate], names: dict[str, str]
    ) -> dict[str, Path]:
        """Copy every dependency archive into the extraction directory and decompress it."""
        target = self._layout.extract_directory
        shutil.rmtree(target, ignore_errors=True)
        target.mkdir(parents=True, exist_ok=True)

        staged: dict[Path, str] = {}
        for dep in deps:
            copy = target / f"{names[dep.coordinate]}{ARCHIVE_SUFFIX}"
            try:
                shutil.copyfile(dep.archive_path, copy)
            except OSError as e:
                _logger.error(
                    "cannot stage archive for %s: %s",
                    dep.coordinate,
                    e,
                    extra={"op": "extract", "dependency": dep.coordinate},
                )
                continue
            staged[copy] = dep.coordinate

        extracted = extract_archives(target)
        return {staged[archive]: directory for archive, directory in extracted.items() if archive in staged}

    def _classify_all(self, deps: list[DependencyCoordinate]) -> dict[str, TypeUsageRecord]:
        usage: dict[str, TypeUsageRecord] = {}
        for dep in deps:
            try:
                usage[dep.coordinate] = self._analyzer.classify(dep)
            except Exception as e:  # analyzer is external; isolate per dependency
                _logger.error(
                    "usage analysis failed for %s: %s",
                    dep.coordinate,
                    e,
                    extra={"op": "classify", "dependency": dep.coordinate},
                )

        _logger.info("ALL TYPES")
        for dep in deps:
            if dep.coordinate in usage:
                _logger.info("%s -> %s", dep.archive_path.name, _fmt_types(usage[dep.coordinate].declared))
        _logger.info("USED TYPES")
        for dep in deps:
            if dep.coordinate in usage:
                _logger.info("%s -> %s", dep.archive_path.name, _fmt_types(usage[dep.coordinate].used))
        _logger.info("UNUSED TYPES")
        for dep in deps:
            if dep.coordinate in usage:
                _logger.info("%s -> %s", dep.archive_path.name, _fmt_types(usage[dep.coordinate].unused))
        return usage

    async def _trim_one(
        self,
        dep: DependencyCoordinate,
        record: TypeUsageRecord,
        specialized: SpecializedDependency,
        name: str,
        extracted: dict[str, Path],
    ) -> DependencyTrimResult:
        extra = {"op": "trim", "dependency": dep.coordinate}
        unused = sorted(record.unused)
        _logger.info("Trimming dependency %s", dep.coordinate, extra=extra)
        _logger.info("%s -> %s", dep.archive_path.name, _fmt_types(unused), extra=extra)

        def _failed(stage, error: BaseException) -> DependencyTrimResult:
            _logger.error("%s failed for %s: %s", stage, dep.coordinate, error, extra=extra)
            return DependencyTrimResult(
                dependency=dep.coordinate,
                status="failed",
                failed_stage=stage,
                unused_types=unused,
                error=str(error),
            )

        source = extracted.get(dep.coordinate)
        if source is None:
            return _failed("extracting", FileNotFoundError(f"archive not extracted: {dep.archive_path}"))

        destination = self._layout.debloated_directory / name
        try:
            pruned = await asyncio.to_thread(prune_types, source, destination, unused)
        except (OSError, ValueError) as e:
            return _failed("pruning", e)

        archive = self._layout.libs_directory / f"{name}{ARCHIVE_SUFFIX}"
        try:
            await asyncio.to_thread(repackage_directory, destination, archive)
        except (OSError, UnsafeArchiveEntryError) as e:
            return _failed("repackaging", e)

        request = InstallRequest.for_specialized(
            specialized, archive, self._layout.libs_directory, packaging=self._settings.PACKAGING
        )
        try:
            await self._publisher.publish(request)
        except Exception as e:  # publisher is injected; isolate per dependency
            _logger.error(
                "Error installing the trimmed dependency %s: %s", dep.coordinate, e, extra=extra
            )
            return DependencyTrimResult(
                dependency=dep.coordinate,
                status="publish_failed",
                failed_stage="publishing",
                unused_types=unused,
                removed_types=pruned.removed_types,
                trimmed_archive=archive,
                error=str(e),
            )

        return DependencyTrimResult(
            dependency=dep.coordinate,
            status="trimmed",
            unused_types=unused,
            removed_types=pruned.removed_types,
            trimmed_archive=archive,
            specialized=specialized,
        )


__all__ = [
    "SpecializedCoordinateCollisionError",
    "StaticUsageAnalyzer",
    "TrimLayout",
    "TrimOrchestrator",
    "UsageAnalyzer",
]
