"""Top-level DepTrim run: trim selected dependencies, then write POM variants.

Error handling policy:
- Dependency-scoped failures are reported in the summary; the run completes.
- An unusable base POM fails the combining stage only; the report carries a
  non-zero exit code and the trimmed archives stay in place.
- A specialized-coordinate collision propagates (contract violation).
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional

from .config import Settings
from .descriptor import DescriptorParseError, DescriptorVariantGenerator
from .models import DependencyCoordinate, DepTrimReport, TrimSelection
from .orchestrator import TrimLayout, TrimOrchestrator, UsageAnalyzer
from .publisher import MavenDeployPublisher, Publisher

_logger = logging.getLogger(__name__)

SEPARATOR = "-------------------------------------------------------"

NowFn = Callable[[], float]


def format_duration(milliseconds: float) -> str:
    """Human-readable duration, e.g. ``"350 ms"``, ``"5 s"``, ``"1 min, 5 s"``, ``"2 h, 0 min, 3 s"``."""
    ms = max(0, int(milliseconds))
    if ms < 1000:
        return f"{ms} ms"
    seconds = ms // 1000
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours} h, {minutes} min, {secs} s"
    if minutes:
        return f"{minutes} min, {secs} s"
    return f"{secs} s"


def build_selection(
    settings: Settings,
    trim_dependencies: Optional[Iterable[str]] = None,
    ignore_scopes: Optional[Iterable[str]] = None,
) -> TrimSelection:
    """Selection from explicit arguments, falling back to settings."""
    trims = list(trim_dependencies) if trim_dependencies is not None else settings.TRIM_DEPENDENCIES
    scopes = set(ignore_scopes) if ignore_scopes is not None else set(settings.IGNORE_SCOPES)
    if settings.IGNORE_TESTS:
        scopes.add("test")
    return TrimSelection(
        trim_dependencies=frozenset(trims),
        ignore_scopes=frozenset(scopes),
        trim_all_when_empty=settings.TRIM_ALL_WHEN_SELECTION_EMPTY,
    )


async def run_deptrim(
    *,
    dependencies: Iterable[DependencyCoordinate],
    analyzer: UsageAnalyzer,
    publisher: Optional[Publisher] = None,
    settings: Optional[Settings] = None,
    packaging: str = "jar",
    trim_dependencies: Optional[Iterable[str]] = None,
    ignore_scopes: Optional[Iterable[str]] = None,
    debloated_pom_path: Optional[Path] = None,
    now_fn: Optional[NowFn] = None,
) -> DepTrimReport:
    s = settings or Settings()
    now: NowFn = now_fn or time.monotonic
    started = now()

    if s.SKIP_DEPTRIM:
        _logger.info("Skipping DepTrim plugin execution")
        return DepTrimReport(stage="done", skipped_reason="skipped by configuration")

    _logger.info(SEPARATOR)
    _logger.info("Starting DepTrim dependency analysis")

    if (packaging or "").strip().lower() == "pom":
        _logger.info("Skipping because packaging type is pom")
        return DepTrimReport(stage="done", skipped_reason="packaging type is pom")

    selection = build_selection(s, trim_dependencies, ignore_scopes)
    orchestrator = TrimOrchestrator(
        analyzer=analyzer,
        publisher=publisher or MavenDeployPublisher(),
        layout=TrimLayout.from_settings(s),
        settings=s,
    )

    report = DepTrimReport(stage="extracting")
    _logger.info("STARTING TRIMMING DEPENDENCIES")
    report.summary = await orchestrator.run(dependencies, selection)

    pom_path = debloated_pom_path or s.DEBLOATED_POM_PATH
    wants_poms = s.CREATE_POM_SPECIALIZED or s.CREATE_ALL_POM_SPECIALIZED
    if wants_poms and pom_path is None:
        _logger.warning("specialized POMs requested but DEBLOATED_POM_PATH is not set")
    elif wants_poms and pom_path is not None:
        report.stage = "combining"
        generator = DescriptorVariantGenerator(
            base_descriptor=s.resolve(Path(pom_path)),
            specialized=report.summary.specialized,
            concurrency=s.TRIM_CONCURRENCY,
        )
        try:
            report.descriptors = await generator.generate(
                single=s.CREATE_POM_SPECIALIZED,
                all_combinations=s.CREATE_ALL_POM_SPECIALIZED,
            )
        except DescriptorParseError as e:
            _logger.error("Cannot create specialized POMs: %s", e, extra={"op": "combine"})
            report.stage = "failed"
            report.error = str(e)
            report.exit_code = 1

    if report.stage != "failed":
        report.stage = "done"

    report.elapsed = format_duration((now() - started) * 1000)
    summary = report.summary
    _logger.info(
        "DepTrim done in %s: %d trimmed, %d publish failed, %d failed, %d skipped, %d POMs written",
        report.elapsed,
        summary.trimmed_count,
        summary.publish_failed_count,
        summary.failed_count,
        summary.skipped_count,
        len(report.descriptors.generated) if report.descriptors else 0,
        extra={"op": "run", "exit_code": report.exit_code},
    )
    return report


__all__ = ["build_selection", "format_duration", "run_deptrim"]
