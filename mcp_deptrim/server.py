"""MCP STDIO server and tool definitions.

Design notes:
- Transport adapter stays thin; core logic is kept local and re-usable.
- Usage data arrives inline from the caller (the bytecode analyzer runs
  elsewhere) and is served through StaticUsageAnalyzer.
- Logging goes to stderr via the central logging config.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from fastmcp import FastMCP

from .config import Settings
from .descriptor import DescriptorParseError, DescriptorVariantGenerator
from .logging_config import configure_logging
from .manager import run_deptrim
from .models import (
    DependencyCoordinate,
    DepTrimReport,
    DescriptorVariantsResult,
    SpecializedDependency,
    TypeUsageRecord,
)
from .orchestrator import StaticUsageAnalyzer
from .publisher import Publisher

_logger = logging.getLogger(__name__)

_settings = Settings()
configure_logging(_settings.LOG_LEVEL, json_logs=_settings.LOG_JSON)


def _parse_usage(usage: dict[str, Any]) -> dict[str, TypeUsageRecord]:
    """``{"g:a:v": {"declared": [...], "used": [...]}}`` -> records keyed by coordinate."""
    records: dict[str, TypeUsageRecord] = {}
    for coordinate, entry in (usage or {}).items():
        key = (coordinate or "").strip()
        if not key:
            raise ValueError("usage keys must be non-empty group:artifact:version strings")
        records[key] = TypeUsageRecord.model_validate(entry or {})
    return records


async def trim_dependencies_core(
    *,
    dependencies: list[dict[str, Any]],
    usage: dict[str, Any],
    trim_dependencies: Optional[list[str]] = None,
    ignore_scopes: Optional[list[str]] = None,
    packaging: str = "jar",
    debloated_pom_path: Optional[str] = None,
    publisher: Optional[Publisher] = None,
    settings: Optional[Settings] = None,
) -> DepTrimReport:
    """Core logic for the trim_dependencies tool (transport-neutral).

    Error handling policy:
    - Malformed dependency or usage entries raise ValueError (pydantic
      validation errors are ValueErrors) before anything touches the disk.
    - Per-dependency failures are reported in the returned summary.
    """

    coords = [DependencyCoordinate.model_validate(d) for d in dependencies]
    analyzer = StaticUsageAnalyzer(_parse_usage(usage))
    _logger.info(
        "trim requested",
        extra={"op": "trim_dependencies", "dependencies": len(coords)},
    )
    return await run_deptrim(
        dependencies=coords,
        analyzer=analyzer,
        publisher=publisher,
        settings=settings or _settings,
        packaging=packaging,
        trim_dependencies=trim_dependencies,
        ignore_scopes=ignore_scopes,
        debloated_pom_path=Path(debloated_pom_path) if debloated_pom_path else None,
    )


async def generate_specialized_descriptors_core(
    *,
    debloated_pom_path: str,
    specialized: list[dict[str, Any]],
    single: bool = False,
    all_combinations: bool = True,
    settings: Optional[Settings] = None,
) -> DescriptorVariantsResult:
    """Core logic for the generate_specialized_descriptors tool.

    Raises ValueError when the base POM cannot be parsed or no mode is selected.
    """

    if not single and not all_combinations:
        raise ValueError("select at least one of single or all_combinations")
    s = settings or _settings
    specs = [SpecializedDependency.model_validate(d) for d in specialized]
    generator = DescriptorVariantGenerator(
        base_descriptor=s.resolve(Path(debloated_pom_path)),
        specialized=specs,
        concurrency=s.TRIM_CONCURRENCY,
    )
    try:
        return await generator.generate(single=single, all_combinations=all_combinations)
    except DescriptorParseError as e:
        raise ValueError(f"Invalid POM XML: {e}") from e


_server = FastMCP("mcp-deptrim")


@_server.tool()
async def trim_dependencies(
    dependencies: list[dict[str, Any]],
    usage: dict[str, Any],
    trim_dependencies: Optional[list[str]] = None,
    ignore_scopes: Optional[list[str]] = None,
    packaging: str = "jar",
    debloated_pom_path: Optional[str] = None,
) -> dict:
    """Trim unused classes from the selected dependency jars and publish them.

    ``dependencies`` items carry group_id, artifact_id, version, scope and
    archive_path; ``usage`` maps "group:artifact:version" to declared/used
    class names. Transport wrapper around trim_dependencies_core.
    """

    result = await trim_dependencies_core(
        dependencies=dependencies,
        usage=usage,
        trim_dependencies=trim_dependencies,
        ignore_scopes=ignore_scopes,
        packaging=packaging,
        debloated_pom_path=debloated_pom_path,
    )
    return result.model_dump(mode="json")


@_server.tool()
async def generate_specialized_descriptors(
    debloated_pom_path: str,
    specialized: list[dict[str, Any]],
    single: bool = False,
    all_combinations: bool = True,
) -> dict:
    """Write specialized POM variants for the given trimmed dependencies.

    Transport wrapper around generate_specialized_descriptors_core.
    """

    result = await generate_specialized_descriptors_core(
        debloated_pom_path=debloated_pom_path,
        specialized=specialized,
        single=single,
        all_combinations=all_combinations,
    )
    return result.model_dump(mode="json")


def run() -> None:  # pragma: no cover
    _server.run()


__all__ = [
    "generate_specialized_descriptors_core",
    "run",
    "trim_dependencies_core",
]
