"""Pydantic domain and response models.

These models are intentionally small, explicit, and validation-focused. Value
objects that end up as set members or mapping keys (coordinates, specialized
dependencies) are frozen. Unknown/extra fields from callers are tolerated and
ignored.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

# Reasonable maximum length for Maven coordinate parts.
_COORD_PART_MAX_LEN = 200

TrimStage = Literal[
    "not_started",
    "extracting",
    "classifying",
    "pruning",
    "repackaging",
    "publishing",
    "combining",
    "done",
    "failed",
]

TrimStatus = Literal["skipped", "trimmed", "publish_failed", "failed"]


def _strip_non_empty(v: str) -> str:
    v_stripped = v.strip()
    if not v_stripped:
        raise ValueError("must not be empty")
    return v_stripped


class DependencyCoordinate(BaseModel):
    """One resolved dependency archive (groupId:artifactId:version + scope + file)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    group_id: str = Field(..., min_length=1, max_length=_COORD_PART_MAX_LEN)
    artifact_id: str = Field(..., min_length=1, max_length=_COORD_PART_MAX_LEN)
    version: str = Field(..., min_length=1, max_length=_COORD_PART_MAX_LEN)
    scope: str = "compile"
    archive_path: Path

    @field_validator("group_id", "artifact_id", "version")
    @classmethod
    def _strip_and_validate(cls, v: str) -> str:
        return _strip_non_empty(v)

    @field_validator("scope")
    @classmethod
    def _normalize_scope(cls, v: str) -> str:
        return (v or "compile").strip().lower() or "compile"

    @property
    def coordinate(self) -> str:
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    @property
    def archive_name(self) -> str:
        """Archive file name without its extension, e.g. ``util-1.0`` for ``util-1.0.jar``."""
        return self.archive_path.stem


class TypeUsageRecord(BaseModel):
    """Usage classification of one archive as reported by the external analyzer.

    ``used`` is not required to be a subset of ``declared``; used types that
    are not declared simply never show up in the unused set.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    declared: frozenset[str] = Field(default_factory=frozenset)
    used: frozenset[str] = Field(default_factory=frozenset)

    @property
    def unused(self) -> frozenset[str]:
        return self.declared - self.used


class TrimSelection(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    trim_dependencies: frozenset[str] = Field(default_factory=frozenset)
    ignore_scopes: frozenset[str] = Field(default_factory=frozenset)
    trim_all_when_empty: bool = False

    @field_validator("trim_dependencies")
    @classmethod
    def _strip_coordinates(cls, v: frozenset[str]) -> frozenset[str]:
        return frozenset(s.strip() for s in v if s and s.strip())

    @field_validator("ignore_scopes")
    @classmethod
    def _normalize_scopes(cls, v: frozenset[str]) -> frozenset[str]:
        return frozenset(s.strip().lower() for s in v if s and s.strip())

    def selects(self, dependency: DependencyCoordinate) -> bool:
        """Whether ``dependency`` must be trimmed under this selection."""
        if dependency.scope in self.ignore_scopes:
            return False
        if not self.trim_dependencies:
            return self.trim_all_when_empty
        return dependency.coordinate in self.trim_dependencies


class SpecializedDependency(BaseModel):
    """Maps an original dependency to the coordinates of its trimmed archive."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    original_group_id: str = Field(..., min_length=1)
    original_artifact_id: str = Field(..., min_length=1)
    original_version: str = Field(..., min_length=1)
    specialized_group_id: str = Field(..., min_length=1)
    specialized_artifact_id: str = Field(..., min_length=1)
    specialized_version: str = Field(..., min_length=1)

    @field_validator(
        "original_group_id",
        "original_artifact_id",
        "original_version",
        "specialized_group_id",
        "specialized_artifact_id",
        "specialized_version",
    )
    @classmethod
    def _strip_and_validate(cls, v: str) -> str:
        return _strip_non_empty(v)

    @property
    def original_coordinate(self) -> str:
        return f"{self.original_group_id}:{self.original_artifact_id}:{self.original_version}"

    @property
    def specialized_coordinate(self) -> str:
        return (
            f"{self.specialized_group_id}:{self.specialized_artifact_id}:"
            f"{self.specialized_version}"
        )


class PruneResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    destination: Path
    removed_types: list[str] = Field(default_factory=list)
    missing_types: list[str] = Field(default_factory=list)
    removed_directories: int = 0


class DependencyTrimResult(BaseModel):
    """Outcome of the trim sub-flow for a single dependency."""

    model_config = ConfigDict(extra="ignore")

    dependency: str
    status: TrimStatus
    failed_stage: Optional[TrimStage] = None
    unused_types: list[str] = Field(default_factory=list)
    removed_types: list[str] = Field(default_factory=list)
    trimmed_archive: Optional[Path] = None
    specialized: Optional[SpecializedDependency] = None
    error: Optional[str] = None


class TrimRunSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[DependencyTrimResult] = Field(default_factory=list)
    specialized: list[SpecializedDependency] = Field(default_factory=list)

    def _count(self, status: TrimStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def trimmed_count(self) -> int:
        return self._count("trimmed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def publish_failed_count(self) -> int:
        return self._count("publish_failed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed_count(self) -> int:
        return self._count("failed")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def skipped_count(self) -> int:
        return self._count("skipped")


class Combination(BaseModel):
    """One subset of the specialized dependencies, numbered from 1."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    members: tuple[SpecializedDependency, ...] = ()
    ordinal: int = Field(..., ge=1)
    total_specialized: int = Field(..., ge=0)

    @property
    def cardinality(self) -> int:
        return len(self.members)


class GeneratedDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: Path
    ordinal: int
    cardinality: int
    total_specialized: int
    members: list[str] = Field(default_factory=list)


class DescriptorVariantsResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base_descriptor: Path
    generated: list[GeneratedDescriptor] = Field(default_factory=list)
    skipped_ordinals: list[int] = Field(default_factory=list)


class DepTrimReport(BaseModel):
    """Final report of one run, always produced even on partial failure."""

    model_config = ConfigDict(extra="ignore")

    stage: TrimStage = "not_started"
    skipped_reason: Optional[str] = None
    summary: Optional[TrimRunSummary] = None
    descriptors: Optional[DescriptorVariantsResult] = None
    error: Optional[str] = None
    elapsed: Optional[str] = None
    exit_code: int = 0


__all__ = [
    "Combination",
    "DepTrimReport",
    "DependencyCoordinate",
    "DependencyTrimResult",
    "DescriptorVariantsResult",
    "GeneratedDescriptor",
    "PruneResult",
    "SpecializedDependency",
    "TrimRunSummary",
    "TrimSelection",
    "TrimStage",
    "TrimStatus",
    "TypeUsageRecord",
]
