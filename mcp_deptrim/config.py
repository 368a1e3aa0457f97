"""Application configuration using pydantic-settings.

This module centralizes all runtime configuration with explicit types and sane defaults.
All fields are overridable via environment variables with the same names
(case-insensitive). List fields accept JSON arrays, e.g.
`TRIM_DEPENDENCIES='["org.acme:util:1.0"]'`.

Notes:
- Directory fields are relative to PROJECT_DIRECTORY unless absolute.
- TRIM_ALL_WHEN_SELECTION_EMPTY defaults to False: only dependencies explicitly listed in
  TRIM_DEPENDENCIES are trimmed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Top-level application settings.

    Env var precedence follows pydantic-settings rules. All fields can be overridden via
    environment variables with the same names, e.g., `INSTALLER_TIMEOUT_SECONDS=300`.
    """

    # Layout
    PROJECT_DIRECTORY: Path = Path(".")
    BUILD_DIRECTORY: Path = Path("target")
    EXTRACT_DIRECTORY_NAME: str = "dependency"
    DEBLOATED_DIRECTORY_NAME: str = "dependency-debloated"
    LIBS_DEBLOATED_DIRECTORY: Path = Path("libs-debloated")

    # Installer (external process)
    INSTALLER_EXECUTABLE: str = "mvn"
    INSTALLER_TIMEOUT_SECONDS: int = Field(default=600, ge=1)
    PACKAGING: str = "jar"

    # Specialized coordinates
    SPECIALIZED_ARTIFACT_SUFFIX: str = Field(default="-debloated", min_length=1)
    SPECIALIZED_GROUP_ID: Optional[str] = None
    TRIM_EPOCH: Optional[str] = None

    # Selection
    TRIM_DEPENDENCIES: list[str] = Field(default_factory=list)
    IGNORE_SCOPES: list[str] = Field(default_factory=list)
    IGNORE_TESTS: bool = False
    TRIM_ALL_WHEN_SELECTION_EMPTY: bool = False
    SKIP_DEPTRIM: bool = False

    # Concurrency for per-dependency and per-combination work
    TRIM_CONCURRENCY: int = Field(default=4, ge=1)

    # Descriptor variants
    DEBLOATED_POM_PATH: Optional[Path] = None
    CREATE_POM_SPECIALIZED: bool = False
    CREATE_ALL_POM_SPECIALIZED: bool = False

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    def resolve(self, path: Path) -> Path:
        """Resolve ``path`` against PROJECT_DIRECTORY unless it is absolute."""
        if path.is_absolute():
            return path
        return self.PROJECT_DIRECTORY / path


__all__ = ["Settings"]
