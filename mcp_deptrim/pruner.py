"""Selective removal of unused compiled types from a staged archive tree."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Final, Iterable

from .models import PruneResult

_logger = logging.getLogger(__name__)

CLASS_FILE_SUFFIX: Final[str] = ".class"


def type_file_path(type_id: str) -> Path:
    """Relative path of the compiled file for a dot-separated type identifier.

    ``org.acme.util.A`` -> ``org/acme/util/A.class``. Nested types keep their
    binary name, e.g. ``org.acme.Outer$Inner`` -> ``org/acme/Outer$Inner.class``.
    """
    t = (type_id or "").strip()
    if not t or t.startswith(".") or t.endswith(".") or ".." in t or "/" in t or "\\" in t:
        raise ValueError(f"invalid type identifier: {type_id!r}")
    parts = t.split(".")
    return Path(*parts[:-1], parts[-1] + CLASS_FILE_SUFFIX)


def delete_empty_directories(root: Path) -> int:
    """Remove every directory under ``root`` that holds no files, bottom-up.

    ``root`` itself is kept. Returns the number of directories removed.
    """
    removed = 0
    for current, dirs, files in os.walk(root, topdown=False):
        current_path = Path(current)
        if current_path == root or files:
            continue
        # Children removed earlier in this walk are gone; re-check on disk.
        if any(current_path.iterdir()):
            continue
        current_path.rmdir()
        removed += 1
    return removed


def prune_types(source: Path, destination: Path, unused: Iterable[str]) -> PruneResult:
    """Copy ``source`` to ``destination`` without the compiled files of ``unused`` types.

    Any previous ``destination`` is replaced so the result depends only on the
    inputs; ``source`` is never modified. Unused types without a file in the
    tree are reported as missing. Directories left empty are removed.

    Raises:
        OSError: copying or deleting failed.
    """
    if not source.is_dir():
        raise FileNotFoundError(f"extracted archive not found: {source}")
    if destination.exists():
        shutil.rmtree(destination)
    shutil.copytree(source, destination)

    removed: list[str] = []
    missing: list[str] = []
    for type_id in sorted(set(unused)):
        target = destination / type_file_path(type_id)
        if not target.is_file():
            _logger.debug("no compiled file for %s", type_id, extra={"op": "prune"})
            missing.append(type_id)
            continue
        _logger.debug("removing file %s", target, extra={"op": "prune"})
        target.unlink()
        removed.append(type_id)

    removed_dirs = delete_empty_directories(destination)
    return PruneResult(
        destination=destination,
        removed_types=removed,
        missing_types=missing,
        removed_directories=removed_dirs,
    )


__all__ = ["CLASS_FILE_SUFFIX", "delete_empty_directories", "prune_types", "type_file_path"]
