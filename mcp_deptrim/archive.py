"""Archive extraction and deterministic repackaging.

Archive entries are treated as untrusted: names that would escape the
extraction root are rejected before anything is written. Repackaged archives
are byte-reproducible for the same input tree (stable entry order, fixed
timestamps) and are written through a temporary sibling file so that an
interrupted run never leaves a truncated archive at the final path.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Final

_logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX: Final[str] = ".jar"
MANIFEST_ENTRY: Final[str] = "META-INF/MANIFEST.MF"
# Earliest timestamp representable in a zip entry.
_FIXED_DATE_TIME: Final[tuple[int, int, int, int, int, int]] = (1980, 1, 1, 0, 0, 0)


class UnsafeArchiveEntryError(ValueError):
    """Raised when an archive entry would be extracted outside its destination."""


def _validate_entry_name(name: str) -> PurePosixPath:
    normalized = name.replace("\\", "/")
    entry = PurePosixPath(normalized)
    if normalized.startswith("/") or entry.is_absolute() or ".." in entry.parts:
        raise UnsafeArchiveEntryError(f"archive entry escapes destination: {name!r}")
    if entry.parts and entry.parts[0].endswith(":"):
        raise UnsafeArchiveEntryError(f"archive entry has a drive prefix: {name!r}")
    return entry


def extract_archive(archive: Path, destination: Path) -> Path:
    """Decompress ``archive`` into ``destination``, preserving internal paths.

    Raises:
        zipfile.BadZipFile: the archive is not a readable zip/jar.
        UnsafeArchiveEntryError: an entry name points outside ``destination``.
        OSError: filesystem failure while writing.
    """
    with zipfile.ZipFile(archive) as zf:
        infos = zf.infolist()
        # Validate every name before writing anything
        entries = [(info, _validate_entry_name(info.filename)) for info in infos]
        destination.mkdir(parents=True, exist_ok=True)
        for info, entry in entries:
            target = destination.joinpath(*entry.parts)
            if info.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
    return destination


def extract_archives(directory: Path) -> dict[Path, Path]:
    """Extract every archive directly inside ``directory`` into a sibling folder.

    ``util-1.0.jar`` is extracted into ``util-1.0/``. A malformed archive is logged
    and skipped; whatever was partially extracted for it is removed.

    Returns:
        Mapping of archive path -> extracted directory for successful archives.
    """
    extracted: dict[Path, Path] = {}
    if not directory.is_dir():
        return extracted

    for archive in sorted(directory.glob(f"*{ARCHIVE_SUFFIX}")):
        if not archive.is_file():
            continue
        destination = directory / archive.stem
        try:
            extract_archive(archive, destination)
        except (zipfile.BadZipFile, UnsafeArchiveEntryError, OSError) as e:
            _logger.error(
                "skipping malformed archive %s: %s",
                archive.name,
                e,
                extra={"op": "extract", "archive": str(archive)},
            )
            shutil.rmtree(destination, ignore_errors=True)
            continue
        extracted[archive] = destination
    return extracted


def _entry_sort_key(name: str) -> tuple[int, str]:
    # Manifest first, as jar readers expect; everything else lexicographic.
    return (0 if name == MANIFEST_ENTRY else 1, name)


def list_tree_entries(tree: Path) -> list[tuple[str, Path]]:
    """Return ``(entry_name, file_path)`` for every regular file under ``tree``, in archive order."""
    entries: list[tuple[str, Path]] = []
    for root, _dirs, files in os.walk(tree):
        for name in files:
            path = Path(root) / name
            if not path.is_file() or path.is_symlink():
                continue
            entries.append((path.relative_to(tree).as_posix(), path))
    entries.sort(key=lambda e: _entry_sort_key(e[0]))
    return entries


def repackage_directory(tree: Path, archive: Path) -> Path:
    """Build ``archive`` from every regular file under ``tree``.

    Entry names are paths relative to ``tree``. The parent directory of
    ``archive`` is created if absent. The archive is first written to a temporary
    file next to the target and renamed into place on success.
    """
    if not tree.is_dir():
        raise NotADirectoryError(f"not a directory: {tree}")
    archive.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{archive.name}.", suffix=".part", dir=archive.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry_name, path in list_tree_entries(tree):
                info = zipfile.ZipInfo(entry_name, date_time=_FIXED_DATE_TIME)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                zf.writestr(info, path.read_bytes())
        os.replace(tmp_path, archive)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    _logger.debug("repackaged %s", archive.name, extra={"op": "repackage", "archive": str(archive)})
    return archive


__all__ = [
    "ARCHIVE_SUFFIX",
    "MANIFEST_ENTRY",
    "UnsafeArchiveEntryError",
    "extract_archive",
    "extract_archives",
    "list_tree_entries",
    "repackage_directory",
]
