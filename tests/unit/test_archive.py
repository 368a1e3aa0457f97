import asyncio
import zipfile
from pathlib import Path

import pytest

from mcp_deptrim.archive import (
    UnsafeArchiveEntryError,
    extract_archive,
    extract_archives,
    list_tree_entries,
    repackage_directory,
)


def _entry_names(archive: Path) -> list[str]:
    with zipfile.ZipFile(archive) as zf:
        return zf.namelist()


def test_extract_archive_preserves_internal_paths(tmp_path: Path, make_jar, jar_entries):
    jar = make_jar(tmp_path / "util-1.0.jar", jar_entries("org.acme.util.A"))
    out = extract_archive(jar, tmp_path / "out")

    assert (out / "org" / "acme" / "util" / "A.class").read_bytes() == b"bytecode:org.acme.util.A"
    assert (out / "META-INF" / "MANIFEST.MF").is_file()


def test_extract_archives_into_sibling_directories(tmp_path: Path, make_jar, jar_entries):
    staging = tmp_path / "dependency"
    first = make_jar(staging / "util-1.0.jar", jar_entries("org.acme.util.A"))
    second = make_jar(staging / "lib-2.0.jar", jar_entries("org.other.lib.X"))
    before = first.read_bytes()

    extracted = extract_archives(staging)

    assert extracted == {first: staging / "util-1.0", second: staging / "lib-2.0"}
    assert (staging / "lib-2.0" / "org" / "other" / "lib" / "X.class").is_file()
    # source archives are never modified
    assert first.read_bytes() == before


def test_extract_archives_skips_malformed_archive(tmp_path: Path, make_jar, jar_entries, caplog):
    staging = tmp_path / "dependency"
    good = make_jar(staging / "good-1.0.jar", jar_entries("g.A"))
    (staging / "broken-1.0.jar").write_bytes(b"definitely not a zip")

    extracted = extract_archives(staging)

    assert list(extracted) == [good]
    assert not (staging / "broken-1.0").exists()
    assert "broken-1.0.jar" in caplog.text


def test_extract_archives_missing_directory_is_empty(tmp_path: Path):
    assert extract_archives(tmp_path / "nope") == {}


@pytest.mark.parametrize("name", ["../evil.class", "/abs/evil.class", "a/../../evil.class"])
def test_unsafe_entries_rejected_before_writing(tmp_path: Path, make_jar, name: str):
    jar = make_jar(tmp_path / "evil.jar", {"ok/Fine.class": b"x", name: b"y"})
    with pytest.raises(UnsafeArchiveEntryError):
        extract_archive(jar, tmp_path / "out")
    assert not (tmp_path / "evil.class").exists()
    assert not (tmp_path / "out" / "ok" / "Fine.class").exists()


def _write_tree(root: Path) -> None:
    files = {
        "org/acme/util/A.class": b"A",
        "org/acme/util/sub/Z.class": b"Z",
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n",
        "META-INF/LICENSE": b"license",
        "about.html": b"<html/>",
    }
    for rel, data in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
    (root / "empty-dir").mkdir()


def test_repackage_orders_entries_manifest_first_then_lexicographic(tmp_path: Path):
    tree = tmp_path / "tree"
    _write_tree(tree)
    archive = repackage_directory(tree, tmp_path / "libs" / "util-1.0.jar")

    assert _entry_names(archive) == [
        "META-INF/MANIFEST.MF",
        "META-INF/LICENSE",
        "about.html",
        "org/acme/util/A.class",
        "org/acme/util/sub/Z.class",
    ]


def test_repackage_is_byte_reproducible(tmp_path: Path):
    tree = tmp_path / "tree"
    _write_tree(tree)
    first = repackage_directory(tree, tmp_path / "a" / "x.jar").read_bytes()
    second = repackage_directory(tree, tmp_path / "b" / "x.jar").read_bytes()
    assert first == second


def test_repackage_creates_parent_and_leaves_no_temp_files(tmp_path: Path):
    tree = tmp_path / "tree"
    _write_tree(tree)
    target = tmp_path / "deep" / "libs-debloated" / "x.jar"

    repackage_directory(tree, target)

    assert target.is_file()
    assert [p.name for p in target.parent.iterdir()] == ["x.jar"]
    with zipfile.ZipFile(target) as zf:
        assert zf.read("org/acme/util/sub/Z.class") == b"Z"


def test_repackage_round_trips_extracted_content(tmp_path: Path, make_jar, jar_entries):
    jar = make_jar(tmp_path / "in.jar", jar_entries("p.A", "p.q.B"))
    tree = extract_archive(jar, tmp_path / "tree")
    out = repackage_directory(tree, tmp_path / "out.jar")
    with zipfile.ZipFile(jar) as original, zipfile.ZipFile(out) as rebuilt:
        assert sorted(original.namelist()) == sorted(rebuilt.namelist())
        for name in original.namelist():
            assert original.read(name) == rebuilt.read(name)


def test_repackage_missing_tree_raises(tmp_path: Path):
    with pytest.raises(NotADirectoryError):
        repackage_directory(tmp_path / "missing", tmp_path / "x.jar")
    assert not (tmp_path / "x.jar").exists()


def test_list_tree_entries_skips_directories(tmp_path: Path):
    tree = tmp_path / "tree"
    _write_tree(tree)
    names = [name for name, _ in list_tree_entries(tree)]
    assert "empty-dir" not in names
    assert all(not n.endswith("/") for n in names)


def _fail_on_second_entry(monkeypatch: pytest.MonkeyPatch, exc: BaseException) -> None:
    real_writestr = zipfile.ZipFile.writestr
    calls = []

    def writestr(self, *args, **kwargs):
        calls.append(args[0])
        if len(calls) == 2:
            raise exc
        return real_writestr(self, *args, **kwargs)

    monkeypatch.setattr(zipfile.ZipFile, "writestr", writestr)


@pytest.mark.parametrize("exc", [OSError("disk full"), KeyboardInterrupt(), asyncio.CancelledError()])
def test_interrupted_repackage_leaves_no_partial_archive(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, exc: BaseException
):
    tree = tmp_path / "tree"
    _write_tree(tree)
    target = tmp_path / "libs-debloated" / "x.jar"
    _fail_on_second_entry(monkeypatch, exc)

    with pytest.raises(type(exc)):
        repackage_directory(tree, target)

    assert not target.exists()
    assert list(target.parent.iterdir()) == []


def test_interrupted_repackage_keeps_previous_archive(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    tree = tmp_path / "tree"
    _write_tree(tree)
    target = repackage_directory(tree, tmp_path / "libs-debloated" / "x.jar")
    before = target.read_bytes()
    _fail_on_second_entry(monkeypatch, asyncio.CancelledError())

    with pytest.raises(asyncio.CancelledError):
        repackage_directory(tree, target)

    assert target.read_bytes() == before
    assert [p.name for p in target.parent.iterdir()] == ["x.jar"]
