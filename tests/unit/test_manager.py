from pathlib import Path

import pytest

from mcp_deptrim.config import Settings
from mcp_deptrim.manager import build_selection, format_duration, run_deptrim
from mcp_deptrim.orchestrator import StaticUsageAnalyzer


@pytest.mark.parametrize(
    "ms,expected",
    [
        (0, "0 ms"),
        (350, "350 ms"),
        (5_000, "5 s"),
        (65_400, "1 min, 5 s"),
        (7_203_000, "2 h, 0 min, 3 s"),
        (-10, "0 ms"),
    ],
)
def test_format_duration(ms: float, expected: str):
    assert format_duration(ms) == expected


def test_build_selection_adds_test_scope_when_ignoring_tests():
    s = Settings(IGNORE_TESTS=True, IGNORE_SCOPES=["provided"], TRIM_DEPENDENCIES=["g:a:1"])
    selection = build_selection(s)
    assert selection.ignore_scopes == frozenset({"provided", "test"})
    assert selection.trim_dependencies == frozenset({"g:a:1"})


def test_build_selection_explicit_arguments_win():
    s = Settings(TRIM_DEPENDENCIES=["g:a:1"], IGNORE_SCOPES=["provided"])
    selection = build_selection(s, trim_dependencies=["x:y:2"], ignore_scopes=[])
    assert selection.trim_dependencies == frozenset({"x:y:2"})
    assert selection.ignore_scopes == frozenset()


def _clock(*values: float):
    it = iter(values)
    return lambda: next(it)


@pytest.mark.asyncio
async def test_skip_flag_does_nothing(tmp_path: Path, acme_util, usage, publisher):
    s = Settings(PROJECT_DIRECTORY=tmp_path, SKIP_DEPTRIM=True)
    report = await run_deptrim(
        dependencies=[acme_util], analyzer=StaticUsageAnalyzer(usage), publisher=publisher, settings=s
    )
    assert report.skipped_reason == "skipped by configuration"
    assert report.summary is None
    assert not (tmp_path / "target").exists()
    assert publisher.requests == []


@pytest.mark.asyncio
async def test_pom_packaging_is_skipped(settings, acme_util, usage, publisher, tmp_path: Path):
    report = await run_deptrim(
        dependencies=[acme_util],
        analyzer=StaticUsageAnalyzer(usage),
        publisher=publisher,
        settings=settings,
        packaging="pom",
    )
    assert report.skipped_reason == "packaging type is pom"
    assert not (tmp_path / "target").exists()


@pytest.mark.asyncio
async def test_full_run_trims_and_writes_all_variants(
    tmp_path: Path, acme_util, other_lib, usage, publisher, debloated_pom: Path
):
    s = Settings(
        PROJECT_DIRECTORY=tmp_path,
        TRIM_DEPENDENCIES=["org.acme:util:1.0", "org.other:lib:2.0"],
        DEBLOATED_POM_PATH=debloated_pom,
        CREATE_ALL_POM_SPECIALIZED=True,
    )
    report = await run_deptrim(
        dependencies=[acme_util, other_lib],
        analyzer=StaticUsageAnalyzer(usage),
        publisher=publisher,
        settings=s,
        now_fn=_clock(10.0, 12.5),
    )

    assert report.stage == "done"
    assert report.exit_code == 0
    assert report.elapsed == "2 s"
    assert report.summary is not None and report.summary.trimmed_count == 2
    assert report.descriptors is not None
    assert sorted(g.path.name for g in report.descriptors.generated) == [
        "pom-specialized_1_0_2.xml",
        "pom-specialized_2_1_2.xml",
        "pom-specialized_3_1_2.xml",
        "pom-specialized_4_2_2.xml",
    ]


@pytest.mark.asyncio
async def test_ignore_tests_skips_test_scoped_dependencies(
    tmp_path: Path, acme_util, usage, publisher
):
    test_scoped = acme_util.model_copy(update={"scope": "test"})
    s = Settings(PROJECT_DIRECTORY=tmp_path, IGNORE_TESTS=True, TRIM_DEPENDENCIES=["org.acme:util:1.0"])
    report = await run_deptrim(
        dependencies=[test_scoped], analyzer=StaticUsageAnalyzer(usage), publisher=publisher, settings=s
    )
    assert report.summary.skipped_count == 1


@pytest.mark.asyncio
async def test_bad_base_pom_fails_run_but_keeps_trimmed_archives(
    tmp_path: Path, acme_util, usage, publisher
):
    bad = tmp_path / "pom-debloated.xml"
    bad.write_text("<project>", encoding="utf-8")
    s = Settings(
        PROJECT_DIRECTORY=tmp_path,
        TRIM_DEPENDENCIES=["org.acme:util:1.0"],
        DEBLOATED_POM_PATH=bad,
        CREATE_POM_SPECIALIZED=True,
    )
    report = await run_deptrim(
        dependencies=[acme_util], analyzer=StaticUsageAnalyzer(usage), publisher=publisher, settings=s
    )

    assert report.stage == "failed"
    assert report.exit_code == 1
    assert report.error
    assert report.descriptors is None
    assert report.summary.trimmed_count == 1
    assert (tmp_path / "libs-debloated" / "util-1.0.jar").is_file()


@pytest.mark.asyncio
async def test_descriptor_modes_without_base_path_only_warn(
    tmp_path: Path, acme_util, usage, publisher, caplog
):
    s = Settings(PROJECT_DIRECTORY=tmp_path, CREATE_POM_SPECIALIZED=True)
    report = await run_deptrim(
        dependencies=[acme_util], analyzer=StaticUsageAnalyzer(usage), publisher=publisher, settings=s
    )
    assert report.stage == "done"
    assert report.descriptors is None
    assert "DEBLOATED_POM_PATH" in caplog.text
