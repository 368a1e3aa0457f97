from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Callable, Optional

import pytest

from mcp_deptrim.config import Settings
from mcp_deptrim.models import DependencyCoordinate, TypeUsageRecord
from mcp_deptrim.publisher import InstallRequest, PublishError

MANIFEST = b"Manifest-Version: 1.0\r\n\r\n"

POM_NS = "http://maven.apache.org/POM/4.0.0"

DEBLOATED_POM = f"""<?xml version="1.0" encoding="UTF-8"?>
<project xmlns="{POM_NS}" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
         xsi:schemaLocation="{POM_NS} https://maven.apache.org/xsd/maven-4.0.0.xsd">
  <modelVersion>4.0.0</modelVersion>
  <groupId>com.example</groupId>
  <artifactId>app</artifactId>
  <version>1.0.0</version>
  <dependencies>
    <!-- trimmed candidates -->
    <dependency>
      <groupId>org.acme</groupId>
      <artifactId>util</artifactId>
      <version>1.0</version>
    </dependency>
    <dependency>
      <groupId>org.other</groupId>
      <artifactId>lib</artifactId>
      <version>2.0</version>
      <scope>runtime</scope>
    </dependency>
    <dependency>
      <groupId>junit</groupId>
      <artifactId>junit</artifactId>
      <version>4.13.2</version>
      <scope>test</scope>
    </dependency>
  </dependencies>
</project>
"""

_SETTINGS_ENV = list(Settings.model_fields)


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Settings read the environment; keep tests independent of the host shell
    for key in _SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_jar() -> Callable[[Path, dict[str, bytes]], Path]:
    def _f(path: Path, entries: dict[str, bytes]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for name, data in entries.items():
                zf.writestr(name, data)
        return path

    return _f


def class_entries(*type_ids: str) -> dict[str, bytes]:
    entries = {"META-INF/MANIFEST.MF": MANIFEST}
    for t in type_ids:
        entries[t.replace(".", "/") + ".class"] = f"bytecode:{t}".encode()
    return entries


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(PROJECT_DIRECTORY=tmp_path, TRIM_CONCURRENCY=2)


@pytest.fixture
def acme_util(tmp_path: Path, make_jar) -> DependencyCoordinate:
    jar = make_jar(
        tmp_path / "repo" / "util-1.0.jar",
        {
            **class_entries("org.acme.util.A", "org.acme.util.B", "org.acme.util.C"),
            "org/acme/util/messages.properties": b"greeting=hi",
        },
    )
    return DependencyCoordinate(
        group_id="org.acme", artifact_id="util", version="1.0", archive_path=jar
    )


@pytest.fixture
def other_lib(tmp_path: Path, make_jar) -> DependencyCoordinate:
    jar = make_jar(
        tmp_path / "repo" / "lib-2.0.jar",
        class_entries("org.other.lib.X", "org.other.lib.internal.Y"),
    )
    return DependencyCoordinate(
        group_id="org.other", artifact_id="lib", version="2.0", scope="runtime", archive_path=jar
    )


@pytest.fixture
def usage() -> dict[str, TypeUsageRecord]:
    return {
        "org.acme:util:1.0": TypeUsageRecord(
            declared=frozenset({"org.acme.util.A", "org.acme.util.B", "org.acme.util.C"}),
            used=frozenset({"org.acme.util.A"}),
        ),
        "org.other:lib:2.0": TypeUsageRecord(
            declared=frozenset({"org.other.lib.X", "org.other.lib.internal.Y"}),
            used=frozenset({"org.other.lib.X", "org.unknown.Z"}),
        ),
    }


class FakePublisher:
    """Records install requests; fails for artifact ids listed in ``fail_for``."""

    def __init__(self, fail_for: Optional[set[str]] = None) -> None:
        self.requests: list[InstallRequest] = []
        self._fail_for = fail_for or set()

    async def publish(self, request: InstallRequest) -> None:
        self.requests.append(request)
        if request.artifact_id in self._fail_for:
            raise PublishError("installer exited with status 1")


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def debloated_pom(tmp_path: Path) -> Path:
    path = tmp_path / "pom-debloated.xml"
    path.write_text(DEBLOATED_POM, encoding="utf-8")
    return path


@pytest.fixture
def jar_entries() -> Callable[..., dict[str, bytes]]:
    return class_entries


@pytest.fixture
def publisher_factory() -> Callable[..., FakePublisher]:
    return FakePublisher
