"""Specialized POM generation from a debloated base POM.

Behavior:
    - Single mode writes ``<base>-specialized.xml`` with every specialized
      dependency substituted.
    - All-combinations mode writes one ``<base>-specialized_<ordinal>_<size>_<n>.xml``
      per subset of the specialized dependencies (2^n files, the empty subset
      included, numbered from 1 in cardinality-then-lexicographic order).
    - Every variant parses its own copy of the base POM, so variants never
      observe each other's edits and can be produced concurrently.

Security:
    Uses defusedxml to prevent XXE and entity expansion attacks.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional
from xml.etree import ElementTree as StdET

from defusedxml import DefusedXmlException  # type: ignore[import-untyped]
from defusedxml import ElementTree as ET  # type: ignore[import-untyped]

from .config import Settings
from .models import Combination, DescriptorVariantsResult, GeneratedDescriptor, SpecializedDependency

_logger = logging.getLogger(__name__)

_DEBLOATED_SUFFIX = "-debloated.xml"
_SPECIALIZED_MARKER = "-specialized"


class DescriptorParseError(ValueError):
    """The base POM could not be read or parsed."""


def _local_name(tag: Any) -> str:
    """Return the local name of an XML tag, stripping any namespace."""
    if not isinstance(tag, str):
        # Comments and processing instructions
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _namespace(tag: str) -> Optional[str]:
    if tag.startswith("{") and "}" in tag:
        return tag[1:].split("}", 1)[0]
    return None


def _child(elem: Any, name: str) -> Optional[Any]:
    for child in elem:
        if _local_name(child.tag) == name:
            return child
    return None


def _child_text(elem: Any, name: str) -> Optional[str]:
    child = _child(elem, name)
    if child is None:
        return None
    return (child.text or "").strip() or None


def parse_descriptor(path: Path) -> Any:
    """Parse a POM file into a fresh ElementTree, keeping comments.

    Raises:
        DescriptorParseError: unreadable, malformed, or unsafe XML.
    """
    parser = ET.XMLParser(target=StdET.TreeBuilder(insert_comments=True))
    try:
        tree = ET.parse(str(path), parser=parser)
    except (OSError, StdET.ParseError, DefusedXmlException) as e:
        raise DescriptorParseError(f"cannot parse {path}: {e}") from e
    if _local_name(tree.getroot().tag) != "project":
        raise DescriptorParseError(f"{path} is not a POM (root element is not <project>)")
    return tree


def _set_text(dep: Any, name: str, value: str) -> None:
    node = _child(dep, name)
    if node is None:
        ns = _namespace(dep.tag)
        node = StdET.SubElement(dep, f"{{{ns}}}{name}" if ns else name)
    node.text = value


def apply_substitutions(root: Any, members: Iterable[SpecializedDependency]) -> int:
    """Rewrite dependency declarations of ``members`` to their specialized coordinates.

    A declaration matches when its own groupId and artifactId equal the
    original ones. Returns the number of declarations rewritten.
    """
    declarations = [e for e in root.iter() if _local_name(e.tag) == "dependency"]
    originals = [
        (_child_text(d, "groupId"), _child_text(d, "artifactId")) for d in declarations
    ]
    rewritten = 0
    for spec in members:
        key = (spec.original_group_id, spec.original_artifact_id)
        matches = [d for d, coords in zip(declarations, originals) if coords == key]
        if len(matches) > 1:
            _logger.warning(
                "%s:%s is declared %d times; rewriting all",
                spec.original_group_id,
                spec.original_artifact_id,
                len(matches),
                extra={"op": "combine"},
            )
        for dep in matches:
            _set_text(dep, "groupId", spec.specialized_group_id)
            _set_text(dep, "artifactId", spec.specialized_artifact_id)
            _set_text(dep, "version", spec.specialized_version)
            rewritten += 1
    return rewritten


def _base_stem(base: Path) -> str:
    if base.name.endswith(_DEBLOATED_SUFFIX):
        return base.name[: -len(_DEBLOATED_SUFFIX)]
    return base.stem


def single_variant_path(base: Path) -> Path:
    return base.with_name(f"{_base_stem(base)}{_SPECIALIZED_MARKER}.xml")


def combination_variant_path(base: Path, combination: Combination) -> Path:
    return base.with_name(
        f"{_base_stem(base)}{_SPECIALIZED_MARKER}_{combination.ordinal}_"
        f"{combination.cardinality}_{combination.total_specialized}.xml"
    )


def _sorted_specialized(specialized: Iterable[SpecializedDependency]) -> list[SpecializedDependency]:
    return sorted(set(specialized), key=lambda s: s.original_coordinate)


def iter_combinations(specialized: Iterable[SpecializedDependency]) -> Iterator[Combination]:
    """Yield every subset of ``specialized`` as a numbered Combination."""
    items = _sorted_specialized(specialized)
    total = len(items)
    ordinal = 1
    for size in range(total + 1):
        for members in itertools.combinations(items, size):
            yield Combination(members=members, ordinal=ordinal, total_specialized=total)
            ordinal += 1


def _write_tree(tree: Any, target: Path) -> None:
    root = tree.getroot()
    ns = _namespace(root.tag)
    if ns:
        StdET.register_namespace("", ns)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        tree.write(tmp_path, encoding="utf-8", xml_declaration=True)
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class DescriptorVariantGenerator:
    """Writes specialized POM variants next to a debloated base POM."""

    def __init__(
        self,
        *,
        base_descriptor: Path,
        specialized: Iterable[SpecializedDependency],
        concurrency: Optional[int] = None,
    ) -> None:
        self._base = Path(base_descriptor)
        self._specialized = _sorted_specialized(specialized)
        conc = int(concurrency or Settings().TRIM_CONCURRENCY)
        if conc < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = conc

    @property
    def specialized(self) -> list[SpecializedDependency]:
        return list(self._specialized)

    def _jobs(self, single: bool, all_combinations: bool) -> Iterator[tuple[Combination, Path]]:
        total = len(self._specialized)
        if all_combinations:
            for combination in iter_combinations(self._specialized):
                yield combination, combination_variant_path(self._base, combination)
        if single:
            combination = Combination(
                members=tuple(self._specialized), ordinal=1, total_specialized=total
            )
            yield combination, single_variant_path(self._base)

    def _write_variant(self, combination: Combination, target: Path) -> GeneratedDescriptor:
        tree = parse_descriptor(self._base)
        apply_substitutions(tree.getroot(), combination.members)
        _write_tree(tree, target)
        return GeneratedDescriptor(
            path=target,
            ordinal=combination.ordinal,
            cardinality=combination.cardinality,
            total_specialized=combination.total_specialized,
            members=[m.original_coordinate for m in combination.members],
        )

    async def generate(
        self, *, single: bool = False, all_combinations: bool = False
    ) -> DescriptorVariantsResult:
        """Produce the requested variants.

        Raises:
            DescriptorParseError: the base POM is unusable; nothing is written.
        """
        await asyncio.to_thread(parse_descriptor, self._base)

        result = DescriptorVariantsResult(base_descriptor=self._base)
        if all_combinations:
            _logger.info(
                "Number of specialized poms: %d",
                2 ** len(self._specialized),
                extra={"op": "combine"},
            )

        jobs = self._jobs(single, all_combinations)

        async def _worker() -> None:
            # Single event loop thread: pulling from the shared iterator is race-free.
            for combination, target in jobs:
                try:
                    generated = await asyncio.to_thread(self._write_variant, combination, target)
                except (OSError, ValueError) as e:
                    _logger.error(
                        "Error creating specialized POM %s: %s",
                        target.name,
                        e,
                        extra={"op": "combine", "ordinal": combination.ordinal},
                    )
                    result.skipped_ordinals.append(combination.ordinal)
                    continue
                _logger.info("Created %s", target.name, extra={"op": "combine"})
                result.generated.append(generated)

        await asyncio.gather(*(_worker() for _ in range(self._concurrency)))

        result.generated.sort(key=lambda g: (g.path.name != single_variant_path(self._base).name, g.ordinal))
        result.skipped_ordinals.sort()
        return result


__all__ = [
    "DescriptorParseError",
    "DescriptorVariantGenerator",
    "apply_substitutions",
    "combination_variant_path",
    "iter_combinations",
    "parse_descriptor",
    "single_variant_path",
]
