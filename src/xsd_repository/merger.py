"""Combine several packages into one queryable repository.

Sources are ordered by priority (lower wins; merge order breaks ties) and
each is loaded with :func:`~xsd_repository.package.from_package`. Overlaps
between packages are reported, never raised:

* :class:`SchemaConflict` for a schema basename shipped by two or more packages.
* :class:`TypeConflict` for a ``(namespace, name)`` declared by two or more
    packages, whatever the declaration kinds.
* :class:`NamespaceConflict` for a namespace populated by two or more packages.

The merged repository keeps, per ``(kind, qualified name)``, the definition
from the lowest-priority source and is resolved against that merged index.
Documents are registered under ``"<package path>::<document id>"`` so files
with the same location in different packages stay distinct.

Example:
        from xsd_repository.merger import PackageSource, merge

        result = merge([
                PackageSource("vendor-overrides.xsdpkg", priority=0),
                PackageSource("base.xsdpkg", priority=1, exclude_schemas=["*_test.xsd"]),
        ])
        for conflict in result.report.type_conflicts:
                print(conflict.qualified_name, [s.package_path for s in conflict.sources])
        result.repository.find_type("x:Foo")
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError
from .package import from_package
from .repository import SchemaRepository

logger = logging.getLogger(__name__)


@dataclass
class PackageSource:
    """A package to merge.

    Args:
        path: Package file.
        priority: Lower values win when definitions collide.
        exclude_schemas: Glob patterns of schema basenames to skip.
        include_only_schemas: When set, only basenames matching one of these
            glob patterns are merged.
    """

    path: str
    priority: int = 0
    exclude_schemas: List[str] = field(default_factory=list)
    include_only_schemas: List[str] = field(default_factory=list)

    def includes(self, basename: str) -> bool:
        if self.include_only_schemas and not any(
            fnmatch(basename, pattern) for pattern in self.include_only_schemas
        ):
            return False
        return not any(fnmatch(basename, pattern) for pattern in self.exclude_schemas)


@dataclass(frozen=True)
class SchemaFileSource:
    package_path: str
    schema_file: str
    priority: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_path": self.package_path,
            "schema_file": self.schema_file,
            "priority": self.priority,
        }


def _winner(sources: Sequence[SchemaFileSource]) -> SchemaFileSource:
    return min(sources, key=lambda s: s.priority)


@dataclass
class SchemaConflict:
    schema_basename: str
    source_files: List[SchemaFileSource]

    @property
    def winner(self) -> SchemaFileSource:
        return _winner(self.source_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_basename": self.schema_basename,
            "source_files": [s.to_dict() for s in self.source_files],
            "winner": self.winner.package_path,
        }


@dataclass
class TypeConflict:
    namespace_uri: Optional[str]
    type_name: str
    kinds: List[str]
    sources: List[SchemaFileSource]

    @property
    def qualified_name(self) -> str:
        return f"{{{self.namespace_uri}}}{self.type_name}" if self.namespace_uri else self.type_name

    @property
    def winner(self) -> SchemaFileSource:
        return _winner(self.sources)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace_uri": self.namespace_uri,
            "type_name": self.type_name,
            "kinds": list(self.kinds),
            "sources": [s.to_dict() for s in self.sources],
            "winner": self.winner.package_path,
        }


@dataclass
class NamespaceConflict:
    namespace_uri: str
    sources: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"namespace_uri": self.namespace_uri, "sources": list(self.sources)}


@dataclass
class ConflictReport:
    schema_conflicts: List[SchemaConflict] = field(default_factory=list)
    type_conflicts: List[TypeConflict] = field(default_factory=list)
    namespace_conflicts: List[NamespaceConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.schema_conflicts or self.type_conflicts or self.namespace_conflicts)

    @property
    def total(self) -> int:
        return len(self.schema_conflicts) + len(self.type_conflicts) + len(self.namespace_conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "schema_conflicts": [c.to_dict() for c in self.schema_conflicts],
            "type_conflicts": [c.to_dict() for c in self.type_conflicts],
            "namespace_conflicts": [c.to_dict() for c in self.namespace_conflicts],
        }


@dataclass
class MergeResult:
    repository: SchemaRepository
    report: ConflictReport


SourceSpec = Union[PackageSource, str, Tuple[str, int], Mapping[str, Any]]


def _normalize_sources(packages: Sequence[SourceSpec]) -> List[PackageSource]:
    sources: List[PackageSource] = []
    for position, spec in enumerate(packages):
        if isinstance(spec, PackageSource):
            sources.append(spec)
        elif isinstance(spec, str):
            sources.append(PackageSource(spec, priority=position))
        elif isinstance(spec, Mapping):
            if "path" not in spec:
                raise ConfigurationError("Package source mapping requires 'path'")
            sources.append(
                PackageSource(
                    path=str(spec["path"]),
                    priority=int(spec.get("priority", position)),
                    exclude_schemas=list(spec.get("exclude_schemas", [])),
                    include_only_schemas=list(spec.get("include_only_schemas", [])),
                )
            )
        else:
            path, priority = spec
            sources.append(PackageSource(str(path), priority=int(priority)))
    # sorted() is stable, so equal priorities keep merge order
    return sorted(sources, key=lambda s: s.priority)


def merge(packages: Sequence[SourceSpec]) -> MergeResult:
    """Merge packages and report every overlap.

    Args:
        packages: :class:`PackageSource` objects, paths (priority = position),
            ``(path, priority)`` pairs or mappings with ``path``/``priority``
            and optional filters.

    Returns:
        The merged, resolved repository and its :class:`ConflictReport`.
    """
    if not packages:
        raise ConfigurationError("merge() requires at least one package")
    sources = _normalize_sources(packages)

    merged = SchemaRepository()
    basenames: Dict[str, List[SchemaFileSource]] = OrderedDict()
    definitions: Dict[Tuple[Optional[str], str], Dict[str, Any]] = OrderedDict()
    namespaces: Dict[str, List[str]] = OrderedDict()

    for source in sources:
        repository = from_package(source.path)
        logger.info(
            f"Merging {source.path} (priority {source.priority}, "
            f"{len(repository.documents)} documents)"
        )
        mappings = repository.registry.all_mappings()
        for prefix, uri in mappings.items():
            if not merged.registry.has_prefix(prefix):
                merged.configure_namespace(prefix, uri)
        if repository.registry.default_namespace and not merged.registry.default_namespace:
            merged.configure_namespace("", repository.registry.default_namespace)
        for rule in repository.location_mappings:
            merged.add_location_mapping(rule)
        merged.load_failures.extend(repository.load_failures)

        for doc_id, document in repository.documents.items():
            if not source.includes(document.basename):
                logger.debug(f"Skipping {document.basename} from {source.path} (filtered)")
                continue
            namespace = repository.document_namespaces.get(doc_id)
            file_source = SchemaFileSource(source.path, doc_id, source.priority)
            basenames.setdefault(document.basename, []).append(file_source)
            if namespace:
                package_list = namespaces.setdefault(namespace, [])
                if source.path not in package_list:
                    package_list.append(source.path)
            for decl in document.declarations:
                info = definitions.setdefault(
                    (namespace, decl.name), {"kinds": [], "sources": []}
                )
                if decl.kind.value not in info["kinds"]:
                    info["kinds"].append(decl.kind.value)
                if file_source not in info["sources"]:
                    info["sources"].append(file_source)
            merged.add_document(
                document,
                document_id=f"{source.path}::{doc_id}",
                namespace=namespace,
                priority=source.priority,
                source=source.path,
            )

    report = ConflictReport()
    for basename, occurrences in basenames.items():
        if len({s.package_path for s in occurrences}) > 1:
            report.schema_conflicts.append(SchemaConflict(basename, occurrences))
    for (namespace, name), info in definitions.items():
        if len({s.package_path for s in info["sources"]}) > 1:
            report.type_conflicts.append(
                TypeConflict(namespace, name, sorted(info["kinds"]), info["sources"])
            )
    for namespace, package_paths in namespaces.items():
        if len(package_paths) > 1:
            report.namespace_conflicts.append(NamespaceConflict(namespace, package_paths))

    if report.has_conflicts:
        logger.warning(
            f"Merge found {len(report.schema_conflicts)} schema, "
            f"{len(report.type_conflicts)} type and "
            f"{len(report.namespace_conflicts)} namespace conflicts"
        )
    merged.resolve()
    return MergeResult(repository=merged, report=report)
