"""Schema repository and resolution engine.

A :class:`SchemaRepository` owns everything needed to answer questions about
a set of XSD files: the loaded documents, the namespace registry, location
rewrite rules, the Type Index, the reference resolution side table and the
reports of what went wrong along the way.

Lifecycle::

        unparsed --parse()--> parsed --resolve()--> resolved

Both transitions are idempotent and one-directional. ``resolve(force=True)``
rebuilds the index of an already resolved repository without downgrading it.

``parse()`` loads the configured entry files and follows ``xs:import`` /
``xs:include`` transitively. Each discovery wave may be fetched and parsed on
a thread pool (``max_workers``); documents are registered serially in a
deterministic order, and each normalized location is loaded at most once.
Failures on import/include edges are recorded as :class:`LoadFailure`
instead of aborting the load.

``resolve()`` builds the Type Index in load order and then walks every
reference site of every declaration, resolving it through the referencing
document's own prefix map (falling back to the repository registry).
Misses are recorded as :class:`ResolutionFailure` annotated with fuzzy
suggestions.

Example:
        repo = SchemaRepository(
                files=["schemas/city.xsd"],
                namespace_mappings=[{"prefix": "gml", "uri": "http://www.opengis.net/gml/3.2"}],
                schema_location_mappings=[
                        {"from": "http://schemas.opengis.net/gml/3.2.1/gml.xsd",
                         "to": "vendor/gml/gml.xsd"},
                ],
        )
        repo.resolve()
        result = repo.find_type("gml:CodeType")
        if result.resolved:
                print(result.kind, result.document)
        else:
                print(result.error_message, [s.text for s in result.suggestions])
"""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .errors import (
    ConfigurationError,
    DocumentParseError,
    IncludeNamespaceError,
    LocationNotFoundError,
    RepositoryValidationError,
    UnresolvedReferenceError,
    XsdRepositoryError,
)
from .hierarchy import DEFAULT_HIERARCHY_DEPTH, TypeHierarchyAnalyzer
from .loader import DocumentLoader
from .models import (
    LOOKUP_ORDER,
    XS_NAMESPACE,
    DeclarationKind,
    QualifiedName,
    Reference,
    SchemaDocument,
)
from .monitoring import get_monitor
from .namespaces import (
    LocationMapper,
    NamespaceRegistry,
    ParsedName,
    SchemaLocationMapping,
    is_url,
    parse_qualified_name,
)
from .results import (
    LoadFailure,
    RepositoryState,
    ResolutionFailure,
    ResolvedResult,
    SchemaClassification,
)
from .search import DEFAULT_MIN_SIMILARITY, DEFAULT_SUGGESTION_LIMIT, FuzzyMatcher
from .type_index import DuplicateDefinition, TypeIndex
from .xsd_parser import parse_schema_document

logger = logging.getLogger(__name__)

# XML Schema 1.0/1.1 built-in datatypes
XSD_BUILTIN_TYPES = frozenset(
    """
    anyType anySimpleType anyAtomicType string normalizedString token language
    Name NCName ID IDREF IDREFS ENTITY ENTITIES NMTOKEN NMTOKENS QName NOTATION
    boolean decimal integer nonPositiveInteger negativeInteger long int short
    byte nonNegativeInteger unsignedLong unsignedInt unsignedShort unsignedByte
    positiveInteger float double duration dateTime time date gYearMonth gYear
    gMonthDay gDay gMonth hexBinary base64Binary anyURI dateTimeStamp
    dayTimeDuration yearMonthDuration
    """.split()
)

# NCName without the colon; valid namespace prefixes
_PREFIX_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")


@dataclass(frozen=True)
class _Pending:
    """A document waiting to be loaded during ``parse()``."""

    location: str
    requested: str
    directive: str
    referenced_from: Optional[str] = None
    expected_namespace: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, Optional[str]]:
        return (self.location, self.directive, self.expected_namespace)


class SchemaRepository:
    """A set of schema documents plus the index that connects them.

    Args:
        files: Entry-point schema files, in load order.
        namespace_mappings: ``{"prefix", "uri"}`` dicts or ``(prefix, uri)`` pairs.
        schema_location_mappings: :class:`SchemaLocationMapping` objects or
            ``{"from", "to", "pattern"}`` dicts.
        base_dir: Directory relative entry paths are resolved against.
        max_workers: Threads used to fetch and parse one discovery wave.
        fail_fast: Raise on unreadable or malformed entry files. When False,
            every failure is recorded and loading continues.
        loader: Document loader; a default :class:`DocumentLoader` otherwise.
        suggestion_limit: Maximum fuzzy suggestions per failure.
        min_similarity: Minimum similarity for fuzzy suggestions.
    """

    def __init__(
        self,
        files: Optional[Iterable[str]] = None,
        namespace_mappings: Optional[Iterable[Any]] = None,
        schema_location_mappings: Optional[Iterable[Any]] = None,
        base_dir: Optional[str] = None,
        max_workers: int = 1,
        fail_fast: bool = True,
        loader: Optional[DocumentLoader] = None,
        suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        if max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        self.base_dir = base_dir
        self.files: List[str] = []
        self.max_workers = max_workers
        self.fail_fast = fail_fast
        self.loader = loader or DocumentLoader()
        self.suggestion_limit = suggestion_limit
        self.min_similarity = min_similarity

        self.registry = NamespaceRegistry()
        self.configured_namespaces: List[Tuple[str, str]] = []
        self.location_mapper = LocationMapper()

        self.documents: Dict[str, SchemaDocument] = {}
        self.document_namespaces: Dict[str, Optional[str]] = {}
        self.document_sources: Dict[str, Tuple[int, Optional[str]]] = {}
        self.type_index = TypeIndex()
        self.load_failures: List[LoadFailure] = []
        self.resolution_failures: List[ResolutionFailure] = []
        self.state = RepositoryState.UNPARSED

        self._resolution_cache: Dict[Tuple[str, int], ResolvedResult] = {}
        self._lock = threading.RLock()
        self._matcher = FuzzyMatcher(self)

        for path in files or []:
            self.add_schema_file(path)
        for mapping in namespace_mappings or []:
            if isinstance(mapping, Mapping):
                self.configure_namespace(mapping.get("prefix") or "", mapping["uri"])
            else:
                prefix, uri = mapping
                self.configure_namespace(prefix, uri)
        for rule in schema_location_mappings or []:
            self.add_location_mapping(rule)

    @classmethod
    def from_config(cls, config: Any, loader: Optional[DocumentLoader] = None) -> "SchemaRepository":
        """Build a repository from a :class:`~xsd_repository.config.RepositoryConfig`."""
        return cls(
            files=config.files,
            namespace_mappings=config.namespace_mappings,
            schema_location_mappings=config.schema_location_mappings,
            base_dir=config.base_dir,
            max_workers=config.max_workers,
            fail_fast=config.fail_fast,
            loader=loader,
            suggestion_limit=config.suggestion_limit,
            min_similarity=config.min_similarity,
        )

    # ---------------- Configuration ---------------- #

    def add_schema_file(self, path: str) -> None:
        """Add an entry-point file; only allowed before ``parse()``."""
        if not path or not str(path).strip():
            raise ConfigurationError("Schema file path must be a non-empty string")
        if self.state is not RepositoryState.UNPARSED:
            raise ConfigurationError("Cannot add schema files after the repository was parsed")
        self.files.append(str(path))

    def configure_namespace(self, prefix: str, uri: str) -> None:
        """Register a configured prefix; configured mappings win over ``xmlns``."""
        self.registry.register(prefix, uri)
        self.configured_namespaces.append((prefix, uri))

    def add_location_mapping(
        self, rule: Union[SchemaLocationMapping, Mapping[str, Any]]
    ) -> None:
        if not isinstance(rule, SchemaLocationMapping):
            rule = SchemaLocationMapping.from_dict(rule)
        self.location_mapper.add_rule(rule)

    @property
    def location_mappings(self) -> List[SchemaLocationMapping]:
        return list(self.location_mapper.rules)

    def add_document(
        self,
        document: SchemaDocument,
        document_id: Optional[str] = None,
        namespace: Optional[str] = None,
        priority: int = 0,
        source: Optional[str] = None,
    ) -> str:
        """Register an already parsed document (package restore and merge).

        Returns:
            The id the document was registered under.
        """
        if document is None:
            raise ConfigurationError("Document must not be None")
        with self._lock:
            doc_id = document_id or document.location
            self.documents[doc_id] = document
            self.document_namespaces[doc_id] = (
                namespace if namespace is not None else document.target_namespace
            )
            self.document_sources[doc_id] = (priority, source)
            if self.state is RepositoryState.UNPARSED:
                self.state = RepositoryState.PARSED
            return doc_id

    # ---------------- Parsing ---------------- #

    def parse(self) -> "SchemaRepository":
        """Load entry files and everything they import or include.

        If an entry file fails with ``fail_fast`` set, every document
        registered by this call is discarded and the repository stays
        ``unparsed``, so ``parse()`` can be retried after fixing the input.
        """
        with self._lock:
            if self.state is not RepositoryState.UNPARSED:
                return self
            start = time.perf_counter()
            snapshot = (
                dict(self.documents),
                dict(self.document_namespaces),
                dict(self.document_sources),
                list(self.load_failures),
            )
            try:
                self._discover()
            except Exception as e:
                (
                    self.documents,
                    self.document_namespaces,
                    self.document_sources,
                    self.load_failures,
                ) = snapshot
                self.state = RepositoryState.UNPARSED
                logger.error(f"Parse aborted, discarded partially loaded documents: {e}")
                raise
            self.state = RepositoryState.PARSED
            elapsed = time.perf_counter() - start
            get_monitor().record_operation("parse", elapsed)
            logger.info(
                f"Parsed {len(self.documents)} schema documents "
                f"({len(self.load_failures)} load failures) in {elapsed:.3f}s"
            )
            return self

    def _discover(self) -> None:
        wave = [
            _Pending(location=self._entry_location(path), requested=path, directive="entry")
            for path in self.files
        ]
        attempted: Set[Tuple[str, str, Optional[str]]] = set()
        failed: Set[str] = set()
        # edges to a location that another edge already loaded or rejected
        waiting: List[_Pending] = []
        while wave:
            batch: List[_Pending] = []
            queued = set()
            for pending in wave:
                if pending.location in self.documents or pending.location in queued:
                    waiting.append(pending)
                    continue
                queued.add(pending.location)
                attempted.add(pending.key)
                batch.append(pending)
            wave = []
            for pending, document, error in self._load_wave(batch):
                if error is not None:
                    failed.add(pending.location)
                    self._record_load_error(pending, error)
                    continue
                wave.extend(self._register_loaded(pending, document))

            still_waiting = []
            for pending in waiting:
                document = self.documents.get(pending.location)
                if document is not None:
                    self._check_revisited_edge(pending, document)
                elif pending.location in failed:
                    continue
                elif pending.key not in attempted:
                    # rejected under another include; this edge may accept it
                    wave.append(pending)
                else:
                    still_waiting.append(pending)
            waiting = still_waiting

    def _check_revisited_edge(self, pending: _Pending, document: SchemaDocument) -> None:
        declared = document.target_namespace
        if (
            pending.directive == "include"
            and declared is not None
            and declared != pending.expected_namespace
        ):
            self._record_load_error(
                pending, IncludeNamespaceError(pending.requested, pending.expected_namespace, declared)
            )

    def _entry_location(self, path: str) -> str:
        if self.base_dir and not os.path.isabs(path) and "://" not in path:
            path = os.path.join(self.base_dir, path)
        return self.location_mapper.map(path)

    def _load_one(
        self, pending: _Pending
    ) -> Tuple[_Pending, Optional[SchemaDocument], Optional[Exception]]:
        try:
            data = self.loader.load(pending.location, pending.requested)
            return pending, parse_schema_document(data, pending.location), None
        except (LocationNotFoundError, DocumentParseError) as e:
            return pending, None, e

    def _load_wave(self, batch: Sequence[_Pending]):
        if self.max_workers > 1 and len(batch) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                return list(executor.map(self._load_one, batch))
        return [self._load_one(pending) for pending in batch]

    def _record_load_error(self, pending: _Pending, error: Exception) -> None:
        if pending.directive == "entry" and self.fail_fast:
            raise error
        logger.warning(f"Failed to load {pending.directive} {pending.requested}: {error}")
        self.load_failures.append(
            LoadFailure(
                location=pending.requested,
                resolved_location=pending.location,
                directive=pending.directive,
                referenced_from=pending.referenced_from,
                error=str(error),
            )
        )

    def _register_loaded(self, pending: _Pending, document: SchemaDocument) -> List[_Pending]:
        """Register ``document`` and return the edges it introduces."""
        namespace = document.target_namespace
        if pending.directive == "include":
            if namespace is None:
                namespace = pending.expected_namespace
            elif namespace != pending.expected_namespace:
                self._record_load_error(
                    pending,
                    IncludeNamespaceError(
                        pending.requested, pending.expected_namespace, document.target_namespace
                    ),
                )
                return []
        elif (
            pending.directive == "import"
            and pending.expected_namespace
            and namespace != pending.expected_namespace
        ):
            message = (
                f"Imported schema declares namespace '{namespace}', "
                f"import expected '{pending.expected_namespace}'"
            )
            logger.warning(f"{pending.requested}: {message}")
            self.load_failures.append(
                LoadFailure(
                    location=pending.requested,
                    resolved_location=pending.location,
                    directive=pending.directive,
                    referenced_from=pending.referenced_from,
                    error=message,
                    warning=True,
                )
            )

        doc_id = self.add_document(document, document_id=pending.location, namespace=namespace)
        logger.debug(f"Registered {doc_id} (namespace {namespace})")

        edges: List[_Pending] = []
        for imp in document.imports:
            if not imp.schema_location:
                continue
            edges.append(
                _Pending(
                    location=self.location_mapper.map(imp.schema_location, base=doc_id),
                    requested=imp.schema_location,
                    directive="import",
                    referenced_from=doc_id,
                    expected_namespace=imp.namespace,
                )
            )
        for inc in document.includes:
            edges.append(
                _Pending(
                    location=self.location_mapper.map(inc.schema_location, base=doc_id),
                    requested=inc.schema_location,
                    directive="include",
                    referenced_from=doc_id,
                    expected_namespace=namespace,
                )
            )
        return edges

    # ---------------- Resolution ---------------- #

    def resolve(self, force: bool = False) -> "SchemaRepository":
        """Build the Type Index and resolve every reference site.

        Args:
            force: Rebuild even if the repository is already resolved.
        """
        with self._lock:
            if self.state is RepositoryState.RESOLVED and not force:
                return self
            if self.state is RepositoryState.UNPARSED:
                self.parse()
            start = time.perf_counter()
            self._rebuild_registry()

            self.type_index = TypeIndex()
            for doc_id, document in self.documents.items():
                priority, source = self.document_sources.get(doc_id, (0, None))
                self.type_index.add_document(
                    document,
                    namespace=self.document_namespaces.get(doc_id),
                    document_id=doc_id,
                    priority=priority,
                    source=source,
                )

            self._resolution_cache = {}
            self.resolution_failures = []
            for doc_id, document in self.documents.items():
                for declaration, reference in document.iter_references():
                    result = self._resolve_site(doc_id, document, reference)
                    if result.resolved:
                        continue
                    self.resolution_failures.append(
                        ResolutionFailure(
                            document=doc_id,
                            site_id=reference.site_id,
                            declaration=declaration.name,
                            attribute=reference.attribute,
                            reference=reference.value,
                            qualified_name=result.qualified_name or reference.value,
                            context=reference.context,
                            reason=result.error_message or "not found",
                            suggestions=tuple(s.text for s in result.suggestions),
                        )
                    )

            self.state = RepositoryState.RESOLVED
            if self.resolution_failures:
                logger.warning(
                    f"{len(self.resolution_failures)} references could not be resolved"
                )
            elapsed = time.perf_counter() - start
            get_monitor().record_operation("resolve", elapsed)
            logger.info(
                f"Resolved {len(self._resolution_cache)} references across "
                f"{len(self.type_index)} index entries in {elapsed:.3f}s"
            )
            return self

    def _rebuild_registry(self) -> None:
        registry = NamespaceRegistry()
        for prefix, uri in self.configured_namespaces:
            registry.register(prefix, uri)
        registry.extract_from_documents(self.documents.values())
        self.registry = registry

    def ensure_index(self) -> TypeIndex:
        """Return the Type Index, resolving the repository first if needed."""
        if self.state is not RepositoryState.RESOLVED:
            self.resolve()
        return self.type_index

    def ensure_resolved(self) -> "SchemaRepository":
        """Resolve and raise if any reference is unresolved.

        Raises:
            UnresolvedReferenceError: Listing every unresolved qualified name.
        """
        self.resolve()
        if self.resolution_failures:
            names = []
            suggestions: List[str] = []
            for failure in self.resolution_failures:
                if failure.qualified_name not in names:
                    names.append(failure.qualified_name)
                for text in failure.suggestions:
                    if text not in suggestions:
                        suggestions.append(text)
            raise UnresolvedReferenceError(names, suggestions)
        return self

    def _scope(self, doc_id: str, document: SchemaDocument) -> Dict[str, str]:
        scope = dict(document.namespaces)
        default = document.default_namespace
        if default is None and document.target_namespace is None:
            # chameleon include: unqualified names adopt the includer's namespace
            default = self.document_namespaces.get(doc_id)
        if default:
            scope[""] = default
        return scope

    def resolve_reference(
        self, document: Union[SchemaDocument, str], reference: Reference
    ) -> ResolvedResult:
        """Resolve one reference site, memoized by ``(document id, site id)``."""
        if isinstance(document, str):
            doc_id = document
        else:
            doc_id = self._document_id(document)
        if doc_id not in self.documents:
            raise ConfigurationError(f"Unknown document: {doc_id}")
        self.ensure_index()
        return self._resolve_site(doc_id, self.documents[doc_id], reference)

    def _document_id(self, document: SchemaDocument) -> str:
        for doc_id, candidate in self.documents.items():
            if candidate is document:
                return doc_id
        return document.location

    def _resolve_site(
        self, doc_id: str, document: SchemaDocument, reference: Reference
    ) -> ResolvedResult:
        key = (doc_id, reference.site_id)
        with self._lock:
            cached = self._resolution_cache.get(key)
            if cached is not None:
                return cached
            parsed = parse_qualified_name(
                reference.value, self.registry, self._scope(doc_id, document)
            )
            path = [f"Reference {reference.attribute}='{reference.value}' in {reference.context}"]
            result = self._lookup(reference.value, parsed, reference.target_kinds, path)
            self._resolution_cache[key] = result
            return result

    def _lookup(
        self,
        query: str,
        parsed: ParsedName,
        kinds: Sequence[DeclarationKind],
        path: List[str],
        allow_local_fallback: bool = False,
    ) -> ResolvedResult:
        if parsed.prefix:
            if not parsed.prefix_resolved:
                path.append(f"Namespace prefix '{parsed.prefix}' is not registered")
                return self._miss(
                    query, parsed, path, f"Unknown namespace prefix '{parsed.prefix}'"
                )
            path.append(f"Prefix '{parsed.prefix}' -> {parsed.namespace}")

        if parsed.namespace == XS_NAMESPACE:
            if parsed.local_name in XSD_BUILTIN_TYPES:
                path.append(f"Built-in XML Schema type {parsed.local_name}")
                builtin_kind = (
                    DeclarationKind.COMPLEX_TYPE
                    if parsed.local_name == "anyType"
                    else DeclarationKind.SIMPLE_TYPE
                )
                return ResolvedResult(
                    query=query,
                    resolved=True,
                    namespace=XS_NAMESPACE,
                    local_name=parsed.local_name,
                    kind=builtin_kind,
                    builtin=True,
                    resolution_path=path,
                )
            path.append(f"'{parsed.local_name}' is not an XML Schema built-in type")
            return self._miss(
                query, parsed, path, f"Unknown XML Schema built-in type '{parsed.local_name}'"
            )

        qname = QualifiedName(parsed.namespace, parsed.local_name)
        entry = self.type_index.lookup(qname, kinds)
        if entry is None and allow_local_fallback and not parsed.prefix and parsed.namespace is None:
            candidates = self.type_index.find_by_local_name(parsed.local_name, kinds)
            candidates.sort(key=lambda e: list(kinds).index(e.kind))
            if candidates:
                entry = candidates[0]
                path.append(
                    f"Matched by local name among {len(candidates)} candidate(s)"
                )
        if entry is None:
            path.append(f"No {'/'.join(k.value for k in kinds)} named {qname} in the index")
            return self._miss(query, parsed, path, f"Type '{query}' not found")

        path.append(f"Found {entry.kind.value} {entry.qualified_name} in {entry.document}")
        return ResolvedResult(
            query=query,
            resolved=True,
            namespace=entry.qualified_name.namespace,
            local_name=entry.qualified_name.local_name,
            kind=entry.kind,
            definition=entry.definition,
            document=entry.document,
            resolution_path=path,
        )

    def _miss(
        self, query: str, parsed: ParsedName, path: List[str], message: str
    ) -> ResolvedResult:
        suggestions = self._matcher.find_similar_types(
            parsed.local_name, limit=self.suggestion_limit, min_similarity=self.min_similarity
        )
        if suggestions:
            message += ". " + suggestions[0].explanation
        return ResolvedResult(
            query=query,
            resolved=False,
            namespace=parsed.namespace,
            local_name=parsed.local_name,
            resolution_path=path,
            error_message=message,
            suggestions=suggestions,
        )

    # ---------------- Queries ---------------- #

    def find_type(self, name: str, kind: Optional[DeclarationKind] = None) -> ResolvedResult:
        """Look up a Clark, prefixed or unprefixed name.

        Unprefixed names use the registry default namespace; if nothing matches
        there, the first declaration with that local name is returned.

        Args:
            name: ``{uri}local``, ``prefix:local`` or ``local``.
            kind: Restrict the lookup to one declaration kind.

        Raises:
            ConfigurationError: If ``name`` is empty.
        """
        if name is None or not str(name).strip():
            raise ConfigurationError("Type name must be a non-empty string")
        if kind is not None and not isinstance(kind, DeclarationKind):
            kind = DeclarationKind(kind)
        query = str(name).strip()
        self.ensure_index()
        parsed = parse_qualified_name(query, self.registry)
        path = [f"Parsed '{query}' as {parsed.clark}"]
        kinds = (kind,) if kind else LOOKUP_ORDER
        return self._lookup(query, parsed, kinds, path, allow_local_fallback=True)

    def type_exists(self, name: str) -> bool:
        return self.find_type(name).resolved

    def display_name(self, qualified_name: QualifiedName) -> str:
        """Render a name as ``prefix:local`` when a prefix is known, else Clark."""
        if not qualified_name.namespace:
            return qualified_name.local_name
        prefix = self.registry.primary_prefix(qualified_name.namespace)
        if prefix:
            return f"{prefix}:{qualified_name.local_name}"
        return str(qualified_name)

    def namespace_to_prefix(self, uri: str) -> Optional[str]:
        return self.registry.primary_prefix(uri)

    def all_namespaces(self) -> List[str]:
        return sorted({ns for ns in self.document_namespaces.values() if ns})

    def all_type_names(
        self, namespace: Optional[str] = None, kind: Optional[DeclarationKind] = None
    ) -> List[str]:
        """Return display names of indexed declarations, sorted."""
        index = self.ensure_index()
        return sorted({self.display_name(e.qualified_name) for e in index.entries(kind, namespace)})

    def namespace_summary(self) -> List[Dict[str, Any]]:
        index = self.ensure_index()
        summary = []
        for uri in self.all_namespaces():
            summary.append(
                {
                    "uri": uri,
                    "prefix": self.namespace_to_prefix(uri),
                    "documents": sum(1 for ns in self.document_namespaces.values() if ns == uri),
                    "types": len(index.entries(namespace=uri)),
                }
            )
        return summary

    @property
    def duplicates(self) -> List[DuplicateDefinition]:
        return list(self.type_index.duplicates)

    def statistics(self) -> Dict[str, Any]:
        """Counts of schemas, types and namespaces plus failure totals."""
        index_stats = self.type_index.statistics()
        return {
            "state": self.state.value,
            "total_schemas": len(self.documents),
            "total_types": index_stats["total"],
            "total_namespaces": len(self.all_namespaces()),
            "types_by_kind": index_stats["by_kind"],
            "load_failures": len(self.load_failures),
            "resolution_failures": len(self.resolution_failures),
            "duplicate_definitions": len(self.type_index.duplicates),
        }

    # ---------------- Analysis ---------------- #

    def analyze_type_hierarchy(self, name: str, depth: int = DEFAULT_HIERARCHY_DEPTH):
        """Return the derivation hierarchy of a complex or simple type.

        Returns:
            A :class:`~xsd_repository.hierarchy.TypeHierarchy`, or ``None`` if
            ``name`` does not resolve to a type.
        """
        self.ensure_index()
        return TypeHierarchyAnalyzer(self).analyze(name, depth=depth)

    def remap_namespace_prefixes(self, changes: Mapping[str, str]) -> "SchemaRepository":
        """Return a copy of this repository with renamed namespace prefixes.

        ``changes`` maps old prefixes to new ones; two prefixes may be swapped.
        The renamed prefixes become configured mappings of the copy, so they
        are the ones shown by :meth:`display_name`. Prefixes declared inside
        the documents keep resolving as aliases.

        Raises:
            ConfigurationError: If an old prefix is unknown, a new prefix is
                empty, or a new prefix is already bound to another namespace.
        """
        self.ensure_index()
        mappings = self.registry.all_mappings()
        for old_prefix, new_prefix in changes.items():
            if old_prefix not in mappings:
                raise ConfigurationError(f"Prefix '{old_prefix}' not found in repository")
            if not new_prefix or not _PREFIX_PATTERN.match(new_prefix):
                raise ConfigurationError(f"Invalid new prefix {new_prefix!r} for '{old_prefix}'")
            bound = mappings.get(new_prefix)
            if bound is not None and bound != mappings[old_prefix] and new_prefix not in changes:
                raise ConfigurationError(f"Prefix '{new_prefix}' already exists in repository")

        remapped: List[Tuple[str, str]] = []
        if self.registry.default_namespace:
            remapped.append(("", self.registry.default_namespace))
        remapped.extend((changes.get(prefix, prefix), uri) for prefix, uri in mappings.items())

        copy = SchemaRepository(
            files=self.files,
            namespace_mappings=remapped,
            schema_location_mappings=self.location_mappings,
            base_dir=self.base_dir,
            max_workers=self.max_workers,
            fail_fast=self.fail_fast,
            loader=self.loader,
            suggestion_limit=self.suggestion_limit,
            min_similarity=self.min_similarity,
        )
        for doc_id, document in self.documents.items():
            priority, source = self.document_sources.get(doc_id, (0, None))
            copy.add_document(
                document,
                document_id=doc_id,
                namespace=self.document_namespaces.get(doc_id),
                priority=priority,
                source=source,
            )
        copy.load_failures = list(self.load_failures)
        copy.state = RepositoryState.PARSED
        copy.resolve()
        logger.info(
            "Remapped namespace prefixes: "
            + ", ".join(f"{old} -> {new}" for old, new in changes.items())
        )
        return copy

    def find_circular_imports(self) -> List[List[str]]:
        """Return import/include cycles as document id paths (first id repeated last)."""
        graph: Dict[str, List[str]] = {}
        for doc_id, document in self.documents.items():
            targets: List[str] = []
            locations = [imp.schema_location for imp in document.imports]
            locations.extend(inc.schema_location for inc in document.includes)
            for location in locations:
                if not location:
                    continue
                target = self.location_mapper.map(location, base=doc_id)
                if target in self.documents and target not in targets:
                    targets.append(target)
            graph[doc_id] = targets

        cycles: List[List[str]] = []
        reported: Set[frozenset] = set()
        finished: Set[str] = set()
        stack: List[str] = []

        def visit(doc_id: str) -> None:
            stack.append(doc_id)
            for target in graph[doc_id]:
                if target in stack:
                    cycle = stack[stack.index(target):]
                    if frozenset(cycle) not in reported:
                        reported.add(frozenset(cycle))
                        cycles.append(cycle + [target])
                elif target not in finished:
                    visit(target)
            stack.pop()
            finished.add(doc_id)

        for doc_id in graph:
            if doc_id not in finished:
                visit(doc_id)
        return cycles

    def validate(self, strict: bool = False) -> List[str]:
        """Check entry files, circular imports and configured namespace mappings.

        Args:
            strict: Raise on the first problem instead of collecting them.

        Returns:
            Problem descriptions; empty when the repository is valid.

        Raises:
            RepositoryValidationError: In strict mode, for the first problem.
        """
        errors: List[str] = []

        def report(message: str) -> None:
            if strict:
                raise RepositoryValidationError(message)
            errors.append(message)

        for path in self.files:
            location = self._entry_location(path)
            if not is_url(location) and not os.path.exists(location):
                report(f"Schema file not found: {path}")

        if self.state is RepositoryState.UNPARSED:
            try:
                self.parse()
            except XsdRepositoryError as e:
                report(f"Failed to parse schemas: {e}")
        missing = [path for path in self.files if self._entry_location(path) not in self.documents]
        if missing and self.state is not RepositoryState.UNPARSED:
            report(f"Failed to parse schemas: {', '.join(missing)}")

        for cycle in self.find_circular_imports():
            report(f"Circular import detected: {' -> '.join(cycle)}")

        for prefix, uri in self.configured_namespaces:
            if prefix and not _PREFIX_PATTERN.match(prefix):
                report(f"Invalid namespace mapping: prefix '{prefix}' is not an NCName")
            if not uri.strip():
                report(f"Invalid namespace mapping for prefix '{prefix}': URI cannot be empty")

        if errors:
            logger.warning(f"Repository validation found {len(errors)} problem(s)")
        return errors

    def classify_schemas(self) -> Dict[str, Any]:
        """Split documents into entry points and dependencies, and by resolution status."""
        self.ensure_index()
        entry_ids = {self._entry_location(path) for path in self.files}
        unresolved = Counter(failure.document for failure in self.resolution_failures)
        schemas = [
            SchemaClassification(
                location=doc_id,
                namespace=self.document_namespaces.get(doc_id),
                category="entrypoint" if doc_id in entry_ids else "dependency",
                declarations=len(document.declarations),
                unresolved_references=unresolved[doc_id],
            )
            for doc_id, document in self.documents.items()
        ]
        fully_resolved = [s for s in schemas if s.fully_resolved]
        total = len(schemas)
        return {
            "entrypoint_schemas": [s for s in schemas if s.category == "entrypoint"],
            "dependency_schemas": [s for s in schemas if s.category == "dependency"],
            "fully_resolved": fully_resolved,
            "partially_resolved": [s for s in schemas if not s.fully_resolved],
            "summary": {
                "total_schemas": total,
                "entrypoint_count": sum(1 for s in schemas if s.category == "entrypoint"),
                "dependency_count": sum(1 for s in schemas if s.category == "dependency"),
                "fully_resolved_count": len(fully_resolved),
                "partially_resolved_count": total - len(fully_resolved),
                "resolution_percentage": round(100.0 * len(fully_resolved) / total, 2) if total else 0.0,
            },
        }

    # ---------------- Package support ---------------- #

    def resolution_table(self) -> List[Dict[str, Any]]:
        """Memoized reference results, keyed by document and site id."""
        with self._lock:
            rows = []
            for (doc_id, site_id), result in self._resolution_cache.items():
                row = result.to_dict()
                row["document_id"] = doc_id
                row["site_id"] = site_id
                rows.append(row)
            return rows

    def restore_resolution(
        self,
        type_index: TypeIndex,
        resolution_table: Iterable[Mapping[str, Any]],
        resolution_failures: Iterable[ResolutionFailure],
    ) -> None:
        """Install a pre-built index and mark the repository resolved."""
        with self._lock:
            self._rebuild_registry()
            self.type_index = type_index
            self._resolution_cache = {}
            for row in resolution_table:
                definition = None
                if row.get("kind") and row.get("local_name") and not row.get("builtin"):
                    entry = type_index.get(
                        DeclarationKind(row["kind"]),
                        QualifiedName(row.get("namespace"), row["local_name"]),
                    )
                    definition = entry.definition if entry else None
                result = ResolvedResult.from_dict(row, definition=definition)
                self._resolution_cache[(row["document_id"], int(row["site_id"]))] = result
            self.resolution_failures = list(resolution_failures)
            self.state = RepositoryState.RESOLVED

    def __repr__(self) -> str:
        return (
            f"SchemaRepository(state={self.state.value}, documents={len(self.documents)}, "
            f"types={len(self.type_index)})"
        )
