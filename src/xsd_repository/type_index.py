"""The Type Index: ``(kind, qualified name)`` to owning declaration.

Entries point at declarations owned by documents; the index holds them only
by lookup key so mutually referencing schemas never form ownership cycles.

Insertion policy (:meth:`TypeIndex.add`):
* Same source (one repository or one merged package): the later entry
    overwrites the earlier one and a :class:`DuplicateDefinition` is recorded.
* Different sources: the lower ``priority`` wins; on equal priority the entry
    that was added first is kept.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .models import LOOKUP_ORDER, Declaration, DeclarationKind, QualifiedName, SchemaDocument

logger = logging.getLogger(__name__)

IndexKey = Tuple[DeclarationKind, QualifiedName]


@dataclass(frozen=True)
class TypeIndexEntry:
    """One indexed declaration.

    Attributes:
        qualified_name: Namespace and local name of the declaration.
        kind: Declaration kind.
        definition: The declaration, owned by ``document``.
        document: Id (normalized location) of the owning document.
        priority: Merge priority of the source; lower wins.
        source: Package path the entry came from, ``None`` for a local build.
    """

    qualified_name: QualifiedName
    kind: DeclarationKind
    definition: Declaration
    document: str
    priority: int = 0
    source: Optional[str] = None

    @property
    def key(self) -> IndexKey:
        return (self.kind, self.qualified_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.qualified_name.namespace,
            "name": self.qualified_name.local_name,
            "kind": self.kind.value,
            "document": self.document,
            "priority": self.priority,
            "source": self.source,
        }


@dataclass(frozen=True)
class DuplicateDefinition:
    """A same-repository redefinition; ``kept_document`` overwrote ``replaced_document``."""

    qualified_name: QualifiedName
    kind: DeclarationKind
    kept_document: str
    replaced_document: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_name": str(self.qualified_name),
            "kind": self.kind.value,
            "kept_document": self.kept_document,
            "replaced_document": self.replaced_document,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DuplicateDefinition":
        return cls(
            qualified_name=QualifiedName.from_clark(data["qualified_name"]),
            kind=DeclarationKind(data["kind"]),
            kept_document=data["kept_document"],
            replaced_document=data["replaced_document"],
        )


class TypeIndex:
    """Mapping from ``(kind, QualifiedName)`` to a single :class:`TypeIndexEntry`."""

    def __init__(self) -> None:
        self._entries: Dict[IndexKey, TypeIndexEntry] = {}
        self.duplicates: List[DuplicateDefinition] = []

    def add(self, entry: TypeIndexEntry) -> bool:
        """Insert ``entry`` following the index policy.

        Returns:
            True if ``entry`` is now the effective definition for its key.
        """
        existing = self._entries.get(entry.key)
        if existing is None:
            self._entries[entry.key] = entry
            return True
        if existing.source == entry.source:
            duplicate = DuplicateDefinition(
                qualified_name=entry.qualified_name,
                kind=entry.kind,
                kept_document=entry.document,
                replaced_document=existing.document,
            )
            self.duplicates.append(duplicate)
            logger.warning(
                f"Duplicate {entry.kind.value} {entry.qualified_name}: "
                f"{entry.document} overrides {existing.document}"
            )
            self._entries[entry.key] = entry
            return True
        if entry.priority < existing.priority:
            self._entries[entry.key] = entry
            return True
        return False

    def add_document(
        self,
        document: SchemaDocument,
        namespace: Optional[str] = None,
        document_id: Optional[str] = None,
        priority: int = 0,
        source: Optional[str] = None,
    ) -> int:
        """Index every top-level declaration of ``document``.

        Args:
            document: Document to scan.
            namespace: Effective namespace (differs from the document's own
                target namespace for chameleon includes).
            document_id: Id to record; defaults to ``document.location``.
            priority: Merge priority.
            source: Package path for merged builds.

        Returns:
            Number of declarations scanned.
        """
        doc_id = document_id or document.location
        ns = namespace if namespace is not None else document.target_namespace
        for decl in document.declarations:
            self.add(
                TypeIndexEntry(
                    qualified_name=QualifiedName(ns, decl.name),
                    kind=decl.kind,
                    definition=decl,
                    document=doc_id,
                    priority=priority,
                    source=source,
                )
            )
        return len(document.declarations)

    def get(self, kind: DeclarationKind, qualified_name: QualifiedName) -> Optional[TypeIndexEntry]:
        return self._entries.get((kind, qualified_name))

    def lookup(
        self, qualified_name: QualifiedName, kinds: Sequence[DeclarationKind] = LOOKUP_ORDER
    ) -> Optional[TypeIndexEntry]:
        """Return the first entry found for ``qualified_name`` in ``kinds`` order."""
        for kind in kinds:
            entry = self._entries.get((kind, qualified_name))
            if entry is not None:
                return entry
        return None

    def find_by_local_name(
        self, local_name: str, kinds: Sequence[DeclarationKind] = LOOKUP_ORDER
    ) -> List[TypeIndexEntry]:
        return [
            entry
            for entry in self._entries.values()
            if entry.qualified_name.local_name == local_name and entry.kind in kinds
        ]

    def entries(
        self,
        kind: Optional[DeclarationKind] = None,
        namespace: Optional[str] = None,
    ) -> List[TypeIndexEntry]:
        """Return entries in insertion order, optionally filtered."""
        return [
            entry
            for entry in self._entries.values()
            if (kind is None or entry.kind is kind)
            and (namespace is None or entry.qualified_name.namespace == namespace)
        ]

    def namespaces(self) -> List[str]:
        return sorted(
            {e.qualified_name.namespace for e in self._entries.values() if e.qualified_name.namespace}
        )

    def statistics(self) -> Dict[str, Any]:
        by_kind = Counter(entry.kind.value for entry in self._entries.values())
        by_namespace = Counter(
            entry.qualified_name.namespace or "" for entry in self._entries.values()
        )
        return {
            "total": len(self._entries),
            "by_kind": {kind.value: by_kind.get(kind.value, 0) for kind in DeclarationKind},
            "by_namespace": dict(sorted(by_namespace.items())),
        }

    def clear(self) -> None:
        self._entries.clear()
        self.duplicates.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]

    @classmethod
    def from_list(
        cls,
        data: Iterable[Mapping[str, Any]],
        documents: Mapping[str, SchemaDocument],
    ) -> "TypeIndex":
        """Rebuild an index from :meth:`to_list` output and the owning documents.

        Entries whose document or declaration is missing are skipped.
        """
        index = cls()
        for item in data:
            kind = DeclarationKind(item["kind"])
            document = documents.get(item["document"])
            definition = document.find(kind, item["name"]) if document else None
            if definition is None:
                logger.warning(
                    f"Dropping index entry {item['name']} ({kind.value}): "
                    f"declaration not found in {item['document']}"
                )
                continue
            entry = TypeIndexEntry(
                qualified_name=QualifiedName(item.get("namespace"), item["name"]),
                kind=kind,
                definition=definition,
                document=item["document"],
                priority=int(item.get("priority", 0)),
                source=item.get("source"),
            )
            index._entries[entry.key] = entry
        return index

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[TypeIndexEntry]:
        return iter(list(self._entries.values()))
