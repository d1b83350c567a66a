"""Result and report records returned by the repository and search layer.

These are plain dataclasses with ``to_dict`` helpers so they can be stored in
packages and returned from the HTTP service unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import Declaration, DeclarationKind


class RepositoryState(str, Enum):
    """Lifecycle of a repository; transitions only move forward."""

    UNPARSED = "unparsed"
    PARSED = "parsed"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Suggestion:
    """A "did you mean" candidate produced by fuzzy matching."""

    text: str
    similarity: float
    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "similarity": self.similarity,
            "explanation": self.explanation,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Suggestion":
        return cls(data["text"], float(data["similarity"]), data.get("explanation", ""))


@dataclass
class ResolvedResult:
    """Outcome of looking up one name.

    Attributes:
        query: Name as requested.
        resolved: True when a definition (or built-in) was found.
        namespace: Namespace URI the name resolved to, if known.
        local_name: Local part of the name.
        kind: Kind of the matched declaration.
        definition: The matched declaration (``None`` for built-ins and misses).
        document: Id of the owning document.
        builtin: True for XML Schema built-in datatypes.
        resolution_path: Human-readable steps taken during lookup.
        error_message: Why the lookup failed.
        suggestions: Similar names when the lookup failed.
    """

    query: str
    resolved: bool
    namespace: Optional[str] = None
    local_name: Optional[str] = None
    kind: Optional[DeclarationKind] = None
    definition: Optional[Declaration] = None
    document: Optional[str] = None
    builtin: bool = False
    resolution_path: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    suggestions: List[Suggestion] = field(default_factory=list)

    @property
    def qualified_name(self) -> Optional[str]:
        if self.local_name is None:
            return None
        if self.namespace:
            return f"{{{self.namespace}}}{self.local_name}"
        return self.local_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "resolved": self.resolved,
            "namespace": self.namespace,
            "local_name": self.local_name,
            "kind": self.kind.value if self.kind else None,
            "document": self.document,
            "builtin": self.builtin,
            "resolution_path": list(self.resolution_path),
            "error_message": self.error_message,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], definition: Optional[Declaration] = None
    ) -> "ResolvedResult":
        kind = data.get("kind")
        return cls(
            query=data["query"],
            resolved=bool(data["resolved"]),
            namespace=data.get("namespace"),
            local_name=data.get("local_name"),
            kind=DeclarationKind(kind) if kind else None,
            definition=definition,
            document=data.get("document"),
            builtin=bool(data.get("builtin", False)),
            resolution_path=list(data.get("resolution_path") or []),
            error_message=data.get("error_message"),
            suggestions=[Suggestion.from_dict(s) for s in data.get("suggestions") or []],
        )


@dataclass(frozen=True)
class LoadFailure:
    """A document that could not be loaded, or a loaded one with a warning.

    Attributes:
        location: Location as written in the requesting directive.
        resolved_location: Effective location after mapping.
        directive: ``entry``, ``import`` or ``include``.
        referenced_from: Id of the requesting document (``None`` for entries).
        error: Error message.
        warning: True for non-fatal conditions (the document was still loaded).
    """

    location: str
    resolved_location: str
    directive: str
    referenced_from: Optional[str]
    error: str
    warning: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "resolved_location": self.resolved_location,
            "directive": self.directive,
            "referenced_from": self.referenced_from,
            "error": self.error,
            "warning": self.warning,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoadFailure":
        return cls(
            location=data["location"],
            resolved_location=data.get("resolved_location") or data["location"],
            directive=data.get("directive", "import"),
            referenced_from=data.get("referenced_from"),
            error=data.get("error", ""),
            warning=bool(data.get("warning", False)),
        )


@dataclass(frozen=True)
class ResolutionFailure:
    """A reference with no matching Type Index entry."""

    document: str
    site_id: int
    declaration: str
    attribute: str
    reference: str
    qualified_name: str
    context: str
    reason: str
    suggestions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document,
            "site_id": self.site_id,
            "declaration": self.declaration,
            "attribute": self.attribute,
            "reference": self.reference,
            "qualified_name": self.qualified_name,
            "context": self.context,
            "reason": self.reason,
            "suggestions": list(self.suggestions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResolutionFailure":
        return cls(
            document=data["document"],
            site_id=int(data["site_id"]),
            declaration=data.get("declaration", ""),
            attribute=data.get("attribute", ""),
            reference=data["reference"],
            qualified_name=data.get("qualified_name", data["reference"]),
            context=data.get("context", ""),
            reason=data.get("reason", ""),
            suggestions=tuple(data.get("suggestions") or ()),
        )


@dataclass(frozen=True)
class SchemaClassification:
    """Role and resolution status of one loaded document.

    Attributes:
        location: Document id.
        category: ``entrypoint`` for configured files, ``dependency`` for
            documents reached through imports and includes.
        unresolved_references: Reference sites in the document that did not
            resolve; zero means the document is fully resolved.
    """

    location: str
    namespace: Optional[str]
    category: str
    declarations: int
    unresolved_references: int

    @property
    def fully_resolved(self) -> bool:
        return self.unresolved_references == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location,
            "namespace": self.namespace,
            "category": self.category,
            "declarations": self.declarations,
            "unresolved_references": self.unresolved_references,
            "fully_resolved": self.fully_resolved,
        }
