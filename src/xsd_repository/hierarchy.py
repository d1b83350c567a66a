"""Type derivation hierarchies.

:class:`TypeHierarchyAnalyzer` follows ``base`` references of complex and
simple types in both directions: up the derivation chain (ancestors) and down
to every indexed type that extends or restricts the root (descendants). Base
names are resolved through the deriving document's own prefix map, so two
documents using different prefixes for the same namespace link up correctly.

Example:
        hierarchy = repo.analyze_type_hierarchy("gml:AbstractFeatureType", depth=3)
        print(hierarchy.to_text())
        print(hierarchy.to_mermaid())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from .errors import ConfigurationError
from .models import DeclarationKind, QualifiedName
from .type_index import TypeIndexEntry

if TYPE_CHECKING:  # pragma: no cover
    from .repository import SchemaRepository

logger = logging.getLogger(__name__)

DEFAULT_HIERARCHY_DEPTH = 10

DERIVABLE_KINDS = (DeclarationKind.COMPLEX_TYPE, DeclarationKind.SIMPLE_TYPE)

NodeKey = Tuple[DeclarationKind, QualifiedName]


@dataclass
class TypeHierarchyNode:
    """One type in a hierarchy tree."""

    qualified_name: str
    kind: DeclarationKind
    depth: int = 0
    builtin: bool = False
    ancestors: List["TypeHierarchyNode"] = field(default_factory=list)
    descendants: List["TypeHierarchyNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_name": self.qualified_name,
            "kind": self.kind.value,
            "depth": self.depth,
            "builtin": self.builtin,
            "ancestors": [a.to_dict() for a in self.ancestors],
            "descendants": [d.to_dict() for d in self.descendants],
        }


@dataclass
class HierarchyMember:
    """Flat record of an ancestor or descendant."""

    qualified_name: str
    namespace: Optional[str]
    local_name: str
    kind: DeclarationKind
    distance: int
    builtin: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_name": self.qualified_name,
            "namespace": self.namespace,
            "local_name": self.local_name,
            "kind": self.kind.value,
            "distance": self.distance,
            "builtin": self.builtin,
        }


@dataclass
class TypeHierarchy:
    """Result of :meth:`TypeHierarchyAnalyzer.analyze`.

    Attributes:
        root: Display name of the analyzed type.
        ancestors: Base types, nearest first. A built-in XML Schema type ends
            the chain.
        descendants: Derived types in breadth-first order.
        tree: The root node with nested ancestor and descendant nodes.
    """

    root: str
    namespace: Optional[str]
    local_name: str
    kind: DeclarationKind
    ancestors: List[HierarchyMember]
    descendants: List[HierarchyMember]
    tree: TypeHierarchyNode

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "namespace": self.namespace,
            "local_name": self.local_name,
            "kind": self.kind.value,
            "ancestors": [a.to_dict() for a in self.ancestors],
            "descendants": [d.to_dict() for d in self.descendants],
            "tree": self.tree.to_dict(),
        }

    def to_text(self) -> str:
        """Indented text rendering, ancestors above the root."""
        lines = []
        for level, member in enumerate(reversed(self.ancestors)):
            lines.append(f"{'  ' * level}{member.qualified_name} ({member.kind.value})")
        indent = "  " * len(self.ancestors)
        lines.append(f"{indent}{self.root} ({self.kind.value}) *")
        self._descendant_lines(self.tree, indent + "  ", lines)
        return "\n".join(lines)

    def _descendant_lines(self, node: TypeHierarchyNode, indent: str, lines: List[str]) -> None:
        for child in node.descendants:
            lines.append(f"{indent}{child.qualified_name} ({child.kind.value})")
            self._descendant_lines(child, indent + "  ", lines)

    def to_mermaid(self) -> str:
        """Mermaid ``graph TD`` source; edges point from base to derived type."""
        ids: Dict[str, str] = {}
        lines = ["graph TD"]

        def node_id(name: str) -> str:
            if name not in ids:
                ids[name] = f"N{len(ids) + 1}"
                lines.append(f'  {ids[name]}["{name}"]')
            return ids[name]

        chain = [m.qualified_name for m in reversed(self.ancestors)] + [self.root]
        for base, derived in zip(chain, chain[1:]):
            lines.append(f"  {node_id(base)} --> {node_id(derived)}")
        node_id(self.root)

        def walk(node: TypeHierarchyNode) -> None:
            for child in node.descendants:
                lines.append(f"  {node_id(node.qualified_name)} --> {node_id(child.qualified_name)}")
                walk(child)

        walk(self.tree)
        return "\n".join(lines)


class TypeHierarchyAnalyzer:
    """Build derivation hierarchies from a resolved repository."""

    def __init__(self, repository: "SchemaRepository") -> None:
        self.repository = repository
        self._children: Optional[Dict[NodeKey, List[TypeIndexEntry]]] = None

    def analyze(self, name: str, depth: int = DEFAULT_HIERARCHY_DEPTH) -> Optional[TypeHierarchy]:
        """Return the hierarchy of the complex or simple type ``name``.

        Args:
            name: Clark, prefixed or unprefixed type name. Built-in XML Schema
                types are accepted and have only descendants.
            depth: Maximum number of derivation steps followed in each direction.

        Returns:
            The hierarchy, or ``None`` when ``name`` is not a known type.

        Raises:
            ConfigurationError: If ``depth`` is less than 1.
        """
        if depth < 1:
            raise ConfigurationError("Hierarchy depth must be at least 1")
        result = None
        for kind in DERIVABLE_KINDS:
            result = self.repository.find_type(name, kind=kind)
            if result.resolved:
                break
        if result is None or not result.resolved:
            logger.debug(f"No type named {name} for hierarchy analysis")
            return None

        qname = QualifiedName(result.namespace, result.local_name)
        root = self.repository.display_name(qname)
        tree = TypeHierarchyNode(root, result.kind, builtin=result.builtin)

        ancestors: List[HierarchyMember] = []
        node = tree
        visited: Set[NodeKey] = {(result.kind, qname)}
        entry = None if result.builtin else self.repository.type_index.get(result.kind, qname)
        while entry is not None and len(ancestors) < depth:
            base = self._base_of(entry)
            if base is None or not base.resolved:
                break
            base_qname = QualifiedName(base.namespace, base.local_name)
            if (base.kind, base_qname) in visited:
                logger.warning(f"Circular derivation at {self.repository.display_name(base_qname)}")
                break
            visited.add((base.kind, base_qname))
            display = self.repository.display_name(base_qname)
            ancestors.append(
                HierarchyMember(
                    qualified_name=display,
                    namespace=base.namespace,
                    local_name=base.local_name,
                    kind=base.kind,
                    distance=len(ancestors) + 1,
                    builtin=base.builtin,
                )
            )
            parent = TypeHierarchyNode(display, base.kind, depth=-len(ancestors), builtin=base.builtin)
            node.ancestors.append(parent)
            node = parent
            entry = None if base.builtin else self.repository.type_index.get(base.kind, base_qname)

        descendants: List[HierarchyMember] = []
        seen: Set[NodeKey] = {(result.kind, qname)}
        frontier = [(tree, (result.kind, qname))]
        for distance in range(1, depth + 1):
            next_frontier = []
            for parent_node, key in frontier:
                for child in self._derived_from(key):
                    if child.key in seen:
                        continue
                    seen.add(child.key)
                    display = self.repository.display_name(child.qualified_name)
                    descendants.append(
                        HierarchyMember(
                            qualified_name=display,
                            namespace=child.qualified_name.namespace,
                            local_name=child.qualified_name.local_name,
                            kind=child.kind,
                            distance=distance,
                        )
                    )
                    child_node = TypeHierarchyNode(display, child.kind, depth=distance)
                    parent_node.descendants.append(child_node)
                    next_frontier.append((child_node, child.key))
            frontier = next_frontier

        return TypeHierarchy(
            root=root,
            namespace=result.namespace,
            local_name=result.local_name,
            kind=result.kind,
            ancestors=ancestors,
            descendants=descendants,
            tree=tree,
        )

    def _base_of(self, entry: TypeIndexEntry):
        base = getattr(entry.definition, "base", None)
        if not base:
            return None
        for reference in entry.definition.references:
            if reference.attribute == "base" and reference.value == base:
                return self.repository.resolve_reference(entry.document, reference)
        return None

    def _derived_from(self, key: NodeKey) -> List[TypeIndexEntry]:
        if self._children is None:
            children: Dict[NodeKey, List[TypeIndexEntry]] = {}
            for kind in DERIVABLE_KINDS:
                for entry in self.repository.ensure_index().entries(kind=kind):
                    base = self._base_of(entry)
                    if base is None or not base.resolved:
                        continue
                    parent = (base.kind, QualifiedName(base.namespace, base.local_name))
                    children.setdefault(parent, []).append(entry)
            self._children = children
        return self._children.get(key, [])
