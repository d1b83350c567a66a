"""Schema document model.

A :class:`SchemaDocument` is the immutable, parsed form of one XSD file. It
owns an ordered arena of top-level declarations; nothing outside the document
holds a declaration by ownership. Cross-document links are expressed with
:class:`Reference` sites that name their target by qualified name and are
resolved through the repository's Type Index.

Overview:
        * ``QualifiedName`` is the structural ``(namespace, local_name)`` key.
        * ``DeclarationKind`` is the closed set of indexable declaration kinds.
        * ``ElementDecl`` / ``ComplexTypeDecl`` / ``SimpleTypeDecl`` /
            ``GroupDecl`` / ``AttributeGroupDecl`` form a closed tagged variant
            (``Declaration``); each carries its ``kind`` tag and the reference
            sites found anywhere beneath it in document order.
        * ``Import`` / ``Include`` record linking directives as written.

Typical construction (normally done by :mod:`xsd_repository.xsd_parser`)::

        from xsd_repository.models import (
                ComplexTypeDecl, DeclarationKind, Reference, SchemaDocument,
        )

        base_ref = Reference(
                site_id=0,
                attribute="base",
                value="gml:AbstractFeatureType",
                target_kinds=(DeclarationKind.COMPLEX_TYPE, DeclarationKind.SIMPLE_TYPE),
                context="complexType[RoadType]/complexContent/extension",
        )
        road = ComplexTypeDecl(name="RoadType", base="gml:AbstractFeatureType",
                               derivation="extension", references=(base_ref,))
        doc = SchemaDocument(location="/schemas/road.xsd",
                             target_namespace="urn:example:road",
                             declarations=(road,))
        doc.find(DeclarationKind.COMPLEX_TYPE, "RoadType") is road  # True

Design notes:
        * All model classes are frozen; a resolved reference is remembered in the
            repository's side table, never on the node itself.
        * ``to_dict`` / ``*_from_dict`` produce primitive-only structures so the
            package codec can encode them as JSON or pickle with identical content.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Type, Union

XS_NAMESPACE = "http://www.w3.org/2001/XMLSchema"


class DeclarationKind(str, Enum):
    """Indexable kinds of top-level schema declarations."""

    ELEMENT = "element"
    COMPLEX_TYPE = "complexType"
    SIMPLE_TYPE = "simpleType"
    GROUP = "group"
    ATTRIBUTE_GROUP = "attributeGroup"


TYPE_KINDS: Tuple[DeclarationKind, ...] = (
    DeclarationKind.COMPLEX_TYPE,
    DeclarationKind.SIMPLE_TYPE,
)

# Lookup order used when a caller does not say which kind it wants.
LOOKUP_ORDER: Tuple[DeclarationKind, ...] = (
    DeclarationKind.COMPLEX_TYPE,
    DeclarationKind.SIMPLE_TYPE,
    DeclarationKind.ELEMENT,
    DeclarationKind.GROUP,
    DeclarationKind.ATTRIBUTE_GROUP,
)


@dataclass(frozen=True)
class QualifiedName:
    """A ``(namespace URI, local name)`` pair; ``str()`` gives Clark notation.

    Example:
        >>> str(QualifiedName("http://x", "Foo"))
        '{http://x}Foo'
        >>> QualifiedName.from_clark("{http://x}Foo") == QualifiedName("http://x", "Foo")
        True
    """

    namespace: Optional[str]
    local_name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{{{self.namespace}}}{self.local_name}"
        return self.local_name

    @classmethod
    def from_clark(cls, text: str) -> "QualifiedName":
        if text.startswith("{") and "}" in text:
            namespace, local_name = text[1:].split("}", 1)
            return cls(namespace or None, local_name)
        return cls(None, text)


@dataclass(frozen=True)
class Reference:
    """A named pointer embedded in a declaration.

    Attributes:
        site_id: Identifier unique within the owning document (document order).
        attribute: Attribute that carried the name (``ref``, ``type``, ``base``,
            ``itemType``, ``memberTypes`` or ``substitutionGroup``).
        value: The raw, usually prefixed, name as written (``gml:CodeType``).
        target_kinds: Declaration kinds the name may denote, in lookup order.
        context: Human-readable path of the site inside the document.
    """

    site_id: int
    attribute: str
    value: str
    target_kinds: Tuple[DeclarationKind, ...]
    context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site_id": self.site_id,
            "attribute": self.attribute,
            "value": self.value,
            "target_kinds": [kind.value for kind in self.target_kinds],
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reference":
        return cls(
            site_id=int(data["site_id"]),
            attribute=data["attribute"],
            value=data["value"],
            target_kinds=tuple(DeclarationKind(k) for k in data["target_kinds"]),
            context=data.get("context", ""),
        )


@dataclass(frozen=True)
class ElementDecl:
    """Top-level ``xs:element``."""

    kind: ClassVar[DeclarationKind] = DeclarationKind.ELEMENT

    name: str
    type_name: Optional[str] = None
    substitution_group: Optional[str] = None
    abstract: bool = False
    documentation: str = ""
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class ComplexTypeDecl:
    """Top-level ``xs:complexType``; ``derivation`` is extension/restriction."""

    kind: ClassVar[DeclarationKind] = DeclarationKind.COMPLEX_TYPE

    name: str
    base: Optional[str] = None
    derivation: Optional[str] = None
    abstract: bool = False
    mixed: bool = False
    documentation: str = ""
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class SimpleTypeDecl:
    """Top-level ``xs:simpleType``; ``variety`` is atomic, list or union."""

    kind: ClassVar[DeclarationKind] = DeclarationKind.SIMPLE_TYPE

    name: str
    base: Optional[str] = None
    variety: str = "atomic"
    enumerations: Tuple[str, ...] = ()
    documentation: str = ""
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class GroupDecl:
    """Top-level ``xs:group`` (model group definition)."""

    kind: ClassVar[DeclarationKind] = DeclarationKind.GROUP

    name: str
    documentation: str = ""
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class AttributeGroupDecl:
    """Top-level ``xs:attributeGroup``."""

    kind: ClassVar[DeclarationKind] = DeclarationKind.ATTRIBUTE_GROUP

    name: str
    documentation: str = ""
    references: Tuple[Reference, ...] = ()


Declaration = Union[
    ElementDecl, ComplexTypeDecl, SimpleTypeDecl, GroupDecl, AttributeGroupDecl
]

DECLARATION_CLASSES: Dict[DeclarationKind, Type[Any]] = {
    DeclarationKind.ELEMENT: ElementDecl,
    DeclarationKind.COMPLEX_TYPE: ComplexTypeDecl,
    DeclarationKind.SIMPLE_TYPE: SimpleTypeDecl,
    DeclarationKind.GROUP: GroupDecl,
    DeclarationKind.ATTRIBUTE_GROUP: AttributeGroupDecl,
}


def declaration_to_dict(declaration: Declaration) -> Dict[str, Any]:
    """Convert a declaration into a primitive-only dictionary."""
    data: Dict[str, Any] = {"kind": declaration.kind.value}
    for item in fields(declaration):
        value = getattr(declaration, item.name)
        if item.name == "references":
            data["references"] = [ref.to_dict() for ref in value]
        elif isinstance(value, tuple):
            data[item.name] = list(value)
        else:
            data[item.name] = value
    return data


def declaration_from_dict(data: Dict[str, Any]) -> Declaration:
    """Rebuild a declaration produced by :func:`declaration_to_dict`."""
    cls = DECLARATION_CLASSES[DeclarationKind(data["kind"])]
    kwargs: Dict[str, Any] = {}
    for item in fields(cls):
        if item.name not in data:
            continue
        value = data[item.name]
        if item.name == "references":
            value = tuple(Reference.from_dict(ref) for ref in value)
        elif isinstance(value, list):
            value = tuple(value)
        kwargs[item.name] = value
    return cls(**kwargs)


@dataclass(frozen=True)
class Import:
    namespace: Optional[str] = None
    schema_location: Optional[str] = None


@dataclass(frozen=True)
class Include:
    schema_location: str


@dataclass(frozen=True)
class SchemaDocument:
    """One parsed schema file.

    Attributes:
        location: Normalized path or URL the document was loaded from, or a
            synthetic id for documents restored from a package.
        target_namespace: ``targetNamespace`` (``None`` for no-namespace schemas).
        element_form_default: ``elementFormDefault`` value.
        attribute_form_default: ``attributeFormDefault`` value.
        namespaces: ``xmlns:prefix`` declarations found in the markup.
        default_namespace: Default ``xmlns`` namespace, if declared.
        declarations: Top-level declarations in document order.
        imports: ``xs:import`` directives in document order.
        includes: ``xs:include`` directives in document order.
        markup: Original source text (``None`` when only declarations are kept).
    """

    location: str
    target_namespace: Optional[str] = None
    element_form_default: str = "unqualified"
    attribute_form_default: str = "unqualified"
    namespaces: Dict[str, str] = field(default_factory=dict)
    default_namespace: Optional[str] = None
    declarations: Tuple[Declaration, ...] = ()
    imports: Tuple[Import, ...] = ()
    includes: Tuple[Include, ...] = ()
    markup: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def basename(self) -> str:
        return PurePosixPath(self.location.replace("\\", "/")).name

    @property
    def elements(self) -> List[ElementDecl]:
        return self.declarations_of(DeclarationKind.ELEMENT)

    @property
    def complex_types(self) -> List[ComplexTypeDecl]:
        return self.declarations_of(DeclarationKind.COMPLEX_TYPE)

    @property
    def simple_types(self) -> List[SimpleTypeDecl]:
        return self.declarations_of(DeclarationKind.SIMPLE_TYPE)

    @property
    def groups(self) -> List[GroupDecl]:
        return self.declarations_of(DeclarationKind.GROUP)

    @property
    def attribute_groups(self) -> List[AttributeGroupDecl]:
        return self.declarations_of(DeclarationKind.ATTRIBUTE_GROUP)

    def declarations_of(self, kind: DeclarationKind) -> List[Any]:
        return [decl for decl in self.declarations if decl.kind is kind]

    def find(self, kind: DeclarationKind, name: str) -> Optional[Declaration]:
        """Return the last declaration of ``kind`` named ``name``.

        The last one wins to match how the Type Index treats duplicates.
        """
        match = None
        for decl in self.declarations:
            if decl.kind is kind and decl.name == name:
                match = decl
        return match

    def iter_references(self) -> Iterator[Tuple[Declaration, Reference]]:
        """Yield ``(declaration, reference)`` pairs depth-first in document order."""
        for decl in self.declarations:
            for ref in decl.references:
                yield decl, ref

    def to_dict(self, include_markup: bool = True) -> Dict[str, Any]:
        return {
            "location": self.location,
            "target_namespace": self.target_namespace,
            "element_form_default": self.element_form_default,
            "attribute_form_default": self.attribute_form_default,
            "namespaces": dict(self.namespaces),
            "default_namespace": self.default_namespace,
            "declarations": [declaration_to_dict(d) for d in self.declarations],
            "imports": [
                {"namespace": imp.namespace, "schema_location": imp.schema_location}
                for imp in self.imports
            ],
            "includes": [{"schema_location": inc.schema_location} for inc in self.includes],
            "markup": self.markup if include_markup else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaDocument":
        return cls(
            location=data["location"],
            target_namespace=data.get("target_namespace"),
            element_form_default=data.get("element_form_default", "unqualified"),
            attribute_form_default=data.get("attribute_form_default", "unqualified"),
            namespaces=dict(data.get("namespaces") or {}),
            default_namespace=data.get("default_namespace"),
            declarations=tuple(
                declaration_from_dict(d) for d in data.get("declarations", [])
            ),
            imports=tuple(
                Import(namespace=i.get("namespace"), schema_location=i.get("schema_location"))
                for i in data.get("imports", [])
            ),
            includes=tuple(
                Include(schema_location=i["schema_location"])
                for i in data.get("includes", [])
            ),
            markup=data.get("markup"),
        )
