"""Parse XSD markup into immutable :class:`SchemaDocument` objects.

This module is the structured document parser/serializer used by the
resolution engine. It reads one schema file with :mod:`xml.etree.ElementTree`
and extracts everything the repository needs: the target namespace and form
defaults, the ``xmlns`` prefix map, every top-level declaration and every
named reference site beneath those declarations.

Extraction rules:
* Only top-level ``element``, ``complexType``, ``simpleType``, ``group`` and
    ``attributeGroup`` children of ``xs:schema`` become declarations.
* Reference sites are collected depth-first in document order and numbered
    per document. Attribute ``ref`` values are skipped because attributes are
    not an indexed kind; attribute ``type`` values are kept as type references.
* ``memberTypes`` on ``xs:union`` produces one reference per listed name.

Typical usage:
        from xsd_repository.xsd_parser import parse_schema_document

        doc = parse_schema_document(Path("road.xsd").read_bytes(), "road.xsd")
        for decl, ref in doc.iter_references():
                print(decl.name, ref.attribute, ref.value)

Notes:
* Namespace declarations on nested elements are merged into the document
    prefix map; the first declaration of a prefix wins.
* ``serialize_schema_document`` returns the original markup when it was kept
    and otherwise rebuilds a skeleton schema from the extracted declarations.
"""

from __future__ import annotations

import io
import itertools
import xml.etree.ElementTree as ET
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from .errors import ConfigurationError, DocumentParseError
from .models import (
    XS_NAMESPACE,
    TYPE_KINDS,
    AttributeGroupDecl,
    ComplexTypeDecl,
    Declaration,
    DeclarationKind,
    ElementDecl,
    GroupDecl,
    Import,
    Include,
    Reference,
    SchemaDocument,
    SimpleTypeDecl,
)

XS_NS = f"{{{XS_NAMESPACE}}}"

# (local tag, attribute) -> kinds the attribute value may name
REFERENCE_ATTRIBUTES: Dict[Tuple[str, str], Tuple[DeclarationKind, ...]] = {
    ("element", "ref"): (DeclarationKind.ELEMENT,),
    ("element", "type"): TYPE_KINDS,
    ("element", "substitutionGroup"): (DeclarationKind.ELEMENT,),
    ("attribute", "type"): TYPE_KINDS,
    ("group", "ref"): (DeclarationKind.GROUP,),
    ("attributeGroup", "ref"): (DeclarationKind.ATTRIBUTE_GROUP,),
    ("extension", "base"): TYPE_KINDS,
    ("restriction", "base"): TYPE_KINDS,
    ("list", "itemType"): TYPE_KINDS,
    ("union", "memberTypes"): TYPE_KINDS,
}

_TRUE_VALUES = {"true", "1"}


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _flag(node: ET.Element, attribute: str) -> bool:
    return (node.get(attribute) or "").strip() in _TRUE_VALUES


def _documentation(node: ET.Element) -> str:
    annotation = node.find(f"{XS_NS}annotation")
    if annotation is None:
        return ""
    doc = annotation.find(f"{XS_NS}documentation")
    if doc is None:
        return ""
    return " ".join("".join(doc.itertext()).split())


def _collect_references(
    node: ET.Element,
    path: str,
    counter: Iterator[int],
    out: List[Reference],
) -> None:
    """Append the reference sites of ``node`` and its descendants to ``out``."""
    tag = _local_name(node.tag)
    for attribute in ("ref", "type", "base", "itemType", "memberTypes", "substitutionGroup"):
        raw = node.get(attribute)
        if not raw:
            continue
        kinds = REFERENCE_ATTRIBUTES.get((tag, attribute))
        if kinds is None:
            continue
        values = raw.split() if attribute == "memberTypes" else [raw.strip()]
        for value in values:
            out.append(
                Reference(
                    site_id=next(counter),
                    attribute=attribute,
                    value=value,
                    target_kinds=kinds,
                    context=path,
                )
            )
    for child in node:
        if not isinstance(child.tag, str) or not child.tag.startswith(XS_NS):
            continue
        child_tag = _local_name(child.tag)
        if child_tag in ("annotation", "documentation", "appinfo"):
            continue
        label = child.get("name") or child.get("ref")
        segment = f"{child_tag}[{label}]" if label else child_tag
        _collect_references(child, f"{path}/{segment}", counter, out)


def _element(node: ET.Element, refs: Tuple[Reference, ...]) -> ElementDecl:
    return ElementDecl(
        name=node.get("name", ""),
        type_name=node.get("type"),
        substitution_group=node.get("substitutionGroup"),
        abstract=_flag(node, "abstract"),
        documentation=_documentation(node),
        references=refs,
    )


def _complex_type(node: ET.Element, refs: Tuple[Reference, ...]) -> ComplexTypeDecl:
    base = None
    derivation = None
    mixed = _flag(node, "mixed")
    for content_tag in ("complexContent", "simpleContent"):
        content = node.find(f"{XS_NS}{content_tag}")
        if content is None:
            continue
        mixed = mixed or _flag(content, "mixed")
        for derivation_tag in ("extension", "restriction"):
            derived = content.find(f"{XS_NS}{derivation_tag}")
            if derived is not None:
                base = derived.get("base")
                derivation = derivation_tag
                break
    return ComplexTypeDecl(
        name=node.get("name", ""),
        base=base,
        derivation=derivation,
        abstract=_flag(node, "abstract"),
        mixed=mixed,
        documentation=_documentation(node),
        references=refs,
    )


def _simple_type(node: ET.Element, refs: Tuple[Reference, ...]) -> SimpleTypeDecl:
    base = None
    variety = "atomic"
    enumerations: List[str] = []
    restriction = node.find(f"{XS_NS}restriction")
    list_node = node.find(f"{XS_NS}list")
    union_node = node.find(f"{XS_NS}union")
    if restriction is not None:
        base = restriction.get("base")
        enumerations = [
            enum.get("value", "") for enum in restriction.findall(f"{XS_NS}enumeration")
        ]
    elif list_node is not None:
        variety = "list"
        base = list_node.get("itemType")
    elif union_node is not None:
        variety = "union"
    return SimpleTypeDecl(
        name=node.get("name", ""),
        base=base,
        variety=variety,
        enumerations=tuple(enumerations),
        documentation=_documentation(node),
        references=refs,
    )


def _group(node: ET.Element, refs: Tuple[Reference, ...]) -> GroupDecl:
    return GroupDecl(
        name=node.get("name", ""), documentation=_documentation(node), references=refs
    )


def _attribute_group(node: ET.Element, refs: Tuple[Reference, ...]) -> AttributeGroupDecl:
    return AttributeGroupDecl(
        name=node.get("name", ""), documentation=_documentation(node), references=refs
    )


DECLARATION_BUILDERS: Dict[
    str, Callable[[ET.Element, Tuple[Reference, ...]], Declaration]
] = {
    DeclarationKind.ELEMENT.value: _element,
    DeclarationKind.COMPLEX_TYPE.value: _complex_type,
    DeclarationKind.SIMPLE_TYPE.value: _simple_type,
    DeclarationKind.GROUP.value: _group,
    DeclarationKind.ATTRIBUTE_GROUP.value: _attribute_group,
}


def _read_tree(
    raw: bytes, source: str
) -> Tuple[ET.Element, Dict[str, str], Optional[str]]:
    namespaces: Dict[str, str] = {}
    default_namespace: Optional[str] = None
    root: Optional[ET.Element] = None
    try:
        for event, item in ET.iterparse(io.BytesIO(raw), events=("start-ns", "start")):
            if event == "start-ns":
                prefix, uri = item
                if prefix:
                    namespaces.setdefault(prefix, uri)
                elif default_namespace is None:
                    default_namespace = uri
            elif root is None:
                root = item
    except ET.ParseError as exc:
        line, column = getattr(exc, "position", (None, None))
        raise DocumentParseError(source, str(exc), line=line, column=column) from exc
    if root is None:
        raise DocumentParseError(source, "document is empty")
    return root, namespaces, default_namespace


def parse_schema_document(data: Union[bytes, str], source: str) -> SchemaDocument:
    """Parse raw schema markup into a :class:`SchemaDocument`.

    Args:
        data: Markup as bytes (encoding taken from the XML declaration) or str.
        source: Location used for error messages and as the document id.

    Returns:
        The parsed, immutable document with ``markup`` populated.

    Raises:
        ConfigurationError: If ``data`` is ``None`` or ``source`` is empty.
        DocumentParseError: If the markup is malformed or is not an XSD.
    """
    if data is None:
        raise ConfigurationError("Schema content must not be None")
    if not source:
        raise ConfigurationError("Schema source must be a non-empty string")

    if isinstance(data, str):
        markup = data
        # ElementTree rejects str input carrying an encoding declaration
        raw = data.encode("utf-8")
    else:
        raw = bytes(data)
        markup = raw.decode("utf-8", errors="replace")

    root, namespaces, default_namespace = _read_tree(raw, source)
    if root.tag != f"{XS_NS}schema":
        raise DocumentParseError(
            source, f"root element is {root.tag!r}, expected xs:schema"
        )

    counter = itertools.count()
    declarations: List[Declaration] = []
    imports: List[Import] = []
    includes: List[Include] = []

    for child in root:
        if not isinstance(child.tag, str) or not child.tag.startswith(XS_NS):
            continue
        tag = _local_name(child.tag)
        if tag == "import":
            imports.append(
                Import(
                    namespace=child.get("namespace"),
                    schema_location=child.get("schemaLocation"),
                )
            )
            continue
        if tag in ("include", "redefine"):
            location = child.get("schemaLocation")
            if location:
                includes.append(Include(schema_location=location))
            continue
        builder = DECLARATION_BUILDERS.get(tag)
        name = child.get("name")
        if builder is None or not name:
            continue
        refs: List[Reference] = []
        _collect_references(child, f"{tag}[{name}]", counter, refs)
        declarations.append(builder(child, tuple(refs)))

    return SchemaDocument(
        location=source,
        target_namespace=root.get("targetNamespace") or None,
        element_form_default=root.get("elementFormDefault", "unqualified"),
        attribute_form_default=root.get("attributeFormDefault", "unqualified"),
        namespaces=namespaces,
        default_namespace=default_namespace,
        declarations=tuple(declarations),
        imports=tuple(imports),
        includes=tuple(includes),
        markup=markup,
    )


def serialize_schema_document(document: SchemaDocument) -> str:
    """Return schema markup for ``document``.

    Documents that kept their source markup are returned verbatim. Otherwise
    a skeleton schema is rebuilt from the declarations: names, derivation
    bases, element types, simple type facets and documentation survive, while
    content models do not.
    """
    if document is None:
        raise ConfigurationError("Document must not be None")
    if document.markup is not None:
        return document.markup

    xs = next(
        (p for p, uri in document.namespaces.items() if uri == XS_NAMESPACE), "xs"
    )

    def tag(name: str) -> str:
        return f"{xs}:{name}"

    root = ET.Element(tag("schema"))
    root.set(f"xmlns:{xs}", XS_NAMESPACE)
    for prefix, uri in sorted(document.namespaces.items()):
        if prefix != xs:
            root.set(f"xmlns:{prefix}", uri)
    if document.default_namespace:
        root.set("xmlns", document.default_namespace)
    if document.target_namespace:
        root.set("targetNamespace", document.target_namespace)
    root.set("elementFormDefault", document.element_form_default)
    root.set("attributeFormDefault", document.attribute_form_default)

    for imp in document.imports:
        node = ET.SubElement(root, tag("import"))
        if imp.namespace:
            node.set("namespace", imp.namespace)
        if imp.schema_location:
            node.set("schemaLocation", imp.schema_location)
    for inc in document.includes:
        ET.SubElement(root, tag("include"), schemaLocation=inc.schema_location)

    for decl in document.declarations:
        node = ET.SubElement(root, tag(decl.kind.value), name=decl.name)
        if decl.documentation:
            annotation = ET.SubElement(node, tag("annotation"))
            ET.SubElement(annotation, tag("documentation")).text = decl.documentation
        _EMITTERS[decl.kind](node, decl, tag)

    return ET.tostring(root, encoding="unicode")


def _emit_element(node: ET.Element, decl: ElementDecl, tag: Callable[[str], str]) -> None:
    if decl.type_name:
        node.set("type", decl.type_name)
    if decl.substitution_group:
        node.set("substitutionGroup", decl.substitution_group)
    if decl.abstract:
        node.set("abstract", "true")


def _emit_complex_type(
    node: ET.Element, decl: ComplexTypeDecl, tag: Callable[[str], str]
) -> None:
    if decl.abstract:
        node.set("abstract", "true")
    if decl.mixed:
        node.set("mixed", "true")
    if decl.base:
        content = ET.SubElement(node, tag("complexContent"))
        ET.SubElement(content, tag(decl.derivation or "extension"), base=decl.base)


def _emit_simple_type(
    node: ET.Element, decl: SimpleTypeDecl, tag: Callable[[str], str]
) -> None:
    if decl.variety == "list":
        ET.SubElement(node, tag("list"), itemType=decl.base or tag("string"))
    elif decl.variety == "union":
        members = [r.value for r in decl.references if r.attribute == "memberTypes"]
        ET.SubElement(node, tag("union"), memberTypes=" ".join(members))
    else:
        restriction = ET.SubElement(node, tag("restriction"), base=decl.base or tag("string"))
        for value in decl.enumerations:
            ET.SubElement(restriction, tag("enumeration"), value=value)


def _emit_group(node: ET.Element, decl: GroupDecl, tag: Callable[[str], str]) -> None:
    ET.SubElement(node, tag("sequence"))


def _emit_attribute_group(
    node: ET.Element, decl: AttributeGroupDecl, tag: Callable[[str], str]
) -> None:
    return None


_EMITTERS: Dict[DeclarationKind, Callable[..., None]] = {
    DeclarationKind.ELEMENT: _emit_element,
    DeclarationKind.COMPLEX_TYPE: _emit_complex_type,
    DeclarationKind.SIMPLE_TYPE: _emit_simple_type,
    DeclarationKind.GROUP: _emit_group,
    DeclarationKind.ATTRIBUTE_GROUP: _emit_attribute_group,
}
