import os

import pytest

from xsd_repository.errors import ConfigurationError
from xsd_repository.namespaces import (
    LocationMapper,
    NamespaceRegistry,
    SchemaLocationMapping,
    extract_prefix_from_uri,
    is_url,
    parse_qualified_name,
)


def test_literal_location_mapping_resolves_against_includer():
    mapper = LocationMapper([SchemaLocationMapping("urn:old", "./local/schema.xsd")])
    mapped = mapper.map("urn:old", base="/work/main.xsd")
    assert mapped == os.path.normpath("/work/local/schema.xsd")


def test_pattern_mapping_with_backreference():
    rule = SchemaLocationMapping(
        r"^https://schemas\.example\.org/(.*)$", r"vendor/\1", pattern=True
    )
    assert rule.apply("https://schemas.example.org/gml/3.2/gml.xsd") == "vendor/gml/3.2/gml.xsd"
    assert rule.apply("https://other.example.org/gml.xsd") is None


def test_first_matching_rule_wins():
    mapper = LocationMapper(
        [
            SchemaLocationMapping("a.xsd", "first.xsd"),
            SchemaLocationMapping(r".*\.xsd", "second.xsd", pattern=True),
        ]
    )
    assert mapper.rewrite("a.xsd") == "first.xsd"
    assert mapper.rewrite("b.xsd") == "second.xsd"
    assert mapper.rewrite("c.txt") == "c.txt"


def test_relative_location_against_url_base():
    mapper = LocationMapper()
    mapped = mapper.map("../base/types.xsd", base="http://example.org/schemas/v1/main.xsd")
    assert mapped == "http://example.org/schemas/base/types.xsd"


def test_invalid_mapping_rules():
    with pytest.raises(ConfigurationError):
        SchemaLocationMapping("([unclosed", "x.xsd", pattern=True)
    with pytest.raises(ConfigurationError):
        SchemaLocationMapping("", "x.xsd")
    with pytest.raises(ConfigurationError):
        SchemaLocationMapping.from_dict({"to": "x.xsd"})


def test_mapping_dict_round_trip():
    rule = SchemaLocationMapping.from_dict({"from": "a", "to": "b", "pattern": True})
    assert rule.to_dict() == {"from": "a", "to": "b", "pattern": True}


def test_is_url():
    assert is_url("https://example.org/a.xsd")
    assert not is_url("/tmp/a.xsd")
    assert not is_url("urn:example:road")


@pytest.mark.parametrize(
    "uri,prefix",
    [
        ("http://www.opengis.net/gml/3.2", "gml"),
        ("http://www.opengis.net/citygml/2.0", "citygml"),
        ("urn:example:road", "road"),
        ("http://www.w3.org/1999/xlink", "xlink"),
    ],
)
def test_extract_prefix_from_uri(uri, prefix):
    assert extract_prefix_from_uri(uri) == prefix


def test_registry_configured_mappings_win():
    registry = NamespaceRegistry()
    registry.register("gml", "http://www.opengis.net/gml/3.2")

    class Doc:
        namespaces = {"gml": "http://www.opengis.net/gml", "app": "urn:app"}

    added = registry.extract_from_documents([Doc()])
    assert added == 1
    assert registry.get_uri("gml") == "http://www.opengis.net/gml/3.2"
    assert registry.get_uri("app") == "urn:app"


def test_registry_remap_and_prefixes():
    registry = NamespaceRegistry()
    registry.register("a", "urn:one")
    registry.register("b", "urn:one")
    registry.register("a", "urn:two")

    assert registry.get_prefixes("urn:one") == ["b"]
    assert registry.primary_prefix("urn:two") == "a"
    assert registry.all_uris() == ["urn:one", "urn:two"]
    assert len(registry) == 2


def test_registry_default_namespace_round_trip():
    registry = NamespaceRegistry()
    registry.register("", "urn:default")
    registry.register("x", "urn:x")

    restored = NamespaceRegistry.from_list(registry.to_list())
    assert restored.default_namespace == "urn:default"
    assert restored.all_mappings() == {"x": "urn:x"}


def test_parse_qualified_name_forms():
    registry = NamespaceRegistry()
    registry.register("road", "urn:example:road")

    assert parse_qualified_name("{urn:a}Thing").clark == "{urn:a}Thing"
    prefixed = parse_qualified_name("road:CodeType", registry)
    assert prefixed.namespace == "urn:example:road"
    assert prefixed.prefix == "road"

    unknown = parse_qualified_name("zz:Thing", registry)
    assert unknown.prefix_resolved is False
    assert unknown.namespace is None

    assert parse_qualified_name("Plain", registry).namespace is None


def test_scope_takes_precedence_over_registry():
    registry = NamespaceRegistry()
    registry.register("p", "urn:registry")
    registry.register("", "urn:registry-default")

    parsed = parse_qualified_name("p:Thing", registry, scope={"p": "urn:document", "": "urn:doc-default"})
    assert parsed.namespace == "urn:document"
    assert parse_qualified_name("Thing", registry, scope={"": "urn:doc-default"}).namespace == "urn:doc-default"
    # an explicit scope without a default means no namespace
    assert parse_qualified_name("Thing", registry, scope={}).namespace is None
    assert parse_qualified_name("Thing", registry).namespace == "urn:registry-default"


def test_parse_qualified_name_rejects_empty():
    with pytest.raises(ConfigurationError):
        parse_qualified_name("  ")
