from pathlib import Path

import pytest

from xsd_repository.errors import (
    ConfigurationError,
    DocumentParseError,
    LocationNotFoundError,
    RepositoryValidationError,
    UnresolvedReferenceError,
)
from xsd_repository.models import XS_NAMESPACE, DeclarationKind
from xsd_repository.repository import SchemaRepository
from xsd_repository.results import RepositoryState

FIXTURE_SCHEMAS = Path(__file__).resolve().parent / "fixtures" / "schemas"


def _repo(name, **kwargs):
    return SchemaRepository(files=[str(FIXTURE_SCHEMAS / name)], **kwargs)


def test_lifecycle_states():
    repo = _repo("city.xsd")
    assert repo.state is RepositoryState.UNPARSED
    repo.parse()
    assert repo.state is RepositoryState.PARSED
    assert len(repo.documents) == 3
    repo.resolve()
    assert repo.state is RepositoryState.RESOLVED


def test_city_schema_resolves_completely(city_repository):
    stats = city_repository.statistics()
    assert stats["total_schemas"] == 3
    assert stats["total_types"] == 9
    assert stats["total_namespaces"] == 2
    assert stats["types_by_kind"] == {
        "element": 2,
        "complexType": 3,
        "simpleType": 2,
        "group": 1,
        "attributeGroup": 1,
    }
    assert city_repository.load_failures == []
    assert city_repository.resolution_failures == []
    city_repository.ensure_resolved()


def test_resolve_is_idempotent(city_repository):
    index = city_repository.type_index
    city_repository.resolve()
    assert city_repository.type_index is index

    city_repository.resolve(force=True)
    assert city_repository.type_index is not index
    assert len(city_repository.type_index) == len(index)
    assert city_repository.state is RepositoryState.RESOLVED


def test_document_order_is_deterministic():
    serial = _repo("city.xsd").parse()
    threaded = _repo("city.xsd", max_workers=4).parse()
    assert list(serial.documents) == list(threaded.documents)
    assert [Path(doc_id).name for doc_id in serial.documents] == [
        "city.xsd",
        "road.xsd",
        "city-types.xsd",
    ]


def test_find_type_by_prefixed_and_clark_names(city_repository):
    by_prefix = city_repository.find_type("road:RoadType")
    assert by_prefix.resolved
    assert by_prefix.kind is DeclarationKind.COMPLEX_TYPE
    assert by_prefix.namespace == "urn:example:road"
    assert Path(by_prefix.document).name == "road.xsd"
    assert by_prefix.resolution_path

    by_clark = city_repository.find_type("{urn:example:road}RoadType")
    assert by_clark.definition == by_prefix.definition


def test_find_type_kind_filter(city_repository):
    assert city_repository.find_type("road:Road").kind is DeclarationKind.ELEMENT
    assert not city_repository.find_type("road:Road", kind=DeclarationKind.COMPLEX_TYPE).resolved
    group = city_repository.find_type("road:RoadParts", kind="group")
    assert group.resolved


def test_unprefixed_name_falls_back_to_local_name(city_repository):
    result = city_repository.find_type("CodeType")
    assert result.resolved
    assert result.namespace == "urn:example:road"


def test_chameleon_include_adopts_includer_namespace(city_repository):
    result = city_repository.find_type("city:DistrictCode")
    assert result.resolved
    assert result.namespace == "urn:example:city"
    assert Path(result.document).name == "city-types.xsd"
    assert result.definition.enumerations == ("north", "south", "centre")


def test_builtin_types(city_repository):
    string = city_repository.find_type("xs:string")
    assert string.resolved and string.builtin
    assert string.kind is DeclarationKind.SIMPLE_TYPE
    assert string.namespace == XS_NAMESPACE
    assert string.definition is None

    assert city_repository.find_type("xs:anyType").kind is DeclarationKind.COMPLEX_TYPE

    typo = city_repository.find_type("xs:strng")
    assert not typo.resolved
    assert "built-in" in typo.error_message


def test_unknown_name_has_suggestions(city_repository):
    result = city_repository.find_type("road:CdeType")
    assert not result.resolved
    assert result.suggestions[0].text == "road:CodeType"
    assert result.suggestions[0].similarity == 0.875
    assert "Did you mean 'road:CodeType'?" in result.error_message


def test_unknown_prefix(city_repository):
    result = city_repository.find_type("zz:Thing")
    assert not result.resolved
    assert "Unknown namespace prefix 'zz'" in result.error_message


def test_type_exists_and_empty_name(city_repository):
    assert city_repository.type_exists("city:CityType")
    assert not city_repository.type_exists("city:Nope")
    with pytest.raises(ConfigurationError):
        city_repository.find_type("")


def test_unresolved_reference_is_recorded_with_suggestions():
    repo = _repo("broken.xsd").resolve()

    assert len(repo.resolution_failures) == 1
    failure = repo.resolution_failures[0]
    assert failure.qualified_name == "{urn:example:road}CdeType"
    assert failure.declaration == "SegmentType"
    assert failure.attribute == "type"
    assert failure.context == "complexType[SegmentType]/sequence/element[Code]"
    assert "road:CodeType" in failure.suggestions

    with pytest.raises(UnresolvedReferenceError) as excinfo:
        repo.ensure_resolved()
    assert excinfo.value.qualified_names == ["{urn:example:road}CdeType"]
    assert "road:CodeType" in str(excinfo.value)


def test_resolve_reference_is_memoized(city_repository):
    doc_id, document = next(iter(city_repository.documents.items()))
    _, reference = next(document.iter_references())
    first = city_repository.resolve_reference(doc_id, reference)
    assert first.resolved
    assert city_repository.resolve_reference(document, reference) is first


def test_include_namespace_mismatch_is_a_load_failure():
    repo = _repo("mismatch.xsd").resolve()
    assert len(repo.documents) == 1
    failure = repo.load_failures[0]
    assert failure.directive == "include"
    assert failure.location == "other-namespace.xsd"
    assert "urn:example:b" in failure.error
    assert not repo.type_exists("{urn:example:b}BType")


def test_include_of_document_already_imported_under_other_namespace():
    repo = _repo("import-and-include.xsd").resolve()
    assert {Path(doc_id).name for doc_id in repo.documents} == {
        "import-and-include.xsd",
        "other-namespace.xsd",
    }
    assert [f.directive for f in repo.load_failures] == ["include"]
    failure = repo.load_failures[0]
    assert failure.location == "other-namespace.xsd"
    assert "urn:example:b" in failure.error
    assert failure.warning is False
    assert repo.find_type("{urn:example:b}BType").resolved
    assert not repo.type_exists("{urn:example:a}BType")


def test_rejected_include_does_not_block_import_of_same_document():
    repo = SchemaRepository(
        files=[
            str(FIXTURE_SCHEMAS / "mismatch.xsd"),
            str(FIXTURE_SCHEMAS / "imports-other-namespace.xsd"),
        ]
    ).resolve()
    assert len(repo.documents) == 3
    assert [f.directive for f in repo.load_failures] == ["include"]
    assert repo.resolution_failures == []
    assert repo.find_type("{urn:example:c}Holder").resolved


def test_include_cycle_loads_each_document_once():
    repo = _repo("cycle-a.xsd").resolve()
    assert len(repo.documents) == 2
    assert repo.load_failures == []
    assert repo.resolution_failures == []


def test_missing_import_is_recorded_not_raised():
    repo = _repo("missing-import.xsd").resolve()
    assert len(repo.documents) == 1
    failure = repo.load_failures[0]
    assert failure.directive == "import"
    assert failure.location == "does-not-exist.xsd"
    assert Path(failure.referenced_from).name == "missing-import.xsd"
    assert repo.type_exists("{urn:example:lonely}Lonely")


def test_missing_entry_file_fail_fast(tmp_path):
    repo = SchemaRepository(files=[str(tmp_path / "nope.xsd")])
    with pytest.raises(LocationNotFoundError):
        repo.parse()


def test_failed_entry_discards_partial_load(tmp_path):
    repo = SchemaRepository(
        files=[str(FIXTURE_SCHEMAS / "city.xsd"), str(tmp_path / "nope.xsd")]
    )
    with pytest.raises(LocationNotFoundError):
        repo.parse()
    assert repo.state is RepositoryState.UNPARSED
    assert repo.documents == {}
    assert repo.document_namespaces == {}
    assert repo.load_failures == []

    repo.fail_fast = False
    repo.resolve()
    assert len(repo.documents) == 3
    assert [f.directive for f in repo.load_failures] == ["entry"]
    assert repo.resolution_failures == []
    assert repo.find_type("city:CityType").resolved


def test_missing_entry_file_without_fail_fast(tmp_path):
    repo = SchemaRepository(files=[str(tmp_path / "nope.xsd")], fail_fast=False)
    repo.resolve()
    assert repo.documents == {}
    assert repo.load_failures[0].directive == "entry"


def test_malformed_entry_file(tmp_path):
    bad = tmp_path / "bad.xsd"
    bad.write_text("<xs:schema xmlns:xs='http://www.w3.org/2001/XMLSchema'>", encoding="utf-8")
    with pytest.raises(DocumentParseError):
        SchemaRepository(files=[str(bad)]).parse()


def test_schema_location_mapping_redirects_import():
    repo = _repo(
        "mapped.xsd",
        schema_location_mappings=[
            {
                "from": r"^http://schemas\.example\.org/transport/(.*)$",
                "to": r"\1",
                "pattern": True,
            }
        ],
    ).resolve()
    assert repo.load_failures == []
    assert repo.resolution_failures == []
    assert {Path(doc_id).name for doc_id in repo.documents} == {"mapped.xsd", "road.xsd"}


def test_duplicate_definitions_are_reported():
    repo = _repo("duplicate-main.xsd").resolve()
    assert len(repo.duplicates) == 1
    duplicate = repo.duplicates[0]
    assert str(duplicate.qualified_name) == "{urn:example:dup}Thing"
    assert Path(duplicate.kept_document).name == "duplicate-part.xsd"
    assert repo.find_type("d:Thing").definition.documentation == "Included definition."


def test_configured_namespace_wins_over_document_prefix():
    repo = _repo("city.xsd", namespace_mappings=[{"prefix": "road", "uri": "urn:other"}]).resolve()
    assert repo.registry.get_uri("road") == "urn:other"
    # references are resolved through each document's own declarations
    assert repo.resolution_failures == []
    assert not repo.find_type("road:RoadType").resolved
    assert repo.find_type("{urn:example:road}RoadType").resolved


def test_add_schema_file_after_parse_is_rejected(city_repository):
    with pytest.raises(ConfigurationError):
        city_repository.add_schema_file("another.xsd")


def test_queries(city_repository):
    assert city_repository.all_namespaces() == ["urn:example:city", "urn:example:road"]
    assert "road:CodeType" in city_repository.all_type_names(namespace="urn:example:road")
    assert city_repository.all_type_names(kind=DeclarationKind.GROUP) == ["road:RoadParts"]
    assert city_repository.namespace_to_prefix("urn:example:city") == "city"

    summary = {row["uri"]: row for row in city_repository.namespace_summary()}
    assert summary["urn:example:city"]["documents"] == 2
    assert summary["urn:example:road"]["types"] == 5


def test_remap_namespace_prefixes_returns_renamed_copy(city_repository):
    renamed = city_repository.remap_namespace_prefixes({"road": "rd"})

    assert renamed is not city_repository
    assert renamed.state is RepositoryState.RESOLVED
    assert renamed.namespace_to_prefix("urn:example:road") == "rd"
    assert renamed.find_type("rd:CodeType").resolved
    assert "rd:CodeType" in renamed.all_type_names(namespace="urn:example:road")
    assert renamed.statistics()["total_types"] == 9
    assert renamed.resolution_failures == []

    # the source repository keeps its prefixes
    assert city_repository.namespace_to_prefix("urn:example:road") == "road"


def test_remap_namespace_prefixes_swap(city_repository):
    swapped = city_repository.remap_namespace_prefixes({"road": "city", "city": "road"})
    assert swapped.namespace_to_prefix("urn:example:road") == "city"
    assert swapped.namespace_to_prefix("urn:example:city") == "road"
    assert swapped.find_type("city:RoadType").namespace == "urn:example:road"
    assert swapped.resolution_failures == []


@pytest.mark.parametrize(
    "changes",
    [{"nope": "x"}, {"road": ""}, {"road": "bad:prefix"}, {"road": "city"}],
)
def test_remap_namespace_prefixes_rejects_bad_changes(city_repository, changes):
    with pytest.raises(ConfigurationError):
        city_repository.remap_namespace_prefixes(changes)


def test_validate_clean_repository(city_repository):
    assert city_repository.validate() == []
    assert city_repository.validate(strict=True) == []


def test_validate_reports_circular_includes():
    repo = _repo("cycle-a.xsd")
    cycles = repo.find_circular_imports()
    assert len(cycles) == 1
    assert [Path(doc_id).name for doc_id in cycles[0]] == ["cycle-a.xsd", "cycle-b.xsd", "cycle-a.xsd"]

    errors = repo.validate()
    assert len(errors) == 1
    assert errors[0].startswith("Circular import detected")

    with pytest.raises(RepositoryValidationError, match="Circular import"):
        repo.validate(strict=True)


def test_validate_missing_entry_file(tmp_path):
    repo = SchemaRepository(files=[str(tmp_path / "nope.xsd")])
    errors = repo.validate()
    assert errors[0] == f"Schema file not found: {tmp_path / 'nope.xsd'}"
    assert errors[1].startswith("Failed to parse schemas")
    assert repo.state is RepositoryState.UNPARSED

    with pytest.raises(RepositoryValidationError, match="not found"):
        repo.validate(strict=True)


def test_validate_rejects_invalid_configured_prefix():
    repo = _repo("city.xsd", namespace_mappings=[("1bad", "urn:example:bad")])
    errors = repo.validate()
    assert errors == ["Invalid namespace mapping: prefix '1bad' is not an NCName"]


def test_classify_schemas(city_repository):
    classification = city_repository.classify_schemas()
    assert [Path(s.location).name for s in classification["entrypoint_schemas"]] == ["city.xsd"]
    assert {Path(s.location).name for s in classification["dependency_schemas"]} == {
        "road.xsd",
        "city-types.xsd",
    }
    assert classification["partially_resolved"] == []
    assert classification["summary"] == {
        "total_schemas": 3,
        "entrypoint_count": 1,
        "dependency_count": 2,
        "fully_resolved_count": 3,
        "partially_resolved_count": 0,
        "resolution_percentage": 100.0,
    }


def test_classify_schemas_with_unresolved_reference():
    classification = _repo("broken.xsd").classify_schemas()
    partial = classification["partially_resolved"]
    assert [Path(s.location).name for s in partial] == ["broken.xsd"]
    assert partial[0].unresolved_references == 1
    assert partial[0].to_dict()["fully_resolved"] is False
    assert classification["summary"]["resolution_percentage"] == 50.0
