from pathlib import Path

import pytest

from xsd_repository.errors import ConfigurationError
from xsd_repository.merger import PackageSource, merge
from xsd_repository.package import to_package
from xsd_repository.repository import SchemaRepository

FIXTURE_SCHEMAS = Path(__file__).resolve().parent / "fixtures" / "schemas"


@pytest.fixture
def packages(tmp_path):
    repo_a = SchemaRepository(files=[str(FIXTURE_SCHEMAS / "pkg_a" / "foo.xsd")])
    repo_b = SchemaRepository(
        files=[
            str(FIXTURE_SCHEMAS / "pkg_b" / "foo.xsd"),
            str(FIXTURE_SCHEMAS / "pkg_b" / "extra.xsd"),
        ]
    )
    path_a = to_package(repo_a, tmp_path / "a.xsdpkg")
    path_b = to_package(repo_b, tmp_path / "b.xsdpkg", serialization_format="json")
    return str(path_a), str(path_b)


def test_type_conflict_is_reported_once_and_priority_wins(packages):
    path_a, path_b = packages
    result = merge([PackageSource(path_b, priority=1), PackageSource(path_a, priority=0)])

    conflicts = result.report.type_conflicts
    assert len(conflicts) == 1
    conflict = conflicts[0]
    assert conflict.qualified_name == "{http://x}Foo"
    assert conflict.kinds == ["complexType"]
    assert conflict.winner.package_path == path_a

    foo = result.repository.find_type("x:Foo")
    assert foo.resolved
    assert foo.document.startswith(f"{path_a}::")
    assert foo.definition.documentation == "Foo from package A."


def test_schema_and_namespace_conflicts(packages):
    path_a, path_b = packages
    report = merge([path_a, path_b]).report

    assert [c.schema_basename for c in report.schema_conflicts] == ["foo.xsd"]
    assert [c.namespace_uri for c in report.namespace_conflicts] == ["http://x"]
    assert report.has_conflicts
    assert report.total == 3
    assert report.to_dict()["type_conflicts"][0]["winner"] == path_a


def test_merged_repository_contains_all_sources(packages):
    path_a, path_b = packages
    repo = merge([path_a, path_b]).repository

    assert len(repo.documents) == 3
    assert repo.type_exists("x:FooA")
    assert repo.type_exists("x:FooB")
    assert repo.type_exists("{urn:example:extra}ExtraCode")
    assert repo.resolution_failures == []


def test_exclude_filter(packages):
    path_a, path_b = packages
    result = merge([path_a, PackageSource(path_b, priority=1, exclude_schemas=["extra*.xsd"])])
    assert not result.repository.type_exists("{urn:example:extra}ExtraCode")
    assert len(result.repository.documents) == 2


def test_include_only_filter(packages):
    path_a, path_b = packages
    result = merge(
        [
            {"path": path_a, "priority": 0},
            {"path": path_b, "priority": 1, "include_only_schemas": ["extra.xsd"]},
        ]
    )
    assert result.report.type_conflicts == []
    assert result.report.schema_conflicts == []
    assert result.repository.type_exists("{urn:example:extra}ExtraCode")
    assert not result.repository.type_exists("x:FooB")


def test_equal_priorities_keep_merge_order(packages):
    path_a, path_b = packages
    result = merge([(path_b, 0), (path_a, 0)])
    assert result.repository.find_type("x:Foo").definition.documentation == "Foo from package B."


def test_merge_requires_packages():
    with pytest.raises(ConfigurationError):
        merge([])
    with pytest.raises(ConfigurationError):
        merge([{"priority": 1}])
