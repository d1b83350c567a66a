import json
import os
import pickle
import zipfile
from pathlib import Path

import pytest

from xsd_repository import package as package_module
from xsd_repository.config import RepositoryConfig
from xsd_repository.errors import ConfigurationError, InvalidPackageError
from xsd_repository.package import (
    FORMAT_MARKER,
    from_package,
    load_or_build,
    read_package_metadata,
    to_package,
    validate_package,
)
from xsd_repository.repository import SchemaRepository
from xsd_repository.results import RepositoryState

FIXTURE_SCHEMAS = Path(__file__).resolve().parent / "fixtures" / "schemas"


@pytest.mark.parametrize("serialization_format", ["pickle", "json"])
def test_round_trip_preserves_queries(tmp_path, city_repository, serialization_format):
    path = to_package(
        city_repository,
        tmp_path / f"city-{serialization_format}.xsdpkg",
        serialization_format=serialization_format,
    )
    restored = from_package(path)

    assert restored.state is RepositoryState.RESOLVED
    assert restored.statistics() == city_repository.statistics()
    for name in ("road:CodeType", "city:DistrictCode", "city:City", "xs:string"):
        original = city_repository.find_type(name)
        loaded = restored.find_type(name)
        assert loaded.resolved == original.resolved
        assert loaded.document == original.document
        assert loaded.definition == original.definition
    assert restored.resolution_table() == city_repository.resolution_table()


def test_package_layout(city_package):
    with zipfile.ZipFile(city_package) as archive:
        names = set(archive.namelist())
        manifest = json.loads(archive.read("manifest.json"))

    assert {"manifest.json", "documents.pkl", "index.pkl"} <= names
    assert sorted(n for n in names if n.startswith("schemas/")) == [
        "schemas/0001_city.xsd",
        "schemas/0002_road.xsd",
        "schemas/0003_city-types.xsd",
    ]
    assert manifest["format"] == FORMAT_MARKER
    assert manifest["resolution_mode"] == "resolved"
    assert manifest["metadata"]["name"] == "city"
    assert manifest["document_count"] == 3


def test_types_only_package_drops_markup(tmp_path, city_repository):
    path = to_package(city_repository, tmp_path / "types.xsdpkg", xsd_mode="types_only")
    with zipfile.ZipFile(path) as archive:
        assert not any(n.startswith("schemas/") for n in archive.namelist())

    restored = from_package(path)
    assert all(doc.markup is None for doc in restored.documents.values())
    assert restored.find_type("road:CodeType").resolved


def test_unresolved_package_resolves_on_demand(tmp_path):
    repo = SchemaRepository(files=[str(FIXTURE_SCHEMAS / "city.xsd")])
    path = to_package(repo, tmp_path / "parsed.xsdpkg", resolution_mode="unresolved")
    assert repo.state is RepositoryState.PARSED

    restored = from_package(path)
    assert restored.state is RepositoryState.PARSED
    assert restored.find_type("city:DistrictCode").namespace == "urn:example:city"
    assert restored.state is RepositoryState.RESOLVED
    assert restored.resolution_failures == []


def test_markup_restored_from_package(city_package, city_repository):
    restored = from_package(city_package)
    for doc_id, document in city_repository.documents.items():
        assert restored.documents[doc_id].markup == document.markup


def test_default_metadata(tmp_path, city_repository):
    path = to_package(city_repository, tmp_path / "default.xsdpkg")
    metadata = read_package_metadata(path)["metadata"]
    assert metadata["name"] == "city"
    assert metadata["version"] == "1.0.0"


def test_invalid_options(tmp_path, city_repository):
    with pytest.raises(ConfigurationError):
        to_package(city_repository, tmp_path / "x.xsdpkg", xsd_mode="everything")
    with pytest.raises(ConfigurationError):
        to_package(city_repository, tmp_path / "x.xsdpkg", serialization_format="yaml")
    with pytest.raises(ConfigurationError):
        to_package(city_repository, tmp_path / "x.xsdpkg", resolution_mode="half")


def test_missing_and_corrupt_packages(tmp_path):
    with pytest.raises(InvalidPackageError):
        from_package(tmp_path / "missing.xsdpkg")

    garbage = tmp_path / "garbage.xsdpkg"
    garbage.write_bytes(b"definitely not a zip file")
    with pytest.raises(InvalidPackageError):
        from_package(garbage)

    no_manifest = tmp_path / "no-manifest.xsdpkg"
    with zipfile.ZipFile(no_manifest, "w") as archive:
        archive.writestr("documents.json", "{}")
    with pytest.raises(InvalidPackageError, match="manifest"):
        from_package(no_manifest)


def test_unsupported_format_version(tmp_path):
    path = tmp_path / "future.xsdpkg"
    manifest = {
        "format": FORMAT_MARKER,
        "format_version": "2.0",
        "serialization_format": "json",
    }
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("manifest.json", json.dumps(manifest))
        archive.writestr("documents.json", json.dumps({"documents": []}))
    with pytest.raises(InvalidPackageError, match="format version"):
        from_package(path)


def test_corrupt_payload(tmp_path, city_package):
    broken = tmp_path / "broken.xsdpkg"
    with zipfile.ZipFile(city_package) as source, zipfile.ZipFile(broken, "w") as target:
        for name in source.namelist():
            data = source.read(name)
            if name == "documents.pkl":
                data = pickle.dumps(["not", "a", "mapping"])
            target.writestr(name, data)
    with pytest.raises(InvalidPackageError):
        from_package(broken)


def _flip_member_bytes(path, member, count=16):
    with zipfile.ZipFile(path) as archive:
        info = archive.getinfo(member)
    raw = bytearray(path.read_bytes())
    header = info.header_offset
    name_length = int.from_bytes(raw[header + 26 : header + 28], "little")
    extra_length = int.from_bytes(raw[header + 28 : header + 30], "little")
    start = header + 30 + name_length + extra_length + min(4, info.compress_size // 4)
    for offset in range(start, start + min(count, info.compress_size // 2)):
        raw[offset] ^= 0xFF
    path.write_bytes(bytes(raw))


@pytest.mark.parametrize("member", ["documents.pkl", "index.pkl", "manifest.json"])
def test_damaged_member_bytes(tmp_path, city_package, member):
    damaged = tmp_path / "damaged.xsdpkg"
    damaged.write_bytes(city_package.read_bytes())
    _flip_member_bytes(damaged, member)

    with pytest.raises(InvalidPackageError):
        from_package(damaged)

    if member == "manifest.json":
        assert validate_package(damaged).valid is False


def test_write_is_atomic(tmp_path, city_repository, city_package, monkeypatch):
    original = city_package.read_bytes()

    def failing_encode(payload, serialization_format):
        raise RuntimeError("disk full")

    monkeypatch.setattr(package_module, "_encode", failing_encode)
    with pytest.raises(RuntimeError):
        to_package(city_repository, city_package)

    assert city_package.read_bytes() == original
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []


def test_validate_package(tmp_path, city_repository, city_package):
    result = validate_package(city_package)
    assert result.valid
    assert result.errors == []
    assert result.to_dict()["metadata"]["version"] == "2.0.0"

    unnamed = to_package(city_repository, tmp_path / "unnamed.xsdpkg", metadata={"version": ""})
    result = validate_package(unnamed)
    assert not result.valid
    assert "Missing required metadata field 'version'" in result.errors

    result = validate_package(tmp_path / "missing.xsdpkg")
    assert not result.valid


def test_validate_warns_about_newer_writer(tmp_path, city_package):
    newer = tmp_path / "newer.xsdpkg"
    with zipfile.ZipFile(city_package) as source, zipfile.ZipFile(newer, "w") as target:
        for name in source.namelist():
            data = source.read(name)
            if name == "manifest.json":
                manifest = json.loads(data)
                manifest["library_version"] = "99.0.0"
                data = json.dumps(manifest).encode("utf-8")
            target.writestr(name, data)

    result = validate_package(newer)
    assert result.valid
    assert any("newer library version" in w for w in result.warnings)


def test_load_or_build_reuses_fresh_package(tmp_path, monkeypatch):
    schema = tmp_path / "road.xsd"
    schema.write_bytes((FIXTURE_SCHEMAS / "road.xsd").read_bytes())
    config = RepositoryConfig(files=[str(schema)])
    package_path = tmp_path / "road.xsdpkg"

    builds = []
    real_to_package = package_module.to_package

    def counting_to_package(*args, **kwargs):
        builds.append(args[1])
        return real_to_package(*args, **kwargs)

    monkeypatch.setattr(package_module, "to_package", counting_to_package)

    first = load_or_build(config, package_path)
    assert first.state is RepositoryState.RESOLVED
    assert len(builds) == 1

    second = load_or_build(config, package_path)
    assert second.find_type("road:CodeType").resolved
    assert len(builds) == 1

    future = package_path.stat().st_mtime + 60
    os.utime(schema, (future, future))
    load_or_build(config, package_path)
    assert len(builds) == 2
