"""Persist repositories as portable package files and load them back.

A package is a zip container:

========================  ====================================================
Member                    Content
========================  ====================================================
``manifest.json``         Format marker, format version, modes, encoding,
                          library version and user metadata.
``schemas/NNNN_<name>``   Original markup per document (``include_all`` only).
``documents.<ext>``       Namespace table, location rules, entry files, the
                          document table (declarations per document) and load
                          failures.
``index.<ext>``           Type Index entries, reference resolution table,
                          resolution failures and duplicate definitions
                          (``resolution_mode="resolved"`` only).
========================  ====================================================

``<ext>`` is ``pkl`` for ``serialization_format="pickle"`` and ``json`` for
``"json"``; both encode the same primitive payload.

Example:
        from xsd_repository import SchemaRepository
        from xsd_repository.package import from_package, to_package

        repo = SchemaRepository(files=["schemas/city.xsd"])
        to_package(repo, "city.xsdpkg", metadata={"name": "city", "version": "2.0"})

        restored = from_package("city.xsdpkg")   # state == resolved, no re-parse
        assert restored.statistics() == repo.statistics()

Writes are atomic: the container is written to a temporary file next to the
target and moved into place with :func:`os.replace`, so a failed write never
leaves a partial package and never damages an existing one.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import pickle
import tempfile
import time
import zipfile
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Union

from packaging import version as pkg_version

from . import __version__
from .errors import ConfigurationError, InvalidPackageError
from .models import SchemaDocument
from .namespaces import is_url
from .repository import SchemaRepository
from .results import LoadFailure, RepositoryState, ResolutionFailure
from .type_index import DuplicateDefinition, TypeIndex

logger = logging.getLogger(__name__)

FORMAT_MARKER = "xsd-repository-package"
FORMAT_VERSION = "1.0"

XSD_MODES = ("include_all", "types_only")
RESOLUTION_MODES = ("resolved", "unresolved")
SERIALIZATION_FORMATS = {"pickle": "pkl", "json": "json"}

REQUIRED_METADATA = ("name", "version")

PathLike = Union[str, Path]

# Raised by zipfile, zlib, json and pickle when member bytes are damaged.
_CORRUPT_CONTENT_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    EOFError,
    KeyError,
    IndexError,
    TypeError,
    ValueError,
    AttributeError,
    ImportError,
    pickle.UnpicklingError,
)


@dataclass
class PackageValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    manifest: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "metadata": dict(self.manifest.get("metadata", {})),
        }


def _encode(payload: Dict[str, Any], serialization_format: str) -> bytes:
    if serialization_format == "pickle":
        return pickle.dumps(payload, protocol=pickle.HIGHEST_PROTOCOL)
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _decode(data: bytes, serialization_format: str) -> Dict[str, Any]:
    if serialization_format == "pickle":
        try:
            return pickle.loads(data)
        except Exception as e:
            # unpickling damaged bytes can raise almost anything
            raise ValueError(f"undecodable pickle payload: {e!r}") from e
    return json.loads(data.decode("utf-8"))


def _default_metadata(repository: SchemaRepository) -> Dict[str, Any]:
    name = "schema-repository"
    if repository.files:
        name = PurePosixPath(repository.files[0].replace("\\", "/")).stem
    return {"name": name, "version": "1.0.0", "description": ""}


def to_package(
    repository: SchemaRepository,
    path: PathLike,
    xsd_mode: str = "include_all",
    resolution_mode: str = "resolved",
    serialization_format: str = "pickle",
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write ``repository`` to ``path``.

    Args:
        repository: Repository to persist; parsed (and resolved for
            ``resolution_mode="resolved"``) first if needed.
        path: Target package file.
        xsd_mode: ``include_all`` keeps source markup, ``types_only`` keeps
            only the extracted declarations.
        resolution_mode: ``resolved`` stores the Type Index so loading skips
            resolution; ``unresolved`` stores documents only.
        serialization_format: ``pickle`` or ``json``.
        metadata: Name, version, description and any extra key/value pairs.

    Returns:
        The written package path.

    Raises:
        ConfigurationError: On an unknown mode or format.
    """
    if repository is None:
        raise ConfigurationError("Repository must not be None")
    if xsd_mode not in XSD_MODES:
        raise ConfigurationError(f"Unknown xsd_mode '{xsd_mode}'; expected one of {XSD_MODES}")
    if resolution_mode not in RESOLUTION_MODES:
        raise ConfigurationError(
            f"Unknown resolution_mode '{resolution_mode}'; expected one of {RESOLUTION_MODES}"
        )
    if serialization_format not in SERIALIZATION_FORMATS:
        raise ConfigurationError(
            f"Unknown serialization_format '{serialization_format}'; "
            f"expected one of {tuple(SERIALIZATION_FORMATS)}"
        )

    start = time.perf_counter()
    if resolution_mode == "resolved":
        repository.resolve()
    else:
        repository.parse()

    target = Path(path)
    ext = SERIALIZATION_FORMATS[serialization_format]
    meta = _default_metadata(repository)
    meta.update(metadata or {})

    documents = []
    schema_members: Dict[str, str] = {}
    for position, (doc_id, document) in enumerate(repository.documents.items(), 1):
        schema_file = None
        if xsd_mode == "include_all" and document.markup is not None:
            schema_file = f"schemas/{position:04d}_{document.basename or 'schema.xsd'}"
            schema_members[schema_file] = document.markup
        priority, source = repository.document_sources.get(doc_id, (0, None))
        documents.append(
            {
                "id": doc_id,
                "namespace": repository.document_namespaces.get(doc_id),
                "priority": priority,
                "source": source,
                "schema_file": schema_file,
                "document": document.to_dict(include_markup=False),
            }
        )

    documents_payload = {
        "namespaces": repository.registry.to_list(),
        "location_mappings": [rule.to_dict() for rule in repository.location_mappings],
        "files": list(repository.files),
        "documents": documents,
        "load_failures": [f.to_dict() for f in repository.load_failures],
    }

    manifest = {
        "format": FORMAT_MARKER,
        "format_version": FORMAT_VERSION,
        "library_version": __version__,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "xsd_mode": xsd_mode,
        "resolution_mode": resolution_mode,
        "serialization_format": serialization_format,
        "metadata": meta,
        "sources": [doc_id for doc_id in repository.documents if not is_url(doc_id)],
        "document_count": len(documents),
    }

    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    os.close(fd)
    try:
        with zipfile.ZipFile(tmp_name, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("manifest.json", json.dumps(manifest, indent=2))
            for member, markup in schema_members.items():
                archive.writestr(member, markup.encode("utf-8"))
            archive.writestr(f"documents.{ext}", _encode(documents_payload, serialization_format))
            if resolution_mode == "resolved":
                index_payload = {
                    "entries": repository.type_index.to_list(),
                    "resolution_table": repository.resolution_table(),
                    "resolution_failures": [f.to_dict() for f in repository.resolution_failures],
                    "duplicates": [d.to_dict() for d in repository.type_index.duplicates],
                }
                archive.writestr(f"index.{ext}", _encode(index_payload, serialization_format))
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info(
        f"Wrote package {target} ({len(documents)} documents, {xsd_mode}, "
        f"{resolution_mode}, {serialization_format}) in {time.perf_counter() - start:.3f}s"
    )
    return target


def _read_manifest(archive: zipfile.ZipFile, path: PathLike) -> Dict[str, Any]:
    try:
        manifest = json.loads(archive.read("manifest.json").decode("utf-8"))
    except KeyError as e:
        raise InvalidPackageError(f"{path}: missing manifest.json") from e
    except (EOFError, ValueError, zipfile.BadZipFile, zlib.error) as e:
        raise InvalidPackageError(f"{path}: corrupt manifest.json: {e}") from e
    if not isinstance(manifest, dict) or manifest.get("format") != FORMAT_MARKER:
        raise InvalidPackageError(f"{path}: unrecognized package format marker")
    _check_format_version(manifest.get("format_version"), path)
    if manifest.get("serialization_format") not in SERIALIZATION_FORMATS:
        raise InvalidPackageError(
            f"{path}: unsupported serialization format {manifest.get('serialization_format')!r}"
        )
    return manifest


def _check_format_version(value: Any, path: PathLike) -> None:
    try:
        found = pkg_version.parse(str(value))
    except pkg_version.InvalidVersion as e:
        raise InvalidPackageError(f"{path}: invalid format version {value!r}") from e
    if found.major != pkg_version.parse(FORMAT_VERSION).major:
        raise InvalidPackageError(
            f"{path}: unsupported format version {value} (supported: {FORMAT_VERSION})"
        )


def _open(path: PathLike) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path, "r")
    except FileNotFoundError as e:
        raise InvalidPackageError(f"Package not found: {path}") from e
    except (zipfile.BadZipFile, OSError) as e:
        raise InvalidPackageError(f"{path}: not a readable package: {e}") from e


def read_package_metadata(path: PathLike) -> Dict[str, Any]:
    """Return the manifest of a package without loading its documents."""
    with _open(path) as archive:
        return _read_manifest(archive, path)


def from_package(path: PathLike) -> SchemaRepository:
    """Load a repository from a package file.

    The repository is ``resolved`` when the package carries an index block
    and ``parsed`` otherwise.

    Raises:
        InvalidPackageError: If the file is missing, corrupt or of an
            unsupported format.
    """
    start = time.perf_counter()
    with _open(path) as archive:
        manifest = _read_manifest(archive, path)
        fmt = manifest["serialization_format"]
        ext = SERIALIZATION_FORMATS[fmt]
        try:
            documents_payload = _decode(archive.read(f"documents.{ext}"), fmt)
            index_payload = None
            if f"index.{ext}" in archive.namelist():
                index_payload = _decode(archive.read(f"index.{ext}"), fmt)
            repository = _restore(archive, documents_payload, index_payload)
        except InvalidPackageError:
            raise
        except _CORRUPT_CONTENT_ERRORS as e:
            raise InvalidPackageError(f"{path}: corrupt package content: {e}") from e

    logger.info(
        f"Loaded package {path} ({len(repository.documents)} documents, "
        f"state {repository.state.value}) in {time.perf_counter() - start:.3f}s"
    )
    return repository


def _restore(
    archive: zipfile.ZipFile,
    documents_payload: Dict[str, Any],
    index_payload: Optional[Dict[str, Any]],
) -> SchemaRepository:
    repository = SchemaRepository()
    for path in documents_payload.get("files", []):
        repository.add_schema_file(path)
    for entry in documents_payload.get("namespaces", []):
        repository.configure_namespace(entry.get("prefix") or "", entry["uri"])
    for rule in documents_payload.get("location_mappings", []):
        repository.add_location_mapping(rule)

    for item in documents_payload["documents"]:
        document = SchemaDocument.from_dict(item["document"])
        if item.get("schema_file"):
            markup = archive.read(item["schema_file"]).decode("utf-8")
            document = dataclasses.replace(document, markup=markup)
        repository.add_document(
            document,
            document_id=item["id"],
            namespace=item.get("namespace"),
            priority=int(item.get("priority", 0)),
            source=item.get("source"),
        )
    repository.load_failures = [
        LoadFailure.from_dict(f) for f in documents_payload.get("load_failures", [])
    ]
    repository.state = RepositoryState.PARSED

    if index_payload is not None:
        index = TypeIndex.from_list(index_payload["entries"], repository.documents)
        index.duplicates = [
            DuplicateDefinition.from_dict(d) for d in index_payload.get("duplicates", [])
        ]
        repository.restore_resolution(
            index,
            index_payload.get("resolution_table", []),
            [ResolutionFailure.from_dict(f) for f in index_payload.get("resolution_failures", [])],
        )
    return repository


def validate_package(path: PathLike) -> PackageValidationResult:
    """Check a package's structure and metadata without raising.

    Errors make the package unusable; warnings (for example a package written
    by a newer library version) do not.
    """
    result = PackageValidationResult(valid=True)
    try:
        with _open(path) as archive:
            manifest = _read_manifest(archive, path)
            result.manifest = manifest
            names = set(archive.namelist())
            ext = SERIALIZATION_FORMATS[manifest["serialization_format"]]
            if f"documents.{ext}" not in names:
                result.errors.append(f"Missing documents.{ext}")
            if manifest.get("resolution_mode") == "resolved" and f"index.{ext}" not in names:
                result.errors.append(f"Resolved package is missing index.{ext}")
            if manifest.get("xsd_mode") not in XSD_MODES:
                result.errors.append(f"Unknown xsd_mode {manifest.get('xsd_mode')!r}")
            if manifest.get("xsd_mode") == "include_all" and manifest.get("document_count"):
                if not any(name.startswith("schemas/") for name in names):
                    result.warnings.append("include_all package contains no schema markup")
    except InvalidPackageError as e:
        result.errors.append(str(e))
        result.valid = False
        return result

    metadata = result.manifest.get("metadata") or {}
    for key in REQUIRED_METADATA:
        if not metadata.get(key):
            result.errors.append(f"Missing required metadata field '{key}'")

    written_by = result.manifest.get("library_version")
    if written_by:
        try:
            if pkg_version.parse(str(written_by)) > pkg_version.parse(__version__):
                result.warnings.append(
                    f"Package was written by a newer library version {written_by} "
                    f"(running {__version__})"
                )
        except pkg_version.InvalidVersion:
            result.warnings.append(f"Unrecognized library version {written_by!r}")

    result.valid = not result.errors
    return result


def load_or_build(
    config: Any,
    package_path: PathLike,
    **package_options: Any,
) -> SchemaRepository:
    """Load ``package_path`` if it is up to date, otherwise rebuild it.

    The package is rebuilt when it does not exist, cannot be read, or any of
    its local source files (or the configured entry files) is newer than it.

    Args:
        config: :class:`~xsd_repository.config.RepositoryConfig` to build from.
        package_path: Package file to read or (re)write.
        **package_options: Forwarded to :func:`to_package`.
    """
    package_path = Path(package_path)
    if package_path.exists():
        try:
            manifest = read_package_metadata(package_path)
        except InvalidPackageError as e:
            logger.warning(f"Rebuilding unreadable package {package_path}: {e}")
        else:
            package_mtime = package_path.stat().st_mtime
            sources = list(manifest.get("sources", []))
            sources.extend(config.resolved_files())
            stale = [
                src
                for src in sources
                if not os.path.exists(src) or os.path.getmtime(src) > package_mtime
            ]
            if not stale:
                return from_package(package_path)
            logger.info(f"Package {package_path} is stale ({len(stale)} changed sources)")

    repository = SchemaRepository.from_config(config)
    to_package(repository, package_path, **package_options)
    return repository
