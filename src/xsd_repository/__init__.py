"""XSD Schema Repository
=======================

Load a set of XML Schema (XSD) documents together with everything they
import and include, resolve every qualified-name reference across them, and
answer type lookups, searches and "did you mean" suggestions. A resolved
repository can be saved as a single package file and reloaded without
touching the original sources.

Key capabilities
----------------
- Transitive loading of ``xs:import`` / ``xs:include`` with schema location
  rewriting (literal or regex rules) and chameleon includes.
- A namespace registry with configured prefixes taking priority over prefixes
  discovered in the documents.
- A Type Index over elements, complex/simple types, groups and attribute
  groups, with duplicate tracking and priority-based conflict handling.
- Package files (zip) carrying the documents, the registry and optionally the
  index, plus validation and metadata helpers.
- Merging several packages with a conflict report.
- A FastAPI service and performance instrumentation.

Minimal quick start
-------------------
>>> from xsd_repository import SchemaRepository
>>> repo = SchemaRepository(files=["schemas/city.xsd"],
...                         namespace_mappings=[{"prefix": "gml", "uri": "http://www.opengis.net/gml/3.2"}])
>>> repo.resolve()
>>> repo.find_type("gml:CodeType").resolved
True

FastAPI application instance (for ASGI servers like uvicorn):
>>> from xsd_repository.app import app  # noqa: F401

Public surface
--------------
Only a curated subset is exported at the package level; advanced modules can
be imported explicitly.
"""

__version__ = "0.1.0"

from .config import RepositoryConfig
from .errors import (
    ConfigurationError,
    InvalidPackageError,
    UnresolvedReferenceError,
    XsdRepositoryError,
)
from .merger import merge
from .package import from_package, read_package_metadata, to_package, validate_package
from .repository import SchemaRepository
from .results import ResolvedResult

__all__ = [
    "ConfigurationError",
    "InvalidPackageError",
    "RepositoryConfig",
    "ResolvedResult",
    "SchemaRepository",
    "UnresolvedReferenceError",
    "XsdRepositoryError",
    "from_package",
    "merge",
    "read_package_metadata",
    "to_package",
    "validate_package",
]
