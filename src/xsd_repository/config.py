"""Repository configuration and logging setup.

A :class:`RepositoryConfig` is plain data: entry files, namespace mappings and
schema location rules plus a few engine knobs. It can be built in code, from
a dict, from a JSON file, or tweaked from the environment.

JSON file example (relative paths resolve against the file's directory)::

        {
            "files": ["schemas/city.xsd"],
            "namespace_mappings": [{"prefix": "gml", "uri": "http://www.opengis.net/gml/3.2"}],
            "schema_location_mappings": [
                {"from": "http://schemas.opengis.net/gml/3.2.1/gml.xsd", "to": "vendor/gml.xsd"},
                {"from": "^https://example\\\\.org/(.*)$", "to": "mirror/\\\\1", "pattern": true}
            ],
            "max_workers": 4
        }

Environment variables:
    XSD_REPOSITORY_CONFIG   ``key=value`` pairs separated by commas, e.g.
                            ``max_workers=4,fail_fast=false,min_similarity=0.7``.
    XSD_REPOSITORY_PACKAGE  Package file served by the HTTP service.
    XSD_REPOSITORY_CACHE_TTL  Seconds a loaded package stays cached (default 3600).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import ConfigurationError
from .namespaces import SchemaLocationMapping, is_url

CONFIG_ENV = "XSD_REPOSITORY_CONFIG"
PACKAGE_ENV = "XSD_REPOSITORY_PACKAGE"
CACHE_TTL_ENV = "XSD_REPOSITORY_CACHE_TTL"

DEFAULT_CACHE_TTL = 3600.0

_SCALAR_FIELDS = {
    "max_workers": int,
    "suggestion_limit": int,
    "min_similarity": float,
    "fail_fast": bool,
    "base_dir": str,
}


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RepositoryConfig:
    """Inputs for building a :class:`~xsd_repository.repository.SchemaRepository`.

    Attributes:
        files: Entry-point schema files.
        namespace_mappings: ``{"prefix": ..., "uri": ...}`` entries.
        schema_location_mappings: Location rewrite rules.
        base_dir: Directory relative entry files resolve against.
        max_workers: Threads used to fetch and parse documents.
        fail_fast: Raise when an entry file cannot be loaded.
        suggestion_limit: Fuzzy suggestions per unresolved reference.
        min_similarity: Minimum similarity of a fuzzy suggestion.
    """

    files: List[str] = field(default_factory=list)
    namespace_mappings: List[Dict[str, str]] = field(default_factory=list)
    schema_location_mappings: List[SchemaLocationMapping] = field(default_factory=list)
    base_dir: Optional[str] = None
    max_workers: int = 1
    fail_fast: bool = True
    suggestion_limit: int = 5
    min_similarity: float = 0.6

    def __post_init__(self) -> None:
        self.schema_location_mappings = [
            rule if isinstance(rule, SchemaLocationMapping) else SchemaLocationMapping.from_dict(rule)
            for rule in self.schema_location_mappings
        ]
        for mapping in self.namespace_mappings:
            if not isinstance(mapping, Mapping) or not mapping.get("uri"):
                raise ConfigurationError(f"Invalid namespace mapping: {mapping!r}")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.suggestion_limit < 0:
            raise ConfigurationError("suggestion_limit must not be negative")
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ConfigurationError("min_similarity must be between 0 and 1")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_dir: Optional[str] = None) -> "RepositoryConfig":
        """Build a config from a mapping; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values = dict(data)
        files = values.get("files", [])
        if isinstance(files, str):
            files = [files]
        values["files"] = [str(f) for f in files]
        if base_dir and not values.get("base_dir"):
            values["base_dir"] = base_dir
        if "fail_fast" in values:
            values["fail_fast"] = _parse_bool(values["fail_fast"])
        return cls(**values)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RepositoryConfig":
        """Load a JSON config; relative paths resolve against its directory."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")
        config_dir = str(path.resolve().parent)
        base = data.get("base_dir")
        if base and not os.path.isabs(base):
            data["base_dir"] = os.path.join(config_dir, base)
        return cls.from_dict(data, base_dir=config_dir)

    def apply_env_overrides(self, env: Optional[Mapping[str, str]] = None) -> "RepositoryConfig":
        """Apply ``XSD_REPOSITORY_CONFIG`` key=value overrides in place."""
        env = os.environ if env is None else env
        config_str = env.get(CONFIG_ENV, "")
        if config_str:
            for pair in config_str.split(","):
                if "=" in pair:
                    key, value = pair.split("=", 1)
                    key = key.strip()
                    value = value.strip()
                    converter = _SCALAR_FIELDS.get(key)
                    if converter is None:
                        continue
                    try:
                        setattr(self, key, _parse_bool(value) if converter is bool else converter(value))
                    except ValueError as e:
                        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from e
        self.__post_init__()
        return self

    def resolved_files(self) -> List[str]:
        """Entry files as absolute paths (URLs unchanged)."""
        resolved = []
        for path in self.files:
            if is_url(path) or os.path.isabs(path):
                resolved.append(path)
            else:
                resolved.append(os.path.abspath(os.path.join(self.base_dir or "", path)))
        return resolved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": list(self.files),
            "namespace_mappings": [dict(m) for m in self.namespace_mappings],
            "schema_location_mappings": [r.to_dict() for r in self.schema_location_mappings],
            "base_dir": self.base_dir,
            "max_workers": self.max_workers,
            "fail_fast": self.fail_fast,
            "suggestion_limit": self.suggestion_limit,
            "min_similarity": self.min_similarity,
        }


def get_package_path(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if env is None else env
    return env.get(PACKAGE_ENV) or None


def get_cache_ttl(env: Optional[Mapping[str, str]] = None) -> float:
    env = os.environ if env is None else env
    raw = env.get(CACHE_TTL_ENV)
    if not raw:
        return DEFAULT_CACHE_TTL
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid {CACHE_TTL_ENV}: {raw!r}") from e
