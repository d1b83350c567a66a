"""Namespace bookkeeping and schema location remapping.

Two small pieces of state sit between the raw ``import``/``include``
directives found in schema markup and the documents the engine loads:

* :class:`SchemaLocationMapping` / :class:`LocationMapper` rewrite a requested
    ``schemaLocation`` (literal or regular-expression rules, first match wins)
    and resolve relative results against the including document.
* :class:`NamespaceRegistry` keeps the repository's prefix to URI table,
    merged from explicit configuration and from ``xmlns`` declarations.

:func:`parse_qualified_name` turns Clark (``{uri}local``), prefixed
(``p:local``) and unprefixed names into a :class:`ParsedName`.

Example:
        mapper = LocationMapper([
                SchemaLocationMapping("urn:old", "./local/schema.xsd"),
                SchemaLocationMapping(r"^https://schemas\\.example\\.org/(.*)$",
                                      r"vendor/\\1", pattern=True),
        ])
        mapper.map("urn:old", base="/work/main.xsd")      # /work/local/schema.xsd

        registry = NamespaceRegistry()
        registry.register("gml", "http://www.opengis.net/gml/3.2")
        parse_qualified_name("gml:CodeType", registry).namespace
        # 'http://www.opengis.net/gml/3.2'
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern
from urllib.parse import urljoin, urlparse

from .errors import ConfigurationError
from .models import SchemaDocument

logger = logging.getLogger(__name__)

_URL_SCHEMES = ("http", "https", "ftp", "file")
_VERSION_SEGMENT = re.compile(r"^v?\d+(\.\d+)*$", re.IGNORECASE)


def is_url(location: str) -> bool:
    """Return True when ``location`` carries a URL scheme we fetch remotely."""
    scheme = urlparse(location).scheme.lower()
    return scheme in _URL_SCHEMES and scheme != "file"


def normalize_location(location: str) -> str:
    """Normalize a location string for literal rule comparison."""
    return location.strip().replace("\\", "/")


def canonical_location(location: str) -> str:
    """Return the key a loaded document is registered under.

    URLs are kept as written (minus surrounding whitespace); file paths become
    absolute and normalized so the same file reached through different
    relative paths is loaded only once.
    """
    location = location.strip()
    if is_url(location):
        return location
    if location.startswith("file://"):
        location = urlparse(location).path
    return os.path.normpath(os.path.abspath(location))


@dataclass
class SchemaLocationMapping:
    """One location rewrite rule.

    Args:
        from_location: Literal location or regular expression to match.
        to: Replacement location, or substitution template with ``\\1``
            backreferences when ``pattern`` is True.
        pattern: Treat ``from_location`` as a regular expression.
    """

    from_location: str
    to: str
    pattern: bool = False
    _compiled: Optional[Pattern[str]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.from_location or not self.to:
            raise ConfigurationError("Location mapping requires non-empty 'from' and 'to'")
        if self.pattern:
            try:
                self._compiled = re.compile(self.from_location)
            except re.error as exc:
                raise ConfigurationError(
                    f"Invalid location pattern {self.from_location!r}: {exc}"
                ) from exc

    def apply(self, location: str) -> Optional[str]:
        """Return the rewritten location, or ``None`` when the rule does not match."""
        normalized = normalize_location(location)
        if self._compiled is not None:
            if self._compiled.search(normalized) is None:
                return None
            return self._compiled.sub(self.to, normalized)
        if normalized == normalize_location(self.from_location):
            return self.to
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.from_location, "to": self.to, "pattern": self.pattern}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SchemaLocationMapping":
        try:
            source = data["from"] if "from" in data else data["from_location"]
            return cls(source, data["to"], bool(data.get("pattern", False)))
        except KeyError as exc:
            raise ConfigurationError(f"Location mapping missing key {exc}") from exc


class LocationMapper:
    """Apply ordered :class:`SchemaLocationMapping` rules to requested locations."""

    def __init__(self, rules: Optional[Iterable[SchemaLocationMapping]] = None) -> None:
        self.rules: List[SchemaLocationMapping] = list(rules or [])

    def add_rule(self, rule: SchemaLocationMapping) -> None:
        self.rules.append(rule)

    def rewrite(self, location: str) -> str:
        """Apply the first matching rule; unmatched locations are returned unchanged."""
        for rule in self.rules:
            mapped = rule.apply(location)
            if mapped is not None:
                logger.debug(f"Mapped schema location {location} -> {mapped}")
                return mapped
        return location

    def map(self, location: str, base: Optional[str] = None) -> str:
        """Return the effective path or URL for ``location``.

        Args:
            location: ``schemaLocation`` as written in the including document.
            base: Location of the including document; relative results are
                resolved against its directory or base URL.
        """
        target = self.rewrite(location).strip()
        if is_url(target):
            return target
        if base and is_url(base):
            return urljoin(base, target.replace("\\", "/"))
        if target.startswith("file://") or os.path.isabs(target):
            return canonical_location(target)
        if base:
            return canonical_location(os.path.join(os.path.dirname(base), target))
        return canonical_location(target)


def extract_prefix_from_uri(uri: str) -> str:
    """Derive a readable prefix from a namespace URI.

    The last path segment that is not a version number is used, e.g.
    ``http://www.opengis.net/gml/3.2`` gives ``gml``; ``urn:x:road`` gives
    ``road``.
    """
    segments = [s for s in re.split(r"[/:#]", uri) if s]
    for segment in reversed(segments):
        if _VERSION_SEGMENT.match(segment) or "." in segment:
            continue
        prefix = re.sub(r"[^A-Za-z0-9_-]", "", segment).lower()
        if prefix and not prefix[0].isdigit():
            return prefix
    return "ns"


class NamespaceRegistry:
    """Prefix to namespace URI table owned by one repository."""

    def __init__(self) -> None:
        self._prefix_to_uri: Dict[str, str] = {}
        self._uri_to_prefixes: Dict[str, List[str]] = {}
        self.default_namespace: Optional[str] = None

    def register(self, prefix: Optional[str], uri: str, default: bool = False) -> None:
        """Map ``prefix`` to ``uri``; an empty prefix sets the default namespace."""
        if not uri:
            raise ConfigurationError("Namespace URI must be a non-empty string")
        if default or not prefix:
            self.default_namespace = uri
            if not prefix:
                return
        previous = self._prefix_to_uri.get(prefix)
        if previous is not None and previous != uri:
            logger.warning(
                f"Namespace prefix '{prefix}' re-mapped from {previous} to {uri}"
            )
            self._uri_to_prefixes[previous].remove(prefix)
            if not self._uri_to_prefixes[previous]:
                del self._uri_to_prefixes[previous]
        self._prefix_to_uri[prefix] = uri
        prefixes = self._uri_to_prefixes.setdefault(uri, [])
        if prefix not in prefixes:
            prefixes.append(prefix)

    def get_uri(self, prefix: str) -> Optional[str]:
        return self._prefix_to_uri.get(prefix)

    def get_prefixes(self, uri: str) -> List[str]:
        return list(self._uri_to_prefixes.get(uri, []))

    def primary_prefix(self, uri: str) -> Optional[str]:
        prefixes = self._uri_to_prefixes.get(uri)
        return prefixes[0] if prefixes else None

    def has_prefix(self, prefix: str) -> bool:
        return prefix in self._prefix_to_uri

    def all_uris(self) -> List[str]:
        return sorted(self._uri_to_prefixes)

    def all_mappings(self) -> Dict[str, str]:
        return dict(self._prefix_to_uri)

    def extract_from_documents(self, documents: Iterable[SchemaDocument]) -> int:
        """Register ``xmlns`` declarations found in ``documents``.

        Prefixes that are already registered keep their mapping, so configured
        mappings win over document declarations.

        Returns:
            Number of prefixes added.
        """
        added = 0
        for document in documents:
            for prefix, uri in document.namespaces.items():
                if prefix in self._prefix_to_uri:
                    continue
                self.register(prefix, uri)
                added += 1
        if added:
            logger.debug(f"Registered {added} namespace prefixes from documents")
        return added

    def to_list(self) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = [
            {"prefix": prefix, "uri": uri} for prefix, uri in self._prefix_to_uri.items()
        ]
        if self.default_namespace:
            entries.append({"prefix": "", "uri": self.default_namespace, "default": True})
        return entries

    @classmethod
    def from_list(cls, entries: Iterable[Mapping[str, Any]]) -> "NamespaceRegistry":
        registry = cls()
        for entry in entries:
            registry.register(
                entry.get("prefix") or "", entry["uri"], default=bool(entry.get("default"))
            )
        return registry

    def copy(self) -> "NamespaceRegistry":
        return NamespaceRegistry.from_list(self.to_list())

    def __len__(self) -> int:
        return len(self._prefix_to_uri)


@dataclass(frozen=True)
class ParsedName:
    """Result of :func:`parse_qualified_name`.

    ``prefix_resolved`` is False when the name carried a prefix that no scope
    knew; ``namespace`` is then ``None``.
    """

    namespace: Optional[str]
    local_name: str
    prefix: Optional[str] = None
    prefix_resolved: bool = True

    @property
    def clark(self) -> str:
        return f"{{{self.namespace}}}{self.local_name}" if self.namespace else self.local_name


def parse_qualified_name(
    text: str,
    registry: Optional[NamespaceRegistry] = None,
    scope: Optional[Mapping[str, str]] = None,
) -> ParsedName:
    """Parse a Clark, prefixed or unprefixed name.

    Args:
        text: ``{uri}local``, ``prefix:local`` or ``local``.
        registry: Repository registry used as the fallback prefix table.
        scope: Document-level prefix map consulted first. The ``""`` key is the
            default namespace; when a scope is given, unprefixed names take
            their namespace from it only.

    Raises:
        ConfigurationError: If ``text`` is empty.
    """
    if text is None or not text.strip():
        raise ConfigurationError("Qualified name must be a non-empty string")
    text = text.strip()

    if text.startswith("{") and "}" in text:
        namespace, local_name = text[1:].split("}", 1)
        return ParsedName(namespace or None, local_name)

    if ":" in text:
        prefix, local_name = text.split(":", 1)
        uri = scope.get(prefix) if scope else None
        if uri is None and registry is not None:
            uri = registry.get_uri(prefix)
        return ParsedName(uri, local_name, prefix, uri is not None)

    if scope is not None:
        return ParsedName(scope.get("") or None, text)
    default = registry.default_namespace if registry is not None else None
    return ParsedName(default, text)
