"""Exception hierarchy for the schema repository.

Only boundary-contract violations are raised. Expected partial failures
(unreadable imports, unresolved references, duplicate definitions, merge
conflicts) are collected into report objects instead; the exception classes
below double as the payload carried by those reports so callers can re-raise
them when they want strict behavior.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class XsdRepositoryError(Exception):
    """Base class for all errors raised by :mod:`xsd_repository`."""


class ConfigurationError(XsdRepositoryError, ValueError):
    """Invalid caller input detected before any engine work starts."""


class DocumentParseError(XsdRepositoryError):
    """Malformed schema markup.

    Attributes:
        location: Path, URL or synthetic id of the offending document.
        line: 1-based line of the syntax error when known.
        column: 0-based column of the syntax error when known.
        reason: Parser message without the location prefix.
    """

    def __init__(
        self,
        location: str,
        reason: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.location = location
        self.reason = reason
        self.line = line
        self.column = column
        where = location if line is None else f"{location}:{line}:{column or 0}"
        super().__init__(f"{where}: {reason}")


class LocationNotFoundError(XsdRepositoryError):
    """An import/include target could not be read.

    Attributes:
        location: Location as written in the schema.
        resolved_location: Effective location after mapping rules.
    """

    def __init__(self, location: str, resolved_location: Optional[str] = None) -> None:
        self.location = location
        self.resolved_location = resolved_location or location
        message = f"Schema not found: {self.resolved_location}"
        if self.resolved_location != location:
            message += f" (original location: {location})"
        super().__init__(message)


class IncludeNamespaceError(XsdRepositoryError):
    """``xs:include`` of a document declaring a different target namespace."""

    def __init__(
        self, location: str, expected: Optional[str], actual: Optional[str]
    ) -> None:
        self.location = location
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Included schema {location} has target namespace '{actual}', "
            f"expected '{expected}' or none"
        )


class UnresolvedReferenceError(XsdRepositoryError):
    """One or more references have no matching Type Index entry."""

    def __init__(self, qualified_names: Sequence[str], suggestions: Sequence[str] = ()) -> None:
        self.qualified_names: List[str] = list(qualified_names)
        self.suggestions: List[str] = list(suggestions)
        message = "Unresolved reference(s): " + ", ".join(self.qualified_names)
        if self.suggestions:
            message += ". Did you mean: " + ", ".join(self.suggestions) + "?"
        super().__init__(message)


class InvalidPackageError(XsdRepositoryError):
    """Package file is missing, corrupt, or of an unsupported format."""


class RepositoryValidationError(XsdRepositoryError):
    """Raised by ``SchemaRepository.validate(strict=True)`` on the first problem."""
