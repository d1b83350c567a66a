"""Term search, fuzzy suggestions and batch lookups over a resolved repository.

All three helpers read the repository's Type Index and never rebuild it, so
they are safe to share across threads once the repository is resolved.

Relevance scoring used by :class:`TypeSearcher`:

=====================================  =====
Match                                  Score
=====================================  =====
Exact name (case-insensitive)          1000
Name starts with term                   500
Name contains term                      250
Documentation contains term as a word   100
Documentation contains term              50
=====================================  =====

Ties are broken by shorter local name, then by qualified name.

Example:
        searcher = TypeSearcher(repository)
        for hit in searcher.search("code", in_field="both", limit=5):
                print(hit.qualified_name, hit.relevance_score)

        FuzzyMatcher().similarity_score("CodeType", "CdeType")   # 0.875
        BatchTypeQuery(repository).execute(["gml:CodeType", "gml:Missing"])
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from .errors import ConfigurationError
from .models import DeclarationKind
from .results import ResolvedResult, Suggestion

if TYPE_CHECKING:
    from .repository import SchemaRepository

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "documentation", "both")

EXACT_MATCH_SCORE = 1000
PREFIX_MATCH_SCORE = 500
CONTAINS_MATCH_SCORE = 250
DOC_WORD_MATCH_SCORE = 100
DOC_CONTAINS_MATCH_SCORE = 50

DEFAULT_SUGGESTION_LIMIT = 5
DEFAULT_MIN_SIMILARITY = 0.6

_WORD = re.compile(r"\w+")


def _local_part(name: str) -> str:
    if name.startswith("{") and "}" in name:
        return name.split("}", 1)[1]
    return name.split(":", 1)[-1]


@dataclass(frozen=True)
class SearchResult:
    qualified_name: str
    namespace: Optional[str]
    local_name: str
    kind: DeclarationKind
    document: str
    documentation: str
    relevance_score: int
    match_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualified_name": self.qualified_name,
            "namespace": self.namespace,
            "local_name": self.local_name,
            "kind": self.kind.value,
            "document": self.document,
            "documentation": self.documentation,
            "relevance_score": self.relevance_score,
            "match_type": self.match_type,
        }


class TypeSearcher:
    """Rank Type Index entries against a search term."""

    def __init__(self, repository: "SchemaRepository") -> None:
        self.repository = repository

    def search(
        self,
        term: str,
        in_field: str = "both",
        namespace: Optional[str] = None,
        kind: Optional[DeclarationKind] = None,
        limit: int = 20,
    ) -> List[SearchResult]:
        """Return up to ``limit`` matches ordered by relevance.

        Raises:
            ConfigurationError: On an empty term, unknown field or non-positive limit.
        """
        if term is None or not term.strip():
            raise ConfigurationError("Search term must be a non-empty string")
        if in_field not in SEARCH_FIELDS:
            raise ConfigurationError(
                f"Unknown search field '{in_field}'; expected one of {', '.join(SEARCH_FIELDS)}"
            )
        if limit < 1:
            raise ConfigurationError("Search limit must be at least 1")

        needle = term.strip().lower()
        index = self.repository.ensure_index()
        results: List[SearchResult] = []
        for entry in index.entries(kind=kind, namespace=namespace):
            local = entry.qualified_name.local_name
            documentation = entry.definition.documentation
            score, match_type = 0, ""
            if in_field in ("name", "both"):
                score, match_type = self._score_name(needle, local.lower())
            if not score and in_field in ("documentation", "both"):
                score, match_type = self._score_documentation(needle, documentation.lower())
            if not score:
                continue
            results.append(
                SearchResult(
                    qualified_name=self.repository.display_name(entry.qualified_name),
                    namespace=entry.qualified_name.namespace,
                    local_name=local,
                    kind=entry.kind,
                    document=entry.document,
                    documentation=documentation,
                    relevance_score=score,
                    match_type=match_type,
                )
            )

        results.sort(key=lambda r: (-r.relevance_score, len(r.local_name), r.qualified_name))
        return results[:limit]

    @staticmethod
    def _score_name(needle: str, name: str):
        if name == needle:
            return EXACT_MATCH_SCORE, "exact"
        if name.startswith(needle):
            return PREFIX_MATCH_SCORE, "prefix"
        if needle in name:
            return CONTAINS_MATCH_SCORE, "contains"
        return 0, ""

    @staticmethod
    def _score_documentation(needle: str, documentation: str):
        if not documentation:
            return 0, ""
        if needle in _WORD.findall(documentation):
            return DOC_WORD_MATCH_SCORE, "documentation_word"
        if needle in documentation:
            return DOC_CONTAINS_MATCH_SCORE, "documentation"
        return 0, ""


class FuzzyMatcher:
    """Edit-distance suggestions for misspelled names.

    Args:
        repository: Repository whose Type Index supplies candidates. Optional
            when only :meth:`similarity_score` is needed.
    """

    def __init__(self, repository: Optional["SchemaRepository"] = None) -> None:
        self.repository = repository

    @staticmethod
    def levenshtein(a: str, b: str) -> int:
        if len(a) < len(b):
            a, b = b, a
        previous = list(range(len(b) + 1))
        for i, char_a in enumerate(a, 1):
            current = [i]
            for j, char_b in enumerate(b, 1):
                current.append(
                    min(
                        previous[j] + 1,
                        current[j - 1] + 1,
                        previous[j - 1] + (char_a != char_b),
                    )
                )
            previous = current
        return previous[-1]

    def similarity_score(self, a: str, b: str) -> float:
        """Return ``1 - levenshtein(a, b) / max(len(a), len(b))``, case-insensitive."""
        a, b = (a or "").lower(), (b or "").lower()
        if a == b:
            return 1.0
        if not a or not b:
            return 0.0
        return 1.0 - self.levenshtein(a, b) / max(len(a), len(b))

    def find_similar_types(
        self,
        query: str,
        limit: int = DEFAULT_SUGGESTION_LIMIT,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        namespace: Optional[str] = None,
    ) -> List[Suggestion]:
        """Suggest indexed names close to ``query``.

        The local part of ``query`` is compared with each indexed local name;
        results are sorted by non-increasing similarity, then by text. The
        repository's current index is used as is, so it is empty before
        ``resolve()``.
        """
        if self.repository is None or not query or limit < 1:
            return []
        target = _local_part(query.strip())
        index = self.repository.type_index
        best: Dict[str, float] = {}
        for entry in index.entries(namespace=namespace):
            score = self.similarity_score(target, entry.qualified_name.local_name)
            if score < min_similarity:
                continue
            text = self.repository.display_name(entry.qualified_name)
            if score > best.get(text, -1.0):
                best[text] = score
        ranked = sorted(best.items(), key=lambda item: (-item[1], item[0]))[:limit]
        return [
            Suggestion(text=text, similarity=round(score, 4), explanation=f"Did you mean '{text}'?")
            for text, score in ranked
        ]


@dataclass
class BatchQueryResult:
    query: str
    resolved: bool
    result: ResolvedResult

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "resolved": self.resolved, "result": self.result.to_dict()}


class BatchTypeQuery:
    """Resolve many names against one already-built index."""

    def __init__(self, repository: "SchemaRepository") -> None:
        self.repository = repository

    def execute(self, names: Sequence[str]) -> List[BatchQueryResult]:
        """Resolve ``names`` in order; duplicates are resolved independently."""
        if names is None:
            raise ConfigurationError("Batch query requires a list of names")
        self.repository.ensure_index()
        results = []
        for raw in names:
            query = (raw or "").strip()
            if not query:
                result = ResolvedResult(
                    query=query, resolved=False, error_message="Empty type name"
                )
            else:
                result = self.repository.find_type(query)
            results.append(BatchQueryResult(query=query, resolved=result.resolved, result=result))
        return results

    def execute_from_file(self, path: Union[str, Path]) -> List[BatchQueryResult]:
        """Read names from ``path`` and resolve them.

        ``.json`` files hold a list of names (or ``{"types": [...]}``); any
        other file is read one name per line, skipping blanks and ``#`` comments.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read batch query file {path}: {e}") from e
        if path.suffix.lower() == ".json":
            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
            names = data.get("types", []) if isinstance(data, dict) else data
            if not isinstance(names, list):
                raise ConfigurationError(f"{path} must contain a list of type names")
        else:
            names = [
                line.strip()
                for line in text.splitlines()
                if line.strip() and not line.strip().startswith("#")
            ]
        logger.info(f"Running batch query for {len(names)} names from {path}")
        return self.execute([str(name) for name in names])
