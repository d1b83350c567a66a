"""FastAPI application serving a schema repository package.

The service loads the package named by ``XSD_REPOSITORY_PACKAGE`` (through the
TTL package cache) and answers lookups against its Type Index.

Quick start (run the server)::

    XSD_REPOSITORY_PACKAGE=city.xsdpkg python -m xsd_repository.run_server

Endpoints:

    GET  /health                    Liveness plus package state
    GET  /statistics                Schema, type and namespace counts
    GET  /namespaces                Namespace summary (prefix, documents, types)
    GET  /types?namespace=&kind=    Indexed names
    GET  /types/{name}              Resolve one name (Clark or prefixed)
    GET  /search?query=code         Relevance-ranked term search
    GET  /suggest?query=CdeType     Fuzzy "did you mean" suggestions
    POST /batch                     Resolve many names at once
    GET  /failures                  Load/resolution failures and duplicates
    GET  /metrics/performance       Operation, cache and endpoint metrics
    GET  /metrics/system            CPU / memory snapshot

Example::

    curl "http://localhost:8000/types/gml:CodeType" | jq .
    curl -X POST http://localhost:8000/batch \\
         -H "Content-Type: application/json" \\
         -d '{"types": ["gml:CodeType", "gml:CdeType"]}'

Tests replace the repository with ``app.dependency_overrides[get_repository]``.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import psutil
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .cache import get_package_cache, load_package_cached
from .config import get_package_path
from .errors import ConfigurationError, XsdRepositoryError
from .models import DeclarationKind, declaration_to_dict
from .monitoring import get_monitor
from .repository import SchemaRepository
from .results import ResolvedResult
from .search import BatchTypeQuery, FuzzyMatcher, TypeSearcher

app = FastAPI(
    title="XSD Schema Repository API",
    version=__version__,
    description="Query resolved XML Schema packages: type lookup, search and suggestions",
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.middleware("http")
async def monitor_requests(request: Request, call_next):
    """Record latency per route template and expose it as a header."""
    start_time = time.time()
    response = await call_next(request)
    response_time = time.time() - start_time

    route = request.scope.get("route")
    endpoint = f"{request.method} {getattr(route, 'path', request.url.path)}"
    get_monitor().record_endpoint_request(endpoint, response_time, response.status_code)

    response.headers["X-Response-Time"] = f"{response_time:.3f}s"
    response.headers["X-API-Version"] = __version__
    return response


class SuggestionModel(BaseModel):
    text: str
    similarity: float
    explanation: str


class TypeResponse(BaseModel):
    """Resolution result for one name."""

    query: str
    resolved: bool
    namespace: Optional[str] = None
    local_name: Optional[str] = None
    kind: Optional[str] = None
    document: Optional[str] = None
    builtin: bool = False
    definition: Optional[Dict[str, Any]] = None
    resolution_path: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    suggestions: List[SuggestionModel] = Field(default_factory=list)


class BatchRequest(BaseModel):
    """Request model for batch resolution."""

    types: List[str] = Field(..., description="Type names to resolve, in order")


class BatchItem(BaseModel):
    query: str
    resolved: bool
    result: TypeResponse


class BatchResponse(BaseModel):
    results: List[BatchItem]
    summary: Dict[str, int] = Field(..., description="Total, resolved and unresolved counts")


def _type_response(result: ResolvedResult) -> TypeResponse:
    payload = result.to_dict()
    payload["definition"] = (
        declaration_to_dict(result.definition) if result.definition is not None else None
    )
    return TypeResponse(**payload)


def _parse_kind(kind: Optional[str]) -> Optional[DeclarationKind]:
    if kind is None:
        return None
    try:
        return DeclarationKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in DeclarationKind)
        raise HTTPException(status_code=400, detail=f"Unknown kind '{kind}'; expected one of {allowed}")


def get_repository() -> SchemaRepository:
    """Return the repository for ``XSD_REPOSITORY_PACKAGE`` (cached)."""
    path = get_package_path()
    if not path:
        raise HTTPException(status_code=503, detail="XSD_REPOSITORY_PACKAGE is not set")
    try:
        return load_package_cached(path)
    except XsdRepositoryError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Bad Request", "detail": str(exc), "path": str(request.url.path)},
    )


@app.get("/health")
def health() -> Dict[str, Any]:
    """Health check endpoint."""
    try:
        repo = app.dependency_overrides.get(get_repository, get_repository)()
    except HTTPException as e:
        return {"status": "unhealthy", "error": str(e.detail), "version": __version__}
    return {
        "status": "healthy",
        "version": __version__,
        "state": repo.state.value,
        "schemas": len(repo.documents),
    }


@app.get("/statistics")
def statistics(repo: SchemaRepository = Depends(get_repository)) -> Dict[str, Any]:
    return repo.statistics()


@app.get("/namespaces")
def namespaces(repo: SchemaRepository = Depends(get_repository)) -> Dict[str, Any]:
    summary = repo.namespace_summary()
    return {"namespaces": summary, "total": len(summary)}


@app.get("/types")
def list_types(
    namespace: Optional[str] = Query(None, description="Namespace URI filter"),
    kind: Optional[str] = Query(None, description="Declaration kind filter"),
    limit: int = Query(1000, ge=1, le=10000, description="Maximum number of names"),
    repo: SchemaRepository = Depends(get_repository),
) -> Dict[str, Any]:
    names = repo.all_type_names(namespace=namespace, kind=_parse_kind(kind))
    return {"types": names[:limit], "total": len(names), "limited": len(names) > limit}


@app.get("/types/{name:path}", response_model=TypeResponse)
def get_type(
    name: str,
    kind: Optional[str] = Query(None, description="Restrict lookup to one kind"),
    repo: SchemaRepository = Depends(get_repository),
) -> TypeResponse:
    """Resolve a Clark (``{uri}Name``) or prefixed (``p:Name``) name.

    Unknown names answer 404 with the "did you mean" hint in ``detail``.
    """
    result = repo.find_type(name, kind=_parse_kind(kind))
    if not result.resolved:
        raise HTTPException(status_code=404, detail=result.error_message or f"Type not found: {name}")
    return _type_response(result)


@app.get("/search")
def search(
    query: str = Query(..., min_length=1, description="Search term"),
    field: str = Query("both", description="name, documentation or both"),
    namespace: Optional[str] = Query(None),
    kind: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=500, description="Maximum number of results"),
    repo: SchemaRepository = Depends(get_repository),
) -> Dict[str, Any]:
    with get_monitor().track("search"):
        results = TypeSearcher(repo).search(
            query, in_field=field, namespace=namespace, kind=_parse_kind(kind), limit=limit + 1
        )
    limited = len(results) > limit
    results = results[:limit]
    return {
        "results": [r.to_dict() for r in results],
        "total": len(results),
        "limited": limited,
    }


@app.get("/suggest")
def suggest(
    query: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=50),
    min_similarity: float = Query(0.6, ge=0.0, le=1.0),
    namespace: Optional[str] = Query(None),
    repo: SchemaRepository = Depends(get_repository),
) -> Dict[str, Any]:
    repo.ensure_index()
    suggestions = FuzzyMatcher(repo).find_similar_types(
        query, limit=limit, min_similarity=min_similarity, namespace=namespace
    )
    return {"query": query, "suggestions": [s.to_dict() for s in suggestions]}


@app.post("/batch", response_model=BatchResponse)
def batch(
    request: BatchRequest, repo: SchemaRepository = Depends(get_repository)
) -> BatchResponse:
    with get_monitor().track("batch"):
        results = BatchTypeQuery(repo).execute(request.types)
    resolved = sum(1 for r in results if r.resolved)
    return BatchResponse(
        results=[
            BatchItem(query=r.query, resolved=r.resolved, result=_type_response(r.result))
            for r in results
        ],
        summary={"total": len(results), "resolved": resolved, "unresolved": len(results) - resolved},
    )


@app.get("/failures")
def failures(repo: SchemaRepository = Depends(get_repository)) -> Dict[str, Any]:
    return {
        "load_failures": [f.to_dict() for f in repo.load_failures],
        "resolution_failures": [f.to_dict() for f in repo.resolution_failures],
        "duplicates": [d.to_dict() for d in repo.duplicates],
    }


@app.get("/metrics/performance")
def get_performance_metrics() -> Dict[str, Any]:
    return get_monitor().get_performance_summary()


@app.get("/metrics/system")
def get_system_metrics() -> Dict[str, Any]:
    """Get system-level process metrics."""
    process = psutil.Process()
    memory_mb = process.memory_info().rss / (1024 * 1024)
    return {
        "timestamp": datetime.now().isoformat(),
        "memory_usage_mb": round(memory_mb, 2),
        "cpu_usage_percent": round(psutil.cpu_percent(), 2),
        "system_memory_percent": psutil.virtual_memory().percent,
        "cache_stats": get_package_cache().get_cache_stats(),
    }


@app.exception_handler(404)
async def not_found_handler(request, exc):
    """Custom 404 handler with more helpful error messages."""
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "detail": (
                str(exc.detail)
                if hasattr(exc, "detail")
                else "The requested resource was not found"
            ),
            "path": str(request.url.path),
        },
    )
