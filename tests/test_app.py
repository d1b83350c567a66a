import pytest
from fastapi.testclient import TestClient

from xsd_repository.app import app, get_repository


@pytest.fixture
def client(city_repository):
    app.dependency_overrides[get_repository] = lambda: city_repository
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["state"] == "resolved"
    assert data["schemas"] == 3


def test_health_without_package(monkeypatch):
    monkeypatch.delenv("XSD_REPOSITORY_PACKAGE", raising=False)
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "unhealthy"


def test_missing_package_is_service_unavailable(monkeypatch):
    monkeypatch.delenv("XSD_REPOSITORY_PACKAGE", raising=False)
    response = TestClient(app).get("/statistics")
    assert response.status_code == 503


def test_statistics_and_namespaces(client):
    stats = client.get("/statistics").json()
    assert stats["total_types"] == 9
    assert stats["resolution_failures"] == 0

    namespaces = client.get("/namespaces").json()
    assert namespaces["total"] == 2
    assert {n["prefix"] for n in namespaces["namespaces"]} == {"city", "road"}


def test_list_types(client):
    data = client.get("/types", params={"namespace": "urn:example:road", "kind": "simpleType"}).json()
    assert data["types"] == ["road:CodeType"]
    assert data["limited"] is False

    assert client.get("/types", params={"kind": "notAKind"}).status_code == 400


def test_get_type(client):
    response = client.get("/types/road:CodeType")
    assert response.status_code == 200
    data = response.json()
    assert data["resolved"] is True
    assert data["kind"] == "simpleType"
    assert data["definition"]["base"] == "xs:token"
    assert data["definition"]["documentation"] == "Identifier code of a road segment."


def test_get_unknown_type_suggests(client):
    response = client.get("/types/road:CdeType")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Not Found"
    assert "Did you mean 'road:CodeType'?" in body["detail"]


def test_search_endpoint(client):
    response = client.get("/search", params={"query": "road"})
    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["qualified_name"] == "road:Road"
    assert results[0]["match_type"] == "exact"


def test_search_limited_flag(client):
    exact = client.get("/search", params={"query": "road", "limit": 5}).json()
    assert exact["total"] == 5
    assert exact["limited"] is False
    assert exact["results"][-1]["qualified_name"] == "city:CityType"

    truncated = client.get("/search", params={"query": "road", "limit": 4}).json()
    assert truncated["total"] == 4
    assert truncated["limited"] is True

    names_only = client.get("/search", params={"query": "road", "field": "name", "limit": 4}).json()
    assert names_only["limited"] is False


def test_search_rejects_unknown_field(client):
    response = client.get("/search", params={"query": "road", "field": "annotations"})
    assert response.status_code == 400
    assert "Unknown search field" in response.json()["detail"]


def test_suggest_endpoint(client):
    data = client.get("/suggest", params={"query": "CdeType"}).json()
    assert data["suggestions"][0]["text"] == "road:CodeType"


def test_batch_endpoint(client):
    response = client.post("/batch", json={"types": ["road:CodeType", "road:Nope", "xs:string"]})
    assert response.status_code == 200
    body = response.json()
    assert [item["resolved"] for item in body["results"]] == [True, False, True]
    assert body["summary"] == {"total": 3, "resolved": 2, "unresolved": 1}
    assert body["results"][2]["result"]["builtin"] is True


def test_failures_endpoint(client):
    data = client.get("/failures").json()
    assert data == {"load_failures": [], "resolution_failures": [], "duplicates": []}


def test_metrics_endpoints(client):
    response = client.get("/statistics")
    assert "X-Response-Time" in response.headers

    performance = client.get("/metrics/performance").json()
    assert performance["api"]["endpoints"]["GET /statistics"]["requests"] == 1
    assert performance["operations"]["resolve"]["count"] == 1

    system = client.get("/metrics/system").json()
    assert "memory_usage_mb" in system
    assert "cache_stats" in system


def test_served_from_package(city_package, monkeypatch):
    from xsd_repository.cache import get_package_cache

    get_package_cache().clear()
    monkeypatch.setenv("XSD_REPOSITORY_PACKAGE", str(city_package))
    response = TestClient(app).get("/types/city:DistrictCode")
    assert response.status_code == 200
    assert response.json()["namespace"] == "urn:example:city"
