"""
Tests for the HTTP query surface.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from csvsearch.api.main import create_app, parse_filter_values
from csvsearch.core.errors import DeadlineExceeded, QueryError, StorageError
from csvsearch.core.service import CSVSearchService, IngestOptions

ROWS = [
    ["id", "name", "pref", "lat", "lng"],
    ["1", "red bicycle", "Kyoto", "35.0", "135.75"],
    ["2", "blue bicycle", "Osaka", "", ""],
    ["3", "green scooter", "Kyoto", "", ""],
]


@pytest.fixture
def service(db_path, provider, write_csv):
    svc = CSVSearchService(db_path=db_path, provider=provider)
    svc.init_database()
    svc.ingest(IngestOptions(
        table="bikes",
        csv_path=write_csv(ROWS),
        text_columns=["name"],
        lat_column="lat",
        lng_column="lng",
    ))
    yield svc
    svc.close()


@pytest.fixture
def client(service):
    app = create_app(service, dataset="bikes", default_top_k=2, request_timeout=5)
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["dataset"] == "bikes"


class TestSearchGet:
    def test_query_param(self, client):
        response = client.get("/search", params={"q": "red bicycle"})

        assert response.status_code == 200
        results = response.json()
        assert len(results) == 2
        assert results[0]["id"] == "1"
        assert results[0]["dataset"] == "bikes"
        assert results[0]["fields"]["pref"] == "Kyoto"
        assert results[0]["lat"] == pytest.approx(35.0)
        assert results[0]["score"] == pytest.approx(1.0, abs=1e-6)

    def test_query_alias_and_topk(self, client):
        response = client.get("/search", params={"query": "blue bicycle", "topk": "3"})

        results = response.json()
        assert len(results) == 3
        assert results[0]["id"] == "2"
        assert "lat" not in results[0]

    def test_repeated_filters(self, client):
        response = client.get(
            "/search",
            params=[("q", "scooter"), ("filter", "pref=Kyoto"), ("filter", "name=green scooter")],
        )
        assert [r["id"] for r in response.json()] == ["3"]

    def test_unknown_dataset_returns_empty_list(self, client):
        response = client.get("/search", params={"q": "bicycle", "dataset": "other"})
        assert response.status_code == 200
        assert response.json() == []

    def test_missing_query(self, client):
        response = client.get("/search")
        assert response.status_code == 400
        assert response.json() == {"error": "query is required"}

    def test_bad_topk(self, client):
        response = client.get("/search", params={"q": "x", "topk": "lots"})
        assert response.status_code == 400
        assert "topk" in response.json()["error"]

    def test_bad_filter(self, client):
        response = client.get("/search", params={"q": "x", "filter": "no-equals"})
        assert response.status_code == 400
        assert response.json() == {"error": "filter must be in the form field=value"}


class TestSearchPost:
    def test_json_body(self, client):
        response = client.post("/search", json={
            "query": "red bicycle",
            "dataset": "bikes",
            "topk": 5,
            "filters": {"pref": "Kyoto"},
        })

        assert response.status_code == 200
        assert [r["id"] for r in response.json()] == ["1", "3"]

    def test_filter_list_in_body(self, client):
        response = client.post("/search", json={"query": "bicycle", "filter": ["pref=Osaka"]})
        assert [r["id"] for r in response.json()] == ["2"]

    def test_unknown_keys_rejected(self, client):
        response = client.post("/search", json={"query": "x", "bogus": True})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_blank_filter_key_rejected(self, client):
        response = client.post("/search", json={"query": "x", "filters": {" ": "v"}})
        assert response.status_code == 400

    def test_invalid_json(self, client):
        response = client.post("/search", content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400


class TestErrorMapping:
    def test_deadline_maps_to_504(self, client, service):
        with patch.object(service, "search", side_effect=DeadlineExceeded("search exceeded its deadline")):
            response = client.get("/search", params={"q": "x"})
        assert response.status_code == 504
        assert response.json() == {"error": "search exceeded its deadline"}

    def test_storage_error_maps_to_500(self, client, service):
        with patch.object(service, "search", side_effect=StorageError("database is locked")):
            response = client.post("/search", json={"query": "x"})
        assert response.status_code == 500
        assert response.json() == {"error": "database is locked"}

    def test_request_runs_under_deadline(self, client, service):
        with patch.object(service, "search", return_value=[]) as mock_search:
            client.get("/search", params={"q": "x"})

        context = mock_search.call_args.kwargs["context"]
        assert context.deadline is not None
        assert 0 < context.remaining() <= 5


def test_parse_filter_values():
    filters = parse_filter_values(["pref=Kyoto", "  ", "note=a=b"])
    assert [(f.field, f.value) for f in filters] == [("pref", "Kyoto"), ("note", "a=b")]

    with pytest.raises(QueryError):
        parse_filter_values(["=x"])
