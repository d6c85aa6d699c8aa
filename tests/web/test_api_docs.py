"""Web API tests for the document endpoints.

Tests health check, CORS, document CRUD, collection listing and error
responses.
"""

from __future__ import annotations

import json

import pytest
from flask.testing import FlaskClient

from tournament_sync.core.remote import DocumentTree

MATCHES = "organizations/org-1/tournaments/t1/matches"


@pytest.mark.web
class TestHealthCheck:
    """Test health check endpoint."""

    def test_health_check(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test /api/health reports the document count."""
        tree.create(MATCHES, {}, doc_id="m1")
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        data = json.loads(response.data)
        assert data == {"status": "ok", "documents": 1}


@pytest.mark.web
class TestCORS:
    """Test CORS headers."""

    def test_cors_headers_present(self, client: FlaskClient) -> None:
        """Test that CORS headers are present."""
        response = client.get(f"/api/docs/{MATCHES}", headers={"Origin": "http://example.com"})
        assert "Access-Control-Allow-Origin" in response.headers

    def test_options_request_supported(self, client: FlaskClient) -> None:
        """Test that OPTIONS requests are supported for CORS."""
        response = client.options(f"/api/docs/{MATCHES}")
        assert response.status_code in [200, 204]


@pytest.mark.web
class TestCreateAndGet:
    """Test POST and GET of documents."""

    def test_create_with_client_id(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test creating a document under a client-supplied id."""
        response = client.post(
            f"/api/docs/{MATCHES}", json={"id": "m1", "data": {"court_id": "c1"}}
        )
        assert response.status_code == 201
        assert response.get_json() == {"id": "m1"}
        assert tree.get(f"{MATCHES}/m1")["court_id"] == "c1"

    def test_create_generates_id(self, client: FlaskClient) -> None:
        """Test creating a document without an id."""
        response = client.post(f"/api/docs/{MATCHES}", json={"data": {}})
        assert response.status_code == 201
        assert response.get_json()["id"]

    def test_get_document(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test fetching one document with ISO timestamps."""
        tree.create(MATCHES, {"court_id": "c1", "players": {"red": {"score": 1}}}, doc_id="m1")
        response = client.get(f"/api/docs/{MATCHES}/m1")
        assert response.status_code == 200
        data = response.get_json()
        assert data["id"] == "m1"
        assert data["path"] == f"{MATCHES}/m1"
        assert data["data"]["players"]["red"]["score"] == 1
        assert isinstance(data["data"]["updated_at"], str)

    def test_get_missing_document(self, client: FlaskClient) -> None:
        """Test fetching a document that does not exist."""
        response = client.get(f"/api/docs/{MATCHES}/nope")
        assert response.status_code == 404
        assert "error" in response.get_json()

    def test_post_to_document_path_rejected(self, client: FlaskClient) -> None:
        """Test that POST needs a collection path."""
        response = client.post(f"/api/docs/{MATCHES}/m1", json={"data": {}})
        assert response.status_code == 400

    def test_missing_data_rejected(self, client: FlaskClient) -> None:
        """Test that the body must carry a data object."""
        response = client.post(f"/api/docs/{MATCHES}", json={"id": "m1"})
        assert response.status_code == 400
        assert "data" in response.get_json()["error"]

    def test_invalid_id_rejected(self, client: FlaskClient) -> None:
        """Test that a document id cannot be '..'."""
        response = client.post(f"/api/docs/{MATCHES}", json={"id": "..", "data": {}})
        assert response.status_code == 400


@pytest.mark.web
class TestListCollection:
    """Test listing a collection."""

    def test_list_ordered(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test listing with order_by."""
        tree.create(MATCHES, {"sort_order": 2}, doc_id="b")
        tree.create(MATCHES, {"sort_order": 1}, doc_id="a")
        response = client.get(f"/api/docs/{MATCHES}?order_by=sort_order")
        assert response.status_code == 200
        assert [d["id"] for d in response.get_json()["documents"]] == ["a", "b"]

    def test_list_empty(self, client: FlaskClient) -> None:
        """Test listing an empty collection."""
        response = client.get(f"/api/docs/{MATCHES}")
        assert response.get_json() == {"documents": []}


@pytest.mark.web
class TestUpdateAndDelete:
    """Test PATCH, PUT and DELETE."""

    def test_patch_merges(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test PATCH keeps fields it does not mention."""
        tree.create(MATCHES, {"court_id": "c1", "round_id": "r1"}, doc_id="m1")
        response = client.patch(f"/api/docs/{MATCHES}/m1", json={"data": {"round_id": "r2"}})
        assert response.status_code == 200
        data = tree.get(f"{MATCHES}/m1")
        assert data["court_id"] == "c1"
        assert data["round_id"] == "r2"

    def test_patch_missing_document(self, client: FlaskClient) -> None:
        """Test PATCH of a missing document returns 404."""
        response = client.patch(f"/api/docs/{MATCHES}/nope", json={"data": {}})
        assert response.status_code == 404

    def test_put_replaces(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test PUT replaces the whole document."""
        tree.create(MATCHES, {"court_id": "c1", "round_id": "r1"}, doc_id="m1")
        response = client.put(f"/api/docs/{MATCHES}/m1", json={"data": {"court_id": "c2"}})
        assert response.status_code == 200
        assert "round_id" not in tree.get(f"{MATCHES}/m1")

    def test_delete_idempotent(self, client: FlaskClient, tree: DocumentTree) -> None:
        """Test deleting twice."""
        tree.create(MATCHES, {}, doc_id="m1")
        first = client.delete(f"/api/docs/{MATCHES}/m1")
        second = client.delete(f"/api/docs/{MATCHES}/m1")
        assert first.get_json() == {"deleted": True}
        assert second.status_code == 200
        assert second.get_json() == {"deleted": False}


@pytest.mark.web
class TestErrorHandling:
    """Test API error handling."""

    def test_nonexistent_endpoint_returns_404(self, client: FlaskClient) -> None:
        """Test that non-existent endpoints return JSON 404."""
        response = client.get("/api/nonexistent")
        assert response.status_code == 404
        assert "error" in json.loads(response.data)

    def test_wrong_method_returns_405(self, client: FlaskClient) -> None:
        """Test that unsupported methods return JSON 405."""
        response = client.post("/api/health")
        assert response.status_code == 405
        assert json.loads(response.data)["error"] == "Method not allowed"
