import pytest
from fastapi.testclient import TestClient

from kbrag.api.deps import get_chat_service, get_document_service
from kbrag.core.security import create_jwt_token
from kbrag.main import app


def bearer(user_id, roles):
    return {"Authorization": f"Bearer {create_jwt_token(user_id, roles)}"}


@pytest.fixture
def client(document_service, chat_service):
    app.dependency_overrides[get_document_service] = lambda: document_service
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_file(client, headers, data=b"Employees accrue twenty vacation days per year.", name="handbook.txt"):
    return client.post("/api/v1/documents/upload", headers=headers, files={"file": (name, data, "text/plain")})


class TestUploadEndpoint:

    def test_accepted(self, client, publisher):
        response = post_file(client, bearer(1, ["hr"]))

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "accepted"
        assert body["document_id"] == publisher.tasks[0].document_id

    def test_duplicate(self, client):
        post_file(client, bearer(1, ["hr"]))
        response = post_file(client, bearer(2, ["hr"]))

        assert response.status_code == 200
        assert response.json()["status"] == "duplicate"

    def test_anonymous_caller(self, client):
        assert post_file(client, {}).status_code == 401

    def test_caller_without_roles(self, client):
        assert post_file(client, bearer(1, [])).status_code == 403

    def test_malformed_header(self, client):
        assert post_file(client, {"Authorization": "Token abc"}).status_code == 401

    def test_empty_file(self, client):
        assert post_file(client, bearer(1, ["hr"]), data=b"").status_code == 422

    def test_broker_outage(self, client, publisher):
        publisher.fail = True

        assert post_file(client, bearer(1, ["hr"])).status_code == 503


class TestDocumentEndpoints:

    def test_get_list_and_delete(self, client):
        document_id = post_file(client, bearer(1, ["hr"])).json()["document_id"]

        detail = client.get(f"/api/v1/documents/{document_id}", headers=bearer(1, ["hr"]))
        assert detail.status_code == 200
        assert detail.json()["status"] == "PENDING"

        listing = client.get("/api/v1/documents/", headers=bearer(1, ["hr"]))
        assert [d["id"] for d in listing.json()] == [document_id]

        assert client.get(f"/api/v1/documents/{document_id}", headers=bearer(2, ["eng"])).status_code == 404
        assert client.delete(f"/api/v1/documents/{document_id}", headers=bearer(2, ["eng"])).status_code == 403
        assert client.delete(f"/api/v1/documents/{document_id}", headers=bearer(1, ["hr"])).status_code == 200
        assert client.delete(f"/api/v1/documents/{document_id}", headers=bearer(1, ["hr"])).status_code == 404

    def test_reprocess(self, client, publisher):
        document_id = post_file(client, bearer(1, ["hr"])).json()["document_id"]

        response = client.post(f"/api/v1/documents/{document_id}/reprocess", headers=bearer(1, ["hr"]))

        assert response.status_code == 202
        assert len(publisher.tasks) == 2


class TestChatEndpoint:

    def test_anonymous_caller_is_unauthenticated(self, client, llm):
        response = client.post("/api/v1/chat/", json={"question": "hi"})

        assert response.status_code == 401
        assert llm.prompts == []

    def test_no_roles_is_forbidden(self, client):
        response = client.post("/api/v1/chat/", json={"question": "hi"}, headers=bearer(1, []))

        assert response.status_code == 403

    def test_no_content(self, client):
        response = client.post("/api/v1/chat/", json={"question": "hi"}, headers=bearer(1, ["hr"]))

        assert response.status_code == 200
        assert response.json() == {"answer": "No relevant content was found.", "cached": False}

    def test_blank_question(self, client):
        response = client.post("/api/v1/chat/", json={"question": "   "}, headers=bearer(1, ["hr"]))

        assert response.status_code == 422


def test_health(client):
    assert client.get("/api/v1/health/").json()["status"] == "ok"
