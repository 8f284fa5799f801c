from unittest.mock import AsyncMock, patch

from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from app.main import app
from app.models.entry import Entry
from app.services import entry_store


def post_file(client, filename, content=b"hello", content_type="text/plain", **data):
    return client.post(
        "/api/v1/entries",
        data=data,
        files={"file": (filename, content, content_type)},
    )


class TestUpload:
    """POST /api/v1/entries with a file"""

    def test_upload_stores_blob_then_row(self, authenticated_client, blob_storage, db_session):
        client, user = authenticated_client

        response = post_file(client, "notes.txt")

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["name"] == "notes.txt"
        assert data["size"] == 5
        assert data["mime_type"] == "text/plain"
        assert data["is_folder"] is False
        assert data["thumbnail_url"] is None
        assert data["user_id"] == user.id

        key = f"{user.id}/{data['id']}/notes.txt"
        assert blob_storage.objects[key] == (b"hello", "text/plain")
        assert data["file_url"] == f"https://storage.test/uploads/{key}"
        assert db_session.query(Entry).count() == 1

    def test_image_gets_thumbnail(self, authenticated_client):
        client, _ = authenticated_client

        response = post_file(client, "photo.png", b"\x89PNG", "image/png")

        assert response.status_code == status.HTTP_201_CREATED
        assert "width=200" in response.json()["thumbnail_url"]

    def test_missing_file(self, authenticated_client):
        client, _ = authenticated_client

        response = client.post("/api/v1/entries", data={"name": "x"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["message"] == "No file uploaded"

    def test_disallowed_type(self, authenticated_client, db_session):
        client, _ = authenticated_client

        response = post_file(client, "run.exe", b"MZ", "application/x-msdownload")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["kind"] == "validation_error"
        assert db_session.query(Entry).count() == 0

    def test_too_large(self, authenticated_client, blob_storage):
        client, _ = authenticated_client

        with patch("app.services.upload.settings.max_upload_size", 4):
            response = post_file(client, "notes.txt", b"hello")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert blob_storage.objects == {}

    def test_duplicate_upload_is_renamed(self, authenticated_client):
        client, _ = authenticated_client

        post_file(client, "notes.txt")
        second = post_file(client, "notes.txt")
        third = post_file(client, "notes.txt")

        assert second.json()["name"] == "notes (1).txt"
        assert third.json()["name"] == "notes (2).txt"

    def test_storage_failure_leaves_no_row(self, authenticated_client, blob_storage, db_session):
        client, _ = authenticated_client
        blob_storage.fail_put = True

        response = post_file(client, "notes.txt")

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["error"]["kind"] == "storage_failure"
        assert db_session.query(Entry).count() == 0

    def test_row_failure_removes_blob(self, authenticated_client, blob_storage):
        client, _ = authenticated_client

        with patch.object(entry_store, "create_entry", side_effect=SQLAlchemyError("boom")):
            with TestClient(app, raise_server_exceptions=False) as raw_client:
                response = raw_client.post(
                    "/api/v1/entries",
                    files={"file": ("notes.txt", b"hello", "text/plain")},
                    headers=dict(client.headers),
                )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["error"] == {
            "kind": "server_error",
            "message": "Internal server error",
        }
        assert blob_storage.objects == {}
        assert len(blob_storage.deleted) == 1

    def test_upload_into_folder(self, authenticated_client):
        client, _ = authenticated_client
        folder = client.post(
            "/api/v1/entries", data={"is_folder": "true", "name": "Pics"}
        ).json()

        response = post_file(client, "photo.jpg", b"jpg", "image/jpeg", parent_id=folder["id"])

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["path"] == "/Pics/photo.jpg"

    def test_folder_with_file_is_rejected(self, authenticated_client):
        client, _ = authenticated_client

        response = post_file(client, "notes.txt", is_folder="true", name="Docs")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_client_gone_before_store(self, authenticated_client, blob_storage, db_session):
        client, _ = authenticated_client

        with patch(
            "starlette.requests.Request.is_disconnected", new=AsyncMock(return_value=True)
        ):
            response = post_file(client, "notes.txt")

        assert response.status_code == 499
        assert response.json()["error"]["kind"] == "client_closed_request"
        assert blob_storage.objects == {}
        assert db_session.query(Entry).count() == 0
