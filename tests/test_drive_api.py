"""
Tests for the Drive REST client: request shapes, pagination and error classification.
"""
import json
import threading
from unittest.mock import MagicMock

import pytest
import requests

from drive_sync.drive_api import (
    DRIVE_API_BASE,
    DRIVE_UPLOAD_BASE,
    FOLDER_MIME_TYPE,
    DriveClient,
    RemoteObject,
    build_multipart_body,
)
from drive_sync.errors import (
    MAX_ERROR_BODY_BYTES,
    LocalIOError,
    OperationCancelled,
    PermanentAPIError,
    TransientAPIError,
)
from drive_sync.monitoring import request_monitor

from conftest import FakeCredential


def api_response(status=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return DriveClient(FakeCredential("tok-1"), session=session)


class TestRemoteObject:

    def test_from_api_detects_folders_and_ignores_unknown_fields(self):
        folder = RemoteObject.from_api({"id": "f1", "name": "2025-01-15", "mimeType": FOLDER_MIME_TYPE, "extra": 1})
        document = RemoteObject.from_api({"id": "d1", "name": "meeting.json", "mimeType": "application/json",
                                          "md5Checksum": "abc"})

        assert folder.is_folder and folder.content_hash == ''
        assert not document.is_folder and document.content_hash == "abc"


class TestListChildren:

    def test_queries_non_trashed_children_with_bearer_token(self, client, session):
        session.request.return_value = api_response(payload={"files": [
            {"id": "a", "name": "clips", "mimeType": FOLDER_MIME_TYPE},
            {"id": "b", "name": "meeting.json", "mimeType": "application/json", "md5Checksum": "h1"},
        ], "nextPageToken": "page-2"})

        objects, next_token = client.list_children("root-1")

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert (method, url) == ("GET", f"{DRIVE_API_BASE}/files")
        assert kwargs["params"]["q"] == "'root-1' in parents and trashed = false"
        assert "md5Checksum" in kwargs["params"]["fields"]
        assert "pageToken" not in kwargs["params"]
        assert kwargs["headers"]["Authorization"] == "Bearer tok-1"
        assert [o.id for o in objects] == ["a", "b"]
        assert objects[0].is_folder
        assert next_token == "page-2"

    def test_passes_page_token(self, client, session):
        session.request.return_value = api_response(payload={"files": []})

        objects, next_token = client.list_children("root-1", "page-2")

        assert session.request.call_args[1]["params"]["pageToken"] == "page-2"
        assert objects == [] and next_token == ''

    def test_list_all_files_follows_pages_and_subfolders(self, client, session):
        session.request.side_effect = [
            api_response(payload={"files": [
                {"id": "sub", "name": "2025-01-15", "mimeType": FOLDER_MIME_TYPE},
                {"id": "top", "name": "index.md", "mimeType": "text/markdown"},
            ], "nextPageToken": "p2"}),
            api_response(payload={"files": [
                {"id": "nested", "name": "meeting.json", "mimeType": "application/json"},
            ]}),
            api_response(payload={"files": [
                {"id": "late", "name": "notes.txt", "mimeType": "text/plain"},
            ]}),
        ]

        files = client.list_all_files("root-1")

        assert sorted(f.id for f in files) == ["late", "nested", "top"]
        assert session.request.call_count == 3


class TestCreateFolder:

    def test_posts_folder_metadata(self, client, session):
        session.request.return_value = api_response(payload={"id": "new-folder"})

        folder_id = client.create_folder("2025-01-15", "root-1")

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert (method, url) == ("POST", f"{DRIVE_API_BASE}/files")
        assert json.loads(kwargs["data"]) == {
            "name": "2025-01-15", "mimeType": FOLDER_MIME_TYPE, "parents": ["root-1"],
        }
        assert folder_id == "new-folder"


class TestUploadFile:

    def test_create_sends_multipart_with_parents(self, client, session, tmp_path):
        local = tmp_path / "meeting.json"
        local.write_bytes(b'{"title": "standup"}')
        session.request.return_value = api_response(payload={"id": "file-1", "md5Checksum": "m1"})

        result = client.upload_file(str(local), "meeting.json", "application/json", "folder-1")

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert (method, url) == ("POST", f"{DRIVE_UPLOAD_BASE}/files")
        assert kwargs["params"] == {"uploadType": "multipart", "fields": "id,md5Checksum"}
        assert kwargs["headers"]["Content-Type"].startswith("multipart/related; boundary=")
        assert b'"parents": ["folder-1"]' in kwargs["data"]
        assert b'{"title": "standup"}' in kwargs["data"]
        assert result == ("file-1", "m1")

    def test_update_patches_existing_id_without_parents(self, client, session, tmp_path):
        local = tmp_path / "meeting.json"
        local.write_bytes(b"v2")
        session.request.return_value = api_response(payload={"id": "file-1", "md5Checksum": "m2"})

        client.upload_file(str(local), "meeting.json", "application/json", "folder-1", existing_id="file-1")

        method, url = session.request.call_args[0]
        assert (method, url) == ("PATCH", f"{DRIVE_UPLOAD_BASE}/files/file-1")
        assert b"parents" not in session.request.call_args[1]["data"]

    def test_missing_local_file_raises_local_io_error(self, client, session, tmp_path):
        with pytest.raises(LocalIOError):
            client.upload_file(str(tmp_path / "gone.mp4"), "gone.mp4", "video/mp4", "folder-1")
        session.request.assert_not_called()

    def test_multipart_body_layout(self):
        body, content_type = build_multipart_body({"name": "a.txt"}, b"hello", "text/plain", boundary="XYZ")

        assert content_type == "multipart/related; boundary=XYZ"
        assert body == (
            b"--XYZ\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n"
            b'{"name": "a.txt"}\r\n'
            b"--XYZ\r\nContent-Type: text/plain\r\n\r\n"
            b"hello\r\n"
            b"--XYZ--\r\n"
        )


class TestErrorClassification:

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_statuses(self, client, session, status):
        session.request.return_value = api_response(status=status, text="slow down")

        with pytest.raises(TransientAPIError) as exc_info:
            client.list_children("root-1")

        assert exc_info.value.status == status
        assert exc_info.value.transient

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 502])
    def test_permanent_statuses(self, client, session, status):
        session.request.return_value = api_response(status=status, text="nope")

        with pytest.raises(PermanentAPIError) as exc_info:
            client.create_folder("x", "root-1")

        assert exc_info.value.status == status
        assert not exc_info.value.transient

    def test_error_body_is_bounded(self, client, session):
        session.request.return_value = api_response(status=400, text="x" * (MAX_ERROR_BODY_BYTES * 2))

        with pytest.raises(PermanentAPIError) as exc_info:
            client.list_children("root-1")

        assert len(exc_info.value.body) == MAX_ERROR_BODY_BYTES

    def test_network_error_is_transient_without_status(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectionError("reset by peer")

        with pytest.raises(TransientAPIError) as exc_info:
            client.list_children("root-1")

        assert exc_info.value.status is None
        assert request_monitor.get_metrics_summary()["network_errors"] == 1

    def test_throttled_responses_are_counted(self, client, session):
        session.request.return_value = api_response(status=429)

        with pytest.raises(TransientAPIError):
            client.list_children("root-1")

        metrics = request_monitor.get_metrics_summary()
        assert metrics["total_requests"] == 1
        assert metrics["throttled_requests"] == 1

    def html_response(self):
        response = api_response(status=200, text="<html>proxy</html>")
        response.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        return response

    def test_non_json_success_body_is_permanent(self, client, session):
        session.request.return_value = self.html_response()

        with pytest.raises(PermanentAPIError) as exc_info:
            client.list_children("root-1")

        assert exc_info.value.status == 200
        assert exc_info.value.body == "<html>proxy</html>"

    def test_non_json_upload_response_is_permanent(self, client, session, tmp_path):
        path = tmp_path / "meeting.json"
        path.write_text("{}")
        session.request.return_value = self.html_response()

        with pytest.raises(PermanentAPIError):
            client.upload_file(str(path), "meeting.json", "application/json", "root-1")

    def test_non_object_json_body_is_permanent(self, client, session):
        session.request.return_value = api_response(status=200, payload=["not", "an", "object"], text='["not"]')

        with pytest.raises(PermanentAPIError):
            client.create_folder("x", "root-1")


class TestCancellation:

    def test_cancelled_event_stops_request_before_sending(self, client, session):
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelled):
            client.list_children("root-1", cancel_event=cancel_event)

        session.request.assert_not_called()
