# -*- coding: utf-8 -*-
"""
Google Drive REST API operations for Drive sync.

This module talks to Drive API v3 directly with requests (no SDK). It covers
the three primitives the sync engine needs: listing a folder's children,
creating a folder, and creating or replacing a file's content with a single
multipart request. Every call takes its bearer token from the credential
provider and classifies non-2xx responses via raise_for_drive_status().
"""

import json
import uuid

import requests

from .errors import (
    LocalIOError,
    PermanentAPIError,
    TransientAPIError,
    check_cancelled,
    raise_for_drive_status,
    truncate_error_body,
)
from .monitoring import request_monitor
from .utils import is_debug_enabled, is_debug_metadata_enabled

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

REQUEST_TIMEOUT = 300  # seconds; uploads carry whole files in one request
LIST_PAGE_SIZE = 100
LIST_FIELDS = "nextPageToken, files(id, name, md5Checksum, mimeType)"


class RemoteObject:
    """
    Client-side view of a Drive file or folder. Never persisted.

    Attributes:
        id (str): Drive file ID
        name (str): File or folder name
        is_folder (bool): True for Drive folders
        content_hash (str): MD5 checksum reported by Drive (empty for folders)
    """

    def __init__(self, id, name, is_folder=False, content_hash=''):
        self.id = id
        self.name = name
        self.is_folder = is_folder
        self.content_hash = content_hash or ''

    @classmethod
    def from_api(cls, data):
        """Decode a Drive 'files' entry, ignoring fields this client does not use."""
        return cls(
            id=data.get('id', ''),
            name=data.get('name', ''),
            is_folder=data.get('mimeType') == FOLDER_MIME_TYPE,
            content_hash=data.get('md5Checksum', ''),
        )

    def __repr__(self):
        kind = 'folder' if self.is_folder else 'file'
        return f"RemoteObject({kind} {self.name!r} id={self.id!r})"


def _quote_query_value(value):
    return value.replace('\\', '\\\\').replace("'", "\\'")


def decode_json_response(response):
    """
    Decode a 2xx Drive response body as a JSON object.

    Raises:
        PermanentAPIError: If the body is not a JSON object (e.g. an HTML page
            from an intercepting proxy)
    """
    try:
        data = response.json()
    except ValueError as e:
        print(f"[!] Drive API returned an undecodable body ({response.status_code}): {e}")
        raise PermanentAPIError(response.status_code, truncate_error_body(response.text)) from e
    if not isinstance(data, dict):
        raise PermanentAPIError(response.status_code, truncate_error_body(response.text))
    return data


def build_multipart_body(metadata, content, mime_type, boundary=None):
    """
    Assemble a multipart/related body: JSON metadata part, then file bytes.

    Args:
        metadata (dict): Drive file metadata (name, parents)
        content (bytes): File content
        mime_type (str): Content type of the file part
        boundary (str): Multipart boundary; random if omitted

    Returns:
        tuple: (body: bytes, content_type: str)
    """
    boundary = boundary or f"drive-sync-{uuid.uuid4().hex}"
    delimiter = f"--{boundary}\r\n".encode('ascii')
    parts = [
        delimiter,
        b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
        json.dumps(metadata).encode('utf-8'),
        b"\r\n",
        delimiter,
        f"Content-Type: {mime_type}\r\n\r\n".encode('ascii'),
        content,
        b"\r\n",
        f"--{boundary}--\r\n".encode('ascii'),
    ]
    return b''.join(parts), f"multipart/related; boundary={boundary}"


class DriveClient:
    """
    Minimal Drive API v3 client.

    Args:
        credential_provider: Object with access_token(cancel_event=None) -> str
        session (requests.Session): HTTP session (injectable for tests)
        api_base (str): Metadata API base URL
        upload_base (str): Upload API base URL
    """

    def __init__(self, credential_provider, session=None,
                 api_base=DRIVE_API_BASE, upload_base=DRIVE_UPLOAD_BASE):
        self.credential_provider = credential_provider
        self.session = session or requests.Session()
        self.api_base = api_base
        self.upload_base = upload_base

    def _request(self, method, url, cancel_event=None, headers=None, **kwargs):
        """
        Make an authorized Drive API request.

        Returns:
            requests.Response: A 2xx response

        Raises:
            OperationCancelled: If cancel_event is set before the request
            TransientAPIError: For 429/500/503 and network failures
            PermanentAPIError: For any other non-2xx status
            AuthError: If no access token can be obtained
        """
        check_cancelled(cancel_event)
        token = self.credential_provider.access_token(cancel_event=cancel_event)

        request_headers = {'Authorization': f'Bearer {token}'}
        if headers:
            request_headers.update(headers)

        try:
            response = self.session.request(method, url, headers=request_headers,
                                            timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.exceptions.RequestException as e:
            request_monitor.record_network_error()
            print(f"[!] Network error calling Drive API: {e}")
            raise TransientAPIError(None, str(e)) from e

        request_monitor.record_response(response)
        if is_debug_metadata_enabled() and not (200 <= response.status_code < 300):
            print(f"[DEBUG] Drive API {method} {url} -> {response.status_code}: {response.text[:300]}")
        raise_for_drive_status(response)
        return response

    def list_children(self, folder_id, page_token='', cancel_event=None):
        """
        List one page of non-trashed children of a folder.

        Args:
            folder_id (str): Parent folder ID
            page_token (str): Token from a previous page, or '' for the first page
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            tuple: (list of RemoteObject, next_page_token or '')

        Note:
            Does not recurse; see list_all_files() for a full tree walk.
        """
        params = {
            'q': f"'{_quote_query_value(folder_id)}' in parents and trashed = false",
            'fields': LIST_FIELDS,
            'pageSize': LIST_PAGE_SIZE,
        }
        if page_token:
            params['pageToken'] = page_token

        response = self._request('GET', f"{self.api_base}/files", cancel_event=cancel_event, params=params)
        data = decode_json_response(response)
        objects = [RemoteObject.from_api(item) for item in data.get('files', [])]
        return objects, data.get('nextPageToken', '') or ''

    def list_all_files(self, folder_id, cancel_event=None):
        """
        Recursively list every non-folder object under a folder.

        Pages are followed to the end; subfolders are descended depth-first
        as they are encountered.

        Returns:
            list: RemoteObject entries for files only
        """
        files = []
        page_token = ''
        while True:
            children, page_token = self.list_children(folder_id, page_token, cancel_event=cancel_event)
            for child in children:
                if child.is_folder:
                    files.extend(self.list_all_files(child.id, cancel_event=cancel_event))
                else:
                    files.append(child)
            if not page_token:
                break
        return files

    def create_folder(self, name, parent_id, cancel_event=None):
        """
        Create a folder under parent_id.

        Returns:
            str: The new folder's Drive ID
        """
        metadata = {
            'name': name,
            'mimeType': FOLDER_MIME_TYPE,
            'parents': [parent_id],
        }
        response = self._request(
            'POST', f"{self.api_base}/files",
            cancel_event=cancel_event,
            params={'fields': 'id'},
            headers={'Content-Type': 'application/json'},
            data=json.dumps(metadata).encode('utf-8'),
        )
        folder_id = decode_json_response(response).get('id', '')
        if is_debug_enabled():
            print(f"[DEBUG] Folder created: {name} ({folder_id})")
        return folder_id

    def upload_file(self, local_path, file_name, mime_type, parent_id, existing_id='', cancel_event=None):
        """
        Create a file, or replace an existing file's content in place.

        Args:
            local_path (str): Path of the local file to send
            file_name (str): Name of the file on Drive
            mime_type (str): Content type of the file
            parent_id (str): Folder to create the file in (ignored for updates)
            existing_id (str): Drive ID to update; '' creates a new file
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            tuple: (drive_file_id, md5_checksum)

        Raises:
            LocalIOError: If the local file cannot be read
            TransientAPIError / PermanentAPIError: On non-2xx responses

        Note:
            Uses a single multipart request. Updating by ID keeps the file's
            identity, so sharing links and references stay valid.
        """
        try:
            with open(local_path, 'rb') as f:
                content = f.read()
        except OSError as e:
            raise LocalIOError(local_path, str(e)) from e

        metadata = {'name': file_name}
        if existing_id:
            method = 'PATCH'
            url = f"{self.upload_base}/files/{existing_id}"
        else:
            method = 'POST'
            url = f"{self.upload_base}/files"
            metadata['parents'] = [parent_id]

        body, content_type = build_multipart_body(metadata, content, mime_type)
        response = self._request(
            method, url,
            cancel_event=cancel_event,
            params={'uploadType': 'multipart', 'fields': 'id,md5Checksum'},
            headers={'Content-Type': content_type},
            data=body,
        )
        result = decode_json_response(response)
        return result.get('id', ''), result.get('md5Checksum', '')
