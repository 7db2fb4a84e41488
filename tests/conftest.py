"""
Shared fixtures for the Drive sync test suite.

FakeDriveClient keeps an in-memory Drive tree and counts every call, so tests
can assert on exactly which remote operations a sync performed.
"""
import hashlib
import threading

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from drive_sync.config import Config
from drive_sync.drive_api import RemoteObject
from drive_sync.errors import PermanentAPIError
from drive_sync.monitoring import request_monitor


ROOT_FOLDER_ID = "root-folder"


class FakeCredential:
    """Credential provider returning a fixed token."""

    def __init__(self, token="test-access-token"):
        self.token = token
        self.calls = 0

    def access_token(self, cancel_event=None):
        self.calls += 1
        return self.token


class FakeDriveClient:
    """In-memory stand-in for DriveClient."""

    def __init__(self, root_id=ROOT_FOLDER_ID):
        self.root_id = root_id
        self.objects = {}
        self.calls = {'list_children': 0, 'create_folder': 0, 'upload_file': 0}
        self.upload_log = []
        self.fail_names = {}
        self._lock = threading.Lock()
        self._next_id = 0

    def _new_id(self, prefix):
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def add_remote_file(self, name, parent_id=None, md5="0" * 32):
        with self._lock:
            file_id = self._new_id("file")
            self.objects[file_id] = {
                'name': name, 'parent': parent_id or self.root_id,
                'is_folder': False, 'md5': md5,
            }
        return file_id

    def list_children(self, folder_id, page_token='', cancel_event=None):
        with self._lock:
            self.calls['list_children'] += 1
            children = [
                RemoteObject(object_id, obj['name'], obj['is_folder'], obj['md5'])
                for object_id, obj in self.objects.items()
                if obj['parent'] == folder_id
            ]
        return children, ''

    def list_all_files(self, folder_id, cancel_event=None):
        files = []
        children, _ = self.list_children(folder_id)
        for child in children:
            if child.is_folder:
                files.extend(self.list_all_files(child.id))
            else:
                files.append(child)
        return files

    def create_folder(self, name, parent_id, cancel_event=None):
        with self._lock:
            self.calls['create_folder'] += 1
            folder_id = self._new_id("folder")
            self.objects[folder_id] = {'name': name, 'parent': parent_id, 'is_folder': True, 'md5': ''}
        return folder_id

    def upload_file(self, local_path, file_name, mime_type, parent_id, existing_id='', cancel_event=None):
        with open(local_path, 'rb') as f:
            md5 = hashlib.md5(f.read()).hexdigest()
        with self._lock:
            self.calls['upload_file'] += 1
            self.upload_log.append((file_name, existing_id))
            if file_name in self.fail_names:
                raise self.fail_names[file_name]
            if existing_id:
                if existing_id not in self.objects:
                    raise PermanentAPIError(404, "File not found")
                self.objects[existing_id]['md5'] = md5
                return existing_id, md5
            file_id = self._new_id("file")
            self.objects[file_id] = {'name': file_name, 'parent': parent_id, 'is_folder': False, 'md5': md5}
        return file_id, md5

    def path_of(self, object_id):
        parts = []
        while object_id != self.root_id:
            obj = self.objects[object_id]
            parts.append(obj['name'])
            object_id = obj['parent']
        return '/'.join(reversed(parts))

    def file_paths(self):
        return sorted(self.path_of(oid) for oid, obj in self.objects.items() if not obj['is_folder'])


def write_file(root, rel_path, content):
    """Create a file below root, making parent directories."""
    path = root / rel_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode('utf-8')
    path.write_bytes(content)
    return path


@pytest.fixture(autouse=True)
def reset_request_monitor():
    """Every test starts with fresh request counters."""
    request_monitor.reset()
    yield
    request_monitor.reset()


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def service_account_info(rsa_private_key):
    pem = rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode('ascii')
    return {
        "type": "service_account",
        "client_email": "sync-bot@example-project.iam.gserviceaccount.com",
        "private_key": pem,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture
def output_dir(tmp_path):
    path = tmp_path / "recordings"
    path.mkdir()
    return path


@pytest.fixture
def make_config(tmp_path, output_dir):
    """Build a Config from an explicit environment mapping."""
    def _make(**overrides):
        environ = {
            'GRAIN_OUTPUT_DIR': str(output_dir),
            'GRAIN_SESSION_DIR': str(tmp_path / "session"),
            'GRAIN_GDRIVE_FOLDER_ID': ROOT_FOLDER_ID,
            'GRAIN_GDRIVE_CREDENTIALS': str(tmp_path / "credentials.json"),
        }
        environ.update(overrides)
        return Config(argv=[], environ=environ)
    return _make


@pytest.fixture
def fake_client():
    return FakeDriveClient()


@pytest.fixture
def fake_credential():
    return FakeCredential()
