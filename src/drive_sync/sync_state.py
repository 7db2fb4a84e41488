# -*- coding: utf-8 -*-
"""
Sync ledger persistence for Drive sync.

The ledger records, per local relative path, what was last uploaded to Drive:

```
{
    "version": 1,
    "last_sync": "2025-01-15T10:01:00Z",
    "folder_id": "1AbC...",
    "files": {
        "2025-01-15/meeting.json": {
            "drive_file_id": "1XyZ...",
            "md5_checksum": "5eb63bbbe01eeed093cb22bb8f5acdc3",
            "size": 4096,
            "local_mod_time": "2025-01-15T10:00:00Z",
            "uploaded_at": "2025-01-15T10:01:00Z"
        }
    }
}
```

It is the only record of remote state between runs. Saves go through a
temporary sibling file and an atomic rename, so the file on disk is always
either the previous complete document or the new one.
"""

import json
import os
import threading

from .errors import LedgerCorruptionError
from .utils import ensure_dir_private, format_timestamp, utc_now, write_private_file

LEDGER_FILENAME = "sync-state.json"
SCHEMA_VERSION = 1


class SyncEntry:
    """
    Last-known-synced state of one file.

    Attributes:
        remote_id (str): Drive file ID, used to update in place
        content_hash (str): MD5 of the content at upload time
        size (int): Size in bytes at upload time
        local_modified_at (str): Local mtime at upload time (RFC 3339 UTC)
        uploaded_at (str): When the upload finished (RFC 3339 UTC)
    """

    def __init__(self, remote_id, content_hash, size=0, local_modified_at='', uploaded_at=''):
        self.remote_id = remote_id
        self.content_hash = content_hash
        self.size = size
        self.local_modified_at = local_modified_at
        self.uploaded_at = uploaded_at

    def to_dict(self):
        return {
            'drive_file_id': self.remote_id,
            'md5_checksum': self.content_hash,
            'size': self.size,
            'local_mod_time': self.local_modified_at,
            'uploaded_at': self.uploaded_at,
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise LedgerCorruptionError(f"ledger entry is not an object: {data!r}")
        try:
            size = int(data.get('size', 0) or 0)
        except (TypeError, ValueError) as e:
            raise LedgerCorruptionError(f"ledger entry has invalid size: {e}") from e
        return cls(
            remote_id=str(data.get('drive_file_id', '') or ''),
            content_hash=str(data.get('md5_checksum', '') or ''),
            size=size,
            local_modified_at=str(data.get('local_mod_time', '') or ''),
            uploaded_at=str(data.get('uploaded_at', '') or ''),
        )

    def __eq__(self, other):
        if not isinstance(other, SyncEntry):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"SyncEntry(remote_id={self.remote_id!r}, content_hash={self.content_hash!r})"


class SyncLedger:
    """
    In-memory ledger with a lock around its entry map.

    Attributes:
        version (int): Schema version
        last_sync (str): Timestamp of the last save (informational)
        folder_id (str): Drive root folder the entries belong to
        entries (dict): Relative path -> SyncEntry
    """

    def __init__(self, folder_id='', entries=None, last_sync='', version=SCHEMA_VERSION):
        self.version = version
        self.last_sync = last_sync
        self.folder_id = folder_id
        self.entries = dict(entries or {})
        self.lock = threading.Lock()

    # -- Entry access ---------------------------------------------------------

    def get(self, rel_path):
        with self.lock:
            return self.entries.get(rel_path)

    def set(self, rel_path, entry):
        with self.lock:
            self.entries[rel_path] = entry

    def remove(self, rel_path):
        with self.lock:
            return self.entries.pop(rel_path, None)

    def snapshot(self):
        """Copy of the entry map, safe to iterate while uploads mutate the ledger."""
        with self.lock:
            return dict(self.entries)

    def __len__(self):
        with self.lock:
            return len(self.entries)

    def bind_folder(self, folder_id):
        """
        Attach the ledger to a Drive root folder.

        If the ledger remembers a different folder, its entries describe an
        unrelated remote tree and are dropped.

        Returns:
            bool: True if entries were discarded
        """
        reset = False
        with self.lock:
            if self.folder_id and self.folder_id != folder_id:
                print(f"[!] Drive folder ID changed, resetting sync state "
                      f"(old={self.folder_id}, new={folder_id}, dropped {len(self.entries)} entries)")
                self.entries = {}
                reset = True
            self.folder_id = folder_id
        return reset

    # -- Serialization --------------------------------------------------------

    def to_dict(self):
        with self.lock:
            files = {path: entry.to_dict() for path, entry in sorted(self.entries.items())}
        return {
            'version': self.version,
            'last_sync': self.last_sync,
            'folder_id': self.folder_id,
            'files': files,
        }

    @classmethod
    def from_dict(cls, data):
        """
        Build a ledger from its JSON document.

        Raises:
            LedgerCorruptionError: If the document does not have the ledger shape
        """
        if not isinstance(data, dict):
            raise LedgerCorruptionError("ledger document is not a JSON object")
        raw_files = data.get('files') or {}
        if not isinstance(raw_files, dict):
            raise LedgerCorruptionError("ledger 'files' is not an object")
        entries = {str(path): SyncEntry.from_dict(entry) for path, entry in raw_files.items()}
        try:
            version = int(data.get('version', SCHEMA_VERSION) or SCHEMA_VERSION)
        except (TypeError, ValueError) as e:
            raise LedgerCorruptionError(f"ledger has invalid version: {e}") from e
        return cls(
            folder_id=str(data.get('folder_id', '') or ''),
            entries=entries,
            last_sync=str(data.get('last_sync', '') or ''),
            version=version,
        )

    @classmethod
    def load(cls, path):
        """
        Load the ledger from disk.

        Args:
            path (str): Ledger file path

        Returns:
            SyncLedger: The stored ledger; an empty one if the file is missing,
            unreadable or corrupt (corruption is reported as a warning)
        """
        if not os.path.exists(path):
            return cls()
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = f.read()
            try:
                data = json.loads(raw)
            except ValueError as e:
                raise LedgerCorruptionError(f"invalid JSON: {e}") from e
            return cls.from_dict(data)
        except LedgerCorruptionError as e:
            print(f"[!] Sync ledger {path} is corrupt, starting with an empty ledger: {e}")
            return cls()
        except OSError as e:
            print(f"[!] Could not read sync ledger {path}, starting with an empty ledger: {e}")
            return cls()

    def save(self, path):
        """
        Write the ledger atomically with 0600 permissions.

        Args:
            path (str): Ledger file path

        Raises:
            OSError: If the temporary file cannot be written or renamed
        """
        ensure_dir_private(os.path.dirname(path))
        self.last_sync = format_timestamp(utc_now())
        data = json.dumps(self.to_dict(), indent=2).encode('utf-8')

        tmp_path = f"{path}.tmp"
        try:
            write_private_file(tmp_path, data)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
