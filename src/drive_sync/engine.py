# -*- coding: utf-8 -*-
"""
Drive sync engine.

DriveSyncEngine is what the export pipeline talks to. It owns the credential
provider, the Drive client, the folder cache and the sync ledger for one run,
and exposes batch upload, single-file upload, verification and persistence.

Typical use:

```
engine = DriveSyncEngine(config)          # fails fast with AuthError
report = engine.verify(config.output_dir)
stats = engine.upload_set(config.output_dir, ["2025-01-15/meeting.json"])
engine.persist()
```
"""

import os

from .auth import load_credential_provider
from .drive_api import DriveClient
from .errors import AuthError, DriveAPIError, LocalIOError, OperationCancelled, check_cancelled
from .file_handler import CONFLICT_SKIP
from .monitoring import UploadStats, VerifyReport
from .sync_state import SyncLedger
from .uploader import FolderCache, upload_file_with_structure
from .utils import is_debug_enabled

# Export result fields that name files to upload, in upload order
EXPORT_RESULT_FIELDS = (
    'metadata_path',
    'transcript_paths',
    'highlights_path',
    'markdown_path',
    'video_path',
    'audio_path',
)


def normalize_rel_path(rel_path):
    """Ledger key form of a relative path: forward slashes, no leading './'."""
    rel_path = rel_path.replace('\\', '/')
    while rel_path.startswith('./'):
        rel_path = rel_path[2:]
    return rel_path.strip('/')


def collect_result_paths(result):
    """
    Flatten an export result into the relative paths it produced.

    Args:
        result (dict): Export result with metadata_path, transcript_paths,
            highlights_path, markdown_path, video_path and audio_path keys.
            Missing keys and empty values are ignored.

    Returns:
        list: Relative paths in field order
    """
    paths = []
    for field in EXPORT_RESULT_FIELDS:
        value = result.get(field)
        if not value:
            continue
        if isinstance(value, (list, tuple)):
            paths.extend(p for p in value if p)
        else:
            paths.append(value)
    return paths


class DriveSyncEngine:
    """
    One-directional sync of local export files into a Drive folder.

    Args:
        config (Config): Folder ID, credential settings, conflict policy,
            ledger path, output directory and clean-local switch
        credential_provider: Optional pre-built provider (defaults to the one
            selected by config)
        client (DriveClient): Optional pre-built client
        session (requests.Session): Optional HTTP session shared by auth and API calls
        input_func (callable): Authorization code reader for the user OAuth2 flow

    Raises:
        AuthError: If credentials cannot be loaded or no token can be obtained
    """

    def __init__(self, config, credential_provider=None, client=None, session=None, input_func=input):
        self.config = config
        self.folder_id = config.folder_id
        self.conflict_policy = config.conflict_policy
        self.ledger_path = config.ledger_path
        self.output_dir = config.output_dir
        self.clean_local = getattr(config, 'clean_local', False)

        if credential_provider is None:
            credential_provider = load_credential_provider(
                config.credentials_path, config.service_account, config.token_path,
                session=session, input_func=input_func,
            )
        # Obtain a token now so a bad credential stops the run before any work
        credential_provider.access_token()
        self.credential_provider = credential_provider

        self.client = client or DriveClient(credential_provider, session=session)
        self.folder_cache = FolderCache(self.client, self.folder_id)

        self.ledger = SyncLedger.load(self.ledger_path)
        self.ledger.bind_folder(self.folder_id)
        if is_debug_enabled():
            print(f"[DEBUG] Loaded sync ledger with {len(self.ledger)} entries from {self.ledger_path}")

    # ====================================================================
    # Uploads
    # ====================================================================

    def upload_set(self, local_root, rel_paths, cancel_event=None):
        """
        Upload every existing file in rel_paths that the ledger says is new or changed.

        Failures are isolated per file: each is printed with its relative path,
        counted in stats.failed and kept in stats.errors, and the batch goes on.
        Entries for files already uploaded in the batch stay in the ledger.

        Args:
            local_root (str): Directory rel_paths are relative to
            rel_paths (list): Relative paths to consider; missing files are ignored
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            UploadStats: Created, updated, skipped and failed counts

        Raises:
            OperationCancelled: If cancelled; remaining paths are not processed
            AuthError: If the access token can no longer be obtained
        """
        stats = UploadStats()
        for rel_path in rel_paths:
            if not rel_path:
                continue
            check_cancelled(cancel_event)

            rel_path = normalize_rel_path(rel_path)
            local_path = os.path.join(local_root, rel_path)
            if not os.path.isfile(local_path):
                if is_debug_enabled():
                    print(f"[DEBUG] Not on disk, skipping: {rel_path}")
                continue

            try:
                upload_file_with_structure(
                    self.client, self.folder_cache, self.ledger, local_path, rel_path,
                    conflict_policy=self.conflict_policy, stats=stats,
                    cancel_event=cancel_event, clean_local=self.clean_local,
                )
            except (OperationCancelled, AuthError):
                raise
            except (DriveAPIError, LocalIOError) as e:
                print(f"[!] Drive upload failed for {rel_path}: {e}")
                stats.record_failure(rel_path, e)
        return stats

    def upload_export_result(self, local_root, result, cancel_event=None):
        """Upload the files named by one export result. See collect_result_paths()."""
        return self.upload_set(local_root, collect_result_paths(result), cancel_event=cancel_event)

    def upload_single(self, abs_path, rel_path=None, cancel_event=None):
        """
        Upload one standalone file such as a run summary or manifest.

        Args:
            abs_path (str): Path of the local file
            rel_path (str, optional): Ledger key; defaults to the path relative to
                the output directory, or the base name when the file lies outside it
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            str: Drive file ID, or '' if the file was unchanged

        Raises:
            LocalIOError, DriveAPIError, OperationCancelled, AuthError
        """
        if not rel_path:
            try:
                rel_path = os.path.relpath(abs_path, self.output_dir)
            except ValueError:
                rel_path = os.path.basename(abs_path)
            if rel_path == os.pardir or rel_path.startswith(os.pardir + os.sep):
                rel_path = os.path.basename(abs_path)
        rel_path = normalize_rel_path(rel_path)

        return upload_file_with_structure(
            self.client, self.folder_cache, self.ledger, abs_path, rel_path,
            conflict_policy=self.conflict_policy, cancel_event=cancel_event,
            clean_local=self.clean_local,
        )

    # ====================================================================
    # Verification
    # ====================================================================

    def _reupload(self, local_root, rel_path, cancel_event):
        local_path = os.path.join(local_root, rel_path)
        try:
            upload_file_with_structure(
                self.client, self.folder_cache, self.ledger, local_path, rel_path,
                conflict_policy=self.conflict_policy, cancel_event=cancel_event, force=True,
            )
        except (DriveAPIError, LocalIOError) as e:
            print(f"[!] Re-upload failed for {rel_path}: {e}")
            return False
        return True

    def verify(self, local_root, cancel_event=None):
        """
        Reconcile the ledger against the files actually present under the Drive root.

        For each ledger entry:
        - Its Drive ID is gone: deleted remotely. The stale entry is dropped and
          the local file, if still present, is uploaded again.
        - Drive reports the same MD5: in sync.
        - Drive reports a different MD5: modified remotely. Unless the conflict
          policy is 'skip', the local copy (if present) replaces it in place.
        Drive files matched by no entry are counted as untracked and left alone.

        Args:
            local_root (str): Directory ledger keys are relative to
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            VerifyReport: In-sync, re-uploaded, deleted, modified and untracked counts

        Raises:
            DriveAPIError: If the remote tree cannot be listed
        """
        report = VerifyReport()

        remote_files = self.client.list_all_files(self.folder_id, cancel_event=cancel_event)
        remaining = {remote.id: remote for remote in remote_files}

        for rel_path, entry in sorted(self.ledger.snapshot().items()):
            check_cancelled(cancel_event)
            local_path = os.path.join(local_root, rel_path)
            remote = remaining.get(entry.remote_id)

            if remote is None:
                report.deleted_remotely += 1
                if not os.path.isfile(local_path):
                    continue
                print(f"[!] Deleted from Drive, re-uploading: {rel_path}")
                self.ledger.remove(rel_path)
                if self._reupload(local_root, rel_path, cancel_event):
                    report.re_uploaded += 1
                continue

            del remaining[entry.remote_id]
            if remote.content_hash == entry.content_hash:
                report.in_sync += 1
                continue

            report.modified_remotely += 1
            if self.conflict_policy == CONFLICT_SKIP:
                if is_debug_enabled():
                    print(f"[=] Modified on Drive, keeping remote copy: {rel_path}")
                continue
            if not os.path.isfile(local_path):
                continue
            print(f"[!] Modified on Drive, restoring local copy: {rel_path}")
            if self._reupload(local_root, rel_path, cancel_event):
                report.re_uploaded += 1

        report.untracked = len(remaining)
        if report.untracked and is_debug_enabled():
            print(f"[DEBUG] {report.untracked} untracked file(s) on Drive")
        return report

    # ====================================================================
    # Persistence
    # ====================================================================

    def persist(self):
        """
        Write the ledger to disk atomically.

        Raises:
            OSError: If the ledger cannot be written
        """
        self.ledger.save(self.ledger_path)
        if is_debug_enabled():
            print(f"[DEBUG] Saved sync ledger ({len(self.ledger)} entries) to {self.ledger_path}")
