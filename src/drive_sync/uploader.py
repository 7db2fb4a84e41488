# -*- coding: utf-8 -*-
"""
Upload operations for Drive sync.

This module handles folder hierarchy management, retried uploads and the
per-file create/update/skip flow that keeps the sync ledger current.
"""

import os
import threading
import time
from datetime import datetime, timezone

from .errors import DriveAPIError, LocalIOError, check_cancelled
from .file_handler import (
    ACTION_CREATE,
    ACTION_SKIP,
    ACTION_UPDATE,
    CONFLICT_LOCAL_WINS,
    calculate_file_hash,
    check_file_needs_update,
    detect_mime_type,
)
from .monitoring import request_monitor
from .sync_state import SyncEntry
from .utils import format_timestamp, is_debug_enabled, utc_now

MAX_UPLOAD_ATTEMPTS = 3
RETRY_BASE_DELAY = 1  # seconds; doubles after every failed attempt


class FolderCache:
    """
    Map of relative folder paths to Drive folder IDs below one root.

    The cache is seeded with the root for '' and '.', so files at the top of
    the output directory never trigger remote calls. The lock only guards
    reads and inserts; listing and creating folders happen outside it.

    Args:
        client (DriveClient): Client used to list and create folders
        root_id (str): Drive ID of the sync root folder
    """

    def __init__(self, client, root_id):
        self.client = client
        self.root_id = root_id
        self._lock = threading.Lock()
        self._folders = {'': root_id, '.': root_id}

    def _cached(self, path):
        with self._lock:
            return self._folders.get(path)

    def _find_child_folder(self, parent_id, name, cancel_event=None):
        page_token = ''
        while True:
            children, page_token = self.client.list_children(parent_id, page_token, cancel_event=cancel_event)
            for child in children:
                if child.is_folder and child.name == name:
                    return child.id
            if not page_token:
                return None

    def ensure_folder(self, rel_dir, cancel_event=None):
        """
        Resolve a relative directory to a Drive folder ID, creating folders as needed.

        Args:
            rel_dir (str): Directory relative to the sync root (e.g. '2025-01-15/clips')
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            str: Drive ID of the deepest folder in rel_dir

        Example:
            parent_id = cache.ensure_folder("2025/January/standup")
            # parent_id now names the 'standup' folder, created if missing
        """
        rel_dir = (rel_dir or '').replace('\\', '/').strip('/')
        cached = self._cached(rel_dir)
        if cached is not None:
            return cached

        parent_id = self.root_id
        current_path = ''
        for folder_name in [part for part in rel_dir.split('/') if part and part != '.']:
            current_path = f"{current_path}/{folder_name}" if current_path else folder_name

            cached = self._cached(current_path)
            if cached is not None:
                parent_id = cached
                continue

            # ============================================================
            # Look for an existing folder before creating one
            # ============================================================
            folder_id = self._find_child_folder(parent_id, folder_name, cancel_event=cancel_event)
            if folder_id:
                if is_debug_enabled():
                    print(f"[✓] Folder already exists: {current_path}")
            else:
                folder_id = self.client.create_folder(folder_name, parent_id, cancel_event=cancel_event)
                print(f"[+] Created Drive folder: {current_path}")

            with self._lock:
                # A concurrent worker may have resolved the same path first
                folder_id = self._folders.setdefault(current_path, folder_id)
            parent_id = folder_id

        return parent_id


def upload_with_retry(client, local_path, file_name, mime_type, parent_id, existing_id='',
                      cancel_event=None, max_attempts=MAX_UPLOAD_ATTEMPTS, base_delay=RETRY_BASE_DELAY):
    """
    Upload a file, retrying transient Drive API failures with exponential backoff.

    Args:
        client (DriveClient): Drive client
        local_path (str): Local file to send
        file_name (str): Name on Drive
        mime_type (str): Content type
        parent_id (str): Parent folder for new files
        existing_id (str): Drive ID to replace in place, '' to create
        cancel_event (threading.Event): Optional cancellation signal; interrupts backoff
        max_attempts (int): Total attempts including the first (default: 3)
        base_delay (float): Delay before the second attempt in seconds

    Returns:
        tuple: (drive_file_id, md5_checksum)

    Raises:
        TransientAPIError: If every attempt failed transiently
        PermanentAPIError: Immediately, without retry
        OperationCancelled: If cancelled before or between attempts
    """
    last_error = None
    for attempt in range(max_attempts):
        if attempt > 0:
            delay = base_delay * (2 ** (attempt - 1))
            print(f"[!] Retrying upload of {file_name} in {delay}s ({attempt + 1}/{max_attempts}): {last_error}")
            request_monitor.record_retry()
            if cancel_event is not None:
                cancel_event.wait(delay)
            else:
                time.sleep(delay)
            check_cancelled(cancel_event)

        try:
            return client.upload_file(local_path, file_name, mime_type, parent_id,
                                      existing_id=existing_id, cancel_event=cancel_event)
        except DriveAPIError as e:
            if not e.transient:
                raise
            last_error = e

    raise last_error


def _delete_local_copy(local_path, display_path):
    try:
        os.remove(local_path)
        if is_debug_enabled():
            print(f"[-] Removed local copy: {display_path}")
    except OSError as e:
        print(f"[!] Could not remove local copy of {display_path}: {e}")


def upload_file_with_structure(client, folder_cache, ledger, local_path, rel_path,
                               conflict_policy=CONFLICT_LOCAL_WINS, stats=None,
                               cancel_event=None, clean_local=False, force=False):
    """
    Upload one file into the Drive folder mirroring its relative directory.

    Decides create/update/skip from the ledger, resolves the parent folder,
    uploads with retry and records the new ledger entry on success.

    Args:
        client (DriveClient): Drive client
        folder_cache (FolderCache): Folder resolver for the sync root
        ledger (SyncLedger): Ledger updated on success
        local_path (str): Absolute local path
        rel_path (str): Forward-slash path relative to the output root (ledger key)
        conflict_policy (str): Conflict policy for diverged content
        stats (UploadStats, optional): Counters to update
        cancel_event (threading.Event): Optional cancellation signal
        clean_local (bool): Delete the local file after a successful upload
        force (bool): Upload even if the ledger says the content is unchanged
            (updates in place when an entry exists)

    Returns:
        str: Drive file ID, or '' if the file was skipped

    Raises:
        LocalIOError: If the file cannot be stat'ed or read
        DriveAPIError: If the folder lookup or upload failed
        OperationCancelled: If cancel_event was set
    """
    check_cancelled(cancel_event)
    entry = ledger.get(rel_path)
    if force:
        action = ACTION_UPDATE if entry is not None else ACTION_CREATE
        local_hash = None
    else:
        action, local_hash = check_file_needs_update(local_path, entry, conflict_policy, display_path=rel_path)

    if action == ACTION_SKIP:
        if stats is not None:
            stats.skipped += 1
        return ''

    try:
        info = os.stat(local_path)
    except OSError as e:
        raise LocalIOError(local_path, str(e)) from e

    rel_dir = os.path.dirname(rel_path)
    parent_id = folder_cache.ensure_folder(rel_dir, cancel_event=cancel_event)

    existing_id = entry.remote_id if action == ACTION_UPDATE and entry is not None else ''
    file_id, remote_hash = upload_with_retry(
        client, local_path, os.path.basename(local_path), detect_mime_type(local_path),
        parent_id, existing_id=existing_id, cancel_event=cancel_event,
    )

    if not remote_hash:
        remote_hash = local_hash or calculate_file_hash(local_path)

    ledger.set(rel_path, SyncEntry(
        remote_id=file_id,
        content_hash=remote_hash,
        size=info.st_size,
        local_modified_at=format_timestamp(datetime.fromtimestamp(info.st_mtime, tz=timezone.utc)),
        uploaded_at=format_timestamp(utc_now()),
    ))

    if action == ACTION_UPDATE:
        print(f"[→] Updated on Drive: {rel_path}")
        if stats is not None:
            stats.updated += 1
    else:
        print(f"[✓] Uploaded to Drive: {rel_path}")
        if stats is not None:
            stats.created += 1
    if stats is not None:
        stats.bytes_uploaded += info.st_size

    if clean_local:
        _delete_local_copy(local_path, rel_path)

    return file_id
