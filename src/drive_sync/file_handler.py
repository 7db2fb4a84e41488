# -*- coding: utf-8 -*-
"""
File handling operations for Drive sync.

This module provides functions for file hashing, upload decisions, MIME type
detection, exclusion and discovery of local files.
"""

import fnmatch
import hashlib
import mimetypes
import os
from datetime import datetime, timezone

from .errors import LocalIOError
from .utils import is_debug_enabled, parse_timestamp

# Conflict policies, selected once per run
CONFLICT_LOCAL_WINS = 'local-wins'
CONFLICT_SKIP = 'skip'
CONFLICT_NEWER_WINS = 'newer-wins'
CONFLICT_POLICIES = (CONFLICT_LOCAL_WINS, CONFLICT_SKIP, CONFLICT_NEWER_WINS)

# Upload decisions
ACTION_CREATE = 'create'
ACTION_UPDATE = 'update'
ACTION_SKIP = 'skip'

# Content types for the files the export pipeline produces. Anything else
# falls back to the mimetypes registry, then to a generic binary type.
MIME_TYPES = {
    '.json': 'application/json',
    '.txt': 'text/plain',
    '.md': 'text/markdown',
    '.mp4': 'video/mp4',
    '.m4a': 'audio/mp4',
    '.webm': 'video/webm',
    '.url': 'text/plain',
}
DEFAULT_MIME_TYPE = 'application/octet-stream'


def get_optimal_chunk_size(file_size):
    """
    Calculate optimal chunk size based on file size for efficient hashing.

    Larger files benefit from larger chunks to reduce I/O overhead,
    while smaller files use smaller chunks to avoid memory waste.

    Args:
        file_size (int): Size of the file in bytes

    Returns:
        int: Optimal chunk size in bytes for reading the file
    """
    if file_size < 1 * 1024 * 1024:  # < 1MB
        return 64 * 1024
    elif file_size < 100 * 1024 * 1024:  # < 100MB
        return 1 * 1024 * 1024
    else:  # recordings can run to several GB
        return 8 * 1024 * 1024


def calculate_file_hash(file_path):
    """
    Calculate the MD5 checksum of a file.

    MD5 is what Drive reports as md5Checksum for uploaded content, so local
    and remote hashes can be compared directly.

    Args:
        file_path (str): Path to the file to hash

    Returns:
        str: Lowercase hexadecimal MD5 digest (32 characters)

    Raises:
        LocalIOError: If the file is missing or unreadable
    """
    try:
        chunk_size = get_optimal_chunk_size(os.path.getsize(file_path))
        hasher = hashlib.md5()
        with open(file_path, 'rb') as f:
            while chunk := f.read(chunk_size):
                hasher.update(chunk)
        return hasher.hexdigest()
    except OSError as e:
        raise LocalIOError(file_path, str(e)) from e


def _local_is_newer(local_path, entry):
    """True if the file's mtime is strictly after the entry's upload time."""
    uploaded_at = parse_timestamp(entry.uploaded_at)
    if uploaded_at is None:
        return True
    try:
        mtime = os.path.getmtime(local_path)
    except OSError:
        return True
    return datetime.fromtimestamp(mtime, tz=timezone.utc) > uploaded_at


def check_file_needs_update(local_path, entry, conflict_policy=CONFLICT_LOCAL_WINS, display_path=None):
    """
    Decide whether a local file has to be created, updated or skipped on Drive.

    The decision only looks at the ledger entry; no network calls are made.

    1. No ledger entry: create.
    2. Entry hash equals the local hash: skip.
    3. Otherwise the content diverged and the conflict policy decides:
       local-wins updates, skip skips, newer-wins updates only when the local
       mtime is strictly after the entry's uploaded_at.

    Args:
        local_path (str): Absolute path of the local file
        entry (SyncEntry): Ledger entry for the file, or None
        conflict_policy (str): One of CONFLICT_POLICIES
        display_path (str, optional): Relative path for console output

    Returns:
        tuple: (action: str, local_hash: str or None)
            - action: ACTION_CREATE, ACTION_UPDATE or ACTION_SKIP
            - local_hash: MD5 of the file, None if it could not be computed

    Note:
        A hash that cannot be computed cannot prove the file is unchanged, so
        hashing failures fall back to create.
    """
    display_name = display_path or os.path.basename(local_path)

    try:
        local_hash = calculate_file_hash(local_path)
    except LocalIOError as e:
        print(f"[!] Could not hash {display_name}, will create: {e.reason}")
        return ACTION_CREATE, None

    if entry is None:
        if is_debug_enabled():
            print(f"[+] New file to upload: {display_name}")
        return ACTION_CREATE, local_hash

    if entry.content_hash == local_hash:
        if is_debug_enabled():
            print(f"[=] File unchanged (hash match): {display_name}")
        return ACTION_SKIP, local_hash

    if conflict_policy == CONFLICT_SKIP:
        if is_debug_enabled():
            print(f"[=] File changed but conflict policy is skip: {display_name}")
        return ACTION_SKIP, local_hash

    if conflict_policy == CONFLICT_NEWER_WINS and not _local_is_newer(local_path, entry):
        if is_debug_enabled():
            print(f"[=] File changed but not newer than last upload: {display_name}")
        return ACTION_SKIP, local_hash

    if is_debug_enabled():
        print(f"[*] File changed (hash mismatch): {display_name}")
    return ACTION_UPDATE, local_hash


def detect_mime_type(path):
    """
    Detect the content type of a file from its extension.

    Args:
        path (str): File path or name

    Returns:
        str: MIME type, 'application/octet-stream' when unknown
    """
    ext = os.path.splitext(path)[1].lower()
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file{ext}")
    return guessed or DEFAULT_MIME_TYPE


def should_exclude_path(path, exclude_patterns):
    """
    Check if a file or directory path should be excluded based on exclusion patterns.

    Args:
        path (str): File or directory path to check (can be absolute or relative)
        exclude_patterns (list): Exclusion patterns (e.g., ['*.tmp', '*.part', '.DS_Store'])

    Returns:
        bool: True if path should be excluded, False otherwise

    Pattern Matching:
        - Exact name match anywhere in the path: '.DS_Store', 'partial'
        - Wildcard patterns against the basename or full path: '*.tmp', 'drafts/*'
        - Extension only: 'tmp' (treated as '*.tmp')

    Examples:
        >>> should_exclude_path('2025-01-15/video.mp4.part', ['*.part'])
        True
        >>> should_exclude_path('drafts/notes.md', ['drafts'])
        True
        >>> should_exclude_path('2025-01-15/meeting.json', ['*.tmp'])
        False
    """
    if not exclude_patterns:
        return False

    normalized_path = path.replace('\\', '/')
    basename = os.path.basename(normalized_path)
    path_components = normalized_path.split('/')

    for pattern in exclude_patterns:
        if fnmatch.fnmatch(basename, pattern):
            return True

        # Plain names also match directory components
        if '*' not in pattern and '?' not in pattern and '[' not in pattern:
            if pattern in path_components:
                return True

        if fnmatch.fnmatch(normalized_path, pattern):
            return True

        if not pattern.startswith('*') and not pattern.startswith('.'):
            if fnmatch.fnmatch(basename, f'*.{pattern}'):
                return True

    return False


def discover_files(root_dir, exclude_patterns=None, skip_dirs=None):
    """
    Walk a local directory and collect files to sync.

    Args:
        root_dir (str): Local root whose relative paths become ledger keys
        exclude_patterns (list, optional): Patterns passed to should_exclude_path()
        skip_dirs (list, optional): Absolute directories never descended into
            (the session directory when it lives under the output root)

    Returns:
        list: Sorted forward-slash relative paths of regular files
    """
    skip = {os.path.abspath(d) for d in (skip_dirs or [])}
    rel_paths = []
    excluded = 0

    for dirpath, dirnames, filenames in os.walk(root_dir):
        kept_dirs = []
        for name in dirnames:
            abs_dir = os.path.abspath(os.path.join(dirpath, name))
            rel_dir = os.path.relpath(abs_dir, root_dir).replace(os.sep, '/')
            if abs_dir in skip or should_exclude_path(rel_dir, exclude_patterns):
                excluded += 1
                continue
            kept_dirs.append(name)
        dirnames[:] = sorted(kept_dirs)

        for name in filenames:
            full_path = os.path.join(dirpath, name)
            if not os.path.isfile(full_path):
                continue
            rel_path = os.path.relpath(full_path, root_dir).replace(os.sep, '/')
            if should_exclude_path(rel_path, exclude_patterns):
                excluded += 1
                if is_debug_enabled():
                    print(f"[EXCLUDE] {rel_path}")
                continue
            rel_paths.append(rel_path)

    if excluded and is_debug_enabled():
        print(f"[EXCLUDE] Skipped {excluded} excluded path(s)")
    return sorted(rel_paths)
