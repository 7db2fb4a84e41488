# -*- coding: utf-8 -*-
"""
Shared utility functions for Drive sync operations.

This module provides common helper functions used across multiple modules.
"""

import os
import stat
from datetime import datetime, timezone


def is_debug_enabled():
    """
    Check if debug output is enabled via the DEBUG environment variable.

    Returns:
        bool: True if debug output is enabled, False otherwise
    """
    return os.environ.get('DEBUG', 'false').lower() in ('true', '1', 'yes')


def is_debug_metadata_enabled():
    """
    Check if wire-level debug output is enabled via DEBUG_METADATA.

    Returns:
        bool: True if request/response details should be printed
    """
    return os.environ.get('DEBUG_METADATA', 'false').lower() in ('true', '1', 'yes')


def ensure_dir_private(dir_path, tighten_existing=True):
    """
    Create a directory (and parents) readable only by the owner.

    Args:
        dir_path (str): Directory to create; '' is a no-op
        tighten_existing (bool): Also chmod an existing directory to 0700
    """
    if dir_path:
        os.makedirs(dir_path, mode=0o700, exist_ok=True)
        # makedirs only applies the mode to directories it creates
        if tighten_existing:
            os.chmod(dir_path, 0o700)


def write_private_file(path, data):
    """
    Write bytes to a file with owner-only (0600) permissions.

    Args:
        path (str): Destination file path
        data (bytes): Content to write

    Note:
        The mode is applied at creation time and re-applied afterwards, so an
        existing file with wider permissions is tightened as well.
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


def utc_now():
    return datetime.now(timezone.utc)


def format_timestamp(value):
    """Format a datetime as an RFC 3339 UTC string with second precision."""
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_timestamp(value):
    """
    Parse an RFC 3339 timestamp produced by format_timestamp().

    Args:
        value (str): Timestamp string such as '2025-01-15T10:01:00Z'

    Returns:
        datetime: Timezone-aware datetime, or None if the value is empty or malformed
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
