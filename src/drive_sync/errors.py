# -*- coding: utf-8 -*-
"""
Error taxonomy for Drive sync.

Only AuthError and ledger save failures are meant to end a run. Everything
else is recorded against the file that caused it and the run continues.
"""

# Responses worth retrying: rate limiting and temporary server unavailability
TRANSIENT_STATUS_CODES = (429, 500, 503)

# Upper bound for error bodies kept in exceptions and console output
MAX_ERROR_BODY_BYTES = 64 * 1024


class DriveSyncError(Exception):
    """Base class for all Drive sync failures."""


class AuthError(DriveSyncError):
    """
    Credentials could not be loaded or a token could not be obtained.

    Attributes:
        status (int): HTTP status of the token endpoint response, if any
    """

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class DriveAPIError(DriveSyncError):
    """
    Non-2xx response from the Drive API.

    Attributes:
        status (int): HTTP status code (None for network-level failures)
        body (str): Response body, truncated to MAX_ERROR_BODY_BYTES
    """

    transient = False

    def __init__(self, status, body=''):
        self.status = status
        self.body = body or ''
        if status is None:
            message = f"drive API error: {self.body}"
        else:
            message = f"drive API error ({status}): {self.body}"
        super().__init__(message)


class TransientAPIError(DriveAPIError):
    """Rate limited, server error or network failure; safe to retry."""

    transient = True


class PermanentAPIError(DriveAPIError):
    """Any other non-2xx response; retrying will not help."""


class LocalIOError(DriveSyncError):
    """A local file was missing or unreadable during hashing or upload."""

    def __init__(self, path, reason):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class LedgerCorruptionError(DriveSyncError):
    """The sync ledger on disk could not be parsed. Never leaves SyncLedger.load()."""


class OperationCancelled(DriveSyncError):
    """The caller's cancel event was set while work was pending."""


def truncate_error_body(text):
    """Bound an error body to MAX_ERROR_BODY_BYTES of UTF-8."""
    if not text:
        return ''
    encoded = text.encode('utf-8', errors='replace')
    if len(encoded) <= MAX_ERROR_BODY_BYTES:
        return text
    return encoded[:MAX_ERROR_BODY_BYTES].decode('utf-8', errors='ignore')


def raise_for_drive_status(response):
    """
    Raise the matching DriveAPIError subclass for a non-2xx response.

    Args:
        response (requests.Response): Response returned by the Drive API

    Raises:
        TransientAPIError: For 429, 500 and 503
        PermanentAPIError: For any other non-2xx status
    """
    if 200 <= response.status_code < 300:
        return
    body = truncate_error_body(response.text)
    if response.status_code in TRANSIENT_STATUS_CODES:
        raise TransientAPIError(response.status_code, body)
    raise PermanentAPIError(response.status_code, body)


def check_cancelled(cancel_event):
    """Raise OperationCancelled if the given event has been set."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled("operation cancelled")
