# -*- coding: utf-8 -*-
"""
Drive sync: one-directional, hash-driven replication of a local export
directory into a Google Drive folder.
"""

from .config import Config, parse_config
from .engine import DriveSyncEngine, collect_result_paths
from .errors import (
    AuthError,
    DriveAPIError,
    DriveSyncError,
    LedgerCorruptionError,
    LocalIOError,
    OperationCancelled,
    PermanentAPIError,
    TransientAPIError,
)
from .file_handler import CONFLICT_LOCAL_WINS, CONFLICT_NEWER_WINS, CONFLICT_POLICIES, CONFLICT_SKIP
from .monitoring import UploadStats, VerifyReport
from .sync_state import SyncEntry, SyncLedger

__all__ = [
    'AuthError',
    'CONFLICT_LOCAL_WINS',
    'CONFLICT_NEWER_WINS',
    'CONFLICT_POLICIES',
    'CONFLICT_SKIP',
    'Config',
    'DriveAPIError',
    'DriveSyncEngine',
    'DriveSyncError',
    'LedgerCorruptionError',
    'LocalIOError',
    'OperationCancelled',
    'PermanentAPIError',
    'SyncEntry',
    'SyncLedger',
    'TransientAPIError',
    'UploadStats',
    'VerifyReport',
    'collect_result_paths',
    'parse_config',
]
