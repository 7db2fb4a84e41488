#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Google Drive Sync for Recording Exports
=======================================

PURPOSE:
    Pushes a local directory of exported recordings (metadata JSON, transcripts,
    highlights, markdown summaries, video and audio) into a Google Drive folder,
    uploading only what is new or changed since the last run.

SYNOPSIS:
    python main.py [output_dir] [verify]

PARAMETERS:
    [output_dir]
        Local directory to sync. Relative paths below it become Drive folders
        and sync ledger keys.
        Default: GRAIN_OUTPUT_DIR, or './recordings'
        `Position`: 1

    [verify]
        'true' to reconcile the ledger against Drive before uploading. Files
        deleted or modified on Drive are restored from the local copy (unless
        the conflict policy is 'skip').
        Default: GRAIN_GDRIVE_VERIFY, or 'false'
        `Position`: 2

ENVIRONMENT:
    GRAIN_GDRIVE_FOLDER_ID      Drive folder ID to sync into (required)
    GRAIN_GDRIVE_CREDENTIALS    Service account key or OAuth client JSON (required)
    GRAIN_GDRIVE_SERVICE_ACCT   'true' to use the service account flow
    GRAIN_GDRIVE_TOKEN          Cached user token path
    GRAIN_GDRIVE_CONFLICT       local-wins (default), skip or newer-wins
    GRAIN_GDRIVE_CLEAN_LOCAL    'true' to delete local files after upload
    GRAIN_GDRIVE_WORKERS        Concurrent upload workers (default: 4)
    GRAIN_SESSION_DIR           Holds sync-state.json (default: ./.grain-session)
    GRAIN_EXCLUDE_PATTERNS      Comma-separated exclusion patterns
    DEBUG, DEBUG_METADATA       Verbose console output

    Values may also come from a .env file in the working directory.

CONFLICT POLICIES:
    local-wins  Local content replaces Drive content whenever they differ
    skip        Files changed since the last upload are left alone on Drive
    newer-wins  Replace only when the local file is newer than the last upload

EXIT CODES:
    0  All files synced (or unchanged)
    1  Configuration or authentication failure, ledger write failure,
       cancellation, or at least one file failed to upload
"""

# ====================================
# IMPORTS
# ====================================

import os
import signal
import sys
import threading

from drive_sync.config import parse_config
from drive_sync.engine import DriveSyncEngine
from drive_sync.errors import AuthError, DriveAPIError, OperationCancelled
from drive_sync.file_handler import discover_files
from drive_sync.monitoring import print_request_summary
from drive_sync.parallel_uploader import ParallelUploader
from drive_sync.utils import is_debug_enabled


# ====================================================================
# SIGNAL HANDLING
# ====================================================================

def install_signal_handlers(cancel_event):
    """
    Set cancel_event on SIGINT/SIGTERM so in-flight work winds down.

    A second signal falls through to the default handler.
    """
    def handle_signal(signum, frame):
        if cancel_event.is_set():
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)
            return
        print(f"\n[!] Received signal {signum}, cancelling remaining uploads...")
        cancel_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)


# ====================================================================
# SUMMARY
# ====================================================================

def print_summary(stats, total_files, report=None):
    """
    Print final summary report.

    Args:
        stats (UploadStats): Merged upload statistics
        total_files (int): Number of files discovered
        report (VerifyReport, optional): Verification outcome, if verify ran
    """
    print("\n" + "="*60)
    print("[✓] DRIVE SYNC COMPLETED")
    print("="*60)
    stats.print_summary(total_files)

    total_processed = stats.created + stats.updated + stats.skipped
    if total_processed > 0:
        efficiency = (stats.skipped / total_processed) * 100
        print(f"\n[EFFICIENCY] {efficiency:.1f}% of files were already up-to-date")

    if report is not None:
        print()
        report.print_summary()

    if stats.errors:
        print(f"\n[!] Failed files:")
        for rel_path, error in stats.errors:
            print(f"   - {rel_path}: {str(error)[:200]}")
    print("="*60)

    print_request_summary()


def persist_ledger(engine, ledger_path):
    """
    Save the sync ledger, reporting failure instead of raising.

    Returns:
        bool: True if the ledger was written
    """
    try:
        engine.persist()
    except OSError as e:
        print(f"[Error] Could not save sync ledger {ledger_path}: {e}")
        return False
    return True


# ====================================================================
# MAIN
# ====================================================================

def main():
    """
    Main execution function that orchestrates a Drive sync run.

    Process:
        1. Parse configuration from .env, environment and arguments
        2. Authenticate and load the sync ledger (fails fast)
        3. Optionally verify the ledger against Drive
        4. Discover local files and upload them in parallel
        5. Persist the ledger once
        6. Print summary statistics and exit with the appropriate code
    """
    try:
        config = parse_config()
    except ValueError as e:
        print(f"[Error] Invalid configuration: {e}")
        sys.exit(1)

    print("\n" + "="*60)
    print("[✓] DRIVE SYNC CONFIGURATION")
    print("="*60)
    print(f"Output Directory:          {config.output_dir}")
    print(f"Drive Folder ID:           {config.folder_id}")
    print(f"Conflict Policy:           {config.conflict_policy}")
    print(f"Upload Workers:            {config.max_workers}")
    print(f"Verify Before Upload:      {config.verify}")
    print(f"Clean Local After Upload:  {config.clean_local}")
    print("="*60 + "\n")

    if config.exclude_patterns_list:
        print(f"[=] Exclusion patterns enabled: {', '.join(config.exclude_patterns_list)}")

    if not os.path.isdir(config.output_dir):
        print(f"[Error] Output directory does not exist: {config.output_dir}")
        sys.exit(1)

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)

    print("[*] Connecting to Google Drive...")
    try:
        engine = DriveSyncEngine(config)
    except AuthError as e:
        print(f"[Error] Drive authentication failed: {e}")
        print("[!] Ensure that:")
        print("    - GRAIN_GDRIVE_CREDENTIALS points to a valid credential file")
        print("    - GRAIN_GDRIVE_SERVICE_ACCT matches the credential type")
        print("    - The cached token has not been revoked")
        sys.exit(1)
    print(f"[✓] Authenticated, syncing into Drive folder {config.folder_id}")

    exit_code = 0
    report = None
    stats = None
    local_files = []

    try:
        if config.verify:
            print("[*] Verifying sync state against Drive...")
            try:
                report = engine.verify(config.output_dir, cancel_event=cancel_event)
            except DriveAPIError as e:
                print(f"[!] Verification failed, continuing with upload: {e}")

        local_files = discover_files(
            config.output_dir,
            config.exclude_patterns_list,
            skip_dirs=[config.session_dir],
        )
        print(f"[*] Found {len(local_files)} files to process")

        uploader = ParallelUploader(engine, max_workers=config.max_workers)
        stats = uploader.process_files(config.output_dir, local_files, cancel_event=cancel_event)
    except OperationCancelled:
        print("[!] Sync cancelled, saving progress")
        exit_code = 1
    except AuthError as e:
        print(f"[Error] Drive authentication failed during upload: {e}")
        exit_code = 1
    finally:
        # Runs on unexpected errors too; every completed upload is recorded in the ledger
        ledger_saved = persist_ledger(engine, config.ledger_path)

    if not ledger_saved:
        sys.exit(1)

    if stats is not None:
        print_summary(stats, len(local_files), report)
        if stats.failed > 0:
            print(f"[!] {stats.failed} file(s) failed to upload")
            exit_code = 1
    elif report is not None:
        report.print_summary()

    if exit_code:
        sys.exit(exit_code)

    if is_debug_enabled():
        print("[✓] All files processed successfully")


if __name__ == "__main__":
    main()
