# -*- coding: utf-8 -*-
"""
Request monitoring and statistics tracking for Drive sync.

This module provides classes for tracking Drive API request outcomes, upload
statistics and reconciliation reports, plus the console summaries printed at
the end of a run.
"""

import threading

from .utils import is_debug_metadata_enabled


class RequestMonitor:
    """
    Track Drive API request outcomes for the current process.

    Counts every response the client sees and classifies throttled (429) and
    server error (5xx) responses. Safe to share between upload threads.
    """

    def __init__(self):
        """Initialize request monitoring metrics"""
        self._lock = threading.Lock()
        self.metrics = {
            'total_requests': 0,
            'throttled_requests': 0,
            'server_errors': 0,
            'network_errors': 0,
            'retries': 0,
        }

    def record_response(self, response):
        """
        Record a Drive API response.

        Args:
            response: requests.Response object from a Drive API call

        Returns:
            bool: True if the response indicates throttling
        """
        throttled = response.status_code == 429
        with self._lock:
            self.metrics['total_requests'] += 1
            if throttled:
                self.metrics['throttled_requests'] += 1
            elif 500 <= response.status_code < 600:
                self.metrics['server_errors'] += 1

        if throttled:
            print(f"[!] THROTTLING DETECTED: Drive API returned 429")
        if is_debug_metadata_enabled():
            print(f"[=] Drive API response: {response.status_code}")
        return throttled

    def record_network_error(self):
        with self._lock:
            self.metrics['total_requests'] += 1
            self.metrics['network_errors'] += 1

    def record_retry(self):
        with self._lock:
            self.metrics['retries'] += 1

    def get_metrics_summary(self):
        """
        Get a snapshot of request metrics.

        Returns:
            dict: Summary of all request metrics including throttle rate
        """
        with self._lock:
            metrics = dict(self.metrics)
        metrics['throttle_rate'] = metrics['throttled_requests'] / max(metrics['total_requests'], 1)
        return metrics

    def reset(self):
        with self._lock:
            for key in self.metrics:
                self.metrics[key] = 0


# Global request monitor instance
request_monitor = RequestMonitor()


def print_request_summary():
    """
    Print Drive API request statistics collected during execution.

    Displays total requests, throttled and failed responses, and retries,
    followed by a status line based on throttling severity.
    """
    metrics = request_monitor.get_metrics_summary()

    print("\n" + "="*60)
    print("DRIVE API REQUEST SUMMARY")
    print("="*60)
    print(f"[STATS] API Request Statistics:")
    print(f"   - Total API Requests:       {metrics['total_requests']:>6}")
    print(f"   - Throttled Requests:       {metrics['throttled_requests']:>6} ({metrics['throttle_rate']:.1%})")
    print(f"   - Server Errors:            {metrics['server_errors']:>6}")
    print(f"   - Network Errors:           {metrics['network_errors']:>6}")
    print(f"   - Retries:                  {metrics['retries']:>6}")

    if metrics['throttled_requests'] > 0:
        print(f"\n[!] WARNING: Hit rate limits during execution")
    else:
        print(f"\n[OK] Stayed within rate limits")
    print("="*60)


class UploadStats:
    """
    Counts produced by one batch upload.

    Attributes:
        created (int): Files uploaded for the first time
        updated (int): Files whose remote content was replaced in place
        skipped (int): Files left alone (unchanged, or kept by conflict policy)
        failed (int): Files whose upload raised
        bytes_uploaded (int): Total size of created and updated files
        errors (list): (relative path, exception) for every failed file
    """

    def __init__(self, created=0, updated=0, skipped=0, failed=0, bytes_uploaded=0):
        self.created = created
        self.updated = updated
        self.skipped = skipped
        self.failed = failed
        self.bytes_uploaded = bytes_uploaded
        self.errors = []

    def record_failure(self, rel_path, error):
        self.failed += 1
        self.errors.append((rel_path, error))

    def merge(self, other):
        """Add another UploadStats into this one and return self."""
        self.created += other.created
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.bytes_uploaded += other.bytes_uploaded
        self.errors.extend(other.errors)
        return self

    def to_dict(self):
        return {
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'failed': self.failed,
            'bytes_uploaded': self.bytes_uploaded,
        }

    def __eq__(self, other):
        if not isinstance(other, UploadStats):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return (f"UploadStats(created={self.created}, updated={self.updated}, "
                f"skipped={self.skipped}, failed={self.failed})")

    def print_summary(self, total_files):
        """
        Print final summary report of upload statistics.

        Args:
            total_files (int): Total number of files considered
        """
        print(f"[STATS] Sync Statistics:")
        print(f"   - New files uploaded:       {self.created:>6}")
        print(f"   - Files updated:            {self.updated:>6}")
        print(f"   - Files skipped (unchanged):{self.skipped:>6}")
        print(f"   - Failed uploads:           {self.failed:>6}")
        print(f"   - Total files processed:    {total_files:>6}")
        print(f"\n[DATA] Transfer Summary:")
        print(f"   - Data uploaded:   {format_bytes(self.bytes_uploaded)}")


class VerifyReport:
    """
    Outcome of reconciling the ledger against the remote folder tree.

    The report is observational only; producing it never triggers another
    reconciliation round.
    """

    def __init__(self, in_sync=0, re_uploaded=0, deleted_remotely=0,
                 modified_remotely=0, untracked=0):
        self.in_sync = in_sync
        self.re_uploaded = re_uploaded
        self.deleted_remotely = deleted_remotely
        self.modified_remotely = modified_remotely
        self.untracked = untracked

    def to_dict(self):
        return {
            'in_sync': self.in_sync,
            're_uploaded': self.re_uploaded,
            'deleted_remotely': self.deleted_remotely,
            'modified_remotely': self.modified_remotely,
            'untracked': self.untracked,
        }

    def __repr__(self):
        fields = ', '.join(f"{key}={value}" for key, value in self.to_dict().items())
        return f"VerifyReport({fields})"

    def print_summary(self):
        print(f"[VERIFY] Drive Verification:")
        print(f"   - In sync:                  {self.in_sync:>6}")
        print(f"   - Deleted remotely:         {self.deleted_remotely:>6}")
        print(f"   - Modified remotely:        {self.modified_remotely:>6}")
        print(f"   - Re-uploaded:              {self.re_uploaded:>6}")
        print(f"   - Untracked on Drive:       {self.untracked:>6}")


def format_bytes(bytes_value):
    """
    Convert bytes to human-readable format.

    Args:
        bytes_value (int): Number of bytes to format

    Returns:
        str: Human-readable string (e.g., "1.5 MB")
    """
    for unit in ['B', 'KB', 'MB', 'GB']:
        if bytes_value < 1024.0:
            return f"{bytes_value:.1f} {unit}"
        bytes_value /= 1024.0
    return f"{bytes_value:.1f} TB"
