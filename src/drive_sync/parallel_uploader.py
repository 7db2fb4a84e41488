# -*- coding: utf-8 -*-
"""
Parallel upload orchestration for Drive sync.

The export pipeline produces one group of files per recording. Each group is
handed to DriveSyncEngine.upload_set() on its own worker thread; the engine's
ledger, folder cache and credential provider are shared and lock-protected.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

from .errors import AuthError, OperationCancelled
from .monitoring import UploadStats
from .utils import is_debug_enabled


def group_by_top_level_dir(rel_paths):
    """
    Group relative paths by their first path component.

    Files at the top of the output directory form one group keyed ''.

    Args:
        rel_paths (list): Forward-slash relative paths

    Returns:
        dict: Group name -> list of relative paths, in first-seen order
    """
    groups = {}
    for rel_path in rel_paths:
        head = rel_path.split('/', 1)[0] if '/' in rel_path else ''
        groups.setdefault(head, []).append(rel_path)
    return groups


class ParallelUploader:
    """
    Run engine.upload_set() for several file groups concurrently.

    Per-file failures stay inside each group's UploadStats. A failed token
    refresh or a cancellation stops new groups from starting and is raised
    once the running groups have finished.
    """

    def __init__(self, engine, max_workers=4):
        """
        Initialize parallel uploader.

        Args:
            engine (DriveSyncEngine): Engine shared by all workers
            max_workers (int): Maximum concurrent upload threads (default: 4)
        """
        self.engine = engine
        self.max_workers = max(1, max_workers)

    def process_groups(self, local_root, groups, cancel_event=None):
        """
        Upload file groups in parallel and merge their statistics.

        Args:
            local_root (str): Directory all relative paths are relative to
            groups (dict): Group name -> list of relative paths
            cancel_event (threading.Event): Optional cancellation signal

        Returns:
            UploadStats: Merged statistics for every group that ran

        Raises:
            AuthError: If any worker lost its credential
            OperationCancelled: If cancel_event was set during the run
        """
        total = UploadStats()
        fatal_error = None
        stop = threading.Event()

        def upload_worker(worker_id, name, rel_paths):
            threading.current_thread().name = f"Upload-{worker_id}"
            if stop.is_set():
                return UploadStats()
            if is_debug_enabled():
                print(f"[→] Uploading {len(rel_paths)} file(s) from {name or os.curdir}")
            return self.engine.upload_set(local_root, rel_paths, cancel_event=cancel_event)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_group = {
                executor.submit(upload_worker, idx % self.max_workers + 1, name, rel_paths): name
                for idx, (name, rel_paths) in enumerate(groups.items())
            }

            for future in as_completed(future_to_group):
                name = future_to_group[future]
                try:
                    total.merge(future.result())
                except (AuthError, OperationCancelled) as e:
                    stop.set()
                    if fatal_error is None or isinstance(e, AuthError):
                        fatal_error = e
                    if is_debug_enabled():
                        print(f"[!] Stopping uploads after group {name or os.curdir}: {e}")

        if fatal_error is not None:
            raise fatal_error
        return total

    def process_files(self, local_root, rel_paths, cancel_event=None):
        """Upload relative paths grouped by top-level directory. See process_groups()."""
        return self.process_groups(local_root, group_by_top_level_dir(rel_paths), cancel_event=cancel_event)
