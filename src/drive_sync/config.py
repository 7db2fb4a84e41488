# -*- coding: utf-8 -*-
"""
Configuration management for Drive sync.

Settings come from environment variables, after a local .env file (if any)
has been merged in by python-dotenv. Positional command-line arguments may
override the output directory and the verify switch.
"""

import os
import sys

from dotenv import load_dotenv

from .file_handler import CONFLICT_LOCAL_WINS, CONFLICT_POLICIES
from .sync_state import LEDGER_FILENAME

DEFAULT_OUTPUT_DIR = "./recordings"
DEFAULT_SESSION_DIR = "./.grain-session"
DEFAULT_TOKEN_FILENAME = "gdrive-token.json"
DEFAULT_WORKERS = 4


def _env_flag(env, name, default="false"):
    return env.get(name, default).strip().lower() in ('true', '1', 'yes')


class Config:
    """Configuration for Drive sync operations"""

    def __init__(self, argv=None, environ=None):
        """
        Read configuration from the environment and optional CLI arguments.

        Environment variables:
        - GRAIN_OUTPUT_DIR - local root whose relative paths become ledger keys (default: ./recordings)
        - GRAIN_SESSION_DIR - directory holding sync-state.json (default: ./.grain-session)
        - GRAIN_GDRIVE_FOLDER_ID - Drive folder ID to sync into (required)
        - GRAIN_GDRIVE_CREDENTIALS - service account key or OAuth client JSON (required)
        - GRAIN_GDRIVE_SERVICE_ACCT - use the service account flow (default: False)
        - GRAIN_GDRIVE_TOKEN - cached user token (default: <session dir>/gdrive-token.json)
        - GRAIN_GDRIVE_CONFLICT - local-wins, skip or newer-wins (default: local-wins)
        - GRAIN_GDRIVE_VERIFY - reconcile against Drive before uploading (default: False)
        - GRAIN_GDRIVE_CLEAN_LOCAL - delete local files once uploaded (default: False)
        - GRAIN_GDRIVE_WORKERS - parallel upload workers (default: 4)
        - GRAIN_EXCLUDE_PATTERNS - comma-separated exclusion patterns (default: "")

        Positional arguments (both optional):
        1. output_dir - overrides GRAIN_OUTPUT_DIR
        2. verify - 'true' to run verification

        Args:
            argv (list, optional): Argument list without the program name
            environ (dict, optional): Environment mapping (defaults to os.environ)
        """
        env = os.environ if environ is None else environ
        argv = sys.argv[1:] if argv is None else argv

        self.output_dir = env.get('GRAIN_OUTPUT_DIR', '') or DEFAULT_OUTPUT_DIR
        self.session_dir = env.get('GRAIN_SESSION_DIR', '') or DEFAULT_SESSION_DIR
        self.folder_id = env.get('GRAIN_GDRIVE_FOLDER_ID', '').strip()
        self.credentials_path = env.get('GRAIN_GDRIVE_CREDENTIALS', '').strip()
        self.service_account = _env_flag(env, 'GRAIN_GDRIVE_SERVICE_ACCT')
        self.token_path = env.get('GRAIN_GDRIVE_TOKEN', '').strip() or os.path.join(
            self.session_dir, DEFAULT_TOKEN_FILENAME)
        self.conflict_policy = (env.get('GRAIN_GDRIVE_CONFLICT', '') or CONFLICT_LOCAL_WINS).strip().lower()
        self.verify = _env_flag(env, 'GRAIN_GDRIVE_VERIFY')
        self.clean_local = _env_flag(env, 'GRAIN_GDRIVE_CLEAN_LOCAL')

        workers = env.get('GRAIN_GDRIVE_WORKERS', '').strip()
        try:
            self.workers = int(workers) if workers else DEFAULT_WORKERS
        except ValueError:
            raise ValueError(f"GRAIN_GDRIVE_WORKERS must be an integer, got {workers!r}") from None

        self.exclude_patterns = env.get('GRAIN_EXCLUDE_PATTERNS', '')
        self.exclude_patterns_list = [p.strip() for p in self.exclude_patterns.split(',') if p.strip()]

        # Positional overrides
        if len(argv) > 0 and argv[0]:
            self.output_dir = argv[0]
        if len(argv) > 1 and argv[1]:
            self.verify = argv[1].strip().lower() in ('true', '1', 'yes')

        # Derived values
        self.ledger_path = os.path.join(self.session_dir, LEDGER_FILENAME)

    @property
    def max_workers(self):
        """Worker count clamped to at least one."""
        return max(1, self.workers)

    def validate(self):
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.folder_id:
            raise ValueError("GRAIN_GDRIVE_FOLDER_ID cannot be empty")
        if not self.credentials_path:
            raise ValueError("GRAIN_GDRIVE_CREDENTIALS cannot be empty")
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(f"GRAIN_GDRIVE_CONFLICT must be one of {', '.join(CONFLICT_POLICIES)}, "
                             f"got {self.conflict_policy!r}")
        if self.workers < 0:
            raise ValueError("GRAIN_GDRIVE_WORKERS must be non-negative")


def parse_config(argv=None, environ=None):
    """
    Load .env, then build and validate the configuration.

    Returns:
        Config: Configured Config object

    Raises:
        ValueError: If configuration is invalid
    """
    load_dotenv()
    config = Config(argv=argv, environ=environ)
    config.validate()
    return config
