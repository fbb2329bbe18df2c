import os
from pathlib import Path

"""Global constants and default path definitions for zsh-sync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the default set of tracked shell files.
"""

# --- Identity ---
APP_NAME = "zsh-sync"
"""str: The human-readable application name."""

APP_LABEL = "com.zshsync.daemon"
"""str: The reverse-DNS style application identifier used for autostart units."""

NOTIFY_TITLE = "ZSH Settings Sync"
"""str: Title used for desktop notifications and dialogs."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "zsh-sync"
"""Path: The directory for runtime state data (logs, lock, conflict backups)."""

LOG_FILE = STATE_DIR / "sync.log"
"""Path: The file path for the sync process logs."""

LOCK_FILE = STATE_DIR / "zsh-sync.lock"
"""Path: The lock file guarding concurrent access to the sync directory."""

DEFAULT_BACKUP_DIR = STATE_DIR / "conflicts_backup"
"""Path: Where conflicting variants are copied before auto-resolution."""

DEFAULT_SYNC_DIR = Path.home() / "zsh-settings"
"""Path: The default clone location of the remote store."""

WATERMARK_FILENAME = ".last_hash"
"""str: Name of the watermark file inside the sync directory."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/zsh-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Git / Logic Constants ---
DEFAULT_TRACKED_FILES = [
    ".zshrc",
    ".zshenv",
    ".zprofile",
    ".zsh_aliases",
    ".zsh_functions",
]
"""list[str]: Home-relative shell files synchronized when none are configured."""

BRANCH_CANDIDATES = ["master", "main"]
"""list[str]: Remote branch names tried, in order, when resolving the remote revision."""

SPECULATIVE_BRANCH = "zsh-sync/speculative"
"""str: Throwaway branch used for non-committing merge previews."""

UNMERGED_CODES = ("DD", "AU", "UD", "UA", "DU", "AA", "UU")
"""tuple[str, ...]: Porcelain status codes of paths left unmerged by a pull."""

LOCAL_SIDE_MISSING = ("DD", "DU", "UA")
"""tuple[str, ...]: Unmerged codes where the local side has no version of the file."""

GIT_LOCK_FILES = [
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "rebase-merge",
    "rebase-apply",
]
"""
list[str]: Git internal files indicating an
active state (merge/rebase) that blocks a sync cycle.
"""
