"""Exception hierarchy for zsh-sync.

Every error carries a ``retryable`` flag. Retryable errors are reported and left
for the next polling cycle; terminal errors abort the process.
"""


class SyncError(Exception):
    """Base class for all synchronization errors."""

    retryable: bool = True


class GitCommandError(SyncError, RuntimeError):
    """Raised when a git invocation exits with a non-zero status."""


class RemoteOperationError(GitCommandError):
    """Raised when a clone, fetch, pull or push against the remote store fails."""


class SyncDirMissingError(SyncError):
    """Raised when the sync directory is absent or is not a git repository.

    The remote store must be cloned out-of-band (``zsh-sync init``) first.
    """

    retryable = False


class LockHeldError(SyncError):
    """Raised when another live zsh-sync process holds the sync lock."""
