"""zsh-sync: Keep shell configuration files in sync through a git-backed gist.

This package provides the command-line interface, the polling daemon, and the
change-detection and reconciliation engine that decides when local or remote
edits are significant enough to push or pull.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    detect,
    errors,
    git_wrapper,
    normalize,
    ops,
    reconcile,
    service,
    system,
    watermark,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "detect",
    "errors",
    "git_wrapper",
    "normalize",
    "ops",
    "reconcile",
    "service",
    "system",
    "watermark",
]
