import argparse
import fcntl
import logging
import os
import sys
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Sequence

from . import detect, ops, reconcile
from .config import Config
from .constants import (
    APP_NAME,
    GIT_LOCK_FILES,
    LOCK_FILE,
    LOG_FILE,
    NOTIFY_TITLE,
)
from .errors import GitCommandError, LockHeldError, SyncDirMissingError, SyncError
from .git_wrapper import GitRepo
from .system import PostPullHook, SystemStrategy, get_system, post_pull_hooks
from .watermark import Watermark

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


@contextmanager
def sync_lock(path: Path = LOCK_FILE) -> Iterator[None]:
    """Holds an exclusive, PID-stamped lock on the sync directory.

    The lock is an `fcntl.flock` on `path`. The kernel drops it when the holder
    exits, so a file left behind by a crashed run never blocks a new one.

    Args:
        path (Path, optional): The lock file. Defaults to LOCK_FILE.

    Raises:
        LockHeldError: If another process (or another open handle) holds the lock.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Append mode: opening must not clear the holder's PID before we own the lock.
    lock_fd = open(path, "a+")
    try:
        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        lock_fd.close()
        raise LockHeldError(f"Another {APP_NAME} process holds {path}") from e

    try:
        lock_fd.truncate(0)
        lock_fd.write(str(os.getpid()))
        lock_fd.flush()
        yield
    finally:
        try:
            lock_fd.truncate(0)
            fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
        finally:
            lock_fd.close()


def is_repo_busy(repo_path: Path) -> bool:
    """Determines if the sync directory is in the middle of a Git operation.

    Args:
        repo_path (Path): The path to the repository.

    Returns:
        bool: True if a merge, rebase, or index lock is present.
    """
    git_dir = repo_path / ".git"
    for f in GIT_LOCK_FILES:
        if (git_dir / f).exists():
            return True

    lock_file = git_dir / "index.lock"
    if lock_file.exists():
        # Wait-and-see to ride out transient operations.
        time.sleep(1.0)
        if lock_file.exists():
            return True

    return False


def bootstrap(config: Config, repo: GitRepo, watermark: Watermark) -> None:
    """Prepares a fresh installation and seeds the watermark.

    Creates missing mirrors, links local files to them, and records the remote's
    current revision so pre-existing remote content is not reported as new.
    Falls back to HEAD when no remote branch exists yet.
    """
    logger.info("Performing initial setup...")

    ops.ensure_mirrors(config)
    ops.link_tracked_files(config)

    remote = config.core.remote_name
    try:
        repo.fetch(remote)
    except GitCommandError as e:
        logger.warning(f"FETCH ERROR during setup: {e}")

    revision = repo.remote_revision(
        remote, config.core.branch_candidates
    ) or repo.current_revision()
    if revision:
        watermark.write(revision)
    else:
        logger.warning("Store has no commits yet; watermark not seeded.")

    logger.info("Initial setup complete")


def run_cycle(
    config: Config,
    repo: GitRepo,
    watermark: Watermark,
    notifier: SystemStrategy,
    hooks: Sequence[PostPullHook] = (),
    skip_initial_checks: bool = False,
) -> None:
    """Runs one detection and reconciliation pass.

    Local changes are offered for push first, then remote changes for pull.
    Each action needs an explicit yes from the user.
    """
    if is_repo_busy(repo.path):
        logger.info("SKIPPED: sync directory has a git operation in progress.")
        return

    if detect.has_local_changes(config, repo):
        logger.info("Local changes detected")
        notifier.notify(NOTIFY_TITLE, "Local changes detected. Sync to remote?")
        if notifier.confirm(
            "Local ZSH settings have changed. Push to remote?",
            ops.local_diff_preview(config, repo),
        ):
            reconcile.push_changes(config, repo, watermark)
        else:
            logger.info("User declined to push changes")

    if detect.has_remote_changes(config, repo, watermark, skip_initial_checks):
        logger.info("Remote changes detected")
        notifier.notify(NOTIFY_TITLE, "Remote changes detected. Update local settings?")
        if notifier.confirm(
            "Remote ZSH settings have changed. Pull from remote?",
            ops.remote_diff_preview(config, repo),
        ):
            reconcile.pull_changes(config, repo, watermark, hooks, notifier)
        else:
            logger.info("User declined to pull changes")


def run_loop(
    config: Config,
    repo: GitRepo,
    watermark: Watermark,
    notifier: SystemStrategy,
    hooks: Sequence[PostPullHook] = (),
    skip_initial_checks: bool = False,
) -> None:
    """Polls forever, sleeping `daemon.sync_interval` seconds between cycles.

    The skip flag applies to the first cycle only. A failing cycle is logged
    and the loop carries on.
    """
    while True:
        try:
            run_cycle(config, repo, watermark, notifier, hooks, skip_initial_checks)
        except SyncError as e:
            logger.error(f"CYCLE ERROR: {e}")
        except Exception:
            logger.exception("CYCLE ERROR")

        if skip_initial_checks:
            skip_initial_checks = False
            logger.info("Disabled skip-initial-checks mode for future runs")

        time.sleep(config.daemon.sync_interval)


def setup_logging(interactive: bool, config: Config | None = None) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating log file.
        config (Config | None): Supplies the log size limit.
    """
    if logger.handlers:
        return

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        max_bytes = (config or Config()).limits.max_log_size
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_bytes,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def run(
    skip_initial_checks: bool = False,
    interactive: bool = False,
    config: Config | None = None,
) -> None:
    """Starts the sync daemon: bootstrap when needed, then poll forever.

    Args:
        skip_initial_checks (bool, optional): Suppress the first remote check.
        interactive (bool, optional): Log to stdout instead of the log file.
        config (Config | None, optional): Preloaded configuration.

    Raises:
        SystemExit: If the sync directory is not a git repository.
    """
    config = config or Config.load()
    setup_logging(interactive, config)

    logger.info("ZSH Settings Sync started")
    if skip_initial_checks:
        logger.info("Running in skip-initial-checks mode")

    try:
        repo = GitRepo(config.core.sync_dir)
    except SyncDirMissingError as e:
        logger.critical(f"{e}. Run '{APP_NAME} init <gist_url>' first.")
        sys.exit(1)

    watermark = Watermark(config.core.watermark_file)
    notifier = get_system(config.daemon.prompt_timeout)

    try:
        with sync_lock():
            if not watermark.exists():
                bootstrap(config, repo, watermark)
                skip_initial_checks = True
            run_loop(
                config,
                repo,
                watermark,
                notifier,
                post_pull_hooks(config),
                skip_initial_checks,
            )
    except LockHeldError as e:
        logger.info(f"Not starting: {e}")
    except KeyboardInterrupt:
        logger.info("Stopped.")


def main() -> None:
    """Entry point for the `zsh-sync-daemon` executable."""
    parser = argparse.ArgumentParser(prog=f"{APP_NAME}-daemon")
    parser.add_argument(
        "--skip-initial-checks",
        action="store_true",
        help="Skip the first remote check (used right after installation)",
    )
    args = parser.parse_args()
    run(skip_initial_checks=args.skip_initial_checks)


if __name__ == "__main__":
    main()
