import contextlib
import datetime
import logging
import shutil
from pathlib import Path
from typing import Sequence

from .config import Config
from .constants import APP_NAME, LOCAL_SIDE_MISSING, NOTIFY_TITLE
from .detect import links_to_mirror
from .errors import GitCommandError
from .git_wrapper import GitRepo
from .system import PostPullHook, SystemStrategy, platform_label
from .watermark import Watermark

logger = logging.getLogger(APP_NAME)


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _advance_watermark(repo: GitRepo, watermark: Watermark) -> None:
    """Records HEAD as the newly reconciled revision."""
    revision = repo.current_revision()
    if not revision:
        logger.warning("Could not resolve HEAD; watermark left unchanged.")
        return
    try:
        watermark.write(revision)
    except OSError as e:
        logger.error(f"Could not update watermark: {e}")


def _rollback_push(
    repo: GitRepo, head_before: str | None, mirrors: dict[Path, bytes | None]
) -> None:
    """Undoes the local side of a failed push so the edits are detected again.

    The auto-sync commit is dropped (the working tree keeps its content) and
    mirrors overwritten by the copy step get their previous bytes back.
    """
    if head_before:
        try:
            repo.reset(head_before)
        except GitCommandError as e:
            logger.error(f"Could not drop the unpushed commit: {e}")
    for mirror, content in mirrors.items():
        try:
            if content is None:
                mirror.unlink(missing_ok=True)
            else:
                mirror.write_bytes(content)
        except OSError as e:
            logger.error(f"Could not restore {mirror}: {e}")


def push_changes(config: Config, repo: GitRepo, watermark: Watermark) -> bool:
    """Publishes local shell files to the remote store.

    Copies every existing local file onto its mirror, commits the mirrors as a
    single commit and pushes. On failure the commit and the copied mirrors are
    rolled back and the watermark stays put, so the same local edits are
    detected again on the next cycle.

    Args:
        config (Config): The active configuration.
        repo (GitRepo): The sync directory repository.
        watermark (Watermark): The synchronization watermark.

    Returns:
        bool: True if the push succeeded.
    """
    logger.info("Pushing changes to remote...")

    head_before = repo.current_revision()
    overwritten: dict[Path, bytes | None] = {}
    committed = False
    try:
        staged = []
        for pair in config.tracked:
            if not pair.local_path.exists():
                continue
            staged.append(pair.mirror_name)
            if links_to_mirror(config, pair):
                continue
            mirror = config.mirror_path(pair)
            overwritten[mirror] = mirror.read_bytes() if mirror.exists() else None
            shutil.copyfile(pair.local_path, mirror)

        repo.add(*staged)
        if repo.has_staged_changes():
            repo.commit(
                f"Auto-sync: Updated ZSH settings on {platform_label()} "
                f"at {_timestamp()}"
            )
            committed = True
        else:
            logger.info("No new content to commit; pushing existing history.")
        repo.push(config.core.remote_name)
    except (GitCommandError, OSError) as e:
        logger.error(f"Failed to push changes: {e}")
        _rollback_push(repo, head_before if committed else None, overwritten)
        return False

    _advance_watermark(repo, watermark)
    logger.info("Successfully pushed changes")
    return True


def backup_conflicts(config: Config, repo: GitRepo, paths: list[str]) -> Path:
    """Copies every available variant of conflicted files to the backup directory.

    Saves the conflict-marked working copy, the incoming ("theirs") stage, and
    any mergetool `*_BACKUP_*` files. Missing variants are skipped.

    Returns:
        Path: The backup directory.
    """
    backup_dir = config.core.backup_dir
    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create backup directory {backup_dir}: {e}")
        return backup_dir

    for path in paths:
        name = Path(path).name
        with contextlib.suppress(OSError):
            shutil.copyfile(repo.path / path, backup_dir / f"{name}.conflict.{stamp}")

        theirs = repo.read_blob(":3", path)
        if theirs is not None:
            with contextlib.suppress(OSError):
                (backup_dir / f"{name}.remote.{stamp}").write_bytes(theirs)

    for extra in repo.path.glob("*_BACKUP_*"):
        with contextlib.suppress(OSError):
            shutil.copyfile(extra, backup_dir / extra.name)

    return backup_dir


def handle_conflicts(
    config: Config, repo: GitRepo, notifier: SystemStrategy | None = None
) -> bool:
    """Resolves every unmerged path by keeping the local version.

    Local always wins: files the local side still has are checked out from HEAD,
    files it does not have (deleted locally, or only added remotely) are
    removed, and the merge is committed after the incoming variants have been
    backed up. No line-level merge is attempted.

    Args:
        config (Config): The active configuration.
        repo (GitRepo): The sync directory repository.
        notifier (SystemStrategy | None, optional): Receives the conflict notice.

    Returns:
        bool: True if conflicts were found and resolved.
    """
    try:
        unmerged = repo.unmerged_files()
    except GitCommandError as e:
        logger.error(f"Could not read repository status: {e}")
        return False

    if not unmerged:
        return False

    paths = [path for _, path in unmerged]
    logger.warning(f"Merge conflicts detected in: {', '.join(paths)}")
    if notifier:
        notifier.notify(
            NOTIFY_TITLE, "Merge conflicts detected. Keeping the local version."
        )

    backup_dir = backup_conflicts(config, repo, paths)

    try:
        for code, path in unmerged:
            if code in LOCAL_SIDE_MISSING:
                repo.remove(path)
            else:
                repo.checkout_ours(path)
                repo.add(path)
        repo.commit("Auto-resolved conflicts by keeping local version", no_verify=True)
    except GitCommandError as e:
        logger.error(f"Conflict auto-resolution failed: {e}")
        return False

    logger.info(
        f"Conflicts auto-resolved by keeping local version. Backups in {backup_dir}/"
    )
    return True


def _abandon_merge(repo: GitRepo, notifier: SystemStrategy | None) -> None:
    """Aborts a merge that conflict handling could not conclude."""
    logger.error("Merge still in progress after conflict handling; aborting it.")
    if notifier:
        notifier.notify(
            NOTIFY_TITLE, "Could not resolve merge conflicts. Pull aborted."
        )
    try:
        repo.abort_merge()
    except GitCommandError as e:
        logger.error(f"Could not abort merge: {e}")


def pull_changes(
    config: Config,
    repo: GitRepo,
    watermark: Watermark,
    hooks: Sequence[PostPullHook] = (),
    notifier: SystemStrategy | None = None,
) -> bool:
    """Brings remote changes into the sync directory and the local files.

    Uncommitted mirror edits are committed first so they take part in the merge.
    Conflict handling always runs after the pull, whatever its outcome, and a
    merge it cannot conclude is aborted so the directory is never left
    mid-merge. On success the watermark advances, every mirror overwrites its
    local file, and the post-pull hooks run (their failures are logged and
    ignored). A failed pull drops the pre-pull commit again when nothing was
    merged.

    Args:
        config (Config): The active configuration.
        repo (GitRepo): The sync directory repository.
        watermark (Watermark): The synchronization watermark.
        hooks (Sequence[PostPullHook], optional): Run after a successful pull.
        notifier (SystemStrategy | None, optional): Receives conflict notices.

    Returns:
        bool: True if the pull succeeded.
    """
    logger.info("Pulling changes from remote...")
    names = [pair.mirror_name for pair in config.tracked]

    pulled = True
    head_before = repo.current_revision()
    local_commit = None
    try:
        if pending := repo.dirty_files(*names):
            repo.add(*pending)
            repo.commit(
                f"Auto-sync: Local edits on {platform_label()} before pull "
                f"at {_timestamp()}"
            )
            local_commit = repo.current_revision()
        repo.pull(config.core.remote_name)
    except GitCommandError as e:
        logger.error(f"PULL ERROR: {e}")
        pulled = False

    handle_conflicts(config, repo, notifier)
    if repo.merge_in_progress():
        _abandon_merge(repo, notifier)

    if not pulled:
        # Nothing merged: keep the mirror edits pending instead of committed.
        if local_commit and head_before and repo.current_revision() == local_commit:
            try:
                repo.reset(head_before)
            except GitCommandError as e:
                logger.error(f"Could not drop the pre-pull commit: {e}")
        logger.error("Failed to pull changes")
        return False

    _advance_watermark(repo, watermark)
    logger.info("Successfully pulled changes")

    for pair in config.tracked:
        mirror = config.mirror_path(pair)
        if not mirror.exists() or links_to_mirror(config, pair):
            continue
        try:
            pair.local_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(mirror, pair.local_path)
            logger.info(f"Updated {pair.local_path}")
        except OSError as e:
            logger.error(f"Could not update {pair.local_path}: {e}")

    for hook in hooks:
        try:
            hook(config)
        except Exception as e:
            name = getattr(hook, "__name__", hook)
            logger.warning(f"Post-pull hook {name} failed: {e}")

    return True
