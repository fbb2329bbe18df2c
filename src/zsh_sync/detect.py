import logging
from pathlib import Path

from .config import Config, TrackedFile
from .constants import APP_NAME, SPECULATIVE_BRANCH
from .errors import GitCommandError
from .git_wrapper import GitRepo
from .normalize import is_significantly_different
from .watermark import Watermark

logger = logging.getLogger(APP_NAME)

MISSING = "missing"
IN_SYNC = "in sync"
WHITESPACE_ONLY = "whitespace only"
MODIFIED = "modified"


def _read(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def links_to_mirror(config: Config, pair: TrackedFile) -> bool:
    """Returns True if the local path is a symlink to its own mirror file."""
    local = pair.local_path
    if not local.is_symlink():
        return False
    try:
        return local.resolve() == config.mirror_path(pair).resolve()
    except OSError:
        return False


def baseline(config: Config, repo: GitRepo, pair: TrackedFile) -> bytes:
    """Content the local file is compared against.

    Normally the mirror file on disk. When the local path is a symlink into the
    sync directory both sides are the same file, so the committed mirror at HEAD
    is used instead.
    """
    if links_to_mirror(config, pair):
        return repo.read_blob("HEAD", pair.mirror_name) or b""
    return _read(config.mirror_path(pair)) or b""


def pair_state(config: Config, repo: GitRepo, pair: TrackedFile) -> str:
    """Classifies one pair as MISSING, IN_SYNC, WHITESPACE_ONLY or MODIFIED."""
    local = _read(pair.local_path)
    if local is None:
        return MISSING

    reference = baseline(config, repo, pair)
    if local == reference:
        return IN_SYNC
    if is_significantly_different(local, reference):
        return MODIFIED
    return WHITESPACE_ONLY


def changed_local_files(config: Config, repo: GitRepo) -> list[TrackedFile]:
    """Lists the tracked pairs whose local content differs significantly.

    Pairs without a local file are skipped. Whitespace-only differences are
    logged but not returned.
    """
    changed = []
    for pair in config.tracked:
        state = pair_state(config, repo, pair)
        if state == MODIFIED:
            logger.info(f"Significant changes detected in {pair.local_path}")
            changed.append(pair)
        elif state == WHITESPACE_ONLY:
            logger.info(f"Only whitespace changes in {pair.local_path}")
    return changed


def has_local_changes(config: Config, repo: GitRepo) -> bool:
    """Checks whether any tracked local file diverged from its mirror.

    Args:
        config (Config): The active configuration.
        repo (GitRepo): The sync directory repository.

    Returns:
        bool: True if at least one pair differs beyond whitespace.
    """
    return bool(changed_local_files(config, repo))


def _speculative_changes(config: Config, repo: GitRepo, remote_rev: str) -> list[str]:
    """Previews merging `remote_rev` and lists mirrors it changes significantly.

    Raises:
        GitCommandError: If the worktree cannot be set up or the merge fails.
    """
    changed = []
    with repo.speculative_worktree(SPECULATIVE_BRANCH) as tree:
        before = {
            pair.mirror_name: _read(tree.path / pair.mirror_name) or b""
            for pair in config.tracked
        }
        tree.merge_no_commit(remote_rev)
        for pair in config.tracked:
            after = _read(tree.path / pair.mirror_name) or b""
            if is_significantly_different(before[pair.mirror_name], after):
                logger.info(f"Significant remote changes in {pair.mirror_name}")
                changed.append(pair.mirror_name)
            elif before[pair.mirror_name] != after:
                logger.info(f"Only whitespace remote changes in {pair.mirror_name}")
    return changed


def has_remote_changes(
    config: Config,
    repo: GitRepo,
    watermark: Watermark,
    skip_initial_checks: bool = False,
    now: float | None = None,
) -> bool:
    """Checks whether the remote moved past the last synchronized state.

    A remote revision equal to either HEAD or the watermark is already accounted
    for. Otherwise the remote is merged into a disposable worktree and each
    mirror is compared before/after; if only whitespace moved, the watermark is
    advanced so the same revision is not flagged again. A failed preview counts
    as a significant change.

    Args:
        config (Config): The active configuration.
        repo (GitRepo): The sync directory repository.
        watermark (Watermark): The persisted synchronization watermark.
        skip_initial_checks (bool, optional): Suppress the check entirely
            (first cycle after bootstrap). Defaults to False.
        now (float | None, optional): Clock override for the cooldown check.

    Returns:
        bool: True if the remote carries unreconciled, content-significant changes.
    """
    if skip_initial_checks:
        logger.info("Skipping remote check - initial run after installation")
        return False

    age = watermark.age(now)
    if age is not None and age < config.daemon.cooldown:
        logger.info(
            f"Skipping remote check - last sync was {int(age)}s ago "
            f"(cooldown {config.daemon.cooldown}s)"
        )
        return False

    remote = config.core.remote_name
    try:
        repo.fetch(remote)
    except GitCommandError as e:
        logger.warning(f"FETCH ERROR: {e}. Using last known remote state.")

    current = repo.current_revision()
    remote_rev = repo.remote_revision(remote, config.core.branch_candidates)
    last = watermark.read()

    if remote_rev is None:
        logger.warning(
            f"No remote branch found among "
            f"{', '.join(config.core.branch_candidates)} on '{remote}'"
        )
        return False

    if remote_rev in (current, last):
        return False

    logger.info(
        f"Remote hash ({remote_rev}) differs from current hash ({current}) "
        f"and last hash ({last})"
    )

    try:
        changed = _speculative_changes(config, repo, remote_rev)
    except GitCommandError as e:
        logger.warning(f"Speculative merge failed, assuming significant changes: {e}")
        return True

    if changed:
        return True

    logger.info("Remote changes are whitespace-only. Advancing watermark.")
    try:
        watermark.write(remote_rev)
    except OSError as e:
        logger.error(f"Could not update watermark: {e}")
    return False
