import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .constants import APP_NAME, UNMERGED_CODES
from .errors import GitCommandError, RemoteOperationError, SyncDirMissingError

logger = logging.getLogger(APP_NAME)


def _remote_env() -> dict[str, str]:
    """Environment for network operations that must never block on a prompt."""
    env = os.environ.copy()
    env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    env["GIT_TERMINAL_PROMPT"] = "0"
    return env


class GitRepo:
    """A wrapper around the Git command-line interface for the sync directory.

    This class is the remote store client: it exposes the fetch/pull/push,
    status and merge operations the detectors and the reconciliation controller
    need, and a disposable worktree for merge previews that never touches the
    real working tree or branch.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            SyncDirMissingError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise SyncDirMissingError(f"Not a git repository: {self.path}")

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitCommandError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise GitCommandError(f"Git error: {e.stderr or e}") from e

    def _run_raw(self, args: list[str]) -> bytes:
        """Executes a Git command and returns its unmodified stdout bytes.

        Raises:
            GitCommandError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args], cwd=self.path, capture_output=True, check=True
            )
            return res.stdout
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors="replace") if e.stderr else e
            raise GitCommandError(f"Git error: {stderr}") from e

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch."""
        return self._run(["branch", "--show-current"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except GitCommandError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def current_revision(self) -> str | None:
        """Returns the SHA of HEAD, or None for an empty repository."""
        return self.rev_parse("HEAD")

    def remote_revision(self, remote: str, candidates: tuple[str, ...]) -> str | None:
        """Resolves the remote-tracking revision of the first existing candidate branch.

        Args:
            remote (str): The remote name (e.g. 'origin').
            candidates (tuple[str, ...]): Branch names tried in order.

        Returns:
            Optional[str]: The SHA, or None if no candidate resolves.
        """
        for branch in candidates:
            if rev := self.rev_parse(f"{remote}/{branch}"):
                return rev
        return None

    def _run_remote(self, args: list[str]) -> None:
        """Runs a network operation with prompts disabled.

        Raises:
            RemoteOperationError: If the operation fails.
        """
        try:
            self._run(args, env=_remote_env())
        except GitCommandError as e:
            raise RemoteOperationError(str(e)) from e

    def fetch(self, remote: str) -> None:
        """Updates remote-tracking refs without touching the working tree."""
        self._run_remote(["fetch", "-q", remote])

    def pull(self, remote: str) -> None:
        """Fetches and merges the upstream branch into HEAD.

        Raises:
            RemoteOperationError: On network failure or when the merge stops on
                conflicts.
        """
        self._run_remote(["pull", "--no-rebase", "--no-edit", remote])

    def push(self, remote: str) -> None:
        """Pushes the current branch to the same-named branch on `remote`."""
        self._run_remote(["push", remote, "HEAD"])

    def status_porcelain(self, *paths: str) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Args:
            *paths (str): Restrict the status to these paths. Defaults to all.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.

        Raises:
            GitCommandError: If git status fails.
        """
        cmd = ["git", "status", "--porcelain"]
        if paths:
            cmd.extend(["--", *paths])
        # Status codes are column-significant, so the output must not be stripped.
        res = subprocess.run(cmd, cwd=self.path, capture_output=True, text=True)
        if res.returncode != 0:
            raise GitCommandError(f"Git error: {res.stderr}")
        return [line for line in res.stdout.splitlines() if line.strip()]

    def unmerged_files(self) -> list[tuple[str, str]]:
        """Lists (status code, path) for every path a merge left unmerged."""
        return [
            (line[:2], line[3:])
            for line in self.status_porcelain()
            if line[:2] in UNMERGED_CODES
        ]

    def dirty_files(self, *paths: str) -> list[str]:
        """Lists which of `paths` are modified, untracked, or deleted."""
        if not paths:
            return []
        return [line[3:] for line in self.status_porcelain(*paths)]

    def checkout_ours(self, path: str) -> None:
        """Resolves a conflicted path by taking the HEAD-side version."""
        self._run(["checkout", "--ours", "--", path], capture=False)

    def remove(self, path: str) -> None:
        """Resolves a path by deleting it from the index and working tree."""
        self._run(["rm", "-q", "-f", "--ignore-unmatch", "--", path], capture=False)

    def add(self, *paths: str) -> None:
        """Stages the given paths (including deletions)."""
        if not paths:
            return
        self._run(["add", "-A", "--", *paths], capture=False)

    def commit(self, message: str, no_verify: bool = False) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            no_verify (bool, optional): Whether to bypass pre-commit hooks
                                        (`--no-verify`). Defaults to False.
        """
        cmd = ["commit", "-q", "-m", message]
        if no_verify:
            cmd.append("--no-verify")
        self._run(cmd, capture=False)

    def reset(self, rev: str) -> None:
        """Moves HEAD and the index to `rev`, leaving the working tree alone."""
        self._run(["reset", "-q", rev], capture=False)

    def has_staged_changes(self) -> bool:
        """Returns True if the index differs from HEAD."""
        res = subprocess.run(
            ["git", "diff", "--cached", "--quiet"], cwd=self.path, capture_output=True
        )
        return res.returncode != 0

    def read_blob(self, rev: str, path: str) -> bytes | None:
        """Reads `path` as stored at `rev`.

        Args:
            rev (str): A commit-ish, or an index stage such as ':3'.
            path (str): Repository-relative file path.

        Returns:
            bytes | None: The raw content, or None if it does not exist there.
        """
        try:
            return self._run_raw(["show", f"{rev}:{path}"])
        except GitCommandError as e:
            logger.debug(f"No blob for {rev}:{path}: {e}")
            return None

    def diff(self, source: str, target: str, paths: list[str]) -> str:
        """Returns the textual diff between two revisions, limited to `paths`."""
        try:
            return self._run(["diff", source, target, "--", *paths])
        except GitCommandError as e:
            logger.warning(f"Failed to diff {source}..{target}: {e}")
            return ""

    def merge_no_commit(self, rev: str) -> None:
        """Merges `rev` into the working tree and index without committing.

        Raises:
            GitCommandError: If the merge cannot be performed or stops on conflicts.
        """
        self._run(["merge", "--no-commit", "--no-ff", "-q", rev])

    def merge_in_progress(self) -> bool:
        return self.rev_parse("MERGE_HEAD") is not None

    def abort_merge(self) -> None:
        """Aborts an in-progress merge; a no-op if there is none."""
        if not self.merge_in_progress():
            return
        self._run(["merge", "--abort"], capture=False)

    def config_get(self, key: str, global_scope: bool = False) -> str:
        """Reads a git config value, returning '' when unset."""
        cmd = ["config"]
        if global_scope:
            cmd.append("--global")
        cmd.extend(["--get", key])
        try:
            return self._run(cmd)
        except GitCommandError:
            return ""

    def config_set(self, key: str, value: str) -> None:
        """Sets a repository-local git config value."""
        self._run(["config", key, value], capture=False)

    def set_remote_url(self, remote: str, url: str) -> None:
        self._run(["remote", "set-url", remote, url], capture=False)

    @contextmanager
    def speculative_worktree(self, branch: str) -> Iterator["GitRepo"]:
        """Provides a disposable worktree on a throwaway branch created from HEAD.

        The worktree lives in a temporary directory outside the sync directory and
        shares the object database, so merges performed in it can be inspected
        without touching this repository's working tree, index, or branch. Any
        in-progress merge, the worktree, and the branch are discarded on exit.

        Args:
            branch (str): Name for the throwaway branch.

        Yields:
            GitRepo: A repository handle rooted at the disposable worktree.

        Raises:
            GitCommandError: If the worktree cannot be created.
        """
        # Clear registrations left behind by an interrupted run.
        self._run(["worktree", "prune"], capture=False)

        tmp_dir = Path(tempfile.mkdtemp(prefix=f"{APP_NAME}-"))
        tree_path = tmp_dir / "tree"
        try:
            self._run(
                ["worktree", "add", "-q", "-f", "-B", branch, str(tree_path), "HEAD"]
            )
        except GitCommandError:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise

        tree = GitRepo(tree_path)
        try:
            yield tree
        finally:
            try:
                tree.abort_merge()
            except GitCommandError as e:
                logger.debug(f"Speculative merge abort failed: {e}")
            try:
                self._run(["worktree", "remove", "--force", str(tree_path)])
            except GitCommandError as e:
                logger.warning(f"Failed to remove speculative worktree: {e}")
            shutil.rmtree(tmp_dir, ignore_errors=True)
            try:
                self._run(["worktree", "prune"], capture=False)
                self._run(["branch", "-D", branch])
            except GitCommandError as e:
                logger.warning(f"Failed to delete speculative branch {branch}: {e}")
