import difflib
import logging
import shutil
import subprocess
from pathlib import Path

from rich.console import Console
from rich.prompt import Confirm

from .config import Config
from .constants import APP_NAME
from .detect import baseline, changed_local_files, links_to_mirror
from .errors import GitCommandError, RemoteOperationError
from .git_wrapper import GitRepo

console = Console()
logger = logging.getLogger(APP_NAME)


def ensure_mirrors(config: Config) -> None:
    """Creates an empty mirror file for every pair missing one."""
    for pair in config.tracked:
        mirror = config.mirror_path(pair)
        if not mirror.exists():
            mirror.touch()
            logger.info(f"Created empty file: {mirror}")


def link_tracked_files(config: Config) -> None:
    """Replaces each local file with a symlink to its mirror.

    A pre-existing regular file is moved aside to `<file>.backup`; the store
    content is authoritative, so a fresh install starts in sync with the
    remote. Correct symlinks are left alone.
    """
    logger.info("Setting up symlinks...")

    for pair in config.tracked:
        local = pair.local_path
        mirror = config.mirror_path(pair)

        if local.is_file() and not local.is_symlink():
            backup = local.with_name(f"{local.name}.backup")
            logger.info(f"Creating backup of {local}")
            shutil.copy2(local, backup)
            local.unlink()

        if not mirror.exists():
            continue

        if local.is_symlink():
            if links_to_mirror(config, pair):
                continue
            local.unlink()

        local.parent.mkdir(parents=True, exist_ok=True)
        local.symlink_to(mirror)
        logger.info(f"Created symlink: {local} -> {mirror}")


def ensure_identity(repo: GitRepo, interactive: bool = True) -> None:
    """Makes sure commits in the sync directory have an author.

    Copies `user.name`/`user.email` from the global git config, asking on the
    terminal when neither is set globally.
    """
    if repo.config_get("user.name") and repo.config_get("user.email"):
        return

    name = repo.config_get("user.name", global_scope=True)
    email = repo.config_get("user.email", global_scope=True)

    if not (name and email):
        if not interactive:
            logger.warning("No git identity configured for the sync directory.")
            return
        console.print(
            "[bold yellow]WARNING:[/bold yellow] Global Git configuration not found."
        )
        name = name or console.input("   Enter your name for Git: ").strip()
        email = email or console.input("   Enter your email for Git: ").strip()

    repo.config_set("user.name", name)
    repo.config_set("user.email", email)
    console.print("[dim]Git identity configured for the sync directory.[/dim]")


def clone_store(url: str, sync_dir: Path) -> GitRepo:
    """Clones the remote store into `sync_dir`, or updates an existing clone.

    Args:
        url (str): The gist (or any git) URL.
        sync_dir (Path): Target directory.

    Returns:
        GitRepo: The ready repository.

    Raises:
        RemoteOperationError: If cloning fails.
        SystemExit: If the user declines to replace a non-git directory.
    """
    if (sync_dir / ".git").exists():
        repo = GitRepo(sync_dir)
        console.print(f"Existing repository found at [cyan]{sync_dir}[/cyan].")

        current = repo.config_get("remote.origin.url")
        if current and current.rstrip("/") != url.rstrip("/"):
            console.print(
                f"[bold yellow]WARNING:[/bold yellow] The existing repository has "
                f"a different remote URL.\n   Current:  {current}\n   Provided: {url}"
            )
            if Confirm.ask("   Update the remote URL?", default=False):
                repo.set_remote_url("origin", url)
                console.print("   Remote URL updated.")

        try:
            with console.status("[bold blue]Updating...[/bold blue]", spinner="dots"):
                repo.pull("origin")
        except GitCommandError as e:
            logger.warning(f"Update of existing clone failed: {e}")
            console.print(f"[yellow][bold]WARNING:[/bold] Update failed: {e}[/yellow]")
        return repo

    if sync_dir.exists():
        console.print(
            f"[bold yellow]WARNING:[/bold yellow] {sync_dir} exists "
            "but is not a git repository."
        )
        if not Confirm.ask("   Delete it and clone the store?", default=False):
            console.print("[bold red]ABORTED.[/bold red]")
            raise SystemExit(1)
        shutil.rmtree(sync_dir)

    sync_dir.parent.mkdir(parents=True, exist_ok=True)
    with console.status("[bold blue]Cloning store...[/bold blue]", spinner="dots"):
        res = subprocess.run(
            ["git", "clone", "-q", url, str(sync_dir)], capture_output=True, text=True
        )
    if res.returncode != 0:
        raise RemoteOperationError(f"Failed to clone {url}: {res.stderr.strip()}")

    return GitRepo(sync_dir)


def missing_mirrors(config: Config) -> list[str]:
    """Returns the mirror names not present in the sync directory."""
    return [
        pair.mirror_name
        for pair in config.tracked
        if not config.mirror_path(pair).exists()
    ]


def local_diff_preview(config: Config, repo: GitRepo) -> str:
    """Builds a unified diff of the significantly changed local files."""
    chunks = []
    for pair in changed_local_files(config, repo):
        before = baseline(config, repo, pair)
        after = pair.local_path.read_bytes()
        chunks.extend(
            difflib.unified_diff(
                before.decode(errors="replace").splitlines(),
                after.decode(errors="replace").splitlines(),
                fromfile=f"remote/{pair.mirror_name}",
                tofile=str(pair.local_path),
                lineterm="",
            )
        )
    return "\n".join(chunks)


def remote_diff_preview(config: Config, repo: GitRepo) -> str:
    """Returns the diff from HEAD to the remote revision over the tracked mirrors."""
    remote_rev = repo.remote_revision(
        config.core.remote_name, config.core.branch_candidates
    )
    if not remote_rev:
        return ""
    return repo.diff("HEAD", remote_rev, [pair.mirror_name for pair in config.tracked])
