import argparse
import datetime
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from . import daemon, detect, ops, reconcile, service
from .config import Config
from .constants import APP_NAME, CONFIG_FILE, LOCK_FILE, LOG_FILE
from .errors import LockHeldError, RemoteOperationError, SyncDirMissingError
from .git_wrapper import GitRepo
from .system import get_system, post_pull_hooks
from .watermark import Watermark

logger = logging.getLogger(APP_NAME)
console = Console()

_STATE_STYLES = {
    detect.IN_SYNC: "green",
    detect.WHITESPACE_ONLY: "dim",
    detect.MODIFIED: "bold yellow",
    detect.MISSING: "dim red",
}


def _open_repo(config: Config) -> GitRepo:
    """Returns the sync directory repository or exits with guidance."""
    try:
        return GitRepo(config.core.sync_dir)
    except SyncDirMissingError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        console.print(f"   Run [cyan]{APP_NAME} init <gist_url>[/cyan] first.")
        sys.exit(1)


def _daemon_pid() -> int | None:
    """Returns the PID recorded in the lock file if that process is alive."""
    try:
        pid = int(LOCK_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, OSError):
        return None


def init_store(url: str) -> None:
    """Clones the remote store and performs the initial setup.

    Args:
        url (str): The gist URL to clone.
    """
    config = Config.load()
    console.print(f"[bold blue]{APP_NAME}:[/bold blue] setting up ZSH settings sync...")

    try:
        repo = ops.clone_store(url, config.core.sync_dir)
    except RemoteOperationError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        console.print("   Check the URL and your Git credentials.")
        sys.exit(1)

    ops.ensure_identity(repo)

    if missing := ops.missing_mirrors(config):
        console.print(
            "[bold yellow]WARNING:[/bold yellow] Files not found in the store: "
            + ", ".join(missing)
        )
        console.print(
            "   They will be created empty; existing local files are kept as .backup."
        )
        if not Confirm.ask("   Continue anyway?", default=True):
            console.print("[bold red]ABORTED.[/bold red]")
            sys.exit(1)

    try:
        with daemon.sync_lock():
            daemon.bootstrap(config, repo, Watermark(config.core.watermark_file))
    except LockHeldError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    console.print("\n[bold green]SUCCESS:[/bold green] Store ready.")
    console.print(
        f"   Start syncing with [cyan]{APP_NAME} install-service[/cyan] "
        f"or [cyan]{APP_NAME} run --skip-initial-checks[/cyan]."
    )


def manual_push() -> None:
    """Pushes the local shell files right away, without prompting."""
    config = Config.load()
    repo = _open_repo(config)
    ops.ensure_identity(repo)

    try:
        with daemon.sync_lock():
            with console.status("[bold blue]Pushing...[/bold blue]", spinner="dots"):
                ok = reconcile.push_changes(
                    config, repo, Watermark(config.core.watermark_file)
                )
    except LockHeldError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    if ok:
        console.print("[bold green]SUCCESS:[/bold green] Configuration pushed.")
        return

    console.print(
        "[bold red]ERROR:[/bold red] Failed to push configuration.\n"
        "   This is usually an authentication issue:\n"
        "   1. Make sure Git credentials for the remote are set up.\n"
        "   2. Over HTTPS you may need a personal access token.\n"
        f"   3. Try manually: cd {config.core.sync_dir} && git push\n"
        f"[dim]Details in {LOG_FILE}[/dim]"
    )
    sys.exit(1)


def manual_pull() -> None:
    """Pulls remote changes right away, without prompting."""
    config = Config.load()
    repo = _open_repo(config)
    notifier = get_system(config.daemon.prompt_timeout)

    try:
        with daemon.sync_lock():
            with console.status("[bold blue]Pulling...[/bold blue]", spinner="dots"):
                ok = reconcile.pull_changes(
                    config,
                    repo,
                    Watermark(config.core.watermark_file),
                    post_pull_hooks(config),
                    notifier,
                )
    except LockHeldError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    if ok:
        console.print("[bold green]SUCCESS:[/bold green] Local settings updated.")
    else:
        console.print(
            f"[bold red]ERROR:[/bold red] Pull failed. See [cyan]{LOG_FILE}[/cyan]."
        )
        sys.exit(1)


def show_status() -> None:
    """Displays the daemon state, revisions, and per-file sync state."""
    config = Config.load()

    pid = _daemon_pid()
    try:
        service_installed = service.get_unit_path().exists()
    except NotImplementedError:
        service_installed = False

    system_content = Text()
    system_content.append("Daemon:  ", style="bold")
    if pid:
        system_content.append(f"Active (PID {pid})\n", style="bold green")
    else:
        system_content.append("Stopped\n", style="bold red")
    system_content.append("Service: ", style="bold")
    if service_installed:
        system_content.append("Installed", style="green")
    else:
        system_content.append("Not installed", style="yellow")
    console.print(Panel(system_content, title="System Status", expand=False))

    repo = _open_repo(config)
    watermark = Watermark(config.core.watermark_file)

    current = repo.current_revision() or "-"
    remote = (
        repo.remote_revision(config.core.remote_name, config.core.branch_candidates)
        or "-"
    )
    last = watermark.read() or "-"
    age = watermark.age()
    if age is None:
        synced = "Never"
    else:
        synced_at = datetime.datetime.now() - datetime.timedelta(seconds=age)
        synced = synced_at.strftime("%Y-%m-%d %H:%M")

    repo_content = Text()
    repo_content.append(f"Store:     {config.core.sync_dir}\n")
    repo_content.append(f"HEAD:      {current[:12]}\n")
    repo_content.append(f"Remote:    {remote[:12]}\n", style="dim")
    repo_content.append(f"Watermark: {last[:12]}\n")
    repo_content.append(f"Last sync: {synced}")
    if remote not in ("-", current, last):
        repo_content.append("\n\n⚠ Remote has unreconciled commits.", style="yellow")
    console.print(Panel(repo_content, title="Store Status", expand=False))

    table = Table(title="Tracked Files")
    table.add_column("Local", style="cyan")
    table.add_column("Mirror")
    table.add_column("Link")
    table.add_column("State")
    for pair in config.tracked:
        state = detect.pair_state(config, repo, pair)
        linked = "symlink" if detect.links_to_mirror(config, pair) else "copy"
        table.add_row(
            str(pair.local_path),
            pair.mirror_name,
            linked,
            Text(state, style=_STATE_STYLES[state]),
        )
    console.print(table)


def tail_log() -> None:
    """Follows the sync log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def open_config(config_file: Path = CONFIG_FILE) -> None:
    """Opens the configuration file in the user's editor, creating a template first."""
    if not config_file.exists():
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, "w") as f:
            f.write(
                "# ZSH Settings Sync Configuration\n\n"
                "[core]\n"
                '# sync_dir = "~/zsh-settings"\n'
                '# remote_name = "origin"\n\n'
                "[daemon]\n"
                '# sync_interval = "20m"\n'
                '# cooldown = "5m"\n\n'
                "[files]\n"
                '# tracked = [".zshrc", ".zshenv", ".zprofile", '
                '".zsh_aliases", ".zsh_functions"]\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{config_file}[/cyan]...")
    try:
        subprocess.run([editor, str(config_file)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def main() -> None:
    """Main entry point for the zsh-sync CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Keep shell configuration files in sync through a git gist.",
    )
    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser(
        "init", help="Clone the gist store and set up symlinks"
    )
    init_parser.add_argument("url", help="Gist URL (https or ssh)")

    run_parser = subparsers.add_parser("run", help="Run the sync loop in the foreground")
    run_parser.add_argument(
        "--skip-initial-checks",
        action="store_true",
        help="Skip the first remote check (used right after installation)",
    )

    subparsers.add_parser("push", help="Push local settings now")
    subparsers.add_parser("pull", help="Pull remote settings now")
    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("log", help="Tail the sync log file")
    subparsers.add_parser("config", help="Open the config file")

    install_parser = subparsers.add_parser(
        "install-service", help="Start the sync loop automatically at login"
    )
    install_parser.add_argument(
        "--skip-initial-checks",
        action="store_true",
        help="Skip the first remote check of the service's first run",
    )
    subparsers.add_parser("uninstall-service", help="Remove the login service")

    args = parser.parse_args()

    if args.command == "init":
        daemon.setup_logging(interactive=True)
        init_store(args.url)
    elif args.command == "run":
        daemon.run(skip_initial_checks=args.skip_initial_checks, interactive=True)
    elif args.command == "push":
        daemon.setup_logging(interactive=True)
        manual_push()
    elif args.command == "pull":
        daemon.setup_logging(interactive=True)
        manual_pull()
    elif args.command == "status":
        show_status()
    elif args.command == "log":
        tail_log()
    elif args.command == "config":
        open_config()
    elif args.command == "install-service":
        with console.status("Installing background service...", spinner="dots"):
            service.install(skip_initial_checks=args.skip_initial_checks)
        console.print("[bold green]✔ Service installed.[/bold green]")
    elif args.command == "uninstall-service":
        with console.status("Uninstalling service...", spinner="dots"):
            service.uninstall()
        console.print("[bold green]✔ Service uninstalled.[/bold green]")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
