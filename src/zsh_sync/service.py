import plistlib
import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from .constants import APP_LABEL, LOG_FILE

console = Console()


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'zsh-sync-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("zsh-sync-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'zsh-sync-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def get_unit_path() -> Path:
    """Resolves the autostart unit path for the current OS.

    Raises:
        NotImplementedError: On platforms without a supported service manager.
    """
    home = Path.home()
    if sys.platform == "darwin":
        return home / f"Library/LaunchAgents/{APP_LABEL}.plist"
    if sys.platform.startswith("linux"):
        return home / f".config/systemd/user/{APP_LABEL}.service"
    raise NotImplementedError(f"Autostart is not supported on {sys.platform}.")


def _command(executable: str, skip_initial_checks: bool) -> list[str]:
    cmd = [executable]
    if skip_initial_checks:
        cmd.append("--skip-initial-checks")
    return cmd


def install_linux(unit_path: Path, command: list[str]) -> None:
    """Writes and enables a systemd user service running the daemon loop.

    Args:
        unit_path (Path): The target path for the .service file.
        command (list[str]): The daemon command line.
    """
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    service_content = f"""[Unit]
Description=ZSH Settings Sync

[Service]
ExecStart={" ".join(command)}
Restart=on-failure
RestartSec=60

[Install]
WantedBy=default.target
"""
    with open(unit_path, "w") as f:
        f.write(service_content)

    subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
    subprocess.run(
        ["systemctl", "--user", "enable", "--now", unit_path.name], check=True
    )
    console.print(
        f"[bold green]SUCCESS:[/bold green] Sync service active (Linux).\n"
        f"Check status: systemctl --user status {unit_path.name}"
    )


def install_macos(unit_path: Path, command: list[str]) -> None:
    """Writes and loads a LaunchAgent that keeps the daemon running.

    Args:
        unit_path (Path): The target path for the .plist file.
        command (list[str]): The daemon command line.
    """
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    plist = {
        "Label": APP_LABEL,
        "ProgramArguments": command,
        "RunAtLoad": True,
        "KeepAlive": {"SuccessfulExit": False},
        "StandardOutPath": str(LOG_FILE),
        "StandardErrorPath": str(LOG_FILE),
    }
    with open(unit_path, "wb") as f:
        plistlib.dump(plist, f)

    subprocess.run(["launchctl", "unload", str(unit_path)], stderr=subprocess.DEVNULL)
    subprocess.run(["launchctl", "load", str(unit_path)], check=True)
    console.print(
        "[bold green]SUCCESS:[/bold green] LaunchAgent installed. "
        "ZSH Settings Sync will start automatically on login."
    )


def install(skip_initial_checks: bool = False) -> None:
    """Registers the daemon to start at login.

    Args:
        skip_initial_checks (bool, optional): Start the first run in skip mode.
    """
    unit_path = get_unit_path()
    command = _command(get_executable(), skip_initial_checks)

    console.print("Installing background service...")
    if sys.platform == "darwin":
        install_macos(unit_path, command)
    else:
        install_linux(unit_path, command)


def uninstall() -> None:
    """Stops the daemon and removes its autostart unit."""
    unit_path = get_unit_path()

    if sys.platform == "darwin":
        subprocess.run(
            ["launchctl", "unload", str(unit_path)], stderr=subprocess.DEVNULL
        )
    else:
        subprocess.run(
            ["systemctl", "--user", "disable", "--now", unit_path.name],
            stderr=subprocess.DEVNULL,
        )

    if unit_path.exists():
        unit_path.unlink()

    if sys.platform.startswith("linux"):
        subprocess.run(["systemctl", "--user", "daemon-reload"])

    console.print("[bold green]SUCCESS:[/bold green] Service uninstalled.")
