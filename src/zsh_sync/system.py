import html
import logging
import os
import shutil
import subprocess
import sys
from typing import Callable

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from .config import Config
from .constants import APP_NAME, NOTIFY_TITLE

console = Console()
logger = logging.getLogger(APP_NAME)

PostPullHook = Callable[[Config], None]
"""A callable run after every successful pull, given the active config."""

_PREVIEW_LINES = 25


def _excerpt(preview: str) -> str:
    lines = preview.splitlines()
    if len(lines) <= _PREVIEW_LINES:
        return preview
    hidden = len(lines) - _PREVIEW_LINES
    return "\n".join(lines[:_PREVIEW_LINES] + [f"... ({hidden} more lines)"])


def platform_label() -> str:
    """Returns the short platform name used in commit messages."""
    if sys.platform == "darwin":
        return "macOS"
    if sys.platform.startswith("linux"):
        return "Linux"
    return sys.platform


class SystemStrategy:
    """Base class defining the interface for user-facing system interactions.

    The base implementation has no desktop integration: notifications are
    dropped and confirmations fall back to the terminal.
    """

    def __init__(self, prompt_timeout: int = 300):
        self.prompt_timeout = prompt_timeout

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass

    def confirm(self, question: str, preview: str = "") -> bool:
        """Asks the user a yes/no question.

        Any answer other than an explicit yes (dismissal, timeout, no terminal,
        end of input) is a decline.

        Args:
            question (str): The question to ask.
            preview (str, optional): A diff excerpt shown alongside. Defaults to "".

        Returns:
            bool: True only on an explicit yes.
        """
        if not sys.stdin.isatty():
            logger.info("No terminal attached; treating prompt as declined.")
            return False

        if preview:
            console.print(Panel(_excerpt(preview), title="Pending changes", expand=False))
        try:
            return Confirm.ask(question, default=False, console=console)
        except (EOFError, KeyboardInterrupt):
            return False


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    @staticmethod
    def _quote(text: str) -> str:
        # Sanitize to prevent AppleScript syntax errors.
        return text.replace("\\", "/").replace('"', "'")

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        script = (
            f'display notification "{self._quote(message)}" '
            f'with title "{self._quote(title)}"'
        )
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"Notification failed: {e}")

    def confirm(self, question: str, preview: str = "") -> bool:
        """Shows a modal dialog that gives up after the prompt timeout."""
        text = question
        if preview:
            text = f"{question}\n\n{_excerpt(preview)}"
        script = (
            f'display dialog "{self._quote(text)}" '
            f'with title "{NOTIFY_TITLE}" '
            'buttons {"Cancel", "OK"} default button "OK" '
            f"giving up after {self.prompt_timeout}"
        )
        try:
            res = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=self.prompt_timeout + 10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Dialog failed, treating as declined: {e}")
            return False
        # Cancel exits non-zero; a timeout reports "gave up:true".
        out = res.stdout
        return (
            res.returncode == 0
            and "button returned:OK" in out
            and "gave up:true" not in out
        )


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`, falling back to `zenity`."""
        if shutil.which("notify-send"):
            cmd = ["notify-send", title, message]
        elif shutil.which("zenity"):
            cmd = ["zenity", "--notification", f"--text={title}: {message}"]
        else:
            return
        try:
            subprocess.run(cmd, stderr=subprocess.DEVNULL, timeout=10)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Notification failed: {e}")

    def confirm(self, question: str, preview: str = "") -> bool:
        """Shows a `zenity` question dialog, or asks on the terminal without one."""
        has_display = os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")
        if not (shutil.which("zenity") and has_display):
            return super().confirm(question, preview)

        text = html.escape(question)
        if preview:
            text += f"\n\n<tt>{html.escape(_excerpt(preview))}</tt>"
        cmd = [
            "zenity",
            "--question",
            f"--title={NOTIFY_TITLE}",
            f"--text={text}",
            f"--timeout={self.prompt_timeout}",
        ]
        try:
            res = subprocess.run(
                cmd, stderr=subprocess.DEVNULL, timeout=self.prompt_timeout + 10
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Dialog failed, treating as declined: {e}")
            return False
        return res.returncode == 0


def get_system(prompt_timeout: int = 300) -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Args:
        prompt_timeout (int, optional): Seconds a dialog waits before it counts
            as declined. Defaults to 300.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy(prompt_timeout)
    elif sys.platform.startswith("linux"):
        return LinuxStrategy(prompt_timeout)
    else:
        return SystemStrategy(prompt_timeout)


def reload_shell(config: Config) -> None:
    """Re-sources the primary tracked file when the login shell is zsh.

    Best effort: a zsh subprocess cannot change the parent shell, but it surfaces
    syntax errors in the freshly pulled file and runs any side effects it has.
    Failures are logged and swallowed.
    """
    if "zsh" not in os.environ.get("SHELL", ""):
        return
    if not config.tracked:
        return

    primary = config.tracked[0].local_path
    if not primary.exists():
        return

    logger.info("Reloading ZSH configuration...")
    try:
        subprocess.run(
            ["zsh", "-c", 'source "$1"', "zsh", str(primary)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Shell reload failed: {e}")


def post_pull_hooks(config: Config) -> list[PostPullHook]:
    """Returns the hooks enabled in `config`, in execution order."""
    hooks: list[PostPullHook] = []
    if config.hooks.reload_shell:
        hooks.append(reload_shell)
    return hooks
