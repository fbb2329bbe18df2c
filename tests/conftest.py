"""Shared fixtures: an isolated home/store layout and a hermetic git environment."""

import shutil
import subprocess
from pathlib import Path

import pytest

from zsh_sync.config import (
    Config,
    CoreConfig,
    DaemonConfig,
    FilesConfig,
    HooksConfig,
    TrackedFile,
)


def make_config(
    tmp_path: Path, names: tuple[str, ...] = ("zshrc", "zsh_aliases"), **daemon
) -> Config:
    """Builds a Config whose home, store and backup dirs live under `tmp_path`."""
    home = tmp_path / "home"
    home.mkdir(exist_ok=True)
    tracked = tuple(TrackedFile(home / f".{name}", name) for name in names)
    return Config(
        core=CoreConfig(sync_dir=tmp_path / "store", backup_dir=tmp_path / "backup"),
        files=FilesConfig(tracked=tracked),
        daemon=DaemonConfig(**daemon),
        hooks=HooksConfig(reload_shell=False),
    )


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A two-file config with an existing (non-git) store directory."""
    conf = make_config(tmp_path)
    conf.core.sync_dir.mkdir()
    return conf


def git(cwd: Path, *args: str) -> str:
    """Runs git in `cwd` and returns stripped stdout."""
    res = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return res.stdout.strip()


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolates git from the user's configuration and provides an identity."""
    if not shutil.which("git"):
        pytest.skip("git is not installed")

    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text(
        "[init]\n\tdefaultBranch = main\n"
        "[commit]\n\tgpgsign = false\n"
        "[advice]\n\tdetachedHead = false\n"
    )
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "Sync Test")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "sync@example.com")
