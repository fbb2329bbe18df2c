"""Tests for the command line interface."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from zsh_sync import cli
from zsh_sync.config import Config
from zsh_sync.errors import SyncDirMissingError


@pytest.fixture
def loaded(mocker: MagicMock, config: Config) -> Config:
    """Makes `Config.load` return the temporary-layout config."""
    mocker.patch("zsh_sync.cli.Config.load", return_value=config)
    return config


def test_show_status_lists_tracked_files(
    capsys: pytest.CaptureFixture, mocker: MagicMock, loaded: Config
) -> None:
    """
    Status shows the daemon state, the revisions and one row per tracked file.

    Args:
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
        mocker (MagicMock): Pytest fixture for mocking.
        loaded (Config): The patched configuration.
    """
    mocker.patch("zsh_sync.cli.console", Console(width=200))
    mocker.patch("zsh_sync.cli._daemon_pid", return_value=4242)
    mocker.patch("zsh_sync.cli.service.get_unit_path", side_effect=NotImplementedError)
    repo = mocker.patch("zsh_sync.cli.GitRepo").return_value
    repo.current_revision.return_value = "a" * 40
    repo.remote_revision.return_value = "b" * 40
    mocker.patch(
        "zsh_sync.cli.detect.pair_state", side_effect=["modified", "missing"]
    )

    cli.show_status()

    out = capsys.readouterr().out
    assert "Active (PID 4242)" in out
    assert "Not installed" in out
    assert "aaaaaaaaaaaa" in out
    assert "Remote has unreconciled commits" in out
    assert "zsh_aliases" in out
    assert "modified" in out
    assert "Never" in out


def test_missing_store_exits_with_hint(
    capsys: pytest.CaptureFixture, mocker: MagicMock, loaded: Config
) -> None:
    mocker.patch(
        "zsh_sync.cli.GitRepo", side_effect=SyncDirMissingError("Not a git repository")
    )

    with pytest.raises(SystemExit):
        cli.manual_push()

    assert "zsh-sync init" in capsys.readouterr().out


def test_manual_push_failure_exits(mocker: MagicMock, loaded: Config) -> None:
    mocker.patch("zsh_sync.cli.GitRepo")
    mocker.patch("zsh_sync.cli.ops.ensure_identity")
    mocker.patch("zsh_sync.cli.daemon.sync_lock")
    push = mocker.patch("zsh_sync.cli.reconcile.push_changes", return_value=False)

    with pytest.raises(SystemExit):
        cli.manual_push()

    push.assert_called_once()


def test_manual_pull_success(
    capsys: pytest.CaptureFixture, mocker: MagicMock, loaded: Config
) -> None:
    mocker.patch("zsh_sync.cli.GitRepo")
    mocker.patch("zsh_sync.cli.daemon.sync_lock")
    pull = mocker.patch("zsh_sync.cli.reconcile.pull_changes", return_value=True)

    cli.manual_pull()

    pull.assert_called_once()
    assert "Local settings updated" in capsys.readouterr().out


def test_init_clones_and_bootstraps(mocker: MagicMock, loaded: Config) -> None:
    repo = MagicMock()
    clone = mocker.patch("zsh_sync.cli.ops.clone_store", return_value=repo)
    identity = mocker.patch("zsh_sync.cli.ops.ensure_identity")
    mocker.patch("zsh_sync.cli.ops.missing_mirrors", return_value=[])
    mocker.patch("zsh_sync.cli.daemon.sync_lock")
    bootstrap = mocker.patch("zsh_sync.cli.daemon.bootstrap")

    cli.init_store("https://gist.github.com/abc.git")

    clone.assert_called_once_with("https://gist.github.com/abc.git", loaded.core.sync_dir)
    identity.assert_called_once_with(repo)
    assert bootstrap.call_args.args[:2] == (loaded, repo)


def test_config_command_creates_template(mocker: MagicMock, tmp_path: Path) -> None:
    """The config file is created from a template before the editor opens."""
    mocker.patch.dict("os.environ", {"EDITOR": "nano"})
    mock_run = mocker.patch("subprocess.run")
    config_file = tmp_path / "zsh-sync" / "config.toml"

    cli.open_config(config_file)

    assert "[daemon]" in config_file.read_text()
    assert mock_run.call_args.args[0] == ["nano", str(config_file)]


def test_main_run_command(mocker: MagicMock) -> None:
    mocker.patch("sys.argv", ["zsh-sync", "run", "--skip-initial-checks"])
    run = mocker.patch("zsh_sync.cli.daemon.run")

    cli.main()

    run.assert_called_once_with(skip_initial_checks=True, interactive=True)


def test_main_install_service(mocker: MagicMock) -> None:
    mocker.patch("sys.argv", ["zsh-sync", "install-service", "--skip-initial-checks"])
    install = mocker.patch("zsh_sync.cli.service.install")

    cli.main()

    install.assert_called_once_with(skip_initial_checks=True)
