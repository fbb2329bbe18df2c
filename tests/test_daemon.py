"""Tests for the polling loop, its lock and first-run bootstrap."""

import contextlib
import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from zsh_sync import daemon
from zsh_sync.config import Config
from zsh_sync.errors import GitCommandError, LockHeldError, SyncDirMissingError
from zsh_sync.watermark import Watermark


@pytest.fixture
def repo(config: Config) -> MagicMock:
    mock = MagicMock()
    mock.path = config.core.sync_dir
    mock.remote_revision.return_value = "remote"
    mock.current_revision.return_value = "head"
    return mock


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


# --- Lock ---


def test_sync_lock_records_pid_and_releases(tmp_path: Path) -> None:
    lock = tmp_path / "state" / "zsh-sync.lock"

    with daemon.sync_lock(lock):
        assert lock.read_text() == str(os.getpid())

    assert lock.read_text() == ""
    with daemon.sync_lock(lock):
        pass


def test_sync_lock_refuses_second_holder(tmp_path: Path) -> None:
    """A held lock cannot be taken again, and the holder's PID survives the attempt."""
    lock = tmp_path / "zsh-sync.lock"

    with daemon.sync_lock(lock):
        with pytest.raises(LockHeldError):
            with daemon.sync_lock(lock):
                pass
        assert lock.read_text() == str(os.getpid())


def test_sync_lock_ignores_leftover_file(tmp_path: Path) -> None:
    """A file left by a crashed run carries no lock and is simply reused."""
    lock = tmp_path / "zsh-sync.lock"
    lock.write_text("999999")

    with daemon.sync_lock(lock):
        assert lock.read_text() == str(os.getpid())


def test_lock_released_when_body_raises(tmp_path: Path) -> None:
    lock = tmp_path / "zsh-sync.lock"

    with pytest.raises(RuntimeError):
        with daemon.sync_lock(lock):
            raise RuntimeError("boom")

    with daemon.sync_lock(lock):
        assert lock.read_text() == str(os.getpid())


# --- Repository state ---


def test_repo_busy_during_merge(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    assert daemon.is_repo_busy(tmp_path) is False

    (tmp_path / ".git" / "MERGE_HEAD").touch()
    assert daemon.is_repo_busy(tmp_path) is True


def test_repo_busy_with_persistent_index_lock(mocker: MagicMock, tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "index.lock").touch()
    sleep = mocker.patch("zsh_sync.daemon.time.sleep")

    assert daemon.is_repo_busy(tmp_path) is True
    sleep.assert_called_once_with(1.0)


# --- Bootstrap ---


def test_bootstrap_links_files_and_seeds_watermark(
    config: Config, repo: MagicMock
) -> None:
    """
    A fresh install creates mirrors, links local files and records the
    remote revision as already reconciled.
    """
    zshrc = config.tracked[0]
    zshrc.local_path.write_text("alias ll='ls -la'\n")
    watermark = Watermark(config.core.watermark_file)

    daemon.bootstrap(config, repo, watermark)

    assert watermark.read() == "remote"
    assert zshrc.local_path.is_symlink()
    assert config.mirror_path(zshrc).read_text() == ""
    assert zshrc.local_path.with_name(".zshrc.backup").read_text() == (
        "alias ll='ls -la'\n"
    )
    assert config.mirror_path(config.tracked[1]).exists()


def test_bootstrap_falls_back_to_head(config: Config, repo: MagicMock) -> None:
    repo.fetch.side_effect = GitCommandError("offline")
    repo.remote_revision.return_value = None
    watermark = Watermark(config.core.watermark_file)

    daemon.bootstrap(config, repo, watermark)

    assert watermark.read() == "head"


# --- Cycle ---


def test_cycle_pushes_after_confirmation(
    mocker: MagicMock, config: Config, repo: MagicMock, notifier: MagicMock
) -> None:
    mocker.patch("zsh_sync.daemon.detect.has_local_changes", return_value=True)
    mocker.patch("zsh_sync.daemon.detect.has_remote_changes", return_value=False)
    mocker.patch("zsh_sync.daemon.ops.local_diff_preview", return_value="+alias")
    push = mocker.patch("zsh_sync.daemon.reconcile.push_changes")
    pull = mocker.patch("zsh_sync.daemon.reconcile.pull_changes")
    notifier.confirm.return_value = True
    watermark = Watermark(config.core.watermark_file)

    daemon.run_cycle(config, repo, watermark, notifier)

    notifier.notify.assert_called_once()
    notifier.confirm.assert_called_once_with(
        "Local ZSH settings have changed. Push to remote?", "+alias"
    )
    push.assert_called_once_with(config, repo, watermark)
    pull.assert_not_called()


def test_cycle_declined_prompts_change_nothing(
    mocker: MagicMock,
    config: Config,
    repo: MagicMock,
    notifier: MagicMock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """A declined (or timed-out) prompt leaves both sides untouched."""
    mocker.patch("zsh_sync.daemon.detect.has_local_changes", return_value=True)
    mocker.patch("zsh_sync.daemon.detect.has_remote_changes", return_value=True)
    mocker.patch("zsh_sync.daemon.ops.local_diff_preview", return_value="")
    mocker.patch("zsh_sync.daemon.ops.remote_diff_preview", return_value="")
    push = mocker.patch("zsh_sync.daemon.reconcile.push_changes")
    pull = mocker.patch("zsh_sync.daemon.reconcile.pull_changes")
    notifier.confirm.return_value = False

    daemon.run_cycle(config, repo, Watermark(config.core.watermark_file), notifier)

    push.assert_not_called()
    pull.assert_not_called()
    assert "User declined to push changes" in caplog.text
    assert "User declined to pull changes" in caplog.text


def test_cycle_pulls_with_hooks(
    mocker: MagicMock, config: Config, repo: MagicMock, notifier: MagicMock
) -> None:
    mocker.patch("zsh_sync.daemon.detect.has_local_changes", return_value=False)
    remote_check = mocker.patch(
        "zsh_sync.daemon.detect.has_remote_changes", return_value=True
    )
    mocker.patch("zsh_sync.daemon.ops.remote_diff_preview", return_value="")
    pull = mocker.patch("zsh_sync.daemon.reconcile.pull_changes")
    notifier.confirm.return_value = True
    hooks = [MagicMock()]
    watermark = Watermark(config.core.watermark_file)

    daemon.run_cycle(config, repo, watermark, notifier, hooks, skip_initial_checks=True)

    remote_check.assert_called_once_with(config, repo, watermark, True)
    pull.assert_called_once_with(config, repo, watermark, hooks, notifier)


def test_cycle_skipped_while_repo_busy(
    mocker: MagicMock, config: Config, repo: MagicMock, notifier: MagicMock
) -> None:
    mocker.patch("zsh_sync.daemon.is_repo_busy", return_value=True)
    local_check = mocker.patch("zsh_sync.daemon.detect.has_local_changes")

    daemon.run_cycle(config, repo, Watermark(config.core.watermark_file), notifier)

    local_check.assert_not_called()


# --- Loop ---


def test_loop_clears_skip_flag_and_survives_errors(
    mocker: MagicMock, config: Config, repo: MagicMock, notifier: MagicMock
) -> None:
    """
    Only the first cycle runs in skip mode, and a failing cycle does not
    stop the loop.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
        config (Config): The configuration fixture.
        repo (MagicMock): The mocked repository.
        notifier (MagicMock): The mocked system strategy.
    """
    cycle = mocker.patch(
        "zsh_sync.daemon.run_cycle", side_effect=[GitCommandError("boom"), None, None]
    )
    sleep = mocker.patch(
        "zsh_sync.daemon.time.sleep", side_effect=[None, None, KeyboardInterrupt]
    )
    watermark = Watermark(config.core.watermark_file)

    with pytest.raises(KeyboardInterrupt):
        daemon.run_loop(config, repo, watermark, notifier, (), skip_initial_checks=True)

    assert [c.args[5] for c in cycle.call_args_list] == [True, False, False]
    sleep.assert_called_with(config.daemon.sync_interval)


# --- Entry point ---


def test_run_bootstraps_then_skips_first_check(
    mocker: MagicMock, config: Config
) -> None:
    """Without a watermark the daemon bootstraps and forces skip mode."""
    mocker.patch("zsh_sync.daemon.setup_logging")
    mocker.patch("zsh_sync.daemon.GitRepo")
    mocker.patch("zsh_sync.daemon.sync_lock", return_value=contextlib.nullcontext())
    bootstrap = mocker.patch("zsh_sync.daemon.bootstrap")
    loop = mocker.patch("zsh_sync.daemon.run_loop", side_effect=KeyboardInterrupt)

    daemon.run(config=config)

    bootstrap.assert_called_once()
    assert loop.call_args.args[5] is True


def test_run_with_existing_watermark(mocker: MagicMock, config: Config) -> None:
    Watermark(config.core.watermark_file).write("abc")
    mocker.patch("zsh_sync.daemon.setup_logging")
    mocker.patch("zsh_sync.daemon.GitRepo")
    mocker.patch("zsh_sync.daemon.sync_lock", return_value=contextlib.nullcontext())
    bootstrap = mocker.patch("zsh_sync.daemon.bootstrap")
    loop = mocker.patch("zsh_sync.daemon.run_loop", side_effect=KeyboardInterrupt)

    daemon.run(config=config)

    bootstrap.assert_not_called()
    assert loop.call_args.args[5] is False


def test_run_exits_without_store(mocker: MagicMock, config: Config) -> None:
    mocker.patch("zsh_sync.daemon.setup_logging")
    mocker.patch(
        "zsh_sync.daemon.GitRepo", side_effect=SyncDirMissingError("Not a git repository")
    )

    with pytest.raises(SystemExit):
        daemon.run(config=config)


def test_run_respects_held_lock(
    mocker: MagicMock, config: Config, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch("zsh_sync.daemon.setup_logging")
    mocker.patch("zsh_sync.daemon.GitRepo")
    mocker.patch("zsh_sync.daemon.sync_lock", side_effect=LockHeldError("held"))
    loop = mocker.patch("zsh_sync.daemon.run_loop")

    daemon.run(config=config)

    loop.assert_not_called()
    assert "Not starting" in caplog.text
