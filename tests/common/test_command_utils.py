# tests/common/test_command_utils.py
import subprocess
from unittest.mock import MagicMock

import pytest

from common.command_utils import (
    command_exists,
    log_message,
    run_command,
    run_elevated_command,
)
from common.errors import CommandNotFound, CommandTimeout, ExternalCommandFailed


@pytest.fixture
def which_found(mocker):
    return mocker.patch("common.command_utils.shutil.which", return_value="/usr/bin/cmd")


@pytest.fixture
def no_sleep(mocker):
    return mocker.patch("common.command_utils.time.sleep")


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["cmd"], returncode=returncode, stdout=stdout, stderr=stderr)


def test_run_command_success(mocker, which_found, app_settings, mock_logger):
    run_mock = mocker.patch("common.command_utils.subprocess.run", return_value=completed(0, "hello\n"))

    result = run_command(["echo", "hello"], app_settings, timeout=5, current_logger=mock_logger)

    assert result.ok
    assert result.stdout == "hello\n"
    assert result.attempts == 1
    assert run_mock.call_args.kwargs["timeout"] == 5
    assert run_mock.call_args.args[0] == ["echo", "hello"]


def test_run_command_not_found_fails_fast(mocker, app_settings, mock_logger):
    mocker.patch("common.command_utils.shutil.which", return_value=None)
    run_mock = mocker.patch("common.command_utils.subprocess.run")

    with pytest.raises(CommandNotFound):
        run_command(["missing-tool"], app_settings, retries=3, current_logger=mock_logger)

    run_mock.assert_not_called()


def test_run_command_retries_then_succeeds(mocker, which_found, no_sleep, app_settings, mock_logger):
    mocker.patch(
        "common.command_utils.subprocess.run",
        side_effect=[completed(1, stderr="boom"), completed(0, "ok")],
    )

    result = run_command(["flaky"], app_settings, retries=2, backoff=1.0, current_logger=mock_logger)

    assert result.ok
    assert result.attempts == 2
    no_sleep.assert_called_once_with(1.0)


def test_run_command_backoff_is_exponential(mocker, which_found, no_sleep, app_settings, mock_logger):
    mocker.patch("common.command_utils.subprocess.run", return_value=completed(1, stderr="nope"))

    with pytest.raises(ExternalCommandFailed) as excinfo:
        run_command(["bad"], app_settings, retries=2, backoff=2.0, current_logger=mock_logger)

    assert [c.args[0] for c in no_sleep.call_args_list] == [2.0, 4.0]
    assert excinfo.value.result.exit_code == 1
    assert excinfo.value.diagnostic == "nope"


def test_run_command_check_false_returns_failure(mocker, which_found, app_settings, mock_logger):
    mocker.patch("common.command_utils.subprocess.run", return_value=completed(3))

    result = run_command(["bad"], app_settings, check=False, current_logger=mock_logger)

    assert not result.ok
    assert result.exit_code == 3


def test_run_command_acceptable_exit_codes(mocker, which_found, app_settings, mock_logger):
    mocker.patch("common.command_utils.subprocess.run", return_value=completed(9))

    result = run_command(["groupadd", "x"], app_settings, acceptable_exit_codes=(0, 9), current_logger=mock_logger)

    assert result.ok


def test_run_command_timeout(mocker, which_found, app_settings, mock_logger):
    mocker.patch(
        "common.command_utils.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="sleep", timeout=1),
    )

    with pytest.raises(CommandTimeout):
        run_command(["sleep", "10"], app_settings, timeout=1, current_logger=mock_logger)


def test_run_command_passes_input_and_env(mocker, which_found, app_settings, mock_logger):
    run_mock = mocker.patch("common.command_utils.subprocess.run", return_value=completed(0))

    run_command(["mysql"], app_settings, cmd_input="SELECT 1;", env={"MYSQL_PWD": "pw"}, current_logger=mock_logger)

    kwargs = run_mock.call_args.kwargs
    assert kwargs["input"] == "SELECT 1;"
    assert kwargs["env"]["MYSQL_PWD"] == "pw"


def test_run_elevated_command_adds_sudo_when_not_root(mocker, app_settings):
    mocker.patch("common.command_utils.os.geteuid", return_value=1000)
    run_mock = mocker.patch("common.command_utils.run_command", return_value=MagicMock())

    run_elevated_command(["systemctl", "restart", "nqptp"], app_settings, timeout=10)

    run_mock.assert_called_once_with(["sudo", "systemctl", "restart", "nqptp"], app_settings, timeout=10)


def test_run_elevated_command_as_root(mocker, app_settings):
    mocker.patch("common.command_utils.os.geteuid", return_value=0)
    run_mock = mocker.patch("common.command_utils.run_command", return_value=MagicMock())

    run_elevated_command(["true"], app_settings)

    run_mock.assert_called_once_with(["true"], app_settings)


def test_command_exists(mocker):
    mocker.patch("common.command_utils.shutil.which", side_effect=lambda name: "/bin/ls" if name == "ls" else None)

    assert command_exists("ls")
    assert not command_exists("nope")


def test_log_message_levels(mock_logger):
    log_message("a", "warning", mock_logger)
    log_message("b", "success", mock_logger)
    log_message("c", "debug", mock_logger)

    mock_logger.warning.assert_called_once_with("a", exc_info=False)
    mock_logger.info.assert_called_once_with("b", exc_info=False)
    mock_logger.debug.assert_called_once_with("c", exc_info=False)


def test_negative_retries_still_run_once(mocker, which_found, app_settings, mock_logger):
    run_mock = mocker.patch("common.command_utils.subprocess.run", return_value=completed(3, stderr="bad"))

    result = run_command(["cmd"], app_settings, retries=-1, check=False, current_logger=mock_logger)

    assert run_mock.call_count == 1
    assert result.exit_code == 3
    assert not result.ok
