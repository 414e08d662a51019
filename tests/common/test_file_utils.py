# tests/common/test_file_utils.py
import os
import stat

from common.file_utils import (
    atomic_write_text,
    backup_file,
    read_system_file,
    write_system_file,
)


def test_atomic_write_text_creates_parent_and_mode(tmp_path):
    target = tmp_path / "nested" / "state.json"

    atomic_write_text(target, '{"a": 1}\n', mode=0o600)

    assert target.read_text(encoding="utf-8") == '{"a": 1}\n'
    assert stat.S_IMODE(os.stat(target).st_mode) == 0o600
    assert [p.name for p in target.parent.iterdir()] == ["state.json"]


def test_atomic_write_text_replaces(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("old", encoding="utf-8")

    atomic_write_text(target, "new")

    assert target.read_text(encoding="utf-8") == "new"


def test_read_system_file_missing(tmp_path, app_settings):
    assert read_system_file(tmp_path / "nope", app_settings) is None


def test_read_system_file(tmp_path, app_settings):
    path = tmp_path / "conf"
    path.write_text("x = 1\n", encoding="utf-8")

    assert read_system_file(path, app_settings) == "x = 1\n"


def test_write_system_file_uses_install(mocker, app_settings, mock_logger):
    run_mock = mocker.patch("common.file_utils.run_elevated_command")

    write_system_file("/etc/shairport-sync.conf", "general = {};\n", app_settings, mode="640",
                      owner="root", group="www-data", current_logger=mock_logger)

    command = run_mock.call_args.args[0]
    assert command[:8] == ["install", "-D", "-m", "640", "-o", "root", "-g", "www-data"]
    assert command[-1] == "/etc/shairport-sync.conf"
    assert not os.path.exists(command[-2])


def test_backup_file_missing(mocker, app_settings, mock_logger, result_factory):
    run_mock = mocker.patch("common.file_utils.run_elevated_command", return_value=result_factory(exit_code=1))

    assert backup_file("/etc/missing.conf", app_settings, mock_logger) is None
    run_mock.assert_called_once()


def test_backup_file_copies(mocker, app_settings, mock_logger, result_factory):
    run_mock = mocker.patch("common.file_utils.run_elevated_command", return_value=result_factory())

    backup = backup_file("/etc/php.ini", app_settings, mock_logger)

    assert backup.startswith("/etc/php.ini.bak.")
    assert run_mock.call_args.args[0] == ["cp", "-a", "/etc/php.ini", backup]
