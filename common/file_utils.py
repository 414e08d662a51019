# common/file_utils.py
# -*- coding: utf-8 -*-
"""
File system utility functions: atomic writes, backups and privileged writes
of system configuration files.
"""

import datetime
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from provisioner.config_models import AppSettings

from .command_utils import _symbols, log_message, run_elevated_command

module_logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def atomic_write_text(
    file_path: PathLike,
    content: str,
    mode: int = 0o600,
    dir_mode: int = 0o700,
) -> Path:
    """
    Writes ``content`` to ``file_path`` so that readers only ever see the old
    or the new file.

    The data is written to a temporary file in the same directory, flushed
    and fsynced, given ``mode`` and then renamed over the target. A missing
    parent directory is created with ``dir_mode``.

    Parameters:
        file_path (PathLike): Destination path.
        content (str): Text to write (UTF-8).
        mode (int): Permission bits of the final file. Defaults to 0o600.
        dir_mode (int): Permission bits for a newly created parent directory.

    Returns:
        Path: The destination path.
    """
    target = Path(file_path)
    if not target.parent.exists():
        target.parent.mkdir(parents=True, mode=dir_mode, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_f:
            tmp_f.write(content)
            tmp_f.flush()
            os.fsync(tmp_f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    try:
        dir_fd = os.open(str(target.parent), os.O_RDONLY)
    except OSError:
        return target
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)
    return target


def write_system_file(
    file_path: PathLike,
    content: str,
    app_settings: Optional[AppSettings],
    mode: str = "644",
    owner: str = "root",
    group: str = "root",
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """
    Writes a root-owned file by staging it in a private temporary file and
    moving it into place with ``install`` (via sudo when not root).
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)

    fd, tmp_name = tempfile.mkstemp(prefix="piprov_", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_f:
            tmp_f.write(content)
        run_elevated_command(
            ["install", "-D", "-m", mode, "-o", owner, "-g", group, tmp_name, str(file_path)],
            app_settings,
            current_logger=logger_to_use,
        )
        log_message(
            f"{symbols.get('success', '✅')} Wrote {file_path}",
            "success",
            logger_to_use,
            app_settings,
        )
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)


def read_system_file(
    file_path: PathLike,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """Reads a file that may only be readable by root. Returns None if absent."""
    path = Path(file_path)
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except PermissionError:
        result = run_elevated_command(
            ["cat", str(path)],
            app_settings,
            check=False,
            current_logger=current_logger,
        )
        return result.stdout if result.ok else None


def backup_file(
    file_path: PathLike,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """
    Copies ``file_path`` to a timestamped ``.bak`` sibling, preserving mode
    and ownership.

    Parameters:
        file_path (PathLike): The file to back up.
        app_settings (Optional[AppSettings]): Application settings for symbols.
        current_logger (Optional[logging.Logger]): Logger instance to use.

    Returns:
        Optional[str]: The backup path, or None when the file does not exist.
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)

    exists = run_elevated_command(
        ["test", "-f", str(file_path)],
        app_settings,
        check=False,
        current_logger=logger_to_use,
    )
    if not exists.ok:
        log_message(
            f"{symbols.get('info', 'ℹ️')} File {file_path} does not exist. No backup needed.",
            "info",
            logger_to_use,
            app_settings,
        )
        return None

    timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
    backup_path = f"{file_path}.bak.{timestamp}"
    run_elevated_command(
        ["cp", "-a", str(file_path), backup_path],
        app_settings,
        current_logger=logger_to_use,
    )
    log_message(
        f"{symbols.get('success', '✅')} Backed up {file_path} to {backup_path}",
        "success",
        logger_to_use,
        app_settings,
    )
    return backup_path


def restore_file(
    backup_path: PathLike,
    file_path: PathLike,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Copies a backup made by :func:`backup_file` back over ``file_path``."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)
    run_elevated_command(
        ["cp", "-a", str(backup_path), str(file_path)],
        app_settings,
        current_logger=logger_to_use,
    )
    log_message(
        f"{symbols.get('info', 'ℹ️')} Restored {file_path} from {backup_path}",
        "info",
        logger_to_use,
        app_settings,
    )


def remove_path(
    path: PathLike,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Removes a file or directory tree with elevated privileges."""
    run_elevated_command(
        ["rm", "-rf", str(path)],
        app_settings,
        current_logger=current_logger,
    )
