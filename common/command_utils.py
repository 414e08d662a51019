# common/command_utils.py
# -*- coding: utf-8 -*-
"""
Utilities for executing external commands and logging their output.

Every invocation goes through :func:`run_command`, which checks that the
executable exists, enforces a timeout, retries with exponential backoff and
records each attempt in the run log. Interpretation of the output is left to
the caller.
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from common.errors import CommandNotFound, CommandTimeout, ExternalCommandFailed
from provisioner.config_models import SYMBOLS_DEFAULT, AppSettings

module_logger = logging.getLogger(__name__)

_OUTPUT_TAIL_LINES = 20


@dataclass
class ExternalProcessResult:
    """Outcome of one shelled-out command (the last attempt when retried)."""

    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    attempts: int = 1
    acceptable_exit_codes: Sequence[int] = (0,)

    @property
    def ok(self) -> bool:
        return self.exit_code in self.acceptable_exit_codes


def log_message(
    message: str,
    level: str = "info",
    current_logger: Optional[logging.Logger] = None,
    app_settings: Optional[AppSettings] = None,
    exc_info: bool = False,
) -> None:
    """
    Logs a message at a named level.

    Args:
        message (str): The log message to be recorded.
        level (str): One of "debug", "info", "success", "warning", "error"
            or "critical". "success" is logged at INFO. Defaults to "info".
        current_logger (Optional[logging.Logger]): Logger to use. If not
            provided, the module-level logger is used.
        app_settings (Optional[AppSettings]): Application settings (kept for
            call-site symmetry with the other helpers).
        exc_info (bool): Whether to attach exception information.
    """
    effective_logger = current_logger if current_logger else module_logger

    if level == "warning":
        effective_logger.warning(message, exc_info=exc_info)
    elif level == "error":
        effective_logger.error(message, exc_info=exc_info)
    elif level == "critical":
        effective_logger.critical(message, exc_info=exc_info)
    elif level == "debug":
        effective_logger.debug(message, exc_info=exc_info)
    else:
        effective_logger.info(message, exc_info=exc_info)


def _symbols(app_settings: Optional[AppSettings]) -> Dict[str, str]:
    return (
        app_settings.symbols
        if app_settings and app_settings.symbols
        else SYMBOLS_DEFAULT
    )


def _tail(text: Optional[str], lines: int = _OUTPUT_TAIL_LINES) -> str:
    if not text:
        return ""
    return "\n".join(text.strip().splitlines()[-lines:])


def _get_elevated_command_prefix() -> List[str]:
    """
    Returns ["sudo"] when the process is not running as root, otherwise an
    empty list.
    """
    return [] if os.geteuid() == 0 else ["sudo"]


def run_command(
    command: Sequence[str],
    app_settings: Optional[AppSettings],
    *,
    timeout: Optional[float] = None,
    retries: int = 0,
    backoff: float = 2.0,
    acceptable_exit_codes: Iterable[int] = (0,),
    check: bool = True,
    capture_output: bool = True,
    cmd_input: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> ExternalProcessResult:
    """
    Executes an external command with timeout and retry policy.

    The command name is resolved on PATH before anything is executed; a
    missing executable fails fast without retrying. A non-acceptable exit
    code or a timeout is retried up to ``retries`` more times, sleeping
    ``backoff * 2 ** (attempt - 1)`` seconds between attempts.

    Args:
        command: The command and its arguments.
        app_settings: Application settings providing the log symbols.
        timeout: Seconds before the process is killed. None waits forever.
        retries: Extra attempts after the first one.
        backoff: Base delay in seconds for the exponential backoff.
        acceptable_exit_codes: Exit codes treated as success.
        check: Raise on failure after the last attempt. When False the
            result is returned for the caller to interpret.
        capture_output: Capture stdout/stderr. When False the output goes
            straight to the terminal.
        cmd_input: Text passed on stdin.
        current_logger: Logger to use instead of the module logger.
        cwd: Working directory for the command.
        env: Extra environment variables merged over os.environ.

    Returns:
        ExternalProcessResult for the last attempt.

    Raises:
        CommandNotFound: The executable is not on PATH.
        CommandTimeout: The last attempt timed out and ``check`` is True.
        ExternalCommandFailed: The last attempt exited with a
            non-acceptable code and ``check`` is True.
    """
    effective_logger = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)
    command_list = [str(part) for part in command]
    command_str = subprocess.list2cmdline(command_list)
    acceptable = tuple(acceptable_exit_codes)

    if not command_list or shutil.which(command_list[0]) is None:
        name = command_list[0] if command_list else "<empty>"
        log_message(
            f"{symbols.get('error', '❌')} Command not found: {name}. Ensure it's installed and in PATH.",
            "error",
            effective_logger,
            app_settings,
        )
        raise CommandNotFound(
            f"Command not found: {name}",
            ExternalProcessResult(command_list, 127, acceptable_exit_codes=acceptable),
        )

    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)

    total_attempts = max(retries, 0) + 1
    result: Optional[ExternalProcessResult] = None
    timed_out = False

    for attempt in range(1, total_attempts + 1):
        attempt_info = f" (attempt {attempt}/{total_attempts})" if total_attempts > 1 else ""
        log_message(
            f"{symbols.get('gear', '⚙️')} Executing: {command_str}{f' (in {cwd})' if cwd else ''}{attempt_info}",
            "debug",
            effective_logger,
            app_settings,
        )
        started = time.monotonic()
        timed_out = False
        try:
            completed = subprocess.run(
                command_list,
                check=False,
                capture_output=capture_output,
                text=True,
                input=cmd_input,
                cwd=cwd,
                env=run_env,
                timeout=timeout,
            )
            exit_code = completed.returncode
            stdout = completed.stdout or ""
            stderr = completed.stderr or ""
        except subprocess.TimeoutExpired as e:
            timed_out = True
            exit_code = -9
            stdout = e.stdout if isinstance(e.stdout, str) else ""
            stderr = e.stderr if isinstance(e.stderr, str) else ""
        duration_ms = int((time.monotonic() - started) * 1000)

        result = ExternalProcessResult(
            command=command_list,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            attempts=attempt,
            acceptable_exit_codes=acceptable,
        )

        log_message(
            f"   rc={exit_code} duration={duration_ms}ms{' TIMEOUT' if timed_out else ''}: {command_str}",
            "debug",
            effective_logger,
            app_settings,
        )
        if _tail(stdout):
            log_message(f"   stdout: {_tail(stdout)}", "debug", effective_logger, app_settings)
        if _tail(stderr):
            log_message(f"   stderr: {_tail(stderr)}", "debug", effective_logger, app_settings)

        if not timed_out and result.ok:
            return result

        if attempt < total_attempts:
            delay = backoff * (2 ** (attempt - 1))
            reason = f"timed out after {timeout}s" if timed_out else f"failed (rc {exit_code})"
            log_message(
                f"{symbols.get('warning', '!')} `{command_str}` {reason}; retrying in {delay:g}s "
                f"(attempt {attempt + 1}/{total_attempts})",
                "warning",
                effective_logger,
                app_settings,
            )
            time.sleep(delay)

    if not check:
        return result

    if timed_out:
        log_message(
            f"{symbols.get('error', '❌')} Command `{command_str}` timed out after {timeout}s.",
            "error",
            effective_logger,
            app_settings,
        )
        raise CommandTimeout(f"`{command_str}` timed out after {timeout}s", result)

    log_message(
        f"{symbols.get('error', '❌')} Command `{command_str}` failed (rc {result.exit_code}).",
        "error",
        effective_logger,
        app_settings,
    )
    if _tail(result.stderr, 5):
        log_message(f"   stderr: {_tail(result.stderr, 5)}", "error", effective_logger, app_settings)
    raise ExternalCommandFailed(
        f"`{command_str}` failed with exit code {result.exit_code}", result
    )


def run_elevated_command(
    command: Sequence[str],
    app_settings: Optional[AppSettings],
    **kwargs,
) -> ExternalProcessResult:
    """
    Executes a command with root privileges, prefixing ``sudo`` when the
    current process is not already root. Accepts the keyword arguments of
    :func:`run_command`.
    """
    prefix = _get_elevated_command_prefix()
    return run_command(prefix + list(command), app_settings, **kwargs)


def command_exists(command_name: str) -> bool:
    """
    Check if a command exists in the system's PATH.

    Parameters:
        command_name (str): The name of the command to check for existence.

    Returns:
        bool: True if the command is found in the system's PATH, False otherwise.
    """
    return shutil.which(command_name) is not None
