# common/system_utils.py
# -*- coding: utf-8 -*-
"""
System-level utility functions for the provisioner.

This module includes probes for privilege, disk, memory, CPU architecture and
board model, plus the systemd helpers the installer steps rely on.
"""

import logging
import os
import platform
import re
import shutil
import socket
import time
from pathlib import Path
from typing import List, Optional

from common.errors import CommandNotFound
from provisioner.config_models import AppSettings

from .command_utils import (
    _symbols,
    command_exists,
    log_message,
    run_command,
    run_elevated_command,
)

module_logger = logging.getLogger(__name__)

ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "armhf": "arm",
}


def is_root() -> bool:
    return os.geteuid() == 0


def can_sudo(
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """True when sudo is installed and usable (may prompt once for a password)."""
    if not command_exists("sudo"):
        return False
    result = run_command(
        ["sudo", "-v"],
        app_settings,
        check=False,
        capture_output=False,
        current_logger=current_logger,
    )
    return result.ok


def free_disk_mb(path: str = "/") -> int:
    return shutil.disk_usage(path).free // (1024 * 1024)


def available_memory_mb(meminfo_path: str = "/proc/meminfo") -> Optional[int]:
    """Reads MemAvailable from /proc/meminfo. None if it cannot be read."""
    try:
        with open(meminfo_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.startswith("MemAvailable:"):
                    return int(line.split()[1]) // 1024
    except (OSError, ValueError, IndexError):
        return None
    return None


def detect_architecture(machine: Optional[str] = None) -> str:
    """
    Maps the kernel machine name to the suffix used by release downloads
    (amd64, arm64 or arm).

    Raises:
        ValueError: For an unsupported architecture.
    """
    machine = (machine or platform.machine()).lower()
    try:
        return ARCH_MAP[machine]
    except KeyError:
        raise ValueError(f"Unsupported architecture: {machine}") from None


def get_pi_model(model_path: str = "/proc/device-tree/model") -> Optional[str]:
    try:
        return Path(model_path).read_text(encoding="utf-8", errors="ignore").strip("\x00\n ")
    except OSError:
        return None


def has_network_interface(name: str, sys_class_net: str = "/sys/class/net") -> bool:
    return (Path(sys_class_net) / name).exists()


def get_hostname() -> str:
    return socket.gethostname()


def get_primary_ip_address(
    app_settings: Optional[AppSettings] = None,
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """
    Get the primary IP address of the machine by opening a UDP socket
    towards a public address (no packet is sent).
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = _symbols(app_settings)
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return str(s.getsockname()[0])
        finally:
            s.close()
    except OSError as e:
        log_message(
            f"{symbols.get('warning', '!')} Could not determine primary IP address: {e}",
            "warning",
            logger_to_use,
            app_settings,
        )
        return None


def cpu_count() -> int:
    return os.cpu_count() or 1


def binary_version(
    binary: str,
    app_settings: Optional[AppSettings],
    version_flag: str = "--version",
    current_logger: Optional[logging.Logger] = None,
) -> Optional[str]:
    """Returns the combined version output of ``binary`` or None if it is missing."""
    try:
        result = run_command(
            [binary, version_flag],
            app_settings,
            timeout=30,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return None
    output = f"{result.stdout}\n{result.stderr}".strip()
    return output or None


# --- systemd helpers ---


def systemd_reload(
    app_settings: AppSettings, current_logger: Optional[logging.Logger] = None
) -> None:
    """Reload the systemd daemon."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    log_message(
        f"{symbols.get('gear', '⚙️')} Reloading systemd daemon...",
        "info",
        logger_to_use,
        app_settings,
    )
    run_elevated_command(
        ["systemctl", "daemon-reload"],
        app_settings,
        current_logger=logger_to_use,
    )


def service_is_active(
    service: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    try:
        result = run_command(
            ["systemctl", "is-active", "--quiet", service],
            app_settings,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return False
    return result.ok


def service_is_enabled(
    service: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    try:
        result = run_command(
            ["systemctl", "is-enabled", "--quiet", service],
            app_settings,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return False
    return result.ok


def service_unit_exists(
    service: str,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    try:
        result = run_command(
            ["systemctl", "cat", service],
            app_settings,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return False
    return result.ok


def systemctl(
    action: str,
    services: List[str],
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Runs ``systemctl <action> <services...>`` with elevated privileges."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    log_message(
        f"{symbols.get('gear', '⚙️')} systemctl {action} {' '.join(services)}",
        "info",
        logger_to_use,
        app_settings,
    )
    run_elevated_command(
        ["systemctl", action] + list(services),
        app_settings,
        timeout=120,
        current_logger=logger_to_use,
    )


def wait_for_service_active(
    service: str,
    app_settings: AppSettings,
    retries: int = 3,
    delay: float = 2.0,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """Polls ``systemctl is-active`` up to ``retries`` times."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    for attempt in range(1, retries + 1):
        if service_is_active(service, app_settings, logger_to_use):
            return True
        if attempt < retries:
            log_message(
                f"{symbols.get('info', 'ℹ️')} Waiting for {service} to become active "
                f"({attempt}/{retries})...",
                "info",
                logger_to_use,
                app_settings,
            )
            time.sleep(delay)
    return False


def service_status_snapshot(
    services: List[str],
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> dict:
    """Maps each service to its ``systemctl is-active`` word (active, inactive, ...)."""
    snapshot = {}
    for service in services:
        try:
            result = run_command(
                ["systemctl", "is-active", service],
                app_settings,
                check=False,
                current_logger=current_logger,
            )
            snapshot[service] = result.stdout.strip() or "unknown"
        except CommandNotFound:
            snapshot[service] = "unknown"
    return snapshot


def journal_contains(
    service: str,
    pattern: str,
    app_settings: AppSettings,
    lines: int = 100,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """True if the recent journal of ``service`` matches the regex ``pattern``."""
    result = run_elevated_command(
        ["journalctl", "-u", service, "-n", str(lines), "--no-pager"],
        app_settings,
        check=False,
        current_logger=current_logger,
    )
    return bool(re.search(pattern, result.stdout or ""))
