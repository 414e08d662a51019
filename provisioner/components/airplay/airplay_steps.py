# provisioner/components/airplay/airplay_steps.py
# -*- coding: utf-8 -*-
"""
Steps of the AirPlay 2 receiver recipe: build dependencies, Avahi, NQPTP and
Shairport Sync from source, its configuration, mixer, service user, unit and
firewall rules.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from common import system_utils
from common.alsa_utils import mixer_volume_is, set_mixer_volume
from common.command_utils import command_exists, log_message, run_command, run_elevated_command
from common.errors import ExternalCommandFailed
from common.file_utils import backup_file, read_system_file, remove_path, restore_file, write_system_file
from provisioner import config as static_config
from provisioner.base_step import BaseStep
from provisioner.components.system_steps import PackagesStep
from provisioner.config_models import AppSettings

from .shairport_config import MINIMAL_SKELETON, has_managed_values, managed_values, render_config

module_logger = logging.getLogger(__name__)

NQPTP_SERVICE = "nqptp"
SHAIRPORT_SYNC_SERVICE = "shairport-sync"
AVAHI_SERVICE = "avahi-daemon"


def build_from_source(
    repo_url: str,
    source_dir: Path,
    configure_flags: Sequence[str],
    app_settings: AppSettings,
    install_binary: Optional[str] = None,
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """
    Clones ``repo_url`` into ``source_dir`` and runs the autotools build:
    ``autoreconf -fi``, ``./configure``, ``make -j<nproc>`` and an elevated
    ``make install``.

    When ``install_binary`` is given a failing ``make install`` is tolerated
    as long as that binary exists afterwards (shairport-sync's install target
    also tries to set up its own service user and unit).
    """
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    timeout = app_settings.engine.command_timeout

    if source_dir.exists():
        remove_path(source_dir, app_settings, logger_to_use)
    log_message(
        f"{symbols.get('package', '📦')} Cloning {repo_url}...",
        "info",
        logger_to_use,
        app_settings,
    )
    run_command(
        ["git", "clone", "--depth", "1", repo_url, str(source_dir)],
        app_settings,
        timeout=600,
        retries=2,
        current_logger=logger_to_use,
    )

    cwd = str(source_dir)
    log_message(
        f"{symbols.get('gear', '⚙️')} Building {source_dir.name} (this can take a while on a Pi)...",
        "info",
        logger_to_use,
        app_settings,
    )
    run_command(["autoreconf", "-fi"], app_settings, timeout=timeout, cwd=cwd, current_logger=logger_to_use)
    run_command(
        ["./configure"] + list(configure_flags),
        app_settings,
        timeout=timeout,
        cwd=cwd,
        current_logger=logger_to_use,
    )
    run_command(
        ["make", f"-j{system_utils.cpu_count()}"],
        app_settings,
        timeout=timeout,
        cwd=cwd,
        current_logger=logger_to_use,
    )
    try:
        run_elevated_command(["make", "install"], app_settings, timeout=timeout, cwd=cwd, current_logger=logger_to_use)
    except ExternalCommandFailed:
        if install_binary and Path(install_binary).exists():
            log_message(
                f"{symbols.get('warning', '⚠️')} 'make install' reported errors but {install_binary} "
                "is installed; continuing.",
                "warning",
                logger_to_use,
                app_settings,
            )
        else:
            raise


class BuildDependenciesStep(PackagesStep):
    step_id = "build_dependencies"
    description = "Install build dependencies"
    packages = static_config.AIRPLAY_BUILD_PACKAGES
    critical_packages = static_config.AIRPLAY_CRITICAL_PACKAGES


class AvahiDaemonStep(BaseStep):
    step_id = "avahi_daemon"
    description = "Enable the Avahi mDNS daemon"

    def detect(self) -> bool:
        return system_utils.service_is_active(AVAHI_SERVICE, self.app_settings, self.logger) and \
            system_utils.service_is_enabled(AVAHI_SERVICE, self.app_settings, self.logger)

    def apply(self) -> None:
        was_active = system_utils.service_is_active(AVAHI_SERVICE, self.app_settings, self.logger)
        system_utils.systemctl("enable", [AVAHI_SERVICE], self.app_settings, self.logger)
        system_utils.systemctl("start", [AVAHI_SERVICE], self.app_settings, self.logger)
        if not was_active:
            self.register_cleanup(
                "stop avahi-daemon",
                lambda: system_utils.systemctl("stop", [AVAHI_SERVICE], self.app_settings, self.logger),
            )

    def verify(self) -> bool:
        return system_utils.wait_for_service_active(AVAHI_SERVICE, self.app_settings, current_logger=self.logger)


class SourceBuildStep(BaseStep):
    """Shared plumbing for the two autotools builds."""

    network_bound = True
    source_name = ""

    @property
    def source_dir(self) -> Path:
        return Path(self.app_settings.airplay.build_dir) / self.source_name

    def build(self, repo_url: str, configure_flags: Sequence[str], install_binary: Optional[str] = None) -> None:
        source_dir = self.source_dir
        self.register_cleanup(
            f"remove build directory {source_dir}",
            lambda: remove_path(source_dir, self.app_settings, self.logger),
        )
        build_from_source(repo_url, source_dir, configure_flags, self.app_settings, install_binary, self.logger)


class NqptpStep(SourceBuildStep):
    step_id = "nqptp"
    description = "Build and start NQPTP (AirPlay 2 timing)"
    source_name = "nqptp"

    def detect(self) -> bool:
        return Path(static_config.NQPTP_BINARY).exists() and \
            system_utils.service_is_active(NQPTP_SERVICE, self.app_settings, self.logger)

    def apply(self) -> None:
        self.build(self.app_settings.airplay.nqptp_repo, ["--with-systemd-startup"])
        system_utils.systemd_reload(self.app_settings, self.logger)
        system_utils.systemctl("enable", [NQPTP_SERVICE], self.app_settings, self.logger)
        system_utils.systemctl("restart", [NQPTP_SERVICE], self.app_settings, self.logger)
        self.register_cleanup(
            "stop nqptp",
            lambda: system_utils.systemctl("stop", [NQPTP_SERVICE], self.app_settings, self.logger),
        )

    def verify(self) -> bool:
        return system_utils.wait_for_service_active(
            NQPTP_SERVICE, self.app_settings, retries=3, delay=2.0, current_logger=self.logger
        )


def supports_airplay2(version_output: Optional[str]) -> bool:
    return bool(version_output) and "AirPlay2" in version_output


class ShairportSyncBuildStep(SourceBuildStep):
    step_id = "shairport_sync_build"
    description = "Build Shairport Sync with AirPlay 2 support"
    source_name = "shairport-sync"

    def detect(self) -> bool:
        version = system_utils.binary_version(
            static_config.SHAIRPORT_SYNC_BINARY, self.app_settings, "-V", self.logger
        )
        return supports_airplay2(version)

    def apply(self) -> None:
        airplay = self.app_settings.airplay
        self.build(
            airplay.shairport_sync_repo,
            airplay.shairport_sync_configure_flags,
            install_binary=static_config.SHAIRPORT_SYNC_BINARY,
        )

    def verify(self) -> bool:
        return self.detect()


class ShairportSyncConfigStep(BaseStep):
    step_id = "shairport_sync_config"
    description = "Write /etc/shairport-sync.conf"

    def _values(self):
        card_index = self.config("card_index")
        return managed_values(
            self.app_settings.airplay,
            device_name=self.config("device_name"),
            output_device=self.config("output_device"),
            card_index=int(card_index) if card_index not in (None, "") else None,
            mixer_control=self.config("mixer_control") or None,
        )

    def _current(self) -> Optional[str]:
        return read_system_file(static_config.SHAIRPORT_SYNC_CONF, self.app_settings, self.logger)

    def detect(self) -> bool:
        current = self._current()
        return current is not None and has_managed_values(current, self._values())

    def apply(self) -> None:
        conf = static_config.SHAIRPORT_SYNC_CONF
        current = self._current()
        if current is not None:
            backup = backup_file(conf, self.app_settings, self.logger)
            if backup:
                self.register_cleanup(
                    f"restore {conf}",
                    lambda: restore_file(backup, conf, self.app_settings, self.logger),
                )
            template = current
        else:
            self.register_cleanup(f"remove {conf}", lambda: remove_path(conf, self.app_settings, self.logger))
            sample = read_system_file(static_config.SHAIRPORT_SYNC_CONF_SAMPLE, self.app_settings, self.logger)
            if sample is None:
                log_message(
                    f"{self.symbols.get('warning', '⚠️')} Sample config not found; starting from a minimal file.",
                    "warning",
                    self.logger,
                    self.app_settings,
                )
            template = sample if sample is not None else MINIMAL_SKELETON

        write_system_file(conf, render_config(template, self._values()), self.app_settings, current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class AudioMixerStep(BaseStep):
    step_id = "audio_mixer"
    description = "Set the output mixer to 100%"

    def _target(self) -> Optional[Tuple[int, str]]:
        control = self.config("mixer_control")
        card = self.config("card_index")
        if not control or card in (None, ""):
            return None
        return int(card), control

    def detect(self) -> bool:
        target = self._target()
        if target is None:
            log_message(
                f"{self.symbols.get('info', 'ℹ️')} No hardware mixer; volume stays fixed.",
                "info",
                self.logger,
                self.app_settings,
            )
            return True
        return mixer_volume_is(target[0], target[1], self.app_settings, current_logger=self.logger)

    def apply(self) -> None:
        target = self._target()
        if target is not None:
            set_mixer_volume(target[0], target[1], self.app_settings, current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class ShairportSyncUserStep(BaseStep):
    step_id = "shairport_sync_user"
    description = "Create the shairport-sync service user"

    def _groups(self) -> Optional[List[str]]:
        result = run_command(
            ["id", "-nG", static_config.SHAIRPORT_SYNC_USER],
            self.app_settings,
            check=False,
            current_logger=self.logger,
        )
        return result.stdout.split() if result.ok else None

    def detect(self) -> bool:
        groups = self._groups()
        return groups is not None and "audio" in groups

    def apply(self) -> None:
        user = static_config.SHAIRPORT_SYNC_USER
        # 9: group/user already exists
        run_elevated_command(
            ["groupadd", "-r", user],
            self.app_settings,
            acceptable_exit_codes=(0, 9),
            current_logger=self.logger,
        )
        if self._groups() is None:
            run_elevated_command(
                ["useradd", "-r", "-M", "-g", user, "-G", "audio", "-s", "/usr/sbin/nologin", user],
                self.app_settings,
                acceptable_exit_codes=(0, 9),
                current_logger=self.logger,
            )
        else:
            run_elevated_command(["usermod", "-aG", "audio", user], self.app_settings, current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class ShairportSyncServiceStep(BaseStep):
    step_id = "shairport_sync_service"
    description = "Enable and start the shairport-sync service"

    def apply(self) -> None:
        unit_path = static_config.SHAIRPORT_SYNC_UNIT
        if not Path(unit_path).exists() and not system_utils.service_unit_exists(
            SHAIRPORT_SYNC_SERVICE, self.app_settings, self.logger
        ):
            write_system_file(
                unit_path, static_config.SHAIRPORT_SYNC_UNIT_CONTENT, self.app_settings, current_logger=self.logger
            )
        system_utils.systemd_reload(self.app_settings, self.logger)
        system_utils.systemctl("enable", [SHAIRPORT_SYNC_SERVICE], self.app_settings, self.logger)
        self.register_cleanup(
            "stop shairport-sync",
            lambda: system_utils.systemctl("stop", [SHAIRPORT_SYNC_SERVICE], self.app_settings, self.logger),
        )
        system_utils.systemctl("restart", [SHAIRPORT_SYNC_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        return system_utils.wait_for_service_active(
            SHAIRPORT_SYNC_SERVICE, self.app_settings, retries=5, delay=2.0, current_logger=self.logger
        )


def parse_ufw_status(output: str) -> Tuple[bool, List[str]]:
    """Returns whether ufw is active and the list of allowed rule targets."""
    active = bool(re.search(r"^Status:\s*active\b", output, re.MULTILINE))
    allowed = []
    for line in output.splitlines():
        match = re.match(r"^(?P<target>\S+)\s+ALLOW\b", line.strip())
        if match:
            allowed.append(match.group("target"))
    return active, allowed


class FirewallRulesStep(BaseStep):
    step_id = "firewall_rules"
    description = "Open AirPlay ports in ufw"

    def _status(self) -> Tuple[bool, List[str]]:
        if not command_exists("ufw"):
            return False, []
        result = run_elevated_command(["ufw", "status"], self.app_settings, check=False, current_logger=self.logger)
        return parse_ufw_status(result.stdout) if result.ok else (False, [])

    def _missing(self, allowed: List[str]) -> List[str]:
        return [port for port in self.app_settings.airplay.firewall_ports if port not in allowed]

    def detect(self) -> bool:
        active, allowed = self._status()
        if not active:
            log_message(
                f"{self.symbols.get('info', 'ℹ️')} ufw is not active; no firewall rules needed.",
                "info",
                self.logger,
                self.app_settings,
            )
            return True
        return not self._missing(allowed)

    def apply(self) -> None:
        _, allowed = self._status()
        for port in self._missing(allowed):
            run_elevated_command(["ufw", "allow", port], self.app_settings, current_logger=self.logger)

    def verify(self) -> bool:
        active, allowed = self._status()
        return not active or not self._missing(allowed)
