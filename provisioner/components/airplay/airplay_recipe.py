# provisioner/components/airplay/airplay_recipe.py
# -*- coding: utf-8 -*-
"""
AirPlay 2 receiver recipe: Shairport Sync built from source with NQPTP,
playing through an auto-detected ALSA output.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Type

from common import system_utils
from common.alsa_utils import (
    candidate_devices,
    choose_mixer_control,
    list_mixer_controls,
    list_playback_devices,
    play_test_sound,
)
from common.command_utils import log_message
from common.errors import ExternalCommandFailed, ValidationFailed
from common.network_utils import sanitize_device_name
from provisioner import config as static_config
from provisioner import preflight
from provisioner.base_recipe import BaseRecipe
from provisioner.base_step import BaseStep, StepContext
from provisioner.cli_handler import cli_choose
from provisioner.collector import ConfigParameter
from provisioner.components.system_steps import SystemUpdateStep
from provisioner.preflight import Requirement
from provisioner.registry import RecipeRegistry

from .airplay_steps import (
    AVAHI_SERVICE,
    NQPTP_SERVICE,
    SHAIRPORT_SYNC_SERVICE,
    AudioMixerStep,
    AvahiDaemonStep,
    BuildDependenciesStep,
    FirewallRulesStep,
    NqptpStep,
    ShairportSyncBuildStep,
    ShairportSyncConfigStep,
    ShairportSyncServiceStep,
    ShairportSyncUserStep,
)

module_logger = logging.getLogger(__name__)

_ALSA_DEVICE = re.compile(r"^(plughw|hw):(?P<card>\d+),(?P<device>\d+)$")


def validate_output_device(value: str) -> str:
    if not _ALSA_DEVICE.match(value):
        raise ValidationFailed(f"'{value}' is not an ALSA device like plughw:1,0")
    return value


def validate_card_index(value) -> int:
    try:
        card = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"'{value}' is not a card number") from None
    if card < 0:
        raise ValidationFailed("Card numbers start at 0")
    return card


def card_of(output_device: Optional[str]) -> Optional[int]:
    match = _ALSA_DEVICE.match(output_device or "")
    return int(match.group("card")) if match else None


@RecipeRegistry.register("airplay")
class AirPlayRecipe(BaseRecipe):
    description = "AirPlay 2 receiver (Shairport Sync)"

    def requirements(self) -> List[Requirement]:
        airplay = self.app_settings.airplay
        return [
            preflight.require_not_root_with_sudo(self.app_settings),
            preflight.require_connectivity(self.app_settings),
            preflight.require_disk_space("/", airplay.min_disk_mb, overridable=False),
            preflight.require_memory(self.app_settings.preflight.min_memory_mb),
            preflight.require_commands(static_config.AIRPLAY_REQUIRED_COMMANDS),
            preflight.check_board_model(static_config.AIRPLAY_UNSUPPORTED_MODELS),
            preflight.check_interface("wlan0"),
        ]

    def _detect_output_device(self, context: StepContext) -> Optional[str]:
        """
        Picks the output from ``aplay -l``. A single candidate is taken as is;
        several are offered as a menu (first one in non-interactive runs).
        """
        try:
            devices = candidate_devices(list_playback_devices(self.app_settings, context.logger))
        except ExternalCommandFailed as e:
            log_message(
                f"{self.app_settings.symbols.get('warning', '⚠️')} Could not list audio devices: {e}",
                "warning",
                context.logger,
                self.app_settings,
            )
            return None
        if not devices:
            return None
        if len(devices) == 1 or not context.interactive:
            chosen = devices[0]
        else:
            chosen = devices[cli_choose("Choose the audio output:", [d.label for d in devices], self.app_settings)]
        log_message(
            f"{self.app_settings.symbols.get('speaker', '🔊')} Audio output: {chosen.label}",
            "info",
            context.logger,
            self.app_settings,
        )
        return chosen.alsa_name

    def _detect_mixer_control(self, context: StepContext) -> Optional[str]:
        if self.app_settings.airplay.mixer_control:
            return self.app_settings.airplay.mixer_control
        card = card_of(context.store.get("output_device"))
        if card is None:
            return None
        try:
            return choose_mixer_control(list_mixer_controls(card, self.app_settings, context.logger))
        except ExternalCommandFailed:
            return None

    def parameters(self, context: StepContext) -> List[ConfigParameter]:
        airplay = self.app_settings.airplay
        return [
            ConfigParameter(
                name="device_name",
                prompt="AirPlay device name",
                default=lambda: f"{system_utils.get_hostname()} AirPlay",
                preset=airplay.device_name,
                validator=sanitize_device_name,
            ),
            ConfigParameter(
                name="output_device",
                prompt="ALSA output device (e.g. plughw:1,0)",
                preset=lambda: airplay.output_device or self._detect_output_device(context),
                validator=validate_output_device,
                help="No playback device was detected automatically. Check 'aplay -l'.",
            ),
            ConfigParameter(
                name="card_index",
                prompt="ALSA card index",
                preset=lambda: card_of(context.store.get("output_device")),
                validator=validate_card_index,
            ),
            ConfigParameter(
                name="mixer_control",
                prompt="Mixer control (empty for fixed volume)",
                preset=lambda: self._detect_mixer_control(context),
                optional=True,
            ),
        ]

    def steps(self) -> List[Type[BaseStep]]:
        return [
            SystemUpdateStep,
            BuildDependenciesStep,
            AvahiDaemonStep,
            NqptpStep,
            ShairportSyncBuildStep,
            ShairportSyncConfigStep,
            AudioMixerStep,
            ShairportSyncUserStep,
            ShairportSyncServiceStep,
            FirewallRulesStep,
        ]

    def default_summary_path(self) -> Path:
        return Path("~/airplay_installation_summary.txt").expanduser()

    def post_run(self, context: StepContext) -> None:
        reporter = context.reporter
        device = context.store.get("output_device")
        if self.app_settings.airplay.test_audio or context.ask("Play a short test sound now?"):
            if play_test_sound(device, self.app_settings, context.logger):
                reporter.success(f"Test sound played on {device}.")
            else:
                reporter.warning(f"Test sound failed on {device}; check the speaker connection.")
        if system_utils.has_network_interface("wlan0"):
            reporter.info(
                "Tip: on Wi-Fi, disable power management (raspi-config or "
                "'sudo iw wlan0 set power_save off') to avoid audio dropouts."
            )

    def summary_sections(self, context: StepContext) -> Dict[str, List[str]]:
        store = context.store
        status = system_utils.service_status_snapshot(
            [SHAIRPORT_SYNC_SERVICE, NQPTP_SERVICE, AVAHI_SERVICE], self.app_settings, context.logger
        )
        address = system_utils.get_primary_ip_address(self.app_settings, context.logger)
        return {
            "AirPlay device": [
                f"Host: {system_utils.get_hostname()}" + (f" ({address})" if address else ""),
                f"Name: {store.get('device_name', '')}",
                f"Output: {store.get('output_device', '')}",
                f"Volume: {store.get('mixer_control') or 'fixed (no hardware mixer)'}",
            ],
            "Services": [f"{name}: {state}" for name, state in status.items()],
            "Files": [
                f"Config: {static_config.SHAIRPORT_SYNC_CONF}",
                f"Unit: {static_config.SHAIRPORT_SYNC_UNIT}",
            ],
            "Useful commands": [
                "sudo journalctl -u shairport-sync -f",
                "sudo systemctl restart shairport-sync",
                "sudo systemctl status shairport-sync",
                f"sudo nano {static_config.SHAIRPORT_SYNC_CONF}",
            ],
        }
