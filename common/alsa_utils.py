# common/alsa_utils.py
# -*- coding: utf-8 -*-
"""
ALSA adapter: enumerates playback devices and mixer controls and sets the
output volume. All parsing of ``aplay``/``amixer`` output lives here.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from provisioner.config_models import AppSettings

from .command_utils import log_message, run_command, run_elevated_command

module_logger = logging.getLogger(__name__)

BUILTIN_DEVICE_PATTERN = re.compile(r"bcm2835|Headphones|vc4-hdmi", re.IGNORECASE)
PREFERRED_MIXER_CONTROLS: Sequence[str] = ("PCM", "Master", "Speaker", "Headphone", "Digital")

_APLAY_LINE = re.compile(
    r"^card\s+(?P<card>\d+):\s*(?P<card_id>[^\s\[]+)\s*\[(?P<card_name>[^\]]*)\],\s*"
    r"device\s+(?P<device>\d+):\s*(?P<device_id>[^\[]*?)\s*\[(?P<device_name>[^\]]*)\]"
)
_MIXER_LINE = re.compile(r"Simple mixer control '(?P<name>[^']+)',(?P<index>\d+)")


@dataclass
class AudioDevice:
    """One playback device as listed by ``aplay -l``."""

    card: int
    device: int
    card_id: str
    card_name: str
    device_name: str

    @property
    def is_builtin(self) -> bool:
        return bool(
            BUILTIN_DEVICE_PATTERN.search(self.card_id)
            or BUILTIN_DEVICE_PATTERN.search(self.card_name)
            or BUILTIN_DEVICE_PATTERN.search(self.device_name)
        )

    @property
    def alsa_name(self) -> str:
        return f"plughw:{self.card},{self.device}"

    @property
    def label(self) -> str:
        return f"{self.card_name} - {self.device_name} ({self.alsa_name})"


def parse_aplay_list(output: str) -> List[AudioDevice]:
    """Parses the ``card N: ... device M: ...`` lines of ``aplay -l``."""
    devices = []
    for line in output.splitlines():
        match = _APLAY_LINE.match(line.strip())
        if not match:
            continue
        devices.append(
            AudioDevice(
                card=int(match.group("card")),
                device=int(match.group("device")),
                card_id=match.group("card_id").strip(),
                card_name=match.group("card_name").strip(),
                device_name=match.group("device_name").strip(),
            )
        )
    return devices


def candidate_devices(devices: List[AudioDevice]) -> List[AudioDevice]:
    """
    External devices when any are present, otherwise the built-in ones.
    """
    external = [d for d in devices if not d.is_builtin]
    return external if external else list(devices)


def list_playback_devices(
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> List[AudioDevice]:
    result = run_command(
        ["aplay", "-l"],
        app_settings,
        timeout=30,
        check=False,
        current_logger=current_logger,
    )
    return parse_aplay_list(result.stdout)


def parse_mixer_controls(output: str) -> List[str]:
    """Extracts control names from ``amixer scontrols`` output, in order."""
    return [m.group("name") for m in _MIXER_LINE.finditer(output)]


def choose_mixer_control(controls: List[str]) -> Optional[str]:
    for preferred in PREFERRED_MIXER_CONTROLS:
        if preferred in controls:
            return preferred
    return controls[0] if controls else None


def list_mixer_controls(
    card: int,
    app_settings: Optional[AppSettings],
    current_logger: Optional[logging.Logger] = None,
) -> List[str]:
    result = run_command(
        ["amixer", "-c", str(card), "scontrols"],
        app_settings,
        timeout=30,
        check=False,
        current_logger=current_logger,
    )
    return parse_mixer_controls(result.stdout) if result.ok else []


def set_mixer_volume(
    card: int,
    control: str,
    app_settings: AppSettings,
    level: str = "100%",
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Sets ``control`` on ``card`` to ``level`` unmuted and stores the ALSA state."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    run_command(
        ["amixer", "-c", str(card), "set", control, level, "unmute"],
        app_settings,
        timeout=30,
        current_logger=logger_to_use,
    )
    run_elevated_command(
        ["alsactl", "store"],
        app_settings,
        timeout=30,
        check=False,
        current_logger=logger_to_use,
    )
    log_message(
        f"{symbols.get('speaker', '🔊')} Mixer '{control}' on card {card} set to {level}.",
        "info",
        logger_to_use,
        app_settings,
    )


def mixer_volume_is(
    card: int,
    control: str,
    app_settings: Optional[AppSettings],
    level: str = "100%",
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """True when every channel of ``control`` reports ``level`` and is not muted."""
    result = run_command(
        ["amixer", "-c", str(card), "get", control],
        app_settings,
        timeout=30,
        check=False,
        current_logger=current_logger,
    )
    if not result.ok:
        return False
    levels = re.findall(r"\[(\d+%)\]", result.stdout)
    return bool(levels) and all(lv == level for lv in levels) and "[off]" not in result.stdout


def play_test_sound(
    device: str,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> bool:
    """Plays one ``speaker-test`` WAV loop on ``device`` with a 10s limit."""
    result = run_command(
        ["speaker-test", "-D", device, "-c", "2", "-t", "wav", "-l", "1"],
        app_settings,
        timeout=10,
        check=False,
        current_logger=current_logger,
    )
    return result.ok
