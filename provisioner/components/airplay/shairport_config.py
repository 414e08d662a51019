# provisioner/components/airplay/shairport_config.py
# -*- coding: utf-8 -*-
"""
Rendering of ``/etc/shairport-sync.conf``.

The file is libconfig syntax: top-level groups such as ``general = { ... };``
holding ``key = value;`` settings, with the shipped sample carrying most
settings commented out as ``// key = value;``. Managed settings are set in
place (uncommenting the sample line when there is one) and every other line
is left untouched, so re-rendering an already rendered file is a no-op.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from provisioner.config_models import AirPlaySettings

ManagedValues = Dict[str, Dict[str, Any]]

MINIMAL_SKELETON = """\
// Generated by pi-provisioner; the shairport-sync sample file was not available.
general =
{
};

alsa =
{
};
"""

_GROUP_START = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*=\s*(\{.*)?$")


def managed_values(
    airplay: AirPlaySettings,
    device_name: str,
    output_device: str,
    card_index: Optional[int],
    mixer_control: Optional[str],
) -> ManagedValues:
    """Settings owned by the provisioner, grouped by libconfig section."""
    general: Dict[str, Any] = {
        "name": device_name,
        "output_backend": "alsa",
        "volume_max_db": float(airplay.volume_max_db),
        "default_airplay_volume": float(airplay.default_airplay_volume),
        "high_volume_idle_timeout_in_minutes": int(airplay.high_volume_idle_timeout_in_minutes),
    }
    alsa: Dict[str, Any] = {
        "output_device": output_device,
        "output_rate": airplay.output_rate,
        "output_format": airplay.output_format,
    }
    if mixer_control:
        alsa["mixer_control_name"] = mixer_control
        if card_index is not None:
            alsa["mixer_device"] = f"hw:{card_index}"
    return {"general": general, "alsa": alsa}


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return '"yes"' if value else '"no"'
    if isinstance(value, float):
        return f"{value:.1f}"
    if isinstance(value, int):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _setting_line(key: str, value: Any) -> str:
    return f"\t{key} = {format_value(value)};"


def _find_group(lines: List[str], group: str) -> Optional[Tuple[int, int]]:
    """
    Returns ``(open_index, close_index)`` for ``group``: the line holding its
    opening brace and the line holding the matching ``};``.
    """
    for index, line in enumerate(lines):
        match = _GROUP_START.match(line.strip())
        if not match or match.group("name") != group:
            continue
        open_index = index
        if "{" not in line:
            open_index = index + 1
            while open_index < len(lines) and "{" not in lines[open_index]:
                open_index += 1
            if open_index == len(lines):
                return None
        depth = 0
        for close_index in range(open_index, len(lines)):
            stripped = lines[close_index].split("//", 1)[0]
            depth += stripped.count("{") - stripped.count("}")
            if depth <= 0:
                return open_index, close_index
        return None
    return None


def _key_pattern(key: str) -> "re.Pattern[str]":
    return re.compile(rf"^\s*(//\s*)?{re.escape(key)}\s*=\s*.*;")


def _active_pattern(key: str) -> "re.Pattern[str]":
    return re.compile(rf"^\s*{re.escape(key)}\s*=\s*(?P<value>.*?);")


def render_config(template: str, values: ManagedValues) -> str:
    """Applies ``values`` to ``template`` and returns the new file text."""
    lines = template.splitlines()
    for group, settings in values.items():
        bounds = _find_group(lines, group)
        if bounds is None:
            if lines and lines[-1].strip():
                lines.append("")
            lines += [f"{group} =", "{"] + [_setting_line(k, v) for k, v in settings.items()] + ["};"]
            continue

        open_index, close_index = bounds
        if open_index == close_index:
            # Single-line group such as ``general = {};``
            head = lines[open_index].split("{", 1)[0].rstrip()
            lines[open_index:open_index + 1] = [head, "{", "};"]
            open_index, close_index = open_index + 1, open_index + 2

        for key, value in settings.items():
            pattern = _key_pattern(key)
            for index in range(open_index + 1, close_index):
                if pattern.match(lines[index]):
                    lines[index] = _setting_line(key, value)
                    break
            else:
                lines.insert(open_index + 1, _setting_line(key, value))
                close_index += 1
    return "\n".join(lines) + "\n"


def has_managed_values(text: str, values: ManagedValues) -> bool:
    """True when every managed setting is active with the expected value."""
    lines = text.splitlines()
    for group, settings in values.items():
        bounds = _find_group(lines, group)
        if bounds is None:
            return False
        open_index, close_index = bounds
        body = lines[open_index + 1:close_index]
        for key, value in settings.items():
            pattern = _active_pattern(key)
            found = [m.group("value").strip() for m in map(pattern.match, body) if m]
            if format_value(value) not in found:
                return False
    return True
