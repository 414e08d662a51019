# tests/components/test_shairport_config.py
import pytest

from provisioner.components.airplay.shairport_config import (
    MINIMAL_SKELETON,
    format_value,
    has_managed_values,
    managed_values,
    render_config,
)
from provisioner.config_models import AirPlaySettings

SAMPLE = """\
// Sample Configuration File for Shairport Sync
general =
{
//	name = "%H"; // This means "Hostname" -- see below.
//	output_backend = "alsa";
//	volume_max_db = 0.0;
	ignore_volume_control = "no";
};

sessioncontrol =
{
//	run_this_before_play_begins = "/full/path/to/application and args";
};

alsa =
{
//	output_device = "default";
//	mixer_control_name = "PCM";
//	output_rate = "auto";
};
"""


@pytest.fixture
def values():
    return managed_values(AirPlaySettings(), "Living Room", "plughw:1,0", 1, "Speaker")


def test_managed_values(values):
    assert values["general"]["name"] == "Living Room"
    assert values["general"]["volume_max_db"] == 4.0
    assert values["alsa"]["mixer_device"] == "hw:1"


def test_managed_values_without_mixer():
    values = managed_values(AirPlaySettings(), "Kitchen", "plughw:0,0", 0, None)

    assert "mixer_control_name" not in values["alsa"]
    assert "mixer_device" not in values["alsa"]


@pytest.mark.parametrize(
    "value, expected",
    [(True, '"yes"'), (False, '"no"'), (-6.0, "-6.0"), (1, "1"), ('say "hi"', '"say \\"hi\\""')],
)
def test_format_value(value, expected):
    assert format_value(value) == expected


def test_render_uncomments_sample_lines(values):
    text = render_config(SAMPLE, values)

    assert '\tname = "Living Room";' in text
    assert '//\tname = "%H";' not in text
    assert '\toutput_device = "plughw:1,0";' in text
    assert '\tmixer_control_name = "Speaker";' in text
    assert 'ignore_volume_control = "no";' in text
    assert "run_this_before_play_begins" in text
    assert has_managed_values(text, values)


def test_render_inserts_missing_keys_in_their_group(values):
    text = render_config(SAMPLE, values)
    lines = text.splitlines()
    alsa_start = lines.index("alsa =")

    mixer_device = next(i for i, line in enumerate(lines) if "mixer_device" in line)

    assert mixer_device > alsa_start


def test_render_is_idempotent(values):
    once = render_config(SAMPLE, values)

    assert render_config(once, values) == once


def test_render_from_skeleton(values):
    text = render_config(MINIMAL_SKELETON, values)

    assert has_managed_values(text, values)


def test_render_appends_missing_group(values):
    text = render_config("general =\n{\n};\n", values)

    assert "alsa =" in text
    assert has_managed_values(text, values)


def test_render_expands_single_line_group(values):
    text = render_config("general = {};\nalsa = {};\n", values)

    assert has_managed_values(text, values)


def test_changed_value_is_detected(values):
    text = render_config(SAMPLE, values)
    other = managed_values(AirPlaySettings(), "Bedroom", "plughw:1,0", 1, "Speaker")

    assert not has_managed_values(text, other)
    assert has_managed_values(render_config(text, other), other)


def test_commented_value_does_not_count(values):
    assert not has_managed_values(SAMPLE, values)
