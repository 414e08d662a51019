# tests/components/test_airplay_steps.py
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from common.alsa_utils import AudioDevice
from common.errors import ExternalCommandFailed, ValidationFailed
from provisioner.collector import ConfigurationCollector
from provisioner.components.airplay import airplay_steps
from provisioner.components.airplay.airplay_recipe import (
    AirPlayRecipe,
    card_of,
    validate_card_index,
    validate_output_device,
)
from provisioner.components.airplay.airplay_steps import (
    AudioMixerStep,
    AvahiDaemonStep,
    FirewallRulesStep,
    NqptpStep,
    ShairportSyncConfigStep,
    ShairportSyncUserStep,
    build_from_source,
    parse_ufw_status,
    supports_airplay2,
)

UFW_ACTIVE = """\
Status: active

To                         Action      From
--                         ------      ----
22/tcp                     ALLOW       Anywhere
5353/udp                   ALLOW       Anywhere
22/tcp (v6)                ALLOW       Anywhere (v6)
"""


def test_parse_ufw_status():
    active, allowed = parse_ufw_status(UFW_ACTIVE)

    assert active
    assert "5353/udp" in allowed
    assert "7000/tcp" not in allowed


def test_parse_ufw_inactive():
    assert parse_ufw_status("Status: inactive\n") == (False, [])


def test_supports_airplay2():
    assert supports_airplay2("4.3.2-AirPlay2-smi10-OpenSSL-Avahi-ALSA-soxr")
    assert not supports_airplay2("3.3.8-OpenSSL-Avahi-ALSA")
    assert not supports_airplay2(None)


def test_build_from_source_runs_autotools(mocker, tmp_path, app_settings):
    run_mock = mocker.patch("provisioner.components.airplay.airplay_steps.run_command")
    elevated = mocker.patch("provisioner.components.airplay.airplay_steps.run_elevated_command")
    mocker.patch("provisioner.components.airplay.airplay_steps.system_utils.cpu_count", return_value=4)
    source_dir = tmp_path / "nqptp"

    build_from_source("https://example.invalid/nqptp.git", source_dir, ["--with-systemd-startup"], app_settings)

    commands = [c.args[0] for c in run_mock.call_args_list]
    assert commands == [
        ["git", "clone", "--depth", "1", "https://example.invalid/nqptp.git", str(source_dir)],
        ["autoreconf", "-fi"],
        ["./configure", "--with-systemd-startup"],
        ["make", "-j4"],
    ]
    assert elevated.call_args.args[0] == ["make", "install"]
    assert elevated.call_args.kwargs["cwd"] == str(source_dir)


def test_build_from_source_removes_stale_checkout(mocker, tmp_path, app_settings):
    mocker.patch("provisioner.components.airplay.airplay_steps.run_command")
    mocker.patch("provisioner.components.airplay.airplay_steps.run_elevated_command")
    remove = mocker.patch("provisioner.components.airplay.airplay_steps.remove_path")
    source_dir = tmp_path / "shairport-sync"
    source_dir.mkdir()

    build_from_source("repo", source_dir, [], app_settings)

    remove.assert_called_once()


def test_build_tolerates_install_errors_when_binary_exists(mocker, tmp_path, app_settings):
    mocker.patch("provisioner.components.airplay.airplay_steps.run_command")
    mocker.patch(
        "provisioner.components.airplay.airplay_steps.run_elevated_command",
        side_effect=ExternalCommandFailed("useradd failed"),
    )
    binary = tmp_path / "shairport-sync"
    binary.write_text("", encoding="utf-8")

    build_from_source("repo", tmp_path / "src", [], app_settings, install_binary=str(binary))

    with pytest.raises(ExternalCommandFailed):
        build_from_source("repo", tmp_path / "src", [], app_settings, install_binary=str(tmp_path / "missing"))


def test_config_step_renders_sample_when_no_config(mocker, context):
    context.store.set("device_name", "Living Room")
    context.store.set("output_device", "plughw:1,0")
    context.store.set("card_index", 1)
    context.store.set("mixer_control", "")
    sample = "general =\n{\n//\tname = \"%H\";\n};\n\nalsa =\n{\n};\n"
    mocker.patch(
        "provisioner.components.airplay.airplay_steps.read_system_file",
        side_effect=lambda path, *a, **k: sample if path.endswith(".sample") else None,
    )
    write = mocker.patch("provisioner.components.airplay.airplay_steps.write_system_file")

    step = ShairportSyncConfigStep(context)
    assert not step.detect()
    step.apply()

    written = write.call_args.args[1]
    assert '\tname = "Living Room";' in written
    assert "mixer_control_name" not in written
    context.cleanup.register.assert_called_once()


def test_config_step_backs_up_existing(mocker, context):
    context.store.set("device_name", "Kitchen")
    context.store.set("output_device", "plughw:0,0")
    mocker.patch(
        "provisioner.components.airplay.airplay_steps.read_system_file", return_value="general =\n{\n};\n"
    )
    backup = mocker.patch("provisioner.components.airplay.airplay_steps.backup_file", return_value="/etc/x.bak")
    mocker.patch("provisioner.components.airplay.airplay_steps.write_system_file")

    ShairportSyncConfigStep(context).apply()

    backup.assert_called_once()
    description = context.cleanup.register.call_args.args[0]
    assert description.startswith("restore")


def test_mixer_step_without_mixer_is_satisfied(context):
    context.store.set("card_index", 0)
    context.store.set("mixer_control", "")

    assert AudioMixerStep(context).detect()


def test_mixer_step_sets_volume(mocker, context):
    context.store.set("card_index", 1)
    context.store.set("mixer_control", "Speaker")
    set_volume = mocker.patch("provisioner.components.airplay.airplay_steps.set_mixer_volume")

    AudioMixerStep(context).apply()

    assert set_volume.call_args.args[:2] == (1, "Speaker")


def test_user_step_creates_user(mocker, context, result_factory):
    mocker.patch(
        "provisioner.components.airplay.airplay_steps.run_command",
        return_value=result_factory(exit_code=1, stderr="no such user"),
    )
    elevated = mocker.patch("provisioner.components.airplay.airplay_steps.run_elevated_command")

    ShairportSyncUserStep(context).apply()

    commands = [c.args[0][0] for c in elevated.call_args_list]
    assert commands == ["groupadd", "useradd"]


def test_user_step_adds_existing_user_to_audio(mocker, context, result_factory):
    mocker.patch(
        "provisioner.components.airplay.airplay_steps.run_command",
        return_value=result_factory(stdout="shairport-sync\n"),
    )
    elevated = mocker.patch("provisioner.components.airplay.airplay_steps.run_elevated_command")
    step = ShairportSyncUserStep(context)

    assert not step.detect()
    step.apply()

    assert elevated.call_args.args[0] == ["usermod", "-aG", "audio", "shairport-sync"]


def test_firewall_skipped_without_ufw(mocker, context):
    mocker.patch("provisioner.components.airplay.airplay_steps.command_exists", return_value=False)

    assert FirewallRulesStep(context).detect()


def test_firewall_opens_missing_ports(mocker, context, result_factory):
    mocker.patch("provisioner.components.airplay.airplay_steps.command_exists", return_value=True)
    elevated = mocker.patch(
        "provisioner.components.airplay.airplay_steps.run_elevated_command",
        return_value=result_factory(stdout=UFW_ACTIVE),
    )
    step = FirewallRulesStep(context)

    assert not step.detect()
    step.apply()

    allowed = [c.args[0][2] for c in elevated.call_args_list if c.args[0][:2] == ["ufw", "allow"]]
    assert allowed == ["319/udp", "320/udp", "7000/tcp"]


# --- recipe ---


def test_output_device_validation():
    assert validate_output_device("plughw:1,0") == "plughw:1,0"
    with pytest.raises(ValidationFailed):
        validate_output_device("default")


def test_card_helpers():
    assert card_of("hw:2,0") == 2
    assert card_of(None) is None
    assert validate_card_index("3") == 3
    with pytest.raises(ValidationFailed):
        validate_card_index("usb")
    with pytest.raises(ValidationFailed):
        validate_card_index(-1)


def test_recipe_collects_detected_device(mocker, context):
    mocker.patch("provisioner.components.airplay.airplay_recipe.system_utils.get_hostname", return_value="raspberrypi")
    mocker.patch(
        "provisioner.components.airplay.airplay_recipe.list_playback_devices",
        return_value=[
            AudioDevice(0, 0, "Headphones", "bcm2835 Headphones", "bcm2835 Headphones"),
            AudioDevice(1, 0, "Device", "USB Audio Device", "USB Audio"),
        ],
    )
    mocker.patch("provisioner.components.airplay.airplay_recipe.list_mixer_controls", return_value=["Mic", "Speaker"])
    recipe = AirPlayRecipe(context.app_settings)
    collector = ConfigurationCollector(context.store, context.app_settings, interactive=False, logger=MagicMock())

    values = collector.collect_all(recipe.parameters(context))

    assert values == {
        "device_name": "raspberrypi AirPlay",
        "output_device": "plughw:1,0",
        "card_index": 1,
        "mixer_control": "Speaker",
    }


def test_recipe_without_audio_devices_needs_a_value(mocker, context):
    mocker.patch("provisioner.components.airplay.airplay_recipe.list_playback_devices", return_value=[])
    recipe = AirPlayRecipe(context.app_settings)
    collector = ConfigurationCollector(context.store, context.app_settings, interactive=False, logger=MagicMock())
    output_device = recipe.parameters(context)[1]

    with pytest.raises(ValidationFailed):
        collector.collect(output_device)


def test_recipe_step_order(context):
    step_ids = [cls.step_id for cls in AirPlayRecipe(context.app_settings).steps()]

    assert step_ids[0] == "system_update"
    assert step_ids.index("nqptp") < step_ids.index("shairport_sync_build") < step_ids.index("shairport_sync_config")
    assert step_ids[-1] == "firewall_rules"


def test_source_dir_under_build_dir(mocker, context):
    context.app_settings.airplay.build_dir = "/var/tmp/build"

    step = airplay_steps.NqptpStep(context)

    assert step.source_dir == Path("/var/tmp/build/nqptp")


def test_nqptp_registers_service_stop(mocker, context):
    mocker.patch("provisioner.components.airplay.airplay_steps.build_from_source")
    mocker.patch("provisioner.components.airplay.airplay_steps.system_utils.systemd_reload")
    systemctl = mocker.patch("provisioner.components.airplay.airplay_steps.system_utils.systemctl")

    NqptpStep(context).apply()

    descriptions = [c.args[0] for c in context.cleanup.register.call_args_list]
    assert descriptions[-1] == "stop nqptp"
    context.cleanup.register.call_args.args[1]()
    assert systemctl.call_args.args[:2] == ("stop", ["nqptp"])


def test_avahi_stop_registered_only_when_it_was_stopped(mocker, context):
    active = mocker.patch(
        "provisioner.components.airplay.airplay_steps.system_utils.service_is_active", return_value=False
    )
    mocker.patch("provisioner.components.airplay.airplay_steps.system_utils.systemctl")

    AvahiDaemonStep(context).apply()
    assert context.cleanup.register.call_args.args[0] == "stop avahi-daemon"

    context.cleanup.register.reset_mock()
    active.return_value = True
    AvahiDaemonStep(context).apply()
    context.cleanup.register.assert_not_called()


def test_mixer_step_verifies_volume(mocker, context):
    context.store.set("card_index", 1)
    context.store.set("mixer_control", "Speaker")
    mocker.patch("provisioner.components.airplay.airplay_steps.set_mixer_volume")
    mocker.patch("provisioner.components.airplay.airplay_steps.mixer_volume_is", return_value=False)

    assert not AudioMixerStep(context).verify()
