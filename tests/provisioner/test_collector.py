# tests/provisioner/test_collector.py
from unittest.mock import MagicMock

import pytest

from common.errors import (
    CancelledByUser,
    ExternalServiceError,
    MissingParameter,
    ValidationFailed,
)
from common.network_utils import normalize_domain, validate_domain
from common.secret_utils import validate_password
from provisioner.collector import ConfigParameter, ConfigurationCollector, choice_validator


def make_collector(store, app_settings, answers=(), secrets=(), interactive=True):
    answer_iter = iter(answers)
    secret_iter = iter(secrets)

    def reader(iterator):
        def read(prompt):
            try:
                return next(iterator)
            except StopIteration:
                raise EOFError from None
        return read

    return ConfigurationCollector(
        store,
        app_settings,
        interactive=interactive,
        input_func=reader(answer_iter),
        secret_func=reader(secret_iter),
        logger=MagicMock(),
    )


def domain_parameter(**kwargs):
    return ConfigParameter(
        name="domain", prompt="Domain", normalizer=normalize_domain, validator=validate_domain, **kwargs
    )


def test_stored_value_is_reused(store, app_settings):
    store.set("domain", "example.com")
    collector = make_collector(store, app_settings, answers=[])

    assert collector.collect(domain_parameter()) == "example.com"


def test_prompt_until_valid(store, app_settings):
    collector = make_collector(store, app_settings, answers=["not a domain", "https://www.Example.com/"])

    assert collector.collect(domain_parameter()) == "example.com"
    assert store.get("domain") == "example.com"


def test_preset_accepted_without_prompt(store, app_settings):
    collector = make_collector(store, app_settings, answers=[])

    assert collector.collect(domain_parameter(preset="Example.org")) == "example.org"


def test_invalid_preset_falls_back_to_prompt(store, app_settings):
    collector = make_collector(store, app_settings, answers=["example.net"])

    assert collector.collect(domain_parameter(preset="bad domain")) == "example.net"


def test_invalid_preset_non_interactive_raises(store, app_settings):
    collector = make_collector(store, app_settings, interactive=False)

    with pytest.raises(ValidationFailed):
        collector.collect(domain_parameter(preset="bad domain"))


def test_callable_preset_and_default(store, app_settings):
    collector = make_collector(store, app_settings, interactive=False)
    preset = MagicMock(return_value=None)

    value = collector.collect(
        ConfigParameter(name="tunnel_name", prompt="Tunnel", preset=preset, default=lambda: "example-com")
    )

    assert value == "example-com"
    preset.assert_called_once()


def test_callable_preset_not_evaluated_when_stored(store, app_settings):
    store.set("output_device", "plughw:1,0")
    preset = MagicMock()
    collector = make_collector(store, app_settings, interactive=False)

    collector.collect(ConfigParameter(name="output_device", prompt="Output", preset=preset))

    preset.assert_not_called()


def test_default_used_on_empty_answer(store, app_settings):
    collector = make_collector(store, app_settings, answers=[""])

    assert collector.collect(ConfigParameter(name="db_name", prompt="DB", default="wordpress")) == "wordpress"


def test_non_interactive_missing_value(store, app_settings):
    collector = make_collector(store, app_settings, interactive=False)

    with pytest.raises(MissingParameter):
        collector.collect(domain_parameter())


def test_non_interactive_generator(store, app_settings):
    collector = make_collector(store, app_settings, interactive=False)
    parameter = ConfigParameter(
        name="db_password", prompt="Password", generator=lambda: "g" * 20, sensitive=True
    )

    assert collector.collect(parameter) == "g" * 20
    assert "db_password" in store.state.sensitive_keys


def test_non_interactive_optional(store, app_settings):
    collector = make_collector(store, app_settings, interactive=False)

    assert collector.collect(ConfigParameter(name="mixer_control", prompt="Mixer", optional=True)) == ""
    assert store.has("mixer_control")


def test_empty_secret_answer_generates(store, app_settings):
    collector = make_collector(store, app_settings, secrets=[""])
    parameter = ConfigParameter(
        name="db_password", prompt="Password", generator=lambda: "generated-pass", secret=True, sensitive=True
    )

    assert collector.collect(parameter) == "generated-pass"


def test_secret_confirmation_must_match(store, app_settings):
    collector = make_collector(
        store,
        app_settings,
        secrets=["short", "long-enough-pass", "mismatch-pass", "long-enough-pass", "long-enough-pass"],
    )
    parameter = ConfigParameter(
        name="db_password",
        prompt="Password",
        validator=validate_password,
        secret=True,
        sensitive=True,
        confirm=True,
    )

    assert collector.collect(parameter) == "long-enough-pass"


def test_verifier_failure_reprompts(store, app_settings):
    verifier = MagicMock(side_effect=[ExternalServiceError("Invalid token"), None])
    collector = make_collector(store, app_settings, secrets=["bad-token", "good-token"])
    parameter = ConfigParameter(name="cloudflare_api_token", prompt="Token", verifier=verifier, secret=True)

    assert collector.collect(parameter) == "good-token"
    assert verifier.call_count == 2


def test_eof_cancels(store, app_settings):
    collector = make_collector(store, app_settings, answers=[])

    with pytest.raises(CancelledByUser):
        collector.collect(domain_parameter())


def test_choice_validator(store, app_settings):
    collector = make_collector(store, app_settings, answers=["ssh", "API"])
    parameter = ConfigParameter(
        name="tunnel_mode", prompt="Mode", normalizer=str.lower, validator=choice_validator(["cli", "api"])
    )

    assert collector.collect(parameter) == "api"


def test_collect_all_honours_when(store, app_settings):
    store.set("tunnel_mode", "cli")
    collector = make_collector(store, app_settings, interactive=False)
    parameters = [
        ConfigParameter(name="tunnel_mode", prompt="Mode"),
        ConfigParameter(
            name="cloudflare_api_token", prompt="Token", when=lambda: store.get("tunnel_mode") == "api"
        ),
    ]

    values = collector.collect_all(parameters)

    assert values == {"tunnel_mode": "cli"}
    assert not store.has("cloudflare_api_token")
