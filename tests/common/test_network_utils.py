# tests/common/test_network_utils.py
import pytest

from common.errors import ValidationFailed
from common.network_utils import (
    check_connectivity,
    domain_uses_cloudflare_ns,
    is_tunnel_uuid,
    normalize_domain,
    sanitize_device_name,
    sanitize_tunnel_name,
    tunnel_name_for_domain,
    validate_domain,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Example.COM", "example.com"),
        ("https://www.example.com/", "example.com"),
        ("  http://blog.example.org//", "blog.example.org"),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


@pytest.mark.parametrize("domain", ["example.com", "my-site.co.uk", "a.io"])
def test_validate_domain_accepts(domain):
    assert validate_domain(domain) == domain


@pytest.mark.parametrize("domain", ["", "localhost", "-bad.com", "bad-.com", "exa mple.com", "example.c0m"])
def test_validate_domain_rejects(domain):
    with pytest.raises(ValidationFailed):
        validate_domain(domain)


def test_sanitize_device_name_strips_specials():
    assert sanitize_device_name("Living Room; rm -rf /") == "Living Room rm -rf"


def test_sanitize_device_name_empty():
    with pytest.raises(ValidationFailed):
        sanitize_device_name("!!!")


def test_tunnel_names():
    assert tunnel_name_for_domain("blog.example.com") == "blog-example-com"
    assert tunnel_name_for_domain(None) == "wordpress-tunnel"
    assert sanitize_tunnel_name("my.tunnel!") == "my-tunnel"


def test_is_tunnel_uuid():
    assert is_tunnel_uuid("6ff42ae2-765d-4adf-8112-31c55c1551ef")
    assert not is_tunnel_uuid("my-tunnel")


def test_check_connectivity_stops_at_first_reachable(mocker, app_settings, mock_logger):
    probe = mocker.patch("common.network_utils.probe_host", side_effect=[False, True])
    sleep = mocker.patch("common.network_utils.time.sleep")

    ok, detail = check_connectivity(
        app_settings, targets=["10.0.0.1", "1.1.1.1", "github.com"], current_logger=mock_logger
    )

    assert ok
    assert "1.1.1.1" in detail
    assert probe.call_count == 2
    sleep.assert_not_called()


def test_check_connectivity_retries_rounds(mocker, app_settings, mock_logger):
    probe = mocker.patch("common.network_utils.probe_host", return_value=False)
    sleep = mocker.patch("common.network_utils.time.sleep")

    ok, detail = check_connectivity(
        app_settings, targets=["a", "b"], attempts=3, delay=0.5, current_logger=mock_logger
    )

    assert not ok
    assert probe.call_count == 6
    assert sleep.call_count == 2
    assert "after 3 attempts" in detail


def test_domain_uses_cloudflare_ns(mocker, app_settings, result_factory):
    mocker.patch("common.network_utils.command_exists", return_value=True)
    mocker.patch(
        "common.network_utils.run_command",
        return_value=result_factory(stdout="ada.ns.cloudflare.com.\nbob.ns.cloudflare.com.\n"),
    )

    ok, detail = domain_uses_cloudflare_ns("example.com", app_settings)

    assert ok


def test_domain_not_on_cloudflare(mocker, app_settings, result_factory):
    mocker.patch("common.network_utils.command_exists", return_value=True)
    mocker.patch("common.network_utils.run_command", return_value=result_factory(stdout="ns1.registrar.net.\n"))

    ok, detail = domain_uses_cloudflare_ns("example.com", app_settings)

    assert not ok
    assert "ns1.registrar.net" in detail


def test_domain_nameservers_without_dig(mocker, app_settings):
    mocker.patch("common.network_utils.command_exists", return_value=False)

    ok, detail = domain_uses_cloudflare_ns("example.com", app_settings)

    assert not ok
    assert "could not resolve" in detail
