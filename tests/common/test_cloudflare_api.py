# tests/common/test_cloudflare_api.py
import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from common.cloudflare_api import ApiTunnel, CloudflareClient
from common.errors import ExternalServiceError

ZONE_ID = "zone123"
TARGET = "abc.cfargotunnel.com"


def response(result=None, success=True, status=200, errors=None):
    resp = MagicMock()
    resp.ok = status < 400
    resp.status_code = status
    resp.json.return_value = {"success": success, "errors": errors or [], "result": result}
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session, headers={})


@pytest.fixture
def client(session, mock_logger):
    return CloudflareClient("token", "https://api.test/client/v4/", session=session, logger=mock_logger)


def test_token_sent_as_bearer(client, session):
    assert session.headers["Authorization"] == "Bearer token"
    assert client.base_url == "https://api.test/client/v4"


def test_verify_token_active(client, session):
    session.request.return_value = response({"status": "active"})

    client.verify_token()

    method, url = session.request.call_args.args
    assert (method, url) == ("GET", "https://api.test/client/v4/user/tokens/verify")


def test_verify_token_inactive(client, session):
    session.request.return_value = response({"status": "disabled"})

    with pytest.raises(ExternalServiceError):
        client.verify_token()


def test_error_envelope_carries_messages(client, session):
    session.request.return_value = response(
        success=False, status=403, errors=[{"code": 10000, "message": "Authentication error"}]
    )

    with pytest.raises(ExternalServiceError) as excinfo:
        client.verify_token()

    assert excinfo.value.errors == ["Authentication error (code 10000)"]


def test_transport_error(client, session):
    session.request.side_effect = requests.exceptions.ConnectionError("down")

    with pytest.raises(ExternalServiceError):
        client.find_zone("example.com")


def test_find_zone_walks_up_to_parent(client, session):
    session.request.side_effect = [response([]), response([{"id": ZONE_ID, "name": "example.com"}])]

    zone = client.find_zone("blog.example.com")

    assert zone["id"] == ZONE_ID
    names = [c.kwargs["params"]["name"] for c in session.request.call_args_list]
    assert names == ["blog.example.com", "example.com"]


def test_find_tunnel(client, session):
    session.request.return_value = response([{"id": "t1", "name": "example-com"}])

    tunnel = client.find_tunnel("acct", "example-com")

    assert tunnel == ApiTunnel(id="t1", name="example-com", account_id="acct")


def test_create_tunnel_returns_credentials(client, session):
    session.request.return_value = response({"id": "t1", "name": "example-com"})

    tunnel = client.create_tunnel("acct", "example-com")

    body = session.request.call_args.kwargs["json"]
    assert body["config_src"] == "local"
    assert tunnel.credentials() == {"AccountTag": "acct", "TunnelSecret": body["tunnel_secret"], "TunnelID": "t1"}


def test_recover_tunnel_decodes_token(client, session):
    token = base64.b64encode(json.dumps({"a": "acct", "t": "t1", "s": "c2VjcmV0"}).encode()).decode()
    session.request.return_value = response(token)

    tunnel = client.recover_tunnel(ApiTunnel(id="t1", name="example-com", account_id="acct"))

    assert tunnel.secret == "c2VjcmV0"


def test_recover_tunnel_bad_token(client, session):
    session.request.return_value = response("not-base64-json")

    with pytest.raises(ExternalServiceError):
        client.recover_tunnel(ApiTunnel(id="t1", name="example-com", account_id="acct"))


def test_ensure_cname_unchanged(client, session):
    session.request.return_value = response(
        [{"id": "r1", "type": "CNAME", "name": "example.com", "content": TARGET, "proxied": True}]
    )

    assert client.ensure_cname(ZONE_ID, "example.com", TARGET) == "unchanged"
    assert session.request.call_count == 1


def test_ensure_cname_updates_stale_record(client, session):
    session.request.side_effect = [
        response([{"id": "r1", "type": "CNAME", "name": "example.com", "content": "old.cfargotunnel.com"}]),
        response({"id": "r1"}),
    ]

    assert client.ensure_cname(ZONE_ID, "example.com", TARGET) == "updated"
    method, url = session.request.call_args.args
    assert method == "PUT"
    assert url.endswith(f"zones/{ZONE_ID}/dns_records/r1")


def test_ensure_cname_creates(client, session):
    session.request.side_effect = [response([]), response({"id": "r2"})]

    assert client.ensure_cname(ZONE_ID, "www.example.com", TARGET) == "created"
    assert session.request.call_args.args[0] == "POST"


def test_ensure_cname_conflicting_record(client, session):
    session.request.return_value = response([{"id": "r1", "type": "A", "name": "example.com", "content": "1.2.3.4"}])

    with pytest.raises(ExternalServiceError):
        client.ensure_cname(ZONE_ID, "example.com", TARGET)


def test_cname_points_to(client, session):
    session.request.return_value = response(
        [{"id": "r1", "type": "CNAME", "name": "example.com", "content": TARGET, "proxied": True}]
    )

    assert client.cname_points_to(ZONE_ID, "example.com", TARGET)
    assert not client.cname_points_to(ZONE_ID, "example.com", "other.cfargotunnel.com")


def test_unproxied_cname_does_not_count_as_routed(client, session):
    session.request.return_value = response(
        [{"id": "r1", "type": "CNAME", "name": "example.com", "content": TARGET, "proxied": False}]
    )

    assert not client.cname_points_to(ZONE_ID, "example.com", TARGET)
