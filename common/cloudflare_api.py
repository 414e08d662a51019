# common/cloudflare_api.py
# -*- coding: utf-8 -*-
"""
Client for the subset of the Cloudflare v4 REST API the tunnel setup needs:
token verification, zone lookup, tunnel lookup/creation and DNS records.

Every response is a JSON envelope with ``success`` and ``errors[]``; a
``success: false`` envelope or an HTTP error is raised as
:class:`ExternalServiceError` carrying the upstream messages.
"""

import base64
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from common.errors import ExternalServiceError

module_logger = logging.getLogger(__name__)

API_BASE_DEFAULT = "https://api.cloudflare.com/client/v4"
REQUEST_TIMEOUT = 30


@dataclass
class DnsRecord:
    id: str
    type: str
    name: str
    content: str
    proxied: bool = False


@dataclass
class ApiTunnel:
    id: str
    name: str
    account_id: str
    secret: Optional[str] = None

    def credentials(self) -> Dict[str, str]:
        """The credentials-file document cloudflared expects for a locally managed tunnel."""
        if not self.secret:
            raise ValueError("tunnel secret is only known right after creation")
        return {
            "AccountTag": self.account_id,
            "TunnelSecret": self.secret,
            "TunnelID": self.id,
        }


def _error_messages(payload: Any) -> List[str]:
    messages = []
    if isinstance(payload, dict):
        for err in payload.get("errors") or []:
            if isinstance(err, dict):
                code = err.get("code")
                text = err.get("message", "")
                messages.append(f"{text} (code {code})" if code is not None else text)
            else:
                messages.append(str(err))
    return messages


class CloudflareClient:
    """Thin wrapper around a ``requests.Session`` carrying the API token."""

    def __init__(
        self,
        api_token: str,
        base_url: str = API_BASE_DEFAULT,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.logger = logger or module_logger
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        self.logger.debug(f"Cloudflare API {method} {url} params={params}")
        try:
            response = self.session.request(
                method, url, params=params, json=json_body, timeout=REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as req_err:
            raise ExternalServiceError(
                f"Cloudflare API {method} {path} failed", [str(req_err)]
            ) from req_err

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok or not isinstance(payload, dict) or not payload.get("success", False):
            messages = _error_messages(payload) or [f"HTTP {response.status_code}"]
            raise ExternalServiceError(f"Cloudflare API {method} {path} failed", messages)
        return payload.get("result")

    # --- credentials and zones ---

    def verify_token(self) -> None:
        """Raises ExternalServiceError unless the token is valid and active."""
        result = self._request("GET", "user/tokens/verify")
        status = (result or {}).get("status")
        if status != "active":
            raise ExternalServiceError("Cloudflare API token is not active", [f"status: {status}"])

    def find_zone(self, domain: str) -> Optional[Dict[str, Any]]:
        """Finds the zone for ``domain`` (or its parent zone)."""
        labels = domain.split(".")
        for i in range(len(labels) - 1):
            candidate = ".".join(labels[i:])
            result = self._request("GET", "zones", params={"name": candidate})
            if result:
                return result[0]
        return None

    # --- tunnels ---

    def find_tunnel(self, account_id: str, name: str) -> Optional[ApiTunnel]:
        result = self._request(
            "GET",
            f"accounts/{account_id}/cfd_tunnel",
            params={"name": name, "is_deleted": "false"},
        )
        for item in result or []:
            if item.get("name") == name and not item.get("deleted_at"):
                return ApiTunnel(id=item["id"], name=item["name"], account_id=account_id)
        return None

    def create_tunnel(self, account_id: str, name: str) -> ApiTunnel:
        """Creates a locally managed tunnel; the generated secret is returned with it."""
        tunnel_secret = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
        result = self._request(
            "POST",
            f"accounts/{account_id}/cfd_tunnel",
            json_body={"name": name, "tunnel_secret": tunnel_secret, "config_src": "local"},
        )
        self.logger.info(f"Created Cloudflare tunnel '{name}' ({result['id']})")
        return ApiTunnel(id=result["id"], name=name, account_id=account_id, secret=tunnel_secret)

    def recover_tunnel(self, tunnel: ApiTunnel) -> ApiTunnel:
        """
        Fetches the run token of an existing tunnel and returns the tunnel with
        its secret filled in. The token is base64 JSON ``{"a", "t", "s"}``.
        """
        token = self._request("GET", f"accounts/{tunnel.account_id}/cfd_tunnel/{tunnel.id}/token")
        try:
            decoded = json.loads(base64.b64decode(token))
            secret = decoded["s"]
        except (TypeError, ValueError, KeyError) as e:
            raise ExternalServiceError(
                f"Could not decode the run token of tunnel {tunnel.name}", [str(e)]
            ) from e
        return ApiTunnel(id=tunnel.id, name=tunnel.name, account_id=tunnel.account_id, secret=secret)

    # --- DNS ---

    def list_dns_records(self, zone_id: str, name: str) -> List[DnsRecord]:
        result = self._request("GET", f"zones/{zone_id}/dns_records", params={"name": name})
        return [
            DnsRecord(
                id=item["id"],
                type=item.get("type", ""),
                name=item.get("name", ""),
                content=item.get("content", ""),
                proxied=bool(item.get("proxied", False)),
            )
            for item in result or []
        ]

    def ensure_cname(self, zone_id: str, name: str, target: str) -> str:
        """
        Makes ``name`` a proxied CNAME to ``target``.

        Returns "unchanged", "updated" or "created". A non-CNAME record with
        the same name is a conflict the operator has to resolve.
        """
        records = self.list_dns_records(zone_id, name)
        others = [r for r in records if r.type != "CNAME"]
        if others:
            raise ExternalServiceError(
                f"DNS name {name} already has a {others[0].type} record",
                ["remove it in the Cloudflare dashboard before routing the tunnel"],
            )
        body = {"type": "CNAME", "name": name, "content": target, "ttl": 1, "proxied": True}
        for record in records:
            if record.content == target and record.proxied:
                return "unchanged"
            self._request("PUT", f"zones/{zone_id}/dns_records/{record.id}", json_body=body)
            self.logger.info(f"Updated DNS record {name} -> {target}")
            return "updated"
        self._request("POST", f"zones/{zone_id}/dns_records", json_body=body)
        self.logger.info(f"Created DNS record {name} -> {target}")
        return "created"

    def cname_points_to(self, zone_id: str, name: str, target: str) -> bool:
        return any(
            r.type == "CNAME" and r.content == target and r.proxied
            for r in self.list_dns_records(zone_id, name)
        )
