# common/cloudflared_utils.py
# -*- coding: utf-8 -*-
"""
Adapter for the ``cloudflared`` CLI and its ingress configuration file.

Tunnel lookups use ``cloudflared tunnel list --output json`` and DNS routes use
``--overwrite-dns``, so no decision here depends on matching human-readable
output.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from provisioner.config_models import AppSettings

from .command_utils import log_message, run_command

module_logger = logging.getLogger(__name__)

CATCH_ALL_SERVICE = "http_status:404"
LOCAL_SERVICE = "http://localhost:80"


@dataclass
class TunnelInfo:
    id: str
    name: str
    connections: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def dns_target(self) -> str:
        return f"{self.id}.cfargotunnel.com"


def cloudflared_home() -> Path:
    return Path(os.path.expanduser("~")) / ".cloudflared"


def origin_cert_path() -> Path:
    return cloudflared_home() / "cert.pem"


def is_logged_in() -> bool:
    return origin_cert_path().is_file()


def login(
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> None:
    """Runs the interactive browser login; stdout is left on the terminal for the URL."""
    logger_to_use = current_logger if current_logger else module_logger
    symbols = app_settings.symbols
    log_message(
        f"{symbols.get('cloud', '☁️')} Open the URL printed below in a browser and authorize the domain's zone.",
        "info",
        logger_to_use,
        app_settings,
    )
    run_command(
        ["cloudflared", "tunnel", "login"],
        app_settings,
        timeout=600,
        capture_output=False,
        current_logger=logger_to_use,
    )


def parse_tunnel_list(output: str) -> List[TunnelInfo]:
    """Parses ``cloudflared tunnel list --output json``; skips deleted tunnels."""
    text = output.strip()
    if not text:
        return []
    data = json.loads(text)
    tunnels = []
    for item in data or []:
        if item.get("deleted_at") and not str(item["deleted_at"]).startswith("0001-"):
            continue
        tunnels.append(
            TunnelInfo(
                id=item["id"],
                name=item["name"],
                connections=item.get("connections") or [],
            )
        )
    return tunnels


def list_tunnels(
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> List[TunnelInfo]:
    result = run_command(
        ["cloudflared", "tunnel", "list", "--output", "json"],
        app_settings,
        timeout=60,
        retries=2,
        current_logger=current_logger,
    )
    return parse_tunnel_list(result.stdout)


def find_tunnel(
    name: str,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> Optional[TunnelInfo]:
    for tunnel in list_tunnels(app_settings, current_logger):
        if tunnel.name == name:
            return tunnel
    return None


def create_tunnel(
    name: str,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> TunnelInfo:
    """Creates the tunnel and reads its ID back from the JSON tunnel list."""
    run_command(
        ["cloudflared", "tunnel", "create", name],
        app_settings,
        timeout=120,
        current_logger=current_logger,
    )
    tunnel = find_tunnel(name, app_settings, current_logger)
    if tunnel is None:
        raise RuntimeError(f"Tunnel '{name}' was created but is not listed by cloudflared")
    return tunnel


def route_dns(
    tunnel_id: str,
    hostname: str,
    app_settings: AppSettings,
    current_logger: Optional[logging.Logger] = None,
) -> None:
    run_command(
        ["cloudflared", "tunnel", "route", "dns", "--overwrite-dns", tunnel_id, hostname],
        app_settings,
        timeout=120,
        retries=2,
        current_logger=current_logger,
    )


def credentials_source(tunnel_id: str) -> Path:
    return cloudflared_home() / f"{tunnel_id}.json"


# --- ingress configuration ---


def build_ingress_config(
    tunnel_id: str,
    credentials_file: str,
    hostnames: List[str],
    service: str = LOCAL_SERVICE,
) -> Dict[str, Any]:
    ingress: List[Dict[str, Any]] = [{"hostname": h, "service": service} for h in hostnames]
    ingress.append({"service": CATCH_ALL_SERVICE})
    return {"tunnel": tunnel_id, "credentials-file": credentials_file, "ingress": ingress}


def load_config(text: Optional[str]) -> Dict[str, Any]:
    if not text or not text.strip():
        return {}
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("cloudflared config is not a YAML mapping")
    return data


def dump_config(config: Dict[str, Any]) -> str:
    return yaml.safe_dump(config, default_flow_style=False, sort_keys=False)


def ingress_covers(
    config: Dict[str, Any],
    tunnel_id: str,
    hostnames: List[str],
    service: str = LOCAL_SERVICE,
) -> bool:
    if config.get("tunnel") != tunnel_id:
        return False
    routed = {
        rule.get("hostname"): rule.get("service")
        for rule in config.get("ingress") or []
        if isinstance(rule, dict) and rule.get("hostname")
    }
    return all(routed.get(h) == service for h in hostnames)


def reconcile_ingress(
    config: Dict[str, Any],
    tunnel_id: str,
    credentials_file: str,
    hostnames: List[str],
    service: str = LOCAL_SERVICE,
) -> Tuple[Dict[str, Any], bool]:
    """
    Merges our hostnames into an existing config.

    Rules for other hostnames are kept. Missing rules are inserted before
    the catch-all, which is appended when absent.

    Returns:
        The reconciled config and whether anything changed.
    """
    if not config:
        return build_ingress_config(tunnel_id, credentials_file, hostnames, service), True

    updated = dict(config)
    updated["tunnel"] = tunnel_id
    updated["credentials-file"] = credentials_file

    rules = [dict(r) for r in (config.get("ingress") or []) if isinstance(r, dict)]
    host_rules = [r for r in rules if r.get("hostname")]
    catch_all = [r for r in rules if not r.get("hostname")][-1:] or [{"service": CATCH_ALL_SERVICE}]

    for hostname in hostnames:
        existing = next((r for r in host_rules if r["hostname"] == hostname), None)
        if existing is None:
            host_rules.append({"hostname": hostname, "service": service})
        else:
            existing["service"] = service

    updated["ingress"] = host_rules + catch_all
    return updated, updated != config
