# provisioner/components/wordpress/tunnel_steps.py
# -*- coding: utf-8 -*-
"""
Cloudflare Tunnel steps of the WordPress recipe.

Two modes are supported. In ``cli`` mode the operator authorizes the zone in
a browser (``cloudflared tunnel login``) and tunnels and DNS routes are
managed through the ``cloudflared`` CLI. In ``api`` mode an API token is used
instead and tunnels and DNS records are managed through the REST API.
Either way the tunnel is looked up by name first and created only when
missing, and DNS records are created or updated only when they do not
already point at the tunnel.
"""

import json
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

from common import cloudflared_utils, system_utils
from common.cloudflare_api import ApiTunnel, CloudflareClient
from common.command_utils import command_exists, log_message, run_elevated_command
from common.errors import ProvisionerError
from common.file_utils import backup_file, read_system_file, restore_file, write_system_file
from common.http_utils import download_file
from common.network_utils import is_tunnel_uuid
from provisioner import config as static_config
from provisioner.base_step import BaseStep
from provisioner.config_models import AppSettings
from provisioner.state_manager import StateStore

module_logger = logging.getLogger(__name__)

CLOUDFLARED_SERVICE = "cloudflared"
TUNNEL_CONNECTED_PATTERN = r"Registered tunnel connection"


def hostnames_for(domain: str) -> List[str]:
    return [domain, f"www.{domain}"]


def api_client(
    app_settings: AppSettings, store: StateStore, logger: Optional[logging.Logger] = None
) -> CloudflareClient:
    return CloudflareClient(
        store.get("cloudflare_api_token"),
        app_settings.wordpress.cloudflare_api_base,
        logger=logger,
    )


class TunnelStepBase(BaseStep):
    @property
    def api_mode(self) -> bool:
        return self.config("tunnel_mode") == "api"

    @property
    def config_dir(self) -> Path:
        return Path(self.app_settings.wordpress.cloudflared_config_dir)

    def credentials_path(self, tunnel_id: str) -> Path:
        return self.config_dir / f"{tunnel_id}.json"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.yml"

    @property
    def hostnames(self) -> List[str]:
        return hostnames_for(self.config("domain"))

    def current_config(self):
        return cloudflared_utils.load_config(read_system_file(self.config_path, self.app_settings, self.logger))

    def ingress_ready(self) -> bool:
        return cloudflared_utils.ingress_covers(self.current_config(), self.config("tunnel_id"), self.hostnames)


class CloudflaredBinaryStep(BaseStep):
    step_id = "cloudflared_binary"
    description = "Install the cloudflared binary"
    network_bound = True

    def detect(self) -> bool:
        return command_exists("cloudflared")

    def apply(self) -> None:
        arch = system_utils.detect_architecture()
        url = self.app_settings.wordpress.cloudflared_url.format(arch=arch)
        with tempfile.TemporaryDirectory(prefix="piprov_cf_") as work_dir:
            binary = download_file(url, Path(work_dir) / "cloudflared", mode=0o755, current_logger=self.logger)
            run_elevated_command(
                ["install", "-m", "755", str(binary), static_config.CLOUDFLARED_BINARY],
                self.app_settings,
                current_logger=self.logger,
            )

    def verify(self) -> bool:
        return system_utils.binary_version(static_config.CLOUDFLARED_BINARY, self.app_settings,
                                           current_logger=self.logger) is not None


class CloudflareLoginStep(TunnelStepBase):
    step_id = "cloudflare_login"
    description = "Authorize cloudflared for the domain's zone"
    network_bound = True

    def detect(self) -> bool:
        return self.api_mode or cloudflared_utils.is_logged_in()

    def apply(self) -> None:
        cloudflared_utils.login(self.app_settings, self.logger)

    def verify(self) -> bool:
        return cloudflared_utils.is_logged_in()


class TunnelStep(TunnelStepBase):
    """
    Finds the tunnel by name or creates it, and places its credentials in
    the cloudflared config directory. The tunnel ID is kept in the state.
    """

    step_id = "tunnel"
    description = "Create or reuse the Cloudflare tunnel"
    network_bound = True

    def detect(self) -> bool:
        tunnel_id = self.config("tunnel_id")
        if not tunnel_id or not is_tunnel_uuid(tunnel_id) or not self.credentials_path(tunnel_id).exists():
            return False
        return self._lookup() == tunnel_id

    def _lookup(self) -> Optional[str]:
        name = self.config("tunnel_name")
        if self.api_mode:
            found = api_client(self.app_settings, self.store, self.logger).find_tunnel(
                self.config("cloudflare_account_id"), name
            )
        else:
            found = cloudflared_utils.find_tunnel(name, self.app_settings, self.logger)
        return found.id if found else None

    def _install_credentials(self, tunnel_id: str, content: str) -> None:
        write_system_file(self.credentials_path(tunnel_id), content, self.app_settings, mode="600",
                          current_logger=self.logger)

    def _apply_cli(self, name: str) -> str:
        tunnel = cloudflared_utils.find_tunnel(name, self.app_settings, self.logger)
        if tunnel is None:
            tunnel = cloudflared_utils.create_tunnel(name, self.app_settings, self.logger)
            self.context.reporter.success(f"Created tunnel '{name}' ({tunnel.id})")
        else:
            self.context.reporter.info(f"Reusing tunnel '{name}' ({tunnel.id})")

        if not self.credentials_path(tunnel.id).exists():
            source = cloudflared_utils.credentials_source(tunnel.id)
            if not source.exists():
                raise ProvisionerError(
                    f"Credentials for tunnel '{name}' ({tunnel.id}) are not on this machine ({source}). "
                    f"Delete the tunnel with 'cloudflared tunnel delete {name}' or choose another tunnel name."
                )
            self._install_credentials(tunnel.id, source.read_text(encoding="utf-8"))
        return tunnel.id

    def _apply_api(self, name: str) -> str:
        client = api_client(self.app_settings, self.store, self.logger)
        account_id = self.config("cloudflare_account_id")
        tunnel: Optional[ApiTunnel] = client.find_tunnel(account_id, name)
        if tunnel is None:
            tunnel = client.create_tunnel(account_id, name)
            self.context.reporter.success(f"Created tunnel '{name}' ({tunnel.id})")
        else:
            self.context.reporter.info(f"Reusing tunnel '{name}' ({tunnel.id})")
            if self.credentials_path(tunnel.id).exists():
                return tunnel.id
            tunnel = client.recover_tunnel(tunnel)
        self._install_credentials(tunnel.id, json.dumps(tunnel.credentials(), indent=2) + "\n")
        return tunnel.id

    def apply(self) -> None:
        name = self.config("tunnel_name")
        tunnel_id = self._apply_api(name) if self.api_mode else self._apply_cli(name)
        self.store.set("tunnel_id", tunnel_id)

    def verify(self) -> bool:
        tunnel_id = self.config("tunnel_id")
        return bool(tunnel_id) and self.credentials_path(tunnel_id).exists()


class TunnelConfigStep(TunnelStepBase):
    """
    Writes ``config.yml`` with ingress rules for the domain and its ``www``
    alias. Rules for other hostnames in an existing file are kept.
    """

    step_id = "tunnel_config"
    description = "Write the tunnel ingress configuration"

    def detect(self) -> bool:
        return self.ingress_ready()

    def apply(self) -> None:
        tunnel_id = self.config("tunnel_id")
        current = self.current_config()
        updated, changed = cloudflared_utils.reconcile_ingress(
            current, tunnel_id, str(self.credentials_path(tunnel_id)), self.hostnames
        )
        if not changed:
            return
        if current:
            backup = backup_file(self.config_path, self.app_settings, self.logger)
            if backup:
                path = self.config_path
                self.register_cleanup(f"restore {path}", lambda: restore_file(backup, path, self.app_settings, self.logger))
        write_system_file(self.config_path, cloudflared_utils.dump_config(updated), self.app_settings,
                          current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class DnsRoutesStep(TunnelStepBase):
    """
    Points the domain and its ``www`` alias at the tunnel. API mode checks
    the records and changes only what differs; CLI mode relies on
    ``route dns --overwrite-dns``, which is idempotent.
    """

    step_id = "dns_routes"
    description = "Route DNS to the tunnel"
    network_bound = True

    @property
    def target(self) -> str:
        return cloudflared_utils.TunnelInfo(self.config("tunnel_id"), self.config("tunnel_name")).dns_target

    def _api_routed(self) -> bool:
        client = api_client(self.app_settings, self.store, self.logger)
        zone_id = self.config("cloudflare_zone_id")
        return all(client.cname_points_to(zone_id, host, self.target) for host in self.hostnames)

    def detect(self) -> bool:
        if not self.api_mode:
            log_message(
                "DNS routes are not checked in cli mode; 'route dns --overwrite-dns' is re-applied.",
                "debug",
                self.logger,
                self.app_settings,
            )
            return False
        return self._api_routed()

    def apply(self) -> None:
        if self.api_mode:
            client = api_client(self.app_settings, self.store, self.logger)
            for host in self.hostnames:
                outcome = client.ensure_cname(self.config("cloudflare_zone_id"), host, self.target)
                self.context.reporter.info(f"DNS {host} -> {self.target}: {outcome}")
        else:
            for host in self.hostnames:
                cloudflared_utils.route_dns(self.config("tunnel_id"), host, self.app_settings, self.logger)
                self.context.reporter.info(f"DNS {host} routed to tunnel")

    def verify(self) -> bool:
        if not self.api_mode:
            log_message(
                "DNS routes set through cloudflared are not verified; check them in the Cloudflare dashboard.",
                "debug",
                self.logger,
                self.app_settings,
            )
            return True
        return self._api_routed()


class TunnelServiceStep(TunnelStepBase):
    """Installs cloudflared as a system service and (re)starts it."""

    step_id = "tunnel_service"
    description = "Run the tunnel as a system service"
    network_bound = True

    def detect(self) -> bool:
        return (
            system_utils.service_unit_exists(CLOUDFLARED_SERVICE, self.app_settings, self.logger)
            and system_utils.service_is_enabled(CLOUDFLARED_SERVICE, self.app_settings, self.logger)
            and system_utils.service_is_active(CLOUDFLARED_SERVICE, self.app_settings, self.logger)
            and self.ingress_ready()
        )

    def apply(self) -> None:
        if not system_utils.service_unit_exists(CLOUDFLARED_SERVICE, self.app_settings, self.logger):
            run_elevated_command(
                ["cloudflared", "--config", str(self.config_path), "service", "install"],
                self.app_settings,
                timeout=120,
                current_logger=self.logger,
            )
            system_utils.systemd_reload(self.app_settings, self.logger)
        system_utils.systemctl("enable", [CLOUDFLARED_SERVICE], self.app_settings, self.logger)
        self.register_cleanup(
            "stop cloudflared",
            lambda: system_utils.systemctl("stop", [CLOUDFLARED_SERVICE], self.app_settings, self.logger),
        )
        system_utils.systemctl("restart", [CLOUDFLARED_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        if not system_utils.wait_for_service_active(
            CLOUDFLARED_SERVICE, self.app_settings, retries=5, delay=2.0, current_logger=self.logger
        ):
            return False
        if system_utils.journal_contains(CLOUDFLARED_SERVICE, TUNNEL_CONNECTED_PATTERN, self.app_settings,
                                         current_logger=self.logger):
            self.context.reporter.success("Tunnel connected to Cloudflare")
        else:
            log_message(
                f"{self.symbols.get('warning', '⚠️')} Tunnel started but no connection confirmed yet; "
                "check 'journalctl -u cloudflared -f'.",
                "warning",
                self.logger,
                self.app_settings,
            )
        return True
