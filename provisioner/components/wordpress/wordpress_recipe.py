# provisioner/components/wordpress/wordpress_recipe.py
# -*- coding: utf-8 -*-
"""
WordPress recipe: Apache, MariaDB and PHP serving WordPress, published
through a Cloudflare Tunnel.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Type

from common import system_utils
from common.cloudflare_api import CloudflareClient
from common.errors import ExternalServiceError
from common.mysql_utils import validate_identifier
from common.network_utils import normalize_domain, sanitize_tunnel_name, tunnel_name_for_domain, validate_domain
from common.secret_utils import generate_password, validate_password
from provisioner import config as static_config
from provisioner import preflight
from provisioner.base_recipe import BaseRecipe
from provisioner.base_step import BaseStep, StepContext
from provisioner.collector import ConfigParameter, choice_validator
from provisioner.components.system_steps import SystemUpdateStep
from provisioner.preflight import Requirement
from provisioner.registry import RecipeRegistry

from .tunnel_steps import (
    CLOUDFLARED_SERVICE,
    CloudflaredBinaryStep,
    CloudflareLoginStep,
    DnsRoutesStep,
    TunnelConfigStep,
    TunnelServiceStep,
    TunnelStep,
    api_client,
    hostnames_for,
)
from .wordpress_steps import (
    APACHE_SERVICE,
    MARIADB_SERVICE,
    ApacheStep,
    ApacheVhostStep,
    MariaDBSecureStep,
    MariaDBStep,
    PhpConfigStep,
    PhpStep,
    WordPressConfigStep,
    WordPressDatabaseStep,
    WordPressFilesStep,
)

module_logger = logging.getLogger(__name__)

TUNNEL_MODES = ["cli", "api"]


def read_root_password_file(path: str) -> Optional[str]:
    """The saved MariaDB root password, or None when there is none."""
    try:
        value = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


@RecipeRegistry.register("wordpress")
class WordPressRecipe(BaseRecipe):
    description = "WordPress behind a Cloudflare Tunnel"

    def requirements(self) -> List[Requirement]:
        wp = self.app_settings.wordpress
        return [
            preflight.require_root(),
            preflight.require_connectivity(self.app_settings),
            preflight.require_disk_space("/", wp.min_disk_mb, overridable=True),
            preflight.require_memory(self.app_settings.preflight.min_memory_mb),
            preflight.require_commands(static_config.WORDPRESS_REQUIRED_COMMANDS),
        ]

    def late_requirements(self, context: StepContext) -> List[Requirement]:
        return [preflight.check_cloudflare_nameservers(context.store.get("domain"), self.app_settings)]

    def _lookup_zone_id(self, context: StepContext) -> Optional[str]:
        domain = context.store.get("domain")
        try:
            zone = api_client(self.app_settings, context.store, context.logger).find_zone(domain)
        except ExternalServiceError as e:
            context.reporter.warning(f"Zone lookup for {domain} failed: {e}")
            return None
        return zone["id"] if zone else None

    def parameters(self, context: StepContext) -> List[ConfigParameter]:
        wp = self.app_settings.wordpress
        store = context.store

        def api_mode() -> bool:
            return store.get("tunnel_mode") == "api"

        def verify_token(token: str) -> None:
            CloudflareClient(token, wp.cloudflare_api_base, logger=context.logger).verify_token()

        return [
            ConfigParameter(
                name="domain",
                prompt="Domain name (e.g. example.com)",
                preset=wp.domain,
                normalizer=normalize_domain,
                validator=validate_domain,
                help="The domain must be on Cloudflare (its nameservers point to Cloudflare).",
            ),
            ConfigParameter(
                name="tunnel_mode",
                prompt="Tunnel setup: 'cli' (browser login) or 'api' (API token)",
                default="cli",
                preset=wp.tunnel_mode,
                normalizer=str.lower,
                validator=choice_validator(TUNNEL_MODES),
            ),
            ConfigParameter(
                name="tunnel_name",
                prompt="Tunnel name",
                default=lambda: tunnel_name_for_domain(store.get("domain")),
                preset=wp.tunnel_name,
                validator=sanitize_tunnel_name,
            ),
            ConfigParameter(
                name="db_name",
                prompt="Database name",
                default="wordpress",
                preset=wp.db_name,
                validator=validate_identifier,
            ),
            ConfigParameter(
                name="db_user",
                prompt="Database user",
                default="wpuser",
                preset=wp.db_user,
                validator=validate_identifier,
            ),
            ConfigParameter(
                name="db_password",
                prompt="Database password (min 12 characters)",
                preset=wp.db_password,
                validator=validate_password,
                generator=lambda: generate_password(20),
                sensitive=True,
                secret=True,
                confirm=True,
            ),
            ConfigParameter(
                name="db_root_password",
                prompt="MariaDB root password",
                preset=lambda: wp.db_root_password or read_root_password_file(wp.root_password_file),
                generator=lambda: generate_password(25),
                sensitive=True,
                secret=True,
            ),
            ConfigParameter(
                name="cloudflare_api_token",
                prompt="Cloudflare API token (Zone:DNS:Edit, Account:Cloudflare Tunnel:Edit)",
                preset=wp.cloudflare_api_token,
                verifier=verify_token,
                sensitive=True,
                secret=True,
                when=api_mode,
            ),
            ConfigParameter(
                name="cloudflare_account_id",
                prompt="Cloudflare account ID",
                preset=wp.cloudflare_account_id,
                when=api_mode,
            ),
            ConfigParameter(
                name="cloudflare_zone_id",
                prompt="Cloudflare zone ID",
                preset=lambda: wp.cloudflare_zone_id or self._lookup_zone_id(context),
                when=api_mode,
            ),
        ]

    def steps(self) -> List[Type[BaseStep]]:
        return [
            SystemUpdateStep,
            ApacheStep,
            MariaDBStep,
            MariaDBSecureStep,
            PhpStep,
            PhpConfigStep,
            WordPressDatabaseStep,
            WordPressFilesStep,
            WordPressConfigStep,
            ApacheVhostStep,
            CloudflaredBinaryStep,
            CloudflareLoginStep,
            TunnelStep,
            TunnelConfigStep,
            DnsRoutesStep,
            TunnelServiceStep,
        ]

    def default_summary_path(self) -> Path:
        return Path(self.app_settings.wordpress.summary_file)

    def summary_sections(self, context: StepContext) -> Dict[str, List[str]]:
        store = context.store
        wp = self.app_settings.wordpress
        domain = store.get("domain", "")
        status = system_utils.service_status_snapshot(
            [APACHE_SERVICE, MARIADB_SERVICE, CLOUDFLARED_SERVICE], self.app_settings, context.logger
        )
        urls = [f"https://{host}" for host in hostnames_for(domain)] if domain else []
        if domain:
            urls.append(f"https://{domain}/wp-admin (finish the WordPress setup here)")
        return {
            "Site": urls,
            "Tunnel": [
                f"Name: {store.get('tunnel_name', '')}",
                f"ID: {store.get('tunnel_id', '(not created)')}",
                f"Mode: {store.get('tunnel_mode', '')}",
            ],
            "Database": [
                f"Name: {store.get('db_name', '')}",
                f"User: {store.get('db_user', '')}",
                f"Root password file: {wp.root_password_file}",
            ],
            "Files": [
                f"Web root: {wp.web_root}",
                f"WordPress config: {Path(wp.web_root) / 'wp-config.php'}",
                f"Apache site: {Path(static_config.APACHE_SITES_AVAILABLE) / static_config.APACHE_SITE_NAME}.conf",
                f"Tunnel config: {Path(wp.cloudflared_config_dir) / 'config.yml'}",
            ],
            "Services": [f"{name}: {state}" for name, state in status.items()],
            "Useful commands": [
                "sudo journalctl -u cloudflared -f",
                "sudo systemctl restart apache2 cloudflared",
                "sudo tail -f /var/log/apache2/wordpress_error.log",
                "cloudflared tunnel list",
            ],
        }

    def post_run(self, context: StepContext) -> None:
        context.reporter.info(
            "In the Cloudflare dashboard, set SSL/TLS to 'Full' and enable 'Always Use HTTPS'."
        )
