# provisioner/config_models.py
# -*- coding: utf-8 -*-
"""
Pydantic models for application configuration.

This module defines the structured settings for the provisioner,
including defaults, type annotations, and descriptions.
It utilizes Pydantic for data validation and settings management.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Default Static Values (can be overridden by config file/env/cli) ---
LOG_PREFIX_DEFAULT: str = "[PI-PROVISION]"
STATE_DIR_DEFAULT: str = "/var/lib/pi-provisioner"
LOG_DIR_DEFAULT: str = "/var/log/pi-provisioner"

PING_TARGETS_DEFAULT: List[str] = ["8.8.8.8", "1.1.1.1", "github.com"]

NQPTP_REPO_DEFAULT: str = "https://github.com/mikebrady/nqptp.git"
SHAIRPORT_SYNC_REPO_DEFAULT: str = "https://github.com/mikebrady/shairport-sync.git"
SHAIRPORT_SYNC_CONFIGURE_FLAGS_DEFAULT: List[str] = [
    "--sysconfdir=/etc",
    "--with-alsa",
    "--with-avahi",
    "--with-ssl=openssl",
    "--with-soxr",
    "--with-systemd",
    "--with-airplay-2",
]

WORDPRESS_TARBALL_URL_DEFAULT: str = "https://wordpress.org/latest.tar.gz"
WORDPRESS_SALT_URL_DEFAULT: str = "https://api.wordpress.org/secret-key/1.1/salt/"
CLOUDFLARED_DOWNLOAD_URL_DEFAULT: str = (
    "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-{arch}"
)
CLOUDFLARE_API_BASE_DEFAULT: str = "https://api.cloudflare.com/client/v4"

SYMBOLS_DEFAULT: Dict[str, str] = {
    "success": "✅", "error": "❌", "warning": "⚠️", "info": "ℹ️",
    "step": "➡️", "gear": "⚙️", "package": "📦", "rocket": "🚀",
    "sparkles": "✨", "critical": "🔥", "debug": "🐛", "skip": "⏭️",
    "lock": "🔒", "speaker": "🔊", "cloud": "☁️",
}


class PathSettings(BaseModel):
    """Locations of the state file, run log and summary artifact."""
    state_dir: str = Field(default=STATE_DIR_DEFAULT, description="Directory holding per-recipe state files.")
    log_dir: str = Field(default=LOG_DIR_DEFAULT, description="Directory holding per-recipe run logs.")
    state_file: Optional[str] = Field(default=None, description="Explicit state file path (overrides state_dir).")
    log_file: Optional[str] = Field(default=None, description="Explicit run log path (overrides log_dir).")
    summary_file: Optional[str] = Field(default=None, description="Explicit summary artifact path.")


class EngineSettings(BaseModel):
    """Retry and timeout policy for the step engine and command runner."""
    network_retries: int = Field(default=3, ge=1, description="Attempts for network-bound steps.")
    retry_delay: float = Field(default=5.0, ge=0, description="Seconds between step-level retries.")
    command_timeout: int = Field(default=1800, ge=1, description="Default timeout (s) for long external commands.")
    apt_retries: int = Field(default=3, ge=1, description="Attempts for apt-get install.")


class PreflightSettings(BaseModel):
    """Preflight probe parameters."""
    ping_targets: List[str] = Field(default_factory=lambda: list(PING_TARGETS_DEFAULT))
    ping_timeout: int = Field(default=5, ge=1, description="Per-target ping timeout in seconds.")
    ping_attempts: int = Field(default=3, ge=1, description="Rounds over the target list.")
    ping_delay: float = Field(default=2.0, ge=0, description="Delay between rounds in seconds.")
    min_memory_mb: int = Field(default=100, description="Available memory below this is a warning.")
    overrides: List[str] = Field(
        default_factory=list,
        description="Names of failed preflight requirements to accept without prompting.",
    )


class AirPlaySettings(BaseModel):
    """AirPlay 2 receiver recipe settings."""
    device_name: Optional[str] = Field(default=None, description="Name advertised to AirPlay clients.")
    output_device: Optional[str] = Field(default=None, description="ALSA output device, e.g. plughw:1,0.")
    mixer_control: Optional[str] = Field(default=None, description="ALSA mixer control name.")
    min_disk_mb: int = Field(default=1024, description="Required free space on / in MB.")
    build_dir: str = Field(default="/tmp", description="Directory where sources are cloned and built.")
    nqptp_repo: str = Field(default=NQPTP_REPO_DEFAULT)
    shairport_sync_repo: str = Field(default=SHAIRPORT_SYNC_REPO_DEFAULT)
    shairport_sync_configure_flags: List[str] = Field(
        default_factory=lambda: list(SHAIRPORT_SYNC_CONFIGURE_FLAGS_DEFAULT)
    )
    output_rate: str = Field(default="auto")
    output_format: str = Field(default="S16")
    volume_max_db: float = Field(default=4.0)
    default_airplay_volume: float = Field(default=-6.0)
    high_volume_idle_timeout_in_minutes: int = Field(default=1)
    firewall_ports: List[str] = Field(default_factory=lambda: ["5353/udp", "319/udp", "320/udp", "7000/tcp"])
    test_audio: bool = Field(default=False, description="Play a test sound after installation.")


class WordPressSettings(BaseModel):
    """WordPress + Cloudflare Tunnel recipe settings."""
    domain: Optional[str] = Field(default=None, description="Public domain for the site.")
    min_disk_mb: int = Field(default=2048, description="Required free space on / in MB.")
    db_name: Optional[str] = Field(default=None, description="WordPress database name.")
    db_user: Optional[str] = Field(default=None, description="WordPress database user.")
    db_password: Optional[str] = Field(default=None, description="WordPress database password.", exclude=True)
    db_root_password: Optional[str] = Field(default=None, description="MariaDB root password.", exclude=True)
    root_password_file: str = Field(default="/root/.mysql_root_password")
    tunnel_mode: Optional[str] = Field(default=None, description="'cli' (browser login) or 'api' (API token).")
    tunnel_name: Optional[str] = Field(default=None, description="Cloudflare tunnel name.")
    cloudflare_api_token: Optional[str] = Field(default=None, description="Cloudflare API token.", exclude=True)
    cloudflare_account_id: Optional[str] = Field(default=None)
    cloudflare_zone_id: Optional[str] = Field(default=None)
    cloudflare_api_base: str = Field(default=CLOUDFLARE_API_BASE_DEFAULT)
    web_root: str = Field(default="/var/www/html")
    cloudflared_config_dir: str = Field(default="/etc/cloudflared")
    cloudflared_url: str = Field(default=CLOUDFLARED_DOWNLOAD_URL_DEFAULT)
    wordpress_url: str = Field(default=WORDPRESS_TARBALL_URL_DEFAULT)
    salt_url: str = Field(default=WORDPRESS_SALT_URL_DEFAULT)
    php_settings: Dict[str, str] = Field(default_factory=lambda: {
        "upload_max_filesize": "64M",
        "post_max_size": "64M",
        "memory_limit": "256M",
        "max_execution_time": "300",
    })
    summary_file: str = Field(default="/root/installation_summary.txt")


class AppSettings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_prefix="PIPROV_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_prefix: str = Field(default=LOG_PREFIX_DEFAULT, description="Prefix for console log messages.")
    log_level: str = Field(default="INFO", description="Console log level.")
    non_interactive: bool = Field(default=False, description="Fail instead of prompting for missing values.")

    paths: PathSettings = Field(default_factory=PathSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    preflight: PreflightSettings = Field(default_factory=PreflightSettings)
    airplay: AirPlaySettings = Field(default_factory=AirPlaySettings)
    wordpress: WordPressSettings = Field(default_factory=WordPressSettings)

    symbols: Dict[str, str] = Field(default_factory=lambda: dict(SYMBOLS_DEFAULT))
