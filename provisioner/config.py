# provisioner/config.py
"""
Static constants for the provisioner: version, file locations and package
lists that are not meant to be overridden from configuration.
"""

from pathlib import Path

SCRIPT_VERSION: str = "2.0.0"

PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_FILE: str = "config.yaml"

STATE_FILE_TEMPLATE: str = "{recipe}-state.json"
LOG_FILE_TEMPLATE: str = "{recipe}.log"
FALLBACK_LOG_DIR: str = "~/.local/state/pi-provisioner"

EXIT_SUCCESS: int = 0
EXIT_FAILURE: int = 1
EXIT_CANCELLED: int = 130

# --- AirPlay receiver ---
AIRPLAY_BUILD_PACKAGES: list[str] = [
    "build-essential",
    "git",
    "autoconf",
    "automake",
    "libtool",
    "pkg-config",
    "libpopt-dev",
    "libconfig-dev",
    "libasound2-dev",
    "avahi-daemon",
    "libavahi-client-dev",
    "libssl-dev",
    "libsoxr-dev",
    "libplist-dev",
    "libsodium-dev",
    "libavutil-dev",
    "libavcodec-dev",
    "libavformat-dev",
    "uuid-dev",
    "libgcrypt20-dev",
    "xxd",
    "alsa-utils",
]
AIRPLAY_CRITICAL_PACKAGES: list[str] = [
    "build-essential",
    "git",
    "libasound2-dev",
    "avahi-daemon",
]
AIRPLAY_REQUIRED_COMMANDS: list[str] = ["git", "gcc", "make", "aplay", "amixer"]
AIRPLAY_UNSUPPORTED_MODELS: str = r"Pi Zero W|Pi 1"

SHAIRPORT_SYNC_BINARY: str = "/usr/local/bin/shairport-sync"
SHAIRPORT_SYNC_CONF: str = "/etc/shairport-sync.conf"
SHAIRPORT_SYNC_CONF_SAMPLE: str = "/etc/shairport-sync.conf.sample"
SHAIRPORT_SYNC_UNIT: str = "/lib/systemd/system/shairport-sync.service"
SHAIRPORT_SYNC_USER: str = "shairport-sync"
NQPTP_BINARY: str = "/usr/local/bin/nqptp"

SHAIRPORT_SYNC_UNIT_CONTENT: str = """\
[Unit]
Description=Shairport Sync - AirPlay Audio Receiver
After=sound.target network-online.target
Wants=network-online.target nqptp.service

[Service]
ExecStart=/usr/local/bin/shairport-sync
User=shairport-sync
Group=shairport-sync
Restart=on-failure
RestartSec=5

[Install]
WantedBy=multi-user.target
"""

# --- WordPress + Cloudflare Tunnel ---
APACHE_PACKAGES: list[str] = ["apache2"]
APACHE_MODULES: list[str] = ["rewrite", "ssl", "headers", "expires"]
MARIADB_PACKAGES: list[str] = ["mariadb-server", "mariadb-client"]
PHP_PACKAGES: list[str] = [
    "php",
    "php-mysql",
    "php-curl",
    "php-gd",
    "php-mbstring",
    "php-xml",
    "php-xmlrpc",
    "php-soap",
    "php-intl",
    "php-zip",
    "libapache2-mod-php",
]
WORDPRESS_REQUIRED_COMMANDS: list[str] = ["wget", "curl", "tar", "gzip"]
APACHE_SITE_NAME: str = "wordpress"
APACHE_SITES_AVAILABLE: str = "/etc/apache2/sites-available"
CLOUDFLARED_BINARY: str = "/usr/local/bin/cloudflared"

WORDPRESS_HTACCESS: str = """\
# BEGIN WordPress
<IfModule mod_rewrite.c>
RewriteEngine On
RewriteBase /
RewriteRule ^index\\.php$ - [L]
RewriteCond %{REQUEST_FILENAME} !-f
RewriteCond %{REQUEST_FILENAME} !-d
RewriteRule . /index.php [L]
</IfModule>
# END WordPress
"""

APACHE_VHOST_TEMPLATE: str = """\
<VirtualHost *:80>
    ServerName {domain}
    ServerAlias www.{domain}
    DocumentRoot {web_root}

    <Directory {web_root}>
        Options -Indexes +FollowSymLinks
        AllowOverride All
        Require all granted
    </Directory>

    ErrorLog ${{APACHE_LOG_DIR}}/wordpress_error.log
    CustomLog ${{APACHE_LOG_DIR}}/wordpress_access.log combined
</VirtualHost>
"""
