# provisioner/components/wordpress/wordpress_steps.py
# -*- coding: utf-8 -*-
"""
Steps of the WordPress recipe that build the local site: Apache, MariaDB,
PHP, the database, the WordPress files and the virtual host.
"""

import logging
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from common import mysql_utils, system_utils
from common.command_utils import log_message, run_command, run_elevated_command
from common.errors import CommandNotFound, ExternalServiceError, ProvisionerError
from common.file_utils import atomic_write_text, backup_file, read_system_file, restore_file, write_system_file
from common.http_utils import download_file, fetch_text
from provisioner import config as static_config
from provisioner.base_step import BaseStep
from provisioner.components.system_steps import PackagesStep

from .site_config import (
    apply_php_settings,
    db_credentials,
    generate_salts,
    php_settings_applied,
    render_wp_config,
    set_db_credentials,
)

module_logger = logging.getLogger(__name__)

APACHE_SERVICE = "apache2"
MARIADB_SERVICE = "mariadb"
WEB_USER = "www-data"


def apache_module_enabled(module: str, mods_enabled: str = "/etc/apache2/mods-enabled") -> bool:
    return (Path(mods_enabled) / f"{module}.load").exists()


def php_ini_path(app_settings, current_logger: Optional[logging.Logger] = None) -> Optional[Path]:
    """Path of the Apache SAPI php.ini for the installed PHP version."""
    try:
        result = run_command(
            ["php", "-r", 'echo PHP_MAJOR_VERSION . "." . PHP_MINOR_VERSION;'],
            app_settings,
            check=False,
            current_logger=current_logger,
        )
    except CommandNotFound:
        return None
    version = result.stdout.strip()
    if not result.ok or not re.match(r"^\d+\.\d+$", version):
        return None
    return Path(f"/etc/php/{version}/apache2/php.ini")


class ApacheStep(PackagesStep):
    step_id = "apache"
    description = "Install Apache and enable its modules"
    packages = static_config.APACHE_PACKAGES

    def detect(self) -> bool:
        return super().detect() and all(apache_module_enabled(m) for m in static_config.APACHE_MODULES)

    def apply(self) -> None:
        super().apply()
        run_elevated_command(["a2enmod"] + static_config.APACHE_MODULES, self.app_settings, current_logger=self.logger)
        system_utils.systemctl("enable", [APACHE_SERVICE], self.app_settings, self.logger)
        system_utils.systemctl("restart", [APACHE_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        return super().verify() and all(apache_module_enabled(m) for m in static_config.APACHE_MODULES) and \
            system_utils.wait_for_service_active(APACHE_SERVICE, self.app_settings, current_logger=self.logger)


class MariaDBStep(PackagesStep):
    step_id = "mariadb"
    description = "Install MariaDB"
    packages = static_config.MARIADB_PACKAGES

    def apply(self) -> None:
        super().apply()
        system_utils.systemctl("enable", [MARIADB_SERVICE], self.app_settings, self.logger)
        system_utils.systemctl("start", [MARIADB_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        return super().verify() and \
            system_utils.wait_for_service_active(MARIADB_SERVICE, self.app_settings, current_logger=self.logger)


class MariaDBSecureStep(BaseStep):
    """
    Equivalent of ``mysql_secure_installation``: root password, no anonymous
    users, no remote root, no test database. The root password is kept in
    ``root_password_file`` (0600) for later runs.
    """

    step_id = "mariadb_secure"
    description = "Secure the MariaDB installation"

    @property
    def root_password(self) -> str:
        return self.config("db_root_password")

    def detect(self) -> bool:
        if not mysql_utils.root_login_works(self.app_settings, self.root_password, self.logger):
            return False
        anonymous = mysql_utils.query_value(
            "SELECT COUNT(*) FROM mysql.user WHERE User='';", self.app_settings, self.root_password, self.logger
        )
        test_db = mysql_utils.query_value(
            "SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='test';",
            self.app_settings,
            self.root_password,
            self.logger,
        )
        return anonymous == "0" and test_db == "0"

    def apply(self) -> None:
        sql = mysql_utils.secure_installation_sql(self.root_password)
        if mysql_utils.root_login_works(self.app_settings, None, self.logger):
            current = None
        elif mysql_utils.root_login_works(self.app_settings, self.root_password, self.logger):
            current = self.root_password
        else:
            raise ProvisionerError(
                "Cannot log in to MariaDB as root, neither through the unix socket nor with the "
                f"stored password. Put the current root password in "
                f"{self.app_settings.wordpress.root_password_file} and re-run."
            )
        mysql_utils.execute_sql(sql, self.app_settings, current, current_logger=self.logger)
        atomic_write_text(self.app_settings.wordpress.root_password_file, self.root_password + "\n", mode=0o600)
        log_message(
            f"{self.symbols.get('lock', '🔒')} MariaDB root password saved to "
            f"{self.app_settings.wordpress.root_password_file}",
            "info",
            self.logger,
            self.app_settings,
        )

    def verify(self) -> bool:
        return mysql_utils.root_login_works(self.app_settings, self.root_password, self.logger)


class PhpStep(PackagesStep):
    step_id = "php"
    description = "Install PHP and its extensions"
    packages = static_config.PHP_PACKAGES


class PhpConfigStep(BaseStep):
    step_id = "php_config"
    description = "Raise PHP upload and memory limits"

    def _ini(self) -> Path:
        path = php_ini_path(self.app_settings, self.logger)
        if path is None or not path.exists():
            raise ProvisionerError(f"Could not locate the Apache php.ini (looked at {path})")
        return path

    def detect(self) -> bool:
        path = php_ini_path(self.app_settings, self.logger)
        if path is None:
            return False
        text = read_system_file(path, self.app_settings, self.logger)
        return text is not None and php_settings_applied(text, self.app_settings.wordpress.php_settings)

    def apply(self) -> None:
        path = self._ini()
        text = read_system_file(path, self.app_settings, self.logger) or ""
        backup = backup_file(path, self.app_settings, self.logger)
        if backup:
            self.register_cleanup(f"restore {path}", lambda: restore_file(backup, path, self.app_settings, self.logger))
        write_system_file(
            path,
            apply_php_settings(text, self.app_settings.wordpress.php_settings),
            self.app_settings,
            current_logger=self.logger,
        )
        system_utils.systemctl("restart", [APACHE_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        return self.detect()


class WordPressDatabaseStep(BaseStep):
    step_id = "wordpress_database"
    description = "Create the WordPress database and user"

    def detect(self) -> bool:
        root_pw = self.config("db_root_password")
        db_name = mysql_utils.validate_identifier(self.config("db_name"))
        db_user = mysql_utils.validate_identifier(self.config("db_user"))
        schemas = mysql_utils.query_value(
            f"SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='{db_name}';",
            self.app_settings,
            root_pw,
            self.logger,
        )
        users = mysql_utils.query_value(
            f"SELECT COUNT(*) FROM mysql.user WHERE User='{db_user}' AND Host='localhost';",
            self.app_settings,
            root_pw,
            self.logger,
        )
        return schemas == "1" and users == "1"

    def apply(self) -> None:
        sql = mysql_utils.create_database_sql(
            self.config("db_name"), self.config("db_user"), self.config("db_password")
        )
        mysql_utils.execute_sql(sql, self.app_settings, self.config("db_root_password"), current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class WordPressFilesStep(BaseStep):
    step_id = "wordpress_files"
    description = "Download and unpack WordPress"
    network_bound = True

    @property
    def web_root(self) -> Path:
        return Path(self.app_settings.wordpress.web_root)

    def detect(self) -> bool:
        return (self.web_root / "wp-includes" / "version.php").exists()

    def apply(self) -> None:
        wp = self.app_settings.wordpress
        work_dir = Path(tempfile.mkdtemp(prefix="piprov_wp_"))
        try:
            tarball = download_file(wp.wordpress_url, work_dir / "wordpress.tar.gz", current_logger=self.logger)
            run_command(["tar", "-xzf", str(tarball), "-C", str(work_dir)], self.app_settings, timeout=600,
                        current_logger=self.logger)
            run_elevated_command(["mkdir", "-p", str(self.web_root)], self.app_settings, current_logger=self.logger)
            run_elevated_command(
                ["cp", "-a", f"{work_dir / 'wordpress'}/.", str(self.web_root)],
                self.app_settings,
                current_logger=self.logger,
            )
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        default_index = self.web_root / "index.html"
        if default_index.exists():
            # Debian's placeholder page would shadow index.php.
            run_elevated_command(["rm", "-f", str(default_index)], self.app_settings, current_logger=self.logger)

        write_system_file(
            self.web_root / ".htaccess",
            static_config.WORDPRESS_HTACCESS,
            self.app_settings,
            owner=WEB_USER,
            group=WEB_USER,
            current_logger=self.logger,
        )
        set_web_permissions(self.web_root, self.app_settings, self.logger)

    def verify(self) -> bool:
        return self.detect() and (self.web_root / "wp-config-sample.php").exists()


def set_web_permissions(web_root: Path, app_settings, current_logger: Optional[logging.Logger] = None) -> None:
    """www-data owns the tree; directories 755, files 644."""
    run_elevated_command(["chown", "-R", f"{WEB_USER}:{WEB_USER}", str(web_root)], app_settings,
                         current_logger=current_logger)
    run_elevated_command(["find", str(web_root), "-type", "d", "-exec", "chmod", "755", "{}", "+"], app_settings,
                         current_logger=current_logger)
    run_elevated_command(["find", str(web_root), "-type", "f", "-exec", "chmod", "644", "{}", "+"], app_settings,
                         current_logger=current_logger)


class WordPressConfigStep(BaseStep):
    step_id = "wordpress_config"
    description = "Write wp-config.php"

    @property
    def config_path(self) -> Path:
        return Path(self.app_settings.wordpress.web_root) / "wp-config.php"

    def _expected(self):
        return {
            "DB_NAME": self.config("db_name"),
            "DB_USER": self.config("db_user"),
            "DB_PASSWORD": self.config("db_password"),
        }

    def detect(self) -> bool:
        text = read_system_file(self.config_path, self.app_settings, self.logger)
        return text is not None and db_credentials(text) == self._expected()

    def _salts(self) -> str:
        try:
            salts = fetch_text(self.app_settings.wordpress.salt_url)
            if "NONCE_SALT" in salts:
                return salts
        except ExternalServiceError as e:
            log_message(
                f"{self.symbols.get('warning', '⚠️')} Salt service unavailable ({e}); generating keys locally.",
                "warning",
                self.logger,
                self.app_settings,
            )
        return generate_salts()

    def apply(self) -> None:
        path = self.config_path
        expected = self._expected()
        current = read_system_file(path, self.app_settings, self.logger)
        if current is not None:
            backup = backup_file(path, self.app_settings, self.logger)
            if backup:
                self.register_cleanup(f"restore {path}", lambda: restore_file(backup, path, self.app_settings, self.logger))
            text = set_db_credentials(current, expected["DB_NAME"], expected["DB_USER"], expected["DB_PASSWORD"])
        else:
            sample = read_system_file(path.with_name("wp-config-sample.php"), self.app_settings, self.logger)
            if sample is None:
                raise ProvisionerError(f"{path.with_name('wp-config-sample.php')} is missing; re-run wordpress_files")
            text = render_wp_config(
                sample, expected["DB_NAME"], expected["DB_USER"], expected["DB_PASSWORD"], self._salts()
            )
        write_system_file(path, text, self.app_settings, mode="640", owner=WEB_USER, group=WEB_USER,
                          current_logger=self.logger)

    def verify(self) -> bool:
        return self.detect()


class ApacheVhostStep(BaseStep):
    step_id = "apache_vhost"
    description = "Configure the Apache virtual host"

    @property
    def site_path(self) -> Path:
        return Path(static_config.APACHE_SITES_AVAILABLE) / f"{static_config.APACHE_SITE_NAME}.conf"

    def _rendered(self) -> str:
        return static_config.APACHE_VHOST_TEMPLATE.format(
            domain=self.config("domain"), web_root=self.app_settings.wordpress.web_root
        )

    def _enabled(self) -> bool:
        sites_enabled = Path(static_config.APACHE_SITES_AVAILABLE).with_name("sites-enabled")
        return (sites_enabled / self.site_path.name).exists() and \
            not (sites_enabled / "000-default.conf").exists()

    def detect(self) -> bool:
        current = read_system_file(self.site_path, self.app_settings, self.logger)
        return current == self._rendered() and self._enabled()

    def apply(self) -> None:
        write_system_file(self.site_path, self._rendered(), self.app_settings, current_logger=self.logger)
        # a2dissite exits 1 when the site is already disabled
        run_elevated_command(["a2dissite", "000-default"], self.app_settings, acceptable_exit_codes=(0, 1),
                             current_logger=self.logger)
        run_elevated_command(["a2ensite", static_config.APACHE_SITE_NAME], self.app_settings,
                             current_logger=self.logger)
        run_elevated_command(["apache2ctl", "configtest"], self.app_settings, current_logger=self.logger)
        system_utils.systemctl("restart", [APACHE_SERVICE], self.app_settings, self.logger)

    def verify(self) -> bool:
        return self._enabled() and system_utils.wait_for_service_active(
            APACHE_SERVICE, self.app_settings, current_logger=self.logger
        )
