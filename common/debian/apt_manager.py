# common/debian/apt_manager.py
# -*- coding: utf-8 -*-
import logging
import time
from typing import List, Optional, Union

from common.command_utils import (
    command_exists,
    run_command,
    run_elevated_command,
)
from common.errors import ExternalCommandFailed
from provisioner.config_models import AppSettings

APT_ENV_PREFIX = ["env", "DEBIAN_FRONTEND=noninteractive"]
APT_TIMEOUT = 3600


class AptManager:
    """
    A centralized manager for Debian apt packages using the command-line tools.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initializes the AptManager.
        Args:
            logger: An optional logging object.
        """
        self.logger = logger or logging.getLogger(__name__)
        if not command_exists("apt-get"):
            self.logger.critical(
                "'apt-get' command not found. This manager cannot function."
            )
            raise FileNotFoundError(
                "'apt-get' not found. Is this a Debian-based system?"
            )

    def update(
        self, app_settings: AppSettings, raise_error: bool = True
    ) -> bool:
        """
        Updates the list of available packages using 'apt-get update'.

        Args:
            app_settings: The application settings.
            raise_error: Whether to raise an exception on failure.

        Returns:
            True if successful, False otherwise.
        """
        self.logger.info("Updating apt package lists via 'apt-get update'...")
        try:
            run_elevated_command(
                APT_ENV_PREFIX + ["apt-get", "update", "-yq"],
                app_settings,
                timeout=APT_TIMEOUT,
                retries=2,
                backoff=5.0,
                current_logger=self.logger,
            )
            self.logger.info("Apt package lists updated successfully.")
            return True
        except ExternalCommandFailed as e:
            self.logger.error(f"Failed to update apt cache: {e}")
            if raise_error:
                raise
            return False

    def upgrade(
        self, app_settings: AppSettings, raise_error: bool = True
    ) -> bool:
        """Upgrades installed packages, keeping existing configuration files."""
        self.logger.info("Upgrading installed packages via 'apt-get upgrade'...")
        try:
            run_elevated_command(
                APT_ENV_PREFIX
                + [
                    "apt-get",
                    "upgrade",
                    "-yq",
                    "-o",
                    "Dpkg::Options::=--force-confold",
                ],
                app_settings,
                timeout=APT_TIMEOUT,
                current_logger=self.logger,
            )
            self.logger.info("Packages upgraded successfully.")
            return True
        except ExternalCommandFailed as e:
            self.logger.error(f"Failed to upgrade packages: {e}")
            if raise_error:
                raise
            return False

    def is_installed(
        self, package: str, app_settings: Optional[AppSettings]
    ) -> bool:
        """Checks dpkg's status database for an installed package."""
        result = run_command(
            ["dpkg-query", "-W", "-f=${db:Status-Status}", package],
            app_settings,
            check=False,
            current_logger=self.logger,
        )
        return result.ok and result.stdout.strip() == "installed"

    def missing(
        self, packages: List[str], app_settings: Optional[AppSettings]
    ) -> List[str]:
        """Returns the subset of ``packages`` that is not installed."""
        return [pkg for pkg in packages if not self.is_installed(pkg, app_settings)]

    def is_available(
        self, package: str, app_settings: Optional[AppSettings]
    ) -> bool:
        """True when apt knows a candidate version for ``package``."""
        result = run_command(
            ["apt-cache", "policy", package],
            app_settings,
            check=False,
            current_logger=self.logger,
        )
        return result.ok and "Candidate:" in result.stdout and "Candidate: (none)" not in result.stdout

    def install(
        self,
        packages: Union[List[str], str],
        app_settings: AppSettings,
        update_first: bool = False,
        retries: Optional[int] = None,
        raise_error: bool = True,
    ) -> bool:
        """
        Installs one or more packages using 'apt-get install'.

        Packages that are already installed are skipped. A failed install is
        retried, refreshing the package lists between attempts.

        Args:
            packages: A single package name or a list of package names.
            app_settings: The application settings.
            update_first: Whether to update the package lists before installing.
            retries: Number of attempts. Defaults to ``engine.apt_retries``.
            raise_error: Whether to raise after the last failed attempt.

        Returns:
            True if successful, False otherwise.
        """
        if not isinstance(packages, list):
            packages = [packages]
        attempts = retries if retries is not None else app_settings.engine.apt_retries

        if update_first:
            self.update(app_settings)

        packages_to_install = []
        for pkg_name in packages:
            if self.is_installed(pkg_name, app_settings):
                self.logger.info(
                    f"Package '{pkg_name}' is already installed. Skipping."
                )
            else:
                self.logger.info(f"Marking package for installation: {pkg_name}")
                packages_to_install.append(pkg_name)

        if not packages_to_install:
            self.logger.info("All requested packages are already installed.")
            return True

        self.logger.info(
            f"Committing installation for: {', '.join(packages_to_install)}"
        )
        cmd = APT_ENV_PREFIX + ["apt-get", "install", "-yq"] + packages_to_install
        for attempt in range(1, attempts + 1):
            try:
                run_elevated_command(
                    cmd,
                    app_settings,
                    timeout=APT_TIMEOUT,
                    current_logger=self.logger,
                )
                self.logger.info("Packages installed successfully.")
                return True
            except ExternalCommandFailed as e:
                if attempt == attempts:
                    self.logger.error(f"Failed to install packages: {e}")
                    if raise_error:
                        raise
                    return False
                self.logger.warning(
                    f"Install attempt {attempt}/{attempts} failed; refreshing package lists and retrying."
                )
                self.update(app_settings, raise_error=False)
                time.sleep(app_settings.engine.retry_delay)
        return False
