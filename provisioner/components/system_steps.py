# provisioner/components/system_steps.py
# -*- coding: utf-8 -*-
"""
Steps shared by every recipe: refreshing the system and installing package
sets through apt.
"""

from typing import List

from common.debian.apt_manager import AptManager
from provisioner.base_step import BaseStep


class SystemUpdateStep(BaseStep):
    step_id = "system_update"
    description = "Update package lists and upgrade the system"
    network_bound = True

    def apply(self) -> None:
        apt = AptManager(logger=self.logger)
        apt.update(self.app_settings)
        apt.upgrade(self.app_settings)


class PackagesStep(BaseStep):
    """
    Installs ``packages`` with apt. Detects as done when none is missing;
    verification checks ``critical_packages`` (all packages when empty).
    """

    packages: List[str] = []
    critical_packages: List[str] = []
    network_bound = True

    def __init__(self, context):
        super().__init__(context)
        self.apt = AptManager(logger=self.logger)

    def detect(self) -> bool:
        return not self.apt.missing(self.packages, self.app_settings)

    def apply(self) -> None:
        self.apt.install(self.packages, self.app_settings)

    def verify(self) -> bool:
        missing = self.apt.missing(self.critical_packages or self.packages, self.app_settings)
        if missing:
            self.logger.error(f"Packages still missing after install: {', '.join(missing)}")
        return not missing
