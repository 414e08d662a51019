# provisioner/base_recipe.py
# -*- coding: utf-8 -*-
"""
Base class for recipes: the named set of parameters, preflight requirements
and ordered steps for one provisioning target.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Type

from .base_step import BaseStep, StepContext
from .collector import ConfigParameter
from .config_models import AppSettings
from .preflight import Requirement


class BaseRecipe(ABC):
    """Base class for all recipes."""

    name: str = ""
    description: str = ""

    def __init__(self, app_settings: AppSettings):
        self.app_settings = app_settings

    @abstractmethod
    def requirements(self) -> List[Requirement]:
        """Preflight requirements checked before any parameter is collected."""

    def late_requirements(self, context: StepContext) -> List[Requirement]:
        """Requirements that depend on collected parameters (e.g. the domain)."""
        return []

    @abstractmethod
    def parameters(self, context: StepContext) -> List[ConfigParameter]:
        """Parameters to collect, in prompt order."""

    @abstractmethod
    def steps(self) -> List[Type[BaseStep]]:
        """Step classes in execution order."""

    def summary_path(self) -> Path:
        if self.app_settings.paths.summary_file:
            return Path(self.app_settings.paths.summary_file).expanduser()
        return self.default_summary_path()

    @abstractmethod
    def default_summary_path(self) -> Path:
        """Where the summary artifact goes when no override is configured."""

    def summary_sections(self, context: StepContext) -> Dict[str, List[str]]:
        """Extra summary sections (service status, files, commands)."""
        return {}

    def post_run(self, context: StepContext) -> None:
        """Hook run after every step succeeded, before the summary is written."""
