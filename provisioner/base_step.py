# provisioner/base_step.py
# -*- coding: utf-8 -*-
"""
Base class for provisioning steps and the context they run in.

A step is one idempotent unit of work with three phases: ``detect`` reports
whether the goal is already satisfied, ``apply`` performs the mutation and
``verify`` independently re-checks the post-condition.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from .config_models import AppSettings
from .state_manager import StateStore


@dataclass
class StepContext:
    """Everything a step needs: settings, state, output and cleanup."""

    app_settings: AppSettings
    store: StateStore
    reporter: Any
    cleanup: Any
    interactive: bool = True
    confirm: Optional[Callable[[str], bool]] = None
    log_path: Optional[Path] = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("provisioner"))

    def ask(self, question: str, default: bool = False) -> bool:
        """Yes/no question; non-interactive runs take ``default``."""
        if not self.interactive or self.confirm is None:
            return default
        return self.confirm(question)


class BaseStep(ABC):
    """
    Base class for all provisioning steps.

    Subclasses set ``step_id`` and ``description`` and implement ``apply``;
    ``detect`` and ``verify`` default to "not satisfied" and "holds".
    """

    step_id: str = ""
    description: str = ""
    network_bound: bool = False

    def __init__(self, context: StepContext):
        """
        Initialize the step.

        Args:
            context: The run context shared by all steps.
        """
        self.context = context
        self.app_settings = context.app_settings
        self.store = context.store
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @property
    def symbols(self):
        return self.app_settings.symbols

    def config(self, key: str, default: Any = None) -> Any:
        return self.store.get(key, default)

    def detect(self) -> bool:
        """
        Check whether the step's goal is already satisfied.

        Returns:
            True if nothing needs to be done, False otherwise.
        """
        return False

    @abstractmethod
    def apply(self) -> None:
        """
        Perform the mutation. Raises on failure.
        """

    def verify(self) -> bool:
        """
        Re-check the post-condition after ``apply``.

        Returns:
            True if the post-condition holds.
        """
        return True

    def register_cleanup(self, description: str, action: Callable[[], Any]) -> None:
        """Registers an undo action that runs if this step fails or the run is cancelled."""
        self.context.cleanup.register(description, action, step_id=self.step_id)
