# provisioner/cleanup.py
# -*- coding: utf-8 -*-
"""
Scoped cleanup for interrupted or failed runs.

Steps register an undo action right after each mutation (service started,
config file replaced, build directory created). When the run is cancelled
every action runs newest first, each one best effort, and the steps whose
work was undone are reset to ``pending`` so the next run redoes them. When a
step fails only that step's own actions run; steps that completed before it
keep their work and their ``completed`` record, so a re-run resumes at the
failed step. State left by earlier runs is never touched.
"""

import logging
import signal
from typing import Any, Callable, List, Optional, Tuple

from common.command_utils import log_message

from .config_models import AppSettings
from .state_manager import StateStore, StepStatus

module_logger = logging.getLogger(__name__)

CleanupAction = Tuple[str, Callable[[], Any], Optional[str]]


class CleanupRegistry:
    """LIFO stack of undo actions for the current run."""

    def __init__(
        self,
        app_settings: AppSettings,
        store: Optional[StateStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.app_settings = app_settings
        self.store = store
        self.logger = logger or module_logger
        self._actions: List[CleanupAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def register(
        self,
        description: str,
        action: Callable[[], Any],
        step_id: Optional[str] = None,
    ) -> None:
        self._actions.append((description, action, step_id))

    def discard(self) -> None:
        """Forget every action (the run succeeded, or what is left must stay)."""
        self._actions.clear()

    def _execute(self, actions: List[CleanupAction]) -> List[str]:
        symbols = self.app_settings.symbols
        touched: List[str] = []
        log_message(
            f"{symbols.get('warning', '!')} Running cleanup ({len(actions)} action(s))...",
            "warning",
            self.logger,
            self.app_settings,
        )
        for description, action, step_id in reversed(actions):
            try:
                action()
                log_message(f"   cleanup: {description}", "info", self.logger, self.app_settings)
            except Exception as e:
                log_message(
                    f"{symbols.get('error', '❌')} Cleanup action failed ({description}): {e}",
                    "error",
                    self.logger,
                    self.app_settings,
                    exc_info=True,
                )
            if step_id and step_id not in touched:
                touched.append(step_id)
        return touched

    def run(self) -> List[str]:
        """
        Runs every registered action, newest first. Used on cancellation.

        Returns:
            The ids of steps whose work was undone; they are reset to pending.
        """
        if not self._actions:
            return []
        actions, self._actions = self._actions, []
        undone_steps = self._execute(actions)
        if self.store is not None:
            for step_id in undone_steps:
                self.store.record_step_result(step_id, StepStatus.PENDING, "undone by cleanup")
        return undone_steps

    def run_for_step(self, step_id: str) -> int:
        """
        Runs only the actions registered by ``step_id`` (a step that failed)
        and forgets the rest. The step keeps its ``failed`` record.

        Returns:
            The number of actions run.
        """
        own = [a for a in self._actions if a[2] == step_id]
        self._actions = []
        if own:
            self._execute(own)
        return len(own)


def _raise_keyboard_interrupt(signum, frame):
    raise KeyboardInterrupt(f"signal {signum}")


def install_signal_handlers() -> None:
    """SIGTERM is handled like Ctrl-C so both take the same cleanup path."""
    signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
