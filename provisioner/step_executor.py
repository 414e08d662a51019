# provisioner/step_executor.py
# -*- coding: utf-8 -*-
"""
Executes the ordered steps of a recipe.

Per step the engine moves through
``pending -> detecting -> skipped`` or
``pending -> detecting -> applying -> verifying -> completed | failed``,
recording the start and the outcome in the state store. The first failure
halts the sequence; earlier results stay recorded so the next run resumes at
the failed step.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Type

from common.command_utils import log_message
from common.errors import (
    CancelledByUser,
    ExternalCommandFailed,
    ProvisionerError,
    StepVerificationFailed,
)

from .base_step import BaseStep, StepContext
from .state_manager import StepStatus

module_logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    results: List[Tuple[str, StepStatus, str]] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None

    def status_of(self, step_id: str) -> Optional[StepStatus]:
        for sid, status, _ in self.results:
            if sid == step_id:
                return status
        return None


def _diagnostic(error: BaseException) -> str:
    if isinstance(error, ExternalCommandFailed):
        return error.diagnostic
    return str(error) or type(error).__name__


def _last_line(error: BaseException) -> str:
    lines = _diagnostic(error).splitlines()
    return lines[-1][:200] if lines else type(error).__name__


class StepEngine:
    """
    Runs steps against a :class:`StepContext`.

    Args:
        context: Shared run context (settings, state store, reporter, cleanup).
        force_steps: Step ids to re-run even if recorded as done or detected
            as satisfied.
    """

    def __init__(
        self,
        context: StepContext,
        force_steps: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
    ):
        self.context = context
        self.app_settings = context.app_settings
        self.store = context.store
        self.force_steps = set(force_steps)
        self.logger = logger or module_logger
        self.symbols = self.app_settings.symbols

    def _apply_with_retries(self, step: BaseStep) -> int:
        attempts = self.app_settings.engine.network_retries if step.network_bound else 1
        delay = self.app_settings.engine.retry_delay
        for attempt in range(1, attempts + 1):
            try:
                step.apply()
                return attempt
            except (CancelledByUser, KeyboardInterrupt):
                raise
            except Exception as e:
                if attempt == attempts:
                    raise
                log_message(
                    f"{self.symbols.get('warning', '⚠️')} {step.step_id}: attempt {attempt}/{attempts} failed "
                    f"({_last_line(e)}); retrying in {delay:g}s",
                    "warning",
                    self.logger,
                    self.app_settings,
                )
                time.sleep(delay)
        return attempts

    def run_step(self, step: BaseStep) -> StepStatus:
        """
        Runs one step through detect/apply/verify.

        Returns:
            SKIPPED or COMPLETED.

        Raises:
            Whatever apply() raised, or StepVerificationFailed. The step is
            recorded as FAILED before the exception propagates.
        """
        step_id = step.step_id
        forced = step_id in self.force_steps

        if not forced and self.store.is_step_done(step_id):
            self.store.record_step_result(step_id, StepStatus.SKIPPED, "done in a previous run")
            log_message(
                f"{self.symbols.get('skip', '⏭️')} {step.description} ({step_id}): done in a previous run",
                "info",
                self.logger,
                self.app_settings,
            )
            return StepStatus.SKIPPED

        log_message(
            f"--- {self.symbols.get('step', '➡️')} {step.description} ({step_id}) ---",
            "info",
            self.logger,
            self.app_settings,
        )
        self.store.record_step_start(step_id)
        try:
            if not forced and step.detect():
                self.store.record_step_result(step_id, StepStatus.SKIPPED, "already present")
                log_message(
                    f"{self.symbols.get('skip', '⏭️')} {step.description}: already present",
                    "info",
                    self.logger,
                    self.app_settings,
                )
                return StepStatus.SKIPPED

            attempts = self._apply_with_retries(step)

            if not step.verify():
                raise StepVerificationFailed(
                    f"{step.description}: post-condition check failed after apply"
                )
        except KeyboardInterrupt:
            self.store.record_step_result(step_id, StepStatus.FAILED, "interrupted")
            raise
        except CancelledByUser:
            self.store.record_step_result(step_id, StepStatus.FAILED, "cancelled")
            raise
        except Exception as e:
            self.store.record_step_result(step_id, StepStatus.FAILED, _last_line(e))
            raise

        self.store.record_step_result(step_id, StepStatus.COMPLETED, "", attempts=attempts)
        log_message(
            f"--- {self.symbols.get('success', '✅')} {step.description} ({step_id}) ---",
            "success",
            self.logger,
            self.app_settings,
        )
        return StepStatus.COMPLETED

    def run(self, step_classes: Sequence[Type[BaseStep]]) -> RunOutcome:
        """
        Runs steps in order and halts at the first failure.

        KeyboardInterrupt and CancelledByUser propagate to the caller; any
        other error is reported (step name, diagnostic tail, log path) and
        returned in the outcome.
        """
        outcome = RunOutcome()
        for step_class in step_classes:
            step = step_class(self.context)
            try:
                status = self.run_step(step)
            except (KeyboardInterrupt, CancelledByUser):
                raise
            except Exception as e:
                outcome.results.append((step.step_id, StepStatus.FAILED, _diagnostic(e)))
                outcome.failed_step = step.step_id
                outcome.error = e
                self._report_failure(step, e)
                break
            outcome.results.append((step.step_id, status, self.store.step(step.step_id).detail))
        return outcome

    def _report_failure(self, step: BaseStep, error: BaseException) -> None:
        log_message(
            f"{self.symbols.get('error', '❌')} FAILED: {step.description} ({step.step_id})",
            "error",
            self.logger,
            self.app_settings,
            exc_info=not isinstance(error, ProvisionerError),
        )
        for line in _diagnostic(error).splitlines():
            log_message(f"   {line}", "error", self.logger, self.app_settings)
        if self.context.log_path:
            log_message(
                f"   Full log: {self.context.log_path}",
                "error",
                self.logger,
                self.app_settings,
            )
        log_message(
            f"   Re-run the same command to resume from '{step.step_id}'.",
            "error",
            self.logger,
            self.app_settings,
        )


def list_steps(step_classes: Sequence[Type[BaseStep]]) -> List[Tuple[str, str]]:
    return [(cls.step_id, cls.description) for cls in step_classes]
