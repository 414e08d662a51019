# common/errors.py
# -*- coding: utf-8 -*-
"""
Error taxonomy shared by the provisioner.

Validation problems are absorbed by the collector's prompt loop; everything
else propagates to the step engine or the entry point, which decides whether
the run halts and which exit code is returned.
"""

from typing import List, Optional, Sequence


class ProvisionerError(Exception):
    """Base class for every error raised by the provisioner."""


class PreconditionFailed(ProvisionerError):
    """Raised by the preflight gate before any mutation takes place."""

    def __init__(self, message: str, failed: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.failed: List[str] = list(failed or [])


class ExternalCommandFailed(ProvisionerError):
    """A shelled-out command exited with an unacceptable status."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result

    @property
    def diagnostic(self) -> str:
        """Tail of the captured stderr (or stdout) for user-facing reports."""
        if self.result is None:
            return str(self)
        text = (self.result.stderr or self.result.stdout or "").strip()
        lines = text.splitlines()[-10:]
        return "\n".join(lines) if lines else str(self)


class CommandNotFound(ExternalCommandFailed):
    """The command name did not resolve on PATH."""


class CommandTimeout(ExternalCommandFailed):
    """The command was killed after exceeding its timeout."""


class ValidationFailed(ProvisionerError):
    """User input (or a preset value) failed validation."""


class MissingParameter(ValidationFailed):
    """A required parameter has no value and prompting is disabled."""


class ExternalServiceError(ProvisionerError):
    """An HTTPS API reported a business-level failure."""

    def __init__(self, message: str, errors: Optional[Sequence[str]] = None):
        self.errors: List[str] = list(errors or [])
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


class StepVerificationFailed(ProvisionerError):
    """A step applied cleanly but its post-condition does not hold."""


class CorruptState(ProvisionerError):
    """The persisted state file cannot be parsed."""


class StateLocked(ProvisionerError):
    """Another provisioner process holds the state lock."""


class CancelledByUser(ProvisionerError):
    """The operator cancelled the run (EOF at a prompt or declined to continue)."""
