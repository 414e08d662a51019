# provisioner/state_manager.py
# -*- coding: utf-8 -*-
"""
Manages the state file for tracking installation progress.

The state file is a JSON document holding the outcome of every step and the
configuration values collected so far. :class:`StateStore` is its only
writer: every mutation is flushed at once with an atomic replace, so a crash
or power loss leaves either the previous or the new document on disk.
"""

import datetime
import fcntl
import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from common.command_utils import log_message
from common.errors import CorruptState, StateLocked
from common.file_utils import atomic_write_text
from common.secret_utils import mask_value

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


def _utcnow() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds")


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


DONE_STATUSES = (StepStatus.COMPLETED, StepStatus.SKIPPED)


class StepResult(BaseModel):
    status: StepStatus = StepStatus.PENDING
    timestamp: str = Field(default_factory=_utcnow)
    detail: str = ""
    attempts: int = 0


class InstallationState(BaseModel):
    """Durable record of a provisioning run."""
    version: int = STATE_FORMAT_VERSION
    recipe: Optional[str] = None
    created_at: str = Field(default_factory=_utcnow)
    updated_at: str = Field(default_factory=_utcnow)
    steps: Dict[str, StepResult] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)
    sensitive_keys: List[str] = Field(default_factory=list)


class StateStore:
    """
    Sole owner of the :class:`InstallationState` file.

    Usage:
        with StateStore(path, app_settings) as store:
            state = store.load()
            store.record_step_start("apache")
    """

    def __init__(
        self,
        state_file: os.PathLike,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = Path(state_file)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.app_settings = app_settings
        self.logger = logger or module_logger
        self.state = InstallationState()
        self._lock_fd: Optional[int] = None

    # --- locking ---

    def acquire_lock(self) -> None:
        """Takes an exclusive advisory lock; a second process gets StateLocked."""
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd = os.open(str(self.lock_path), os.O_CREAT | os.O_RDWR, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise StateLocked(
                f"Another provisioner run holds {self.lock_path}. Wait for it to finish."
            ) from None
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode("ascii"))
        self._lock_fd = fd

    def release_lock(self) -> None:
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(self._lock_fd)
            self._lock_fd = None

    def __enter__(self) -> "StateStore":
        self.acquire_lock()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_lock()

    # --- persistence ---

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> InstallationState:
        """
        Loads the state file, or starts a fresh state when there is none.

        Raises:
            CorruptState: The file exists but is not a valid state document.
        """
        if not self.path.exists():
            self.state = InstallationState()
            return self.state
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self.state = InstallationState.model_validate(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            raise CorruptState(f"State file {self.path} is unreadable: {e}") from e
        return self.state

    def reset(self, recipe: Optional[str] = None) -> InstallationState:
        """Discards the current state; an existing file is moved aside, not deleted."""
        if self.path.exists():
            stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
            aside = self.path.with_name(f"{self.path.name}.old-{stamp}")
            os.replace(self.path, aside)
            log_message(
                f"{self.app_settings.symbols.get('info', 'ℹ️')} Previous state moved to {aside}",
                "info",
                self.logger,
                self.app_settings,
            )
        self.state = InstallationState(recipe=recipe)
        self._flush()
        return self.state

    def _flush(self) -> None:
        self.state.updated_at = _utcnow()
        atomic_write_text(
            self.path,
            json.dumps(self.state.model_dump(mode="json"), indent=2, sort_keys=False) + "\n",
            mode=0o600,
        )

    # --- steps ---

    def step(self, step_id: str) -> StepResult:
        return self.state.steps.get(step_id, StepResult())

    def is_step_done(self, step_id: str) -> bool:
        return self.step(step_id).status in DONE_STATUSES

    def record_step_start(self, step_id: str) -> None:
        previous = self.state.steps.get(step_id)
        self.state.steps[step_id] = StepResult(
            status=StepStatus.RUNNING,
            attempts=(previous.attempts if previous else 0),
        )
        self._flush()

    def record_step_result(
        self,
        step_id: str,
        status: StepStatus,
        detail: str = "",
        attempts: Optional[int] = None,
    ) -> None:
        previous = self.state.steps.get(step_id)
        self.state.steps[step_id] = StepResult(
            status=status,
            detail=detail,
            attempts=attempts if attempts is not None else (previous.attempts if previous else 0),
        )
        self._flush()

    # --- configuration values ---

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.config.get(key, default)

    def has(self, key: str) -> bool:
        return key in self.state.config

    def set(self, key: str, value: Any, sensitive: bool = False) -> None:
        self.state.config[key] = value
        if sensitive and key not in self.state.sensitive_keys:
            self.state.sensitive_keys.append(key)
        self._flush()

    def set_recipe(self, recipe: str) -> None:
        self.state.recipe = recipe
        self._flush()

    def masked_config(self) -> Dict[str, Any]:
        return {
            key: (mask_value(value) if key in self.state.sensitive_keys else value)
            for key, value in self.state.config.items()
        }
