# provisioner/reporter.py
# -*- coding: utf-8 -*-
"""
Human-facing progress output and the end-of-run summary artifact.

Everything is emitted through ``logging`` so the JSON run log mirrors the
console with timestamps. The summary is written with 0600 permissions and
never contains a sensitive configuration value in clear text.
"""

import datetime
import logging
from pathlib import Path
from typing import Dict, List, Optional

from common.command_utils import log_message
from common.file_utils import atomic_write_text
from common.secret_utils import MASK

from .config import SCRIPT_VERSION
from .config_models import AppSettings
from .state_manager import StateStore, StepStatus

module_logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    StepStatus.COMPLETED: "installed",
    StepStatus.SKIPPED: "already present",
    StepStatus.FAILED: "FAILED",
    StepStatus.PENDING: "not run",
    StepStatus.RUNNING: "interrupted",
}


class Reporter:
    def __init__(
        self,
        app_settings: AppSettings,
        logger: Optional[logging.Logger] = None,
        log_path: Optional[Path] = None,
    ):
        self.app_settings = app_settings
        self.logger = logger or module_logger
        self.log_path = log_path
        self.symbols = app_settings.symbols

    def section(self, title: str) -> None:
        log_message(
            f"===== {self.symbols.get('step', '➡️')} {title} =====",
            "info",
            self.logger,
            self.app_settings,
        )

    def info(self, message: str) -> None:
        log_message(message, "info", self.logger, self.app_settings)

    def success(self, message: str) -> None:
        log_message(f"{self.symbols.get('success', '✅')} {message}", "success", self.logger, self.app_settings)

    def warning(self, message: str) -> None:
        log_message(f"{self.symbols.get('warning', '⚠️')} {message}", "warning", self.logger, self.app_settings)

    def error(self, message: str) -> None:
        log_message(f"{self.symbols.get('error', '❌')} {message}", "error", self.logger, self.app_settings)

    def render_summary(
        self,
        store: StateStore,
        sections: Optional[Dict[str, List[str]]] = None,
    ) -> str:
        state = store.state
        now = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        lines = [
            "=" * 60,
            f" pi-provisioner {SCRIPT_VERSION} - {state.recipe or 'unknown'} installation summary",
            f" Generated: {now}",
            "=" * 60,
            "",
            "[Steps]",
        ]
        for step_id, result in state.steps.items():
            label = _STATUS_LABELS.get(result.status, result.status.value)
            detail = f" ({result.detail})" if result.detail else ""
            lines.append(f"  {step_id:<24} {label}{detail}")

        lines += ["", "[Configuration]"]
        for key, value in store.masked_config().items():
            lines.append(f"  {key}: {value}")

        for title, body in (sections or {}).items():
            lines += ["", f"[{title}]"]
            lines += [f"  {line}" for line in body]

        if self.log_path:
            lines += ["", "[Log]", f"  {self.log_path}"]
        text = "\n".join(lines) + "\n"

        # Extra sections are free text; scrub any secret that slipped in.
        for key in state.sensitive_keys:
            value = state.config.get(key)
            if value and isinstance(value, str):
                text = text.replace(value, MASK)
        return text

    def summary(
        self,
        store: StateStore,
        path: Path,
        sections: Optional[Dict[str, List[str]]] = None,
    ) -> Path:
        """Writes the summary artifact and echoes it to the console."""
        text = self.render_summary(store, sections)
        atomic_write_text(Path(path).expanduser(), text, mode=0o600)
        for line in text.splitlines():
            self.info(line)
        self.success(f"Summary saved to {path}")
        return Path(path)
