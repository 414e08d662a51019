# provisioner/preflight.py
# -*- coding: utf-8 -*-
"""
Preflight checks run before any mutating action.

Each :class:`Requirement` wraps a probe returning ``(ok, detail)``. Fatal
requirements that fail block the run unless the operator overrides them one
by one; warnings are reported and never block.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from common import system_utils
from common.command_utils import command_exists, log_message
from common.errors import PreconditionFailed
from common.network_utils import check_connectivity, domain_uses_cloudflare_ns

from .config_models import AppSettings

module_logger = logging.getLogger(__name__)

FATAL = "fatal"
WARNING = "warning"

ProbeResult = Tuple[bool, str]


@dataclass
class Requirement:
    name: str
    probe: Callable[[], ProbeResult]
    severity: str = FATAL
    overridable: bool = True
    description: str = ""


@dataclass
class RequirementOutcome:
    name: str
    detail: str
    severity: str = FATAL
    overridable: bool = True


@dataclass
class PreflightReport:
    passed: List[RequirementOutcome] = field(default_factory=list)
    failed: List[RequirementOutcome] = field(default_factory=list)
    warnings: List[RequirementOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class PreflightChecker:
    def __init__(self, app_settings: AppSettings, logger: Optional[logging.Logger] = None):
        self.app_settings = app_settings
        self.logger = logger or module_logger

    def run(self, requirements: Sequence[Requirement]) -> PreflightReport:
        """Runs every probe; a probe that raises counts as failed."""
        symbols = self.app_settings.symbols
        report = PreflightReport()
        for requirement in requirements:
            try:
                ok, detail = requirement.probe()
            except Exception as e:
                ok, detail = False, f"check raised {type(e).__name__}: {e}"
                self.logger.debug(f"Preflight probe {requirement.name} raised", exc_info=True)

            outcome = RequirementOutcome(
                requirement.name, detail, requirement.severity, requirement.overridable
            )
            if ok:
                report.passed.append(outcome)
                log_message(
                    f"{symbols.get('success', '✅')} {requirement.name}: {detail}",
                    "info",
                    self.logger,
                    self.app_settings,
                )
            elif requirement.severity == WARNING:
                report.warnings.append(outcome)
                log_message(
                    f"{symbols.get('warning', '⚠️')} {requirement.name}: {detail}",
                    "warning",
                    self.logger,
                    self.app_settings,
                )
            else:
                report.failed.append(outcome)
                log_message(
                    f"{symbols.get('error', '❌')} {requirement.name}: {detail}",
                    "error",
                    self.logger,
                    self.app_settings,
                )
        return report

    def gate(
        self,
        report: PreflightReport,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        """
        Blocks unless every failed entry is overridden.

        An entry is overridden when its name is listed in
        ``preflight.overrides`` or when ``confirm`` (interactive runs) accepts
        it. Non-overridable entries always block.

        Raises:
            PreconditionFailed: With the names of the blocking entries.
        """
        symbols = self.app_settings.symbols
        configured = set(self.app_settings.preflight.overrides)
        blocking = []
        for outcome in report.failed:
            if outcome.overridable and outcome.name in configured:
                log_message(
                    f"{symbols.get('warning', '⚠️')} Overriding failed check '{outcome.name}' (configured).",
                    "warning",
                    self.logger,
                    self.app_settings,
                )
                continue
            if outcome.overridable and confirm is not None and confirm(
                f"Preflight check '{outcome.name}' failed ({outcome.detail}). Continue anyway?"
            ):
                log_message(
                    f"{symbols.get('warning', '⚠️')} Operator overrode failed check '{outcome.name}'.",
                    "warning",
                    self.logger,
                    self.app_settings,
                )
                continue
            blocking.append(outcome)

        if blocking:
            details = "; ".join(f"{o.name}: {o.detail}" for o in blocking)
            raise PreconditionFailed(
                f"Preflight checks failed: {details}", [o.name for o in blocking]
            )


# --- requirement factories ---


def require_root() -> Requirement:
    return Requirement(
        "root privileges",
        lambda: (True, "running as root") if system_utils.is_root()
        else (False, "this recipe must be run as root (use sudo)"),
        overridable=False,
    )


def require_not_root_with_sudo(app_settings: AppSettings) -> Requirement:
    def probe() -> ProbeResult:
        if system_utils.is_root():
            return False, "run as a regular user with sudo rights, not as root"
        if not system_utils.can_sudo(app_settings):
            return False, "sudo is not available for this user"
        return True, "regular user with sudo"

    return Requirement("user privileges", probe, overridable=False)


def require_connectivity(app_settings: AppSettings) -> Requirement:
    return Requirement(
        "internet connectivity",
        lambda: check_connectivity(app_settings),
    )


def require_disk_space(path: str, min_mb: int, overridable: bool = True) -> Requirement:
    def probe() -> ProbeResult:
        free = system_utils.free_disk_mb(path)
        detail = f"{free} MB free on {path} (need {min_mb} MB)"
        return free >= min_mb, detail

    return Requirement("disk space", probe, overridable=overridable)


def require_memory(min_mb: int) -> Requirement:
    def probe() -> ProbeResult:
        available = system_utils.available_memory_mb()
        if available is None:
            return False, "could not read available memory"
        return available >= min_mb, f"{available} MB available (recommended {min_mb} MB)"

    return Requirement("memory", probe, severity=WARNING)


def require_commands(names: Sequence[str], severity: str = WARNING) -> Requirement:
    def probe() -> ProbeResult:
        missing = [name for name in names if not command_exists(name)]
        if missing:
            return False, f"missing: {', '.join(missing)} (will be installed where possible)"
        return True, f"found {', '.join(names)}"

    return Requirement("required tools", probe, severity=severity)


def check_board_model(unsupported_pattern: str) -> Requirement:
    def probe() -> ProbeResult:
        model = system_utils.get_pi_model()
        if model is None:
            return True, "not a Raspberry Pi (model unknown)"
        if re.search(unsupported_pattern, model):
            return False, f"{model} may be too slow for AirPlay 2"
        return True, model

    return Requirement("board model", probe, severity=WARNING)


def check_interface(name: str) -> Requirement:
    return Requirement(
        f"network interface {name}",
        lambda: (True, f"{name} present") if system_utils.has_network_interface(name)
        else (False, f"{name} not found (wired network only)"),
        severity=WARNING,
    )


def check_cloudflare_nameservers(domain: str, app_settings: AppSettings) -> Requirement:
    return Requirement(
        "cloudflare nameservers",
        lambda: domain_uses_cloudflare_ns(domain, app_settings),
        severity=WARNING,
    )
