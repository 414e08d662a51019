# provisioner/collector.py
# -*- coding: utf-8 -*-
"""
Interactive configuration collector.

Each :class:`ConfigParameter` is resolved once per installation: a value
already in the state store is reused, a preset from the configuration file or
environment is validated and accepted, and otherwise the operator is prompted
until the answer is valid. Accepted values are persisted immediately so a
resumed run never asks twice.
"""

import getpass
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from common.command_utils import log_message
from common.errors import (
    CancelledByUser,
    ExternalServiceError,
    MissingParameter,
    ValidationFailed,
)

from .config_models import AppSettings
from .state_manager import StateStore

module_logger = logging.getLogger(__name__)


@dataclass
class ConfigParameter:
    """
    A value supplied by the operator, a preset or a generator.

    ``default`` and ``preset`` may be callables; they are evaluated only when
    the value is not already stored.

    ``validator`` returns the (possibly cleaned) value or raises
    ValidationFailed; ``verifier`` performs a live external check and raises
    ExternalServiceError.
    """

    name: str
    prompt: str
    default: Any = None
    preset: Any = None
    normalizer: Optional[Callable[[str], Any]] = None
    validator: Optional[Callable[[Any], Any]] = None
    verifier: Optional[Callable[[Any], None]] = None
    generator: Optional[Callable[[], Any]] = None
    sensitive: bool = False
    secret: bool = False
    confirm: bool = False
    optional: bool = False
    help: str = ""
    when: Optional[Callable[[], bool]] = None

    def resolved_default(self) -> Any:
        return self.default() if callable(self.default) else self.default

    def resolved_preset(self) -> Any:
        return self.preset() if callable(self.preset) else self.preset


def choice_validator(choices: Sequence[str]) -> Callable[[Any], Any]:
    def validate(value: Any) -> Any:
        if value not in choices:
            raise ValidationFailed(f"Choose one of: {', '.join(choices)}")
        return value

    return validate


class ConfigurationCollector:
    def __init__(
        self,
        store: StateStore,
        app_settings: AppSettings,
        interactive: bool = True,
        input_func: Callable[[str], str] = input,
        secret_func: Callable[[str], str] = getpass.getpass,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.app_settings = app_settings
        self.interactive = interactive
        self.input_func = input_func
        self.secret_func = secret_func
        self.logger = logger or module_logger
        self.symbols = app_settings.symbols

    def _read(self, parameter: ConfigParameter, text: str) -> str:
        reader = self.secret_func if parameter.secret else self.input_func
        try:
            return reader(text)
        except EOFError:
            raise CancelledByUser(f"No input while asking for {parameter.name}") from None

    def _accept(self, parameter: ConfigParameter, raw: Any) -> Any:
        value = raw.strip() if isinstance(raw, str) else raw
        if parameter.normalizer is not None and isinstance(value, str):
            value = parameter.normalizer(value)
        if parameter.validator is not None:
            value = parameter.validator(value)
        if parameter.verifier is not None:
            parameter.verifier(value)
        return value

    def _store(self, parameter: ConfigParameter, value: Any, source: str) -> Any:
        self.store.set(parameter.name, value, sensitive=parameter.sensitive)
        shown = "(hidden)" if parameter.sensitive else value
        log_message(
            f"{self.symbols.get('success', '✅')} {parameter.name} = {shown} [{source}]",
            "debug",
            self.logger,
            self.app_settings,
        )
        return value

    def collect(self, parameter: ConfigParameter) -> Any:
        """
        Resolves one parameter.

        Raises:
            MissingParameter: Non-interactive run and no value available.
            ValidationFailed: Non-interactive run with an invalid preset.
            CancelledByUser: EOF at the prompt.
        """
        if self.store.has(parameter.name):
            return self.store.get(parameter.name)

        preset = parameter.resolved_preset()
        if preset not in (None, ""):
            try:
                return self._store(parameter, self._accept(parameter, preset), "preset")
            except (ValidationFailed, ExternalServiceError) as e:
                if not self.interactive:
                    raise ValidationFailed(f"Invalid value for {parameter.name}: {e}") from e
                log_message(
                    f"{self.symbols.get('warning', '⚠️')} Configured {parameter.name} rejected: {e}",
                    "warning",
                    self.logger,
                    self.app_settings,
                )

        default = parameter.resolved_default()

        if not self.interactive:
            if default not in (None, ""):
                return self._store(parameter, self._accept(parameter, default), "default")
            if parameter.generator is not None:
                return self._store(parameter, parameter.generator(), "generated")
            if parameter.optional:
                return self._store(parameter, "", "empty")
            raise MissingParameter(
                f"No value for '{parameter.name}'. Set it in the config file or environment."
            )

        if parameter.help:
            log_message(parameter.help, "info", self.logger, self.app_settings)
        while True:
            suffix = ""
            if default not in (None, "") and not parameter.sensitive:
                suffix = f" [{default}]"
            elif parameter.generator is not None:
                suffix = " [leave empty to generate]"
            raw = self._read(parameter, f"{parameter.prompt}{suffix}: ").strip()

            if not raw:
                if default not in (None, ""):
                    raw = default
                elif parameter.generator is not None:
                    value = parameter.generator()
                    log_message(
                        f"{self.symbols.get('lock', '🔒')} Generated a value for {parameter.name}.",
                        "info",
                        self.logger,
                        self.app_settings,
                    )
                    return self._store(parameter, value, "generated")
                elif parameter.optional:
                    return self._store(parameter, "", "empty")
                else:
                    log_message(
                        f"{self.symbols.get('error', '❌')} A value is required.",
                        "error",
                        self.logger,
                        self.app_settings,
                    )
                    continue

            try:
                value = self._accept(parameter, raw)
            except ValidationFailed as e:
                log_message(f"{self.symbols.get('error', '❌')} {e}", "error", self.logger, self.app_settings)
                continue
            except ExternalServiceError as e:
                log_message(
                    f"{self.symbols.get('error', '❌')} Verification failed: {e}",
                    "error",
                    self.logger,
                    self.app_settings,
                )
                continue

            if parameter.confirm:
                again = self._read(parameter, "Confirm: ").strip()
                if again != raw:
                    log_message(
                        f"{self.symbols.get('error', '❌')} Values do not match. Try again.",
                        "error",
                        self.logger,
                        self.app_settings,
                    )
                    continue

            return self._store(parameter, value, "prompt")

    def collect_all(self, parameters: List[ConfigParameter]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for parameter in parameters:
            if parameter.when is not None and not parameter.when():
                continue
            values[parameter.name] = self.collect(parameter)
        return values
