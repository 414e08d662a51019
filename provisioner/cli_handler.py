# provisioner/cli_handler.py
# -*- coding: utf-8 -*-
"""
Handles Command Line Interface (CLI) interactions for the provisioner.
"""

import logging
from typing import List, Optional, Sequence

from common.command_utils import log_message
from common.errors import CancelledByUser
from common.secret_utils import mask_value

from .config import SCRIPT_VERSION
from .config_models import AppSettings

module_logger = logging.getLogger(__name__)


def cli_confirm(
    prompt_message: str,
    app_settings: AppSettings,
    current_logger_instance: Optional[logging.Logger] = None,
) -> bool:
    """
    Prompt the user for a yes/no answer. Defaults to "No" on an empty answer
    or end-of-file (EOF).

    Parameters:
    prompt_message : str
        The message to display in the CLI when prompting the user.
    app_settings : AppSettings
        The application settings object providing the symbols.
    current_logger_instance : Optional[logging.Logger]
        The logger instance to use for logging.

    Returns:
    bool
        True if the user inputs "y" or "yes", otherwise False.
    """
    logger_to_use = (
        current_logger_instance if current_logger_instance else module_logger
    )
    symbols = app_settings.symbols
    try:
        user_input = (
            input(f"   {symbols.get('info', 'ℹ️')} {prompt_message} (y/N): ")
            .strip()
            .lower()
        )
        return user_input in ("y", "yes")
    except EOFError:
        log_message(
            f"{symbols.get('warning', '!')} No user input (EOF), defaulting to 'N' for prompt: '{prompt_message}'",
            "warning",
            logger_to_use,
            app_settings,
        )
        return False


def cli_choose(
    prompt_message: str,
    options: Sequence[str],
    app_settings: AppSettings,
    default_index: int = 0,
) -> int:
    """
    Numbered menu. Returns the zero-based index of the chosen option.

    Raises:
        CancelledByUser: On EOF.
    """
    symbols = app_settings.symbols
    print(f"   {symbols.get('info', 'ℹ️')} {prompt_message}")
    for number, option in enumerate(options, start=1):
        print(f"     {number}) {option}")
    while True:
        try:
            answer = input(f"   Select 1-{len(options)} [{default_index + 1}]: ").strip()
        except EOFError:
            raise CancelledByUser(f"No selection made for: {prompt_message}") from None
        if not answer:
            return default_index
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return int(answer) - 1
        print(f"   {symbols.get('error', '❌')} Enter a number between 1 and {len(options)}.")


def view_configuration(
    app_config: AppSettings, current_logger: Optional[logging.Logger] = None
) -> None:
    """
    Logs the effective configuration (defaults, environment, YAML and CLI
    merged). Secret values are shown masked.
    """
    logger_to_use = current_logger if current_logger else module_logger
    wp = app_config.wordpress
    air = app_config.airplay

    lines: List[str] = [
        f"pi-provisioner {SCRIPT_VERSION} effective configuration",
        f"  non_interactive: {app_config.non_interactive}",
        f"  log_level: {app_config.log_level}",
        "  [paths]",
        f"    state_dir: {app_config.paths.state_dir}",
        f"    log_dir: {app_config.paths.log_dir}",
        f"    state_file: {app_config.paths.state_file or '(per recipe)'}",
        f"    log_file: {app_config.paths.log_file or '(per recipe)'}",
        f"    summary_file: {app_config.paths.summary_file or '(per recipe)'}",
        "  [engine]",
        f"    network_retries: {app_config.engine.network_retries}",
        f"    retry_delay: {app_config.engine.retry_delay}",
        "  [preflight]",
        f"    ping_targets: {', '.join(app_config.preflight.ping_targets)}",
        f"    overrides: {', '.join(app_config.preflight.overrides) or '(none)'}",
        "  [airplay]",
        f"    device_name: {air.device_name or '(prompt)'}",
        f"    output_device: {air.output_device or '(auto-detect)'}",
        f"    mixer_control: {air.mixer_control or '(auto-detect)'}",
        f"    build_dir: {air.build_dir}",
        "  [wordpress]",
        f"    domain: {wp.domain or '(prompt)'}",
        f"    db_name: {wp.db_name or '(prompt)'}",
        f"    db_user: {wp.db_user or '(prompt)'}",
        f"    db_password: {mask_value(wp.db_password) or '(prompt)'}",
        f"    db_root_password: {mask_value(wp.db_root_password) or '(generated)'}",
        f"    tunnel_mode: {wp.tunnel_mode or '(prompt)'}",
        f"    tunnel_name: {wp.tunnel_name or '(derived from domain)'}",
        f"    cloudflare_api_token: {mask_value(wp.cloudflare_api_token) or '(not set)'}",
        f"    web_root: {wp.web_root}",
    ]
    for line in lines:
        log_message(line, "info", logger_to_use, app_config)
