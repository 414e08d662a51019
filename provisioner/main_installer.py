# provisioner/main_installer.py
# -*- coding: utf-8 -*-
"""
Main entry point for the Raspberry Pi provisioner.

Parses the command line, loads settings, then runs the selected recipe:
preflight gate, parameter collection, the step sequence and the summary.
"""

import argparse
import importlib
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from common.command_utils import log_message
from common.errors import (
    CancelledByUser,
    CorruptState,
    ProvisionerError,
)
from common.logging_config import setup_logging

from . import config
from .base_recipe import BaseRecipe
from .base_step import StepContext
from .cleanup import CleanupRegistry, install_signal_handlers
from .cli_handler import cli_confirm, view_configuration
from .collector import ConfigurationCollector
from .config_loader import load_app_settings
from .config_models import AppSettings
from .preflight import PreflightChecker
from .registry import RecipeRegistry
from .reporter import Reporter
from .state_manager import StateStore
from .step_executor import StepEngine, list_steps

logger = logging.getLogger("provisioner")


def load_all_recipes(current_logger: logging.Logger) -> None:
    """Discover and import every recipe module so it registers itself."""
    import provisioner.components

    components_dir = provisioner.components.__path__[0]
    for item in sorted(os.listdir(components_dir)):
        item_path = os.path.join(components_dir, item)
        if not os.path.isdir(item_path) or item.startswith("__"):
            continue
        module_name = f"provisioner.components.{item}.{item}_recipe"
        try:
            importlib.import_module(module_name)
        except ModuleNotFoundError as e:
            if e.name != module_name:
                raise
            current_logger.debug(f"No recipe module found for {item}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pi-provision",
        description="Provision a Raspberry Pi as an AirPlay 2 receiver or a WordPress site behind a Cloudflare Tunnel.",
    )
    parser.add_argument("recipe", choices=RecipeRegistry.names(), help="What to provision.")
    parser.add_argument("--config-file", default=config.DEFAULT_CONFIG_FILE,
                        help="YAML configuration file (default: %(default)s).")
    parser.add_argument("--non-interactive", action="store_true", default=None,
                        help="Never prompt; take every value from the config file or environment.")
    parser.add_argument("--resume", action="store_true",
                        help="Continue a previous run without asking.")
    parser.add_argument("--force-step", action="append", default=[], metavar="STEP_ID",
                        help="Re-run a step even if it is recorded as done. Repeatable.")
    parser.add_argument("--state-file", default=None, help="Override the state file location.")
    parser.add_argument("--log-file", default=None, help="Override the run log location.")
    parser.add_argument("--summary-file", default=None, help="Override the summary file location.")
    parser.add_argument("--list-steps", action="store_true", help="List the recipe's steps and exit.")
    parser.add_argument("--reset-state", action="store_true",
                        help="Discard the recorded progress (the old file is kept aside) and start over.")
    parser.add_argument("--view-config", action="store_true", help="Show the effective configuration and exit.")
    parser.add_argument("--verbose", action="store_true", default=None, help="Show debug output on the console.")
    return parser


def resolve_paths(recipe_name: str, app_settings: AppSettings) -> Tuple[Path, Path]:
    """State file and run log locations for ``recipe_name``."""
    paths = app_settings.paths
    state_path = Path(paths.state_file) if paths.state_file else \
        Path(paths.state_dir) / config.STATE_FILE_TEMPLATE.format(recipe=recipe_name)
    log_path = Path(paths.log_file) if paths.log_file else \
        Path(paths.log_dir) / config.LOG_FILE_TEMPLATE.format(recipe=recipe_name)
    return state_path.expanduser(), log_path.expanduser()


def _fallback(path: Path) -> Path:
    """Same file name under the per-user directory, for runs without access to /var."""
    return Path(config.FALLBACK_LOG_DIR).expanduser() / path.name


def _open_state(
    store: StateStore,
    recipe: BaseRecipe,
    args: argparse.Namespace,
    interactive: bool,
    app_settings: AppSettings,
) -> None:
    """Loads, resumes or resets the state according to the CLI flags."""
    if args.reset_state:
        store.reset(recipe.name)
        return

    try:
        state = store.load()
    except CorruptState as e:
        log_message(f"{app_settings.symbols.get('error', '❌')} {e}", "error", logger, app_settings)
        if interactive and cli_confirm("Discard the unreadable state and start over?", app_settings, logger):
            store.reset(recipe.name)
            return
        raise

    if state.recipe and state.recipe != recipe.name:
        raise ProvisionerError(
            f"State file {store.path} belongs to recipe '{state.recipe}'. Use --state-file or --reset-state."
        )

    has_progress = bool(state.steps or state.config)
    if has_progress and not args.resume and interactive:
        done = sum(1 for sid in state.steps if store.is_step_done(sid))
        if not cli_confirm(
            f"A previous {recipe.name} run was found ({done} step(s) done). Resume it?",
            app_settings,
            logger,
        ):
            store.reset(recipe.name)
            return
    if has_progress:
        log_message(
            f"{app_settings.symbols.get('info', 'ℹ️')} Resuming previous run from {store.path}",
            "info",
            logger,
            app_settings,
        )
    store.set_recipe(recipe.name)


def run_recipe(
    recipe: BaseRecipe,
    args: argparse.Namespace,
    app_settings: AppSettings,
    state_path: Path,
    log_path: Optional[Path],
) -> int:
    interactive = not app_settings.non_interactive
    symbols = app_settings.symbols
    reporter = Reporter(app_settings, logger, log_path)

    def confirm(question: str) -> bool:
        return cli_confirm(question, app_settings, logger)

    with StateStore(state_path, app_settings, logger) as store:
        cleanup = CleanupRegistry(app_settings, store, logger)
        context = StepContext(
            app_settings=app_settings,
            store=store,
            reporter=reporter,
            cleanup=cleanup,
            interactive=interactive,
            confirm=confirm if interactive else None,
            log_path=log_path,
            logger=logger,
        )
        try:
            _open_state(store, recipe, args, interactive, app_settings)

            checker = PreflightChecker(app_settings, logger)
            reporter.section("Preflight checks")
            checker.gate(checker.run(recipe.requirements()), context.confirm)

            reporter.section("Configuration")
            collector = ConfigurationCollector(store, app_settings, interactive=interactive, logger=logger)
            collector.collect_all(recipe.parameters(context))

            late = recipe.late_requirements(context)
            if late:
                checker.gate(checker.run(late), context.confirm)

            reporter.section(f"Installing: {recipe.description}")
            outcome = StepEngine(context, force_steps=args.force_step, logger=logger).run(recipe.steps())

            if not outcome.succeeded:
                # Earlier steps keep their work so the next run resumes at the failed one.
                cleanup.run_for_step(outcome.failed_step)
                reporter.summary(store, recipe.summary_path(), recipe.summary_sections(context))
                return config.EXIT_FAILURE

            cleanup.discard()
            recipe.post_run(context)
            reporter.section("Summary")
            reporter.summary(store, recipe.summary_path(), recipe.summary_sections(context))
            log_message(
                f"{symbols.get('rocket', '🚀')} {recipe.description}: done.",
                "success",
                logger,
                app_settings,
            )
            return config.EXIT_SUCCESS
        except (KeyboardInterrupt, CancelledByUser) as e:
            log_message(
                f"{symbols.get('warning', '⚠️')} Cancelled ({e or 'interrupted'}). Cleaning up...",
                "warning",
                logger,
                app_settings,
            )
            cleanup.run()
            return config.EXIT_CANCELLED
        except ProvisionerError as e:
            log_message(f"{symbols.get('error', '❌')} {e}", "error", logger, app_settings)
            cleanup.run()
            if log_path:
                log_message(f"   Full log: {log_path}", "error", logger, app_settings)
            return config.EXIT_FAILURE
        except Exception as e:
            log_message(
                f"{symbols.get('critical', '🔥')} Unexpected error: {e}",
                "critical",
                logger,
                app_settings,
                exc_info=True,
            )
            cleanup.run()
            return config.EXIT_FAILURE


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for pi-provision."""
    load_all_recipes(logger)
    parser = build_arg_parser()
    parsed_args = parser.parse_args(args)

    app_settings = load_app_settings(parsed_args, parsed_args.config_file)
    recipe = RecipeRegistry.get_recipe(parsed_args.recipe)(app_settings)
    console_level = getattr(logging, app_settings.log_level.upper(), logging.INFO)

    if parsed_args.list_steps or parsed_args.view_config:
        setup_logging(console_level, None, log_prefix=app_settings.log_prefix, symbols=app_settings.symbols)
        if parsed_args.view_config:
            view_configuration(app_settings, logger)
        else:
            for step_id, description in list_steps(recipe.steps()):
                log_message(f"  {step_id:<24} {description}", "info", logger, app_settings)
        return config.EXIT_SUCCESS

    state_path, log_path = resolve_paths(recipe.name, app_settings)
    active_log = setup_logging(
        console_level, str(log_path), log_prefix=app_settings.log_prefix, symbols=app_settings.symbols
    )
    if active_log is None:
        active_log = setup_logging(
            console_level,
            str(_fallback(log_path)),
            log_prefix=app_settings.log_prefix,
            symbols=app_settings.symbols,
        )
    if not app_settings.paths.state_file and not _writable(state_path.parent):
        state_path = _fallback(state_path)

    install_signal_handlers()
    log_message(
        f"{app_settings.symbols.get('sparkles', '✨')} pi-provisioner {config.SCRIPT_VERSION}: {recipe.description}",
        "info",
        logger,
        app_settings,
    )
    try:
        return run_recipe(recipe, parsed_args, app_settings, state_path, active_log)
    except KeyboardInterrupt:
        return config.EXIT_CANCELLED
    except ProvisionerError as e:
        log_message(f"{app_settings.symbols.get('error', '❌')} {e}", "error", logger, app_settings)
        return config.EXIT_FAILURE


def _writable(directory: Path) -> bool:
    """True if ``directory`` exists and is writable, or can be created."""
    try:
        directory.mkdir(parents=True, exist_ok=True, mode=0o700)
    except OSError:
        return False
    return directory.is_dir() and os.access(directory, os.W_OK)


if __name__ == "__main__":
    sys.exit(main())
