# tests/conftest.py
# -*- coding: utf-8 -*-
"""Shared fixtures: settings, a state store on tmp_path and a step context."""

import logging
from unittest.mock import MagicMock

import pytest

from common.command_utils import ExternalProcessResult
from provisioner.base_step import StepContext
from provisioner.config_models import AppSettings
from provisioner.state_manager import StateStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PIPROV_* variables of the developer's shell out of AppSettings."""
    import os

    for key in list(os.environ):
        if key.startswith("PIPROV_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def app_settings():
    settings = AppSettings()
    settings.engine.retry_delay = 0
    return settings


@pytest.fixture
def mock_logger():
    """Fixture to create a mock logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def store(tmp_path, app_settings):
    state_store = StateStore(tmp_path / "state" / "test-state.json", app_settings)
    state_store.load()
    return state_store


@pytest.fixture
def context(app_settings, store):
    return StepContext(
        app_settings=app_settings,
        store=store,
        reporter=MagicMock(),
        cleanup=MagicMock(),
        interactive=False,
    )


def make_result(exit_code=0, stdout="", stderr="", command=None):
    """An ExternalProcessResult as run_command would return it."""
    return ExternalProcessResult(command or ["cmd"], exit_code, stdout, stderr)


@pytest.fixture
def result_factory():
    return make_result
