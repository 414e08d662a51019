# tests/provisioner/test_cleanup.py
import signal
from unittest.mock import MagicMock

import pytest

from provisioner.cleanup import CleanupRegistry, install_signal_handlers
from provisioner.state_manager import StepStatus


def test_actions_run_newest_first(store, app_settings):
    order = []
    registry = CleanupRegistry(app_settings, store, MagicMock())
    registry.register("stop service", lambda: order.append("stop"), step_id="service")
    registry.register("restore config", lambda: order.append("restore"), step_id="config")

    undone = registry.run()

    assert order == ["restore", "stop"]
    assert undone == ["config", "service"]
    assert len(registry) == 0


def test_failing_action_does_not_stop_the_rest(store, app_settings):
    logger = MagicMock()
    second = MagicMock()
    registry = CleanupRegistry(app_settings, store, logger)
    registry.register("second", second)
    registry.register("broken", MagicMock(side_effect=OSError("disk gone")))

    registry.run()

    second.assert_called_once()
    logger.error.assert_called_once()


def test_undone_steps_reset_to_pending(store, app_settings):
    store.record_step_result("shairport_sync_config", StepStatus.COMPLETED)
    registry = CleanupRegistry(app_settings, store, MagicMock())
    registry.register("restore", lambda: None, step_id="shairport_sync_config")

    registry.run()

    assert store.step("shairport_sync_config").status == StepStatus.PENDING
    assert not store.is_step_done("shairport_sync_config")


def test_discard_forgets_actions(store, app_settings):
    action = MagicMock()
    registry = CleanupRegistry(app_settings, store, MagicMock())
    registry.register("x", action)

    registry.discard()

    assert registry.run() == []
    action.assert_not_called()


def test_sigterm_raises_keyboard_interrupt(mocker):
    handlers = {}
    mocker.patch("provisioner.cleanup.signal.signal", side_effect=lambda sig, h: handlers.__setitem__(sig, h))

    install_signal_handlers()

    with pytest.raises(KeyboardInterrupt):
        handlers[signal.SIGTERM](signal.SIGTERM, None)


def test_failed_step_runs_only_its_own_actions(store, app_settings):
    order = []
    store.record_step_result("config", StepStatus.COMPLETED)
    store.record_step_result("service", StepStatus.FAILED, "exit 1")
    registry = CleanupRegistry(app_settings, store, MagicMock())
    registry.register("restore config", lambda: order.append("restore"), step_id="config")
    registry.register("stop service", lambda: order.append("stop"), step_id="service")

    assert registry.run_for_step("service") == 1

    assert order == ["stop"]
    assert store.step("config").status == StepStatus.COMPLETED
    assert store.step("service").status == StepStatus.FAILED
    assert len(registry) == 0
