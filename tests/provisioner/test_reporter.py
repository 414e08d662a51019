# tests/provisioner/test_reporter.py
import os
import stat
from unittest.mock import MagicMock

from provisioner.reporter import Reporter
from provisioner.state_manager import StepStatus


def test_summary_masks_secrets(tmp_path, store, app_settings):
    store.set_recipe("wordpress")
    store.set("domain", "example.com")
    store.set("db_password", "correct-horse-battery", sensitive=True)
    store.record_step_result("apache", StepStatus.COMPLETED)
    store.record_step_result("php", StepStatus.SKIPPED, "already present")
    reporter = Reporter(app_settings, MagicMock(), tmp_path / "run.log")

    text = reporter.render_summary(
        store, {"Database": ["password was correct-horse-battery"]}
    )

    assert "correct-horse-battery" not in text
    assert "db_password: ********" in text
    assert "domain: example.com" in text
    assert "already present" in text
    assert "[Database]" in text
    assert str(tmp_path / "run.log") in text


def test_summary_file_is_private(tmp_path, store, app_settings):
    store.set_recipe("airplay")
    reporter = Reporter(app_settings, MagicMock())
    target = tmp_path / "summary.txt"

    reporter.summary(store, target, {"Services": ["nqptp: active"]})

    assert stat.S_IMODE(os.stat(target).st_mode) == 0o600
    assert "nqptp: active" in target.read_text(encoding="utf-8")


def test_messages_carry_symbols(app_settings):
    logger = MagicMock()
    reporter = Reporter(app_settings, logger)

    reporter.warning("careful")

    logger.warning.assert_called_once()
    assert logger.warning.call_args.args[0].endswith("careful")
