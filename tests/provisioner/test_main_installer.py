# tests/provisioner/test_main_installer.py
import argparse
import json

import pytest

from common.errors import CancelledByUser, ExternalCommandFailed
from provisioner import main_installer
from provisioner.base_recipe import BaseRecipe
from provisioner.base_step import BaseStep
from provisioner.collector import ConfigParameter
from provisioner.registry import RecipeRegistry
from provisioner.state_manager import StateStore, StepStatus

UNDO = []


class WriteStep(BaseStep):
    step_id = "write"
    description = "Write something"

    def apply(self):
        self.register_cleanup("undo write", lambda: UNDO.append("write"))


class BrokenStep(BaseStep):
    step_id = "broken"
    description = "Always fails"

    def apply(self):
        raise ExternalCommandFailed("exit 2")


class CancelStep(BaseStep):
    step_id = "cancel"
    description = "Operator gives up"

    def apply(self):
        raise CancelledByUser("EOF")


class FakeRecipe(BaseRecipe):
    name = "fake"
    description = "Fake recipe"
    step_classes = [WriteStep]

    def __init__(self, app_settings, summary_path):
        super().__init__(app_settings)
        self._summary_path = summary_path

    def requirements(self):
        return []

    def parameters(self, context):
        return [ConfigParameter(name="greeting", prompt="Greeting", default="hello")]

    def steps(self):
        return self.step_classes

    def default_summary_path(self):
        return self._summary_path


def args(**kwargs):
    values = {"reset_state": False, "resume": False, "force_step": []}
    values.update(kwargs)
    return argparse.Namespace(**values)


@pytest.fixture(autouse=True)
def clear_undo():
    UNDO.clear()


@pytest.fixture
def settings(app_settings):
    app_settings.non_interactive = True
    return app_settings


def run(recipe, settings, tmp_path, **kwargs):
    return main_installer.run_recipe(recipe, args(**kwargs), settings, tmp_path / "fake-state.json", None)


def test_successful_run(tmp_path, settings):
    recipe = FakeRecipe(settings, tmp_path / "summary.txt")

    assert run(recipe, settings, tmp_path) == 0

    state = json.loads((tmp_path / "fake-state.json").read_text(encoding="utf-8"))
    assert state["recipe"] == "fake"
    assert state["config"]["greeting"] == "hello"
    assert state["steps"]["write"]["status"] == "completed"
    assert UNDO == []
    assert (tmp_path / "summary.txt").exists()


def test_failed_run_keeps_earlier_steps(tmp_path, settings):
    recipe = FakeRecipe(settings, tmp_path / "summary.txt")
    recipe.step_classes = [WriteStep, BrokenStep]

    assert run(recipe, settings, tmp_path) == 1

    assert UNDO == []
    store = StateStore(tmp_path / "fake-state.json", settings)
    store.load()
    assert store.step("write").status == StepStatus.COMPLETED
    assert store.step("broken").status == StepStatus.FAILED


def test_failed_step_undoes_only_its_own_work(tmp_path, settings):
    class HalfDoneStep(BaseStep):
        step_id = "half_done"
        description = "Mutates, then fails"

        def apply(self):
            self.register_cleanup("undo half", lambda: UNDO.append("half_done"))
            raise ExternalCommandFailed("exit 1")

    recipe = FakeRecipe(settings, tmp_path / "summary.txt")
    recipe.step_classes = [WriteStep, HalfDoneStep]

    assert run(recipe, settings, tmp_path) == 1

    assert UNDO == ["half_done"]


def test_rerun_after_fix_resumes_at_failed_step(tmp_path, settings):
    applied = []

    class CountingWrite(WriteStep):
        def apply(self):
            applied.append("write")
            super().apply()

    class FixedStep(BrokenStep):
        def apply(self):
            applied.append("broken")

    recipe = FakeRecipe(settings, tmp_path / "summary.txt")
    recipe.step_classes = [CountingWrite, BrokenStep]
    assert run(recipe, settings, tmp_path) == 1
    applied.clear()

    recipe.step_classes = [CountingWrite, FixedStep]
    assert run(recipe, settings, tmp_path, resume=True) == 0

    assert applied == ["broken"]
    state = json.loads((tmp_path / "fake-state.json").read_text(encoding="utf-8"))
    assert state["steps"]["write"]["status"] == "skipped"
    assert state["steps"]["broken"]["status"] == "completed"


def test_cancel_returns_130(tmp_path, settings):
    recipe = FakeRecipe(settings, tmp_path / "summary.txt")
    recipe.step_classes = [WriteStep, CancelStep]

    assert run(recipe, settings, tmp_path) == 130
    assert UNDO == ["write"]


def test_state_of_other_recipe_is_refused(tmp_path, settings):
    store = StateStore(tmp_path / "fake-state.json", settings)
    store.reset("airplay")

    assert run(FakeRecipe(settings, tmp_path / "summary.txt"), settings, tmp_path) == 1


def test_reset_state_starts_over(tmp_path, settings):
    store = StateStore(tmp_path / "fake-state.json", settings)
    store.reset("fake")
    store.set("greeting", "old value")

    assert run(FakeRecipe(settings, tmp_path / "summary.txt"), settings, tmp_path, reset_state=True) == 0

    state = json.loads((tmp_path / "fake-state.json").read_text(encoding="utf-8"))
    assert state["config"]["greeting"] == "hello"


def test_missing_parameter_fails_non_interactive(tmp_path, settings):
    class NeedsDomain(FakeRecipe):
        def parameters(self, context):
            return [ConfigParameter(name="domain", prompt="Domain")]

    assert run(NeedsDomain(settings, tmp_path / "summary.txt"), settings, tmp_path) == 1


def test_recipes_are_discovered():
    main_installer.load_all_recipes(main_installer.logger)

    assert {"airplay", "wordpress"} <= set(RecipeRegistry.names())


def test_resolve_paths(settings):
    settings.paths.state_dir = "/var/lib/pi-provisioner"
    settings.paths.log_dir = "/var/log/pi-provisioner"

    state_path, log_path = main_installer.resolve_paths("airplay", settings)

    assert str(state_path) == "/var/lib/pi-provisioner/airplay-state.json"
    assert str(log_path) == "/var/log/pi-provisioner/airplay.log"


def test_list_steps(mocker, tmp_path, caplog):
    mocker.patch("provisioner.main_installer.setup_logging")

    with caplog.at_level("INFO", logger="provisioner"):
        code = main_installer.main(["airplay", "--list-steps", "--config-file", str(tmp_path / "none.yaml")])

    assert code == 0
    assert "shairport_sync_build" in caplog.text


def test_main_runs_recipe(mocker, tmp_path):
    mocker.patch("provisioner.main_installer.setup_logging", return_value=tmp_path / "wordpress.log")
    mocker.patch("provisioner.main_installer.install_signal_handlers")
    run_mock = mocker.patch("provisioner.main_installer.run_recipe", return_value=0)

    code = main_installer.main(
        ["wordpress", "--non-interactive", "--state-file", str(tmp_path / "s.json"),
         "--config-file", str(tmp_path / "none.yaml")]
    )

    assert code == 0
    recipe, parsed, app_settings, state_path, log_path = run_mock.call_args.args
    assert recipe.name == "wordpress"
    assert app_settings.non_interactive is True
    assert state_path == tmp_path / "s.json"
