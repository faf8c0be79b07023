"""Unit tests for the label-mod command line.

Commands run through click's CliRunner with an engine over the in-memory
registry, so stdout, stderr and exit codes can be asserted directly.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner, Result

from label_mod.cli.main import cli, main
from label_mod.cli.utils import CliState
from label_mod.engine import LabelMutationEngine
from label_mod.schemas.config import (
    ENV_CONFIG_PATH,
    ENV_INSECURE_REGISTRIES,
    ENV_PASSWORD,
    ENV_TAG_WORKERS,
    ENV_TOKEN,
    ENV_USERNAME,
    RegistrySettings,
)

IMAGE = "registry.example.com/team/app:v1"
REPO = "registry.example.com/team/app"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        ENV_CONFIG_PATH,
        ENV_INSECURE_REGISTRIES,
        ENV_PASSWORD,
        ENV_TAG_WORKERS,
        ENV_TOKEN,
        ENV_USERNAME,
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def settings_seen() -> list[RegistrySettings]:
    return []


@pytest.fixture
def state(engine: LabelMutationEngine, settings_seen: list[RegistrySettings]) -> CliState:
    """CliState whose engine factory records settings and returns the test engine."""

    def factory(settings: RegistrySettings) -> LabelMutationEngine:
        settings_seen.append(settings)
        return engine

    return CliState(engine_factory=factory)


def _invoke(runner: CliRunner, state: CliState, *args: str) -> Result:
    return runner.invoke(cli, list(args), obj=state)


def _json(result: Result) -> dict[str, Any]:
    return json.loads(result.stdout)


class TestRemoveLabels:
    """Tests for remove-labels."""

    @pytest.mark.requirement("cli")
    def test_success(self, runner: CliRunner, state: CliState, fake_registry: Any) -> None:
        """Test a successful removal prints the outcome and exits 0."""
        result = _invoke(runner, state, "remove-labels", IMAGE, "a")

        assert result.exit_code == 0, result.output
        document = _json(result)
        assert document["success"] is True
        assert document["removed"] == ["a"]
        assert document["new_digest"] == fake_registry.manifests[IMAGE].digest
        assert fake_registry.closed is True

    @pytest.mark.requirement("cli")
    def test_noop_exit_code(self, runner: CliRunner, state: CliState) -> None:
        """Test removing only absent labels exits with the no-op code."""
        result = _invoke(runner, state, "remove-labels", IMAGE, "missing")

        assert result.exit_code == 7
        assert _json(result)["error_code"] == "no_op"
        assert "Error:" in result.stderr

    @pytest.mark.requirement("cli")
    def test_digest_without_tag(
        self, runner: CliRunner, state: CliState, fake_registry: Any
    ) -> None:
        """Test a digest reference without --tag exits 6 with nothing pushed."""
        digest = fake_registry.manifests[IMAGE].digest

        result = _invoke(runner, state, "remove-labels", f"{REPO}@{digest}", "a")

        assert result.exit_code == 6
        assert fake_registry.push_count == 0

    @pytest.mark.requirement("cli")
    def test_tags(self, runner: CliRunner, state: CliState) -> None:
        """Test repeated --tag options are pushed in order."""
        result = _invoke(runner, state, "remove-labels", IMAGE, "a", "-t", "v2", "--tag", "v3")

        assert result.exit_code == 0, result.output
        assert _json(result)["tagged_as"] == [f"{REPO}:v2", f"{REPO}:v3"]

    @pytest.mark.requirement("cli")
    def test_requires_labels(self, runner: CliRunner, state: CliState) -> None:
        """Test at least one label key is required."""
        result = _invoke(runner, state, "remove-labels", IMAGE)

        assert result.exit_code == 2
        assert result.stdout == ""

    @pytest.mark.requirement("cli")
    def test_invalid_reference(self, runner: CliRunner, state: CliState) -> None:
        """Test an unparseable image exits with the invalid-reference code."""
        result = _invoke(runner, state, "remove-labels", "app:v1", "a")

        assert result.exit_code == 2
        assert _json(result)["error_code"] == "invalid_reference"


class TestUpdateAndModify:
    """Tests for update-labels and modify-labels."""

    @pytest.mark.requirement("cli")
    def test_update(self, runner: CliRunner, state: CliState) -> None:
        """Test KEY=VALUE pairs are split on the first equals sign."""
        result = _invoke(runner, state, "update-labels", IMAGE, "url=https://x?a=b", "empty=")

        assert result.exit_code == 0, result.output
        assert _json(result)["updated"] == {"url": "https://x?a=b", "empty": ""}

    @pytest.mark.requirement("cli")
    @pytest.mark.parametrize("bad", ["novalue", "=value"])
    def test_update_rejects_malformed_pairs(
        self, runner: CliRunner, state: CliState, bad: str
    ) -> None:
        """Test malformed assignments are usage errors."""
        result = _invoke(runner, state, "update-labels", IMAGE, bad)

        assert result.exit_code == 2
        assert "KEY=VALUE" in result.stderr

    @pytest.mark.requirement("cli")
    @pytest.mark.parametrize(
        "args",
        [("update-labels", IMAGE, "a=\udcff"), ("remove-labels", IMAGE, "\udcff")],
    )
    def test_rejects_undecodable_arguments(
        self, runner: CliRunner, state: CliState, fake_registry: Any, args: tuple[str, ...]
    ) -> None:
        """Test label arguments that are not valid Unicode are usage errors."""
        result = _invoke(runner, state, *args)

        assert result.exit_code == 2
        assert "not valid Unicode" in result.stderr
        assert fake_registry.push_count == 0

    @pytest.mark.requirement("cli")
    def test_modify(self, runner: CliRunner, state: CliState, fake_registry: Any) -> None:
        """Test removals and updates are applied in one republish."""
        result = _invoke(runner, state, "modify-labels", IMAGE, "-r", "a", "-u", "c=3")

        assert result.exit_code == 0, result.output
        document = _json(result)
        assert document["removed"] == ["a"]
        assert document["updated"] == {"c": "3"}
        assert len(fake_registry.manifest_pushes) == 1

    @pytest.mark.requirement("cli")
    def test_modify_nothing(self, runner: CliRunner, state: CliState) -> None:
        """Test modify-labels without changes republishes the same digest."""
        result = _invoke(runner, state, "modify-labels", IMAGE)

        assert result.exit_code == 0, result.output
        document = _json(result)
        assert document["success"] is True
        assert document["new_digest"] == document["old_digest"]


class TestInspect:
    """Tests for the test command and its inspect alias."""

    @pytest.mark.requirement("cli")
    @pytest.mark.parametrize("command", ["test", "inspect"])
    def test_shows_labels(self, runner: CliRunner, state: CliState, command: str) -> None:
        """Test current labels are printed without pushing."""
        result = _invoke(runner, state, command, IMAGE)

        assert result.exit_code == 0, result.output
        assert _json(result)["current"] == {"a": "1", "b": "2"}

    @pytest.mark.requirement("cli")
    def test_not_found(self, runner: CliRunner, state: CliState) -> None:
        """Test a missing image exits with the not-found code."""
        result = _invoke(runner, state, "test", f"{REPO}:absent")

        assert result.exit_code == 4
        assert _json(result)["error_code"] == "not_found"


class TestGlobalOptions:
    """Tests for options on the root command."""

    @pytest.mark.requirement("cli")
    def test_overrides_reach_settings(
        self,
        runner: CliRunner,
        state: CliState,
        settings_seen: list[RegistrySettings],
    ) -> None:
        """Test --tag-workers and --insecure-registry override settings."""
        result = _invoke(
            runner,
            state,
            "--tag-workers",
            "4",
            "--insecure-registry",
            "localhost:5000",
            "test",
            IMAGE,
        )

        assert result.exit_code == 0, result.output
        (settings,) = settings_seen
        assert settings.max_tag_workers == 4
        assert settings.insecure_registries == ("localhost:5000",)

    @pytest.mark.requirement("cli")
    def test_config_file(
        self,
        runner: CliRunner,
        state: CliState,
        settings_seen: list[RegistrySettings],
        tmp_path: Path,
    ) -> None:
        """Test --config loads the YAML settings file."""
        path = tmp_path / "label-mod.yaml"
        path.write_text("registry:\n  timeout_seconds: 5\n")

        result = _invoke(runner, state, "--config", str(path), "test", IMAGE)

        assert result.exit_code == 0, result.output
        assert settings_seen[0].timeout_seconds == 5

    @pytest.mark.requirement("cli")
    def test_invalid_config_file(self, runner: CliRunner, state: CliState, tmp_path: Path) -> None:
        """Test an unreadable settings file is reported as a JSON failure."""
        result = _invoke(runner, state, "--config", str(tmp_path / "absent.yaml"), "test", IMAGE)

        assert result.exit_code == 10
        document = _json(result)
        assert document["error_code"] == "configuration"
        assert document["image_ref"] == IMAGE

    @pytest.mark.requirement("cli")
    def test_tag_workers_range(self, runner: CliRunner, state: CliState) -> None:
        """Test --tag-workers is bounded."""
        result = _invoke(runner, state, "--tag-workers", "0", "test", IMAGE)

        assert result.exit_code == 2

    @pytest.mark.requirement("cli")
    def test_logs_stay_off_stdout(self, runner: CliRunner, state: CliState) -> None:
        """Test debug logs go to stderr so stdout stays parseable."""
        result = _invoke(runner, state, "--log-level", "DEBUG", "--log-json", "test", IMAGE)

        assert result.exit_code == 0, result.output
        assert _json(result)["success"] is True
        assert "inspect_started" in result.stderr

    @pytest.mark.requirement("cli")
    def test_help_lists_commands(self, runner: CliRunner) -> None:
        """Test the root help lists every command."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("remove-labels", "update-labels", "modify-labels", "test", "inspect"):
            assert command in result.output


class TestMain:
    """Tests for the console entry point."""

    @pytest.mark.requirement("cli")
    def test_usage_error_exit_code(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test usage errors exit 2 with a message on stderr."""
        with pytest.raises(SystemExit) as exc_info:
            main(["remove-labels"])

        assert exc_info.value.code == 2
        assert "Missing argument" in capsys.readouterr().err
