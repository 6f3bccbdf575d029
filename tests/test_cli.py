"""Tests for CLI commands.

Tests the conductor CLI using Click's CliRunner:
- run: explicit names, tags, aliases
- dynamic per-target subcommands
- default run with no subcommand
- setup
- error reporting
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from conductor.cli import main
from conductor.core.resolver import CircularDependencyError, NothingToRunError


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def project_dir(cli_runner, sample_config):
    """Isolated filesystem containing conductor.yml."""
    with cli_runner.isolated_filesystem():
        Path("conductor.yml").write_text(yaml.safe_dump(sample_config))
        yield Path.cwd()


@pytest.fixture
def runner_cls(mocker):
    """Patch ProjectRunner so no processes are started."""
    return mocker.patch("conductor.cli.ProjectRunner")


def _project_of(runner_cls):
    return runner_cls.call_args[0][0]


class TestRunCommand:
    """Tests for 'conductor run'."""

    def test_run_names(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["run", "api", "build"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run.assert_called_once_with(["api", "build"])
        assert _project_of(runner_cls).name == "Shop"

    def test_run_without_names_runs_defaults(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["run"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run_default.assert_called_once_with([])

    @pytest.mark.parametrize("alias", ["start", "play"])
    def test_aliases(self, cli_runner, project_dir, runner_cls, alias):
        result = cli_runner.invoke(main, [alias, "web"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run.assert_called_once_with(["web"])

    def test_tags_filter_project(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["--tags", "backend", "run"])

        assert result.exit_code == 0, result.output
        assert [c.name for c in _project_of(runner_cls).components] == ["api", "worker"]
        runner_cls.return_value.run_default.assert_called_once_with(["backend"])

    def test_command_tags(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["run", "-t", "frontend, backend"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run_default.assert_called_once_with(["frontend", "backend"])

    def test_nothing_to_run(self, cli_runner, project_dir, runner_cls):
        runner_cls.return_value.run.side_effect = NothingToRunError(["ghost"])

        result = cli_runner.invoke(main, ["run", "ghost"])

        assert result.exit_code == 1
        assert "nothing to run: ghost" in result.output

    def test_circular_dependency(self, cli_runner, project_dir, runner_cls):
        runner_cls.return_value.run.side_effect = CircularDependencyError(["a", "b", "a"])

        result = cli_runner.invoke(main, ["run", "a"])

        assert result.exit_code == 1
        assert "Circular dependency detected: a -> b -> a" in result.output

    def test_interrupt(self, cli_runner, project_dir, runner_cls):
        runner_cls.return_value.run.side_effect = KeyboardInterrupt

        result = cli_runner.invoke(main, ["run", "api"])

        assert result.exit_code == 130


class TestDynamicCommands:
    """One subcommand per component, group, task and component:task."""

    @pytest.mark.parametrize("name", ["api", "stack", "build", "api:migrate"])
    def test_target_as_command(self, cli_runner, project_dir, runner_cls, name):
        result = cli_runner.invoke(main, [name])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run.assert_called_once_with([name])

    def test_case_insensitive(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["API"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run.assert_called_once_with(["api"])

    def test_help_lists_targets(self, cli_runner, project_dir):
        result = cli_runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        for name in ("setup", "run", "api", "stack", "build", "api:migrate"):
            assert name in result.output

    def test_unknown_command(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["ghost"])

        assert result.exit_code == 2
        runner_cls.assert_not_called()


class TestDefaultRun:
    def test_no_subcommand_runs_defaults(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, [])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run_default.assert_called_once_with([])


class TestSetupCommand:
    @pytest.mark.parametrize("command", ["setup", "clone", "soundcheck"])
    def test_setup_and_aliases(self, cli_runner, project_dir, runner_cls, command):
        result = cli_runner.invoke(main, [command])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.setup.assert_called_once_with()

    def test_setup_tags(self, cli_runner, project_dir, runner_cls):
        result = cli_runner.invoke(main, ["setup", "--tags", "frontend"])

        assert result.exit_code == 0, result.output
        assert [c.name for c in _project_of(runner_cls).components] == ["web"]


class TestConfigDiscovery:
    """Tests for --config and missing project files."""

    def test_missing_config(self, cli_runner, runner_cls):
        with cli_runner.isolated_filesystem():
            result = cli_runner.invoke(main, ["run", "api"])

        assert result.exit_code == 1
        assert "Could not find config file conductor.yml" in result.output
        runner_cls.assert_not_called()

    def test_custom_config_name(self, cli_runner, runner_cls, sample_config):
        with cli_runner.isolated_filesystem():
            Path("stack.yml").write_text(yaml.safe_dump(sample_config))

            result = cli_runner.invoke(main, ["-c", "stack.yml", "run", "web"])

        assert result.exit_code == 0, result.output
        runner_cls.return_value.run.assert_called_once_with(["web"])

    def test_found_from_subdirectory(self, cli_runner, project_dir, runner_cls, monkeypatch):
        nested = project_dir / "api" / "src"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        result = cli_runner.invoke(main, ["run", "api"])

        assert result.exit_code == 0, result.output
        assert _project_of(runner_cls).root_path == project_dir.resolve()

    def test_invalid_config(self, cli_runner, runner_cls):
        with cli_runner.isolated_filesystem():
            Path("conductor.yml").write_text("components: [oops\n")

            result = cli_runner.invoke(main, ["run"])

        assert result.exit_code == 1
        assert "Could not load project" in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output
