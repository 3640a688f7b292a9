"""Tests for the command-line front end."""

import pytest
from typer.testing import CliRunner

from imps.cli.__main__ import _options, app

runner = CliRunner()


class TestOptions:
    def test_only_given_options_are_passed(self) -> None:
        assert _options(None, None, None, None, False) == {}

    def test_all_options(self) -> None:
        assert _options("<key>", 0.5, 2, "less", True) == {
            "echo": "<key>",
            "timeout": 0.5,
            "wait": 2,
            "pager": "less",
            "lock_missing": True,
        }


class TestCommands:
    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "eval" in result.output

    def test_presets_lists_templates(self) -> None:
        result = runner.invoke(app, ["presets"])
        assert result.exit_code == 0
        assert "bash" in result.output
        assert "<key>" in result.output

    def test_missing_dependency(self) -> None:
        result = runner.invoke(app, ["eval", "-l", "1", "imps-no-such-command"])
        assert result.exit_code == 1
        assert "Error: Cannot find the requested command" in result.output

    def test_invalid_name(self) -> None:
        result = runner.invoke(app, ["eval", "--name", "no good", "sh"])
        assert result.exit_code == 1
        assert "Invalid instance name" in result.output

    @pytest.mark.parametrize("subcommand", ["eval", "read", "shell"])
    def test_bad_echo_template(self, subcommand: str) -> None:
        result = runner.invoke(app, [subcommand, "--echo", "done", "sh"])
        assert result.exit_code == 1
        assert "lacks <key>" in result.output
