"""Tests for the cmdvault CLI entry point and library commands."""

import json

import pytest

from cmdvault.cli.__main__ import build_parser, main
from cmdvault.cli.commands.library import validate_input
from cmdvault.storage import SQLiteStorage


@pytest.fixture(autouse=True)
def reset_cmdvault_logger():
    import logging

    logger = logging.getLogger("cmdvault")
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


class TestParser:
    def test_sync_full_resolve_choices(self):
        args = build_parser().parse_args(["sync", "full", "--resolve", "keep_both"])

        assert args.sync_action == "full"
        assert args.resolve == "keep_both"

    def test_rejects_unknown_resolution(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "full", "--resolve", "keep_all"])


class TestLibraryCommands:
    def test_add_list_rm(self, capsys, isolated_home):
        main(["add", "show branches", "git branch -a", "--tag", "git"])
        out = capsys.readouterr().out
        assert "✓ Saved cmd_" in out

        main(["list", "--json"])
        records = json.loads(capsys.readouterr().out)
        assert [r["command"] for r in records] == ["git branch -a"]
        assert records[0]["tags"] == ["git"]

        main(["rm", records[0]["id"]])
        assert "✓ Deleted" in capsys.readouterr().out

        main(["list"])
        assert "No commands saved yet." in capsys.readouterr().out
        assert SQLiteStorage(db_path=isolated_home / "commands.db").count_commands(include_deleted=True) == 1

    def test_list_search(self, capsys):
        main(["add", "pods", "kubectl get pods"])
        main(["add", "status", "git status"])
        capsys.readouterr()

        main(["list", "--search", "kubectl"])

        out = capsys.readouterr().out
        assert "kubectl get pods" in out
        assert "git status" not in out

    def test_rm_missing_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["rm", "cmd_missing"])

        assert exc_info.value.code == 1
        assert "✗ Command not found" in capsys.readouterr().out

    def test_empty_command_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["add", "nothing", "   "])

        assert exc_info.value.code == 1


class TestValidateInput:
    def test_strips(self):
        assert validate_input("  ls  ", "command") == "ls"

    def test_too_long(self):
        with pytest.raises(ValueError, match="too long"):
            validate_input("x" * 11, "prompt", max_length=10)
