"""CLI command modules for cmdvault.

Each module contains related command handlers used by __main__.py.
"""

from cmdvault.cli.commands.library import cmd_add, cmd_list, cmd_rm, validate_input
from cmdvault.cli.commands.sync import PromptResolver, cmd_sync

__all__ = ["PromptResolver", "cmd_add", "cmd_list", "cmd_rm", "cmd_sync", "validate_input"]
