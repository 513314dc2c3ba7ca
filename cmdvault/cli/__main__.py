"""
cmdvault CLI - save shell commands and sync them through a private gist.

Usage:
    cmdvault add PROMPT COMMAND [--tag TAG] [--shell SHELL]
    cmdvault list [--tag TAG] [--search QUERY] [--json]
    cmdvault rm ID
    cmdvault sync status|push|pull|full|export|import|conflicts|enable
"""

import argparse
import logging
import os
import sys

from cmdvault.cli.commands import cmd_add, cmd_list, cmd_rm, cmd_sync
from cmdvault.logging_config import setup_cmdvault_logging
from cmdvault.protocols import CmdvaultError
from cmdvault.storage import SQLiteStorage
from cmdvault.types import VALID_RESOLUTION_VALUES

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdvault",
        description="A local library of shell commands, synced through a private gist",
    )
    parser.add_argument("--profile", "-p", default="default", help="Profile name for logs")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # add
    p_add = subparsers.add_parser("add", help="Save a command")
    p_add.add_argument("prompt", help="What the command does")
    p_add.add_argument("command_text", metavar="command", help="The shell command")
    p_add.add_argument("--tag", "-t", action="append", help="Tag (repeatable)")
    p_add.add_argument("--shell", "-s", help="Shell the command is written for")

    # list
    p_list = subparsers.add_parser("list", help="List saved commands")
    p_list.add_argument("--tag", "-t", help="Only commands with this tag")
    p_list.add_argument("--search", dest="query", help="Search prompts, commands and tags")
    p_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # rm
    p_rm = subparsers.add_parser("rm", help="Delete a command")
    p_rm.add_argument("id", help="Command ID")

    # sync
    p_sync = subparsers.add_parser("sync", help="Sync with the remote gist")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    sync_status = sync_sub.add_parser("status", help="Show sync status")
    sync_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_push = sync_sub.add_parser("push", help="Overwrite the remote library with local commands")
    sync_push.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_pull = sync_sub.add_parser("pull", help="Merge remote commands into the local library")
    sync_pull.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_full = sync_sub.add_parser("full", help="Two-way sync with conflict resolution")
    sync_full.add_argument("--resolve", "-r", choices=sorted(VALID_RESOLUTION_VALUES),
                           help="Answer every conflict with this choice instead of asking")
    sync_full.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_export = sync_sub.add_parser("export", help="Write commands to a JSON file")
    sync_export.add_argument("path", help="Output file")

    sync_import = sync_sub.add_parser("import", help="Read commands from a JSON file")
    sync_import.add_argument("path", help="Input file")
    sync_import.add_argument("--replace", action="store_true",
                             help="Replace the whole library instead of merging")

    sync_conflicts = sync_sub.add_parser("conflicts", help="Show resolved conflict history")
    sync_conflicts.add_argument("--limit", "-l", type=int, default=20, help="Maximum entries (default: 20)")
    sync_conflicts.add_argument("--clear", action="store_true", help="Clear the history")
    sync_conflicts.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_enable = sync_sub.add_parser("enable", help="Turn on sync")
    sync_enable.add_argument("--resolution", choices=["ask", *sorted(VALID_RESOLUTION_VALUES)],
                             help="Default answer for conflicts")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_cmdvault_logging(args.profile, os.environ.get("CMDVAULT_LOG_LEVEL", "INFO"))

    storage = SQLiteStorage()
    try:
        if args.command == "add":
            cmd_add(args, storage)
        elif args.command == "list":
            cmd_list(args, storage)
        elif args.command == "rm":
            cmd_rm(args, storage)
        elif args.command == "sync":
            cmd_sync(args, storage)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        sys.exit(1)
    except CmdvaultError as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
