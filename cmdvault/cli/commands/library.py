"""Library commands for cmdvault CLI: add, list, search, rm."""

import json
import logging
import sys
from typing import TYPE_CHECKING

from cmdvault.types import format_datetime

if TYPE_CHECKING:
    from cmdvault.storage import SQLiteStorage

logger = logging.getLogger(__name__)


def validate_input(value: str, field_name: str, max_length: int = 2000) -> str:
    """Strip and length-check a user supplied string."""
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    value = value.strip()
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters)")
    return value


def cmd_add(args, storage: "SQLiteStorage"):
    """Save a new command."""
    prompt = validate_input(args.prompt, "prompt", 500)
    command = validate_input(args.command_text, "command")
    record = storage.add_command(prompt, command, tags=args.tag or [], shell=args.shell)
    print(f"✓ Saved {record.id}")
    print(f"  {record.prompt}: {record.command}")


def cmd_list(args, storage: "SQLiteStorage"):
    """List saved commands, optionally filtered by tag or a search query."""
    if getattr(args, "query", None):
        records = storage.search_commands(args.query)
        if args.tag:
            records = [r for r in records if args.tag in r.tags]
    else:
        records = storage.list_commands(tag=args.tag)

    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return

    if not records:
        print("No commands saved yet.")
        return

    for record in records:
        star = "★ " if record.is_favorite else ""
        tags = f"  [{', '.join(record.tags)}]" if record.tags else ""
        print(f"{star}{record.prompt}{tags}")
        print(f"    $ {record.command}")
        print(f"    id: {record.id}  used: {record.usage_count}  updated: {format_datetime(record.updated_at)[:19]}")


def cmd_rm(args, storage: "SQLiteStorage"):
    """Soft-delete a command so the deletion can sync to other machines."""
    if storage.soft_delete_command(args.id):
        print(f"✓ Deleted {args.id}")
    else:
        print(f"✗ Command not found: {args.id}")
        sys.exit(1)
