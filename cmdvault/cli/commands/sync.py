"""Sync commands for cmdvault CLI: gist synchronization, import and export."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from cmdvault.config import load_github_token, load_settings, save_settings
from cmdvault.importers import JsonImporter, export_to_file
from cmdvault.protocols import InvalidPayload, RemoteBlobClient, SyncInProgressError
from cmdvault.sync import DefaultChoiceResolver, GistClient, SyncEngine
from cmdvault.types import Resolution, SyncConflict, SyncResult, format_datetime

if TYPE_CHECKING:
    from cmdvault.storage import SQLiteStorage

logger = logging.getLogger(__name__)

_PROMPT_CHOICES = {
    "l": Resolution.KEEP_LOCAL,
    "r": Resolution.KEEP_REMOTE,
    "b": Resolution.KEEP_BOTH,
}


class PromptResolver:
    """Ask the user about each conflict on the terminal.

    ``q``, EOF or Ctrl-C cancel the whole sync.
    """

    def __init__(self, input_fn=input, output=None):
        self._input = input_fn
        self._out = output or sys.stdout

    def _show(self, conflict: SyncConflict) -> None:
        print(f"\n⚠ Conflict on {conflict.sync_id}: {conflict.label}", file=self._out)
        for side, record in (("local", conflict.local), ("remote", conflict.remote)):
            state = " (deleted)" if record.is_deleted else ""
            print(f"  {side:6}{state}: {record.prompt}", file=self._out)
            print(f"          $ {record.command}", file=self._out)
            print(f"          updated {format_datetime(record.updated_at)[:19]}", file=self._out)

    def __call__(self, conflict: SyncConflict) -> Optional[Resolution]:
        self._show(conflict)
        while True:
            try:
                answer = self._input("Keep [l]ocal, [r]emote, [b]oth, or [q]uit? ").strip().lower()
            except (EOFError, KeyboardInterrupt):
                return None
            if answer in ("q", "quit"):
                return None
            if answer[:1] in _PROMPT_CHOICES:
                return _PROMPT_CHOICES[answer[:1]]
            print("Please answer l, r, b or q.", file=self._out)


def _format_elapsed(last_sync: Optional[datetime]) -> str:
    if last_sync is None:
        return "Never"
    elapsed = (datetime.now(timezone.utc) - last_sync).total_seconds()
    if elapsed < 60:
        return "just now"
    if elapsed < 3600:
        return f"{int(elapsed / 60)} minutes ago"
    if elapsed < 86400:
        return f"{int(elapsed / 3600)} hours ago"
    return f"{int(elapsed / 86400)} days ago"


def _print_result(result: SyncResult, as_json: bool) -> None:
    if as_json:
        print(
            json.dumps(
                {
                    "operation": result.operation,
                    "success": result.success,
                    "pushed": result.pushed,
                    "pulled": result.pulled,
                    "conflicts": [
                        {"sync_id": c.sync_id, "kind": c.kind.value} for c in result.conflicts
                    ],
                    "sync_version": result.sync_version,
                    "error": result.error,
                    "error_kind": result.error_kind,
                },
                indent=2,
            )
        )
        return

    if not result.success:
        print(f"✗ {result.operation.capitalize()} failed: {result.error}")
        return
    if result.operation == "pull":
        print(f"✓ Pulled {result.pulled} commands")
    else:
        print(f"✓ Pushed {result.pushed} commands (version {result.sync_version})")
    if result.conflicts:
        print(f"  Resolved {result.conflict_count} conflict(s)")


def _choose_resolver(args, settings):
    choice = getattr(args, "resolve", None) or settings.default_resolution
    if choice:
        return DefaultChoiceResolver(choice)
    if sys.stdin.isatty():
        return PromptResolver()
    # Non-interactive without a configured default: conflicts cancel the sync
    return None


def cmd_sync(args, storage: "SQLiteStorage", client: Optional[RemoteBlobClient] = None):
    """Handle sync subcommands."""
    settings = load_settings()
    as_json = getattr(args, "json", False)

    if args.sync_action == "enable":
        settings.enabled = True
        if getattr(args, "resolution", None):
            settings.conflict_resolution = args.resolution
        path = save_settings(settings)
        print(f"✓ Sync enabled (conflicts: {settings.conflict_resolution})")
        print(f"  Settings saved to {path}")
        if not load_github_token():
            print("  Next: set CMDVAULT_GITHUB_TOKEN or add github_token to credentials.json")
        return

    if args.sync_action == "export":
        count = export_to_file(storage, args.path)
        print(f"✓ Exported {count} commands to {args.path}")
        return

    if args.sync_action == "import":
        importer = JsonImporter(args.path)
        try:
            summary = importer.import_to(storage, merge=not args.replace)
        except (FileNotFoundError, InvalidPayload) as e:
            print(f"✗ Import failed: {e}")
            sys.exit(1)
        print(f"✓ Imported {summary['written']} of {summary['total']} commands ({summary['mode']})")
        return

    if args.sync_action == "conflicts":
        if args.clear:
            cleared = storage.clear_sync_conflicts()
            print(f"✓ Cleared {cleared} conflict record(s)")
            return
        history = storage.get_sync_conflicts(limit=args.limit)
        if as_json:
            print(
                json.dumps(
                    [
                        {
                            "id": c.id,
                            "sync_id": c.sync_id,
                            "kind": c.kind,
                            "resolution": c.resolution,
                            "resolved_at": format_datetime(c.resolved_at),
                            "local": c.local_summary,
                            "remote": c.remote_summary,
                        }
                        for c in history
                    ],
                    indent=2,
                )
            )
            return
        if not history:
            print("No sync conflicts recorded.")
            return
        for c in history:
            print(f"{format_datetime(c.resolved_at)[:19]}  {c.sync_id}  {c.kind} -> {c.resolution}")
            print(f"    local:  {c.local_summary}")
            print(f"    remote: {c.remote_summary}")
        return

    owns_client = client is None
    if client is None:
        client = GistClient(
            api_url=settings.api_url,
            filename=settings.gist_filename,
            timeout=settings.timeout,
        )
    engine = SyncEngine(storage, storage, client, profile=getattr(args, "profile", "default"))

    try:
        if args.sync_action == "status":
            _show_status(engine, storage, settings, as_json)
            return

        if not settings.enabled:
            print("✗ Sync is disabled")
            print("  Run `cmdvault sync enable` first")
            sys.exit(1)

        if args.sync_action == "push":
            result = engine.push()
        elif args.sync_action == "pull":
            result = engine.pull()
        else:
            result = engine.sync(resolver=_choose_resolver(args, settings))
    except SyncInProgressError as e:
        print(f"✗ {e}")
        sys.exit(1)
    finally:
        if owns_client:
            client.close()

    _print_result(result, as_json)
    if not result.success:
        if result.error_kind == "resolution_cancelled":
            print("  Nothing was changed locally or remotely.")
        sys.exit(1)


def _show_status(engine: SyncEngine, storage: "SQLiteStorage", settings, as_json: bool) -> None:
    last_sync = storage.get_last_sync_time()
    token_configured = bool(load_github_token())
    status = {
        "enabled": settings.enabled,
        "conflict_resolution": settings.conflict_resolution,
        "token_configured": token_configured,
        "remote_handle": engine.remote_handle,
        "sync_version": engine.sync_version,
        "last_sync_time": format_datetime(last_sync),
        "local_commands": storage.count_commands(),
        "pending_deletions": storage.count_commands(include_deleted=True) - storage.count_commands(),
        "conflicts_recorded": len(storage.get_sync_conflicts()),
    }
    if as_json:
        print(json.dumps(status, indent=2))
        return

    print("Sync Status")
    print("=" * 50)
    print(f"{'✓' if settings.enabled else '✗'} Sync {'enabled' if settings.enabled else 'disabled'}")
    print(f"{'✓' if token_configured else '✗'} GitHub token {'configured' if token_configured else 'missing'}")
    print(f"  Gist: {engine.remote_handle or '(none yet)'}")
    print(f"  Version: {engine.sync_version}")
    print(f"  Last sync: {_format_elapsed(last_sync)}")
    print(f"  Local commands: {status['local_commands']}")
    if status["pending_deletions"]:
        print(f"  Pending deletions: {status['pending_deletions']}")
    print(f"  Conflicts resolved: {status['conflicts_recorded']} (see `cmdvault sync conflicts`)")
