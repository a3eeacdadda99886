# CardSnap Vault - Command Line Entry Point
#
#   cardsnap backup OUT            write an encrypted archive of the card store
#   cardsnap inspect ARCHIVE       show an archive's header (no password)
#   cardsnap restore ARCHIVE       merge an archive back into the card store
#   cardsnap stats                 card counts and last backup time
#   cardsnap serve                 run the local HTTP API
#
# Passwords are read from CARDSNAP_PASSWORD or prompted with getpass.
# Exit codes: 0 success, 1 failure, 2 restore stopped on unresolved conflicts.

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from returns.result import Failure

from . import __version__
from .backup.backup_database import BackupHistory
from .backup.backup_service import BackupService
from .backup.conflict_resolver import ConflictChoice, MergeStrategy
from .core.audit_log import EventSeverity, EventType, configure_audit_logger
from .core.config import VaultSettings
from .core.errors import VaultError
from .records.models import format_timestamp
from .records.sqlite_store import SqliteRecordStore

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNRESOLVED = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cardsnap",
        description="CardSnap Vault - encrypted backup and restore for your card wallet",
    )
    parser.add_argument("--env-file", type=Path, help="Load settings from this .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"CardSnap Vault v{__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Create an encrypted backup archive")
    backup.add_argument("output", type=Path, help="Where to write the archive")

    inspect = sub.add_parser("inspect", help="Show what an archive contains (no password)")
    inspect.add_argument("archive", type=Path)

    restore = sub.add_parser("restore", help="Restore cards from an archive")
    restore.add_argument("archive", type=Path)
    restore.add_argument(
        "--strategy",
        choices=[s.value for s in MergeStrategy],
        default=MergeStrategy.MERGE.value,
        help="How to settle cards that exist on both sides (default: merge)",
    )
    restore.add_argument(
        "--keep-existing", action="append", default=[], metavar="KEY",
        help="Settle a conflict by keeping the local record; KEY is card:ID, store:ID or a card ID (repeatable)",
    )
    restore.add_argument(
        "--take-incoming", action="append", default=[], metavar="KEY",
        help="Settle a conflict by taking the archived record (repeatable)",
    )

    sub.add_parser("stats", help="Card counts and last backup time")

    serve = sub.add_parser("serve", help="Run the local HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    return parser


def _read_password(confirm: bool = False) -> str:
    password = os.getenv("CARDSNAP_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Archive password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValueError("Passwords do not match.")
    return password


def _fail(error: VaultError) -> int:
    print(f"Error: {error.user_message}", file=sys.stderr)
    return EXIT_FAILURE


def _build_service(settings: VaultSettings) -> BackupService:
    return BackupService(
        SqliteRecordStore(settings.db_path),
        history=BackupHistory(settings.history_db_path),
        iterations=settings.kdf_iterations,
    )


# ── Commands ─────────────────────────────────────────────────────────


def cmd_backup(args, settings: VaultSettings) -> int:
    password = _read_password(confirm=True)
    settings.check_password(password)
    result = _build_service(settings).create_backup(password)
    if isinstance(result, Failure):
        return _fail(result.failure())
    archive = result.unwrap()
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_bytes(archive.data)
    print(
        f"Backed up {archive.info.record_count} cards and {archive.info.store_count} stores "
        f"to {args.output} ({archive.size_bytes} bytes)"
    )
    print(f"SHA-256: {archive.sha256}")
    return EXIT_OK


def cmd_inspect(args, settings: VaultSettings) -> int:
    result = _build_service(settings).validate_backup(args.archive.read_bytes())
    if isinstance(result, Failure):
        return _fail(result.failure())
    info = result.unwrap()
    print(f"Schema version: {info.schema_version}")
    print(f"Exported at:    {format_timestamp(info.exported_at)}")
    print(f"Cards:          {info.record_count}")
    print(f"Stores:         {info.store_count}")
    return EXIT_OK


def cmd_restore(args, settings: VaultSettings) -> int:
    overrides = {key: ConflictChoice.KEEP_EXISTING for key in args.keep_existing}
    overrides.update({key: ConflictChoice.TAKE_INCOMING for key in args.take_incoming})
    password = _read_password()
    result = _build_service(settings).restore_backup(
        args.archive.read_bytes(),
        password,
        MergeStrategy(args.strategy),
        overrides=overrides,
    )
    if isinstance(result, Failure):
        return _fail(result.failure())
    summary = result.unwrap()
    if not summary.committed:
        print(f"{summary.unresolved} conflict(s) need a decision; nothing was restored:")
        for conflict in summary.conflicts:
            print(f"  {conflict.key}")
        print("Re-run with --keep-existing KEY or --take-incoming KEY for each.")
        return EXIT_UNRESOLVED
    print(
        f"Restored: {summary.inserted} inserted, {summary.updated} updated, "
        f"{summary.skipped} unchanged"
    )
    return EXIT_OK


def cmd_stats(args, settings: VaultSettings) -> int:
    stats = SqliteRecordStore(settings.db_path).storage_stats()
    last = BackupHistory(settings.history_db_path).last_backup_at()
    print(f"Cards:       {stats.total_cards} ({stats.active_cards} active, {stats.archived_cards} archived)")
    print(f"Stores:      {stats.total_stores}")
    print(f"Last backup: {format_timestamp(last) if last else 'never'}")
    return EXIT_OK


def cmd_serve(args, settings: VaultSettings) -> int:
    from .api.main import start_api_server
    from .api.security import initialize_session_token

    token = initialize_session_token(settings.session_token)
    print(f"Starting API server on {args.host}:{args.port}...")
    print(f"Session token: {token}")
    print("Press Ctrl+C to stop")
    try:
        start_api_server(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\nShutting down...")
    return EXIT_OK


_COMMANDS = {
    "backup": cmd_backup,
    "inspect": cmd_inspect,
    "restore": cmd_restore,
    "stats": cmd_stats,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the cardsnap CLI."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = VaultSettings.from_env(args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    audit = configure_audit_logger(settings.audit_log_dir)
    audit.log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="CardSnap Vault CLI starting",
        details={"version": __version__, "command": args.command},
    )

    try:
        return _COMMANDS[args.command](args, settings)
    except VaultError as e:
        return _fail(e)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
