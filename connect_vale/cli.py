"""Command line entry point for maintenance tasks on the local store.

``connect-vale init`` creates the database, ``summary`` prints the financial
totals, ``backup`` writes a JSON backup and ``restore`` replaces every record
with the contents of a backup file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .aggregates import compute_financial_aggregates, status_counts
from .backup_utils import ensure_monthly_backup, read_backup_file, write_backup_file
from .config import AppConfig, load_config
from .constants import STATUS_LABELS
from .exceptions import StoreError
from .store import DataStore


def _cmd_init(store: DataStore, config: AppConfig, args: argparse.Namespace) -> int:
    settings = store.initialize()
    print(f"Database ready at {config.db_path}")
    print(f"Branches: {', '.join(settings.branches)}")
    return 0


def _cmd_summary(store: DataStore, config: AppConfig, args: argparse.Namespace) -> int:
    snapshot = store.load_snapshot()
    summary = compute_financial_aggregates(snapshot.customers, snapshot.installations)
    counts = status_counts(snapshot.customers)
    print(f"Customers: {len(snapshot.customers)}")
    for status, label in STATUS_LABELS.items():
        print(f"  {label}: {counts.get(status, 0)}")
    print(f"Grand total: {summary.grand_total:,.2f}")
    for method, amount in summary.totals_by_payment_method.items():
        print(f"  {method}: {amount:,.2f}")
    for branch, amount in summary.totals_by_branch.items():
        print(f"  {branch}: {amount:,.2f}")
    last_backup = snapshot.settings.last_backup_at or "never"
    print(f"Last backup: {last_backup}")
    return 0


def _cmd_backup(store: DataStore, config: AppConfig, args: argparse.Namespace) -> int:
    backup_dir = Path(args.dir).expanduser() if args.dir else config.backup_dir
    if args.monthly:
        exported: dict = {}

        def _build() -> dict:
            exported.update(store.export_snapshot())
            return exported

        destination, error = ensure_monthly_backup(
            backup_dir,
            _build,
            config.backup_retention,
            config.backup_mirror_dir,
        )
        if error:
            print(f"WARNING: {error}")
        if destination is None:
            if error:
                return 1
            print("A backup already exists for this month.")
            return 0
        bundle = exported
    else:
        bundle = store.export_snapshot()
        destination = write_backup_file(backup_dir, bundle)
    # only stamp once the file is on disk
    store.record_backup(bundle["backupDate"])
    print(f"Backup written to {destination}")
    return 0


def _cmd_restore(store: DataStore, config: AppConfig, args: argparse.Namespace) -> int:
    path = Path(args.file).expanduser()
    bundle = read_backup_file(path)
    if not args.yes:
        answer = input("This replaces ALL current data. Continue? [y/N] ")
        if answer.strip().lower() not in {"y", "yes"}:
            print("Restore aborted.")
            return 1
    snapshot = store.import_snapshot(bundle)
    print(
        f"Restored {len(snapshot.customers)} customers and "
        f"{len(snapshot.installations)} installations from {path.name}"
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="connect-vale", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create the database and default settings").set_defaults(
        handler=_cmd_init
    )
    sub.add_parser("summary", help="print customer counts and financial totals").set_defaults(
        handler=_cmd_summary
    )

    backup = sub.add_parser("backup", help="write a JSON backup file")
    backup.add_argument("--dir", help="target directory (defaults to CV_BACKUP_DIR)")
    backup.add_argument(
        "--monthly",
        action="store_true",
        help="skip when this month already has a backup and prune old files",
    )
    backup.set_defaults(handler=_cmd_backup)

    restore = sub.add_parser("restore", help="replace all data with a backup file")
    restore.add_argument("file")
    restore.add_argument("-y", "--yes", action="store_true", help="do not ask for confirmation")
    restore.set_defaults(handler=_cmd_restore)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        store = DataStore.from_config(config)
        return args.handler(store, config, args)
    except (StoreError, OSError) as exc:
        print(f"\nERROR: {exc}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
