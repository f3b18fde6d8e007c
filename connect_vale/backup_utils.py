"""Backup bundles: build, validate, and keep dated copies on disk."""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .constants import BACKUP_FORMAT_VERSION, STATUS_LABELS
from .exceptions import IncompatibleVersionError, MalformedBackupError
from .models import Customer, Installation, Settings, utc_now_iso

LOGGER = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("clients", "installations", "settings")
BACKUP_PREFIX = "connect_vale_backup"


def build_bundle(
    customers: list[Customer],
    installations: list[Installation],
    settings: Settings,
    *,
    backup_date: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "clients": [customer.to_record() for customer in customers],
        "installations": [installation.to_record() for installation in installations],
        "settings": settings.to_record(),
        "backupDate": backup_date or utc_now_iso(),
        "version": BACKUP_FORMAT_VERSION,
    }


def validate_bundle(
    bundle: object,
) -> tuple[list[Customer], list[Installation], Settings]:
    """Check a whole backup payload and return its parsed records.

    Nothing is written here; a restore calls this before touching the
    database so a broken file can never leave the store half empty.
    """

    if not isinstance(bundle, Mapping):
        raise MalformedBackupError("Backup payload must be a JSON object")
    missing = [key for key in REQUIRED_SECTIONS if bundle.get(key) is None]
    if missing:
        raise MalformedBackupError(
            f"Backup is missing required sections: {', '.join(missing)}"
        )
    version = bundle.get("version")
    if version != BACKUP_FORMAT_VERSION:
        raise IncompatibleVersionError(version, BACKUP_FORMAT_VERSION)

    raw_clients = bundle["clients"]
    raw_installations = bundle["installations"]
    raw_settings = bundle["settings"]
    if not isinstance(raw_clients, list):
        raise MalformedBackupError("'clients' must be a list")
    if not isinstance(raw_installations, list):
        raise MalformedBackupError("'installations' must be a list")
    if not isinstance(raw_settings, Mapping):
        raise MalformedBackupError("'settings' must be an object")

    customers = [_parse_customer(index, record) for index, record in enumerate(raw_clients)]
    _check_customer_uniqueness(customers)
    installations = [
        _parse_installation(index, record) for index, record in enumerate(raw_installations)
    ]
    seen_installation_ids: set[int] = set()
    for installation in installations:
        if installation.id is None:
            continue
        if installation.id in seen_installation_ids:
            raise MalformedBackupError(f"Duplicate installation id {installation.id}")
        seen_installation_ids.add(installation.id)

    branches = raw_settings.get("branches")
    if not isinstance(branches, list) or not all(
        isinstance(branch, str) and branch.strip() for branch in branches
    ):
        raise MalformedBackupError("'settings.branches' must be a list of names")
    if len(set(branches)) != len(branches):
        raise MalformedBackupError("'settings.branches' contains duplicates")
    settings = Settings.from_record(raw_settings)
    return customers, installations, settings


def _parse_customer(index: int, record: object) -> Customer:
    if not isinstance(record, Mapping):
        raise MalformedBackupError(f"clients[{index}] is not an object")
    try:
        customer = Customer.from_record(record)
    except (TypeError, ValueError) as exc:
        raise MalformedBackupError(f"clients[{index}] is invalid: {exc}") from exc
    if not customer.name or not customer.branch:
        raise MalformedBackupError(f"clients[{index}] needs a name and a branch")
    if customer.status not in STATUS_LABELS:
        raise MalformedBackupError(
            f"clients[{index}] has unknown status {customer.status!r}"
        )
    return customer


def _check_customer_uniqueness(customers: list[Customer]) -> None:
    seen_ids: set[int] = set()
    seen_keys: set[tuple[str, str]] = set()
    for customer in customers:
        if customer.id is not None:
            if customer.id in seen_ids:
                raise MalformedBackupError(f"Duplicate customer id {customer.id}")
            seen_ids.add(customer.id)
        key = (customer.name, customer.branch)
        if key in seen_keys:
            raise MalformedBackupError(
                f"Duplicate customer {customer.name!r} in branch {customer.branch!r}"
            )
        seen_keys.add(key)


def _parse_installation(index: int, record: object) -> Installation:
    if not isinstance(record, Mapping):
        raise MalformedBackupError(f"installations[{index}] is not an object")
    try:
        return Installation.from_record(record)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedBackupError(f"installations[{index}] is invalid: {exc}") from exc


def read_backup_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise MalformedBackupError(f"{path.name} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedBackupError(f"{path.name} does not hold a backup object")
    return data


def write_backup_file(
    backup_dir: Path, bundle: Mapping[str, Any], prefix: str = BACKUP_PREFIX
) -> Path:
    """Write ``bundle`` as a dated JSON file, replacing atomically via a temp file."""

    backup_dir.mkdir(parents=True, exist_ok=True)
    now = datetime.now()
    filename = f"{prefix}_{now:%Y_%m_%d_%H%M%S}.json"
    destination = backup_dir / filename
    temp_path = backup_dir / f".{filename}.tmp"
    with temp_path.open("w", encoding="utf-8") as handle:
        json.dump(bundle, handle, ensure_ascii=False, indent=2)
    temp_path.replace(destination)
    LOGGER.info("Wrote backup %s", destination)
    return destination


def _load_backup_metadata(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError):
        LOGGER.warning("Ignoring unreadable backup metadata at %s", path)
        return {}
    if isinstance(data, dict):
        return {str(key): str(value) for key, value in data.items()}
    return {}


def _write_backup_metadata(path: Path, payload: dict[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)


def _prune_backups(backup_dir: Path, keep: int, prefix: str) -> None:
    if keep <= 0:
        return
    backups = sorted(
        backup_dir.glob(f"{prefix}_*.json"),
        key=lambda item: item.stat().st_mtime,
        reverse=True,
    )
    for old_backup in backups[keep:]:
        LOGGER.debug("Pruning old backup %s", old_backup.name)
        old_backup.unlink(missing_ok=True)


def ensure_monthly_backup(
    backup_dir: Path,
    build: Callable[[], Mapping[str, Any]],
    retention: int,
    mirror_dir: Optional[Path] = None,
    prefix: str = BACKUP_PREFIX,
) -> tuple[Optional[Path], Optional[str]]:
    """Write at most one backup per calendar month.

    Returns the new file (or ``None`` when this month is already covered) and
    an error message for the caller to show; failures are reported, not raised,
    so a broken backup directory never blocks the application from starting.
    """

    metadata_path = backup_dir / "backup_metadata.json"
    now = datetime.now()
    current_month = now.strftime("%Y-%m")
    metadata = _load_backup_metadata(metadata_path)
    if metadata.get("last_backup_month") == current_month:
        return None, None
    try:
        bundle = build()
        if not bundle:
            return None, None
        destination = write_backup_file(backup_dir, bundle, prefix)
        mirror_error: Optional[str] = None
        if mirror_dir is not None:
            try:
                mirror_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(destination, mirror_dir / destination.name)
            except OSError as exc:
                mirror_error = str(exc)
                LOGGER.warning("Mirror copy of %s failed: %s", destination.name, exc)
        _write_backup_metadata(
            metadata_path,
            {
                "last_backup_month": current_month,
                "last_backup_at": now.isoformat(timespec="seconds"),
                "last_backup_file": destination.name,
                "mirror_dir": str(mirror_dir) if mirror_dir is not None else "",
                "mirror_error": mirror_error or "",
            },
        )
        _prune_backups(backup_dir, retention, prefix)
        if mirror_error:
            return destination, f"Mirror backup copy failed: {mirror_error}"
        return destination, None
    except Exception as exc:
        LOGGER.exception("Monthly backup failed")
        return None, str(exc)


def get_backup_status(backup_dir: Path) -> dict[str, str]:
    metadata = _load_backup_metadata(backup_dir / "backup_metadata.json")
    if not metadata:
        return {}
    last_backup_at = metadata.get("last_backup_at", "")
    try:
        if last_backup_at:
            last_backup_at = datetime.fromisoformat(last_backup_at).strftime(
                "%Y-%m-%d %H:%M:%S"
            )
    except ValueError:
        pass
    return {
        "last_backup_at": last_backup_at,
        "last_backup_file": metadata.get("last_backup_file", ""),
        "backup_dir": str(backup_dir),
        "mirror_dir": metadata.get("mirror_dir", ""),
        "mirror_error": metadata.get("mirror_error", ""),
    }
