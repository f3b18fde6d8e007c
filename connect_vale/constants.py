"""Fixed catalogs shared by the store and the rendering layer.

Branches are the only user-editable list; everything else here is a closed
table checked once when the module is imported.
"""
from __future__ import annotations

from collections import OrderedDict

BACKUP_FORMAT_VERSION = "ConnectValeDB_V5"
SETTINGS_KEY = "appSettings"

DEFAULT_BRANCHES: tuple[str, ...] = ("Iporanga", "Rio Preto", "Juquiaguassu")

PLANS = OrderedDict(
    [
        ("start", "Start - R$150"),
        ("master", "Master - R$179,90"),
    ]
)

DUE_DAYS: tuple[str, ...] = ("5", "10", "15", "20", "25", "30")

STATUS_NOT_INSTALLED = "not-installed"
STATUS_INSTALLED = "installed"
STATUS_CANCELED = "canceled"

STATUS_LABELS = OrderedDict(
    [
        (STATUS_NOT_INSTALLED, "Not installed"),
        (STATUS_INSTALLED, "Installed"),
        (STATUS_CANCELED, "Canceled"),
    ]
)

PAYMENT_METHODS: tuple[str, ...] = ("Cash", "PIX", "Boleto")

CUSTOMERS_PER_PAGE = 20
LATEST_INSTALLATIONS_LIMIT = 5

REQUIRED_CUSTOMER_FIELDS = OrderedDict(
    [
        ("name", "Name"),
        ("branch", "Branch"),
        ("plan", "Plan"),
        ("due_day", "Due day"),
    ]
)

REQUIRED_INSTALLATION_FIELDS = OrderedDict(
    [
        ("branch", "Branch"),
        ("plan", "Plan"),
        ("due_day", "Due day"),
    ]
)


def _check_unique(name: str, values) -> None:
    if len(set(values)) != len(tuple(values)):
        raise RuntimeError(f"{name} contains duplicate entries")


def _validate_catalogs() -> None:
    _check_unique("DEFAULT_BRANCHES", DEFAULT_BRANCHES)
    _check_unique("DUE_DAYS", DUE_DAYS)
    _check_unique("PAYMENT_METHODS", PAYMENT_METHODS)
    if not DEFAULT_BRANCHES:
        raise RuntimeError("At least one default branch is required")
    for day in DUE_DAYS:
        if not day.isdigit() or not 1 <= int(day) <= 31:
            raise RuntimeError(f"Invalid due day {day!r}")
    if set(STATUS_LABELS) != {STATUS_NOT_INSTALLED, STATUS_INSTALLED, STATUS_CANCELED}:
        raise RuntimeError("STATUS_LABELS must cover every customer status")


_validate_catalogs()
