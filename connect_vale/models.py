"""Record types exchanged between the store and its callers."""
from __future__ import annotations

import math
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .constants import STATUS_CANCELED, STATUS_NOT_INSTALLED


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def clean_text(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


_LEADING_NUMBER = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def coerce_amount(value: object, default: float = 0.0) -> float:
    """Return ``value`` as a finite float, or ``default`` when it is not a number.

    Text is read up to the first character that cannot belong to a number, so
    ``"150abc"`` is 150. A lone comma with no dot is the decimal separator
    (``"179,90"``); otherwise commas group thousands (``"1,200.50"``).
    """

    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        text = value.strip()
        if text.count(",") == 1 and "." not in text:
            text = text.replace(",", ".")
        else:
            text = text.replace(",", "")
        match = _LEADING_NUMBER.match(text)
        if match is None:
            return default
        value = match.group(0)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


@dataclass
class Customer:
    id: Optional[int]
    name: str
    branch: str
    plan: str
    due_day: str
    status: str = STATUS_NOT_INSTALLED
    created_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != STATUS_CANCELED

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Customer":
        return cls(
            id=row["customer_id"],
            name=row["name"],
            branch=row["branch"],
            plan=row["plan"],
            due_day=row["due_day"],
            status=row["status"],
            created_at=row["created_at"],
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "branch": self.branch,
            "plan": self.plan,
            "dueDay": self.due_day,
            "status": self.status,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Customer":
        raw_id = record.get("id")
        return cls(
            id=int(raw_id) if raw_id is not None else None,
            name=clean_text(record.get("name")) or "",
            branch=clean_text(record.get("branch")) or "",
            plan=clean_text(record.get("plan")) or "",
            due_day=clean_text(record.get("dueDay")) or "",
            status=clean_text(record.get("status")) or STATUS_NOT_INSTALLED,
            created_at=clean_text(record.get("createdAt")),
        )


@dataclass
class Installation:
    """A billable service activation with up to two payment entries."""

    id: Optional[int]
    customer_id: int
    branch: str
    plan: str
    due_day: str
    method_1: Optional[str] = None
    amount_1: float = 0.0
    method_2: Optional[str] = None
    amount_2: float = 0.0
    total: float = 0.0
    created_at: Optional[str] = None

    @property
    def payments(self) -> list[tuple[Optional[str], float]]:
        return [(self.method_1, self.amount_1), (self.method_2, self.amount_2)]

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Installation":
        return cls(
            id=row["installation_id"],
            customer_id=row["customer_id"],
            branch=row["branch"],
            plan=row["plan"],
            due_day=row["due_day"],
            method_1=row["method_1"],
            amount_1=row["amount_1"] or 0.0,
            method_2=row["method_2"],
            amount_2=row["amount_2"] or 0.0,
            total=row["total"] or 0.0,
            created_at=row["created_at"],
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "branch": self.branch,
            "plan": self.plan,
            "dueDay": self.due_day,
            "method1": self.method_1,
            "amount1": self.amount_1,
            "method2": self.method_2,
            "amount2": self.amount_2,
            "total": self.total,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Installation":
        raw_id = record.get("id")
        amount_1 = coerce_amount(record.get("amount1"))
        amount_2 = coerce_amount(record.get("amount2"))
        return cls(
            id=int(raw_id) if raw_id is not None else None,
            customer_id=int(record["customerId"]),
            branch=clean_text(record.get("branch")) or "",
            plan=clean_text(record.get("plan")) or "",
            due_day=clean_text(record.get("dueDay")) or "",
            method_1=clean_text(record.get("method1")),
            amount_1=amount_1,
            method_2=clean_text(record.get("method2")),
            amount_2=amount_2,
            total=amount_1 + amount_2,
            created_at=clean_text(record.get("createdAt")),
        )


@dataclass
class Settings:
    branches: list[str] = field(default_factory=list)
    last_backup_at: Optional[str] = None

    def to_record(self) -> dict[str, Any]:
        return {"branches": list(self.branches), "lastBackupTimestamp": self.last_backup_at}

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Settings":
        branches = record.get("branches") or []
        return cls(
            branches=[str(branch) for branch in branches],
            last_backup_at=clean_text(record.get("lastBackupTimestamp")),
        )


@dataclass(frozen=True)
class Catalog:
    """Enumerations the rendering layer needs to build its forms and filters."""

    branches: tuple[str, ...]
    plans: Mapping[str, str]
    due_days: tuple[str, ...]
    status_labels: Mapping[str, str]
    payment_methods: tuple[str, ...]


@dataclass(frozen=True)
class Snapshot:
    customers: list[Customer]
    installations: list[Installation]
    settings: Settings
    catalog: Catalog

    def customer(self, customer_id: int) -> Optional[Customer]:
        return next((c for c in self.customers if c.id == customer_id), None)

    @property
    def active_customers(self) -> list[Customer]:
        return [c for c in self.customers if c.is_active]


@dataclass(frozen=True)
class FinancialSummary:
    grand_total: float
    valid_installations: list[Installation]
    totals_by_payment_method: dict[str, float]
    totals_by_branch: dict[str, float]
    latest_installations: list[Installation]


@dataclass
class ImportResult:
    created: int = 0
    failed: list[str] = field(default_factory=list)
    created_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class Page:
    items: list[Any]
    page: int
    per_page: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_items / self.per_page))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages
