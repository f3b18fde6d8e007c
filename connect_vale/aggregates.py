"""Derived figures and list views computed from a snapshot.

Everything here is pure: callers pass the customers and installations they
just loaded and get new objects back. Nothing is read from or written to the
database.
"""
from __future__ import annotations

from collections import OrderedDict
from typing import Iterable, Optional, Sequence, TypeVar

import pandas as pd

from .constants import CUSTOMERS_PER_PAGE, LATEST_INSTALLATIONS_LIMIT, PLANS, STATUS_LABELS
from .models import Customer, FinancialSummary, Installation, Page

T = TypeVar("T")

INSTALLATION_FRAME_COLUMNS = [
    "customer",
    "branch",
    "created_at",
    "total",
    "amount_1",
    "method_1",
    "amount_2",
    "method_2",
    "plan",
    "due_day",
]


def _created_sort_key(installation: Installation) -> tuple[str, int]:
    return (installation.created_at or "", installation.id or 0)


def valid_installations(
    customers: Iterable[Customer], installations: Iterable[Installation]
) -> list[Installation]:
    """Installations whose owner exists and is not canceled."""

    active_ids = {customer.id for customer in customers if customer.is_active}
    return [i for i in installations if i.customer_id in active_ids]


def compute_financial_aggregates(
    customers: Sequence[Customer], installations: Sequence[Installation]
) -> FinancialSummary:
    valid = valid_installations(customers, installations)
    grand_total = sum(i.total or 0.0 for i in valid)

    by_method: dict[str, float] = OrderedDict()
    for installation in valid:
        for method, amount in installation.payments:
            if method and amount:
                by_method[method] = by_method.get(method, 0.0) + amount

    by_branch: dict[str, float] = OrderedDict()
    for installation in valid:
        if installation.branch:
            by_branch[installation.branch] = (
                by_branch.get(installation.branch, 0.0) + (installation.total or 0.0)
            )

    latest = sorted(installations, key=_created_sort_key, reverse=True)[
        :LATEST_INSTALLATIONS_LIMIT
    ]

    return FinancialSummary(
        grand_total=grand_total,
        valid_installations=valid,
        totals_by_payment_method=dict(by_method),
        totals_by_branch=dict(by_branch),
        latest_installations=latest,
    )


def status_counts(customers: Iterable[Customer]) -> dict[str, int]:
    counts = {status: 0 for status in STATUS_LABELS}
    for customer in customers:
        counts[customer.status] = counts.get(customer.status, 0) + 1
    return counts


def filter_customers(
    customers: Iterable[Customer],
    *,
    text: str = "",
    branch: Optional[str] = None,
    due_day: Optional[str] = None,
) -> list[Customer]:
    """Client list filters; ``None`` for ``branch`` or ``due_day`` means all."""

    needle = (text or "").strip().lower()
    result = []
    for customer in customers:
        if needle and needle not in customer.name.lower():
            continue
        if branch is not None and customer.branch != branch:
            continue
        if due_day is not None and str(customer.due_day) != str(due_day):
            continue
        result.append(customer)
    return result


def filter_installations(
    installations: Iterable[Installation],
    *,
    branch: Optional[str] = None,
    payment_method: Optional[str] = None,
    plan: Optional[str] = None,
    due_day: Optional[str] = None,
) -> list[Installation]:
    result = []
    for installation in installations:
        if branch is not None and installation.branch != branch:
            continue
        if payment_method is not None and payment_method not in (
            installation.method_1,
            installation.method_2,
        ):
            continue
        if plan is not None and installation.plan != plan:
            continue
        if due_day is not None and str(installation.due_day) != str(due_day):
            continue
        result.append(installation)
    return result


def paginate(items: Sequence[T], page: int = 1, per_page: int = CUSTOMERS_PER_PAGE) -> Page:
    if per_page <= 0:
        raise ValueError("per_page must be positive")
    total_items = len(items)
    last_page = max(1, -(-total_items // per_page))
    page = min(max(1, page), last_page)
    start = (page - 1) * per_page
    return Page(
        items=list(items[start : start + per_page]),
        page=page,
        per_page=per_page,
        total_items=total_items,
    )


def installations_frame(
    customers: Sequence[Customer], installations: Sequence[Installation]
) -> pd.DataFrame:
    """Valid installations as a flat table joined with customer names.

    This is the table the PDF and spreadsheet exporters format.
    """

    names = {customer.id: customer.name for customer in customers}
    rows = [
        {
            "customer": names.get(installation.customer_id, ""),
            "branch": installation.branch,
            "created_at": installation.created_at,
            "total": installation.total,
            "amount_1": installation.amount_1,
            "method_1": installation.method_1,
            "amount_2": installation.amount_2,
            "method_2": installation.method_2,
            "plan": PLANS.get(installation.plan, installation.plan),
            "due_day": installation.due_day,
        }
        for installation in valid_installations(customers, installations)
    ]
    df = pd.DataFrame(rows, columns=INSTALLATION_FRAME_COLUMNS)
    if not df.empty:
        df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce", utc=True)
    return df
