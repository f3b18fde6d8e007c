import pandas as pd
import pytest

from connect_vale.aggregates import (
    compute_financial_aggregates,
    filter_customers,
    filter_installations,
    installations_frame,
    paginate,
    status_counts,
)
from connect_vale.constants import STATUS_CANCELED, STATUS_INSTALLED, STATUS_NOT_INSTALLED
from connect_vale.models import Customer, Installation


def _customer(cid, name, status=STATUS_INSTALLED, branch="Iporanga", due_day="10"):
    return Customer(id=cid, name=name, branch=branch, plan="start", due_day=due_day, status=status)


def _installation(iid, cid, total, *, branch="Iporanga", methods=("Cash", None), created=None):
    return Installation(
        id=iid,
        customer_id=cid,
        branch=branch,
        plan="start",
        due_day="10",
        method_1=methods[0],
        amount_1=total if methods[1] is None else total / 2,
        method_2=methods[1],
        amount_2=0.0 if methods[1] is None else total / 2,
        total=total,
        created_at=created or f"2024-05-0{iid}T10:00:00.000+00:00",
    )


def test_canceled_customers_are_excluded_from_totals():
    customers = [_customer(1, "Gone", STATUS_CANCELED), _customer(2, "Here")]
    installations = [_installation(1, 1, 100), _installation(2, 2, 200)]

    summary = compute_financial_aggregates(customers, installations)

    assert summary.grand_total == 200
    assert [i.id for i in summary.valid_installations] == [2]
    assert summary.totals_by_payment_method == {"Cash": 200}
    assert summary.totals_by_branch == {"Iporanga": 200}


def test_payment_slots_are_summed_independently():
    customers = [_customer(1, "A"), _customer(2, "B", branch="Rio Preto")]
    installations = [
        _installation(1, 1, 100, methods=("Cash", "PIX")),
        _installation(2, 2, 60, branch="Rio Preto", methods=("PIX", None)),
    ]

    summary = compute_financial_aggregates(customers, installations)

    assert summary.totals_by_payment_method == {"Cash": 50, "PIX": 110}
    assert summary.totals_by_branch == {"Iporanga": 100, "Rio Preto": 60}
    assert summary.grand_total == 160


def test_latest_installations_are_newest_first_and_capped():
    customers = [_customer(1, "A")]
    installations = [_installation(i, 1, 10) for i in range(1, 8)]

    summary = compute_financial_aggregates(customers, installations)

    assert [i.id for i in summary.latest_installations] == [7, 6, 5, 4, 3]


def test_status_counts_cover_every_status():
    customers = [
        _customer(1, "A", STATUS_NOT_INSTALLED),
        _customer(2, "B", STATUS_CANCELED),
        _customer(3, "C", STATUS_CANCELED),
    ]
    assert status_counts(customers) == {
        STATUS_NOT_INSTALLED: 1,
        STATUS_INSTALLED: 0,
        STATUS_CANCELED: 2,
    }


def test_filter_customers_by_text_branch_and_due_day():
    customers = [
        _customer(1, "Maria Silva"),
        _customer(2, "Mario", branch="Rio Preto"),
        _customer(3, "Joana", due_day="25"),
    ]

    assert [c.id for c in filter_customers(customers, text="MARI")] == [1, 2]
    assert [c.id for c in filter_customers(customers, branch="Rio Preto")] == [2]
    assert [c.id for c in filter_customers(customers, due_day=25)] == [3]
    assert filter_customers(customers) == customers


def test_filter_installations_matches_either_payment_slot():
    installations = [
        _installation(1, 1, 100, methods=("Cash", "PIX")),
        _installation(2, 1, 100, methods=("Boleto", None)),
    ]

    assert [i.id for i in filter_installations(installations, payment_method="PIX")] == [1]
    assert [i.id for i in filter_installations(installations, plan="master")] == []
    assert len(filter_installations(installations, branch="Iporanga", due_day="10")) == 2


def test_paginate_clamps_page_numbers():
    items = list(range(45))

    first = paginate(items, 1)
    last = paginate(items, 99)

    assert first.items == list(range(20))
    assert first.total_pages == 3
    assert first.has_next and not first.has_previous
    assert last.page == 3
    assert last.items == list(range(40, 45))
    assert not last.has_next

    empty = paginate([], 5)
    assert empty.page == 1 and empty.items == [] and empty.total_pages == 1

    with pytest.raises(ValueError):
        paginate(items, 1, per_page=0)


def test_installations_frame_joins_customer_names():
    customers = [_customer(1, "Ana"), _customer(2, "Gone", STATUS_CANCELED)]
    installations = [_installation(1, 1, 150), _installation(2, 2, 90)]

    df = installations_frame(customers, installations)

    assert list(df["customer"]) == ["Ana"]
    assert df.loc[0, "total"] == 150
    assert df.loc[0, "plan"].startswith("Start")
    assert pd.api.types.is_datetime64_any_dtype(df["created_at"])


def test_installations_frame_empty():
    df = installations_frame([], [])
    assert df.empty
    assert "customer" in df.columns
