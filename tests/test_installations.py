import pytest

from connect_vale import NotFoundError, ValidationError
from connect_vale.constants import STATUS_CANCELED, STATUS_INSTALLED, STATUS_NOT_INSTALLED

BASE = {"branch": "Iporanga", "plan": "start", "due_day": "10"}


def test_first_installation_marks_customer_installed(store, make_customer):
    customer = make_customer()
    assert customer.status == STATUS_NOT_INSTALLED

    installation = store.save_installation(
        {**BASE, "method_1": "Cash", "amount_1": 100, "method_2": "PIX", "amount_2": "50.5"},
        customer.id,
    )

    assert installation.id is not None
    assert installation.customer_id == customer.id
    assert installation.total == pytest.approx(150.5)
    assert store.get_customer(customer.id).status == STATUS_INSTALLED


@pytest.mark.parametrize(
    "amount_1, amount_2, expected",
    [
        (150, None, 150.0),
        ("abc", 20, 20.0),
        ("1,200.50", "", 1200.5),
        ("179,90", None, 179.9),
        ("150abc", " 2,5 ", 152.5),
        ("R$ 90", "-", 0.0),
        (None, None, 0.0),
        (float("nan"), 10, 10.0),
    ],
)
def test_total_coerces_invalid_amounts_to_zero(store, make_customer, amount_1, amount_2, expected):
    customer = make_customer()
    data = {**BASE, "amount_1": amount_1}
    if amount_2 is not None:
        data["amount_2"] = amount_2

    installation = store.save_installation(data, customer.id)

    assert installation.total == pytest.approx(expected)
    assert store.get_installation(installation.id).total == pytest.approx(expected)


def test_total_ignores_caller_supplied_total(store, make_customer):
    customer = make_customer()
    installation = store.save_installation({**BASE, "amount_1": 10, "total": 999}, customer.id)
    assert installation.total == 10


def test_update_keeps_customer_status_and_created_at(store, make_customer):
    customer = make_customer()
    original = store.save_installation({**BASE, "method_1": "Cash", "amount_1": 100}, customer.id)
    store.cancel_customer(customer.id)

    updated = store.save_installation(
        {**BASE, "method_1": "Boleto", "amount_1": 80, "method_2": "PIX", "amount_2": 40},
        customer.id,
        original.id,
    )

    assert updated.id == original.id
    assert updated.total == 120
    assert updated.created_at == original.created_at
    assert store.get_customer(customer.id).status == STATUS_CANCELED
    assert len(store.installations_for(customer.id)) == 1


def test_canceled_customer_is_not_reactivated(store, make_customer):
    customer = make_customer()
    store.cancel_customer(customer.id)

    store.save_installation({**BASE, "amount_1": 100}, customer.id)

    assert store.get_customer(customer.id).status == STATUS_CANCELED


def test_installation_for_unknown_customer(store):
    with pytest.raises(NotFoundError):
        store.save_installation({**BASE, "amount_1": 10}, 404)
    assert store.load_snapshot().installations == []


def test_update_of_missing_installation(store, make_customer):
    customer = make_customer()
    with pytest.raises(NotFoundError):
        store.save_installation({**BASE, "amount_1": 10}, customer.id, 77)
    assert store.get_customer(customer.id).status == STATUS_NOT_INSTALLED


def test_installation_validation(store, make_customer):
    customer = make_customer()
    with pytest.raises(ValidationError) as excinfo:
        store.save_installation({"branch": "", "plan": "start", "method_1": "Crypto"}, customer.id)

    assert excinfo.value.fields == ["branch", "due_day", "method_1"]
    assert store.get_customer(customer.id).status == STATUS_NOT_INSTALLED
