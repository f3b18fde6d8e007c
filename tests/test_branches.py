import pytest

from connect_vale import ConflictError, NotFoundError, Settings, ValidationError


def test_add_branch_appends_in_order(store):
    settings = store.add_branch("  Registro ")
    assert settings.branches[-1] == "Registro"

    with pytest.raises(ConflictError):
        store.add_branch("Registro")
    with pytest.raises(ValidationError):
        store.add_branch("   ")


def test_remove_unreferenced_branch(store):
    before = store.load_snapshot().settings.branches

    settings = store.remove_branch("Juquiaguassu")

    assert len(settings.branches) == len(before) - 1
    assert "Juquiaguassu" not in store.load_snapshot().settings.branches


def test_remove_referenced_branch_reports_count(store, make_customer):
    make_customer("A", "Rio Preto")
    make_customer("B", "Rio Preto")

    with pytest.raises(ConflictError) as excinfo:
        store.remove_branch("Rio Preto")

    assert excinfo.value.count == 2
    assert "Rio Preto" in store.load_snapshot().settings.branches


def test_remove_unknown_branch(store):
    with pytest.raises(NotFoundError):
        store.remove_branch("Atlantis")


def test_migrate_and_remove_branch(store, make_customer):
    ids = [make_customer(name, "Iporanga").id for name in ("One", "Two", "Three")]

    settings = store.migrate_and_remove_branch("Iporanga", "Rio Preto", ids)

    assert "Iporanga" not in settings.branches
    snapshot = store.load_snapshot()
    assert {c.branch for c in snapshot.customers} == {"Rio Preto"}
    assert "Iporanga" not in snapshot.settings.branches


def test_migrate_leaves_branch_when_customers_remain(store, make_customer):
    moved = make_customer("One", "Iporanga")
    stays = make_customer("Two", "Iporanga")

    with pytest.raises(ConflictError) as excinfo:
        store.migrate_and_remove_branch("Iporanga", "Rio Preto", [moved.id])

    assert excinfo.value.count == 1
    assert store.get_customer(moved.id).branch == "Iporanga"
    assert store.get_customer(stays.id).branch == "Iporanga"
    assert "Iporanga" in store.load_snapshot().settings.branches


def test_migrate_rolls_back_on_missing_customer(store, make_customer):
    customer = make_customer("One", "Iporanga")

    with pytest.raises(NotFoundError):
        store.migrate_and_remove_branch("Iporanga", "Rio Preto", [customer.id, 999])

    assert store.get_customer(customer.id).branch == "Iporanga"
    assert "Iporanga" in store.load_snapshot().settings.branches


def test_migrate_rolls_back_on_name_clash(store, make_customer):
    moving = make_customer("Same", "Iporanga")
    make_customer("Same", "Rio Preto")

    with pytest.raises(ConflictError):
        store.migrate_and_remove_branch("Iporanga", "Rio Preto", [moving.id])

    assert store.get_customer(moving.id).branch == "Iporanga"
    assert "Iporanga" in store.load_snapshot().settings.branches


def test_migrate_rejects_customers_from_other_branches(store, make_customer):
    moving = make_customer("One", "Iporanga")
    elsewhere = make_customer("Two", "Juquiaguassu")

    with pytest.raises(ValidationError):
        store.migrate_and_remove_branch("Iporanga", "Rio Preto", [moving.id, elsewhere.id])

    assert store.get_customer(moving.id).branch == "Iporanga"
    assert store.get_customer(elsewhere.id).branch == "Juquiaguassu"
    assert "Iporanga" in store.load_snapshot().settings.branches


@pytest.mark.parametrize(
    "old, new, ids",
    [
        ("Iporanga", "Iporanga", [1]),
        ("Iporanga", "Atlantis", [1]),
        ("Iporanga", "Rio Preto", []),
    ],
)
def test_migrate_preconditions(store, make_customer, old, new, ids):
    make_customer("One", "Iporanga")
    with pytest.raises(ValidationError):
        store.migrate_and_remove_branch(old, new, ids)
    assert "Iporanga" in store.load_snapshot().settings.branches


def test_save_settings_replaces_record(store):
    saved = store.save_settings(Settings(branches=["North", "South"], last_backup_at="2024-01-01T00:00:00Z"))

    settings = store.load_snapshot().settings
    assert settings == saved
    assert settings.branches == ["North", "South"]
    assert settings.last_backup_at == "2024-01-01T00:00:00Z"


def test_save_settings_rejects_duplicates(store):
    with pytest.raises(ValidationError):
        store.save_settings(Settings(branches=["North", "North"]))
    assert store.load_snapshot().settings.branches == ["Iporanga", "Rio Preto", "Juquiaguassu"]
