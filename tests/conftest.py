from itertools import count
from pathlib import Path

import pytest

from connect_vale import AppConfig, DataStore, Database


def build_config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        data_dir=tmp_path,
        db_url=f"sqlite:///{tmp_path / 'test.db'}",
        backup_dir=tmp_path / "backups",
        backup_retention=3,
        backup_mirror_dir=None,
        default_branches=("Iporanga", "Rio Preto", "Juquiaguassu"),
    )


@pytest.fixture()
def config(tmp_path):
    return build_config(tmp_path)


@pytest.fixture()
def clock():
    ticks = count(1)

    def _now() -> str:
        return f"2024-05-01T12:00:{next(ticks):02d}.000+00:00"

    return _now


@pytest.fixture()
def store(config, clock):
    data_store = DataStore(
        Database.from_config(config),
        default_branches=config.default_branches,
        clock=clock,
    )
    data_store.initialize()
    return data_store


@pytest.fixture()
def make_customer(store):
    def _make(name="Alice", branch="Iporanga", plan="start", due_day="10"):
        return store.save_customer(
            {"name": name, "branch": branch, "plan": plan, "due_day": due_day}
        )

    return _make
