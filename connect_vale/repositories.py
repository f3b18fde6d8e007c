"""SQLite persistence for customers, installations and settings."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .config import AppConfig
from .constants import SETTINGS_KEY
from .exceptions import ConflictError, StorageError
from .models import Customer, Installation, Settings

LOGGER = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS customers (
    customer_id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    branch TEXT NOT NULL,
    plan TEXT NOT NULL,
    due_day TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'not-installed',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_customers_name ON customers(name);
CREATE UNIQUE INDEX IF NOT EXISTS idx_customers_name_branch ON customers(name, branch);
CREATE TABLE IF NOT EXISTS installations (
    installation_id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER NOT NULL,
    branch TEXT,
    plan TEXT,
    due_day TEXT,
    method_1 TEXT,
    amount_1 REAL DEFAULT 0,
    method_2 TEXT,
    amount_2 REAL DEFAULT 0,
    total REAL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_installations_customer_id ON installations(customer_id);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass
class Database:
    db_path: Path

    @classmethod
    def from_config(cls, config: AppConfig) -> "Database":
        if not config.db_url.startswith("sqlite:"):
            raise ValueError("Only SQLite URLs are supported by the record store.")
        db_path = config.db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(db_path=db_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA busy_timeout = 30000")
            yield conn
        except sqlite3.Error as exc:
            LOGGER.error("SQLite failure on %s: %s", self.db_path, exc)
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def begin(self) -> Iterator[sqlite3.Connection]:
        """Run the block inside one write transaction; any error rolls it back."""

        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def init_schema(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA_SQL)


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "unique" in str(exc).lower()


class CustomerRepository:
    """CRUD statements for the ``customers`` table on a shared connection."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get(self, customer_id: int) -> Optional[Customer]:
        row = self._conn.execute(
            "SELECT * FROM customers WHERE customer_id=?", (customer_id,)
        ).fetchone()
        return Customer.from_row(row) if row else None

    def list_all(self) -> list[Customer]:
        rows = self._conn.execute("SELECT * FROM customers ORDER BY customer_id").fetchall()
        return [Customer.from_row(row) for row in rows]

    def find_by_name_branch(self, name: str, branch: str) -> Optional[Customer]:
        row = self._conn.execute(
            "SELECT * FROM customers WHERE name=? AND branch=?", (name, branch)
        ).fetchone()
        return Customer.from_row(row) if row else None

    def count_by_branch(self, branch: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM customers WHERE branch=?", (branch,)
        ).fetchone()
        return row[0] if row else 0

    def insert(self, customer: Customer) -> Customer:
        try:
            cur = self._conn.execute(
                """
                INSERT INTO customers (customer_id, name, branch, plan, due_day, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    customer.id,
                    customer.name,
                    customer.branch,
                    customer.plan,
                    customer.due_day,
                    customer.status,
                    customer.created_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ConflictError(
                    f"A customer named {customer.name!r} already exists in branch {customer.branch!r}"
                ) from exc
            raise
        customer.id = cur.lastrowid
        return customer

    def update(self, customer: Customer) -> Customer:
        try:
            self._conn.execute(
                """
                UPDATE customers SET name=?, branch=?, plan=?, due_day=?, status=?
                WHERE customer_id=?
                """,
                (
                    customer.name,
                    customer.branch,
                    customer.plan,
                    customer.due_day,
                    customer.status,
                    customer.id,
                ),
            )
        except sqlite3.IntegrityError as exc:
            if _is_unique_violation(exc):
                raise ConflictError(
                    f"A customer named {customer.name!r} already exists in branch {customer.branch!r}"
                ) from exc
            raise
        return customer

    def set_status(self, customer_id: int, status: str) -> None:
        self._conn.execute(
            "UPDATE customers SET status=? WHERE customer_id=?", (status, customer_id)
        )

    def set_branch(self, customer_ids: Iterable[int], branch: str) -> int:
        changed = 0
        for customer_id in customer_ids:
            try:
                cur = self._conn.execute(
                    "UPDATE customers SET branch=? WHERE customer_id=?", (branch, customer_id)
                )
            except sqlite3.IntegrityError as exc:
                if _is_unique_violation(exc):
                    raise ConflictError(
                        f"Customer {customer_id} clashes with an existing name in branch {branch!r}"
                    ) from exc
                raise
            changed += cur.rowcount
        return changed

    def delete(self, customer_id: int) -> int:
        cur = self._conn.execute("DELETE FROM customers WHERE customer_id=?", (customer_id,))
        return cur.rowcount

    def delete_all(self) -> int:
        return self._conn.execute("DELETE FROM customers").rowcount


class InstallationRepository:
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def get(self, installation_id: int) -> Optional[Installation]:
        row = self._conn.execute(
            "SELECT * FROM installations WHERE installation_id=?", (installation_id,)
        ).fetchone()
        return Installation.from_row(row) if row else None

    def list_all(self) -> list[Installation]:
        rows = self._conn.execute(
            "SELECT * FROM installations ORDER BY installation_id"
        ).fetchall()
        return [Installation.from_row(row) for row in rows]

    def list_for_customer(self, customer_id: int) -> list[Installation]:
        rows = self._conn.execute(
            "SELECT * FROM installations WHERE customer_id=? ORDER BY installation_id",
            (customer_id,),
        ).fetchall()
        return [Installation.from_row(row) for row in rows]

    def insert(self, installation: Installation) -> Installation:
        cur = self._conn.execute(
            """
            INSERT INTO installations (
                installation_id, customer_id, branch, plan, due_day,
                method_1, amount_1, method_2, amount_2, total, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                installation.id,
                installation.customer_id,
                installation.branch,
                installation.plan,
                installation.due_day,
                installation.method_1,
                installation.amount_1,
                installation.method_2,
                installation.amount_2,
                installation.total,
                installation.created_at,
            ),
        )
        installation.id = cur.lastrowid
        return installation

    def update(self, installation: Installation) -> Installation:
        self._conn.execute(
            """
            UPDATE installations SET customer_id=?, branch=?, plan=?, due_day=?,
                method_1=?, amount_1=?, method_2=?, amount_2=?, total=?
            WHERE installation_id=?
            """,
            (
                installation.customer_id,
                installation.branch,
                installation.plan,
                installation.due_day,
                installation.method_1,
                installation.amount_1,
                installation.method_2,
                installation.amount_2,
                installation.total,
                installation.id,
            ),
        )
        return installation

    def delete_for_customer(self, customer_id: int) -> int:
        cur = self._conn.execute(
            "DELETE FROM installations WHERE customer_id=?", (customer_id,)
        )
        return cur.rowcount

    def delete_all(self) -> int:
        return self._conn.execute("DELETE FROM installations").rowcount


class SettingsRepository:
    """The singleton settings record, stored as JSON under a fixed key."""

    def __init__(self, conn: sqlite3.Connection, key: str = SETTINGS_KEY):
        self._conn = conn
        self._key = key

    def get(self) -> Optional[Settings]:
        row = self._conn.execute(
            "SELECT value FROM settings WHERE key=?", (self._key,)
        ).fetchone()
        if not row:
            return None
        try:
            payload = json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise StorageError(f"Settings record {self._key!r} is corrupt") from exc
        return Settings.from_record(payload)

    def put(self, settings: Settings) -> Settings:
        self._conn.execute(
            """
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (self._key, json.dumps(settings.to_record(), ensure_ascii=False)),
        )
        return settings
