"""The local data store: every mutation the rendering layer may request.

Each public method runs inside a single SQLite transaction, so the cross
record rules hold even when a step fails halfway:

* recording a customer's first installation flips that customer from
  ``not-installed`` to ``installed`` in the same transaction;
* deleting a customer deletes its installations first;
* a branch leaves the settings only once no customer references it;
* a restore replaces customers, installations and settings all at once.

Callers never get a shared cache back; after a mutation they call
``load_snapshot()`` again.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from .backup_utils import build_bundle, validate_bundle
from .config import AppConfig
from .constants import (
    DEFAULT_BRANCHES,
    DUE_DAYS,
    PAYMENT_METHODS,
    PLANS,
    REQUIRED_CUSTOMER_FIELDS,
    REQUIRED_INSTALLATION_FIELDS,
    STATUS_CANCELED,
    STATUS_INSTALLED,
    STATUS_LABELS,
    STATUS_NOT_INSTALLED,
)
from .exceptions import ConflictError, NotFoundError, ValidationError
from .models import (
    Catalog,
    Customer,
    ImportResult,
    Installation,
    Settings,
    Snapshot,
    clean_text,
    coerce_amount,
    utc_now_iso,
)
from .repositories import (
    CustomerRepository,
    Database,
    InstallationRepository,
    SettingsRepository,
)

LOGGER = logging.getLogger(__name__)


def _field(data: Mapping[str, Any], key: str) -> Optional[str]:
    return clean_text(data.get(key))


class DataStore:
    def __init__(
        self,
        db: Database,
        *,
        default_branches: Iterable[str] = DEFAULT_BRANCHES,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.db = db
        self.default_branches = list(default_branches)
        self._clock = clock

    @classmethod
    def from_config(cls, config: AppConfig) -> "DataStore":
        store = cls(Database.from_config(config), default_branches=config.default_branches)
        store.initialize()
        return store

    # ------------------------------------------------------------------
    # Initialization and reads
    # ------------------------------------------------------------------

    def initialize(self) -> Settings:
        """Create the schema and the default settings record; safe to repeat."""

        self.db.init_schema()
        with self.db.begin() as conn:
            return self._settings(conn)

    def _settings(self, conn) -> Settings:
        repo = SettingsRepository(conn)
        settings = repo.get()
        if settings is None:
            settings = Settings(branches=list(self.default_branches), last_backup_at=None)
            repo.put(settings)
            LOGGER.info("Created default settings with branches %s", settings.branches)
        return settings

    def load_snapshot(self) -> Snapshot:
        with self.db.begin() as conn:
            settings = self._settings(conn)
            customers = CustomerRepository(conn).list_all()
            installations = InstallationRepository(conn).list_all()
        catalog = Catalog(
            branches=tuple(settings.branches),
            plans=dict(PLANS),
            due_days=DUE_DAYS,
            status_labels=dict(STATUS_LABELS),
            payment_methods=PAYMENT_METHODS,
        )
        return Snapshot(
            customers=customers,
            installations=installations,
            settings=settings,
            catalog=catalog,
        )

    def get_customer(self, customer_id: int) -> Customer:
        with self.db.connect() as conn:
            customer = CustomerRepository(conn).get(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        return customer

    def get_installation(self, installation_id: int) -> Installation:
        with self.db.connect() as conn:
            installation = InstallationRepository(conn).get(installation_id)
        if installation is None:
            raise NotFoundError("Installation", installation_id)
        return installation

    def installations_for(self, customer_id: int) -> list[Installation]:
        with self.db.connect() as conn:
            if CustomerRepository(conn).get(customer_id) is None:
                raise NotFoundError("Customer", customer_id)
            return InstallationRepository(conn).list_for_customer(customer_id)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def _validate_customer_fields(
        self,
        values: Mapping[str, Optional[str]],
        branches: list[str],
        required: Iterable[str] = REQUIRED_CUSTOMER_FIELDS,
    ) -> None:
        problems = [key for key in required if not values.get(key)]
        messages = []
        if problems:
            labels = [REQUIRED_CUSTOMER_FIELDS[key] for key in problems]
            messages.append(f"required: {', '.join(labels)}")
        branch, plan, due_day = values.get("branch"), values.get("plan"), values.get("due_day")
        if branch and branch not in branches:
            problems.append("branch")
            messages.append(f"branch {branch!r} is not configured")
        if plan and plan not in PLANS:
            problems.append("plan")
            messages.append(f"unknown plan {plan!r}")
        if due_day and due_day not in DUE_DAYS:
            problems.append("due_day")
            messages.append(f"invalid due day {due_day!r}")
        if problems:
            raise ValidationError(problems, "Invalid customer: " + "; ".join(messages))

    def save_customer(
        self, data: Mapping[str, Any], customer_id: Optional[int] = None
    ) -> Customer:
        """Create a customer, or update one in place when ``customer_id`` is given.

        Status is never taken from ``data``: new customers start as
        ``not-installed`` and updates keep whatever status the record had.
        """

        values = {key: _field(data, key) for key in REQUIRED_CUSTOMER_FIELDS}
        with self.db.begin() as conn:
            settings = self._settings(conn)
            self._validate_customer_fields(values, settings.branches)
            repo = CustomerRepository(conn)
            clash = repo.find_by_name_branch(values["name"], values["branch"])
            if clash is not None and clash.id != customer_id:
                raise ConflictError(
                    f"A customer named {values['name']!r} already exists in branch {values['branch']!r}"
                )
            if customer_id is not None:
                existing = repo.get(customer_id)
                if existing is None:
                    raise NotFoundError("Customer", customer_id)
                existing.name = values["name"]
                existing.branch = values["branch"]
                existing.plan = values["plan"]
                existing.due_day = values["due_day"]
                customer = repo.update(existing)
                LOGGER.info("Updated customer %s", customer.id)
            else:
                customer = repo.insert(
                    Customer(
                        id=None,
                        name=values["name"],
                        branch=values["branch"],
                        plan=values["plan"],
                        due_day=values["due_day"],
                        status=STATUS_NOT_INSTALLED,
                        created_at=self._clock(),
                    )
                )
                LOGGER.info("Created customer %s (%s)", customer.id, customer.name)
        return customer

    def import_customers(
        self, raw_names: str, branch: str, plan: str, due_day: str
    ) -> ImportResult:
        """Create one ``not-installed`` customer per non-blank line.

        Lines whose name already exists in ``branch`` (including earlier lines
        of the same block) are skipped and listed in ``ImportResult.failed``;
        the remaining lines are still created. A block with no names creates
        nothing and returns an empty result.
        """

        shared = {
            "branch": clean_text(branch),
            "plan": clean_text(plan),
            "due_day": clean_text(due_day),
        }
        names = [line.strip() for line in (raw_names or "").splitlines() if line.strip()]
        result = ImportResult()
        with self.db.begin() as conn:
            settings = self._settings(conn)
            self._validate_customer_fields(shared, settings.branches, required=shared)
            repo = CustomerRepository(conn)
            for name in names:
                if repo.find_by_name_branch(name, shared["branch"]) is not None:
                    result.failed.append(name)
                    continue
                customer = repo.insert(
                    Customer(
                        id=None,
                        name=name,
                        branch=shared["branch"],
                        plan=shared["plan"],
                        due_day=shared["due_day"],
                        status=STATUS_NOT_INSTALLED,
                        created_at=self._clock(),
                    )
                )
                result.created_ids.append(customer.id)
                result.created += 1
        LOGGER.info(
            "Imported %d customers into %s (%d skipped)",
            result.created,
            shared["branch"],
            len(result.failed),
        )
        return result

    def cancel_customer(self, customer_id: int) -> Customer:
        with self.db.begin() as conn:
            repo = CustomerRepository(conn)
            customer = repo.get(customer_id)
            if customer is None:
                raise NotFoundError("Customer", customer_id)
            if customer.status != STATUS_CANCELED:
                repo.set_status(customer_id, STATUS_CANCELED)
                customer.status = STATUS_CANCELED
                LOGGER.info("Canceled customer %s", customer_id)
        return customer

    def delete_customer(self, customer_id: int) -> int:
        """Hard-delete a customer and its installations; returns installations removed."""

        with self.db.begin() as conn:
            customers = CustomerRepository(conn)
            if customers.get(customer_id) is None:
                raise NotFoundError("Customer", customer_id)
            removed = InstallationRepository(conn).delete_for_customer(customer_id)
            customers.delete(customer_id)
        LOGGER.info("Deleted customer %s and %d installations", customer_id, removed)
        return removed

    # ------------------------------------------------------------------
    # Installations
    # ------------------------------------------------------------------

    def save_installation(
        self,
        data: Mapping[str, Any],
        customer_id: int,
        installation_id: Optional[int] = None,
    ) -> Installation:
        values = {key: _field(data, key) for key in REQUIRED_INSTALLATION_FIELDS}
        missing = [key for key in REQUIRED_INSTALLATION_FIELDS if not values[key]]
        method_1 = _field(data, "method_1")
        method_2 = _field(data, "method_2")
        bad_methods = [
            key
            for key, method in (("method_1", method_1), ("method_2", method_2))
            if method and method not in PAYMENT_METHODS
        ]
        if missing or bad_methods:
            raise ValidationError(missing + bad_methods)

        amount_1 = coerce_amount(data.get("amount_1"))
        amount_2 = coerce_amount(data.get("amount_2"))

        with self.db.begin() as conn:
            customers = CustomerRepository(conn)
            installations = InstallationRepository(conn)
            owner = customers.get(customer_id)
            if owner is None:
                raise NotFoundError("Customer", customer_id)

            installation = Installation(
                id=installation_id,
                customer_id=customer_id,
                branch=values["branch"],
                plan=values["plan"],
                due_day=values["due_day"],
                method_1=method_1,
                amount_1=amount_1,
                method_2=method_2,
                amount_2=amount_2,
                total=amount_1 + amount_2,
            )
            if installation_id is not None:
                existing = installations.get(installation_id)
                if existing is None:
                    raise NotFoundError("Installation", installation_id)
                installation.created_at = existing.created_at
                installations.update(installation)
                LOGGER.info("Updated installation %s", installation_id)
            else:
                installation.created_at = self._clock()
                installations.insert(installation)
                if owner.status == STATUS_NOT_INSTALLED:
                    customers.set_status(customer_id, STATUS_INSTALLED)
                LOGGER.info(
                    "Recorded installation %s for customer %s (total %.2f)",
                    installation.id,
                    customer_id,
                    installation.total,
                )
        return installation

    # ------------------------------------------------------------------
    # Settings and branches
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_branches(branches: list[str]) -> None:
        blanks = [b for b in branches if not clean_text(b)]
        if blanks:
            raise ValidationError(["branches"], "Branch names must not be blank")
        duplicates = sorted({b for b in branches if branches.count(b) > 1})
        if duplicates:
            raise ValidationError(
                ["branches"], f"Duplicate branch names: {', '.join(duplicates)}"
            )

    def save_settings(self, settings: Settings) -> Settings:
        """Replace the whole settings record."""

        replacement = Settings(
            branches=[b.strip() for b in settings.branches],
            last_backup_at=settings.last_backup_at,
        )
        self._validate_branches(replacement.branches)
        with self.db.begin() as conn:
            SettingsRepository(conn).put(replacement)
        return replacement

    def add_branch(self, name: str) -> Settings:
        branch = clean_text(name)
        if not branch:
            raise ValidationError(["branch"], "Branch name is required")
        with self.db.begin() as conn:
            repo = SettingsRepository(conn)
            settings = self._settings(conn)
            if branch in settings.branches:
                raise ConflictError(f"Branch {branch!r} already exists")
            settings.branches.append(branch)
            repo.put(settings)
        LOGGER.info("Added branch %s", branch)
        return settings

    def remove_branch(self, name: str) -> Settings:
        with self.db.begin() as conn:
            settings = self._settings(conn)
            if name not in settings.branches:
                raise NotFoundError("Branch", name)
            in_use = CustomerRepository(conn).count_by_branch(name)
            if in_use:
                raise ConflictError(
                    f"Cannot remove branch {name!r}: {in_use} customers still use it",
                    count=in_use,
                )
            settings.branches.remove(name)
            SettingsRepository(conn).put(settings)
        LOGGER.info("Removed branch %s", name)
        return settings

    def migrate_and_remove_branch(
        self, old_name: str, new_name: str, customer_ids: Iterable[int]
    ) -> Settings:
        """Move the listed customers to ``new_name``, then drop ``old_name``.

        Runs as one transaction: if any listed customer is missing or not on
        ``old_name``, clashes in the target branch, or customers are left
        behind on ``old_name``, nothing changes and the branch stays
        configured.
        """

        ids = list(dict.fromkeys(customer_ids))
        if not ids:
            raise ValidationError(["customer_ids"], "Select at least one customer to migrate")
        if old_name == new_name:
            raise ValidationError(["new_branch"], "Target branch must differ from the removed one")
        with self.db.begin() as conn:
            settings = self._settings(conn)
            if old_name not in settings.branches:
                raise NotFoundError("Branch", old_name)
            if new_name not in settings.branches:
                raise ValidationError(["new_branch"], f"Branch {new_name!r} is not configured")
            customers = CustomerRepository(conn)
            for customer_id in ids:
                customer = customers.get(customer_id)
                if customer is None:
                    raise NotFoundError("Customer", customer_id)
                if customer.branch != old_name:
                    raise ValidationError(
                        ["customer_ids"],
                        f"Customer {customer_id} is not in branch {old_name!r}",
                    )
            customers.set_branch(ids, new_name)
            remaining = customers.count_by_branch(old_name)
            if remaining:
                raise ConflictError(
                    f"Cannot remove branch {old_name!r}: {remaining} customers were not migrated",
                    count=remaining,
                )
            settings.branches.remove(old_name)
            SettingsRepository(conn).put(settings)
        LOGGER.info(
            "Migrated %d customers from %s to %s and removed %s",
            len(ids),
            old_name,
            new_name,
            old_name,
        )
        return settings

    # ------------------------------------------------------------------
    # Backup and restore
    # ------------------------------------------------------------------

    def record_backup(self, timestamp: Optional[str] = None) -> Settings:
        with self.db.begin() as conn:
            settings = self._settings(conn)
            settings.last_backup_at = timestamp or self._clock()
            SettingsRepository(conn).put(settings)
        return settings

    def export_snapshot(self, *, mark_backup: bool = False) -> dict[str, Any]:
        """Serialize every collection into a backup bundle.

        With ``mark_backup`` the settings' last backup timestamp is stamped
        after the bundle is built, so the bundle carries the previous value.
        """

        snapshot = self.load_snapshot()
        backup_date = self._clock()
        bundle = build_bundle(
            snapshot.customers,
            snapshot.installations,
            snapshot.settings,
            backup_date=backup_date,
        )
        if mark_backup:
            self.record_backup(backup_date)
        return bundle

    def import_snapshot(self, bundle: Mapping[str, Any]) -> Snapshot:
        """Replace all stored data with ``bundle``.

        The payload is validated in full before anything is deleted, and the
        delete-then-insert sequence runs in one transaction.
        """

        customers, installations, settings = validate_bundle(bundle)
        with self.db.begin() as conn:
            customer_repo = CustomerRepository(conn)
            installation_repo = InstallationRepository(conn)
            removed_installations = installation_repo.delete_all()
            removed_customers = customer_repo.delete_all()
            for customer in customers:
                customer.created_at = customer.created_at or self._clock()
                customer_repo.insert(customer)
            for installation in installations:
                installation.created_at = installation.created_at or self._clock()
                installation_repo.insert(installation)
            SettingsRepository(conn).put(settings)
        LOGGER.info(
            "Restored backup: replaced %d customers/%d installations with %d/%d",
            removed_customers,
            removed_installations,
            len(customers),
            len(installations),
        )
        return self.load_snapshot()
