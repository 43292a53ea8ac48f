"""
Tests for the ledger store unit of work
"""

import threading
import time
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from banking_app.currency import Money, Currency
from banking_app.storage import InMemoryStorage, SQLiteStorage
from banking_app.ledger_store import LedgerStore
from banking_app.accounts import Account, AccountType
from banking_app.exceptions import StorageError, InsufficientFundsError


def make_account(account_id="acc-1", balance="100.00"):
    now = datetime.now(timezone.utc)
    return Account(
        id=account_id,
        created_at=now,
        updated_at=now,
        account_number="ACC20250101000000001",
        customer_id="cust-1",
        account_type=AccountType.CHECKING,
        currency=Currency.USD,
        balance=Money(Decimal(balance), Currency.USD)
    )


class BrokenStorage(InMemoryStorage):
    """Storage whose saves fail with a driver-style error"""

    def save(self, table, record_id, data):
        raise OSError("connection reset")


class TestLedgerStore:
    """Test atomic account work"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.ledger_store = LedgerStore(self.storage, lock_timeout=0.05)
        self.ledger_store.run_atomic(lambda uow: uow.save_account(make_account()))

    def test_run_atomic_commits_and_returns_result(self):
        def work(uow):
            account = uow.get_account("acc-1")
            account.balance = Money(Decimal("75.00"), Currency.USD)
            uow.save_account(account)
            return account.balance

        assert self.ledger_store.run_atomic(work, account_id="acc-1").amount == Decimal("75.00")
        assert self.ledger_store.get_account("acc-1").balance.amount == Decimal("75.00")

    def test_domain_error_rolls_back_and_propagates(self):
        def work(uow):
            account = uow.get_account("acc-1")
            account.balance = Money(Decimal("0.00"), Currency.USD)
            uow.save_account(account)
            raise InsufficientFundsError("no")

        with pytest.raises(InsufficientFundsError):
            self.ledger_store.run_atomic(work, account_id="acc-1")

        assert self.ledger_store.get_account("acc-1").balance.amount == Decimal("100.00")

    def test_storage_exceptions_become_storage_errors(self):
        ledger_store = LedgerStore(BrokenStorage())

        with pytest.raises(StorageError) as exc_info:
            ledger_store.run_atomic(lambda uow: uow.save_account(make_account()))

        assert exc_info.value.details["operation"] == "save_account"
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_soft_deleted_account_is_invisible(self):
        account = make_account("acc-2")
        account.deleted_at = datetime.now(timezone.utc)
        self.ledger_store.run_atomic(lambda uow: uow.save_account(account))

        assert self.ledger_store.get_account("acc-2") is None

    def test_lock_timeout_raises_storage_error(self):
        held = threading.Event()
        release = threading.Event()

        def holder():
            with self.ledger_store.unit_of_work("acc-1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            with pytest.raises(StorageError):
                with self.ledger_store.unit_of_work("acc-1"):
                    pass
        finally:
            release.set()
            thread.join(5)

    def test_sqlite_lock_timeout_covers_other_accounts(self):
        ledger_store = LedgerStore(SQLiteStorage(":memory:"), lock_timeout=0.05)
        ledger_store.run_atomic(lambda uow: uow.save_account(make_account("acc-1")))
        ledger_store.run_atomic(lambda uow: uow.save_account(make_account("acc-2")))
        held = threading.Event()
        release = threading.Event()

        def holder():
            with ledger_store.unit_of_work("acc-1"):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(5)
        try:
            started = time.monotonic()
            with pytest.raises(StorageError):
                with ledger_store.unit_of_work("acc-2"):
                    pass
            assert time.monotonic() - started < 2
        finally:
            release.set()
            thread.join(5)

        assert ledger_store.run_atomic(lambda uow: uow.get_account("acc-2"), account_id="acc-2").id == "acc-2"

    def test_transaction_id_reservation(self):
        with self.ledger_store.unit_of_work() as first:
            assert first.reserve_transaction_id("TXN1")

            # A concurrent unit cannot take the same id
            assert not threading_result(
                lambda: self.ledger_store.run_atomic(lambda uow: uow.reserve_transaction_id("TXN1"))
            )

        # Released once the first unit ends without storing the id
        assert self.ledger_store.run_atomic(lambda uow: uow.reserve_transaction_id("TXN1"))


def threading_result(fn):
    result = []
    thread = threading.Thread(target=lambda: result.append(fn()))
    thread.start()
    thread.join(5)
    return result[0]
