"""
Ledger Store Module

Transactional persistence for balance-changing work. A unit of work holds
the account's lock, opens a storage transaction and exposes the reads and
writes that must commit or abort together: the account row, the transaction
record and, for loan origination, the loan row.
"""

import threading
from contextlib import contextmanager, nullcontext
from typing import Callable, Iterator, Optional, Set, TypeVar

from .accounts import ACCOUNTS_TABLE, Account, account_from_dict, account_to_dict
from .transactions import TRANSACTIONS_TABLE, TransactionRecord
from .loans import LOANS_TABLE, Loan
from .storage import StorageInterface, KeyedLock
from .exceptions import BankingError, StorageError
from .logging_config import get_logger

T = TypeVar("T")


class LedgerUnitOfWork:
    """
    Handle passed to work running inside LedgerStore.unit_of_work.

    Storage failures surface as StorageError; nothing written through this
    handle is visible to other callers until the unit commits.
    """

    def __init__(self, storage: StorageInterface, reservations: Optional['IdReservations'] = None):
        self.storage = storage
        self.reservations = reservations
        self.reserved: Set[str] = set()

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except BankingError:
            raise
        except Exception as e:
            raise StorageError(
                f"Storage failure during {operation}: {e}",
                details={"operation": operation}
            ) from e

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self._call("get_account", lambda: self.storage.load(ACCOUNTS_TABLE, account_id))
        if not data:
            return None
        account = account_from_dict(data)
        if account.is_deleted:
            return None
        return account

    def save_account(self, account: Account) -> None:
        self._call(
            "save_account",
            lambda: self.storage.save(ACCOUNTS_TABLE, account.id, account_to_dict(account))
        )

    def create_transaction_record(self, record: TransactionRecord) -> None:
        """Insert a transaction record; an existing id is never overwritten"""
        self._call(
            "create_transaction_record",
            lambda: self.storage.insert(TRANSACTIONS_TABLE, record.id, record.to_dict())
        )

    def transaction_exists(self, transaction_id: str) -> bool:
        return self._call(
            "transaction_exists",
            lambda: self.storage.exists(TRANSACTIONS_TABLE, transaction_id)
        )

    def reserve_transaction_id(self, transaction_id: str) -> bool:
        """
        Claim an unused transaction id for this unit of work.

        Returns False if the id is stored already or claimed by another unit
        in this process.
        """
        if self.transaction_exists(transaction_id):
            return False
        if self.reservations is None:
            return True
        if not self.reservations.claim(transaction_id):
            return False
        self.reserved.add(transaction_id)
        return True

    def create_loan(self, loan: Loan) -> None:
        self._call("create_loan", lambda: self.storage.insert(LOANS_TABLE, loan.id, loan.to_dict()))

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self._call("get_loan", lambda: self.storage.load(LOANS_TABLE, loan_id))
        if not data:
            return None
        loan = Loan.from_dict(data)
        if loan.is_deleted:
            return None
        return loan

    def save_loan(self, loan: Loan) -> None:
        self._call("save_loan", lambda: self.storage.save(LOANS_TABLE, loan.id, loan.to_dict()))


class IdReservations:
    """Ids claimed by units of work that have not finished yet"""

    def __init__(self):
        self._lock = threading.Lock()
        self._claimed: Set[str] = set()

    def claim(self, record_id: str) -> bool:
        with self._lock:
            if record_id in self._claimed:
                return False
            self._claimed.add(record_id)
            return True

    def release(self, record_ids: Set[str]) -> None:
        with self._lock:
            self._claimed -= record_ids


class LedgerStore:
    """
    Entry point for atomic account work.

    Work on one account is serialized by a per-account lock; work on
    different accounts only meets at the storage backend.
    """

    def __init__(self, storage: StorageInterface, lock_timeout: Optional[float] = None):
        self.storage = storage
        self.lock_timeout = lock_timeout
        self.locks = KeyedLock(timeout=lock_timeout)
        self.reservations = IdReservations()
        self.logger = get_logger("banking_app.ledger_store")

    def get_account(self, account_id: str) -> Optional[Account]:
        """Read an account outside of any unit of work"""
        return LedgerUnitOfWork(self.storage).get_account(account_id)

    @contextmanager
    def unit_of_work(self, account_id: Optional[str] = None) -> Iterator[LedgerUnitOfWork]:
        """
        Open a unit of work, optionally holding the lock for account_id.

        Commits when the block exits normally and rolls back on any exception.
        """
        lock = self.locks.hold(f"account:{account_id}") if account_id else nullcontext()
        with lock:
            try:
                self.storage.begin_transaction(timeout=self.lock_timeout)
            except BankingError:
                raise
            except Exception as e:
                raise StorageError(f"Cannot begin transaction: {e}") from e

            uow = LedgerUnitOfWork(self.storage, self.reservations)
            try:
                try:
                    yield uow
                except BaseException:
                    self.storage.rollback()
                    raise

                try:
                    self.storage.commit()
                except BankingError:
                    raise
                except Exception as e:
                    self.logger.error(f"Commit failed for account {account_id}: {e}")
                    raise StorageError(f"Commit failed: {e}") from e
            finally:
                # Committed ids are now visible through storage
                self.reservations.release(uow.reserved)

    def run_atomic(self, fn: Callable[[LedgerUnitOfWork], T], account_id: Optional[str] = None) -> T:
        """Run fn inside a unit of work and return its result"""
        with self.unit_of_work(account_id) as uow:
            return fn(uow)
