"""
Banking system container and FastAPI dependencies
"""

from typing import Optional, Tuple

from fastapi import Query, Request

from ..config import BankingConfig, get_config
from ..currency import Currency
from ..storage import StorageInterface, create_storage
from ..ledger_store import LedgerStore
from ..customers import CustomerManager
from ..accounts import AccountManager
from ..transactions import TransactionProcessor
from ..loans import LoanManager


class BankingSystem:
    """Banking system with all components wired to one storage backend"""

    def __init__(
        self,
        config: Optional[BankingConfig] = None,
        storage: Optional[StorageInterface] = None
    ):
        self.config = config or get_config()

        # Initialize storage
        if storage is None:
            storage = create_storage(
                self.config.storage_backend, self.config.database_path,
                lock_timeout=self.config.lock_timeout_seconds
            )
        self.storage = storage

        # Initialize core components
        self.ledger_store = LedgerStore(self.storage, lock_timeout=self.config.lock_timeout_seconds)
        self.customer_manager = CustomerManager(self.storage)
        self.account_manager = AccountManager(
            self.storage, self.ledger_store, self.customer_manager,
            default_currency=Currency.from_code(self.config.default_currency)
        )
        self.transaction_processor = TransactionProcessor(self.ledger_store)
        self.loan_manager = LoanManager(
            self.storage, self.ledger_store, self.customer_manager, self.account_manager,
            max_term_months=self.config.max_loan_term_months
        )

    def close(self) -> None:
        self.storage.close()


def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.banking_system


def get_pagination(
    request: Request,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1)
) -> Tuple[int, int]:
    """Resolve page and limit, applying the configured default and cap"""
    config = get_banking_system(request).config
    limit = min(limit or config.default_page_size, config.max_page_size)
    return page, limit
