"""
Account Management Module

Manages customer accounts: opening, status changes, balance lookups and
soft deletion. Balances only move through the transaction processor; this
module never changes a balance after the account is opened.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING
from enum import Enum
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord, paginate
from .customers import CustomerManager
from .identifiers import generate_account_number
from .exceptions import AccountNotFoundError, AccountHasBalanceError, ValidationError
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .ledger_store import LedgerStore


ACCOUNTS_TABLE = "accounts"


class AccountType(Enum):
    """Banking product types"""
    CHECKING = "checking"
    SAVINGS = "savings"
    LOAN = "loan"         # Paired with a loan; balance starts at -principal


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"        # Normal operation
    INACTIVE = "inactive"    # Dormant, no transactions
    FROZEN = "frozen"        # Temporarily suspended
    CLOSED = "closed"        # Permanently closed


@dataclass
class Account(StorageRecord):
    """
    Bank account holding a single-currency balance
    """
    account_number: str
    customer_id: str
    account_type: AccountType
    currency: Currency
    balance: Money
    status: AccountStatus = AccountStatus.ACTIVE
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")

    @property
    def is_active(self) -> bool:
        """Only active accounts may be transacted against"""
        return self.status == AccountStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


def account_to_dict(account: Account) -> Dict:
    """Convert Account to dictionary for storage"""
    result = account.to_dict()
    result['account_type'] = account.account_type.value
    result['currency'] = account.currency.code
    result['balance'] = str(account.balance.amount)
    result['status'] = account.status.value
    result['deleted_at'] = account.deleted_at.isoformat() if account.deleted_at else None
    return result


def account_from_dict(data: Dict) -> Account:
    """Convert dictionary to Account"""
    currency = Currency[data['currency']]
    deleted_at = data.get('deleted_at')

    return Account(
        id=data['id'],
        created_at=datetime.fromisoformat(data['created_at']),
        updated_at=datetime.fromisoformat(data['updated_at']),
        account_number=data['account_number'],
        customer_id=data['customer_id'],
        account_type=AccountType(data['account_type']),
        currency=currency,
        balance=Money(Decimal(data['balance']), currency),
        status=AccountStatus(data['status']),
        deleted_at=datetime.fromisoformat(deleted_at) if deleted_at else None
    )


class AccountManager:
    """
    Manages account lifecycle and balance lookups
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger_store: 'LedgerStore',
        customer_manager: CustomerManager,
        default_currency: Currency = Currency.USD
    ):
        self.storage = storage
        self.ledger_store = ledger_store
        self.customer_manager = customer_manager
        self.default_currency = default_currency
        self.accounts_table = ACCOUNTS_TABLE
        self.logger = get_logger("banking_app.accounts")

    def new_account(
        self,
        customer_id: str,
        account_type: AccountType,
        currency: Optional[Currency] = None,
        balance: Optional[Money] = None
    ) -> Account:
        """
        Build an unsaved account for an existing customer.

        Raises:
            CustomerNotFoundError: If the customer does not exist
        """
        self.customer_manager.require_customer(customer_id)

        currency = currency or self.default_currency
        now = datetime.now(timezone.utc)
        return Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number=generate_account_number(),
            customer_id=customer_id,
            account_type=account_type,
            currency=currency,
            balance=balance if balance is not None else Money.zero(currency)
        )

    def open_account(
        self,
        customer_id: str,
        account_type: AccountType,
        currency: Optional[Currency] = None
    ) -> Account:
        """
        Open a new active account with a zero balance

        Args:
            customer_id: ID of account owner
            account_type: Type of banking product
            currency: Account currency (configured default if not provided)

        Returns:
            Created Account object
        """
        if account_type == AccountType.LOAN:
            raise ValidationError(
                "Loan accounts are opened by loan origination",
                details={"account_type": account_type.value}
            )

        account = self.new_account(customer_id, account_type, currency)
        self.ledger_store.run_atomic(lambda uow: uow.save_account(account))

        log_action(
            self.logger, "info", "Account opened",
            action="open_account", resource=f"account:{account.id}",
            extra={
                "account_number": account.account_number,
                "customer_id": customer_id,
                "account_type": account_type.value,
                "currency": account.currency.code
            }
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        return self.ledger_store.get_account(account_id)

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise AccountNotFoundError(
                f"Account {account_id} not found", details={"account_id": account_id}
            )
        return account

    def get_balance(self, account_id: str) -> Money:
        """Get the current balance of an account"""
        return self.require_account(account_id).balance

    def get_customer_accounts(self, customer_id: str) -> List[Account]:
        """Get all live accounts for a customer"""
        accounts_data = self.storage.find(self.accounts_table, {"customer_id": customer_id})
        accounts = [account_from_dict(data) for data in accounts_data]
        return sorted(
            (a for a in accounts if not a.is_deleted), key=lambda a: a.created_at
        )

    def list_accounts(
        self,
        customer_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[Account], int]:
        """List live accounts, optionally for one customer"""
        if customer_id:
            accounts = self.get_customer_accounts(customer_id)
        else:
            accounts = sorted(
                (a for a in map(account_from_dict, self.storage.load_all(self.accounts_table))
                 if not a.is_deleted),
                key=lambda a: a.created_at
            )
        return paginate(accounts, page, limit)

    def update_account(
        self,
        account_id: str,
        account_type: Optional[AccountType] = None,
        status: Optional[AccountStatus] = None
    ) -> Account:
        """
        Change an account's type or status.

        Runs under the account's lock so it cannot interleave with a
        transaction on the same account.
        """
        with self.ledger_store.unit_of_work(account_id) as uow:
            account = uow.get_account(account_id)
            if not account:
                raise AccountNotFoundError(
                    f"Account {account_id} not found", details={"account_id": account_id}
                )
            old_status = account.status
            if account_type is not None:
                account.account_type = account_type
            if status is not None:
                account.status = status
            account.updated_at = datetime.now(timezone.utc)
            uow.save_account(account)

        log_action(
            self.logger, "info", "Account updated",
            action="update_account", resource=f"account:{account_id}",
            extra={"old_status": old_status.value, "new_status": account.status.value}
        )
        return account

    def delete_account(self, account_id: str) -> Account:
        """Close and soft delete an account; the balance must be zero"""
        with self.ledger_store.unit_of_work(account_id) as uow:
            account = uow.get_account(account_id)
            if not account:
                raise AccountNotFoundError(
                    f"Account {account_id} not found", details={"account_id": account_id}
                )
            if not account.balance.is_zero():
                raise AccountHasBalanceError(
                    f"Cannot delete account with non-zero balance: {account.balance.to_string()}",
                    details={"account_id": account_id, "balance": str(account.balance.amount)}
                )
            now = datetime.now(timezone.utc)
            account.status = AccountStatus.CLOSED
            account.deleted_at = now
            account.updated_at = now
            uow.save_account(account)

        log_action(
            self.logger, "info", "Account deleted",
            action="delete_account", resource=f"account:{account_id}"
        )
        return account
