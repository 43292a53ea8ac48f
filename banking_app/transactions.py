"""
Transaction Processing Engine

Applies deposits, withdrawals, transfers and payments to an account balance.
Each transaction reads the balance, checks the business rules, writes the new
balance and appends an immutable record of the before and after balances,
all inside a single unit of work on the ledger store.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union, TYPE_CHECKING
from enum import Enum

from .currency import MAX_AMOUNT, Money, Currency, to_decimal
from .storage import StorageRecord, paginate
from .identifiers import generate_transaction_id
from .exceptions import (
    BankingError, StorageError, InvalidTransactionTypeError, InvalidAmountError,
    AccountNotFoundError, AccountNotActiveError, InsufficientFundsError,
    BalanceLimitExceededError
)
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .ledger_store import LedgerStore, LedgerUnitOfWork


TRANSACTIONS_TABLE = "transactions"

# Attempts at drawing an unused transaction id before giving up
MAX_ID_ATTEMPTS = 5


class TransactionType(Enum):
    """Types of banking transactions"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    PAYMENT = "payment"

    @property
    def is_debit(self) -> bool:
        return self != TransactionType.DEPOSIT


@dataclass
class TransactionRecord(StorageRecord):
    """
    Immutable ledger entry for one processed transaction
    """
    account_id: str
    transaction_type: TransactionType
    amount: Money
    balance_before: Money
    balance_after: Money
    description: Optional[str] = None
    reference: Optional[str] = None  # Client supplied, opaque

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['transaction_type'] = self.transaction_type.value
        result['currency'] = self.amount.currency.code
        result['amount'] = str(self.amount.amount)
        result['balance_before'] = str(self.balance_before.amount)
        result['balance_after'] = str(self.balance_after.amount)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionRecord':
        currency = Currency[data['currency']]
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Money(Decimal(data['amount']), currency),
            balance_before=Money(Decimal(data['balance_before']), currency),
            balance_after=Money(Decimal(data['balance_after']), currency),
            description=data.get('description'),
            reference=data.get('reference')
        )


def parse_transaction_type(value: Union[str, TransactionType]) -> TransactionType:
    """Resolve a transaction type, matching the lowercase names exactly"""
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(value)
    except ValueError:
        raise InvalidTransactionTypeError(
            f"Invalid transaction type: {value!r}",
            details={
                "transaction_type": str(value),
                "allowed": [t.value for t in TransactionType]
            }
        )


def parse_amount(value: Any) -> Decimal:
    """Convert a request amount to a finite, strictly positive Decimal"""
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise InvalidAmountError(str(e), details={"amount": str(value)})
    if amount <= 0:
        raise InvalidAmountError("Amount must be greater than zero", details={"amount": str(value)})
    if not Money.within_limit(amount):
        raise InvalidAmountError(
            f"Amount must be less than {MAX_AMOUNT:,f}",
            details={"amount": str(value), "maximum": str(MAX_AMOUNT)}
        )
    return amount


def apply_balance_effect(balance: Money, transaction_type: TransactionType, amount: Money) -> Money:
    """
    Return the balance after applying one transaction.

    Deposits credit the balance. Withdrawals, transfers and payments debit it
    and need the balance to cover the amount; only the source account is
    touched.

    Raises:
        InsufficientFundsError: If a debit exceeds the balance
        BalanceLimitExceededError: If a credit would reach MAX_AMOUNT
    """
    if not transaction_type.is_debit:
        if not Money.within_limit(balance.amount + amount.amount):
            raise BalanceLimitExceededError(
                f"Deposit would take the balance past the maximum of {MAX_AMOUNT:,f}",
                details={
                    "balance": str(balance.amount),
                    "requested": str(amount.amount),
                    "currency": balance.currency.code
                }
            )
        return balance + amount

    if balance < amount:
        raise InsufficientFundsError(
            f"Insufficient funds: balance {balance.to_string()}, requested {amount.to_string()}",
            details={
                "balance": str(balance.amount),
                "requested": str(amount.amount),
                "currency": balance.currency.code
            }
        )
    return balance - amount


class TransactionProcessor:
    """
    Processes transactions against account balances
    """

    def __init__(self, ledger_store: 'LedgerStore'):
        self.ledger_store = ledger_store
        self.storage = ledger_store.storage
        self.transactions_table = TRANSACTIONS_TABLE
        self.logger = get_logger("banking_app.transactions")

    def process_transaction(
        self,
        account_id: str,
        transaction_type: Union[str, TransactionType],
        amount: Any,
        description: Optional[str] = None,
        reference: Optional[str] = None
    ) -> TransactionRecord:
        """
        Apply a transaction to an account and record it

        Args:
            account_id: Account to transact against
            transaction_type: deposit, withdrawal, transfer or payment
            amount: Positive amount in the account currency
            description: Free text description
            reference: Client reference, stored as given

        Returns:
            The persisted TransactionRecord

        Raises:
            InvalidTransactionTypeError, InvalidAmountError: Bad input, nothing read
            AccountNotFoundError, AccountNotActiveError, InsufficientFundsError,
            BalanceLimitExceededError: Rejected against the account, nothing written
            StorageError: Backend failure, nothing committed
        """
        resource = f"account:{account_id}"
        try:
            txn_type = parse_transaction_type(transaction_type)
            value = parse_amount(amount)

            record = self.ledger_store.run_atomic(
                lambda uow: self._apply(uow, account_id, txn_type, value, description, reference),
                account_id=account_id
            )
        except StorageError as e:
            log_action(
                self.logger, "error", f"Transaction failed: {e.message}",
                action="process_transaction", resource=resource,
                extra={"code": e.code, **e.details}, exc_info=True
            )
            raise
        except BankingError as e:
            log_action(
                self.logger, "warning", f"Transaction rejected: {e.message}",
                action="process_transaction", resource=resource,
                extra={"code": e.code, "transaction_type": str(transaction_type)}
            )
            raise

        log_action(
            self.logger, "info", f"Transaction processed: {record.transaction_type.value}",
            action="process_transaction", resource=resource,
            extra={
                "transaction_id": record.id,
                "amount": record.amount.to_string(),
                "balance_before": str(record.balance_before.amount),
                "balance_after": str(record.balance_after.amount)
            }
        )
        return record

    def _apply(
        self,
        uow: 'LedgerUnitOfWork',
        account_id: str,
        transaction_type: TransactionType,
        value: Decimal,
        description: Optional[str],
        reference: Optional[str]
    ) -> TransactionRecord:
        account = uow.get_account(account_id)
        if not account:
            raise AccountNotFoundError(
                f"Account {account_id} not found", details={"account_id": account_id}
            )
        if not account.is_active:
            raise AccountNotActiveError(
                f"Account {account_id} is {account.status.value}",
                details={"account_id": account_id, "status": account.status.value}
            )
        if not Money.fits_precision(value, account.currency):
            raise InvalidAmountError(
                f"Amount has more than {account.currency.precision} decimal places for {account.currency.code}",
                details={"amount": str(value), "currency": account.currency.code}
            )

        amount = Money(value, account.currency)
        balance_before = account.balance
        balance_after = apply_balance_effect(balance_before, transaction_type, amount)

        now = datetime.now(timezone.utc)
        record = TransactionRecord(
            id=self._new_transaction_id(uow),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=description,
            reference=reference
        )

        account.balance = balance_after
        account.updated_at = now
        uow.save_account(account)
        uow.create_transaction_record(record)
        return record

    def _new_transaction_id(self, uow: 'LedgerUnitOfWork') -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            transaction_id = generate_transaction_id()
            if uow.reserve_transaction_id(transaction_id):
                return transaction_id
        raise StorageError(
            "Could not allocate a unique transaction id",
            details={"attempts": MAX_ID_ATTEMPTS}
        )

    def get_transaction(self, transaction_id: str) -> Optional[TransactionRecord]:
        """Get transaction by ID"""
        data = self.storage.load(self.transactions_table, transaction_id)
        if data:
            return TransactionRecord.from_dict(data)
        return None

    def list_transactions(
        self,
        account_id: Optional[str] = None,
        transaction_type: Optional[Union[str, TransactionType]] = None,
        page: int = 1,
        limit: int = 10
    ) -> Tuple[List[TransactionRecord], int]:
        """List transactions newest first, optionally filtered by account and type"""
        filters: Dict[str, Any] = {}
        if account_id:
            filters['account_id'] = account_id
        if transaction_type:
            filters['transaction_type'] = parse_transaction_type(transaction_type).value
        return paginate(self._find(filters), page, limit)

    def get_account_transactions(self, account_id: str) -> List[TransactionRecord]:
        """Get every transaction for an account, newest first"""
        return self._find({"account_id": account_id})

    def _find(self, filters: Dict[str, Any]) -> List[TransactionRecord]:
        records = [
            TransactionRecord.from_dict(data)
            for data in self.storage.find(self.transactions_table, filters)
        ]
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return records
