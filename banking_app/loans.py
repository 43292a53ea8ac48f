"""
Loan Management Module

Loan origination and record keeping. Originating a loan creates the loan and
a paired loan account carrying the debt as a negative balance, in one unit
of work.
"""

import calendar
from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING
from enum import Enum
import uuid

from .currency import MAX_AMOUNT, Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord, paginate
from .accounts import AccountManager, AccountType
from .customers import CustomerManager
from .identifiers import generate_loan_number
from .exceptions import InvalidLoanParametersError, LoanNotFoundError
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .ledger_store import LedgerStore


LOANS_TABLE = "loans"


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    DEFAULTED = "defaulted"


@dataclass
class Loan(StorageRecord):
    """
    Amortizing loan with equal monthly installments
    """
    loan_number: str
    customer_id: str
    account_id: str
    principal_amount: Money
    interest_rate: Decimal  # Annual rate as a fraction, 0.05 = 5%
    term_months: int
    monthly_payment: Money
    remaining_balance: Money
    disbursement_date: date
    due_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    deleted_at: Optional[datetime] = None

    @property
    def currency(self) -> Currency:
        return self.principal_amount.currency

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['currency'] = self.currency.code
        result['principal_amount'] = str(self.principal_amount.amount)
        result['interest_rate'] = str(self.interest_rate)
        result['monthly_payment'] = str(self.monthly_payment.amount)
        result['remaining_balance'] = str(self.remaining_balance.amount)
        result['disbursement_date'] = self.disbursement_date.isoformat()
        result['due_date'] = self.due_date.isoformat()
        result['status'] = self.status.value
        result['deleted_at'] = self.deleted_at.isoformat() if self.deleted_at else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        currency = Currency[data['currency']]
        deleted_at = data.get('deleted_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            customer_id=data['customer_id'],
            account_id=data['account_id'],
            principal_amount=Money(Decimal(data['principal_amount']), currency),
            interest_rate=Decimal(data['interest_rate']),
            term_months=int(data['term_months']),
            monthly_payment=Money(Decimal(data['monthly_payment']), currency),
            remaining_balance=Money(Decimal(data['remaining_balance']), currency),
            disbursement_date=date.fromisoformat(data['disbursement_date']),
            due_date=date.fromisoformat(data['due_date']),
            status=LoanStatus(data['status']),
            deleted_at=datetime.fromisoformat(deleted_at) if deleted_at else None
        )


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the end of the target month"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calculate_monthly_payment(principal: Money, annual_rate: Decimal, term_months: int) -> Money:
    """
    Equal monthly installment for an amortizing loan.

    payment = P * r * (1 + r)^n / ((1 + r)^n - 1), with r = annual_rate / 12

    Raises:
        InvalidLoanParametersError: If the rate is too small to register in
            the 28 digit context or the payment is not a storable amount
    """
    try:
        monthly_rate = annual_rate / Decimal('12')
        growth = (Decimal('1') + monthly_rate) ** term_months
        payment = principal.amount * monthly_rate * growth / (growth - Decimal('1'))
    except ArithmeticError as e:
        raise InvalidLoanParametersError(
            "Monthly payment cannot be computed for these parameters",
            details={"interest_rate": str(annual_rate), "term_months": term_months, "error": type(e).__name__}
        )
    if not Money.within_limit(payment):
        raise InvalidLoanParametersError(
            "Monthly payment exceeds the largest storable amount",
            details={"interest_rate": str(annual_rate), "term_months": term_months}
        )
    return Money(payment, principal.currency)


class LoanManager:
    """
    Manages loan origination and loan records
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger_store: 'LedgerStore',
        customer_manager: CustomerManager,
        account_manager: AccountManager,
        max_term_months: int = 480
    ):
        self.storage = storage
        self.ledger_store = ledger_store
        self.customer_manager = customer_manager
        self.account_manager = account_manager
        self.max_term_months = max_term_months
        self.loans_table = LOANS_TABLE
        self.logger = get_logger("banking_app.loans")

    def originate_loan(
        self,
        customer_id: str,
        principal_amount: Any,
        interest_rate: Any,
        term_months: int,
        currency: Optional[Currency] = None
    ) -> Loan:
        """
        Originate a new loan and open its loan account

        Args:
            customer_id: Borrowing customer
            principal_amount: Amount lent, positive
            interest_rate: Annual interest rate as a fraction, positive
            term_months: Number of monthly installments
            currency: Loan currency (configured default if not provided)

        Returns:
            Created Loan object

        Raises:
            InvalidLoanParametersError: If principal, rate or term are out of range
            CustomerNotFoundError: If the customer does not exist
        """
        currency = currency or self.account_manager.default_currency
        principal = self._validate_parameters(principal_amount, interest_rate, term_months, currency)
        rate = to_decimal(interest_rate)

        account = self.account_manager.new_account(
            customer_id, AccountType.LOAN, currency, balance=-principal
        )

        now = datetime.now(timezone.utc)
        today = now.date()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_number=generate_loan_number(),
            customer_id=customer_id,
            account_id=account.id,
            principal_amount=principal,
            interest_rate=rate,
            term_months=term_months,
            monthly_payment=calculate_monthly_payment(principal, rate, term_months),
            remaining_balance=principal,
            disbursement_date=today,
            due_date=add_months(today, term_months)
        )

        def originate(uow):
            uow.create_loan(loan)
            uow.save_account(account)

        self.ledger_store.run_atomic(originate)

        log_action(
            self.logger, "info", "Loan originated",
            action="originate_loan", resource=f"loan:{loan.id}",
            extra={
                "loan_number": loan.loan_number,
                "customer_id": customer_id,
                "account_id": account.id,
                "principal": principal.to_string(),
                "monthly_payment": loan.monthly_payment.to_string()
            }
        )
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID, ignoring soft-deleted loans"""
        loan_dict = self.storage.load(self.loans_table, loan_id)
        if loan_dict:
            loan = Loan.from_dict(loan_dict)
            if not loan.is_deleted:
                return loan
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise LoanNotFoundError(f"Loan {loan_id} not found", details={"loan_id": loan_id})
        return loan

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        """Get all live loans for a customer"""
        loans = [
            Loan.from_dict(data)
            for data in self.storage.find(self.loans_table, {"customer_id": customer_id})
        ]
        return sorted((loan for loan in loans if not loan.is_deleted), key=lambda l: l.created_at)

    def list_loans(self, page: int = 1, limit: int = 10) -> Tuple[List[Loan], int]:
        """List live loans ordered by origination time"""
        loans = [Loan.from_dict(data) for data in self.storage.load_all(self.loans_table)]
        loans = sorted((loan for loan in loans if not loan.is_deleted), key=lambda l: l.created_at)
        return paginate(loans, page, limit)

    def update_loan(self, loan_id: str, status: LoanStatus) -> Loan:
        """Change a loan's status"""
        old_status = None

        def change(loan: Loan) -> None:
            nonlocal old_status
            old_status = loan.status
            loan.status = status

        loan = self._modify_loan(loan_id, change)

        log_action(
            self.logger, "info", "Loan updated",
            action="update_loan", resource=f"loan:{loan_id}",
            extra={"old_status": old_status.value, "new_status": status.value}
        )
        return loan

    def delete_loan(self, loan_id: str) -> Loan:
        """Soft delete a loan"""
        def change(loan: Loan) -> None:
            loan.deleted_at = datetime.now(timezone.utc)

        loan = self._modify_loan(loan_id, change)

        log_action(
            self.logger, "info", "Loan deleted",
            action="delete_loan", resource=f"loan:{loan_id}"
        )
        return loan

    def _modify_loan(self, loan_id: str, change: Callable[[Loan], None]) -> Loan:
        """
        Re-read, change and save a loan under its account's lock.

        Concurrent updates to one loan apply one after the other, each on
        top of the previous one.
        """
        account_id = self.require_loan(loan_id).account_id
        with self.ledger_store.unit_of_work(account_id) as uow:
            loan = uow.get_loan(loan_id)
            if not loan:
                raise LoanNotFoundError(f"Loan {loan_id} not found", details={"loan_id": loan_id})
            change(loan)
            loan.updated_at = datetime.now(timezone.utc)
            uow.save_loan(loan)
        return loan

    def _validate_parameters(
        self,
        principal_amount: Any,
        interest_rate: Any,
        term_months: int,
        currency: Currency
    ) -> Money:
        try:
            principal = to_decimal(principal_amount)
            rate = to_decimal(interest_rate)
        except ValueError as e:
            raise InvalidLoanParametersError(f"Invalid loan parameters: {e}")

        problems = {}
        if principal <= 0:
            problems['principal_amount'] = "must be greater than zero"
        elif not Money.within_limit(principal):
            problems['principal_amount'] = f"must be less than {MAX_AMOUNT:,f}"
        elif not Money.fits_precision(principal, currency):
            problems['principal_amount'] = f"at most {currency.precision} decimal places for {currency.code}"
        if rate <= 0:
            problems['interest_rate'] = "must be greater than zero"
        if isinstance(term_months, bool) or not isinstance(term_months, int):
            problems['term_months'] = "must be a whole number of months"
        elif not 1 <= term_months <= self.max_term_months:
            problems['term_months'] = f"must be between 1 and {self.max_term_months}"

        if problems:
            raise InvalidLoanParametersError("Invalid loan parameters", details=problems)
        return Money(principal, currency)
