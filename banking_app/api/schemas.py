"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..exceptions import ValidationError
from ..customers import Customer
from ..accounts import Account
from ..transactions import TransactionRecord
from ..loans import Loan


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (USD, EUR, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Customer schemas
class CreateCustomerRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None  # ISO date string


class UpdateCustomerRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None
    status: Optional[str] = Field(None, description="Customer status (active, inactive)")


# Account schemas
class CreateAccountRequest(BaseModel):
    customer_id: str
    account_type: str = Field(..., description="Account type (checking, savings)")
    currency: Optional[str] = Field(None, description="Currency code, defaults to the configured currency")


class UpdateAccountRequest(BaseModel):
    account_type: Optional[str] = Field(None, description="Account type (checking, savings, loan)")
    status: Optional[str] = Field(None, description="Account status (active, inactive, frozen, closed)")


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    account_id: str
    transaction_type: str = Field(..., description="deposit, withdrawal, transfer or payment")
    amount: Any = Field(..., description="Positive amount as number or decimal string")
    description: Optional[str] = None
    reference: Optional[str] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    principal_amount: Any = Field(..., description="Amount lent, as number or decimal string")
    interest_rate: Any = Field(..., description="Annual rate as a fraction, e.g. 0.05")
    term_months: int
    currency: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    status: str = Field(..., description="Loan status (active, paid_off, defaulted)")


def customer_to_response(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "date_of_birth": customer.date_of_birth,
        "status": customer.status.value,
        "created_at": customer.created_at.isoformat(),
        "updated_at": customer.updated_at.isoformat()
    }


def account_to_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "account_number": account.account_number,
        "customer_id": account.customer_id,
        "account_type": account.account_type.value,
        "balance": str(account.balance.amount),
        "currency": account.currency.code,
        "status": account.status.value,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat()
    }


def transaction_to_response(record: TransactionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "account_id": record.account_id,
        "transaction_type": record.transaction_type.value,
        "amount": str(record.amount.amount),
        "currency": record.amount.currency.code,
        "balance_before": str(record.balance_before.amount),
        "balance_after": str(record.balance_after.amount),
        "description": record.description,
        "reference": record.reference,
        "created_at": record.created_at.isoformat()
    }


def loan_to_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "loan_number": loan.loan_number,
        "customer_id": loan.customer_id,
        "account_id": loan.account_id,
        "principal_amount": str(loan.principal_amount.amount),
        "interest_rate": str(loan.interest_rate),
        "term_months": loan.term_months,
        "monthly_payment": str(loan.monthly_payment.amount),
        "remaining_balance": str(loan.remaining_balance.amount),
        "currency": loan.currency.code,
        "status": loan.status.value,
        "disbursement_date": loan.disbursement_date.isoformat(),
        "due_date": loan.due_date.isoformat(),
        "created_at": loan.created_at.isoformat()
    }


def page_response(key: str, items: List[Dict[str, Any]], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {key: items, "total": total, "page": page, "limit": limit}


def parse_choice(enum_cls, value: str, field: str):
    """Look up an enum member by value, reporting bad input as a validation error"""
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(
            f"Invalid {field}: {value!r}",
            details={field: value, "allowed": [member.value for member in enum_cls]}
        )


def parse_currency(code: Optional[str]) -> Optional[Currency]:
    if code is None:
        return None
    try:
        return Currency.from_code(code)
    except ValueError as e:
        raise ValidationError(str(e), details={"currency": code})
