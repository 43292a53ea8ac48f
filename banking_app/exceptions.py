"""
Banking Exceptions Module

Domain error taxonomy. Every error carries the HTTP status and a stable
machine-readable code so the API layer can render it without guessing.
"""

from typing import Any, Dict, Optional


class BankingError(Exception):
    """Base exception for all banking domain errors."""

    status_code = 500
    code = "banking_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Validation errors: detected before storage is touched

class ValidationError(BankingError):
    """Raised when request input fails validation."""
    status_code = 400
    code = "validation_error"


class InvalidTransactionTypeError(ValidationError):
    """Raised when the transaction type is not one of the supported types."""
    code = "invalid_transaction_type"


class InvalidAmountError(ValidationError):
    """Raised when an amount is not a finite, strictly positive decimal."""
    code = "invalid_amount"


class InvalidLoanParametersError(ValidationError):
    """Raised when loan principal, rate or term are out of range."""
    code = "invalid_loan_parameters"


# Precondition errors: detected against stored state

class NotFoundError(BankingError):
    """Raised when a referenced record does not exist."""
    status_code = 404
    code = "not_found"


class AccountNotFoundError(NotFoundError):
    code = "account_not_found"


class CustomerNotFoundError(NotFoundError):
    code = "customer_not_found"


class LoanNotFoundError(NotFoundError):
    code = "loan_not_found"


class TransactionNotFoundError(NotFoundError):
    code = "transaction_not_found"


class RejectedRequestError(BankingError):
    """Raised when business rules reject an otherwise well-formed request."""
    status_code = 400
    code = "rejected"


class AccountNotActiveError(RejectedRequestError):
    code = "account_not_active"


class InsufficientFundsError(RejectedRequestError):
    code = "insufficient_funds"


class BalanceLimitExceededError(RejectedRequestError):
    """Raised when a credit would take a balance past the largest storable amount."""
    code = "balance_limit_exceeded"


class ConflictError(BankingError):
    """Raised when a request conflicts with existing records."""
    status_code = 409
    code = "conflict"


class DuplicateEmailError(ConflictError):
    code = "duplicate_email"


class CustomerHasActiveAccountsError(ConflictError):
    code = "customer_has_active_accounts"


class AccountHasBalanceError(ConflictError):
    code = "account_has_balance"


# Infrastructure errors

class StorageError(BankingError):
    """
    Raised when the storage backend fails.

    Nothing is committed when this is raised, so the caller may retry.
    """
    status_code = 503
    code = "storage_error"
    retryable = True
