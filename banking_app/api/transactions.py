"""
Transaction endpoints
"""

from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query, status

from .dependencies import BankingSystem, get_banking_system, get_pagination
from .schemas import CreateTransactionRequest, transaction_to_response, page_response
from ..exceptions import TransactionNotFoundError


router = APIRouter()


@router.get("")
def list_transactions(
    account_id: Optional[str] = Query(None),
    transaction_type: Optional[str] = Query(None, alias="type"),
    pagination: Tuple[int, int] = Depends(get_pagination),
    system: BankingSystem = Depends(get_banking_system)
):
    """List transactions, newest first"""
    page, limit = pagination
    records, total = system.transaction_processor.list_transactions(
        account_id=account_id, transaction_type=transaction_type, page=page, limit=limit
    )
    return page_response(
        "transactions", [transaction_to_response(r) for r in records], total, page, limit
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_transaction(
    request: CreateTransactionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Process a deposit, withdrawal, transfer or payment"""
    record = system.transaction_processor.process_transaction(
        account_id=request.account_id,
        transaction_type=request.transaction_type,
        amount=request.amount,
        description=request.description,
        reference=request.reference
    )
    return {
        "message": "Transaction processed successfully",
        "transaction": transaction_to_response(record)
    }


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get transaction by ID"""
    record = system.transaction_processor.get_transaction(transaction_id)
    if not record:
        raise TransactionNotFoundError(
            f"Transaction {transaction_id} not found",
            details={"transaction_id": transaction_id}
        )
    return transaction_to_response(record)
