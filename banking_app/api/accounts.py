"""
Account management endpoints
"""

from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Query, status

from .dependencies import BankingSystem, get_banking_system, get_pagination
from .schemas import (
    CreateAccountRequest,
    UpdateAccountRequest,
    MoneyModel,
    account_to_response,
    transaction_to_response,
    page_response,
    parse_choice,
    parse_currency
)
from ..accounts import AccountType, AccountStatus


router = APIRouter()


@router.get("")
def list_accounts(
    customer_id: Optional[str] = Query(None),
    pagination: Tuple[int, int] = Depends(get_pagination),
    system: BankingSystem = Depends(get_banking_system)
):
    """List accounts, optionally for one customer"""
    page, limit = pagination
    accounts, total = system.account_manager.list_accounts(
        customer_id=customer_id, page=page, limit=limit
    )
    return page_response("accounts", [account_to_response(a) for a in accounts], total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a new account"""
    account = system.account_manager.open_account(
        customer_id=request.customer_id,
        account_type=parse_choice(AccountType, request.account_type, "account_type"),
        currency=parse_currency(request.currency)
    )
    return {"message": "Account created successfully", "account": account_to_response(account)}


@router.get("/{account_id}")
def get_account(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    return account_to_response(system.account_manager.require_account(account_id))


@router.put("/{account_id}")
def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Change account type or status"""
    account = system.account_manager.update_account(
        account_id,
        account_type=parse_choice(AccountType, request.account_type, "account_type")
        if request.account_type else None,
        status=parse_choice(AccountStatus, request.status, "status") if request.status else None
    )
    return {"message": "Account updated successfully", "account": account_to_response(account)}


@router.delete("/{account_id}")
def delete_account(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Close and soft delete an account with zero balance"""
    system.account_manager.delete_account(account_id)
    return {"message": "Account deleted successfully"}


@router.get("/{account_id}/balance")
def get_account_balance(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account balance"""
    account = system.account_manager.require_account(account_id)
    return {
        "account_id": account.id,
        "account_number": account.account_number,
        "balance": MoneyModel.from_money(account.balance).model_dump()
    }


@router.get("/{account_id}/transactions")
def get_account_transactions(
    account_id: str,
    pagination: Tuple[int, int] = Depends(get_pagination),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get transaction history for an account, newest first"""
    page, limit = pagination
    system.account_manager.require_account(account_id)
    records, total = system.transaction_processor.list_transactions(
        account_id=account_id, page=page, limit=limit
    )
    return page_response(
        "transactions", [transaction_to_response(r) for r in records], total, page, limit
    )
