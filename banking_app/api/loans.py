"""
Loan endpoints
"""

from typing import Tuple

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_pagination
from .schemas import (
    CreateLoanRequest,
    UpdateLoanRequest,
    loan_to_response,
    page_response,
    parse_choice,
    parse_currency
)
from ..loans import LoanStatus


router = APIRouter()


@router.get("")
def list_loans(
    pagination: Tuple[int, int] = Depends(get_pagination),
    system: BankingSystem = Depends(get_banking_system)
):
    """List loans"""
    page, limit = pagination
    loans, total = system.loan_manager.list_loans(page=page, limit=limit)
    return page_response("loans", [loan_to_response(loan) for loan in loans], total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_loan(
    request: CreateLoanRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Originate a loan and its loan account"""
    loan = system.loan_manager.originate_loan(
        customer_id=request.customer_id,
        principal_amount=request.principal_amount,
        interest_rate=request.interest_rate,
        term_months=request.term_months,
        currency=parse_currency(request.currency)
    )
    return {"message": "Loan created successfully", "loan": loan_to_response(loan)}


@router.get("/{loan_id}")
def get_loan(
    loan_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get loan by ID"""
    return loan_to_response(system.loan_manager.require_loan(loan_id))


@router.put("/{loan_id}")
def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Change loan status"""
    loan = system.loan_manager.update_loan(
        loan_id, status=parse_choice(LoanStatus, request.status, "status")
    )
    return {"message": "Loan updated successfully", "loan": loan_to_response(loan)}


@router.delete("/{loan_id}")
def delete_loan(
    loan_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Soft delete a loan"""
    system.loan_manager.delete_loan(loan_id)
    return {"message": "Loan deleted successfully"}
