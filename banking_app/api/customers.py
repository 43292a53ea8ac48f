"""
Customer management endpoints
"""

from typing import Tuple

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_pagination
from .schemas import (
    CreateCustomerRequest,
    UpdateCustomerRequest,
    customer_to_response,
    account_to_response,
    loan_to_response,
    page_response,
    parse_choice
)
from ..customers import CustomerStatus


router = APIRouter()


@router.get("")
def list_customers(
    pagination: Tuple[int, int] = Depends(get_pagination),
    system: BankingSystem = Depends(get_banking_system)
):
    """List customers"""
    page, limit = pagination
    customers, total = system.customer_manager.list_customers(page=page, limit=limit)
    return page_response("customers", [customer_to_response(c) for c in customers], total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(
    request: CreateCustomerRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Create a new customer"""
    customer = system.customer_manager.create_customer(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone=request.phone,
        address=request.address,
        date_of_birth=request.date_of_birth
    )
    return {"message": "Customer created successfully", "customer": customer_to_response(customer)}


@router.get("/{customer_id}")
def get_customer(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get customer by ID with their accounts and loans"""
    customer = system.customer_manager.require_customer(customer_id)
    response = customer_to_response(customer)
    response["accounts"] = [
        account_to_response(a) for a in system.account_manager.get_customer_accounts(customer_id)
    ]
    response["loans"] = [
        loan_to_response(loan) for loan in system.loan_manager.get_customer_loans(customer_id)
    ]
    return response


@router.put("/{customer_id}")
def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Update customer information"""
    customer = system.customer_manager.update_customer(
        customer_id,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone=request.phone,
        address=request.address,
        date_of_birth=request.date_of_birth,
        status=parse_choice(CustomerStatus, request.status, "status") if request.status else None
    )
    return {"message": "Customer updated successfully", "customer": customer_to_response(customer)}


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Soft delete a customer without active accounts"""
    system.customer_manager.delete_customer(customer_id)
    return {"message": "Customer deleted successfully"}
