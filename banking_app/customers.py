"""
Customer Management Module

Manages customer profiles: creation with email uniqueness, partial updates,
listing and soft deletion.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
import uuid
import re

from .storage import StorageInterface, StorageRecord, KeyedLock, paginate
from .exceptions import (
    ValidationError, CustomerNotFoundError, DuplicateEmailError,
    CustomerHasActiveAccountsError
)
from .logging_config import get_logger, log_action


EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class CustomerStatus(Enum):
    """Customer status"""
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class Customer(StorageRecord):
    """
    Bank customer with basic personal information
    """
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None  # ISO date string
    status: CustomerStatus = CustomerStatus.ACTIVE
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.first_name or not self.last_name or not self.email:
            raise ValidationError("First name, last name, and email are required")

        if not EMAIL_PATTERN.match(self.email):
            raise ValidationError("Invalid email format", details={"email": self.email})

        if self.date_of_birth:
            try:
                datetime.strptime(self.date_of_birth, "%Y-%m-%d")
            except ValueError:
                raise ValidationError(
                    "date_of_birth must be an ISO date (YYYY-MM-DD)",
                    details={"date_of_birth": self.date_of_birth}
                )

    @property
    def full_name(self) -> str:
        """Get customer's full name"""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['status'] = self.status.value
        result['deleted_at'] = self.deleted_at.isoformat() if self.deleted_at else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        deleted_at = data.get('deleted_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            phone=data.get('phone'),
            address=data.get('address'),
            date_of_birth=data.get('date_of_birth'),
            status=CustomerStatus(data.get('status', CustomerStatus.ACTIVE.value)),
            deleted_at=datetime.fromisoformat(deleted_at) if deleted_at else None
        )


class CustomerManager:
    """
    Manages customer lifecycle
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "customers"
        self.accounts_table = "accounts"
        self.logger = get_logger("banking_app.customers")
        # Serializes email claims so two requests cannot register the same address
        self._email_locks = KeyedLock()

    def create_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        date_of_birth: Optional[str] = None
    ) -> Customer:
        """
        Create a new customer

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            email: Customer's email address, unique among live customers
            phone: Optional phone number
            address: Optional postal address
            date_of_birth: Optional ISO date of birth

        Returns:
            Created Customer object

        Raises:
            ValidationError: If required fields are missing or malformed
            DuplicateEmailError: If the email is already registered
        """
        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            address=address,
            date_of_birth=date_of_birth
        )

        with self._email_locks.hold(email.lower()):
            self._check_email_available(email)
            self._save_customer(customer)

        log_action(
            self.logger, "info", "Customer created",
            action="create_customer", resource=f"customer:{customer.id}",
            extra={"email": email}
        )
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID, ignoring soft-deleted customers"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            customer = Customer.from_dict(customer_dict)
            if not customer.is_deleted:
                return customer
        return None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise CustomerNotFoundError(
                f"Customer {customer_id} not found", details={"customer_id": customer_id}
            )
        return customer

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Get live customer by email address (case-insensitive)"""
        for data in self.storage.load_all(self.table_name):
            if data.get('deleted_at') is None and data['email'].lower() == email.lower():
                return Customer.from_dict(data)
        return None

    def list_customers(self, page: int = 1, limit: int = 10) -> Tuple[List[Customer], int]:
        """List live customers ordered by creation time"""
        customers = [
            Customer.from_dict(data) for data in self.storage.load_all(self.table_name)
            if data.get('deleted_at') is None
        ]
        customers.sort(key=lambda c: c.created_at)
        return paginate(customers, page, limit)

    def update_customer(
        self,
        customer_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        date_of_birth: Optional[str] = None,
        status: Optional[CustomerStatus] = None
    ) -> Customer:
        """Update the fields that were provided"""
        customer = self.require_customer(customer_id)

        changes = {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "phone": phone,
            "address": address,
            "date_of_birth": date_of_birth,
            "status": status,
        }
        changes = {k: v for k, v in changes.items() if v is not None}

        updated = Customer(**{**customer.__dict__, **changes, "updated_at": datetime.now(timezone.utc)})

        if email is not None and email.lower() != customer.email.lower():
            with self._email_locks.hold(email.lower()):
                self._check_email_available(email)
                self._save_customer(updated)
        else:
            self._save_customer(updated)

        log_action(
            self.logger, "info", "Customer updated",
            action="update_customer", resource=f"customer:{customer_id}",
            extra={"fields": sorted(changes)}
        )
        return updated

    def delete_customer(self, customer_id: str) -> Customer:
        """
        Soft delete a customer.

        Raises:
            CustomerNotFoundError: If the customer does not exist
            CustomerHasActiveAccountsError: While the customer owns active accounts
        """
        customer = self.require_customer(customer_id)

        active_accounts = [
            data for data in self.storage.find(
                self.accounts_table, {"customer_id": customer_id, "status": "active"}
            )
            if data.get('deleted_at') is None
        ]
        if active_accounts:
            raise CustomerHasActiveAccountsError(
                "Cannot delete customer with active accounts",
                details={"customer_id": customer_id, "active_accounts": len(active_accounts)}
            )

        now = datetime.now(timezone.utc)
        customer.deleted_at = now
        customer.updated_at = now
        self._save_customer(customer)

        log_action(
            self.logger, "info", "Customer deleted",
            action="delete_customer", resource=f"customer:{customer_id}"
        )
        return customer

    def _check_email_available(self, email: str) -> None:
        if self.get_customer_by_email(email):
            raise DuplicateEmailError("Email already exists", details={"email": email})

    def _save_customer(self, customer: Customer) -> None:
        """Save customer to storage"""
        self.storage.save(self.table_name, customer.id, customer.to_dict())
