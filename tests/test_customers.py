"""
Test suite for customer management
"""

import pytest

from banking_app.storage import InMemoryStorage
from banking_app.ledger_store import LedgerStore
from banking_app.customers import CustomerManager, CustomerStatus
from banking_app.accounts import AccountManager, AccountType, AccountStatus
from banking_app.exceptions import (
    ValidationError, CustomerNotFoundError, DuplicateEmailError,
    CustomerHasActiveAccountsError
)


class TestCustomerManager:
    """Test customer CRUD"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.ledger_store = LedgerStore(self.storage)
        self.customer_manager = CustomerManager(self.storage)
        self.account_manager = AccountManager(self.storage, self.ledger_store, self.customer_manager)

    def _create(self, email="jane.doe@example.com", **kwargs):
        return self.customer_manager.create_customer(
            first_name=kwargs.pop("first_name", "Jane"),
            last_name=kwargs.pop("last_name", "Doe"),
            email=email,
            **kwargs
        )

    def test_create_customer(self):
        customer = self._create(phone="+15551234567", address="1 Main St", date_of_birth="1990-05-17")

        assert customer.full_name == "Jane Doe"
        assert customer.status == CustomerStatus.ACTIVE
        assert customer.deleted_at is None

        loaded = self.customer_manager.get_customer(customer.id)
        assert loaded.email == "jane.doe@example.com"
        assert loaded.address == "1 Main St"
        assert loaded.date_of_birth == "1990-05-17"

    @pytest.mark.parametrize("kwargs", [
        {"email": "not-an-email"},
        {"first_name": ""},
        {"date_of_birth": "17/05/1990"},
    ])
    def test_create_customer_validation(self, kwargs):
        with pytest.raises(ValidationError):
            self._create(**kwargs)

        assert self.customer_manager.list_customers()[1] == 0

    def test_duplicate_email_rejected(self):
        self._create()

        with pytest.raises(DuplicateEmailError):
            self._create(email="Jane.Doe@example.com")

    def test_email_reusable_after_delete(self):
        customer = self._create()
        self.customer_manager.delete_customer(customer.id)

        replacement = self._create()
        assert replacement.id != customer.id

    def test_list_customers_paginates(self):
        for i in range(5):
            self._create(email=f"user{i}@example.com")

        first_page, total = self.customer_manager.list_customers(page=1, limit=2)
        last_page, _ = self.customer_manager.list_customers(page=3, limit=2)

        assert total == 5
        assert [c.email for c in first_page] == ["user0@example.com", "user1@example.com"]
        assert [c.email for c in last_page] == ["user4@example.com"]

    def test_update_customer(self):
        customer = self._create()

        updated = self.customer_manager.update_customer(
            customer.id, phone="+15550000000", status=CustomerStatus.INACTIVE
        )

        assert updated.phone == "+15550000000"
        assert updated.status == CustomerStatus.INACTIVE
        assert updated.first_name == "Jane"
        assert self.customer_manager.get_customer(customer.id).phone == "+15550000000"

    def test_update_customer_email_conflict(self):
        self._create(email="taken@example.com")
        customer = self._create()

        with pytest.raises(DuplicateEmailError):
            self.customer_manager.update_customer(customer.id, email="taken@example.com")

        assert self.customer_manager.get_customer(customer.id).email == "jane.doe@example.com"

    def test_update_missing_customer(self):
        with pytest.raises(CustomerNotFoundError):
            self.customer_manager.update_customer("missing", phone="1")

    def test_delete_customer_is_soft(self):
        customer = self._create()

        self.customer_manager.delete_customer(customer.id)

        assert self.customer_manager.get_customer(customer.id) is None
        assert self.customer_manager.list_customers() == ([], 0)
        assert self.storage.load("customers", customer.id)["deleted_at"] is not None

    def test_delete_refused_with_active_accounts(self):
        customer = self._create()
        account = self.account_manager.open_account(customer.id, AccountType.CHECKING)

        with pytest.raises(CustomerHasActiveAccountsError):
            self.customer_manager.delete_customer(customer.id)

        self.account_manager.update_account(account.id, status=AccountStatus.FROZEN)
        self.customer_manager.delete_customer(customer.id)
        assert self.customer_manager.get_customer(customer.id) is None
