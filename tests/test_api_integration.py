"""
Integration tests for the Banking API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from banking_app.api import create_app
from banking_app.api.dependencies import BankingSystem
from banking_app.config import BankingConfig
from banking_app.storage import InMemoryStorage


API = "/api/v1"


class UnavailableStorage(InMemoryStorage):
    """Storage that accepts reads but fails every insert"""

    def insert(self, table, record_id, data):
        raise ConnectionError("database unavailable")


def make_client(storage=None):
    config = BankingConfig(_env_file=None, storage_backend="memory", max_page_size=50)
    system = BankingSystem(config=config, storage=storage or InMemoryStorage())
    return TestClient(create_app(system))


@pytest.fixture
def client():
    """Create a test client backed by in-memory storage"""
    return make_client()


def create_customer(client, email="john.doe@example.com"):
    r = client.post(f"{API}/customers", json={
        "first_name": "John",
        "last_name": "Doe",
        "email": email
    })
    assert r.status_code == 201
    return r.json()["customer"]


def create_account(client, customer_id, account_type="checking"):
    r = client.post(f"{API}/accounts", json={"customer_id": customer_id, "account_type": account_type})
    assert r.status_code == 201
    return r.json()["account"]


def post_transaction(client, account_id, transaction_type, amount, **extra):
    return client.post(f"{API}/transactions", json={
        "account_id": account_id,
        "transaction_type": transaction_type,
        "amount": amount,
        **extra
    })


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["endpoints"]["transactions"] == f"{API}/transactions"


class TestCustomerFlow:
    """End-to-end customer management tests"""

    def test_create_and_get_customer(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"])

        r = client.get(f"{API}/customers/{customer['id']}")
        assert r.status_code == 200
        data = r.json()
        assert data["email"] == "john.doe@example.com"
        assert [a["id"] for a in data["accounts"]] == [account["id"]]
        assert data["loans"] == []

    def test_list_customers(self, client):
        for i in range(3):
            create_customer(client, email=f"user{i}@example.com")

        r = client.get(f"{API}/customers", params={"page": 2, "limit": 2})
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 3
        assert data["page"] == 2
        assert data["limit"] == 2
        assert len(data["customers"]) == 1

    def test_limit_is_capped(self, client):
        r = client.get(f"{API}/customers", params={"limit": 1000})
        assert r.json()["limit"] == 50

    def test_duplicate_email(self, client):
        create_customer(client)
        r = client.post(f"{API}/customers", json={
            "first_name": "Other", "last_name": "Person", "email": "john.doe@example.com"
        })
        assert r.status_code == 409
        assert r.json()["code"] == "duplicate_email"

    def test_update_customer(self, client):
        customer = create_customer(client)
        r = client.put(f"{API}/customers/{customer['id']}", json={"phone": "+15551234567"})
        assert r.status_code == 200
        assert r.json()["customer"]["phone"] == "+15551234567"

        r = client.put(f"{API}/customers/{customer['id']}", json={"status": "retired"})
        assert r.status_code == 400

    def test_delete_customer(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"])

        r = client.delete(f"{API}/customers/{customer['id']}")
        assert r.status_code == 409
        assert r.json()["code"] == "customer_has_active_accounts"

        client.delete(f"{API}/accounts/{account['id']}")
        r = client.delete(f"{API}/customers/{customer['id']}")
        assert r.status_code == 200

        r = client.get(f"{API}/customers/{customer['id']}")
        assert r.status_code == 404
        assert r.json()["code"] == "customer_not_found"

    def test_invalid_body(self, client):
        r = client.post(f"{API}/customers", json={"first_name": "John"})
        assert r.status_code == 400
        assert r.json()["code"] == "validation_error"


class TestAccountFlow:
    """End-to-end account tests"""

    def test_open_account(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"], "savings")

        assert account["balance"] == "0.00"
        assert account["currency"] == "USD"
        assert account["status"] == "active"

        r = client.get(f"{API}/accounts/{account['id']}/balance")
        assert r.status_code == 200
        assert r.json()["balance"] == {"amount": "0.00", "currency": "USD"}

    def test_open_account_bad_input(self, client):
        customer = create_customer(client)

        r = client.post(f"{API}/accounts", json={"customer_id": customer["id"], "account_type": "brokerage"})
        assert r.status_code == 400

        r = client.post(f"{API}/accounts", json={"customer_id": "missing", "account_type": "checking"})
        assert r.status_code == 404

    def test_update_account_status(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"])

        r = client.put(f"{API}/accounts/{account['id']}", json={"status": "frozen"})
        assert r.status_code == 200
        assert r.json()["account"]["status"] == "frozen"

        r = post_transaction(client, account["id"], "deposit", "10.00")
        assert r.status_code == 400
        assert r.json()["code"] == "account_not_active"

    def test_account_transactions(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"])
        post_transaction(client, account["id"], "deposit", "10.00")
        post_transaction(client, account["id"], "withdrawal", "4.00")

        r = client.get(f"{API}/accounts/{account['id']}/transactions")
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 2
        assert data["transactions"][0]["transaction_type"] == "withdrawal"

    def test_delete_account_with_balance(self, client):
        customer = create_customer(client)
        account = create_account(client, customer["id"])
        post_transaction(client, account["id"], "deposit", "10.00")

        r = client.delete(f"{API}/accounts/{account['id']}")
        assert r.status_code == 409
        assert r.json()["code"] == "account_has_balance"


class TestTransactionFlow:
    """End-to-end transaction processing tests"""

    def setup_method(self):
        self.client = make_client()
        customer = create_customer(self.client)
        self.account = create_account(self.client, customer["id"])

    def test_deposit_and_withdrawal(self):
        r = post_transaction(self.client, self.account["id"], "deposit", 100)
        assert r.status_code == 201

        r = post_transaction(
            self.client, self.account["id"], "deposit", "50.00",
            description="Top up", reference="ref-42"
        )
        assert r.status_code == 201
        txn = r.json()["transaction"]
        assert txn["id"].startswith("TXN")
        assert txn["balance_before"] == "100.00"
        assert txn["balance_after"] == "150.00"
        assert txn["reference"] == "ref-42"

        r = self.client.get(f"{API}/transactions/{txn['id']}")
        assert r.status_code == 200
        assert r.json()["amount"] == "50.00"

        r = self.client.get(f"{API}/accounts/{self.account['id']}")
        assert r.json()["balance"] == "150.00"

    def test_insufficient_funds(self):
        post_transaction(self.client, self.account["id"], "deposit", "150.00")

        r = post_transaction(self.client, self.account["id"], "withdrawal", "200.00")
        assert r.status_code == 400
        body = r.json()
        assert body["code"] == "insufficient_funds"
        assert body["details"]["balance"] == "150.00"

        r = self.client.get(f"{API}/accounts/{self.account['id']}")
        assert r.json()["balance"] == "150.00"

    @pytest.mark.parametrize("transaction_type,amount,code", [
        ("refund", "10.00", "invalid_transaction_type"),
        ("deposit", "0", "invalid_amount"),
        ("deposit", -5, "invalid_amount"),
        ("deposit", "NaN", "invalid_amount"),
        ("deposit", "lots", "invalid_amount"),
        ("deposit", "1.234", "invalid_amount"),
        ("deposit", 1e30, "invalid_amount"),
        ("deposit", "9" * 40, "invalid_amount"),
    ])
    def test_invalid_requests(self, transaction_type, amount, code):
        r = post_transaction(self.client, self.account["id"], transaction_type, amount)
        assert r.status_code == 400
        assert r.json()["code"] == code

    def test_unknown_account(self):
        r = post_transaction(self.client, "missing", "deposit", "1.00")
        assert r.status_code == 404
        assert r.json()["code"] == "account_not_found"

    def test_list_transactions_filters(self):
        post_transaction(self.client, self.account["id"], "deposit", "20.00")
        post_transaction(self.client, self.account["id"], "payment", "5.00")

        r = self.client.get(f"{API}/transactions", params={"type": "payment"})
        assert r.status_code == 200
        data = r.json()
        assert data["total"] == 1
        assert data["transactions"][0]["balance_after"] == "15.00"

        r = self.client.get(f"{API}/transactions", params={"account_id": self.account["id"]})
        assert r.json()["total"] == 2

        r = self.client.get(f"{API}/transactions", params={"type": "refund"})
        assert r.status_code == 400

    def test_missing_transaction(self):
        r = self.client.get(f"{API}/transactions/TXN00000000000000000")
        assert r.status_code == 404
        assert r.json()["code"] == "transaction_not_found"


class TestStorageFailure:
    """Storage failures map to a retryable 503"""

    def test_storage_error_is_503_with_retry_after(self):
        client = make_client(UnavailableStorage())
        customer = create_customer(client)
        account = create_account(client, customer["id"])

        r = post_transaction(client, account["id"], "deposit", "10.00")

        assert r.status_code == 503
        assert r.json()["code"] == "storage_error"
        assert r.headers["Retry-After"] == "1"

        r = client.get(f"{API}/accounts/{account['id']}")
        assert r.json()["balance"] == "0.00"


class TestLoanFlow:
    """End-to-end loan tests"""

    def test_create_loan(self, client):
        customer = create_customer(client)

        r = client.post(f"{API}/loans", json={
            "customer_id": customer["id"],
            "principal_amount": "10000.00",
            "interest_rate": "0.06",
            "term_months": 12
        })
        assert r.status_code == 201
        loan = r.json()["loan"]
        assert loan["monthly_payment"] == "860.66"
        assert loan["remaining_balance"] == "10000.00"
        assert loan["status"] == "active"

        r = client.get(f"{API}/accounts/{loan['account_id']}")
        assert r.json()["account_type"] == "loan"
        assert r.json()["balance"] == "-10000.00"

        r = client.get(f"{API}/customers/{customer['id']}")
        assert len(r.json()["loans"]) == 1

    def test_invalid_loan(self, client):
        customer = create_customer(client)

        r = client.post(f"{API}/loans", json={
            "customer_id": customer["id"],
            "principal_amount": 1000,
            "interest_rate": 0,
            "term_months": 12
        })
        assert r.status_code == 400
        assert r.json()["code"] == "invalid_loan_parameters"

    def test_update_and_delete_loan(self, client):
        customer = create_customer(client)
        loan = client.post(f"{API}/loans", json={
            "customer_id": customer["id"],
            "principal_amount": 500,
            "interest_rate": 0.1,
            "term_months": 6
        }).json()["loan"]

        r = client.put(f"{API}/loans/{loan['id']}", json={"status": "paid_off"})
        assert r.status_code == 200
        assert r.json()["loan"]["status"] == "paid_off"

        r = client.delete(f"{API}/loans/{loan['id']}")
        assert r.status_code == 200

        r = client.get(f"{API}/loans/{loan['id']}")
        assert r.status_code == 404

        r = client.get(f"{API}/loans")
        assert r.json()["total"] == 0
