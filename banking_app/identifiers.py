"""
Reference Number Generation

Human-legible identifiers: a short prefix, a UTC timestamp down to the
second, and a three digit disambiguator, e.g. TXN20250114093012042.
Unique in practice for the expected request rate; callers that need a hard
guarantee check for collisions on insert.
"""

import secrets
from datetime import datetime, timezone
from typing import Optional

ACCOUNT_PREFIX = "ACC"
TRANSACTION_PREFIX = "TXN"
LOAN_PREFIX = "LOAN"


def generate_reference(prefix: str, now: Optional[datetime] = None) -> str:
    """Generate a reference number such as ACC20250114093012007"""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}{now.strftime('%Y%m%d%H%M%S')}{secrets.randbelow(1000):03d}"


def generate_account_number() -> str:
    return generate_reference(ACCOUNT_PREFIX)


def generate_transaction_id() -> str:
    return generate_reference(TRANSACTION_PREFIX)


def generate_loan_number() -> str:
    return generate_reference(LOAN_PREFIX)
