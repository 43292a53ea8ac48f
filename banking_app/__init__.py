"""
Banking App

Record-management service for customers, accounts, transactions and loans,
with atomic balance processing and exact Decimal money handling.
"""

__version__ = "1.0.0"
