"""
Ledger Error Kinds

Every failure the ledger reports derives from LedgerError so top-level
callers can catch the whole family in one place.
"""

from decimal import Decimal
from typing import Optional, Any


class LedgerError(Exception):
    """Base class for all ledger failures"""


class InvalidAmount(LedgerError):
    """Amount is negative, non-numeric, or otherwise unusable"""

    def __init__(self, message: str, amount: Any = None):
        super().__init__(message)
        self.amount = amount


class InsufficientFunds(LedgerError):
    """Withdrawal exceeds the available balance"""

    def __init__(self, account_number: int, balance: Decimal, amount: Decimal):
        super().__init__(
            f"Insufficient funds in account {account_number}: "
            f"balance {balance}, requested {amount}"
        )
        self.account_number = account_number
        self.balance = balance
        self.amount = amount


class AccountNotFound(LedgerError):
    """No account with the given number exists in the store"""

    def __init__(self, account_number: int):
        super().__init__(f"Account {account_number} not found")
        self.account_number = account_number


class DuplicateAccount(LedgerError):
    """An account with the given number already exists"""

    def __init__(self, account_number: int):
        super().__init__(f"Account {account_number} already exists")
        self.account_number = account_number


class InvalidTransfer(LedgerError):
    """Transfer request is structurally invalid (e.g. same source and destination)"""


class MalformedRecord(LedgerError):
    """A stored line could not be decoded"""

    def __init__(self, message: str, record: Optional[str] = None):
        super().__init__(message)
        self.record = record


class StoreUnavailable(LedgerError):
    """The backing store could not be opened, read, or written"""

    def __init__(self, message: str, location: Optional[str] = None):
        super().__init__(message)
        self.location = location
