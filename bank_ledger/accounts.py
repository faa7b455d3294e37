"""
Account Module

Account entity holding identity (owner name, account number) and a
non-negative Decimal balance. Deposits and withdrawals return an
OperationResult instead of raising, and every account round-trips through
a single pipe-delimited text record: name|accountNumber|balance
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from .amounts import AmountLike, ZERO, to_amount, format_amount
from .errors import LedgerError, InvalidAmount, InsufficientFunds, MalformedRecord

RECORD_DELIMITER = "|"
ACCOUNT_RECORD_FIELDS = 3


def validate_text_field(value: str, field_name: str) -> None:
    """Reject text that would corrupt a pipe-delimited, line-oriented record"""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    if RECORD_DELIMITER in value or "\n" in value or "\r" in value:
        raise ValueError(
            f"{field_name} cannot contain '{RECORD_DELIMITER}' or line breaks"
        )


class Displayable(ABC):
    """Capability for entities that can render a one-line summary"""

    @abstractmethod
    def display(self, show_balance: bool = True) -> str:
        """Return a human-readable one-line summary"""
        pass


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a balance mutation.

    Holds the new balance on success or the error instance on failure.
    unwrap() converts a failure back into an exception for callers that
    want the error to propagate.
    """
    balance: Optional[Decimal] = None
    error: Optional[LedgerError] = None

    @classmethod
    def success(cls, balance: Decimal) -> 'OperationResult':
        return cls(balance=balance)

    @classmethod
    def failure(cls, error: LedgerError) -> 'OperationResult':
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Decimal:
        """Return the new balance or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.balance


@dataclass
class Account(Displayable):
    """
    Bank account with an immutable account number

    The balance never drops below zero: a withdraw that would overdraw
    fails before any state is touched.
    """
    owner_name: str
    account_number: int
    balance: Decimal = ZERO

    def __post_init__(self):
        validate_text_field(self.owner_name, "Owner name")
        if not self.owner_name.strip():
            raise ValueError("Owner name cannot be blank")

        if isinstance(self.account_number, bool) or not isinstance(self.account_number, int):
            raise ValueError("Account number must be an integer")
        if self.account_number <= 0:
            raise ValueError("Account number must be positive")

    def __setattr__(self, name, value):
        if name == "account_number" and "account_number" in self.__dict__:
            raise AttributeError("Account number is immutable once assigned")
        if name == "balance":
            try:
                value = to_amount(value, allow_negative=False)
            except InvalidAmount as e:
                raise InvalidAmount(f"Invalid balance: {e}", value) from e
        super().__setattr__(name, value)

    def deposit(self, amount: AmountLike) -> OperationResult:
        """
        Add funds to the account

        Args:
            amount: Non-negative amount to add

        Returns:
            OperationResult with the new balance, or InvalidAmount
        """
        try:
            value = to_amount(amount, allow_negative=False)
            new_balance = to_amount(self.balance + value)
        except InvalidAmount as e:
            return OperationResult.failure(
                InvalidAmount(f"Invalid deposit amount: {e}", amount)
            )

        self.balance = new_balance
        return OperationResult.success(self.balance)

    def withdraw(self, amount: AmountLike) -> OperationResult:
        """
        Remove funds from the account

        Args:
            amount: Non-negative amount not exceeding the balance

        Returns:
            OperationResult with the new balance, or InvalidAmount /
            InsufficientFunds. The balance is unchanged on failure.
        """
        try:
            value = to_amount(amount, allow_negative=False)
        except InvalidAmount as e:
            return OperationResult.failure(
                InvalidAmount(f"Invalid withdrawal amount: {e}", amount)
            )

        if value > self.balance:
            return OperationResult.failure(
                InsufficientFunds(self.account_number, self.balance, value)
            )

        self.balance = self.balance - value
        return OperationResult.success(self.balance)

    def display(self, show_balance: bool = True) -> str:
        summary = f"Acc#: {self.account_number} | Name: {self.owner_name}"
        if show_balance:
            summary += f" | Balance: {format_amount(self.balance)}"
        return summary

    def serialize(self) -> str:
        """Encode as a single record line (without trailing newline)"""
        return RECORD_DELIMITER.join([
            self.owner_name,
            str(self.account_number),
            format_amount(self.balance),
        ])

    @classmethod
    def deserialize(cls, record: str) -> 'Account':
        """
        Decode a record produced by serialize()

        Raises:
            MalformedRecord: missing fields, blank name, or a non-numeric,
                non-finite or negative value
        """
        line = record.rstrip("\r\n")
        fields = line.split(RECORD_DELIMITER)
        if len(fields) != ACCOUNT_RECORD_FIELDS:
            raise MalformedRecord(
                f"Expected {ACCOUNT_RECORD_FIELDS} fields, got {len(fields)}", record
            )

        owner_name, number_field, balance_field = fields
        if not owner_name.strip():
            raise MalformedRecord("Owner name is missing", record)

        try:
            account_number = int(number_field)
        except ValueError:
            raise MalformedRecord(f"Account number is not an integer: {number_field!r}", record)

        try:
            balance = Decimal(balance_field.strip())
        except InvalidOperation:
            raise MalformedRecord(f"Balance is not numeric: {balance_field!r}", record)
        if not balance.is_finite() or balance < ZERO:
            raise MalformedRecord(f"Balance is not a valid amount: {balance_field!r}", record)

        try:
            return cls(owner_name=owner_name, account_number=account_number, balance=balance)
        except (LedgerError, ValueError) as e:
            raise MalformedRecord(str(e), record) from e
