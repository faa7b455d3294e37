"""
Transaction Log Module

Immutable record of a completed transfer, stored append-only as one
pipe-delimited line: fromAccount|toAccount|amount|note
"""

from dataclasses import dataclass
from decimal import Decimal

from .accounts import Displayable, RECORD_DELIMITER, validate_text_field
from .amounts import ZERO, to_amount, format_amount
from .errors import LedgerError, MalformedRecord

DEFAULT_TRANSFER_NOTE = "transfer"
TRANSACTION_RECORD_FIELDS = 4


@dataclass(frozen=True)
class TransactionRecord(Displayable):
    """A single transfer between two accounts"""
    from_account: int
    to_account: int
    amount: Decimal
    note: str = DEFAULT_TRANSFER_NOTE

    def __post_init__(self):
        for field_name in ("from_account", "to_account"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{field_name} must be an integer")

        validate_text_field(self.note, "Note")

        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'amount', to_amount(self.amount))
        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

    def involves(self, account_number: int) -> bool:
        """Check if the account is either side of this transaction"""
        return account_number in (self.from_account, self.to_account)

    def display(self, show_balance: bool = True) -> str:
        summary = f"{self.from_account} -> {self.to_account}"
        if show_balance:
            summary += f" | Amount: {format_amount(self.amount)}"
        return f"{summary} | Note: {self.note}"

    def serialize(self) -> str:
        return RECORD_DELIMITER.join([
            str(self.from_account),
            str(self.to_account),
            format_amount(self.amount),
            self.note,
        ])

    @classmethod
    def deserialize(cls, record: str) -> 'TransactionRecord':
        line = record.rstrip("\r\n")
        fields = line.split(RECORD_DELIMITER)
        if len(fields) != TRANSACTION_RECORD_FIELDS:
            raise MalformedRecord(
                f"Expected {TRANSACTION_RECORD_FIELDS} fields, got {len(fields)}", record
            )

        from_field, to_field, amount_field, note = fields
        try:
            return cls(
                from_account=int(from_field),
                to_account=int(to_field),
                amount=to_amount(amount_field),
                note=note,
            )
        except (LedgerError, ValueError) as e:
            raise MalformedRecord(f"Invalid transaction record: {e}", record) from e
