"""
Bank Ledger

A small account ledger with flat-file persistence, validated deposits and
withdrawals, and balance transfers staged as a single logical operation.
All monetary values use Decimal.
"""

__version__ = "1.0.0"
