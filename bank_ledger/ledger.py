"""
Ledger Module

Owns the account collection and its persistence. Accounts live in the
"accounts" table of a storage backend (one record per account), completed
transfers in the append-only "transactions" table.

Every mutating operation loads current state from the store, stages the
change on in-memory Account objects, and writes only once all validation
has passed, so a rejected operation never touches the store.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .accounts import Account
from .amounts import AmountLike, ZERO, to_amount, format_amount
from .errors import (
    LedgerError, InvalidAmount, InvalidTransfer, AccountNotFound,
    DuplicateAccount, MalformedRecord
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, ACCOUNTS_TABLE, TRANSACTIONS_TABLE, create_storage
from .transactions import TransactionRecord, DEFAULT_TRANSFER_NOTE


class Ledger:
    """
    Account ledger backed by an injectable storage backend
    """

    def __init__(self, storage: StorageInterface, transfer_note: str = DEFAULT_TRANSFER_NOTE):
        self.storage = storage
        self.transfer_note = transfer_note
        self.accounts_table = ACCOUNTS_TABLE
        self.transactions_table = TRANSACTIONS_TABLE
        self.logger = get_logger("bank_ledger.ledger")

    @classmethod
    def from_config(cls, config=None) -> 'Ledger':
        """Build a ledger on the configured storage backend"""
        if config is None:
            from .config import get_config
            config = get_config()
        return cls(create_storage(config), transfer_note=config.transfer_note)

    def create_account(self, account: Account) -> Account:
        """
        Persist a new account

        Args:
            account: Account to append to the store

        Returns:
            The persisted account

        Raises:
            DuplicateAccount: an account with the same number already exists
        """
        if self.find_account(account.account_number) is not None:
            log_action(
                self.logger, "warning", f"Account {account.account_number} already exists",
                action="create_account", resource=f"account:{account.account_number}"
            )
            raise DuplicateAccount(account.account_number)

        self.storage.append(self.accounts_table, account.serialize())

        log_action(
            self.logger, "info", f"Account created: {account.account_number}",
            action="create_account", resource=f"account:{account.account_number}",
            extra={
                "owner_name": account.owner_name,
                "balance": format_amount(account.balance)
            }
        )
        return account

    def load_all(self) -> List[Account]:
        """
        Load every account in store order

        Malformed records, and records repeating an earlier account number,
        are logged and skipped rather than aborting the load.
        """
        accounts = []
        seen = set()

        for position, line in enumerate(self.storage.read_all(self.accounts_table), start=1):
            try:
                account = Account.deserialize(line)
            except MalformedRecord as e:
                self.logger.warning(f"Skipping malformed account record #{position}: {e}")
                continue

            if account.account_number in seen:
                self.logger.warning(
                    f"Skipping duplicate account record #{position} for account {account.account_number}"
                )
                continue

            seen.add(account.account_number)
            accounts.append(account)

        return accounts

    def save_all(self, accounts: Iterable[Account]) -> None:
        """
        Overwrite the store with the given full set of accounts

        Raises:
            DuplicateAccount: the set repeats an account number
        """
        accounts = list(accounts)
        self._index(accounts)
        self.storage.write_all(self.accounts_table, [account.serialize() for account in accounts])
        self.logger.debug(f"Saved {len(accounts)} accounts")

    def find_account(self, account_number: int) -> Optional[Account]:
        """Get account by number, or None"""
        for account in self.load_all():
            if account.account_number == account_number:
                return account
        return None

    def get_account(self, account_number: int) -> Account:
        """Get account by number, raising AccountNotFound if missing"""
        account = self.find_account(account_number)
        if account is None:
            raise AccountNotFound(account_number)
        return account

    def transfer(
        self,
        from_acc: int,
        to_acc: int,
        amount: AmountLike,
        note: Optional[str] = None
    ) -> TransactionRecord:
        """
        Move funds between two persisted accounts as one logical operation

        The source is debited before the destination is credited, so a
        failed withdrawal never touches the destination. The transaction
        record and the rewritten account table are written together inside
        one atomic storage block, after every check has passed.

        Args:
            from_acc: Source account number
            to_acc: Destination account number
            amount: Positive amount to move
            note: Transaction log note (configured default when None)

        Returns:
            The logged TransactionRecord

        Raises:
            InvalidAmount: amount is not a positive number
            InvalidTransfer: same source and destination, or a note that
                cannot be stored in the transaction log
            AccountNotFound: either account is missing
            InsufficientFunds: source balance is below amount
        """
        note = self.transfer_note if note is None else note
        resource = f"transfer:{from_acc}->{to_acc}"

        try:
            value = to_amount(amount)
            if value <= ZERO:
                raise InvalidAmount("Transfer amount must be positive", amount)
            if from_acc == to_acc:
                raise InvalidTransfer(f"Cannot transfer from account {from_acc} to itself")

            try:
                record = TransactionRecord(
                    from_account=from_acc,
                    to_account=to_acc,
                    amount=value,
                    note=note
                )
            except ValueError as e:
                raise InvalidTransfer(f"Invalid transfer: {e}") from e

            accounts = self.load_all()
            index = self._index(accounts)
            source = self._locate(index, from_acc)
            destination = self._locate(index, to_acc)

            source.withdraw(value).unwrap()
            destination.deposit(value).unwrap()

            with self.storage.atomic():
                self.storage.append(self.transactions_table, record.serialize())
                self.storage.write_all(
                    self.accounts_table, [account.serialize() for account in accounts]
                )
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"Transfer rejected: {e}",
                action="transfer", resource=resource,
                extra={"error": type(e).__name__, "amount": str(amount)}
            )
            raise

        log_action(
            self.logger, "info", f"Transfer completed: {format_amount(value)}",
            action="transfer", resource=resource,
            extra={
                "amount": format_amount(value),
                "from_balance": format_amount(source.balance),
                "to_balance": format_amount(destination.balance),
                "note": note
            }
        )
        return record

    def deposit(self, account_number: int, amount: AmountLike) -> Account:
        """Deposit into a persisted account and rewrite the store"""
        return self._apply(account_number, "deposit", amount)

    def withdraw(self, account_number: int, amount: AmountLike) -> Account:
        """Withdraw from a persisted account and rewrite the store"""
        return self._apply(account_number, "withdraw", amount)

    def load_transactions(self, account_number: Optional[int] = None) -> List[TransactionRecord]:
        """
        Read the transaction log, optionally only entries involving one account

        Malformed lines are logged and skipped.
        """
        records = []
        for position, line in enumerate(self.storage.read_all(self.transactions_table), start=1):
            try:
                record = TransactionRecord.deserialize(line)
            except MalformedRecord as e:
                self.logger.warning(f"Skipping malformed transaction record #{position}: {e}")
                continue
            if account_number is None or record.involves(account_number):
                records.append(record)
        return records

    def total_balance(self) -> Decimal:
        """Sum of all persisted balances"""
        return sum((account.balance for account in self.load_all()), ZERO)

    def _apply(self, account_number: int, operation: str, amount: AmountLike) -> Account:
        resource = f"account:{account_number}"
        try:
            accounts = self.load_all()
            account = self._locate(self._index(accounts), account_number)
            getattr(account, operation)(amount).unwrap()
            self.storage.write_all(self.accounts_table, [a.serialize() for a in accounts])
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"{operation.capitalize()} rejected: {e}",
                action=operation, resource=resource,
                extra={"error": type(e).__name__, "amount": str(amount)}
            )
            raise

        log_action(
            self.logger, "info", f"{operation.capitalize()} completed on account {account_number}",
            action=operation, resource=resource,
            extra={"balance": format_amount(account.balance)}
        )
        return account

    @staticmethod
    def _index(accounts: List[Account]) -> Dict[int, Account]:
        index: Dict[int, Account] = {}
        for account in accounts:
            if account.account_number in index:
                raise DuplicateAccount(account.account_number)
            index[account.account_number] = account
        return index

    @staticmethod
    def _locate(index: Dict[int, Account], account_number: int) -> Account:
        account = index.get(account_number)
        if account is None:
            raise AccountNotFound(account_number)
        return account
