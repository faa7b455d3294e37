"""
Storage Backend Module

Provides an abstract storage interface over named tables of text records,
with implementations for flat files (the default), in-memory (testing) and
SQLite. Every backend supports whole-table replace, append, and atomic
groups of writes.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple, Union
from pathlib import Path
from contextlib import contextmanager
import logging
import os
import re
import sqlite3
import tempfile

from .errors import StoreUnavailable

logger = logging.getLogger("bank_ledger.storage")

ACCOUNTS_TABLE = "accounts"
TRANSACTIONS_TABLE = "transactions"

DEFAULT_FILE_NAMES = {
    ACCOUNTS_TABLE: "accounts.txt",
    TRANSACTIONS_TABLE: "transactions.txt",
}

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_table(table: str) -> None:
    if not _TABLE_NAME.match(table):
        raise ValueError(f"Invalid table name: {table!r}")


def _check_lines(lines: Iterable[str]) -> List[str]:
    """Materialise and validate records before anything is written"""
    checked = []
    for line in lines:
        if not isinstance(line, str):
            raise ValueError(f"Record must be a string, got {type(line).__name__}")
        if "\n" in line or "\r" in line:
            raise ValueError("Record cannot contain line breaks")
        if not line.strip():
            raise ValueError("Record cannot be empty")
        checked.append(line)
    return checked


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def read_all(self, table: str) -> List[str]:
        """Read every record of a table in order (empty if the table is missing)"""
        pass

    @abstractmethod
    def write_all(self, table: str, lines: Iterable[str]) -> None:
        """Replace the whole table with the given records"""
        pass

    @abstractmethod
    def append(self, table: str, line: str) -> None:
        """Append one record to a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self.read_all(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        self.write_all(table, [])

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, List[str]] = {}
        self._snapshot: Optional[Dict[str, List[str]]] = None

    def read_all(self, table: str) -> List[str]:
        _check_table(table)
        return list(self._data.get(table, []))

    def write_all(self, table: str, lines: Iterable[str]) -> None:
        _check_table(table)
        self._data[table] = _check_lines(lines)

    def append(self, table: str, line: str) -> None:
        _check_table(table)
        self._data.setdefault(table, []).extend(_check_lines([line]))

    def begin_transaction(self) -> None:
        if self._snapshot is None:
            self._snapshot = {table: list(lines) for table, lines in self._data.items()}

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    def get_all_data(self) -> Dict[str, List[str]]:
        """Get all data for debugging/inspection"""
        return {table: list(lines) for table, lines in self._data.items()}


class FlatFileStorage(StorageInterface):
    """
    Flat-file storage: one text file per table, one record per line.

    write_all replaces the file through a temporary sibling and os.replace,
    so readers never see a half-written table. Inside a transaction, writes
    are staged in memory and applied on commit; if applying fails, every
    touched file is restored to its pre-commit content. Reads inside a
    transaction see the committed files only.
    """

    def __init__(self, data_dir: Union[str, Path] = ".",
                 file_names: Optional[Dict[str, str]] = None):
        self.data_dir = Path(data_dir)
        self.file_names = dict(DEFAULT_FILE_NAMES)
        if file_names:
            self.file_names.update(file_names)
        self._pending: Optional[List[Tuple[str, str, List[str]]]] = None

    def path_for(self, table: str) -> Path:
        """Resolve the file backing a table"""
        _check_table(table)
        return self.data_dir / self.file_names.get(table, f"{table}.txt")

    def read_all(self, table: str) -> List[str]:
        path = self.path_for(table)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return [line.rstrip("\r\n") for line in f if line.strip()]
        except FileNotFoundError:
            # Store not created yet
            return []
        except (OSError, UnicodeDecodeError) as e:
            raise StoreUnavailable(f"Unable to read {path}: {e}", str(path)) from e

    def write_all(self, table: str, lines: Iterable[str]) -> None:
        self.path_for(table)
        checked = _check_lines(lines)
        if self._pending is not None:
            self._pending.append(("write", table, checked))
            return
        self._write_file(table, checked)

    def append(self, table: str, line: str) -> None:
        self.path_for(table)
        checked = _check_lines([line])
        if self._pending is not None:
            self._pending.append(("append", table, checked))
            return
        self._append_file(table, checked)

    def _write_file(self, table: str, lines: List[str]) -> None:
        path = self.path_for(table)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.writelines(line + "\n" for line in lines)
                os.replace(tmp_path, path)
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StoreUnavailable(f"Unable to write {path}: {e}", str(path)) from e

    def _append_file(self, table: str, lines: List[str]) -> None:
        path = self.path_for(table)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.writelines(line + "\n" for line in lines)
        except OSError as e:
            raise StoreUnavailable(f"Unable to append to {path}: {e}", str(path)) from e

    def _read_raw(self, table: str) -> Optional[bytes]:
        path = self.path_for(table)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailable(f"Unable to read {path}: {e}", str(path)) from e

    def _restore(self, originals: Dict[str, Optional[bytes]]) -> None:
        for table, content in originals.items():
            path = self.path_for(table)
            try:
                if content is None:
                    path.unlink(missing_ok=True)
                else:
                    tmp_path = path.with_name(f".{path.name}.restore")
                    tmp_path.write_bytes(content)
                    os.replace(tmp_path, path)
            except OSError as e:
                logger.error(f"Failed to restore {path} after aborted commit: {e}")

    def begin_transaction(self) -> None:
        if self._pending is None:
            self._pending = []

    def commit(self) -> None:
        pending, self._pending = self._pending, None
        if not pending:
            return

        originals: Dict[str, Optional[bytes]] = {}
        for _, table, _ in pending:
            if table not in originals:
                originals[table] = self._read_raw(table)

        try:
            for operation, table, lines in pending:
                if operation == "write":
                    self._write_file(table, lines)
                else:
                    self._append_file(table, lines)
        except StoreUnavailable:
            self._restore(originals)
            raise

    def rollback(self) -> None:
        self._pending = None

    def close(self) -> None:
        """Close storage (files are only held open per operation)"""
        self._pending = None


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation: one table per record table, rows kept in insertion order"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._in_transaction = False
        self._known_tables = set()
        try:
            # Set isolation_level to 'DEFERRED' to enable manual transaction control
            self._connection = sqlite3.connect(self.db_path, isolation_level='DEFERRED')
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Unable to open {self.db_path}: {e}", self.db_path) from e

    @contextmanager
    def _guard(self, action: str):
        if self._connection is None:
            raise StoreUnavailable(f"Cannot {action}: storage is closed", self.db_path)
        try:
            yield self._connection
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Unable to {action} in {self.db_path}: {e}", self.db_path) from e

    def _maybe_commit(self) -> None:
        # Only commit if not in transaction
        if not self._in_transaction:
            self._connection.commit()

    def _ensure_table(self, connection: sqlite3.Connection, table: str) -> None:
        _check_table(table)
        if table in self._known_tables:
            return
        connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                line TEXT NOT NULL
            )
        """)
        self._known_tables.add(table)

    def read_all(self, table: str) -> List[str]:
        with self._guard(f"read {table}") as connection:
            self._ensure_table(connection, table)
            cursor = connection.execute(f"SELECT line FROM {table} ORDER BY seq")
            return [row[0] for row in cursor.fetchall()]

    def write_all(self, table: str, lines: Iterable[str]) -> None:
        checked = _check_lines(lines)
        with self._guard(f"write {table}") as connection:
            self._ensure_table(connection, table)
            connection.execute(f"DELETE FROM {table}")
            connection.executemany(
                f"INSERT INTO {table} (line) VALUES (?)",
                [(line,) for line in checked]
            )
            self._maybe_commit()

    def append(self, table: str, line: str) -> None:
        checked = _check_lines([line])
        with self._guard(f"append to {table}") as connection:
            self._ensure_table(connection, table)
            connection.execute(f"INSERT INTO {table} (line) VALUES (?)", (checked[0],))
            self._maybe_commit()

    def count(self, table: str) -> int:
        with self._guard(f"count {table}") as connection:
            self._ensure_table(connection, table)
            cursor = connection.execute(f"SELECT COUNT(*) FROM {table}")
            return cursor.fetchone()[0]

    def begin_transaction(self) -> None:
        # sqlite3 opens the transaction implicitly on the first write
        self._in_transaction = True

    def commit(self) -> None:
        if self._in_transaction:
            with self._guard("commit") as connection:
                connection.commit()
            self._in_transaction = False

    def rollback(self) -> None:
        if self._in_transaction:
            self._in_transaction = False
            with self._guard("rollback") as connection:
                connection.rollback()
            # Tables created inside the rolled back transaction are gone
            self._known_tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def create_storage(config=None) -> StorageInterface:
    """
    Build the storage backend named by configuration.

    Args:
        config: LedgerConfig; the global configuration when None

    Returns:
        FlatFileStorage, InMemoryStorage or SQLiteStorage
    """
    if config is None:
        from .config import get_config
        config = get_config()

    backend = config.storage_backend.lower()
    if backend == "file":
        return FlatFileStorage(config.data_dir, {
            ACCOUNTS_TABLE: config.accounts_file,
            TRANSACTIONS_TABLE: config.transactions_file,
        })
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(Path(config.data_dir) / config.sqlite_path)

    raise ValueError(f"Unknown storage backend: {config.storage_backend!r}")
