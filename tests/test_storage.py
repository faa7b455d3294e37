"""
Tests for storage backends and transaction support
"""

import os
import pytest
from pathlib import Path

from bank_ledger.config import LedgerConfig
from bank_ledger.errors import StoreUnavailable
from bank_ledger.storage import (
    InMemoryStorage, FlatFileStorage, SQLiteStorage, StorageInterface,
    create_storage, ACCOUNTS_TABLE, TRANSACTIONS_TABLE
)


@pytest.fixture(params=["memory", "file", "sqlite"])
def storage(request, tmp_path):
    """Every backend must behave the same through the interface"""
    if request.param == "memory":
        backend = InMemoryStorage()
    elif request.param == "file":
        backend = FlatFileStorage(tmp_path)
    else:
        backend = SQLiteStorage(tmp_path / "ledger.db")
    yield backend
    backend.close()


class TestStorageInterface:
    """Test behaviour shared by all backends"""

    def test_missing_table_reads_empty(self, storage):
        assert storage.read_all(ACCOUNTS_TABLE) == []
        assert storage.count(ACCOUNTS_TABLE) == 0

    def test_append_and_read(self, storage):
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")
        storage.append(ACCOUNTS_TABLE, "Bob|1002|500.00")

        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1000.00", "Bob|1002|500.00"]
        assert storage.count(ACCOUNTS_TABLE) == 2

    def test_write_all_replaces_table(self, storage):
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")
        storage.write_all(ACCOUNTS_TABLE, ["Bob|1002|500.00", "Carol|1003|1.00"])

        assert storage.read_all(ACCOUNTS_TABLE) == ["Bob|1002|500.00", "Carol|1003|1.00"]

    def test_tables_are_independent(self, storage):
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")
        storage.append(TRANSACTIONS_TABLE, "1001|1002|1.00|transfer")

        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1000.00"]
        assert storage.read_all(TRANSACTIONS_TABLE) == ["1001|1002|1.00|transfer"]

    def test_clear_table(self, storage):
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")
        storage.clear_table(ACCOUNTS_TABLE)

        assert storage.read_all(ACCOUNTS_TABLE) == []

    def test_rejects_line_breaks_and_empty_records(self, storage):
        with pytest.raises(ValueError, match="line breaks"):
            storage.append(ACCOUNTS_TABLE, "Alice|1001\n|1000.00")

        with pytest.raises(ValueError, match="empty"):
            storage.write_all(ACCOUNTS_TABLE, ["ok|1|1.00", "  "])

        # Nothing partial was written
        assert storage.read_all(ACCOUNTS_TABLE) == []

    def test_rejects_bad_table_names(self, storage):
        with pytest.raises(ValueError, match="Invalid table name"):
            storage.read_all("accounts; DROP TABLE accounts")

    def test_atomic_commits(self, storage):
        with storage.atomic():
            storage.append(TRANSACTIONS_TABLE, "1001|1002|1.00|transfer")
            storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|999.00"])

        assert storage.read_all(TRANSACTIONS_TABLE) == ["1001|1002|1.00|transfer"]
        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|999.00"]

    def test_atomic_rolls_back_on_error(self, storage):
        storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|1000.00"])

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.append(TRANSACTIONS_TABLE, "1001|1002|1.00|transfer")
                storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|999.00"])
                raise RuntimeError("boom")

        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1000.00"]
        assert storage.read_all(TRANSACTIONS_TABLE) == []

    def test_is_storage_interface(self, storage):
        assert isinstance(storage, StorageInterface)


class TestFlatFileStorage:
    """Test flat-file specifics"""

    def test_file_layout(self, tmp_path):
        storage = FlatFileStorage(tmp_path)
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")
        storage.append(TRANSACTIONS_TABLE, "1001|1002|300.00|transfer")

        assert (tmp_path / "accounts.txt").read_text() == "Alice|1001|1000.00\n"
        assert (tmp_path / "transactions.txt").read_text() == "1001|1002|300.00|transfer\n"

    def test_custom_file_names(self, tmp_path):
        storage = FlatFileStorage(tmp_path, {ACCOUNTS_TABLE: "bankdata.txt"})
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1000.00")

        assert storage.path_for(ACCOUNTS_TABLE) == tmp_path / "bankdata.txt"
        assert (tmp_path / "bankdata.txt").exists()

    def test_blank_lines_are_ignored_on_read(self, tmp_path):
        (tmp_path / "accounts.txt").write_text("Alice|1001|1.00\n\n   \nBob|1002|2.00\n")
        storage = FlatFileStorage(tmp_path)

        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1.00", "Bob|1002|2.00"]

    def test_write_all_leaves_no_temporary_files(self, tmp_path):
        storage = FlatFileStorage(tmp_path)
        storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|1.00"])

        assert sorted(os.listdir(tmp_path)) == ["accounts.txt"]

    def test_creates_missing_data_dir(self, tmp_path):
        storage = FlatFileStorage(tmp_path / "nested" / "data")
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1.00")

        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1.00"]

    def test_writes_are_staged_until_commit(self, tmp_path):
        storage = FlatFileStorage(tmp_path)
        storage.begin_transaction()
        storage.append(ACCOUNTS_TABLE, "Alice|1001|1.00")

        assert not (tmp_path / "accounts.txt").exists()

        storage.commit()
        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1.00"]

    def test_failed_commit_restores_files(self, tmp_path, monkeypatch):
        storage = FlatFileStorage(tmp_path)
        storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|1000.00"])

        def failing_write(table, lines):
            raise StoreUnavailable("disk full", str(tmp_path))

        monkeypatch.setattr(storage, "_write_file", failing_write)

        with pytest.raises(StoreUnavailable):
            with storage.atomic():
                storage.append(TRANSACTIONS_TABLE, "1001|1002|1.00|transfer")
                storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|999.00"])

        # The append went through before the failure and was undone
        assert not (tmp_path / "transactions.txt").exists()
        assert storage.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1000.00"]

    def test_unreadable_store_raises_store_unavailable(self, tmp_path):
        # A directory where the file should be cannot be opened as a file
        (tmp_path / "accounts.txt").mkdir()
        storage = FlatFileStorage(tmp_path)

        with pytest.raises(StoreUnavailable) as exc_info:
            storage.read_all(ACCOUNTS_TABLE)
        assert exc_info.value.location == str(tmp_path / "accounts.txt")

    def test_unwritable_store_raises_store_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        storage = FlatFileStorage(blocker / "data")

        with pytest.raises(StoreUnavailable):
            storage.append(ACCOUNTS_TABLE, "Alice|1001|1.00")


class TestSQLiteStorage:
    """Test SQLite specifics"""

    def test_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "ledger.db"
        storage = SQLiteStorage(db_path)
        storage.write_all(ACCOUNTS_TABLE, ["Alice|1001|1.00", "Bob|1002|2.00"])
        storage.close()

        reopened = SQLiteStorage(db_path)
        assert reopened.read_all(ACCOUNTS_TABLE) == ["Alice|1001|1.00", "Bob|1002|2.00"]
        reopened.close()

    def test_closed_storage_raises(self):
        storage = SQLiteStorage()
        storage.close()

        with pytest.raises(StoreUnavailable, match="closed"):
            storage.read_all(ACCOUNTS_TABLE)


class TestCreateStorage:
    """Test backend selection from configuration"""

    def test_file_backend(self, tmp_path):
        config = LedgerConfig(
            storage_backend="file", data_dir=str(tmp_path),
            accounts_file="bankdata.txt", transactions_file="tx.txt"
        )
        storage = create_storage(config)

        assert isinstance(storage, FlatFileStorage)
        assert storage.path_for(ACCOUNTS_TABLE) == Path(tmp_path) / "bankdata.txt"
        assert storage.path_for(TRANSACTIONS_TABLE) == Path(tmp_path) / "tx.txt"

    def test_memory_backend(self):
        assert isinstance(create_storage(LedgerConfig(storage_backend="memory")), InMemoryStorage)

    def test_sqlite_backend(self, tmp_path):
        storage = create_storage(LedgerConfig(storage_backend="SQLite", data_dir=str(tmp_path)))

        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == str(tmp_path / "ledger.db")
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_storage(LedgerConfig(storage_backend="postgres"))
