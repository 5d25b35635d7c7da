import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import table_count

from rms.application.container import build_container
from rms.domain.errors import StorageError
from rms.repositories import sqlite_repo
from rms.repositories.sqlite_repo import SqliteRepository


def _legacy_store(path: Path) -> None:
    """A store as written before constraints existed: schema v1 only."""
    repo = SqliteRepository(path)
    conn = sqlite3.connect(path)
    cur = conn.cursor()
    cur.execute("CREATE TABLE schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
    repo._migration_v1_base(cur)
    cur.execute("INSERT INTO schema_migrations (version, applied_at) VALUES (1, datetime('now'))")
    cur.executemany(
        "INSERT INTO products (name, price, unit) VALUES (?, ?, ?)",
        [("Tea", 2.0, "item"), ("tea", 3.0, "item"), ("Rice", 4.0, "")],
    )
    cur.execute("INSERT INTO sales (id, total_amount, currency, date, time) VALUES (1, 2, 'PKR', '2026-01-01', '10:00:00')")
    cur.executemany(
        "INSERT INTO sale_items (sale_id, product_name, price, quantity, unit) VALUES (?, ?, ?, ?, ?)",
        [(1, "Tea", 2.0, 1, "item"), (1, "Ghost", 1.0, 0, "item"), (99, "Orphan", 1.0, 1, "item")],
    )
    cur.execute(
        "INSERT INTO settings (id, restaurant_name, currency, logo) VALUES (1, '', 'usd', 'data:image/png;base64,aGVsbG8=')"
    )
    conn.commit()
    conn.close()


def test_init_db_is_idempotent_and_seeds_one_settings_row(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    assert repo.schema_version() == 3
    assert table_count(repo, "settings") == 1
    assert repo.missing_tables() == []
    assert list(tmp_path.glob("*.bak")) == []


def test_constraints_reject_orphan_lines(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()

    conn = repo._conn()
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO sale_items (sale_id, product_name, price, quantity, unit) VALUES (999, 'x', 1, 1, 'item')"
        )
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO products (name, price, unit) VALUES ('Bad', -1, 'item')")
    conn.rollback()
    conn.close()


def test_legacy_store_is_upgraded_in_place(tmp_path: Path):
    db = tmp_path / "legacy.db"
    _legacy_store(db)
    repo = SqliteRepository(db)

    repo.init_db()

    assert repo.schema_version() == 3
    products = repo.list_products()
    assert [(p.name, p.price, p.unit) for p in products] == [("Rice", 4.0, "item"), ("Tea", 2.0, "item")]
    assert table_count(repo, "sale_items") == 2
    settings = repo.get_settings()
    assert settings.currency == "USD"
    assert settings.restaurant_name
    assert settings.logo == b"hello"
    assert list(tmp_path.glob("*.bak")) == []


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v3_settings_normalisation(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()
    repo.add_product("Tea", 2.0, "item")

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 3")
    conn.commit()
    conn.close()
    before = repo.schema_version()

    broken = BrokenMigrationRepo(db)

    with pytest.raises(StorageError, match="Original database restored"):
        broken.run_migrations()

    assert repo.schema_version() == before
    assert [p.name for p in repo.list_products()] == ["Tea"]


def _legacy_store_with_discount(path: Path) -> None:
    repo = SqliteRepository(path)
    conn = sqlite3.connect(path)
    cur = conn.cursor()
    repo._migration_v1_base(cur)
    cur.execute("INSERT INTO products (name, price, unit) VALUES ('Discount', -2, 'item')")
    cur.execute("INSERT INTO sales (id, total_amount, currency, date, time) VALUES (1, 8, 'PKR', '2025-11-02', '21:00:00')")
    cur.executemany(
        "INSERT INTO sale_items (sale_id, product_name, price, quantity, unit) VALUES (1, ?, ?, 1, 'item')",
        [("Karahi", 10.0), ("Discount", -2.0)],
    )
    conn.commit()
    conn.close()


def _assert_sale_adds_up(transaction) -> None:
    assert [(line.name, line.subtotal) for line in transaction.lines] == [
        ("Karahi", Decimal("10.00")),
        ("Discount", Decimal("-2.00")),
    ]
    assert transaction.total_amount == sum((line.subtotal for line in transaction.lines), Decimal("0"))


def test_upgrade_keeps_discount_lines_of_recorded_sales(tmp_path: Path):
    db = tmp_path / "discount.db"
    _legacy_store_with_discount(db)
    repo = SqliteRepository(db)

    repo.init_db()

    _assert_sale_adds_up(repo.get_transaction(1))


def test_imported_legacy_snapshot_keeps_discount_lines(tmp_path: Path):
    legacy = tmp_path / "old_app.db"
    _legacy_store_with_discount(legacy)
    c = build_container(tmp_path / "live.db")

    c.snapshots.import_from_file(legacy)

    _assert_sale_adds_up(c.sales.get_transaction(1))
    assert c.analytics.get_analytics().summary.total_revenue == Decimal("8.00")


def test_unwritable_pre_migration_backup_is_a_storage_error(tmp_path: Path, monkeypatch):
    db = tmp_path / "locked.db"
    _legacy_store(db)

    def refuse_copy(src, dst, *args, **kwargs):
        raise PermissionError("read-only directory")

    monkeypatch.setattr(sqlite_repo.shutil, "copy2", refuse_copy)

    with pytest.raises(StorageError) as info:
        SqliteRepository(db).init_db()

    assert info.value.operation == "run_migrations"
    assert SqliteRepository(db).schema_version() == 1
