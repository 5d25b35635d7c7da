import base64
import shutil
import sqlite3
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from conftest import FixedClock

from rms.application.container import build_container
from rms.domain.errors import StorageError, ValidationError
from rms.domain.models import Settings
from rms.services.snapshot_service import SnapshotService


def _populated(tmp_path: Path, name: str = "live.db"):
    c = build_container(tmp_path / name, clock=FixedClock(datetime(2026, 5, 1, 13, 45, 0)))
    c.catalog.add_product("Tea", "2.00", "item")
    c.catalog.add_product("Rice", "3.00", "kg")
    c.settings.save_settings(Settings(restaurant_name="Snapshot Cafe", currency="USD", logo=b"\x89PNGlogo"))
    c.sales.record_sale(
        [
            {"name": "Tea", "unit_price": "2.00", "quantity": 3, "unit": "item"},
            {"name": "Rice", "unit_price": "3.00", "quantity": 1.5, "unit": "kg"},
        ],
        "USD",
    )
    return c


def _state(c):
    return c.catalog.list_products(), c.sales.get_transactions(), c.settings.get_settings()


def test_export_then_import_round_trip_keeps_state(tmp_path: Path):
    c = _populated(tmp_path)
    before = _state(c)

    data = c.snapshots.export_snapshot()
    c.snapshots.import_snapshot(data)

    assert data.startswith(b"SQLite format 3\x00")
    assert _state(c) == before
    assert not c.snapshots.backup_path.exists()


def test_import_replaces_store_with_other_snapshot(tmp_path: Path):
    source = _populated(tmp_path, "source.db")
    target = build_container(tmp_path / "target.db")
    target.catalog.add_product("Only Here", 1, "item")

    target.snapshots.import_snapshot(source.snapshots.export_snapshot())

    assert [p.name for p in target.catalog.list_products()] == ["Rice", "Tea"]
    assert target.sales.get_transactions()[0].total_amount == Decimal("10.50")
    assert target.settings.get_settings().restaurant_name == "Snapshot Cafe"


@pytest.mark.parametrize("corrupt", [b"", b"not a database", "half"])
def test_corrupt_snapshot_leaves_store_untouched(tmp_path: Path, corrupt):
    c = _populated(tmp_path)
    before = _state(c)
    data = c.snapshots.export_snapshot()
    if corrupt == "half":
        corrupt = data[:50]

    with pytest.raises(ValidationError):
        c.snapshots.import_snapshot(corrupt)

    assert _state(c) == before
    assert not c.snapshots.backup_path.exists()


def test_snapshot_without_store_tables_is_rejected(tmp_path: Path):
    c = _populated(tmp_path)
    before = _state(c)
    other = tmp_path / "other.db"
    conn = sqlite3.connect(other)
    conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
    conn.commit()
    conn.close()

    with pytest.raises(ValidationError, match="missing tables"):
        c.snapshots.import_snapshot(other.read_bytes())

    assert _state(c) == before


class HalfWritingSnapshotService(SnapshotService):
    """Overwrites the live file with half the bytes, then fails."""

    def _replace_live(self, staged: Path) -> None:
        data = staged.read_bytes()
        self.db_path.write_bytes(data[: len(data) // 2])
        raise OSError("disk full")


def test_failure_while_overwriting_restores_backup(tmp_path: Path):
    c = _populated(tmp_path)
    data = c.snapshots.export_snapshot()
    c.catalog.add_product("After Export", 5, "item")
    before = _state(c)

    svc = HalfWritingSnapshotService(c.repo)
    with pytest.raises(StorageError) as info:
        svc.import_snapshot(data)

    assert info.value.operation == "import_snapshot"
    assert _state(c) == before
    assert c.repo.integrity_check() == "ok"
    assert not svc.backup_path.exists()


def test_legacy_snapshot_is_migrated_on_import(tmp_path: Path):
    legacy = tmp_path / "legacy.db"
    logo = b"\x89PNG legacy"
    conn = sqlite3.connect(legacy)
    conn.executescript(
        """
        CREATE TABLE settings (id INTEGER PRIMARY KEY CHECK (id = 1), restaurant_name TEXT, address TEXT,
            phone TEXT, email TEXT, tax_rate TEXT, currency TEXT, opening_time TEXT, closing_time TEXT,
            receipt_footer TEXT, logo TEXT);
        CREATE TABLE products (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, price REAL NOT NULL,
            unit TEXT NOT NULL DEFAULT 'item', created_at DATETIME DEFAULT CURRENT_TIMESTAMP);
        CREATE TABLE sales (id INTEGER PRIMARY KEY AUTOINCREMENT, total_amount REAL NOT NULL, currency TEXT NOT NULL,
            date TEXT DEFAULT (date('now')), time TEXT DEFAULT (time('now')), created_at DATETIME DEFAULT CURRENT_TIMESTAMP);
        CREATE TABLE sale_items (id INTEGER PRIMARY KEY AUTOINCREMENT, sale_id INTEGER NOT NULL, product_name TEXT NOT NULL,
            price REAL NOT NULL, quantity REAL NOT NULL, unit TEXT NOT NULL, FOREIGN KEY (sale_id) REFERENCES sales (id));
        INSERT INTO products (name, price, unit) VALUES ('Karahi', 1200, 'plate');
        INSERT INTO sales (total_amount, currency, date, time) VALUES (2400, 'PKR', '2025-12-31', '20:15:00');
        INSERT INTO sale_items (sale_id, product_name, price, quantity, unit) VALUES (1, 'Karahi', 1200, 2, 'plate');
        """
    )
    conn.execute(
        "INSERT INTO settings (id, restaurant_name, currency, receipt_footer, logo) VALUES (1, 'Old Place', 'PKR', NULL, ?)",
        ("data:image/png;base64," + base64.b64encode(logo).decode("ascii"),),
    )
    conn.commit()
    conn.close()

    c = build_container(tmp_path / "live.db")
    c.snapshots.import_from_file(legacy)

    assert c.repo.schema_version() == 3
    settings = c.settings.get_settings()
    assert settings.restaurant_name == "Old Place"
    assert settings.logo == logo
    assert settings.receipt_footer == "Thank you for your business!"
    t = c.sales.get_transaction(1)
    assert t.date == "2025-12-31"
    assert t.total_amount == Decimal("2400.00")

    c.sales.delete_transaction(1)
    assert c.sales.get_transactions() == []


def test_export_to_file(tmp_path: Path):
    c = _populated(tmp_path)

    path = c.snapshots.export_to_file(tmp_path / "out.db")

    conn = sqlite3.connect(path)
    assert conn.execute("SELECT COUNT(*) FROM sale_items").fetchone()[0] == 2
    conn.close()


class FailingReplaceSnapshotService(SnapshotService):
    def _replace_live(self, staged: Path) -> None:
        raise OSError("disk full")


def test_failed_restore_keeps_backup_and_reports_storage_error(tmp_path: Path, monkeypatch):
    c = _populated(tmp_path)
    data = c.snapshots.export_snapshot()
    svc = FailingReplaceSnapshotService(c.repo)
    real_copy = shutil.copy2
    calls = []

    def copy_once(src, dst, *args, **kwargs):
        calls.append(dst)
        if len(calls) > 1:
            raise PermissionError("store directory became read-only")
        return real_copy(src, dst, *args, **kwargs)

    monkeypatch.setattr(shutil, "copy2", copy_once)

    with pytest.raises(StorageError) as info:
        svc.import_snapshot(data)

    assert info.value.operation == "import_snapshot"
    assert "backup kept" in str(info.value)
    assert svc.backup_path.exists()
