from __future__ import annotations

import base64
import binascii
import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from rms.domain.errors import IntegrityError, StorageError, ValidationError
from rms.domain.models import (
    DEFAULT_CURRENCY,
    DEFAULT_FOOTER,
    DEFAULT_RESTAURANT_NAME,
    DEFAULT_UNIT,
    Product,
    Settings,
    Transaction,
    TransactionLine,
)
from rms.domain.money import to_decimal, to_money

log = logging.getLogger(__name__)

REQUIRED_TABLES = ("settings", "products", "sales", "sale_items")


class SqliteRepository:
    def __init__(self, db_path: Path | str, clock: Callable[[], datetime] | None = None):
        self.db_path = str(db_path)
        self.clock = clock or datetime.now
        # Held by the sale recorder and snapshot import/export.
        self.write_lock = threading.RLock()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _session(self, operation: str, conflict: str | None = None) -> Iterator[sqlite3.Cursor]:
        """Cursor in one transaction: commit on success, rollback on error.

        Engine errors come out as StorageError(operation). When `conflict` is
        given, constraint violations become ValidationError(conflict).
        """
        try:
            conn = self._conn()
        except sqlite3.Error as e:
            raise StorageError(operation, str(e)) from e
        try:
            yield conn.cursor()
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if conflict:
                raise ValidationError(conflict) from e
            raise StorageError(operation, str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(operation, str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        self.run_migrations()
        self._ensure_default_settings()

    # ---------- Migrations ----------
    def _migrations(self) -> list[tuple[int, Callable[[sqlite3.Cursor], None]]]:
        return [
            (1, self._migration_v1_base),
            (2, self._migration_v2_constraints),
            (3, self._migration_v3_settings_normalisation),
        ]

    def schema_version(self) -> int:
        with self._session("schema_version") as cur:
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            return int(cur.fetchone()[0])

    def run_migrations(self) -> None:
        migrations = self._migrations()
        current_version = self.schema_version()
        if current_version >= migrations[-1][0]:
            return

        backup_path = self._create_pre_migration_backup()
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
                log.info("migration_applied version=%s db=%s", version, self.db_path)
            conn.commit()
        except Exception as exc:
            conn.rollback()
            conn.close()
            self._restore_pre_migration_backup(backup_path)
            raise StorageError(
                "run_migrations",
                "Database migration failed. Original database restored from automatic backup.",
            ) from exc
        else:
            conn.close()
            if backup_path is not None:
                backup_path.unlink(missing_ok=True)

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        try:
            shutil.copy2(db_file, backup_file)
        except OSError as e:
            raise StorageError("run_migrations", f"could not back up store before migrating: {e}") from e
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)
        log.warning("migration_rolled_back db=%s backup=%s", self.db_path, backup_path.name)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        # Same layout as stores written by the first desktop release.
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            restaurant_name TEXT,
            address TEXT,
            phone TEXT,
            email TEXT,
            tax_rate TEXT,
            currency TEXT,
            opening_time TEXT,
            closing_time TEXT,
            receipt_footer TEXT,
            logo TEXT
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            price REAL NOT NULL,
            unit TEXT NOT NULL DEFAULT 'item',
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sales (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            total_amount REAL NOT NULL,
            currency TEXT NOT NULL,
            date TEXT DEFAULT (date('now')),
            time TEXT DEFAULT (time('now')),
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sale_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sale_id INTEGER NOT NULL,
            product_name TEXT NOT NULL,
            price REAL NOT NULL,
            quantity REAL NOT NULL,
            unit TEXT NOT NULL,
            FOREIGN KEY (sale_id) REFERENCES sales (id)
        )
        """
        )

    def _migration_v2_constraints(self, cur: sqlite3.Cursor) -> None:
        self._rebuild_products_with_constraints(cur)
        self._rebuild_sale_items_with_constraints(cur)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_date ON sales(date)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_items_sale ON sale_items(sale_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_items_name ON sale_items(product_name)")

    def _rebuild_products_with_constraints(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products_new (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE UNIQUE CHECK(length(trim(name)) > 0),
                price REAL NOT NULL CHECK(price >= 0),
                unit TEXT NOT NULL DEFAULT 'item',
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        # Oldest row wins when legacy data holds the same name twice.
        cur.execute(
            """
            INSERT OR IGNORE INTO products_new (id, name, price, unit, created_at)
            SELECT id, trim(name), MAX(price, 0),
                   CASE WHEN trim(COALESCE(unit, '')) = '' THEN 'item' ELSE unit END,
                   created_at
            FROM products
            WHERE length(trim(name)) > 0
            ORDER BY id
            """
        )
        cur.execute("SELECT (SELECT COUNT(*) FROM products) - (SELECT COUNT(*) FROM products_new)")
        dropped = int(cur.fetchone()[0])
        if dropped:
            log.warning("migration_dropped_duplicate_products count=%s", dropped)
        cur.execute("DROP TABLE products")
        cur.execute("ALTER TABLE products_new RENAME TO products")

    def _rebuild_sale_items_with_constraints(self, cur: sqlite3.Cursor) -> None:
        # Recorded lines are copied unchanged, negative discount lines included.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items_new (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_name TEXT NOT NULL,
                price REAL NOT NULL,
                quantity REAL NOT NULL,
                unit TEXT NOT NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute(
            """
            INSERT INTO sale_items_new (id, sale_id, product_name, price, quantity, unit)
            SELECT id, sale_id, product_name, price, quantity, unit
            FROM sale_items
            WHERE sale_id IN (SELECT id FROM sales)
            """
        )
        cur.execute("SELECT (SELECT COUNT(*) FROM sale_items) - (SELECT COUNT(*) FROM sale_items_new)")
        orphans = int(cur.fetchone()[0])
        if orphans:
            log.warning("migration_dropped_orphan_sale_items count=%s", orphans)
        cur.execute("DROP TABLE sale_items")
        cur.execute("ALTER TABLE sale_items_new RENAME TO sale_items")

    def _migration_v3_settings_normalisation(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            SELECT restaurant_name, currency, receipt_footer, address, phone, email, logo
            FROM settings WHERE id = 1
            """
        )
        row = cur.fetchone()
        if not row:
            return

        logo = row[6]
        if isinstance(logo, str):
            logo = _decode_legacy_logo(logo)

        cur.execute(
            """
            UPDATE settings
            SET restaurant_name=?, currency=?, receipt_footer=?, address=?, phone=?, email=?, logo=?
            WHERE id = 1
            """,
            (
                row[0] or DEFAULT_RESTAURANT_NAME,
                (row[1] or DEFAULT_CURRENCY).upper(),
                row[2] if row[2] is not None else DEFAULT_FOOTER,
                row[3] or "",
                row[4] or "",
                row[5] or "",
                logo,
            ),
        )

    def _ensure_default_settings(self) -> None:
        with self._session("seed_settings") as cur:
            cur.execute(
                """
                INSERT OR IGNORE INTO settings (
                    id, restaurant_name, address, phone, email, currency, receipt_footer
                ) VALUES (1, ?, '', '', '', ?, ?)
                """,
                (DEFAULT_RESTAURANT_NAME, DEFAULT_CURRENCY, DEFAULT_FOOTER),
            )

    # ---------- Products ----------
    def add_product(self, name: str, price: float, unit: str) -> int:
        with self._session("add_product", conflict=f"A product named '{name}' already exists.") as cur:
            cur.execute(
                "INSERT INTO products (name, price, unit) VALUES (?, ?, ?)",
                (name, float(price), unit),
            )
            return int(cur.lastrowid)

    def update_product(self, product_id: int, name: str, price: float, unit: str) -> bool:
        with self._session("update_product", conflict=f"A product named '{name}' already exists.") as cur:
            cur.execute(
                "UPDATE products SET name=?, price=?, unit=? WHERE id=?",
                (name, float(price), unit, int(product_id)),
            )
            return cur.rowcount > 0

    def delete_product(self, product_id: int) -> bool:
        with self._session("delete_product") as cur:
            cur.execute("DELETE FROM products WHERE id=?", (int(product_id),))
            return cur.rowcount > 0

    def list_products(self) -> list[Product]:
        with self._session("list_products") as cur:
            cur.execute("SELECT id, name, price, unit FROM products ORDER BY name COLLATE NOCASE ASC, id ASC")
            rows = cur.fetchall()
        return [_product(r) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        with self._session("get_product") as cur:
            cur.execute("SELECT id, name, price, unit FROM products WHERE id=?", (int(product_id),))
            r = cur.fetchone()
        return _product(r) if r else None

    # ---------- Settings ----------
    def get_settings(self) -> Settings:
        with self._session("get_settings") as cur:
            cur.execute(
                """
                SELECT restaurant_name, address, phone, email, tax_rate, currency,
                       opening_time, closing_time, receipt_footer, logo
                FROM settings WHERE id = 1
                """
            )
            r = cur.fetchone()
        if not r:
            return Settings()
        logo = r[9]
        if isinstance(logo, str):
            logo = _decode_legacy_logo(logo)
        return Settings(
            restaurant_name=r[0] or DEFAULT_RESTAURANT_NAME,
            address=r[1] or "",
            phone=r[2] or "",
            email=r[3] or "",
            tax_rate=(to_decimal(r[4]) if r[4] not in (None, "") else None),
            currency=r[5] or DEFAULT_CURRENCY,
            opening_time=r[6] or None,
            closing_time=r[7] or None,
            receipt_footer=r[8] if r[8] is not None else DEFAULT_FOOTER,
            logo=bytes(logo) if logo else None,
        )

    def save_settings(self, settings: Settings) -> None:
        with self._session("save_settings") as cur:
            cur.execute(
                """
                INSERT OR REPLACE INTO settings (
                    id, restaurant_name, address, phone, email, tax_rate,
                    currency, opening_time, closing_time, receipt_footer, logo
                ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    settings.restaurant_name,
                    settings.address,
                    settings.phone,
                    settings.email,
                    str(settings.tax_rate) if settings.tax_rate is not None else None,
                    settings.currency,
                    settings.opening_time,
                    settings.closing_time,
                    settings.receipt_footer,
                    sqlite3.Binary(settings.logo) if settings.logo else None,
                ),
            )

    # ---------- Sales ----------
    def create_sale(self, currency: str, total_amount, lines: Iterable[dict]) -> int:
        """Insert one sale and its lines in a single transaction.

        lines: [{name, price, quantity, unit}], amounts already rounded.
        The line sum is checked against `total_amount` before commit.
        """
        lines = list(lines)
        with self.write_lock, self._session("record_sale") as cur:
            now = self.clock().replace(microsecond=0)
            cur.execute(
                """
                INSERT INTO sales (total_amount, currency, date, time, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (float(total_amount), currency, now.date().isoformat(), now.time().isoformat(), now.isoformat(sep=" ")),
            )
            sale_id = int(cur.lastrowid)

            for it in lines:
                cur.execute(
                    """
                    INSERT INTO sale_items (sale_id, product_name, price, quantity, unit)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (sale_id, it["name"], float(it["price"]), float(it["quantity"]), it["unit"]),
                )

            self._verify_sale_total(cur, sale_id)
            return sale_id

    def _verify_sale_total(self, cur: sqlite3.Cursor, sale_id: int) -> None:
        cur.execute("SELECT total_amount FROM sales WHERE id=?", (sale_id,))
        total = to_money(cur.fetchone()[0])
        cur.execute("SELECT price, quantity FROM sale_items WHERE sale_id=?", (sale_id,))
        line_sum = sum((to_money(to_decimal(p) * to_decimal(q)) for p, q in cur.fetchall()), to_money(0))
        if line_sum != total:
            raise IntegrityError(f"Sale total {total} does not match line sum {line_sum}.")

    def get_transaction(self, sale_id: int) -> Optional[Transaction]:
        found = self._load_transactions("get_transaction", "WHERE s.id = ?", (int(sale_id),))
        return found[0] if found else None

    def list_transactions(self, start: Optional[date] = None, end: Optional[date] = None) -> list[Transaction]:
        where, params = _date_filter(start, end, "s.date")
        return self._load_transactions("get_transactions", where, params)

    def _load_transactions(self, operation: str, where: str, params: tuple) -> list[Transaction]:
        with self._session(operation) as cur:
            cur.execute(
                f"""
                SELECT s.id, s.total_amount, s.currency, s.date, s.time
                FROM sales s
                {where}
                ORDER BY s.id DESC
                """,
                params,
            )
            headers = cur.fetchall()
            cur.execute(
                f"""
                SELECT si.sale_id, si.product_name, si.price, si.quantity, si.unit
                FROM sale_items si
                JOIN sales s ON s.id = si.sale_id
                {where}
                ORDER BY si.sale_id, si.id
                """,
                params,
            )
            items = cur.fetchall()

        lines_by_sale: dict[int, list[TransactionLine]] = {}
        for sale_id, name, price, quantity, unit in items:
            price_d = to_money(price)
            qty_d = to_decimal(quantity).normalize()
            lines_by_sale.setdefault(int(sale_id), []).append(
                TransactionLine(
                    name=str(name),
                    price=price_d,
                    quantity=qty_d,
                    unit=str(unit),
                    subtotal=to_money(price_d * qty_d),
                )
            )
        return [
            Transaction(
                id=int(r[0]),
                lines=tuple(lines_by_sale.get(int(r[0]), ())),
                total_amount=to_money(r[1]),
                currency=str(r[2]),
                date=str(r[3]),
                time=str(r[4]),
            )
            for r in headers
        ]

    def delete_transaction(self, sale_id: int) -> bool:
        with self.write_lock, self._session("delete_transaction") as cur:
            cur.execute("DELETE FROM sales WHERE id=?", (int(sale_id),))
            return cur.rowcount > 0

    # ---------- Analytics ----------
    def daily_revenue(self, start: Optional[date] = None, end: Optional[date] = None) -> list[tuple[str, float, int]]:
        where, params = _date_filter(start, end, "date")
        with self._session("get_analytics") as cur:
            cur.execute(
                f"""
                SELECT date, COALESCE(SUM(total_amount), 0), COUNT(*)
                FROM sales
                {where}
                GROUP BY date
                ORDER BY date ASC
                """,
                params,
            )
            rows = cur.fetchall()
        return [(str(r[0]), float(r[1]), int(r[2])) for r in rows]

    def product_totals(self, start: Optional[date] = None, end: Optional[date] = None) -> list[tuple[str, float, float]]:
        """(name, Σquantity, Σsubtotal) per product name, most sold first."""
        where, params = _date_filter(start, end, "s.date")
        with self._session("get_analytics") as cur:
            cur.execute(
                f"""
                SELECT si.product_name,
                       SUM(si.quantity) AS units_sold,
                       COALESCE(SUM(ROUND(si.price * si.quantity, 2)), 0) AS revenue
                FROM sale_items si
                JOIN sales s ON s.id = si.sale_id
                {where}
                GROUP BY si.product_name
                ORDER BY units_sold DESC, si.product_name ASC
                """,
                params,
            )
            rows = cur.fetchall()
        return [(str(r[0]), float(r[1]), float(r[2])) for r in rows]

    def sales_summary(self, start: Optional[date] = None, end: Optional[date] = None) -> tuple[int, float]:
        where, params = _date_filter(start, end, "date")
        with self._session("get_analytics") as cur:
            cur.execute(f"SELECT COUNT(*), COALESCE(SUM(total_amount), 0) FROM sales {where}", params)
            c, total = cur.fetchone()
        return int(c), float(total)

    # ---------- Maintenance ----------
    def integrity_check(self) -> str:
        with self._session("integrity_check") as cur:
            cur.execute("PRAGMA integrity_check")
            row = cur.fetchone()
        return str(row[0]) if row else "unknown"

    def missing_tables(self) -> list[str]:
        with self._session("inspect_schema") as cur:
            cur.execute("SELECT name FROM sqlite_master WHERE type='table'")
            present = {str(r[0]) for r in cur.fetchall()}
        return [t for t in REQUIRED_TABLES if t not in present]

    def backup_to(self, target: Path | str) -> None:
        """Consistent copy of the live store through the SQLite backup API."""
        try:
            src = self._conn()
            dst = sqlite3.connect(str(target))
        except sqlite3.Error as e:
            raise StorageError("export_snapshot", str(e)) from e
        try:
            src.backup(dst)
        except sqlite3.Error as e:
            raise StorageError("export_snapshot", str(e)) from e
        finally:
            dst.close()
            src.close()


def _product(r) -> Product:
    return Product(id=int(r[0]), name=str(r[1]), price=to_money(r[2]), unit=str(r[3] or DEFAULT_UNIT))


def _date_filter(start: Optional[date], end: Optional[date], column: str) -> tuple[str, tuple]:
    clauses = []
    params: list[str] = []
    if start is not None:
        clauses.append(f"{column} >= ?")
        params.append(start.isoformat())
    if end is not None:
        clauses.append(f"{column} <= ?")
        params.append(end.isoformat())
    if not clauses:
        return "", ()
    return "WHERE " + " AND ".join(clauses), tuple(params)


def _decode_legacy_logo(text: str) -> Optional[bytes]:
    """Logos used to be kept as base64 text, optionally as a data URL."""
    text = text.strip()
    if not text:
        return None
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        log.warning("settings_logo_undecodable length=%s", len(text))
        return None
