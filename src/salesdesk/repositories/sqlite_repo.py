from __future__ import annotations

import sqlite3
import hashlib
import hmac
import os
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from salesdesk.domain.errors import DuplicateReceiptError
from salesdesk.domain.models import (
    BreakdownRow,
    BuyerSnapshot,
    Cancelled,
    DailyTotal,
    Pending,
    Product,
    Sale,
    SaleItemView,
    SaleLineItem,
    SaleRecord,
    User,
    Validated,
)

DEFAULT_PRODUCTS: tuple[tuple[str, str, int], ...] = (
    ("Riz", "50 KG", 16500),
    ("Riz", "25 KG", 8250),
    ("Maïs", "100 KG", 13500),
    ("Mil", "50 KG", 6750),
    ("Mil", "100 KG", 13500),
    ("Sorgho", "50 KG", 6750),
    ("Sorgho", "100 KG", 13500),
)

_SALE_SELECT = """
    SELECT s.id, s.receipt_number, s.agent_id,
           s.buyer_last_name, s.buyer_first_name, s.buyer_matricule, s.buyer_grade,
           s.total_amount, s.status,
           s.validated_by, s.validated_at,
           s.cancelled_by, s.cancelled_at, s.cancellation_reason, s.cancellation_note,
           s.created_at,
           u.name, v.name, c.name
    FROM sales s
    JOIN users u ON u.id = s.agent_id
    LEFT JOIN users v ON v.id = s.validated_by
    LEFT JOIN users c ON c.id = s.cancelled_by
"""


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def init_db(self) -> None:
        self.run_migrations()
        self._ensure_default_catalog()
        self._ensure_bootstrap_admin()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_sale_indexes),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password TEXT NOT NULL,
                name TEXT NOT NULL,
                role TEXT NOT NULL CHECK(role IN ('admin','agent','controller')),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                weight TEXT NOT NULL,
                unit_price INTEGER NOT NULL CHECK(unit_price > 0),
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                UNIQUE(name, weight)
            )
            """
        )

        # Audit groups are mutually exclusive and follow the status.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                receipt_number TEXT NOT NULL UNIQUE,
                agent_id INTEGER NOT NULL,
                buyer_last_name TEXT NOT NULL,
                buyer_first_name TEXT NOT NULL,
                buyer_matricule TEXT NOT NULL,
                buyer_grade TEXT NOT NULL
                    CHECK(buyer_grade IN ('GP','Sous officier','Officier','Inspecteur','Commissaire')),
                total_amount INTEGER NOT NULL CHECK(total_amount > 0),
                status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending','validated','cancelled')),
                validated_by INTEGER,
                validated_at TEXT,
                cancelled_by INTEGER,
                cancelled_at TEXT,
                cancellation_reason TEXT CHECK(cancellation_reason IN ('stock_unavailable','not_eligible','other')),
                cancellation_note TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(agent_id) REFERENCES users(id),
                FOREIGN KEY(validated_by) REFERENCES users(id),
                FOREIGN KEY(cancelled_by) REFERENCES users(id),
                CHECK (
                    (status = 'pending'
                        AND validated_by IS NULL AND validated_at IS NULL
                        AND cancelled_by IS NULL AND cancelled_at IS NULL AND cancellation_reason IS NULL)
                    OR (status = 'validated'
                        AND validated_by IS NOT NULL AND validated_at IS NOT NULL
                        AND cancelled_by IS NULL AND cancelled_at IS NULL AND cancellation_reason IS NULL)
                    OR (status = 'cancelled'
                        AND cancelled_by IS NOT NULL AND cancelled_at IS NOT NULL AND cancellation_reason IS NOT NULL
                        AND validated_by IS NULL AND validated_at IS NULL)
                )
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_price INTEGER NOT NULL CHECK(unit_price > 0),
                total_price INTEGER NOT NULL CHECK(total_price = quantity * unit_price),
                FOREIGN KEY(sale_id) REFERENCES sales(id),
                FOREIGN KEY(product_id) REFERENCES products(id),
                UNIQUE(sale_id, product_id)
            )
            """
        )

    def _migration_v2_sale_indexes(self, cur: sqlite3.Cursor) -> None:
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_status ON sales(status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_agent ON sales(agent_id, created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_created ON sales(created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sales_matricule ON sales(buyer_matricule)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sale_items_sale ON sale_items(sale_id)")

    def _ensure_default_catalog(self) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM products")
        if int(cur.fetchone()[0]) > 0:
            conn.close()
            return
        cur.executemany(
            "INSERT INTO products (name, weight, unit_price) VALUES (?, ?, ?)",
            DEFAULT_PRODUCTS,
        )
        conn.commit()
        conn.close()

    def _ensure_bootstrap_admin(self) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM users WHERE role='admin'")
        admins = int(cur.fetchone()[0])
        if admins > 0:
            conn.close()
            return

        bootstrap_password = os.environ.get("SALESDESK_BOOTSTRAP_ADMIN_PASSWORD", "").strip() or secrets.token_urlsafe(12)
        cur.execute(
            """
            INSERT INTO users (username, password, name, role)
            VALUES ('admin', ?, 'Administrateur', 'admin')
            """,
            (self._hash_password(bootstrap_password),),
        )
        conn.commit()
        conn.close()

        # One-time onboarding channel: readable only by the owner.
        secret_file = Path(self.db_path).parent / ".admin_bootstrap_password"
        secret_file.write_text(bootstrap_password + "\n", encoding="utf-8")
        try:
            secret_file.chmod(0o600)
        except OSError:
            pass

    # ---------- Users ----------
    def list_users(self) -> list[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, name, role FROM users ORDER BY created_at DESC, id DESC")
        rows = cur.fetchall()
        conn.close()
        return [User(id=int(r[0]), username=str(r[1]), name=str(r[2]), role=str(r[3])) for r in rows]

    def get_user(self, user_id: int) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, name, role FROM users WHERE id=?", (int(user_id),))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return User(id=int(r[0]), username=str(r[1]), name=str(r[2]), role=str(r[3]))

    def authenticate_user(self, username: str, password: str) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, name, role, password FROM users WHERE username=?", (username,))
        row = cur.fetchone()
        conn.close()
        if not row or not self._verify_password(str(row[4]), password):
            return None
        return User(id=int(row[0]), username=str(row[1]), name=str(row[2]), role=str(row[3]))

    def create_user(self, username: str, password: str, name: str, role: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO users (username, password, name, role) VALUES (?, ?, ?, ?)",
            (username, self._hash_password(password), name, role),
        )
        uid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return uid

    # ---------- Products ----------
    def list_products(self) -> list[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, weight, unit_price FROM products ORDER BY name, weight")
        rows = cur.fetchall()
        conn.close()
        return [Product(id=int(r[0]), name=str(r[1]), weight=str(r[2]), unit_price=int(r[3])) for r in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, name, weight, unit_price FROM products WHERE id=?", (int(product_id),))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return Product(id=int(r[0]), name=str(r[1]), weight=str(r[2]), unit_price=int(r[3]))

    # ---------- Sales: writes ----------
    def create_sale_with_items(
        self,
        receipt_number: str,
        agent_id: int,
        buyer: BuyerSnapshot,
        total_amount: int,
        lines: Iterable[SaleLineItem],
        created_at: str,
    ) -> int:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute(
                """
                INSERT INTO sales (
                    receipt_number, agent_id, buyer_last_name, buyer_first_name,
                    buyer_matricule, buyer_grade, total_amount, status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    receipt_number,
                    int(agent_id),
                    buyer.last_name,
                    buyer.first_name,
                    buyer.matricule,
                    buyer.grade,
                    int(total_amount),
                    created_at,
                ),
            )
            sale_id = int(cur.lastrowid)
            self._insert_items(cur, sale_id, lines)
            conn.commit()
            return sale_id
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            if "receipt_number" in str(exc):
                raise DuplicateReceiptError(f"Receipt number already in use: {receipt_number}") from exc
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _insert_items(self, cur: sqlite3.Cursor, sale_id: int, lines: Iterable[SaleLineItem]) -> None:
        for line in lines:
            cur.execute(
                """
                INSERT INTO sale_items (sale_id, product_id, quantity, unit_price, total_price)
                VALUES (?, ?, ?, ?, ?)
                """,
                (sale_id, int(line.product_id), int(line.quantity), int(line.unit_price), int(line.line_total)),
            )

    def mark_validated(self, receipt_number: str, controller_id: int, validated_at: str) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE sales
            SET status='validated', validated_by=?, validated_at=?
            WHERE receipt_number=? AND status='pending'
            """,
            (int(controller_id), validated_at, receipt_number),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def mark_cancelled(
        self,
        receipt_number: str,
        agent_id: int,
        reason: str,
        note: Optional[str],
        cancelled_at: str,
    ) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE sales
            SET status='cancelled', cancelled_by=?, cancelled_at=?,
                cancellation_reason=?, cancellation_note=?
            WHERE receipt_number=? AND agent_id=? AND status='pending'
            """,
            (int(agent_id), cancelled_at, reason, note, receipt_number, int(agent_id)),
        )
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    def sale_status(self, receipt_number: str, agent_id: Optional[int] = None) -> Optional[str]:
        conn = self._conn()
        cur = conn.cursor()
        if agent_id is None:
            cur.execute("SELECT status FROM sales WHERE receipt_number=?", (receipt_number,))
        else:
            cur.execute(
                "SELECT status FROM sales WHERE receipt_number=? AND agent_id=?",
                (receipt_number, int(agent_id)),
            )
        row = cur.fetchone()
        conn.close()
        return str(row[0]) if row else None

    # ---------- Sales: reads ----------
    def get_sale_record(self, receipt_number: str) -> Optional[SaleRecord]:
        records = self.list_sale_records(receipt_number=receipt_number)
        return records[0] if records else None

    def list_sale_records(
        self,
        receipt_number: Optional[str] = None,
        agent_id: Optional[int] = None,
        status: Optional[str] = None,
        matricule: Optional[str] = None,
    ) -> list[SaleRecord]:
        clauses: list[str] = []
        params: list[object] = []
        if receipt_number is not None:
            clauses.append("s.receipt_number = ?")
            params.append(receipt_number)
        if agent_id is not None:
            clauses.append("s.agent_id = ?")
            params.append(int(agent_id))
        if status is not None:
            clauses.append("s.status = ?")
            params.append(status)
        if matricule:
            clauses.append("instr(lower(s.buyer_matricule), ?) > 0")
            params.append(matricule.lower())

        sql = _SALE_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY s.created_at DESC, s.id DESC"

        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql, params)
        rows = cur.fetchall()
        records = [self._row_to_record(r, self._items_for_sale(cur, int(r[0]))) for r in rows]
        conn.close()
        return records

    def _items_for_sale(self, cur: sqlite3.Cursor, sale_id: int) -> tuple[SaleItemView, ...]:
        cur.execute(
            """
            SELECT si.product_id, p.name, p.weight, si.quantity, si.unit_price, si.total_price
            FROM sale_items si
            JOIN products p ON p.id = si.product_id
            WHERE si.sale_id = ?
            ORDER BY p.name, p.weight
            """,
            (int(sale_id),),
        )
        return tuple(
            SaleItemView(
                product_id=int(r[0]),
                product_name=str(r[1]),
                product_weight=str(r[2]),
                quantity=int(r[3]),
                unit_price=int(r[4]),
                line_total=int(r[5]),
            )
            for r in cur.fetchall()
        )

    @staticmethod
    def _row_to_record(r, items: tuple[SaleItemView, ...]) -> SaleRecord:
        status_name = str(r[8])
        if status_name == "validated":
            status = Validated(by=int(r[9]), at=str(r[10]))
        elif status_name == "cancelled":
            status = Cancelled(by=int(r[11]), at=str(r[12]), reason=str(r[13]), note=(r[14] if r[14] is not None else None))
        else:
            status = Pending()

        sale = Sale(
            id=int(r[0]),
            receipt_number=str(r[1]),
            agent_id=int(r[2]),
            buyer=BuyerSnapshot(last_name=str(r[3]), first_name=str(r[4]), matricule=str(r[5]), grade=str(r[6])),
            total_amount=int(r[7]),
            status=status,
            created_at=str(r[15]),
        )
        return SaleRecord(
            sale=sale,
            agent_name=str(r[16]),
            validator_name=(str(r[17]) if r[17] is not None else None),
            canceller_name=(str(r[18]) if r[18] is not None else None),
            items=items,
        )

    # ---------- Statistics ----------
    def status_counts(self) -> dict[str, int]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT status, COUNT(*) FROM sales GROUP BY status")
        rows = cur.fetchall()
        conn.close()
        return {str(r[0]): int(r[1]) for r in rows}

    def validated_revenue(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COALESCE(SUM(total_amount), 0) FROM sales WHERE status='validated'")
        total = int(cur.fetchone()[0])
        conn.close()
        return total

    def daily_totals_between(self, start_iso: str, end_iso: str) -> list[DailyTotal]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT substr(created_at, 1, 10) AS d, COUNT(*), COALESCE(SUM(total_amount), 0)
            FROM sales
            WHERE status != 'cancelled' AND created_at >= ? AND created_at < ?
            GROUP BY d
            ORDER BY d DESC
            """,
            (start_iso, end_iso),
        )
        rows = cur.fetchall()
        conn.close()
        return [DailyTotal(date=str(r[0]), count=int(r[1]), revenue=int(r[2])) for r in rows]

    def totals_by_product(self) -> list[BreakdownRow]:
        return self._breakdown(
            """
            SELECT p.name || ' ' || p.weight AS k, SUM(si.quantity), SUM(si.total_price) AS revenue
            FROM sale_items si
            JOIN products p ON p.id = si.product_id
            JOIN sales s ON s.id = si.sale_id
            WHERE s.status != 'cancelled'
            GROUP BY si.product_id
            ORDER BY revenue DESC, k ASC
            """
        )

    def totals_by_agent(self) -> list[BreakdownRow]:
        return self._breakdown(
            """
            SELECT u.name AS k, COUNT(*), SUM(s.total_amount) AS revenue
            FROM sales s
            JOIN users u ON u.id = s.agent_id
            WHERE s.status != 'cancelled'
            GROUP BY s.agent_id
            ORDER BY revenue DESC, k ASC
            """
        )

    def totals_by_grade(self) -> list[BreakdownRow]:
        return self._breakdown(
            """
            SELECT buyer_grade AS k, COUNT(*), SUM(total_amount) AS revenue
            FROM sales
            WHERE status != 'cancelled'
            GROUP BY buyer_grade
            ORDER BY revenue DESC, k ASC
            """
        )

    def _breakdown(self, sql: str) -> list[BreakdownRow]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(sql)
        rows = cur.fetchall()
        conn.close()
        return [BreakdownRow(key=str(r[0]), count=int(r[1]), revenue=int(r[2])) for r in rows]

    @staticmethod
    def _hash_password(password: str, *, rounds: int = 200_000, salt: str | None = None) -> str:
        salt = salt or secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), bytes.fromhex(salt), rounds).hex()
        return f"pbkdf2_sha256${rounds}${salt}${digest}"

    @staticmethod
    def _verify_password(stored: str, provided: str) -> bool:
        if not stored.startswith("pbkdf2_sha256$"):
            return False
        try:
            _algo, rounds_s, salt, digest = stored.split("$", 3)
            candidate = hashlib.pbkdf2_hmac(
                "sha256",
                provided.encode("utf-8"),
                bytes.fromhex(salt),
                int(rounds_s),
            ).hex()
        except ValueError:
            return False
        return hmac.compare_digest(candidate, digest)
