"""Shared fixtures: a throwaway SQLite database and helpers to seed it."""
from pathlib import Path
from typing import Optional

import pytest

from services import memory
from services.record_store import SqliteRecordStore


@pytest.fixture(autouse=True)
def setup_db(tmp_path):
    original = memory.DB_PATH
    memory.DB_PATH = Path(tmp_path) / "assistant_test.db"
    memory.init_db()
    yield
    memory.DB_PATH = original


@pytest.fixture
def store() -> SqliteRecordStore:
    return SqliteRecordStore()


class Seeder:
    def _insert(self, sql: str, params: tuple) -> int:
        con = memory.get_conn()
        try:
            cur = con.execute(sql, params)
            con.commit()
            return int(cur.lastrowid)
        finally:
            con.close()

    def category(self, name: str) -> int:
        return self._insert("INSERT INTO categories (name) VALUES (?)", (name,))

    def supplier(self, name: str) -> int:
        return self._insert("INSERT INTO suppliers (name) VALUES (?)", (name,))

    def customer(self, name: str) -> int:
        return self._insert("INSERT INTO customers (name) VALUES (?)", (name,))

    def item(
        self,
        name: Optional[str],
        *,
        code: Optional[str] = None,
        stock: float = 0,
        rack_no: Optional[str] = None,
        category_id: Optional[int] = None,
    ) -> int:
        return self._insert(
            "INSERT INTO items (name, code, opening_stock, rack_no, category_id) VALUES (?, ?, ?, ?, ?)",
            (name, code, stock, rack_no, category_id),
        )

    def purchase(
        self,
        item_id: int,
        *,
        supplier_id: Optional[int],
        purchase_date: str,
        unit_price: float,
        quantity: float = 1,
    ) -> int:
        purchase_id = self._insert(
            "INSERT INTO purchases (supplier_id, purchase_date) VALUES (?, ?)",
            (supplier_id, purchase_date),
        )
        self._insert(
            "INSERT INTO purchase_items (purchase_id, item_id, quantity, unit_price) VALUES (?, ?, ?, ?)",
            (purchase_id, item_id, quantity, unit_price),
        )
        return purchase_id

    def sale(self, item_id: int, *, quantity: float, sale_date: str = "2024-05-01") -> int:
        sale_id = self._insert("INSERT INTO sales (sale_date) VALUES (?)", (sale_date,))
        self._insert(
            "INSERT INTO sale_items (sale_id, item_id, quantity, unit_price) VALUES (?, ?, ?, 0)",
            (sale_id, item_id, quantity),
        )
        return sale_id


@pytest.fixture
def seed() -> Seeder:
    return Seeder()
