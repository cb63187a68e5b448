import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

from purchase_assistant.config import get_db_path as _configured_db_path

DB_PATH = _configured_db_path()


def get_db_path() -> Path:
    return DB_PATH


def get_conn() -> sqlite3.Connection:
    """Get a database connection."""
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(db_path)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA foreign_keys=ON;")
    return con


def _conn() -> sqlite3.Connection:
    return get_conn()


def init_db() -> None:
    con = _conn()
    cur = con.cursor()

    # Master data
    cur.execute("""
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS items (
        id INTEGER PRIMARY KEY,
        name TEXT,
        code TEXT,
        category_id INTEGER,
        rack_no TEXT,
        opening_stock REAL DEFAULT 0,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(category_id) REFERENCES categories(id) ON DELETE SET NULL
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS suppliers (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        phone TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY,
        name TEXT UNIQUE NOT NULL,
        phone TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    # Purchases
    cur.execute("""
    CREATE TABLE IF NOT EXISTS purchases (
        id INTEGER PRIMARY KEY,
        supplier_id INTEGER,
        purchase_date TEXT NOT NULL,
        reference_no TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(supplier_id) REFERENCES suppliers(id) ON DELETE SET NULL
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS purchase_items (
        id INTEGER PRIMARY KEY,
        purchase_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        quantity REAL NOT NULL DEFAULT 0,
        unit_price REAL NOT NULL DEFAULT 0,
        FOREIGN KEY(purchase_id) REFERENCES purchases(id) ON DELETE CASCADE,
        FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE
    );
    """)

    # Sales
    cur.execute("""
    CREATE TABLE IF NOT EXISTS sales (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER,
        sale_date TEXT NOT NULL,
        reference_no TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(customer_id) REFERENCES customers(id) ON DELETE SET NULL
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS sale_items (
        id INTEGER PRIMARY KEY,
        sale_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL,
        quantity REAL NOT NULL DEFAULT 0,
        unit_price REAL NOT NULL DEFAULT 0,
        FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE,
        FOREIGN KEY(item_id) REFERENCES items(id) ON DELETE CASCADE
    );
    """)

    # Stock per item: opening stock plus purchases minus sales.
    cur.execute("""
    CREATE VIEW IF NOT EXISTS item_stock_details AS
    SELECT
        i.id AS item_id,
        i.name AS item_name,
        i.code AS item_code,
        i.rack_no AS rack_no,
        i.category_id AS category_id,
        c.name AS category_name,
        COALESCE(i.opening_stock, 0)
            + COALESCE((SELECT SUM(pi.quantity) FROM purchase_items pi WHERE pi.item_id = i.id), 0)
            - COALESCE((SELECT SUM(si.quantity) FROM sale_items si WHERE si.item_id = i.id), 0)
            AS current_stock
    FROM items i
    LEFT JOIN categories c ON c.id = i.category_id;
    """)

    cur.execute("""
    CREATE VIEW IF NOT EXISTS purchase_history AS
    SELECT
        pi.id AS purchase_item_id,
        pi.item_id AS item_id,
        p.id AS purchase_id,
        p.purchase_date AS purchase_date,
        s.name AS supplier_name,
        pi.unit_price AS unit_price
    FROM purchase_items pi
    JOIN purchases p ON p.id = pi.purchase_id
    LEFT JOIN suppliers s ON s.id = p.supplier_id;
    """)

    # Chat transcript
    cur.execute("""
    CREATE TABLE IF NOT EXISTS sessions (
        id INTEGER PRIMARY KEY,
        telegram_chat_id INTEGER,
        telegram_user_id INTEGER,
        title TEXT,
        is_active INTEGER DEFAULT 1,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY,
        session_id INTEGER,
        role TEXT CHECK(role IN ('user','assistant')) NOT NULL,
        content TEXT NOT NULL,
        payload TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
    );
    """)

    cur.execute("CREATE INDEX IF NOT EXISTS idx_items_name ON items(name);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_purchase_items_item ON purchase_items(item_id);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);")

    con.commit()
    con.close()


def get_or_create_active_session(chat_id: int, user_id: int) -> int:
    con = _conn()
    cur = con.cursor()

    cur.execute(
        "SELECT id FROM sessions WHERE telegram_chat_id=? AND telegram_user_id=? AND is_active=1 ORDER BY id DESC LIMIT 1",
        (chat_id, user_id),
    )
    row = cur.fetchone()
    if row:
        con.close()
        return int(row[0])

    cur.execute(
        "INSERT INTO sessions (telegram_chat_id, telegram_user_id, title, is_active) VALUES (?, ?, ?, 1)",
        (chat_id, user_id, "assistant"),
    )
    con.commit()
    session_id = int(cur.lastrowid)
    con.close()
    return session_id


def add_message(
    session_id: int,
    role: str,
    content: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    con = _conn()
    try:
        con.execute(
            "INSERT INTO messages (session_id, role, content, payload) VALUES (?, ?, ?, ?)",
            (
                session_id,
                role,
                content,
                json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str) if payload else None,
            ),
        )
        con.commit()
    finally:
        con.close()

