"""Read-only record store used by the assistant.

The assistant never writes; it only needs three query shapes against the
business database: a single-row lookup, a filtered list, and a looser word
search. Filters are plain dicts::

    {"category_id": 3}                  # equality
    {"name__ilike": "snacks"}           # case-insensitive exact match
    {"item_name__icontains": "rice"}    # case-insensitive substring

``order_by`` is a column name, prefixed with ``-`` for descending order.
"""
from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional, Set, Tuple

from services import memory

logger = logging.getLogger(__name__)

FILTER_OPS = ("eq", "ilike", "icontains")

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Letters and digits of any script; underscores split words.
_TOKEN = re.compile(r"[^\W_]+")


class RecordStoreError(Exception):
    """Raised for any failed record store query."""


def split_filter_key(key: str) -> Tuple[str, str]:
    column, sep, op = str(key).partition("__")
    if not sep:
        return column, "eq"
    if op not in FILTER_OPS:
        raise RecordStoreError(f"Unsupported filter operator '{op}' in '{key}'.")
    return column, op


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def fold(text: Any) -> str:
    """Unicode case folding shared by queries and the SQL `fold()` function."""
    return str(text or "").casefold()


def _sql_fold(value: Any) -> Optional[str]:
    return None if value is None else str(value).casefold()


def tokenize(text: str) -> List[str]:
    return _TOKEN.findall(fold(text))


class RecordStore:
    """Query interface the assistant depends on."""

    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.find_many(table, filters, limit=1)
        return rows[0] if rows else None

    def find_many(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def text_search(
        self,
        table: str,
        column: str,
        query: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError


class SqliteRecordStore(RecordStore):
    """Record store over the local SQLite database in ``services.memory``."""

    def __init__(self, connect=None):
        self._connect = connect or memory.get_conn
        self._columns: Dict[str, Set[str]] = {}

    def _open(self) -> sqlite3.Connection:
        # memory.get_conn creates the parent directory, so OSError is possible too.
        try:
            con = self._connect()
        except (sqlite3.Error, OSError) as exc:
            raise RecordStoreError(f"Could not open record store: {exc}") from exc
        try:
            # SQLite LOWER() only folds ASCII letters.
            con.create_function("fold", 1, _sql_fold, deterministic=True)
        except sqlite3.Error as exc:
            con.close()
            raise RecordStoreError(f"Could not prepare record store: {exc}") from exc
        return con

    def _table_columns(self, con: sqlite3.Connection, table: str) -> Set[str]:
        if table in self._columns:
            return self._columns[table]
        if not _IDENTIFIER.match(table):
            raise RecordStoreError(f"Invalid table name '{table}'.")
        cols = {str(row[1]) for row in con.execute(f"PRAGMA table_info({table})").fetchall()}
        if not cols:
            raise RecordStoreError(f"Unknown table '{table}'.")
        self._columns[table] = cols
        return cols

    def _check_column(self, cols: Set[str], table: str, column: str) -> str:
        if column not in cols:
            raise RecordStoreError(f"Unknown column '{column}' on '{table}'.")
        return column

    def _where(self, cols: Set[str], table: str, filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for key, value in (filters or {}).items():
            column, op = split_filter_key(key)
            self._check_column(cols, table, column)
            if op == "eq":
                if value is None:
                    clauses.append(f"{column} IS NULL")
                else:
                    clauses.append(f"{column} = ?")
                    params.append(value)
            elif op == "ilike":
                clauses.append(f"fold({column}) = ?")
                params.append(fold(value))
            else:
                clauses.append(f"fold({column}) LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(fold(value))}%")
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order(self, cols: Set[str], table: str, order_by: Optional[str]) -> str:
        if not order_by:
            return ""
        descending = order_by.startswith("-")
        column = self._check_column(cols, table, order_by.lstrip("-"))
        return f" ORDER BY {column} {'DESC' if descending else 'ASC'}"

    def find_many(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        con = self._open()
        try:
            cols = self._table_columns(con, table)
            where, params = self._where(cols, table, filters)
            sql = f"SELECT * FROM {table}{where}{self._order(cols, table, order_by)}"
            if limit is not None:
                sql += " LIMIT ?"
                params.append(int(limit))
            logger.debug("record_store query: %s %s", sql, params)
            return [dict(row) for row in con.execute(sql, tuple(params)).fetchall()]
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Query on '{table}' failed: {exc}") from exc
        finally:
            con.close()

    def text_search(
        self,
        table: str,
        column: str,
        query: str,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        tokens = tokenize(query)
        if not tokens:
            return []
        con = self._open()
        try:
            cols = self._table_columns(con, table)
            self._check_column(cols, table, column)
            clauses: List[str] = []
            params: List[Any] = []
            for token in tokens:
                clauses.append(f"fold({column}) LIKE ? ESCAPE '\\'")
                params.append(f"%{_escape_like(token)}%")
            sql = f"SELECT * FROM {table} WHERE " + " OR ".join(clauses)
            rows = [dict(row) for row in con.execute(sql, tuple(params)).fetchall()]
        except sqlite3.Error as exc:
            raise RecordStoreError(f"Text search on '{table}' failed: {exc}") from exc
        finally:
            con.close()

        query_tokens = set(tokens)

        def _hits(row: Dict[str, Any]) -> int:
            words = tokenize(row.get(column) or "")
            return sum(1 for tok in query_tokens if any(word.startswith(tok) for word in words))

        # SQL narrows to rows containing a token anywhere; only word prefixes count.
        scored = [(_hits(row), row) for row in rows]
        # sorted() is stable, so ties keep the store's row order.
        ranked = [row for hits, row in sorted(scored, key=lambda pair: pair[0], reverse=True) if hits > 0]
        if limit is not None:
            ranked = ranked[: max(0, int(limit))]
        return ranked
