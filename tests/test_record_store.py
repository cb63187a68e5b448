import json

import pytest

from services import memory
from services.record_store import RecordStoreError, SqliteRecordStore, split_filter_key, tokenize


def test_split_filter_key():
    assert split_filter_key("name") == ("name", "eq")
    assert split_filter_key("name__ilike") == ("name", "ilike")
    with pytest.raises(RecordStoreError):
        split_filter_key("name__regex")


def test_find_one_ilike_is_case_insensitive_exact(store, seed):
    seed.category("Snacks")
    seed.category("Snacks & Sweets")

    row = store.find_one("categories", {"name__ilike": "SNACKS"})
    assert row is not None
    assert row["name"] == "Snacks"
    assert store.find_one("categories", {"name__ilike": "snack"}) is None


def test_find_many_icontains_order_and_limit(store, seed):
    for name in ["Basmati Rice", "Brown Rice", "Rice Flour", "Wheat Flour"]:
        seed.item(name)

    rows = store.find_many("item_stock_details", {"item_name__icontains": "rice"}, order_by="item_id")
    assert [r["item_name"] for r in rows] == ["Basmati Rice", "Brown Rice", "Rice Flour"]

    rows = store.find_many("item_stock_details", {"item_name__icontains": "RICE"}, order_by="-item_id", limit=2)
    assert [r["item_name"] for r in rows] == ["Rice Flour", "Brown Rice"]


def test_icontains_treats_wildcards_literally(store, seed):
    seed.item("100% Cotton Towel")
    seed.item("Cotton Towel")

    rows = store.find_many("item_stock_details", {"item_name__icontains": "100%"})
    assert [r["item_name"] for r in rows] == ["100% Cotton Towel"]


def test_equality_filter_and_null(store, seed):
    cat = seed.category("Grains")
    seed.item("Oats", category_id=cat)
    seed.item("Loose Sugar")

    assert [r["item_name"] for r in store.find_many("item_stock_details", {"category_id": cat})] == ["Oats"]
    assert [r["item_name"] for r in store.find_many("item_stock_details", {"category_id": None})] == [
        "Loose Sugar"
    ]


def test_stock_view_adds_purchases_and_subtracts_sales(store, seed):
    supplier = seed.supplier("Acme")
    item = seed.item("Milk", stock=5)
    seed.purchase(item, supplier_id=supplier, purchase_date="2024-01-02", unit_price=30, quantity=10)
    seed.sale(item, quantity=3)

    row = store.find_one("item_stock_details", {"item_id": item})
    assert row["current_stock"] == 12


def test_text_search_matches_word_prefixes_ranked_by_hits(store, seed):
    seed.item("Brown Sugar")
    seed.item("Basmati Rice Premium")
    seed.item("Rice Bran Oil")
    seed.item("Price Tag")

    rows = store.text_search("item_stock_details", "item_name", "premium rice", limit=5)
    names = [r["item_name"] for r in rows]
    assert names[0] == "Basmati Rice Premium"
    assert "Rice Bran Oil" in names
    # "price" does not start with "rice".
    assert "Price Tag" not in names
    assert "Brown Sugar" not in names


def test_text_search_without_tokens_returns_nothing(store, seed):
    seed.item("Milk")
    assert store.text_search("item_stock_details", "item_name", "?!", limit=5) == []


def test_unknown_table_or_column_raises(store):
    with pytest.raises(RecordStoreError):
        store.find_many("nope", {})
    with pytest.raises(RecordStoreError):
        store.find_many("items", {"colour": "red"})
    with pytest.raises(RecordStoreError):
        store.find_many("items; DROP TABLE items", {})
    with pytest.raises(RecordStoreError):
        store.find_many("items", {}, order_by="-colour")


def test_connection_failure_is_wrapped(tmp_path):
    import sqlite3

    def broken_connect():
        raise sqlite3.OperationalError("unable to open database file")

    with pytest.raises(RecordStoreError):
        SqliteRecordStore(connect=broken_connect).find_many("items", {})


def test_tokenize():
    assert tokenize("Brown-Rice 5kg!") == ["brown", "rice", "5kg"]
    assert tokenize("Crème_Fraîche ÉPICES") == ["crème", "fraîche", "épices"]


def test_transcript_round_trip():
    session_id = memory.get_or_create_active_session(10, 20)
    assert memory.get_or_create_active_session(10, 20) == session_id

    memory.add_message(session_id, "user", "stock of milk")
    memory.add_message(session_id, "assistant", "You have 4 of Milk", payload={"kind": "Answered"})

    con = memory.get_conn()
    try:
        rows = con.execute(
            "SELECT role, payload FROM messages WHERE session_id=? ORDER BY id", (session_id,)
        ).fetchall()
    finally:
        con.close()
    assert [r["role"] for r in rows] == ["user", "assistant"]
    assert rows[0]["payload"] is None
    assert json.loads(rows[1]["payload"]) == {"kind": "Answered"}


def test_icontains_folds_non_ascii_case(store, seed):
    seed.item("ÉPICES Mix")
    seed.item("Straße Tea")
    seed.item("Epices Plain")

    rows = store.find_many("item_stock_details", {"item_name__icontains": "épices"})
    assert [r["item_name"] for r in rows] == ["ÉPICES Mix"]

    rows = store.find_many("item_stock_details", {"item_name__icontains": "STRASSE"})
    assert [r["item_name"] for r in rows] == ["Straße Tea"]


def test_ilike_folds_non_ascii_case(store, seed):
    seed.category("Épices")
    assert store.find_one("categories", {"name__ilike": "ÉPICES"})["name"] == "Épices"
    assert store.find_one("categories", {"name__ilike": "épices"})["name"] == "Épices"


def test_text_search_matches_non_ascii_words(store, seed):
    seed.item("Mix ÉPICES Fortes")
    seed.item("Crème Fraîche")

    rows = store.text_search("item_stock_details", "item_name", "fortes épices", limit=5)
    assert [r["item_name"] for r in rows] == ["Mix ÉPICES Fortes"]
    rows = store.text_search("item_stock_details", "item_name", "fraî", limit=5)
    assert [r["item_name"] for r in rows] == ["Crème Fraîche"]


def test_unusable_database_directory_is_wrapped(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    memory.DB_PATH = blocker / "sub" / "assistant.db"

    store = SqliteRecordStore()
    with pytest.raises(RecordStoreError):
        store.find_many("items", {})
    with pytest.raises(RecordStoreError):
        store.text_search("items", "name", "rice")
