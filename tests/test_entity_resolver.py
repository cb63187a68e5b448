import pytest

from services import entity_resolver
from services.entity_resolver import candidate_from_row, fetch_purchase_history, find_named_entity, lookup_items


def test_lookup_unique_match(store, seed):
    seed.item("Amul Milk 1L", code="MLK1", stock=7, rack_no="A3")
    seed.item("Bread")

    result = lookup_items(store, "milk")
    assert result.status == "unique"
    assert result.via == "substring"
    best = result.best
    assert best.name == "Amul Milk 1L"
    assert best.code == "MLK1"
    assert best.current_stock == 7
    assert best.rack_no == "A3"


def test_lookup_ambiguous_keeps_store_order(store, seed):
    seed.item("Basmati Rice")
    seed.item("Brown Rice")

    result = lookup_items(store, "rice")
    assert result.status == "ambiguous"
    assert result.best is None
    assert [c.name for c in result.candidates] == ["Basmati Rice", "Brown Rice"]


def test_lookup_caps_candidates(store, seed):
    for i in range(8):
        seed.item(f"Soap {i}")

    result = lookup_items(store, "soap", max_results=5)
    assert len(result.candidates) == 5
    assert [c.name for c in result.candidates] == [f"Soap {i}" for i in range(5)]


def test_lookup_falls_back_to_word_search(store, seed):
    seed.item("Basmati Rice Premium")

    # No item name contains the whole phrase, but the words match.
    result = lookup_items(store, "premium basmati")
    assert result.status == "unique"
    assert result.via == "text_search"
    assert result.best.name == "Basmati Rice Premium"


def test_lookup_empty_after_both_passes(store, seed):
    seed.item("Bread")
    result = lookup_items(store, "caviar")
    assert result.status == "empty"
    assert result.candidates == []
    assert result.via == ""


def test_fallback_only_runs_when_first_pass_is_empty(seed):
    class CountingStore(entity_resolver.RecordStore):
        def __init__(self):
            self.text_searches = 0

        def find_many(self, table, filters, order_by=None, limit=None):
            return [{"item_id": 1, "item_name": "Milk", "current_stock": 2}]

        def text_search(self, table, column, query, limit=None):
            self.text_searches += 1
            return []

    counting = CountingStore()
    assert lookup_items(counting, "milk").status == "unique"
    assert counting.text_searches == 0


def test_candidate_from_row_defaults():
    item = candidate_from_row({"item_id": "4", "item_name": None, "item_code": "", "current_stock": None})
    assert item.item_id == 4
    assert item.display_name == "Unknown Item"
    assert item.display_code == "N/A"
    assert item.current_stock == 0.0
    assert item.rack_no is None


def test_find_named_entity_exact_case_insensitive(store, seed):
    supplier_id = seed.supplier("Acme Traders")

    assert find_named_entity(store, "supplier", "acme traders") == {"id": supplier_id, "name": "Acme Traders"}
    assert find_named_entity(store, "supplier", "acme") is None
    assert find_named_entity(store, "customer", "acme traders") is None
    with pytest.raises(ValueError):
        find_named_entity(store, "warehouse", "main")


def test_purchase_history_newest_first_and_limited(store, seed):
    acme = seed.supplier("Acme")
    item = seed.item("Milk")
    for i in range(12):
        seed.purchase(item, supplier_id=acme, purchase_date=f"2024-01-{i + 1:02d}", unit_price=20 + i)
    seed.purchase(item, supplier_id=None, purchase_date="2024-02-01", unit_price=50)

    history = fetch_purchase_history(store, item, limit=10)
    assert len(history) == 10
    assert history[0].shop_name == "N/A"
    assert history[0].unit_price == 50
    assert history[1].purchase_date == "2024-01-12"
    assert history[1].shop_name == "Acme"
