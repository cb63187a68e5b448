from services.assistant import Answered, Disambiguate, ItemFacts, Navigated, NeedsCreation, Problem
from services.entity_resolver import PurchaseHistoryEntry
from services.pending_selection import CandidateItem, SelectionPurpose
from services.tg_format import (
    format_currency,
    format_date,
    render_history_table,
    render_outcome,
    tg_card,
    tg_escape,
    web_url,
)

BASE = "http://shop.local/"


def test_escape_and_card():
    assert tg_escape("<b>&") == "&lt;b&gt;&amp;"
    assert tg_escape(None) == ""
    assert tg_card("Rice & Dal", ["line one", "", None]) == "<b>Rice &amp; Dal</b>\nline one"


def test_format_currency():
    assert format_currency(1234.5) == "₹1,234.50"
    assert format_currency(3, "usd") == "$3.00"
    assert format_currency(1, "JPY") == "JPY 1.00"


def test_format_date():
    assert format_date("2024-03-01T10:00:00Z") == "2024-03-01"
    assert format_date("") == "-"
    assert format_date("last week") == "last week"


def test_web_url_drops_empty_params():
    url = web_url(BASE, "/items", {"action": "add-item", "name": "Green Tea", "category_id": None})
    assert url == "http://shop.local/items?action=add-item&name=Green+Tea"
    assert web_url(BASE, "/") == "http://shop.local/"


def test_render_navigation_link():
    html = render_outcome(Navigated(page="items", route="/items", text="Navigating to the items page."), web_base_url=BASE)
    assert html == 'Navigating to the items page.\n<a href="http://shop.local/items">Open items</a>'


def test_render_creation_link_carries_hint():
    outcome = NeedsCreation(
        entity_kind="purchase",
        hint={"supplier_id": 4},
        route="/purchases/new",
        action="add-purchase",
        text='OK. I\'m starting a new purchase from "Acme".',
    )
    html = render_outcome(outcome, web_base_url=BASE)
    assert "&quot;Acme&quot;" in html
    assert 'href="http://shop.local/purchases/new?action=add-purchase&amp;supplier_id=4"' in html
    assert "Open purchase form" in html


def test_render_disambiguation_is_escaped_text():
    item = CandidateItem(item_id=1, name="Rice <5kg>", code="R1", current_stock=1)
    outcome = Disambiguate(candidates=(item,), purpose=SelectionPurpose.STOCK_ONLY, query="rice", text="1. Rice <5kg>")
    assert render_outcome(outcome) == "1. Rice &lt;5kg&gt;"


def test_render_answer_with_history_table():
    item = CandidateItem(item_id=1, name="Sugar", code="S1", current_stock=7, rack_no="D4")
    history = (
        PurchaseHistoryEntry(shop_name="A Very Long Supplier Name Ltd", purchase_date="2024-04-01", unit_price=40),
    )
    html = render_outcome(Answered(text="For Sugar", facts=ItemFacts(item=item, history=history)))

    assert "<b>Sugar (Code: S1)</b>" in html
    assert "<b>Current Stock:</b> 7 units" in html
    assert "<b>Rack No:</b> D4" in html
    assert "<b>Purchase History:</b>" in html
    assert "A Very Long Suppl…" in html
    assert "₹40.00" in html


def test_render_stock_answer_has_no_history_section():
    item = CandidateItem(item_id=1, name="Sugar", code=None, current_stock=2)
    html = render_outcome(Answered(text="stock", facts=ItemFacts(item=item)))
    assert "Purchase History" not in html
    assert "(Code: N/A)" in html


def test_render_problem_answer_is_plain_text():
    html = render_outcome(Answered(text="Sorry, no <match>.", problem=Problem.NOT_FOUND))
    assert html == "Sorry, no &lt;match&gt;."


def test_history_table_layout():
    table = render_history_table([PurchaseHistoryEntry("Acme", "2024-01-02", 5)], "USD")
    lines = table[len("<pre>"):-len("</pre>")].split("\n")
    assert lines[0].startswith("Shop")
    assert set(lines[1]) == {"-"}
    assert lines[2].startswith("Acme")
    assert lines[2].endswith("$5.00")
