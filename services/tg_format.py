import html
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlencode

from services.assistant import Answered, Disambiguate, ItemFacts, Navigated, NeedsCreation, Outcome
from services.entity_resolver import PurchaseHistoryEntry

CURRENCY_SYMBOLS: Dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}

SHOP_COLUMN_WIDTH = 18


def tg_escape(text: object) -> str:
    return html.escape("" if text is None else str(text), quote=True)


def tg_kv(label: object, value: object) -> str:
    return f"<b>{tg_escape(label)}:</b> {tg_escape(value)}"


def tg_code(text: object) -> str:
    return f"<pre>{tg_escape(text)}</pre>"


def tg_link(label: object, url: str) -> str:
    return f'<a href="{tg_escape(url)}">{tg_escape(label)}</a>'


def tg_card(title: object, lines: Optional[Iterable[str]] = None) -> str:
    """Bold title followed by pre-escaped lines."""
    out: List[str] = [f"<b>{tg_escape(title)}</b>"]
    for line in lines or []:
        value = str(line or "").strip()
        if value:
            out.append(value)
    return "\n".join(out).strip()


def format_currency(amount: float, currency: str = "INR") -> str:
    code = str(currency or "INR").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    value = f"{float(amount or 0):,.2f}"
    if symbol:
        return f"{symbol}{value}"
    return f"{code} {value}"


def format_date(value: str) -> str:
    raw = str(value or "").strip()
    if not raw:
        return "-"
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return raw


def web_url(base_url: str, route: str, params: Optional[Dict[str, Any]] = None) -> str:
    url = f"{str(base_url or '').rstrip('/')}{route}"
    clean = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
    if clean:
        url += "?" + urlencode(clean)
    return url


def _text_block(text: str) -> str:
    return tg_escape(str(text or "").strip())


def render_history_table(history: Sequence[PurchaseHistoryEntry], currency: str = "INR") -> str:
    rows = [("Shop", "Date", "Price")]
    for entry in history:
        shop = entry.shop_name
        if len(shop) > SHOP_COLUMN_WIDTH:
            shop = shop[: SHOP_COLUMN_WIDTH - 1] + "…"
        rows.append((shop, format_date(entry.purchase_date), format_currency(entry.unit_price, currency)))

    shop_width = max(len(r[0]) for r in rows)
    date_width = max(len(r[1]) for r in rows)
    price_width = max(len(r[2]) for r in rows)
    lines = [
        f"{shop.ljust(shop_width)}  {date.ljust(date_width)}  {price.rjust(price_width)}"
        for shop, date, price in rows
    ]
    lines.insert(1, "-" * (shop_width + date_width + price_width + 4))
    return tg_code("\n".join(lines))


def render_item_facts(facts: ItemFacts, currency: str = "INR") -> str:
    item = facts.item
    lines = [tg_kv("Current Stock", f"{item.stock_display} units")]
    if item.rack_no:
        lines.append(tg_kv("Rack No", item.rack_no))
    card = tg_card(f"{item.display_name} (Code: {item.display_code})", lines)
    if facts.history:
        card += "\n\n<b>Purchase History:</b>\n" + render_history_table(facts.history, currency)
    return card


def render_outcome(outcome: Outcome, *, currency: str = "INR", web_base_url: str = "") -> str:
    """Render an assistant outcome as Telegram HTML."""
    if isinstance(outcome, Navigated):
        url = web_url(web_base_url, outcome.route)
        return f"{_text_block(outcome.text)}\n{tg_link('Open ' + outcome.page, url)}"

    if isinstance(outcome, NeedsCreation):
        params: Dict[str, Any] = {"action": outcome.action}
        params.update(outcome.hint)
        url = web_url(web_base_url, outcome.route, params)
        return f"{_text_block(outcome.text)}\n{tg_link('Open ' + outcome.entity_kind + ' form', url)}"

    if isinstance(outcome, Disambiguate):
        return _text_block(outcome.text)

    if isinstance(outcome, Answered):
        text = _text_block(outcome.text)
        if outcome.facts is not None:
            text += "\n\n" + render_item_facts(outcome.facts, currency)
        return text

    raise TypeError(f"Unsupported outcome: {outcome!r}")
